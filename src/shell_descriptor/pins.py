"""
Toolchain pin resolution.

A pin reference is either a local ``.nix`` file next to the descriptor or the
name of an entry in inline ``pins`` or a niv ``sources.json``. Resolution only
checks that the pin exists; it never fetches anything.
"""

import json
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .cli_config import get_config
from .dependency import PIN_KIND_PATH, ToolchainPin
from .error_handling import (
    ConfigParseError,
    MissingPinError,
    log_parsing_error,
    log_pin_error,
)
from .structured_logging import log_pin_resolved

INLINE_PIN_LOCATION = "<inline>"
PIN_METADATA_FIELDS = ("url", "rev", "sha256")


def _missing(
    message: str, reference: Optional[str], source: Optional[str]
) -> MissingPinError:
    log_pin_error(
        message,
        module="pins",
        function="resolve_pin",
        reference=reference,
        file_path=source,
    )
    return MissingPinError(message, reference=reference, source=source)


def _pin_metadata(entry: Mapping[str, Any]) -> Dict[str, Optional[str]]:
    return {
        key: str(entry[key]) if entry.get(key) is not None else None
        for key in PIN_METADATA_FIELDS
    }


def load_sources_file(sources_path: Path) -> Dict[str, Dict[str, Any]]:
    """
    Read a niv sources.json file.

    Args:
        sources_path: Path to the sources file

    Returns:
        Dict[str, Dict[str, Any]]: Pin name to pin attributes

    Raises:
        ConfigParseError: If the file cannot be read or is not a JSON object
    """
    try:
        with open(sources_path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        log_parsing_error(
            f"Invalid JSON in pin sources: {e.msg}",
            module="pins",
            function="load_sources_file",
            line_number=e.lineno,
            file_path=str(sources_path),
            exception=e,
        )
        raise ConfigParseError(
            f"Invalid JSON in pin sources: {e.msg}",
            source=str(sources_path),
            line_number=e.lineno,
        )
    except (OSError, UnicodeDecodeError) as e:
        log_parsing_error(
            f"Cannot read pin sources: {e}",
            module="pins",
            function="load_sources_file",
            file_path=str(sources_path),
            exception=e,
        )
        raise ConfigParseError(
            f"Cannot read pin sources: {e}", source=str(sources_path)
        )

    if not isinstance(data, dict) or not all(
        isinstance(entry, dict) for entry in data.values()
    ):
        log_parsing_error(
            "Pin sources must be a JSON object of pin entries",
            module="pins",
            function="load_sources_file",
            file_path=str(sources_path),
        )
        raise ConfigParseError(
            "Pin sources must be a JSON object of pin entries",
            source=str(sources_path),
        )

    return data


def resolve_pin(
    pin: ToolchainPin,
    base_dir: Path,
    inline_pins: Optional[Mapping[str, Mapping[str, Any]]] = None,
    sources_file: Optional[str] = None,
    source: Optional[str] = None,
) -> ToolchainPin:
    """
    Resolve a toolchain pin reference.

    Args:
        pin: Unresolved pin
        base_dir: Directory the descriptor lives in
        inline_pins: Named pins declared in the descriptor itself
        sources_file: niv sources file, relative to base_dir; defaults to
            the configured loader.sources_file
        source: Descriptor the pin came from, for error messages

    Returns:
        ToolchainPin: The pin with its location (and metadata) filled in

    Raises:
        MissingPinError: If the referenced pin does not exist
        ConfigParseError: If the sources file is malformed
    """
    if pin.kind == PIN_KIND_PATH:
        candidate = (base_dir / pin.reference).resolve()
        if not candidate.is_file():
            raise _missing(
                f"Toolchain pin not found: {pin.reference} "
                f"(looked for {candidate})",
                pin.reference,
                source,
            )
        resolved = pin.resolved(str(candidate))
        log_pin_resolved(pin.reference, pin.kind, resolved.location)
        return resolved

    if inline_pins and pin.reference in inline_pins:
        resolved = pin.resolved(
            INLINE_PIN_LOCATION, **_pin_metadata(inline_pins[pin.reference])
        )
        log_pin_resolved(pin.reference, pin.kind, INLINE_PIN_LOCATION)
        return resolved

    sources_name = sources_file or get_config().loader.sources_file
    sources_path = (base_dir / sources_name).resolve()
    if not sources_path.is_file():
        raise _missing(
            f"Toolchain pin not found: {pin.reference} "
            f"(no inline pin and no sources file at {sources_path})",
            pin.reference,
            source,
        )

    sources = load_sources_file(sources_path)
    if pin.reference not in sources:
        available = ", ".join(sorted(sources)) or "none"
        raise _missing(
            f"Toolchain pin not found: {pin.reference} "
            f"(available in {sources_path.name}: {available})",
            pin.reference,
            source,
        )

    resolved = pin.resolved(str(sources_path), **_pin_metadata(sources[pin.reference]))
    log_pin_resolved(pin.reference, pin.kind, resolved.location)
    return resolved
