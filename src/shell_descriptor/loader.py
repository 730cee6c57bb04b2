"""
Environment descriptor loader.

Reads a descriptor source (a file or an embedded literal), validates it,
resolves its toolchain pin, and returns an immutable EnvironmentDescriptor.
Loading is one-shot: it either succeeds or raises ConfigParseError or
MissingPinError.
"""

from collections import Counter
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Mapping, Optional, Sequence, Union

from .dependency import DependencySet, EnvironmentDescriptor, ToolchainPin
from .error_handling import (
    ErrorCallback,
    ErrorCategory,
    MissingPinError,
    get_error_handler,
    log_pin_error,
)
from .parsers import (
    LITERAL_SOURCE,
    RawDescriptor,
    parse_descriptor_file,
    parse_descriptor_mapping,
    parse_descriptor_text,
)
from .pins import resolve_pin
from .structured_logging import (
    descriptor_context,
    log_descriptor_loaded,
    log_duplicates_collapsed,
)

DescriptorSource = Union[str, Path, Mapping[str, Any]]

_CALLBACK_CATEGORIES = (
    ErrorCategory.FILESYSTEM,
    ErrorCategory.PARSING,
    ErrorCategory.VALIDATION,
    ErrorCategory.PIN_RESOLUTION,
)


@contextmanager
def _error_callback_registered(
    error_callback: Optional[ErrorCallback],
) -> Iterator[None]:
    if error_callback is None:
        yield
        return

    error_handler = get_error_handler()
    for category in _CALLBACK_CATEGORIES:
        error_handler.register_callback(error_callback, category)
    try:
        yield
    finally:
        for category in _CALLBACK_CATEGORIES:
            error_handler.unregister_callback(error_callback, category)


def _duplicate_names(names: Sequence[str]) -> List[str]:
    counts = Counter(names)
    return [name for name in dict.fromkeys(names) if counts[name] > 1]


def build_descriptor(raw: RawDescriptor, base_dir: Path) -> EnvironmentDescriptor:
    """
    Validate parsed fields and resolve the toolchain pin.

    Args:
        raw: Fields as parsed from the source
        base_dir: Directory relative pin references are resolved against

    Returns:
        EnvironmentDescriptor: The loaded descriptor

    Raises:
        MissingPinError: If no pin is declared or the pin cannot be found
    """
    with descriptor_context(raw.source):
        return _build_descriptor(raw, base_dir)


def _build_descriptor(raw: RawDescriptor, base_dir: Path) -> EnvironmentDescriptor:
    source = None if raw.source == LITERAL_SOURCE else raw.source

    if not raw.toolchain_pin:
        message = "Descriptor does not declare a toolchain pin"
        log_pin_error(
            message, module="loader", function="build_descriptor", file_path=source
        )
        raise MissingPinError(message, reference=None, source=source)

    toolchain_pin = resolve_pin(
        ToolchainPin.from_reference(raw.toolchain_pin),
        base_dir,
        inline_pins=raw.inline_pins,
        sources_file=raw.sources_file,
        source=source,
    )

    dependencies = DependencySet.from_names(raw.dependencies)
    duplicates = _duplicate_names(raw.dependencies)
    if duplicates:
        log_duplicates_collapsed(raw.source, duplicates)

    descriptor = EnvironmentDescriptor(
        name=raw.name or "literal",
        dependencies=dependencies,
        toolchain_pin=toolchain_pin,
        source=raw.source,
        source_format=raw.source_format,
        duplicates=tuple(duplicates),
    )
    log_descriptor_loaded(
        raw.source, raw.source_format, len(dependencies), toolchain_pin.reference
    )
    return descriptor


def load_descriptor(
    source: DescriptorSource,
    base_dir: Optional[Union[str, Path]] = None,
    error_callback: Optional[ErrorCallback] = None,
) -> EnvironmentDescriptor:
    """
    Load an environment descriptor from a file path or an embedded literal.

    Args:
        source: Path to a .nix, .toml or .json descriptor, or a mapping with
            ``toolchainPin`` and ``dependencies``
        base_dir: Directory pins are resolved against; defaults to the
            descriptor's directory, or the working directory for literals
        error_callback: Called with the ErrorContext of any parse or pin
            failure reported during this load

    Returns:
        EnvironmentDescriptor: The loaded descriptor

    Raises:
        ConfigParseError: If the source is malformed
        MissingPinError: If the toolchain pin is absent or not found
    """
    with _error_callback_registered(error_callback):
        if isinstance(source, Mapping):
            raw = parse_descriptor_mapping(source)
            directory = Path(base_dir) if base_dir is not None else Path.cwd()
        else:
            raw = parse_descriptor_file(str(source))
            directory = (
                Path(base_dir) if base_dir is not None else Path(raw.source).parent
            )
        return build_descriptor(raw, directory)


def load_descriptor_text(
    text: str,
    file_type: str,
    base_dir: Optional[Union[str, Path]] = None,
    error_callback: Optional[ErrorCallback] = None,
) -> EnvironmentDescriptor:
    """Load an embedded literal given as nix, toml or json text."""
    with _error_callback_registered(error_callback):
        raw = parse_descriptor_text(text, file_type)
        directory = Path(base_dir) if base_dir is not None else Path.cwd()
        return build_descriptor(raw, directory)


def load_descriptors(
    paths: Sequence[Union[str, Path]],
    error_callback: Optional[ErrorCallback] = None,
) -> List[EnvironmentDescriptor]:
    """Load several descriptors; the first failure is raised."""
    return [load_descriptor(path, error_callback=error_callback) for path in paths]
