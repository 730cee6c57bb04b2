"""
Rendering of environment descriptors.

A descriptor can be written back out as a shell.nix expression or as a
TOML or JSON record. Every rendering loads back into the same dependency
set and toolchain pin reference.
"""

import json
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Dict, Iterable, List, Optional

import toml

from .cli_config import get_config
from .dependency import PIN_KIND_PATH, EnvironmentDescriptor, ToolchainPin
from .pins import INLINE_PIN_LOCATION

_RESERVED_BINDINGS = {"pkgs", "sources"}


class ExportFormat(Enum):
    """Supported export formats."""

    NIX = "nix"
    TOML = "toml"
    JSON = "json"


def _nix_path(reference: str) -> str:
    if reference.startswith(("./", "../", "/")):
        return reference
    return f"./{reference}"


def _toolchain_binding(pin: ToolchainPin) -> str:
    binding = pin.binding_name
    if binding in _RESERVED_BINDINGS:
        binding = f"toolchain_{binding}"
    return binding


def _pin_table(pin: ToolchainPin) -> Optional[Dict[str, str]]:
    """Inline pin entry so a named pin survives export without sources.json."""
    if pin.kind == PIN_KIND_PATH:
        return None
    table = {
        key: value
        for key, value in (("url", pin.url), ("rev", pin.rev), ("sha256", pin.sha256))
        if value is not None
    }
    return table or None


def _fetched_toolchain_lines(binding: str, toolchain_pin: ToolchainPin) -> List[str]:
    """An inline named pin has no sources.json entry, so it is fetched directly."""
    if binding != toolchain_pin.reference:
        raise ValueError(
            f"Inline pin {toolchain_pin.reference!r} cannot be written as a "
            "shell.nix binding; rename it to a plain Nix identifier"
        )
    if not toolchain_pin.url:
        raise ValueError(
            f"Inline pin {toolchain_pin.reference!r} has no url to fetch it from"
        )
    attrs = [f'    url = "{toolchain_pin.url}";']
    if toolchain_pin.sha256:
        attrs.append(f'    sha256 = "{toolchain_pin.sha256}";')
    return [f"  {binding} = import (fetchTarball {{", *attrs, "  }) {};"]


def render_nix_expression(
    dependencies: Iterable[str],
    toolchain_pin: ToolchainPin,
    sources_file: Optional[str] = None,
) -> str:
    """
    Render a mkShell expression for a dependency set and toolchain pin.

    Path pins and sources.json pins are imported through niv's sources.nix.
    Inline named pins become a fetchTarball import of their url.

    Args:
        dependencies: Package names, in order
        toolchain_pin: Toolchain pin to import
        sources_file: niv sources file; defaults to loader.sources_file

    Returns:
        str: shell.nix source text

    Raises:
        ValueError: If an inline pin has no url or no usable binding name
    """
    binding = _toolchain_binding(toolchain_pin)

    inline = (
        toolchain_pin.kind != PIN_KIND_PATH
        and toolchain_pin.location == INLINE_PIN_LOCATION
    )
    if inline:
        lines = ["let", "  pkgs = import <nixpkgs> {};"]
        lines += _fetched_toolchain_lines(binding, toolchain_pin)
    else:
        sources_json = PurePosixPath(sources_file or get_config().loader.sources_file)
        sources_nix = _nix_path(str(sources_json.with_name("sources.nix")))
        if toolchain_pin.kind == PIN_KIND_PATH:
            toolchain_import = (
                f"import {_nix_path(toolchain_pin.reference)} {{ inherit sources; }}"
            )
        else:
            toolchain_import = f"import sources.{toolchain_pin.reference} {{}}"
        lines = [
            "let",
            f"  sources = import {sources_nix};",
            "  pkgs = import sources.nixpkgs {};",
            f"  {binding} = {toolchain_import};",
        ]

    lines += ["in", "pkgs.mkShell {", "  buildInputs = with pkgs; ["]
    lines.extend(f"    {name}" for name in dependencies)
    lines.extend(["  ];", "}"])
    return "\n".join(lines) + "\n"


def descriptor_to_dict(descriptor: EnvironmentDescriptor) -> Dict[str, Any]:
    """Plain record form of a descriptor, as read by the TOML and JSON parsers."""
    data: Dict[str, Any] = {
        "name": descriptor.name,
        "toolchainPin": descriptor.toolchain_pin.reference,
        "dependencies": descriptor.dependencies.to_list(),
    }
    pin_table = _pin_table(descriptor.toolchain_pin)
    if pin_table:
        data["pins"] = {descriptor.toolchain_pin.reference: pin_table}
    return data


def render_descriptor(descriptor: EnvironmentDescriptor, fmt: str) -> str:
    """
    Render a descriptor in the requested format.

    Args:
        descriptor: Loaded descriptor
        fmt: "nix", "toml" or "json"

    Returns:
        str: Rendered text

    Raises:
        ValueError: If the format is not supported
    """
    try:
        export_format = ExportFormat(fmt.lower())
    except ValueError:
        supported = ", ".join(f.value for f in ExportFormat)
        raise ValueError(f"Unsupported export format: {fmt} (supported: {supported})")

    if export_format == ExportFormat.NIX:
        return render_nix_expression(descriptor.dependencies, descriptor.toolchain_pin)
    if export_format == ExportFormat.TOML:
        return toml.dumps(descriptor_to_dict(descriptor))
    return json.dumps(descriptor_to_dict(descriptor), indent=2) + "\n"
