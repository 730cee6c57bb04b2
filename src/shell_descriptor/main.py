import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import click
from rich.console import Console
from rich.panel import Panel

from . import __version__
from .cli_config import (
    OUTPUT_FORMATS,
    ComprehensiveConfig,
    apply_config_data,
    create_sample_config,
    get_config,
    load_config_file,
    validate_config_values,
)
from .dependency import EnvironmentDescriptor
from .error_handling import DescriptorError, setup_error_handling
from .exporters import ExportFormat, render_descriptor
from .loader import load_descriptor
from .parsers import get_supported_file_types
from .reporting import DescriptorReporter
from .structured_logging import configure_logging
from .variants import compare_descriptors

console = Console()

_DESCRIPTOR_PATH = click.Path(exists=True, readable=True, dir_okay=False)


def load_descriptor_or_fail(file_path: str) -> EnvironmentDescriptor:
    """Load a descriptor, turning load errors into a CLI failure."""
    try:
        return load_descriptor(file_path)
    except DescriptorError as e:
        raise click.ClickException(f"Failed to load descriptor: {e}")


def descriptor_summary(descriptor: EnvironmentDescriptor) -> Dict[str, Any]:
    """JSON-ready summary of a loaded descriptor."""
    pin = descriptor.toolchain_pin
    return {
        "name": descriptor.name,
        "source": descriptor.source,
        "source_format": descriptor.source_format,
        "toolchain_pin": {
            "reference": pin.reference,
            "kind": pin.kind,
            "location": pin.location,
            "url": pin.url,
            "rev": pin.rev,
            "sha256": pin.sha256,
        },
        "dependencies": descriptor.dependencies.to_list(),
        "dependency_count": len(descriptor.dependencies),
        "duplicates": list(descriptor.duplicates),
    }


def _resolve_output_format(output_format: Optional[str]) -> str:
    return output_format or get_config().output.output_format


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version information")
@click.pass_context
def cli(ctx, version):
    """
    🐚 shell-descriptor: development shell descriptor loader

    Loads shell.nix, TOML and JSON environment descriptors, validates
    their dependency set and toolchain pin, and compares variants.
    """
    if version:
        console.print(f"shell-descriptor version {__version__}", style="bold blue")
        ctx.exit()

    config = get_config()
    log_level = config.effective_log_level
    configure_logging(log_level)
    setup_error_handling(
        log_level=getattr(logging, log_level.upper(), logging.WARNING),
        mask_sensitive_data=config.logging.enable_sensitive_data_masking,
        log_format=config.logging.log_format,
    )

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@cli.command()
@click.argument("file_path", type=_DESCRIPTOR_PATH)
@click.option(
    "--output-format",
    "-f",
    type=click.Choice(OUTPUT_FORMATS),
    help="Output format (defaults to output.output_format)",
)
@click.option("--quiet", "-q", is_flag=True, help="Print dependency names only")
def show(file_path: str, output_format: Optional[str], quiet: bool):
    """Load a descriptor and show its toolchain pin and dependencies."""
    descriptor = load_descriptor_or_fail(file_path)

    if _resolve_output_format(output_format) == "json":
        click.echo(json.dumps(descriptor_summary(descriptor), indent=2))
    elif quiet or get_config().output.quiet:
        for name in descriptor.dependencies:
            click.echo(name)
    else:
        DescriptorReporter(console).print_descriptor(descriptor)


@cli.command()
@click.argument("left", type=_DESCRIPTOR_PATH)
@click.argument("right", type=_DESCRIPTOR_PATH)
@click.option(
    "--output-format",
    "-f",
    type=click.Choice(OUTPUT_FORMATS),
    help="Output format (defaults to output.output_format)",
)
@click.option(
    "--fail-on-drift",
    is_flag=True,
    help="Exit with code 1 unless the descriptors are identical",
)
@click.pass_context
def diff(ctx, left: str, right: str, output_format: Optional[str], fail_on_drift: bool):
    """Compare two descriptors, e.g. near-duplicate shell variants."""
    result = compare_descriptors(
        load_descriptor_or_fail(left), load_descriptor_or_fail(right)
    )

    if _resolve_output_format(output_format) == "json":
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        DescriptorReporter(console).print_diff(result)

    if fail_on_drift and not result.is_identical:
        ctx.exit(1)


@cli.command()
@click.argument("file_path", type=_DESCRIPTOR_PATH)
@click.option(
    "--format",
    "export_format",
    type=click.Choice([f.value for f in ExportFormat]),
    required=True,
    help="Format to render the descriptor in",
)
@click.option(
    "--output-file", "-o", type=click.Path(dir_okay=False), help="Write to a file"
)
def export(file_path: str, export_format: str, output_file: Optional[str]):
    """Render a descriptor as shell.nix, TOML or JSON."""
    descriptor = load_descriptor_or_fail(file_path)
    try:
        rendered = render_descriptor(descriptor, export_format)
    except ValueError as e:
        raise click.ClickException(f"Failed to export descriptor: {e}")

    if output_file:
        with open(output_file, "w", encoding="utf-8") as f:
            f.write(rendered)
        console.print(f"✅ Descriptor written to {output_file}", style="green")
    else:
        click.echo(rendered, nl=False)


@cli.command()
def info():
    """Show supported descriptor formats and usage examples."""
    file_types = "\n".join(
        f"• [green]{file_type}[/green]" for file_type in get_supported_file_types()
    )
    info_text = f"""
[bold blue]📋 Supported Descriptors:[/bold blue]

{file_types}

[bold blue]🧾 Descriptor Fields:[/bold blue]

• [yellow]toolchainPin[/yellow] - Pinned toolchain: a local .nix file or a named pin
• [yellow]dependencies[/yellow] - Ordered package names; duplicates collapse
• [yellow]pins[/yellow] - Optional inline named pins (url, rev, sha256)
• [yellow]pinSources[/yellow] - Optional niv sources file (default nix/sources.json)

[bold blue]🚨 Errors:[/bold blue]

• [red]ConfigParseError[/red] - Malformed or missing declaration
• [red]MissingPinError[/red] - Toolchain pin absent or not found

[bold blue]🌍 Environment Variables:[/bold blue]

• [cyan]SHELL_DESCRIPTOR_SOURCES_FILE[/cyan] - Default niv sources file
• [cyan]SHELL_DESCRIPTOR_OUTPUT_FORMAT[/cyan] - console or json
• [cyan]SHELL_DESCRIPTOR_LOG_LEVEL[/cyan] - Logging level

[bold blue]💡 Usage Examples:[/bold blue]

  shell-descriptor show shell.nix
  shell-descriptor show shell.nix --output-format json
  shell-descriptor diff shell.nix debug/shell.nix --fail-on-drift
  shell-descriptor export shell.nix --format toml -o shell.toml
"""
    console.print(
        Panel(
            info_text,
            title="[bold]shell-descriptor Information[/bold]",
            border_style="blue",
        )
    )


@cli.group()
def config():
    """Configuration management commands."""
    pass


@config.command("init")
@click.option(
    "--path",
    type=click.Path(),
    default=".shell-descriptor.json",
    help="Path where to create the config file",
    show_default=True,
)
@click.option("--force", is_flag=True, help="Overwrite existing config file")
def config_init(path: str, force: bool):
    """Create a sample configuration file."""
    config_path = Path(path)

    if config_path.exists() and not force:
        console.print(f"⚠️  Config file already exists at {config_path}", style="yellow")
        console.print("Use --force to overwrite", style="dim")
        return

    try:
        with open(config_path, "w", encoding="utf-8") as f:
            f.write(create_sample_config())
    except OSError as e:
        raise click.ClickException(f"Failed to create config file: {e}")

    console.print(f"✅ Created configuration file at {config_path}", style="green")


@config.command("show")
def config_show():
    """Show current configuration settings."""
    current_config = get_config()

    console.print(
        Panel("[bold blue]🔧 Configuration[/bold blue]", border_style="blue")
    )

    console.print("\n[bold cyan]📂 Loader Settings:[/bold cyan]")
    console.print(f"  Max File Size: {current_config.loader.max_file_size_mb} MB")
    console.print(
        f"  Allowed Extensions: {', '.join(current_config.loader.allowed_file_extensions)}"
    )
    console.print(f"  Sources File: {current_config.loader.sources_file}")
    console.print(f"  Strip pkgs. Prefix: {current_config.loader.strip_pkgs_prefix}")
    console.print(f"  Max Dependencies: {current_config.loader.max_dependencies}")

    console.print("\n[bold cyan]🖨️  Output Settings:[/bold cyan]")
    console.print(f"  Output Format: {current_config.output.output_format}")
    console.print(f"  Quiet: {current_config.output.quiet}")
    console.print(f"  Verbose: {current_config.output.verbose}")

    console.print("\n[bold cyan]📝 Logging Settings:[/bold cyan]")
    console.print(f"  Log Level: {current_config.logging.log_level}")
    console.print(
        f"  Sensitive Data Masking: {current_config.logging.enable_sensitive_data_masking}"
    )


@config.command("validate")
@click.argument("config_file", type=click.Path(exists=True, dir_okay=False))
def config_validate(config_file: str):
    """Validate a configuration file."""
    config_data = load_config_file(Path(config_file))

    if not isinstance(config_data, dict):
        raise click.ClickException(f"Could not load config from {config_file}")

    candidate = ComprehensiveConfig()
    apply_config_data(candidate, config_data)
    errors = validate_config_values(candidate)

    if errors:
        console.print("❌ Configuration validation failed:", style="red")
        for error in errors:
            console.print(f"  • {error}", style="red")
        raise click.exceptions.Exit(1)

    console.print(f"✅ Configuration file {config_file} is valid", style="green")


if __name__ == "__main__":
    cli()
