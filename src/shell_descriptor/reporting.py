"""
Console output for descriptors and descriptor diffs using the Rich library.
"""

from typing import Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .dependency import EnvironmentDescriptor
from .variants import DescriptorDiff, Relationship

_RELATIONSHIP_STYLES = {
    Relationship.IDENTICAL: ("✅", "green"),
    Relationship.SUPERSET: ("➕", "cyan"),
    Relationship.SUBSET: ("➖", "cyan"),
    Relationship.DIVERGED: ("⚠️ ", "yellow"),
}


class DescriptorReporter:
    """Formats and displays loaded descriptors."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def print_descriptor(self, descriptor: EnvironmentDescriptor) -> None:
        """
        Print a descriptor with its toolchain pin and dependencies.

        Args:
            descriptor: The loaded descriptor to display
        """
        self.console.print()
        self.console.print(
            Panel(
                f"🐚 {descriptor.source}",
                title=f"[bold blue]{descriptor.name}[/bold blue]",
                subtitle=f"[dim]{descriptor.source_format}[/dim]",
                border_style="blue",
            )
        )
        self._print_pin(descriptor)
        self._print_dependencies(descriptor)

        if descriptor.duplicates:
            self.console.print(
                f"ℹ️  Collapsed duplicate entries: {', '.join(descriptor.duplicates)}",
                style="dim",
            )

    def _print_pin(self, descriptor: EnvironmentDescriptor) -> None:
        pin = descriptor.toolchain_pin
        table = Table(title="📌 Toolchain Pin", box=box.ROUNDED, title_style="bold cyan")
        table.add_column("Field", style="bold")
        table.add_column("Value")
        table.add_row("Reference", pin.reference)
        table.add_row("Kind", pin.kind)
        table.add_row(
            "Location", pin.location if pin.is_resolved else "[red]unresolved[/red]"
        )
        for label, value in (("URL", pin.url), ("Revision", pin.rev)):
            if value:
                table.add_row(label, value)
        self.console.print(table)

    def _print_dependencies(self, descriptor: EnvironmentDescriptor) -> None:
        if not descriptor.dependencies:
            self.console.print("ℹ️  No dependencies declared.", style="yellow")
            return

        table = Table(
            title=f"📦 Dependencies ({len(descriptor.dependencies)})",
            box=box.ROUNDED,
            title_style="bold cyan",
        )
        table.add_column("#", justify="right", style="dim")
        table.add_column("Package", style="green")
        for index, name in enumerate(descriptor.dependencies, 1):
            table.add_row(str(index), name)
        self.console.print(table)

    def print_diff(self, diff: DescriptorDiff) -> None:
        """Print the differences between two descriptors."""
        icon, style = _RELATIONSHIP_STYLES[diff.relationship]
        self.console.print()
        self.console.print(
            Panel(
                f"{diff.left.source}\n{diff.right.source}",
                title=f"[bold blue]{diff.left.name} ↔ {diff.right.name}[/bold blue]",
                border_style="blue",
            )
        )
        self.console.print(
            f"{icon} Relationship: [bold {style}]{diff.relationship.value}[/bold {style}]"
        )

        if diff.toolchain_changed:
            self.console.print(
                f"  Toolchain pin: {diff.left.toolchain_pin.reference} → "
                f"{diff.right.toolchain_pin.reference}",
                style="yellow",
            )

        table = Table(box=box.ROUNDED)
        table.add_column("Only in left", style="green")
        table.add_column("Only in right", style="red")
        rows = max(len(diff.only_in_left), len(diff.only_in_right))
        for i in range(rows):
            table.add_row(
                diff.only_in_left[i] if i < len(diff.only_in_left) else "",
                diff.only_in_right[i] if i < len(diff.only_in_right) else "",
            )
        if rows:
            self.console.print(table)

        self.console.print(f"  Shared dependencies: {len(diff.common)}", style="dim")
