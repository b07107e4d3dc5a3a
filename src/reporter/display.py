"""Rich console rendering of stacks, file provenance and engine errors."""

from __future__ import annotations

from collections.abc import Iterable

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from src.errors import (
    CircularDependencyError,
    ConflictError,
    FileSetValidationError,
    GenerationInProgressError,
    MissingRequirementError,
    StackError,
    StackWarning,
    UnknownModuleError,
    UnmanagedFilesError,
    ValidationError,
)
from src.resolver.stack import ResolvedStack
from src.scaffolder.filesets import GeneratedFileSet
from src.utils import console as default_console


CATEGORY_STYLES: dict[str, str] = {
    "frontend-framework": "cyan",
    "ui-library": "magenta",
    "backend-framework": "blue",
    "backend-service": "blue",
    "database": "green",
    "auth-provider": "yellow",
}


# ---------------------------------------------------------------------------
# Table builders
# ---------------------------------------------------------------------------


def stack_table(stack: ResolvedStack) -> Table:
    """Install order with the reason each module is present."""
    table = Table(title="Resolved Stack", show_lines=False)
    table.add_column("#", justify="right", style="dim", width=3)
    table.add_column("Module", style="bold")
    table.add_column("Version")
    table.add_column("Category")
    table.add_column("Priority", justify="right")
    table.add_column("Why")

    for index, module in enumerate(stack.ordered_modules, 1):
        category = module.category.value
        style = CATEGORY_STYLES.get(category, "white")
        reason = stack.provenance.get(module.name, "")
        table.add_row(
            str(index),
            module.name,
            module.version,
            f"[{style}]{category}[/{style}]",
            str(module.priority),
            reason if reason == "selected" else f"[dim]{reason}[/dim]",
        )
    return table


def warnings_table(warnings: Iterable[StackWarning], title: str = "Warnings") -> Table:
    table = Table(title=title, show_lines=True)
    table.add_column("Code", style="yellow", width=28)
    table.add_column("Module")
    table.add_column("Message")
    for warning in warnings:
        table.add_row(warning.code, warning.module or "-", warning.message)
    return table


def provenance_table(file_set: GeneratedFileSet) -> Table:
    """Output paths and the modules that contributed to each."""
    table = Table(title="Generated Files", show_lines=False)
    table.add_column("Path")
    table.add_column("Contributors")
    table.add_column("Existing", justify="center", width=8)
    for path in file_set.paths():
        table.add_row(
            path,
            ", ".join(file_set.contributors.get(path, [])),
            "[yellow]yes[/yellow]" if path in file_set.preexisting else "",
        )
    return table


# ---------------------------------------------------------------------------
# Error guidance
# ---------------------------------------------------------------------------


def error_guidance(error: StackError) -> list[str]:
    """Actionable hints derived from a structured engine error."""
    if isinstance(error, UnknownModuleError):
        return [f"No module named '{name}' was discovered; check the search paths." for name in error.names]
    if isinstance(error, MissingRequirementError):
        return [m.describe() for m in error.missing]
    if isinstance(error, ConflictError):
        return [
            f"Remove either '{c.a}' or '{c.b}': {c.reason}" for c in error.conflicts
        ]
    if isinstance(error, CircularDependencyError):
        return [
            "Break the cycle " + " -> ".join(cycle + cycle[:1]) for cycle in error.cycles
        ]
    if isinstance(error, ValidationError):
        return list(error.problems)
    if isinstance(error, FileSetValidationError):
        return [f"{path}: {problem}" for path, problem in error.problems.items()]
    if isinstance(error, UnmanagedFilesError):
        return [f"{path} was not created by a previous generation" for path in error.paths] + [
            "Re-run with overwrite=True to replace these files."
        ]
    if isinstance(error, GenerationInProgressError):
        return [f"Wait for the other run on {error.target} to finish, then retry."]
    return []


class StackReporter:
    """Prints composition results for a human reader."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or default_console

    def print_stack(self, stack: ResolvedStack) -> None:
        self.console.print(stack_table(stack))
        if stack.warnings:
            self.console.print(warnings_table(stack.warnings, title="Compatibility Warnings"))

    def print_file_set(self, file_set: GeneratedFileSet) -> None:
        self.console.print(provenance_table(file_set))
        if file_set.warnings:
            self.console.print(warnings_table(file_set.warnings, title="Merge Warnings"))

    def print_error(self, error: StackError) -> None:
        hints = error_guidance(error)
        body = f"[bold]{escape(str(error))}[/bold]"
        if hints:
            body += "\n\n" + "\n".join(f"  - {escape(hint)}" for hint in hints)
        self.console.print(
            Panel(body, title=type(error).__name__, border_style="red")
        )
