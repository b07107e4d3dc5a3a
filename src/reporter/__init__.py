"""Presentation helpers for composition results.

Renders a :class:`~src.resolver.ResolvedStack`, its warnings and the file
provenance of a :class:`~src.scaffolder.GeneratedFileSet` as rich tables or
as a markdown report, and turns structured engine errors into actionable
hints.

Usage::

    reporter = StackReporter()
    reporter.print_stack(stack)
    reporter.print_file_set(file_set)

    await CompositionReportGenerator().generate(
        stack, file_set, "my-app", "docs/composition-report.md"
    )
"""

from src.reporter.composition_report import CompositionReportGenerator
from src.reporter.display import (
    StackReporter,
    error_guidance,
    provenance_table,
    stack_table,
    warnings_table,
)

__all__ = [
    "CompositionReportGenerator",
    "StackReporter",
    "error_guidance",
    "provenance_table",
    "stack_table",
    "warnings_table",
]
