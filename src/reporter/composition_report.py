"""Markdown composition report.

Produces a ``composition-report.md`` describing the resolved stack (install
order and why each module is present), collected warnings, and which modules
contributed to every generated file.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path

from src.errors import StackWarning
from src.resolver.stack import ResolvedStack
from src.scaffolder.filesets import GeneratedFileSet
from src.utils import console


class CompositionReportGenerator:
    """Renders a stack and its file set as a markdown document."""

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate(
        self,
        stack: ResolvedStack,
        file_set: GeneratedFileSet,
        project_name: str,
        output_path: str | Path,
    ) -> Path:
        """Write the report to *output_path*.

        Returns
        -------
        Path
            Absolute path to the written file.
        """
        output = Path(output_path).resolve()
        content = self.render(stack, file_set, project_name)

        def _write() -> None:
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_text(content, encoding="utf-8")

        await asyncio.to_thread(_write)
        console.print(f"[green]Composition report written to {output}[/green]")
        return output

    def render(
        self,
        stack: ResolvedStack,
        file_set: GeneratedFileSet | None,
        project_name: str,
        generated_at: datetime | None = None,
    ) -> str:
        """Render the complete report markdown."""
        stamp = (generated_at or datetime.now(timezone.utc)).strftime("%Y-%m-%d %H:%M UTC")
        sections = [
            f"# {project_name} - Composition Report",
            "",
            f"> Generated on {stamp}",
            "",
            self._render_stack(stack),
        ]
        warnings: list[StackWarning] = list(stack.warnings)
        if file_set is not None:
            sections.append(self._render_files(file_set))
            warnings.extend(file_set.warnings)
        sections.append(self._render_warnings(warnings))
        return "\n".join(sections).rstrip("\n") + "\n"

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _render_stack(self, stack: ResolvedStack) -> str:
        lines = [
            "## Modules",
            "",
            "| # | Module | Version | Category | Why |",
            "|---|--------|---------|----------|-----|",
        ]
        for index, module in enumerate(stack.ordered_modules, 1):
            lines.append(
                f"| {index} | `{module.name}` | {module.version} | "
                f"{module.category.value} | {stack.provenance.get(module.name, '')} |"
            )
        capabilities = sorted(stack.capabilities)
        if capabilities:
            lines += ["", "**Capabilities:** " + ", ".join(f"`{c}`" for c in capabilities)]
        lines.append("")
        return "\n".join(lines)

    def _render_files(self, file_set: GeneratedFileSet) -> str:
        lines = ["## Files", ""]
        if not len(file_set):
            lines += ["_No files generated._", ""]
            return "\n".join(lines)
        lines += ["| Path | Contributors |", "|------|--------------|"]
        for path in file_set.paths():
            owners = ", ".join(f"`{m}`" for m in file_set.contributors.get(path, []))
            if path in file_set.preexisting:
                owners += " (merged into existing file)"
            lines.append(f"| `{path}` | {owners} |")
        lines.append("")
        return "\n".join(lines)

    def _render_warnings(self, warnings: list[StackWarning]) -> str:
        lines = ["## Warnings", ""]
        if not warnings:
            lines += ["None.", ""]
            return "\n".join(lines)
        for warning in warnings:
            where = f" ({warning.path})" if warning.path else ""
            lines.append(f"- **{warning.code}**{where}: {warning.message}")
        lines.append("")
        return "\n".join(lines)
