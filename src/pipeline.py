"""Stack Composer Pipeline Orchestrator.

Implements the 4-phase composition pipeline:

Phase 1: DISCOVER -- Scan search paths for module manifests.
Phase 2: RESOLVE  -- Expand, check and order the selected modules.
Phase 3: GENERATE -- Render and merge every module's file templates in memory.
Phase 4: WRITE    -- Commit the validated file set to disk, all-or-nothing.

Usage::

    pipeline = Pipeline(Config())
    context = GenerationContext(project_name="my-app", target_directory=Path("my-app"))
    result = await pipeline.run(["react", "tailwind"], context, verbose=True)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable

from pydantic import BaseModel, ConfigDict, Field
from rich.panel import Panel

from src.config import Config
from src.errors import StackError
from src.registry import GenerationContext, ModuleRegistry
from src.reporter import StackReporter
from src.resolver import DependencyResolver, ResolvedStack
from src.scaffolder import GeneratedFileSet, TemplateGenerator
from src.utils import (
    PHASE_NAMES,
    console,
    format_duration,
    print_error,
    print_phase_header,
    print_success,
    print_summary_table,
    print_warning,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result model
# ---------------------------------------------------------------------------


class CompositionResult(BaseModel):
    """Everything one pipeline run produced."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    stack: ResolvedStack
    file_set: GeneratedFileSet
    written: list[str] = Field(
        default_factory=list, description="Relative paths written; empty for a dry run"
    )
    duration: float = Field(default=0.0, description="Wall-clock seconds")

    @property
    def dry_run(self) -> bool:
        return not self.written


# ---------------------------------------------------------------------------
# Pipeline Orchestrator
# ---------------------------------------------------------------------------


class Pipeline:
    """Stack Composer Pipeline Orchestrator.

    Discovery runs once per instance; the registry is then reused by every
    ``run``/``plan`` call.

    Attributes:
        config: Global engine configuration.
        generator: Template generator shared across runs.
    """

    def __init__(self, config: Config | None = None, registry: ModuleRegistry | None = None) -> None:
        self.config = config or Config()
        self.generator = TemplateGenerator(self.config)
        self.reporter = StackReporter(console)
        self._registry = registry

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def registry(self) -> ModuleRegistry:
        """The discovered registry (phase 1), cached after the first call."""
        if self._registry is None:
            registry = ModuleRegistry(self.config)
            await registry.discover()
            self._registry = registry
        return self._registry

    async def resolve(self, selected: Iterable[str]) -> ResolvedStack:
        registry = await self.registry()
        return DependencyResolver(registry, self.config).resolve(selected)

    async def plan(self, selected: Iterable[str], context: GenerationContext) -> CompositionResult:
        """Run discovery, resolution and generation without touching the target."""
        start = time.monotonic()
        stack = await self.resolve(selected)
        file_set = await asyncio.to_thread(self.generator.generate, stack, context)
        return CompositionResult(
            stack=stack, file_set=file_set, duration=time.monotonic() - start,
        )

    async def run(
        self,
        selected: Iterable[str],
        context: GenerationContext,
        overwrite: bool = False,
        verbose: bool = False,
    ) -> CompositionResult:
        """Compose *selected* modules into ``context.target_directory``.

        Args:
            selected: Module names chosen by the user.
            context: Project name, target directory and user options.
            overwrite: Allow replacing files a previous generation did not create.
            verbose: Print phase headers, tables and a summary to the console.

        Returns:
            The resolved stack, the generated file set and the written paths.

        Raises:
            StackError: Any resolution or generation failure, unchanged.
        """
        selected = list(selected)
        pipeline_start = time.monotonic()
        if verbose:
            console.print(
                Panel(
                    f"[bold bright_cyan]Stack Composer[/bold bright_cyan]\n"
                    f"Project : {context.project_name}\n"
                    f"Target  : {context.target_directory}\n"
                    f"Modules : {', '.join(selected) or '(none)'}",
                    title="[bold]Composition Start[/bold]",
                    border_style="bright_cyan",
                )
            )

        phase = 1
        try:
            self._header(verbose, phase)
            registry = await self.registry()
            if verbose:
                print_success(f"{len(registry)} module(s) discovered")
                for warning in registry.warnings:
                    print_warning(warning.message)

            phase = 2
            self._header(verbose, phase)
            stack = DependencyResolver(registry, self.config).resolve(selected)
            if verbose:
                self.reporter.print_stack(stack)

            phase = 3
            self._header(verbose, phase)
            file_set = await asyncio.to_thread(self.generator.generate, stack, context)
            if verbose:
                self.reporter.print_file_set(file_set)

            phase = 4
            self._header(verbose, phase)
            written = await self.generator.write(
                file_set, context.target_directory, overwrite=overwrite,
            )
        except StackError as exc:
            logger.debug("Phase %d (%s) failed: %s", phase, PHASE_NAMES[phase], exc)
            if verbose:
                print_error(f"Phase {phase} ({PHASE_NAMES[phase]}) FAILED")
                self.reporter.print_error(exc)
            raise

        result = CompositionResult(
            stack=stack,
            file_set=file_set,
            written=written,
            duration=time.monotonic() - pipeline_start,
        )
        if verbose:
            print_summary_table(
                {
                    "Modules": ", ".join(stack.names),
                    "Files generated": str(len(file_set)),
                    "Files written": str(len(written)),
                    "Warnings": str(len(stack.warnings) + len(file_set.warnings)),
                    "Duration": format_duration(result.duration),
                },
                title="Composition Complete",
            )
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _header(verbose: bool, phase: int) -> None:
        if verbose:
            print_phase_header(phase, PHASE_NAMES[phase])
