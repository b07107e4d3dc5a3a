"""Template generator: folds every module's file contributions into one tree.

For each output path the content is a left fold over the ordered modules::

    content_0 = file already on disk (if any)
    content_n = merge(content_{n-1}, render(module_n), strategy)

A file this engine wrote on an earlier run and nobody has edited since (its
digest still matches the generation manifest) is rebuilt from scratch, so
re-running the same stack is idempotent.

Generation itself is in-memory; nothing touches the target until
:meth:`TemplateGenerator.write` commits a validated file set.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

from src.config import Config
from src.errors import (
    GenerationError,
    HookError,
    MergeError,
    RenderError,
    TemplateSyntaxError,
    UndefinedVariableError,
)
from src.registry.models import (
    GenerationContext,
    MergeStrategy,
    ModuleDefinition,
    TemplateDescriptor,
)
from src.resolver.stack import ResolvedStack
from src.utils import content_digest, dump_json, slugify

from .filesets import GeneratedFileSet
from .merge import MergeRequest, apply_merge
from .staging import GenerationLock, commit_file_set, load_managed
from .templates import TemplateRenderer

logger = logging.getLogger(__name__)


class TemplateGenerator:
    """Renders and merges the file templates of a resolved stack.

    Usage::

        generator = TemplateGenerator(config)
        file_set = generator.generate(stack, context)
        written = await generator.write(file_set, context.target_directory)
    """

    def __init__(
        self,
        config: Config | None = None,
        renderer: TemplateRenderer | None = None,
    ) -> None:
        self.config = config or Config()
        self.renderer = renderer or TemplateRenderer(strict=self.config.strict_variables)

    # -- Public API --------------------------------------------------------

    def generate(self, stack: ResolvedStack, context: GenerationContext) -> GeneratedFileSet:
        """Build the complete, validated file set for *stack*.

        The caller's *context* is not modified; hooks receive a working copy.

        Raises:
            RenderError, MergeError, HookError: For the first failing contribution.
            FileSetValidationError: If the merged result is not fit to write.
        """
        ctx = self.build_context(stack, context)
        file_set = GeneratedFileSet()
        managed = load_managed(Path(ctx.target_directory), self.config)

        for module in stack.ordered_modules:
            self._run_hook(module, "before_apply", ctx, file_set)
            for path, descriptor in module.file_templates.items():
                if not descriptor.applies(ctx):
                    logger.debug("Skipping %s from %s: condition is false", path, module.name)
                    continue
                rendered = self._render(path, module, descriptor, ctx)
                self._fold(
                    file_set, path, module, rendered, descriptor.strategy_for(path), ctx,
                    managed, descriptor,
                )
                if descriptor.is_template:
                    file_set.allow_literals(
                        path, self.renderer.literal_directives(descriptor.source)
                    )
            self._merge_dependencies(file_set, module, ctx, managed)
            self._run_hook(module, "after_apply", ctx, file_set)

        for warning in file_set.warnings:
            logger.warning("%s", warning.message)
        file_set.validate()
        logger.debug(
            "Generated %d file(s) from %d module(s)", len(file_set), len(stack.ordered_modules)
        )
        return file_set

    async def write(
        self,
        file_set: GeneratedFileSet,
        target: str | Path,
        overwrite: bool = False,
    ) -> list[str]:
        """Commit *file_set* into *target* under the generation lock.

        Returns:
            Relative paths written (unchanged files are skipped).

        Raises:
            GenerationInProgressError: If another run holds the lock past the timeout.
            UnmanagedFilesError: If user files would change and *overwrite* is false.
        """
        async with GenerationLock(Path(target), self.config.lock_timeout):
            return await asyncio.to_thread(
                commit_file_set, file_set, Path(target), self.config, overwrite,
            )

    # -- Context building --------------------------------------------------

    def build_context(self, stack: ResolvedStack, context: GenerationContext) -> GenerationContext:
        """Working context with the variables every template can rely on.

        Precedence, lowest first: built-in values, module defaults (earlier
        modules win), user options, variables supplied by the caller.
        """
        variables: dict[str, Any] = {
            "project_name": context.project_name,
            "project_name_slug": slugify(context.project_name),
            "target_directory": str(context.target_directory),
            "options": dict(context.user_options),
            "modules": {m.name: m.version for m in stack.ordered_modules},
            "capabilities": {
                cap: m.name
                for m in reversed(stack.ordered_modules)
                for cap in sorted(m.provides)
            },
            "dependencies": {},
            "dev_dependencies": {},
        }
        for module in stack.ordered_modules:
            variables["dependencies"].update(module.dependencies)
            variables["dev_dependencies"].update(module.dev_dependencies)
            for key, value in module.variables.items():
                variables.setdefault(key, value)
        variables.update(context.user_options)
        variables.update(context.variables)

        ctx = context.model_copy(deep=True)
        ctx.variables = variables
        return ctx

    # -- Internals ---------------------------------------------------------

    def _run_hook(
        self,
        module: ModuleDefinition,
        slot: str,
        ctx: GenerationContext,
        file_set: GeneratedFileSet,
    ) -> None:
        hook = getattr(module, slot)
        if hook is None:
            return
        logger.debug("Running %s hook of %s", slot, module.name)
        try:
            hook(ctx, file_set)
        except GenerationError:
            raise
        except Exception as exc:
            raise HookError(module.name, slot, f"{type(exc).__name__}: {exc}") from exc

    def _render(
        self,
        path: str,
        module: ModuleDefinition,
        descriptor: TemplateDescriptor,
        ctx: GenerationContext,
    ) -> str:
        if not descriptor.is_template:
            return descriptor.source
        try:
            return self.renderer.render_string(descriptor.source, ctx.variables)
        except (TemplateSyntaxError, UndefinedVariableError) as exc:
            raise RenderError(path, module.name, str(exc)) from exc

    def _fold(
        self,
        file_set: GeneratedFileSet,
        path: str,
        module: ModuleDefinition,
        incoming: str,
        strategy: MergeStrategy,
        ctx: GenerationContext,
        managed: dict[str, str],
        descriptor: Optional[TemplateDescriptor] = None,
    ) -> None:
        if path not in file_set:
            self._seed_from_disk(file_set, path, module, strategy, ctx.target_directory, managed)
        req = MergeRequest(
            path=path, module=module.name, strategy=strategy, context=ctx, descriptor=descriptor,
        )
        merged = apply_merge(file_set.get(path), incoming, req)
        file_set.put(path, merged, module.name)
        file_set.warnings.extend(req.warnings)

    def _seed_from_disk(
        self,
        file_set: GeneratedFileSet,
        path: str,
        module: ModuleDefinition,
        strategy: MergeStrategy,
        target: Path,
        managed: dict[str, str],
    ) -> None:
        """Start the fold from the file on disk, unless it is our own untouched output."""
        existing = Path(target) / path
        if not existing.is_file():
            return
        try:
            content = existing.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            if strategy is MergeStrategy.REPLACE:
                return
            raise MergeError(
                path, module.name, strategy.value, "existing file is not UTF-8 text"
            ) from exc
        if managed.get(path) == content_digest(content):
            logger.debug("Regenerating %s: unchanged since the last generation", path)
            return
        logger.debug("Starting %s from existing file on disk", path)
        file_set.seed(path, content)

    def _merge_dependencies(
        self,
        file_set: GeneratedFileSet,
        module: ModuleDefinition,
        ctx: GenerationContext,
        managed: dict[str, str],
    ) -> None:
        entries: dict[str, dict[str, str]] = {}
        if module.dependencies:
            entries["dependencies"] = dict(module.dependencies)
        if module.dev_dependencies:
            entries["devDependencies"] = dict(module.dev_dependencies)
        if not entries:
            return
        self._fold(
            file_set,
            self.config.dependency_manifest,
            module,
            dump_json(entries),
            MergeStrategy.MERGE_PACKAGE,
            ctx,
            managed,
        )
