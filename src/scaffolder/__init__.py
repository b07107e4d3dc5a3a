"""Stack Composer scaffolder -- renders, merges and writes module contributions.

Takes a :class:`~src.resolver.ResolvedStack` and a
:class:`~src.registry.GenerationContext`, folds every module's file templates
into one validated :class:`GeneratedFileSet`, and commits it to disk
all-or-nothing.

Quick usage::

    from src.scaffolder import TemplateGenerator

    generator = TemplateGenerator(config)
    file_set = generator.generate(stack, context)
    written = await generator.write(file_set, context.target_directory)
"""

from src.scaffolder.filesets import GeneratedFileSet
from src.scaffolder.generator import TemplateGenerator
from src.scaffolder.merge import STRATEGIES, MergeRequest, apply_merge
from src.scaffolder.staging import GenerationLock, commit_file_set, load_managed
from src.scaffolder.templates import HELPERS, TemplateRenderer, find_residual_syntax, parse

__all__ = [
    "GeneratedFileSet",
    "GenerationLock",
    "HELPERS",
    "MergeRequest",
    "STRATEGIES",
    "TemplateGenerator",
    "TemplateRenderer",
    "apply_merge",
    "commit_file_set",
    "find_residual_syntax",
    "load_managed",
    "parse",
]
