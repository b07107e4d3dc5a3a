"""Stack Composer module registry.

Loads module manifests from a set of search locations, validates them, and
indexes them for lookup by name, category and capability.

Quick usage::

    from src.registry import ModuleRegistry

    registry = await ModuleRegistry().discover(["./modules"])
    registry.get("react")
    registry.by_capability("frontend-framework")
"""

from src.registry.manifest import ManifestCondition, ModuleManifest, build_definition, load_manifest
from src.registry.models import (
    Category,
    GenerationContext,
    MergeStrategy,
    ModuleDefinition,
    TemplateDescriptor,
    infer_strategy,
)
from src.registry.registry import ModuleRegistry

__all__ = [
    "Category",
    "GenerationContext",
    "ManifestCondition",
    "MergeStrategy",
    "ModuleDefinition",
    "ModuleManifest",
    "ModuleRegistry",
    "TemplateDescriptor",
    "build_definition",
    "infer_strategy",
    "load_manifest",
]
