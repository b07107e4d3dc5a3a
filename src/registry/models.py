"""Pydantic v2 models for the composition engine's shared data model.

Module definitions and template descriptors are frozen once built: the
registry hands out the same instances to every resolution and generation run.
The generation context is the only mutable model here; it accumulates
template variables while a run progresses.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Category(str, Enum):
    """Broad role a module plays in a stack."""
    FRONTEND_FRAMEWORK = "frontend-framework"
    UI_LIBRARY = "ui-library"
    BACKEND_FRAMEWORK = "backend-framework"
    BACKEND_SERVICE = "backend-service"
    DATABASE = "database"
    AUTH_PROVIDER = "auth-provider"
    STATE_MANAGEMENT = "state-management"
    DEPLOYMENT = "deployment"
    TESTING = "testing"
    OTHER = "other"


class MergeStrategy(str, Enum):
    """How an incoming contribution is folded into an output file.

    ``CUSTOM`` is only valid together with a ``custom_merge`` function on the
    descriptor.
    """
    REPLACE = "replace"
    APPEND = "append"
    APPEND_UNIQUE = "append-unique"
    PREPEND = "prepend"
    MERGE_JSON = "merge-json"
    MERGE_JSON_SHALLOW = "merge-json-shallow"
    MERGE_YAML = "merge-yaml"
    MERGE_PACKAGE = "merge-package"
    MERGE_ENV = "merge-env"
    MERGE_ROUTES = "merge-routes"
    MERGE_CONFIG = "merge-config"
    CUSTOM = "custom"


_APPEND_UNIQUE_FILES = {".gitignore", ".dockerignore", ".npmignore", ".prettierignore"}


def infer_strategy(path: str) -> MergeStrategy:
    """Pick a merge strategy from an output path when none was declared."""
    name = PurePosixPath(path).name
    suffix = PurePosixPath(path).suffix.lower()
    if name == "package.json":
        return MergeStrategy.MERGE_PACKAGE
    if suffix == ".json":
        return MergeStrategy.MERGE_JSON
    if suffix in (".yml", ".yaml"):
        return MergeStrategy.MERGE_YAML
    if name == ".env" or name.startswith(".env."):
        return MergeStrategy.MERGE_ENV
    if name in _APPEND_UNIQUE_FILES:
        return MergeStrategy.APPEND_UNIQUE
    if suffix == ".md":
        return MergeStrategy.APPEND
    return MergeStrategy.REPLACE


# ---------------------------------------------------------------------------
# Generation context
# ---------------------------------------------------------------------------


class GenerationContext(BaseModel):
    """Per-run parameters and the variables visible to templates."""

    project_name: str = Field(..., min_length=1)
    target_directory: Path = Field(..., description="Directory the project is written to")
    user_options: dict[str, Any] = Field(
        default_factory=dict,
        description="Flat key/value choices made by the user, e.g. typescript=True",
    )
    variables: dict[str, Any] = Field(default_factory=dict)

    def option(self, key: str, default: Any = None) -> Any:
        """Return a user option, falling back to *default*."""
        return self.user_options.get(key, default)

    def lookup(self, dotted: str, default: Any = None) -> Any:
        """Resolve ``a.b.c`` against variables first, then user options."""
        for root in (self.variables, self.user_options):
            found, value = _dig(root, dotted.split("."))
            if found:
                return value
        return default

    def has_capability(self, capability: str) -> bool:
        return capability in self.variables.get("capabilities", {})

    def has_module(self, name: str) -> bool:
        return name in self.variables.get("modules", [])


def _dig(root: Any, parts: list[str]) -> tuple[bool, Any]:
    current = root
    for part in parts:
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return False, None
    return True, current


# ---------------------------------------------------------------------------
# Templates and modules
# ---------------------------------------------------------------------------


ConditionFn = Callable[[GenerationContext], bool]
CustomMergeFn = Callable[[Optional[str], str, GenerationContext], str]


class TemplateDescriptor(BaseModel):
    """One file contribution of a module."""

    model_config = ConfigDict(frozen=True)

    source: str = Field(..., description="Raw content (already read from disk)")
    is_template: bool = Field(default=False, description="Render through the template language")
    merge_strategy: Optional[MergeStrategy] = Field(
        default=None, description="Explicit strategy; inferred from the path when absent"
    )
    condition: Optional[ConditionFn] = Field(default=None)
    custom_merge: Optional[CustomMergeFn] = Field(default=None)
    source_path: Optional[Path] = Field(default=None, description="Where the source was read from")

    @model_validator(mode="after")
    def _custom_needs_function(self) -> "TemplateDescriptor":
        if self.merge_strategy is MergeStrategy.CUSTOM and self.custom_merge is None:
            raise ValueError("merge strategy 'custom' requires a custom_merge function")
        if self.custom_merge is not None and self.merge_strategy not in (None, MergeStrategy.CUSTOM):
            raise ValueError("custom_merge is only used with merge strategy 'custom'")
        return self

    def applies(self, context: GenerationContext) -> bool:
        return True if self.condition is None else bool(self.condition(context))

    def strategy_for(self, path: str) -> MergeStrategy:
        if self.custom_merge is not None:
            return MergeStrategy.CUSTOM
        return self.merge_strategy or infer_strategy(path)


HookFn = Callable[..., Any]


class ModuleDefinition(BaseModel):
    """An immutable, registry-owned description of one module."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    version: str
    category: Category
    description: str = ""
    provides: frozenset[str] = Field(default_factory=frozenset)
    requires: frozenset[str] = Field(default_factory=frozenset)
    conflicts_with: frozenset[str] = Field(default_factory=frozenset)
    recommends: frozenset[str] = Field(default_factory=frozenset)
    compatible_with: frozenset[str] = Field(default_factory=frozenset)
    priority: int = 0
    dependencies: dict[str, str] = Field(default_factory=dict)
    dev_dependencies: dict[str, str] = Field(default_factory=dict)
    variables: dict[str, Any] = Field(default_factory=dict)
    file_templates: dict[str, TemplateDescriptor] = Field(default_factory=dict)
    before_apply: Optional[HookFn] = None
    after_apply: Optional[HookFn] = None
    source: Optional[Path] = Field(default=None, description="Manifest the module was loaded from")

    @property
    def dependency_manifest_entries(self) -> dict[str, str]:
        """Runtime dependency declarations (name -> version)."""
        return self.dependencies

    def satisfies(self, requirement: str) -> bool:
        """True when *requirement* names this module or one of its capabilities."""
        return requirement == self.name or requirement in self.provides

    def __repr__(self) -> str:
        return f"ModuleDefinition({self.name!r}, {self.version!r}, {self.category.value!r})"
