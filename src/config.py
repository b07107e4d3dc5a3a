"""Stack Composer configuration.

Centralised, typed configuration for the composition engine. All settings use
Pydantic v2 models so they can be validated at construction time and serialised
to/from JSON or environment variables without boiler-plate.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator


BUILTIN_MODULES_DIR = Path(__file__).parent / "registry" / "builtin"

DEFAULT_CATEGORY_ORDER: list[str] = [
    "frontend-framework",
    "ui-library",
    "backend-framework",
    "backend-service",
    "database",
    "auth-provider",
    "state-management",
    "deployment",
    "testing",
    "other",
]

DEFAULT_SINGLETON_CATEGORIES: list[str] = [
    "frontend-framework",
    "backend-framework",
    "build-tool",
    "package-manager",
]


class Config(BaseModel):
    """Global Stack Composer configuration.

    Holds every tuneable parameter used by discovery, resolution and
    generation.  Instances are typically created once by ``Pipeline`` and then
    passed through the rest of the system.
    """

    search_paths: list[Path] = Field(
        default_factory=lambda: [BUILTIN_MODULES_DIR],
        description="Directories scanned recursively for module manifests",
    )
    singleton_categories: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SINGLETON_CATEGORIES),
        description="Categories (and same-named capabilities) allowed at most once per stack",
    )
    category_order: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CATEGORY_ORDER),
        description="Precedence used to break ordering ties between ready modules",
    )
    lock_timeout: float = Field(
        default=10.0, gt=0, description="Seconds to wait for the generation lock"
    )
    state_dir: str = Field(
        default=".stack-composer",
        description="Directory inside the target that records engine-managed files",
    )
    strict_variables: bool = Field(
        default=True, description="Unknown {{variables}} are render errors"
    )
    dependency_manifest: str = Field(
        default="package.json",
        description="Output file receiving every module's dependency entries",
    )

    @field_validator("state_dir", "dependency_manifest")
    @classmethod
    def _relative_path(cls, value: str) -> str:
        if not value or Path(value).is_absolute() or ".." in Path(value).parts:
            raise ValueError("must be a relative path inside the project")
        return value

    # ------------------------------------------------------------------
    # Derived helpers
    # ------------------------------------------------------------------

    def category_rank(self, category: str) -> int:
        """Position of *category* in the precedence order (unknown sorts last)."""
        try:
            return self.category_order.index(category)
        except ValueError:
            return len(self.category_order)

    def is_singleton(self, name: str) -> bool:
        """Whether a category or capability admits only one module."""
        return name in self.singleton_categories

    def manifest_path(self, target: Path) -> Path:
        """Path of the engine's generated-file manifest inside *target*."""
        return Path(target) / self.state_dir / "manifest.json"

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path) -> Path:
        """Persist the configuration to a JSON file.

        Returns:
            The path where the file was written.
        """
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load a previously-saved configuration from JSON."""
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "Config":
        """Build a ``Config`` from environment variables.

        Recognised variables (all optional):
            SC_SEARCH_PATHS (``os.pathsep`` separated), SC_LOCK_TIMEOUT,
            SC_STRICT_VARIABLES, SC_DEPENDENCY_MANIFEST.
        """
        kwargs: dict[str, Any] = {}
        if os.environ.get("SC_SEARCH_PATHS"):
            kwargs["search_paths"] = [
                Path(p) for p in os.environ["SC_SEARCH_PATHS"].split(os.pathsep) if p.strip()
            ]
        if os.environ.get("SC_LOCK_TIMEOUT"):
            kwargs["lock_timeout"] = float(os.environ["SC_LOCK_TIMEOUT"])
        if os.environ.get("SC_STRICT_VARIABLES"):
            kwargs["strict_variables"] = os.environ["SC_STRICT_VARIABLES"].strip().lower() in (
                "1", "true", "yes", "on",
            )
        if os.environ.get("SC_DEPENDENCY_MANIFEST"):
            kwargs["dependency_manifest"] = os.environ["SC_DEPENDENCY_MANIFEST"]
        return cls(**kwargs)
