"""Shared pytest fixtures for the Stack Composer test suite.

Provides reusable fixtures for:
- Building ``ModuleDefinition`` values and small registries in memory
- Writing module manifests (and template files) to a temporary search path
- A generation context pointing at a temporary target directory
"""

from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Any, Callable

import pytest
import yaml

from src.config import Config
from src.registry import (
    Category,
    GenerationContext,
    ModuleDefinition,
    ModuleRegistry,
    TemplateDescriptor,
)


# ---------------------------------------------------------------------------
# In-memory modules
# ---------------------------------------------------------------------------


def build_module(
    name: str,
    category: str = "other",
    *,
    version: str = "1.0.0",
    provides: tuple[str, ...] = (),
    requires: tuple[str, ...] = (),
    conflicts_with: tuple[str, ...] = (),
    recommends: tuple[str, ...] = (),
    compatible_with: tuple[str, ...] = (),
    priority: int = 0,
    files: dict[str, Any] | None = None,
    **extra: Any,
) -> ModuleDefinition:
    """Create a ModuleDefinition; plain-string files become templated entries."""
    templates: dict[str, TemplateDescriptor] = {}
    for path, value in (files or {}).items():
        if isinstance(value, TemplateDescriptor):
            templates[path] = value
        else:
            templates[path] = TemplateDescriptor(source=value, is_template=True)
    return ModuleDefinition(
        name=name,
        version=version,
        category=Category(category),
        provides=frozenset(provides),
        requires=frozenset(requires),
        conflicts_with=frozenset(conflicts_with),
        recommends=frozenset(recommends),
        compatible_with=frozenset(compatible_with),
        priority=priority,
        file_templates=templates,
        **extra,
    )


@pytest.fixture
def make_module() -> Callable[..., ModuleDefinition]:
    """Factory fixture wrapping :func:`build_module`."""
    return build_module


@pytest.fixture
def make_registry() -> Callable[..., ModuleRegistry]:
    def _make(*modules: ModuleDefinition, config: Config | None = None) -> ModuleRegistry:
        return ModuleRegistry.from_definitions(modules, config)
    return _make


@pytest.fixture
def scenario_registry() -> ModuleRegistry:
    """Two interchangeable frameworks and a UI kit that needs one of them."""
    return ModuleRegistry.from_definitions([
        build_module(
            "frame-a", "frontend-framework", provides=("frontend-framework",), priority=10,
        ),
        build_module(
            "frame-b", "frontend-framework", provides=("frontend-framework",), priority=10,
        ),
        build_module(
            "ui-kit", "ui-library", requires=("frontend-framework",), priority=50,
        ),
    ])


# ---------------------------------------------------------------------------
# On-disk manifests
# ---------------------------------------------------------------------------


@pytest.fixture
def modules_dir(tmp_path: Path) -> Path:
    """Empty module search path."""
    path = tmp_path / "modules"
    path.mkdir()
    return path


@pytest.fixture
def write_manifest(modules_dir: Path) -> Callable[..., Path]:
    """Write ``<modules_dir>/<dir>/module.yaml`` plus optional extra files.

    Returns the manifest path.
    """
    def _write(
        data: dict[str, Any],
        *,
        directory: str | None = None,
        files: dict[str, str] | None = None,
        root: Path | None = None,
        filename: str = "module.yaml",
    ) -> Path:
        module_dir = (root or modules_dir) / (directory or str(data.get("name", "module")))
        module_dir.mkdir(parents=True, exist_ok=True)
        for rel, content in (files or {}).items():
            target = module_dir / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(textwrap.dedent(content), encoding="utf-8")
        manifest = module_dir / filename
        manifest.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
        return manifest
    return _write


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


@pytest.fixture
def target_dir(tmp_path: Path) -> Path:
    """Project directory that does not exist yet."""
    return tmp_path / "out" / "my-app"


@pytest.fixture
def context(target_dir: Path) -> GenerationContext:
    return GenerationContext(project_name="My App", target_directory=target_dir)


@pytest.fixture
def config() -> Config:
    return Config(lock_timeout=0.2)
