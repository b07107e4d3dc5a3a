"""Module registry: discovery, validation and indexed lookup.

Discovery is partial-failure tolerant.  A manifest that fails validation is
recorded in :attr:`ModuleRegistry.errors` and skipped; a duplicate name is
rejected with a :class:`~src.errors.DuplicateModuleWarning` and the first
registration wins.  Search paths are scanned concurrently, but results are
applied in search-path order so the outcome never depends on which scan
finishes first.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Optional, Union

from src.config import Config
from src.errors import DuplicateModuleWarning, StackWarning, ValidationError

from .manifest import find_manifests, load_manifest
from .models import Category, ModuleDefinition

logger = logging.getLogger(__name__)

ScanResult = list[tuple[Path, Union[ModuleDefinition, ValidationError]]]


def _scan_path(root: Path) -> ScanResult:
    """Load every manifest under *root* (runs in a worker thread)."""
    results: ScanResult = []
    for manifest in find_manifests(root):
        try:
            results.append((manifest, load_manifest(manifest)))
        except ValidationError as exc:
            results.append((manifest, exc))
    return results


class ModuleRegistry:
    """Owns every known :class:`ModuleDefinition` and the lookup indices.

    The registry is an explicit value: create as many as needed (tests build
    small ones from definitions) and pass it to the resolver and generator.
    """

    def __init__(self, config: Config | None = None) -> None:
        self.config = config or Config()
        self.warnings: list[StackWarning] = []
        self.errors: list[ValidationError] = []
        self._modules: dict[str, ModuleDefinition] = {}
        self._by_category: dict[str, tuple[ModuleDefinition, ...]] = {}
        self._by_capability: dict[str, tuple[ModuleDefinition, ...]] = {}

    @classmethod
    def from_definitions(
        cls,
        definitions: Iterable[ModuleDefinition],
        config: Config | None = None,
    ) -> "ModuleRegistry":
        """Build a registry from already constructed definitions."""
        registry = cls(config)
        for definition in definitions:
            registry._add(definition)
        registry._rebuild_indices()
        return registry

    # -- Discovery ---------------------------------------------------------

    async def discover(self, search_paths: Iterable[str | Path] | None = None) -> "ModuleRegistry":
        """Scan *search_paths* (default: ``config.search_paths``) for manifests.

        Returns the registry itself so calls can be chained.
        """
        paths: list[Path] = []
        for raw in search_paths if search_paths is not None else self.config.search_paths:
            path = Path(raw).resolve()
            if path not in paths:
                paths.append(path)

        existing: list[Path] = []
        for path in paths:
            if path.is_dir():
                existing.append(path)
            else:
                self.warnings.append(StackWarning(
                    code="missing-search-path",
                    message=f"Module search path does not exist: {path}",
                    details={"path": str(path)},
                ))
                logger.warning("Module search path does not exist: %s", path)

        scans = await asyncio.gather(*(asyncio.to_thread(_scan_path, p) for p in existing))

        for path, results in zip(existing, scans):
            logger.debug("Scanned %s: %d manifest(s)", path, len(results))
            for manifest, outcome in results:
                if isinstance(outcome, ValidationError):
                    self.errors.append(outcome)
                    self.warnings.append(StackWarning(
                        code="invalid-manifest",
                        message=str(outcome),
                        module=outcome.module_name,
                        details={"manifest": str(manifest), "problems": outcome.problems},
                    ))
                    logger.warning("Skipping invalid manifest %s", manifest)
                else:
                    self._add(outcome)

        self._rebuild_indices()
        return self

    def register(self, definition: ModuleDefinition) -> bool:
        """Register one definition; returns ``False`` if the name was taken."""
        added = self._add(definition)
        self._rebuild_indices()
        return added

    def _add(self, definition: ModuleDefinition) -> bool:
        existing = self._modules.get(definition.name)
        if existing is not None:
            kept = str(existing.source) if existing.source else "<registered>"
            rejected = str(definition.source) if definition.source else "<registered>"
            self.warnings.append(DuplicateModuleWarning(
                message=(
                    f"Duplicate module '{definition.name}' from {rejected} ignored; "
                    f"keeping the definition from {kept}"
                ),
                module=definition.name,
                kept_source=kept,
                rejected_source=rejected,
            ))
            logger.warning("Duplicate module %s ignored (%s)", definition.name, rejected)
            return False
        self._modules[definition.name] = definition
        return True

    def _rebuild_indices(self) -> None:
        by_category: dict[str, list[ModuleDefinition]] = {}
        by_capability: dict[str, list[ModuleDefinition]] = {}
        for name in sorted(self._modules):
            module = self._modules[name]
            by_category.setdefault(module.category.value, []).append(module)
            for capability in module.provides:
                by_capability.setdefault(capability, []).append(module)
        self._by_category = {k: tuple(v) for k, v in by_category.items()}
        self._by_capability = {k: tuple(v) for k, v in by_capability.items()}

    # -- Lookup ------------------------------------------------------------

    def get(self, name: str) -> Optional[ModuleDefinition]:
        return self._modules.get(name)

    def by_category(self, category: Union[str, Category]) -> tuple[ModuleDefinition, ...]:
        key = category.value if isinstance(category, Category) else category
        return self._by_category.get(key, ())

    def by_capability(self, capability: str) -> tuple[ModuleDefinition, ...]:
        """Modules declaring *capability* in ``provides``, sorted by name."""
        return self._by_capability.get(capability, ())

    def providers_of(self, requirement: str) -> list[str]:
        """Names of every module satisfying *requirement* (by name or capability)."""
        names = {m.name for m in self.by_capability(requirement)}
        if requirement in self._modules:
            names.add(requirement)
        return sorted(names)

    def names(self) -> list[str]:
        return sorted(self._modules)

    def categories(self) -> list[str]:
        return sorted(self._by_category)

    def capabilities(self) -> list[str]:
        return sorted(self._by_capability)

    def __contains__(self, name: object) -> bool:
        return name in self._modules

    def __len__(self) -> int:
        return len(self._modules)

    def __iter__(self) -> Iterator[ModuleDefinition]:
        return (self._modules[name] for name in sorted(self._modules))
