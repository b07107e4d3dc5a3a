"""Dependency resolution for module selections.

``resolve`` is a pure function of the selection (as a set) and the registry:
the same inputs always give the same :class:`ResolvedStack` or the same error,
whatever order the names were given in.  Each stage collects every problem it
finds before raising, so callers can show the full picture at once.

Stages:
1. Unknown names            -> ``UnknownModuleError``
2. Transitive expansion     -> ``MissingRequirementError``
3. Pairwise conflicts       -> ``ConflictError``
4. Cycle detection          -> ``CircularDependencyError``
5. Kahn ordering with (priority, category, name) tie-breaks
6. Advisory warnings
"""

from __future__ import annotations

import heapq
import logging
from collections.abc import Iterable

from src.config import Config
from src.errors import (
    CircularDependencyError,
    Conflict,
    ConflictError,
    MissingRequirement,
    MissingRequirementError,
    UnknownModuleError,
)
from src.registry.models import ModuleDefinition
from src.registry.registry import ModuleRegistry

from .advisories import compatibility_warnings
from .stack import ResolvedStack

logger = logging.getLogger(__name__)

SELECTED = "selected"


class DependencyResolver:
    """Turns a user's selection into an ordered :class:`ResolvedStack`."""

    def __init__(self, registry: ModuleRegistry, config: Config | None = None) -> None:
        self.registry = registry
        self.config = config or registry.config

    def resolve(self, selected_names: Iterable[str]) -> ResolvedStack:
        names = sorted(set(selected_names))

        unknown = [n for n in names if n not in self.registry]
        if unknown:
            raise UnknownModuleError(unknown)

        working, provenance = self._expand(names)

        conflicts = self._find_conflicts(working)
        if conflicts:
            raise ConflictError(conflicts)

        edges = self._dependency_edges(working)
        cycles = _find_cycles(edges)
        if cycles:
            raise CircularDependencyError(cycles)

        ordered = self._order(working, edges)
        warnings = compatibility_warnings(ordered)
        for warning in warnings:
            logger.debug("Advisory %s: %s", warning.code, warning.message)

        return ResolvedStack(
            ordered_modules=tuple(ordered),
            warnings=tuple(warnings),
            provenance={m.name: provenance[m.name] for m in ordered},
        )

    # -- Stage 2: transitive expansion -------------------------------------

    def _expand(
        self, names: list[str]
    ) -> tuple[dict[str, ModuleDefinition], dict[str, str]]:
        working: dict[str, ModuleDefinition] = {}
        provenance: dict[str, str] = {}
        for name in names:
            working[name] = self.registry.get(name)  # type: ignore[assignment]
            provenance[name] = SELECTED

        while True:
            added = False
            missing: list[MissingRequirement] = []
            for name in sorted(working):
                module = working[name]
                for requirement in sorted(module.requires):
                    if requirement == name or any(
                        m.satisfies(requirement) for m in working.values()
                    ):
                        continue
                    target = self.registry.get(requirement)
                    if target is not None:
                        working[target.name] = target
                        provenance[target.name] = f"required by {name}"
                        added = True
                        continue
                    providers = self.registry.providers_of(requirement)
                    if len(providers) == 1:
                        provider = self.registry.get(providers[0])
                        working[provider.name] = provider  # type: ignore[union-attr]
                        provenance[providers[0]] = (
                            f"provides '{requirement}' required by {name}"
                        )
                        added = True
                    else:
                        missing.append(MissingRequirement(
                            module=name, requirement=requirement, candidates=providers,
                        ))
            if not added:
                break

        if missing:
            raise MissingRequirementError(missing)
        return working, provenance

    # -- Stage 3: conflicts ------------------------------------------------

    def _find_conflicts(self, working: dict[str, ModuleDefinition]) -> list[Conflict]:
        conflicts: list[Conflict] = []
        names = sorted(working)
        for i, a_name in enumerate(names):
            a = working[a_name]
            for b_name in names[i + 1:]:
                b = working[b_name]
                conflict = self._pair_conflict(a, b)
                if conflict is not None:
                    conflicts.append(conflict)
        return conflicts

    def _pair_conflict(self, a: ModuleDefinition, b: ModuleDefinition) -> Conflict | None:
        if b.name in a.conflicts_with or a.name in b.conflicts_with:
            declarer = a.name if b.name in a.conflicts_with else b.name
            return Conflict(
                a=a.name, b=b.name, kind="declared",
                reason=f"{declarer} declares a conflict",
            )
        if a.category == b.category and self.config.is_singleton(a.category.value):
            return Conflict(
                a=a.name, b=b.name, kind="singleton",
                reason=f"only one {a.category.value} module is allowed",
            )
        shared = sorted(c for c in a.provides & b.provides if self.config.is_singleton(c))
        if shared:
            return Conflict(
                a=a.name, b=b.name, kind="singleton",
                reason=f"both provide singleton capability '{shared[0]}'",
            )
        return None

    # -- Stage 4/5: graph --------------------------------------------------

    def _dependency_edges(self, working: dict[str, ModuleDefinition]) -> dict[str, list[str]]:
        """Map each module to the modules it depends on inside the working set."""
        edges: dict[str, list[str]] = {}
        for name in sorted(working):
            deps: set[str] = set()
            for requirement in working[name].requires:
                deps.update(
                    other for other, m in working.items()
                    if other != name and m.satisfies(requirement)
                )
            edges[name] = sorted(deps)
        return edges

    def _order(
        self,
        working: dict[str, ModuleDefinition],
        edges: dict[str, list[str]],
    ) -> list[ModuleDefinition]:
        remaining = {name: len(deps) for name, deps in edges.items()}
        dependents: dict[str, list[str]] = {name: [] for name in edges}
        for name, deps in edges.items():
            for dep in deps:
                dependents[dep].append(name)

        def key(name: str) -> tuple[int, int, str]:
            module = working[name]
            return (-module.priority, self.config.category_rank(module.category.value), name)

        ready = [key(n) for n, count in remaining.items() if count == 0]
        heapq.heapify(ready)
        ordered: list[ModuleDefinition] = []
        while ready:
            _, _, name = heapq.heappop(ready)
            ordered.append(working[name])
            for dependent in dependents[name]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    heapq.heappush(ready, key(dependent))
        return ordered


def _find_cycles(edges: dict[str, list[str]]) -> list[list[str]]:
    """Every distinct cycle reachable by depth-first search, canonically rotated."""
    white, grey, black = 0, 1, 2
    colour = {name: white for name in edges}
    path: list[str] = []
    found: dict[tuple[str, ...], list[str]] = {}

    def visit(name: str) -> None:
        colour[name] = grey
        path.append(name)
        for dep in edges[name]:
            if colour[dep] == grey:
                cycle = path[path.index(dep):]
                pivot = cycle.index(min(cycle))
                canonical = cycle[pivot:] + cycle[:pivot]
                found.setdefault(tuple(canonical), canonical)
            elif colour[dep] == white:
                visit(dep)
        path.pop()
        colour[name] = black

    for name in sorted(edges):
        if colour[name] == white:
            visit(name)
    return [found[k] for k in sorted(found)]


def resolve(selected_names: Iterable[str], registry: ModuleRegistry) -> ResolvedStack:
    """Resolve *selected_names* against *registry*."""
    return DependencyResolver(registry).resolve(selected_names)
