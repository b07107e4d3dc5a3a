"""The resolver's output value."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from src.errors import StackWarning
from src.registry.models import ModuleDefinition


class ResolvedStack(BaseModel):
    """Ordered, conflict-free, dependency-complete module list.

    Created fresh by every ``resolve`` call and never mutated afterwards.
    """

    model_config = ConfigDict(frozen=True)

    ordered_modules: tuple[ModuleDefinition, ...] = Field(default_factory=tuple)
    warnings: tuple[StackWarning, ...] = Field(default_factory=tuple)
    provenance: dict[str, str] = Field(
        default_factory=dict,
        description="Module name -> 'selected' or why it was added",
    )

    @property
    def names(self) -> list[str]:
        return [m.name for m in self.ordered_modules]

    @property
    def capabilities(self) -> set[str]:
        return {cap for m in self.ordered_modules for cap in m.provides}

    def get(self, name: str) -> ModuleDefinition | None:
        for module in self.ordered_modules:
            if module.name == name:
                return module
        return None

    def explain(self, name: str) -> str:
        """Why *name* is part of the stack."""
        reason = self.provenance.get(name)
        if reason is None:
            raise KeyError(name)
        return reason

    def added_modules(self) -> list[str]:
        """Modules pulled in by requirements rather than selected directly."""
        return [n for n in self.names if self.provenance.get(n) != "selected"]

    def __len__(self) -> int:
        return len(self.ordered_modules)
