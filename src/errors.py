"""Typed errors and warning records for the composition engine.

Every failure carries the identifying data (module names, conflicting pair,
cycle path, offending file) a presentation layer needs to render actionable
guidance.  Warnings are plain records: they are collected and surfaced, never
raised.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Warning records
# ---------------------------------------------------------------------------


class StackWarning(BaseModel):
    """A non-fatal advisory produced by discovery, resolution or generation."""

    code: str = Field(..., description="Stable machine-readable identifier")
    message: str = Field(..., description="Human-readable explanation")
    module: Optional[str] = Field(default=None, description="Module the warning concerns")
    path: Optional[str] = Field(default=None, description="Output path, if any")
    details: dict[str, Any] = Field(default_factory=dict)

    def __str__(self) -> str:
        return self.message


class DuplicateModuleWarning(StackWarning):
    """A second definition of an already registered module name was rejected."""

    code: str = "duplicate-module"
    kept_source: Optional[str] = None
    rejected_source: Optional[str] = None


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class StackError(Exception):
    """Base class for every error raised by the composition engine."""


# ---------------------------------------------------------------------------
# Load-time
# ---------------------------------------------------------------------------


class ValidationError(StackError):
    """A module manifest failed schema validation.

    Non-fatal to the registry as a whole: discovery records it and moves on.
    """

    def __init__(
        self,
        manifest_path: str | Path | None,
        problems: list[str],
        module_name: str | None = None,
    ) -> None:
        self.manifest_path = Path(manifest_path) if manifest_path else None
        self.module_name = module_name
        self.problems = list(problems)
        where = module_name or (str(self.manifest_path) if self.manifest_path else "<module>")
        super().__init__(f"Invalid module manifest {where}: " + "; ".join(self.problems))


# ---------------------------------------------------------------------------
# Resolution-time
# ---------------------------------------------------------------------------


class ResolutionError(StackError):
    """Base class for errors that make a selection unresolvable."""


class UnknownModuleError(ResolutionError):
    """One or more selected names are not in the registry."""

    def __init__(self, names: list[str]) -> None:
        self.names = sorted(set(names))
        super().__init__("Unknown module(s): " + ", ".join(self.names))


class MissingRequirement(BaseModel):
    """A requirement no selected or addable module satisfies."""

    module: str
    requirement: str
    candidates: list[str] = Field(
        default_factory=list,
        description="Registry modules that would satisfy the requirement",
    )

    def describe(self) -> str:
        text = f"{self.module} requires '{self.requirement}'"
        if self.candidates:
            text += " (select one of: " + ", ".join(self.candidates) + ")"
        else:
            text += " (no module provides it)"
        return text


class MissingRequirementError(ResolutionError):
    def __init__(self, missing: list[MissingRequirement]) -> None:
        self.missing = list(missing)
        super().__init__(
            "Unsatisfied requirement(s): " + "; ".join(m.describe() for m in self.missing)
        )


class Conflict(BaseModel):
    """Two modules that cannot coexist in one stack."""

    a: str
    b: str
    reason: str
    kind: str = Field(default="declared", description="'declared' or 'singleton'")


class ConflictError(ResolutionError):
    """The expanded selection contains mutually exclusive modules."""

    def __init__(self, conflicts: list[Conflict]) -> None:
        self.conflicts = list(conflicts)
        first = self.conflicts[0]
        self.a = first.a
        self.b = first.b
        self.reason = first.reason
        super().__init__(
            "Conflicting modules: " + "; ".join(
                f"{c.a} <-> {c.b} ({c.reason})" for c in self.conflicts
            )
        )


class CircularDependencyError(ResolutionError):
    """``requires`` edges inside the working set form a cycle.

    Each cycle lists its modules once, starting from the lexicographically
    smallest name, in dependency order.
    """

    def __init__(self, cycles: list[list[str]]) -> None:
        self.cycles = [list(c) for c in cycles]
        self.cycle = self.cycles[0]
        super().__init__(
            "Circular dependency: " + "; ".join(
                " -> ".join(c + c[:1]) for c in self.cycles
            )
        )

    @property
    def modules(self) -> list[str]:
        """Every module that sits on at least one cycle."""
        return sorted({name for cycle in self.cycles for name in cycle})


# ---------------------------------------------------------------------------
# Generation-time
# ---------------------------------------------------------------------------


class GenerationError(StackError):
    """Base class for failures that abort a whole generation run."""


class TemplateSyntaxError(GenerationError):
    def __init__(self, message: str, line: int | None = None) -> None:
        self.line = line
        self.reason = message
        suffix = f" (line {line})" if line is not None else ""
        super().__init__(f"{message}{suffix}")


class UndefinedVariableError(GenerationError):
    def __init__(self, name: str, line: int | None = None) -> None:
        self.name = name
        self.line = line
        suffix = f" (line {line})" if line is not None else ""
        super().__init__(f"Undefined template variable '{name}'{suffix}")


class RenderError(GenerationError):
    """A template could not be rendered for an output path."""

    def __init__(self, path: str, module: str, message: str) -> None:
        self.path = path
        self.module = module
        self.reason = message
        super().__init__(f"Cannot render {path} from module {module}: {message}")


class MergeError(GenerationError):
    def __init__(self, path: str, module: str, strategy: str, message: str) -> None:
        self.path = path
        self.module = module
        self.strategy = strategy
        self.reason = message
        super().__init__(
            f"Cannot merge {path} from module {module} using {strategy}: {message}"
        )


class HookError(GenerationError):
    def __init__(self, module: str, hook: str, message: str) -> None:
        self.module = module
        self.hook = hook
        self.reason = message
        super().__init__(f"{hook} hook of module {module} failed: {message}")


class FileSetValidationError(GenerationError):
    """The merged file set is not fit to be written."""

    def __init__(self, problems: dict[str, str]) -> None:
        self.problems = dict(sorted(problems.items()))
        super().__init__(
            "Generated files failed validation: "
            + "; ".join(f"{path}: {msg}" for path, msg in self.problems.items())
        )


class UnmanagedFilesError(GenerationError):
    """Writing would overwrite files this engine did not produce."""

    def __init__(self, paths: list[str]) -> None:
        self.paths = sorted(paths)
        super().__init__(
            "Refusing to overwrite files not created by a previous generation "
            "(pass overwrite=True to confirm): " + ", ".join(self.paths)
        )


class GenerationInProgressError(GenerationError):
    def __init__(self, target: str | Path, timeout: float) -> None:
        self.target = Path(target)
        self.timeout = timeout
        super().__init__(
            f"Generation already in progress for {self.target} "
            f"(lock still held after {timeout:g}s)"
        )
