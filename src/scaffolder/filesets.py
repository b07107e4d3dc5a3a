"""In-memory output tree with per-path provenance."""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from pathlib import PurePosixPath

import yaml

from src.errors import FileSetValidationError, StackWarning

from .templates import find_residual_syntax


class GeneratedFileSet:
    """Maps output paths to content and records which modules contributed.

    ``preexisting`` holds the paths whose fold started from content already on
    disk; those paths may carry user-authored text.
    """

    def __init__(self) -> None:
        self.files: dict[str, str] = {}
        self.contributors: dict[str, list[str]] = {}
        self.preexisting: set[str] = set()
        self.warnings: list[StackWarning] = []
        self.literals: dict[str, set[str]] = {}

    def get(self, path: str) -> str | None:
        return self.files.get(path)

    def seed(self, path: str, content: str) -> None:
        """Start the fold for *path* from content that already exists on disk."""
        self.files[path] = content
        self.preexisting.add(path)
        self.contributors.setdefault(path, [])

    def put(self, path: str, content: str, module: str) -> None:
        self.files[path] = content
        owners = self.contributors.setdefault(path, [])
        if module not in owners:
            owners.append(module)

    def allow_literals(self, path: str, tags: Iterable[str]) -> None:
        """Accept *tags* in *path* as intended output rather than leftover syntax."""
        self.literals.setdefault(path, set()).update(tags)

    def paths(self) -> list[str]:
        return sorted(self.files)

    def by_module(self, module: str) -> list[str]:
        """Paths *module* contributed to."""
        return sorted(p for p, owners in self.contributors.items() if module in owners)

    def validate(self) -> None:
        """Check the whole set is fit to be flushed.

        Raises:
            FileSetValidationError: Listing every problem found.
        """
        problems: dict[str, str] = {}
        for path in self.paths():
            content = self.files[path]
            residue = find_residual_syntax(content, self.literals.get(path, ()))
            if residue is not None:
                problems[path] = f"unrendered template syntax {residue!r}"
                continue
            suffix = PurePosixPath(path).suffix.lower()
            try:
                if suffix == ".json":
                    json.loads(content)
                elif suffix in (".yml", ".yaml"):
                    yaml.safe_load(content)
            except (json.JSONDecodeError, yaml.YAMLError) as exc:
                problems[path] = f"does not parse: {exc}"
        if problems:
            raise FileSetValidationError(problems)

    def __contains__(self, path: object) -> bool:
        return path in self.files

    def __iter__(self) -> Iterator[str]:
        return iter(self.paths())

    def __len__(self) -> int:
        return len(self.files)

    def __repr__(self) -> str:
        return f"GeneratedFileSet({len(self.files)} files)"
