"""Module manifest schema and loading.

A manifest (``module.json``, ``module.yaml`` or ``module.yml``) is validated
against :class:`ModuleManifest` and turned into a frozen
:class:`~src.registry.models.ModuleDefinition`.  Template sources are read
here, at discovery time, so generation never touches module directories.

Manifest example (YAML)::

    name: tailwind
    version: 3.4.0
    category: ui-library
    provides: [styling, ui-library]
    requires: [frontend-framework]
    dependencies:
      tailwindcss: ^3.4.0
    files:
      tailwind.config.js:
        source: files/tailwind.config.js.template
        template: true
      src/index.css:
        content: "@tailwind base;"
        merge: prepend
"""

from __future__ import annotations

import importlib
import json
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StrictInt,
    StrictStr,
    field_validator,
)
from pydantic import ValidationError as PydanticValidationError

from src.errors import ValidationError

from .models import (
    Category,
    GenerationContext,
    MergeStrategy,
    ModuleDefinition,
    TemplateDescriptor,
)


MANIFEST_NAMES: tuple[str, ...] = ("module.json", "module.yaml", "module.yml")
TEMPLATES_DIR = "templates"
HOOK_NAMES: tuple[str, ...] = ("before_apply", "after_apply")


# ---------------------------------------------------------------------------
# Declarative conditions
# ---------------------------------------------------------------------------


class ManifestCondition:
    """Callable condition built from a manifest's ``condition`` field.

    Supported forms::

        "typescript"                          truthy user option / variable
        "!typescript"                         negation
        {"option": "styling", "equals": "css"}
        {"capability": "database"}
        {"module": "supabase"}
    """

    def __init__(self, declared: Union[str, dict[str, Any]]) -> None:
        self.declared = declared
        if isinstance(declared, str):
            text = declared.strip()
            self.negate = text.startswith("!")
            self.kind = "flag"
            self.key = text.lstrip("!").strip()
            self.expected: Any = None
            if not self.key:
                raise ValueError("empty condition")
            return
        kinds = [k for k in ("option", "capability", "module") if k in declared]
        if len(kinds) != 1:
            raise ValueError("condition needs exactly one of: option, capability, module")
        unknown = set(declared) - {"option", "capability", "module", "equals", "not"}
        if unknown:
            raise ValueError(f"unknown condition key(s): {', '.join(sorted(unknown))}")
        self.kind = kinds[0]
        self.key = str(declared[self.kind])
        self.expected = declared.get("equals")
        self.negate = bool(declared.get("not", False))

    def __call__(self, context: GenerationContext) -> bool:
        if self.kind == "capability":
            result = context.has_capability(self.key)
        elif self.kind == "module":
            result = context.has_module(self.key)
        elif self.kind == "option" and self.expected is not None:
            result = context.lookup(self.key) == self.expected
        else:
            result = bool(context.lookup(self.key))
        return not result if self.negate else result

    def __repr__(self) -> str:
        return f"ManifestCondition({self.declared!r})"


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


class FileEntry(BaseModel):
    """One entry of a manifest's ``files`` map."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    content: Optional[Union[StrictStr, dict[str, Any], list[Any]]] = None
    source: Optional[StrictStr] = Field(default=None, validation_alias=AliasChoices("source", "src"))
    template: Optional[bool] = None
    merge: Optional[MergeStrategy] = None
    condition: Optional[Union[StrictStr, dict[str, Any]]] = None

    @field_validator("merge")
    @classmethod
    def _no_custom(cls, value: Optional[MergeStrategy]) -> Optional[MergeStrategy]:
        if value is MergeStrategy.CUSTOM:
            raise ValueError("'custom' merges can only be registered from Python")
        return value


class ModuleManifest(BaseModel):
    """Schema every discovered manifest must satisfy."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    name: StrictStr = Field(..., pattern=r"^[a-z0-9][a-z0-9._-]*$", max_length=64)
    version: StrictStr = Field(..., min_length=1)
    category: Category
    description: StrictStr = ""
    display_name: Optional[StrictStr] = Field(
        default=None, validation_alias=AliasChoices("display_name", "displayName")
    )
    provides: list[StrictStr] = Field(default_factory=list)
    requires: list[StrictStr] = Field(default_factory=list)
    conflicts_with: list[StrictStr] = Field(
        default_factory=list,
        validation_alias=AliasChoices("conflicts_with", "conflictsWith", "incompatible"),
    )
    recommends: list[StrictStr] = Field(default_factory=list)
    compatible_with: list[StrictStr] = Field(
        default_factory=list,
        validation_alias=AliasChoices("compatible_with", "compatibleWith", "compatible"),
    )
    priority: StrictInt = 0
    dependencies: dict[str, StrictStr] = Field(default_factory=dict)
    dev_dependencies: dict[str, StrictStr] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("dev_dependencies", "devDependencies"),
    )
    variables: dict[str, Any] = Field(default_factory=dict)
    hooks: dict[str, StrictStr] = Field(default_factory=dict)
    files: dict[str, FileEntry] = Field(default_factory=dict)

    @field_validator("hooks")
    @classmethod
    def _known_hooks(cls, value: dict[str, str]) -> dict[str, str]:
        unknown = set(value) - set(HOOK_NAMES)
        if unknown:
            raise ValueError(f"unknown hook(s): {', '.join(sorted(unknown))}")
        return value

    @field_validator("files")
    @classmethod
    def _relative_targets(cls, value: dict[str, FileEntry]) -> dict[str, FileEntry]:
        for target in value:
            check_target_path(target)
        return value


def check_target_path(target: str) -> str:
    """Reject output paths that would escape the project directory."""
    path = Path(target)
    if not target or path.is_absolute() or ".." in path.parts:
        raise ValueError(f"output path must be relative and inside the project: {target!r}")
    return target


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def find_manifests(root: Path) -> list[Path]:
    """Return every manifest under *root*, sorted for deterministic discovery."""
    found: list[Path] = []
    for name in MANIFEST_NAMES:
        found.extend(p for p in root.rglob(name) if p.is_file())
    return sorted(found)


def read_manifest(path: Path) -> dict[str, Any]:
    """Parse a manifest file into a mapping, raising ``ValidationError``."""
    try:
        raw = path.read_text(encoding="utf-8")
        data = yaml.safe_load(raw) if path.suffix in (".yaml", ".yml") else json.loads(raw)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ValidationError(path, [f"unreadable manifest: {exc}"]) from exc
    if not isinstance(data, dict):
        raise ValidationError(path, ["manifest must be a mapping at the top level"])
    return data


def load_manifest(path: Path) -> ModuleDefinition:
    """Load, validate and build the module defined by the manifest at *path*."""
    data = read_manifest(path)
    return build_definition(data, path)


def build_definition(data: dict[str, Any], manifest_path: Optional[Path] = None) -> ModuleDefinition:
    """Validate raw manifest data and build a ``ModuleDefinition``.

    Raises:
        ValidationError: With every schema problem found, not just the first.
    """
    name_hint = data.get("name") if isinstance(data.get("name"), str) else None
    try:
        manifest = ModuleManifest.model_validate(data)
    except PydanticValidationError as exc:
        problems = [
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in exc.errors()
        ]
        raise ValidationError(manifest_path, problems, module_name=name_hint) from exc

    base_dir = manifest_path.parent if manifest_path else Path.cwd()
    problems: list[str] = []

    file_templates: dict[str, TemplateDescriptor] = {}
    for target, entry in manifest.files.items():
        try:
            file_templates[target] = _descriptor_from_entry(target, entry, base_dir)
        except (OSError, ValueError) as exc:
            problems.append(f"files.{target}: {exc}")

    if manifest_path is not None:
        for target, descriptor in _scan_templates_dir(base_dir / TEMPLATES_DIR, problems):
            file_templates.setdefault(target, descriptor)

    hooks: dict[str, Any] = {}
    for hook_name, import_path in manifest.hooks.items():
        try:
            hooks[hook_name] = import_hook(import_path)
        except (ImportError, AttributeError, ValueError) as exc:
            problems.append(f"hooks.{hook_name}: cannot import {import_path!r}: {exc}")

    if problems:
        raise ValidationError(manifest_path, problems, module_name=manifest.name)

    return ModuleDefinition(
        name=manifest.name,
        version=manifest.version,
        category=manifest.category,
        description=manifest.description,
        provides=frozenset(manifest.provides),
        requires=frozenset(manifest.requires),
        conflicts_with=frozenset(manifest.conflicts_with),
        recommends=frozenset(manifest.recommends),
        compatible_with=frozenset(manifest.compatible_with),
        priority=manifest.priority,
        dependencies=dict(manifest.dependencies),
        dev_dependencies=dict(manifest.dev_dependencies),
        variables=dict(manifest.variables),
        file_templates=file_templates,
        before_apply=hooks.get("before_apply"),
        after_apply=hooks.get("after_apply"),
        source=manifest_path,
    )


def _descriptor_from_entry(target: str, entry: FileEntry, base_dir: Path) -> TemplateDescriptor:
    if (entry.content is None) == (entry.source is None):
        raise ValueError("exactly one of 'content' or 'source' is required")

    source_path: Optional[Path] = None
    if entry.source is not None:
        source_path = (base_dir / entry.source).resolve()
        if not source_path.is_file():
            raise ValueError(f"source file not found: {entry.source}")
        text = source_path.read_text(encoding="utf-8")
        is_template = True if entry.template is None else entry.template
    elif isinstance(entry.content, str):
        text = entry.content
        is_template = bool(entry.template)
    else:
        text = json.dumps(entry.content, indent=2)
        is_template = bool(entry.template)

    return TemplateDescriptor(
        source=text,
        is_template=is_template,
        merge_strategy=entry.merge,
        condition=ManifestCondition(entry.condition) if entry.condition is not None else None,
        source_path=source_path,
    )


def _scan_templates_dir(
    templates_dir: Path, problems: list[str]
) -> list[tuple[str, TemplateDescriptor]]:
    """Collect ``templates/`` files: ``*.template`` render, ``*.merge`` deep-merge JSON."""
    if not templates_dir.is_dir():
        return []
    entries: list[tuple[str, TemplateDescriptor]] = []
    for file in sorted(p for p in templates_dir.rglob("*") if p.is_file()):
        rel = file.relative_to(templates_dir).as_posix()
        is_template = False
        strategy: Optional[MergeStrategy] = None
        if rel.endswith(".template"):
            rel = rel[: -len(".template")]
            is_template = True
        elif rel.endswith(".merge"):
            rel = rel[: -len(".merge")]
            strategy = MergeStrategy.MERGE_JSON
        try:
            text = file.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            problems.append(f"{TEMPLATES_DIR}/{rel}: {exc}")
            continue
        entries.append(
            (rel, TemplateDescriptor(
                source=text,
                is_template=is_template,
                merge_strategy=strategy,
                source_path=file,
            ))
        )
    return entries


def import_hook(import_path: str) -> Any:
    """Import ``package.module:function`` and return the callable."""
    module_name, sep, attr = import_path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError("expected 'package.module:function'")
    target: Any = importlib.import_module(module_name)
    for part in attr.split("."):
        target = getattr(target, part)
    if not callable(target):
        raise ValueError(f"{import_path} is not callable")
    return target
