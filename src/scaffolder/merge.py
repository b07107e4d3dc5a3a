"""Merge strategies for folding module contributions into one output file.

Every strategy has the same shape: given the current content of a path (or
``None`` when nothing exists yet) and a freshly rendered contribution, return
the new content.  Strategies never swallow a parse failure: malformed input
becomes a :class:`~src.errors.MergeError`, which aborts the generation run.

Structural strategies (``merge-routes``, ``merge-config``) locate a
recognisable skeleton in the target file, an array literal or an exported
configuration object, and splice entries into it instead of treating the
file as opaque text.
"""

from __future__ import annotations

import copy
import json
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Optional

import yaml

from src.errors import MergeError, StackWarning
from src.registry.models import GenerationContext, MergeStrategy, TemplateDescriptor
from src.utils import dump_json


DEPENDENCY_KEYS = frozenset({
    "dependencies",
    "devDependencies",
    "peerDependencies",
    "optionalDependencies",
    "dev_dependencies",
})
COMMON_SCRIPTS = ("build", "test", "dev", "start")


@dataclass
class MergeRequest:
    """Everything a strategy may need besides the two contents."""

    path: str
    module: str
    strategy: MergeStrategy
    context: GenerationContext
    descriptor: Optional[TemplateDescriptor] = None
    warnings: list[StackWarning] = field(default_factory=list)

    def warn(self, code: str, message: str, **details: Any) -> None:
        self.warnings.append(StackWarning(
            code=code, message=message, module=self.module, path=self.path, details=details,
        ))

    def fail(self, message: str) -> MergeError:
        return MergeError(self.path, self.module, self.strategy.value, message)


# ---------------------------------------------------------------------------
# Text strategies
# ---------------------------------------------------------------------------


def _ensure_newline(text: str) -> str:
    return text if not text or text.endswith("\n") else text + "\n"


def merge_replace(existing: Optional[str], incoming: str, req: MergeRequest) -> str:
    if existing is not None and existing != incoming:
        req.warn(
            "replace-diverged",
            f"{req.module} replaced different existing content of {req.path}",
        )
    return incoming


def merge_append(existing: Optional[str], incoming: str, req: MergeRequest) -> str:
    if not existing:
        return incoming
    return _ensure_newline(existing) + incoming


def merge_append_unique(existing: Optional[str], incoming: str, req: MergeRequest) -> str:
    if not existing:
        return incoming
    if not incoming.strip() or _has_block(existing, incoming):
        return existing
    return _ensure_newline(existing) + incoming


def _has_block(existing: str, block: str) -> bool:
    """True when *block* already occurs starting at a line boundary."""
    text = _ensure_newline(existing)
    block = _ensure_newline(block)
    return text.startswith(block) or ("\n" + block) in text


def merge_prepend(existing: Optional[str], incoming: str, req: MergeRequest) -> str:
    if not existing:
        return incoming
    return _ensure_newline(incoming) + existing


# ---------------------------------------------------------------------------
# Structured data strategies
# ---------------------------------------------------------------------------


def _item_identity(item: Any) -> Any:
    if isinstance(item, dict) and "name" in item:
        return ("name", json.dumps(item["name"], sort_keys=True))
    return ("value", json.dumps(item, sort_keys=True, default=str))


def merge_lists(
    base: list[Any],
    extra: list[Any],
    req: Optional[MergeRequest] = None,
    where: str = "",
) -> list[Any]:
    """Concatenate and de-duplicate; named dict items are replaced by the later one.

    A replaced item that differs is reported as ``dependency-version-override``
    when *req* is given.
    """
    result = list(base)
    index = {_item_identity(item): i for i, item in enumerate(result)}
    for item in extra:
        identity = _item_identity(item)
        if identity in index:
            previous = result[index[identity]]
            if req is not None and previous != item:
                name = item["name"]
                req.warn(
                    "dependency-version-override",
                    f"{req.module} replaces {name!r} in {where or 'the list'} of {req.path}",
                    key=where, name=name, previous=previous, value=item,
                )
            result[index[identity]] = item
        else:
            index[identity] = len(result)
            result.append(item)
    return result


def deep_merge(
    base: dict[str, Any],
    extra: dict[str, Any],
    req: MergeRequest,
    parent: str = "",
) -> dict[str, Any]:
    """Recursively merge *extra* into a copy of *base*; later scalars win."""
    result = copy.deepcopy(base)
    for key, value in extra.items():
        where = f"{parent}.{key}" if parent else key
        if key not in result:
            result[key] = copy.deepcopy(value)
            continue
        current = result[key]
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = deep_merge(current, value, req, where)
        elif isinstance(current, list) and isinstance(value, list):
            result[key] = merge_lists(current, value, req, where)
        else:
            if current != value and parent.rsplit(".", 1)[-1] in DEPENDENCY_KEYS:
                req.warn(
                    "dependency-version-override",
                    f"{req.module} changes {where} in {req.path} from {current!r} to {value!r}",
                    key=where, previous=current, value=value,
                )
            result[key] = copy.deepcopy(value)
    return result


def _load_json(text: str, req: MergeRequest, side: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise req.fail(f"{side} content is not valid JSON: {exc}") from exc


def _combine_structures(base: Any, extra: Any, req: MergeRequest) -> Any:
    if isinstance(base, dict) and isinstance(extra, dict):
        return deep_merge(base, extra, req)
    if isinstance(base, list) and isinstance(extra, list):
        return merge_lists(base, extra, req)
    raise req.fail(
        f"cannot merge {type(extra).__name__} into {type(base).__name__}"
    )


def merge_json(existing: Optional[str], incoming: str, req: MergeRequest) -> str:
    extra = _load_json(incoming, req, "incoming")
    if existing is None or not existing.strip():
        return dump_json(extra)
    base = _load_json(existing, req, "existing")
    return dump_json(_combine_structures(base, extra, req))


def merge_json_shallow(existing: Optional[str], incoming: str, req: MergeRequest) -> str:
    extra = _load_json(incoming, req, "incoming")
    if existing is None or not existing.strip():
        return dump_json(extra)
    base = _load_json(existing, req, "existing")
    if not (isinstance(base, dict) and isinstance(extra, dict)):
        raise req.fail("shallow merge needs JSON objects on both sides")
    result = dict(base)
    for key, value in extra.items():
        if key in result and result[key] != value:
            req.warn(
                "shallow-override",
                f"{req.module} overrides top-level key '{key}' of {req.path}",
                key=key,
            )
        result[key] = value
    return dump_json(result)


def _load_yaml(text: str, req: MergeRequest, side: str) -> Any:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise req.fail(f"{side} content is not valid YAML: {exc}") from exc
    return {} if data is None else data


def merge_yaml(existing: Optional[str], incoming: str, req: MergeRequest) -> str:
    extra = _load_yaml(incoming, req, "incoming")
    if existing is None or not existing.strip():
        merged = extra
    else:
        merged = _combine_structures(_load_yaml(existing, req, "existing"), extra, req)
    return yaml.safe_dump(merged, sort_keys=False, default_flow_style=False, allow_unicode=True)


def merge_package(existing: Optional[str], incoming: str, req: MergeRequest) -> str:
    """package.json: union dependency maps, keep clashing scripts side by side."""
    extra = _load_json(incoming, req, "incoming")
    if not isinstance(extra, dict):
        raise req.fail("package manifest must be a JSON object")
    if existing is None or not existing.strip():
        return dump_json(_sorted_package(extra))
    base = _load_json(existing, req, "existing")
    if not isinstance(base, dict):
        raise req.fail("existing package manifest is not a JSON object")

    merged = copy.deepcopy(base)
    for key, value in extra.items():
        if key in DEPENDENCY_KEYS and isinstance(value, dict):
            section = merged.setdefault(key, {})
            for package, version in value.items():
                if package in section and section[package] != version:
                    req.warn(
                        "dependency-version-override",
                        f"{req.module} changes {key}.{package} in {req.path} "
                        f"from {section[package]!r} to {version!r}",
                        key=f"{key}.{package}", previous=section[package], value=version,
                    )
                section[package] = version
        elif key == "scripts" and isinstance(value, dict):
            _merge_scripts(merged.setdefault("scripts", {}), value, req)
        elif key in ("keywords", "files") and isinstance(value, list):
            merged[key] = merge_lists(merged.get(key, []), value, req, key)
        elif key not in merged:
            merged[key] = copy.deepcopy(value)
        elif isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = deep_merge(merged[key], value, req, key)
        elif merged[key] != value:
            req.warn(
                "package-field-kept",
                f"{req.path} keeps {key}={merged[key]!r}; {req.module} wanted {value!r}",
                key=key,
            )
    return dump_json(_sorted_package(merged))


def _merge_scripts(scripts: dict[str, str], extra: dict[str, str], req: MergeRequest) -> None:
    for name, command in extra.items():
        if name not in scripts or scripts[name] == command:
            scripts[name] = command
            continue
        prefixed = f"{req.module}:{name}"
        if scripts.get(prefixed) == command:
            continue
        scripts[prefixed] = command
        req.warn(
            "script-renamed",
            f"Script '{name}' from {req.module} clashes with an existing one; "
            f"added as '{prefixed}'",
            script=name,
        )
        if name in COMMON_SCRIPTS:
            combined = f"{name}:all"
            scripts.setdefault(combined, scripts[name])
            scripts[combined] += f" && npm run {prefixed}"


def _sorted_package(package: dict[str, Any]) -> dict[str, Any]:
    result = dict(package)
    for key in (*DEPENDENCY_KEYS, "scripts"):
        if isinstance(result.get(key), dict):
            result[key] = dict(sorted(result[key].items()))
    return result


# ---------------------------------------------------------------------------
# dotenv
# ---------------------------------------------------------------------------

_ENV_KEY_RE = re.compile(r"^\s*(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)\s*=")


def _env_assignments(text: str) -> dict[str, str]:
    found: dict[str, str] = {}
    for line in text.splitlines():
        match = _ENV_KEY_RE.match(line)
        if match:
            found.setdefault(match.group(1), line.strip())
    return found


def merge_env(existing: Optional[str], incoming: str, req: MergeRequest) -> str:
    """Append a module's variables; duplicate keys are kept commented out."""
    if not existing:
        return _ensure_newline(incoming)
    present = _env_assignments(existing)
    wanted = _env_assignments(incoming)
    if all(present.get(k) == line for k, line in wanted.items()) and not [
        line for line in incoming.splitlines()
        if line.strip() and not line.strip().startswith("#") and not _ENV_KEY_RE.match(line)
    ]:
        return existing

    lines = ["", f"# {req.module.upper()} configuration"]
    for line in incoming.splitlines():
        match = _ENV_KEY_RE.match(line)
        if match is None:
            lines.append(line)
            continue
        key = match.group(1)
        if key not in present:
            present[key] = line.strip()
            lines.append(line)
        elif present[key] != line.strip():
            lines.append(f"# {line.strip()}  # duplicate from {req.module}, earlier value kept")
            req.warn(
                "env-duplicate",
                f"{req.module} redefines {key} in {req.path}; earlier value kept",
                key=key,
            )
    return _ensure_newline(existing) + _ensure_newline("\n".join(lines))


# ---------------------------------------------------------------------------
# Source-code skeleton helpers (routes / config objects)
# ---------------------------------------------------------------------------

_ROUTES_RE = re.compile(
    r"(?:\b(?:export\s+)?(?:const|let|var)\s+routes\b[^=\n]*=\s*|\bexport\s+default\s*)\["
)
_CONFIG_RE = re.compile(
    r"(?:\bexport\s+default|\bmodule\.exports\s*=)\s*(?:[\w$.]+\s*\(\s*)?\{"
)
_IMPORT_RE = re.compile(r"^\s*import\s.+$", re.MULTILINE)
_KEY_RE = re.compile(r"""^\s*(?:(['"])([^'"]+)\1|([\w$-]+))\s*:""")
_PAIRS = {"[": "]", "{": "}", "(": ")"}


def _scan_to_close(text: str, open_at: int) -> int:
    """Index of the bracket closing the one at *open_at*; skips strings and comments."""
    stack: list[str] = []
    i = open_at
    n = len(text)
    while i < n:
        ch = text[i]
        if ch in "'\"`":
            i = _skip_string(text, i)
            continue
        if text.startswith("//", i):
            newline = text.find("\n", i)
            i = n if newline < 0 else newline
            continue
        if text.startswith("/*", i):
            end = text.find("*/", i + 2)
            i = n if end < 0 else end + 2
            continue
        if ch in _PAIRS:
            stack.append(_PAIRS[ch])
        elif ch in ")]}":
            if not stack or stack.pop() != ch:
                raise ValueError(f"unbalanced '{ch}' at offset {i}")
            if not stack:
                return i
        i += 1
    raise ValueError("unterminated bracket")


def _skip_string(text: str, start: int) -> int:
    quote = text[start]
    i = start + 1
    while i < len(text):
        if text[i] == "\\":
            i += 2
            continue
        if text[i] == quote:
            return i + 1
        i += 1
    raise ValueError("unterminated string literal")


def _split_entries(body: str) -> list[str]:
    """Split the inside of an array/object literal at top-level commas."""
    entries: list[str] = []
    depth = 0
    start = 0
    i = 0
    while i < len(body):
        ch = body[i]
        if ch in "'\"`":
            i = _skip_string(body, i)
            continue
        if body.startswith("//", i):
            newline = body.find("\n", i)
            i = len(body) if newline < 0 else newline
            continue
        if body.startswith("/*", i):
            end = body.find("*/", i + 2)
            i = len(body) if end < 0 else end + 2
            continue
        if ch in _PAIRS:
            depth += 1
        elif ch in ")]}":
            depth -= 1
        elif ch == "," and depth == 0:
            entries.append(body[start:i])
            start = i + 1
        i += 1
    entries.append(body[start:])
    return [e.strip() for e in entries if e.strip()]


def _normalise(entry: str) -> str:
    return re.sub(r"\s+", " ", entry).strip()


def _locate(pattern: re.Pattern[str], text: str) -> Optional[tuple[int, int]]:
    """(open, close) indices of the skeleton's bracket pair, if present."""
    match = pattern.search(text)
    if match is None:
        return None
    open_at = match.end() - 1
    return open_at, _scan_to_close(text, open_at)


def _entry_indent(text: str, open_at: int, close_at: int) -> str:
    body = text[open_at + 1:close_at]
    for line in body.splitlines():
        if line.strip():
            return line[: len(line) - len(line.lstrip())]
    return "  "


def _splice(text: str, open_at: int, close_at: int, new_entries: list[str]) -> str:
    if not new_entries:
        return text
    body = text[open_at + 1:close_at]
    indent = _entry_indent(text, open_at, close_at)
    head = body.rstrip()
    closing_ws = body[len(head):]
    if "\n" not in closing_ws:
        closing_ws = "\n"
    addition = ",\n".join(indent + entry.replace("\n", "\n" + indent) for entry in new_entries)
    if head.strip():
        separator = "" if head.endswith(",") else ","
        new_body = head + separator + "\n" + addition + "," + closing_ws
    else:
        new_body = "\n" + addition + "," + closing_ws
    return text[: open_at + 1] + new_body + text[close_at:]


def _merge_imports(existing: str, incoming: str) -> str:
    have = {_normalise(m.group(0)) for m in _IMPORT_RE.finditer(existing)}
    missing: list[str] = []
    for match in _IMPORT_RE.finditer(incoming):
        line = match.group(0).strip()
        if _normalise(line) not in have:
            have.add(_normalise(line))
            missing.append(line)
    if not missing:
        return existing
    last = None
    for last in _IMPORT_RE.finditer(existing):
        pass
    if last is None:
        return "\n".join(missing) + "\n" + existing
    insert_at = last.end()
    return existing[:insert_at] + "\n" + "\n".join(missing) + existing[insert_at:]


def _bare_entries(incoming: str) -> list[str]:
    """Entries from a contribution that has no skeleton of its own."""
    text = _IMPORT_RE.sub("", incoming).strip()
    if text.startswith("[") and text.endswith("]"):
        text = text[1:-1]
    return _split_entries(text)


def merge_routes(existing: Optional[str], incoming: str, req: MergeRequest) -> str:
    """Splice route entries into the ``routes`` array of the target file."""
    if existing is None or not existing.strip():
        return incoming
    try:
        target = _locate(_ROUTES_RE, existing)
        if target is None:
            raise req.fail("target file has no 'routes' array to extend")
        found = _locate(_ROUTES_RE, incoming)
        if found is not None:
            entries = _split_entries(incoming[found[0] + 1:found[1]])
        else:
            entries = _bare_entries(incoming)
        have = {_normalise(e) for e in _split_entries(existing[target[0] + 1:target[1]])}
        new_entries = []
        for entry in entries:
            if _normalise(entry) not in have:
                have.add(_normalise(entry))
                new_entries.append(entry)
        merged = _splice(existing, target[0], target[1], new_entries)
        return _merge_imports(merged, incoming)
    except ValueError as exc:
        raise req.fail(str(exc)) from exc


def _entry_key(entry: str) -> Optional[str]:
    match = _KEY_RE.match(entry)
    if match:
        return match.group(2) or match.group(3)
    if re.fullmatch(r"[\w$]+", entry.strip()):
        return entry.strip()
    return None


def merge_config(existing: Optional[str], incoming: str, req: MergeRequest) -> str:
    """Merge configuration objects: JSON configs or exported JS config objects."""
    if existing is None or not existing.strip():
        return incoming
    try:
        base = json.loads(existing)
        extra = json.loads(incoming)
    except json.JSONDecodeError:
        pass
    else:
        return dump_json(_combine_structures(base, extra, req))

    try:
        target = _locate(_CONFIG_RE, existing)
        if target is None:
            raise req.fail("target file has no exported configuration object")
        found = _locate(_CONFIG_RE, incoming)
        if found is not None:
            entries = _split_entries(incoming[found[0] + 1:found[1]])
        else:
            entries = _bare_entries(incoming)

        merged = existing
        for entry in entries:
            open_at, close_at = _locate(_CONFIG_RE, merged)  # type: ignore[misc]
            present_entries = _split_entries(merged[open_at + 1:close_at])
            if _normalise(entry) in {_normalise(e) for e in present_entries}:
                continue
            current: dict[str, str] = {}
            for present in present_entries:
                present_key = _entry_key(present)
                if present_key is not None:
                    current[present_key] = present
            key = _entry_key(entry)
            if key is None or key not in current:
                merged = _splice(merged, open_at, close_at, [entry])
            else:
                merged = _merge_config_value(
                    merged, open_at, close_at, current[key], entry, key, req,
                )
        return _merge_imports(merged, incoming)
    except ValueError as exc:
        raise req.fail(str(exc)) from exc


def _merge_config_value(
    text: str,
    open_at: int,
    close_at: int,
    present: str,
    entry: str,
    key: str,
    req: MergeRequest,
) -> str:
    """Union array-valued properties; keep the existing value otherwise."""
    if _normalise(present) == _normalise(entry):
        return text
    old_value = present.split(":", 1)[1].strip() if ":" in present else ""
    new_value = entry.split(":", 1)[1].strip() if ":" in entry else ""
    if old_value.startswith("[") and new_value.startswith("["):
        old_items = _split_entries(old_value[1:old_value.rfind("]")])
        new_items = _split_entries(new_value[1:new_value.rfind("]")])
        seen = {_normalise(i) for i in old_items}
        extra = [i for i in new_items if _normalise(i) not in seen]
        if not extra:
            return text
        combined = present[: present.index(":") + 1] + " [" + ", ".join(old_items + extra) + "]"
        body = text[open_at + 1:close_at]
        start = body.find(present)
        if start < 0:
            raise ValueError(f"cannot locate property '{key}' in target")
        body = body[:start] + combined + body[start + len(present):]
        return text[: open_at + 1] + body + text[close_at:]
    req.warn(
        "config-key-kept",
        f"{req.path} keeps its existing '{key}'; {req.module} wanted a different value",
        key=key,
    )
    return text


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

MergeFn = Callable[[Optional[str], str, MergeRequest], str]

STRATEGIES: dict[MergeStrategy, MergeFn] = {
    MergeStrategy.REPLACE: merge_replace,
    MergeStrategy.APPEND: merge_append,
    MergeStrategy.APPEND_UNIQUE: merge_append_unique,
    MergeStrategy.PREPEND: merge_prepend,
    MergeStrategy.MERGE_JSON: merge_json,
    MergeStrategy.MERGE_JSON_SHALLOW: merge_json_shallow,
    MergeStrategy.MERGE_YAML: merge_yaml,
    MergeStrategy.MERGE_PACKAGE: merge_package,
    MergeStrategy.MERGE_ENV: merge_env,
    MergeStrategy.MERGE_ROUTES: merge_routes,
    MergeStrategy.MERGE_CONFIG: merge_config,
}


def apply_merge(existing: Optional[str], incoming: str, req: MergeRequest) -> str:
    """Fold *incoming* into *existing* with ``req.strategy``.

    Raises:
        MergeError: If the strategy cannot combine the two contents.
    """
    if req.strategy is MergeStrategy.CUSTOM:
        merge_fn = req.descriptor.custom_merge if req.descriptor else None
        if merge_fn is None:
            raise req.fail("no custom merge function supplied")
        try:
            result = merge_fn(existing, incoming, req.context)
        except MergeError:
            raise
        except Exception as exc:
            raise req.fail(f"custom merge raised {type(exc).__name__}: {exc}") from exc
        if not isinstance(result, str):
            raise req.fail(f"custom merge returned {type(result).__name__}, expected str")
        return result
    return STRATEGIES[req.strategy](existing, incoming, req)
