"""Template mini-language for module file contributions.

A deliberately small, non-Turing-complete, Handlebars-flavoured language.
Sources are tokenised, parsed into an AST of text, variable, ``if`` and
``each`` nodes, and evaluated against a variable lookup.  There is no
expression evaluation: a tag names a variable path, optionally passed through
one whitelisted helper.

Syntax::

    {{project_name}}                  variable (dotted paths allowed)
    {{pascal_case project_name}}      whitelisted helper
    {{#if typescript}}...{{else}}...{{/if}}
    {{#unless typescript}}...{{/unless}}
    {{#each dependencies}}{{@key}}: {{this}}{{/each}}
    {{@index}} {{@first}} {{@last}}   loop metadata
    {{! comment }}
    \\{{literal}}                      escaped, emitted as ``{{literal}}``

Block tags standing alone on a line are removed together with that line.
"""

from __future__ import annotations

import functools
import json
import re
from collections.abc import Callable, Collection, Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from src.errors import TemplateSyntaxError, UndefinedVariableError
from src.utils import camel_case, pascal_case, slugify, snake_case


# ---------------------------------------------------------------------------
# Helpers (the complete whitelist)
# ---------------------------------------------------------------------------

HELPERS: dict[str, Callable[[Any], str]] = {
    "slugify": lambda v: slugify(str(v)),
    "pascal_case": lambda v: pascal_case(str(v)),
    "snake_case": lambda v: snake_case(str(v)),
    "camel_case": lambda v: camel_case(str(v)),
    "upper": lambda v: str(v).upper(),
    "lower": lambda v: str(v).lower(),
    "json": lambda v: json.dumps(v, indent=2, ensure_ascii=False),
}

_TAG_RE = re.compile(r"(\\)?\{\{(.*?)\}\}", re.DOTALL)
_PATH_RE = re.compile(
    r"^(?:this(?:\.[\w-]+)*|@(?:index|key|first|last)|[A-Za-z_][\w-]*(?:\.[\w-]+)*)$"
)
_RESIDUAL_RE = re.compile(r"\{\{\s*(?:[#/!^]|else\s*\}\}|@(?:index|key|first|last)\b|this\b)")

_BLOCKS = ("if", "unless", "each")


# ---------------------------------------------------------------------------
# AST
# ---------------------------------------------------------------------------


@dataclass
class TextNode:
    text: str
    literal: bool = False


@dataclass
class VarNode:
    path: str
    line: int
    helper: str | None = None


@dataclass
class IfNode:
    path: str
    line: int
    negate: bool = False
    body: list["Node"] = field(default_factory=list)
    else_body: list["Node"] = field(default_factory=list)


@dataclass
class EachNode:
    path: str
    line: int
    body: list["Node"] = field(default_factory=list)
    else_body: list["Node"] = field(default_factory=list)


Node = Union[TextNode, VarNode, IfNode, EachNode]


# ---------------------------------------------------------------------------
# Lexer
# ---------------------------------------------------------------------------


@dataclass
class _Token:
    kind: str  # "text" or "tag"
    value: str
    line: int
    escaped: bool = False


def _tokenize(source: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    line = 1
    for match in _TAG_RE.finditer(source):
        if match.start() > pos:
            text = source[pos:match.start()]
            tokens.append(_Token("text", text, line))
            line += text.count("\n")
        raw = match.group(0)
        if match.group(1):
            tokens.append(_Token("text", raw[1:], line, escaped=True))
        else:
            tokens.append(_Token("tag", match.group(2).strip(), line))
        line += raw.count("\n")
        pos = match.end()
    if pos < len(source):
        tokens.append(_Token("text", source[pos:], line))
    _strip_standalone(tokens)
    return tokens


def _is_standalone_tag(token: _Token) -> bool:
    return token.kind == "tag" and (
        token.value[:1] in ("#", "/", "!") or token.value == "else"
    )


def _strip_standalone(tokens: list[_Token]) -> None:
    """Drop the line of a block tag that has nothing else on it.

    Every tag is judged against the original text before any line is
    removed, so consecutive block lines are all stripped.
    """
    last = len(tokens) - 1
    standalone: list[int] = []
    for i, token in enumerate(tokens):
        if not _is_standalone_tag(token):
            continue
        before = tokens[i - 1] if i > 0 else None
        after = tokens[i + 1] if i < last else None

        if before is None:
            left_ok = True
        elif before.kind == "text":
            head, newline, tail = before.value.rpartition("\n")
            left_ok = tail.strip(" \t") == "" and (bool(newline) or i - 1 == 0)
        else:
            left_ok = False

        if after is None:
            right_ok = True
        elif after.kind == "text":
            head, newline, _ = after.value.partition("\n")
            right_ok = head.strip(" \t\r") == "" and (bool(newline) or i + 1 == last)
        else:
            right_ok = False

        if left_ok and right_ok:
            standalone.append(i)

    for i in standalone:
        before = tokens[i - 1] if i > 0 else None
        after = tokens[i + 1] if i < last else None
        if before is not None:
            before.value = before.value[: before.value.rfind("\n") + 1]
        if after is not None:
            newline_at = after.value.find("\n")
            after.value = after.value[newline_at + 1:] if newline_at >= 0 else ""


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def _check_path(path: str, line: int) -> str:
    if not _PATH_RE.match(path):
        raise TemplateSyntaxError(f"Invalid variable reference '{path}'", line)
    return path


def parse(source: str) -> list[Node]:
    """Parse *source* into a list of AST nodes.

    Raises:
        TemplateSyntaxError: On unknown tags, bad paths or unbalanced blocks.
    """
    root: list[Node] = []
    # Each frame: (block node, block name, list currently being filled)
    stack: list[tuple[Union[IfNode, EachNode], str, list[Node]]] = []

    def current() -> list[Node]:
        return stack[-1][2] if stack else root

    for token in _tokenize(source):
        if token.kind == "text":
            if token.value:
                current().append(TextNode(token.value, literal=token.escaped))
            continue

        tag = token.value
        if not tag:
            raise TemplateSyntaxError("Empty tag '{{}}'", token.line)
        if tag.startswith("!"):
            continue

        if tag.startswith("#"):
            name, _, arg = tag[1:].partition(" ")
            arg = arg.strip()
            if name not in _BLOCKS:
                raise TemplateSyntaxError(f"Unknown block helper '#{name}'", token.line)
            if not arg or " " in arg:
                raise TemplateSyntaxError(
                    f"'#{name}' takes exactly one variable reference", token.line
                )
            _check_path(arg, token.line)
            node: Union[IfNode, EachNode]
            if name == "each":
                node = EachNode(path=arg, line=token.line)
            else:
                node = IfNode(path=arg, line=token.line, negate=(name == "unless"))
            current().append(node)
            stack.append((node, name, node.body))
            continue

        if tag == "else":
            if not stack:
                raise TemplateSyntaxError("'else' outside of a block", token.line)
            node, name, filling = stack[-1]
            if filling is node.else_body:
                raise TemplateSyntaxError(f"Duplicate 'else' in '#{name}' block", token.line)
            stack[-1] = (node, name, node.else_body)
            continue

        if tag.startswith("/"):
            name = tag[1:].strip()
            if not stack:
                raise TemplateSyntaxError(f"Unexpected closing tag '/{name}'", token.line)
            _, open_name, _ = stack[-1]
            if name != open_name:
                raise TemplateSyntaxError(
                    f"Closing tag '/{name}' does not match '#{open_name}'", token.line
                )
            stack.pop()
            continue

        parts = tag.split()
        if len(parts) == 1:
            current().append(VarNode(path=_check_path(parts[0], token.line), line=token.line))
        elif len(parts) == 2 and parts[0] in HELPERS:
            current().append(VarNode(
                path=_check_path(parts[1], token.line), line=token.line, helper=parts[0],
            ))
        else:
            raise TemplateSyntaxError(f"Unsupported expression '{tag}'", token.line)

    if stack:
        node, name, _ = stack[-1]
        raise TemplateSyntaxError(f"Unclosed '#{name}' block", node.line)
    return root


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


_UNDEFINED = object()


@dataclass
class _Frame:
    this: Any
    data: dict[str, Any] = field(default_factory=dict)


def _dig(value: Any, parts: list[str]) -> Any:
    for part in parts:
        if isinstance(value, Mapping) and part in value:
            value = value[part]
        else:
            return _UNDEFINED
    return value


def _lookup(frames: list[_Frame], path: str) -> Any:
    if path.startswith("@"):
        for frame in reversed(frames):
            if path[1:] in frame.data:
                return frame.data[path[1:]]
        return _UNDEFINED
    parts = path.split(".")
    if parts[0] == "this":
        return _dig(frames[-1].this, parts[1:])
    for frame in reversed(frames):
        if isinstance(frame.this, Mapping) and parts[0] in frame.this:
            return _dig(frame.this, parts)
    return _UNDEFINED


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _iter_items(value: Any) -> list[tuple[Any, Any]]:
    """(key, item) pairs for a collection; empty for anything else."""
    if isinstance(value, Mapping):
        return list(value.items())
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(value) if isinstance(value, (set, frozenset)) else value
        return list(enumerate(items))
    return []


class _Evaluator:
    def __init__(self, strict: bool) -> None:
        self.strict = strict

    def render(self, nodes: list[Node], frames: list[_Frame], out: list[str]) -> None:
        for node in nodes:
            if isinstance(node, TextNode):
                out.append(node.text)
            elif isinstance(node, VarNode):
                value = _lookup(frames, node.path)
                if value is _UNDEFINED:
                    if self.strict:
                        raise UndefinedVariableError(node.path, node.line)
                    value = None
                if node.helper is not None:
                    out.append(HELPERS[node.helper](value if value is not None else ""))
                else:
                    out.append(_stringify(value))
            elif isinstance(node, IfNode):
                value = _lookup(frames, node.path)
                truthy = bool(value) if value is not _UNDEFINED else False
                if node.negate:
                    truthy = not truthy
                self.render(node.body if truthy else node.else_body, frames, out)
            else:
                value = _lookup(frames, node.path)
                items = _iter_items(value) if value is not _UNDEFINED else []
                if not items:
                    self.render(node.else_body, frames, out)
                    continue
                last = len(items) - 1
                for index, (key, item) in enumerate(items):
                    data = {
                        "index": index, "first": index == 0, "last": index == last, "key": key,
                    }
                    frames.append(_Frame(this=item, data=data))
                    try:
                        self.render(node.body, frames, out)
                    finally:
                        frames.pop()


# ---------------------------------------------------------------------------
# TemplateRenderer
# ---------------------------------------------------------------------------


@functools.lru_cache(maxsize=256)
def _compiled(source: str) -> list[Node]:
    return parse(source)


def _literal_texts(nodes: list[Node]) -> set[str]:
    found: set[str] = set()
    for node in nodes:
        if isinstance(node, TextNode):
            if node.literal:
                found.add(node.text)
        elif isinstance(node, (IfNode, EachNode)):
            found |= _literal_texts(node.body)
            found |= _literal_texts(node.else_body)
    return found


class TemplateRenderer:
    """Parses and renders mini-language templates.

    Parsed ASTs are kept in a bounded, process-wide LRU cache keyed by source
    text, so rendering the same module template for many runs parses it once.
    """

    def __init__(self, strict: bool = True) -> None:
        self.strict = strict

    def compile(self, source: str) -> list[Node]:
        return _compiled(source)

    def literal_directives(self, source: str) -> frozenset[str]:
        """Escaped tags in *source*, as they appear once rendered."""
        return frozenset(_literal_texts(self.compile(source)))

    def render_string(self, source: str, variables: Mapping[str, Any]) -> str:
        """Render *source* against *variables*.

        Raises:
            TemplateSyntaxError: If the source does not parse.
            UndefinedVariableError: In strict mode, for unknown ``{{variables}}``.
        """
        out: list[str] = []
        _Evaluator(self.strict).render(self.compile(source), [_Frame(this=dict(variables))], out)
        return "".join(out)


def find_residual_syntax(text: str, allowed: Collection[str] = ()) -> str | None:
    """Return the first unrendered directive left in *text*, if any.

    Plain ``{{ name }}`` mustaches are not reported: generated frontend
    sources (Vue, Svelte) use them legitimately.  Tags listed in *allowed*
    (escaped literals the template meant to emit) are skipped.
    """
    for match in _RESIDUAL_RE.finditer(text):
        end = text.find("}}", match.start())
        snippet = text[match.start(): end + 2 if end >= 0 else match.end()]
        if snippet not in allowed:
            return snippet
    return None
