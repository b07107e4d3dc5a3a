"""Shared utility functions for Stack Composer.

Provides JSON I/O, name-case helpers used by the template language,
content hashing, and the Rich console helpers used for pipeline output.
"""

from __future__ import annotations

import hashlib
import json
import re
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.rule import Rule
from rich.table import Table

console = Console()


# ---------------------------------------------------------------------------
# String / name helpers
# ---------------------------------------------------------------------------


def slugify(value: str) -> str:
    """Convert a string to a URL/filename-safe slug.

    Examples::

        slugify("My Cool App") -> "my-cool-app"
        slugify("  2FA (TOTP)  ") -> "2fa-totp"
    """
    slug = re.sub(r"[^a-z0-9]+", "-", str(value).lower().strip())
    return slug.strip("-")


def _words(value: str) -> list[str]:
    """Split an identifier or phrase into words at separators and camel humps."""
    spaced = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", str(value))
    return [word for word in re.split(r"[^A-Za-z0-9]+", spaced) if word]


def pascal_case(value: str) -> str:
    return "".join(word[:1].upper() + word[1:] for word in _words(value))


def snake_case(value: str) -> str:
    return "_".join(word.lower() for word in _words(value))


def camel_case(value: str) -> str:
    """``"user-profile"`` and ``"User Profile"`` both become ``"userProfile"``."""
    words = _words(value)
    if not words:
        return ""
    return words[0].lower() + pascal_case(" ".join(words[1:]))


def content_digest(content: str) -> str:
    """Return the sha256 hex digest of *content* encoded as UTF-8."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# JSON I/O
# ---------------------------------------------------------------------------


def load_json(path: str | Path) -> Any:
    """Read and parse a UTF-8 JSON document."""
    return json.loads(Path(path).read_text(encoding="utf-8"))


def dump_json(data: Any) -> str:
    """Serialise *data* the way generated JSON files are written."""
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def format_duration(seconds: float) -> str:
    """Render a run time compactly.

    Composition usually finishes in well under a second, so short runs are
    shown in milliseconds::

        format_duration(0.0421) -> "42ms"
        format_duration(3.7)    -> "3.70s"
        format_duration(65.2)   -> "1m 05s"
    """
    seconds = max(seconds, 0.0)
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    if seconds < 60:
        return f"{seconds:.2f}s"
    minutes, rest = divmod(int(seconds), 60)
    return f"{minutes}m {rest:02d}s"


# ---------------------------------------------------------------------------
# Rich output helpers
# ---------------------------------------------------------------------------


PHASE_NAMES: dict[int, str] = {
    1: "DISCOVER",
    2: "RESOLVE",
    3: "GENERATE",
    4: "WRITE",
}

_PHASE_STYLES: dict[int, str] = {
    1: "cyan",
    2: "green",
    3: "yellow",
    4: "magenta",
}


def print_phase_header(phase: int, name: str) -> None:
    """Print a rule announcing pipeline phase *phase* of ``len(PHASE_NAMES)``."""
    style = _PHASE_STYLES.get(phase, "white")
    title = escape(f"[{phase}/{len(PHASE_NAMES)}] {name.upper()}")
    console.print(Rule(f"[bold {style}]{title}[/bold {style}]", style=style))


def print_summary_table(data: dict[str, str], title: str = "Summary") -> None:
    table = Table(title=title, title_justify="left", show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold")
    table.add_column()
    for key, value in data.items():
        table.add_row(key, escape(str(value)))
    console.print(table)


def _status(marker: str, style: str, message: str) -> None:
    console.print(f"[{style}]{marker}[/{style}] {escape(message)}")


def print_success(message: str) -> None:
    _status("ok", "bold green", message)


def print_warning(message: str) -> None:
    _status("!!", "bold yellow", message)


def print_error(message: str) -> None:
    _status("error", "bold red", message)
