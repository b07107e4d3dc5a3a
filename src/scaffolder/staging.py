"""Locking, staging and atomic commit of a generated file set.

A run never leaves a half-written project behind:

* every file is first written to a staging directory created next to the
  target (same filesystem, so moves are renames);
* a target that does not exist yet is produced by renaming the staging
  directory into place;
* an existing target is updated file by file, with every replaced file
  backed up first; any failure restores the backups and removes what was
  added.

Concurrent runs against one target are serialised by an advisory lock file
next to the target.  Waiting is bounded by ``Config.lock_timeout``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
import tempfile
import time
from pathlib import Path

from src.config import Config
from src.errors import GenerationError, GenerationInProgressError, UnmanagedFilesError
from src.utils import content_digest, dump_json, load_json

from .filesets import GeneratedFileSet

logger = logging.getLogger(__name__)

LOCK_SUFFIX = ".stack-composer.lock"


# ---------------------------------------------------------------------------
# Advisory lock
# ---------------------------------------------------------------------------


def lock_path_for(target: Path) -> Path:
    target = Path(target).resolve()
    return target.parent / f".{target.name}{LOCK_SUFFIX}"


class GenerationLock:
    """Async context manager holding the per-target marker file."""

    def __init__(self, target: Path, timeout: float, poll_interval: float = 0.05) -> None:
        self.target = Path(target).resolve()
        self.path = lock_path_for(self.target)
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._held = False

    def try_acquire(self) -> bool:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(f"{os.getpid()}\n")
        self._held = True
        return True

    def release(self) -> None:
        if self._held:
            self.path.unlink(missing_ok=True)
            self._held = False

    async def __aenter__(self) -> "GenerationLock":
        deadline = time.monotonic() + self.timeout
        while not self.try_acquire():
            if time.monotonic() >= deadline:
                raise GenerationInProgressError(self.target, self.timeout)
            await asyncio.sleep(self.poll_interval)
        logger.debug("Acquired generation lock %s", self.path)
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.release()


# ---------------------------------------------------------------------------
# Managed-file manifest
# ---------------------------------------------------------------------------


def load_managed(target: Path, config: Config) -> dict[str, str]:
    """Paths (and digests) recorded by earlier generations into *target*."""
    manifest = config.manifest_path(target)
    if not manifest.is_file():
        return {}
    try:
        data = load_json(manifest)
    except (OSError, json.JSONDecodeError) as exc:
        raise GenerationError(f"Unreadable generation manifest {manifest}: {exc}") from exc
    files = data.get("files", {}) if isinstance(data, dict) else None
    return {str(k): str(v) for k, v in files.items()} if isinstance(files, dict) else {}


def _read_existing(path: Path) -> str | None:
    if not path.is_file():
        return None
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return None


def find_unmanaged(file_set: GeneratedFileSet, target: Path, managed: dict[str, str]) -> list[str]:
    """Paths that exist on disk, were not produced by this engine and would change."""
    unmanaged: list[str] = []
    for rel in file_set.paths():
        dest = target / rel
        if not dest.exists() or rel in managed:
            continue
        if _read_existing(dest) != file_set.files[rel]:
            unmanaged.append(rel)
    return unmanaged


# ---------------------------------------------------------------------------
# Commit
# ---------------------------------------------------------------------------


def commit_file_set(
    file_set: GeneratedFileSet,
    target: Path,
    config: Config,
    overwrite: bool = False,
) -> list[str]:
    """Write *file_set* into *target* all-or-nothing.

    Returns:
        Relative paths that were written, the engine manifest included.

    Raises:
        UnmanagedFilesError: When user files would change and *overwrite* is false.
        GenerationError: When the write failed (the target is left as it was).
    """
    target = Path(target).resolve()
    managed = load_managed(target, config)
    unmanaged = find_unmanaged(file_set, target, managed)
    if unmanaged and not overwrite:
        raise UnmanagedFilesError(unmanaged)

    to_write = {
        rel: content for rel, content in file_set.files.items()
        if _read_existing(target / rel) != content
    }
    manifest_rel = Path(config.state_dir, "manifest.json").as_posix()
    recorded = dict(managed)
    recorded.update({rel: content_digest(c) for rel, c in file_set.files.items()})
    to_write[manifest_rel] = dump_json({
        "generator": "stack-composer",
        "files": dict(sorted(recorded.items())),
    })

    target.parent.mkdir(parents=True, exist_ok=True)
    staging = Path(tempfile.mkdtemp(prefix=f".{target.name}.staging-", dir=target.parent))
    try:
        for rel in sorted(to_write):
            staged = staging / rel
            staged.parent.mkdir(parents=True, exist_ok=True)
            staged.write_text(to_write[rel], encoding="utf-8")

        if not target.exists():
            os.replace(staging, target)
            logger.debug("Moved staged project into new directory %s", target)
        else:
            _commit_into(staging, target, sorted(to_write))
    except OSError as exc:
        raise GenerationError(f"Writing {target} failed; nothing was changed: {exc}") from exc
    finally:
        if staging.exists():
            shutil.rmtree(staging, ignore_errors=True)
    return sorted(to_write)


def _commit_into(staging: Path, target: Path, relative_paths: list[str]) -> None:
    """Move staged files over an existing tree, rolling back on any failure."""
    backups = Path(tempfile.mkdtemp(prefix=f".{target.name}.backup-", dir=target.parent))
    moved: list[tuple[Path, Path | None]] = []
    created_dirs: list[Path] = []
    try:
        for rel in relative_paths:
            dest = target / rel
            missing = [p for p in [dest.parent, *dest.parent.parents] if not p.exists()]
            for directory in reversed(missing):
                directory.mkdir()
                created_dirs.append(directory)
            backup: Path | None = None
            if dest.exists():
                backup = backups / rel
                backup.parent.mkdir(parents=True, exist_ok=True)
                os.replace(dest, backup)
            moved.append((dest, backup))
            os.replace(staging / rel, dest)
    except OSError:
        logger.warning("Commit into %s failed; rolling back %d file(s)", target, len(moved))
        for dest, backup in reversed(moved):
            if dest.exists():
                dest.unlink()
            if backup is not None and backup.exists():
                os.replace(backup, dest)
        for directory in reversed(created_dirs):
            if directory.exists() and not any(directory.iterdir()):
                directory.rmdir()
        raise
    finally:
        shutil.rmtree(backups, ignore_errors=True)
