"""Unit tests for Config (src.config).

Tests cover:
- Defaults (search paths, singleton categories, lock timeout)
- Validation of relative paths and the lock timeout
- Derived helpers: category_rank, is_singleton, manifest_path
- save/load round trip and from_env
"""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from src.config import (
    BUILTIN_MODULES_DIR,
    DEFAULT_CATEGORY_ORDER,
    DEFAULT_SINGLETON_CATEGORIES,
    Config,
)


class TestConfigDefaults:
    @pytest.mark.unit
    def test_search_paths_default_to_builtin_modules(self):
        cfg = Config()
        assert cfg.search_paths == [BUILTIN_MODULES_DIR]
        assert BUILTIN_MODULES_DIR.is_dir()

    @pytest.mark.unit
    def test_scalar_defaults(self):
        cfg = Config()
        assert cfg.lock_timeout == 10.0
        assert cfg.state_dir == ".stack-composer"
        assert cfg.strict_variables is True
        assert cfg.dependency_manifest == "package.json"

    @pytest.mark.unit
    def test_default_lists_are_copies(self):
        a = Config()
        b = Config()
        a.singleton_categories.append("database")
        assert b.singleton_categories == DEFAULT_SINGLETON_CATEGORIES
        assert "database" not in DEFAULT_SINGLETON_CATEGORIES


class TestConfigValidation:
    @pytest.mark.unit
    def test_lock_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            Config(lock_timeout=0)

    @pytest.mark.unit
    @pytest.mark.parametrize("value", ["", "/abs/state", "../outside"])
    def test_state_dir_must_stay_inside_project(self, value):
        with pytest.raises(ValidationError):
            Config(state_dir=value)

    @pytest.mark.unit
    def test_dependency_manifest_must_be_relative(self):
        with pytest.raises(ValidationError):
            Config(dependency_manifest="/etc/package.json")


class TestDerivedHelpers:
    @pytest.mark.unit
    def test_category_rank_follows_order(self):
        cfg = Config()
        assert cfg.category_rank("frontend-framework") == 0
        assert cfg.category_rank("ui-library") == 1
        assert cfg.category_rank("frontend-framework") < cfg.category_rank("auth-provider")

    @pytest.mark.unit
    def test_unknown_category_sorts_last(self):
        cfg = Config()
        assert cfg.category_rank("mystery") == len(DEFAULT_CATEGORY_ORDER)

    @pytest.mark.unit
    def test_is_singleton(self):
        cfg = Config()
        assert cfg.is_singleton("frontend-framework")
        assert not cfg.is_singleton("ui-library")

    @pytest.mark.unit
    def test_manifest_path(self, tmp_path: Path):
        cfg = Config(state_dir=".sc")
        assert cfg.manifest_path(tmp_path) == tmp_path / ".sc" / "manifest.json"


class TestSerialisation:
    @pytest.mark.unit
    def test_save_and_load_round_trip(self, tmp_path: Path):
        cfg = Config(lock_timeout=3.5, search_paths=[tmp_path / "mods"], strict_variables=False)
        saved = cfg.save(tmp_path / "nested" / "config.json")
        assert saved.exists()

        loaded = Config.load(saved)
        assert loaded.lock_timeout == 3.5
        assert loaded.search_paths == [tmp_path / "mods"]
        assert loaded.strict_variables is False

    @pytest.mark.unit
    def test_from_env(self, tmp_path: Path):
        env = {
            "SC_SEARCH_PATHS": os.pathsep.join([str(tmp_path / "a"), str(tmp_path / "b")]),
            "SC_LOCK_TIMEOUT": "2.5",
            "SC_STRICT_VARIABLES": "no",
            "SC_DEPENDENCY_MANIFEST": "deps.json",
        }
        with patch.dict(os.environ, env, clear=False):
            cfg = Config.from_env()
        assert cfg.search_paths == [tmp_path / "a", tmp_path / "b"]
        assert cfg.lock_timeout == 2.5
        assert cfg.strict_variables is False
        assert cfg.dependency_manifest == "deps.json"

    @pytest.mark.unit
    def test_from_env_without_variables_uses_defaults(self):
        cleared = {k: v for k, v in os.environ.items() if not k.startswith("SC_")}
        with patch.dict(os.environ, cleared, clear=True):
            cfg = Config.from_env()
        assert cfg == Config()
