"""Tests for GeneratedFileSet (src.scaffolder.filesets)."""

from __future__ import annotations

import pytest

from src.errors import FileSetValidationError
from src.scaffolder import GeneratedFileSet

pytestmark = pytest.mark.unit


class TestGeneratedFileSet:
    def test_put_records_contributors_once(self):
        file_set = GeneratedFileSet()
        file_set.put("README.md", "# a\n", "react")
        file_set.put("README.md", "# a\n# b\n", "tailwind")
        file_set.put("README.md", "# a\n# b\n# c\n", "react")

        assert file_set.get("README.md") == "# a\n# b\n# c\n"
        assert file_set.contributors["README.md"] == ["react", "tailwind"]
        assert file_set.by_module("tailwind") == ["README.md"]
        assert file_set.by_module("vue3") == []

    def test_seed_marks_preexisting(self):
        file_set = GeneratedFileSet()
        file_set.seed(".gitignore", "node_modules\n")
        assert ".gitignore" in file_set
        assert file_set.preexisting == {".gitignore"}
        assert file_set.contributors[".gitignore"] == []

    def test_paths_are_sorted(self):
        file_set = GeneratedFileSet()
        for path in ("src/main.js", "README.md", "index.html"):
            file_set.put(path, "x", "m")
        assert file_set.paths() == ["README.md", "index.html", "src/main.js"]
        assert list(file_set) == file_set.paths()
        assert len(file_set) == 3
        assert file_set.get("missing") is None

    def test_valid_set_passes(self):
        file_set = GeneratedFileSet()
        file_set.put("package.json", '{"name": "app"}\n', "m")
        file_set.put("compose.yml", "services: {}\n", "m")
        file_set.put("App.vue", "<h1>{{ title }}</h1>\n", "m")
        file_set.validate()

    def test_every_problem_is_reported(self):
        file_set = GeneratedFileSet()
        file_set.put("package.json", "{broken", "m")
        file_set.put("compose.yml", "a: [1\n", "m")
        file_set.put("src/main.js", "{{#if typescript}}\n", "m")
        file_set.put("ok.txt", "fine", "m")

        with pytest.raises(FileSetValidationError) as exc_info:
            file_set.validate()
        problems = exc_info.value.problems
        assert list(problems) == ["compose.yml", "package.json", "src/main.js"]
        assert "unrendered template syntax" in problems["src/main.js"]
        assert problems["package.json"].startswith("does not parse")

    def test_allowed_literals_pass_validation(self):
        file_set = GeneratedFileSet()
        file_set.put("docs/templates.md", "Write {{#if typescript}} to branch.\n", "docs")
        file_set.allow_literals("docs/templates.md", {"{{#if typescript}}"})
        file_set.put("other.md", "{{#if typescript}}\n", "m")

        with pytest.raises(FileSetValidationError) as exc_info:
            file_set.validate()
        assert list(exc_info.value.problems) == ["other.md"]
