"""Tests for the merge strategies (src.scaffolder.merge).

Covers:
- Text strategies: replace, append, append-unique, prepend
- JSON (deep and shallow), YAML and package manifests
- dotenv merging with duplicate keys
- Structural route and configuration merges
- Custom merge functions and their failure modes
"""

from __future__ import annotations

import json

import pytest
import yaml

from src.errors import MergeError
from src.registry import MergeStrategy, TemplateDescriptor
from src.scaffolder import MergeRequest, apply_merge


@pytest.fixture
def request_for(context):
    def _make(strategy: MergeStrategy, module: str = "mod", path: str = "file",
              descriptor: TemplateDescriptor | None = None) -> MergeRequest:
        return MergeRequest(
            path=path, module=module, strategy=strategy, context=context, descriptor=descriptor,
        )
    return _make


def codes(req: MergeRequest) -> list[str]:
    return [w.code for w in req.warnings]


# ---------------------------------------------------------------------------
# Text strategies
# ---------------------------------------------------------------------------


class TestTextStrategies:
    @pytest.mark.unit
    def test_replace_onto_nothing(self, request_for):
        req = request_for(MergeStrategy.REPLACE)
        assert apply_merge(None, "new", req) == "new"
        assert req.warnings == []

    @pytest.mark.unit
    def test_replace_warns_when_content_diverges(self, request_for):
        req = request_for(MergeStrategy.REPLACE)
        assert apply_merge("old", "new", req) == "new"
        assert codes(req) == ["replace-diverged"]

    @pytest.mark.unit
    def test_append_adds_missing_newline(self, request_for):
        req = request_for(MergeStrategy.APPEND)
        assert apply_merge("a", "b\n", req) == "a\nb\n"
        assert apply_merge(None, "b\n", req) == "b\n"

    @pytest.mark.unit
    def test_append_unique_is_idempotent(self, request_for):
        req = request_for(MergeStrategy.APPEND_UNIQUE, path=".gitignore")
        once = apply_merge("node_modules\n", "dist\n", req)
        twice = apply_merge(once, "dist\n", req)
        assert once == "node_modules\ndist\n"
        assert twice == once

    @pytest.mark.unit
    def test_append_unique_matches_whole_lines(self, request_for):
        req = request_for(MergeStrategy.APPEND_UNIQUE, path=".gitignore")
        assert apply_merge("build/dist\n", "dist\n", req) == "build/dist\ndist\n"
        assert apply_merge("node_modules\ndist\n", "dist\n", req) == "node_modules\ndist\n"

    @pytest.mark.unit
    def test_prepend(self, request_for):
        req = request_for(MergeStrategy.PREPEND)
        assert apply_merge("body\n", "import './x.css'", req) == "import './x.css'\nbody\n"


# ---------------------------------------------------------------------------
# Structured data
# ---------------------------------------------------------------------------


class TestJsonStrategies:
    @pytest.mark.unit
    def test_deep_merge(self, request_for):
        req = request_for(MergeStrategy.MERGE_JSON, path="tsconfig.json")
        existing = json.dumps({"compilerOptions": {"strict": True}, "include": ["src"]})
        incoming = json.dumps({"compilerOptions": {"jsx": "react-jsx"}, "include": ["src", "env.d.ts"]})
        merged = json.loads(apply_merge(existing, incoming, req))
        assert merged == {
            "compilerOptions": {"strict": True, "jsx": "react-jsx"},
            "include": ["src", "env.d.ts"],
        }

    @pytest.mark.unit
    def test_named_list_items_are_replaced(self, request_for):
        req = request_for(MergeStrategy.MERGE_JSON)
        existing = json.dumps({"plugins": [{"name": "a", "v": 1}, {"name": "b"}]})
        incoming = json.dumps({"plugins": [{"name": "a", "v": 2}]})
        merged = json.loads(apply_merge(existing, incoming, req))
        assert merged["plugins"] == [{"name": "a", "v": 2}, {"name": "b"}]

    @pytest.mark.unit
    def test_named_list_item_override_warns(self, request_for):
        req = request_for(MergeStrategy.MERGE_JSON, module="vuetify", path="config.json")
        existing = json.dumps({"plugins": [{"name": "a", "version": "1"}]})
        incoming = json.dumps({"plugins": [{"name": "a", "version": "2"}]})
        merged = json.loads(apply_merge(existing, incoming, req))
        assert merged["plugins"] == [{"name": "a", "version": "2"}]
        assert codes(req) == ["dependency-version-override"]
        warning = req.warnings[0]
        assert "vuetify" in warning.message
        assert "plugins" in warning.message

    @pytest.mark.unit
    def test_identical_named_list_item_is_silent(self, request_for):
        req = request_for(MergeStrategy.MERGE_JSON)
        same = json.dumps({"plugins": [{"name": "a", "version": "1"}]})
        apply_merge(same, same, req)
        assert req.warnings == []

    @pytest.mark.unit
    def test_invalid_existing_json(self, request_for):
        req = request_for(MergeStrategy.MERGE_JSON, module="tailwind", path="tsconfig.json")
        with pytest.raises(MergeError) as exc_info:
            apply_merge("{not json", "{}", req)
        error = exc_info.value
        assert (error.path, error.module, error.strategy) == (
            "tsconfig.json", "tailwind", "merge-json",
        )

    @pytest.mark.unit
    def test_mismatched_shapes(self, request_for):
        with pytest.raises(MergeError):
            apply_merge("[1]", '{"a": 1}', request_for(MergeStrategy.MERGE_JSON))

    @pytest.mark.unit
    def test_shallow_merge_replaces_top_level_values(self, request_for):
        req = request_for(MergeStrategy.MERGE_JSON_SHALLOW)
        merged = json.loads(apply_merge('{"a": {"x": 1}, "b": 1}', '{"a": {"y": 2}}', req))
        assert merged == {"a": {"y": 2}, "b": 1}
        assert codes(req) == ["shallow-override"]

    @pytest.mark.unit
    def test_yaml_merge(self, request_for):
        req = request_for(MergeStrategy.MERGE_YAML, path="docker-compose.yml")
        existing = "services:\n  web:\n    image: node\n"
        incoming = "services:\n  db:\n    image: postgres\n"
        merged = yaml.safe_load(apply_merge(existing, incoming, req))
        assert merged == {"services": {"web": {"image": "node"}, "db": {"image": "postgres"}}}

    @pytest.mark.unit
    def test_invalid_yaml(self, request_for):
        with pytest.raises(MergeError):
            apply_merge("a: [1\n", "b: 2\n", request_for(MergeStrategy.MERGE_YAML))


class TestPackageManifest:
    BASE = {
        "name": "app",
        "scripts": {"dev": "vite", "build": "vite build"},
        "dependencies": {"react": "^18.0.0"},
    }

    @pytest.mark.unit
    def test_dependencies_are_unioned_and_sorted(self, request_for):
        req = request_for(MergeStrategy.MERGE_PACKAGE, module="ui", path="package.json")
        incoming = {"dependencies": {"zod": "^3.0.0", "clsx": "^2.0.0"}}
        merged = json.loads(apply_merge(json.dumps(self.BASE), json.dumps(incoming), req))
        assert list(merged["dependencies"]) == ["clsx", "react", "zod"]
        assert req.warnings == []

    @pytest.mark.unit
    def test_version_override_warns(self, request_for):
        req = request_for(MergeStrategy.MERGE_PACKAGE, module="ui", path="package.json")
        incoming = {"dependencies": {"react": "^18.2.0"}}
        merged = json.loads(apply_merge(json.dumps(self.BASE), json.dumps(incoming), req))
        assert merged["dependencies"]["react"] == "^18.2.0"
        assert codes(req) == ["dependency-version-override"]
        assert req.warnings[0].details["previous"] == "^18.0.0"

    @pytest.mark.unit
    def test_clashing_script_is_prefixed(self, request_for):
        req = request_for(MergeStrategy.MERGE_PACKAGE, module="tailwind", path="package.json")
        incoming = json.dumps({"scripts": {"dev": "tailwindcss --watch", "lint": "eslint ."}})
        merged = json.loads(apply_merge(json.dumps(self.BASE), incoming, req))
        scripts = merged["scripts"]
        assert scripts["dev"] == "vite"
        assert scripts["tailwind:dev"] == "tailwindcss --watch"
        assert scripts["dev:all"] == "vite && npm run tailwind:dev"
        assert scripts["lint"] == "eslint ."
        assert codes(req) == ["script-renamed"]

        again = json.loads(apply_merge(json.dumps(merged), incoming, req))
        assert again == merged

    @pytest.mark.unit
    def test_existing_scalar_fields_are_kept(self, request_for):
        req = request_for(MergeStrategy.MERGE_PACKAGE, module="ui", path="package.json")
        merged = json.loads(apply_merge(json.dumps(self.BASE), '{"name": "other", "private": true}', req))
        assert merged["name"] == "app"
        assert merged["private"] is True
        assert codes(req) == ["package-field-kept"]

    @pytest.mark.unit
    def test_non_object_manifest_rejected(self, request_for):
        with pytest.raises(MergeError):
            apply_merge(None, "[]", request_for(MergeStrategy.MERGE_PACKAGE))


class TestEnvStrategy:
    @pytest.mark.unit
    def test_new_keys_are_appended_under_a_header(self, request_for):
        req = request_for(MergeStrategy.MERGE_ENV, module="supabase", path=".env.example")
        merged = apply_merge("API_URL=http://localhost\n", "SUPABASE_URL=\nSUPABASE_KEY=\n", req)
        assert merged == (
            "API_URL=http://localhost\n"
            "\n"
            "# SUPABASE configuration\n"
            "SUPABASE_URL=\n"
            "SUPABASE_KEY=\n"
        )

    @pytest.mark.unit
    def test_duplicate_key_keeps_earlier_value(self, request_for):
        req = request_for(MergeStrategy.MERGE_ENV, module="auth", path=".env")
        merged = apply_merge("SECRET=one\n", "SECRET=two\nOTHER=1\n", req)
        lines = merged.splitlines()
        assert lines[0] == "SECRET=one"
        assert "# SECRET=two  # duplicate from auth, earlier value kept" in lines
        assert "OTHER=1" in lines
        assert codes(req) == ["env-duplicate"]

    @pytest.mark.unit
    def test_identical_contribution_is_a_no_op(self, request_for):
        req = request_for(MergeStrategy.MERGE_ENV)
        assert apply_merge("A=1\nB=2\n", "A=1\n", req) == "A=1\nB=2\n"

    @pytest.mark.unit
    def test_first_contribution_gets_trailing_newline(self, request_for):
        assert apply_merge(None, "A=1", request_for(MergeStrategy.MERGE_ENV)) == "A=1\n"


# ---------------------------------------------------------------------------
# Structural merges
# ---------------------------------------------------------------------------


ROUTES = """\
import Home from './pages/Home'

export const routes = [
  { path: '/', element: Home },
]
"""

LOGIN_ROUTES = """\
import Login from './pages/Login'

export const routes = [
  { path: '/login', element: Login },
]
"""

VITE = """\
import { defineConfig } from 'vite'
import vue from '@vitejs/plugin-vue'

export default defineConfig({
  plugins: [vue()],
  base: '/',
})
"""


class TestRoutesStrategy:
    @pytest.mark.unit
    def test_entries_and_imports_are_spliced(self, request_for):
        req = request_for(MergeStrategy.MERGE_ROUTES, path="src/routes.jsx")
        merged = apply_merge(ROUTES, LOGIN_ROUTES, req)
        assert merged == (
            "import Home from './pages/Home'\n"
            "import Login from './pages/Login'\n"
            "\n"
            "export const routes = [\n"
            "  { path: '/', element: Home },\n"
            "  { path: '/login', element: Login },\n"
            "]\n"
        )

    @pytest.mark.unit
    def test_merge_is_idempotent(self, request_for):
        req = request_for(MergeStrategy.MERGE_ROUTES, path="src/routes.jsx")
        once = apply_merge(ROUTES, LOGIN_ROUTES, req)
        assert apply_merge(once, LOGIN_ROUTES, req) == once

    @pytest.mark.unit
    def test_bare_entries(self, request_for):
        req = request_for(MergeStrategy.MERGE_ROUTES, path="src/routes.jsx")
        merged = apply_merge(ROUTES, "{ path: '/about', element: About }", req)
        assert "  { path: '/about', element: About },\n]" in merged

    @pytest.mark.unit
    def test_target_without_routes_array(self, request_for):
        req = request_for(MergeStrategy.MERGE_ROUTES, path="src/main.js")
        with pytest.raises(MergeError) as exc_info:
            apply_merge("console.log('hi')\n", LOGIN_ROUTES, req)
        assert "routes" in exc_info.value.reason

    @pytest.mark.unit
    def test_first_contribution_is_taken_as_is(self, request_for):
        assert apply_merge(None, LOGIN_ROUTES, request_for(MergeStrategy.MERGE_ROUTES)) == (
            LOGIN_ROUTES
        )


class TestConfigStrategy:
    @pytest.mark.unit
    def test_array_properties_are_unioned(self, request_for):
        req = request_for(MergeStrategy.MERGE_CONFIG, module="vuetify", path="vite.config.js")
        incoming = (
            "import vuetify from 'vite-plugin-vuetify'\n\n"
            "export default defineConfig({\n"
            "  plugins: [vuetify({ autoImport: true })],\n"
            "})\n"
        )
        merged = apply_merge(VITE, incoming, req)
        assert "  plugins: [vue(), vuetify({ autoImport: true })],\n" in merged
        assert "import vue from '@vitejs/plugin-vue'\nimport vuetify from 'vite-plugin-vuetify'\n" in merged
        assert req.warnings == []
        assert apply_merge(merged, incoming, req) == merged

    @pytest.mark.unit
    def test_new_property_is_added(self, request_for):
        req = request_for(MergeStrategy.MERGE_CONFIG, path="vite.config.js")
        merged = apply_merge(VITE, "server: { port: 3000 }", req)
        assert "  base: '/',\n  server: { port: 3000 },\n})" in merged

    @pytest.mark.unit
    def test_conflicting_scalar_keeps_existing(self, request_for):
        req = request_for(MergeStrategy.MERGE_CONFIG, path="vite.config.js")
        merged = apply_merge(VITE, "base: '/app/'", req)
        assert merged == VITE
        assert codes(req) == ["config-key-kept"]

    @pytest.mark.unit
    def test_json_configs_are_deep_merged(self, request_for):
        req = request_for(MergeStrategy.MERGE_CONFIG, path=".eslintrc.json")
        merged = apply_merge('{"rules": {"a": 1}}', '{"rules": {"b": 2}}', req)
        assert json.loads(merged) == {"rules": {"a": 1, "b": 2}}

    @pytest.mark.unit
    def test_target_without_config_object(self, request_for):
        with pytest.raises(MergeError):
            apply_merge("const x = 1\n", "a: 1", request_for(MergeStrategy.MERGE_CONFIG))

    @pytest.mark.unit
    def test_unbalanced_target(self, request_for):
        with pytest.raises(MergeError):
            apply_merge("export default {\n  a: [1,\n", "b: 2", request_for(MergeStrategy.MERGE_CONFIG))


# ---------------------------------------------------------------------------
# Custom merges
# ---------------------------------------------------------------------------


class TestCustomStrategy:
    @staticmethod
    def descriptor(fn) -> TemplateDescriptor:
        return TemplateDescriptor(source="", custom_merge=fn, merge_strategy=MergeStrategy.CUSTOM)

    @pytest.mark.unit
    def test_custom_function_is_called(self, request_for):
        def shout(existing, incoming, ctx):
            return (existing or "") + incoming.upper() + ctx.project_name

        req = request_for(MergeStrategy.CUSTOM, descriptor=self.descriptor(shout))
        assert apply_merge("a", "b", req) == "aBMy App"

    @pytest.mark.unit
    def test_exception_becomes_merge_error(self, request_for):
        def broken(existing, incoming, ctx):
            raise RuntimeError("boom")

        req = request_for(MergeStrategy.CUSTOM, descriptor=self.descriptor(broken))
        with pytest.raises(MergeError) as exc_info:
            apply_merge(None, "x", req)
        assert "RuntimeError: boom" in exc_info.value.reason
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    @pytest.mark.unit
    def test_non_string_result_rejected(self, request_for):
        req = request_for(MergeStrategy.CUSTOM, descriptor=self.descriptor(lambda e, i, c: 42))
        with pytest.raises(MergeError):
            apply_merge(None, "x", req)

    @pytest.mark.unit
    def test_missing_function(self, request_for):
        with pytest.raises(MergeError):
            apply_merge(None, "x", request_for(MergeStrategy.CUSTOM))
