"""Lifecycle hooks for the bundled Vuetify module."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.registry.models import GenerationContext
    from src.scaffolder.filesets import GeneratedFileSet

MAIN_PATH = "src/main.js"
PLUGIN_IMPORT = "import vuetify from './plugins/vuetify'"
PLUGIN_USE = "app.use(vuetify)"

_LAST_IMPORT_RE = re.compile(r"^import\s.+$", re.MULTILINE)
_MOUNT_RE = re.compile(r"^([ \t]*)app\.mount\(", re.MULTILINE)


def register_plugin(context: GenerationContext, file_set: GeneratedFileSet) -> None:
    """Wire the Vuetify plugin into the Vue entry point.

    The entry point is left untouched when it already uses the plugin or does
    not follow the ``createApp``/``app.mount`` shape.
    """
    main = file_set.get(MAIN_PATH)
    if main is None or PLUGIN_USE in main:
        return
    mount = _MOUNT_RE.search(main)
    imports = list(_LAST_IMPORT_RE.finditer(main))
    if mount is None or not imports:
        return

    updated = main[: mount.start()] + f"{mount.group(1)}{PLUGIN_USE}\n" + main[mount.start():]
    last_import = imports[-1]
    updated = updated[: last_import.end()] + "\n" + PLUGIN_IMPORT + updated[last_import.end():]
    file_set.put(MAIN_PATH, updated, "vuetify")
