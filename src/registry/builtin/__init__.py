"""Modules bundled with Stack Composer.

Each subdirectory holds one ``module.yaml`` plus its template files; the
directory is the default entry of ``Config.search_paths``.
"""
