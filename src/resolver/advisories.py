"""Non-fatal compatibility checks run on a successfully resolved stack."""

from __future__ import annotations

from collections.abc import Sequence

from src.errors import StackWarning
from src.registry.models import Category, ModuleDefinition


FRONTEND_CAPABILITY = "frontend-framework"
DATABASE_CAPABILITY = "database"


def _present(modules: Sequence[ModuleDefinition], requirement: str) -> bool:
    return any(m.satisfies(requirement) for m in modules)


def _frameworks(modules: Sequence[ModuleDefinition]) -> list[ModuleDefinition]:
    return [
        m for m in modules
        if m.category is Category.FRONTEND_FRAMEWORK or FRONTEND_CAPABILITY in m.provides
    ]


def compatibility_warnings(modules: Sequence[ModuleDefinition]) -> list[StackWarning]:
    """Return every advisory for *modules*, in stack order."""
    warnings: list[StackWarning] = []
    frameworks = _frameworks(modules)

    for module in modules:
        if module.category is Category.UI_LIBRARY:
            if not frameworks:
                warnings.append(StackWarning(
                    code="ui-without-framework",
                    message=f"UI library '{module.name}' is selected without a frontend framework",
                    module=module.name,
                ))
            elif module.compatible_with and not any(
                f.satisfies(entry) for f in frameworks for entry in module.compatible_with
            ):
                warnings.append(StackWarning(
                    code="ui-incompatible-framework",
                    message=(
                        f"UI library '{module.name}' supports "
                        f"{', '.join(sorted(module.compatible_with))} but the stack uses "
                        f"{', '.join(f.name for f in frameworks)}"
                    ),
                    module=module.name,
                    details={
                        "compatible_with": sorted(module.compatible_with),
                        "frameworks": [f.name for f in frameworks],
                    },
                ))

        if module.category is Category.AUTH_PROVIDER and not _present(modules, DATABASE_CAPABILITY):
            warnings.append(StackWarning(
                code="auth-without-database",
                message=f"Auth provider '{module.name}' usually needs a module providing 'database'",
                module=module.name,
            ))

        for recommendation in sorted(module.recommends):
            if not _present(modules, recommendation):
                warnings.append(StackWarning(
                    code="recommended-missing",
                    message=f"'{module.name}' recommends '{recommendation}', which is not in the stack",
                    module=module.name,
                    details={"recommendation": recommendation},
                ))

    warnings.extend(_dependency_mismatches(modules))
    return warnings


def _dependency_mismatches(modules: Sequence[ModuleDefinition]) -> list[StackWarning]:
    pins: dict[str, dict[str, list[str]]] = {}
    for module in modules:
        for package, version in {**module.dev_dependencies, **module.dependencies}.items():
            pins.setdefault(package, {}).setdefault(version, []).append(module.name)

    warnings: list[StackWarning] = []
    for package in sorted(pins):
        versions = pins[package]
        if len(versions) < 2:
            continue
        described = "; ".join(
            f"{version} ({', '.join(owners)})" for version, owners in sorted(versions.items())
        )
        warnings.append(StackWarning(
            code="dependency-version-mismatch",
            message=f"Modules pin different versions of '{package}': {described}",
            details={"package": package, "versions": {v: o for v, o in sorted(versions.items())}},
        ))
    return warnings
