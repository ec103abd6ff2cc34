# -*- coding: utf-8 -*-
"""Runtime dependency checks for Dynaform."""
from __future__ import annotations

from importlib import import_module


def missing_runtime_packages(include_ui: bool = False) -> list[str]:
    """Return a list of missing runtime package names (pip names)."""
    missing: list[str] = []
    checks = [("PyJWT", "jwt")]
    if include_ui:
        checks.append(("PyQt5", "PyQt5"))
    for package_name, import_name in checks:
        try:
            import_module(import_name)
        except ModuleNotFoundError:
            missing.append(package_name)
    return missing


def ensure_runtime_deps(include_ui: bool = False) -> None:
    """Raise RuntimeError with install guidance if required deps are missing."""
    missing = missing_runtime_packages(include_ui)
    if not missing:
        return
    joined = ", ".join(missing)
    message = (
        "Missing required Python packages: "
        f"{joined}.\n\n"
        "Install them with:\n"
        "  pip install -e ."
    )
    raise RuntimeError(message)
