# -*- coding: utf-8 -*-
"""Dynaform version single source of truth."""

from __future__ import annotations

import json
from pathlib import Path

_DEFAULT_VERSION = "0.0.0"


def _read_version_json() -> str:
    try:
        root = Path(__file__).resolve().parents[1]
        data = json.loads((root / "version.json").read_text(encoding="utf-8"))
        return str(data.get("semver") or data.get("version") or _DEFAULT_VERSION)
    except (OSError, ValueError):
        return _DEFAULT_VERSION


__version__ = _read_version_json()


def get_version() -> str:
    return __version__
