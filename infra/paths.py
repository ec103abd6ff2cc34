# -*- coding: utf-8 -*-
"""
Centralized path resolver for per-user writable data (no admin required).
"""
from __future__ import annotations

import os
from pathlib import Path

APP_NAME = "Dynaform"
DATA_DIR_ENV = "DYNAFORM_HOME"


def user_data_dir() -> Path:
    """
    Per-user writable directory. ``DYNAFORM_HOME`` wins, then LOCALAPPDATA
    (non-roaming), APPDATA and finally the home folder.
    """
    override = os.getenv(DATA_DIR_ENV)
    if override:
        p = Path(override)
    else:
        base = os.getenv("LOCALAPPDATA") or os.getenv("APPDATA") or str(Path.home())
        p = Path(base) / APP_NAME
    p.mkdir(parents=True, exist_ok=True)
    return p


def ensure_dir(p: Path) -> Path:
    p.mkdir(parents=True, exist_ok=True)
    return p


def logs_dir() -> Path:
    return ensure_dir(user_data_dir() / "logs")
