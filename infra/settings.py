# -*- coding: utf-8 -*-
"""
User settings stored in a per-user writable folder (no admin).
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from infra.paths import user_data_dir

SETTINGS_FILENAME = "dynaform_settings.json"
log = logging.getLogger(__name__)


def settings_file() -> Path:
    return user_data_dir() / SETTINGS_FILENAME


def _defaults() -> Dict[str, Any]:
    return {
        "endpoint_url": "",
        "request_timeout_s": 30.0,
        "cache_expiry_s": 300.0,
        "cache_soft_limit": 500,
        "user_id": "",
        "user_type": "User",
        "auth_token": "",
    }


def load_settings(path: Optional[Path] = None) -> Dict[str, Any]:
    path = path or settings_file()
    defaults = _defaults()
    if not path.exists():
        save_settings(defaults.copy(), path)
        return defaults.copy()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        merged = defaults.copy()
        if isinstance(data, dict):
            merged.update({k: v for k, v in data.items() if v is not None})
        return merged
    except (OSError, ValueError):
        # Recover from corruption gracefully
        log.warning("Settings file %s is unreadable; defaults restored", path)
        save_settings(defaults.copy(), path)
        return defaults.copy()


def save_settings(data: Dict[str, Any], path: Optional[Path] = None) -> None:
    path = path or settings_file()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")


def repair_user_space(path: Optional[Path] = None) -> Dict[str, Any]:
    """Reset settings to defaults (safe without admin rights)."""
    path = path or settings_file()
    if path.exists():
        path.unlink()
    return load_settings(path)
