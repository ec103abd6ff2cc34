# -*- coding: utf-8 -*-
from __future__ import annotations

import json

import pytest

from app.config import EngineConfig
from core.errors import ConfigError
from infra.settings import load_settings, repair_user_space, save_settings


def test_missing_settings_file_is_created_with_defaults(tmp_path):
    path = tmp_path / "dynaform_settings.json"
    data = load_settings(path)
    assert path.exists()
    assert data["cache_expiry_s"] == 300.0


def test_corrupt_settings_are_recovered(tmp_path):
    path = tmp_path / "dynaform_settings.json"
    path.write_text("{not json", encoding="utf-8")
    data = load_settings(path)
    assert data["user_type"] == "User"
    assert json.loads(path.read_text(encoding="utf-8"))["user_type"] == "User"


def test_saved_values_survive_and_repair_resets(tmp_path):
    path = tmp_path / "s.json"
    save_settings({"endpoint_url": "https://api.example.com/q", "user_id": None}, path)
    data = load_settings(path)
    assert data["endpoint_url"] == "https://api.example.com/q"
    assert data["user_id"] == ""
    assert repair_user_space(path)["endpoint_url"] == ""


def test_engine_config_env_overrides_settings():
    settings = {"endpoint_url": "https://a/q", "cache_expiry_s": 60, "user_id": "u1"}
    cfg = EngineConfig.from_settings(settings, env={"DYNAFORM_ENDPOINT": "https://b/q", "DYNAFORM_CACHE_LIMIT": "10"})
    assert cfg.endpoint_url == "https://b/q"
    assert cfg.cache_expiry_s == 60.0
    assert cfg.cache_soft_limit == 10
    assert cfg.user_id == "u1"
    assert cfg.with_overrides(user_id="u2").user_id == "u2"


def test_engine_config_rejects_bad_values():
    with pytest.raises(ConfigError):
        EngineConfig.from_settings({}, env={"DYNAFORM_TIMEOUT_S": "soon"})
    with pytest.raises(ConfigError):
        EngineConfig.from_settings({"cache_expiry_s": 0}, env={})
