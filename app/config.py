# -*- coding: utf-8 -*-
"""Engine configuration.

This module is intentionally tiny and *import-safe*.

Values come from the per-user settings file (``infra.settings``) and can be
overridden per process with environment variables:

- ``DYNAFORM_ENDPOINT``      query endpoint URL
- ``DYNAFORM_TIMEOUT_S``     request timeout (seconds)
- ``DYNAFORM_CACHE_EXPIRY_S`` option cache freshness window (seconds)
- ``DYNAFORM_CACHE_LIMIT``   option cache soft size bound
- ``DYNAFORM_USER_ID`` / ``DYNAFORM_USER_TYPE`` caller identity
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional

from core.errors import ConfigError

log = logging.getLogger(__name__)

_ENV = {
    "endpoint_url": ("DYNAFORM_ENDPOINT", str),
    "request_timeout_s": ("DYNAFORM_TIMEOUT_S", float),
    "cache_expiry_s": ("DYNAFORM_CACHE_EXPIRY_S", float),
    "cache_soft_limit": ("DYNAFORM_CACHE_LIMIT", int),
    "user_id": ("DYNAFORM_USER_ID", str),
    "user_type": ("DYNAFORM_USER_TYPE", str),
}


@dataclass(frozen=True)
class EngineConfig:
    endpoint_url: str = ""
    request_timeout_s: float = 30.0
    cache_expiry_s: float = 300.0
    cache_soft_limit: int = 500
    user_id: str = ""
    user_type: str = "User"

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any], env: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        env = os.environ if env is None else env
        values: Dict[str, Any] = {}
        for name, (var, conv) in _ENV.items():
            raw = env.get(var)
            source = var
            if raw in (None, ""):
                raw = settings.get(name)
                source = name
            if raw in (None, ""):
                continue
            try:
                values[name] = conv(raw)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"Invalid value for {source}: {raw!r}") from e
        cfg = cls(**values)
        if cfg.request_timeout_s <= 0 or cfg.cache_expiry_s <= 0 or cfg.cache_soft_limit <= 0:
            raise ConfigError("Timeouts and cache limits must be positive")
        return cfg

    def with_overrides(self, **kwargs: Any) -> "EngineConfig":
        return replace(self, **kwargs)
