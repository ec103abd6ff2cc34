# -*- coding: utf-8 -*-
"""
Application bootstrap (runs before any form is opened):
- Init logging
- Load settings and build the engine services around one shared option cache
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from app.config import EngineConfig
from app.events import EventBus
from infra.logging_setup import init_logging, init_perf_logging
from infra.perf import is_enabled as perf_enabled
from infra.settings import load_settings
from services.auth_token import TokenSupplier
from services.dependency_resolver import DependencyResolver
from services.option_cache import OptionCache
from services.transport import ApiContext, HttpTransport, Transport
from services.validation_service import ValidationService


@dataclass
class Engine:
    config: EngineConfig
    event_bus: EventBus
    cache: OptionCache
    transport: Transport
    api_context: ApiContext
    resolver: DependencyResolver
    validation: ValidationService


def bootstrap() -> None:
    init_logging()
    if perf_enabled():
        init_perf_logging()


def build_engine(
    config: EngineConfig,
    *,
    transport: Optional[Transport] = None,
    token_supplier: Optional[TokenSupplier] = None,
    event_bus: Optional[EventBus] = None,
) -> Engine:
    bus = event_bus or EventBus()
    api = ApiContext(user_id=config.user_id, user_type=config.user_type)
    if transport is None:
        transport = HttpTransport(config.endpoint_url, token_supplier=token_supplier, timeout_s=config.request_timeout_s)
    cache = OptionCache(expiry_s=config.cache_expiry_s, soft_limit=config.cache_soft_limit)
    resolver = DependencyResolver(cache=cache, transport=transport, api_context=api, event_bus=bus)
    return Engine(
        config=config,
        event_bus=bus,
        cache=cache,
        transport=transport,
        api_context=api,
        resolver=resolver,
        validation=ValidationService(transport=transport, api_context=api, event_bus=bus, resolver=resolver),
    )


def engine_from_settings(settings: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> Engine:
    settings = load_settings() if settings is None else settings
    config = EngineConfig.from_settings(settings)
    kwargs.setdefault("token_supplier", TokenSupplier.from_settings(dict(settings)))
    return build_engine(config, **kwargs)
