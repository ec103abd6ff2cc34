# -*- coding: utf-8 -*-
from __future__ import annotations

import asyncio

from conftest import FakeTransport, ok

from app.bootstrap import build_engine, engine_from_settings
from app.config import EngineConfig
from app.deps import missing_runtime_packages
from core.fields import FieldSet
from services.dependency_resolver import FormScope
from services.transport import HttpTransport


def test_engine_services_share_one_cache_and_identity():
    transport = FakeTransport(lambda doc: ok([{"DisplayName": "Pune", "Value": "PNQ"}]))
    engine = build_engine(EngineConfig(user_id="u7", cache_expiry_s=60, cache_soft_limit=5), transport=transport)

    assert engine.cache.expiry_s == 60.0
    assert engine.resolver.cache is engine.cache
    assert engine.validation.api_context is engine.api_context
    assert engine.validation.resolver is engine.resolver

    scope = FormScope("f", FieldSet.from_config([{"type": "WDropDownBox", "wKey": "City", "wQuery": {"J_Ui": {"ActionName": "C"}}}]))
    asyncio.run(engine.resolver.load_scope(scope))
    assert '"UserId":"u7"' in transport.docs[0].api
    assert [o.value for o in scope.options("City")] == ["PNQ"]


def test_engine_from_settings_builds_http_transport():
    engine = engine_from_settings({"endpoint_url": "https://api.example.com/q", "request_timeout_s": 5, "auth_token": "t"})
    assert isinstance(engine.transport, HttpTransport)
    assert engine.transport.timeout_s == 5.0
    assert engine.transport.token_supplier.token() == "t"


def test_runtime_dependencies_present():
    assert missing_runtime_packages() == []
