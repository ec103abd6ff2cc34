# -*- coding: utf-8 -*-
from __future__ import annotations

import jwt
import pytest

from core.errors import FetchFailure
from services.auth_token import TOKEN_ENV, TokenSupplier, read_claims


def _token(exp):
    return jwt.encode({"sub": "u1", "exp": exp}, "server-secret", algorithm="HS256")


def test_claims_read_without_signature_check():
    assert read_claims(_token(2000))["sub"] == "u1"
    assert read_claims("opaque-token") == {}


def test_valid_token_is_supplied():
    supplier = TokenSupplier(_token(2000), clock=lambda: 1000.0)
    assert supplier.expires_at() == 2000.0
    assert supplier.token().count(".") == 2


def test_expired_or_missing_token_fails_before_sending():
    with pytest.raises(FetchFailure):
        TokenSupplier(_token(1010), clock=lambda: 1000.0).token()
    with pytest.raises(FetchFailure):
        TokenSupplier("").token()


def test_opaque_token_never_expires():
    assert TokenSupplier("opaque-token").token() == "opaque-token"


def test_env_token_wins_over_settings(monkeypatch):
    monkeypatch.setenv(TOKEN_ENV, "from-env")
    assert TokenSupplier.from_settings({"auth_token": "from-settings"}).token() == "from-env"
    monkeypatch.delenv(TOKEN_ENV)
    assert TokenSupplier.from_settings({"auth_token": "from-settings"}).token() == "from-settings"
