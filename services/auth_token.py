# -*- coding: utf-8 -*-
"""Bearer token supplier.

The token is issued and verified by the backend; the client only attaches it
to every request. The ``exp`` claim is read (signature not verified) so an
expired token fails fast instead of producing a server round-trip.

This module has **no PyQt imports**.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Callable, Dict, Optional

import jwt  # PyJWT

from core.errors import FetchFailure

log = logging.getLogger(__name__)

TOKEN_ENV = "DYNAFORM_TOKEN"
# Treat tokens this close to expiry as expired.
EXPIRY_SKEW_S = 30


def read_claims(token: str) -> Dict[str, Any]:
    """Unverified claims of *token*; an opaque (non-JWT) token has none."""
    try:
        claims = jwt.decode(token, options={"verify_signature": False, "verify_exp": False})
    except jwt.DecodeError:
        return {}
    return claims if isinstance(claims, dict) else {}


class TokenSupplier:
    def __init__(self, token: Optional[str] = None, *, clock: Callable[[], float] = time.time):
        self._token = (token or "").strip()
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Dict[str, Any]) -> "TokenSupplier":
        token = os.environ.get(TOKEN_ENV) or str(settings.get("auth_token") or "")
        return cls(token)

    def expires_at(self) -> Optional[float]:
        exp = read_claims(self._token).get("exp") if self._token else None
        try:
            return float(exp) if exp is not None else None
        except (TypeError, ValueError):
            return None

    def is_expired(self) -> bool:
        exp = self.expires_at()
        return exp is not None and self._clock() >= exp - EXPIRY_SKEW_S

    def token(self) -> str:
        if not self._token:
            raise FetchFailure("Not signed in: no auth token available")
        if self.is_expired():
            log.warning("Auth token expired; request not sent")
            raise FetchFailure("Session expired: please sign in again")
        return self._token
