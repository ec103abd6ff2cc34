# -*- coding: utf-8 -*-
"""Query endpoint contract.

Every request is one ``dsXml`` document posted to a single endpoint::

    <dsXml>
        <J_Ui>"ActionName":"X","Option":"Y"</J_Ui>
        <Sql></Sql>
        <X_Filter><State>MH</State></X_Filter>
        <X_Filter_Multiple></X_Filter_Multiple>
        <J_Api>"UserId":"u1","UserType":"User"</J_Api>
    </dsXml>

The response is JSON: ``{"success": bool, "message": str, "data": {"rs0": [...],
"rs1": [...]}}``.

No PyQt imports. The blocking HTTP call runs in a worker thread so the event
loop stays responsive; the engine only ever awaits :meth:`Transport.post`.
"""

from __future__ import annotations

import asyncio
import json
import logging
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from core.errors import FetchFailure
from core.keys import DocKeys, ResultSets, USER_PLACEHOLDER
from infra.perf import span as perf_span

log = logging.getLogger(__name__)


def flat_pairs(obj: Any, *, overrides: Optional[Mapping[str, Any]] = None) -> str:
    """Serialize a mapping to the flat ``"k":"v","k2":"v2"`` form of J_Ui / J_Api.

    Strings are taken as already serialized (overrides cannot apply to them).
    """
    if obj is None:
        obj = {}
    if isinstance(obj, str):
        return obj.strip()
    merged: Dict[str, Any] = dict(obj)
    if overrides:
        merged.update(overrides)
    return ",".join(f'"{k}":"{"" if v is None else v}"' for k, v in merged.items())


@dataclass(frozen=True)
class ApiContext:
    """Caller identity and environment flags sent in every ``J_Api`` section."""

    user_id: str = ""
    user_type: str = "User"
    extra: Mapping[str, Any] = field(default_factory=dict)

    def merge(self, configured: Any) -> str:
        """Merge a template's ``J_Api`` with the caller identity.

        ``<<USERID>>`` placeholders are replaced with the real user id.
        """
        if isinstance(configured, str) and configured.strip():
            text = configured.replace(USER_PLACEHOLDER, self.user_id)
            if '"UserType"' not in text:
                text = (text + "," if text else "") + f'"UserType":"{self.user_type}"'
            return text
        data: Dict[str, Any] = dict(self.extra)
        if isinstance(configured, Mapping):
            data.update(configured)
        uid = data.get("UserId")
        if uid in (None, "", USER_PLACEHOLDER):
            data["UserId"] = self.user_id
        data.setdefault("UserType", self.user_type)
        return flat_pairs(data)


@dataclass(frozen=True)
class RequestDocument:
    ui: Any = ""
    sql: str = ""
    x_filter: str = ""
    x_filter_multiple: Optional[str] = None
    api: str = ""
    x_data_json: Optional[str] = None
    x_data: Optional[str] = None
    ui_overrides: Mapping[str, Any] = field(default_factory=dict)

    def to_xml(self) -> str:
        parts = [
            f"<{DocKeys.UI}>{flat_pairs(self.ui, overrides=self.ui_overrides)}</{DocKeys.UI}>",
            f"<{DocKeys.SQL}>{self.sql or ''}</{DocKeys.SQL}>",
            f"<{DocKeys.FILTER}>{self.x_filter or ''}</{DocKeys.FILTER}>",
        ]
        if self.x_filter_multiple is not None:
            parts.append(f"<{DocKeys.FILTER_MULTIPLE}>{self.x_filter_multiple}</{DocKeys.FILTER_MULTIPLE}>")
        if self.x_data_json is not None:
            parts.append(f"<{DocKeys.DATA_JSON}>{self.x_data_json}</{DocKeys.DATA_JSON}>")
        if self.x_data is not None:
            parts.append(f"<{DocKeys.DATA}>{self.x_data}</{DocKeys.DATA}>")
        parts.append(f"<{DocKeys.API}>{self.api or ''}</{DocKeys.API}>")
        return f"<{DocKeys.ROOT}>" + "".join(parts) + f"</{DocKeys.ROOT}>"


@dataclass
class TransportResponse:
    success: bool = True
    message: str = ""
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, payload: Any) -> "TransportResponse":
        if not isinstance(payload, Mapping):
            raise FetchFailure(f"Malformed response: expected an object, got {type(payload).__name__}")
        data = payload.get("data")
        if data is None:
            data = {}
        if not isinstance(data, Mapping):
            raise FetchFailure("Malformed response: 'data' is not an object")
        success = payload.get("success", True)
        return cls(success=bool(success), message=str(payload.get("message") or ""), data=dict(data))

    def result_set(self, name: str) -> Optional[List[Any]]:
        rs = self.data.get(name)
        return rs if isinstance(rs, list) else None

    @property
    def rs0(self) -> Optional[List[Any]]:
        return self.result_set(ResultSets.PRIMARY)

    @property
    def rs1(self) -> Optional[List[Any]]:
        return self.result_set(ResultSets.SECONDARY)

    def require_rs0(self) -> List[Any]:
        rows = self.rs0
        if rows is None:
            raise FetchFailure("Malformed response: 'rs0' is missing or not a list")
        return rows


class Transport:
    """Transport collaborator; subclasses deliver documents to the endpoint."""

    async def post(self, doc: RequestDocument) -> TransportResponse:  # pragma: no cover - interface
        raise NotImplementedError


class HttpTransport(Transport):
    def __init__(self, url: str, *, token_supplier=None, timeout_s: float = 30.0, user_agent: str = "Dynaform/Engine"):
        self.url = str(url or "").strip()
        self.token_supplier = token_supplier
        self.timeout_s = float(timeout_s)
        self.user_agent = user_agent

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/xml", "User-Agent": self.user_agent}
        if self.token_supplier is not None:
            headers["Authorization"] = f"Bearer {self.token_supplier.token()}"
        return headers

    def _post_blocking(self, body: bytes, headers: Dict[str, str]) -> Any:
        req = urllib.request.Request(self.url, data=body, headers=headers, method="POST")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_s) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as e:
            raise FetchFailure(f"HTTP {e.code}: {e.reason}") from e
        except (urllib.error.URLError, TimeoutError, OSError) as e:
            raise FetchFailure(f"Request failed: {e}") from e
        try:
            return json.loads(raw.decode("utf-8", errors="replace") or "null")
        except ValueError as e:
            raise FetchFailure(f"Malformed response: {e}") from e

    async def post(self, doc: RequestDocument) -> TransportResponse:
        if not self.url:
            raise FetchFailure("Endpoint URL is not configured")
        # Token problems surface before anything is sent.
        headers = self._headers()
        body = doc.to_xml().encode("utf-8")
        with perf_span("transport.post", threshold_ms=250.0):
            payload = await asyncio.to_thread(self._post_blocking, body, headers)
        return TransportResponse.from_json(payload)
