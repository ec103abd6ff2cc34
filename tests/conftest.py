# -*- coding: utf-8 -*-

"""Pytest configuration.

This project is a simple app folder layout (not necessarily installed).
For local testing we add the repository root to sys.path so that imports like
`from core...` work reliably.

``FakeTransport`` records every request document and answers through a
scripted responder, so engine tests never touch the network.
"""

from __future__ import annotations

import inspect
import os
import sys


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

import pytest  # noqa: E402

from services.transport import Transport, TransportResponse  # noqa: E402


def ok(rs0=None, **result_sets) -> TransportResponse:
    data = {"rs0": [] if rs0 is None else rs0}
    data.update(result_sets)
    return TransportResponse(success=True, message="", data=data)


class FakeTransport(Transport):
    def __init__(self, responder=None):
        self.docs = []
        self.responder = responder or (lambda doc: ok())

    def action(self, doc) -> str:
        ui = doc.ui if isinstance(doc.ui, dict) else {}
        return str(ui.get("ActionName") or "")

    async def post(self, doc):
        self.docs.append(doc)
        result = self.responder(doc)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, Exception):
            raise result
        return result


class FakeClock:
    def __init__(self, t: float = 1000.0):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
