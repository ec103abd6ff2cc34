# -*- coding: utf-8 -*-
"""Qt bridge smoke test (skipped where PyQt5 cannot be imported)."""

from __future__ import annotations

import pytest

pytest.importorskip("PyQt5")

from app.events import EventBus, FieldsCleared, Notification, OptionsChanged  # noqa: E402
from app.qt_bridge import QtEventBridge  # noqa: E402
from core.fields import Option  # noqa: E402


def test_bus_events_are_re_emitted_as_signals():
    bus = EventBus()
    bridge = QtEventBridge(bus)
    got = []
    bridge.optionsChanged.connect(lambda scope, key, options, visible: got.append((scope, key, options, visible)))
    bridge.fieldsCleared.connect(lambda scope, keys: got.append((scope, keys)))
    bridge.notification.connect(lambda level, msg: got.append((level, msg)))

    bus.emit(OptionsChanged(scope="filters", field_key="City", options=(Option("Pune", "PNQ"),), visible=True))
    bus.emit(FieldsCleared(scope="filters", field_keys=("City", "Area")))
    bus.emit(Notification(level="info", message="hi"))

    assert got == [
        ("filters", "City", [Option("Pune", "PNQ")], True),
        ("filters", ["City", "Area"]),
        ("info", "hi"),
    ]

    bridge.detach()
    bus.emit(Notification(level="info", message="after"))
    assert len(got) == 3
