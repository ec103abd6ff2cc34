# -*- coding: utf-8 -*-
from __future__ import annotations

from app.events import EventBus, Notification, StageAdvanced, notify


def test_subscribers_receive_only_their_event_type():
    bus = EventBus()
    got = []
    bus.subscribe(StageAdvanced, got.append)
    bus.emit(Notification(level="info", message="x"))
    bus.emit(StageAdvanced(stage_index=2, stage_name="Items"))
    assert got == [StageAdvanced(stage_index=2, stage_name="Items")]

    bus.unsubscribe(StageAdvanced, got.append)
    bus.emit(StageAdvanced(stage_index=3))
    assert len(got) == 1


def test_failing_handler_does_not_break_emit():
    bus = EventBus()
    got = []

    def boom(_event):
        raise RuntimeError("handler bug")

    bus.subscribe(Notification, boom)
    bus.subscribe(Notification, got.append)
    notify(bus, "success", "Saved")
    notify(bus, "success", "")
    notify(None, "error", "ignored")
    assert [n.message for n in got] == ["Saved"]
