# -*- coding: utf-8 -*-
"""Re-emit engine bus events as Qt signals.

Widgets connect to the bridge instead of subscribing to the bus directly, so
every callback runs through Qt's signal machinery (queued across threads).
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Tuple, Type

from PyQt5.QtCore import QObject, pyqtSignal

from app.events import (
    EventBus,
    FetchFailed,
    FieldsCleared,
    Notification,
    OptionsChanged,
    ReportLoaded,
    StageAdvanced,
    WorkflowCompleted,
)

log = logging.getLogger(__name__)


class QtEventBridge(QObject):
    optionsChanged = pyqtSignal(str, str, object, bool)
    fieldsCleared = pyqtSignal(str, object)
    fetchFailed = pyqtSignal(str, str, str)
    stageAdvanced = pyqtSignal(int, str)
    workflowCompleted = pyqtSignal(str)
    reportLoaded = pyqtSignal(int, int, object)
    notification = pyqtSignal(str, str)

    def __init__(self, bus: EventBus, parent=None):
        super().__init__(parent)
        self._bus = bus
        self._handlers: List[Tuple[Type[Any], Callable[[Any], None]]] = []
        routes: Dict[Type[Any], Callable[[Any], None]] = {
            OptionsChanged: lambda e: self.optionsChanged.emit(e.scope, e.field_key, list(e.options), bool(e.visible)),
            FieldsCleared: lambda e: self.fieldsCleared.emit(e.scope, list(e.field_keys)),
            FetchFailed: lambda e: self.fetchFailed.emit(e.scope, e.field_key, e.reason),
            StageAdvanced: lambda e: self.stageAdvanced.emit(int(e.stage_index), e.stage_name),
            WorkflowCompleted: lambda e: self.workflowCompleted.emit(e.message),
            ReportLoaded: lambda e: self.reportLoaded.emit(int(e.level), int(e.row_count), dict(e.filters or {})),
            Notification: lambda e: self.notification.emit(e.level, e.message),
        }
        for event_type, handler in routes.items():
            bus.subscribe(event_type, handler)
            self._handlers.append((event_type, handler))

    def detach(self) -> None:
        for event_type, handler in self._handlers:
            self._bus.unsubscribe(event_type, handler)
        self._handlers.clear()
        log.debug("Qt event bridge detached")
