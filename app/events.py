# -*- coding: utf-8 -*-
"""Simple event bus for engine -> UI notifications (no UI dependency)."""
from __future__ import annotations

from dataclasses import dataclass, field
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple, Type


@dataclass(frozen=True)
class OptionsChanged:
    scope: str
    field_key: str
    options: Tuple[Any, ...] = ()
    visible: bool = True


@dataclass(frozen=True)
class FieldsCleared:
    scope: str
    field_keys: Tuple[str, ...] = ()


@dataclass(frozen=True)
class FetchFailed:
    scope: str
    field_key: str
    reason: str = ""


@dataclass(frozen=True)
class StageAdvanced:
    stage_index: int
    stage_name: str = ""


@dataclass(frozen=True)
class WorkflowCompleted:
    message: str = ""
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ReportLoaded:
    level: int
    row_count: int = 0
    filters: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class Notification:
    """Toast for the user; ``level`` is ``success``, ``info`` or ``error``."""

    level: str
    message: str


class EventBus:
    """Minimal in-process event bus (best-effort)."""

    def __init__(self) -> None:
        self._subs: Dict[Type[Any], List[Callable[[Any], None]]] = {}

    def subscribe(self, event_type: Type[Any], callback: Callable[[Any], None]) -> None:
        self._subs.setdefault(event_type, []).append(callback)

    def unsubscribe(self, event_type: Type[Any], callback: Callable[[Any], None]) -> None:
        subs = self._subs.get(event_type) or []
        if callback in subs:
            subs.remove(callback)

    def emit(self, event: Any) -> None:
        for cb in list(self._subs.get(type(event), []) or []):
            try:
                cb(event)
            except Exception:
                # Best-effort: never crash the engine for event handlers
                logging.getLogger(__name__).debug("Event handler failed.", exc_info=True)


def notify(bus: Optional[EventBus], level: str, message: str) -> None:
    if bus is not None and message:
        bus.emit(Notification(level=level, message=message))
