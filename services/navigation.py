# -*- coding: utf-8 -*-
"""Report drill-down navigation.

The stack holds one frame per visited level; frame 0 is the root and never
carries inherited filters. Drilling into a row pushes a frame whose filters
are the parent's plus ``{primary_key: row[primary_key]}``. Frames are
immutable snapshots, so going back to frame *i* restores exactly the context
captured when it was pushed.

Each fetch gets a request id; a response whose id is no longer the latest is
discarded (the user navigated on before it arrived).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from core.errors import EngineError
from core.page import PageConfig
from core.types import Outcome
from services.report_service import ReportData, ReportService, is_stale_result

log = logging.getLogger(__name__)

DEFAULT_PRIMARY_KEY = "id"


@dataclass(frozen=True)
class Frame:
    level: int
    filters: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def make(cls, level: int, filters: Optional[Mapping[str, Any]] = None) -> "Frame":
        return cls(level=int(level), filters=MappingProxyType(dict(filters or {})))


class ReportNavigator:
    def __init__(self, *, service: ReportService, page: PageConfig, event_bus=None):
        self.service = service
        self.page = page
        self.event_bus = event_bus
        self.stack: List[Frame] = [Frame.make(0)]
        self.panel_filters: Dict[str, Any] = {}
        self.data: Optional[ReportData] = None
        self._request_id = 0

    # ---------------- state ----------------
    @property
    def current(self) -> Frame:
        return self.stack[-1]

    @property
    def depth(self) -> int:
        return len(self.stack)

    def breadcrumbs(self) -> List[str]:
        names = self.page.level_names()
        return [names[f.level] for f in self.stack]

    def can_drill(self) -> bool:
        return self.current.level < len(self.page.levels) - 1

    def primary_key(self) -> str:
        """Level ``primaryHeaderKey``, else the ``PrimaryKey`` setting of the loaded data, else ``id``."""
        cfg = self.page.level(self.current.level)
        if cfg.primary_header_key:
            return cfg.primary_header_key
        if self.data is not None and self.data.settings is not None and self.data.settings.primary_key:
            return self.data.settings.primary_key
        return DEFAULT_PRIMARY_KEY

    def should_open_filter_panel(self, *, client_code: str = "") -> bool:
        return self.current.level == 0 and not client_code and self.page.should_open_filter_panel()

    # ---------------- transitions ----------------
    async def drill_into(self, row: Mapping[str, Any]) -> Optional[Outcome]:
        """Open the next level filtered by *row*; None when already at the deepest level."""
        if not self.can_drill():
            return None
        pk = self.primary_key()
        inherited = dict(self.current.filters)
        inherited[pk] = row.get(pk)
        self.stack.append(Frame.make(self.current.level + 1, inherited))
        log.debug("Drill into level %d with %s", self.current.level, inherited)
        return await self.refresh()

    async def select_breadcrumb(self, index: int) -> Outcome:
        if index < 0 or index >= len(self.stack):
            raise IndexError(f"No breadcrumb at position {index}")
        del self.stack[index + 1:]
        if index == 0:
            # Back at the root: no drill-down context may survive.
            self.stack[0] = Frame.make(self.stack[0].level)
        return await self.refresh()

    async def apply_filters(self, values: Mapping[str, Any]) -> Outcome:
        self.panel_filters = dict(values)
        return await self.refresh()

    async def refresh(self) -> Outcome:
        self._request_id += 1
        request_id = self._request_id
        frame = self.current
        try:
            data = await self.service.fetch(frame.level, self.panel_filters, frame.filters)
        except EngineError as e:
            if is_stale_result(self._request_id, request_id):
                return Outcome.discarded()
            log.warning("Report level %d not loaded: %s", frame.level, e)
            if self.event_bus is not None:
                from app.events import notify

                notify(self.event_bus, "error", str(e))
            return Outcome.failure(e)
        if is_stale_result(self._request_id, request_id):
            log.debug("Discarding stale report for level %d", frame.level)
            return Outcome.discarded()
        self.data = data
        if self.event_bus is not None:
            from app.events import ReportLoaded

            self.event_bus.emit(ReportLoaded(level=frame.level, row_count=len(data.rows), filters=dict(frame.filters)))
        return Outcome.success(data)
