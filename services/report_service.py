# -*- coding: utf-8 -*-
"""Report data service.

Fetches one report level: builds the filter section from the filter panel
values, the inherited drill-down keys and the client code, posts the level's
``J_Ui`` and parses the result sets:

- ``rs0``: report rows (each gets a positional ``_id``)
- ``rs1[0].Settings``: display settings as a small XML blob
- ``rs2``...: extra tables, passed through untouched
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple
from xml.sax.saxutils import escape

from core.errors import FetchFailure
from core.keys import ResultSets
from core.page import LevelConfig, PageConfig
from core.value_bag import is_empty_value
from services.query_template import format_value
from services.transport import ApiContext, RequestDocument, Transport

log = logging.getLogger(__name__)

ROW_ID = "_id"
CLIENT_CODE = "ClientCode"


def is_stale_result(current_id: Any, result_id: Any) -> bool:
    """Return True if *result_id* does not match the latest request id."""
    return current_id != result_id


def _tag_values(xml: str, tag: str) -> List[str]:
    return re.findall(rf"<{tag}>(.*?)</{tag}>", xml or "", flags=re.S)


def _value(xml: str, tag: str) -> str:
    found = _tag_values(xml, tag)
    return found[0].strip() if found else ""


def _list(xml: str, tag: str) -> Tuple[str, ...]:
    found = _tag_values(xml, tag)
    if not found:
        return ()
    return tuple(s.strip() for s in found[0].split(",") if s.strip())


@dataclass(frozen=True)
class ReportSettings:
    primary_key: str = ""
    total_list: Tuple[str, ...] = ()
    right_list: Tuple[str, ...] = ()
    hide_list: Tuple[str, ...] = ()
    date_format: str = ""
    date_format_list: Tuple[str, ...] = ()
    dec2_list: Tuple[str, ...] = ()
    dec4_list: Tuple[str, ...] = ()
    dr_cr_color_list: Tuple[str, ...] = ()
    pnl_color_list: Tuple[str, ...] = ()
    mobile_columns: Tuple[str, ...] = ()
    tablet_columns: Tuple[str, ...] = ()
    web_columns: Tuple[str, ...] = ()
    company_name: str = ""
    company_address: Tuple[str, ...] = ()
    report_header: str = ""
    pdf_width: str = ""
    pdf_height: str = ""

    @classmethod
    def from_xml(cls, xml: str) -> "ReportSettings":
        return cls(
            primary_key=_value(xml, "PrimaryKey"),
            total_list=_list(xml, "TotalList"),
            right_list=_list(xml, "RightList"),
            hide_list=_list(xml, "HideList"),
            date_format=_value(xml, "DateFormat"),
            date_format_list=_list(xml, "DateFormatList"),
            dec2_list=_list(xml, "Dec2List"),
            dec4_list=_list(xml, "Dec4List"),
            dr_cr_color_list=_list(xml, "DrCRColorList"),
            pnl_color_list=_list(xml, "PnLColorList"),
            mobile_columns=_list(xml, "MobileColumns"),
            tablet_columns=_list(xml, "TabletColumns"),
            web_columns=_list(xml, "WebColumns"),
            company_name=_value(xml, "CompanyName"),
            company_address=tuple(a for a in (_value(xml, f"CompanyAdd{i}") for i in (1, 2, 3)) if a),
            report_header=_value(xml, "ReportHeader"),
            pdf_width=_value(xml, "PDFWidth"),
            pdf_height=_value(xml, "PDFHeight"),
        )

    def visible_columns(self, columns: List[str]) -> List[str]:
        hidden = set(self.hide_list) | {ROW_ID}
        return [c for c in columns if c not in hidden]


@dataclass
class ReportData:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    settings: Optional[ReportSettings] = None
    extra_tables: Dict[str, List[Any]] = field(default_factory=dict)
    level: int = 0

    @property
    def columns(self) -> List[str]:
        cols: List[str] = []
        for row in self.rows:
            for k in row:
                if k not in cols:
                    cols.append(k)
        return cols

    def totals(self) -> Dict[str, float]:
        """Column sums for the settings' ``TotalList`` (non-numeric cells skipped)."""
        out: Dict[str, float] = {}
        if self.settings is None:
            return out
        for col in self.settings.total_list:
            total = 0.0
            for row in self.rows:
                try:
                    total += float(row.get(col) or 0)
                except (TypeError, ValueError):
                    continue
            out[col] = total
        return out


def build_filter_xml(
    filters: Mapping[str, Any],
    *,
    client_code: str = "",
    primary_filters: Optional[Mapping[str, Any]] = None,
) -> str:
    """``X_Filter`` of a report request.

    Client code comes first, then the non-empty panel values (dates as
    ``YYYYMMDD``), then the inherited drill-down keys.
    """
    parts: List[str] = []
    if client_code:
        parts.append(f"<{CLIENT_CODE}>{escape(client_code)}</{CLIENT_CODE}>")
    for key, value in (filters or {}).items():
        if is_empty_value(value):
            continue
        parts.append(f"<{key}>{escape(format_value(value))}</{key}>")
    for key, value in (primary_filters or {}).items():
        parts.append(f"<{key}>{escape(format_value(value))}</{key}>")
    return "".join(parts)


def parse_report_response(resp, *, level: int = 0) -> ReportData:
    rows_raw = resp.rs0
    if rows_raw is None:
        rows_raw = []
    rows: List[Dict[str, Any]] = []
    for i, row in enumerate(rows_raw):
        if not isinstance(row, Mapping):
            raise FetchFailure(f"Malformed report row at index {i}")
        item = dict(row)
        item[ROW_ID] = i
        rows.append(item)
    settings = None
    rs1 = resp.rs1 or []
    if rs1 and isinstance(rs1[0], Mapping) and rs1[0].get("Settings"):
        settings = ReportSettings.from_xml(str(rs1[0]["Settings"]))
    extras = {
        k: v for k, v in resp.data.items()
        if k not in (ResultSets.PRIMARY, ResultSets.SECONDARY) and isinstance(v, list)
    }
    return ReportData(rows=rows, settings=settings, extra_tables=extras, level=level)


def strip_row_ids(rows: List[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    return [{k: v for k, v in r.items() if k != ROW_ID} for r in rows]


class ReportService:
    def __init__(self, *, transport: Transport, page: PageConfig, api_context: Optional[ApiContext] = None, client_code: str = ""):
        self.transport = transport
        self.page = page
        self.api_context = api_context or ApiContext()
        self.client_code = str(client_code or "")

    def build_request(self, level: int, filters: Mapping[str, Any], primary_filters: Mapping[str, Any]) -> RequestDocument:
        cfg: LevelConfig = self.page.level(level)
        return RequestDocument(
            ui=cfg.ui,
            sql=self.page.sql,
            x_filter=build_filter_xml(
                filters,
                client_code=self.client_code,
                primary_filters=primary_filters if level > 0 else None,
            ),
            api=self.api_context.merge({}),
        )

    async def fetch(self, level: int, filters: Mapping[str, Any], primary_filters: Mapping[str, Any]) -> ReportData:
        doc = self.build_request(level, filters, primary_filters)
        resp = await self.transport.post(doc)
        if not resp.success:
            raise FetchFailure(resp.message or "Report request rejected")
        data = parse_report_response(resp, level=level)
        log.info("Report level %d loaded: %d rows", level, len(data.rows))
        return data
