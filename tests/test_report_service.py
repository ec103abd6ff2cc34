# -*- coding: utf-8 -*-
from __future__ import annotations

from datetime import date

from services.report_service import (
    ReportSettings,
    build_filter_xml,
    is_stale_result,
    parse_report_response,
    strip_row_ids,
)
from services.transport import TransportResponse

SETTINGS = (
    "<PrimaryKey>AccountNo</PrimaryKey><HideList>Internal, Code</HideList>"
    "<TotalList>Debit,Credit</TotalList><CompanyName>Acme</CompanyName>"
    "<CompanyAdd1>Line 1</CompanyAdd1><CompanyAdd3>Line 3</CompanyAdd3><WebColumns>AccountNo,Debit</WebColumns>"
)


def test_is_stale_result():
    assert is_stale_result(5, 4) is True
    assert is_stale_result(5, 5) is False


def test_settings_xml_is_parsed():
    s = ReportSettings.from_xml(SETTINGS)
    assert s.primary_key == "AccountNo"
    assert s.hide_list == ("Internal", "Code")
    assert s.company_address == ("Line 1", "Line 3")
    assert s.web_columns == ("AccountNo", "Debit")
    assert s.date_format == ""


def test_response_rows_settings_and_extra_tables():
    resp = TransportResponse(
        data={
            "rs0": [{"AccountNo": "A1", "Debit": "10.5", "Credit": "x"}, {"AccountNo": "A2", "Debit": 4, "Credit": 1}],
            "rs1": [{"Settings": SETTINGS}],
            "rs2": [{"Note": "n"}],
        }
    )
    data = parse_report_response(resp, level=1)
    assert [r["_id"] for r in data.rows] == [0, 1]
    assert data.totals() == {"Debit": 14.5, "Credit": 1.0}
    assert data.extra_tables == {"rs2": [{"Note": "n"}]}
    assert strip_row_ids(data.rows)[0] == {"AccountNo": "A1", "Debit": "10.5", "Credit": "x"}


def test_filter_xml_formats_dates_and_skips_empty():
    xml = build_filter_xml(
        {"FromDate": date(2024, 4, 1), "Branch": "", "Tags": ["A", "B"]},
        client_code="CL1",
        primary_filters={"AccountNo": "A1"},
    )
    assert xml == "<ClientCode>CL1</ClientCode><FromDate>20240401</FromDate><Tags>A|B</Tags><AccountNo>A1</AccountNo>"
