# -*- coding: utf-8 -*-
"""Entry workflow journeys: stage gating, save & advance, final submit."""

from __future__ import annotations

import asyncio
import json

import pytest

from conftest import FakeTransport, ok

from app.events import EventBus, Notification, StageAdvanced, WorkflowCompleted
from core.errors import FetchFailure, StaticValidationFailure, SubmissionFailure, ValidationFailure
from core.types import FormMode
from services import query_template
from services.dependency_resolver import DependencyResolver
from services.option_cache import OptionCache
from services.transport import ApiContext, TransportResponse
from services.validation_service import ValidationService
from services.workflow import (
    EntryWorkflow,
    RowTable,
    SubmitTemplate,
    clean_message,
    open_entry,
    stages_from_response,
)

TABS = [
    {"TabName": "Master", "Data": [[{"type": "WTextBox", "label": "Party", "wKey": "Party", "isMandatory": "true"}]], "Settings": {}},
    {
        "TabName": "Address",
        "Data": [{"type": "WTextBox", "label": "City", "wKey": "City", "isMandatory": "true"}],
        "Settings": {"SaveNextAPI": {"J_Ui": {"ActionName": "SaveAddress"}}},
    },
    {
        "TabName": "Items",
        "Data": [{"type": "WTextBox", "label": "Item", "wKey": "Item", "isMandatory": "true"}],
        "Settings": {"isTable": "true", "SaveNextAPI": {"J_Ui": {"ActionName": "SaveItems"}}},
    },
]

MASTER_FIELDS = [{"type": "WTextBox", "label": "Party", "wKey": "Party", "isMandatory": "true"}]
CHILD_FIELDS = [
    {"type": "WTextBox", "label": "Item", "wKey": "Item", "isMandatory": "true"},
    {"type": "WTextBox", "label": "Qty", "wKey": "Qty"},
]


def _workflow(transport, *, rows=TABS, bus=None, mode=FormMode.NEW, record=None, child_rows=None, child_fields=None, master_submit=None):
    built = stages_from_response(rows, mode=mode, record=record, child_rows=child_rows, child_fields=child_fields)
    return EntryWorkflow(
        stages=built["stages"],
        child=built["child"],
        resolver=DependencyResolver(cache=OptionCache(), transport=transport),
        validation=ValidationService(transport=transport),
        transport=transport,
        api_context=ApiContext(user_id="u1"),
        event_bus=bus,
        master_submit=master_submit,
        mode=mode,
    )


def test_tabbed_workflow_starts_on_first_tab_and_gates_advance():
    transport = FakeTransport()
    wf = _workflow(transport)

    assert wf.active == 1
    assert wf.active_stage.name == "Address"
    assert wf.validate_stage() == {"Party": "Party is required", "City": "City is required"}
    assert not wf.can_advance()

    outcome = asyncio.run(wf.save_and_advance())
    assert not outcome.ok
    assert isinstance(outcome.fault, StaticValidationFailure)
    assert transport.docs == []
    assert wf.active == 1


def test_save_and_advance_submits_master_and_stage():
    transport = FakeTransport(lambda doc: ok([]))
    bus = EventBus()
    advanced = []
    bus.subscribe(StageAdvanced, advanced.append)
    wf = _workflow(transport, bus=bus)

    async def run():
        await wf.change("Party", "P1", stage="Master")
        await wf.change("City", "Pune")
        return await wf.save_and_advance()

    outcome = asyncio.run(run())

    assert outcome.ok
    doc = transport.docs[-1]
    assert transport.action(doc) == "SaveAddress"
    assert json.loads(doc.x_data_json) == {"Master": [{"Party": "P1"}], "Address": [{"City": "Pune"}]}
    assert wf.stage("Address").completed
    assert wf.active == 2
    assert [(e.stage_index, e.stage_name) for e in advanced] == [(2, "Items")]


def test_final_submit_requires_last_stage_and_rows():
    transport = FakeTransport(lambda doc: ok([]))
    wf = _workflow(transport)

    blocked = asyncio.run(wf.final_submit())
    assert not blocked.ok
    assert isinstance(blocked.fault, SubmissionFailure)

    async def to_items():
        await wf.change("Party", "P1", stage="Master")
        await wf.change("City", "Pune")
        await wf.save_and_advance()
        return await wf.final_submit()

    outcome = asyncio.run(to_items())
    assert not outcome.ok
    assert outcome.fault.errors == {"Items": "Add at least one row to Items"}


def test_final_submit_aggregates_stages_and_closes():
    transport = FakeTransport(lambda doc: TransportResponse(success=True, message="<Message>Saved V-17</Message>", data={}))
    bus = EventBus()
    completed = []
    bus.subscribe(WorkflowCompleted, completed.append)
    wf = _workflow(transport, bus=bus)

    async def run():
        await wf.change("Party", "P1", stage="Master")
        await wf.change("City", "Pune")
        await wf.save_and_advance()
        with pytest.raises(StaticValidationFailure):
            await wf.add_row()
        await wf.change("Item", "Bolt")
        await wf.add_row()
        return await wf.final_submit()

    outcome = asyncio.run(run())

    assert outcome.ok
    doc = transport.docs[-1]
    assert transport.action(doc) == "SaveItems"
    assert json.loads(doc.x_data_json) == {
        "Master": {"Party": "P1"},
        "Address": {"City": "Pune"},
        "Items": [{"Item": "Bolt"}],
    }
    assert wf.closed
    assert completed[0].message == "Saved V-17"
    # Reset to the initial state.
    assert wf.active == 1
    assert wf.master.scope.values.get("Party") is None
    assert wf.stage("Items").table.is_empty


def test_failed_submit_keeps_state_for_retry():
    def responder(doc):
        if doc.ui.get("ActionName") == "SaveItems":
            return FetchFailure("Request failed: timed out")
        return ok([])

    transport = FakeTransport(responder)
    bus = EventBus()
    notes = []
    bus.subscribe(Notification, notes.append)
    wf = _workflow(transport, bus=bus)

    async def run():
        await wf.change("Party", "P1", stage="Master")
        await wf.change("City", "Pune")
        await wf.save_and_advance()
        await wf.change("Item", "Bolt")
        await wf.add_row()
        return await wf.final_submit()

    outcome = asyncio.run(run())

    assert not outcome.ok
    assert outcome.fault.message == "Failed to submit the form. Please try again."
    assert not wf.closed
    assert wf.active == 2
    assert len(wf.stage("Items").table) == 1
    assert wf.master.scope.values.get("Party") == "P1"
    assert notes[-1].level == "error"


def test_rejected_submit_message_is_cleaned():
    transport = FakeTransport(lambda doc: TransportResponse(success=False, message="<Message>Duplicate party</Message>", data={}))
    wf = _workflow(transport)

    async def run():
        await wf.change("Party", "P1", stage="Master")
        await wf.change("City", "Pune")
        return await wf.save_and_advance()

    outcome = asyncio.run(run())
    assert outcome.fault.message == "Duplicate party"
    assert wf.active == 1
    assert not wf.stage("Address").completed


def test_master_only_submission_flags_child_items():
    transport = FakeTransport(lambda doc: ok([]))
    wf = _workflow(
        transport,
        rows=MASTER_FIELDS,
        mode=FormMode.EDIT,
        record={"Party": "P1", "VoucherNo": "V1", "_id": 3},
        child_rows=[{"Item": "Nut", "Qty": "1"}],
        child_fields=CHILD_FIELDS,
        master_submit=SubmitTemplate(ui={"ActionName": "SaveVoucher"}),
    )
    assert not wf.has_tabs and wf.is_last
    row_id = wf.child.table.rows[0]["_id"]

    async def run():
        await wf.edit_row(row_id)
        await wf.change("Qty", "2", stage="Child")
        await wf.add_row()
        await wf.change("Item", "Bolt", stage="Child")
        await wf.change("Qty", "3", stage="Child")
        await wf.add_row()
        return await wf.final_submit()

    outcome = asyncio.run(run())

    assert outcome.ok
    doc = transport.docs[-1]
    assert transport.action(doc) == "SaveVoucher"
    assert doc.x_data_json is None
    assert doc.x_data == (
        "<VoucherNo>V1</VoucherNo><Party>P1</Party>"
        "<items>"
        "<item><Item>Nut</Item><Qty>2</Qty><IsEdit>true</IsEdit><IsAdd>false</IsAdd></item>"
        "<item><Item>Bolt</Item><Qty>3</Qty><IsEdit>false</IsEdit><IsAdd>true</IsAdd></item>"
        "</items>"
        "<UserId>u1</UserId>"
    )


def test_view_mode_is_read_only():
    transport = FakeTransport(lambda doc: ok([]))
    wf = _workflow(transport, mode=FormMode.VIEW)

    assert all(not f.enabled for f in wf.master.scope.fields)
    with pytest.raises(ValidationFailure):
        asyncio.run(wf.change("Party", "P1", stage="Master"))
    outcome = asyncio.run(wf.save_and_advance())
    assert outcome.fault.message == "Form is read-only"
    assert transport.docs == []


def test_row_table_edit_delete_and_cancel():
    table = RowTable()
    a = table.add({"Item": "A"})
    b = table.add({"Item": "B"})
    assert table.begin_edit(a["_id"]) == {"Item": "A"}
    table.cancel_edit()
    assert table.editing is None

    table.delete(b["_id"])
    assert table.committed() == [{"Item": "A"}]
    with pytest.raises(KeyError):
        table.delete(b["_id"])


def test_clean_message_strips_message_tags():
    assert clean_message("<Message>Saved</Message>") == "Saved"
    assert clean_message(None) == ""


def test_open_entry_requests_edit_form_and_loads_record():
    def responder(doc):
        return ok(MASTER_FIELDS, rs1=[{"Item": "Nut", "Qty": "1"}])

    transport = FakeTransport(responder)
    entry = {"MasterEntry": {"J_Ui": {"ActionName": "Voucher", "Option": "Master"}, "X_Filter": {"VoucherNo": "##VoucherNo##"}}}

    async def run():
        return await open_entry(
            entry,
            resolver=DependencyResolver(cache=OptionCache(), transport=transport),
            validation=ValidationService(transport=transport),
            transport=transport,
            api_context=ApiContext(user_id="u1"),
            record={"VoucherNo": "V1", "Party": "P1"},
            child_fields=CHILD_FIELDS,
        )

    wf = asyncio.run(run())

    xml = transport.docs[0].to_xml()
    assert '"Option":"Master_Edit"' in xml
    assert "<X_Filter><VoucherNo>V1</VoucherNo><Party>P1</Party></X_Filter>" in xml
    assert wf.mode is FormMode.EDIT
    assert wf.master.scope.values.get("Party") == "P1"
    assert wf.master.scope.record_extras == {"VoucherNo": "V1"}
    assert wf.child.table.committed() == [{"Item": "Nut", "Qty": "1"}]


CITIES = {
    "MH": [{"DisplayName": "Mumbai", "Value": "MUM"}, {"DisplayName": "Pune", "Value": "PNQ"}],
    "KA": [{"DisplayName": "Bengaluru", "Value": "BLR"}],
}
CITY_FIELD = {"type": "WDropDownBox", "label": "City", "wKey": "City", "dependsOn": {"field": "State", "wQuery": {"J_Ui": {"ActionName": "Cities"}}}}
GEO_CHILD_FIELDS = [{"type": "WTextBox", "label": "State", "wKey": "State"}, CITY_FIELD]
GEO_MASTER_FIELDS = [
    {
        "type": "WTextBox",
        "label": "State",
        "wKey": "State",
        "ValidationAPI": {"J_Ui": {"ActionName": "ValidateState"}, "X_Filter": "<State>${State}</State>"},
    },
    CITY_FIELD,
    {"type": "WTextBox", "label": "Qty", "wKey": "Qty"},
]


def geo_responder(verdicts=None):
    """Cities per state; ``ValidateState`` answers from *verdicts* (default success)."""

    def responder(doc):
        action = doc.ui.get("ActionName")
        tags = query_template.parse_tags(doc.x_filter)
        if action == "Cities":
            return ok(CITIES.get(tags.get("State"), []))
        if action == "ValidateState":
            return ok([{"Column1": (verdicts or {}).get(tags.get("State"), "<Flag>S</Flag>")}])
        return ok([])

    return responder


def _city_values(scope):
    return [o.value for o in scope.options("City")]


def test_row_entry_form_resets_dependent_lists():
    transport = FakeTransport(geo_responder())
    wf = _workflow(
        transport,
        rows=MASTER_FIELDS,
        child_rows=[{"State": "KA", "City": "BLR"}],
        child_fields=GEO_CHILD_FIELDS,
    )
    scope = wf.child.scope
    row_id = wf.child.table.rows[0]["_id"]
    seen = {}

    async def run():
        await wf.load()
        await wf.change("State", "MH", stage="Child")
        await wf.change("City", "PNQ", stage="Child")
        await wf.add_row()
        seen["after_add"] = (scope.values.snapshot(), _city_values(scope), scope.is_visible("City"))
        await wf.edit_row(row_id)
        seen["editing"] = (scope.values.get("City"), _city_values(scope), scope.is_visible("City"))
        await wf.cancel_edit()
        seen["after_cancel"] = (_city_values(scope), scope.is_visible("City"))

    asyncio.run(run())

    assert seen["after_add"] == ({}, [], False)
    assert seen["editing"] == ("BLR", ["BLR"], True)
    assert seen["after_cancel"] == ([], False)
    assert wf.child.table.committed() == [{"State": "KA", "City": "BLR"}, {"State": "MH", "City": "PNQ"}]


def test_rejected_change_restores_dependents_and_their_lists():
    transport = FakeTransport(geo_responder({"KA": "<Flag>E</Flag><Message>State is locked</Message>"}))
    bus = EventBus()
    notes = []
    bus.subscribe(Notification, notes.append)
    wf = _workflow(transport, rows=GEO_MASTER_FIELDS, bus=bus, mode=FormMode.EDIT, record={"State": "MH", "City": "MUM"})
    scope = wf.master.scope

    async def run():
        await wf.load()
        with pytest.raises(ValidationFailure):
            await wf.change("State", "KA")

    asyncio.run(run())

    assert scope.values.get("State") == "MH"
    assert scope.values.get("City") == "MUM"
    assert _city_values(scope) == ["MUM", "PNQ"]
    assert scope.is_visible("City")
    assert notes[-1].message == "State is locked"


def test_final_submit_restores_enabled_state_and_option_lists():
    transport = FakeTransport(geo_responder({"KA": "<Flag>D</Flag><Qty>true</Qty>"}))
    wf = _workflow(
        transport,
        rows=GEO_MASTER_FIELDS,
        mode=FormMode.EDIT,
        record={"State": "MH", "City": "MUM", "Qty": "5"},
        master_submit=SubmitTemplate(ui={"ActionName": "SaveVoucher"}),
    )
    scope = wf.master.scope

    async def run():
        await wf.load()
        await wf.change("State", "KA")
        assert scope.field("Qty").enabled is False
        assert _city_values(scope) == ["BLR"]
        return await wf.final_submit()

    outcome = asyncio.run(run())

    assert outcome.ok
    assert wf.closed
    assert scope.field("Qty").enabled is True
    assert scope.values.snapshot() == {"State": "MH", "City": "MUM", "Qty": "5"}
    assert _city_values(scope) == ["MUM", "PNQ"]
    assert scope.is_visible("City")
