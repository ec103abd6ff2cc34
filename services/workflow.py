# -*- coding: utf-8 -*-
"""Entry workflow (wizard) state machine.

Stage 0 is the master record: always present, always shown, validated on
every submit. With tabs, stages 1..N are the tabs and the active stage starts
at 1. Without tabs the workflow is master-only and repeatable child records
are kept in a separate row table.

Transitions
-----------
- ``save_and_advance``: validate master + active stage, submit master +
  completed stages + active stage through the stage's ``SaveNextAPI``; on
  success mark the stage complete and move on unless it is the last one.
- ``final_submit``: only on the last stage; aggregates every stage in one
  payload. On success the workflow resets and reports ``closed``.

A failed submit leaves every stage exactly as it was so the user can retry.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Set
from xml.sax.saxutils import escape

from core.errors import (
    ConfigError,
    EngineError,
    StaticValidationFailure,
    SubmissionFailure,
    ValidationFailure,
)
from core.fields import FieldSet, QueryTemplate, flatten_field_config
from core.keys import DocKeys
from core.types import FormMode, Outcome
from infra.perf import span as perf_span
from services import query_template
from services.dependency_resolver import ChangeResult, DependencyResolver, FormScope
from services.transport import ApiContext, RequestDocument, Transport
from services.validation_service import ValidationService

log = logging.getLogger(__name__)

ROW_ID = "_id"
MASTER = "Master"
CHILD = "Child"
MASTER_TAB_NAMES = ("master", "master form")
EDIT_OPTION = "Master_Edit"

_MESSAGE_TAG = re.compile(r"</?Message>")


def clean_message(message: Any) -> str:
    """Strip ``<Message>`` wrappers the backend puts around its text."""
    return _MESSAGE_TAG.sub("", str(message or "")).strip()


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() == "true"


def _plain(value: Any) -> Any:
    if isinstance(value, (date, list, tuple, set, frozenset)):
        return query_template.format_value(value)
    return value


def plain_values(values: Mapping[str, Any]) -> Dict[str, Any]:
    """Submission form of a value bag: dates as YYYYMMDD, multi-selects as A|B."""
    return {k: _plain(v) for k, v in values.items()}


def xml_tags(values: Mapping[str, Any]) -> str:
    out = []
    for k, v in values.items():
        text = "" if v is None else query_template.format_value(v)
        out.append(f"<{k}>{escape(text)}</{k}>")
    return "".join(out)


@dataclass(frozen=True)
class SubmitTemplate:
    """``SaveNextAPI`` (or ``MasterEntry``) request shape of a stage."""

    ui: Any = ""
    api: Any = ""
    sql: str = ""
    x_filter_multiple: Any = None

    @classmethod
    def from_config(cls, raw: Any) -> "SubmitTemplate":
        if raw is None:
            return cls()
        if not isinstance(raw, Mapping):
            raise ConfigError("Submission template must be an object")
        sql = raw.get(DocKeys.SQL) or raw.get("sql") or ""
        return cls(
            ui=raw.get(DocKeys.UI) or "",
            api=raw.get(DocKeys.API) or "",
            sql=sql if isinstance(sql, str) else "",
            x_filter_multiple=raw.get(DocKeys.FILTER_MULTIPLE),
        )

    def filter_block(self, values: Mapping[str, Any]) -> str:
        """Placeholders resolve to ``""`` when the stage has no such value."""
        tmpl = self.x_filter_multiple
        if not tmpl:
            return ""
        if isinstance(tmpl, Mapping):
            return "".join(
                f"<{tag}>{query_template.substitute(str(expr or ''), values)}</{tag}>" for tag, expr in tmpl.items()
            )
        return query_template.substitute(str(tmpl), values)


class RowTable:
    """Committed rows of a table stage, editable in place before submission."""

    def __init__(self, rows: Optional[List[Mapping[str, Any]]] = None):
        self.rows: List[Dict[str, Any]] = []
        self.editing: Optional[str] = None
        self.added: Set[str] = set()
        self.edited: Set[str] = set()
        for r in rows or []:
            self.rows.append(self._with_id(r))

    @staticmethod
    def _with_id(row: Mapping[str, Any]) -> Dict[str, Any]:
        out = dict(row)
        out[ROW_ID] = out.get(ROW_ID) or uuid.uuid4().hex
        return out

    def __len__(self) -> int:
        return len(self.rows)

    @property
    def is_empty(self) -> bool:
        return not self.rows

    def find(self, row_id: str) -> Dict[str, Any]:
        for r in self.rows:
            if r[ROW_ID] == row_id:
                return r
        raise KeyError(row_id)

    def add(self, values: Mapping[str, Any]) -> Dict[str, Any]:
        """Commit *values* as a new row, or as the row being edited."""
        if self.editing is not None:
            row_id = self.editing
            i = self.rows.index(self.find(row_id))
            row = dict(values)
            row[ROW_ID] = row_id
            self.rows[i] = row
            if row_id not in self.added:
                self.edited.add(row_id)
            self.editing = None
            return row
        row = self._with_id(values)
        self.rows.append(row)
        self.added.add(row[ROW_ID])
        return row

    def begin_edit(self, row_id: str) -> Dict[str, Any]:
        row = self.find(row_id)
        self.editing = row_id
        return {k: v for k, v in row.items() if k != ROW_ID}

    def cancel_edit(self) -> None:
        self.editing = None

    def delete(self, row_id: str) -> None:
        row = self.find(row_id)
        self.rows.remove(row)
        self.added.discard(row_id)
        self.edited.discard(row_id)
        if self.editing == row_id:
            self.editing = None

    def committed(self) -> List[Dict[str, Any]]:
        return [plain_values({k: v for k, v in r.items() if k != ROW_ID}) for r in self.rows]

    def items(self) -> List[Dict[str, Any]]:
        """Rows flagged for a master-only submission (``IsEdit`` / ``IsAdd``)."""
        out = []
        for r in self.rows:
            item = plain_values({k: v for k, v in r.items() if k != ROW_ID})
            item["IsEdit"] = "true" if r[ROW_ID] in self.edited else "false"
            item["IsAdd"] = "true" if r[ROW_ID] in self.added else "false"
            out.append(item)
        return out


@dataclass
class Stage:
    name: str
    scope: FormScope
    is_table: bool = False
    allow_empty_table: bool = False
    submit: SubmitTemplate = field(default_factory=SubmitTemplate)
    table: RowTable = field(default_factory=RowTable)
    completed: bool = False

    def data(self) -> List[Dict[str, Any]]:
        if self.is_table:
            return self.table.committed()
        values = plain_values(self.scope.payload())
        return [values] if values else []

    def errors(self, validation: ValidationService) -> Dict[str, str]:
        if self.is_table:
            if self.table.is_empty and not self.allow_empty_table:
                return {self.name: f"Add at least one row to {self.name}"}
            return {}
        return validation.validate_static(self.scope)


class EntryWorkflow:
    def __init__(
        self,
        *,
        stages: List[Stage],
        resolver: DependencyResolver,
        validation: ValidationService,
        transport: Transport,
        api_context: Optional[ApiContext] = None,
        event_bus=None,
        child: Optional[Stage] = None,
        master_submit: Optional[SubmitTemplate] = None,
        mode: FormMode = FormMode.NEW,
    ) -> None:
        if not stages:
            raise ConfigError("An entry workflow needs a master stage")
        self.stages = stages
        self.child = child
        self.resolver = resolver
        self.validation = validation
        if validation.resolver is None:
            validation.resolver = resolver
        self.transport = transport
        self.api_context = api_context or ApiContext()
        self.event_bus = event_bus
        self.master_submit = master_submit or SubmitTemplate()
        self.mode = mode
        self.closed = False
        self._initial = {s.name: (s.scope.values.snapshot(), dict(s.scope.record_extras), list(s.table.rows)) for s in self._all_stages()}
        self.active = 1 if self.has_tabs else 0
        for s in self._all_stages():
            s.scope.set_mode(mode)

    # ---------------- state ----------------
    def _all_stages(self) -> List[Stage]:
        return self.stages + ([self.child] if self.child is not None else [])

    @property
    def master(self) -> Stage:
        return self.stages[0]

    @property
    def tabs(self) -> List[Stage]:
        return self.stages[1:]

    @property
    def has_tabs(self) -> bool:
        return len(self.stages) > 1

    @property
    def active_stage(self) -> Stage:
        return self.stages[self.active]

    @property
    def is_last(self) -> bool:
        return self.active == len(self.stages) - 1

    @property
    def read_only(self) -> bool:
        return self.mode is FormMode.VIEW

    def stage(self, name: str) -> Stage:
        for s in self._all_stages():
            if s.name == name:
                return s
        raise KeyError(name)

    def table_stage(self) -> Stage:
        """Stage whose row table the row operations act on."""
        if self.active_stage.is_table:
            return self.active_stage
        if self.child is not None:
            return self.child
        raise ConfigError(f"Stage '{self.active_stage.name}' has no row table")

    # ---------------- loading / editing ----------------
    async def load(self) -> Dict[str, Dict[str, Outcome]]:
        """Populate every stage: option lists in parallel, then remote checks one by one."""
        out: Dict[str, Dict[str, Outcome]] = {}
        for s in self._all_stages():
            out[s.name] = await self.resolver.load_scope(s.scope)
        if self.mode is FormMode.EDIT:
            for s in self._all_stages():
                _, failures = await self.validation.validate_loaded_record(s.scope)
                for msg in failures.values():
                    self._notify("error", msg)
        return out

    async def change(self, key: str, value: Any, *, stage: Optional[str] = None) -> ChangeResult:
        """Apply a user edit; in edit mode a field's remote check runs after the cascade."""
        target = self.stage(stage) if stage else self.active_stage
        scope = target.scope
        f = scope.field(key)
        if not f.enabled:
            raise ValidationFailure(f.key, f"{f.display_label} is read-only")
        previous = scope.values.get(key)
        # Dependents lose their values in the cascade; a rejected check puts them back.
        saved = {vk: scope.values.get(vk) for fk in scope.graph.closure(key) for vk in scope.fields[fk].keys}
        result = await self.resolver.on_field_changed(scope, key, value)
        if f.remote_validation is not None and scope.mode is FormMode.EDIT:
            try:
                await self.validation.validate_remote(scope, key, previous, snapshot=saved)
            except ValidationFailure as e:
                self._notify("error", e.message)
                raise
        return result

    def validate_stage(self) -> Dict[str, str]:
        errors = dict(self.validation.validate_static(self.master.scope))
        if self.active != 0:
            errors.update(self.active_stage.errors(self.validation))
        return errors

    def can_advance(self) -> bool:
        return not self.read_only and not self.validate_stage()

    # ---------------- rows ----------------
    async def add_row(self) -> Dict[str, Any]:
        """Validate the entry form of the table stage and commit it as a row."""
        stage = self.table_stage()
        errors = self.validation.validate_static(stage.scope)
        if errors:
            raise StaticValidationFailure(errors)
        row = stage.table.add(stage.scope.payload())
        await self.clear_entry()
        return row

    async def edit_row(self, row_id: str) -> Dict[str, Any]:
        """Load a committed row into the entry form, dependent lists included."""
        stage = self.table_stage()
        values = stage.table.begin_edit(row_id)
        await self.resolver.reset_scope(stage.scope, values)
        return values

    def delete_row(self, row_id: str) -> None:
        self.table_stage().table.delete(row_id)

    async def cancel_edit(self) -> None:
        stage = self.table_stage()
        stage.table.cancel_edit()
        await self.clear_entry()

    async def clear_entry(self) -> None:
        await self.resolver.reset_scope(self.table_stage().scope)

    # ---------------- submission ----------------
    async def save_and_advance(self) -> Outcome:
        if self.read_only:
            return self._blocked("Form is read-only")
        if not self.has_tabs:
            return self._blocked("This form has no stages; use final submit")
        errors = self.validate_stage()
        if errors:
            return Outcome.failure(StaticValidationFailure(errors))

        stage = self.active_stage
        payload: Dict[str, Any] = {MASTER: self.master.data()}
        for s in self.tabs[: self.active - 1]:
            if s.completed:
                payload[s.name] = s.data()
        payload[stage.name] = stage.data()

        outcome = await self._post_stage(stage.submit, stage.scope.values.snapshot(), payload)
        if not outcome.ok:
            return outcome
        stage.completed = True
        self._notify("success", "Tab form submitted successfully!")
        if not self.is_last:
            self.active += 1
            if self.event_bus is not None:
                from app.events import StageAdvanced

                self.event_bus.emit(StageAdvanced(stage_index=self.active, stage_name=self.active_stage.name))
            self._notify("info", f"Moved to next tab: {self.active_stage.name}")
        return Outcome.success(payload)

    async def final_submit(self) -> Outcome:
        if self.read_only:
            return self._blocked("Form is read-only")
        if not self.is_last:
            return self._blocked("Complete the remaining stages before the final submit")
        errors = self.validate_stage()
        if errors:
            return Outcome.failure(StaticValidationFailure(errors))

        if self.has_tabs:
            stage = self.active_stage
            payload: Dict[str, Any] = {MASTER: plain_values(self.master.scope.payload())}
            for s in self.tabs:
                payload[s.name] = s.table.committed() if s.is_table else plain_values(s.scope.payload())
            outcome = await self._post_stage(stage.submit, stage.scope.values.snapshot(), payload)
        else:
            outcome = await self._post_master()
        if not outcome.ok:
            return outcome

        message = clean_message(outcome.value)
        self._notify("success", "Form submitted successfully!")
        if message:
            self._notify("success", message)
        await self.reset()
        self.closed = True
        if self.event_bus is not None:
            from app.events import WorkflowCompleted

            self.event_bus.emit(WorkflowCompleted(message=message))
        return outcome

    async def reset(self) -> None:
        """Back to the state the workflow was opened with.

        Every scope is reloaded from its initial values, so enabled flags and
        dependent option lists follow them; rows, completion and the active
        stage are restored too.
        """
        for s in self._all_stages():
            values, extras, rows = self._initial[s.name]
            await self.resolver.reset_scope(s.scope, {**extras, **values})
            s.table = RowTable(rows)
            s.completed = False
        self.active = 1 if self.has_tabs else 0

    # ---------------- internals ----------------
    async def _post_stage(self, submit: SubmitTemplate, stage_values: Mapping[str, Any], payload: Mapping[str, Any]) -> Outcome:
        doc = RequestDocument(
            ui=submit.ui,
            sql=submit.sql,
            x_filter="",
            x_filter_multiple=submit.filter_block(stage_values),
            x_data_json=json.dumps(payload, ensure_ascii=False, default=query_template.format_value),
            api=self.api_context.merge(submit.api),
        )
        return await self._post(doc)

    async def _post_master(self) -> Outcome:
        master = plain_values(self.master.scope.payload())
        items = self.child.table.items() if self.child is not None else []
        body = xml_tags(master) + "<items>" + "".join(f"<item>{xml_tags(i)}</item>" for i in items) + "</items>"
        if self.api_context.user_id:
            body += xml_tags({"UserId": self.api_context.user_id})
        submit = self.master_submit
        doc = RequestDocument(
            ui=submit.ui,
            sql=submit.sql,
            x_filter="",
            x_data=body,
            api=self.api_context.merge(submit.api),
        )
        return await self._post(doc)

    async def _post(self, doc: RequestDocument) -> Outcome:
        try:
            with perf_span("workflow.submit", threshold_ms=250.0):
                resp = await self.transport.post(doc)
        except EngineError as e:
            log.warning("Submission not delivered: %s", e)
            fault = SubmissionFailure("Failed to submit the form. Please try again.")
            fault.__cause__ = e
            self._notify("error", fault.message)
            return Outcome.failure(fault)
        if not resp.success:
            fault = SubmissionFailure(clean_message(resp.message) or "Submission failed")
            self._notify("warning", fault.message)
            return Outcome.failure(fault)
        return Outcome.success(resp.message)

    def _blocked(self, message: str) -> Outcome:
        return Outcome.failure(SubmissionFailure(message))

    def _notify(self, level: str, message: str) -> None:
        from app.events import notify

        notify(self.event_bus, level, message)


# ---------------- loading from server configuration ----------------
def record_values(record: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Initial values of a stage from a loaded record (internal ``_`` keys dropped).

    Keys the stage does not declare end up in its record extras.
    """
    if not record:
        return {}
    return {k: v for k, v in record.items() if v is not None and not str(k).startswith("_")}


def _stage_from_tab(tab: Mapping[str, Any], *, mode: FormMode) -> Stage:
    name = str(tab.get("TabName") or "").strip()
    data = flatten_field_config(tab.get("Data") or [])
    settings = tab.get("Settings") or {}
    if not isinstance(settings, Mapping):
        raise ConfigError(f"Tab '{name}': Settings must be an object")
    is_table = _flag(settings.get("isTable"))
    table_data = [r for r in (tab.get("tableData") or []) if isinstance(r, Mapping)]
    fields = FieldSet.from_config(data)
    values = {}
    if table_data and not is_table:
        values = record_values(table_data[0])
    scope = FormScope(name, fields, values, mode=mode)
    return Stage(
        name=name,
        scope=scope,
        is_table=is_table,
        allow_empty_table=_flag(settings.get("allowEmptyTable")),
        submit=SubmitTemplate.from_config(settings.get("SaveNextAPI")),
        table=RowTable(table_data if is_table else None),
    )


def _is_master_tab(tab: Mapping[str, Any]) -> bool:
    return str(tab.get("TabName") or "").strip().lower() in MASTER_TAB_NAMES


def stages_from_response(
    rows: List[Any],
    *,
    mode: FormMode = FormMode.NEW,
    record: Optional[Mapping[str, Any]] = None,
    child_rows: Optional[List[Mapping[str, Any]]] = None,
    child_fields: Optional[List[Mapping[str, Any]]] = None,
) -> Dict[str, Any]:
    """Build stages from a ``MasterEntry`` response.

    ``rows`` is either a list of tabs (``TabName`` / ``Data`` / ``Settings`` /
    ``tableData``) or, for a master-only form, the master field list itself.
    """
    tabbed = bool(rows) and all(isinstance(r, Mapping) and "TabName" in r for r in rows)
    if not tabbed:
        fields_raw = flatten_field_config(rows)
        master = Stage(MASTER, FormScope(MASTER, FieldSet.from_config(fields_raw), record_values(record), mode=mode))
        child = None
        if child_fields is not None:
            child_raw = flatten_field_config(child_fields)
            child = Stage(
                CHILD,
                FormScope(CHILD, FieldSet.from_config(child_raw), mode=mode),
                is_table=True,
                allow_empty_table=True,
                table=RowTable(child_rows),
            )
        return {"stages": [master], "child": child}

    master_tab = next((t for t in rows if _is_master_tab(t)), None)
    if master_tab is None:
        raise ConfigError("Tabbed entry has no Master tab")
    master_raw = flatten_field_config(master_tab.get("Data") or [])
    table_data = [r for r in (master_tab.get("tableData") or []) if isinstance(r, Mapping)]
    master_record = table_data[0] if table_data else record
    master = Stage(MASTER, FormScope(MASTER, FieldSet.from_config(master_raw), record_values(master_record), mode=mode))
    tabs = [_stage_from_tab(t, mode=mode) for t in rows if not _is_master_tab(t)]
    return {"stages": [master] + tabs, "child": None}


def master_entry_request(entry: Mapping[str, Any], api_context: ApiContext, *, record: Optional[Mapping[str, Any]] = None) -> RequestDocument:
    """Request for the entry form definition (``Master_Edit`` when a record is opened)."""
    cfg = entry.get("MasterEntry")
    if not isinstance(cfg, Mapping):
        raise ConfigError("Entry has no MasterEntry")
    tmpl = QueryTemplate.from_config(cfg)
    ui = tmpl.ui
    overrides = {}
    if record and isinstance(ui, Mapping) and "Option" in ui:
        overrides["Option"] = EDIT_OPTION
    filt = cfg.get(DocKeys.FILTER) or {}
    parts = []
    if isinstance(filt, Mapping):
        for k, v in filt.items():
            if record and record.get(k) is not None:
                parts.append(xml_tags({k: record[k]}))
            elif isinstance(v, str) and v.startswith("##"):
                parts.append(f"<{k}></{k}>")
            else:
                parts.append(xml_tags({k: v}))
        if record:
            for k, v in record.items():
                if v is not None and k not in filt and not str(k).startswith("_"):
                    parts.append(xml_tags({k: v}))
    sql = cfg.get("sql") or cfg.get(DocKeys.SQL) or ""
    return RequestDocument(
        ui=ui,
        ui_overrides=overrides,
        sql=sql if isinstance(sql, str) else "",
        x_filter="".join(parts),
        api=api_context.merge(tmpl.api),
    )


async def open_entry(
    entry: Mapping[str, Any],
    *,
    resolver: DependencyResolver,
    validation: ValidationService,
    transport: Transport,
    api_context: Optional[ApiContext] = None,
    event_bus=None,
    record: Optional[Mapping[str, Any]] = None,
    mode: Optional[FormMode] = None,
    child_fields: Optional[List[Mapping[str, Any]]] = None,
) -> EntryWorkflow:
    """Fetch an entry definition and build a loaded workflow for it."""
    api_context = api_context or ApiContext()
    if mode is None:
        mode = FormMode.EDIT if record else FormMode.NEW
    doc = master_entry_request(entry, api_context, record=record)
    resp = await transport.post(doc)
    if not resp.success:
        raise SubmissionFailure(clean_message(resp.message) or "Entry form could not be loaded")
    built = stages_from_response(
        resp.require_rs0(),
        mode=mode,
        record=record,
        child_rows=[r for r in (resp.rs1 or []) if isinstance(r, Mapping)],
        child_fields=child_fields,
    )
    wf = EntryWorkflow(
        stages=built["stages"],
        child=built["child"],
        resolver=resolver,
        validation=validation,
        transport=transport,
        api_context=api_context,
        event_bus=event_bus,
        master_submit=SubmitTemplate.from_config(entry.get("MasterEntry")),
        mode=mode,
    )
    await wf.load()
    return wf
