# -*- coding: utf-8 -*-
"""ValidationService

Static checks (mandatory enabled fields) and remote field validation.

- No PyQt dependency.
- Static validators are pure (core.validators); this service binds them to a
  FormScope.
- Remote validation runs only for fields that declare a ``ValidationAPI`` and
  only while editing an existing record.

Remote response
---------------
``rs0[0].Column1`` holds a tag set such as
``<Flag>S</Flag><Message>ok</Message><Rate>12</Rate><Qty>true</Qty>``.
``S`` is success, ``D`` success with a hard enabled-state toggle, anything
else a failure. Extra tags are field updates: ``true`` disables the field,
``false`` does not, and neither of the two touches the field's value. Any
other non-empty text replaces the value.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from core.errors import EngineError, FetchFailure, StaticValidationFailure, ValidationFailure
from core.fields import QueryTemplate
from core.keys import ValidationTags
from core.types import FormMode, Issue
from core.validators.fields import validate_static
from services import query_template
from services.dependency_resolver import DependencyResolver, FormScope
from services.transport import ApiContext, RequestDocument, Transport

log = logging.getLogger(__name__)

_TAG = re.compile(r"<(\w+)>(.*?)</\1>", re.S)
_SENTINELS = ("true", "false")

DEFAULT_FAILURE_MESSAGE = "Validation failed."


def issue_to_dict(it: Issue) -> dict:
    sev = str(it.severity.value if hasattr(it.severity, "value") else it.severity)
    level = {
        "info": "info",
        "warning": "warn",
        "error": "error",
    }.get(sev, "warn")
    return {
        "code": it.code,
        "msg": it.message,
        "level": level,
        "context": it.context,
    }


@dataclass(frozen=True)
class FieldUpdate:
    field_key: str
    value: str = ""
    disable: bool = False
    hard: bool = False

    @property
    def is_sentinel(self) -> bool:
        return self.value.strip().lower() in _SENTINELS

    def enabled_state(self, current: bool) -> bool:
        if self.hard:
            return not self.disable
        return False if self.disable else current

    def new_value(self, existing: Any) -> Any:
        if self.is_sentinel or self.value == "":
            return existing
        return self.value


@dataclass(frozen=True)
class ValidationResult:
    flag: str = ""
    message: str = ""
    tags: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.flag in (ValidationTags.SUCCESS, ValidationTags.HARD_TOGGLE)

    @property
    def hard(self) -> bool:
        return self.flag == ValidationTags.HARD_TOGGLE

    def updates(self) -> List[FieldUpdate]:
        return [
            FieldUpdate(
                field_key=k,
                value=v,
                disable=v.strip().lower() == "true",
                hard=self.hard,
            )
            for k, v in self.tags.items()
        ]


def parse_validation_result(text: str) -> ValidationResult:
    flag = ""
    message = ""
    tags: Dict[str, str] = {}
    for name, value in _TAG.findall(text or ""):
        if name == ValidationTags.FLAG:
            flag = value.strip()
        elif name == ValidationTags.MESSAGE:
            message = value.strip()
        else:
            tags[name] = value.strip()
    return ValidationResult(flag=flag, message=message, tags=tags)


def apply_updates(scope: FormScope, updates: List[FieldUpdate]) -> List[str]:
    """Merge validation updates into *scope*; returns the keys whose value changed."""
    changed: List[str] = []
    for u in updates:
        f = scope.fields.get(u.field_key)
        if f is not None:
            f.enabled = u.enabled_state(f.enabled)
        if scope.values.accepts(u.field_key):
            before = scope.values.get(u.field_key)
            after = u.new_value(before)
            if after != before:
                scope.values.set(u.field_key, after)
                changed.append(u.field_key)
        elif not u.is_sentinel and u.value != "":
            scope.record_extras[u.field_key] = u.value
    return changed


class ValidationService:
    def __init__(
        self,
        *,
        transport: Transport,
        api_context: Optional[ApiContext] = None,
        event_bus=None,
        resolver: Optional[DependencyResolver] = None,
    ):
        self.transport = transport
        self.api_context = api_context or ApiContext()
        self.event_bus = event_bus
        # Value changes made here (rollbacks, server updates) cascade through it.
        self.resolver = resolver

    # ---------------- static ----------------
    @staticmethod
    def validate_static(scope: FormScope) -> Dict[str, str]:
        return validate_static(scope.fields, scope.values.snapshot())

    def check_static(self, scope: FormScope) -> None:
        errors = self.validate_static(scope)
        if errors:
            raise StaticValidationFailure(errors)

    # ---------------- remote ----------------
    def build_request(self, template: QueryTemplate, values: Mapping[str, Any], *, owner: str) -> RequestDocument:
        x_filter = ""
        x_multi: Optional[str] = None
        if template.x_filter_multiple:
            x_multi = query_template.build_multi_filter(template.x_filter_multiple, values, owner=owner)
        elif template.x_filter:
            names = query_template.placeholders(template.x_filter)
            x_filter = query_template.build_multi_filter(template.x_filter, values, required=names, owner=owner)
        return RequestDocument(
            ui=template.ui,
            sql=template.sql,
            x_filter=x_filter,
            x_filter_multiple=x_multi if x_multi is not None else "",
            api=self.api_context.merge(template.api),
        )

    async def validate_remote(
        self,
        scope: FormScope,
        field_key: str,
        previous_value: Any = None,
        *,
        snapshot: Optional[Mapping[str, Any]] = None,
    ) -> List[FieldUpdate]:
        """Round-trip one field's remote check and merge the returned updates.

        Raises :class:`ValidationFailure` (after restoring *previous_value*,
        plus the dependent values in *snapshot*) when the server rejects the
        value; a request that cannot be built or delivered is reported the
        same way. Values the server replaces cascade to their dependents.
        """
        f = scope.field(field_key)
        template = f.remote_validation
        if template is None or scope.mode is not FormMode.EDIT:
            return []
        values = scope.payload()
        try:
            doc = self.build_request(template, values, owner=f.key)
            resp = await self.transport.post(doc)
            rows = resp.require_rs0()
        except EngineError as e:
            log.warning("Remote validation of '%s' not run: %s", f.key, e)
            message = str(e) if not isinstance(e, FetchFailure) else "An error occurred during validation."
            raise ValidationFailure(f.key, message) from e

        text = ""
        if rows and isinstance(rows[0], Mapping):
            text = str(rows[0].get("Column1") or "")
        if not text:
            return []
        result = parse_validation_result(text)
        if not result.ok:
            await self._restore(scope, field_key, previous_value, snapshot)
            raise ValidationFailure(f.key, result.message or DEFAULT_FAILURE_MESSAGE)
        updates = result.updates()
        changed = apply_updates(scope, updates)
        if self.resolver is not None:
            for key in changed:
                await self.resolver.on_field_changed(scope, key, scope.values.get(key))
        return updates

    async def validate_loaded_record(self, scope: FormScope) -> Tuple[List[FieldUpdate], Dict[str, str]]:
        """Run every remote check of a record opened for edit, one after another."""
        updates: List[FieldUpdate] = []
        failures: Dict[str, str] = {}
        if scope.mode is not FormMode.EDIT:
            return updates, failures
        for f in list(scope.fields):
            if f.remote_validation is None:
                continue
            current = scope.values.get(f.key)
            try:
                updates.extend(await self.validate_remote(scope, f.key, current))
            except ValidationFailure as e:
                failures[f.key] = e.message
        return updates, failures

    async def _restore(
        self,
        scope: FormScope,
        field_key: str,
        previous_value: Any,
        snapshot: Optional[Mapping[str, Any]] = None,
    ) -> None:
        values: Dict[str, Any] = {field_key: previous_value} if scope.values.accepts(field_key) else {}
        values.update(snapshot or {})
        if self.resolver is not None:
            await self.resolver.restore_values(scope, values)
            return
        for k, v in values.items():
            scope.values.set(k, v)
