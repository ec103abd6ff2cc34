# -*- coding: utf-8 -*-
"""Dependency resolver: per-scope option state and cascading invalidation.

A *scope* is one independent form context (master form, wizard tab, child
entry dialog, report filter panel): its own copy of the field schemas, its
own value bag and per-field option state. The option cache is the only thing
scopes share.

On a value change the resolver
1. writes the value (range fields keep ``from <= to``),
2. clears value and displayed options of every direct *and* transitive
   dependent (they become hidden),
3. re-fetches only the direct dependents whose parents all hold values.
Deeper levels are fetched later, when their own parents get a value.

Staleness: every field has a generation counter bumped on each invalidation
and each new request. A response is applied only if the field's generation and
resolved context are still the ones the request was issued with; otherwise it
is discarded without touching the cache or the scope.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from core.errors import EngineError, FetchFailure
from core.fields import (
    DateField,
    DateRangeField,
    FieldSchema,
    FieldSet,
    Option,
    OptionKeys,
    QueryTemplate,
    SelectField,
    TextField,
)
from core.types import FormMode, Outcome
from core.value_bag import ValueBag, is_empty_value
from infra.perf import span as perf_span
from services import query_template
from services.dependency_graph import DependencyGraph
from services.option_cache import CacheKey, OptionCache
from services.transport import ApiContext, RequestDocument, Transport

log = logging.getLogger(__name__)

# Default window of a date-range field: three months back up to today.
DEFAULT_RANGE_MONTHS = 3


@dataclass
class FieldState:
    options: List[Option] = field(default_factory=list)
    visible: bool = True
    loading: bool = False
    generation: int = 0
    context: Optional[CacheKey] = None
    error: str = ""


@dataclass(frozen=True)
class ChangeResult:
    changed: Tuple[str, ...]
    cleared: Tuple[str, ...] = ()
    fetched: Dict[str, Outcome] = field(default_factory=dict)
    hidden: Tuple[str, ...] = ()


class FormScope:
    """One independent form context."""

    def __init__(
        self,
        name: str,
        fields: FieldSet,
        values: Optional[Mapping[str, Any]] = None,
        *,
        mode: FormMode = FormMode.NEW,
    ) -> None:
        self.name = str(name)
        self.fields = fields.copy()
        self.graph = DependencyGraph.from_fields(self.fields)
        self.values = ValueBag(self.fields.value_keys())
        self.state: Dict[str, FieldState] = {}
        # Keys of a loaded record the schema does not declare; sent back on submit.
        self.record_extras: Dict[str, Any] = {}
        self.mode = FormMode.NEW
        for f in self.fields:
            st = FieldState()
            if isinstance(f, SelectField):
                st.options = list(f.static_options)
                st.visible = f.depends_on is None
            self.state[f.key] = st
        if values:
            self.load_values(values)
        self.set_mode(mode)

    def load_values(self, values: Mapping[str, Any]) -> None:
        for k, v in values.items():
            if self.values.accepts(k):
                self.values.set(k, v)
            else:
                self.record_extras[k] = v

    def set_mode(self, mode: FormMode) -> None:
        self.mode = mode
        for f in self.fields:
            f.enabled = False if mode is FormMode.VIEW else f.base_enabled

    @property
    def read_only(self) -> bool:
        return self.mode is FormMode.VIEW

    def field(self, key: str) -> FieldSchema:
        f = self.fields.get(key) or self.fields.owner_of(key)
        if f is None:
            raise KeyError(key)
        return f

    def options(self, key: str) -> List[Option]:
        return list(self.state[self.field(key).key].options)

    def is_visible(self, key: str) -> bool:
        return self.state[self.field(key).key].visible

    def visible_fields(self) -> List[FieldSchema]:
        return [f for f in self.fields if self.state[f.key].visible]

    def payload(self) -> Dict[str, Any]:
        """Record extras first, then the bag: declared fields win."""
        out = dict(self.record_extras)
        out.update(self.values.snapshot())
        return out


def parse_options(rows: Any, keys: OptionKeys, *, field_key: str = "") -> List[Option]:
    if not isinstance(rows, list):
        raise FetchFailure("Malformed option list", field_key=field_key)
    out: List[Option] = []
    for row in rows:
        if not isinstance(row, Mapping):
            raise FetchFailure("Malformed option row", field_key=field_key)
        label = row.get(keys.label)
        out.append(Option(label="" if label is None else str(label), value=row.get(keys.value)))
    return out


class DependencyResolver:
    def __init__(
        self,
        *,
        cache: OptionCache,
        transport: Transport,
        api_context: Optional[ApiContext] = None,
        event_bus=None,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.cache = cache
        self.transport = transport
        self.api_context = api_context or ApiContext()
        self.event_bus = event_bus
        self._now = now

    # ---------------- public API ----------------
    async def load_scope(self, scope: FormScope, initial_values: Optional[Mapping[str, Any]] = None) -> Dict[str, Outcome]:
        """Initial population of a scope.

        Defaults fill empty keys; independent option lists are fetched in
        parallel, then dependents whose parents already hold values (a record
        opened for edit) are resolved layer by layer.
        """
        if initial_values:
            scope.load_values(initial_values)
        self.apply_defaults(scope)

        outcomes: Dict[str, Outcome] = {}
        independent = [f for f in scope.fields if isinstance(f, SelectField) and f.fetches_independently]
        results = await asyncio.gather(*(self.refresh_field(scope, f.key) for f in independent))
        outcomes.update({f.key: r for f, r in zip(independent, results)})

        for layer in scope.graph.layers():
            keys = [fk for fk in layer if self._ready(scope, scope.fields[fk])]
            for fk in layer:
                if fk not in keys:
                    self._hide(scope, fk)
            results = await asyncio.gather(*(self.refresh_field(scope, fk) for fk in keys))
            outcomes.update(dict(zip(keys, results)))
        return outcomes

    def apply_defaults(self, scope: FormScope) -> None:
        today = self._now().date()
        for f in scope.fields:
            if isinstance(f, TextField) and f.default and scope.values.is_empty(f.key):
                scope.values.set(f.key, f.default)
            elif isinstance(f, DateField) and f.default is not None and scope.values.is_empty(f.key):
                scope.values.set(f.key, f.default)
            elif isinstance(f, DateRangeField):
                if scope.values.is_empty(f.from_key) and scope.values.is_empty(f.to_key):
                    scope.values.set(f.from_key, query_template.shift_months(today, -DEFAULT_RANGE_MONTHS))
                    scope.values.set(f.to_key, today)

    async def on_field_changed(self, scope: FormScope, key: str, value: Any) -> ChangeResult:
        owner = scope.fields.owner_of(key)
        if owner is None:
            raise KeyError(key)
        scope.values.set(key, value)
        changed = [key]
        if isinstance(owner, DateRangeField):
            dragged = self._clamp_range(scope, owner, key)
            if dragged:
                changed.append(dragged)

        direct: List[str] = []
        cleared: List[str] = []
        for ck in changed:
            for fk in scope.graph.direct_dependents(ck):
                if fk not in direct:
                    direct.append(fk)
            for fk in scope.graph.closure(ck):
                if fk not in cleared:
                    cleared.append(fk)

        for fk in cleared:
            self._clear(scope, fk)
        if cleared:
            self._emit_cleared(scope, cleared)

        ready = [fk for fk in direct if self._ready(scope, scope.fields[fk])]
        hidden = tuple(fk for fk in cleared if fk not in ready)
        results = await asyncio.gather(*(self.refresh_field(scope, fk) for fk in ready))
        return ChangeResult(
            changed=tuple(changed),
            cleared=tuple(cleared),
            fetched=dict(zip(ready, results)),
            hidden=hidden,
        )

    async def restore_values(self, scope: FormScope, values: Mapping[str, Any]) -> Dict[str, Outcome]:
        """Put *values* back without treating them as a user edit.

        Used to roll back a rejected change. The option lists of every
        dependent of a restored key are rebuilt for the restored parents,
        layer by layer; dependents whose parents are empty end up hidden.
        """
        affected: List[str] = []
        for k, v in values.items():
            scope.values.set(k, v)
            for fk in scope.graph.closure(k):
                if fk not in affected:
                    affected.append(fk)

        outcomes: Dict[str, Outcome] = {}
        for layer in scope.graph.layers():
            keys = [fk for fk in layer if fk in affected and self._ready(scope, scope.fields[fk])]
            for fk in layer:
                if fk in affected and fk not in keys:
                    self._hide(scope, fk)
            results = await asyncio.gather(*(self.refresh_field(scope, fk) for fk in keys))
            outcomes.update(dict(zip(keys, results)))
        return outcomes

    async def reset_scope(self, scope: FormScope, values: Optional[Mapping[str, Any]] = None) -> Dict[str, Outcome]:
        """Return *scope* to its freshly opened state, then load it again.

        Values, record extras, enabled flags and option state all go back to
        the configured ones. Requests still in flight for the old values are
        invalidated. *values* seeds the reload (a row opened for edit).
        """
        scope.values.reset()
        scope.record_extras.clear()
        scope.set_mode(scope.mode)
        for f in scope.fields:
            st = scope.state[f.key]
            st.generation += 1
            st.context = None
            st.loading = False
            st.error = ""
            if isinstance(f, SelectField):
                st.options = list(f.static_options)
                st.visible = f.depends_on is None
        dependents = [fk for layer in scope.graph.layers() for fk in layer]
        if dependents:
            self._emit_cleared(scope, dependents)
        return await self.load_scope(scope, values)

    async def refresh_field(self, scope: FormScope, key: str) -> Outcome:
        """(Re)load the options of one select field from its current context."""
        f = scope.field(key)
        if not isinstance(f, SelectField):
            return Outcome.success(scope.options(f.key))
        if f.depends_on is None and f.query is None:
            return Outcome.success(list(f.static_options))
        resolved = self.resolve_dependency_values(scope, f)
        if resolved is None:
            self._hide(scope, f.key)
            return Outcome.success([])
        return await self._fetch_options(scope, f, resolved)

    def resolve_dependency_values(self, scope: FormScope, f: FieldSchema) -> Optional[Dict[str, str]]:
        """Formatted parent values, or None while any parent is empty.

        Independent queries resolve the fields their templates mention, so that
        the cache key still reflects everything the request depends on.
        """
        dep = f.depends_on
        if dep is not None:
            names: Sequence[str] = self._parents_of(scope, f)
        else:
            query = getattr(f, "query", None) or QueryTemplate()
            names = [n for n in query_template.placeholders(query.x_filter) if scope.values.accepts(n)]
        resolved: Dict[str, str] = {}
        for name in names:
            v = scope.values.get(name)
            if dep is not None and is_empty_value(v):
                return None
            resolved[name] = query_template.format_value(v)
        return resolved

    def build_request(
        self,
        f: SelectField,
        resolved: Mapping[str, Any],
        *,
        parents: Optional[Sequence[str]] = None,
    ) -> RequestDocument:
        """*parents* are value keys; a range parent contributes both of its ends."""
        dep = f.depends_on
        query = dep.query if dep is not None else (f.query or QueryTemplate())
        if dep is None:
            parents = ()
        elif parents is None:
            parents = dep.parents
        fragment = query_template.build(
            query,
            resolved,
            parents=parents,
            multi=dep is not None and (dep.multi or len(parents) > 1),
            now=self._now(),
            owner=f.key,
        )
        return RequestDocument(
            ui=query.ui,
            sql=query.sql,
            x_filter=fragment.x_filter,
            x_filter_multiple=fragment.x_filter_multiple,
            api=self.api_context.merge(query.api),
        )

    # ---------------- internals ----------------
    @staticmethod
    def _query_of(f: SelectField) -> QueryTemplate:
        dep = f.depends_on
        return dep.query if dep is not None else (f.query or QueryTemplate())

    def _ready(self, scope: FormScope, f: FieldSchema) -> bool:
        dep = f.depends_on
        if dep is None:
            return True
        return all(not is_empty_value(scope.values.get(p)) for p in self._parents_of(scope, f))

    @staticmethod
    def _parents_of(scope: FormScope, f: FieldSchema) -> Tuple[str, ...]:
        dep = f.depends_on
        if dep is None:
            return ()
        return scope.graph.parents.get(f.key, dep.parents)

    async def _fetch_options(self, scope: FormScope, f: SelectField, resolved: Dict[str, str]) -> Outcome:
        st = scope.state[f.key]
        signature = self._query_of(f).signature()
        self.cache.register_template(f.key, signature)
        key = CacheKey.build(f.key, resolved, signature)
        st.generation += 1
        generation = st.generation
        st.context = key
        st.error = ""

        cached = self.cache.get(key)
        if cached is not None:
            log.debug("Options for '%s' served from cache", f.key)
            self._apply_options(scope, f, cached)
            return Outcome.success(cached)

        try:
            doc = self.build_request(f, resolved, parents=self._parents_of(scope, f))
        except EngineError as e:
            self._fail(scope, f, e)
            return Outcome.failure(e)

        st.loading = True
        try:
            with perf_span(f"options {f.key}", threshold_ms=100.0):
                options = await self.cache.coalesce(key, lambda: self._load(f, doc))
        except EngineError as e:
            if self._is_stale(st, generation, key):
                return Outcome.discarded()
            self._fail(scope, f, e)
            return Outcome.failure(e)
        finally:
            if st.generation == generation:
                st.loading = False

        if self._is_stale(st, generation, key):
            log.debug("Discarding stale options for '%s' (%s)", f.key, key.parents)
            return Outcome.discarded()
        self.cache.put(key, options)
        self._apply_options(scope, f, options)
        return Outcome.success(options)

    async def _load(self, f: SelectField, doc: RequestDocument) -> List[Option]:
        resp = await self.transport.post(doc)
        if not resp.success:
            raise FetchFailure(resp.message or "Request rejected", field_key=f.key)
        return parse_options(resp.rs0, f.option_keys, field_key=f.key)

    @staticmethod
    def _is_stale(st: FieldState, generation: int, key: CacheKey) -> bool:
        return st.generation != generation or st.context != key

    def _apply_options(self, scope: FormScope, f: SelectField, options: List[Option]) -> None:
        st = scope.state[f.key]
        st.options = list(options)
        st.loading = False
        # Dependent lists with nothing to offer stay hidden.
        st.visible = True if f.depends_on is None else bool(options)
        self._emit_options(scope, f.key, st)

    def _fail(self, scope: FormScope, f: SelectField, error: EngineError) -> None:
        st = scope.state[f.key]
        log.warning("Options for '%s' in %s not loaded: %s", f.key, scope.name, error)
        st.options = []
        st.loading = False
        st.error = str(error)
        if f.depends_on is not None:
            st.visible = False
        if self.event_bus is not None:
            from app.events import FetchFailed

            self.event_bus.emit(FetchFailed(scope=scope.name, field_key=f.key, reason=str(error)))
        self._emit_options(scope, f.key, st)

    def _clear(self, scope: FormScope, field_key: str) -> None:
        f = scope.fields[field_key]
        for vk in f.keys:
            scope.values.clear_value(vk)
        self._hide(scope, field_key)

    def _hide(self, scope: FormScope, field_key: str) -> None:
        st = scope.state[field_key]
        st.generation += 1
        st.context = None
        st.options = []
        st.loading = False
        st.visible = False

    def _clamp_range(self, scope: FormScope, f: DateRangeField, key: str) -> Optional[str]:
        lo, hi = scope.values.get(f.from_key), scope.values.get(f.to_key)
        if not isinstance(lo, date) or not isinstance(hi, date) or lo <= hi:
            return None
        if key == f.from_key:
            scope.values.set(f.to_key, lo)
            return f.to_key
        scope.values.set(f.from_key, hi)
        return f.from_key

    def _emit_options(self, scope: FormScope, field_key: str, st: FieldState) -> None:
        if self.event_bus is None:
            return
        from app.events import OptionsChanged

        self.event_bus.emit(OptionsChanged(scope=scope.name, field_key=field_key, options=tuple(st.options), visible=st.visible))

    def _emit_cleared(self, scope: FormScope, keys: Sequence[str]) -> None:
        if self.event_bus is None:
            return
        from app.events import FieldsCleared

        self.event_bus.emit(FieldsCleared(scope=scope.name, field_keys=tuple(keys)))
