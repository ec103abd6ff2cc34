# -*- coding: utf-8 -*-
"""Field schema: one tagged-union variant per field kind.

Server configuration describes every form input as a loose JSON object
(``type``, ``wKey``, ``dependsOn``, ``wQuery`` ...). It is converted here,
once per screen load, into typed dataclasses. Each variant only carries the
attributes relevant to its kind: only range fields have two value keys, only
select fields have option queries and dependencies.

Anything that cannot be interpreted raises :class:`ConfigError` at load time
so use sites never need ad hoc shape checks.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

from core.errors import ConfigError
from core.keys import DocKeys, FieldKeys


class FieldKind(str, Enum):
    TEXT = "text"
    DATE = "date"
    DATE_RANGE = "date_range"
    SINGLE_SELECT = "single_select"
    MULTI_SELECT = "multi_select"
    DISPLAY = "display"


# Widget type names used by the server configuration.
_WIDGET_KINDS: Dict[str, FieldKind] = {
    "WTextBox": FieldKind.TEXT,
    "WDateBox": FieldKind.DATE,
    "WDateRangeBox": FieldKind.DATE_RANGE,
    "WDropDownBox": FieldKind.SINGLE_SELECT,
    "WMultiSelectBox": FieldKind.MULTI_SELECT,
    "WDisplayBox": FieldKind.DISPLAY,
}


def _truthy(value: Any, *, yes: Tuple[str, ...] = ("true", "y", "yes", "1")) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in yes


def parse_yyyymmdd(text: Any) -> Optional[date]:
    s = str(text or "").strip()
    if len(s) != 8 or not s.isdigit():
        return None
    try:
        return datetime.strptime(s, "%Y%m%d").date()
    except ValueError:
        return None


@dataclass(frozen=True)
class Option:
    label: str
    value: Any


@dataclass(frozen=True)
class OptionKeys:
    label: str = "DisplayName"
    value: str = "Value"


@dataclass(frozen=True)
class QueryTemplate:
    """Request template attached to a field (``wQuery`` / ``dependsOn.wQuery``).

    ``ui`` and ``api`` are either mappings or pre-flattened ``"k":"v"`` strings,
    exactly as configured. ``x_filter_multiple`` is a string template or an
    ordered ``{tag: placeholder}`` mapping.
    """

    ui: Any = ""
    sql: str = ""
    x_filter: str = ""
    x_filter_multiple: Union[str, Mapping[str, Any], None] = None
    api: Any = ""

    @classmethod
    def from_config(cls, raw: Any) -> "QueryTemplate":
        if raw is None:
            return cls()
        if not isinstance(raw, Mapping):
            raise ConfigError(f"Query template must be an object, got {type(raw).__name__}")
        multi = raw.get(DocKeys.FILTER_MULTIPLE)
        if multi is not None and not isinstance(multi, (str, Mapping)):
            raise ConfigError("X_Filter_Multiple must be a string or an object")
        return cls(
            ui=raw.get(DocKeys.UI) or "",
            sql=str(raw.get(DocKeys.SQL) or ""),
            x_filter=str(raw.get(DocKeys.FILTER) or ""),
            x_filter_multiple=dict(multi) if isinstance(multi, Mapping) else (multi or None),
            api=raw.get(DocKeys.API) or "",
        )

    def signature(self) -> str:
        """Canonical serialization, used to key the option cache."""
        payload = {
            "ui": self.ui,
            "sql": self.sql,
            "x_filter": self.x_filter,
            "x_filter_multiple": self.x_filter_multiple,
            "api": self.api,
        }
        return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


@dataclass(frozen=True)
class Dependency:
    parents: Tuple[str, ...]
    query: QueryTemplate
    # Declared as an array in the configuration: selects the multi-filter shape.
    multi: bool = False

    @classmethod
    def from_config(cls, raw: Any, *, owner: str) -> "Dependency":
        if not isinstance(raw, Mapping):
            raise ConfigError(f"{owner}: dependsOn must be an object")
        parent = raw.get("field")
        if isinstance(parent, (list, tuple)):
            parents = tuple(str(p) for p in parent if str(p or "").strip())
            multi = True
        elif isinstance(parent, str) and parent.strip():
            parents = (parent.strip(),)
            multi = False
        else:
            raise ConfigError(f"{owner}: dependsOn.field is missing")
        if not parents:
            raise ConfigError(f"{owner}: dependsOn.field is empty")
        return cls(parents=parents, query=QueryTemplate.from_config(raw.get(FieldKeys.QUERY)), multi=multi)


@dataclass
class FieldSchema:
    key: str
    label: str = ""
    mandatory: bool = False
    # Configured state; ``enabled`` is the live one, mutated by validation.
    base_enabled: bool = True
    enabled: bool = True
    visible_in_table: bool = False
    group: str = ""
    remote_validation: Optional[QueryTemplate] = None

    kind: ClassVar[FieldKind] = FieldKind.TEXT

    @property
    def keys(self) -> Tuple[str, ...]:
        """Value-bag keys owned by this field."""
        return (self.key,)

    @property
    def depends_on(self) -> Optional[Dependency]:
        return None

    @property
    def display_label(self) -> str:
        return self.label or self.key


@dataclass
class TextField(FieldSchema):
    kind: ClassVar[FieldKind] = FieldKind.TEXT
    default: str = ""


@dataclass
class DisplayField(FieldSchema):
    kind: ClassVar[FieldKind] = FieldKind.DISPLAY


@dataclass
class DateField(FieldSchema):
    kind: ClassVar[FieldKind] = FieldKind.DATE
    default: Optional[date] = None


@dataclass
class DateRangeField(FieldSchema):
    kind: ClassVar[FieldKind] = FieldKind.DATE_RANGE
    from_key: str = ""
    to_key: str = ""

    @property
    def keys(self) -> Tuple[str, ...]:
        return (self.from_key, self.to_key)


@dataclass
class SelectField(FieldSchema):
    query: Optional[QueryTemplate] = None
    dependency: Optional[Dependency] = None
    option_keys: OptionKeys = field(default_factory=OptionKeys)
    static_options: Tuple[Option, ...] = ()

    @property
    def depends_on(self) -> Optional[Dependency]:
        return self.dependency

    @property
    def fetches_independently(self) -> bool:
        return self.dependency is None and self.query is not None and not self.static_options


@dataclass
class SingleSelectField(SelectField):
    kind: ClassVar[FieldKind] = FieldKind.SINGLE_SELECT


@dataclass
class MultiSelectField(SelectField):
    kind: ClassVar[FieldKind] = FieldKind.MULTI_SELECT


def _kind_of(raw: Mapping[str, Any]) -> FieldKind:
    t = str(raw.get(FieldKeys.TYPE) or "").strip()
    kind = _WIDGET_KINDS.get(t)
    if kind is None:
        try:
            kind = FieldKind(t)
        except ValueError:
            raise ConfigError(f"Unknown field type '{t}'") from None
    if kind is FieldKind.SINGLE_SELECT and _truthy(raw.get(FieldKeys.MULTIPLE)):
        kind = FieldKind.MULTI_SELECT
    return kind


def _static_options(raw: Any, keys: OptionKeys) -> Tuple[Option, ...]:
    if not raw:
        return ()
    if not isinstance(raw, (list, tuple)):
        raise ConfigError("options must be a list")
    out: List[Option] = []
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        value = item.get("value", item.get(keys.value, item.get("Value")))
        label = item.get("label", item.get(keys.label, value))
        out.append(Option(label=str(label if label is not None else ""), value=value))
    return tuple(out)


def field_from_config(raw: Mapping[str, Any]) -> FieldSchema:
    """Build one typed field from its server configuration object."""
    if not isinstance(raw, Mapping):
        raise ConfigError(f"Field configuration must be an object, got {type(raw).__name__}")
    kind = _kind_of(raw)
    wkey = raw.get(FieldKeys.KEY)
    enabled = str(raw.get(FieldKeys.ENABLED, "Y") or "Y").strip().upper() != "N"
    validation = raw.get(FieldKeys.VALIDATION) or None
    remote = None
    if isinstance(validation, Mapping) and validation:
        remote = QueryTemplate.from_config(validation.get(DocKeys.ROOT, validation))

    if kind is FieldKind.DATE_RANGE:
        if not isinstance(wkey, (list, tuple)) or len(wkey) != 2 or not all(str(k or "").strip() for k in wkey):
            raise ConfigError(f"Date range field needs exactly two keys, got {wkey!r}")
        key = f"{wkey[0]}|{wkey[1]}"
    else:
        if not isinstance(wkey, str) or not wkey.strip():
            raise ConfigError(f"Field key must be a non-empty string, got {wkey!r}")
        key = wkey.strip()

    common = dict(
        key=key,
        label=str(raw.get(FieldKeys.LABEL) or ""),
        mandatory=_truthy(raw.get(FieldKeys.MANDATORY)),
        base_enabled=enabled,
        enabled=enabled,
        visible_in_table=_truthy(raw.get(FieldKeys.VISIBLE_IN_TABLE)),
        group=str(raw.get(FieldKeys.GROUP) or "").strip(),
        remote_validation=remote,
    )

    if kind is FieldKind.TEXT:
        return TextField(default=str(raw.get(FieldKeys.DEFAULT) or ""), **common)
    if kind is FieldKind.DISPLAY:
        return DisplayField(**common)
    if kind is FieldKind.DATE:
        return DateField(default=parse_yyyymmdd(raw.get(FieldKeys.DEFAULT)), **common)
    if kind is FieldKind.DATE_RANGE:
        return DateRangeField(from_key=str(wkey[0]).strip(), to_key=str(wkey[1]).strip(), **common)

    okeys_raw = raw.get(FieldKeys.OPTION_KEYS) or {}
    okeys = OptionKeys(
        label=str(okeys_raw.get("key") or "DisplayName"),
        value=str(okeys_raw.get("value") or "Value"),
    ) if isinstance(okeys_raw, Mapping) else OptionKeys()
    dep_raw = raw.get(FieldKeys.DEPENDS_ON)
    cls = MultiSelectField if kind is FieldKind.MULTI_SELECT else SingleSelectField
    return cls(
        query=QueryTemplate.from_config(raw[FieldKeys.QUERY]) if raw.get(FieldKeys.QUERY) else None,
        dependency=Dependency.from_config(dep_raw, owner=key) if dep_raw else None,
        option_keys=okeys,
        static_options=_static_options(raw.get(FieldKeys.OPTIONS), okeys),
        **common,
    )


class FieldSet:
    """Ordered, validated collection of field schemas for one form context."""

    def __init__(self, fields: Iterable[FieldSchema]):
        self._fields: Dict[str, FieldSchema] = {}
        self._owners: Dict[str, str] = {}
        for f in fields:
            if f.key in self._fields:
                raise ConfigError(f"Duplicate field key '{f.key}'")
            self._fields[f.key] = f
            for vk in f.keys:
                if vk in self._owners:
                    raise ConfigError(f"Value key '{vk}' is declared by more than one field")
                self._owners[vk] = f.key

    @classmethod
    def from_config(cls, raw: Iterable[Mapping[str, Any]]) -> "FieldSet":
        return cls(field_from_config(item) for item in flatten_field_config(raw))

    def __iter__(self) -> Iterator[FieldSchema]:
        return iter(self._fields.values())

    def __len__(self) -> int:
        return len(self._fields)

    def __contains__(self, key: object) -> bool:
        return key in self._fields

    def __getitem__(self, key: str) -> FieldSchema:
        return self._fields[key]

    def get(self, key: str) -> Optional[FieldSchema]:
        return self._fields.get(key)

    def owner_of(self, value_key: str) -> Optional[FieldSchema]:
        owner = self._owners.get(value_key)
        return self._fields.get(owner) if owner is not None else None

    def value_keys(self) -> Tuple[str, ...]:
        return tuple(self._owners.keys())

    def copy(self) -> "FieldSet":
        """Independent copy so that enabled-state mutations stay scoped."""
        return FieldSet(copy.deepcopy(f) for f in self._fields.values())

    def expand_keys(self, keys: Iterable[str]) -> Tuple[str, ...]:
        """Replace any combined field key (``From|To``) by the value keys it owns."""
        out: List[str] = []
        for key in keys:
            f = self._fields.get(key)
            for vk in (f.keys if f is not None else (key,)):
                if vk not in out:
                    out.append(vk)
        return tuple(out)

    def grouped(self, enabled: bool = True) -> List[Tuple[str, List[FieldSchema]]]:
        """Group fields by ``CombinedName``; ungrouped fields come last under ``""``."""
        if not enabled:
            return [("", list(self))]
        groups: Dict[str, List[FieldSchema]] = {}
        ungrouped: List[FieldSchema] = []
        for f in self:
            if f.group:
                groups.setdefault(f.group, []).append(f)
            else:
                ungrouped.append(f)
        out = list(groups.items())
        if ungrouped:
            out.append(("", ungrouped))
        return out


def flatten_field_config(raw: Any) -> List[Mapping[str, Any]]:
    """Report filter panels arrive as rows of fields (a list of lists)."""
    if raw is None:
        return []
    if isinstance(raw, Mapping):
        raise ConfigError("Field list must be an array")
    out: List[Mapping[str, Any]] = []
    for item in raw:
        if isinstance(item, (list, tuple)):
            out.extend(flatten_field_config(item))
        else:
            out.append(item)
    return out
