# -*- coding: utf-8 -*-
"""Query template engine.

Turns a field's query template plus a value bag into the filter fragments of
an outbound request. Pure: the only time-dependent input ("now", used by the
relative date helpers) is an explicit argument.

Placeholders
------------
- ``${Field}`` and ``##Field##`` are replaced with the formatted value of
  ``Field``; unknown or empty values become ``""``.
- ``${@today}``, ``${@today-90d}``, ``${@today+1d}``, ``${@today-3m}`` expand to
  relative dates (``YYYYMMDD``).

Formatting: dates -> ``YYYYMMDD``, multi-select lists -> ``A|B``, everything
else verbatim. Substituted values are XML-escaped so :func:`parse_tags` gives
them back unchanged.
"""

from __future__ import annotations

import calendar
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union
from xml.sax.saxutils import escape

from core.errors import MissingDependency
from core.fields import QueryTemplate
from core.value_bag import is_empty_value

_PLACEHOLDER = re.compile(r"\$\{([^}]+)\}|##(\w+)##")
_RELATIVE = re.compile(r"^@today(?:([+-])(\d+)([dm]))?$")

MULTI_VALUE_SEPARATOR = "|"


@dataclass(frozen=True)
class QueryFragment:
    """Filter sections of a request document built from a template."""

    x_filter: str = ""
    x_filter_multiple: Optional[str] = None


def format_date(value: Union[date, datetime]) -> str:
    return value.strftime("%Y%m%d")


def format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (date, datetime)):
        return format_date(value)
    if isinstance(value, (list, tuple)):
        return MULTI_VALUE_SEPARATOR.join(format_value(v) for v in value if v is not None)
    if isinstance(value, (set, frozenset)):
        return MULTI_VALUE_SEPARATOR.join(sorted(format_value(v) for v in value))
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def shift_months(d: date, months: int) -> date:
    total = d.year * 12 + (d.month - 1) + months
    year, month0 = divmod(total, 12)
    month = month0 + 1
    # Clamp the day to the target month length (Mar 31 - 1m -> Feb 28/29).
    return d.replace(year=year, month=month, day=min(d.day, calendar.monthrange(year, month)[1]))


def relative_date(token: str, now: Optional[datetime]) -> Optional[str]:
    """Expand ``@today[+-N(d|m)]``; None when *token* is not a date helper."""
    m = _RELATIVE.match(token.strip())
    if not m:
        return None
    if now is None:
        raise ValueError(f"Relative date '{token}' needs an explicit 'now'")
    base = now.date() if isinstance(now, datetime) else now
    sign, amount, unit = m.groups()
    if amount:
        n = int(amount) * (-1 if sign == "-" else 1)
        base = base + timedelta(days=n) if unit == "d" else shift_months(base, n)
    return format_date(base)


def placeholders(template: Union[str, Mapping[str, Any], None]) -> List[str]:
    """Field names referenced by a template, in order of appearance."""
    if not template:
        return []
    texts = list(template.values()) if isinstance(template, Mapping) else [template]
    out: List[str] = []
    for text in texts:
        for m in _PLACEHOLDER.finditer(str(text or "")):
            name = (m.group(1) or m.group(2) or "").strip()
            if name and not name.startswith("@") and name not in out:
                out.append(name)
    return out


def substitute(template: str, values: Mapping[str, Any], *, now: Optional[datetime] = None, xml: bool = True) -> str:
    def _repl(m: "re.Match[str]") -> str:
        name = (m.group(1) or m.group(2) or "").strip()
        rel = relative_date(name, now) if name.startswith("@") else None
        text = rel if rel is not None else format_value(values.get(name))
        return escape(text) if xml else text

    return _PLACEHOLDER.sub(_repl, str(template or ""))


def tag_block(names: Sequence[str], values: Mapping[str, Any]) -> str:
    """``<A>a</A><B>b</B>`` for *names*, in order."""
    return "".join(f"<{n}>{escape(format_value(values.get(n)))}</{n}>" for n in names)


def build_single_filter(template: str, parent: str, values: Mapping[str, Any], *, now: Optional[datetime] = None) -> str:
    """One tag, one value. A template without placeholders yields ``<parent>value</parent>``."""
    if template and _PLACEHOLDER.search(template):
        return substitute(template, values, now=now)
    return tag_block((parent,), values)


def build_multi_filter(
    template: Union[str, Mapping[str, Any]],
    values: Mapping[str, Any],
    *,
    required: Optional[Sequence[str]] = None,
    now: Optional[datetime] = None,
    owner: str = "",
) -> str:
    """Ordered tag block. Raises :class:`MissingDependency` instead of emitting empty tags.

    A mapping template is ``{tag: placeholder-or-literal}``; an empty expression
    takes the value of the field named like the tag.
    """
    needed = list(required) if required is not None else placeholders(template)
    missing = [k for k in needed if is_empty_value(values.get(k))]
    if isinstance(template, Mapping):
        out = []
        empty_tags = []
        for tag, expr in template.items():
            if expr in (None, ""):
                text = escape(format_value(values.get(tag)))
            else:
                text = substitute(str(expr), values, now=now)
            if not text:
                empty_tags.append(str(tag))
            out.append(f"<{tag}>{text}</{tag}>")
        if required is None:
            missing = empty_tags
        if missing:
            raise MissingDependency(owner or missing[0], missing)
        return "".join(out)
    if missing:
        raise MissingDependency(owner or missing[0], missing)
    return substitute(template, values, now=now)


def build(
    template: QueryTemplate,
    values: Mapping[str, Any],
    *,
    parents: Sequence[str] = (),
    multi: bool = False,
    now: Optional[datetime] = None,
    owner: str = "",
) -> QueryFragment:
    """Build the filter fragment for *template* from *values*.

    ``multi`` is the caller's choice (the dependency was declared as an array):
    every parent must hold a value and goes into the ordered
    ``X_Filter_Multiple`` block, either through the configured template or,
    when that template has no placeholders, as one tag per parent. Otherwise a
    single parent yields the one-tag ``X_Filter``. Without parents (an
    independent query) the templates are substituted as they are.
    """
    if multi:
        missing = [p for p in parents if is_empty_value(values.get(p))]
        if missing:
            raise MissingDependency(owner or missing[0], missing)
        tmpl = template.x_filter_multiple
        if isinstance(tmpl, Mapping) or (tmpl and _PLACEHOLDER.search(tmpl)):
            block = build_multi_filter(tmpl, values, required=list(parents), now=now, owner=owner)
        else:
            block = tag_block(parents, values)
        return QueryFragment(x_filter=substitute(template.x_filter, values, now=now), x_filter_multiple=block)
    if len(parents) == 1:
        return QueryFragment(x_filter=build_single_filter(template.x_filter, parents[0], values, now=now))
    multi_block = None
    if template.x_filter_multiple:
        multi_block = build_multi_filter(template.x_filter_multiple, values, now=now, owner=owner)
    return QueryFragment(x_filter=substitute(template.x_filter, values, now=now), x_filter_multiple=multi_block)


def parse_tags(fragment: str) -> Dict[str, str]:
    """Re-parse a flat tag set (``<A>1</A><B>2</B>``) into a dict."""
    text = str(fragment or "").strip()
    if not text:
        return {}
    try:
        root = ET.fromstring(f"<root>{text}</root>")
    except ET.ParseError as e:
        raise ValueError(f"Malformed tag fragment: {e}") from e
    return {child.tag: (child.text or "").strip() for child in root}
