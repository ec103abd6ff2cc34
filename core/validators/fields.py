# -*- coding: utf-8 -*-
"""Static (client-side) field validation (pure)."""

from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping

from core.fields import FieldKind, FieldSchema
from core.value_bag import is_empty_value


def validate_static(fields: Iterable[FieldSchema], values: Mapping[str, Any]) -> Dict[str, str]:
    """Return ``{value_key: message}`` for every enabled mandatory field left empty.

    Display-only fields are never checked. Range fields are checked per end.
    """
    errors: Dict[str, str] = {}
    for f in fields:
        if not f.enabled or not f.mandatory or f.kind is FieldKind.DISPLAY:
            continue
        for vk in f.keys:
            if is_empty_value(values.get(vk)):
                errors[vk] = f"{f.display_label} is required"
    return errors
