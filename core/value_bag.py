# -*- coding: utf-8 -*-
"""ValueBag: current values of one independent form context."""

from __future__ import annotations

from typing import Any, Dict, Iterable, Iterator, Mapping, Optional


def is_empty_value(value: Any) -> bool:
    """Empty means None, blank/whitespace text or an empty collection."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


class ValueBag:
    """Ordered key -> value mapping restricted to a schema's value keys.

    Writing a key the owning schema does not declare raises ``KeyError``.
    A cleared key is removed, so ``get`` returns ``None`` for it.
    """

    def __init__(self, allowed_keys: Iterable[str], initial: Optional[Mapping[str, Any]] = None) -> None:
        self._allowed = frozenset(allowed_keys)
        self._values: Dict[str, Any] = {}
        if initial:
            self.update(initial)

    @property
    def allowed_keys(self) -> frozenset:
        return self._allowed

    def accepts(self, key: str) -> bool:
        return key in self._allowed

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        if key not in self._allowed:
            raise KeyError(key)
        if value is None:
            self._values.pop(key, None)
            return
        self._values[key] = value

    def clear_value(self, key: str) -> bool:
        return self._values.pop(key, None) is not None

    def update(self, values: Mapping[str, Any]) -> None:
        for k, v in values.items():
            self.set(k, v)

    def reset(self) -> None:
        self._values.clear()

    def is_empty(self, key: str) -> bool:
        return is_empty_value(self._values.get(key))

    def snapshot(self) -> Dict[str, Any]:
        return dict(self._values)

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"ValueBag({self._values!r})"
