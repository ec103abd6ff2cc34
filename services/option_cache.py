# -*- coding: utf-8 -*-
"""Option cache shared by every form scope of a session.

Keys are canonical: the resolved parent values and the query template are
serialized with sorted keys, so equivalent dependency states always map to
the same entry whatever order the values were collected in.

Freshness is checked when an entry is read (no timer threads). When an insert
pushes the cache past its soft size bound, expired entries are swept; entries
still inside their freshness window are never evicted for space.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from core.fields import Option

log = logging.getLogger(__name__)

DEFAULT_EXPIRY_S = 300.0
DEFAULT_SOFT_LIMIT = 500


def canonical_json(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, sort_keys=True, separators=(",", ":"), default=str)


@dataclass(frozen=True)
class CacheKey:
    field_key: str
    parents: str
    template: str

    @classmethod
    def build(cls, field_key: str, resolved: Mapping[str, Any], template_signature: str) -> "CacheKey":
        return cls(field_key=str(field_key), parents=canonical_json(dict(resolved)), template=str(template_signature))


@dataclass
class CacheEntry:
    options: List[Option]
    stored_at: float


class OptionCache:
    def __init__(
        self,
        *,
        expiry_s: float = DEFAULT_EXPIRY_S,
        soft_limit: int = DEFAULT_SOFT_LIMIT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.expiry_s = float(expiry_s)
        self.soft_limit = int(soft_limit)
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._templates: Dict[str, str] = {}
        self._inflight: Dict[CacheKey, "asyncio.Task[List[Option]]"] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def _fresh(self, entry: CacheEntry, now: float) -> bool:
        return (now - entry.stored_at) < self.expiry_s

    def get(self, key: CacheKey) -> Optional[List[Option]]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if not self._fresh(entry, self._clock()):
            del self._entries[key]
            self.misses += 1
            return None
        self.hits += 1
        return list(entry.options)

    def put(self, key: CacheKey, options: List[Option]) -> None:
        self._entries[key] = CacheEntry(options=list(options), stored_at=self._clock())
        if len(self._entries) > self.soft_limit:
            removed = self.sweep_expired()
            log.debug("Option cache over soft limit (%d); swept %d expired entries", self.soft_limit, removed)

    def sweep_expired(self) -> int:
        now = self._clock()
        stale = [k for k, e in self._entries.items() if not self._fresh(e, now)]
        for k in stale:
            del self._entries[k]
        return len(stale)

    def invalidate(self, field_key: str) -> int:
        """Drop every entry of *field_key* regardless of freshness."""
        doomed = [k for k in self._entries if k.field_key == field_key]
        for k in doomed:
            del self._entries[k]
        return len(doomed)

    def register_template(self, field_key: str, signature: str) -> bool:
        """Record a field's template shape; a changed shape invalidates its entries.

        Returns True when entries were invalidated.
        """
        previous = self._templates.get(field_key)
        self._templates[field_key] = signature
        if previous is None or previous == signature:
            return False
        removed = self.invalidate(field_key)
        log.info("Query template of '%s' changed; dropped %d cached option lists", field_key, removed)
        return True

    def clear(self) -> None:
        self._entries.clear()
        self._templates.clear()

    async def coalesce(self, key: CacheKey, factory: Callable[[], Awaitable[List[Option]]]) -> List[Option]:
        """Run *factory* once per key; concurrent callers share the in-flight fetch."""
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task

            def _done(t: "asyncio.Task[List[Option]]", k: CacheKey = key) -> None:
                if self._inflight.get(k) is t:
                    del self._inflight[k]

            task.add_done_callback(_done)
        else:
            log.debug("Coalescing option fetch for '%s'", key.field_key)
        return await asyncio.shield(task)

    def in_flight(self, key: CacheKey) -> bool:
        return key in self._inflight
