# -*- coding: utf-8 -*-
"""Field dependency graph.

Derived once per screen load from the field schemas: B is a dependent of A
when ``B.depends_on`` names one of A's value keys. Naming a range field by
its combined key (``From|To``) stands for both of its value keys. The
adjacency map is the single source of truth for invalidation; nothing walks
``dependsOn`` ad hoc.

Cycles are a configuration error and are rejected when the graph is built.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Set, Tuple

from core.errors import ConfigError, CyclicDependencyError
from core.fields import FieldSet


@dataclass(frozen=True)
class DependencyGraph:
    # value key -> field keys that depend on it directly (declaration order)
    dependents: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    # field key -> parent value keys
    parents: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    # field key -> value keys it owns
    owned: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    @classmethod
    def from_fields(cls, fields: FieldSet) -> "DependencyGraph":
        dependents: Dict[str, List[str]] = {}
        parents: Dict[str, Tuple[str, ...]] = {}
        owned: Dict[str, Tuple[str, ...]] = {}
        for f in fields:
            owned[f.key] = f.keys
            dep = f.depends_on
            if dep is None:
                continue
            expanded = fields.expand_keys(dep.parents)
            for p in expanded:
                owner = fields.owner_of(p)
                if owner is None:
                    raise ConfigError(f"Field '{f.key}' depends on unknown field '{p}'")
                if owner.key == f.key:
                    raise CyclicDependencyError((f.key, f.key))
                dependents.setdefault(p, []).append(f.key)
            parents[f.key] = expanded
        graph = cls(
            dependents={k: tuple(v) for k, v in dependents.items()},
            parents=parents,
            owned=owned,
        )
        graph._check_acyclic()
        return graph

    def direct_dependents(self, value_key: str) -> Tuple[str, ...]:
        """Fields whose dependency names *value_key* (or any key of that field)."""
        out: List[str] = []
        for vk in self._value_keys_of(value_key):
            for d in self.dependents.get(vk, ()):
                if d not in out:
                    out.append(d)
        return tuple(out)

    def closure(self, value_key: str) -> Tuple[str, ...]:
        """Direct and transitive dependents of *value_key*, breadth first."""
        seen: Set[str] = set()
        order: List[str] = []
        work = list(self.direct_dependents(value_key))
        while work:
            fk = work.pop(0)
            if fk in seen:
                continue
            seen.add(fk)
            order.append(fk)
            for vk in self.owned.get(fk, (fk,)):
                for d in self.dependents.get(vk, ()):
                    if d not in seen:
                        work.append(d)
        return tuple(order)

    def layers(self) -> List[Tuple[str, ...]]:
        """Dependent fields grouped by depth: parents always precede children.

        Independent fields are not included.
        """
        depth: Dict[str, int] = {}

        def _depth(fk: str) -> int:
            if fk in depth:
                return depth[fk]
            ps = self.parents.get(fk, ())
            d = 0
            for p in ps:
                owner = self._owner_of(p)
                d = max(d, (_depth(owner) + 1) if owner in self.parents else 1)
            depth[fk] = d
            return d

        for fk in self.parents:
            _depth(fk)
        out: Dict[int, List[str]] = {}
        for fk in self.parents:
            out.setdefault(depth[fk], []).append(fk)
        return [tuple(out[k]) for k in sorted(out)]

    # ---------------- internals ----------------
    def _value_keys_of(self, key: str) -> Tuple[str, ...]:
        # A range field key ("from|to") stands for both of its value keys.
        if key in self.owned:
            return self.owned[key]
        return (key,)

    def _owner_of(self, value_key: str) -> str:
        for fk, keys in self.owned.items():
            if value_key in keys:
                return fk
        return value_key

    def _check_acyclic(self) -> None:
        """Iterative DFS over field keys; raises on the first back edge."""
        WHITE, GREY, BLACK = 0, 1, 2
        color: Dict[str, int] = {fk: WHITE for fk in self.owned}
        for start in self.owned:
            if color[start] != WHITE:
                continue
            path: List[str] = [start]
            stack: List[Tuple[str, List[str]]] = [(start, self._children(start))]
            color[start] = GREY
            while stack:
                node, children = stack[-1]
                if not children:
                    color[node] = BLACK
                    stack.pop()
                    path.pop()
                    continue
                child = children.pop(0)
                c = color.get(child, BLACK)
                if c == GREY:
                    i = path.index(child)
                    raise CyclicDependencyError(path[i:] + [child])
                if c == WHITE:
                    color[child] = GREY
                    path.append(child)
                    stack.append((child, self._children(child)))

    def _children(self, fk: str) -> List[str]:
        out: List[str] = []
        for vk in self.owned.get(fk, ()):
            out.extend(self.dependents.get(vk, ()))
        return out
