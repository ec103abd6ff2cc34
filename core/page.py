# -*- coding: utf-8 -*-
"""Report page configuration (levels, filter panel, entry workflow)."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, List, Mapping, Optional, Tuple

from core.errors import ConfigError
from core.fields import FieldSet


@dataclass(frozen=True)
class LevelConfig:
    name: str
    ui: Any = ""
    primary_header_key: str = ""
    settings: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_config(cls, raw: Mapping[str, Any], index: int) -> "LevelConfig":
        return cls(
            name=str(raw.get("name") or f"Level {index}"),
            ui=raw.get("J_Ui") or {},
            primary_header_key=str(raw.get("primaryHeaderKey") or "").strip(),
            settings=MappingProxyType(dict(raw.get("settings") or {})),
        )


@dataclass(frozen=True)
class PageConfig:
    levels: Tuple[LevelConfig, ...]
    filters: Any = ()
    sql: str = ""
    auto_fetch: bool = True
    filter_type: str = ""
    page_name: str = ""
    entry: Optional[Mapping[str, Any]] = None

    @classmethod
    def from_config(cls, raw: Any) -> "PageConfig":
        """Accept either the page object or the ``[page]`` array the server sends."""
        if isinstance(raw, list):
            if not raw:
                raise ConfigError("Page data array is empty")
            raw = raw[0]
        if not isinstance(raw, Mapping):
            raise ConfigError("Invalid page configuration structure")
        levels_raw = raw.get("levels")
        if not isinstance(levels_raw, list) or not levels_raw:
            raise ConfigError("At least one level configuration is required")
        levels = []
        for i, lvl in enumerate(levels_raw):
            if not isinstance(lvl, Mapping):
                raise ConfigError(f"Level {i} configuration is invalid")
            levels.append(LevelConfig.from_config(lvl, i))
        auto = raw.get("autoFetch", True)
        return cls(
            levels=tuple(levels),
            filters=raw.get("filters") or (),
            sql=str(raw.get("Sql") or ""),
            auto_fetch=auto if isinstance(auto, bool) else str(auto).strip().lower() != "false",
            filter_type=str(raw.get("filterType") or ""),
            page_name=str(raw.get("wPage") or ""),
            entry=raw.get("Entry") if isinstance(raw.get("Entry"), Mapping) else None,
        )

    def level(self, index: int) -> LevelConfig:
        if index < 0 or index >= len(self.levels):
            raise IndexError(f"Level {index} is not configured")
        return self.levels[index]

    @property
    def has_filters(self) -> bool:
        return bool(self.filters)

    def filter_fields(self) -> FieldSet:
        return FieldSet.from_config(self.filters or [])

    def should_open_filter_panel(self) -> bool:
        """Root level with manual fetch and a modal filter panel opens it on load."""
        return (not self.auto_fetch) and self.filter_type != "onPage" and self.has_filters

    def level_names(self) -> List[str]:
        return [lvl.name for lvl in self.levels]
