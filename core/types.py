# -*- coding: utf-8 -*-
"""Shared engine types (pure, test-friendly)."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from core.errors import EngineError


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Issue:
    code: str
    message: str
    severity: Severity = Severity.WARNING
    context: Optional[str] = None


class FormMode(str, Enum):
    NEW = "new"
    EDIT = "edit"
    VIEW = "view"


@dataclass
class Outcome:
    """Result-or-fault value returned by asynchronous engine operations.

    ``stale`` marks a result that arrived after its context was invalidated
    and was therefore discarded.
    """

    ok: bool
    value: Any = None
    fault: Optional[EngineError] = None
    stale: bool = False

    @classmethod
    def success(cls, value: Any = None) -> "Outcome":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, fault: EngineError) -> "Outcome":
        return cls(ok=False, fault=fault)

    @classmethod
    def discarded(cls) -> "Outcome":
        return cls(ok=False, stale=True)
