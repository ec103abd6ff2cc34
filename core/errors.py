# -*- coding: utf-8 -*-
"""Engine fault types.

None of these is fatal to the process. Each is scoped to the active form,
dialog or report and leaves previously committed data intact.
"""

from __future__ import annotations

from typing import Dict, Iterable, Optional, Tuple


class EngineError(Exception):
    """Root of every fault raised by the engine."""


class ConfigError(EngineError):
    """Server-supplied configuration is unusable (raised at load time)."""


class CyclicDependencyError(ConfigError):
    def __init__(self, path: Iterable[str]):
        self.path: Tuple[str, ...] = tuple(path)
        super().__init__("Cyclic field dependency: " + " -> ".join(self.path))


class MissingDependency(EngineError):
    """A template was built without a required parent value."""

    def __init__(self, field_key: str, missing: Optional[Iterable[str]] = None):
        self.field_key = str(field_key)
        self.missing: Tuple[str, ...] = tuple(missing) if missing else (self.field_key,)
        super().__init__("Missing required fields: " + ", ".join(self.missing))


class FetchFailure(EngineError):
    """Transport error, timeout or malformed response shape."""

    def __init__(self, reason: str, *, field_key: Optional[str] = None):
        self.reason = str(reason)
        self.field_key = field_key
        super().__init__(self.reason)


class ValidationFailure(EngineError):
    """Remote validation returned a non-success flag."""

    def __init__(self, field_key: str, message: str):
        self.field_key = str(field_key)
        self.message = str(message)
        super().__init__(self.message)


class StaticValidationFailure(EngineError):
    """Mandatory fields are empty; carries one message per field key."""

    def __init__(self, errors: Dict[str, str]):
        self.errors: Dict[str, str] = dict(errors or {})
        super().__init__("; ".join(self.errors.values()) or "Validation failed")


class SubmissionFailure(EngineError):
    """Stage or final submit was rejected (or could not be delivered)."""

    def __init__(self, message: str):
        self.message = str(message)
        super().__init__(self.message)
