"""Dynaform package entry.

Provides a stable module entrypoint (python -m dynaform) over the top-level
packages (app/, core/, services/, infra/).
"""

from dynaform.version import __version__  # single source of truth

__all__ = ["__version__"]
