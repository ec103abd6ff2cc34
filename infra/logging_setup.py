# -*- coding: utf-8 -*-
"""
Logging setup: engine logs and tracebacks are captured in user space.
"""
from __future__ import annotations

import logging
from pathlib import Path

from infra.paths import logs_dir

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def init_logging(filename: str = "dynaform.log", level: int = logging.INFO) -> Path:
    log_path = logs_dir() / filename
    # Don't add multiple handlers if init called twice
    root = logging.getLogger()
    if not any(isinstance(h, logging.FileHandler) and getattr(h, "baseFilename", "") == str(log_path) for h in root.handlers):
        logging.basicConfig(
            level=level,
            format=_FORMAT,
            handlers=[logging.FileHandler(log_path, encoding="utf-8"), logging.StreamHandler()],
        )
    return log_path


def init_perf_logging(filename: str = "perf.log") -> Path:
    """Attach a dedicated file handler for performance timings.

    Timings are emitted by infra.perf.span when DYNAFORM_PERF=1.
    """
    log_path = logs_dir() / filename
    logger = logging.getLogger("dynaform.perf")
    logger.setLevel(logging.INFO)
    # Avoid duplicate handlers
    if not any(isinstance(h, logging.FileHandler) and getattr(h, "baseFilename", "") == str(log_path) for h in logger.handlers):
        fh = logging.FileHandler(log_path, encoding="utf-8")
        fh.setLevel(logging.INFO)
        fh.setFormatter(logging.Formatter(_FORMAT))
        logger.addHandler(fh)
    return log_path
