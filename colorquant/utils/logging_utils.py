from __future__ import annotations

import logging
import os
import shutil
import time
from logging.handlers import RotatingFileHandler

from colorquant.utils.filesystem_utils import get_app_root

LOG_NAME = "colorquant.log"
LOG_BACKUPS = 20

logger = logging.getLogger('colorquant')


def setup_logging(level=logging.INFO):
    # Configure the package logger; the host decides whether the root logger is used
    logger.setLevel(logging.DEBUG)
    log_dir = os.path.join(get_app_root(), "logs")
    os.makedirs(log_dir, exist_ok=True)

    # Rotate logs before creating new handler
    rotate_logs()

    for existing in list(logger.handlers):
        if isinstance(existing, RotatingFileHandler):
            logger.removeHandler(existing)
            existing.close()

    handler = RotatingFileHandler(
        os.path.join(log_dir, LOG_NAME),
        maxBytes=1024 * 1024 * 50,  # 50MB (safety net for single-run logging)
        backupCount=LOG_BACKUPS,
        encoding='utf-8'
    )
    handler.setLevel(level)

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    return logger


def rotate_logs():
    log_dir = os.path.join(get_app_root(), "logs")
    main_log = os.path.join(log_dir, LOG_NAME)

    if not os.path.exists(main_log):
        return

    oldest = os.path.join(log_dir, f"{LOG_NAME}.{LOG_BACKUPS}")
    if os.path.exists(oldest):
        os.remove(oldest)

    # Shift backups (backwards to avoid conflicts)
    for i in range(LOG_BACKUPS - 1, 0, -1):
        src = os.path.join(log_dir, f"{LOG_NAME}.{i}")
        dst = os.path.join(log_dir, f"{LOG_NAME}.{i + 1}")
        if os.path.exists(src):
            shutil.move(src, dst)

    shutil.move(main_log, os.path.join(log_dir, f"{LOG_NAME}.1"))


class PerfFrame:
    """Collects per-stage wall times for one render and logs them as a single line."""

    def __init__(self, label: str = "color_quantize"):
        self.label = label
        self.enabled = logger.isEnabledFor(logging.DEBUG)
        now = time.perf_counter()
        self.start = now
        self.last = now
        self.stages: list[tuple[str, float]] = []

    def mark(self, stage: str) -> float:
        now = time.perf_counter()
        elapsed_ms = (now - self.last) * 1000.0
        self.stages.append((stage, elapsed_ms))
        self.last = now
        return elapsed_ms

    @property
    def total_ms(self) -> float:
        return (time.perf_counter() - self.start) * 1000.0

    def as_dict(self) -> dict:
        return {stage: ms for stage, ms in self.stages}

    def flush(self, width: int, height: int, extra: str = ""):
        if not self.enabled:
            return
        summary = f"[{self.label}][perf] {width}x{height} total={self.total_ms:.3f}ms"
        if extra:
            summary += f" {extra}"
        for stage, ms in self.stages:
            summary += f" | {stage}={ms:.3f}ms"
        logger.debug(summary)
