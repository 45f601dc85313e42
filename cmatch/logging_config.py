"""Root logger setup driven by ``LOG_*`` settings.

Always logs to stdout; optionally to a size-rotated file.
"""
from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

from .config import settings

_NOISY_LOGGERS = ("httpx", "httpcore", "openai", "sentence_transformers", "urllib3")


class JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _formatter() -> logging.Formatter:
    if settings.logging.format == "json":
        return JsonFormatter()
    return logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s", datefmt="%Y-%m-%dT%H:%M:%S%z")


def setup_logging() -> None:
    """Idempotent root logger init."""
    root = logging.getLogger()
    if getattr(root, "_cmatch_configured", False):
        return

    level = getattr(logging, settings.logging.level.upper(), logging.INFO)
    root.setLevel(level)

    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = _formatter()
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(formatter)
    root.addHandler(console)

    if settings.logging.file:
        directory = os.path.dirname(settings.logging.file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        file_handler = RotatingFileHandler(
            settings.logging.file,
            maxBytes=settings.logging.max_bytes,
            backupCount=settings.logging.backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root._cmatch_configured = True  # type: ignore[attr-defined]
    logging.getLogger(__name__).debug(f"Logging configured (level={settings.logging.level}, format={settings.logging.format})")
