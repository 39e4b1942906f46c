"""Tagged console logging for the analysis pipeline.

Every message carries a component tag (Pipeline, BEAT, Source, Scheduler,
Config) so interleaved output from the tick thread and the host can be told
apart. Structured fields ride on the record and are rendered as ``k=v``
pairs after the message.
"""
from __future__ import annotations

import logging
from typing import Any, Mapping

LOGGER_NAME = "bandpulse"
DEFAULT_TAG = "Pipeline"

# Level names accepted from config files and the CLI
_LEVEL_ALIASES = {"WARN": "WARNING", "FATAL": "CRITICAL"}


class _FieldFormatter(logging.Formatter):
    """``[LEVEL][Tag] message | k=v ...``"""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields: Mapping[str, Any] = getattr(record, "fields", None) or {}
        if fields:
            line = f"{line} | " + " ".join(f"{k}={v}" for k, v in fields.items())
        return line


def _build_logger() -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(_FieldFormatter("[%(levelname)s][%(tag)s] %(message)s"))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        # Host applications keep their own root handlers; don't print twice
        logger.propagate = False
    return logger


_logger = _build_logger()


def _level_value(level: str | None) -> int:
    name = (level or "INFO").upper()
    name = _LEVEL_ALIASES.get(name, name)
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else logging.INFO


def log_event(level: str, tag: str, message: str, **fields: Any) -> None:
    """Log ``message`` under ``tag``; keyword fields are appended as ``k=v``."""
    value = _level_value(level)
    if not _logger.isEnabledFor(value):
        return
    _logger.log(value, message, extra={"tag": tag or DEFAULT_TAG, "fields": fields})


def set_log_level(level: str) -> None:
    _logger.setLevel(_level_value(level))


def get_log_level() -> str:
    return logging.getLevelName(_logger.getEffectiveLevel())
