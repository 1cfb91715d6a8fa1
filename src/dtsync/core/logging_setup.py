"""
Logging for dtsync runs.

Every CLI invocation is one run: `build_logger` (re)installs the sinks of the base
`dtsync` logger and returns an adapter stamped with run_id / action / api.

Sinks:
  - stderr, INFO and up by default
  - logs/app.log, DEBUG, rotated at UTC midnight (14 kept)
  - logs/YYYY-MM-DD/<action>_<run_id>.log, DEBUG, one file per run

Records are masked before any sink sees them (Api-Token / Bearer headers, key=value
and "key": "value" secrets). Timestamps are UTC.
"""

from __future__ import annotations

import logging
import logging.handlers
import re
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

_CONTEXT_FIELDS = ("run_id", "action", "api")
_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | "
    "run=%(run_id)s action=%(action)s api=%(api)s | %(message)s"
)
_MASK = "***REDACTED***"
_SECRET_KEYS = r"(?:password|passwd|token|api[_-]?key|api[_-]?token|secret\w*)"

# marks handlers owned by build_logger so a new run can replace them
_OWNED = "_dtsync_sink"


class MaskSecretsFilter(logging.Filter):
    """Mask tokens, api keys and passwords in the rendered message."""

    _patterns = [
        re.compile(r"((?:Bearer|Api-Token)\s+)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"(\b" + _SECRET_KEYS + r"\s*[=:]\s*)([^,\s\"']+)", re.IGNORECASE),
        re.compile(r"(\"" + _SECRET_KEYS + r"\"\s*:\s*\")((?:[^\"\\]|\\.)*)(?=\")", re.IGNORECASE),
    ]

    @classmethod
    def mask(cls, text: str) -> str:
        for pat in cls._patterns:
            text = pat.sub(r"\1" + _MASK, text)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        # render %-args first so secrets passed as arguments are caught too
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            message = str(record.msg)
        record.msg = self.mask(message)
        record.args = None
        return True


class ContextDefaultsFilter(logging.Filter):
    """Records that bypass the adapter (library loggers) still format."""

    def filter(self, record: logging.LogRecord) -> bool:
        for field in _CONTEXT_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, "-")
        return True


def _level(name: str, default: int) -> int:
    return getattr(logging, (name or "").upper(), default)


def _sink(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(ContextDefaultsFilter())
    handler.addFilter(MaskSecretsFilter())
    setattr(handler, _OWNED, True)
    return handler


def _replace_sinks(logger: logging.Logger, handlers: List[logging.Handler]) -> None:
    for h in list(logger.handlers):
        if getattr(h, _OWNED, False):
            logger.removeHandler(h)
            h.close()
    for h in handlers:
        logger.addHandler(h)


def build_logger(
    *,
    name: str = "dtsync",
    run_id: str,
    action: str,
    base_dir: str = "logs",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    extra: Optional[Dict[str, Any]] = None,
) -> logging.LoggerAdapter:
    """Install the run's sinks and return its adapter.

    Library code logging to `<name>.<part>` ends up in the same sinks through
    propagation to the base logger.
    """
    formatter = logging.Formatter(_FORMAT, datefmt="%Y-%m-%dT%H:%M:%SZ")
    formatter.converter = time.gmtime  # type: ignore[assignment]
    file_lvl = _level(file_level, logging.DEBUG)

    logs = Path(base_dir)
    run_dir = logs / datetime.now(timezone.utc).strftime("%Y-%m-%d")
    run_dir.mkdir(parents=True, exist_ok=True)

    base = logging.getLogger(name)
    base.setLevel(logging.DEBUG)
    _replace_sinks(base, [
        _sink(logging.StreamHandler(sys.stderr), _level(console_level, logging.INFO), formatter),
        _sink(
            logging.handlers.TimedRotatingFileHandler(
                logs / "app.log", when="midnight", backupCount=14, encoding="utf-8", utc=True
            ),
            file_lvl,
            formatter,
        ),
    ])

    run_logger = logging.getLogger(f"{name}.{action}.{run_id}")
    run_logger.setLevel(logging.DEBUG)
    _replace_sinks(run_logger, [
        _sink(logging.FileHandler(run_dir / f"{action}_{run_id}.log", encoding="utf-8"), file_lvl, formatter),
    ])

    adapter = logging.LoggerAdapter(
        run_logger,
        {"run_id": run_id, "action": action, "api": (extra or {}).get("api") or "-"},
    )
    adapter.debug("Logger initialised")
    return adapter
