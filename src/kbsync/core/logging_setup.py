"""
Central logging for kbsync.

- Console handler on stderr (INFO and up by default)
- Timed rotated file handler: <base_dir>/app.log, daily rotation, UTC
- Per-run file handler: <base_dir>/YYYY-MM-DD/<action>_<run_id>.log
- Credential redaction (Basic, ApiKey, Bearer, passwords, api keys) in msg and args
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | "
    "run=%(run_id)s action=%(action)s manifest=%(manifest)s | "
    "%(message)s"
)


class MaskSecretsFilter(logging.Filter):
    """
    Redact credentials from log records before any handler formats them.
    """

    _patterns = [
        re.compile(r"(Authorization:\s*(?:Basic|Bearer|ApiKey)\s+)([A-Za-z0-9._~+/=-]+)", re.IGNORECASE),
        re.compile(r"(api[_-]?key\s*[=:]\s*)([^,\s]+)", re.IGNORECASE),
        re.compile(r"(password\s*[=:]\s*)([^,\s]+)", re.IGNORECASE),
        re.compile(r"(\btoken\s*[=:]\s*)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"(https?://[^:/\s]+:)([^@\s]+)(?=@)", re.IGNORECASE),
    ]

    @classmethod
    def mask(cls, text: str) -> str:
        for pat in cls._patterns:
            text = pat.sub(r"\1***REDACTED***", text)
        return text

    @classmethod
    def _mask_arg(cls, value: Any) -> Any:
        # numbers keep their type for %d / %.1f placeholders; anything else
        # (exceptions, URLs, dicts) is rendered and masked
        if value is None or isinstance(value, (bool, int, float)):
            return value
        return cls.mask(str(value))

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._mask_arg(v) for k, v in record.args.items()}
            else:
                record.args = tuple(self._mask_arg(a) for a in record.args)
        if isinstance(record.msg, str):
            record.msg = self.mask(record.msg)
        return True


class ContextDefaultsFilter(logging.Filter):
    """Fill the context fields used by the format for records logged outside an adapter."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key in ("run_id", "action", "manifest"):
            if not hasattr(record, key):
                setattr(record, key, "-")
        return True


def _level(name: str, default: int) -> int:
    return getattr(logging, str(name).upper(), default)


def _utc_formatter() -> logging.Formatter:
    f = logging.Formatter(fmt=_FORMAT, datefmt="%Y-%m-%dT%H:%M:%SZ")
    f.converter = time.gmtime  # type: ignore[assignment]
    return f


def _replace_console_handler(base: logging.Logger, level: str, formatter: logging.Formatter, mask: logging.Filter) -> None:
    """
    Keep exactly one stderr StreamHandler (pytest swaps stdio between tests).
    FileHandlers subclass StreamHandler, so they are left alone here.
    """
    for h in list(base.handlers):
        if type(h) is logging.StreamHandler:
            base.removeHandler(h)
            h.close()
    sh = logging.StreamHandler(stream=sys.stderr)
    sh.setLevel(_level(level, logging.INFO))
    sh.setFormatter(formatter)
    sh.addFilter(ContextDefaultsFilter())
    sh.addFilter(mask)
    base.addHandler(sh)


def _ensure_app_file_handler(base: logging.Logger, base_dir: str, level: str, formatter: logging.Formatter, mask: logging.Filter) -> None:
    """
    Point a single TimedRotatingFileHandler at <base_dir>/app.log, replacing one
    left over from a previous configuration with another directory.
    """
    os.makedirs(base_dir, exist_ok=True)
    desired = os.path.abspath(os.path.join(base_dir, "app.log"))

    for h in list(base.handlers):
        if isinstance(h, logging.handlers.TimedRotatingFileHandler):
            if os.path.abspath(h.baseFilename) == desired:
                return
            base.removeHandler(h)
            h.close()

    rh = logging.handlers.TimedRotatingFileHandler(
        desired, when="midnight", backupCount=14, encoding="utf-8", utc=True
    )
    rh.setLevel(_level(level, logging.DEBUG))
    rh.setFormatter(formatter)
    rh.addFilter(ContextDefaultsFilter())
    rh.addFilter(mask)
    base.addHandler(rh)


def build_logger(
    *,
    name: str = "kbsync",
    run_id: str,
    action: str,
    base_dir: str = "logs",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    extra: Optional[Dict[str, Any]] = None,
) -> logging.LoggerAdapter:
    """
    Configure and return a LoggerAdapter.

    The base logger `<name>` owns console + rotating file; the child
    `<name>.<action>.<run_id>` owns the per-run file and propagates upward.
    """
    mask = MaskSecretsFilter()
    formatter = _utc_formatter()

    base = logging.getLogger(name)
    base.setLevel(logging.DEBUG)
    _replace_console_handler(base, console_level, formatter, mask)
    _ensure_app_file_handler(base, base_dir, file_level, formatter, mask)

    child = logging.getLogger(f"{name}.{action}.{run_id}")
    child.setLevel(logging.DEBUG)
    child.propagate = True

    if not getattr(child, "_kbsync_run_file", False):
        dated_dir = os.path.join(base_dir, datetime.now(timezone.utc).strftime("%Y-%m-%d"))
        os.makedirs(dated_dir, exist_ok=True)
        run_file = Path(dated_dir) / f"{action}_{run_id}.log"
        fh = logging.FileHandler(run_file, encoding="utf-8")
        fh.setLevel(_level(file_level, logging.DEBUG))
        fh.setFormatter(formatter)
        fh.addFilter(ContextDefaultsFilter())
        fh.addFilter(mask)
        child.addHandler(fh)
        child._kbsync_run_file = True  # type: ignore[attr-defined]

    adapter = logging.LoggerAdapter(
        child,
        {
            "run_id": run_id,
            "action": action,
            "manifest": (extra or {}).get("manifest"),
        },
    )
    adapter.debug("Logger initialised")
    return adapter
