"""
Logging sinks for PulseSync runs.

`build_logger` wires three sinks onto the `pulse` logger tree:
  - stderr, INFO and above by default
  - <base_dir>/app.log, rotated at UTC midnight, 14 days kept
  - <base_dir>/YYYY-MM-DD/<action>_<run_id>.log for the current run

Every sink masks credentials and stamps records with run/action/source/kind,
including records from plain module loggers such as `pulse.http`.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_CONTEXT_FIELDS = ("run_id", "action", "source", "kind")

_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | "
    "run=%(run_id)s action=%(action)s source=%(source)s kind=%(kind)s | "
    "%(message)s"
)

_REDACTED = "***REDACTED***"


class MaskSecretsFilter(logging.Filter):
    """Replace authorization values, API keys, passwords and tokens with a marker."""

    RULES = (
        re.compile(r"(Authorization:\s*(?:Bearer|Token)\s+)[A-Za-z0-9._-]+", re.IGNORECASE),
        re.compile(r"(api[_-]?key\s*[=:]\s*)[A-Za-z0-9._-]+", re.IGNORECASE),
        re.compile(r"(password\s*[=:]\s*)[^,\s]+", re.IGNORECASE),
        re.compile(r"(\btoken\s*[=:]\s*)[A-Za-z0-9._-]+", re.IGNORECASE),
    )

    @classmethod
    def redact(cls, text: str) -> str:
        for rule in cls.RULES:
            text = rule.sub(r"\1" + _REDACTED, text)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.redact(record.msg)
        if isinstance(record.args, dict):
            record.args = {k: self.redact(str(v)) for k, v in record.args.items()}
        elif record.args:
            record.args = tuple(self.redact(a) if isinstance(a, str) else a for a in record.args)
        return True


class ContextDefaultsFilter(logging.Filter):
    """Fill context fields missing on records that did not go through an adapter."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name in _CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, "-")
        return True


def _level(name: str, fallback: int) -> int:
    return getattr(logging, str(name).upper(), fallback)


def _formatter() -> logging.Formatter:
    fmt = logging.Formatter(fmt=_FORMAT, datefmt="%Y-%m-%dT%H:%M:%SZ")
    fmt.converter = time.gmtime  # type: ignore[attr-defined]
    return fmt


def _attach(logger: logging.Logger, handler: logging.Handler, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(_formatter())
    handler.addFilter(ContextDefaultsFilter())
    handler.addFilter(MaskSecretsFilter())
    logger.addHandler(handler)


def _reset_console(base: logging.Logger, level: int) -> None:
    # sys.stderr may have been swapped (pytest capture) since the last build
    for h in [h for h in base.handlers if type(h) is logging.StreamHandler]:
        base.removeHandler(h)
        h.close()
    _attach(base, logging.StreamHandler(stream=sys.stderr), level)


def _bind_app_log(base: logging.Logger, base_dir: str, level: int) -> None:
    os.makedirs(base_dir, exist_ok=True)
    target = os.path.abspath(os.path.join(base_dir, "app.log"))
    rotating = [h for h in base.handlers if isinstance(h, logging.handlers.TimedRotatingFileHandler)]
    for h in rotating:
        if os.path.abspath(h.baseFilename) != target:
            base.removeHandler(h)
            h.close()
    if any(os.path.abspath(h.baseFilename) == target for h in base.handlers
           if isinstance(h, logging.handlers.TimedRotatingFileHandler)):
        return
    handler = logging.handlers.TimedRotatingFileHandler(
        target, when="midnight", backupCount=14, encoding="utf-8", utc=True,
    )
    _attach(base, handler, level)


def _bind_run_log(child: logging.Logger, base_dir: str, action: str, run_id: str, level: int) -> None:
    if getattr(child, "_pulse_action_configured", False):
        return
    day_dir = os.path.join(base_dir, datetime.now(timezone.utc).strftime("%Y-%m-%d"))
    os.makedirs(day_dir, exist_ok=True)
    path = os.path.join(day_dir, f"{action}_{run_id}.log")
    _attach(child, logging.FileHandler(path, encoding="utf-8"), level)
    child._pulse_action_configured = True  # type: ignore[attr-defined]


def build_logger(
    *,
    name: str = "pulse",
    run_id: str,
    action: str,
    base_dir: str = "logs",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    extra: Optional[Dict[str, Any]] = None,
) -> logging.LoggerAdapter:
    """
    Return an adapter on `<name>.<action>.<run_id>`.

    The base logger `<name>` owns the console and app.log sinks; the child owns
    the per-run file and propagates to the base. `extra` may preset `source`
    and `kind`; kind passes override them through `with_context`.
    """
    files_level = _level(file_level, logging.DEBUG)

    base = logging.getLogger(name)
    base.setLevel(logging.DEBUG)
    _reset_console(base, _level(console_level, logging.INFO))
    _bind_app_log(base, base_dir, files_level)

    child = logging.getLogger(f"{name}.{action}.{run_id}")
    child.setLevel(logging.DEBUG)
    child.propagate = True
    _bind_run_log(child, base_dir, action, run_id, files_level)

    preset = extra or {}
    adapter = logging.LoggerAdapter(child, {
        "run_id": run_id,
        "action": action,
        "source": preset.get("source", "-"),
        "kind": preset.get("kind", "-"),
    })
    adapter.debug("Logger initialised")
    return adapter


def with_context(logger: Any, **fields: Any) -> logging.LoggerAdapter:
    """Adapter over the same logger with `fields` added to (or replacing) its context."""
    if isinstance(logger, logging.LoggerAdapter):
        return logging.LoggerAdapter(logger.logger, {**(logger.extra or {}), **fields})
    return logging.LoggerAdapter(logger, dict(fields))
