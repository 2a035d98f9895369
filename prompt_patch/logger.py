#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Patch ▸ Logging
===============================================================================

Every module logs through one project logger tree rooted at ``prompt_patch``:

    from prompt_patch import get_logger
    log = get_logger(__name__)

The root is configured on first use (console + daily rotating file) and
never again; children carry no handlers and propagate to it. Settings are
read from the environment at that moment into a :class:`LogConfig`:

    PROMPT_PATCH_LOG_DIR   log directory (default ./logs, then $TMPDIR)
    PROMPT_PATCH_LOG_LVL   console level, name or number (default INFO)
    PROMPT_PATCH_LOG_ROT   rotation "when" (default midnight)
    PROMPT_PATCH_LOG_BACK  rotated files kept (default 7)
    PROMPT_PATCH_LOG_UTC   truthy → UTC timestamps and rotation
    PROMPT_PATCH_LOG_JSON  truthy → JSON lines on the console

The file handler always logs at DEBUG; a pipeline run can be replayed from
``prompt_patch.log`` even when the console shows INFO only.
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Mapping, Optional

ROOT_LOGGER_NAME = "prompt_patch"
LOG_FILE_NAME = "prompt_patch.log"

_FORMAT = "%(asctime)s | %(name)s | %(process)d | %(levelname)-8s | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"
_TRUTHY = frozenset({"1", "true", "yes", "on", "y", "t"})


def _truthy(raw: Optional[str]) -> bool:
    return (raw or "").strip().lower() in _TRUTHY


def _level(raw: Optional[str], default: int) -> int:
    s = (raw or "").strip().upper()
    if not s:
        return default
    if s.isdigit():
        return int(s)
    if s == "WARN":
        return logging.WARNING
    level = logging.getLevelName(s)
    return level if isinstance(level, int) else default


def _count(raw: Optional[str], default: int) -> int:
    try:
        return max(0, int((raw or "").strip()))
    except ValueError:
        return default


@dataclass(frozen=True)
class LogConfig:
    directory: Path = Path("logs")
    console_level: int = logging.INFO
    rotate_when: str = "midnight"
    backup_count: int = 7
    utc: bool = False
    json_console: bool = False

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "LogConfig":
        """Read ``PROMPT_PATCH_LOG_*``; malformed values fall back to defaults."""
        env = os.environ if env is None else env
        return cls(
            directory=Path(env.get("PROMPT_PATCH_LOG_DIR") or "logs"),
            console_level=_level(env.get("PROMPT_PATCH_LOG_LVL"), logging.INFO),
            rotate_when=(env.get("PROMPT_PATCH_LOG_ROT") or "midnight").strip(),
            backup_count=_count(env.get("PROMPT_PATCH_LOG_BACK"), 7),
            utc=_truthy(env.get("PROMPT_PATCH_LOG_UTC")),
            json_console=_truthy(env.get("PROMPT_PATCH_LOG_JSON")),
        )


# ────────────────────────────────────────────────────────────────────────────
# Formatters
# ────────────────────────────────────────────────────────────────────────────
class _JsonFormatter(logging.Formatter):
    """One JSON object per record (for log scraping)."""

    def __init__(self, utc: bool) -> None:
        super().__init__()
        self.utc = utc

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        if self.utc:
            ts = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created))
        else:
            ts = time.strftime("%Y-%m-%dT%H:%M:%S%z", time.localtime(record.created))
        data = {
            "ts": ts,
            "name": record.name,
            "pid": record.process,
            "level": record.levelname,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data, ensure_ascii=False)


def _text_formatter(utc: bool) -> logging.Formatter:
    fmt = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)
    if utc:
        fmt.converter = time.gmtime  # type: ignore[assignment]
    return fmt


# ────────────────────────────────────────────────────────────────────────────
# Handlers
# ────────────────────────────────────────────────────────────────────────────
def _writable_dir(preferred: Path) -> Optional[Path]:
    """First writable of *preferred* and ``$TMPDIR/prompt-patch-logs``, else None."""
    for cand in (preferred.expanduser(), Path(tempfile.gettempdir()) / "prompt-patch-logs"):
        try:
            cand = cand.resolve()
            cand.mkdir(parents=True, exist_ok=True)
            marker = cand / ".writable"
            marker.write_text("ok", encoding="utf-8")
            marker.unlink(missing_ok=True)
            return cand
        except OSError:
            continue
    return None


def _file_handler(cfg: LogConfig, log_dir: Path) -> Optional[logging.Handler]:
    try:
        handler = TimedRotatingFileHandler(
            filename=log_dir / LOG_FILE_NAME,
            when=cfg.rotate_when,
            backupCount=cfg.backup_count,
            encoding="utf-8",
            utc=cfg.utc,
        )
    except (OSError, ValueError):
        # Bad rotation spec or unwritable file: console only.
        return None
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(_text_formatter(cfg.utc))
    return handler


def _console_handler(cfg: LogConfig) -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setLevel(cfg.console_level)
    handler.setFormatter(_JsonFormatter(cfg.utc) if cfg.json_console else _text_formatter(cfg.utc))
    return handler


def _configure_root(root: logging.Logger, cfg: LogConfig) -> None:
    root.setLevel(logging.DEBUG)
    log_dir = _writable_dir(cfg.directory)
    file_handler = _file_handler(cfg, log_dir) if log_dir is not None else None
    if file_handler is not None:
        root.addHandler(file_handler)
    root.addHandler(_console_handler(cfg))
    root.propagate = False
    root.debug(
        "Logging ready | file=%s | console=%s | rotate=%s x%d | utc=%s | json=%s",
        log_dir / LOG_FILE_NAME if file_handler is not None else "<none>",
        logging.getLevelName(cfg.console_level),
        cfg.rotate_when,
        cfg.backup_count,
        cfg.utc,
        cfg.json_console,
    )


# ════════════════════════════════════════════════════════════════════════════
# Public helper
# ════════════════════════════════════════════════════════════════════════════
def get_logger(name: str | None = None) -> logging.Logger:
    """
    Return the project root logger (*name* None) or a propagating child.

    The root gets its handlers on the first call only, so repeated calls never
    duplicate output.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        _configure_root(root, LogConfig.from_env())

    if name is None or name == ROOT_LOGGER_NAME:
        return root

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.propagate = True
    return logger


__all__ = ["LOG_FILE_NAME", "LogConfig", "ROOT_LOGGER_NAME", "get_logger"]
