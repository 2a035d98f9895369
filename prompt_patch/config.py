#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Patch ▸ Runtime settings
===============================================================================

All tunables come from environment variables with sensible defaults, read
once by :func:`load_settings` into an immutable :class:`Settings`. Components
receive the object explicitly; nothing reads the environment behind the
caller's back after start‑up.

Environment
-----------
OPENAI_API_KEY                 required by the OpenAI generator only
OPENAI_BASE_URL                optional custom endpoint
PROMPT_PATCH_MODEL             default "gpt-4o-mini"
PROMPT_PATCH_API_TIMEOUT       seconds, default 120
PROMPT_PATCH_CONCURRENCY       file‑read workers, default 12
PROMPT_PATCH_MAX_ATTEMPTS      build attempts, default 1 (no auto‑fix)
PROMPT_PATCH_BUILD_COMMAND     default "pnpm build"
PROMPT_PATCH_INSTALL_COMMAND   unset (no reinstall), e.g. "pnpm install"
PROMPT_PATCH_INSTALL_MANIFESTS comma separated, default "package.json"
PROMPT_PATCH_DEV_COMMAND       unset (no dev server), e.g. "pnpm dev"
PROMPT_PATCH_COMMAND_TIMEOUT   seconds, default 300
PROMPT_PATCH_COMMIT_LIMIT      commits listed by the API, default 10
PROMPT_PATCH_HOST / _PORT      default 127.0.0.1 / 3001
PROMPT_PATCH_CORS_ORIGINS      comma separated, default "*"
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional, Tuple

from prompt_patch.errors import ConfigError

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_API_TIMEOUT = 120
DEFAULT_CONCURRENCY = 12
DEFAULT_MAX_ATTEMPTS = 1
DEFAULT_BUILD_COMMAND = "pnpm build"
DEFAULT_INSTALL_COMMAND = ""
DEFAULT_INSTALL_MANIFESTS = ("package.json",)
DEFAULT_DEV_COMMAND = ""
DEFAULT_COMMAND_TIMEOUT = 300
DEFAULT_COMMIT_LIMIT = 10
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3001


@dataclass(frozen=True)
class Settings:
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    model: str = DEFAULT_MODEL
    api_timeout: int = DEFAULT_API_TIMEOUT
    concurrency: int = DEFAULT_CONCURRENCY
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    build_command: str = DEFAULT_BUILD_COMMAND
    install_command: str = DEFAULT_INSTALL_COMMAND
    install_manifests: Tuple[str, ...] = DEFAULT_INSTALL_MANIFESTS
    dev_command: str = DEFAULT_DEV_COMMAND
    command_timeout: int = DEFAULT_COMMAND_TIMEOUT
    commit_limit: int = DEFAULT_COMMIT_LIMIT
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    cors_origins: Tuple[str, ...] = field(default_factory=lambda: ("*",))

    def with_overrides(self, **changes) -> "Settings":
        """Return a copy with *changes* applied (``None`` values ignored)."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    def require_api_key(self) -> str:
        if not self.openai_api_key:
            raise ConfigError("OPENAI_API_KEY is not set; export it or pass a client explicitly.")
        return self.openai_api_key


def _env_int(env: Mapping[str, str], name: str, default: int, *, minimum: int = 1) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_str(env: Mapping[str, str], name: str, default: str) -> str:
    raw = env.get(name)
    return raw.strip() if raw and raw.strip() else default


def _env_list(env: Mapping[str, str], name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    items = tuple(p.strip() for p in _env_str(env, name, "").split(",") if p.strip())
    return items or default


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build :class:`Settings` from *env* (defaults to ``os.environ``).

    Raises
    ------
    ConfigError
        When a numeric variable is not a valid positive integer.
    """
    env = os.environ if env is None else env
    return Settings(
        openai_api_key=env.get("OPENAI_API_KEY") or None,
        openai_base_url=env.get("OPENAI_BASE_URL") or None,
        model=_env_str(env, "PROMPT_PATCH_MODEL", DEFAULT_MODEL),
        api_timeout=_env_int(env, "PROMPT_PATCH_API_TIMEOUT", DEFAULT_API_TIMEOUT),
        concurrency=_env_int(env, "PROMPT_PATCH_CONCURRENCY", DEFAULT_CONCURRENCY),
        max_attempts=_env_int(env, "PROMPT_PATCH_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
        build_command=_env_str(env, "PROMPT_PATCH_BUILD_COMMAND", DEFAULT_BUILD_COMMAND),
        install_command=_env_str(env, "PROMPT_PATCH_INSTALL_COMMAND", DEFAULT_INSTALL_COMMAND),
        install_manifests=_env_list(env, "PROMPT_PATCH_INSTALL_MANIFESTS", DEFAULT_INSTALL_MANIFESTS),
        dev_command=_env_str(env, "PROMPT_PATCH_DEV_COMMAND", DEFAULT_DEV_COMMAND),
        command_timeout=_env_int(env, "PROMPT_PATCH_COMMAND_TIMEOUT", DEFAULT_COMMAND_TIMEOUT),
        commit_limit=_env_int(env, "PROMPT_PATCH_COMMIT_LIMIT", DEFAULT_COMMIT_LIMIT),
        host=_env_str(env, "PROMPT_PATCH_HOST", DEFAULT_HOST),
        port=_env_int(env, "PROMPT_PATCH_PORT", DEFAULT_PORT),
        cors_origins=_env_list(env, "PROMPT_PATCH_CORS_ORIGINS", ("*",)),
    )


__all__ = ["Settings", "load_settings"]
