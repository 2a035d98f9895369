#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Patch ▸ Code generation backend
===============================================================================

The orchestrator only needs ``generate(prompt) -> str``. This module defines
that seam (:class:`CodeGenerator`) and the default implementation on the
official ``openai`` SDK: one user message through
``client.chat.completions.create``, with markdown fences stripped from the
reply.

The client is injectable so tests can pass a fake object exposing the same
``chat.completions.create`` shape; no network access or API key is needed then.
"""
from __future__ import annotations

from typing import Any, Optional, Protocol

from openai import OpenAI, OpenAIError

from prompt_patch import get_logger
from prompt_patch.config import DEFAULT_API_TIMEOUT, DEFAULT_MODEL, Settings
from prompt_patch.errors import GenerationError
from prompt_patch.patch_codec import strip_markdown_fences

log = get_logger(__name__)


class CodeGenerator(Protocol):
    def generate(self, prompt: str) -> str: ...


def _ensure_client(client: Any | None, settings: Optional[Settings], api_timeout: int):
    """
    Permit dependency injection for tests; instantiate official SDK otherwise.
    """
    if client is not None:
        return client
    settings = settings or Settings()
    return OpenAI(
        api_key=settings.require_api_key(),
        base_url=settings.openai_base_url,
        timeout=api_timeout,
    )


def _reply_text(resp: Any) -> str:
    try:
        return resp.choices[0].message.content or ""
    except (AttributeError, IndexError, TypeError):
        return ""


class OpenAIGenerator:
    """Default :class:`CodeGenerator` backed by chat completions."""

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_timeout: int = DEFAULT_API_TIMEOUT,
        client: Any | None = None,
        *,
        settings: Optional[Settings] = None,
    ) -> None:
        self.model = model
        self.api_timeout = api_timeout
        self._client = client
        self._settings = settings

    @classmethod
    def from_settings(cls, settings: Settings, client: Any | None = None) -> "OpenAIGenerator":
        return cls(settings.model, settings.api_timeout, client, settings=settings)

    @property
    def client(self):
        # Built lazily so a missing key only fails when generation is attempted.
        if self._client is None:
            self._client = _ensure_client(None, self._settings, self.api_timeout)
        return self._client

    def generate(self, prompt: str) -> str:
        log.debug("Generation request | model=%s | prompt=%d chars", self.model, len(prompt))
        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
            )
        except OpenAIError as exc:
            log.error("OpenAI call failed: %s", exc)
            raise GenerationError(f"OpenAI request failed: {exc}") from exc

        text = _reply_text(resp)
        if not text.strip():
            raise GenerationError("Model returned an empty response")
        code = strip_markdown_fences(text)
        log.debug("Generation reply | %d chars (%d after fence stripping)", len(text), len(code))
        return code


__all__ = ["CodeGenerator", "OpenAIGenerator"]
