#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Patch ▸ Error taxonomy
===============================================================================

Every failure raised by the pipeline derives from :class:`PromptPatchError`
so callers (HTTP layer, CLI) can catch one type and still render a message
that names the repository and the cause.

| Class                 | Raised by                               |
|-----------------------|-----------------------------------------|
| ConfigError           | path_filter (no .gitignore), config     |
| FileProcessingError   | patch_codec.encode, change_applier      |
| PathEscapeError       | patch_codec.decode, change_applier      |
| VersionControlError   | git_ops                                 |
| GenerationError       | generation backend                      |
| ValidationError       | runners.CommandValidator, orchestrator  |
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

PathLike = Union[str, Path]


class PromptPatchError(RuntimeError):
    """
    Base class. ``repo`` and ``path`` are optional context; when present they
    are folded into ``str(exc)`` so log lines and API responses carry them.
    """

    def __init__(
        self,
        message: str,
        *,
        repo: Optional[PathLike] = None,
        path: Optional[str] = None,
    ) -> None:
        self.message = message
        self.repo = str(repo) if repo is not None else None
        self.path = path
        super().__init__(self._render())

    def _render(self) -> str:
        parts = [self.message]
        if self.path:
            parts.append(f"path={self.path}")
        if self.repo:
            parts.append(f"repo={self.repo}")
        return " | ".join(parts)


class ConfigError(PromptPatchError):
    """Missing ignore file, bad env value or missing required setting."""


class FileProcessingError(PromptPatchError):
    """Read, write or delete of a single file failed."""

    def __init__(self, message: str, *, path: str, repo: Optional[PathLike] = None) -> None:
        super().__init__(message, repo=repo, path=path)


class PathEscapeError(PromptPatchError):
    """A repo‑relative path resolves outside the repository root."""


class VersionControlError(PromptPatchError):
    """git staging, commit, log or reset failed."""


class GenerationError(PromptPatchError):
    """The code generator failed or returned nothing usable."""


class ValidationError(PromptPatchError):
    """Build validation failed; ``output`` holds the raw build output."""

    def __init__(
        self,
        message: str,
        *,
        output: str = "",
        repo: Optional[PathLike] = None,
    ) -> None:
        self.output = output
        super().__init__(message, repo=repo)


__all__ = [
    "PromptPatchError",
    "ConfigError",
    "FileProcessingError",
    "PathEscapeError",
    "VersionControlError",
    "GenerationError",
    "ValidationError",
]
