#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Plain data carriers shared across the pipeline.

``to_dict()`` renders the JSON shape used by the HTTP API (camelCase keys,
ISO‑8601 timestamps).
"""
from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

# Repo‑relative POSIX paths that must not be surfaced or read.
ExcludedPathSet = FrozenSet[str]


@dataclass(frozen=True)
class SourceFile:
    name: str
    relative_path: str
    token_count: Optional[int]  # None: measurement failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "relativePath": self.relative_path,
            "tokenCount": self.token_count,
        }


@dataclass(frozen=True)
class FileOperation:
    """
    One decoded block. Empty or ``None`` content means "delete the file";
    anything else replaces the file with exactly that content.
    """

    relative_path: str
    content: Optional[str]

    @property
    def is_delete(self) -> bool:
        return not (self.content or "").strip()


@dataclass(frozen=True)
class CommitRecord:
    hash: str
    message: str
    diff: str
    timestamp: _dt.datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hash": self.hash,
            "message": self.message,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat(),
        }


class Stage(str, Enum):
    """Pipeline position of a prompt run."""

    ENCODING = "encoding"
    GENERATING = "generating"
    APPLYING = "applying"
    COMMITTING = "committing"
    VALIDATING = "validating"
    RESOLVING = "resolving"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ProcessResult:
    commits: List[CommitRecord] = field(default_factory=list)
    error: Optional[str] = None
    stage: Stage = Stage.ENCODING

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"commits": [c.to_dict() for c in self.commits]}
        if self.error is not None:
            data["error"] = self.error
        return data


__all__ = [
    "ExcludedPathSet",
    "SourceFile",
    "FileOperation",
    "CommitRecord",
    "Stage",
    "ProcessResult",
]
