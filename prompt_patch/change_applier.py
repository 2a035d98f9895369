#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Patch ▸ Change applier (FULL‑FILE semantics)
===============================================================================

Operations
----------
| kind    | Trigger                 | Notes                                    |
|---------|-------------------------|------------------------------------------|
| write   | non‑empty content       | Creates parents; replaces whole file     |
| delete  | empty / missing content | Missing file is fine; directory is not   |

Safety & Guarantees
-------------------
* **No traversal**: every path is checked before anything is touched, so a
  payload with one escaping path applies nothing.
* **.git guard**: refuses any operation inside `.git/`.
* **Atomic writes**: data is written to a temp file then atomically replaced.
* **Normalised text, not byte‑exact**: content is written with LF line
  endings and a trailing newline appended when missing, so the file on disk
  can differ from the decoded content (CRLF input, missing final newline).
* **Ordered**: operations run literally in sequence; a later write to the
  same path wins. A failure stops the run; earlier operations stay applied.
"""
from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import List, Sequence, Tuple, Union

from prompt_patch import get_logger
from prompt_patch.errors import FileProcessingError, PathEscapeError
from prompt_patch.models import FileOperation
from prompt_patch.patch_codec import normalize_rel_path, resolve_inside

log = get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Path & content helpers
# ─────────────────────────────────────────────────────────────────────────────
def _is_under_dot_git(rel: str) -> bool:
    """True if a repo‑relative path refers to `.git` or a descendant."""
    parts = rel.strip().split("/")
    return ".git" in parts


def _normalize_text(text: str) -> str:
    """Normalize text payloads to LF and ensure a trailing newline."""
    t = (text or "").replace("\r\n", "\n").replace("\r", "\n")
    return t if t.endswith("\n") else t + "\n"


def _atomic_write_bytes(dest: Path, data: bytes) -> None:
    """
    Write *data* atomically into *dest* (same‑dir temp + replace). Ensures
    parent directories exist and fsyncs before replace.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(dir=str(dest.parent), delete=False) as tmp:
        tmp.write(data)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_path = Path(tmp.name)
    try:
        os.replace(tmp_path, dest)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


def _plan(root: Path, operations: Sequence[FileOperation]) -> List[Tuple[FileOperation, str, Path]]:
    """Validate every path up front; return (op, clean_rel, absolute) triples."""
    planned: List[Tuple[FileOperation, str, Path]] = []
    for op in operations:
        try:
            rel = normalize_rel_path(op.relative_path)
        except PathEscapeError as exc:
            raise PathEscapeError(exc.message, path=op.relative_path, repo=root) from exc
        if _is_under_dot_git(rel):
            raise PathEscapeError("Refusing to operate inside .git/", path=rel, repo=root)
        planned.append((op, rel, resolve_inside(root, rel)))
    return planned


# ─────────────────────────────────────────────────────────────────────────────
# Single operations
# ─────────────────────────────────────────────────────────────────────────────
def _delete(root: Path, rel: str, target: Path) -> None:
    if target.is_dir():
        raise FileProcessingError("Cannot delete: path is a directory", path=rel, repo=root)
    try:
        target.unlink()
    except FileNotFoundError:
        log.warning("File %s already absent; nothing to delete", rel)
        return
    except OSError as exc:
        raise FileProcessingError(f"Error deleting file: {exc}", path=rel, repo=root) from exc
    log.info("Deleted %s", rel)


def _write(root: Path, rel: str, target: Path, content: str) -> None:
    data = _normalize_text(content).encode("utf-8")
    try:
        _atomic_write_bytes(target, data)
    except OSError as exc:
        raise FileProcessingError(f"Error writing file: {exc}", path=rel, repo=root) from exc
    log.info("Wrote %s (%d bytes)", rel, len(data))


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────
def apply(root: Union[str, Path], operations: Sequence[FileOperation]) -> None:
    """
    Apply *operations* to the tree under *root*, in order.

    Raises
    ------
    PathEscapeError
        Before any change, if any path is unsafe.
    FileProcessingError
        On the first failing write or delete.
    """
    root = Path(root).expanduser().resolve()
    planned = _plan(root, operations)
    log.debug("Applying %d operation(s) under %s", len(planned), root)

    for op, rel, target in planned:
        if op.is_delete:
            _delete(root, rel, target)
        else:
            _write(root, rel, target, op.content or "")


__all__ = ["apply"]
