#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Patch ▸ Delimiter patch codec
===============================================================================

Wire format
-----------
A payload is a flat sequence of blocks::

    ~~src/app.ts
    <full file content>
    ~~src/old.ts
                                  ← blank content: delete the file

* A boundary is a line that **starts** with ``~~``; the rest of that line,
  trimmed, is the repo‑relative path.
* The block's content runs until the next boundary line or the end of the
  payload and is trimmed of surrounding whitespace.
* Empty content after trimming means "delete this file".

The same format is used in both directions: :func:`encode` serialises the
files a user selected, :func:`decode` parses the model's reply into ordered
:class:`~prompt_patch.models.FileOperation` objects.
"""
from __future__ import annotations

import re
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Optional, Sequence, Union

from prompt_patch import get_logger
from prompt_patch.config import DEFAULT_CONCURRENCY
from prompt_patch.errors import FileProcessingError, PathEscapeError
from prompt_patch.models import FileOperation

log = get_logger(__name__)

DELIMITER = "~~"

_WINDOWS_DRIVE = re.compile(r"^[A-Za-z]:[\\/]")
_FENCE = re.compile(r"```(?:[\w+.-]+)?\n([\s\S]*?)\n```")


# --------------------------------------------------------------------------- #
# Path hygiene
# --------------------------------------------------------------------------- #
def normalize_rel_path(raw: str) -> str:
    """
    Return *raw* as a clean repo‑relative POSIX path.

    Raises
    ------
    PathEscapeError
        For absolute paths or any ``..`` segment.
    """
    s = raw.strip().replace("\\", "/")
    if s.startswith("/") or _WINDOWS_DRIVE.match(raw.strip()):
        raise PathEscapeError(f"Absolute path not allowed: {raw!r}", path=raw)
    parts = [p for p in PurePosixPath(s).parts if p not in ("", ".")]
    if ".." in parts:
        raise PathEscapeError(f"Path escapes project root: {raw!r}", path=raw)
    if not parts:
        raise PathEscapeError(f"Path resolves to the project root: {raw!r}", path=raw)
    return "/".join(parts)


def resolve_inside(root: Path, rel: str) -> Path:
    """Resolve *rel* under *root*; raise PathEscapeError if it lands outside."""
    target = (root / rel).resolve()
    try:
        target.relative_to(root)
    except ValueError as exc:
        raise PathEscapeError(f"Path escapes project root: {rel!r}", path=rel, repo=root) from exc
    return target


# --------------------------------------------------------------------------- #
# Encode
# --------------------------------------------------------------------------- #
def _read_block(root: Path, rel: str, skip_undecodable: bool = False) -> str:
    clean = normalize_rel_path(rel)
    target = resolve_inside(root, clean)
    try:
        content = target.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        if skip_undecodable:
            log.warning("Leaving %s out of the payload: not UTF-8 text (%s)", clean, exc.reason)
            return ""
        raise FileProcessingError(f"Error reading file: {exc}", path=clean, repo=root) from exc
    except OSError as exc:
        raise FileProcessingError(f"Error reading file: {exc}", path=clean, repo=root) from exc

    for line in content.splitlines():
        if line.startswith(DELIMITER):
            log.warning("Content of %s has a line starting with %r; decoding will split it", clean, DELIMITER)
            break

    if content and not content.endswith("\n"):
        content += "\n"
    return f"{DELIMITER}{clean}\n{content}"


def encode(
    root: Union[str, Path],
    relative_paths: Sequence[str],
    *,
    concurrency: int = DEFAULT_CONCURRENCY,
    skip_undecodable: bool = False,
) -> str:
    """
    Serialise the given files into one payload, in the order given.

    With *skip_undecodable*, files that are not UTF‑8 text (images, fonts)
    are left out with a warning instead of failing the whole payload.

    Raises
    ------
    FileProcessingError
        If any file cannot be read (the first failure in path order wins).
    PathEscapeError
        If a path is absolute or resolves outside *root*.
    """
    root = Path(root).expanduser().resolve()
    paths = list(relative_paths)
    with ThreadPoolExecutor(max_workers=max(1, concurrency)) as pool:
        blocks = list(pool.map(lambda rel: _read_block(root, rel, skip_undecodable), paths))
    payload = "".join(blocks)
    log.debug("Encoded %d file(s) from %s (%d chars)", len(paths), root, len(payload))
    return payload


# --------------------------------------------------------------------------- #
# Decode
# --------------------------------------------------------------------------- #
class _State(Enum):
    SEEKING_DELIMITER = "seeking"
    READING_PATH = "path"
    READING_CONTENT = "content"


def _operation(path: str, buf: List[str]) -> FileOperation:
    content = "".join(buf).strip()
    return FileOperation(relative_path=path, content=content or None)


def decode(payload: str) -> List[FileOperation]:
    """
    Parse *payload* into ordered file operations.

    Text before the first boundary is ignored. A boundary with an empty path
    is skipped together with its content. A boundary on the very last line
    (with or without a line terminator) opens a block with empty content,
    i.e. a delete.

    Raises
    ------
    PathEscapeError
        If any block names an absolute or escaping path; nothing is returned.
    """
    ops: List[FileOperation] = []
    state = _State.SEEKING_DELIMITER
    current: Optional[str] = None
    buf: List[str] = []
    preamble = 0
    seen_boundary = False

    for line in (payload or "").splitlines(keepends=True):
        text = line.rstrip("\r\n")
        if not text.startswith(DELIMITER):
            if state is _State.READING_CONTENT:
                buf.append(line)
            elif not seen_boundary:
                preamble += 1
            continue

        # Boundary line: close the open block first.
        seen_boundary = True
        if state is _State.READING_CONTENT and current is not None:
            ops.append(_operation(current, buf))
        current, buf = None, []
        state = _State.READING_PATH

        raw_path = text[len(DELIMITER):].strip()
        if not raw_path:
            log.warning("Skipping block with empty path")
            state = _State.SEEKING_DELIMITER
            continue

        current = normalize_rel_path(raw_path)
        state = _State.READING_CONTENT

    if state is _State.READING_CONTENT and current is not None:
        ops.append(_operation(current, buf))

    if preamble:
        log.info("Ignored %d line(s) before the first file boundary", preamble)
    log.debug(
        "Decoded %d operation(s): %d write, %d delete",
        len(ops),
        sum(1 for o in ops if not o.is_delete),
        sum(1 for o in ops if o.is_delete),
    )
    return ops


# --------------------------------------------------------------------------- #
# Helpers for model replies
# --------------------------------------------------------------------------- #
def strip_markdown_fences(text: str) -> str:
    """
    Return the concatenated bodies of fenced code blocks in *text*, or *text*
    unchanged when it contains none.
    """
    bodies = [m.strip() for m in _FENCE.findall(text or "") if m.strip()]
    if not bodies:
        return text
    return "\n".join(bodies)


def mentions_path(payload: str, name: str) -> bool:
    """True if a boundary line in *payload* names exactly *name*."""
    marker = f"{DELIMITER}{name}"
    return any(line.strip() == marker for line in (payload or "").splitlines())


def touched_paths(ops: Iterable[FileOperation]) -> List[str]:
    return [op.relative_path for op in ops]


__all__ = [
    "DELIMITER",
    "decode",
    "encode",
    "mentions_path",
    "normalize_rel_path",
    "resolve_inside",
    "strip_markdown_fences",
    "touched_paths",
]
