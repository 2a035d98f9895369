#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Patch ▸ Source file inventory
===============================================================================

Lists every non‑excluded file under a project root together with an estimated
model token count, so a user can decide which files to send with a prompt.

Token counting uses ``tiktoken`` (encoding for the configured model, falling
back to ``cl100k_base``). Files are read on a bounded thread pool. A file that
cannot be read or measured is still listed, with ``token_count=None``.
"""
from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor
from functools import lru_cache
from pathlib import Path
from typing import Callable, List, Optional, Union

import tiktoken

from prompt_patch import get_logger
from prompt_patch.config import DEFAULT_CONCURRENCY, DEFAULT_MODEL
from prompt_patch.models import ExcludedPathSet, SourceFile
from prompt_patch.path_filter import compute_excluded_paths

log = get_logger(__name__)

FALLBACK_ENCODING = "cl100k_base"

TokenCounter = Callable[[str], int]


# --------------------------------------------------------------------------- #
# Token counting
# --------------------------------------------------------------------------- #
@lru_cache(maxsize=8)
def _encoding_for(model: str) -> "tiktoken.Encoding":
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        log.debug("No tiktoken mapping for model %r; using %s", model, FALLBACK_ENCODING)
        return tiktoken.get_encoding(FALLBACK_ENCODING)


def token_counter(model: str = DEFAULT_MODEL) -> TokenCounter:
    """Return a callable counting tokens of a string for *model*."""

    def _count(text: str) -> int:
        return len(_encoding_for(model).encode(text, disallowed_special=()))

    return _count


def _measure(path: Path, rel: str, counter: TokenCounter) -> Optional[int]:
    try:
        text = path.read_text(encoding="utf-8")
        return counter(text)
    except Exception as exc:  # noqa: BLE001 - any failure only loses the estimate
        log.warning("Token count failed for %s: %s", rel, exc)
        return None


# --------------------------------------------------------------------------- #
# Collection
# --------------------------------------------------------------------------- #
def list_source_paths(root: Path, excluded: ExcludedPathSet) -> List[str]:
    """Repo‑relative POSIX paths of all regular files not covered by *excluded*."""
    found: List[str] = []
    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        rel_base = Path(dirpath).relative_to(root).as_posix()
        prefix = "" if rel_base == "." else rel_base + "/"
        dirnames[:] = [d for d in dirnames if prefix + d not in excluded]
        for name in filenames:
            rel = prefix + name
            if rel in excluded:
                continue
            if not (Path(dirpath) / name).is_file():
                continue
            found.append(rel)
    return found


def collect(
    root: Union[str, Path],
    excluded: ExcludedPathSet,
    *,
    counter: Optional[TokenCounter] = None,
    model: str = DEFAULT_MODEL,
    concurrency: int = DEFAULT_CONCURRENCY,
) -> List[SourceFile]:
    """
    Return one :class:`SourceFile` per non‑excluded file, sorted by path.

    Parameters
    ----------
    counter : callable, optional
        Token counter; defaults to the tiktoken encoding for *model*.
    concurrency : int
        Maximum number of files measured at once.
    """
    root = Path(root).expanduser().resolve()
    count = counter or token_counter(model)
    rels = sorted(list_source_paths(root, excluded))

    with ThreadPoolExecutor(max_workers=max(1, concurrency)) as pool:
        counts = list(pool.map(lambda rel: _measure(root / rel, rel, count), rels))

    files = [
        SourceFile(name=Path(rel).name, relative_path=rel, token_count=n)
        for rel, n in zip(rels, counts)
    ]
    log.info("Collected %d source file(s) under %s", len(files), root)
    return files


def get_source_files(
    root: Union[str, Path],
    *,
    counter: Optional[TokenCounter] = None,
    model: str = DEFAULT_MODEL,
    concurrency: int = DEFAULT_CONCURRENCY,
) -> List[SourceFile]:
    """Ignore‑aware inventory of *root* (raises ConfigError without .gitignore)."""
    excluded = compute_excluded_paths(root)
    return collect(root, excluded, counter=counter, model=model, concurrency=concurrency)


__all__ = ["collect", "get_source_files", "list_source_paths", "token_counter", "TokenCounter"]
