#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Patch ▸ Ignore‑rule evaluation
===============================================================================

Purpose
-------
Compute the set of repo‑relative paths that must never be offered to the user
or sent to the model: everything matched by the root ``.gitignore`` plus a
small fixed list of heavyweight or generated entries.

Design
------
* Rules are compiled with ``pathspec.GitIgnoreSpec`` so ordering, ``!``
  re‑includes, directory‑only patterns and ``**`` globs behave like git.
* The walk is top‑down with in‑place pruning of ``dirnames`` (same approach as
  a plain repository scan); an excluded directory is recorded once and its
  children are not visited.
* Exception: when a negation rule names a path beneath an excluded directory
  (``build/`` followed by ``!build/keep.txt``) the directory is walked anyway
  and each entry is judged on its own. The directory itself is then not
  recorded, only the excluded files inside it. Bare‑name negations
  (``!README.md``) never force such a walk.
"""
from __future__ import annotations

import fnmatch
import os
from pathlib import Path
from typing import List, Sequence, Set, Tuple, Union

import pathspec

from prompt_patch import get_logger
from prompt_patch.errors import ConfigError
from prompt_patch.models import ExcludedPathSet

log = get_logger(__name__)

# --------------------------------------------------------------------------- #
# Constants
# --------------------------------------------------------------------------- #
IGNORE_FILE = ".gitignore"

# Matched by entry name at any depth; a negation rule cannot re‑include these.
ALWAYS_IGNORED_DIRS: frozenset = frozenset({".git", "node_modules"})
ALWAYS_IGNORED_FILES: frozenset = frozenset({"LICENSE", "package-lock.json", "pnpm-lock.yaml"})


# --------------------------------------------------------------------------- #
# Rule loading
# --------------------------------------------------------------------------- #
def load_ignore_rules(root: Path) -> Tuple[pathspec.GitIgnoreSpec, List[str]]:
    """
    Read ``<root>/.gitignore`` and return ``(spec, negated_patterns)``.

    ``negated_patterns`` are the bodies of ``!`` lines (without the bang),
    used to decide whether an excluded directory may still hide re‑included
    files.

    Raises
    ------
    ConfigError
        If the ignore file is missing or unreadable.
    """
    ignore_path = root / IGNORE_FILE
    if not ignore_path.is_file():
        raise ConfigError(f"No {IGNORE_FILE} found at project root", repo=root)
    try:
        lines = ignore_path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError as exc:
        raise ConfigError(f"Cannot read {IGNORE_FILE}: {exc}", repo=root) from exc

    spec = pathspec.GitIgnoreSpec.from_lines(lines)
    negations = [
        ln.strip()[1:].strip()
        for ln in lines
        if ln.strip().startswith("!") and ln.strip()[1:].strip()
    ]
    log.debug("Loaded %d ignore lines (%d negations) from %s", len(lines), len(negations), ignore_path)
    return spec, negations


def _negation_may_reach(rel_dir: str, negations: Sequence[str]) -> bool:
    """
    True if a negated pattern names a path strictly below *rel_dir*.

    Only patterns whose leading segments spell out the directory count
    (``!build/keep.txt``, ``!build/**/keep.txt``). Bare names such as
    ``!README.md`` or ``!**/README.md`` do not reach into an excluded
    directory, matching git, which never re-includes a file whose parent
    directory is excluded.
    """
    dir_parts = rel_dir.split("/")
    for raw in negations:
        pat = raw.strip("/")
        if not pat:
            continue
        pat_parts = pat.split("/")
        if len(pat_parts) == 1 or pat_parts[0] == "**":
            continue
        for d, p in zip(dir_parts, pat_parts):
            if p == "**":
                return True
            if not fnmatch.fnmatchcase(d, p):
                break
        else:
            if len(pat_parts) > len(dir_parts):
                return True
    return False


# --------------------------------------------------------------------------- #
# Public API
# --------------------------------------------------------------------------- #
def compute_excluded_paths(root: Union[str, Path]) -> ExcludedPathSet:
    """
    Walk *root* and return every repo‑relative POSIX path that is excluded.

    Excluded directories appear once (without trailing slash) and nothing
    beneath them is listed, unless a negation rule forced a walk‑through.
    """
    root = Path(root).expanduser().resolve()
    spec, negations = load_ignore_rules(root)

    excluded: Set[str] = set()
    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        base = Path(dirpath)
        rel_base = base.relative_to(root).as_posix()
        prefix = "" if rel_base == "." else rel_base + "/"

        keep: List[str] = []
        for name in sorted(dirnames):
            rel = prefix + name
            if name in ALWAYS_IGNORED_DIRS:
                excluded.add(rel)
                continue
            if spec.match_file(rel + "/"):
                if _negation_may_reach(rel, negations):
                    log.debug("Walking excluded dir %s (negation may re-include)", rel)
                    keep.append(name)
                    continue
                excluded.add(rel)
                continue
            keep.append(name)
        # Prune in place so os.walk never descends into excluded directories.
        dirnames[:] = keep

        for name in filenames:
            rel = prefix + name
            if name in ALWAYS_IGNORED_FILES or spec.match_file(rel):
                excluded.add(rel)

    log.info("Computed %d excluded path(s) under %s", len(excluded), root)
    return frozenset(excluded)


def is_excluded(rel_path: str, excluded: ExcludedPathSet) -> bool:
    """True if *rel_path* or any of its ancestor directories is excluded."""
    parts = rel_path.strip("/").split("/")
    return any("/".join(parts[: i + 1]) in excluded for i in range(len(parts)))


__all__ = [
    "ALWAYS_IGNORED_DIRS",
    "ALWAYS_IGNORED_FILES",
    "IGNORE_FILE",
    "compute_excluded_paths",
    "is_excluded",
    "load_ignore_rules",
]
