#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Patch ▸ JSON‑Schema request validator
===============================================================================

Purpose
-------
Validate API request bodies (HTTP and ``prompt-patch validate-request``)
against the schema bundled at `prompt_patch/schema.json`, then enforce runtime
guards the schema cannot express.

Public API
----------
* `validate_request(kind, payload: str | bytes | dict) -> dict`
    - Returns the parsed JSON object on success
    - Raises `jsonschema.ValidationError` on schema violations
    - Raises `json.JSONDecodeError` on malformed JSON
    - Raises `ValueError` on extra safety violations (paths)
* `is_safe_repo_rel_posix(path: str) -> bool`
* `REQUEST_KINDS` – names of the request definitions in the schema.

Design notes
------------
* The schema is loaded **once** at import time via `importlib.resources`.
* One `Draft7Validator` per request kind, each a `$ref` into `definitions`.
* Extra guards:
    - `sourceAbsolutePath` must be an absolute filesystem path.
    - every `selectedFilePaths` entry must be a safe repo‑relative **POSIX**
      path (no abs/backslashes/.., not .git/, no leading "./").
"""
from __future__ import annotations

import json
import re
from importlib import resources
from pathlib import Path, PurePosixPath
from typing import Any, Dict

from jsonschema import Draft7Validator, ValidationError

from prompt_patch import get_logger

log = get_logger(__name__)


# -----------------------------------------------------------------------------
# Load schema at import‑time
# -----------------------------------------------------------------------------
def _load_schema() -> Dict[str, Any]:
    """
    Load the bundled schema from the installed package.

    Raises
    ------
    SystemExit
        If the schema cannot be located or parsed (broken install).
    """
    try:
        with resources.files("prompt_patch").joinpath("schema.json").open(encoding="utf-8") as fh:
            return json.load(fh)
    except FileNotFoundError as exc:  # pragma: no cover
        log.critical("schema.json not found inside package: %s", exc)
        raise SystemExit(1) from exc
    except json.JSONDecodeError as exc:  # pragma: no cover
        log.critical("schema.json is invalid JSON: %s", exc)
        raise SystemExit(1) from exc


_SCHEMA: Dict[str, Any] = _load_schema()
Draft7Validator.check_schema(_SCHEMA)

REQUEST_KINDS = ("processPrompt", "revertLastCommit", "repositoryQuery")

_VALIDATORS: Dict[str, Draft7Validator] = {
    kind: Draft7Validator({**_SCHEMA, "$ref": f"#/definitions/{kind}"}) for kind in REQUEST_KINDS
}

# -----------------------------------------------------------------------------
# Extra guards (beyond JSON‑Schema)
# -----------------------------------------------------------------------------
_DRIVE_PREFIX_RE = re.compile(r"^[A-Za-z]:")


def pretty_pointer(exc: ValidationError) -> str:
    """Human‑friendly location of the failing field (JSON Pointer‑ish)."""
    return ".".join(["$", *(str(p) for p in exc.path)])


def is_safe_repo_rel_posix(path: str) -> bool:
    """
    True if *path* is a safe, repo‑relative POSIX string.

    Rejects: empty, absolute, backslashes, Windows drive letters, '..',
    anything under '.git', and non‑canonical forms ('./x', 'a//b', 'a/').
    """
    if not isinstance(path, str) or not path.strip():
        return False
    raw = path.strip()
    if "\\" in raw or raw.startswith("/") or _DRIVE_PREFIX_RE.match(raw):
        return False
    parts = raw.split("/")
    if ".." in parts or ".git" in parts:
        return False
    p = PurePosixPath(raw)
    if str(p) != raw:
        return False
    return all(seg for seg in p.parts)


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ValueError(msg)


def _extra_safety_checks(data: Dict[str, Any]) -> None:
    root = data.get("sourceAbsolutePath")
    _require(isinstance(root, str) and Path(root).is_absolute(), f"'sourceAbsolutePath' must be absolute: {root!r}.")
    for rel in data.get("selectedFilePaths") or []:
        _require(is_safe_repo_rel_posix(rel), f"Unsafe/non‑POSIX entry in 'selectedFilePaths': {rel!r}.")


# =============================================================================
# Public API
# =============================================================================
def validate_request(kind: str, payload: str | bytes | Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate *payload* as a request of *kind* and return the parsed object.

    Raises
    ------
    KeyError
        Unknown *kind*.
    jsonschema.ValidationError
        If the payload is invalid per JSON‑Schema.
    json.JSONDecodeError
        If *payload* is not valid JSON.
    ValueError
        If path guards fail.
    """
    validator = _VALIDATORS[kind]

    if isinstance(payload, bytes):
        payload = payload.decode("utf-8")
    if isinstance(payload, str):
        data = json.loads(payload)
    elif isinstance(payload, dict):
        data = payload
    else:  # pragma: no cover
        raise TypeError(f"Unsupported payload type: {type(payload).__name__}")

    validator.validate(data)
    _extra_safety_checks(data)

    log.debug("Request %s validated (sourceAbsolutePath=%s)", kind, data.get("sourceAbsolutePath"))
    return data


__all__ = ["REQUEST_KINDS", "is_safe_repo_rel_posix", "pretty_pointer", "validate_request"]
