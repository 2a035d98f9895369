#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Patch ▸ Command Line Interface
===============================================================================

Subcommands
-----------
• process           – apply a natural‑language change to selected files
• commits           – list recent checkpoints with their diffs (JSON)
• files             – list eligible source files with token counts (JSON)
• revert            – drop the newest checkpoint (git reset --hard HEAD~1)
• validate-request  – validate an API request body against the bundled schema
• schema            – print the active JSON schema
• serve             – run the HTTP API (uvicorn)
• version           – print package version

Global flags
------------
• --version   – print package version (equivalent to the `version` subcommand)

Examples
--------
  # 1) Ask for a change touching two files, allow two build attempts
  prompt-patch process "Add a /health route" /path/to/project \\
      --files src/server.ts src/routes.ts --max-attempts 2

  # 2) Review and undo
  prompt-patch commits /path/to/project --limit 3
  prompt-patch revert /path/to/project

  # 3) Validate a request body
  prompt-patch validate-request processPrompt --payload '{"prompt": "x", ...}'

  # 4) HTTP API on port 3001
  prompt-patch serve --port 3001
"""
from __future__ import annotations

import argparse
import json
import sys
from importlib import resources
from pathlib import Path
from typing import Any, Optional

import jsonschema

from prompt_patch import get_logger, get_version
from prompt_patch.config import load_settings
from prompt_patch.errors import PromptPatchError
from prompt_patch.file_collector import get_source_files
from prompt_patch.git_ops import GitOps
from prompt_patch.orchestrator import PromptProcessor
from prompt_patch.request_validator import REQUEST_KINDS, pretty_pointer, validate_request

log = get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _emit(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _resolve_project(path: str) -> Path:
    cand = Path(path).expanduser()
    if not cand.is_dir():
        raise SystemExit(f"Project directory not found: {cand}")
    return cand.resolve()


def _read_prompt(arg: str) -> str:
    """A prompt given as ``@file`` is read from that file; '-' reads stdin."""
    if arg == "-":
        return sys.stdin.read()
    if arg.startswith("@"):
        path = Path(arg[1:]).expanduser()
        if not path.is_file():
            raise SystemExit(f"Prompt file not found: {path}")
        return path.read_text(encoding="utf-8")
    return arg


# ─────────────────────────────────────────────────────────────────────────────
# Subcommand handlers
# ─────────────────────────────────────────────────────────────────────────────

def cmd_process(args: argparse.Namespace) -> int:
    root = _resolve_project(args.root)
    settings = load_settings().with_overrides(model=args.model, api_timeout=args.api_timeout)
    processor = PromptProcessor.from_settings(settings, with_dev_server=False)
    result = processor.process(
        _read_prompt(args.prompt), root, args.files, max_attempts=args.max_attempts
    )
    _emit(result.to_dict())
    return 0 if result.ok else 1


def cmd_commits(args: argparse.Namespace) -> int:
    root = _resolve_project(args.root)
    limit = args.limit or load_settings().commit_limit
    _emit([c.to_dict() for c in GitOps(root).recent_commits(limit)])
    return 0


def cmd_files(args: argparse.Namespace) -> int:
    root = _resolve_project(args.root)
    settings = load_settings()
    files = get_source_files(root, model=args.model or settings.model, concurrency=settings.concurrency)
    _emit([f.to_dict() for f in files])
    return 0


def cmd_revert(args: argparse.Namespace) -> int:
    root = _resolve_project(args.root)
    _emit(GitOps(root).revert_last().to_dict())
    return 0


def cmd_validate_request(args: argparse.Namespace) -> int:
    payload: Optional[str] = None
    if args.file:
        try:
            payload = Path(args.file).read_text(encoding="utf-8")
        except OSError as exc:
            log.error("Failed to read %s: %s", args.file, exc)
            return 1
    elif args.payload == "-":
        payload = sys.stdin.read()
    else:
        payload = args.payload

    if not payload:
        log.error("Missing payload. Provide --payload <json> or --payload - (stdin) or --file <path>.")
        return 1

    try:
        validate_request(args.kind, payload)
    except jsonschema.ValidationError as exc:
        log.error("Request invalid at %s: %s", pretty_pointer(exc), exc.message)
        return 1
    except json.JSONDecodeError as exc:
        log.error("Payload is not valid JSON: %s", exc)
        return 1
    except ValueError as exc:
        log.error("Request failed safety checks: %s", exc)
        return 1
    print("✓ Request is valid.")
    return 0


def cmd_schema(_args: argparse.Namespace) -> int:
    with resources.files("prompt_patch").joinpath("schema.json").open(encoding="utf-8") as fh:
        _emit(json.load(fh))
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    from prompt_patch.server import serve  # lazy import

    settings = load_settings().with_overrides(host=args.host, port=args.port)
    serve(settings)
    return 0


def cmd_version(_args: argparse.Namespace) -> int:
    print(get_version())
    return 0


# ─────────────────────────────────────────────────────────────────────────────
# Argument parser
# ─────────────────────────────────────────────────────────────────────────────

def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="prompt-patch",
        description="Prompt‑Patch – apply AI‑generated changes as git checkpoints",
    )

    # Global flags (keep subparsers optional so --version can succeed)
    p.add_argument("--version", action="store_true", help="Print package version and exit.")

    sub = p.add_subparsers(dest="cmd", metavar="command")

    pp = sub.add_parser("process", help="Apply a prompt to selected files and commit the result")
    pp.add_argument("prompt", help="Prompt text, '@path' to read it from a file, or '-' for stdin.")
    pp.add_argument("root", help="Path to the project (a git work tree).")
    pp.add_argument("--files", nargs="+", required=True, help="Repo‑relative files to send with the prompt.")
    pp.add_argument("--max-attempts", type=int, default=None, help="Build attempts incl. auto‑fixes (default: env or 1).")
    pp.add_argument("--model", default=None, help="Model id (default: env or gpt-4o-mini).")
    pp.add_argument("--api-timeout", type=int, default=None, help="HTTP timeout (seconds).")
    pp.set_defaults(func=cmd_process)

    pc = sub.add_parser("commits", help="List recent commits with diffs (JSON)")
    pc.add_argument("root", help="Path to the project.")
    pc.add_argument("--limit", type=int, default=None, help="Number of commits (default: env or 10).")
    pc.set_defaults(func=cmd_commits)

    pf = sub.add_parser("files", help="List eligible source files with token counts (JSON)")
    pf.add_argument("root", help="Path to the project (must contain .gitignore).")
    pf.add_argument("--model", default=None, help="Model whose tokenizer is used for counts.")
    pf.set_defaults(func=cmd_files)

    pr = sub.add_parser("revert", help="Undo the newest commit (hard reset)")
    pr.add_argument("root", help="Path to the project.")
    pr.set_defaults(func=cmd_revert)

    pv = sub.add_parser("validate-request", help="Validate an API request body against the bundled schema")
    pv.add_argument("kind", choices=REQUEST_KINDS, help="Request type.")
    src = pv.add_mutually_exclusive_group(required=True)
    src.add_argument("--payload", help="JSON string payload, or '-' to read from stdin.")
    src.add_argument("--file", help="Read JSON payload from a file path.")
    pv.set_defaults(func=cmd_validate_request)

    ps = sub.add_parser("schema", help="Print the active JSON schema")
    ps.set_defaults(func=cmd_schema)

    psv = sub.add_parser("serve", help="Run the HTTP API")
    psv.add_argument("--host", default=None, help="Bind address (default: env or 127.0.0.1).")
    psv.add_argument("--port", type=int, default=None, help="Port (default: env or 3001).")
    psv.set_defaults(func=cmd_serve)

    pvrs = sub.add_parser("version", help="Print package version")
    pvrs.set_defaults(func=cmd_version)

    return p


def main(argv: Optional[list[str]] = None) -> int:
    try:
        parser = _parser()
        args = parser.parse_args(argv)

        if getattr(args, "version", False):
            print(get_version())
            return 0

        if not hasattr(args, "func"):
            parser.print_help()
            return 2

        return int(args.func(args))  # type: ignore[misc]
    except KeyboardInterrupt:
        log.info("Interrupted by user (Ctrl‑C).")
        return 130
    except SystemExit as exc:
        if isinstance(exc.code, str):
            log.error(exc.code)
        return int(exc.code) if isinstance(exc.code, int) else 1
    except (PromptPatchError, ValueError) as exc:
        log.error("%s", exc)
        return 1
    except Exception as exc:
        log.exception("Fatal error in CLI: %s", exc)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
