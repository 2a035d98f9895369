#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Patch ▸ Git checkpoints
===============================================================================

Responsibilities
----------------
* Record every applied change set as one commit (the checkpoint).
* List recent checkpoints with their diffs for review.
* Undo the newest checkpoint with a hard reset to its parent.

Design notes
------------
* All interactions go through `_git()` which logs commands and captures output.
* No global side‑effects; everything is scoped to the provided repository path.
* The git log is the history; nothing is persisted elsewhere.
* Every failure surfaces as `VersionControlError` naming the repository.

Usage (example)
---------------
    from pathlib import Path
    from prompt_patch.git_ops import GitOps

    repo = GitOps(Path("/path/to/project"))
    record = repo.commit("Add a health-check route")
    history = repo.recent_commits(10)
    undone = repo.revert_last()
"""
from __future__ import annotations

import datetime as _dt
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Union

from prompt_patch import get_logger
from prompt_patch.errors import VersionControlError
from prompt_patch.models import CommitRecord

log = get_logger(__name__)

_DIFF_MARKER = "diff --git"


@dataclass(frozen=True)
class GitRunResult:
    """Simple carrier for git command results."""
    ok: bool
    code: int
    out: str
    err: str


def _strip_to_diff(show_output: str) -> str:
    """Drop commit metadata that `git show` prints before the first diff."""
    idx = show_output.find(_DIFF_MARKER)
    return show_output[idx:] if idx >= 0 else ""


class GitOps:
    """
    Thin wrapper around the `git` CLI for one repository.
    """

    def __init__(self, repo: Union[str, Path]):
        self.repo = Path(repo).expanduser().resolve()

    # --------------------------------------------------------------------- #
    # Core plumbing
    # --------------------------------------------------------------------- #
    def _git(self, *args: str) -> GitRunResult:
        """
        Run `git -C <repo> <args...>` and return a structured result.

        Raises
        ------
        VersionControlError
            Only when git itself cannot be executed.
        """
        cmd = ["git", "-C", str(self.repo), *args]
        log.debug("git %s", " ".join(args))
        try:
            res = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                check=False,
            )
        except OSError as exc:
            log.exception("Failed to execute git: %s", exc)
            raise VersionControlError(f"Failed to execute git: {exc}", repo=self.repo) from exc

        ok = res.returncode == 0
        out = (res.stdout or "").strip()
        err = (res.stderr or "").strip()
        if not ok:
            log.debug("git returned rc=%s | stdout=%r | stderr=%r", res.returncode, out, err)
        return GitRunResult(ok=ok, code=res.returncode, out=out, err=err)

    def _fail(self, action: str, res: GitRunResult) -> VersionControlError:
        reason = res.err or res.out or f"exit code {res.code}"
        msg = f'Failed to {action} in repository at "{self.repo}". Reason: {reason}'
        log.error(msg)
        return VersionControlError(msg, repo=self.repo)

    def _head(self, rev: str = "HEAD") -> str:
        res = self._git("rev-parse", "--verify", "-q", rev)
        return res.out if res.ok else ""

    def _record(self, sha: str) -> CommitRecord:
        msg = self._git("show", "-s", "--format=%B", sha)
        show = self._git("show", "--format=", "--patch", sha)
        ts = self._git("show", "-s", "--format=%ct", sha)
        for res in (msg, show, ts):
            if not res.ok:
                raise self._fail(f"read commit {sha}", res)
        try:
            when = _dt.datetime.fromtimestamp(int(ts.out), tz=_dt.timezone.utc)
        except ValueError as exc:
            raise VersionControlError(
                f"Unexpected commit timestamp {ts.out!r} for {sha}", repo=self.repo
            ) from exc
        return CommitRecord(hash=sha, message=msg.out, diff=_strip_to_diff(show.out), timestamp=when)

    # --------------------------------------------------------------------- #
    # Public operations
    # --------------------------------------------------------------------- #
    def ensure_repo(self) -> None:
        """Raise VersionControlError unless the root is inside a git work tree."""
        if not self.repo.is_dir():
            raise VersionControlError(f"Project path does not exist: {self.repo}", repo=self.repo)
        res = self._git("rev-parse", "--is-inside-work-tree")
        if not res.ok or res.out != "true":
            raise self._fail("locate a git work tree", res)

    def commit(self, message: str) -> CommitRecord:
        """
        Stage everything and commit it with *message*.

        A clean tree ("nothing to commit") is reported as an error.
        """
        add = self._git("add", "-A")
        if not add.ok:
            raise self._fail("stage changes", add)
        res = self._git("commit", "-m", message)
        if not res.ok:
            raise self._fail("create git commit", res)
        sha = self._head()
        if not sha:
            raise VersionControlError("Commit succeeded but HEAD is unreadable", repo=self.repo)
        record = self._record(sha)
        log.info("Committed %s: %s", sha[:10], message.splitlines()[0] if message else "")
        return record

    def recent_commits(self, count: int = 10) -> List[CommitRecord]:
        """Up to *count* newest commits on HEAD, each with its diff."""
        self.ensure_repo()
        if count <= 0 or not self._head():
            return []
        res = self._git("log", f"-n{count}", "--format=%H")
        if not res.ok:
            raise self._fail("read git log", res)
        return [self._record(sha) for sha in res.out.splitlines() if sha.strip()]

    def revert_last(self) -> CommitRecord:
        """
        Hard‑reset to HEAD's parent and return the record of the dropped commit.
        """
        self.ensure_repo()
        sha = self._head()
        if not sha:
            raise VersionControlError(
                f'No commits to revert in repository at "{self.repo}"', repo=self.repo
            )
        if not self._head("HEAD~1"):
            raise VersionControlError(
                f'Cannot revert the initial commit in repository at "{self.repo}"', repo=self.repo
            )
        record = self._record(sha)
        res = self._git("reset", "--hard", "HEAD~1")
        if not res.ok:
            raise self._fail("revert last commit", res)
        log.info("Reverted %s (%s)", sha[:10], record.message.splitlines()[0] if record.message else "")
        return record


# ─────────────────────────────────────────────────────────────────────────────
# Functional forms
# ─────────────────────────────────────────────────────────────────────────────
def create_commit(root: Union[str, Path], message: str) -> CommitRecord:
    return GitOps(root).commit(message)


def recent_commits(root: Union[str, Path], count: int = 10) -> List[CommitRecord]:
    return GitOps(root).recent_commits(count)


def revert_last_commit(root: Union[str, Path]) -> CommitRecord:
    return GitOps(root).revert_last()


__all__ = ["GitOps", "GitRunResult", "create_commit", "recent_commits", "revert_last_commit"]
