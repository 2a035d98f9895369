"""
Shared fixtures: throw‑away git repositories under tmp_path and offline fakes
for the generator / build validator / dev server collaborators.
"""
from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

import pytest

from prompt_patch.errors import ValidationError


def git(repo: Path, *args: str) -> str:
    """Run *git* in *repo* and return stdout (raises on failure)."""
    res = subprocess.run(
        ["git", "-C", str(repo), *args], text=True, capture_output=True, check=True
    )
    return res.stdout


def init_repo(path: Path, files: Optional[dict] = None, *, commit: bool = True) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init", "-q")
    git(path, "config", "user.email", "t@example.com")
    git(path, "config", "user.name", "Test")
    git(path, "config", "commit.gpgsign", "false")
    for rel, body in (files or {}).items():
        target = path / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(body, encoding="utf-8")
    if commit and files:
        git(path, "add", "-A")
        git(path, "commit", "-q", "-m", "baseline")
    return path


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """A small committed project with a .gitignore and two source files."""
    return init_repo(
        tmp_path / "project",
        {
            ".gitignore": "dist/\n*.log\n",
            "package.json": '{\n  "name": "demo"\n}\n',
            "src/server.ts": "import express from 'express';\nconst app = express();\napp.listen(3000);\n",
            "src/old.ts": "export const legacy = true;\n",
        },
    )


# ───────────────────────────── collaborator fakes ────────────────────────────
class FakeGenerator:
    """Returns canned replies in order and records every prompt it receives."""

    def __init__(self, replies: Sequence[str] = (), *, error: Optional[Exception] = None):
        self.replies: List[str] = list(replies)
        self.error = error
        self.prompts: List[str] = []

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        if not self.replies:
            raise AssertionError("FakeGenerator ran out of replies")
        return self.replies.pop(0)


class FakeValidator:
    """Fails with the given outputs in order, then passes."""

    command = "fake build"

    def __init__(self, failures: Sequence[str] = (), *, always_fail: bool = False):
        self.failures = list(failures)
        self.always_fail = always_fail
        self.calls = 0

    def validate(self, root: Path) -> None:
        self.calls += 1
        if self.always_fail:
            raise ValidationError("build failed", output=f"error #{self.calls}", repo=root)
        if self.failures:
            raise ValidationError("build failed", output=self.failures.pop(0), repo=root)


class FakeDevServer:
    def __init__(self, running: bool = False):
        self.is_running = running
        self.starts: List[Path] = []
        self.stops = 0

    def start(self, root: Path):
        self.starts.append(Path(root))
        self.is_running = True

    def stop(self, timeout: float = 10.0):
        self.stops += 1
        self.is_running = False


class FakeDevServerPool:
    """Hands out one FakeDevServer per resolved root."""

    def __init__(self, running: bool = False):
        self.running = running
        self.handles = {}

    def handle_for(self, root) -> FakeDevServer:
        key = Path(root).resolve()
        if key not in self.handles:
            self.handles[key] = FakeDevServer(self.running)
        return self.handles[key]

    def stop_all(self, timeout: float = 10.0) -> None:
        for handle in self.handles.values():
            if handle.is_running:
                handle.stop(timeout)
