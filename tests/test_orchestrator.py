#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Offline tests for prompt_patch.orchestrator.PromptProcessor.

Goals
-----
• Drive the full pipeline (encode → generate → decode/apply → commit) against a
  real temporary git repository with a fake generator (no network).
• Cover the auto‑fix loop: a failing build followed by a fix produces one extra
  commit; a build that keeps failing ends in an error with commits preserved.
• Failures before the commit leave the repository untouched.
"""
from __future__ import annotations

import threading
from pathlib import Path

import pytest

from conftest import FakeDevServerPool, FakeGenerator, FakeValidator, git, init_repo
from prompt_patch.config import Settings
from prompt_patch.errors import GenerationError
from prompt_patch.models import FileOperation, Stage
from prompt_patch.orchestrator import PromptProcessor, RepoLocks, touches_manifest

HEALTH_REPLY = (
    "~~src/server.ts\n"
    "import express from 'express';\n"
    "const app = express();\n"
    "app.get('/health', (_req, res) => res.json({ status: 'ok' }));\n"
    "app.listen(3000);\n"
)


def test_health_check_route(git_repo: Path) -> None:
    gen = FakeGenerator([HEALTH_REPLY])
    result = PromptProcessor(gen).process("Add a health-check route", git_repo, ["src/server.ts"])

    assert result.error is None
    assert result.stage is Stage.DONE
    assert len(result.commits) == 1
    commit = result.commits[0]
    assert commit.message == "Add a health-check route"
    assert "app.get('/health'" in commit.diff
    assert "/health" in (git_repo / "src" / "server.ts").read_text(encoding="utf-8")

    prompt = gen.prompts[0]
    assert "TASK_START\nAdd a health-check route\nTASK_END" in prompt
    assert "SOURCE_START\n~~src/server.ts\nimport express" in prompt
    assert "~~src/old.ts" not in prompt  # only selected files are sent


def test_delete_obsolete_file(git_repo: Path) -> None:
    gen = FakeGenerator(["~~src/old.ts\n\n"])
    result = PromptProcessor(gen).process("Remove the legacy module", git_repo, ["src/old.ts"])

    assert result.ok
    assert not (git_repo / "src" / "old.ts").exists()
    assert "deleted file mode" in result.commits[0].diff


def test_build_failure_then_auto_fix(git_repo: Path) -> None:
    fix_reply = "~~src/server.ts\nconst fixed = true;\n"
    gen = FakeGenerator([HEALTH_REPLY, fix_reply])
    validator = FakeValidator(failures=["TS2304: Cannot find name 'res'"])
    processor = PromptProcessor(gen, validator=validator)

    result = processor.process("Add a health-check route", git_repo, ["src/server.ts"], max_attempts=2)

    assert result.ok, result.error
    assert [c.message for c in result.commits] == [
        "Add a health-check route",
        "Auto-fix attempt 1 of prompt: Add a health-check route",
    ]
    assert validator.calls == 2
    fix_prompt = gen.prompts[1]
    assert 'After running command "fake build"' in fix_prompt
    assert "OUTPUT_START\nTS2304: Cannot find name 'res'\nOUTPUT_END" in fix_prompt
    # The fix prompt carries the whole eligible tree, not just the selection.
    assert "~~src/old.ts" in fix_prompt
    assert "~~package.json" in fix_prompt
    assert (git_repo / "src" / "server.ts").read_text(encoding="utf-8") == "const fixed = true;\n"


def test_build_keeps_failing(git_repo: Path) -> None:
    gen = FakeGenerator([HEALTH_REPLY, "~~src/server.ts\nstill broken\n"])
    validator = FakeValidator(always_fail=True)
    result = PromptProcessor(gen, validator=validator).process(
        "Add a health-check route", git_repo, ["src/server.ts"], max_attempts=2
    )

    assert result.stage is Stage.FAILED
    assert "Build failed after 2 attempts" in result.error
    assert str(git_repo.resolve()) in result.error
    assert len(result.commits) == 2
    assert validator.calls == 2


def test_validation_disabled_by_default(git_repo: Path) -> None:
    validator = FakeValidator(always_fail=True)
    result = PromptProcessor(FakeGenerator([HEALTH_REPLY]), validator=validator).process(
        "Add a health-check route", git_repo, ["src/server.ts"]
    )
    assert result.ok
    assert validator.calls == 0


def test_max_attempts_from_settings(git_repo: Path) -> None:
    validator = FakeValidator(failures=["boom"])
    processor = PromptProcessor(
        FakeGenerator([HEALTH_REPLY, "~~src/server.ts\nok\n"]),
        validator=validator,
        settings=Settings(max_attempts=3),
    )
    result = processor.process("Add a health-check route", git_repo, ["src/server.ts"])
    assert result.ok
    assert len(result.commits) == 2


def test_generation_failure_leaves_repo_untouched(git_repo: Path) -> None:
    head = git(git_repo, "rev-parse", "HEAD")
    gen = FakeGenerator(error=TimeoutError("model timed out"))
    result = PromptProcessor(gen).process("Anything", git_repo, ["src/server.ts"])

    assert result.commits == []
    assert result.stage is Stage.FAILED
    assert "during generating" in result.error
    assert "model timed out" in result.error
    assert git(git_repo, "rev-parse", "HEAD") == head
    assert git(git_repo, "status", "--porcelain") == ""


def test_escaping_reply_applies_nothing(git_repo: Path) -> None:
    gen = FakeGenerator(["~~src/server.ts\nchanged\n~~../../outside.txt\nx\n"])
    result = PromptProcessor(gen).process("Sneaky", git_repo, ["src/server.ts"])

    assert not result.ok
    assert result.commits == []
    assert "during applying" in result.error
    assert git(git_repo, "status", "--porcelain") == ""


def test_reply_without_blocks_is_an_error(git_repo: Path) -> None:
    result = PromptProcessor(FakeGenerator(["I cannot help with that."])).process(
        "Do something", git_repo, ["src/server.ts"]
    )
    assert not result.ok
    assert "no file blocks" in result.error


def test_unreadable_selection_reports_path(git_repo: Path) -> None:
    result = PromptProcessor(FakeGenerator([])).process("x", git_repo, ["src/missing.ts"])
    assert not result.ok
    assert "src/missing.ts" in result.error
    assert "during encoding" in result.error


def test_not_a_repository(tmp_path: Path) -> None:
    (tmp_path / "a.txt").write_text("x\n", encoding="utf-8")
    result = PromptProcessor(FakeGenerator(["~~a.txt\ny\n"])).process("x", tmp_path, ["a.txt"])
    assert not result.ok
    assert (tmp_path / "a.txt").read_text(encoding="utf-8") == "x\n"


def test_empty_selection_fails_fast(git_repo: Path) -> None:
    with pytest.raises(ValueError):
        PromptProcessor(FakeGenerator([])).process("x", git_repo, [])
    with pytest.raises(ValueError):
        PromptProcessor(FakeGenerator([])).process("   ", git_repo, ["src/server.ts"])


def test_manifest_change_reinstalls_and_restarts_dev_server(git_repo: Path) -> None:
    installer = FakeValidator()
    pool = FakeDevServerPool(running=True)
    reply = '~~package.json\n{\n  "name": "demo",\n  "dependencies": {"zod": "^3.0.0"}\n}\n'
    result = PromptProcessor(FakeGenerator([reply]), installer=installer, dev_servers=pool).process(
        "Add zod", git_repo, ["package.json"]
    )

    assert result.ok
    assert installer.calls == 1
    dev = pool.handle_for(git_repo)
    assert dev.stops == 1
    assert dev.starts == [git_repo.resolve()]


def test_dev_server_left_alone_without_manifest_change(git_repo: Path) -> None:
    installer = FakeValidator()
    pool = FakeDevServerPool(running=True)
    result = PromptProcessor(FakeGenerator([HEALTH_REPLY]), installer=installer, dev_servers=pool).process(
        "Add a health-check route", git_repo, ["src/server.ts"]
    )
    assert result.ok
    assert installer.calls == 0
    dev = pool.handle_for(git_repo)
    assert dev.stops == 0
    assert dev.starts == []


def test_unhandled_manifest_does_not_reinstall(git_repo: Path) -> None:
    installer = FakeValidator(always_fail=True)
    result = PromptProcessor(FakeGenerator(["~~requirements.txt\nrequests\n"]), installer=installer).process(
        "Add requests", git_repo, ["package.json"]
    )
    assert result.ok, result.error
    assert installer.calls == 0
    assert len(result.commits) == 1


def test_install_manifests_come_from_settings(git_repo: Path) -> None:
    installer = FakeValidator()
    processor = PromptProcessor(
        FakeGenerator(["~~requirements.txt\nrequests\n"]),
        installer=installer,
        settings=Settings(install_manifests=("requirements.txt",)),
    )
    assert processor.process("Add requests", git_repo, ["package.json"]).ok
    assert installer.calls == 1


def test_dev_servers_are_kept_per_project(git_repo: Path, tmp_path: Path) -> None:
    other = init_repo(
        tmp_path / "other",
        {".gitignore": "dist/\n", "package.json": '{\n  "name": "other"\n}\n'},
    )
    pool = FakeDevServerPool()
    manifest = '~~package.json\n{\n  "name": "x"\n}\n'
    processor = PromptProcessor(
        FakeGenerator([HEALTH_REPLY, manifest]), installer=FakeValidator(), dev_servers=pool
    )

    assert processor.process("Add a health-check route", git_repo, ["src/server.ts"]).ok
    assert processor.process("Rename", other, ["package.json"]).ok

    first, second = pool.handle_for(git_repo), pool.handle_for(other)
    assert first is not second
    assert first.starts == [git_repo.resolve()]
    assert first.stops == 0
    assert second.starts == [other.resolve()]


def test_from_settings_leaves_installer_and_dev_server_off(git_repo: Path) -> None:
    processor = PromptProcessor.from_settings(Settings(), generator=FakeGenerator([]))
    assert processor.installer is None
    assert processor.dev_servers is None

    wired = PromptProcessor.from_settings(
        Settings(install_command="pnpm install", dev_command="pnpm dev"), generator=FakeGenerator([])
    )
    assert wired.installer is not None
    assert wired.dev_servers is not None
    assert PromptProcessor.from_settings(
        Settings(dev_command="pnpm dev"), generator=FakeGenerator([]), with_dev_server=False
    ).dev_servers is None


def test_auto_fix_payload_skips_binary_files(git_repo: Path) -> None:
    (git_repo / "logo.png").write_bytes(b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\xff\xfe")
    git(git_repo, "add", "-A")
    git(git_repo, "commit", "-q", "-m", "add logo")

    gen = FakeGenerator([HEALTH_REPLY, "~~src/server.ts\nconst fixed = true;\n"])
    result = PromptProcessor(gen, validator=FakeValidator(failures=["TS2304"])).process(
        "Add a health-check route", git_repo, ["src/server.ts"], max_attempts=2
    )

    assert result.ok, result.error
    assert len(result.commits) == 2
    assert "~~logo.png" not in gen.prompts[1]
    assert "~~src/old.ts" in gen.prompts[1]


def test_selected_binary_file_is_still_an_error(git_repo: Path) -> None:
    (git_repo / "logo.png").write_bytes(b"\x89PNG\r\n\x1a\n\xff\xfe")
    result = PromptProcessor(FakeGenerator([])).process("x", git_repo, ["logo.png"])
    assert not result.ok
    assert "logo.png" in result.error
    assert "during encoding" in result.error


def test_generation_error_passthrough(git_repo: Path) -> None:
    gen = FakeGenerator(error=GenerationError("Model returned an empty response"))
    result = PromptProcessor(gen).process("x", git_repo, ["src/server.ts"])
    assert "Model returned an empty response" in result.error


def test_touches_manifest() -> None:
    assert touches_manifest([FileOperation("package.json", "{}")])
    assert touches_manifest([FileOperation("requirements.txt", None)])
    assert not touches_manifest([FileOperation("web/package.json", "{}")])
    assert not touches_manifest([FileOperation("requirements.txt", "x")], ("package.json",))


def test_repo_locks_are_per_root(tmp_path: Path) -> None:
    locks = RepoLocks()
    a = locks.lock_for(tmp_path / "a")
    assert locks.lock_for(tmp_path / "a" / ".." / "a") is a
    assert locks.lock_for(tmp_path / "b") is not a


def test_same_root_runs_are_serialised(tmp_path: Path) -> None:
    locks = RepoLocks()
    order = []
    entered = threading.Event()
    release = threading.Event()

    def first():
        with locks.hold(tmp_path):
            order.append("first-in")
            entered.set()
            release.wait(5)
            order.append("first-out")

    def second():
        entered.wait(5)
        with locks.hold(tmp_path):
            order.append("second-in")

    t1 = threading.Thread(target=first)
    t2 = threading.Thread(target=second)
    t1.start()
    t2.start()
    entered.wait(5)
    # Give the second thread a moment to block on the lock.
    t2.join(0.2)
    assert "second-in" not in order
    release.set()
    t1.join(5)
    t2.join(5)
    assert order == ["first-in", "first-out", "second-in"]
