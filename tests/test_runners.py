"""
Shell command runner, build validator and dev‑server lifecycle (POSIX).
"""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

from prompt_patch.errors import ValidationError
from prompt_patch.runners import (
    TIMEOUT_EXIT_CODE,
    CommandValidator,
    DevServerHandle,
    DevServerPool,
    ProcessState,
    run_command,
)

pytestmark = pytest.mark.skipif(sys.platform.startswith("win"), reason="POSIX shell and process groups")


def test_run_command_captures_output(tmp_path: Path) -> None:
    res = run_command("echo hello; echo oops 1>&2", tmp_path)
    assert res.ok
    assert res.exit_code == 0
    assert "hello" in res.output
    assert "oops" in res.output


def test_run_command_nonzero_exit(tmp_path: Path) -> None:
    res = run_command("echo broken; exit 3", tmp_path)
    assert not res.ok
    assert res.exit_code == 3
    assert "broken" in res.output


def test_run_command_timeout(tmp_path: Path) -> None:
    res = run_command("sleep 5", tmp_path, timeout=1)
    assert not res.ok
    assert res.exit_code == TIMEOUT_EXIT_CODE
    assert res.output.startswith("TIMEOUT after 1s")


def test_run_command_in_missing_dir(tmp_path: Path) -> None:
    res = run_command("true", tmp_path / "missing")
    assert not res.ok
    assert res.exit_code == 127


def test_command_validator(tmp_path: Path) -> None:
    CommandValidator("true").validate(tmp_path)
    with pytest.raises(ValidationError) as ei:
        CommandValidator("echo 'TS2304: nope'; exit 2").validate(tmp_path)
    assert "TS2304: nope" in ei.value.output
    assert "exit code 2" in str(ei.value)


def test_dev_server_lifecycle(tmp_path: Path) -> None:
    dev = DevServerHandle("sleep 30")
    assert dev.state is ProcessState.STOPPED

    assert dev.start(tmp_path) is ProcessState.RUNNING
    assert dev.is_running
    # A second start is ignored while running.
    assert dev.start(tmp_path) is ProcessState.RUNNING

    assert dev.stop(timeout=5) is ProcessState.STOPPED
    assert not dev.is_running
    assert dev.stop() is ProcessState.STOPPED


def test_dev_server_exit_is_noticed(tmp_path: Path) -> None:
    dev = DevServerHandle("true")
    dev.start(tmp_path)
    dev._proc.wait(5)
    assert dev.state is ProcessState.STOPPED


def test_dev_server_spawn_failure(tmp_path: Path) -> None:
    dev = DevServerHandle("sleep 30")
    with pytest.raises(RuntimeError):
        dev.start(tmp_path / "missing")
    assert dev.state is ProcessState.STOPPED


def test_dev_server_pool_keeps_one_handle_per_root(tmp_path: Path) -> None:
    a, b = tmp_path / "a", tmp_path / "b"
    a.mkdir()
    b.mkdir()
    pool = DevServerPool("sleep 30")
    assert pool.handle_for(a) is pool.handle_for(a / ".." / "a")
    assert pool.handle_for(a) is not pool.handle_for(b)

    pool.handle_for(a).start(a)
    pool.handle_for(b).start(b)
    pool.handle_for(a).stop(timeout=5)
    assert pool.handle_for(b).is_running

    pool.stop_all(timeout=5)
    assert not pool.handle_for(b).is_running
