#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Patch ▸ Build, install & dev‑server runners
===============================================================================

* ``run_command`` – run a shell command in the project, capture combined
  output, never raise on non‑zero exit or timeout.
* ``CommandValidator`` – build validation (``pnpm build`` by default); raises
  ``ValidationError`` carrying the output. Also used for the optional
  install step.
* ``DevServerHandle`` – a long‑running dev server (e.g. ``pnpm dev``) with
  explicit states ``STOPPED → STARTING → RUNNING → STOPPING → STOPPED``.
* ``DevServerPool`` – one handle per project root.

POSIX process groups are used so SIGINT reaches the command behind the shell.
"""
from __future__ import annotations

import os
import signal
import subprocess
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Protocol, Union

from prompt_patch import get_logger
from prompt_patch.config import DEFAULT_COMMAND_TIMEOUT
from prompt_patch.errors import ValidationError

log = get_logger(__name__)

TIMEOUT_EXIT_CODE = 124
_OUTPUT_TAIL = 20000


@dataclass(frozen=True)
class CommandResult:
    ok: bool
    output: str
    exit_code: int


def _tail(text: str, n: int = _OUTPUT_TAIL) -> str:
    return text if len(text) <= n else text[-n:]


def _as_text(data: Union[str, bytes, None]) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def run_command(cmd: str, cwd: Union[str, Path], timeout: int = DEFAULT_COMMAND_TIMEOUT) -> CommandResult:
    """Run a shell command and return its result with combined stdout+stderr."""
    log.info("Running %r in %s", cmd, cwd)
    try:
        proc = subprocess.run(
            cmd, cwd=str(cwd), shell=True, capture_output=True, text=True, timeout=timeout
        )
    except subprocess.TimeoutExpired as exc:
        out = _as_text(exc.stdout) + _as_text(exc.stderr)
        log.warning("Command %r timed out after %ss", cmd, timeout)
        return CommandResult(False, f"TIMEOUT after {timeout}s\n{out}", TIMEOUT_EXIT_CODE)
    except OSError as exc:
        log.error("Command %r could not start: %s", cmd, exc)
        return CommandResult(False, str(exc), 127)

    out = (proc.stdout or "") + (proc.stderr or "")
    if proc.returncode != 0:
        log.warning("Command %r exited with %s", cmd, proc.returncode)
    return CommandResult(proc.returncode == 0, out, proc.returncode)


# --------------------------------------------------------------------------- #
# Build validation
# --------------------------------------------------------------------------- #
class BuildValidator(Protocol):
    def validate(self, root: Path) -> None: ...


class CommandValidator:
    """Treat a zero exit of *command* as success."""

    def __init__(self, command: str, timeout: int = DEFAULT_COMMAND_TIMEOUT) -> None:
        self.command = command
        self.timeout = timeout

    def validate(self, root: Path) -> None:
        res = run_command(self.command, root, self.timeout)
        if not res.ok:
            raise ValidationError(
                f'Command "{self.command}" failed with exit code {res.exit_code}',
                output=_tail(res.output),
                repo=root,
            )

    def __repr__(self) -> str:
        return f"CommandValidator({self.command!r})"


# --------------------------------------------------------------------------- #
# Dev server
# --------------------------------------------------------------------------- #
class ProcessState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class DevServerHandle:
    """
    Owns at most one dev‑server process. ``start`` and ``stop`` are
    synchronous and return the resulting state.
    """

    def __init__(self, command: str) -> None:
        self.command = command
        self._proc: Optional[subprocess.Popen] = None
        self._state = ProcessState.STOPPED
        self._lock = threading.Lock()

    @property
    def state(self) -> ProcessState:
        with self._lock:
            self._refresh()
            return self._state

    @property
    def is_running(self) -> bool:
        return self.state is ProcessState.RUNNING

    def _refresh(self) -> None:
        if self._state is ProcessState.RUNNING and self._proc is not None and self._proc.poll() is not None:
            log.info("Dev server exited on its own (rc=%s)", self._proc.returncode)
            self._proc = None
            self._state = ProcessState.STOPPED

    def start(self, root: Union[str, Path]) -> ProcessState:
        with self._lock:
            self._refresh()
            if self._state is ProcessState.RUNNING:
                log.warning("Dev server already running (pid=%s); start ignored", self._proc.pid if self._proc else "?")
                return self._state

            self._state = ProcessState.STARTING
            try:
                self._proc = subprocess.Popen(
                    self.command,
                    cwd=str(root),
                    shell=True,
                    start_new_session=True,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )
            except OSError as exc:
                self._proc = None
                self._state = ProcessState.STOPPED
                log.error("Dev server %r failed to start in %s: %s", self.command, root, exc)
                raise RuntimeError(f"Failed to start dev server {self.command!r}: {exc}") from exc

            self._state = ProcessState.RUNNING
            log.info("Dev server started (pid=%s) in %s", self._proc.pid, root)
            return self._state

    def stop(self, timeout: float = 10.0) -> ProcessState:
        with self._lock:
            self._refresh()
            if self._state is not ProcessState.RUNNING or self._proc is None:
                log.warning("Dev server is not running; stop ignored")
                return ProcessState.STOPPED

            proc = self._proc
            self._state = ProcessState.STOPPING
            try:
                os.killpg(proc.pid, signal.SIGINT)
                proc.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                log.warning("Dev server ignored SIGINT for %ss; killing", timeout)
                os.killpg(proc.pid, signal.SIGKILL)
                proc.wait()
            except ProcessLookupError:
                proc.wait()

            self._proc = None
            self._state = ProcessState.STOPPED
            log.info("Dev server stopped (rc=%s)", proc.returncode)
            return self._state


class DevServerPool:
    """
    One :class:`DevServerHandle` per resolved project root, all running the
    same *command*. Stopping or starting one project never touches another.
    """

    def __init__(self, command: str) -> None:
        self.command = command
        self._handles: Dict[Path, DevServerHandle] = {}
        self._guard = threading.Lock()

    def handle_for(self, root: Union[str, Path]) -> DevServerHandle:
        key = Path(root).expanduser().resolve()
        with self._guard:
            handle = self._handles.get(key)
            if handle is None:
                handle = self._handles[key] = DevServerHandle(self.command)
            return handle

    def stop_all(self, timeout: float = 10.0) -> None:
        with self._guard:
            handles = list(self._handles.values())
        for handle in handles:
            if handle.is_running:
                handle.stop(timeout)


__all__ = [
    "BuildValidator",
    "CommandResult",
    "CommandValidator",
    "DevServerHandle",
    "DevServerPool",
    "ProcessState",
    "run_command",
]
