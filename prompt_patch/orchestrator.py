#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Patch ▸ Prompt processing pipeline
===============================================================================

Flow (one prompt)
-----------------
1) ENCODING    – serialise the selected files (delimiter payload).
2) GENERATING  – wrap task + payload in fixed instructions, call the generator.
3) APPLYING    – decode the reply and apply it to the tree.
4) COMMITTING  – one checkpoint commit, message = the prompt text.
   If an installer is configured and one of its manifests changed: stop this
   project's dev server, run the installer.
5) VALIDATING / RESOLVING (optional, only when a validator is configured and
   more than one attempt is allowed) – on build failure, send the build output
   plus the current text tree (non‑UTF‑8 files left out) back to the generator, apply, commit
   "Auto-fix attempt k of prompt: …", and validate again.
6) DONE        – start this project's dev server if one is configured and idle.

Every terminal failure is turned into ``ProcessResult.error``; commits created
before the failure are still returned so they can be reviewed or reverted.

Concurrency
-----------
``RepoLocks`` serialises runs per resolved project root; different roots may
be processed in parallel.
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Union

from prompt_patch import get_logger
from prompt_patch.change_applier import apply
from prompt_patch.config import Settings
from prompt_patch.errors import GenerationError, PromptPatchError, ValidationError
from prompt_patch.file_collector import list_source_paths
from prompt_patch.generation import CodeGenerator, OpenAIGenerator
from prompt_patch.git_ops import GitOps
from prompt_patch.models import FileOperation, ProcessResult, Stage
from prompt_patch.patch_codec import decode, encode
from prompt_patch.path_filter import compute_excluded_paths
from prompt_patch.prompts import build_error_resolution_prompt, build_prompt
from prompt_patch.runners import BuildValidator, CommandValidator, DevServerHandle, DevServerPool

log = get_logger(__name__)

DEPENDENCY_MANIFESTS = frozenset({"package.json", "requirements.txt", "pyproject.toml"})


class RepoLocks:
    """One ``threading.Lock`` per resolved project root."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Path, threading.Lock] = {}

    def lock_for(self, root: Union[str, Path]) -> threading.Lock:
        key = Path(root).expanduser().resolve()
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, root: Union[str, Path]) -> Iterator[None]:
        lock = self.lock_for(root)
        if lock.locked():
            log.info("Waiting for another run on %s to finish", root)
        with lock:
            yield


def touches_manifest(ops: Sequence[FileOperation], manifests: Iterable[str] = DEPENDENCY_MANIFESTS) -> bool:
    """True if any operation targets one of the root‑level *manifests*."""
    names = frozenset(manifests)
    return any(op.relative_path in names for op in ops)


class PromptProcessor:
    """
    Runs prompts end to end. All collaborators are injected; ``validator``,
    ``installer`` and ``dev_servers`` are optional. A reinstall is triggered
    only by the manifests in ``settings.install_manifests``.
    """

    def __init__(
        self,
        generator: CodeGenerator,
        *,
        validator: Optional[BuildValidator] = None,
        installer: Optional[BuildValidator] = None,
        dev_servers: Optional[DevServerPool] = None,
        settings: Optional[Settings] = None,
        locks: Optional[RepoLocks] = None,
    ) -> None:
        self.generator = generator
        self.validator = validator
        self.installer = installer
        self.dev_servers = dev_servers
        self.settings = settings or Settings()
        self.locks = locks or RepoLocks()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        generator: Optional[CodeGenerator] = None,
        with_dev_server: bool = True,
    ) -> "PromptProcessor":
        """
        Wire the default collaborators: OpenAI plus shell commands. The
        installer and dev servers exist only when their commands are set.
        """
        installer = dev_servers = None
        if settings.install_command:
            installer = CommandValidator(settings.install_command, settings.command_timeout)
        if with_dev_server and settings.dev_command:
            dev_servers = DevServerPool(settings.dev_command)
        return cls(
            generator or OpenAIGenerator.from_settings(settings),
            validator=CommandValidator(settings.build_command, settings.command_timeout),
            installer=installer,
            dev_servers=dev_servers,
            settings=settings,
        )

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def process(
        self,
        prompt: str,
        root: Union[str, Path],
        selected_paths: Sequence[str],
        *,
        max_attempts: Optional[int] = None,
    ) -> ProcessResult:
        """
        Apply *prompt* to the selected files of the project at *root*.

        Raises
        ------
        ValueError
            If *prompt* is blank or *selected_paths* is empty. Everything else
            is reported through the returned result.
        """
        if not prompt or not prompt.strip():
            raise ValueError("Prompt must not be empty")
        if not selected_paths:
            raise ValueError("At least one file must be selected")

        root = Path(root).expanduser().resolve()
        budget = max_attempts if max_attempts is not None else self.settings.max_attempts
        result = ProcessResult()

        with self.locks.hold(root):
            log.info("Processing prompt for %s (%d file(s), attempts=%d)", root, len(selected_paths), budget)
            try:
                self._run(prompt, root, list(selected_paths), budget, result)
            except RuntimeError as exc:
                failed_at = result.stage
                result.stage = Stage.FAILED
                result.error = (
                    f'Failed to process prompt for repository "{root}" '
                    f"during {failed_at.value}: {exc}"
                )
                log.error("%s (commits kept: %d)", result.error, len(result.commits))
                return result

        result.stage = Stage.DONE
        log.info("Prompt processed for %s: %d commit(s)", root, len(result.commits))
        return result

    # ------------------------------------------------------------------ #
    # Pipeline steps
    # ------------------------------------------------------------------ #
    def _run(
        self,
        prompt: str,
        root: Path,
        selected: List[str],
        budget: int,
        result: ProcessResult,
    ) -> None:
        git = GitOps(root)

        result.stage = Stage.ENCODING
        git.ensure_repo()
        payload = encode(root, selected, concurrency=self.settings.concurrency)

        result.stage = Stage.GENERATING
        reply = self._generate(build_prompt(prompt, payload))

        result.stage = Stage.APPLYING
        ops = self._apply_reply(root, reply)

        result.stage = Stage.COMMITTING
        result.commits.append(git.commit(prompt))
        self._refresh_dependencies(root, ops)

        if self.validator is not None and budget > 1:
            self._validate_and_resolve(prompt, root, budget, git, result)

        dev = self._dev_server(root)
        if dev is not None and not dev.is_running:
            dev.start(root)

    def _generate(self, prompt: str) -> str:
        try:
            return self.generator.generate(prompt)
        except PromptPatchError:
            raise
        except Exception as exc:  # noqa: BLE001 - injected backends may raise anything
            raise GenerationError(f"Code generation failed: {exc}") from exc

    def _apply_reply(self, root: Path, reply: str) -> List[FileOperation]:
        ops = decode(reply)
        if not ops:
            raise GenerationError("Model reply contained no file blocks", repo=root)
        apply(root, ops)
        return ops

    def _dev_server(self, root: Path) -> Optional[DevServerHandle]:
        return self.dev_servers.handle_for(root) if self.dev_servers is not None else None

    def _refresh_dependencies(self, root: Path, ops: Sequence[FileOperation]) -> None:
        if self.installer is None or not touches_manifest(ops, self.settings.install_manifests):
            return
        log.info("Dependency manifest changed in %s; reinstalling", root)
        dev = self._dev_server(root)
        if dev is not None and dev.is_running:
            dev.stop()
        self.installer.validate(root)

    def _current_tree_payload(self, root: Path) -> str:
        excluded = compute_excluded_paths(root)
        paths = sorted(list_source_paths(root, excluded))
        return encode(root, paths, concurrency=self.settings.concurrency, skip_undecodable=True)

    def _validate_and_resolve(
        self,
        prompt: str,
        root: Path,
        budget: int,
        git: GitOps,
        result: ProcessResult,
    ) -> None:
        command = getattr(self.validator, "command", self.settings.build_command)
        attempts = 0
        while attempts < budget:
            result.stage = Stage.VALIDATING
            try:
                self.validator.validate(root)
                log.info("Build passed for %s after %d failed attempt(s)", root, attempts)
                return
            except ValidationError as exc:
                attempts += 1
                log.warning("Build attempt %d/%d failed for %s", attempts, budget, root)
                if attempts >= budget:
                    raise ValidationError(
                        f"Build failed after {budget} attempts", output=exc.output, repo=root
                    ) from exc

                result.stage = Stage.RESOLVING
                fix_prompt = build_error_resolution_prompt(
                    command, exc.output, self._current_tree_payload(root)
                )
                ops = self._apply_reply(root, self._generate(fix_prompt))

                result.stage = Stage.COMMITTING
                result.commits.append(git.commit(f"Auto-fix attempt {attempts} of prompt: {prompt}"))
                self._refresh_dependencies(root, ops)


__all__ = ["DEPENDENCY_MANIFESTS", "PromptProcessor", "RepoLocks", "touches_manifest"]
