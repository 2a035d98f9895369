#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
===============================================================================
Prompt‑Patch ▸ Prompt Builders
===============================================================================

Purpose
-------
Fixed instruction text wrapped around the user's task and the encoded source
payload:
  • Change request   – TASK_START/TASK_END + SOURCE_START/SOURCE_END
  • Build error fix  – OUTPUT_START/OUTPUT_END + SOURCE_START/SOURCE_END

Output contract
---------------
The model must answer with delimiter blocks only (``~~path`` then the whole
file), no explanation or markup; a path followed by a blank line deletes the
file. Dependency changes go through the manifest, returned in full.

Logging
-------
Prompts are trace‑logged (DEBUG) with lengths for observability.
"""
from __future__ import annotations

import textwrap

from prompt_patch import get_logger
from prompt_patch.patch_codec import DELIMITER

log = get_logger(__name__)


# =============================================================================
# Instruction blocks
# =============================================================================
CHANGE_INSTRUCTIONS = textwrap.dedent(
    f"""\
    Source code for my project is given below between 'SOURCE_START' and 'SOURCE_END'.
    Your specific instructions for exactly how to add, update, or delete code from my project's source code is between 'TASK_START' and 'TASK_END'.
    In the source code, lines starting with {DELIMITER} are paths to files, followed by that file's content on the next line.
    Existing project dependencies are provided. Reuse existing dependencies when applicable.
    Add or remove dependencies to the dependency manifest (package.json, requirements.txt or pyproject.toml) when needed, and provide the entire file in the response with only the needed changes.
    Always include or remove the corresponding @types package if relevant to the added or removed package.
    Your output should only contain {DELIMITER}put_file_path_here followed by the updated contents of that file.
    Do not give other output except for that, meaning no explanation or markup.
    NEVER put comments in JSON files. Do not add single line comments in the code. Do not remove existing comments.
    If a file should be removed entirely, include {DELIMITER}file_path line with a blank line following."""
)

FIX_INSTRUCTIONS_TAIL = textwrap.dedent(
    f"""\
    Update my project source code to fix these errors.
    My project source code is given below between 'SOURCE_START' and 'SOURCE_END'.
    In the source code, lines starting with {DELIMITER} are paths to files, followed by that file's content on the next line.
    Your output should only contain {DELIMITER}put_file_path_here followed by the updated contents of that file.
    Do not give other output except for that, meaning no explanation or markup. Do not add or remove any comments in the code.
    If a file should be removed entirely, include {DELIMITER}file_path line with a blank line following."""
)


# =============================================================================
# Builders
# =============================================================================
def build_prompt(task: str, payload: str) -> str:
    """Full change request: instructions, the user's task, then the sources."""
    prompt = (
        f"{CHANGE_INSTRUCTIONS}\n"
        f"TASK_START\n{task.strip()}\nTASK_END\n"
        f"SOURCE_START\n{payload}\nSOURCE_END"
    )
    log.debug("Built change prompt (task=%d chars, payload=%d chars)", len(task), len(payload))
    return prompt


def build_error_resolution_prompt(command: str, output: str, payload: str) -> str:
    """Ask the model to repair the tree given the failing command's output."""
    prompt = (
        f'After running command "{command}" I get the error between '
        f"'OUTPUT_START' and 'OUTPUT_END' below:\n"
        f"OUTPUT_START\n{output.rstrip()}\nOUTPUT_END\n"
        f"{FIX_INSTRUCTIONS_TAIL}\n"
        f"SOURCE_START\n{payload}\nSOURCE_END"
    )
    log.debug("Built error-resolution prompt (output=%d chars, payload=%d chars)", len(output), len(payload))
    return prompt


__all__ = [
    "CHANGE_INSTRUCTIONS",
    "FIX_INSTRUCTIONS_TAIL",
    "build_error_resolution_prompt",
    "build_prompt",
]
