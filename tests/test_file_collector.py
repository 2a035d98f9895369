"""
Source inventory: excluded entries skipped, deterministic order, and a failed
token count degrading to ``None`` instead of aborting.
"""
from __future__ import annotations

from pathlib import Path

import pytest

from prompt_patch import file_collector
from prompt_patch.errors import ConfigError
from prompt_patch.file_collector import collect, get_source_files, list_source_paths


def _tree(root: Path, files: dict) -> Path:
    for rel, body in files.items():
        p = root / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(body, encoding="utf-8")
    return root


def _word_count(text: str) -> int:
    return len(text.split())


def test_collect_skips_excluded_and_sorts(tmp_path: Path) -> None:
    _tree(
        tmp_path,
        {
            "z.txt": "one two three",
            "src/a.ts": "const a = 1;",
            "dist/out.js": "ignored",
            "notes.log": "ignored",
        },
    )
    files = collect(tmp_path, frozenset({"dist", "notes.log"}), counter=_word_count)
    assert [f.relative_path for f in files] == ["src/a.ts", "z.txt"]
    assert files[0].name == "a.ts"
    assert files[0].token_count == 4
    assert files[1].token_count == 3


def test_failed_count_yields_none(tmp_path: Path) -> None:
    _tree(tmp_path, {"good.txt": "a b", "bad.txt": "boom"})

    def flaky(text: str) -> int:
        if "boom" in text:
            raise RuntimeError("tokenizer exploded")
        return _word_count(text)

    files = {f.relative_path: f.token_count for f in collect(tmp_path, frozenset(), counter=flaky)}
    assert files == {"bad.txt": None, "good.txt": 2}


def test_undecodable_file_still_listed(tmp_path: Path) -> None:
    (tmp_path / "blob.bin").write_bytes(b"\xff\xfe\x00\x81")
    files = collect(tmp_path, frozenset(), counter=_word_count)
    assert [(f.relative_path, f.token_count) for f in files] == [("blob.bin", None)]


def test_get_source_files_uses_gitignore(tmp_path: Path) -> None:
    _tree(
        tmp_path,
        {
            ".gitignore": "build/\n",
            "build/app.js": "x",
            "index.html": "<html></html>",
            "LICENSE": "MIT",
        },
    )
    files = get_source_files(tmp_path, counter=_word_count, concurrency=2)
    assert [f.relative_path for f in files] == [".gitignore", "index.html"]


def test_get_source_files_requires_gitignore(tmp_path: Path) -> None:
    (tmp_path / "a.txt").write_text("x", encoding="utf-8")
    with pytest.raises(ConfigError):
        get_source_files(tmp_path, counter=_word_count)


def test_default_counter_is_resolved_lazily(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _tree(tmp_path, {"a.txt": "x y z"})
    monkeypatch.setattr(file_collector, "token_counter", lambda model="m": _word_count)
    assert collect(tmp_path, frozenset())[0].token_count == 3


def test_to_dict_wire_names(tmp_path: Path) -> None:
    _tree(tmp_path, {"a.txt": "x"})
    data = collect(tmp_path, frozenset(), counter=_word_count)[0].to_dict()
    assert data == {"name": "a.txt", "relativePath": "a.txt", "tokenCount": 1}


def test_list_source_paths_prunes_excluded_dirs(tmp_path: Path) -> None:
    _tree(tmp_path, {"keep/a.txt": "", "skip/b.txt": "", "skip/deeper/c.txt": ""})
    assert sorted(list_source_paths(tmp_path, frozenset({"skip"}))) == ["keep/a.txt"]
