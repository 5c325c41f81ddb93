from __future__ import annotations

import json
from pathlib import Path

import pytest

from biscuit.io_utils import iter_json_lines, write_json


def test_write_json_creates_parent_and_newline(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "cache.json"
    write_json(target, {"b": 1, "a": "é"})
    text = target.read_text(encoding="utf-8")
    assert text.endswith("\n")
    assert json.loads(text) == {"b": 1, "a": "é"}
    assert not [p for p in target.parent.iterdir() if p.name.startswith(".tmp-")]


def test_write_json_replaces_existing(tmp_path: Path) -> None:
    target = tmp_path / "cache.json"
    write_json(target, {"n": 1})
    write_json(target, {"n": 2})
    assert json.loads(target.read_text(encoding="utf-8")) == {"n": 2}


def test_write_json_failure_keeps_previous_file(tmp_path: Path) -> None:
    target = tmp_path / "cache.json"
    write_json(target, {"n": 1})
    with pytest.raises(TypeError):
        write_json(target, {"n": object()})
    assert json.loads(target.read_text(encoding="utf-8")) == {"n": 1}
    assert [p.name for p in tmp_path.iterdir()] == ["cache.json"]


def test_iter_json_lines(tmp_path: Path) -> None:
    target = tmp_path / "capture.jsonl"
    target.write_text('{"id": 1}\n\n{"id": 2}\n', encoding="utf-8")
    assert list(iter_json_lines(target)) == [(1, {"id": 1}), (3, {"id": 2})]


@pytest.mark.parametrize("line", ["[1, 2]", "{broken"])
def test_iter_json_lines_rejects(tmp_path: Path, line: str) -> None:
    target = tmp_path / "capture.jsonl"
    target.write_text('{"id": 1}\n' + line + "\n", encoding="utf-8")
    with pytest.raises(ValueError, match="line 2"):
        list(iter_json_lines(target))
