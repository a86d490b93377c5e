"""Tests for atomic store writes and strict JSON reads."""

import pytest

from taskrelay.errors import MalformedState
from taskrelay.utils.atomic_io import atomic_write_json, atomic_write_text, read_json


def test_write_replaces_content_and_leaves_no_temp_file(tmp_path):
    path = tmp_path / "queue.json"
    atomic_write_text(path, "old")
    atomic_write_text(path, "new")

    assert path.read_text() == "new"
    assert [p.name for p in tmp_path.iterdir()] == ["queue.json"]


def test_failed_write_keeps_previous_content(tmp_path, monkeypatch):
    path = tmp_path / "state.json"
    atomic_write_json(path, {"a": 1})

    def boom(self, target):
        raise OSError("disk full")

    monkeypatch.setattr(type(path), "replace", boom)

    with pytest.raises(OSError, match="disk full"):
        atomic_write_json(path, {"a": 2})

    monkeypatch.undo()
    assert read_json(path, dict) == {"a": 1}


def test_read_missing_or_blank_is_empty(tmp_path):
    path = tmp_path / "queue.json"
    assert read_json(path, list) == []

    path.write_text("  \n")
    assert read_json(path, list) == []


def test_read_rejects_invalid_json(tmp_path):
    path = tmp_path / "queue.json"
    path.write_text("{truncated")

    with pytest.raises(MalformedState, match="invalid JSON"):
        read_json(path, list)


def test_read_rejects_wrong_top_level_type(tmp_path):
    path = tmp_path / "queue.json"
    path.write_text('{"not": "a list"}')

    with pytest.raises(MalformedState, match="expected a JSON list"):
        read_json(path, list)
