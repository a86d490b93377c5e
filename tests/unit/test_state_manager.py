"""Tests for StateManager."""

import json
import logging
import time

import pytest

from taskrelay.core.state import StateManager


@pytest.fixture
def state_path(tmp_path):
    return tmp_path / "state.json"


@pytest.fixture
def state(state_path):
    return StateManager(state_path, lock_timeout=0.1, lock_retries=1)


def test_get_unknown_returns_none(state):
    assert state.get("missing") is None


def test_set_merges_and_stamps_updated_at(state):
    before = time.time()
    state.set("t1", {"status": "running", "progress": 10})
    merged = state.set("t1", {"progress": 50, "note": "halfway"})

    assert merged["status"] == "running"
    assert merged["progress"] == 50
    assert merged["note"] == "halfway"
    assert merged["task_id"] == "t1"
    assert merged["updated_at"] >= before
    assert state.get("t1") == merged


def test_every_set_rewrites_file(state, state_path):
    state.set("t1", {"status": "running"})
    on_disk = json.loads(state_path.read_text())

    assert on_disk["t1"]["status"] == "running"


def test_completed_is_never_reverted_to_running(state):
    state.set("t1", {"status": "completed", "result": {"ok": True}})
    state.set("t1", {"status": "running", "extra": "metadata"})

    snapshot = state.get("t1")
    assert snapshot["status"] == "completed"
    assert snapshot["extra"] == "metadata"
    assert snapshot["result"] == {"ok": True}


def test_failed_is_never_reverted_to_running(state):
    state.set("t1", {"status": "failed"})
    state.set("t1", {"status": "running"})
    assert state.get("t1")["status"] == "failed"


def test_first_terminal_outcome_wins(state, caplog):
    state.set("t1", {"status": "completed", "result": {"ok": True}})

    with caplog.at_level(logging.WARNING):
        merged = state.set("t1", {"status": "failed", "error": "late", "result": None, "note": "audit"})

    assert merged["status"] == "completed"
    assert merged["result"] == {"ok": True}
    assert "error" not in merged
    assert merged["note"] == "audit"
    assert "completed -> failed" in caplog.text


def test_failed_result_is_not_overwritten(state):
    state.set("t1", {"status": "failed", "error": "boom"})
    state.set("t1", {"status": "completed", "result": "retroactive"})

    snapshot = state.get("t1")
    assert snapshot["status"] == "failed"
    assert snapshot["error"] == "boom"
    assert "result" not in snapshot


def test_delete(state):
    state.set("t1", {"status": "completed"})

    assert state.delete("t1") is True
    assert state.get("t1") is None
    assert state.delete("t1") is False


def test_list(state):
    state.set("a", {"status": "completed"})
    state.set("b", {"status": "failed"})

    listed = {s["task_id"]: s["status"] for s in state.list()}
    assert listed == {"a": "completed", "b": "failed"}


def test_persists_across_instances(state, state_path):
    state.set("t1", {"status": "completed"})
    assert StateManager(state_path).get("t1")["status"] == "completed"


def test_malformed_store_reads_as_empty(state, state_path, caplog):
    state_path.write_text("[1, 2")

    with caplog.at_level(logging.WARNING):
        assert state.list() == []

    assert "Malformed state store" in caplog.text

    state.set("t1", {"status": "running"})
    assert state.get("t1")["status"] == "running"
