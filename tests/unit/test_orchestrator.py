"""Tests for Orchestrator wiring and status lookup."""

import pytest
from pydantic import ValidationError

from taskrelay.core.config import BrokerConfig, StorageConfig, TaskRelayConfig, TrackerConfig
from taskrelay.core.orchestrator import Orchestrator
from taskrelay.errors import UnknownJobKind
from taskrelay.queue.broker import RedisBroker


class TestCreateTask:
    def test_validates_and_enqueues(self, orchestrator):
        record = orchestrator.create_task("execute", {"data": 1, "steps": [{"name": "a"}]})

        assert record.name == "execute"
        assert record.payload == {"data": 1, "steps": [{"name": "a", "delay": 0.1, "fail": False}]}
        assert orchestrator.peek().id == record.id

    def test_unknown_kind_is_rejected_before_enqueue(self, orchestrator):
        with pytest.raises(UnknownJobKind):
            orchestrator.create_task("nope", {})
        assert orchestrator.peek() is None

    def test_invalid_payload_is_rejected_before_enqueue(self, orchestrator):
        with pytest.raises(ValidationError):
            orchestrator.create_task("steps", {"count": "lots"})
        assert orchestrator.peek() is None


class TestStatus:
    def test_queued_task(self, orchestrator):
        record = orchestrator.enqueue({"name": "default"})

        status = orchestrator.get_task_status(record.id)

        assert status["status"] == "queued"
        assert status["task_id"] == record.id

    def test_runtime_record_wins(self, orchestrator):
        orchestrator.state.set("t1", {"status": "completed"})
        orchestrator.tracker.start("t1")

        assert orchestrator.get_task_status("t1")["status"] == "running"

    def test_persisted_snapshot_after_eviction(self, orchestrator):
        orchestrator.tracker.start("t1", {"x": 1})
        orchestrator.tracker.complete("t1", "done")
        orchestrator.tracker.evict("t1")

        status = orchestrator.get_task_status("t1")
        assert status["status"] == "completed"
        assert status["result"] == "done"

    def test_unknown_task(self, orchestrator):
        assert orchestrator.get_task_status("missing") is None

    def test_list_tasks(self, orchestrator):
        orchestrator.enqueue({"name": "default"})
        orchestrator.tracker.start("running-1")
        orchestrator.tracker.start("done-1")
        orchestrator.tracker.complete("done-1")

        listed = orchestrator.list_tasks()

        assert len(listed["queued"]) == 1
        assert {t["task_id"] for t in listed["runtime"]} == {"running-1", "done-1"}
        assert [s["task_id"] for s in listed["persisted"]] == ["done-1"]


class TestIsolation:
    def test_instances_do_not_share_hooks_or_tracking(self, tmp_path, registry):
        def build(name):
            config = TaskRelayConfig(
                broker=BrokerConfig(enabled=False),
                storage=StorageConfig(data_dir=tmp_path / name),
                tracker=TrackerConfig(default_hooks=False),
            )
            return Orchestrator(config, registry=registry)

        first, second = build("a"), build("b")
        calls = []
        first.register_hook("start", lambda task_id, data: calls.append(task_id))

        second.tracker.start("t2")
        first.tracker.start("t1")

        assert calls == ["t1"]
        assert first.tracker.get("t2") is None
        assert second.tracker.get("t1") is None

    def test_default_hooks_installed_from_config(self, tmp_path):
        config = TaskRelayConfig(
            broker=BrokerConfig(enabled=False),
            storage=StorageConfig(data_dir=tmp_path),
        )
        orchestrator = Orchestrator(config)

        assert len(orchestrator.hooks.callbacks("complete")) == 1
        assert "execute" in orchestrator.registry


class TestBackends:
    def test_broker_built_from_config(self, tmp_path):
        config = TaskRelayConfig(
            broker=BrokerConfig(url="redis://cache.internal:6380/2", queue_name="jobs"),
            storage=StorageConfig(data_dir=tmp_path),
        )
        orchestrator = Orchestrator(config)

        assert isinstance(orchestrator.broker, RedisBroker)
        assert orchestrator.broker.wait_key == "jobs:wait"

    def test_disabled_broker_means_file_only(self, orchestrator):
        assert orchestrator.broker is None
        assert orchestrator.enqueue({"name": "default"}).source_backend == "file"

    def test_check_backends_with_file_queue(self, orchestrator):
        assert orchestrator.check_backends() is True
        assert orchestrator.file_queue.queue_path.exists()

    def test_check_backends_with_broker(self, broker_orchestrator, broker):
        assert broker_orchestrator.check_backends() is True
        assert broker.ping_count == 1

    def test_check_backends_fails_when_file_queue_unusable(self, orchestrator, monkeypatch):
        def unusable():
            raise PermissionError("read-only filesystem")

        monkeypatch.setattr(orchestrator.file_queue, "ensure_usable", unusable)

        assert orchestrator.check_backends() is False
