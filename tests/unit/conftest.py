"""Shared test fixtures for unit tests."""

import copy
from typing import Any, List, Optional

import pytest
from pydantic import BaseModel

from taskrelay.core.config import BrokerConfig, StorageConfig, TaskRelayConfig, TrackerConfig, WorkerConfig
from taskrelay.core.jobs import JobStep, default_registry
from taskrelay.core.orchestrator import Orchestrator
from taskrelay.errors import TransportUnavailable
from taskrelay.queue.broker import Broker, BrokerJob


class InMemoryBroker(Broker):
    """Broker stand-in with a switchable ``up`` flag."""

    def __init__(self):
        self.up = True
        self.ping_count = 0
        self._next_id = 0
        self._waiting: List[str] = []
        self._jobs: dict[str, BrokerJob] = {}

    def _check(self) -> None:
        if not self.up:
            raise TransportUnavailable("broker down")

    def ping(self) -> bool:
        self.ping_count += 1
        return self.up

    def add_job(self, name: str, data: dict[str, Any], job_id: Optional[str] = None) -> str:
        self._check()
        if job_id is None:
            self._next_id += 1
            job_id = str(self._next_id)
        self._jobs[job_id] = BrokerJob(id=job_id, name=name, data=copy.deepcopy(data))
        self._waiting.append(job_id)
        return job_id

    def list_waiting(self, start: int = 0, end: int = -1) -> List[BrokerJob]:
        self._check()
        ids = self._waiting[start:] if end == -1 else self._waiting[start:end + 1]
        return [self._jobs[job_id] for job_id in ids]

    def remove_job(self, job_id: str) -> bool:
        self._check()
        if job_id not in self._waiting:
            return False
        self._waiting.remove(job_id)
        del self._jobs[job_id]
        return True

    def waiting_count(self) -> int:
        self._check()
        return len(self._waiting)


class StepsPayload(BaseModel):
    """Payload for the ``steps`` test job: which step (1-based) should raise."""
    count: int = 2
    fail_at: Optional[int] = None


def _steps_for(payload: StepsPayload) -> List[JobStep]:
    def make(i: int) -> JobStep:
        def run(_payload):
            if payload.fail_at == i:
                raise RuntimeError(f"step {i} exploded")
            return i

        return JobStep(name=f"step-{i}", run=run)

    return [make(i) for i in range(1, payload.count + 1)]


def make_config(tmp_path, **worker_overrides) -> TaskRelayConfig:
    worker = {"max_attempts": 3, "backoff_initial": 0, "poll_interval": 0.01, **worker_overrides}
    return TaskRelayConfig(
        broker=BrokerConfig(enabled=False),
        storage=StorageConfig(data_dir=tmp_path, lock_timeout=0.2, lock_retries=2),
        worker=WorkerConfig(**worker),
        tracker=TrackerConfig(default_hooks=False),
    )


@pytest.fixture
def broker():
    return InMemoryBroker()


@pytest.fixture
def registry():
    registry = default_registry()
    registry.register("steps", StepsPayload, steps=_steps_for, description="Numbered test steps")
    return registry


@pytest.fixture
def config(tmp_path):
    return make_config(tmp_path)


@pytest.fixture
def make_orchestrator(tmp_path, registry):
    """Factory for orchestrators with worker settings overridden."""

    def _make(**worker_overrides) -> Orchestrator:
        return Orchestrator(make_config(tmp_path, **worker_overrides), registry=registry)

    return _make


@pytest.fixture
def orchestrator(config, registry):
    """File-queue-only orchestrator (no broker)."""
    return Orchestrator(config, registry=registry)


@pytest.fixture
def broker_orchestrator(config, registry, broker):
    return Orchestrator(config, broker=broker, registry=registry)
