"""Tests for configuration loading, env expansion and validation."""

import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from taskrelay.core.config import (
    BrokerConfig,
    StorageConfig,
    TaskRelayConfig,
    WorkerConfig,
    _config_cache,
    _expand_env_vars,
    load_config,
)


@pytest.fixture(autouse=True)
def clear_cache():
    _config_cache.clear()
    yield
    _config_cache.clear()


def test_missing_file_returns_defaults(tmp_path):
    config = load_config(tmp_path / "nope.yaml")

    assert config.broker.enabled is True
    assert config.worker.max_attempts == 3
    assert config.tracker.max_log_entries == 500


def test_loads_yaml_sections(tmp_path):
    path = tmp_path / "taskrelay.yaml"
    path.write_text(
        "worker_id: relay-1\n"
        "broker:\n"
        "  enabled: false\n"
        "storage:\n"
        f"  data_dir: {tmp_path}\n"
        "  lock_timeout: 1.5\n"
        "worker:\n"
        "  max_attempts: 5\n"
        "  step_timeout: 30\n"
        "logging:\n"
        "  level: DEBUG\n"
    )

    config = load_config(path)

    assert config.worker_id == "relay-1"
    assert config.broker.enabled is False
    assert config.storage.queue_path == tmp_path / "queue.json"
    assert config.storage.lock_timeout == 1.5
    assert config.worker.max_attempts == 5
    assert config.worker.step_timeout == 30
    assert config.logging.level == "DEBUG"


def test_cached_until_file_changes(tmp_path):
    path = tmp_path / "taskrelay.yaml"
    path.write_text("worker_id: first\n")

    first = load_config(path)
    assert load_config(path) is first

    path.write_text("worker_id: second\n")
    # Force a different mtime regardless of filesystem timestamp resolution
    stat = path.stat()
    os.utime(path, (stat.st_atime, stat.st_mtime + 10))

    assert load_config(path).worker_id == "second"


class TestEnvExpansion:
    def test_set_variable(self, monkeypatch):
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/1")
        assert _expand_env_vars({"broker": {"url": "${REDIS_URL}"}}) == {
            "broker": {"url": "redis://cache:6379/1"}
        }

    def test_default_used_when_unset(self, monkeypatch):
        monkeypatch.delenv("REDIS_URL", raising=False)
        assert _expand_env_vars("${REDIS_URL:-redis://localhost:6379/0}") == "redis://localhost:6379/0"

    def test_empty_default(self, monkeypatch):
        monkeypatch.delenv("QUEUE_SUFFIX", raising=False)
        assert _expand_env_vars("${QUEUE_SUFFIX:-}") == ""

    def test_unset_without_default_keeps_literal(self, monkeypatch):
        monkeypatch.delenv("MISSING_VAR", raising=False)
        assert _expand_env_vars(["${MISSING_VAR}"]) == ["${MISSING_VAR}"]

    def test_expanded_in_loaded_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("RELAY_QUEUE", "jobs-prod")
        path = tmp_path / "taskrelay.yaml"
        path.write_text("broker:\n  queue_name: \"${RELAY_QUEUE}\"\n")

        assert load_config(path).broker.queue_name == "jobs-prod"


class TestValidation:
    def test_rejects_non_redis_url(self):
        with pytest.raises(ValidationError):
            BrokerConfig(url="http://localhost:6379")

    def test_accepts_tls_and_socket_urls(self):
        assert BrokerConfig(url="rediss://cache:6380").url == "rediss://cache:6380"
        assert BrokerConfig(url="unix:///tmp/redis.sock").url.startswith("unix://")

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValidationError):
            WorkerConfig(max_attempts=0)

    def test_rejects_zero_lock_retries(self):
        with pytest.raises(ValidationError):
            StorageConfig(lock_retries=0)

    def test_data_dir_expands_user(self):
        assert StorageConfig(data_dir="~/relay").data_dir == Path("~/relay").expanduser()

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("TASKRELAY_WORKER_ID", "from-env")
        monkeypatch.setenv("TASKRELAY_WORKER__MAX_ATTEMPTS", "7")

        config = TaskRelayConfig()

        assert config.worker_id == "from-env"
        assert config.worker.max_attempts == 7
