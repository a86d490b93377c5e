"""Configuration loading and validation."""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class BrokerConfig(BaseModel):
    """Remote broker (Redis) connection settings."""
    enabled: bool = True
    url: str = "redis://localhost:6379/0"
    queue_name: str = "taskrelay:jobs"
    # Ping round-trips must stay cheap: they run before every queue operation
    socket_timeout: float = 1.0

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError(f"broker url must be a redis:// or unix:// URL, got '{v}'")
        return v


class StorageConfig(BaseModel):
    """Local file-backed stores."""
    data_dir: Path = Field(default=Path("~/.taskrelay"))
    queue_file: str = "queue.json"
    state_file: str = "state.json"
    lock_timeout: float = 5.0
    lock_retries: int = 3

    @field_validator("data_dir")
    @classmethod
    def expand_data_dir(cls, v: Path) -> Path:
        return Path(v).expanduser()

    @field_validator("lock_retries")
    @classmethod
    def validate_lock_retries(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"lock_retries must be >= 1, got {v}")
        return v

    @property
    def queue_path(self) -> Path:
        return self.data_dir / self.queue_file

    @property
    def state_path(self) -> Path:
        return self.data_dir / self.state_file


class WorkerConfig(BaseModel):
    """Worker loop and retry policy settings."""
    max_attempts: int = 3
    backoff_initial: float = 2.0
    backoff_multiplier: float = 2.0
    backoff_max: float = 60.0
    poll_interval: float = 1.0
    step_timeout: Optional[float] = None  # None = steps may run indefinitely

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_attempts must be >= 1, got {v}")
        return v


class TrackerConfig(BaseModel):
    """Runtime tracker settings."""
    max_log_entries: int = 500
    default_hooks: bool = True


class LoggingConfig(BaseModel):
    """Log output settings."""
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    use_file: bool = True
    use_json: bool = False


class TaskRelayConfig(BaseSettings):
    """Main task relay configuration."""

    model_config = SettingsConfigDict(
        env_prefix="TASKRELAY_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="allow",
    )

    worker_id: str = "worker"
    broker: BrokerConfig = Field(default_factory=BrokerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    tracker: TrackerConfig = Field(default_factory=TrackerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# Module-level mtime-based config cache: path -> (parsed_config, file_mtime)
_config_cache: Dict[str, tuple] = {}


def _get_cached_or_load(resolved_path: Path, loader):
    """Return cached config if file mtime unchanged, else reload."""
    key = str(resolved_path)
    try:
        current_mtime = resolved_path.stat().st_mtime
    except FileNotFoundError:
        _config_cache.pop(key, None)
        return None

    cached = _config_cache.get(key)
    if cached is not None:
        cached_result, cached_mtime = cached
        if cached_mtime == current_mtime:
            return cached_result

    result = loader(resolved_path)
    _config_cache[key] = (result, current_mtime)
    return result


def _load_config_from_file(config_path: Path) -> TaskRelayConfig:
    """Internal loader for relay config (no caching)."""
    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    data = _expand_env_vars(data)
    return TaskRelayConfig(**data)


def load_config(config_path: Path = Path("config/taskrelay.yaml")) -> TaskRelayConfig:
    """Load relay configuration from YAML file.

    Uses mtime-based caching — returns cached config if the file hasn't changed.
    """
    if not config_path.exists():
        logger.warning(
            f"Config file not found: {config_path}. Using default configuration. "
            "To customize settings, create a config file at this path."
        )
        return TaskRelayConfig()

    resolved = config_path.resolve()
    result = _get_cached_or_load(resolved, _load_config_from_file)
    return result if result is not None else TaskRelayConfig()


def _expand_env_vars(data: Any, _path: str = "") -> Any:
    """Recursively expand ``${VAR}`` and ``${VAR:-default}`` references.

    Args:
        data: Config data to process
        _path: Internal tracking for error messages (e.g., "broker.url")
    """
    if isinstance(data, dict):
        return {k: _expand_env_vars(v, f"{_path}.{k}" if _path else k) for k, v in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item, f"{_path}[{i}]") for i, item in enumerate(data)]
    elif isinstance(data, str) and data.startswith("${") and data.endswith("}"):
        env_var, sep, default = data[2:-1].partition(":-")
        value = os.environ.get(env_var)
        if value is not None:
            return value
        if sep:
            return default
        logger.warning(
            f"Environment variable '{env_var}' not set (referenced at config path: {_path or 'root'}). "
            f"The literal string '{data}' will be used, which may cause errors."
        )
        return data
    return data
