"""Remote broker client interface and its Redis implementation."""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List, Optional

import redis

from ..errors import TransportUnavailable

logger = logging.getLogger(__name__)


@dataclass
class BrokerJob:
    """A job waiting on the broker."""
    id: str
    name: str
    data: dict[str, Any] = field(default_factory=dict)


class Broker(ABC):
    """Abstract persistent queue on a remote service.

    Implementations raise TransportUnavailable for any connection-level failure.
    """

    @abstractmethod
    def ping(self) -> bool:
        """Lightweight liveness round-trip. Never raises."""

    @abstractmethod
    def add_job(self, name: str, data: dict[str, Any], job_id: Optional[str] = None) -> str:
        """Append a job to the waiting list; returns the (possibly assigned) job id."""

    @abstractmethod
    def list_waiting(self, start: int = 0, end: int = -1) -> List[BrokerJob]:
        """Waiting jobs in FIFO order, sliced by inclusive ``start``/``end``."""

    @abstractmethod
    def remove_job(self, job_id: str) -> bool:
        """Remove a waiting job. Returns True only for the caller that removed it."""

    @abstractmethod
    def waiting_count(self) -> int:
        """Number of waiting jobs."""

    def close(self) -> None:
        """Release any held connections."""


class RedisBroker(Broker):
    """
    Broker backed by Redis.

    Layout under ``queue_name``:
    - ``<queue_name>:id``   counter used to assign job ids
    - ``<queue_name>:wait`` list of waiting job ids, head first
    - ``<queue_name>:jobs`` hash of job id -> JSON job body

    ``LREM`` is atomic, so when two workers race for the same head job only
    one of them sees a removal count of 1.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        queue_name: str = "taskrelay:jobs",
        socket_timeout: float = 1.0,
        client: Optional[redis.Redis] = None,
    ):
        self.url = url
        self.queue_name = queue_name
        self.id_key = f"{queue_name}:id"
        self.wait_key = f"{queue_name}:wait"
        self.jobs_key = f"{queue_name}:jobs"
        self._client = client or redis.Redis.from_url(
            url,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
            decode_responses=True,
        )

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError as e:
            logger.debug(f"[Broker] Ping failed for {self.url}: {e}")
            return False

    def add_job(self, name: str, data: dict[str, Any], job_id: Optional[str] = None) -> str:
        try:
            if job_id is None:
                job_id = str(self._client.incr(self.id_key))
            body = json.dumps({"name": name, "data": data}, default=str)
            pipe = self._client.pipeline(transaction=True)
            pipe.hset(self.jobs_key, job_id, body)
            pipe.rpush(self.wait_key, job_id)
            pipe.execute()
        except redis.RedisError as e:
            raise TransportUnavailable(f"add_job failed: {e}") from e
        return job_id

    def list_waiting(self, start: int = 0, end: int = -1) -> List[BrokerJob]:
        try:
            job_ids = self._client.lrange(self.wait_key, start, end)
            if not job_ids:
                return []
            bodies = self._client.hmget(self.jobs_key, job_ids)
        except redis.RedisError as e:
            raise TransportUnavailable(f"list_waiting failed: {e}") from e

        jobs = []
        for job_id, body in zip(job_ids, bodies):
            if body is None:
                # Body removed by a concurrent remover between LRANGE and HMGET
                continue
            try:
                parsed = json.loads(body)
            except json.JSONDecodeError:
                logger.warning(f"[Broker] Skipping job {job_id} with malformed body")
                continue
            jobs.append(BrokerJob(id=job_id, name=parsed.get("name", "default"), data=parsed.get("data") or {}))
        return jobs

    def remove_job(self, job_id: str) -> bool:
        try:
            removed = self._client.lrem(self.wait_key, 1, job_id)
            if removed:
                self._client.hdel(self.jobs_key, job_id)
        except redis.RedisError as e:
            raise TransportUnavailable(f"remove_job failed: {e}") from e
        return removed == 1

    def waiting_count(self) -> int:
        try:
            return int(self._client.llen(self.wait_key))
        except redis.RedisError as e:
            raise TransportUnavailable(f"waiting_count failed: {e}") from e

    def close(self) -> None:
        try:
            self._client.close()
        except redis.RedisError:
            logger.debug("[Broker] Error closing connection", exc_info=True)
