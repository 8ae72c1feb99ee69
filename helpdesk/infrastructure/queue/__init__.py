"""
Task Queue Infrastructure
=========================

arq (Redis) connection used to hand jobs to the out-of-process worker.

Enqueue is fire-and-forget: the caller only learns whether Redis accepted
the job, never whether the job succeeded.
"""

from typing import Any, Optional

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings

from helpdesk.config import settings
from helpdesk.core import TaskQueueException
from helpdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


def redis_settings(redis_url: Optional[str] = None) -> RedisSettings:
    """arq connection settings for the configured Redis."""
    return RedisSettings.from_dsn(redis_url or settings.redis_url)


class ArqTaskQueue:
    """
    Thin wrapper around an arq Redis pool.

    Converts every enqueue failure into TaskQueueException so callers have a
    single error type to count or report.
    """

    def __init__(self, pool: ArqRedis):
        self._pool = pool

    @classmethod
    async def connect(cls, redis_url: Optional[str] = None) -> "ArqTaskQueue":
        """Open a pool against Redis."""
        try:
            pool = await create_pool(redis_settings(redis_url))
        except Exception as e:
            raise TaskQueueException(f"Could not connect to Redis: {e}") from e
        return cls(pool)

    async def enqueue(self, task_name: str, **payload: Any) -> str:
        """
        Enqueue ``task_name`` with keyword arguments.

        Returns:
            The arq job id

        Raises:
            TaskQueueException: If Redis rejects the job
        """
        try:
            job = await self._pool.enqueue_job(task_name, **payload)
        except Exception as e:
            raise TaskQueueException(f"Failed to enqueue {task_name}: {e}") from e

        if job is None:
            raise TaskQueueException(f"Job for {task_name} was not accepted", details=payload)

        logger.debug("Job enqueued", extra={"task": task_name, "job_id": job.job_id})
        return job.job_id

    async def close(self) -> None:
        await self._pool.aclose()
