"""Job queue interface."""
from typing import Protocol

from digipay.infra.messaging.redis_bus import redis_bus

JOBS_QUEUE = "jobs"


class JobQueue(Protocol):
    """Job queue protocol."""

    async def enqueue(self, job_type: str, job_data: dict) -> None:
        """Enqueue a job."""
        ...


class RedisJobQueue:
    """Redis-based job queue."""

    async def enqueue(self, job_type: str, job_data: dict) -> None:
        """Enqueue a job."""
        await redis_bus.enqueue_job(JOBS_QUEUE, {"type": job_type, "data": job_data})


# Global instance
job_queue = RedisJobQueue()
