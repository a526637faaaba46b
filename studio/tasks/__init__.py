"""RQ tasks module for async task processing.

Batch generations run on an RQ worker. Jobs are enqueued without a retry
policy: a failed batch has already been refunded, and generation calls
must never be repeated automatically.
"""

import logging
import uuid
from typing import Optional

from redis import Redis
from rq import Queue
from rq.exceptions import NoSuchJobError
from rq.job import Job

from studio.config import config

logger = logging.getLogger(__name__)

# Redis connection instance
_redis_conn: Optional[Redis] = None

# Default queue instance
_default_queue: Optional[Queue] = None

GENERATION_LOCK_KEY = "studio:generating:{user_id}"

# Compare-and-delete: only the holder may release the lock
_RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


def get_redis_connection() -> Redis:
    """
    Get or create Redis connection.

    Returns:
        Redis connection instance
    """
    global _redis_conn
    if _redis_conn is None:
        _redis_conn = Redis.from_url(config.redis_url)
        logger.info(f"Connected to Redis at {config.redis_url}")
    return _redis_conn


def get_queue(name: str = "default") -> Queue:
    """
    Get or create an RQ queue.

    Args:
        name: Queue name (default: "default")

    Returns:
        RQ Queue instance
    """
    global _default_queue
    if name == "default" and _default_queue is not None:
        return _default_queue

    queue = Queue(name=name, connection=get_redis_connection())

    if name == "default":
        _default_queue = queue

    return queue


def acquire_generation_lock(user_id: str, job_id: str, redis_conn: Optional[Redis] = None) -> bool:
    """
    Mark the user as having a batch in flight.

    Returns:
        False if another batch already holds the lock
    """
    conn = redis_conn or get_redis_connection()
    key = GENERATION_LOCK_KEY.format(user_id=user_id)
    return bool(conn.set(key, job_id, nx=True, ex=config.generation_lock_ttl))


def release_generation_lock(user_id: str, job_id: str, redis_conn: Optional[Redis] = None) -> bool:
    """
    Drop the user's lock if it still belongs to ``job_id``.

    The lock may have expired and been taken by a newer batch; that one
    is left alone.

    Returns:
        True if the lock was deleted
    """
    conn = redis_conn or get_redis_connection()
    key = GENERATION_LOCK_KEY.format(user_id=user_id)
    released = bool(conn.eval(_RELEASE_LOCK_SCRIPT, 1, key, job_id))
    if not released:
        logger.warning(f"Generation lock for user {user_id} is no longer held by job {job_id}")
    return released


def enqueue_batch_generation(
    job_id: str,
    user_id: str,
    prompt: str,
    items: list,
) -> str:
    """
    Enqueue a batch generation.

    Args:
        job_id: Pre-allocated job ID (also stored in the user's lock)
        user_id: Profile ID
        prompt: Scene description
        items: SourceItem dicts

    Returns:
        RQ job ID
    """
    from studio.tasks.generation import process_batch_generation

    job = get_queue().enqueue(
        process_batch_generation,
        user_id,
        prompt,
        items,
        job_id=job_id,
        job_timeout=config.generation_lock_ttl,
        result_ttl=86400,
        meta={"progress": {"completed": 0, "total": max(len(items), 1)}},
    )

    logger.info(f"Enqueued batch generation for user {user_id} with job ID {job.id}")
    return job.id


class GenerationQueue:
    """Submits batches behind the per-user lock and reports their state."""

    def __init__(self, redis_conn: Optional[Redis] = None):
        self._redis_conn = redis_conn

    @property
    def connection(self) -> Redis:
        return self._redis_conn or get_redis_connection()

    def submit(self, user_id: str, prompt: str, items: list) -> Optional[str]:
        """
        Enqueue a batch for the user.

        Returns:
            The job ID, or None if the user already has a batch running
        """
        job_id = uuid.uuid4().hex
        if not acquire_generation_lock(user_id, job_id, self.connection):
            logger.info(f"Batch for user {user_id} rejected: another one is running")
            return None
        try:
            return enqueue_batch_generation(job_id, user_id, prompt, items)
        except Exception:
            release_generation_lock(user_id, job_id, self.connection)
            raise

    def status(self, job_id: str, user_id: str) -> Optional[dict]:
        """
        Return state, progress and result of a job owned by ``user_id``.

        Returns:
            None if the job does not exist or belongs to someone else
        """
        try:
            job = Job.fetch(job_id, connection=self.connection)
        except NoSuchJobError:
            return None

        if not job.args or job.args[0] != user_id:
            return None

        status = job.get_status()
        return {
            "job_id": job.id,
            "status": getattr(status, "value", status),
            "progress": job.meta.get("progress"),
            "result": job.return_value(),
        }


def close_redis_connection() -> None:
    """Close Redis connection."""
    global _redis_conn, _default_queue
    if _redis_conn is not None:
        _redis_conn.close()
        _redis_conn = None
        _default_queue = None
        logger.info("Redis connection closed")
