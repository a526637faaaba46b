"""Batch generation job for the RQ worker.

The job runs the batch orchestrator, publishes progress through the job's
``meta`` and returns a JSON-friendly summary that the API hands back to
the client.
"""

import asyncio
import logging
from typing import Optional

from rq import get_current_job
from rq.job import Job

from studio.db.database import close_db, get_session_maker
from studio.services.errors import GenerationAborted, StudioError
from studio.services.factory import build_batch_orchestrator
from studio.services.generation import GenerationRequest, ProgressCounter
from studio.services.image_source import SourceItem
from studio.tasks import release_generation_lock

logger = logging.getLogger(__name__)


def process_batch_generation(user_id: str, prompt: str, items: list) -> dict:
    """
    Process a batch generation.

    Args:
        user_id: Profile ID
        prompt: Scene description
        items: SourceItem dicts (empty for text-to-image)

    Returns:
        {"status": "done", "cost", "artifacts"} or
        {"status": "failed", "error", "error_type", "refunded", "completed"}
    """
    # RQ workers are sync
    return asyncio.run(_process_batch_generation_async(user_id, prompt, items, get_current_job()))


async def _process_batch_generation_async(
    user_id: str,
    prompt: str,
    items: list,
    job: Optional[Job],
) -> dict:
    job_label = job.id if job else "inline"
    logger.info(f"Processing batch {job_label} for user {user_id} ({len(items)} item(s))")

    async def publish_progress(progress: ProgressCounter) -> None:
        if job is None:
            return
        job.meta["progress"] = progress.to_dict()
        job.save_meta()

    request = GenerationRequest(
        prompt=prompt,
        items=[SourceItem.from_dict(item) for item in items],
    )

    try:
        session_maker = get_session_maker()
        async with session_maker() as session:
            orchestrator = build_batch_orchestrator(session, on_progress=publish_progress)
            try:
                result = await orchestrator.run(user_id, request)
            except GenerationAborted as e:
                logger.warning(f"Batch {job_label} aborted: {e}")
                return {
                    "status": "failed",
                    "error": str(e),
                    "error_type": type(e.cause).__name__,
                    "refunded": e.refunded,
                    "completed": e.completed,
                }
            except StudioError as e:
                logger.warning(f"Batch {job_label} not started: {e}")
                return {
                    "status": "failed",
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "refunded": 0,
                    "completed": 0,
                }

        logger.info(f"Batch {job_label} completed with {len(result.artifacts)} image(s)")
        return {
            "status": "done",
            "cost": result.cost,
            "artifacts": [artifact.to_dict() for artifact in result.artifacts],
        }
    finally:
        if job is not None:
            release_generation_lock(user_id, job.id)
        # The engine is bound to this job's event loop
        await close_db()
