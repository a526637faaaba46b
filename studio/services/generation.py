"""Token-metered generation workflows.

Both workflows follow the same shape: compute the cost, reserve it on the
ledger, run the generation units, and on any failure credit the full cost
back before surfacing a single GenerationAborted error.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from studio.services.balance import BalanceLedger
from studio.services.errors import (
    GenerationAborted,
    GenerationInProgressError,
    InvalidRequestError,
    NoActiveIdentityError,
    ReservationFailedError,
    StudioError,
)
from studio.services.image_provider import ImageGenerator
from studio.services.image_source import ImageSourceResolver, SourceItem
from studio.services.persister import Artifact, ArtifactPersister
from studio.services.pricing import calculate_batch_cost, calculate_edit_cost

logger = logging.getLogger(__name__)


class BatchState(str, Enum):
    IDLE = "idle"
    RESERVING = "reserving"
    RUNNING = "running"
    SUCCESS = "success"
    REFUNDING = "refunding"


@dataclass
class GenerationRequest:
    """One prompt applied to zero or more source items.

    With no items the request is a pure text-to-image generation.
    """

    prompt: str
    items: List[SourceItem] = field(default_factory=list)


@dataclass
class ProgressCounter:
    completed: int = 0
    total: int = 0

    def to_dict(self) -> dict:
        return {"completed": self.completed, "total": self.total}


ProgressCallback = Callable[[ProgressCounter], Awaitable[None]]


@dataclass
class BatchResult:
    """Outcome of a fully successful batch."""

    cost: int
    # Most recent first, the way the gallery shows them
    artifacts: List[Artifact] = field(default_factory=list)


class _MeteredWorkflow:
    """Reservation and compensation shared by the orchestrators."""

    def __init__(
        self,
        ledger: BalanceLedger,
        resolver: ImageSourceResolver,
        generator: ImageGenerator,
        persister: ArtifactPersister,
    ):
        self.ledger = ledger
        self.resolver = resolver
        self.generator = generator
        self.persister = persister

    async def _reserve(self, user_id: str, cost: int) -> None:
        if await self.ledger.debit(user_id, cost):
            logger.info(f"Reserved {cost} tokens for user {user_id}")
            return

        try:
            available = await self.ledger.get_balance(user_id)
        except SQLAlchemyError:
            available = None
        logger.warning(f"Reservation of {cost} tokens failed for user {user_id} (balance: {available})")
        raise ReservationFailedError(required=cost, available=available)

    async def _generate_one(
        self,
        user_id: str,
        prompt: str,
        item: Optional[SourceItem],
    ) -> Artifact:
        reference = await self.resolver.resolve(item) if item is not None else None
        image = await self.generator.generate(prompt, reference)
        return await self.persister.persist(
            image.image_base64,
            image.mime_type,
            prompt,
            user_id,
        )

    async def _abort(
        self,
        user_id: str,
        cost: int,
        error: Exception,
        completed: int = 0,
    ) -> GenerationAborted:
        """Refund the full reservation and build the error to surface."""
        if isinstance(error, StudioError):
            cause = error
            logger.warning(f"Generation for user {user_id} failed: {type(error).__name__}: {error}")
        else:
            cause = StudioError("Something went wrong while generating the image.")
            logger.exception(f"Unexpected error during generation for user {user_id}", exc_info=error)

        refunded = cost if await self.ledger.credit(user_id, cost) else 0
        if refunded:
            logger.info(f"Refunded {cost} tokens to user {user_id}")
        else:
            logger.error(f"Refund of {cost} tokens to user {user_id} FAILED")

        return GenerationAborted(cause, refunded=refunded, completed=completed)


def _validate(user_id: Optional[str], prompt: str) -> str:
    if not user_id:
        raise NoActiveIdentityError()
    prompt = (prompt or "").strip()
    if not prompt:
        raise InvalidRequestError("Please describe the image you want to create.")
    return prompt


class BatchGenerationOrchestrator(_MeteredWorkflow):
    """Runs a batch of generations as one all-or-nothing purchase.

    Items are processed strictly in order. The first failure stops the
    batch; images persisted before it are kept, and the whole cost is
    credited back.
    """

    def __init__(
        self,
        ledger: BalanceLedger,
        resolver: ImageSourceResolver,
        generator: ImageGenerator,
        persister: ArtifactPersister,
        on_progress: Optional[ProgressCallback] = None,
    ):
        super().__init__(ledger, resolver, generator, persister)
        self.on_progress = on_progress
        self.state = BatchState.IDLE
        self.is_generating = False
        self.progress = ProgressCounter()

    async def run(self, user_id: Optional[str], request: GenerationRequest) -> BatchResult:
        """
        Execute a batch.

        Raises:
            NoActiveIdentityError: No signed-in user
            InvalidRequestError: Empty prompt
            GenerationInProgressError: This orchestrator is already running
            ReservationFailedError: Tokens could not be reserved (nothing spent)
            GenerationAborted: A unit failed and the cost was refunded
        """
        prompt = _validate(user_id, request.prompt)
        if self.is_generating:
            raise GenerationInProgressError()

        self.is_generating = True
        try:
            return await self._run(user_id, prompt, list(request.items))
        finally:
            self.state = BatchState.IDLE
            self.is_generating = False

    async def _run(self, user_id: str, prompt: str, items: List[SourceItem]) -> BatchResult:
        # Fixed for the whole request, even if later units fail
        cost = calculate_batch_cost(len(items))

        self.state = BatchState.RESERVING
        await self._reserve(user_id, cost)

        # Text-to-image is a single unit without a reference image
        units: List[Optional[SourceItem]] = list(items) or [None]
        self.progress = ProgressCounter(completed=0, total=len(units))
        await self._notify_progress()

        self.state = BatchState.RUNNING
        artifacts: List[Artifact] = []
        try:
            for index, item in enumerate(units, start=1):
                name = item.name if item is not None else "text prompt"
                logger.info(f"Batch unit {index}/{len(units)} ({name}) for user {user_id}")

                artifact = await self._generate_one(user_id, prompt, item)
                artifacts.insert(0, artifact)

                self.progress.completed += 1
                await self._notify_progress()
        except Exception as e:
            self.state = BatchState.REFUNDING
            raise await self._abort(user_id, cost, e, completed=len(artifacts)) from e

        self.state = BatchState.SUCCESS
        logger.info(f"Batch of {len(units)} completed for user {user_id}, cost {cost}")
        return BatchResult(cost=cost, artifacts=artifacts)

    async def _notify_progress(self) -> None:
        if self.on_progress is None:
            return
        try:
            await self.on_progress(ProgressCounter(self.progress.completed, self.progress.total))
        except Exception as e:
            logger.error(f"Progress observer failed: {e}")


class EditOrchestrator(_MeteredWorkflow):
    """Creates a new version of a published gallery image for a fixed cost."""

    async def run(self, user_id: Optional[str], source_url: str, prompt: str) -> Artifact:
        """
        Edit one image.

        Args:
            user_id: Signed-in user
            source_url: Public URL of the image being edited
            prompt: Description of the change

        Raises:
            NoActiveIdentityError, InvalidRequestError, ReservationFailedError,
            GenerationAborted
        """
        prompt = _validate(user_id, prompt)
        cost = calculate_edit_cost()

        await self._reserve(user_id, cost)

        item = SourceItem(name="image being edited", url=source_url)
        try:
            artifact = await self._generate_one(user_id, prompt, item)
        except Exception as e:
            raise await self._abort(user_id, cost, e) from e

        logger.info(f"Edit completed for user {user_id}: {artifact.id}")
        return artifact
