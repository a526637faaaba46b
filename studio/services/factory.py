"""Wires concrete collaborators into the generation workflows."""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from studio.config import config
from studio.db.repositories import ImageRepository
from studio.services.balance import BalanceLedger
from studio.services.generation import (
    BatchGenerationOrchestrator,
    EditOrchestrator,
    ProgressCallback,
)
from studio.services.image_provider import ImageGenerator, OpenAIImageProvider
from studio.services.image_source import ImageSourceResolver
from studio.services.persister import ArtifactPersister
from studio.services.storage import BlobStore, SupabaseBlobStore

_generator: Optional[ImageGenerator] = None
_generated_store: Optional[BlobStore] = None
_products_store: Optional[BlobStore] = None


def get_image_generator() -> ImageGenerator:
    """Get or create the shared image generator."""
    global _generator
    if _generator is None:
        if not config.openai_api_key:
            raise ValueError("OPENAI_API_KEY is not configured")
        _generator = OpenAIImageProvider(
            api_key=config.openai_api_key,
            model=config.image_model,
        )
    return _generator


def get_generated_store() -> BlobStore:
    """Bucket holding generated images."""
    global _generated_store
    if _generated_store is None:
        _generated_store = SupabaseBlobStore(config.generated_bucket)
    return _generated_store


def get_products_store() -> BlobStore:
    """Bucket holding uploaded products and logos."""
    global _products_store
    if _products_store is None:
        _products_store = SupabaseBlobStore(config.products_bucket)
    return _products_store


def build_batch_orchestrator(
    session: AsyncSession,
    on_progress: Optional[ProgressCallback] = None,
    generator: Optional[ImageGenerator] = None,
    blob_store: Optional[BlobStore] = None,
) -> BatchGenerationOrchestrator:
    return BatchGenerationOrchestrator(
        ledger=BalanceLedger(session),
        resolver=ImageSourceResolver(),
        generator=generator or get_image_generator(),
        persister=ArtifactPersister(blob_store or get_generated_store(), ImageRepository(session)),
        on_progress=on_progress,
    )


def build_edit_orchestrator(
    session: AsyncSession,
    generator: Optional[ImageGenerator] = None,
    blob_store: Optional[BlobStore] = None,
) -> EditOrchestrator:
    return EditOrchestrator(
        ledger=BalanceLedger(session),
        resolver=ImageSourceResolver(),
        generator=generator or get_image_generator(),
        persister=ArtifactPersister(blob_store or get_generated_store(), ImageRepository(session)),
    )
