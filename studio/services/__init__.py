# Business logic services

from studio.services.balance import BalanceLedger
from studio.services.errors import (
    StudioError,
    NoActiveIdentityError,
    InvalidRequestError,
    GenerationInProgressError,
    ReservationFailedError,
    SourceUnavailableError,
    ContentRejectedError,
    GenerationFailedError,
    StorageError,
    MetadataError,
    GenerationAborted,
)
from studio.services.generation import (
    BatchGenerationOrchestrator,
    BatchResult,
    EditOrchestrator,
    GenerationRequest,
    ProgressCounter,
)
from studio.services.image_provider import ImageGenerator, OpenAIImageProvider
from studio.services.image_source import EncodedImage, ImageSourceResolver, SourceItem
from studio.services.persister import Artifact, ArtifactPersister
from studio.services.pricing import calculate_batch_cost, calculate_edit_cost
from studio.services.storage import BlobStore, SupabaseBlobStore

__all__ = [
    "BalanceLedger",
    "StudioError",
    "NoActiveIdentityError",
    "InvalidRequestError",
    "GenerationInProgressError",
    "ReservationFailedError",
    "SourceUnavailableError",
    "ContentRejectedError",
    "GenerationFailedError",
    "StorageError",
    "MetadataError",
    "GenerationAborted",
    "BatchGenerationOrchestrator",
    "BatchResult",
    "EditOrchestrator",
    "GenerationRequest",
    "ProgressCounter",
    "ImageGenerator",
    "OpenAIImageProvider",
    "EncodedImage",
    "ImageSourceResolver",
    "SourceItem",
    "Artifact",
    "ArtifactPersister",
    "calculate_batch_cost",
    "calculate_edit_cost",
    "BlobStore",
    "SupabaseBlobStore",
]
