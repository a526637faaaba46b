"""Stores generated images and records their metadata."""

import base64
import binascii
import logging
import uuid
from dataclasses import dataclass, asdict

from sqlalchemy.exc import SQLAlchemyError

from studio.db.repositories import ImageRepository
from studio.services.errors import MetadataError, StorageError
from studio.services.storage import BlobStore

logger = logging.getLogger(__name__)


MIME_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
}


@dataclass(frozen=True)
class Artifact:
    """A persisted generated image."""

    id: str
    owner_id: str
    prompt: str
    storage_path: str
    public_url: str

    def to_dict(self) -> dict:
        return asdict(self)


def build_storage_path(owner_id: str, mime_type: str) -> str:
    """Return a fresh ``{owner}/{unique}.{ext}`` path for a generated image."""
    extension = MIME_EXTENSIONS.get(mime_type.lower(), "png")
    return f"{owner_id}/{uuid.uuid4().hex}.{extension}"


class ArtifactPersister:
    """Uploads generated bytes and inserts the gallery row."""

    def __init__(self, blob_store: BlobStore, images: ImageRepository):
        self.blob_store = blob_store
        self.images = images

    async def persist(
        self,
        image_base64: str,
        mime_type: str,
        prompt: str,
        owner_id: str,
    ) -> Artifact:
        """
        Store one generated image.

        Raises:
            StorageError: The payload could not be decoded or uploaded
            MetadataError: The row could not be inserted (the upload is removed)
        """
        try:
            data = base64.b64decode(image_base64, validate=True)
        except binascii.Error as e:
            raise StorageError(f"invalid base64 payload: {e}") from e

        path = build_storage_path(owner_id, mime_type)

        try:
            await self.blob_store.upload(path, data, mime_type)
        except Exception as e:
            logger.error(f"Upload of {path} failed: {e}")
            raise StorageError(str(e)) from e

        try:
            row = await self.images.create(user_id=owner_id, prompt=prompt, image_path=path)
        except SQLAlchemyError as e:
            await self.images.session.rollback()
            logger.error(f"Metadata insert for {path} failed: {e}")
            await self._discard_upload(path)
            raise MetadataError(str(e)) from e

        public_url = await self.blob_store.get_public_url(path)
        logger.info(f"Persisted generated image {row.id} at {path}")

        return Artifact(
            id=row.id,
            owner_id=owner_id,
            prompt=prompt,
            storage_path=path,
            public_url=public_url,
        )

    async def _discard_upload(self, path: str) -> None:
        try:
            await self.blob_store.remove([path])
        except Exception as e:
            logger.error(f"Could not remove orphaned upload {path}: {e}")
