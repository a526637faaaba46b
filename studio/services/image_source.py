"""Turns selected products and gallery images into encoded image payloads."""

import base64
import logging
from dataclasses import dataclass, asdict
from typing import Optional

import httpx

from studio.services.errors import SourceUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EncodedImage:
    """Base64 image data plus its MIME type."""

    image_base64: str
    mime_type: str

    def to_bytes(self) -> bytes:
        return base64.b64decode(self.image_base64)


@dataclass(frozen=True)
class SourceItem:
    """A product, logo or gallery image selected as generation input.

    Either the in-memory payload (``image_base64`` + ``mime_type``) or a
    ``url`` must be present.
    """

    name: str
    image_base64: Optional[str] = None
    mime_type: Optional[str] = None
    url: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "SourceItem":
        return cls(
            name=data["name"],
            image_base64=data.get("image_base64"),
            mime_type=data.get("mime_type"),
            url=data.get("url"),
        )


class ImageSourceResolver:
    """Resolves a SourceItem into an EncodedImage.

    A single fetch is attempted for URL-backed items; results are not cached.
    """

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None):
        self._http_client = http_client

    async def resolve(self, item: SourceItem) -> EncodedImage:
        if item.image_base64 and item.mime_type:
            return EncodedImage(image_base64=item.image_base64, mime_type=item.mime_type)

        if item.url:
            return await self._fetch(item)

        raise SourceUnavailableError(item.name, reason="no image data or URL")

    async def _fetch(self, item: SourceItem) -> EncodedImage:
        logger.info(f"Fetching source image '{item.name}' from {item.url}")
        try:
            if self._http_client is not None:
                response = await self._http_client.get(item.url)
            else:
                async with httpx.AsyncClient(follow_redirects=True) as http_client:
                    response = await http_client.get(item.url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Failed to fetch source image '{item.name}': {e}")
            raise SourceUnavailableError(item.name, reason=str(e)) from e

        mime_type = response.headers.get("content-type", "application/octet-stream")
        # Drop parameters such as "; charset=binary"
        mime_type = mime_type.split(";", 1)[0].strip()

        return EncodedImage(
            image_base64=base64.b64encode(response.content).decode("ascii"),
            mime_type=mime_type,
        )
