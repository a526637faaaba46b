"""Image provider service for AI image generation."""

import base64
import binascii
import logging
from abc import ABC, abstractmethod
from typing import Optional

import openai
from openai import AsyncOpenAI

from studio.services.errors import ContentRejectedError, GenerationFailedError
from studio.services.image_source import EncodedImage
from studio.utils.helpers import truncate_text

logger = logging.getLogger(__name__)


PRODUCT_PROMPT_TEMPLATE = (
    "Use the provided image as the main product. Place this exact product into "
    "a new scene according to the following description. The result must be a "
    "realistic, natural image that does not look like a composite. Do not change "
    "the product's appearance, packaging or text. The description is: {prompt}"
)

# Error codes the Images API uses when its safety system declines a request
CONTENT_REJECTION_CODES = frozenset({
    "moderation_blocked",
    "content_policy_violation",
})

DEFAULT_MODEL = "gpt-image-1"


def build_product_prompt(prompt: str) -> str:
    """Wrap the user's scene description with the product-preservation instruction."""
    return PRODUCT_PROMPT_TEMPLATE.format(prompt=prompt)


class ImageGenerator(ABC):
    """Abstract base class for image generation providers."""

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        reference: Optional[EncodedImage] = None,
    ) -> EncodedImage:
        """
        Send exactly one generation request.

        Raises:
            ContentRejectedError: The provider's safety policy declined the request
            GenerationFailedError: No usable image, or the provider could not be reached
        """


class OpenAIImageProvider(ImageGenerator):
    """OpenAI Images API implementation of ImageGenerator."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        # The SDK retries failed requests by default; generation is not
        # idempotent, so a failed request is never repeated here.
        self.client = client or AsyncOpenAI(api_key=api_key, max_retries=0)

    async def generate(
        self,
        prompt: str,
        reference: Optional[EncodedImage] = None,
    ) -> EncodedImage:
        try:
            if reference is None:
                logger.info(f"Generating image with model {self.model}, prompt: {truncate_text(prompt)}")
                response = await self.client.images.generate(
                    model=self.model,
                    prompt=prompt,
                    n=1,
                )
            else:
                logger.info(f"Editing reference image with model {self.model}, prompt: {truncate_text(prompt)}")
                extension = reference.mime_type.rsplit("/", 1)[-1]
                response = await self.client.images.edit(
                    model=self.model,
                    image=(f"reference.{extension}", reference.to_bytes(), reference.mime_type),
                    prompt=build_product_prompt(prompt),
                    n=1,
                )
        except openai.APIStatusError as e:
            if e.code in CONTENT_REJECTION_CODES:
                logger.warning(f"Image request rejected by safety policy: {e.message}")
                raise ContentRejectedError(e.message) from e
            logger.error(f"Image request failed with status {e.status_code}: {e.message}")
            raise GenerationFailedError(GenerationFailedError.TRANSPORT, str(e)) from e
        except (openai.APIError, binascii.Error) as e:
            logger.error(f"Image request failed: {e}")
            raise GenerationFailedError(GenerationFailedError.TRANSPORT, str(e)) from e

        return self._extract_image(response)

    @staticmethod
    def _extract_image(response) -> EncodedImage:
        image_data = response.data[0] if response.data else None
        b64_json = getattr(image_data, "b64_json", None)

        if not b64_json:
            logger.error(f"OpenAI returned no image data: {image_data}")
            raise GenerationFailedError(GenerationFailedError.NO_OUTPUT)

        try:
            base64.b64decode(b64_json, validate=True)
        except binascii.Error as e:
            logger.error(f"OpenAI returned malformed image data: {e}")
            raise GenerationFailedError(GenerationFailedError.TRANSPORT, str(e)) from e

        output_format = getattr(response, "output_format", None) or "png"
        logger.info("Image generated successfully (base64)")
        return EncodedImage(image_base64=b64_json, mime_type=f"image/{output_format}")
