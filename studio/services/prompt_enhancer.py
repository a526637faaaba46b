"""Rewrites rough scene descriptions into detailed product-photo prompts."""

import logging
from typing import Optional

import openai
from openai import AsyncOpenAI

from studio.services.errors import StudioError

logger = logging.getLogger(__name__)


SYSTEM_INSTRUCTION = """You are a premium product-photography prompt writer.

General rules:
- Always aim for very high quality, ultra-detailed images.
- For photos, simulate a professional camera (Canon 5D Mark IV, 50mm f/1.2, HDRI 10x).
- For 3D or illustration, simulate a cinematic studio render.
- Avoid distortions and unreal elements when realism is intended.
- Lighting is always natural or premium studio lighting.
- The background adapts to the chosen style (clean, candy color, rustic, ...).

Visual styles: cinematic (dramatic shadows, contrast), candy color (pastel
backgrounds), minimalist (white or grey, fully clean), rustic (wood, stone,
warm light), 3D or drawing (detailed render, cinema lighting).

Angles: flat lay for food and small products, close-up for textures, 45 degree
catalog shot, infinite studio background for mockups and e-commerce.

Extras: soft shadows, realistic textures, centered product, professional
mockup ready for advertising.

Rewrite the user's prompt following these rules. Return a single continuous
block of text without line breaks, quotes, bullets or parentheses. Return only
the final enhanced prompt."""


class PromptEnhancer:
    """Chat-completions backed prompt rewriter."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        self.client = client or AsyncOpenAI(api_key=api_key)

    async def enhance(self, prompt: str) -> str:
        prompt = (prompt or "").strip()
        if not prompt:
            raise StudioError("Please enter a prompt to enhance.")

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_INSTRUCTION},
                    {"role": "user", "content": prompt},
                ],
            )
        except openai.APIError as e:
            logger.error(f"Prompt enhancement failed: {e}")
            raise StudioError("Could not enhance the prompt with AI.") from e

        text = (response.choices[0].message.content or "").strip() if response.choices else ""
        if not text:
            raise StudioError("Could not enhance the prompt with AI.")
        return text
