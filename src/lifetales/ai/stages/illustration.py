"""Visual stage: a soft illustration for the chapter."""

from __future__ import annotations

import io
import logging

from PIL import Image, UnidentifiedImageError

from lifetales.ai.client import AIClientError, GeminiClient
from lifetales.ai.prompts import VISUAL_GENERATION_PROMPT
from lifetales.ai.stages.base import IllustrationOmitted

logger = logging.getLogger(__name__)


def verify_image_bytes(data: bytes) -> str:
    """Check that ``data`` decodes as an image and return its format.

    Raises:
        IllustrationOmitted: If Pillow cannot identify the bytes.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
            return img.format or "unknown"
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        raise IllustrationOmitted("Returned image data is not decodable", original_error=e) from e


class GeminiIllustrator:
    """Generates an inline image with the image model and returns a data URL."""

    def __init__(self, client: GeminiClient) -> None:
        self._client = client

    async def illustrate(self, narrative: str, mood: str) -> str | None:
        """Return ``data:<mime>;base64,...`` or None if no image came back.

        Raises:
            IllustrationOmitted: On backend failure or undecodable image bytes.
        """
        _, prompt = VISUAL_GENERATION_PROMPT.render(narrative=narrative, mood=mood)

        try:
            image = await self._client.generate_image(prompt)
        except AIClientError as e:
            raise IllustrationOmitted(f"Image request failed: {e.message}", original_error=e) from e

        if image is None:
            return None

        fmt = verify_image_bytes(image.data)
        logger.debug(f"Illustration decoded as {fmt}, {len(image.data)} bytes")
        return image.to_data_url()
