"""Scene image generation with Gemini image models.

Standard projects use the fast image model, premium projects the pro
model. Transient Vertex errors are retried with exponential backoff.
"""

import logging
from typing import Optional

from google.genai import types
from google.genai.errors import ClientError, ServerError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from storyflow.config import settings
from storyflow.schemas.media import AssetOutput
from storyflow.services.file_manager import FileManager
from storyflow.services.generators import AssetGenerator, AssetRequest, GenerationResult
from storyflow.services.vertex_client import get_vertex_client, location_for_model

logger = logging.getLogger(__name__)


def _is_retriable(exc: BaseException) -> bool:
    """Return True only for transient errors worth retrying."""
    if isinstance(exc, ServerError):
        return True
    if isinstance(exc, ClientError):
        return getattr(exc, "code", 0) == 429
    if isinstance(exc, (ConnectionError, TimeoutError, OSError)):
        return True
    return False


@retry(
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=2, min=4, max=60) + wait_random(0, 5),
    retry=retry_if_exception(_is_retriable),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def _generate_image_from_text(client, prompt: str, aspect_ratio: str, image_model: str) -> bytes:
    """Generate one image and return its bytes.

    Raises:
        ValueError: If the response carries no image (e.g. safety filtered)
    """
    response = await client.aio.models.generate_content(
        model=image_model,
        contents=[prompt],
        config=types.GenerateContentConfig(
            response_modalities=["IMAGE"],
            image_config=types.ImageConfig(aspect_ratio=aspect_ratio),
        ),
    )

    for candidate in response.candidates or []:
        for part in (candidate.content.parts if candidate.content else None) or []:
            if part.inline_data and part.inline_data.data:
                return part.inline_data.data

    raise ValueError("No image generated in response")


class GeminiAssetGenerator(AssetGenerator):
    """Writes each scene image under the project's assets/ directory."""

    def __init__(self, file_manager: Optional[FileManager] = None):
        self.file_manager = file_manager or FileManager()

    async def generate(self, request: AssetRequest) -> GenerationResult[AssetOutput]:
        if request.is_premium:
            model, price = settings.models.image_premium, settings.pricing.image_premium
        else:
            model, price = settings.models.image_standard, settings.pricing.image_standard

        logger.info(f"Project {request.project_id}: generating scene {request.scene_order} image with {model}")
        client = get_vertex_client(location=location_for_model(model))
        image = await _generate_image_from_text(
            client, request.image_prompt, settings.pipeline.image_aspect_ratio, model
        )
        path = self.file_manager.save_asset(request.project_id, request.scene_order, image)
        return GenerationResult(AssetOutput(url=str(path)), price)
