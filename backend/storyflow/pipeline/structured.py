"""Structured LLM calls shared by the text stages.

Each attempt lowers the sampling temperature so a model that keeps
returning malformed JSON converges on the schema.
"""

import json
import logging
from typing import Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt

from storyflow.config import settings
from storyflow.services.llm import LLMAdapter

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

BASE_TEMPERATURE = 0.7
TEMPERATURE_STEP = 0.15

LANGUAGE_NAMES = {
    "zh": "Chinese (Mandarin)",
    "en": "English",
    "fr": "French",
}


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, code)


def text_call_cost(model_id: str) -> float:
    """Flat per-call USD price for a text model."""
    return settings.pricing.text_per_call.get(model_id, settings.pricing.default_text_per_call)


async def generate_structured(
    adapter: LLMAdapter,
    prompt: str,
    schema: Type[M],
    system_prompt: Optional[str] = None,
    max_attempts: Optional[int] = None,
) -> M:
    """Call the adapter until its output validates against schema.

    Transport errors are retried inside the adapter; this loop only handles
    JSON and schema failures.
    """
    attempts = max_attempts or settings.pipeline.retry_max_attempts
    attempt = 0

    @retry(
        stop=stop_after_attempt(attempts),
        retry=retry_if_exception_type((json.JSONDecodeError, ValidationError)),
        reraise=True,
    )
    async def generate_with_retry() -> M:
        nonlocal attempt
        temperature = max(0.0, BASE_TEMPERATURE - attempt * TEMPERATURE_STEP)
        attempt += 1
        if attempt > 1:
            logger.warning(f"{schema.__name__}: retrying at temperature {temperature:.2f}")
        # max_retries=1 so the temperature reduction here drives the retries
        return await adapter.generate_text(
            prompt=prompt,
            schema=schema,
            temperature=temperature,
            system_prompt=system_prompt,
            max_retries=1,
        )

    return await generate_with_retry()
