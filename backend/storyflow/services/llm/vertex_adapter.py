"""Vertex AI adapter for the LLM abstraction layer.

Wraps the google-genai client with location-aware routing and structured
JSON output. Retries with tenacity.
"""

import logging
from typing import Optional, Type

from google.genai import types as genai_types
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from storyflow.services.llm.base import LLMAdapter, M
from storyflow.services.vertex_client import get_vertex_client, location_for_model

logger = logging.getLogger(__name__)


class VertexAIAdapter(LLMAdapter):
    """LLM adapter backed by Google Vertex AI (google-genai SDK)."""

    def __init__(self, model_id: str) -> None:
        self.model_id = model_id

    async def generate_text(
        self,
        prompt: str,
        schema: Type[M],
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
        max_retries: int = 3,
    ) -> M:
        config = genai_types.GenerateContentConfig(
            temperature=temperature,
            response_mime_type="application/json",
            response_schema=schema,
            system_instruction=system_prompt or None,
        )

        @retry(
            stop=stop_after_attempt(max_retries),
            wait=wait_exponential(multiplier=1, min=2, max=30),
            retry=retry_if_exception_type(Exception),
            reraise=True,
        )
        async def _call() -> M:
            client = get_vertex_client(location=location_for_model(self.model_id))
            response = await client.aio.models.generate_content(
                model=self.model_id,
                contents=prompt,
                config=config,
            )
            return schema.model_validate_json(response.text)

        return await _call()
