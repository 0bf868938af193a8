"""Ollama adapter for the LLM abstraction layer.

Uses format='json' plus a schema description in the system prompt rather
than format=<schema dict>; hosted Ollama does not reliably enforce full
JSON schemas.
"""

import json
import logging
from typing import Optional, Type

from ollama import AsyncClient
from pydantic import BaseModel
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from storyflow.services.llm.base import LLMAdapter, M

logger = logging.getLogger(__name__)


def _schema_instruction(schema: Type[BaseModel]) -> str:
    """Compact instruction describing the required JSON object."""
    schema_json = json.dumps(schema.model_json_schema(), indent=2)
    return (
        "\n\nIMPORTANT: You MUST respond with a single JSON object (no markdown, "
        "no commentary, no code fences). The JSON must conform to this schema:\n"
        f"```json\n{schema_json}\n```\n"
        "All string fields must be strings (not arrays). Return ONLY the JSON object."
    )


def strip_code_fence(raw: str) -> str:
    """Remove a ```json ... ``` wrapper some models add anyway."""
    stripped = raw.strip()
    if not stripped.startswith("```"):
        return raw
    newline = stripped.find("\n")
    stripped = stripped[newline + 1:] if newline != -1 else stripped[3:]
    if stripped.endswith("```"):
        stripped = stripped[:-3].rstrip()
    return stripped


class OllamaAdapter(LLMAdapter):
    """LLM adapter backed by a local or hosted Ollama instance.

    Strips the "ollama/" prefix before calling the library and always passes
    stream=False.
    """

    def __init__(
        self,
        model_id: str,
        base_url: str = "http://localhost:11434",
        api_key: Optional[str] = None,
    ) -> None:
        self.model_id = model_id
        self._ollama_model = model_id.removeprefix("ollama/")
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = AsyncClient(host=base_url, headers=headers)

    async def generate_text(
        self,
        prompt: str,
        schema: Type[M],
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
        max_retries: int = 3,
    ) -> M:
        schema_suffix = _schema_instruction(schema)
        system = (system_prompt + schema_suffix) if system_prompt else schema_suffix.lstrip()
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ]

        @retry(
            stop=stop_after_attempt(max_retries),
            wait=wait_exponential(multiplier=1, min=2, max=30),
            retry=retry_if_exception_type(Exception),
            reraise=True,
        )
        async def _call() -> M:
            response = await self._client.chat(
                model=self._ollama_model,
                messages=messages,
                format="json",
                options={"temperature": temperature},
                stream=False,
            )
            return schema.model_validate_json(strip_code_fence(response.message.content))

        return await _call()
