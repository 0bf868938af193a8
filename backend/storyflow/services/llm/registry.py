"""Provider registry for LLM adapters.

Routes model IDs to an adapter by prefix: "ollama/" goes to Ollama,
everything else to Vertex AI.
"""

import logging

from storyflow.config import settings
from storyflow.services.llm.base import LLMAdapter

logger = logging.getLogger(__name__)


def _is_ollama_model(model_id: str) -> bool:
    return model_id.startswith("ollama/")


def get_adapter(model_id: str) -> LLMAdapter:
    """Return the adapter for a model ID.

    Ollama endpoint and API key come from settings.ollama, so a hosted
    Ollama deployment only needs STORYFLOW_OLLAMA__ENDPOINT and
    STORYFLOW_OLLAMA__API_KEY.
    """
    if _is_ollama_model(model_id):
        from storyflow.services.llm.ollama_adapter import OllamaAdapter

        logger.debug(
            "Routing %s to OllamaAdapter (base_url=%s, has_key=%s)",
            model_id,
            settings.ollama.endpoint,
            bool(settings.ollama.api_key),
        )
        return OllamaAdapter(
            model_id=model_id,
            base_url=settings.ollama.endpoint,
            api_key=settings.ollama.api_key,
        )

    from storyflow.services.llm.vertex_adapter import VertexAIAdapter

    logger.debug("Routing %s to VertexAIAdapter", model_id)
    return VertexAIAdapter(model_id=model_id)
