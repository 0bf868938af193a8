"""LLM provider abstraction for the text stages.

Usage:
    from storyflow.services.llm import get_adapter

    adapter = get_adapter("gemini-2.5-flash")
    analysis = await adapter.generate_text(prompt, StoryAnalysisOutput)

    adapter = get_adapter("ollama/llama3.1")
"""

from storyflow.services.llm.base import LLMAdapter
from storyflow.services.llm.registry import get_adapter

__all__ = ["LLMAdapter", "get_adapter"]
