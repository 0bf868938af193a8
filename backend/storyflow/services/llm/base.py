"""Abstract base class for LLM provider adapters."""

from abc import ABC, abstractmethod
from typing import Optional, Type, TypeVar

from pydantic import BaseModel

M = TypeVar("M", bound=BaseModel)


class LLMAdapter(ABC):
    """Structured text generation against a single model.

    Implementations return an instance of the caller-supplied schema and
    raise once their own retries are exhausted.
    """

    model_id: str

    @abstractmethod
    async def generate_text(
        self,
        prompt: str,
        schema: Type[M],
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
        max_retries: int = 3,
    ) -> M:
        """Generate structured output from a prompt.

        Args:
            prompt: The user prompt to send to the model.
            schema: Pydantic model class defining the expected output structure.
            temperature: Sampling temperature (0.0-1.0). Lower = more deterministic.
            system_prompt: Optional system/instruction prompt.
            max_retries: Maximum number of attempts before giving up.

        Returns:
            Validated instance of the supplied schema class.
        """
        ...
