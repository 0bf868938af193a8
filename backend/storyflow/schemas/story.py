"""Pydantic schemas for story analysis and script structured output.

These schemas constrain LLM output via response_schema and double as the
validated payload the orchestrator persists.
"""

from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, Field


def _coerce_to_str(v: Any) -> str:
    """Coerce list/non-str values to comma-separated string.

    Some LLM providers (e.g. Ollama) return arrays for fields declared as
    string in the JSON schema.  This validator normalises them so Pydantic
    validation succeeds regardless of provider quirks.
    """
    if isinstance(v, list):
        return ", ".join(str(item) for item in v)
    return v


def _coerce_to_list(v: Any) -> list:
    """Accept a comma-separated string where a list of strings is expected."""
    if isinstance(v, str):
        return [item.strip() for item in v.split(",") if item.strip()]
    return v


CoercedStr = Annotated[str, BeforeValidator(_coerce_to_str)]
CoercedList = Annotated[list[str], BeforeValidator(_coerce_to_list)]


class StoryAnalysisOutput(BaseModel):
    """Core concept of the story with the elements the script must carry."""

    concept: CoercedStr = Field(
        description="One or two sentences capturing the story the video will tell"
    )
    themes: CoercedList = Field(
        description="2-5 themes in order of importance"
    )
    characters: CoercedList = Field(
        description="Characters appearing in the story, main character first"
    )
    mood: CoercedStr = Field(
        description="Overall emotional tone (e.g., 'warm and hopeful', 'tense')"
    )


class ScriptSceneSchema(BaseModel):
    """Timed narration segment."""

    order: int = Field(description="Sequential scene number starting from 1")
    narration: str = Field(description="Voice-over text spoken during this scene")
    start_time: float = Field(ge=0, description="Scene start in seconds")
    end_time: float = Field(ge=0, description="Scene end in seconds")
    visual_description: CoercedStr = Field(
        default="",
        description="What the viewer sees while the narration plays",
    )


class ScriptOutput(BaseModel):
    """Complete narration script split into timed scenes."""

    script: str = Field(description="Full narration text")
    scenes: list[ScriptSceneSchema] = Field(
        description="Scenes in order; end_time of the last scene equals the target duration"
    )
    word_count: int = Field(ge=0, description="Number of words in the narration")
    estimated_duration: float = Field(ge=0, description="Estimated spoken length in seconds")
