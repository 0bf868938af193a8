"""Pydantic schemas for storyboard structured output.

These schemas define the expected structure for LLM-generated storyboards,
enabling structured output constraints via response_schema parameter.
"""

from pydantic import BaseModel, Field

from storyflow.schemas.story import CoercedStr


class StoryboardSummary(BaseModel):
    """Cross-scene visual consistency guide."""

    title: str = Field(description="Working title of the video")
    description: str = Field(description="One-paragraph summary of the visual treatment")
    visual_style: CoercedStr = Field(
        description="Overall aesthetic approach (e.g., 'watercolor illustration', 'cinematic realism')"
    )
    color_palette: CoercedStr = Field(
        description="Dominant colors and lighting mood (e.g., 'warm golden tones')"
    )


class StoryboardSceneSchema(BaseModel):
    """Individual shot with the image prompt used for asset generation."""

    order: int = Field(description="Sequential scene number matching the script scene")
    title: str = Field(description="Short scene title")
    description: str = Field(description="What happens in this shot")
    image_prompt: str = Field(
        description="Self-contained image prompt including subject, setting, style cues and color palette"
    )
    camera_angle: CoercedStr = Field(description="Camera angle (e.g., 'wide shot', 'close-up')")
    composition: CoercedStr = Field(default="", description="Framing and subject placement")
    lighting: CoercedStr = Field(default="", description="Lighting setup")
    transition: CoercedStr = Field(description="Transition into the next scene (e.g., 'cut', 'fade')")
    duration: float = Field(default=0.0, ge=0, description="Shot length in seconds")


class StoryboardOutput(BaseModel):
    """Complete storyboard output from structured generation."""

    storyboard: StoryboardSummary = Field(
        description="Visual consistency guide applied across all scenes"
    )
    scenes: list[StoryboardSceneSchema] = Field(
        description="One scene per script scene, in order"
    )
