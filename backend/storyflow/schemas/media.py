"""Result payloads returned by the asset, narration and render generators."""

from typing import Optional

from pydantic import BaseModel, Field


class AssetOutput(BaseModel):
    """Location of a generated scene visual."""

    url: str


class NarrationOutput(BaseModel):
    """Synthesized voice-over track."""

    audio_url: str
    duration: float = Field(ge=0)


class RenderOutput(BaseModel):
    """Assembled video file and its properties."""

    url: str
    subtitles_url: Optional[str] = None
    duration: float = Field(ge=0)
    resolution: str
    file_size: int = Field(ge=0)
    format: str = "mp4"
