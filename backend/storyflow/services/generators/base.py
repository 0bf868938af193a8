"""Abstract contracts for the external stage generators.

The orchestrator depends on generators only through these narrow
request/response shapes. Every generator is async and returns a
GenerationResult carrying the artifact and the USD cost of the call.
Failures are signalled by raising; the orchestrator wraps them.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, Field

from storyflow.schemas.media import AssetOutput, NarrationOutput, RenderOutput
from storyflow.schemas.story import ScriptOutput, ScriptSceneSchema, StoryAnalysisOutput
from storyflow.schemas.storyboard import StoryboardOutput

T = TypeVar("T")


@dataclass(frozen=True)
class GenerationResult(Generic[T]):
    """Artifact produced by a generator call and what it cost."""

    artifact: T
    cost: float


class AnalysisRequest(BaseModel):
    topic: str
    language: str
    duration: int
    previous: Optional[StoryAnalysisOutput] = None
    feedback: Optional[str] = None


class ScriptRequest(BaseModel):
    concept: str
    themes: list[str]
    characters: list[str]
    mood: str
    language: str
    duration: int
    revision_notes: Optional[str] = None


class StoryboardRequest(BaseModel):
    script: str
    scenes: list[ScriptSceneSchema]
    language: str
    duration: int


class AssetRequest(BaseModel):
    project_id: uuid.UUID
    scene_order: int
    description: str
    image_prompt: str
    is_premium: bool = False


class NarrationRequest(BaseModel):
    project_id: uuid.UUID
    language: str
    text: str


class RenderScene(BaseModel):
    order: int
    narration: str
    start_time: float
    end_time: float
    asset_url: str
    transition: Optional[str] = None


class RenderRequest(BaseModel):
    project_id: uuid.UUID
    language: str
    duration: int
    scenes: list[RenderScene] = Field(default_factory=list)
    audio_url: Optional[str] = None


class StoryAnalyzer(ABC):
    @abstractmethod
    async def generate(self, request: AnalysisRequest) -> GenerationResult[StoryAnalysisOutput]:
        ...


class ScriptWriter(ABC):
    @abstractmethod
    async def generate(self, request: ScriptRequest) -> GenerationResult[ScriptOutput]:
        ...


class StoryboardArtist(ABC):
    @abstractmethod
    async def generate(self, request: StoryboardRequest) -> GenerationResult[StoryboardOutput]:
        ...


class AssetGenerator(ABC):
    @abstractmethod
    async def generate(self, request: AssetRequest) -> GenerationResult[AssetOutput]:
        ...


class NarrationSynthesizer(ABC):
    @abstractmethod
    async def generate(self, request: NarrationRequest) -> GenerationResult[NarrationOutput]:
        ...


class VideoRenderer(ABC):
    @abstractmethod
    async def generate(self, request: RenderRequest) -> GenerationResult[RenderOutput]:
        ...


@dataclass
class GeneratorSet:
    """Generators wired into an orchestrator.

    A stage whose generator is None is reported as not implemented.
    """

    analyzer: Optional[StoryAnalyzer] = None
    script_writer: Optional[ScriptWriter] = None
    storyboard_artist: Optional[StoryboardArtist] = None
    asset_generator: Optional[AssetGenerator] = None
    narrator: Optional[NarrationSynthesizer] = None
    renderer: Optional[VideoRenderer] = None
