"""Concrete stage generators.

Usage:
    from storyflow.pipeline import build_generators

    orchestrator = StageOrchestrator(async_session, build_generators())
"""

from storyflow.config import settings
from storyflow.pipeline.analysis import LLMStoryAnalyzer
from storyflow.pipeline.assets import GeminiAssetGenerator
from storyflow.pipeline.narration import GeminiNarrator
from storyflow.pipeline.script import LLMScriptWriter
from storyflow.pipeline.stitcher import FfmpegRenderer
from storyflow.pipeline.storyboard import LLMStoryboardArtist
from storyflow.services.file_manager import FileManager
from storyflow.services.generators import GeneratorSet
from storyflow.services.llm import get_adapter


def build_generators(story_model: str | None = None) -> GeneratorSet:
    """Wire every stage to its default generator.

    Clients are created lazily, so this needs no credentials until a
    stage actually runs.
    """
    adapter = get_adapter(story_model or settings.models.story_llm)
    files = FileManager()
    return GeneratorSet(
        analyzer=LLMStoryAnalyzer(adapter),
        script_writer=LLMScriptWriter(adapter),
        storyboard_artist=LLMStoryboardArtist(adapter),
        asset_generator=GeminiAssetGenerator(files),
        narrator=GeminiNarrator(files),
        renderer=FfmpegRenderer(files),
    )


__all__ = [
    "FfmpegRenderer",
    "GeminiAssetGenerator",
    "GeminiNarrator",
    "LLMScriptWriter",
    "LLMStoryAnalyzer",
    "LLMStoryboardArtist",
    "build_generators",
]
