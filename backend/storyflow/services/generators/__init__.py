"""Stage generator contracts.

Usage:
    from storyflow.services.generators import GeneratorSet, GenerationResult

    generators = GeneratorSet(analyzer=MyAnalyzer(), ...)
"""

from storyflow.services.generators.base import (
    AnalysisRequest,
    AssetGenerator,
    AssetRequest,
    GenerationResult,
    GeneratorSet,
    NarrationRequest,
    NarrationSynthesizer,
    RenderRequest,
    RenderScene,
    ScriptRequest,
    ScriptWriter,
    StoryAnalyzer,
    StoryboardArtist,
    StoryboardRequest,
    VideoRenderer,
)

__all__ = [
    "AnalysisRequest",
    "AssetGenerator",
    "AssetRequest",
    "GenerationResult",
    "GeneratorSet",
    "NarrationRequest",
    "NarrationSynthesizer",
    "RenderRequest",
    "RenderScene",
    "ScriptRequest",
    "ScriptWriter",
    "StoryAnalyzer",
    "StoryboardArtist",
    "StoryboardRequest",
    "VideoRenderer",
]
