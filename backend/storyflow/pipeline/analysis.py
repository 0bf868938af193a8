"""Story analysis: topic -> concept, themes, characters and mood."""

import logging
from typing import Optional

from storyflow.config import settings
from storyflow.pipeline.structured import generate_structured, language_name, text_call_cost
from storyflow.schemas.story import StoryAnalysisOutput
from storyflow.services.generators import AnalysisRequest, GenerationResult, StoryAnalyzer
from storyflow.services.llm import LLMAdapter, get_adapter

logger = logging.getLogger(__name__)

ANALYSIS_SYSTEM_PROMPT = """You are a creative story analyst for short-form video content.

Your role is to analyze story topics and develop compelling narrative concepts optimized for 30-90 second vertical videos.

REQUIREMENTS:
- The concept must be achievable within the specified duration
- Favor visual storytelling that works with still images and narration
- Respect the target language and its cultural context
- Keep the narrative simple and focused

OUTPUT:
- concept: a clear 2-3 sentence narrative arc with beginning, middle and end
- themes: 1-5 core themes
- characters: 0-5 characters or story elements, main character first
- mood: a single word or short phrase for the overall tone"""

DURATION_GUIDANCE = {
    30: "Very simple story - 1-2 characters, a single key moment",
    60: "Simple story - 2-3 characters, 2-3 scenes with a clear beginning, middle and end",
    90: "Richer story - 3-5 characters, 3-5 scenes with a fuller narrative arc",
}


def build_analysis_prompt(request: AnalysisRequest) -> str:
    language = language_name(request.language)
    lines = [
        f"Analyze this story topic for a {request.duration}-second video in {language}:",
        "",
        f'Topic: "{request.topic}"',
        "",
    ]
    if request.previous is not None:
        lines += [
            "Previous analysis:",
            request.previous.model_dump_json(indent=2),
            "",
        ]
    if request.feedback:
        lines += [f"User feedback (refine based on this): {request.feedback}", ""]
    guidance = DURATION_GUIDANCE.get(request.duration, "Keep the story proportional to the duration")
    lines += [
        "Provide a story concept with:",
        f"1. A clear narrative arc suitable for {request.duration} seconds",
        f"2. {guidance}",
        f"3. Themes that resonate in {language}-speaking culture",
        "4. A visual storytelling focus (works well with images and narration)",
    ]
    return "\n".join(lines)


class LLMStoryAnalyzer(StoryAnalyzer):
    """Story analyzer backed by any registered LLM adapter."""

    def __init__(self, adapter: Optional[LLMAdapter] = None):
        self.adapter = adapter or get_adapter(settings.models.story_llm)

    async def generate(self, request: AnalysisRequest) -> GenerationResult[StoryAnalysisOutput]:
        logger.info(f"Analyzing topic for {request.duration}s {request.language} video")
        output = await generate_structured(
            self.adapter,
            build_analysis_prompt(request),
            StoryAnalysisOutput,
            system_prompt=ANALYSIS_SYSTEM_PROMPT,
        )
        return GenerationResult(output, text_call_cost(self.adapter.model_id))
