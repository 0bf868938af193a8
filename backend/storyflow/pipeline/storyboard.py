"""Storyboard generation: script scenes -> shots with image prompts.

Every image prompt is forced to vertical framing since the renderer
outputs 9:16 video.
"""

import logging
import re
from typing import Optional

from storyflow.config import settings
from storyflow.pipeline.structured import generate_structured, language_name, text_call_cost
from storyflow.schemas.storyboard import StoryboardOutput
from storyflow.services.generators import GenerationResult, StoryboardArtist, StoryboardRequest
from storyflow.services.llm import LLMAdapter, get_adapter

logger = logging.getLogger(__name__)

STORYBOARD_SYSTEM_PROMPT = """You are a professional storyboard artist and cinematographer for short-form vertical video.

Turn the script scenes into a visual storyboard optimized for AI image generation.

REQUIREMENTS:
- One storyboard scene per script scene, same order numbers
- Self-contained image prompts (200-300 characters): subject, action, setting, mood, lighting, art style
- Compose every shot for VERTICAL 9:16 framing; never wide, panoramic or landscape
- Keep one art style and color palette across all scenes
- No text or lettering in images
- Family-friendly imagery only; use symbolic imagery for sensitive topics

Also provide a storyboard summary with title, description, visual_style and color_palette."""

VERTICAL_SUFFIX = ", vertical portrait orientation, 9:16 aspect ratio, portrait framing"

_HORIZONTAL_TERMS = re.compile(
    r",?\s*\b(wide shot|wide angle|panoramic|landscape|horizontal|widescreen)\b",
    re.IGNORECASE,
)


def enforce_vertical(prompt: str) -> str:
    """Strip horizontal framing terms and append the vertical suffix once."""
    cleaned = _HORIZONTAL_TERMS.sub("", prompt).strip()
    if "vertical portrait orientation" not in cleaned:
        cleaned += VERTICAL_SUFFIX
    return cleaned


def build_storyboard_prompt(request: StoryboardRequest) -> str:
    lines = [
        f"Create a visual storyboard for a {request.duration}-second video "
        f"narrated in {language_name(request.language)}.",
        "",
        f"SCRIPT:\n{request.script}",
        "",
        f"SCENES ({len(request.scenes)} total):",
    ]
    for scene in request.scenes:
        lines += [
            f"Scene {scene.order} ({scene.start_time:g}s - {scene.end_time:g}s):",
            f"  Narration: {scene.narration}",
            f"  Visual: {scene.visual_description}",
        ]
    return "\n".join(lines)


class LLMStoryboardArtist(StoryboardArtist):
    """Storyboard artist backed by any registered LLM adapter."""

    def __init__(self, adapter: Optional[LLMAdapter] = None):
        self.adapter = adapter or get_adapter(settings.models.story_llm)

    async def generate(self, request: StoryboardRequest) -> GenerationResult[StoryboardOutput]:
        logger.info(f"Creating storyboard with {len(request.scenes)} scenes")
        output = await generate_structured(
            self.adapter,
            build_storyboard_prompt(request),
            StoryboardOutput,
            system_prompt=STORYBOARD_SYSTEM_PROMPT,
        )
        if not output.scenes:
            raise ValueError("Storyboard has no scenes")

        timing = {s.order: s.end_time - s.start_time for s in request.scenes}
        for scene in output.scenes:
            scene.image_prompt = enforce_vertical(scene.image_prompt)
            if not scene.duration and scene.order in timing:
                scene.duration = timing[scene.order]
        return GenerationResult(output, text_call_cost(self.adapter.model_id))
