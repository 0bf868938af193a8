"""Script writing: story analysis -> timed narration scenes."""

import logging
from typing import Optional

from storyflow.config import settings
from storyflow.pipeline.structured import generate_structured, language_name, text_call_cost
from storyflow.schemas.story import ScriptOutput
from storyflow.services.generators import GenerationResult, ScriptRequest, ScriptWriter
from storyflow.services.llm import LLMAdapter, get_adapter

logger = logging.getLogger(__name__)

# Roughly 150 spoken words per minute
WORDS_PER_SECOND = 2.5

SCRIPT_SYSTEM_PROMPT = """You are an expert script writer for short-form video content.

Write concise voice-over scripts for 30-90 second vertical videos.

REQUIREMENTS:
- Match the target duration (word count based, ~150 words per minute)
- Write the narration in the TARGET LANGUAGE
- Write visual descriptions in English for the production team
- Split the script into scenes with precise, non-overlapping timing
- Scenes cover the full duration without gaps

NARRATION STYLE:
- Voice-over, present tense, short sentences that are easy to voice
- Build an arc: setup, development, resolution"""

SCENE_COUNTS = {30: "2-3", 60: "3-5", 90: "5-7"}


def target_word_count(duration: int) -> str:
    low = int(duration * WORDS_PER_SECOND * 0.93)
    high = int(duration * WORDS_PER_SECOND * 1.07)
    return f"{low}-{high}"


def build_script_prompt(request: ScriptRequest) -> str:
    language = language_name(request.language)
    lines = [
        f"Write a {request.duration}-second video script in {language}.",
        "",
        f"STORY CONCEPT:\n{request.concept}",
        "",
        f"THEMES: {', '.join(request.themes)}",
    ]
    if request.characters:
        lines.append(f"CHARACTERS: {', '.join(request.characters)}")
    lines += [
        f"MOOD: {request.mood}",
        "",
        f"TARGET WORD COUNT: {target_word_count(request.duration)} words",
        f"TARGET SCENES: {SCENE_COUNTS.get(request.duration, '3-5')} scenes",
        "",
    ]
    if request.revision_notes:
        lines += [
            "REVISION NOTES (the previous draft was rejected; address every point):",
            request.revision_notes,
            "",
        ]
    lines += [
        "Each scene needs: order, narration, start_time, end_time, visual_description.",
        f"The last scene must end at {request.duration} seconds.",
    ]
    return "\n".join(lines)


def normalize_script(output: ScriptOutput, duration: int) -> ScriptOutput:
    """Renumber scenes from 1 and fill in missing counts."""
    scenes = sorted(output.scenes, key=lambda s: (s.start_time, s.order))
    for index, scene in enumerate(scenes, start=1):
        scene.order = index
    word_count = output.word_count or len(output.script.split())
    estimated = output.estimated_duration or round(word_count / WORDS_PER_SECOND, 1)
    return output.model_copy(update={
        "scenes": scenes,
        "word_count": word_count,
        "estimated_duration": estimated or float(duration),
    })


class LLMScriptWriter(ScriptWriter):
    """Script writer backed by any registered LLM adapter."""

    def __init__(self, adapter: Optional[LLMAdapter] = None):
        self.adapter = adapter or get_adapter(settings.models.story_llm)

    async def generate(self, request: ScriptRequest) -> GenerationResult[ScriptOutput]:
        logger.info(
            f"Writing {request.duration}s script in {request.language}"
            + (" with revision notes" if request.revision_notes else "")
        )
        output = await generate_structured(
            self.adapter,
            build_script_prompt(request),
            ScriptOutput,
            system_prompt=SCRIPT_SYSTEM_PROMPT,
        )
        if not output.scenes:
            raise ValueError("Script has no scenes")
        return GenerationResult(
            normalize_script(output, request.duration),
            text_call_cost(self.adapter.model_id),
        )
