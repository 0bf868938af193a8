"""Voice-over synthesis with Gemini text-to-speech.

The TTS model returns raw 16-bit mono PCM at 24 kHz, which is wrapped
into a WAV file for ffmpeg.
"""

import io
import logging
import wave
from typing import Optional

from google.genai import types
from tenacity import before_sleep_log, retry, retry_if_exception, stop_after_attempt, wait_exponential

from storyflow.config import settings
from storyflow.pipeline.assets import _is_retriable
from storyflow.schemas.media import NarrationOutput
from storyflow.services.file_manager import FileManager
from storyflow.services.generators import GenerationResult, NarrationRequest, NarrationSynthesizer
from storyflow.services.vertex_client import get_vertex_client, location_for_model

logger = logging.getLogger(__name__)

SAMPLE_RATE = 24000
SAMPLE_WIDTH = 2
CHANNELS = 1


def pcm_to_wav(pcm: bytes, sample_rate: int = SAMPLE_RATE) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(CHANNELS)
        wav.setsampwidth(SAMPLE_WIDTH)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buffer.getvalue()


def pcm_duration(pcm: bytes, sample_rate: int = SAMPLE_RATE) -> float:
    return len(pcm) / float(sample_rate * SAMPLE_WIDTH * CHANNELS)


def narration_cost(text: str) -> float:
    return round(len(text) / 1000.0 * settings.pricing.narration_per_1k_chars, 6)


@retry(
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=2, min=4, max=60),
    retry=retry_if_exception(_is_retriable),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def _synthesize(client, model: str, text: str, voice: str) -> bytes:
    response = await client.aio.models.generate_content(
        model=model,
        contents=text,
        config=types.GenerateContentConfig(
            response_modalities=["AUDIO"],
            speech_config=types.SpeechConfig(
                voice_config=types.VoiceConfig(
                    prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice),
                ),
            ),
        ),
    )
    for part in response.candidates[0].content.parts:
        if part.inline_data and part.inline_data.data:
            return part.inline_data.data
    raise ValueError("No audio generated in response")


class GeminiNarrator(NarrationSynthesizer):
    """Synthesizes the full script as one narration track."""

    def __init__(
        self,
        file_manager: Optional[FileManager] = None,
        voices: Optional[dict[str, str]] = None,
        default_voice: Optional[str] = None,
    ):
        self.file_manager = file_manager or FileManager()
        self.voices = voices if voices is not None else settings.pipeline.narration_voices
        self.default_voice = default_voice or settings.pipeline.default_narration_voice

    def voice_for(self, language: str) -> str:
        return self.voices.get(language, self.default_voice)

    async def generate(self, request: NarrationRequest) -> GenerationResult[NarrationOutput]:
        if not request.text.strip():
            raise ValueError("Cannot narrate an empty script")
        model = settings.models.narration_tts
        voice = self.voice_for(request.language)
        logger.info(
            f"Project {request.project_id}: synthesizing {len(request.text)} chars "
            f"({request.language}, voice {voice}) with {model}"
        )
        client = get_vertex_client(location=location_for_model(model))
        pcm = await _synthesize(client, model, request.text, voice)
        path = self.file_manager.save_audio(request.project_id, pcm_to_wav(pcm))
        duration = pcm_duration(pcm)
        logger.info(f"Project {request.project_id}: narration {duration:.1f}s -> {path}")
        return GenerationResult(
            NarrationOutput(audio_url=str(path), duration=duration),
            narration_cost(request.text),
        )
