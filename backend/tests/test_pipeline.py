"""Concrete generators and their helpers, with a scripted LLM adapter."""

import io
import json
import uuid
import wave

import pytest

from storyflow.pipeline.analysis import LLMStoryAnalyzer, build_analysis_prompt
from storyflow.pipeline import narration
from storyflow.pipeline.narration import SAMPLE_RATE, GeminiNarrator, pcm_duration, pcm_to_wav
from storyflow.pipeline.script import LLMScriptWriter, build_script_prompt, normalize_script
from storyflow.pipeline.stitcher import (
    FfmpegRenderer,
    build_srt,
    parse_resolution,
    scene_filter,
    transition_kind,
)
from storyflow.pipeline.storyboard import VERTICAL_SUFFIX, LLMStoryboardArtist, enforce_vertical
from storyflow.pipeline.structured import generate_structured, text_call_cost
from storyflow.schemas.story import ScriptOutput, ScriptSceneSchema, StoryAnalysisOutput
from storyflow.services.file_manager import FileManager
from storyflow.services.generators import (
    AnalysisRequest,
    NarrationRequest,
    RenderRequest,
    RenderScene,
    ScriptRequest,
    StoryboardRequest,
)
from storyflow.services.llm import LLMAdapter, get_adapter
from storyflow.services.llm.ollama_adapter import OllamaAdapter, strip_code_fence
from storyflow.services.llm.vertex_adapter import VertexAIAdapter


class ScriptedAdapter(LLMAdapter):
    """Returns queued payloads in order, validating each against the schema."""

    def __init__(self, *payloads, model_id: str = "gemini-2.5-flash"):
        self.model_id = model_id
        self.payloads = list(payloads)
        self.temperatures: list[float] = []
        self.prompts: list[str] = []

    async def generate_text(self, prompt, schema, *, temperature=0.7, system_prompt=None, max_retries=3):
        self.prompts.append(prompt)
        self.temperatures.append(temperature)
        payload = self.payloads.pop(0)
        if isinstance(payload, str):
            return schema.model_validate(json.loads(payload))
        return schema.model_validate(payload)


ANALYSIS = {
    "concept": "A girl follows a lantern home",
    "themes": "courage, home",
    "characters": ["Mira"],
    "mood": ["warm", "hopeful"],
}


# ---------------------------------------------------------------------------
# Structured generation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_structured_retry_lowers_temperature():
    adapter = ScriptedAdapter("{not json", {"concept": "missing fields"}, ANALYSIS)
    result = await generate_structured(adapter, "p", StoryAnalysisOutput, max_attempts=3)

    assert result.themes == ["courage", "home"]
    assert result.mood == "warm, hopeful"
    assert adapter.temperatures == pytest.approx([0.7, 0.55, 0.4])


@pytest.mark.asyncio
async def test_structured_gives_up_after_max_attempts():
    adapter = ScriptedAdapter("{bad", "{bad")
    with pytest.raises(json.JSONDecodeError):
        await generate_structured(adapter, "p", StoryAnalysisOutput, max_attempts=2)


def test_text_call_cost_uses_price_table():
    assert text_call_cost("gemini-2.5-flash") == pytest.approx(0.006)
    assert text_call_cost("ollama/llama3.1") == pytest.approx(0.01)


# ---------------------------------------------------------------------------
# Analysis and script
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_analyzer_includes_feedback_and_previous():
    adapter = ScriptedAdapter(ANALYSIS)
    previous = StoryAnalysisOutput(concept="old", themes=["x"], characters=[], mood="calm")
    request = AnalysisRequest(topic="lanterns", language="fr", duration=60, previous=previous, feedback="more magic")

    result = await LLMStoryAnalyzer(adapter).generate(request)

    assert result.artifact.concept == ANALYSIS["concept"]
    assert result.cost == pytest.approx(0.006)
    prompt = adapter.prompts[0]
    assert "French" in prompt
    assert "more magic" in prompt
    assert '"old"' in prompt
    assert build_analysis_prompt(request) == prompt


def _script_request(**overrides) -> ScriptRequest:
    fields = dict(
        concept="c", themes=["t"], characters=["Mira"], mood="warm", language="en", duration=30,
    )
    fields.update(overrides)
    return ScriptRequest(**fields)


def test_script_prompt_carries_revision_notes():
    assert "REVISION NOTES" not in build_script_prompt(_script_request())
    prompt = build_script_prompt(_script_request(revision_notes="shorter sentences"))
    assert "shorter sentences" in prompt
    assert "69-80 words" in prompt


def test_normalize_script_renumbers_and_fills_counts():
    output = ScriptOutput(
        script="one two three four five",
        scenes=[
            ScriptSceneSchema(order=7, narration="four five", start_time=15, end_time=30),
            ScriptSceneSchema(order=3, narration="one two three", start_time=0, end_time=15),
        ],
        word_count=0,
        estimated_duration=0,
    )
    normalized = normalize_script(output, 30)
    assert [(s.order, s.narration) for s in normalized.scenes] == [(1, "one two three"), (2, "four five")]
    assert normalized.word_count == 5
    assert normalized.estimated_duration == pytest.approx(2.0)


@pytest.mark.asyncio
async def test_script_writer_rejects_empty_script():
    adapter = ScriptedAdapter({"script": "x", "scenes": [], "word_count": 1, "estimated_duration": 1})
    with pytest.raises(ValueError):
        await LLMScriptWriter(adapter).generate(_script_request())


# ---------------------------------------------------------------------------
# Storyboard
# ---------------------------------------------------------------------------


def test_enforce_vertical():
    prompt = enforce_vertical("A wide shot of a harbor at dusk, panoramic")
    assert "wide shot" not in prompt.lower()
    assert "panoramic" not in prompt.lower()
    assert prompt.endswith(VERTICAL_SUFFIX)
    assert enforce_vertical(prompt) == prompt


@pytest.mark.asyncio
async def test_storyboard_artist_fills_duration_from_script():
    board = {
        "storyboard": {
            "title": "Lanterns", "description": "d",
            "visual_style": ["watercolor", "soft"], "color_palette": "amber",
        },
        "scenes": [
            {"order": 1, "title": "a", "description": "d", "image_prompt": "a harbor, landscape",
             "camera_angle": "close-up", "transition": "cut"},
            {"order": 2, "title": "b", "description": "d", "image_prompt": "a street",
             "camera_angle": "medium", "transition": "fade", "duration": 4},
        ],
    }
    request = StoryboardRequest(
        script="s",
        scenes=[
            ScriptSceneSchema(order=1, narration="n", start_time=0, end_time=12.5),
            ScriptSceneSchema(order=2, narration="n", start_time=12.5, end_time=30),
        ],
        language="en",
        duration=30,
    )
    result = await LLMStoryboardArtist(ScriptedAdapter(board)).generate(request)

    scenes = result.artifact.scenes
    assert scenes[0].duration == pytest.approx(12.5)
    assert scenes[1].duration == pytest.approx(4)
    assert all(s.image_prompt.endswith(VERTICAL_SUFFIX) for s in scenes)
    assert result.artifact.storyboard.visual_style == "watercolor, soft"


# ---------------------------------------------------------------------------
# Narration and render helpers
# ---------------------------------------------------------------------------


def test_pcm_to_wav_header():
    pcm = b"\x00\x00" * SAMPLE_RATE
    data = pcm_to_wav(pcm)
    with wave.open(io.BytesIO(data)) as wav:
        assert wav.getframerate() == SAMPLE_RATE
        assert wav.getnchannels() == 1
        assert wav.getnframes() == SAMPLE_RATE
    assert pcm_duration(pcm) == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_narrator_picks_voice_per_language(tmp_path, monkeypatch):
    voices = []

    async def fake_synthesize(client, model, text, voice):
        voices.append(voice)
        return b"\x00\x00" * SAMPLE_RATE

    monkeypatch.setattr(narration, "get_vertex_client", lambda location=None: object())
    monkeypatch.setattr(narration, "_synthesize", fake_synthesize)
    narrator = GeminiNarrator(FileManager(tmp_path), voices={"fr": "Aoede", "zh": "Puck"}, default_voice="Kore")
    project_id = uuid.uuid4()

    for language in ("fr", "zh", "en"):
        result = await narrator.generate(NarrationRequest(project_id=project_id, language=language, text="Bonjour"))
        assert result.artifact.duration == pytest.approx(1.0)

    assert voices == ["Aoede", "Puck", "Kore"]


def test_default_voices_cover_supported_languages(tmp_path):
    narrator = GeminiNarrator(FileManager(tmp_path))
    assert {narrator.voice_for(language) for language in ("zh", "en", "fr")} == {"Puck", "Kore", "Aoede"}


def _scene(order, start, end, narration="hello") -> RenderScene:
    return RenderScene(order=order, narration=narration, start_time=start, end_time=end, asset_url="a.png")


def test_build_srt():
    srt = build_srt([_scene(1, 0, 12.5, "First line"), _scene(2, 12.5, 20, " "), _scene(3, 20, 3725.25, "Last")])
    assert srt == (
        "1\n00:00:00,000 --> 00:00:12,500\nFirst line\n"
        "\n"
        "2\n00:00:20,000 --> 01:02:05,250\nLast\n"
    )


def test_parse_resolution():
    assert parse_resolution("1080x1920") == (1080, 1920)


def test_transition_kind():
    assert transition_kind("Fade to black") == "fade"
    assert transition_kind("slow dissolve") == "fade"
    assert transition_kind("Zoom in") == "zoom"
    assert transition_kind("cut") == "cut"
    assert transition_kind(None) == "cut"


def test_scene_filter_applies_transitions():
    faded = scene_filter(2.0, 1080, 1920, "fade", fade_in=True)
    assert "zoompan=z='min(1.0+0.30*on/60,1.30)'" in faded
    assert "d=60:s=1080x1920:fps=30" in faded
    assert "fade=t=in:st=0:d=0.250" in faded
    assert "fade=t=out:st=1.750:d=0.250" in faded
    assert faded.endswith("format=yuv420p")

    zoomed = scene_filter(2.0, 1080, 1920, "zoom in")
    assert "1.50)" in zoomed
    assert "fade=" not in zoomed

    last = scene_filter(2.0, 1080, 1920, "fade", is_last=True)
    assert "fade=t=out" not in last
    assert "1.30)" in last


@pytest.mark.asyncio
async def test_renderer_requires_existing_assets(tmp_path):
    renderer = FfmpegRenderer(FileManager(tmp_path))
    request = RenderRequest(
        project_id=uuid.uuid4(), language="en", duration=30,
        scenes=[_scene(1, 0, 30)],
    )
    with pytest.raises(FileNotFoundError):
        await renderer.generate(request)
    with pytest.raises(ValueError):
        await renderer.generate(request.model_copy(update={"scenes": []}))


def test_file_manager_layout(tmp_path):
    files = FileManager(tmp_path)
    project_id = uuid.uuid4()
    first = files.save_asset(project_id, 1, b"png")
    second = files.save_asset(project_id, 1, b"png")
    assert first != second
    assert first.parent == tmp_path.resolve() / str(project_id) / "assets"
    assert files.get_output_path(project_id).name == "final.mp4"


# ---------------------------------------------------------------------------
# LLM adapters
# ---------------------------------------------------------------------------


def test_strip_code_fence():
    assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fence('{"a": 1}') == '{"a": 1}'


def test_registry_routes_by_prefix():
    ollama = get_adapter("ollama/llama3.1")
    assert isinstance(ollama, OllamaAdapter)
    assert ollama.model_id == "ollama/llama3.1"

    vertex = get_adapter("gemini-2.5-flash")
    assert isinstance(vertex, VertexAIAdapter)
    assert vertex.model_id == "gemini-2.5-flash"
