"""Shared fixtures: in-memory database, fake generators and an orchestrator.

The fakes charge fixed prices so cost assertions are exact, can be told to
fail, and can be held mid-call with an asyncio.Event to exercise
back-navigation and in-flight conflicts.
"""

import asyncio
import itertools
from typing import Optional

import pytest
import pytest_asyncio
from sqlalchemy.pool import StaticPool

from storyflow.db import build_engine, build_sessionmaker, init_database
from storyflow.orchestrator import StageOrchestrator
from storyflow.schemas.media import AssetOutput, NarrationOutput, RenderOutput
from storyflow.schemas.story import ScriptOutput, ScriptSceneSchema, StoryAnalysisOutput
from storyflow.schemas.storyboard import StoryboardOutput, StoryboardSceneSchema, StoryboardSummary
from storyflow.services.generators import (
    AssetGenerator,
    GenerationResult,
    GeneratorSet,
    NarrationSynthesizer,
    ScriptWriter,
    StoryAnalyzer,
    StoryboardArtist,
    VideoRenderer,
)

ANALYSIS_COST = 0.01
SCRIPT_COST = 0.02
STORYBOARD_COST = 0.03
ASSET_COST = 0.04
NARRATION_COST = 0.05
RENDER_COST = 0.0

SCENE_COUNT = 3


class FakeGenerator:
    """Common knobs: fixed cost, forced failure, optional gate, call log."""

    cost = 0.0

    def __init__(self) -> None:
        self.calls: list = []
        self.fail_next = 0
        self.fail_on_call: Optional[int] = None
        self.gate: Optional[asyncio.Event] = None
        self.entered = asyncio.Event()

    async def _enter(self, request) -> None:
        self.calls.append(request)
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_on_call == len(self.calls):
            raise RuntimeError(f"{type(self).__name__} unavailable")
        if self.fail_next:
            self.fail_next -= 1
            raise RuntimeError(f"{type(self).__name__} unavailable")


class FakeAnalyzer(FakeGenerator, StoryAnalyzer):
    cost = ANALYSIS_COST

    async def generate(self, request):
        await self._enter(request)
        concept = f"A story about {request.topic}"
        if request.feedback:
            concept += f" ({request.feedback})"
        return GenerationResult(
            StoryAnalysisOutput(
                concept=concept,
                themes=["courage", "home"],
                characters=["Mira"],
                mood="warm",
            ),
            self.cost,
        )


class FakeScriptWriter(FakeGenerator, ScriptWriter):
    cost = SCRIPT_COST

    def __init__(self) -> None:
        super().__init__()
        self.version = 0

    async def generate(self, request):
        await self._enter(request)
        self.version += 1
        step = request.duration / SCENE_COUNT
        scenes = [
            ScriptSceneSchema(
                order=i + 1,
                narration=f"v{self.version} line {i + 1}",
                start_time=i * step,
                end_time=(i + 1) * step,
                visual_description=f"shot {i + 1}",
            )
            for i in range(SCENE_COUNT)
        ]
        text = " ".join(s.narration for s in scenes)
        return GenerationResult(
            ScriptOutput(
                script=text,
                scenes=scenes,
                word_count=len(text.split()),
                estimated_duration=float(request.duration),
            ),
            self.cost,
        )


class FakeStoryboardArtist(FakeGenerator, StoryboardArtist):
    cost = STORYBOARD_COST

    async def generate(self, request):
        await self._enter(request)
        return GenerationResult(
            StoryboardOutput(
                storyboard=StoryboardSummary(
                    title="Lanterns",
                    description="A walk home at dusk",
                    visual_style="watercolor",
                    color_palette="amber and indigo",
                ),
                scenes=[
                    StoryboardSceneSchema(
                        order=s.order,
                        title=f"Scene {s.order}",
                        description=s.visual_description,
                        image_prompt=f"watercolor lantern street, scene {s.order}",
                        camera_angle="wide shot",
                        transition="cut",
                        duration=s.end_time - s.start_time,
                    )
                    for s in request.scenes
                ],
            ),
            self.cost,
        )


class FakeAssetGenerator(FakeGenerator, AssetGenerator):
    cost = ASSET_COST

    def __init__(self) -> None:
        super().__init__()
        self._ids = itertools.count(1)

    async def generate(self, request):
        await self._enter(request)
        n = next(self._ids)
        return GenerationResult(
            AssetOutput(url=f"/tmp/assets/scene_{request.scene_order}_{n}.png"),
            ASSET_COST * (2 if request.is_premium else 1),
        )


class FakeNarrator(FakeGenerator, NarrationSynthesizer):
    cost = NARRATION_COST

    async def generate(self, request):
        await self._enter(request)
        return GenerationResult(
            NarrationOutput(audio_url=f"/tmp/audio/{request.project_id}.wav", duration=30.0),
            self.cost,
        )


class FakeRenderer(FakeGenerator, VideoRenderer):
    cost = RENDER_COST

    async def generate(self, request):
        await self._enter(request)
        return GenerationResult(
            RenderOutput(
                url=f"/tmp/output/{request.project_id}.mp4",
                subtitles_url=f"/tmp/output/{request.project_id}.srt",
                duration=float(request.duration),
                resolution="1080x1920",
                file_size=1024,
            ),
            self.cost,
        )


@pytest.fixture
def generators() -> GeneratorSet:
    return GeneratorSet(
        analyzer=FakeAnalyzer(),
        script_writer=FakeScriptWriter(),
        storyboard_artist=FakeStoryboardArtist(),
        asset_generator=FakeAssetGenerator(),
        narrator=FakeNarrator(),
        renderer=FakeRenderer(),
    )


@pytest_asyncio.fixture
async def db_engine():
    engine = build_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_database(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_sessionmaker(db_engine)


@pytest_asyncio.fixture
async def orchestrator(session_factory, generators):
    orch = StageOrchestrator(session_factory, generators, adapter_timeout=5.0)
    yield orch
    await orch.serializer.shutdown()


@pytest_asyncio.fixture
async def project(orchestrator):
    return await orchestrator.create_project("user-1", "a lantern festival", "en", 30)


async def drive_to(orch: StageOrchestrator, project_id, status: str) -> None:
    """Run the happy path until the project rests in status.

    Only statuses a project rests in are valid targets; approved states
    hand off to their follow-up immediately.
    """
    steps = [
        ("analyzed", orch.start_analysis, ()),
        ("script_review", orch.generate_script, ()),
        ("storyboard_review", orch.decide_script, (True,)),
        ("assets_review", orch.decide_storyboard, (True,)),
        ("ready", orch.decide_assets, (True,)),
    ]
    if status not in [reached for reached, _, _ in steps]:
        raise AssertionError(f"{status} is not a resting status")
    for reached, command, args in steps:
        await command(project_id, *args)
        await orch.wait_idle(project_id)
        if reached == status:
            return
