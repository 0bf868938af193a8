"""Stage orchestrator for the human-gated story-to-video pipeline.

Owns every mutation of a VideoProject and its artifacts:
- Validates each command against the status graph before any generator call
- Serializes stage commands per project (duplicates raise Conflict)
- Records each artifact and its cost in the same commit
- Suppresses stale status transitions after back-navigation
- Persists failure state so the failing command can be retried, including
  when the command is cancelled or the process stops mid-call

Generator calls run outside the per-project lock so reads and
back-navigation stay responsive while a stage is in flight.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Coroutine, Optional, TypeVar, Union

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storyflow.config import settings
from storyflow.db import check_connection
from storyflow.db.models import (
    Asset,
    CostEntry,
    RenderedVideo,
    Script,
    ScriptScene,
    StoryAnalysis,
    Storyboard,
    StoryboardScene,
    VideoProject,
)
from storyflow.orchestrator import approval, cache, ledger
from storyflow.orchestrator.errors import (
    AdapterFailure,
    Conflict,
    InvalidTransition,
    NotFoundError,
    StageNotImplemented,
    ValidationError,
)
from storyflow.orchestrator.state import (
    BACK_TARGETS,
    IN_FLIGHT_STATES,
    ensure_command_allowed,
    ensure_transition,
    get_resume_status,
    is_later_than,
)
from storyflow.schemas.story import ScriptOutput, ScriptSceneSchema, StoryAnalysisOutput
from storyflow.schemas.storyboard import StoryboardOutput
from storyflow.services.generators import (
    AnalysisRequest,
    AssetRequest,
    GenerationResult,
    GeneratorSet,
    NarrationRequest,
    RenderRequest,
    RenderScene,
    ScriptRequest,
    StoryboardRequest,
)
from storyflow.workers.stage_tasks import ProjectSerializer

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class Decision:
    """Result of an approval decision."""

    stage: str
    action: str
    status: str
    followup: Optional[str] = None
    message: str = ""


@dataclass
class AssetPass:
    """Assets produced by one asset pass, in scene order."""

    assets: list[Asset]
    cost: float


@dataclass
class ProjectDetail:
    """A project with every live artifact."""

    project: VideoProject
    analysis: Optional[StoryAnalysis] = None
    script: Optional[Script] = None
    storyboard: Optional[Storyboard] = None
    assets: list[Asset] = field(default_factory=list)
    video: Optional[RenderedVideo] = None
    in_flight: Optional[str] = None


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _tier(project: VideoProject) -> str:
    return "premium" if project.is_premium else "standard"


class StageOrchestrator:
    """Drives projects through analysis, script, storyboard, assets and render."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        generators: GeneratorSet,
        serializer: Optional[ProjectSerializer] = None,
        adapter_timeout: Optional[float] = None,
    ):
        self._session_factory = session_factory
        self.generators = generators
        self.serializer = serializer or ProjectSerializer()
        self.adapter_timeout = (
            adapter_timeout
            if adapter_timeout is not None
            else settings.pipeline.adapter_timeout_seconds
        )

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    async def _load(self, session: AsyncSession, project_id: uuid.UUID) -> VideoProject:
        project = await session.get(VideoProject, project_id)
        if project is None:
            raise NotFoundError(f"Video {project_id} not found")
        return project

    async def _one(self, session: AsyncSession, model, project_id: uuid.UUID):
        result = await session.execute(select(model).where(model.project_id == project_id))
        return result.scalar_one_or_none()

    async def _current_assets(self, session: AsyncSession, project_id: uuid.UUID) -> list[Asset]:
        result = await session.execute(
            select(Asset)
            .where(Asset.project_id == project_id, Asset.is_current.is_(True))
            .order_by(Asset.scene_order)
        )
        return list(result.scalars().all())

    @staticmethod
    def _require(generator: Optional[T], stage: str) -> T:
        if generator is None:
            raise StageNotImplemented(stage)
        return generator

    @staticmethod
    def _set_status(project: VideoProject, status: str) -> None:
        ensure_transition(project.status, status)
        if project.status != status:
            logger.info(f"Project {project.id}: {project.status} -> {status}")
        if project.status == "failed" and status != "failed":
            project.failed_from = None
            project.error_message = None
        project.status = status

    def _advance_if(self, project: VideoProject, expected: str, status: str) -> bool:
        """Transition only if nothing moved the project while the call ran."""
        if project.status != expected:
            logger.warning(
                f"Project {project.id}: status moved to '{project.status}' during "
                f"the call, not advancing to '{status}'"
            )
            return False
        self._set_status(project, status)
        return True

    async def _call(self, stage: str, call: Awaitable[GenerationResult[T]]) -> GenerationResult[T]:
        """Await a generator call with the adapter timeout, wrapping any error."""
        try:
            return await asyncio.wait_for(call, timeout=self.adapter_timeout)
        except Exception as e:
            logger.error(f"{stage} generator failed: {type(e).__name__}: {e}")
            raise AdapterFailure(stage, e) from e

    async def _generate(
        self,
        project_id: uuid.UUID,
        stage: str,
        expected: str,
        started_from: str,
        call: Awaitable[GenerationResult[T]],
    ) -> GenerationResult[T]:
        """Run a generator call, persisting failure state if it errors or is cancelled."""
        try:
            return await self._call(stage, call)
        except AdapterFailure as e:
            await self._record_failure(project_id, expected, started_from, stage, str(e))
            raise
        except asyncio.CancelledError:
            logger.warning(f"Project {project_id}: {stage} call cancelled")
            await asyncio.shield(
                self._record_failure(
                    project_id, expected, started_from, stage, f"{stage} interrupted before completion"
                )
            )
            raise

    async def _record_failure(
        self,
        project_id: uuid.UUID,
        expected: str,
        started_from: str,
        stage: str,
        message: str,
    ) -> None:
        """Persist failure state unless the project moved during the call."""
        async with self.serializer.lock(project_id):
            async with self._session_factory() as session:
                project = await self._load(session, project_id)
                if project.status == expected:
                    self._set_status(project, "failed")
                    project.failed_from = started_from
                    project.error_message = message
                else:
                    logger.warning(
                        f"Project {project_id}: {stage} failed after status moved "
                        f"to '{project.status}', keeping current status"
                    )
                await session.commit()

    async def _recover(self, project_id: uuid.UUID, message: str) -> bool:
        """Fail a project left in an in-flight status with no call running."""
        async with self.serializer.lock(project_id):
            async with self._session_factory() as session:
                project = await self._load(session, project_id)
                if project.status not in IN_FLIGHT_STATES:
                    return False
                analysis = await self._one(session, StoryAnalysis, project_id)
                resume = get_resume_status(project.status, {"has_analysis": analysis is not None})
                logger.warning(
                    f"Project {project_id}: interrupted in '{project.status}', "
                    f"retry from '{resume}'"
                )
                self._set_status(project, "failed")
                project.failed_from = resume
                project.error_message = message
                await session.commit()
                return True

    async def _settle(self, project_id: uuid.UUID, work: Coroutine[Any, Any, T]) -> T:
        """Await stage work; a cancelled command leaves the project retryable."""
        try:
            return await work
        except asyncio.CancelledError:
            await asyncio.shield(self._recover(project_id, "Stage command cancelled"))
            raise

    async def _run_claimed(self, project_id: uuid.UUID, stage: str, work: Coroutine[Any, Any, T]) -> T:
        """Run a stage command under an in-flight claim."""
        try:
            self.serializer.claim(project_id, stage)
        except Conflict:
            work.close()
            raise
        try:
            return await self._settle(project_id, work)
        finally:
            self.serializer.release(project_id, stage)

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    async def create_project(
        self,
        user_id: str,
        topic: str,
        language: str,
        duration: int,
        is_premium: bool = False,
    ) -> VideoProject:
        """Create a draft project.

        Raises:
            ValidationError: Blank topic/user, or unsupported language/duration
        """
        if not user_id or not user_id.strip():
            raise ValidationError("userId is required")
        if not topic or not topic.strip():
            raise ValidationError("topic is required")
        if language not in settings.pipeline.languages:
            raise ValidationError(
                f"language must be one of {settings.pipeline.languages}, got '{language}'"
            )
        if duration not in settings.pipeline.durations:
            raise ValidationError(
                f"duration must be one of {settings.pipeline.durations}, got {duration}"
            )

        async with self._session_factory() as session:
            project = VideoProject(
                user_id=user_id.strip(),
                topic=topic.strip(),
                language=language,
                duration=duration,
                is_premium=bool(is_premium),
                status="draft",
                total_cost=0.0,
            )
            session.add(project)
            await session.commit()
            logger.info(f"Created project {project.id} ({language}, {duration}s)")
            return project

    async def get_project(self, project_id: uuid.UUID) -> ProjectDetail:
        async with self._session_factory() as session:
            project = await self._load(session, project_id)
            return ProjectDetail(
                project=project,
                analysis=await self._one(session, StoryAnalysis, project_id),
                script=await self._one(session, Script, project_id),
                storyboard=await self._one(session, Storyboard, project_id),
                assets=await self._current_assets(session, project_id),
                video=await self._one(session, RenderedVideo, project_id),
                in_flight=self.serializer.in_flight(project_id),
            )

    async def list_projects(
        self,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
        language: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[VideoProject]:
        """List projects newest first, capped at the configured list limit."""
        cap = settings.pipeline.list_limit
        limit = cap if limit is None else max(1, min(limit, cap))
        query = select(VideoProject)
        if user_id:
            query = query.where(VideoProject.user_id == user_id)
        if status:
            query = query.where(VideoProject.status == status)
        if language:
            query = query.where(VideoProject.language == language)
        query = query.order_by(VideoProject.created_at.desc()).limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def total_cost(self, project_id: uuid.UUID) -> float:
        async with self._session_factory() as session:
            return await ledger.total_cost(session, project_id)

    async def cost_entries(self, project_id: uuid.UUID) -> list[CostEntry]:
        async with self._session_factory() as session:
            await self._load(session, project_id)
            return await ledger.ledger_entries(session, project_id)

    async def check_database(self) -> bool:
        async with self._session_factory() as session:
            return await check_connection(session.bind)

    async def wait_idle(self, project_id: uuid.UUID) -> None:
        """Wait for follow-up work enqueued by approval decisions."""
        await self.serializer.wait_idle(project_id)

    async def recover_interrupted(self) -> int:
        """Fail projects stuck in an in-flight status with no call running.

        Run at startup: a process that stopped mid-call leaves its projects
        in analyzing, generating_assets, generating_audio or rendering.
        Each is moved to failed with a failed_from it can be retried from.

        Returns:
            Number of projects recovered
        """
        async with self._session_factory() as session:
            result = await session.execute(
                select(VideoProject.id).where(VideoProject.status.in_(sorted(IN_FLIGHT_STATES)))
            )
            stuck = [pid for pid in result.scalars().all() if self.serializer.in_flight(pid) is None]
        recovered = 0
        for pid in stuck:
            if await self._recover(pid, "Interrupted before completion (process stopped)"):
                recovered += 1
        if recovered:
            logger.info(f"Recovered {recovered} interrupted project(s)")
        return recovered

    # ------------------------------------------------------------------
    # Story analysis
    # ------------------------------------------------------------------

    async def start_analysis(
        self, project_id: uuid.UUID, feedback: Optional[str] = None
    ) -> StoryAnalysis:
        """Analyze the topic, or refine the existing analysis with feedback."""
        analyzer = self._require(self.generators.analyzer, "analysis")
        return await self._run_claimed(
            project_id, "analysis", self._analysis(project_id, analyzer, feedback)
        )

    async def _analysis(self, project_id, analyzer, feedback):
        feedback = (feedback or "").strip() or None
        async with self.serializer.lock(project_id):
            async with self._session_factory() as session:
                project = await self._load(session, project_id)
                started_from = ensure_command_allowed("analyze", project.status, project.failed_from)
                previous = None
                if feedback:
                    existing = await self._one(session, StoryAnalysis, project_id)
                    if existing is not None:
                        previous = StoryAnalysisOutput(
                            concept=existing.concept,
                            themes=existing.themes,
                            characters=existing.characters,
                            mood=existing.mood,
                        )
                request = AnalysisRequest(
                    topic=project.topic,
                    language=project.language,
                    duration=project.duration,
                    previous=previous,
                    feedback=feedback,
                )
                self._set_status(project, "analyzing")
                await session.commit()

        result = await self._generate(
            project_id, "analysis", "analyzing", started_from, analyzer.generate(request)
        )

        async with self.serializer.lock(project_id):
            async with self._session_factory() as session:
                project = await self._load(session, project_id)
                existing = await self._one(session, StoryAnalysis, project_id)
                if existing is not None:
                    await session.delete(existing)
                    await session.flush()
                output = result.artifact
                analysis = StoryAnalysis(
                    project_id=project_id,
                    concept=output.concept,
                    themes=list(output.themes),
                    characters=list(output.characters),
                    mood=output.mood,
                    cost=result.cost,
                )
                session.add(analysis)
                await ledger.add_cost(session, project, "analysis", result.cost)
                self._advance_if(project, "analyzing", "analyzed")
                await session.commit()
                logger.info(f"Project {project_id}: analysis stored (${result.cost:.4f})")
                return analysis

    # ------------------------------------------------------------------
    # Script
    # ------------------------------------------------------------------

    async def generate_script(
        self, project_id: uuid.UUID, revision_notes: Optional[str] = None
    ) -> Script:
        """Generate the narration script, replacing any live script."""
        writer = self._require(self.generators.script_writer, "script")
        return await self._run_claimed(
            project_id, "script", self._script(project_id, writer, revision_notes)
        )

    async def _script(self, project_id, writer, revision_notes):
        notes = (revision_notes or "").strip() or None
        async with self.serializer.lock(project_id):
            async with self._session_factory() as session:
                project = await self._load(session, project_id)
                started_from = ensure_command_allowed("script", project.status, project.failed_from)
                analysis = await self._one(session, StoryAnalysis, project_id)
                if analysis is None:
                    raise InvalidTransition(
                        "Story analysis is required before generating a script",
                        status=project.status,
                    )
                if notes:
                    project.revision_notes = notes
                    await session.commit()
                request = ScriptRequest(
                    concept=analysis.concept,
                    themes=analysis.themes,
                    characters=analysis.characters,
                    mood=analysis.mood,
                    language=project.language,
                    duration=project.duration,
                    revision_notes=notes,
                )
                expected = project.status

        result = await self._generate(
            project_id, "script", expected, started_from, writer.generate(request)
        )

        async with self.serializer.lock(project_id):
            async with self._session_factory() as session:
                project = await self._load(session, project_id)
                await self._drop(session, Script, project_id)
                script = self._build_script(project_id, result.artifact, result.cost)
                session.add(script)
                await ledger.add_cost(session, project, "script", result.cost)
                self._advance_if(project, expected, "script_review")
                await session.commit()
                logger.info(
                    f"Project {project_id}: script stored with {len(script.scenes)} scenes "
                    f"(${result.cost:.4f})"
                )
                return script

    async def _drop(self, session: AsyncSession, model, project_id: uuid.UUID) -> None:
        existing = await self._one(session, model, project_id)
        if existing is not None:
            await session.delete(existing)
            # Flush the delete before the replacement insert (unique project_id)
            await session.flush()

    @staticmethod
    def _script_scenes(scenes: list[ScriptSceneSchema]) -> list[ScriptScene]:
        return [
            ScriptScene(
                order=s.order,
                start_time=s.start_time,
                end_time=s.end_time,
                narration=s.narration,
                visual_description=s.visual_description,
            )
            for s in sorted(scenes, key=lambda s: s.order)
        ]

    def _build_script(self, project_id: uuid.UUID, output: ScriptOutput, cost: float) -> Script:
        return Script(
            project_id=project_id,
            text=output.script,
            word_count=output.word_count,
            estimated_duration=output.estimated_duration,
            cost=cost,
            scenes=self._script_scenes(output.scenes),
        )

    async def decide_script(
        self,
        project_id: uuid.UUID,
        approved: bool,
        revision_notes: Optional[str] = None,
    ) -> Decision:
        """Approve the script (enqueue storyboard) or reject it with notes.

        A rejection clears the script and enqueues regeneration with the
        notes; the project stays in script_review.
        """
        action = approval.decide("script", approved, revision_notes)
        followup = "storyboard" if action.advances else "script"
        generator = (
            self.generators.storyboard_artist if action.advances
            else self.generators.script_writer
        )
        self.serializer.claim(project_id, "decide_script")
        try:
            async with self.serializer.lock(project_id):
                async with self._session_factory() as session:
                    project = await self._load(session, project_id)
                    ensure_command_allowed("decide_script", project.status)
                    script = await self._one(session, Script, project_id)
                    if script is None:
                        raise InvalidTransition("No script to decide on", status=project.status)
                    if action.advances:
                        script.approved_at = _now()
                        self._set_status(project, "script_approved")
                        message = "Script approved."
                    else:
                        await session.delete(script)
                        project.revision_notes = action.notes
                        message = "Script rejected."
                    await session.commit()
                    status = project.status

            if generator is None:
                logger.warning(f"Project {project_id}: no generator for '{followup}', not enqueued")
                return Decision("script", action.kind, status, None, message)

            self.serializer.handoff(project_id, "decide_script", followup)
            if action.advances:
                work = self._storyboard(project_id, generator)
                message += " Storyboard generation started."
            else:
                work = self._script(project_id, generator, action.notes)
                message += " Regenerating script with revision notes."
            self.serializer.spawn(project_id, followup, self._settle(project_id, work))
            return Decision("script", action.kind, status, followup, message)
        finally:
            self.serializer.release(project_id, "decide_script")

    # ------------------------------------------------------------------
    # Storyboard
    # ------------------------------------------------------------------

    async def generate_storyboard(self, project_id: uuid.UUID) -> Storyboard:
        """Generate the storyboard from the approved script."""
        artist = self._require(self.generators.storyboard_artist, "storyboard")
        return await self._run_claimed(project_id, "storyboard", self._storyboard(project_id, artist))

    async def _storyboard(self, project_id, artist):
        async with self.serializer.lock(project_id):
            async with self._session_factory() as session:
                project = await self._load(session, project_id)
                started_from = ensure_command_allowed(
                    "storyboard", project.status, project.failed_from
                )
                script = await self._one(session, Script, project_id)
                if script is None:
                    raise InvalidTransition(
                        "An approved script is required before generating a storyboard",
                        status=project.status,
                    )
                request = StoryboardRequest(
                    script=script.text,
                    scenes=[
                        ScriptSceneSchema(
                            order=s.order,
                            narration=s.narration,
                            start_time=s.start_time,
                            end_time=s.end_time,
                            visual_description=s.visual_description,
                        )
                        for s in script.scenes
                    ],
                    language=project.language,
                    duration=project.duration,
                )
                expected = project.status

        result = await self._generate(
            project_id, "storyboard", expected, started_from, artist.generate(request)
        )

        async with self.serializer.lock(project_id):
            async with self._session_factory() as session:
                project = await self._load(session, project_id)
                await self._drop(session, Storyboard, project_id)
                storyboard = self._build_storyboard(project_id, result.artifact, result.cost)
                session.add(storyboard)
                await ledger.add_cost(session, project, "storyboard", result.cost)
                self._advance_if(project, expected, "storyboard_review")
                await session.commit()
                logger.info(
                    f"Project {project_id}: storyboard stored with {len(storyboard.scenes)} "
                    f"scenes (${result.cost:.4f})"
                )
                return storyboard

    @staticmethod
    def _storyboard_scenes(output: StoryboardOutput) -> list[StoryboardScene]:
        return [
            StoryboardScene(
                order=s.order,
                title=s.title,
                description=s.description,
                image_prompt=s.image_prompt,
                camera_angle=s.camera_angle,
                composition=s.composition,
                lighting=s.lighting,
                transition=s.transition,
                duration=s.duration,
            )
            for s in sorted(output.scenes, key=lambda s: s.order)
        ]

    def _build_storyboard(
        self, project_id: uuid.UUID, output: StoryboardOutput, cost: float
    ) -> Storyboard:
        summary = output.storyboard
        return Storyboard(
            project_id=project_id,
            title=summary.title,
            description=summary.description,
            visual_style=summary.visual_style,
            color_palette=summary.color_palette,
            cost=cost,
            scenes=self._storyboard_scenes(output),
        )

    async def decide_storyboard(self, project_id: uuid.UUID, approved: bool) -> Decision:
        """Approve the storyboard and enqueue asset generation.

        Raises:
            UnsupportedRevision: If approved is False
        """
        action = approval.decide("storyboard", approved)
        return await self._approve(
            project_id,
            stage="storyboard",
            model=Storyboard,
            status="storyboard_approved",
            followup="assets",
            generator=self.generators.asset_generator,
            kind=action.kind,
        )

    async def _approve(self, project_id, stage, model, status, followup, generator, kind) -> Decision:
        command = f"decide_{stage}"
        self.serializer.claim(project_id, command)
        try:
            async with self.serializer.lock(project_id):
                async with self._session_factory() as session:
                    project = await self._load(session, project_id)
                    ensure_command_allowed(command, project.status)
                    if model is Asset:
                        artifacts = await self._current_assets(session, project_id)
                        if not artifacts:
                            raise InvalidTransition("No assets to decide on", status=project.status)
                    else:
                        artifact = await self._one(session, model, project_id)
                        if artifact is None:
                            raise InvalidTransition(f"No {stage} to decide on", status=project.status)
                        artifact.approved_at = _now()
                    self._set_status(project, status)
                    await session.commit()

            message = f"{stage.capitalize()} approved."
            if generator is None:
                logger.warning(f"Project {project_id}: no generator for '{followup}', not enqueued")
                return Decision(stage, kind, status, None, message)

            self.serializer.handoff(project_id, command, followup)
            if followup == "assets":
                work = self._assets(project_id, generator)
                message += " Asset generation started."
            else:
                work = self._render(project_id, *generator)
                message += " Rendering started."
            self.serializer.spawn(project_id, followup, self._settle(project_id, work))
            return Decision(stage, kind, status, followup, message)
        finally:
            self.serializer.release(project_id, command)

    # ------------------------------------------------------------------
    # Assets
    # ------------------------------------------------------------------

    async def generate_assets(self, project_id: uuid.UUID) -> AssetPass:
        """Produce one asset per storyboard scene, reusing cached visuals."""
        generator = self._require(self.generators.asset_generator, "assets")
        return await self._run_claimed(project_id, "assets", self._assets(project_id, generator))

    async def _assets(self, project_id, generator) -> AssetPass:
        async with self.serializer.lock(project_id):
            async with self._session_factory() as session:
                project = await self._load(session, project_id)
                started_from = ensure_command_allowed("assets", project.status, project.failed_from)
                storyboard = await self._one(session, Storyboard, project_id)
                if storyboard is None or not storyboard.scenes:
                    raise InvalidTransition(
                        "An approved storyboard is required before generating assets",
                        status=project.status,
                    )
                scenes = [(s.order, s.description, s.image_prompt) for s in storyboard.scenes]
                tier = _tier(project)
                is_premium = project.is_premium
                self._set_status(project, "generating_assets")
                await session.commit()

        expected = "generating_assets"
        batch_id = uuid.uuid4()
        produced: list[Asset] = []
        pass_cost = 0.0
        logger.info(f"Project {project_id}: generating {len(scenes)} {tier} assets (batch {batch_id})")

        for order, description, image_prompt in scenes:
            key = cache.fingerprint("assets", image_prompt, tier)

            async with self.serializer.lock(project_id):
                async with self._session_factory() as session:
                    cached = await cache.lookup(session, project_id, key)
                    if cached is not None:
                        asset = Asset(
                            id=uuid.uuid4(),
                            project_id=project_id,
                            scene_order=order,
                            url=cached["url"],
                            cost=0.0,
                            reused=True,
                            fingerprint=key,
                            tier=tier,
                            source_asset_id=uuid.UUID(cached["asset_id"]),
                            batch_id=batch_id,
                            is_current=False,
                        )
                        session.add(asset)
                        await session.commit()
                        produced.append(asset)
                        logger.info(f"Project {project_id}: scene {order} reused cached asset")
                        continue

            request = AssetRequest(
                project_id=project_id,
                scene_order=order,
                description=description,
                image_prompt=image_prompt,
                is_premium=is_premium,
            )
            result = await self._generate(
                project_id, "assets", expected, started_from, generator.generate(request)
            )

            async with self.serializer.lock(project_id):
                async with self._session_factory() as session:
                    project = await self._load(session, project_id)
                    asset = Asset(
                        id=uuid.uuid4(),
                        project_id=project_id,
                        scene_order=order,
                        url=result.artifact.url,
                        cost=result.cost,
                        reused=False,
                        fingerprint=key,
                        tier=tier,
                        batch_id=batch_id,
                        is_current=False,
                    )
                    session.add(asset)
                    await cache.store(
                        session, project_id, key, "assets",
                        {"asset_id": str(asset.id), "url": asset.url},
                    )
                    await ledger.add_cost(session, project, "assets", result.cost)
                    await session.commit()
            produced.append(asset)
            pass_cost += result.cost
            logger.info(f"Project {project_id}: scene {order} asset generated (${result.cost:.4f})")

        async with self.serializer.lock(project_id):
            async with self._session_factory() as session:
                project = await self._load(session, project_id)
                await session.execute(
                    update(Asset)
                    .where(Asset.project_id == project_id, Asset.is_current.is_(True))
                    .values(is_current=False)
                )
                await session.execute(
                    update(Asset).where(Asset.batch_id == batch_id).values(is_current=True)
                )
                self._advance_if(project, expected, "assets_review")
                await session.commit()

        for asset in produced:
            asset.is_current = True
        reused = sum(1 for a in produced if a.reused)
        logger.info(
            f"Project {project_id}: asset pass complete, {len(produced) - reused} generated, "
            f"{reused} reused (${pass_cost:.4f})"
        )
        return AssetPass(assets=produced, cost=pass_cost)

    async def regenerate_asset(self, project_id: uuid.UUID, scene_order: int) -> Asset:
        """Regenerate one scene's asset, bypassing the cache for that scene."""
        generator = self._require(self.generators.asset_generator, "assets")
        return await self._run_claimed(
            project_id, "regenerate_asset",
            self._regenerate_asset(project_id, generator, scene_order),
        )

    async def _regenerate_asset(self, project_id, generator, scene_order):
        async with self.serializer.lock(project_id):
            async with self._session_factory() as session:
                project = await self._load(session, project_id)
                started_from = ensure_command_allowed(
                    "regenerate_asset", project.status, project.failed_from
                )
                storyboard = await self._one(session, Storyboard, project_id)
                scene = next(
                    (s for s in (storyboard.scenes if storyboard else []) if s.order == scene_order),
                    None,
                )
                if scene is None:
                    raise NotFoundError(f"Scene {scene_order} not found in storyboard")
                tier = _tier(project)
                key = cache.fingerprint("assets", scene.image_prompt, tier)
                await cache.invalidate(session, project_id, key)
                request = AssetRequest(
                    project_id=project_id,
                    scene_order=scene_order,
                    description=scene.description,
                    image_prompt=scene.image_prompt,
                    is_premium=project.is_premium,
                )
                expected = project.status
                await session.commit()

        result = await self._generate(
            project_id, "assets", expected, started_from, generator.generate(request)
        )

        async with self.serializer.lock(project_id):
            async with self._session_factory() as session:
                project = await self._load(session, project_id)
                await session.execute(
                    update(Asset)
                    .where(
                        Asset.project_id == project_id,
                        Asset.scene_order == scene_order,
                        Asset.is_current.is_(True),
                    )
                    .values(is_current=False)
                )
                asset = Asset(
                    id=uuid.uuid4(),
                    project_id=project_id,
                    scene_order=scene_order,
                    url=result.artifact.url,
                    cost=result.cost,
                    reused=False,
                    fingerprint=key,
                    tier=tier,
                    batch_id=uuid.uuid4(),
                    is_current=True,
                )
                session.add(asset)
                await cache.store(
                    session, project_id, key, "assets",
                    {"asset_id": str(asset.id), "url": asset.url},
                )
                await ledger.add_cost(session, project, "assets", result.cost)
                self._advance_if(project, expected, "assets_review")
                await session.commit()
                logger.info(
                    f"Project {project_id}: scene {scene_order} asset regenerated (${result.cost:.4f})"
                )
                return asset

    async def decide_assets(self, project_id: uuid.UUID, approved: bool) -> Decision:
        """Approve the current assets and enqueue narration and render.

        Raises:
            UnsupportedRevision: If approved is False
        """
        action = approval.decide("assets", approved)
        narrator, renderer = self.generators.narrator, self.generators.renderer
        return await self._approve(
            project_id,
            stage="assets",
            model=Asset,
            status="assets_approved",
            followup="render",
            generator=(narrator, renderer) if narrator and renderer else None,
            kind=action.kind,
        )

    # ------------------------------------------------------------------
    # Narration and render
    # ------------------------------------------------------------------

    async def render_video(self, project_id: uuid.UUID) -> RenderedVideo:
        """Synthesize narration, then assemble the final video."""
        narrator = self._require(self.generators.narrator, "narration")
        renderer = self._require(self.generators.renderer, "render")
        return await self._run_claimed(
            project_id, "render", self._render(project_id, narrator, renderer)
        )

    async def _render(self, project_id, narrator, renderer) -> RenderedVideo:
        async with self.serializer.lock(project_id):
            async with self._session_factory() as session:
                project = await self._load(session, project_id)
                started_from = ensure_command_allowed("render", project.status, project.failed_from)
                script = await self._one(session, Script, project_id)
                storyboard = await self._one(session, Storyboard, project_id)
                assets = {a.scene_order: a for a in await self._current_assets(session, project_id)}
                if script is None or storyboard is None:
                    raise InvalidTransition(
                        "Script and storyboard are required before rendering",
                        status=project.status,
                    )
                missing = [s.order for s in storyboard.scenes if s.order not in assets]
                if missing:
                    raise InvalidTransition(
                        f"Scenes {missing} have no current asset", status=project.status
                    )
                render_scenes = self._render_scenes(script, storyboard, assets)
                narration_request = NarrationRequest(
                    project_id=project_id, language=project.language, text=script.text
                )
                language, duration = project.language, project.duration
                self._set_status(project, "generating_audio")
                await session.commit()
        expected = "generating_audio"

        narration = await self._generate(
            project_id, "narration", expected, started_from, narrator.generate(narration_request)
        )

        async with self.serializer.lock(project_id):
            async with self._session_factory() as session:
                project = await self._load(session, project_id)
                await ledger.add_cost(session, project, "narration", narration.cost)
                advanced = self._advance_if(project, expected, "rendering")
                await session.commit()
        if not advanced:
            raise InvalidTransition(
                "Render abandoned: project status changed during narration",
                status=project.status,
            )

        request = RenderRequest(
            project_id=project_id,
            language=language,
            duration=duration,
            scenes=render_scenes,
            audio_url=narration.artifact.audio_url,
        )
        # A retry starts over from narration
        result = await self._generate(
            project_id, "render", "rendering", started_from, renderer.generate(request)
        )

        async with self.serializer.lock(project_id):
            async with self._session_factory() as session:
                project = await self._load(session, project_id)
                await self._drop(session, RenderedVideo, project_id)
                output = result.artifact
                video = RenderedVideo(
                    project_id=project_id,
                    url=output.url,
                    audio_url=narration.artifact.audio_url,
                    subtitles_url=output.subtitles_url,
                    duration=output.duration,
                    resolution=output.resolution,
                    file_size=output.file_size,
                    format=output.format,
                    cost=narration.cost + result.cost,
                )
                session.add(video)
                await ledger.add_cost(session, project, "render", result.cost)
                self._advance_if(project, "rendering", "ready")
                await session.commit()
                logger.info(f"Project {project_id}: video ready at {video.url}")
                return video

    @staticmethod
    def _render_scenes(
        script: Script, storyboard: Storyboard, assets: dict[int, Asset]
    ) -> list[RenderScene]:
        """Pair storyboard shots with script timing and current assets."""
        timing = {s.order: s for s in script.scenes}
        scenes = []
        cursor = 0.0
        for shot in storyboard.scenes:
            spoken = timing.get(shot.order)
            if spoken is not None:
                start, end, narration = spoken.start_time, spoken.end_time, spoken.narration
            else:
                start, end, narration = cursor, cursor + (shot.duration or 0.0), ""
            cursor = end
            scenes.append(RenderScene(
                order=shot.order,
                narration=narration,
                start_time=start,
                end_time=end,
                asset_url=assets[shot.order].url,
                transition=shot.transition,
            ))
        return scenes

    # ------------------------------------------------------------------
    # Edits and navigation
    # ------------------------------------------------------------------

    async def propose_edit(
        self,
        project_id: uuid.UUID,
        artifact: Union[ScriptOutput, StoryboardOutput],
    ) -> Union[Script, Storyboard]:
        """Replace the script or storyboard with a user-edited version.

        Only allowed while that artifact is under review. Cost is unchanged.
        """
        if isinstance(artifact, ScriptOutput):
            command, model = "edit_script", Script
        elif isinstance(artifact, StoryboardOutput):
            command, model = "edit_storyboard", Storyboard
        else:
            raise ValidationError(f"Cannot edit artifact of type {type(artifact).__name__}")

        return await self._run_claimed(project_id, command, self._edit(project_id, command, model, artifact))

    async def _edit(self, project_id, command, model, artifact):
        async with self.serializer.lock(project_id):
            async with self._session_factory() as session:
                project = await self._load(session, project_id)
                ensure_command_allowed(command, project.status)
                current = await self._one(session, model, project_id)
                if current is None:
                    raise InvalidTransition(f"Nothing to edit for '{command}'", status=project.status)
                if model is Script:
                    current.text = artifact.script
                    current.word_count = artifact.word_count
                    current.estimated_duration = artifact.estimated_duration
                    current.scenes = self._script_scenes(artifact.scenes)
                else:
                    summary = artifact.storyboard
                    current.title = summary.title
                    current.description = summary.description
                    current.visual_style = summary.visual_style
                    current.color_palette = summary.color_palette
                    current.scenes = self._storyboard_scenes(artifact)
                await session.commit()
                logger.info(f"Project {project_id}: applied user edit ({command})")
                return current

    async def navigate_back(self, project_id: uuid.UUID, target: str) -> VideoProject:
        """Move the project back to an earlier review state.

        Allowed while a stage is in flight; the in-flight call still records
        its artifact and cost but will not move the status.
        """
        if target not in BACK_TARGETS:
            raise ValidationError(
                f"target must be one of {sorted(BACK_TARGETS)}, got '{target}'"
            )
        async with self.serializer.lock(project_id):
            async with self._session_factory() as session:
                project = await self._load(session, project_id)
                if project.status != "failed" and not is_later_than(project.status, target):
                    raise InvalidTransition(
                        f"Cannot navigate back to '{target}' from '{project.status}'",
                        status=project.status,
                    )
                needed = BACK_TARGETS[target]
                if needed == "assets":
                    present = bool(await self._current_assets(session, project_id))
                else:
                    model = Script if needed == "script" else Storyboard
                    present = await self._one(session, model, project_id) is not None
                if not present:
                    raise InvalidTransition(
                        f"Cannot navigate back to '{target}': no {needed} exists",
                        status=project.status,
                    )
                ensure_transition(project.status, target)
                self._set_status(project, target)
                await session.commit()
                return project
