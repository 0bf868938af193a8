"""API route handlers and Pydantic request/response schemas.

Bodies are camelCase on the wire. Every handler delegates to the
StageOrchestrator; errors propagate to the app's exception handlers.
"""

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import FileResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from storyflow.db.models import (
    Asset,
    CostEntry,
    RenderedVideo,
    Script,
    StoryAnalysis,
    Storyboard,
    VideoProject,
)
from storyflow.orchestrator import Decision, NotFoundError, StageOrchestrator
from storyflow.schemas.story import ScriptOutput, ScriptSceneSchema
from storyflow.schemas.storyboard import StoryboardOutput, StoryboardSceneSchema, StoryboardSummary

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")
health_router = APIRouter()

DEFAULT_USER_ID = "local"


def get_orchestrator(request: Request) -> StageOrchestrator:
    """Orchestrator wired at startup (or injected by create_app)."""
    return request.app.state.orchestrator


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# ============================================================================
# Schemas
# ============================================================================

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateVideoRequest(CamelModel):
    """Request schema for POST /api/videos."""
    topic: str
    language: str
    duration: int
    is_premium: bool = False
    user_id: str = DEFAULT_USER_ID


class CreateVideoResponse(CamelModel):
    video_id: str
    status: str


class AnalyzeRequest(CamelModel):
    feedback: Optional[str] = None


class GenerateScriptRequest(CamelModel):
    revision_notes: Optional[str] = None


class DecisionRequest(CamelModel):
    approved: bool
    revision_notes: Optional[str] = None


class BackRequest(CamelModel):
    target: str


class ScriptSceneBody(CamelModel):
    order: int
    narration: str
    start_time: float = Field(ge=0)
    end_time: float = Field(ge=0)
    visual_description: str = ""


class ScriptEditRequest(CamelModel):
    """Request schema for PUT /api/videos/{id}/script."""
    script: str
    scenes: list[ScriptSceneBody] = Field(min_length=1)
    word_count: Optional[int] = Field(default=None, ge=0)
    estimated_duration: Optional[float] = Field(default=None, ge=0)

    def to_output(self) -> ScriptOutput:
        return ScriptOutput(
            script=self.script,
            scenes=[ScriptSceneSchema(**s.model_dump()) for s in self.scenes],
            word_count=self.word_count if self.word_count is not None else len(self.script.split()),
            estimated_duration=(
                self.estimated_duration if self.estimated_duration is not None
                else max(s.end_time for s in self.scenes)
            ),
        )


class StoryboardSummaryBody(CamelModel):
    title: str
    description: str
    visual_style: str
    color_palette: str


class StoryboardSceneBody(CamelModel):
    order: int
    title: str
    description: str
    image_prompt: str
    camera_angle: str
    composition: str = ""
    lighting: str = ""
    transition: str
    duration: float = Field(default=0.0, ge=0)


class StoryboardEditRequest(CamelModel):
    """Request schema for PUT /api/videos/{id}/storyboard."""
    storyboard: StoryboardSummaryBody
    scenes: list[StoryboardSceneBody] = Field(min_length=1)

    def to_output(self) -> StoryboardOutput:
        return StoryboardOutput(
            storyboard=StoryboardSummary(**self.storyboard.model_dump()),
            scenes=[StoryboardSceneSchema(**s.model_dump()) for s in self.scenes],
        )


class VideoSummary(CamelModel):
    id: str
    user_id: str
    topic: str
    language: str
    duration: int
    is_premium: bool
    status: str
    total_cost: float
    failed_from: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class VideoListResponse(CamelModel):
    videos: list[VideoSummary]


class AnalysisResponse(CamelModel):
    concept: str
    themes: list[str]
    characters: list[str]
    mood: str
    cost: float
    created_at: Optional[str] = None


class ScriptSceneResponse(CamelModel):
    order: int
    start_time: float
    end_time: float
    narration: str
    visual_description: str


class ScriptResponse(CamelModel):
    id: str
    text: str
    word_count: int
    estimated_duration: float
    cost: float
    approved_at: Optional[str] = None
    scenes: list[ScriptSceneResponse]


class StoryboardSceneResponse(CamelModel):
    order: int
    title: str
    description: str
    image_prompt: str
    camera_angle: str
    composition: str
    lighting: str
    transition: str
    duration: float


class StoryboardResponse(CamelModel):
    id: str
    title: str
    description: str
    visual_style: str
    color_palette: str
    cost: float
    approved_at: Optional[str] = None
    scenes: list[StoryboardSceneResponse]


class AssetResponse(CamelModel):
    id: str
    scene_order: int
    url: str
    cost: float
    reused: bool
    tier: str
    source_asset_id: Optional[str] = None
    created_at: Optional[str] = None


class AssetPassResponse(CamelModel):
    assets: list[AssetResponse]
    total_cost: float


class RenderedVideoResponse(CamelModel):
    id: str
    url: str
    audio_url: Optional[str] = None
    subtitles_url: Optional[str] = None
    duration: float
    resolution: str
    file_size: int
    format: str
    cost: float
    rendered_at: Optional[str] = None


class VideoDetailResponse(VideoSummary):
    in_flight: Optional[str] = None
    analysis: Optional[AnalysisResponse] = None
    script: Optional[ScriptResponse] = None
    storyboard: Optional[StoryboardResponse] = None
    assets: list[AssetResponse] = Field(default_factory=list)
    rendered_video: Optional[RenderedVideoResponse] = None


class DecisionResponse(CamelModel):
    stage: str
    action: str
    status: str
    followup: Optional[str] = None
    message: str


class CostEntryResponse(CamelModel):
    stage: str
    amount: float
    created_at: Optional[str] = None


class CostResponse(CamelModel):
    video_id: str
    total_cost: float
    entries: list[CostEntryResponse]


class HealthResponse(CamelModel):
    status: str
    database: str
    timestamp: str


# ============================================================================
# ORM -> response converters
# ============================================================================

def _video_fields(p: VideoProject) -> dict:
    return dict(
        id=str(p.id),
        user_id=p.user_id,
        topic=p.topic,
        language=p.language,
        duration=p.duration,
        is_premium=p.is_premium,
        status=p.status,
        total_cost=p.total_cost or 0.0,
        failed_from=p.failed_from,
        error_message=p.error_message,
        created_at=_iso(p.created_at),
        updated_at=_iso(p.updated_at),
    )


def _analysis_to_response(a: StoryAnalysis) -> AnalysisResponse:
    return AnalysisResponse(
        concept=a.concept,
        themes=a.themes or [],
        characters=a.characters or [],
        mood=a.mood,
        cost=a.cost,
        created_at=_iso(a.created_at),
    )


def _script_to_response(s: Script) -> ScriptResponse:
    return ScriptResponse(
        id=str(s.id),
        text=s.text,
        word_count=s.word_count,
        estimated_duration=s.estimated_duration,
        cost=s.cost,
        approved_at=_iso(s.approved_at),
        scenes=[
            ScriptSceneResponse(
                order=sc.order,
                start_time=sc.start_time,
                end_time=sc.end_time,
                narration=sc.narration,
                visual_description=sc.visual_description,
            )
            for sc in s.scenes
        ],
    )


def _storyboard_to_response(sb: Storyboard) -> StoryboardResponse:
    return StoryboardResponse(
        id=str(sb.id),
        title=sb.title,
        description=sb.description,
        visual_style=sb.visual_style,
        color_palette=sb.color_palette,
        cost=sb.cost,
        approved_at=_iso(sb.approved_at),
        scenes=[
            StoryboardSceneResponse(
                order=sc.order,
                title=sc.title,
                description=sc.description,
                image_prompt=sc.image_prompt,
                camera_angle=sc.camera_angle,
                composition=sc.composition,
                lighting=sc.lighting,
                transition=sc.transition,
                duration=sc.duration,
            )
            for sc in sb.scenes
        ],
    )


def _asset_to_response(a: Asset) -> AssetResponse:
    return AssetResponse(
        id=str(a.id),
        scene_order=a.scene_order,
        url=a.url,
        cost=a.cost,
        reused=a.reused,
        tier=a.tier,
        source_asset_id=str(a.source_asset_id) if a.source_asset_id else None,
        created_at=_iso(a.created_at),
    )


def _video_to_response(v: RenderedVideo) -> RenderedVideoResponse:
    return RenderedVideoResponse(
        id=str(v.id),
        url=v.url,
        audio_url=v.audio_url,
        subtitles_url=v.subtitles_url,
        duration=v.duration,
        resolution=v.resolution,
        file_size=v.file_size,
        format=v.format,
        cost=v.cost,
        rendered_at=_iso(v.rendered_at),
    )


def _decision_to_response(d: Decision) -> DecisionResponse:
    return DecisionResponse(
        stage=d.stage,
        action=d.action,
        status=d.status,
        followup=d.followup,
        message=d.message,
    )


def _entry_to_response(e: CostEntry) -> CostEntryResponse:
    return CostEntryResponse(stage=e.stage, amount=e.amount, created_at=_iso(e.created_at))


# ============================================================================
# Endpoint Handlers
# ============================================================================

@health_router.get("/health", response_model=HealthResponse)
async def health_check(orchestrator: StageOrchestrator = Depends(get_orchestrator)):
    """Liveness plus datastore connectivity."""
    connected = await orchestrator.check_database()
    return HealthResponse(
        status="ok" if connected else "degraded",
        database="connected" if connected else "disconnected",
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@router.post("/videos", status_code=201, response_model=CreateVideoResponse)
async def create_video(
    body: CreateVideoRequest,
    orchestrator: StageOrchestrator = Depends(get_orchestrator),
):
    project = await orchestrator.create_project(
        user_id=body.user_id,
        topic=body.topic,
        language=body.language,
        duration=body.duration,
        is_premium=body.is_premium,
    )
    return CreateVideoResponse(video_id=str(project.id), status=project.status)


@router.get("/videos", response_model=VideoListResponse)
async def list_videos(
    user_id: Optional[str] = Query(default=None, alias="userId"),
    status: Optional[str] = None,
    language: Optional[str] = None,
    limit: Optional[int] = Query(default=None, ge=1),
    orchestrator: StageOrchestrator = Depends(get_orchestrator),
):
    """List projects newest first (at most the configured list limit)."""
    projects = await orchestrator.list_projects(
        user_id=user_id, status=status, language=language, limit=limit
    )
    return VideoListResponse(videos=[VideoSummary(**_video_fields(p)) for p in projects])


@router.get("/videos/{video_id}", response_model=VideoDetailResponse)
async def get_video(video_id: uuid.UUID, orchestrator: StageOrchestrator = Depends(get_orchestrator)):
    """Project with every live artifact."""
    detail = await orchestrator.get_project(video_id)
    return VideoDetailResponse(
        **_video_fields(detail.project),
        in_flight=detail.in_flight,
        analysis=_analysis_to_response(detail.analysis) if detail.analysis else None,
        script=_script_to_response(detail.script) if detail.script else None,
        storyboard=_storyboard_to_response(detail.storyboard) if detail.storyboard else None,
        assets=[_asset_to_response(a) for a in detail.assets],
        rendered_video=_video_to_response(detail.video) if detail.video else None,
    )


@router.post("/videos/{video_id}/analyze", response_model=AnalysisResponse)
async def analyze_video(
    video_id: uuid.UUID,
    body: Optional[AnalyzeRequest] = None,
    orchestrator: StageOrchestrator = Depends(get_orchestrator),
):
    analysis = await orchestrator.start_analysis(video_id, feedback=body.feedback if body else None)
    return _analysis_to_response(analysis)


@router.post("/videos/{video_id}/script", response_model=ScriptResponse)
async def generate_script(
    video_id: uuid.UUID,
    body: Optional[GenerateScriptRequest] = None,
    orchestrator: StageOrchestrator = Depends(get_orchestrator),
):
    script = await orchestrator.generate_script(
        video_id, revision_notes=body.revision_notes if body else None
    )
    return _script_to_response(script)


@router.post("/videos/{video_id}/script/approve", response_model=DecisionResponse)
async def decide_script(
    video_id: uuid.UUID,
    body: DecisionRequest,
    orchestrator: StageOrchestrator = Depends(get_orchestrator),
):
    """Approve the script, or reject it with revisionNotes to regenerate."""
    decision = await orchestrator.decide_script(video_id, body.approved, body.revision_notes)
    return _decision_to_response(decision)


@router.put("/videos/{video_id}/script", response_model=ScriptResponse)
async def edit_script(
    video_id: uuid.UUID,
    body: ScriptEditRequest,
    orchestrator: StageOrchestrator = Depends(get_orchestrator),
):
    script = await orchestrator.propose_edit(video_id, body.to_output())
    return _script_to_response(script)


@router.post("/videos/{video_id}/storyboard", response_model=StoryboardResponse)
async def generate_storyboard(video_id: uuid.UUID, orchestrator: StageOrchestrator = Depends(get_orchestrator)):
    storyboard = await orchestrator.generate_storyboard(video_id)
    return _storyboard_to_response(storyboard)


@router.post("/videos/{video_id}/storyboard/approve", response_model=DecisionResponse)
async def decide_storyboard(
    video_id: uuid.UUID,
    body: DecisionRequest,
    orchestrator: StageOrchestrator = Depends(get_orchestrator),
):
    decision = await orchestrator.decide_storyboard(video_id, body.approved)
    return _decision_to_response(decision)


@router.put("/videos/{video_id}/storyboard", response_model=StoryboardResponse)
async def edit_storyboard(
    video_id: uuid.UUID,
    body: StoryboardEditRequest,
    orchestrator: StageOrchestrator = Depends(get_orchestrator),
):
    storyboard = await orchestrator.propose_edit(video_id, body.to_output())
    return _storyboard_to_response(storyboard)


@router.post("/videos/{video_id}/generate-assets", response_model=AssetPassResponse)
async def generate_assets(video_id: uuid.UUID, orchestrator: StageOrchestrator = Depends(get_orchestrator)):
    """Generate one asset per storyboard scene, reusing cached visuals."""
    result = await orchestrator.generate_assets(video_id)
    return AssetPassResponse(
        assets=[_asset_to_response(a) for a in result.assets],
        total_cost=result.cost,
    )


@router.post("/videos/{video_id}/assets/approve", response_model=DecisionResponse)
async def decide_assets(
    video_id: uuid.UUID,
    body: DecisionRequest,
    orchestrator: StageOrchestrator = Depends(get_orchestrator),
):
    decision = await orchestrator.decide_assets(video_id, body.approved)
    return _decision_to_response(decision)


@router.post("/videos/{video_id}/assets/{scene_order}/regenerate", response_model=AssetResponse)
async def regenerate_asset(
    video_id: uuid.UUID,
    scene_order: int,
    orchestrator: StageOrchestrator = Depends(get_orchestrator),
):
    asset = await orchestrator.regenerate_asset(video_id, scene_order)
    return _asset_to_response(asset)


@router.post("/videos/{video_id}/render", response_model=RenderedVideoResponse)
async def render_video(video_id: uuid.UUID, orchestrator: StageOrchestrator = Depends(get_orchestrator)):
    video = await orchestrator.render_video(video_id)
    return _video_to_response(video)


@router.post("/videos/{video_id}/back", response_model=VideoSummary)
async def navigate_back(
    video_id: uuid.UUID,
    body: BackRequest,
    orchestrator: StageOrchestrator = Depends(get_orchestrator),
):
    """Return to an earlier review state; later artifacts are kept."""
    project = await orchestrator.navigate_back(video_id, body.target)
    return VideoSummary(**_video_fields(project))


@router.get("/videos/{video_id}/cost", response_model=CostResponse)
async def get_cost(video_id: uuid.UUID, orchestrator: StageOrchestrator = Depends(get_orchestrator)):
    entries = await orchestrator.cost_entries(video_id)
    total = await orchestrator.total_cost(video_id)
    return CostResponse(
        video_id=str(video_id),
        total_cost=total,
        entries=[_entry_to_response(e) for e in entries],
    )


async def _rendered_file(orchestrator: StageOrchestrator, video_id: uuid.UUID, attr: str, label: str) -> Path:
    detail = await orchestrator.get_project(video_id)
    location = getattr(detail.video, attr, None) if detail.video else None
    if not location:
        raise NotFoundError(f"Video {video_id} has no rendered {label}")
    path = Path(location)
    if not path.exists():
        raise NotFoundError(f"File for video {video_id} not found on disk")
    return path


@router.get("/videos/{video_id}/download")
async def download_video(video_id: uuid.UUID, orchestrator: StageOrchestrator = Depends(get_orchestrator)):
    """Download the rendered MP4."""
    path = await _rendered_file(orchestrator, video_id, "url", "video")
    return FileResponse(
        path=str(path),
        media_type="video/mp4",
        filename=f"video_{video_id}.mp4",
    )


@router.get("/videos/{video_id}/subtitles")
async def download_subtitles(video_id: uuid.UUID, orchestrator: StageOrchestrator = Depends(get_orchestrator)):
    path = await _rendered_file(orchestrator, video_id, "subtitles_url", "subtitles")
    return FileResponse(
        path=str(path),
        media_type="application/x-subrip",
        filename=f"video_{video_id}.srt",
    )
