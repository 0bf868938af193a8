"""Stage orchestration: state graph, approval gate, ledger, cache and driver."""

from storyflow.orchestrator.errors import (
    AdapterFailure,
    Conflict,
    InvalidTransition,
    NotFoundError,
    StageNotImplemented,
    StoryflowError,
    UnsupportedRevision,
    ValidationError,
)
from storyflow.orchestrator.pipeline import AssetPass, Decision, ProjectDetail, StageOrchestrator

__all__ = [
    "AdapterFailure",
    "AssetPass",
    "Conflict",
    "Decision",
    "InvalidTransition",
    "NotFoundError",
    "ProjectDetail",
    "StageNotImplemented",
    "StageOrchestrator",
    "StoryflowError",
    "UnsupportedRevision",
    "ValidationError",
]
