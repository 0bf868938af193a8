"""Per-project cost ledger.

Append-only CostEntry rows plus a running VideoProject.total_cost. Callers
add cost exactly once per successful generator call, inside the same
session that records that call's artifact.
"""

import logging
import math
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storyflow.db.models import CostEntry, VideoProject
from storyflow.orchestrator.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


async def add_cost(
    session: AsyncSession,
    project: VideoProject,
    stage: str,
    amount: float,
) -> float:
    """Record a generator charge and return the new project total.

    Zero amounts are recorded too so every successful call leaves a row.
    Does not commit; the caller's commit makes the charge durable together
    with the artifact it paid for.

    Raises:
        ValidationError: If amount is negative or not finite
    """
    if amount is None or not math.isfinite(amount) or amount < 0:
        raise ValidationError(f"Cost must be a non-negative number, got {amount!r}")

    session.add(CostEntry(project_id=project.id, stage=stage, amount=float(amount)))
    project.total_cost = (project.total_cost or 0.0) + float(amount)
    logger.debug(
        "Project %s: +%.4f for %s (total %.4f)",
        project.id, amount, stage, project.total_cost,
    )
    return project.total_cost


async def total_cost(session: AsyncSession, project_id: uuid.UUID) -> float:
    """Return the accumulated cost for a project."""
    project = await session.get(VideoProject, project_id)
    if project is None:
        raise NotFoundError(f"Video {project_id} not found")
    return project.total_cost or 0.0


async def ledger_entries(session: AsyncSession, project_id: uuid.UUID) -> list[CostEntry]:
    """Return ledger rows for a project in insertion order."""
    result = await session.execute(
        select(CostEntry)
        .where(CostEntry.project_id == project_id)
        .order_by(CostEntry.created_at, CostEntry.id)
    )
    return list(result.scalars().all())


async def ledger_sum(session: AsyncSession, project_id: uuid.UUID) -> float:
    """Sum of ledger rows; equals VideoProject.total_cost."""
    result = await session.execute(
        select(func.coalesce(func.sum(CostEntry.amount), 0.0))
        .where(CostEntry.project_id == project_id)
    )
    return float(result.scalar_one())
