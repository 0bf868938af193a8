"""Project-scoped regeneration cache.

Maps a fingerprint of (stage, canonical prompt, quality tier) to a
previously produced artifact so identical requests are not paid twice.
Entries live for the life of the project; only invalidate() removes one.
"""

import hashlib
import json
import logging
import re
import unicodedata
import uuid
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from storyflow.db.models import GenerationCacheEntry

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def canonical_prompt(prompt: str) -> str:
    """NFC-normalise and collapse whitespace. Case is significant."""
    return _WHITESPACE.sub(" ", unicodedata.normalize("NFC", prompt or "")).strip()


def fingerprint(stage: str, prompt: str, tier: str) -> str:
    """Deterministic SHA-256 hex key for a generation request."""
    payload = json.dumps(
        {"stage": stage, "prompt": canonical_prompt(prompt), "tier": tier},
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


async def lookup(
    session: AsyncSession, project_id: uuid.UUID, key: str
) -> Optional[dict]:
    """Return the cached artifact for this project and fingerprint, if any."""
    result = await session.execute(
        select(GenerationCacheEntry.artifact).where(
            GenerationCacheEntry.project_id == project_id,
            GenerationCacheEntry.fingerprint == key,
        )
    )
    return result.scalar_one_or_none()


async def store(
    session: AsyncSession,
    project_id: uuid.UUID,
    key: str,
    stage: str,
    artifact: dict,
) -> None:
    """Store (or overwrite) the artifact for a fingerprint. Does not commit."""
    result = await session.execute(
        select(GenerationCacheEntry).where(
            GenerationCacheEntry.project_id == project_id,
            GenerationCacheEntry.fingerprint == key,
        )
    )
    entry = result.scalar_one_or_none()
    if entry is None:
        session.add(GenerationCacheEntry(
            project_id=project_id,
            fingerprint=key,
            stage=stage,
            artifact=artifact,
        ))
    else:
        entry.artifact = artifact
        entry.stage = stage


async def invalidate(session: AsyncSession, project_id: uuid.UUID, key: str) -> bool:
    """Drop one fingerprint for a project. Returns True if an entry existed."""
    result = await session.execute(
        delete(GenerationCacheEntry).where(
            GenerationCacheEntry.project_id == project_id,
            GenerationCacheEntry.fingerprint == key,
        )
    )
    removed = (result.rowcount or 0) > 0
    if removed:
        logger.info("Project %s: invalidated cache entry %s", project_id, key[:12])
    return removed
