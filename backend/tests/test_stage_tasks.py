"""Per-project claims and follow-up tasks."""

import asyncio
import uuid

import pytest

from storyflow.orchestrator.errors import Conflict
from storyflow.workers.stage_tasks import ProjectSerializer


def test_claim_conflicts_per_project():
    serializer = ProjectSerializer()
    first, second = uuid.uuid4(), uuid.uuid4()

    serializer.claim(first, "script")
    serializer.claim(second, "script")
    with pytest.raises(Conflict) as exc:
        serializer.claim(first, "analysis")
    assert exc.value.in_flight == "script"

    serializer.release(first, "analysis")
    assert serializer.in_flight(first) == "script"
    serializer.release(first, "script")
    assert serializer.in_flight(first) is None


def test_handoff_keeps_project_claimed():
    serializer = ProjectSerializer()
    pid = uuid.uuid4()
    serializer.claim(pid, "decide_script")
    serializer.handoff(pid, "decide_script", "storyboard")
    assert serializer.in_flight(pid) == "storyboard"


@pytest.mark.asyncio
async def test_spawn_releases_claim_whatever_the_outcome(caplog):
    serializer = ProjectSerializer()
    pid = uuid.uuid4()

    async def boom():
        raise RuntimeError("generator down")

    serializer.claim(pid, "assets")
    task = serializer.spawn(pid, "assets", boom())
    assert task.get_name() == f"assets_{pid}"
    await serializer.wait_idle(pid)

    assert serializer.in_flight(pid) is None
    assert "generator down" in caplog.text

    serializer.claim(pid, "render")
    serializer.spawn(pid, "render", asyncio.sleep(0))
    await serializer.shutdown()
    assert serializer.in_flight(pid) is None
    assert serializer.tracked_projects() == 0


@pytest.mark.asyncio
async def test_lock_serializes_and_is_dropped_when_idle():
    serializer = ProjectSerializer()
    pid = uuid.uuid4()
    order: list[str] = []
    holding = asyncio.Event()

    async def first():
        async with serializer.lock(pid):
            holding.set()
            await asyncio.sleep(0.01)
            order.append("first")

    async def second():
        await holding.wait()
        async with serializer.lock(pid):
            order.append("second")

    await asyncio.gather(first(), second())

    assert order == ["first", "second"]
    assert serializer.tracked_projects() == 0


@pytest.mark.asyncio
async def test_lock_entry_survives_cancelled_waiter():
    serializer = ProjectSerializer()
    pid = uuid.uuid4()
    release = asyncio.Event()

    async def holder():
        async with serializer.lock(pid):
            await release.wait()

    holding = asyncio.create_task(holder())
    await asyncio.sleep(0)

    async def waiter():
        async with serializer.lock(pid):
            pass

    waiting = asyncio.create_task(waiter())
    await asyncio.sleep(0)
    waiting.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiting
    assert serializer.tracked_projects() == 1

    release.set()
    await holding
    assert serializer.tracked_projects() == 0
