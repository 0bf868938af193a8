"""Per-project serialization of stage commands and follow-up tasks.

At most one generator-backed stage command runs per project. Claims are
taken synchronously (no await between check and set) so a duplicate
command is rejected before it can reach a generator. Record mutations run
under a per-project asyncio.Lock; different projects never contend. A
project's lock is dropped once no coroutine holds or waits on it.

Follow-up commands enqueued by approval decisions run as background tasks
named "<stage>_<project_id>". Their outcome is persisted on the project by
the orchestrator; the serializer only logs failures.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Optional, TypeVar

from storyflow.orchestrator.errors import Conflict

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProjectSerializer:
    """In-flight markers, record locks and follow-up tasks per project."""

    def __init__(self) -> None:
        # project id -> (lock, coroutines holding or waiting on it)
        self._locks: dict[uuid.UUID, tuple[asyncio.Lock, int]] = {}
        self._in_flight: dict[uuid.UUID, str] = {}
        self._tasks: dict[uuid.UUID, set[asyncio.Task]] = {}

    @asynccontextmanager
    async def lock(self, project_id: uuid.UUID) -> AsyncIterator[None]:
        """Hold the lock guarding read-modify-write of one project record."""
        lock, users = self._locks.get(project_id, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[project_id] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[project_id]
            if users == 1:
                del self._locks[project_id]
            else:
                self._locks[project_id] = (lock, users - 1)

    def tracked_projects(self) -> int:
        """Number of projects with a live lock, claim or follow-up task."""
        return len(set(self._locks) | set(self._in_flight) | set(self._tasks))

    def in_flight(self, project_id: uuid.UUID) -> Optional[str]:
        """Name of the stage currently in flight for a project, if any."""
        return self._in_flight.get(project_id)

    def claim(self, project_id: uuid.UUID, stage: str) -> None:
        """Mark a stage in flight.

        Raises:
            Conflict: If any stage is already in flight for this project
        """
        current = self._in_flight.get(project_id)
        if current is not None:
            raise Conflict(project_id, current)
        self._in_flight[project_id] = stage
        logger.debug("Project %s: claimed %s", project_id, stage)

    def release(self, project_id: uuid.UUID, stage: str) -> None:
        """Clear the in-flight marker if it still belongs to stage."""
        if self._in_flight.get(project_id) == stage:
            del self._in_flight[project_id]
            logger.debug("Project %s: released %s", project_id, stage)

    def handoff(self, project_id: uuid.UUID, from_stage: str, to_stage: str) -> None:
        """Pass an in-flight claim from one command to its follow-up.

        Release and re-claim happen without an await in between, so no other
        command can slip in.
        """
        self.release(project_id, from_stage)
        self.claim(project_id, to_stage)

    def spawn(self, project_id: uuid.UUID, stage: str, work: Awaitable[T]) -> asyncio.Task:
        """Run an already-claimed stage in the background.

        The claim is released when the work finishes, whatever the outcome.
        """
        task_id = f"{stage}_{project_id}"

        async def _run() -> T:
            try:
                return await work
            finally:
                self.release(project_id, stage)

        task = asyncio.create_task(_run(), name=task_id)
        self._tasks.setdefault(project_id, set()).add(task)
        task.add_done_callback(lambda t: self._on_done(project_id, task_id, t))
        logger.info(f"Project {project_id}: enqueued follow-up '{stage}'")
        return task

    def _on_done(self, project_id: uuid.UUID, task_id: str, task: asyncio.Task) -> None:
        tasks = self._tasks.get(project_id, set())
        tasks.discard(task)
        if not tasks:
            self._tasks.pop(project_id, None)
        if task.cancelled():
            logger.warning(f"Follow-up {task_id} cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Follow-up {task_id} failed: {type(exc).__name__}: {exc}")

    async def wait_idle(self, project_id: uuid.UUID) -> None:
        """Wait until no follow-up task is pending for the project.

        Follow-up failures are already recorded on the project, so they are
        not re-raised here.
        """
        while self._tasks.get(project_id):
            await asyncio.gather(*list(self._tasks[project_id]), return_exceptions=True)

    async def shutdown(self) -> None:
        """Wait for every outstanding follow-up (used at app shutdown)."""
        pending = [t for tasks in self._tasks.values() for t in tasks]
        if pending:
            logger.info(f"Waiting for {len(pending)} follow-up task(s)")
            await asyncio.gather(*pending, return_exceptions=True)
