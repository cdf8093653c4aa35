"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

import pytest

from taskpod.config import Settings
from taskpod.database.models import Task
from taskpod.database.session import Database
from taskpod.errors import UnitClientError
from taskpod.repository import TaskRepository
from taskpod.schemas import ExecutionRecord, UnitHandle, UnitPhase, UnitStatus
from taskpod.units.base import ExecutionUnitClient

STARTED_AT = datetime(2024, 5, 1, 12, 0, 0, 123000, tzinfo=timezone.utc)
FINISHED_AT = STARTED_AT + timedelta(seconds=2, milliseconds=456)


def status(
    phase: UnitPhase,
    started_at: datetime | None = STARTED_AT,
    terminated_at: datetime | None = FINISHED_AT,
    exit_code: int | None = 0,
) -> UnitStatus:
    if not phase.is_terminal:
        terminated_at = None
        exit_code = None
    return UnitStatus(phase=phase, started_at=started_at, terminated_at=terminated_at, exit_code=exit_code)


class FakeUnitClient(ExecutionUnitClient):
    """Scripted unit client that records every call.

    Each created unit walks its own copy of ``script``; the last entry repeats.
    Entries that are exceptions are raised instead of returned.
    """

    def __init__(
        self,
        script: list[UnitStatus | Exception] | None = None,
        output: str = "hello\n",
        create_error: Exception | None = None,
        output_error: Exception | None = None,
        delete_error: Exception | None = None,
    ):
        self.script = script or [status(UnitPhase.RUNNING), status(UnitPhase.SUCCEEDED)]
        self.output = output
        self.create_error = create_error
        self.output_error = output_error
        self.delete_error = delete_error
        self.calls: list[tuple[str, str]] = []
        self.created: list[str] = []
        self.deleted: list[str] = []
        self.live: set[str] = set()
        self._positions: dict[str, int] = {}

    @property
    def backend_name(self) -> str:
        return "fake"

    async def create_unit(self, name: str, command: str) -> UnitHandle:
        self.calls.append(("create", name))
        if self.create_error:
            raise self.create_error
        self.created.append(name)
        self.live.add(name)
        self._positions[name] = 0
        return UnitHandle(name=name, namespace="test")

    async def get_status(self, handle: UnitHandle) -> UnitStatus:
        self.calls.append(("status", handle.name))
        position = self._positions[handle.name]
        self._positions[handle.name] = position + 1
        entry = self.script[min(position, len(self.script) - 1)]
        if isinstance(entry, Exception):
            raise entry
        return entry

    async def get_output(self, handle: UnitHandle) -> str:
        self.calls.append(("output", handle.name))
        if self.output_error:
            raise self.output_error
        return self.output

    async def delete_unit(self, handle: UnitHandle) -> None:
        self.calls.append(("delete", handle.name))
        if self.delete_error:
            raise self.delete_error
        self.live.discard(handle.name)
        self.deleted.append(handle.name)


class MemoryStore:
    """In-memory task registry and record store."""

    def __init__(self, tasks: list[Task] | None = None, append_error: Exception | None = None):
        self.tasks = {task.id: task for task in tasks or []}
        self.history: dict[str, list[ExecutionRecord]] = {}
        self.append_error = append_error
        self._lock = asyncio.Lock()

    async def get_task(self, task_id: str) -> Task | None:
        return self.tasks.get(task_id)

    async def append_execution(self, task_id: str, record: ExecutionRecord) -> ExecutionRecord:
        if self.append_error:
            raise self.append_error
        async with self._lock:
            records = self.history.setdefault(task_id, [])
            stored = record.model_copy(update={"sequence": len(records) + 1})
            records.append(stored)
            return stored


def transport_error(message: str = "connection reset") -> UnitClientError:
    return UnitClientError(message)


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'taskpod.db'}",
        kube_api_url="https://kubernetes.test",
        kube_token="test-token",
        poll_interval_seconds=0.01,
        wait_timeout_seconds=1.0,
        max_poll_failures=2,
    )


@pytest.fixture()
def hello_task() -> Task:
    return Task(id="t1", name="Print Hello", owner="ops", command="echo hello")


@pytest.fixture()
def open_repository(settings) -> Callable:
    """Async context manager yielding a repository on a fresh SQLite file."""

    @asynccontextmanager
    async def _open():
        db = Database(settings)
        await db.init()
        try:
            yield TaskRepository(db)
        finally:
            await db.close()

    return _open
