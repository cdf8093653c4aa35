"""Task registry and execution record store.

The registry is plain CRUD over the ``tasks`` table. The record store appends
to ``task_executions`` and never updates or removes a row. Appends for the
same task are serialized by a per-task lock inside the process and by the
unique ``(task_id, sequence)`` index across processes: a losing insert is
retried with the next sequence number.
"""

from __future__ import annotations

import asyncio
import logging
import weakref

from sqlalchemy import delete, func
from sqlalchemy.exc import IntegrityError
from sqlmodel import col, select

from taskpod.database.models import Task, TaskExecution
from taskpod.database.session import Database
from taskpod.errors import TaskNotFound
from taskpod.schemas import (
    ExecutionRecord,
    TaskResponse,
    TaskUpsertRequest,
    UnitPhase,
    to_utc_millis,
    utc_now,
)


logger = logging.getLogger(__name__)

# Attempts before a sequence conflict is reported to the caller
MAX_APPEND_ATTEMPTS = 5


def execution_to_record(row: TaskExecution) -> ExecutionRecord:
    return ExecutionRecord(
        task_id=row.task_id,
        sequence=row.sequence,
        unit_name=row.unit_name,
        phase=UnitPhase(row.phase),
        exit_code=row.exit_code,
        start_time=to_utc_millis(row.start_time),
        end_time=to_utc_millis(row.end_time),
        output=row.output,
        output_truncated=row.output_truncated,
    )


def task_to_response(task: Task, executions: list[ExecutionRecord]) -> TaskResponse:
    return TaskResponse(
        id=task.id,
        name=task.name,
        owner=task.owner,
        command=task.command,
        priority=task.priority,
        state=task.state,
        created_at=task.created_at,
        updated_at=task.updated_at,
        executions=executions,
    )


class TaskRepository:
    """Persistence for tasks and their execution history."""

    def __init__(self, db: Database):
        self.db = db
        # Entries disappear once no append for the task holds or awaits the lock
        self._append_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    # =========================================================================
    # Registry
    # =========================================================================

    async def list_tasks(self) -> list[Task]:
        async with self.db.session() as session:
            result = await session.execute(select(Task).order_by(Task.created_at, Task.id))
            return list(result.scalars().all())

    async def search_by_name(self, fragment: str) -> list[Task]:
        """Tasks whose name contains ``fragment``."""
        async with self.db.session() as session:
            result = await session.execute(
                select(Task)
                .where(col(Task.name).contains(fragment, autoescape=True))
                .order_by(Task.created_at, Task.id)
            )
            return list(result.scalars().all())

    async def get_task(self, task_id: str) -> Task | None:
        async with self.db.session() as session:
            return await session.get(Task, task_id)

    async def save_task(self, request: TaskUpsertRequest) -> Task:
        """Create the task, or replace every field of an existing one."""
        async with self.db.session() as session:
            task = await session.get(Task, request.id)
            if task is None:
                task = Task(id=request.id, name=request.name, command=request.command or "")
                session.add(task)
                logger.info(f"Created task {request.id}")
            else:
                task.updated_at = utc_now()
                logger.info(f"Updated task {request.id}")
            task.name = request.name
            task.owner = request.owner
            task.command = request.command or ""
            task.priority = request.priority
            task.state = request.state
        return task

    async def delete_task(self, task_id: str) -> bool:
        """Delete a task and its history. Returns False if it did not exist."""
        async with self.db.session() as session:
            task = await session.get(Task, task_id)
            if task is None:
                return False
            await session.execute(delete(TaskExecution).where(col(TaskExecution.task_id) == task_id))
            await session.delete(task)
        logger.info(f"Deleted task {task_id}")
        return True

    # =========================================================================
    # Execution record store
    # =========================================================================

    async def list_executions(self, task_id: str) -> list[ExecutionRecord]:
        async with self.db.session() as session:
            result = await session.execute(
                select(TaskExecution)
                .where(col(TaskExecution.task_id) == task_id)
                .order_by(col(TaskExecution.sequence))
            )
            return [execution_to_record(row) for row in result.scalars().all()]

    def _append_lock(self, task_id: str) -> asyncio.Lock:
        lock = self._append_locks.get(task_id)
        if lock is None:
            lock = asyncio.Lock()
            self._append_locks[task_id] = lock
        return lock

    async def append_execution(self, task_id: str, record: ExecutionRecord) -> ExecutionRecord:
        """Append ``record`` to the task's history and return it with its sequence."""
        async with self._append_lock(task_id):
            for attempt in range(1, MAX_APPEND_ATTEMPTS + 1):
                try:
                    return await self._insert_next(task_id, record)
                except IntegrityError:
                    if attempt == MAX_APPEND_ATTEMPTS:
                        raise
                    logger.warning(
                        f"[{task_id}] Sequence conflict on append, retrying ({attempt}/{MAX_APPEND_ATTEMPTS})"
                    )
        raise RuntimeError("unreachable")

    async def _insert_next(self, task_id: str, record: ExecutionRecord) -> ExecutionRecord:
        async with self.db.session() as session:
            if await session.get(Task, task_id) is None:
                raise TaskNotFound(task_id)
            result = await session.execute(
                select(func.max(TaskExecution.sequence)).where(col(TaskExecution.task_id) == task_id)
            )
            sequence = (result.scalar_one_or_none() or 0) + 1
            session.add(
                TaskExecution(
                    task_id=task_id,
                    sequence=sequence,
                    unit_name=record.unit_name,
                    phase=record.phase.value,
                    exit_code=record.exit_code,
                    start_time=record.start_time,
                    end_time=record.end_time,
                    output=record.output,
                    output_truncated=record.output_truncated,
                )
            )
        return record.model_copy(update={"task_id": task_id, "sequence": sequence})
