from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from taskpod.errors import TaskNotFound
from taskpod.schemas import ExecutionRecord, TaskUpsertRequest, UnitPhase

from conftest import FINISHED_AT, STARTED_AT


def _record(unit_name: str, output: str = "hello\n", offset: int = 0) -> ExecutionRecord:
    return ExecutionRecord(
        task_id="t1",
        unit_name=unit_name,
        phase=UnitPhase.SUCCEEDED,
        exit_code=0,
        start_time=STARTED_AT + timedelta(seconds=offset),
        end_time=FINISHED_AT + timedelta(seconds=offset),
        output=output,
    )


def _hello(**overrides) -> TaskUpsertRequest:
    fields = {"id": "t1", "name": "Print Hello", "owner": "ops", "command": "echo hello"}
    fields.update(overrides)
    return TaskUpsertRequest(**fields)


def test_save_get_and_replace_task(open_repository):
    async def scenario():
        async with open_repository() as repository:
            created = await repository.save_task(_hello())
            replaced = await repository.save_task(_hello(name="Print Bye", command="echo bye"))
            return created, replaced, await repository.get_task("t1")

    created, replaced, stored = asyncio.run(scenario())

    assert created.updated_at is None
    assert replaced.updated_at is not None
    assert stored.name == "Print Bye"
    assert stored.command == "echo bye"
    assert stored.owner == "ops"


def test_search_by_name_substring(open_repository):
    async def scenario():
        async with open_repository() as repository:
            await repository.save_task(_hello())
            await repository.save_task(_hello(id="t2", name="Disk Usage", command="df -h"))
            await repository.save_task(_hello(id="t3", name="Hello Again", command="echo again"))
            return (
                await repository.search_by_name("Hello"),
                await repository.search_by_name("Usage"),
                await repository.search_by_name("nothing"),
                await repository.search_by_name("%"),
            )

    hello, usage, nothing, wildcard = asyncio.run(scenario())

    assert {task.id for task in hello} == {"t1", "t3"}
    assert [task.id for task in usage] == ["t2"]
    assert nothing == []
    assert wildcard == []


def test_append_assigns_sequences_in_completion_order(open_repository):
    async def scenario():
        async with open_repository() as repository:
            await repository.save_task(_hello())
            first = await repository.append_execution("t1", _record("task-t1-a"))
            second = await repository.append_execution("t1", _record("task-t1-b", output="again\n", offset=10))
            return first, second, await repository.list_executions("t1")

    first, second, history = asyncio.run(scenario())

    assert (first.sequence, second.sequence) == (1, 2)
    assert [record.unit_name for record in history] == ["task-t1-a", "task-t1-b"]
    assert history[0].start_time == STARTED_AT
    assert history[0].end_time == FINISHED_AT
    assert history[1].output == "again\n"


def test_concurrent_appends_never_drop_records(open_repository):
    async def scenario():
        async with open_repository() as repository:
            await repository.save_task(_hello())
            await asyncio.gather(
                *(repository.append_execution("t1", _record(f"task-t1-{i}")) for i in range(8))
            )
            return await repository.list_executions("t1")

    history = asyncio.run(scenario())

    assert [record.sequence for record in history] == list(range(1, 9))
    assert {record.unit_name for record in history} == {f"task-t1-{i}" for i in range(8)}


def test_append_to_missing_task_fails(open_repository):
    async def scenario():
        async with open_repository() as repository:
            await repository.append_execution("ghost", _record("task-ghost-a"))

    with pytest.raises(TaskNotFound):
        asyncio.run(scenario())


def test_saving_task_keeps_history(open_repository):
    async def scenario():
        async with open_repository() as repository:
            await repository.save_task(_hello())
            await repository.append_execution("t1", _record("task-t1-a"))
            await repository.save_task(_hello(name="Renamed"))
            return await repository.list_executions("t1")

    assert len(asyncio.run(scenario())) == 1


def test_delete_task_removes_history(open_repository):
    async def scenario():
        async with open_repository() as repository:
            await repository.save_task(_hello())
            await repository.append_execution("t1", _record("task-t1-a"))
            deleted = await repository.delete_task("t1")
            missing = await repository.delete_task("t1")
            return deleted, missing, await repository.get_task("t1"), await repository.list_executions("t1")

    deleted, missing, task, history = asyncio.run(scenario())

    assert deleted is True
    assert missing is False
    assert task is None
    assert history == []


def test_append_locks_do_not_outlive_appends(open_repository):
    async def scenario():
        async with open_repository() as repository:
            for i in range(20):
                await repository.save_task(_hello(id=f"t{i}", name=f"Task {i}"))
                await asyncio.gather(
                    repository.append_execution(f"t{i}", _record(f"task-t{i}-a")),
                    repository.append_execution(f"t{i}", _record(f"task-t{i}-b", offset=1)),
                )
                await repository.delete_task(f"t{i}")
            return dict(repository._append_locks)

    assert asyncio.run(scenario()) == {}
