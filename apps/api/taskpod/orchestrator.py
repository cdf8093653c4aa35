"""Task execution orchestrator.

Drives one execution through its lifecycle:

validate → create unit → poll until terminal → capture output → delete unit → append record

Once the unit has been created it is deleted on every exit path: terminal
phase, wait budget exceeded, repeated status read failures, or cancellation
of the calling coroutine. Only a failed create skips deletion.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Protocol
from uuid import uuid4

from taskpod.config import Settings, get_settings
from taskpod.database.models import Task
from taskpod.errors import (
    ExecutionObservationFailed,
    ExecutionTimedOut,
    PersistenceFailed,
    ProvisioningFailed,
    TaskNotFound,
    UnitClientError,
    ValidationFailed,
)
from taskpod.schemas import (
    ExecutionOutcome,
    ExecutionRecord,
    ExecutionWarning,
    UnitHandle,
    UnitStatus,
    to_utc_millis,
    utc_now,
)
from taskpod.units.base import ExecutionUnitClient
from taskpod.validator import CommandValidator


logger = logging.getLogger(__name__)

UNIT_NAME_PREFIX = "task"
# DNS-1123 label limit
MAX_UNIT_NAME_LENGTH = 63


class ExecutionStore(Protocol):
    async def get_task(self, task_id: str) -> Task | None: ...

    async def append_execution(self, task_id: str, record: ExecutionRecord) -> ExecutionRecord: ...


def generate_unit_name(task_id: str) -> str:
    """Fresh, collision-improbable unit name derived from the task ID.

    Example: ``task-nightly-report-3f2b...`` (always <= 63 chars)
    """
    suffix = uuid4().hex
    budget = MAX_UNIT_NAME_LENGTH - len(UNIT_NAME_PREFIX) - len(suffix) - 2
    slug = re.sub(r"[^a-z0-9]+", "-", task_id.lower()).strip("-")[:budget].strip("-")
    if slug:
        return f"{UNIT_NAME_PREFIX}-{slug}-{suffix}"
    return f"{UNIT_NAME_PREFIX}-{suffix}"


class ExecutionOrchestrator:
    """Runs task commands in single-use execution units.

    The orchestrator holds no per-execution state, so any number of
    ``execute`` calls may run concurrently on one instance.
    """

    def __init__(
        self,
        unit_client: ExecutionUnitClient,
        store: ExecutionStore,
        validator: CommandValidator | None = None,
        *,
        poll_interval: float | None = None,
        wait_timeout: float | None = None,
        max_poll_failures: int | None = None,
        max_output_bytes: int | None = None,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        self.unit_client = unit_client
        self.store = store
        self.validator = validator or CommandValidator(settings.denied_commands)
        self.poll_interval = poll_interval if poll_interval is not None else settings.poll_interval_seconds
        self.wait_timeout = wait_timeout if wait_timeout is not None else settings.wait_timeout_seconds
        self.max_poll_failures = (
            max_poll_failures if max_poll_failures is not None else settings.max_poll_failures
        )
        self.max_output_bytes = max_output_bytes or settings.max_output_bytes

    async def run(self, task_id: str) -> ExecutionOutcome:
        """Look up a task by ID and execute it."""
        task = await self.store.get_task(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return await self.execute(task)

    async def execute(self, task: Task) -> ExecutionOutcome:
        """Execute the task's command and append the result to its history.

        Raises:
            ValidationFailed: command empty or denied; nothing was created
            ProvisioningFailed: unit creation failed; nothing to clean up
            ExecutionTimedOut: wait budget exceeded; unit deleted, no record
            ExecutionObservationFailed: status reads kept failing; unit deleted, no record
            PersistenceFailed: the command ran but the record was not stored
        """
        if not task.command or not task.command.strip():
            raise ValidationFailed(f"Task {task.id} has no command")
        if not self.validator.validate(task.command):
            raise ValidationFailed(f"Command for task {task.id} contains a denied keyword")

        unit_name = generate_unit_name(task.id)
        provisioned_at = utc_now()
        try:
            handle = await self.unit_client.create_unit(unit_name, task.command)
        except UnitClientError as e:
            logger.error(f"[{unit_name}] Failed to create unit for task {task.id}: {e}")
            raise ProvisioningFailed(f"Could not create unit for task {task.id}: {e}") from e

        logger.info(f"[{unit_name}] Created unit for task {task.id}")
        warnings: list[str] = []
        try:
            status = await self._wait_for_terminal(handle)
            output, truncated = await self._capture_output(handle, warnings)
            observed_at = utc_now()
        finally:
            await self._delete_unit(handle, warnings)

        record = ExecutionRecord(
            task_id=task.id,
            unit_name=handle.name,
            phase=status.phase,
            exit_code=status.exit_code,
            # Fallbacks: provisioning instant for start, observation instant for end
            start_time=to_utc_millis(status.started_at or provisioned_at),
            end_time=to_utc_millis(status.terminated_at or observed_at),
            output=output,
            output_truncated=truncated,
        )
        if status.terminated_at is None:
            logger.info(f"[{unit_name}] No termination time reported, using observation time")

        try:
            record = await self.store.append_execution(task.id, record)
        except Exception as e:
            logger.error(f"[{unit_name}] Failed to persist execution of task {task.id}: {e}")
            raise PersistenceFailed(
                f"Execution of task {task.id} completed but could not be stored: {e}",
                record=record,
            ) from e

        logger.info(
            f"[{unit_name}] Task {task.id} finished with phase {record.phase.value} "
            f"(execution #{record.sequence})"
        )
        return ExecutionOutcome(execution=record, warnings=warnings)

    async def _wait_for_terminal(self, handle: UnitHandle) -> UnitStatus:
        try:
            return await asyncio.wait_for(self._poll(handle), timeout=self.wait_timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"[{handle.name}] Timed out after {self.wait_timeout:g}s")
            raise ExecutionTimedOut(handle.name, self.wait_timeout) from e

    async def _poll(self, handle: UnitHandle) -> UnitStatus:
        failures = 0
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                status = await self.unit_client.get_status(handle)
            except UnitClientError as e:
                failures += 1
                if failures > self.max_poll_failures:
                    logger.error(f"[{handle.name}] Giving up after {failures} failed status reads")
                    raise ExecutionObservationFailed(handle.name, str(e)) from e
                logger.warning(
                    f"[{handle.name}] Status read failed ({failures}/{self.max_poll_failures}), retrying: {e}"
                )
                continue

            failures = 0
            if status.phase.is_terminal:
                logger.info(f"[{handle.name}] Reached phase {status.phase.value}")
                return status
            logger.debug(f"[{handle.name}] Phase {status.phase.value}")

    async def _capture_output(self, handle: UnitHandle, warnings: list[str]) -> tuple[str, bool]:
        """Best-effort log read. The command has already run, so failure only warns."""
        try:
            output = await self.unit_client.get_output(handle)
        except UnitClientError as e:
            logger.warning(f"[{handle.name}] Output capture failed, recording empty output: {e}")
            warnings.append(f"{ExecutionWarning.OUTPUT_CAPTURE_FAILED.value}: {e}")
            return "", False

        encoded = output.encode("utf-8")
        if len(encoded) > self.max_output_bytes:
            output = encoded[: self.max_output_bytes].decode("utf-8", errors="ignore")
        return output, len(encoded) >= self.max_output_bytes

    async def _delete_unit(self, handle: UnitHandle, warnings: list[str]) -> None:
        try:
            await self.unit_client.delete_unit(handle)
        except UnitClientError as e:
            logger.error(f"[{handle.name}] Failed to delete unit, leaving it for external cleanup: {e}")
            warnings.append(f"{ExecutionWarning.UNIT_DELETE_FAILED.value}: {e}")
        else:
            logger.info(f"[{handle.name}] Deleted unit")

