"""Error taxonomy for task execution.

Every failure carries a stable ``error_code`` and a ``category``:

- CallerError: validation rejection, unknown task (no side effects)
- ProvisioningError: unit creation failed (no side effects)
- ObservationError: wait budget exceeded or status reads failed (unit deleted, no record)
- PersistenceError: record computed but not stored (unit deleted)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from taskpod.schemas import ExecutionRecord


class TaskPodError(Exception):
    """Base class for all TaskPod errors."""

    error_code = "TASKPOD_ERROR"
    category = "InternalError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnitClientError(TaskPodError):
    """A call to the execution unit control plane failed."""

    error_code = "UNIT_CLIENT_ERROR"
    category = "TransportError"

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


# =============================================================================
# Caller errors
# =============================================================================

class ValidationFailed(TaskPodError):
    error_code = "VALIDATION_FAILED"
    category = "CallerError"


class TaskNotFound(TaskPodError):
    error_code = "TASK_NOT_FOUND"
    category = "CallerError"

    def __init__(self, task_id: str):
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


# =============================================================================
# Infrastructure errors
# =============================================================================

class ProvisioningFailed(TaskPodError):
    error_code = "PROVISIONING_FAILED"
    category = "ProvisioningError"


class ExecutionTimedOut(TaskPodError):
    error_code = "EXECUTION_TIMED_OUT"
    category = "ObservationError"

    def __init__(self, unit_name: str, timeout: float):
        super().__init__(f"Unit {unit_name} did not finish within {timeout:g} seconds")
        self.unit_name = unit_name
        self.timeout = timeout


class ExecutionObservationFailed(TaskPodError):
    error_code = "EXECUTION_OBSERVATION_FAILED"
    category = "ObservationError"

    def __init__(self, unit_name: str, message: str):
        super().__init__(f"Could not observe unit {unit_name}: {message}")
        self.unit_name = unit_name


class PersistenceFailed(TaskPodError):
    """The command ran but its record could not be stored."""

    error_code = "PERSISTENCE_FAILED"
    category = "PersistenceError"

    def __init__(self, message: str, record: ExecutionRecord):
        super().__init__(message)
        self.record = record
