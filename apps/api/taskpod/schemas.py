"""Pydantic schemas for the task and execution contracts.

These schemas define the contracts between:
- API endpoints and clients
- The orchestrator and the execution unit client
- The orchestrator and the execution record store
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_serializer


TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def to_utc_millis(value: datetime) -> datetime:
    """Normalize a datetime to UTC with millisecond precision.

    Naive values are assumed to already be UTC (SQLite drops tzinfo).
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def utc_now() -> datetime:
    return to_utc_millis(datetime.now(timezone.utc))


def format_timestamp(value: datetime) -> str:
    """Render as ``YYYY-MM-DD HH:MM:SS.mmmZ``."""
    value = to_utc_millis(value)
    return f"{value.strftime(TIMESTAMP_FORMAT)}.{value.microsecond // 1000:03d}Z"


# =============================================================================
# Enums
# =============================================================================

class UnitPhase(str, Enum):
    """Lifecycle phase of an execution unit as reported by the control plane."""
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: str | None) -> "UnitPhase":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_terminal(self) -> bool:
        return self in (UnitPhase.SUCCEEDED, UnitPhase.FAILED)


class ExecutionWarning(str, Enum):
    """Soft failures surfaced alongside a produced record."""
    OUTPUT_CAPTURE_FAILED = "output_capture_failed"
    UNIT_DELETE_FAILED = "unit_delete_failed"


# =============================================================================
# Execution Unit Schemas
# =============================================================================

class UnitHandle(BaseModel):
    """Reference to a created execution unit."""
    name: str = Field(..., description="Unit (pod) name")
    namespace: str = Field(default="default")


class UnitStatus(BaseModel):
    """Observed state of an execution unit."""
    phase: UnitPhase = Field(default=UnitPhase.UNKNOWN)
    started_at: datetime | None = Field(default=None, description="When the unit began running")
    terminated_at: datetime | None = Field(default=None, description="When the container terminated")
    exit_code: int | None = Field(default=None)


# =============================================================================
# Execution Schemas
# =============================================================================

class ExecutionRecord(BaseModel):
    """Immutable result of one command run."""
    task_id: str
    unit_name: str = Field(..., description="Name of the unit the command ran in")
    phase: UnitPhase = Field(..., description="Terminal phase of the unit")
    exit_code: int | None = Field(default=None)
    start_time: datetime
    end_time: datetime
    output: str = Field(default="", description="Captured container output")
    output_truncated: bool = Field(default=False)
    sequence: int | None = Field(default=None, description="Position in the task history, set on append")

    @field_serializer("start_time", "end_time")
    def _serialize_timestamp(self, value: datetime) -> str:
        return format_timestamp(value)


class ExecutionOutcome(BaseModel):
    """Record returned by an execution plus any soft warnings."""
    execution: ExecutionRecord
    warnings: list[str] = Field(default_factory=list)


# =============================================================================
# API Request/Response Schemas
# =============================================================================

class TaskUpsertRequest(BaseModel):
    """API request to create or replace a task."""
    id: str = Field(..., min_length=1)
    name: str = Field(..., description="Human-readable task name")
    owner: str | None = Field(default=None)
    command: str | None = Field(default=None, description="Shell command to run")
    priority: int | None = Field(default=None)
    state: str | None = Field(default=None)

    class Config:
        json_schema_extra = {
            "example": {
                "id": "t1",
                "name": "Print Hello",
                "owner": "ops",
                "command": "echo hello",
            }
        }


class TaskResponse(BaseModel):
    """API response for a task and its execution history."""
    id: str
    name: str
    owner: str | None = None
    command: str
    priority: int | None = None
    state: str | None = None
    created_at: datetime
    updated_at: datetime | None = None
    executions: list[ExecutionRecord] = Field(default_factory=list)
