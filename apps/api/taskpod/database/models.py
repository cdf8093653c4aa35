"""SQLModel database tables.

Tables:
- Task: registered shell commands
- TaskExecution: append-only execution history, one row per completed run
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Task Model
# =============================================================================

class Task(SQLModel, table=True):
    """A named shell command that can be executed on demand."""

    __tablename__ = "tasks"

    id: str = Field(primary_key=True, description="Caller-assigned task ID")
    name: str = Field(index=True, description="Searchable task name")
    owner: str | None = Field(default=None)
    command: str = Field(sa_column=Column(Text, nullable=False), description="Shell command")
    priority: int | None = Field(default=None)
    state: str | None = Field(default=None)

    # Timestamps
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )


# =============================================================================
# TaskExecution Model
# =============================================================================

class TaskExecution(SQLModel, table=True):
    """One completed run of a task. Rows are never updated."""

    __tablename__ = "task_executions"
    __table_args__ = (
        Index("ux_task_executions_task_sequence", "task_id", "sequence", unique=True),
    )

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    sequence: int = Field(description="1-based position in the task history")

    unit_name: str = Field(description="Pod the command ran in")
    phase: str = Field(description="Terminal phase: Succeeded or Failed")
    exit_code: int | None = Field(default=None)

    start_time: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    end_time: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))

    output: str = Field(default="", sa_column=Column(Text, nullable=False))
    output_truncated: bool = Field(default=False)

    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
