"""Pydantic models for execution history."""

from enum import Enum

from pydantic import BaseModel, Field, field_validator

from novelflow.models.validators import reject_null


class ExecutionStatus(str, Enum):
    """Status of a workflow run."""

    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_EXECUTION_STATUSES


TERMINAL_EXECUTION_STATUSES = frozenset(
    {
        ExecutionStatus.COMPLETED,
        ExecutionStatus.FAILED,
        ExecutionStatus.CANCELLED,
        ExecutionStatus.TIMEOUT,
    }
)


class NodeResultStatus(str, Enum):
    """Status of one node iteration within a run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ExecutionCreate(BaseModel):
    """Request model for starting an execution."""

    input: str | None = None


class ExecutionUpdate(BaseModel):
    """Request model for updating an execution.

    ``finished_at`` is stamped by the store when ``status`` becomes terminal
    and may only be supplied together with a terminal status.
    """

    status: ExecutionStatus | None = None
    final_output: str | None = None
    variables_snapshot: str | None = None
    finished_at: str | None = None

    @field_validator("status")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


class Execution(BaseModel):
    """One run of a workflow."""

    id: str
    workflow_id: str
    status: ExecutionStatus
    input: str | None = None
    final_output: str | None = None
    variables_snapshot: str | None = None
    started_at: str
    finished_at: str | None = None


class NodeResultCreate(BaseModel):
    """Request model for recording the start of a node iteration."""

    node_id: str
    iteration: int = Field(default=1, ge=1)
    input: str | None = None


class NodeResultUpdate(BaseModel):
    """Request model for updating a node result."""

    input: str | None = None
    output: str | None = None
    resolved_config: str | None = None
    status: NodeResultStatus | None = None
    token_usage: str | None = None
    finished_at: str | None = None

    @field_validator("status")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


class NodeResult(BaseModel):
    """The outcome of one node iteration within an execution."""

    id: str
    execution_id: str
    node_id: str
    iteration: int = 1
    input: str | None = None
    output: str | None = None
    resolved_config: str | None = None
    status: NodeResultStatus
    token_usage: str | None = None
    started_at: str
    finished_at: str | None = None
