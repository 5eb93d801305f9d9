"""Pydantic models for Workflows and their version history."""

from pydantic import BaseModel, Field, field_validator

from novelflow.models.validators import reject_null

DEFAULT_LOOP_MAX_COUNT = 10
DEFAULT_TIMEOUT_SECONDS = 300


class WorkflowCreate(BaseModel):
    """Request model for creating a workflow."""

    name: str = Field(min_length=1)
    description: str | None = None
    loop_max_count: int = Field(default=DEFAULT_LOOP_MAX_COUNT, ge=1)
    timeout_seconds: int = Field(default=DEFAULT_TIMEOUT_SECONDS, ge=0)


class WorkflowUpdate(BaseModel):
    """Request model for updating a workflow."""

    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    loop_max_count: int | None = Field(default=None, ge=1)
    timeout_seconds: int | None = Field(default=None, ge=0)

    @field_validator("name", "loop_max_count", "timeout_seconds")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


class Workflow(BaseModel):
    """An ordered, configurable pipeline of nodes in a project."""

    id: str
    project_id: str
    name: str
    description: str | None = None
    loop_max_count: int = DEFAULT_LOOP_MAX_COUNT
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    created_at: str
    updated_at: str


class WorkflowVersionCreate(BaseModel):
    """Request model for snapshotting a workflow."""

    description: str | None = None


class WorkflowVersion(BaseModel):
    """An immutable point-in-time copy of a workflow and its nodes.

    ``snapshot`` is document text (see ``novelflow.db.documents``) holding a
    serialized :class:`novelflow.models.exchange.WorkflowSnapshot`.
    """

    id: str
    workflow_id: str
    version_number: int
    snapshot: str
    description: str | None = None
    created_at: str
