"""Pydantic models for Projects and usage statistics."""

from pydantic import BaseModel, Field, field_validator

from novelflow.models.validators import reject_null


class ProjectCreate(BaseModel):
    """Request model for creating a project."""

    name: str = Field(min_length=1)
    description: str | None = None


class ProjectUpdate(BaseModel):
    """Request model for updating a project."""

    name: str | None = Field(default=None, min_length=1)
    description: str | None = None

    @field_validator("name")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


class Project(BaseModel):
    """A project, the root of the ownership tree."""

    id: str
    name: str
    description: str | None = None
    created_at: str
    updated_at: str


class ProjectStats(BaseModel):
    """Counts shown on a project's dashboard."""

    character_count: int = 0
    worldview_count: int = 0
    workflow_count: int = 0
    total_word_count: int = 0


class GlobalStats(BaseModel):
    """Counts shown on the home page."""

    active_projects: int = 0
    today_word_count: int = 0
