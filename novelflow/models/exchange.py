"""Pydantic models for workflow snapshots and import/export files."""

from datetime import datetime, timezone

from pydantic import BaseModel, Field

from novelflow.models.setting import InjectionMode, SettingPriority
from novelflow.models.workflow import DEFAULT_LOOP_MAX_COUNT, DEFAULT_TIMEOUT_SECONDS

EXPORT_VERSION = "1.0"


def _exported_at() -> str:
    return datetime.now(timezone.utc).isoformat()


class ExportedWorkflowInfo(BaseModel):
    """Workflow fields carried by snapshots and exports."""

    name: str = Field(min_length=1)
    description: str | None = None
    loop_max_count: int = Field(default=DEFAULT_LOOP_MAX_COUNT, ge=1)
    timeout_seconds: int = Field(default=DEFAULT_TIMEOUT_SECONDS, ge=0)


class ExportedNode(BaseModel):
    """A node without identity, as it appears in snapshots and exports."""

    type: str
    name: str
    config: str = "{}"
    order_index: int
    block_id: str | None = None
    parent_block_id: str | None = None


class WorkflowSnapshot(BaseModel):
    """The content of a workflow version."""

    workflow: ExportedWorkflowInfo
    nodes: list[ExportedNode] = Field(default_factory=list)


class ExportedWorkflow(WorkflowSnapshot):
    """A workflow export file."""

    version: str = EXPORT_VERSION
    exported_at: str = Field(default_factory=_exported_at)


class ExportedSetting(BaseModel):
    """A setting without identity.

    ``ref`` and ``parent_ref`` are export-local identifiers that preserve the
    hierarchy across an import.
    """

    ref: str | None = None
    parent_ref: str | None = None
    category: str
    name: str
    content: str
    enabled: bool = True
    order_index: int = 0
    injection_mode: InjectionMode = InjectionMode.MANUAL
    priority: SettingPriority = SettingPriority.MEDIUM
    keywords: list[str] = Field(default_factory=list)
    summary: str | None = None


class ExportedSettingPrompt(BaseModel):
    """An injection prompt without identity."""

    category: str
    prompt_template: str
    enabled: bool = True


class ExportedSettingRelation(BaseModel):
    """A relation between two exported settings, addressed by ``ref``."""

    source_ref: str
    target_ref: str
    label: str = ""
    description: str | None = None
    bidirectional: bool = False


class ExportedSettings(BaseModel):
    """A settings library export file."""

    version: str = EXPORT_VERSION
    exported_at: str = Field(default_factory=_exported_at)
    settings: list[ExportedSetting] = Field(default_factory=list)
    setting_prompts: list[ExportedSettingPrompt] = Field(default_factory=list)
    setting_relations: list[ExportedSettingRelation] = Field(default_factory=list)


class ExportedProjectInfo(BaseModel):
    """Project fields carried by a project backup."""

    name: str = Field(min_length=1)
    description: str | None = None


class ExportedProject(ExportedSettings):
    """A full project backup."""

    project: ExportedProjectInfo
    workflows: list[WorkflowSnapshot] = Field(default_factory=list)
