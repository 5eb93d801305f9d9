"""Pydantic models for the settings library.

A Setting is a reusable piece of world or story information. Settings form a
forest per project through ``parent_id``; relations link two settings of the
same project with a label.
"""

from enum import Enum

from pydantic import BaseModel, Field, field_validator

from novelflow.models.validators import reject_null


class SettingCategory(str, Enum):
    """Categories used by the editor. The store accepts any category string."""

    CHARACTER = "character"
    WORLDVIEW = "worldview"
    STYLE = "style"
    OUTLINE = "outline"


class InjectionMode(str, Enum):
    """How a setting is injected into a workflow run."""

    MANUAL = "manual"
    AUTO = "auto"


class SettingPriority(str, Enum):
    """Injection priority when the token budget is tight."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SettingCreate(BaseModel):
    """Request model for creating a setting.

    When ``order_index`` is omitted the setting is placed after its last
    sibling (same category and parent).
    """

    category: str = Field(min_length=1)
    name: str = Field(min_length=1)
    content: str
    enabled: bool = True
    parent_id: str | None = None
    order_index: int | None = Field(default=None, ge=0)
    injection_mode: InjectionMode = InjectionMode.MANUAL
    priority: SettingPriority = SettingPriority.MEDIUM
    keywords: list[str] = Field(default_factory=list)
    summary: str | None = None


class SettingUpdate(BaseModel):
    """Request model for updating a setting."""

    name: str | None = Field(default=None, min_length=1)
    content: str | None = None
    enabled: bool | None = None
    parent_id: str | None = None
    order_index: int | None = Field(default=None, ge=0)
    injection_mode: InjectionMode | None = None
    priority: SettingPriority | None = None
    keywords: list[str] | None = None
    summary: str | None = None

    @field_validator(
        "name", "content", "enabled", "order_index", "injection_mode", "priority", "keywords"
    )
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


class Setting(BaseModel):
    """A setting stored in a project's library."""

    id: str
    project_id: str
    category: str
    name: str
    content: str
    enabled: bool = True
    parent_id: str | None = None
    order_index: int = 0
    injection_mode: InjectionMode = InjectionMode.MANUAL
    priority: SettingPriority = SettingPriority.MEDIUM
    keywords: list[str] = Field(default_factory=list)
    summary: str | None = None
    created_at: str
    updated_at: str


class SettingTreeNode(BaseModel):
    """A setting with its children, ordered by ``order_index``."""

    setting: Setting
    children: list["SettingTreeNode"] = Field(default_factory=list)


SettingTreeNode.model_rebuild()


class SettingPromptCreate(BaseModel):
    """Request model for creating a category injection prompt."""

    category: str = Field(min_length=1)
    prompt_template: str
    enabled: bool = True


class SettingPromptUpdate(BaseModel):
    """Request model for updating an injection prompt."""

    prompt_template: str | None = None
    enabled: bool | None = None

    @field_validator("prompt_template", "enabled")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


class SettingPrompt(BaseModel):
    """The prompt template used to inject a category of settings."""

    id: str
    project_id: str
    category: str
    prompt_template: str
    enabled: bool = True


class SettingRelationCreate(BaseModel):
    """Request model for linking two settings."""

    source_id: str
    target_id: str
    label: str = ""
    description: str | None = None
    bidirectional: bool = False


class SettingRelationUpdate(BaseModel):
    """Request model for updating a relation."""

    label: str | None = None
    description: str | None = None
    bidirectional: bool | None = None

    @field_validator("label", "bidirectional")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


class SettingRelation(BaseModel):
    """A labeled link between two settings of the same project."""

    id: str
    project_id: str
    source_id: str
    target_id: str
    label: str = ""
    description: str | None = None
    bidirectional: bool = False
    created_at: str
