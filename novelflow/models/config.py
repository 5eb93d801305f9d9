"""Pydantic models for the global configuration singleton."""

from enum import Enum

from pydantic import BaseModel, Field, field_validator

from novelflow.models.validators import reject_null


class Theme(str, Enum):
    """UI theme."""

    LIGHT = "light"
    DARK = "dark"
    SYSTEM = "system"


class GlobalConfig(BaseModel):
    """The process-wide configuration row.

    ``ai_providers`` and ``setting_assistant`` are document text owned by the
    AI integration; the store returns them exactly as written.
    """

    ai_providers: str = "{}"
    theme: Theme = Theme.SYSTEM
    default_loop_max: int = 10
    default_timeout: int = 300
    setting_assistant: str | None = None


class GlobalConfigUpdate(BaseModel):
    """Partial update of the configuration row."""

    ai_providers: str | None = None
    theme: Theme | None = None
    default_loop_max: int | None = Field(default=None, ge=1)
    default_timeout: int | None = Field(default=None, ge=0)
    setting_assistant: str | None = None

    @field_validator("ai_providers", "theme", "default_loop_max", "default_timeout")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)
