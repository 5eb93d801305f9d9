"""Pydantic models for Node instances."""

from enum import Enum

from pydantic import BaseModel, Field, field_validator

from novelflow.models.validators import reject_null


class NodeType(str, Enum):
    """Node types known to the editor. The store accepts any type string."""

    START = "start"
    INPUT = "input"
    OUTPUT = "output"
    AI_CHAT = "ai_chat"
    TEXT_EXTRACT = "text_extract"
    TEXT_CONCAT = "text_concat"
    VAR_SET = "var_set"
    VAR_GET = "var_get"
    LOOP_START = "loop_start"
    LOOP_END = "loop_end"
    PARALLEL_START = "parallel_start"
    PARALLEL_END = "parallel_end"
    CONDITION_IF = "condition_if"
    CONDITION_ELSE = "condition_else"
    CONDITION_END = "condition_end"


class NodeCreate(BaseModel):
    """Request model for creating a node.

    Without ``insert_after_index`` the node is appended after the last one;
    otherwise it takes ``insert_after_index + 1`` and later nodes shift down.
    """

    type: str = Field(min_length=1)
    name: str
    config: str = "{}"
    block_id: str | None = None
    parent_block_id: str | None = None
    insert_after_index: int | None = Field(default=None, ge=-1)


class NodeUpdate(BaseModel):
    """Request model for updating a node."""

    name: str | None = None
    config: str | None = None
    block_id: str | None = None
    parent_block_id: str | None = None

    @field_validator("name", "config")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


class NodeRestore(BaseModel):
    """A node as it is replayed by undo/redo or a version restore."""

    type: str
    name: str
    config: str = "{}"
    order_index: int
    block_id: str | None = None
    parent_block_id: str | None = None


class NodeReorder(BaseModel):
    """Request model for reordering the nodes of a workflow."""

    node_ids: list[str]


class Node(BaseModel):
    """A node instance in a workflow."""

    id: str
    workflow_id: str
    type: str
    name: str
    config: str = "{}"
    order_index: int
    block_id: str | None = None
    parent_block_id: str | None = None
    created_at: str
    updated_at: str
