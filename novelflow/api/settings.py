"""Settings library API routes."""

from typing import Literal

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from novelflow.db import setting_store
from novelflow.models import (
    ExportedSettings,
    Setting,
    SettingCreate,
    SettingPrompt,
    SettingPromptCreate,
    SettingPromptUpdate,
    SettingRelation,
    SettingRelationCreate,
    SettingRelationUpdate,
    SettingTreeNode,
    SettingUpdate,
)

router = APIRouter()


class MoveSettingRequest(BaseModel):
    """Request model for moving a setting in the hierarchy."""

    parent_id: str | None = None
    order_index: int | None = None


class UpsertPromptRequest(BaseModel):
    prompt_template: str


# ==================== Settings ====================


@router.get("/projects/{project_id}/settings")
async def list_settings(
    project_id: str,
    category: str | None = Query(None, description="Filter by category"),
    parent_id: str | None = Query(None, description="Only children of this setting"),
    roots_only: bool = Query(False, description="Only top-level settings"),
    q: str | None = Query(None, description="Search name and content"),
) -> list[Setting]:
    return await setting_store.list_settings(
        project_id, category=category, parent_id=parent_id, roots_only=roots_only, query=q
    )


@router.post("/projects/{project_id}/settings", status_code=201)
async def create_setting(project_id: str, create: SettingCreate) -> Setting:
    return await setting_store.create_setting(project_id, create)


@router.get("/projects/{project_id}/settings/tree")
async def get_setting_tree(
    project_id: str,
    category: str | None = Query(None, description="Filter by category"),
) -> list[SettingTreeNode]:
    """Get the setting hierarchy of a project."""
    return await setting_store.get_tree(project_id, category)


@router.get("/projects/{project_id}/settings/export")
async def export_settings(project_id: str) -> ExportedSettings:
    return await setting_store.export_settings(project_id)


@router.post("/projects/{project_id}/settings/import")
async def import_settings(
    project_id: str,
    data: ExportedSettings,
    mode: Literal["merge", "replace"] = Query("merge", description="merge or replace"),
) -> list[Setting]:
    """Import a settings library into a project."""
    return await setting_store.import_settings(project_id, data, mode)


@router.get("/settings/{setting_id}")
async def get_setting(setting_id: str) -> Setting:
    return await setting_store.get_setting(setting_id)


@router.patch("/settings/{setting_id}")
async def update_setting(setting_id: str, update: SettingUpdate) -> Setting:
    return await setting_store.update_setting(setting_id, update)


@router.post("/settings/{setting_id}/move")
async def move_setting(setting_id: str, request: MoveSettingRequest) -> Setting:
    return await setting_store.move_setting(setting_id, request.parent_id, request.order_index)


@router.delete("/settings/{setting_id}")
async def delete_setting(setting_id: str) -> dict[str, list[str]]:
    """Delete a setting and its descendants."""
    deleted = await setting_store.delete_setting(setting_id)
    return {"deleted": deleted}


@router.get("/settings/{setting_id}/children")
async def list_children(setting_id: str) -> list[Setting]:
    return await setting_store.children_of(setting_id)


@router.get("/settings/{setting_id}/ancestors")
async def list_ancestors(setting_id: str) -> list[Setting]:
    return await setting_store.ancestors_of(setting_id)


@router.get("/settings/{setting_id}/descendants")
async def list_descendants(setting_id: str) -> list[Setting]:
    return await setting_store.descendants_of(setting_id)


@router.get("/settings/{setting_id}/relations")
async def list_setting_relations(setting_id: str) -> list[SettingRelation]:
    """Relations visible from a setting."""
    return await setting_store.list_relations_for_setting(setting_id)


# ==================== Prompts ====================


@router.get("/projects/{project_id}/setting-prompts")
async def list_prompts(project_id: str) -> list[SettingPrompt]:
    return await setting_store.list_prompts(project_id)


@router.post("/projects/{project_id}/setting-prompts", status_code=201)
async def create_prompt(project_id: str, create: SettingPromptCreate) -> SettingPrompt:
    return await setting_store.create_prompt(project_id, create)


@router.get("/projects/{project_id}/setting-prompts/{category}")
async def get_prompt_by_category(project_id: str, category: str) -> SettingPrompt:
    prompt = await setting_store.get_prompt_by_category(project_id, category)
    if prompt is None:
        raise HTTPException(status_code=404, detail="Setting prompt not found")
    return prompt


@router.put("/projects/{project_id}/setting-prompts/{category}")
async def upsert_prompt(
    project_id: str, category: str, request: UpsertPromptRequest
) -> SettingPrompt:
    """Create or replace the prompt template of a category."""
    return await setting_store.upsert_prompt(project_id, category, request.prompt_template)


@router.get("/setting-prompts/{prompt_id}")
async def get_prompt(prompt_id: str) -> SettingPrompt:
    return await setting_store.get_prompt(prompt_id)


@router.patch("/setting-prompts/{prompt_id}")
async def update_prompt(prompt_id: str, update: SettingPromptUpdate) -> SettingPrompt:
    return await setting_store.update_prompt(prompt_id, update)


@router.delete("/setting-prompts/{prompt_id}")
async def delete_prompt(prompt_id: str) -> dict[str, bool]:
    await setting_store.delete_prompt(prompt_id)
    return {"deleted": True}


# ==================== Relations ====================


@router.get("/projects/{project_id}/setting-relations")
async def list_relations(project_id: str) -> list[SettingRelation]:
    return await setting_store.list_relations(project_id)


@router.post("/projects/{project_id}/setting-relations", status_code=201)
async def create_relation(project_id: str, create: SettingRelationCreate) -> SettingRelation:
    return await setting_store.create_relation(project_id, create)


@router.get("/setting-relations/{relation_id}")
async def get_relation(relation_id: str) -> SettingRelation:
    return await setting_store.get_relation(relation_id)


@router.patch("/setting-relations/{relation_id}")
async def update_relation(relation_id: str, update: SettingRelationUpdate) -> SettingRelation:
    return await setting_store.update_relation(relation_id, update)


@router.delete("/setting-relations/{relation_id}")
async def delete_relation(relation_id: str) -> dict[str, bool]:
    await setting_store.delete_relation(relation_id)
    return {"deleted": True}
