"""Project API routes."""

from fastapi import APIRouter

from novelflow.db import execution_store, workflow_store
from novelflow.models import (
    ExportedProject,
    GlobalStats,
    Project,
    ProjectCreate,
    ProjectStats,
    ProjectUpdate,
)

router = APIRouter()


@router.get("/projects")
async def list_projects() -> list[Project]:
    """List all projects."""
    return await workflow_store.list_projects()


@router.post("/projects", status_code=201)
async def create_project(create: ProjectCreate) -> Project:
    return await workflow_store.create_project(create)


@router.post("/projects/import", status_code=201)
async def import_project(data: ExportedProject) -> Project:
    """Create a new project from a backup file."""
    return await workflow_store.import_project(data)


@router.get("/projects/{project_id}")
async def get_project(project_id: str) -> Project:
    return await workflow_store.get_project(project_id)


@router.patch("/projects/{project_id}")
async def update_project(project_id: str, update: ProjectUpdate) -> Project:
    return await workflow_store.update_project(project_id, update)


@router.delete("/projects/{project_id}")
async def delete_project(project_id: str) -> dict[str, bool]:
    """Delete a project with its workflows, settings and execution history."""
    await workflow_store.delete_project(project_id)
    return {"deleted": True}


@router.get("/projects/{project_id}/export")
async def export_project(project_id: str) -> ExportedProject:
    return await workflow_store.export_project(project_id)


# ==================== Statistics ====================


@router.get("/projects/{project_id}/stats")
async def get_project_stats(project_id: str) -> ProjectStats:
    return await execution_store.get_project_stats(project_id)


@router.get("/stats")
async def get_global_stats() -> GlobalStats:
    """Counts shown on the home page."""
    return await execution_store.get_global_stats()
