"""Workflow, node and version API routes."""

from fastapi import APIRouter, Query

from novelflow.db import workflow_store
from novelflow.db.workflow_store import DEFAULT_KEEP_VERSIONS
from novelflow.models import (
    ExportedWorkflow,
    Node,
    NodeCreate,
    NodeReorder,
    NodeRestore,
    NodeUpdate,
    Workflow,
    WorkflowCreate,
    WorkflowSnapshot,
    WorkflowUpdate,
    WorkflowVersion,
    WorkflowVersionCreate,
)

router = APIRouter()


# ==================== Workflows ====================


@router.get("/projects/{project_id}/workflows")
async def list_workflows(project_id: str) -> list[Workflow]:
    """List a project's workflows."""
    return await workflow_store.list_workflows(project_id)


@router.post("/projects/{project_id}/workflows", status_code=201)
async def create_workflow(project_id: str, create: WorkflowCreate) -> Workflow:
    """Create a workflow with its start node."""
    return await workflow_store.create_workflow(project_id, create, seed_start_node=True)


@router.post("/projects/{project_id}/workflows/import", status_code=201)
async def import_workflow(
    project_id: str,
    data: WorkflowSnapshot,
    name: str | None = Query(None, min_length=1, description="Name for the imported workflow"),
) -> Workflow:
    return await workflow_store.import_workflow(project_id, data, name=name)


@router.get("/workflows/{workflow_id}")
async def get_workflow(workflow_id: str) -> Workflow:
    return await workflow_store.get_workflow(workflow_id)


@router.patch("/workflows/{workflow_id}")
async def update_workflow(workflow_id: str, update: WorkflowUpdate) -> Workflow:
    return await workflow_store.update_workflow(workflow_id, update)


@router.delete("/workflows/{workflow_id}")
async def delete_workflow(workflow_id: str) -> dict[str, bool]:
    """Delete a workflow."""
    await workflow_store.delete_workflow(workflow_id)
    return {"deleted": True}


@router.get("/workflows/{workflow_id}/export")
async def export_workflow(workflow_id: str) -> ExportedWorkflow:
    return await workflow_store.export_workflow(workflow_id)


# ==================== Nodes ====================


@router.get("/workflows/{workflow_id}/nodes")
async def list_nodes(workflow_id: str) -> list[Node]:
    """List a workflow's nodes in order."""
    return await workflow_store.list_nodes(workflow_id)


@router.post("/workflows/{workflow_id}/nodes", status_code=201)
async def create_node(workflow_id: str, create: NodeCreate) -> Node:
    return await workflow_store.create_node(workflow_id, create)


@router.put("/workflows/{workflow_id}/nodes/order")
async def reorder_nodes(workflow_id: str, request: NodeReorder) -> list[Node]:
    """Reorder nodes. The start node always stays first."""
    return await workflow_store.reorder_nodes(workflow_id, request.node_ids)


@router.put("/workflows/{workflow_id}/nodes")
async def restore_nodes(workflow_id: str, nodes: list[NodeRestore]) -> list[Node]:
    """Replace every node of a workflow (undo/redo)."""
    return await workflow_store.restore_nodes(workflow_id, nodes)


@router.get("/workflows/{workflow_id}/blocks")
async def list_child_blocks(
    workflow_id: str,
    parent_block_id: str | None = Query(None, description="Enclosing block, omit for top level"),
) -> list[str]:
    return await workflow_store.list_child_blocks(workflow_id, parent_block_id)


@router.get("/workflows/{workflow_id}/blocks/{block_id}/nodes")
async def list_block_nodes(workflow_id: str, block_id: str) -> list[Node]:
    return await workflow_store.list_block_nodes(workflow_id, block_id)


@router.get("/nodes/{node_id}")
async def get_node(node_id: str) -> Node:
    return await workflow_store.get_node(node_id)


@router.patch("/nodes/{node_id}")
async def update_node(node_id: str, update: NodeUpdate) -> Node:
    return await workflow_store.update_node(node_id, update)


@router.delete("/nodes/{node_id}")
async def delete_node(node_id: str) -> dict[str, bool]:
    await workflow_store.delete_node(node_id)
    return {"deleted": True}


# ==================== Versions ====================


@router.get("/workflows/{workflow_id}/versions")
async def list_versions(workflow_id: str) -> list[WorkflowVersion]:
    """List a workflow's versions, newest first."""
    return await workflow_store.list_versions(workflow_id)


@router.post("/workflows/{workflow_id}/versions", status_code=201)
async def create_version(workflow_id: str, create: WorkflowVersionCreate) -> WorkflowVersion:
    """Snapshot the workflow and drop versions beyond the retention limit."""
    version = await workflow_store.create_version(workflow_id, create)
    await workflow_store.cleanup_old_versions(workflow_id, DEFAULT_KEEP_VERSIONS)
    return version


@router.get("/versions/{version_id}")
async def get_version(version_id: str) -> WorkflowVersion:
    return await workflow_store.get_version(version_id)


@router.post("/versions/{version_id}/restore")
async def restore_version(version_id: str) -> Workflow:
    return await workflow_store.restore_version(version_id)


@router.delete("/versions/{version_id}")
async def delete_version(version_id: str) -> dict[str, bool]:
    await workflow_store.delete_version(version_id)
    return {"deleted": True}
