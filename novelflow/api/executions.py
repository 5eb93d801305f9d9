"""Execution history API routes."""

from fastapi import APIRouter

from novelflow.db import execution_store
from novelflow.models import (
    Execution,
    ExecutionCreate,
    ExecutionUpdate,
    NodeResult,
    NodeResultCreate,
    NodeResultUpdate,
)

router = APIRouter()


@router.get("/workflows/{workflow_id}/executions")
async def list_executions(workflow_id: str) -> list[Execution]:
    """List a workflow's runs, newest first."""
    return await execution_store.list_executions(workflow_id)


@router.post("/workflows/{workflow_id}/executions", status_code=201)
async def create_execution(workflow_id: str, create: ExecutionCreate) -> Execution:
    return await execution_store.create_execution(workflow_id, create)


@router.get("/executions/{execution_id}")
async def get_execution(execution_id: str) -> Execution:
    return await execution_store.get_execution(execution_id)


@router.patch("/executions/{execution_id}")
async def update_execution(execution_id: str, update: ExecutionUpdate) -> Execution:
    return await execution_store.update_execution(execution_id, update)


@router.delete("/executions/{execution_id}")
async def delete_execution(execution_id: str) -> dict[str, bool]:
    await execution_store.delete_execution(execution_id)
    return {"deleted": True}


# ==================== Node results ====================


@router.get("/executions/{execution_id}/node-results")
async def list_node_results(execution_id: str) -> list[NodeResult]:
    return await execution_store.list_node_results(execution_id)


@router.post("/executions/{execution_id}/node-results", status_code=201)
async def create_node_result(execution_id: str, create: NodeResultCreate) -> NodeResult:
    return await execution_store.create_node_result(execution_id, create)


@router.get("/node-results/{result_id}")
async def get_node_result(result_id: str) -> NodeResult:
    return await execution_store.get_node_result(result_id)


@router.patch("/node-results/{result_id}")
async def update_node_result(result_id: str, update: NodeResultUpdate) -> NodeResult:
    return await execution_store.update_node_result(result_id, update)
