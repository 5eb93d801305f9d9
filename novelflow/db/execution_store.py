"""ExecutionStore - execution history, node results and usage statistics."""

import logging
from datetime import datetime, timezone

import aiosqlite

from novelflow.db.database import get_db
from novelflow.db.errors import ConstraintViolationError
from novelflow.db.utils import (
    delete_row,
    fetch_all,
    fetch_one,
    generate_id,
    now,
    update_row,
)
from novelflow.models import (
    Execution,
    ExecutionCreate,
    ExecutionStatus,
    ExecutionUpdate,
    GlobalStats,
    NodeResult,
    NodeResultCreate,
    NodeResultStatus,
    NodeResultUpdate,
    ProjectStats,
    SettingCategory,
)

logger = logging.getLogger(__name__)


def _row_to_execution(row: aiosqlite.Row) -> Execution:
    return Execution(
        id=row["id"],
        workflow_id=row["workflow_id"],
        status=ExecutionStatus(row["status"]),
        input=row["input"],
        final_output=row["final_output"],
        variables_snapshot=row["variables_snapshot"],
        started_at=row["started_at"],
        finished_at=row["finished_at"],
    )


def _row_to_node_result(row: aiosqlite.Row) -> NodeResult:
    return NodeResult(
        id=row["id"],
        execution_id=row["execution_id"],
        node_id=row["node_id"],
        iteration=row["iteration"],
        input=row["input"],
        output=row["output"],
        resolved_config=row["resolved_config"],
        status=NodeResultStatus(row["status"]),
        token_usage=row["token_usage"],
        started_at=row["started_at"],
        finished_at=row["finished_at"],
    )


async def _get_execution(conn: aiosqlite.Connection, execution_id: str) -> Execution:
    row = await fetch_one(
        conn, "SELECT * FROM executions WHERE id = ?", (execution_id,), "Execution", execution_id
    )
    return _row_to_execution(row)


async def _get_node_result(conn: aiosqlite.Connection, result_id: str) -> NodeResult:
    row = await fetch_one(
        conn, "SELECT * FROM node_results WHERE id = ?", (result_id,), "NodeResult", result_id
    )
    return _row_to_node_result(row)


async def _count(conn: aiosqlite.Connection, query: str, params: tuple = ()) -> int:
    cursor = await conn.execute(query, params)
    row = await cursor.fetchone()
    return (row[0] or 0) if row else 0


class ExecutionStore:
    """Storage abstraction for workflow runs."""

    # ==================== Executions ====================

    async def create_execution(self, workflow_id: str, create: ExecutionCreate) -> Execution:
        """Record the start of a workflow run."""
        db = await get_db()
        execution_id = generate_id()
        timestamp = now()

        async with db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO executions (id, workflow_id, status, input, started_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (execution_id, workflow_id, ExecutionStatus.RUNNING.value, create.input, timestamp),
            )

        return Execution(
            id=execution_id,
            workflow_id=workflow_id,
            status=ExecutionStatus.RUNNING,
            input=create.input,
            started_at=timestamp,
        )

    async def get_execution(self, execution_id: str) -> Execution:
        db = await get_db()
        async with db.transaction(immediate=False) as conn:
            return await _get_execution(conn, execution_id)

    async def list_executions(self, workflow_id: str) -> list[Execution]:
        """List a workflow's runs, newest first."""
        db = await get_db()
        async with db.transaction(immediate=False) as conn:
            rows = await fetch_all(
                conn,
                "SELECT * FROM executions WHERE workflow_id = ? ORDER BY started_at DESC, rowid DESC",
                (workflow_id,),
            )
        return [_row_to_execution(row) for row in rows]

    async def update_execution(self, execution_id: str, update: ExecutionUpdate) -> Execution:
        """Update a run.

        ``finished_at`` is stamped when the status becomes terminal.

        Raises:
            ConstraintViolationError: If ``finished_at`` is given with a
                non-terminal status
        """
        db = await get_db()
        fields = update.model_dump(exclude_unset=True)

        status = fields.get("status")
        if status is not None:
            fields["status"] = status.value
            if status.is_terminal:
                fields.setdefault("finished_at", now())
            elif fields.get("finished_at") is not None:
                raise ConstraintViolationError(
                    f"finished_at cannot be set with non-terminal status {status.value}"
                )

        async with db.transaction() as conn:
            if status is None and fields.get("finished_at") is not None:
                current = await _get_execution(conn, execution_id)
                if not current.status.is_terminal:
                    raise ConstraintViolationError(
                        f"finished_at cannot be set on {current.status.value} execution {execution_id}"
                    )

            await update_row(conn, "executions", "Execution", execution_id, fields, touch=False)
            return await _get_execution(conn, execution_id)

    async def delete_execution(self, execution_id: str) -> None:
        db = await get_db()
        async with db.transaction() as conn:
            await delete_row(conn, "executions", "Execution", execution_id)

    # ==================== Node results ====================

    async def create_node_result(
        self, execution_id: str, create: NodeResultCreate
    ) -> NodeResult:
        """Record the start of one node iteration."""
        db = await get_db()
        result_id = generate_id()
        timestamp = now()

        async with db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO node_results (id, execution_id, node_id, iteration, input, status, started_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    result_id,
                    execution_id,
                    create.node_id,
                    create.iteration,
                    create.input,
                    NodeResultStatus.RUNNING.value,
                    timestamp,
                ),
            )

        return NodeResult(
            id=result_id,
            execution_id=execution_id,
            node_id=create.node_id,
            iteration=create.iteration,
            input=create.input,
            status=NodeResultStatus.RUNNING,
            started_at=timestamp,
        )

    async def get_node_result(self, result_id: str) -> NodeResult:
        db = await get_db()
        async with db.transaction(immediate=False) as conn:
            return await _get_node_result(conn, result_id)

    async def list_node_results(self, execution_id: str) -> list[NodeResult]:
        """List the node results of a run in the order they started."""
        db = await get_db()
        async with db.transaction(immediate=False) as conn:
            rows = await fetch_all(
                conn,
                """
                SELECT * FROM node_results WHERE execution_id = ?
                ORDER BY started_at ASC, iteration ASC, rowid ASC
                """,
                (execution_id,),
            )
        return [_row_to_node_result(row) for row in rows]

    async def update_node_result(self, result_id: str, update: NodeResultUpdate) -> NodeResult:
        """Update a node result, stamping ``finished_at`` on completion."""
        db = await get_db()
        fields = update.model_dump(exclude_unset=True)

        status = fields.get("status")
        if status is not None:
            fields["status"] = status.value
            if status in (NodeResultStatus.COMPLETED, NodeResultStatus.FAILED):
                fields.setdefault("finished_at", now())

        async with db.transaction() as conn:
            await update_row(conn, "node_results", "NodeResult", result_id, fields, touch=False)
            return await _get_node_result(conn, result_id)

    # ==================== Statistics ====================

    async def get_project_stats(self, project_id: str) -> ProjectStats:
        """Counts for a project's dashboard.

        The word count is the total length of every node output produced by
        the project's workflows.
        """
        db = await get_db()

        async with db.transaction(immediate=False) as conn:
            await fetch_one(
                conn, "SELECT 1 FROM projects WHERE id = ?", (project_id,), "Project", project_id
            )
            character_count = await _count(
                conn,
                "SELECT COUNT(*) FROM settings WHERE project_id = ? AND category = ?",
                (project_id, SettingCategory.CHARACTER.value),
            )
            worldview_count = await _count(
                conn,
                "SELECT COUNT(*) FROM settings WHERE project_id = ? AND category = ?",
                (project_id, SettingCategory.WORLDVIEW.value),
            )
            workflow_count = await _count(
                conn, "SELECT COUNT(*) FROM workflows WHERE project_id = ?", (project_id,)
            )
            total_word_count = await _count(
                conn,
                """
                SELECT SUM(LENGTH(nr.output)) FROM node_results nr
                JOIN executions e ON nr.execution_id = e.id
                JOIN workflows w ON e.workflow_id = w.id
                WHERE w.project_id = ? AND nr.output IS NOT NULL
                """,
                (project_id,),
            )

        return ProjectStats(
            character_count=character_count,
            worldview_count=worldview_count,
            workflow_count=workflow_count,
            total_word_count=total_word_count,
        )

    async def get_global_stats(self) -> GlobalStats:
        """Counts for the home page; "today" is the current UTC day."""
        db = await get_db()
        today = datetime.now(timezone.utc).date().isoformat()

        async with db.transaction(immediate=False) as conn:
            active_projects = await _count(conn, "SELECT COUNT(*) FROM projects")
            today_word_count = await _count(
                conn,
                """
                SELECT SUM(LENGTH(output)) FROM node_results
                WHERE output IS NOT NULL AND substr(started_at, 1, 10) = ?
                """,
                (today,),
            )

        return GlobalStats(active_projects=active_projects, today_word_count=today_word_count)


execution_store = ExecutionStore()
