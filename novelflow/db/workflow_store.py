"""WorkflowStore - projects, workflows, nodes and workflow versions."""

import logging
from collections.abc import Iterable

import aiosqlite
from pydantic import ValidationError

from novelflow.db.database import get_db
from novelflow.db.errors import ConstraintViolationError, SerializationError
from novelflow.db.setting_store import export_project_settings, import_project_settings
from novelflow.db.utils import (
    delete_row,
    fetch_all,
    fetch_one,
    generate_id,
    now,
    update_row,
)
from novelflow.models import (
    ExportedNode,
    ExportedProject,
    ExportedProjectInfo,
    ExportedSettings,
    ExportedWorkflow,
    ExportedWorkflowInfo,
    Node,
    NodeCreate,
    NodeRestore,
    NodeType,
    NodeUpdate,
    Project,
    ProjectCreate,
    ProjectUpdate,
    Workflow,
    WorkflowCreate,
    WorkflowSnapshot,
    WorkflowUpdate,
    WorkflowVersion,
    WorkflowVersionCreate,
)

logger = logging.getLogger(__name__)

DEFAULT_KEEP_VERSIONS = 20

_NODE_ORDER = "ORDER BY order_index ASC, created_at ASC, rowid ASC"


def _row_to_project(row: aiosqlite.Row) -> Project:
    return Project(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_workflow(row: aiosqlite.Row) -> Workflow:
    return Workflow(
        id=row["id"],
        project_id=row["project_id"],
        name=row["name"],
        description=row["description"],
        loop_max_count=row["loop_max_count"],
        timeout_seconds=row["timeout_seconds"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_node(row: aiosqlite.Row) -> Node:
    return Node(
        id=row["id"],
        workflow_id=row["workflow_id"],
        type=row["type"],
        name=row["name"],
        config=row["config"],
        order_index=row["order_index"],
        block_id=row["block_id"],
        parent_block_id=row["parent_block_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_version(row: aiosqlite.Row) -> WorkflowVersion:
    return WorkflowVersion(
        id=row["id"],
        workflow_id=row["workflow_id"],
        version_number=row["version_number"],
        snapshot=row["snapshot"],
        description=row["description"],
        created_at=row["created_at"],
    )


def remap_block_ids(nodes: Iterable[ExportedNode]) -> list[ExportedNode]:
    """Give every block in ``nodes`` a fresh id, keeping the block structure.

    Parent references to blocks outside ``nodes`` are left untouched.
    """
    nodes = list(nodes)
    mapping = {n.block_id: generate_id() for n in nodes if n.block_id}
    return [
        n.model_copy(
            update={
                "block_id": mapping.get(n.block_id) if n.block_id else None,
                "parent_block_id": mapping.get(n.parent_block_id, n.parent_block_id),
            }
        )
        for n in nodes
    ]


async def _get_project(conn: aiosqlite.Connection, project_id: str) -> Project:
    row = await fetch_one(
        conn, "SELECT * FROM projects WHERE id = ?", (project_id,), "Project", project_id
    )
    return _row_to_project(row)


async def _get_workflow(conn: aiosqlite.Connection, workflow_id: str) -> Workflow:
    row = await fetch_one(
        conn, "SELECT * FROM workflows WHERE id = ?", (workflow_id,), "Workflow", workflow_id
    )
    return _row_to_workflow(row)


async def _get_node(conn: aiosqlite.Connection, node_id: str) -> Node:
    row = await fetch_one(
        conn, "SELECT * FROM nodes WHERE id = ?", (node_id,), "Node", node_id
    )
    return _row_to_node(row)


async def _list_nodes(conn: aiosqlite.Connection, workflow_id: str) -> list[Node]:
    rows = await fetch_all(
        conn, f"SELECT * FROM nodes WHERE workflow_id = ? {_NODE_ORDER}", (workflow_id,)
    )
    return [_row_to_node(row) for row in rows]


async def _insert_workflow(
    conn: aiosqlite.Connection, project_id: str, info: ExportedWorkflowInfo | WorkflowCreate
) -> str:
    workflow_id = generate_id()
    timestamp = now()
    await conn.execute(
        """
        INSERT INTO workflows
        (id, project_id, name, description, loop_max_count, timeout_seconds, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            workflow_id,
            project_id,
            info.name,
            info.description,
            info.loop_max_count,
            info.timeout_seconds,
            timestamp,
            timestamp,
        ),
    )
    return workflow_id


async def _insert_nodes(
    conn: aiosqlite.Connection,
    workflow_id: str,
    nodes: Iterable[ExportedNode | NodeRestore],
) -> None:
    timestamp = now()
    await conn.executemany(
        """
        INSERT INTO nodes
        (id, workflow_id, type, name, config, order_index, block_id, parent_block_id, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                generate_id(),
                workflow_id,
                node.type,
                node.name,
                node.config,
                node.order_index,
                node.block_id,
                node.parent_block_id,
                timestamp,
                timestamp,
            )
            for node in nodes
        ],
    )


async def _snapshot(conn: aiosqlite.Connection, workflow_id: str) -> WorkflowSnapshot:
    workflow = await _get_workflow(conn, workflow_id)
    nodes = await _list_nodes(conn, workflow_id)
    return WorkflowSnapshot(
        workflow=ExportedWorkflowInfo(
            name=workflow.name,
            description=workflow.description,
            loop_max_count=workflow.loop_max_count,
            timeout_seconds=workflow.timeout_seconds,
        ),
        nodes=[
            ExportedNode(
                type=n.type,
                name=n.name,
                config=n.config,
                order_index=n.order_index,
                block_id=n.block_id,
                parent_block_id=n.parent_block_id,
            )
            for n in nodes
        ],
    )


async def _import_snapshot(
    conn: aiosqlite.Connection, project_id: str, snapshot: WorkflowSnapshot
) -> str:
    workflow_id = await _insert_workflow(conn, project_id, snapshot.workflow)
    await _insert_nodes(conn, workflow_id, remap_block_ids(snapshot.nodes))
    return workflow_id


class WorkflowStore:
    """Storage abstraction for projects and their workflows."""

    # ==================== Projects ====================

    async def create_project(self, create: ProjectCreate) -> Project:
        """Create a new project."""
        db = await get_db()
        project_id = generate_id()
        timestamp = now()

        async with db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO projects (id, name, description, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (project_id, create.name, create.description, timestamp, timestamp),
            )

        return Project(
            id=project_id,
            name=create.name,
            description=create.description,
            created_at=timestamp,
            updated_at=timestamp,
        )

    async def get_project(self, project_id: str) -> Project:
        """Get a project by ID."""
        db = await get_db()
        async with db.transaction(immediate=False) as conn:
            return await _get_project(conn, project_id)

    async def list_projects(self) -> list[Project]:
        """List all projects, most recently updated first."""
        db = await get_db()
        async with db.transaction(immediate=False) as conn:
            rows = await fetch_all(conn, "SELECT * FROM projects ORDER BY updated_at DESC")
        return [_row_to_project(row) for row in rows]

    async def update_project(self, project_id: str, update: ProjectUpdate) -> Project:
        """Update a project."""
        db = await get_db()
        async with db.transaction() as conn:
            await update_row(
                conn, "projects", "Project", project_id, update.model_dump(exclude_unset=True)
            )
            return await _get_project(conn, project_id)

    async def delete_project(self, project_id: str) -> None:
        """Delete a project with everything it owns."""
        db = await get_db()
        async with db.transaction() as conn:
            await delete_row(conn, "projects", "Project", project_id)
        logger.info(f"Deleted project {project_id} and its workflows, settings and executions")

    # ==================== Workflows ====================

    async def create_workflow(
        self, project_id: str, create: WorkflowCreate, seed_start_node: bool = False
    ) -> Workflow:
        """Create a workflow in a project.

        Args:
            seed_start_node: Also create the pinned ``start`` node at index 0
        """
        db = await get_db()
        async with db.transaction() as conn:
            workflow_id = await _insert_workflow(conn, project_id, create)
            if seed_start_node:
                await _insert_nodes(
                    conn,
                    workflow_id,
                    [NodeRestore(type=NodeType.START.value, name="Start", order_index=0)],
                )
            return await _get_workflow(conn, workflow_id)

    async def get_workflow(self, workflow_id: str) -> Workflow:
        """Get a workflow by ID."""
        db = await get_db()
        async with db.transaction(immediate=False) as conn:
            return await _get_workflow(conn, workflow_id)

    async def list_workflows(self, project_id: str) -> list[Workflow]:
        """List a project's workflows, most recently updated first."""
        db = await get_db()
        async with db.transaction(immediate=False) as conn:
            rows = await fetch_all(
                conn,
                "SELECT * FROM workflows WHERE project_id = ? ORDER BY updated_at DESC",
                (project_id,),
            )
        return [_row_to_workflow(row) for row in rows]

    async def update_workflow(self, workflow_id: str, update: WorkflowUpdate) -> Workflow:
        """Update a workflow."""
        db = await get_db()
        async with db.transaction() as conn:
            await update_row(
                conn, "workflows", "Workflow", workflow_id, update.model_dump(exclude_unset=True)
            )
            return await _get_workflow(conn, workflow_id)

    async def delete_workflow(self, workflow_id: str) -> None:
        """Delete a workflow with its nodes, executions and versions."""
        db = await get_db()
        async with db.transaction() as conn:
            await delete_row(conn, "workflows", "Workflow", workflow_id)

    # ==================== Nodes ====================

    async def create_node(self, workflow_id: str, create: NodeCreate) -> Node:
        """Create a node.

        Appends after the last node unless ``insert_after_index`` is given, in
        which case every node after that index moves down by one. A ``start``
        node stays first: an insertion at or before it lands right after it.
        """
        db = await get_db()
        node_id = generate_id()
        timestamp = now()

        async with db.transaction() as conn:
            if create.insert_after_index is not None:
                order_index = create.insert_after_index + 1
                cursor = await conn.execute(
                    "SELECT MAX(order_index) AS start_order FROM nodes WHERE workflow_id = ? AND type = ?",
                    (workflow_id, NodeType.START.value),
                )
                row = await cursor.fetchone()
                start_order = row["start_order"] if row else None
                if start_order is not None and order_index <= start_order:
                    order_index = start_order + 1
                await conn.execute(
                    """
                    UPDATE nodes SET order_index = order_index + 1
                    WHERE workflow_id = ? AND order_index >= ?
                    """,
                    (workflow_id, order_index),
                )
            else:
                cursor = await conn.execute(
                    "SELECT MAX(order_index) AS max_order FROM nodes WHERE workflow_id = ?",
                    (workflow_id,),
                )
                row = await cursor.fetchone()
                max_order = row["max_order"] if row else None
                order_index = 0 if max_order is None else max_order + 1

            await conn.execute(
                """
                INSERT INTO nodes
                (id, workflow_id, type, name, config, order_index, block_id, parent_block_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    node_id,
                    workflow_id,
                    create.type,
                    create.name,
                    create.config,
                    order_index,
                    create.block_id,
                    create.parent_block_id,
                    timestamp,
                    timestamp,
                ),
            )

        return Node(
            id=node_id,
            workflow_id=workflow_id,
            type=create.type,
            name=create.name,
            config=create.config,
            order_index=order_index,
            block_id=create.block_id,
            parent_block_id=create.parent_block_id,
            created_at=timestamp,
            updated_at=timestamp,
        )

    async def get_node(self, node_id: str) -> Node:
        """Get a node by ID."""
        db = await get_db()
        async with db.transaction(immediate=False) as conn:
            return await _get_node(conn, node_id)

    async def list_nodes(self, workflow_id: str) -> list[Node]:
        """List a workflow's nodes in execution order."""
        db = await get_db()
        async with db.transaction(immediate=False) as conn:
            return await _list_nodes(conn, workflow_id)

    async def update_node(self, node_id: str, update: NodeUpdate) -> Node:
        """Update a node."""
        db = await get_db()
        async with db.transaction() as conn:
            await update_row(conn, "nodes", "Node", node_id, update.model_dump(exclude_unset=True))
            return await _get_node(conn, node_id)

    async def delete_node(self, node_id: str) -> None:
        db = await get_db()
        async with db.transaction() as conn:
            await delete_row(conn, "nodes", "Node", node_id)

    async def reorder_nodes(self, workflow_id: str, node_ids: list[str]) -> list[Node]:
        """Renumber a workflow's nodes in the given order.

        The ``start`` node always stays first. Nodes missing from ``node_ids``
        keep their relative order after the listed ones.

        Raises:
            ConstraintViolationError: If an id does not belong to the workflow
        """
        db = await get_db()

        async with db.transaction() as conn:
            await _get_workflow(conn, workflow_id)
            nodes = await _list_nodes(conn, workflow_id)
            by_id = {n.id: n for n in nodes}

            unknown = [node_id for node_id in node_ids if node_id not in by_id]
            if unknown:
                raise ConstraintViolationError(
                    f"Nodes {unknown} do not belong to workflow {workflow_id}"
                )

            ordered_ids = list(dict.fromkeys(node_ids))
            ordered_ids += [n.id for n in nodes if n.id not in ordered_ids]

            start_ids = [i for i in ordered_ids if by_id[i].type == NodeType.START.value]
            ordered_ids = start_ids + [i for i in ordered_ids if i not in start_ids]

            timestamp = now()
            await conn.executemany(
                "UPDATE nodes SET order_index = ?, updated_at = ? WHERE id = ?",
                [(index, timestamp, node_id) for index, node_id in enumerate(ordered_ids)],
            )
            return await _list_nodes(conn, workflow_id)

    async def restore_nodes(self, workflow_id: str, nodes: list[NodeRestore]) -> list[Node]:
        """Replace every node of a workflow, keeping block ids as given.

        Used by undo/redo to put a workflow back into an earlier state.
        """
        db = await get_db()

        async with db.transaction() as conn:
            await _get_workflow(conn, workflow_id)
            await conn.execute("DELETE FROM nodes WHERE workflow_id = ?", (workflow_id,))
            await _insert_nodes(conn, workflow_id, nodes)
            return await _list_nodes(conn, workflow_id)

    # ==================== Blocks ====================

    async def list_block_nodes(self, workflow_id: str, block_id: str) -> list[Node]:
        """The structural nodes of a block (start, branches, end)."""
        db = await get_db()
        async with db.transaction(immediate=False) as conn:
            rows = await fetch_all(
                conn,
                f"SELECT * FROM nodes WHERE workflow_id = ? AND block_id = ? {_NODE_ORDER}",
                (workflow_id, block_id),
            )
        return [_row_to_node(row) for row in rows]

    async def list_child_blocks(
        self, workflow_id: str, block_id: str | None = None
    ) -> list[str]:
        """Ids of the blocks directly nested in ``block_id``.

        With ``block_id=None`` the top-level blocks are returned. Blocks are
        ordered by the position of their first node.
        """
        db = await get_db()
        async with db.transaction(immediate=False) as conn:
            rows = await fetch_all(
                conn,
                """
                SELECT block_id, MIN(order_index) AS first_index FROM nodes
                WHERE workflow_id = ? AND block_id IS NOT NULL AND parent_block_id IS ?
                GROUP BY block_id
                ORDER BY first_index ASC
                """,
                (workflow_id, block_id),
            )
        return [row["block_id"] for row in rows]

    # ==================== Versions ====================

    async def create_version(
        self, workflow_id: str, create: WorkflowVersionCreate | None = None
    ) -> WorkflowVersion:
        """Snapshot a workflow and its nodes as the next version."""
        db = await get_db()
        version_id = generate_id()
        timestamp = now()
        description = create.description if create else None

        async with db.transaction() as conn:
            snapshot = await _snapshot(conn, workflow_id)

            # Numbers are never reused, even after the latest version is deleted
            cursor = await conn.execute(
                "SELECT last_version_number FROM workflows WHERE id = ?", (workflow_id,)
            )
            row = await cursor.fetchone()
            version_number = row["last_version_number"] + 1
            await conn.execute(
                "UPDATE workflows SET last_version_number = ? WHERE id = ?",
                (version_number, workflow_id),
            )

            snapshot_text = snapshot.model_dump_json()
            await conn.execute(
                """
                INSERT INTO workflow_versions
                (id, workflow_id, version_number, snapshot, description, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (version_id, workflow_id, version_number, snapshot_text, description, timestamp),
            )

        return WorkflowVersion(
            id=version_id,
            workflow_id=workflow_id,
            version_number=version_number,
            snapshot=snapshot_text,
            description=description,
            created_at=timestamp,
        )

    async def get_version(self, version_id: str) -> WorkflowVersion:
        db = await get_db()
        async with db.transaction(immediate=False) as conn:
            row = await fetch_one(
                conn,
                "SELECT * FROM workflow_versions WHERE id = ?",
                (version_id,),
                "WorkflowVersion",
                version_id,
            )
        return _row_to_version(row)

    async def list_versions(self, workflow_id: str) -> list[WorkflowVersion]:
        """List a workflow's versions, newest first."""
        db = await get_db()
        async with db.transaction(immediate=False) as conn:
            rows = await fetch_all(
                conn,
                "SELECT * FROM workflow_versions WHERE workflow_id = ? ORDER BY version_number DESC",
                (workflow_id,),
            )
        return [_row_to_version(row) for row in rows]

    async def delete_version(self, version_id: str) -> None:
        db = await get_db()
        async with db.transaction() as conn:
            await delete_row(conn, "workflow_versions", "WorkflowVersion", version_id)

    async def restore_version(self, version_id: str) -> Workflow:
        """Put a workflow back to the state captured by one of its versions.

        Block ids are regenerated; the version itself is left unchanged.

        Raises:
            SerializationError: If the stored snapshot cannot be decoded
        """
        db = await get_db()

        async with db.transaction() as conn:
            row = await fetch_one(
                conn,
                "SELECT * FROM workflow_versions WHERE id = ?",
                (version_id,),
                "WorkflowVersion",
                version_id,
            )
            version = _row_to_version(row)
            try:
                snapshot = WorkflowSnapshot.model_validate_json(version.snapshot)
            except ValidationError as e:
                raise SerializationError(
                    f"Snapshot of version {version_id} is not a valid workflow snapshot"
                ) from e

            info = snapshot.workflow
            await update_row(
                conn,
                "workflows",
                "Workflow",
                version.workflow_id,
                {
                    "name": info.name,
                    "description": info.description,
                    "loop_max_count": info.loop_max_count,
                    "timeout_seconds": info.timeout_seconds,
                },
            )
            await conn.execute("DELETE FROM nodes WHERE workflow_id = ?", (version.workflow_id,))
            await _insert_nodes(conn, version.workflow_id, remap_block_ids(snapshot.nodes))
            workflow = await _get_workflow(conn, version.workflow_id)

        logger.info(f"Restored workflow {version.workflow_id} to version {version.version_number}")
        return workflow

    async def cleanup_old_versions(
        self, workflow_id: str, keep_count: int = DEFAULT_KEEP_VERSIONS
    ) -> int:
        """Delete all but the newest ``keep_count`` versions.

        Returns:
            Number of deleted versions
        """
        db = await get_db()
        async with db.transaction() as conn:
            cursor = await conn.execute(
                """
                DELETE FROM workflow_versions
                WHERE workflow_id = ? AND id NOT IN (
                    SELECT id FROM workflow_versions WHERE workflow_id = ?
                    ORDER BY version_number DESC LIMIT ?
                )
                """,
                (workflow_id, workflow_id, max(keep_count, 0)),
            )
            deleted = cursor.rowcount

        if deleted:
            logger.info(f"Removed {deleted} old version(s) of workflow {workflow_id}")
        return deleted

    # ==================== Import / export ====================

    async def export_workflow(self, workflow_id: str) -> ExportedWorkflow:
        db = await get_db()
        async with db.transaction(immediate=False) as conn:
            snapshot = await _snapshot(conn, workflow_id)
        return ExportedWorkflow(workflow=snapshot.workflow, nodes=snapshot.nodes)

    async def import_workflow(
        self, project_id: str, data: WorkflowSnapshot, name: str | None = None
    ) -> Workflow:
        """Create a new workflow in a project from an export file.

        ``name``, when given, replaces the workflow name carried by the file.
        """
        db = await get_db()
        if name is not None:
            data = data.model_copy(
                update={"workflow": data.workflow.model_copy(update={"name": name})}
            )
        async with db.transaction() as conn:
            await _get_project(conn, project_id)
            workflow_id = await _import_snapshot(conn, project_id, data)
            return await _get_workflow(conn, workflow_id)

    async def export_project(self, project_id: str) -> ExportedProject:
        """Export a project with its settings library and workflows."""
        db = await get_db()

        async with db.transaction(immediate=False) as conn:
            project = await _get_project(conn, project_id)
            settings = await export_project_settings(conn, project_id)
            rows = await fetch_all(
                conn,
                "SELECT id FROM workflows WHERE project_id = ? ORDER BY created_at, rowid",
                (project_id,),
            )
            workflows = [await _snapshot(conn, row["id"]) for row in rows]

        return ExportedProject(
            project=ExportedProjectInfo(name=project.name, description=project.description),
            settings=settings.settings,
            setting_prompts=settings.setting_prompts,
            setting_relations=settings.setting_relations,
            workflows=workflows,
        )

    async def import_project(self, data: ExportedProject) -> Project:
        """Create a new project from a backup."""
        db = await get_db()
        project_id = generate_id()
        timestamp = now()

        async with db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO projects (id, name, description, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (project_id, data.project.name, data.project.description, timestamp, timestamp),
            )
            await import_project_settings(
                conn,
                project_id,
                ExportedSettings(
                    settings=data.settings,
                    setting_prompts=data.setting_prompts,
                    setting_relations=data.setting_relations,
                ),
            )
            for snapshot in data.workflows:
                await _import_snapshot(conn, project_id, snapshot)
            project = await _get_project(conn, project_id)

        logger.info(
            f"Imported project {project_id} with {len(data.settings)} setting(s) "
            f"and {len(data.workflows)} workflow(s)"
        )
        return project


workflow_store = WorkflowStore()
