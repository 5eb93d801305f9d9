"""Versioned, forward-only schema migrations.

Every installation records the migrations it has applied in
``schema_migrations``. On startup the runner applies the steps with a higher
version than the recorded head, in ascending order, each in its own
transaction. Shipped steps are immutable: their version numbers and SQL
bodies must never change, which the runner checks through a SHA-256 checksum
of each body.
"""

import hashlib
import logging
import re
import sqlite3
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

import aiosqlite

from novelflow.db.errors import InitializationError

logger = logging.getLogger(__name__)

MIGRATIONS_TABLE = "schema_migrations"

_ALTER_ADD_COLUMN = re.compile(
    r"^\s*ALTER\s+TABLE\s+\S+\s+ADD\s+(COLUMN\s+)?", re.IGNORECASE
)


@dataclass(frozen=True)
class Migration:
    """A single forward-only schema step."""

    version: int
    description: str
    sql: str
    checksum: str = field(init=False)

    def __post_init__(self) -> None:
        digest = hashlib.sha256(self.sql.encode("utf-8")).hexdigest()
        object.__setattr__(self, "checksum", digest)

    def statements(self) -> list[str]:
        return split_statements(self.sql)


MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        version=1,
        description="create_all_tables",
        sql="""
            CREATE TABLE IF NOT EXISTS projects (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                project_id TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT,
                loop_max_count INTEGER DEFAULT 10,
                timeout_seconds INTEGER DEFAULT 300,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS nodes (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                type TEXT NOT NULL,
                name TEXT NOT NULL,
                config TEXT NOT NULL DEFAULT '{}',
                order_index INTEGER NOT NULL,
                block_id TEXT,
                parent_block_id TEXT,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (workflow_id) REFERENCES workflows(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS settings (
                id TEXT PRIMARY KEY,
                project_id TEXT NOT NULL,
                category TEXT NOT NULL,
                name TEXT NOT NULL,
                content TEXT NOT NULL,
                enabled INTEGER DEFAULT 1,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS setting_prompts (
                id TEXT PRIMARY KEY,
                project_id TEXT NOT NULL,
                category TEXT NOT NULL,
                prompt_template TEXT NOT NULL,
                enabled INTEGER DEFAULT 1,
                FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS global_config (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                ai_providers TEXT NOT NULL DEFAULT '{}',
                theme TEXT DEFAULT 'system',
                default_loop_max INTEGER DEFAULT 10,
                default_timeout INTEGER DEFAULT 300
            );

            CREATE TABLE IF NOT EXISTS executions (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                status TEXT NOT NULL,
                input TEXT,
                final_output TEXT,
                variables_snapshot TEXT,
                started_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                finished_at DATETIME,
                FOREIGN KEY (workflow_id) REFERENCES workflows(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS node_results (
                id TEXT PRIMARY KEY,
                execution_id TEXT NOT NULL,
                node_id TEXT NOT NULL,
                iteration INTEGER DEFAULT 1,
                input TEXT,
                output TEXT,
                resolved_config TEXT,
                status TEXT NOT NULL,
                started_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                finished_at DATETIME,
                FOREIGN KEY (execution_id) REFERENCES executions(id) ON DELETE CASCADE
            );

            INSERT OR IGNORE INTO global_config (id, ai_providers, theme)
            VALUES (1, '{}', 'system');
        """,
    ),
    Migration(
        version=2,
        description="add_performance_indexes",
        sql="""
            CREATE INDEX IF NOT EXISTS idx_workflows_project_id ON workflows(project_id);
            CREATE INDEX IF NOT EXISTS idx_workflows_updated_at ON workflows(updated_at DESC);

            CREATE INDEX IF NOT EXISTS idx_nodes_workflow_id ON nodes(workflow_id);
            CREATE INDEX IF NOT EXISTS idx_nodes_order_index ON nodes(workflow_id, order_index);

            CREATE INDEX IF NOT EXISTS idx_settings_project_id ON settings(project_id);
            CREATE INDEX IF NOT EXISTS idx_settings_project_category ON settings(project_id, category);
            CREATE INDEX IF NOT EXISTS idx_settings_name ON settings(name);

            CREATE INDEX IF NOT EXISTS idx_setting_prompts_project_id ON setting_prompts(project_id);
            CREATE INDEX IF NOT EXISTS idx_setting_prompts_project_category ON setting_prompts(project_id, category);

            CREATE INDEX IF NOT EXISTS idx_executions_workflow_id ON executions(workflow_id);
            CREATE INDEX IF NOT EXISTS idx_executions_started_at ON executions(started_at DESC);
            CREATE INDEX IF NOT EXISTS idx_executions_workflow_started ON executions(workflow_id, started_at DESC);

            CREATE INDEX IF NOT EXISTS idx_node_results_execution_id ON node_results(execution_id);
            CREATE INDEX IF NOT EXISTS idx_node_results_node_id ON node_results(node_id);
            CREATE INDEX IF NOT EXISTS idx_node_results_started_at ON node_results(started_at);
        """,
    ),
    Migration(
        version=3,
        description="add_workflow_versions_table",
        sql="""
            CREATE TABLE IF NOT EXISTS workflow_versions (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                version_number INTEGER NOT NULL,
                snapshot TEXT NOT NULL,
                description TEXT,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (workflow_id) REFERENCES workflows(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_workflow_versions_workflow_id ON workflow_versions(workflow_id);
            CREATE INDEX IF NOT EXISTS idx_workflow_versions_number ON workflow_versions(workflow_id, version_number DESC);
        """,
    ),
    Migration(
        version=4,
        description="add_setting_hierarchy",
        sql="""
            ALTER TABLE settings ADD COLUMN parent_id TEXT;
            ALTER TABLE settings ADD COLUMN order_index INTEGER NOT NULL DEFAULT 0;
            ALTER TABLE settings ADD COLUMN injection_mode TEXT NOT NULL DEFAULT 'manual';
            ALTER TABLE settings ADD COLUMN priority TEXT NOT NULL DEFAULT 'medium';
            ALTER TABLE settings ADD COLUMN keywords TEXT NOT NULL DEFAULT '[]';
            ALTER TABLE settings ADD COLUMN summary TEXT;

            CREATE INDEX IF NOT EXISTS idx_settings_parent ON settings(project_id, parent_id, order_index);
        """,
    ),
    Migration(
        version=5,
        description="add_setting_relations_table",
        sql="""
            CREATE TABLE IF NOT EXISTS setting_relations (
                id TEXT PRIMARY KEY,
                project_id TEXT NOT NULL,
                source_id TEXT NOT NULL,
                target_id TEXT NOT NULL,
                label TEXT NOT NULL DEFAULT '',
                description TEXT,
                bidirectional INTEGER NOT NULL DEFAULT 0,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE,
                FOREIGN KEY (source_id) REFERENCES settings(id) ON DELETE CASCADE,
                FOREIGN KEY (target_id) REFERENCES settings(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_setting_relations_project_id ON setting_relations(project_id);
            CREATE INDEX IF NOT EXISTS idx_setting_relations_source_id ON setting_relations(source_id);
            CREATE INDEX IF NOT EXISTS idx_setting_relations_target_id ON setting_relations(target_id);
        """,
    ),
    Migration(
        version=6,
        description="add_setting_assistant_and_token_usage",
        sql="""
            ALTER TABLE global_config ADD COLUMN setting_assistant TEXT;
            ALTER TABLE node_results ADD COLUMN token_usage TEXT;
        """,
    ),
    Migration(
        version=7,
        description="add_workflow_version_counter",
        sql="""
            ALTER TABLE workflows ADD COLUMN last_version_number INTEGER NOT NULL DEFAULT 0;
            UPDATE workflows SET last_version_number = COALESCE(
                (SELECT MAX(version_number) FROM workflow_versions
                 WHERE workflow_versions.workflow_id = workflows.id),
                0
            );
        """,
    ),
)

LATEST_VERSION = MIGRATIONS[-1].version


def split_statements(sql: str) -> list[str]:
    """Split a SQL script into complete statements.

    Semicolons inside string literals or trigger bodies do not end a
    statement; ``sqlite3.complete_statement`` decides where each one stops.
    """
    statements = []
    buffer = ""
    for piece in sql.split(";"):
        buffer += piece + ";"
        if sqlite3.complete_statement(buffer):
            statement = buffer.strip()
            if statement.rstrip(";").strip():
                statements.append(statement)
            buffer = ""
    return statements


def _ordered(migrations: Sequence[Migration]) -> list[Migration]:
    """Validate and sort migrations by version."""
    ordered = sorted(migrations, key=lambda m: m.version)
    seen: set[int] = set()
    for migration in ordered:
        if migration.version < 1:
            raise InitializationError(
                f"Migration version must be >= 1, got {migration.version}"
            )
        if migration.version in seen:
            raise InitializationError(
                f"Duplicate migration version {migration.version}"
            )
        seen.add(migration.version)
    return ordered


async def _ensure_migrations_table(conn: aiosqlite.Connection) -> None:
    await conn.execute(f"""
        CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE} (
            version INTEGER PRIMARY KEY,
            description TEXT NOT NULL,
            checksum TEXT NOT NULL,
            applied_at TEXT NOT NULL
        )
    """)


async def get_applied_versions(conn: aiosqlite.Connection) -> dict[int, str]:
    """Return ``{version: checksum}`` for every recorded migration."""
    cursor = await conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
        (MIGRATIONS_TABLE,),
    )
    if await cursor.fetchone() is None:
        return {}

    cursor = await conn.execute(
        f"SELECT version, checksum FROM {MIGRATIONS_TABLE} ORDER BY version"
    )
    rows = await cursor.fetchall()
    return {row[0]: row[1] for row in rows}


async def get_current_version(conn: aiosqlite.Connection) -> int:
    """Return the highest applied migration version, 0 for a fresh file."""
    applied = await get_applied_versions(conn)
    return max(applied, default=0)


async def _execute_statement(conn: aiosqlite.Connection, statement: str) -> None:
    try:
        await conn.execute(statement)
    except sqlite3.OperationalError as e:
        # ALTER TABLE has no IF NOT EXISTS form
        if _ALTER_ADD_COLUMN.match(statement) and "duplicate column" in str(e).lower():
            logger.debug(f"Column already present, skipping: {statement}")
            return
        raise


async def _apply(conn: aiosqlite.Connection, migration: Migration) -> None:
    """Apply one migration and record it in a single transaction."""
    await conn.execute("BEGIN IMMEDIATE")
    try:
        for statement in migration.statements():
            await _execute_statement(conn, statement)
        await conn.execute(
            f"""
            INSERT INTO {MIGRATIONS_TABLE} (version, description, checksum, applied_at)
            VALUES (?, ?, ?, ?)
            """,
            (
                migration.version,
                migration.description,
                migration.checksum,
                datetime.now(timezone.utc).isoformat(),
            ),
        )
        await conn.execute("COMMIT")
    except sqlite3.Error as e:
        await conn.execute("ROLLBACK")
        raise InitializationError(
            f"Migration {migration.version} ({migration.description}) failed: {e}"
        ) from e


async def run_migrations(
    conn: aiosqlite.Connection,
    migrations: Sequence[Migration] = MIGRATIONS,
) -> list[int]:
    """Bring the schema up to the latest known migration.

    The connection must be in autocommit mode (``isolation_level=None``) so
    that each step controls its own transaction.

    Returns:
        The versions applied by this call, in order; empty when up to date

    Raises:
        InitializationError: On a failed step, a recorded version newer than
            any known step, a shipped step whose SQL changed, or a known step
            below the recorded head that was never applied
    """
    ordered = _ordered(migrations)
    known = {m.version: m for m in ordered}

    await _ensure_migrations_table(conn)
    applied = await get_applied_versions(conn)
    head = max(applied, default=0)

    latest = ordered[-1].version if ordered else 0
    if head > latest:
        raise InitializationError(
            f"Database schema version {head} is newer than supported {latest}"
        )

    for version, checksum in applied.items():
        migration = known.get(version)
        if migration is None:
            raise InitializationError(
                f"Applied migration {version} is unknown to this build"
            )
        if migration.checksum != checksum:
            raise InitializationError(
                f"Migration {version} ({migration.description}) was modified after it was applied"
            )

    missing = [m.version for m in ordered if m.version < head and m.version not in applied]
    if missing:
        raise InitializationError(
            f"Migrations {missing} are below applied version {head} but were never applied"
        )

    pending = [m for m in ordered if m.version > head]
    if not pending:
        logger.debug(f"Schema up to date at version {head}")
        return []

    applied_now = []
    for migration in pending:
        logger.info(f"Applying migration {migration.version}: {migration.description}")
        await _apply(conn, migration)
        applied_now.append(migration.version)

    logger.info(f"Schema migrated from version {head} to {applied_now[-1]}")
    return applied_now
