"""Tests for the schema migration runner."""

from datetime import datetime, timezone

import aiosqlite
import pytest

from novelflow.db.database import init_database
from novelflow.db.errors import InitializationError
from novelflow.db.migrations import (
    LATEST_VERSION,
    MIGRATIONS,
    Migration,
    get_applied_versions,
    get_current_version,
    run_migrations,
    split_statements,
)

EXPECTED_TABLES = {
    "projects",
    "workflows",
    "nodes",
    "settings",
    "setting_prompts",
    "setting_relations",
    "global_config",
    "executions",
    "node_results",
    "workflow_versions",
    "schema_migrations",
}


@pytest.fixture
async def conn(tmp_path):
    """A raw autocommit connection to an empty database file."""
    connection = await aiosqlite.connect(str(tmp_path / "migrations.db"), isolation_level=None)
    connection.row_factory = aiosqlite.Row
    await connection.execute("PRAGMA foreign_keys = ON")

    yield connection

    await connection.close()


async def _tables(conn: aiosqlite.Connection) -> set[str]:
    cursor = await conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
    return {row[0] for row in await cursor.fetchall()}


async def _columns(conn: aiosqlite.Connection, table: str) -> set[str]:
    cursor = await conn.execute(f"PRAGMA table_info({table})")
    return {row[1] for row in await cursor.fetchall()}


class TestFreshDatabase:
    """Tests for migrating an empty file."""

    @pytest.mark.asyncio
    async def test_applies_every_migration(self, conn):
        """Test that a fresh file gets the full schema."""
        applied = await run_migrations(conn)

        assert applied == [m.version for m in MIGRATIONS]
        assert await get_current_version(conn) == LATEST_VERSION
        assert EXPECTED_TABLES <= await _tables(conn)

    @pytest.mark.asyncio
    async def test_later_columns_present(self, conn):
        """Test that ALTER-based steps added their columns."""
        await run_migrations(conn)

        settings_columns = await _columns(conn, "settings")
        assert {"parent_id", "order_index", "injection_mode", "priority", "keywords", "summary"} <= settings_columns
        assert "setting_assistant" in await _columns(conn, "global_config")
        assert "token_usage" in await _columns(conn, "node_results")
        assert "last_version_number" in await _columns(conn, "workflows")

    @pytest.mark.asyncio
    async def test_seeds_global_config(self, conn):
        """Test that the first step seeds the configuration row."""
        await run_migrations(conn)

        cursor = await conn.execute("SELECT * FROM global_config")
        rows = await cursor.fetchall()

        assert len(rows) == 1
        assert rows[0]["id"] == 1
        assert rows[0]["theme"] == "system"
        assert rows[0]["ai_providers"] == "{}"

    @pytest.mark.asyncio
    async def test_records_checksums(self, conn):
        """Test that every applied step is recorded with its checksum."""
        await run_migrations(conn)

        applied = await get_applied_versions(conn)

        assert applied == {m.version: m.checksum for m in MIGRATIONS}


class TestRerun:
    """Tests for running migrations on an existing file."""

    @pytest.mark.asyncio
    async def test_second_run_is_noop(self, conn):
        """Test that running again applies nothing and changes nothing."""
        await run_migrations(conn)
        cursor = await conn.execute("SELECT COUNT(*) FROM global_config")
        before = (await cursor.fetchone())[0]

        applied = await run_migrations(conn)

        cursor = await conn.execute("SELECT COUNT(*) FROM global_config")
        after = (await cursor.fetchone())[0]
        assert applied == []
        assert before == after == 1

    @pytest.mark.asyncio
    async def test_applies_only_pending(self, conn):
        """Test that an older file is brought forward from its head."""
        await run_migrations(conn, MIGRATIONS[:3])

        applied = await run_migrations(conn)

        assert applied == [4, 5, 6, 7]
        assert await get_current_version(conn) == LATEST_VERSION

    @pytest.mark.asyncio
    async def test_out_of_order_presentation(self, conn):
        """Test that steps run in version order regardless of input order."""
        applied = await run_migrations(conn, list(reversed(MIGRATIONS)))

        assert applied == [1, 2, 3, 4, 5, 6, 7]
        assert EXPECTED_TABLES <= await _tables(conn)

    @pytest.mark.asyncio
    async def test_existing_column_is_skipped(self, conn):
        """Test that a column added outside the runner does not fail the step."""
        await run_migrations(conn, MIGRATIONS[:3])
        await conn.execute("ALTER TABLE settings ADD COLUMN parent_id TEXT")

        applied = await run_migrations(conn)

        assert applied == [4, 5, 6, 7]
        assert "summary" in await _columns(conn, "settings")

    @pytest.mark.asyncio
    async def test_version_counter_backfilled(self, conn):
        """Test that existing workflows continue numbering after their newest version."""
        await run_migrations(conn, MIGRATIONS[:6])
        await conn.execute("INSERT INTO projects (id, name) VALUES ('p', 'Novel')")
        for workflow_id in ("w1", "w2"):
            await conn.execute(
                "INSERT INTO workflows (id, project_id, name) VALUES (?, 'p', 'Chapter')",
                (workflow_id,),
            )
        for number in (1, 3):
            await conn.execute(
                "INSERT INTO workflow_versions (id, workflow_id, version_number, snapshot) VALUES (?, 'w1', ?, '{}')",
                (f"v{number}", number),
            )

        applied = await run_migrations(conn)

        cursor = await conn.execute("SELECT id, last_version_number FROM workflows ORDER BY id")
        rows = await cursor.fetchall()
        assert applied == [7]
        assert [(row[0], row[1]) for row in rows] == [("w1", 3), ("w2", 0)]


class TestFatalConditions:
    """Tests for conditions that must stop startup."""

    @pytest.mark.asyncio
    async def test_downgrade_is_fatal(self, conn):
        """Test that a file newer than the build is rejected."""
        await run_migrations(conn)

        with pytest.raises(InitializationError, match="newer than supported"):
            await run_migrations(conn, MIGRATIONS[:3])

    @pytest.mark.asyncio
    async def test_checksum_mismatch_is_fatal(self, conn):
        """Test that editing a shipped step is detected."""
        await run_migrations(conn, MIGRATIONS[:1])
        edited = Migration(
            version=1,
            description=MIGRATIONS[0].description,
            sql=MIGRATIONS[0].sql + "\nCREATE TABLE IF NOT EXISTS sneaky (id TEXT);",
        )

        with pytest.raises(InitializationError, match="modified"):
            await run_migrations(conn, [edited, *MIGRATIONS[1:]])

    @pytest.mark.asyncio
    async def test_skipped_step_below_head_is_fatal(self, conn):
        """Test that a known step below the head that never ran is rejected."""
        await run_migrations(conn, [MIGRATIONS[0], MIGRATIONS[2]])

        with pytest.raises(InitializationError, match="never applied"):
            await run_migrations(conn, MIGRATIONS[:3])

    @pytest.mark.asyncio
    async def test_unknown_applied_version_is_fatal(self, conn):
        """Test that a recorded version missing from the build is rejected."""
        await run_migrations(conn, [MIGRATIONS[0], MIGRATIONS[2]])

        with pytest.raises(InitializationError, match="unknown"):
            await run_migrations(conn, [MIGRATIONS[0], MIGRATIONS[1], MIGRATIONS[3]])

    @pytest.mark.asyncio
    async def test_duplicate_version_is_fatal(self, conn):
        """Test that two steps with one version are rejected."""
        duplicate = Migration(version=1, description="again", sql="SELECT 1;")

        with pytest.raises(InitializationError, match="Duplicate"):
            await run_migrations(conn, [*MIGRATIONS, duplicate])

        assert await _tables(conn) == set()

    @pytest.mark.asyncio
    async def test_version_zero_is_rejected(self, conn):
        """Test that versions start at 1."""
        with pytest.raises(InitializationError, match=">= 1"):
            await run_migrations(conn, [Migration(version=0, description="zero", sql="SELECT 1;")])

    @pytest.mark.asyncio
    async def test_failed_step_leaves_no_partial_state(self, conn):
        """Test that a failing step is rolled back with its tracking row."""
        broken = Migration(
            version=LATEST_VERSION + 1,
            description="broken",
            sql="""
                CREATE TABLE chapters (id TEXT PRIMARY KEY);
                INSERT INTO no_such_table VALUES (1);
            """,
        )

        with pytest.raises(InitializationError, match="broken"):
            await run_migrations(conn, [*MIGRATIONS, broken])

        assert "chapters" not in await _tables(conn)
        assert await get_current_version(conn) == LATEST_VERSION

    @pytest.mark.asyncio
    async def test_init_database_rejects_newer_file(self, tmp_path):
        """Test that init_database refuses a file from a newer build."""
        path = str(tmp_path / "future.db")
        async with aiosqlite.connect(path, isolation_level=None) as conn:
            await run_migrations(conn)
            await conn.execute(
                "INSERT INTO schema_migrations (version, description, checksum, applied_at) VALUES (?, ?, ?, ?)",
                (99, "future", "0" * 64, datetime.now(timezone.utc).isoformat()),
            )

        with pytest.raises(InitializationError):
            await init_database(path)


class TestSplitStatements:
    """Tests for splitting migration scripts."""

    def test_splits_on_statement_end(self):
        """Test splitting a simple script."""
        statements = split_statements("CREATE TABLE a (id TEXT);\nCREATE TABLE b (id TEXT);")

        assert statements == ["CREATE TABLE a (id TEXT);", "CREATE TABLE b (id TEXT);"]

    def test_semicolon_inside_literal(self):
        """Test that a semicolon in a string literal does not split."""
        statements = split_statements("INSERT INTO t VALUES ('a;b');\nSELECT 1;")

        assert statements == ["INSERT INTO t VALUES ('a;b');", "SELECT 1;"]

    def test_ignores_empty_statements(self):
        """Test that blank trailing text is dropped."""
        assert split_statements("SELECT 1;\n\n  ") == ["SELECT 1;"]

    def test_checksum_tracks_sql(self):
        """Test that the checksum changes with the SQL body only."""
        first = Migration(version=1, description="a", sql="SELECT 1;")
        renamed = Migration(version=1, description="b", sql="SELECT 1;")
        edited = Migration(version=1, description="a", sql="SELECT 2;")

        assert first.checksum == renamed.checksum
        assert first.checksum != edited.checksum
