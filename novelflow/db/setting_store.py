"""SettingStore - settings library, injection prompts and setting relations.

Settings form a forest per project through ``parent_id``. The column has no
foreign key, so the hierarchy rules (parent in the same project, no cycles,
deleting a setting deletes its descendants) are enforced here, inside the
transaction of each operation.
"""

import logging
from typing import Any, Literal

import aiosqlite

from novelflow.db.database import get_db
from novelflow.db.documents import decode_document, encode_document
from novelflow.db.errors import ConstraintViolationError, NotFoundError
from novelflow.db.utils import (
    delete_row,
    fetch_all,
    fetch_one,
    generate_id,
    now,
    update_row,
)
from novelflow.models import (
    ExportedSetting,
    ExportedSettingPrompt,
    ExportedSettingRelation,
    ExportedSettings,
    InjectionMode,
    Setting,
    SettingCreate,
    SettingPrompt,
    SettingPromptCreate,
    SettingPromptUpdate,
    SettingPriority,
    SettingRelation,
    SettingRelationCreate,
    SettingRelationUpdate,
    SettingTreeNode,
    SettingUpdate,
)

logger = logging.getLogger(__name__)

ImportMode = Literal["merge", "replace"]

_SETTING_ORDER = "ORDER BY order_index ASC, created_at ASC, rowid ASC"


def _row_to_setting(row: aiosqlite.Row) -> Setting:
    """Convert a database row to a Setting model."""
    return Setting(
        id=row["id"],
        project_id=row["project_id"],
        category=row["category"],
        name=row["name"],
        content=row["content"],
        enabled=bool(row["enabled"]),
        parent_id=row["parent_id"],
        order_index=row["order_index"],
        injection_mode=InjectionMode(row["injection_mode"]),
        priority=SettingPriority(row["priority"]),
        keywords=decode_document(row["keywords"] or "[]", expected=list),
        summary=row["summary"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_prompt(row: aiosqlite.Row) -> SettingPrompt:
    return SettingPrompt(
        id=row["id"],
        project_id=row["project_id"],
        category=row["category"],
        prompt_template=row["prompt_template"],
        enabled=bool(row["enabled"]),
    )


def _row_to_relation(row: aiosqlite.Row) -> SettingRelation:
    return SettingRelation(
        id=row["id"],
        project_id=row["project_id"],
        source_id=row["source_id"],
        target_id=row["target_id"],
        label=row["label"],
        description=row["description"],
        bidirectional=bool(row["bidirectional"]),
        created_at=row["created_at"],
    )


def _setting_columns(fields: dict[str, Any]) -> dict[str, Any]:
    """Map model fields to column values."""
    columns = {}
    for key, value in fields.items():
        if key == "keywords":
            value = encode_document(value)
        elif key == "enabled":
            value = 1 if value else 0
        elif isinstance(value, (InjectionMode, SettingPriority)):
            value = value.value
        columns[key] = value
    return columns


async def _get_setting(conn: aiosqlite.Connection, setting_id: str) -> Setting:
    row = await fetch_one(
        conn, "SELECT * FROM settings WHERE id = ?", (setting_id,), "Setting", setting_id
    )
    return _row_to_setting(row)


async def _child_rows(conn: aiosqlite.Connection, setting_id: str) -> list[Setting]:
    rows = await fetch_all(
        conn, f"SELECT * FROM settings WHERE parent_id = ? {_SETTING_ORDER}", (setting_id,)
    )
    return [_row_to_setting(row) for row in rows]


async def _descendants(conn: aiosqlite.Connection, setting_id: str) -> list[Setting]:
    """Depth-first, pre-order descendants of a setting."""
    result: list[Setting] = []
    visited = {setting_id}

    async def walk(parent_id: str) -> None:
        for child in await _child_rows(conn, parent_id):
            if child.id in visited:
                continue
            visited.add(child.id)
            result.append(child)
            await walk(child.id)

    await walk(setting_id)
    return result


async def _check_parent(
    conn: aiosqlite.Connection,
    project_id: str,
    parent_id: str,
    setting_id: str | None = None,
) -> None:
    """Verify a parent belongs to the project and would not create a cycle."""
    cursor = await conn.execute(
        "SELECT project_id FROM settings WHERE id = ?", (parent_id,)
    )
    row = await cursor.fetchone()
    if row is None or row["project_id"] != project_id:
        raise ConstraintViolationError(
            f"Parent setting {parent_id} does not exist in project {project_id}"
        )

    if setting_id is None:
        return
    if parent_id == setting_id:
        raise ConstraintViolationError(f"Setting {setting_id} cannot be its own parent")
    descendant_ids = {s.id for s in await _descendants(conn, setting_id)}
    if parent_id in descendant_ids:
        raise ConstraintViolationError(
            f"Moving setting {setting_id} under {parent_id} would create a cycle"
        )


async def _next_order(
    conn: aiosqlite.Connection, project_id: str, category: str, parent_id: str | None
) -> int:
    cursor = await conn.execute(
        """
        SELECT MAX(order_index) AS max_order FROM settings
        WHERE project_id = ? AND category = ? AND parent_id IS ?
        """,
        (project_id, category, parent_id),
    )
    row = await cursor.fetchone()
    max_order = row["max_order"] if row else None
    return 0 if max_order is None else max_order + 1


async def _insert_setting(
    conn: aiosqlite.Connection, project_id: str, create: SettingCreate
) -> Setting:
    if create.parent_id is not None:
        await _check_parent(conn, project_id, create.parent_id)

    order_index = create.order_index
    if order_index is None:
        order_index = await _next_order(conn, project_id, create.category, create.parent_id)

    setting_id = generate_id()
    timestamp = now()
    await conn.execute(
        """
        INSERT INTO settings
        (id, project_id, category, name, content, enabled, parent_id, order_index,
         injection_mode, priority, keywords, summary, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            setting_id,
            project_id,
            create.category,
            create.name,
            create.content,
            1 if create.enabled else 0,
            create.parent_id,
            order_index,
            create.injection_mode.value,
            create.priority.value,
            encode_document(create.keywords),
            create.summary,
            timestamp,
            timestamp,
        ),
    )
    return await _get_setting(conn, setting_id)


async def _insert_relation(
    conn: aiosqlite.Connection, project_id: str, create: SettingRelationCreate
) -> SettingRelation:
    if create.source_id == create.target_id:
        raise ConstraintViolationError("A setting cannot be related to itself")

    for endpoint in (create.source_id, create.target_id):
        cursor = await conn.execute(
            "SELECT project_id FROM settings WHERE id = ?", (endpoint,)
        )
        row = await cursor.fetchone()
        if row is None or row["project_id"] != project_id:
            raise ConstraintViolationError(
                f"Setting {endpoint} does not exist in project {project_id}"
            )

    relation_id = generate_id()
    await conn.execute(
        """
        INSERT INTO setting_relations
        (id, project_id, source_id, target_id, label, description, bidirectional, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            relation_id,
            project_id,
            create.source_id,
            create.target_id,
            create.label,
            create.description,
            1 if create.bidirectional else 0,
            now(),
        ),
    )
    row = await fetch_one(
        conn,
        "SELECT * FROM setting_relations WHERE id = ?",
        (relation_id,),
        "SettingRelation",
        relation_id,
    )
    return _row_to_relation(row)


async def export_project_settings(
    conn: aiosqlite.Connection, project_id: str
) -> ExportedSettings:
    """Collect a project's settings, prompts and relations for export."""
    setting_rows = await fetch_all(
        conn,
        f"SELECT * FROM settings WHERE project_id = ? {_SETTING_ORDER}",
        (project_id,),
    )
    prompt_rows = await fetch_all(
        conn,
        "SELECT * FROM setting_prompts WHERE project_id = ? ORDER BY category, rowid",
        (project_id,),
    )
    relation_rows = await fetch_all(
        conn,
        "SELECT * FROM setting_relations WHERE project_id = ? ORDER BY created_at, rowid",
        (project_id,),
    )

    settings = [_row_to_setting(row) for row in setting_rows]
    return ExportedSettings(
        settings=[
            ExportedSetting(
                ref=s.id,
                parent_ref=s.parent_id,
                category=s.category,
                name=s.name,
                content=s.content,
                enabled=s.enabled,
                order_index=s.order_index,
                injection_mode=s.injection_mode,
                priority=s.priority,
                keywords=s.keywords,
                summary=s.summary,
            )
            for s in settings
        ],
        setting_prompts=[
            ExportedSettingPrompt(
                category=row["category"],
                prompt_template=row["prompt_template"],
                enabled=bool(row["enabled"]),
            )
            for row in prompt_rows
        ],
        setting_relations=[
            ExportedSettingRelation(
                source_ref=row["source_id"],
                target_ref=row["target_id"],
                label=row["label"],
                description=row["description"],
                bidirectional=bool(row["bidirectional"]),
            )
            for row in relation_rows
        ],
    )


async def import_project_settings(
    conn: aiosqlite.Connection,
    project_id: str,
    data: ExportedSettings,
    mode: ImportMode = "merge",
) -> None:
    """Insert exported settings into a project.

    In ``replace`` mode the project's settings and prompts are cleared first.
    In ``merge`` mode existing settings are kept and prompts for categories
    that already have one are skipped.
    """
    if mode == "replace":
        await conn.execute("DELETE FROM settings WHERE project_id = ?", (project_id,))
        await conn.execute("DELETE FROM setting_prompts WHERE project_id = ?", (project_id,))

    # Insert flat first, then link parents through the ref map
    ref_map: dict[str, str] = {}
    pending_parents: list[tuple[str, str]] = []
    for exported in data.settings:
        setting = await _insert_setting(
            conn,
            project_id,
            SettingCreate(
                category=exported.category,
                name=exported.name,
                content=exported.content,
                enabled=exported.enabled,
                order_index=exported.order_index,
                injection_mode=exported.injection_mode,
                priority=exported.priority,
                keywords=exported.keywords,
                summary=exported.summary,
            ),
        )
        if exported.ref is not None:
            ref_map[exported.ref] = setting.id
        if exported.parent_ref is not None:
            pending_parents.append((setting.id, exported.parent_ref))

    for setting_id, parent_ref in pending_parents:
        parent_id = ref_map.get(parent_ref)
        if parent_id is None:
            logger.warning(f"Imported setting {setting_id} references unknown parent {parent_ref}")
            continue
        try:
            await _check_parent(conn, project_id, parent_id, setting_id)
        except ConstraintViolationError as e:
            logger.warning(f"Imported setting {setting_id} kept as a root: {e}")
            continue
        await conn.execute(
            "UPDATE settings SET parent_id = ? WHERE id = ?", (parent_id, setting_id)
        )

    existing_rows = await fetch_all(
        conn, "SELECT category FROM setting_prompts WHERE project_id = ?", (project_id,)
    )
    existing_categories = {row["category"] for row in existing_rows}
    for prompt in data.setting_prompts:
        if mode == "merge" and prompt.category in existing_categories:
            continue
        await conn.execute(
            """
            INSERT INTO setting_prompts (id, project_id, category, prompt_template, enabled)
            VALUES (?, ?, ?, ?, ?)
            """,
            (generate_id(), project_id, prompt.category, prompt.prompt_template, 1 if prompt.enabled else 0),
        )
        existing_categories.add(prompt.category)

    for relation in data.setting_relations:
        source_id = ref_map.get(relation.source_ref)
        target_id = ref_map.get(relation.target_ref)
        if source_id is None or target_id is None:
            continue
        await _insert_relation(
            conn,
            project_id,
            SettingRelationCreate(
                source_id=source_id,
                target_id=target_id,
                label=relation.label,
                description=relation.description,
                bidirectional=relation.bidirectional,
            ),
        )


class SettingStore:
    """Storage abstraction for the settings library of a project."""

    # ==================== Settings ====================

    async def create_setting(self, project_id: str, create: SettingCreate) -> Setting:
        """Create a setting, placing it after its last sibling by default."""
        db = await get_db()
        async with db.transaction() as conn:
            return await _insert_setting(conn, project_id, create)

    async def get_setting(self, setting_id: str) -> Setting:
        """Get a setting by ID."""
        db = await get_db()
        async with db.transaction(immediate=False) as conn:
            return await _get_setting(conn, setting_id)

    async def list_settings(
        self,
        project_id: str,
        category: str | None = None,
        parent_id: str | None = None,
        roots_only: bool = False,
        query: str | None = None,
    ) -> list[Setting]:
        """List a project's settings ordered by order_index, then insertion.

        Args:
            category: Only settings of this category
            parent_id: Only direct children of this setting
            roots_only: Only settings without a parent
            query: Substring matched against name and content
        """
        db = await get_db()

        where_clauses = ["project_id = ?"]
        params: list[Any] = [project_id]

        if category:
            where_clauses.append("category = ?")
            params.append(category)

        if parent_id is not None:
            where_clauses.append("parent_id = ?")
            params.append(parent_id)
        elif roots_only:
            where_clauses.append("parent_id IS NULL")

        if query:
            where_clauses.append("(name LIKE ? OR content LIKE ?)")
            params.extend([f"%{query}%", f"%{query}%"])

        where_sql = " AND ".join(where_clauses)

        async with db.transaction(immediate=False) as conn:
            rows = await fetch_all(
                conn, f"SELECT * FROM settings WHERE {where_sql} {_SETTING_ORDER}", params
            )
        return [_row_to_setting(row) for row in rows]

    async def update_setting(self, setting_id: str, update: SettingUpdate) -> Setting:
        """Update a setting. Changing ``parent_id`` re-checks the hierarchy."""
        db = await get_db()
        fields = update.model_dump(exclude_unset=True)

        async with db.transaction() as conn:
            current = await _get_setting(conn, setting_id)
            if fields.get("parent_id") is not None:
                await _check_parent(conn, current.project_id, fields["parent_id"], setting_id)

            await update_row(conn, "settings", "Setting", setting_id, _setting_columns(fields))
            return await _get_setting(conn, setting_id)

    async def move_setting(
        self, setting_id: str, parent_id: str | None, order_index: int | None = None
    ) -> Setting:
        """Move a setting under another parent (or to the root level)."""
        db = await get_db()

        async with db.transaction() as conn:
            current = await _get_setting(conn, setting_id)
            if parent_id is not None:
                await _check_parent(conn, current.project_id, parent_id, setting_id)
            if order_index is None:
                order_index = await _next_order(
                    conn, current.project_id, current.category, parent_id
                )

            await update_row(
                conn,
                "settings",
                "Setting",
                setting_id,
                {"parent_id": parent_id, "order_index": order_index},
            )
            return await _get_setting(conn, setting_id)

    async def delete_setting(self, setting_id: str) -> list[str]:
        """Delete a setting and all of its descendants.

        Relations touching any deleted setting are removed by their foreign
        keys.

        Returns:
            IDs of every deleted setting, the requested one first
        """
        db = await get_db()

        async with db.transaction() as conn:
            await _get_setting(conn, setting_id)
            deleted = [setting_id] + [s.id for s in await _descendants(conn, setting_id)]
            for child_id in reversed(deleted[1:]):
                await delete_row(conn, "settings", "Setting", child_id)
            await delete_row(conn, "settings", "Setting", setting_id)

        if len(deleted) > 1:
            logger.info(f"Deleted setting {setting_id} with {len(deleted) - 1} descendant(s)")
        return deleted

    # ==================== Hierarchy ====================

    async def children_of(self, setting_id: str) -> list[Setting]:
        """Direct children of a setting, ordered by order_index."""
        db = await get_db()
        async with db.transaction(immediate=False) as conn:
            await _get_setting(conn, setting_id)
            return await _child_rows(conn, setting_id)

    async def descendants_of(self, setting_id: str) -> list[Setting]:
        """All descendants of a setting, depth-first."""
        db = await get_db()
        async with db.transaction(immediate=False) as conn:
            await _get_setting(conn, setting_id)
            return await _descendants(conn, setting_id)

    async def ancestors_of(self, setting_id: str) -> list[Setting]:
        """Ancestors of a setting, nearest parent first."""
        db = await get_db()
        ancestors: list[Setting] = []

        async with db.transaction(immediate=False) as conn:
            current = await _get_setting(conn, setting_id)
            seen = {current.id}
            while current.parent_id is not None and current.parent_id not in seen:
                try:
                    current = await _get_setting(conn, current.parent_id)
                except NotFoundError:
                    break
                seen.add(current.id)
                ancestors.append(current)
        return ancestors

    async def get_tree(
        self, project_id: str, category: str | None = None
    ) -> list[SettingTreeNode]:
        """Build the setting forest of a project.

        Settings whose parent is outside the selection are treated as roots.
        """
        settings = await self.list_settings(project_id, category=category)
        ids = {s.id for s in settings}

        children: dict[str | None, list[Setting]] = {}
        for setting in settings:
            parent = setting.parent_id if setting.parent_id in ids else None
            children.setdefault(parent, []).append(setting)

        def build(parent_id: str | None) -> list[SettingTreeNode]:
            return [
                SettingTreeNode(setting=s, children=build(s.id))
                for s in children.get(parent_id, [])
            ]

        return build(None)

    # ==================== Injection prompts ====================

    async def create_prompt(
        self, project_id: str, create: SettingPromptCreate
    ) -> SettingPrompt:
        """Create an injection prompt for a category."""
        db = await get_db()
        prompt_id = generate_id()

        async with db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO setting_prompts (id, project_id, category, prompt_template, enabled)
                VALUES (?, ?, ?, ?, ?)
                """,
                (prompt_id, project_id, create.category, create.prompt_template, 1 if create.enabled else 0),
            )

        return SettingPrompt(
            id=prompt_id,
            project_id=project_id,
            category=create.category,
            prompt_template=create.prompt_template,
            enabled=create.enabled,
        )

    async def get_prompt(self, prompt_id: str) -> SettingPrompt:
        db = await get_db()
        async with db.transaction(immediate=False) as conn:
            row = await fetch_one(
                conn,
                "SELECT * FROM setting_prompts WHERE id = ?",
                (prompt_id,),
                "SettingPrompt",
                prompt_id,
            )
        return _row_to_prompt(row)

    async def list_prompts(self, project_id: str) -> list[SettingPrompt]:
        db = await get_db()
        async with db.transaction(immediate=False) as conn:
            rows = await fetch_all(
                conn,
                "SELECT * FROM setting_prompts WHERE project_id = ? ORDER BY category, rowid",
                (project_id,),
            )
        return [_row_to_prompt(row) for row in rows]

    async def get_prompt_by_category(
        self, project_id: str, category: str
    ) -> SettingPrompt | None:
        """Get the first prompt of a category, if any."""
        db = await get_db()
        async with db.transaction(immediate=False) as conn:
            cursor = await conn.execute(
                """
                SELECT * FROM setting_prompts WHERE project_id = ? AND category = ?
                ORDER BY rowid LIMIT 1
                """,
                (project_id, category),
            )
            row = await cursor.fetchone()
        return _row_to_prompt(row) if row else None

    async def update_prompt(
        self, prompt_id: str, update: SettingPromptUpdate
    ) -> SettingPrompt:
        db = await get_db()
        fields = update.model_dump(exclude_unset=True)
        if "enabled" in fields:
            fields["enabled"] = 1 if fields["enabled"] else 0

        async with db.transaction() as conn:
            await update_row(conn, "setting_prompts", "SettingPrompt", prompt_id, fields, touch=False)
            row = await fetch_one(
                conn,
                "SELECT * FROM setting_prompts WHERE id = ?",
                (prompt_id,),
                "SettingPrompt",
                prompt_id,
            )
        return _row_to_prompt(row)

    async def delete_prompt(self, prompt_id: str) -> None:
        db = await get_db()
        async with db.transaction() as conn:
            await delete_row(conn, "setting_prompts", "SettingPrompt", prompt_id)

    async def upsert_prompt(
        self, project_id: str, category: str, prompt_template: str
    ) -> SettingPrompt:
        """Set the template of a category's prompt, creating it if missing."""
        db = await get_db()

        async with db.transaction() as conn:
            cursor = await conn.execute(
                """
                SELECT * FROM setting_prompts WHERE project_id = ? AND category = ?
                ORDER BY rowid LIMIT 1
                """,
                (project_id, category),
            )
            row = await cursor.fetchone()

            if row is None:
                prompt_id = generate_id()
                await conn.execute(
                    """
                    INSERT INTO setting_prompts (id, project_id, category, prompt_template, enabled)
                    VALUES (?, ?, ?, ?, 1)
                    """,
                    (prompt_id, project_id, category, prompt_template),
                )
            else:
                prompt_id = row["id"]
                await conn.execute(
                    "UPDATE setting_prompts SET prompt_template = ? WHERE id = ?",
                    (prompt_template, prompt_id),
                )

            row = await fetch_one(
                conn,
                "SELECT * FROM setting_prompts WHERE id = ?",
                (prompt_id,),
                "SettingPrompt",
                prompt_id,
            )
        return _row_to_prompt(row)

    # ==================== Relations ====================

    async def create_relation(
        self, project_id: str, create: SettingRelationCreate
    ) -> SettingRelation:
        """Link two settings of the same project."""
        db = await get_db()
        async with db.transaction() as conn:
            return await _insert_relation(conn, project_id, create)

    async def get_relation(self, relation_id: str) -> SettingRelation:
        db = await get_db()
        async with db.transaction(immediate=False) as conn:
            row = await fetch_one(
                conn,
                "SELECT * FROM setting_relations WHERE id = ?",
                (relation_id,),
                "SettingRelation",
                relation_id,
            )
        return _row_to_relation(row)

    async def list_relations(self, project_id: str) -> list[SettingRelation]:
        db = await get_db()
        async with db.transaction(immediate=False) as conn:
            rows = await fetch_all(
                conn,
                "SELECT * FROM setting_relations WHERE project_id = ? ORDER BY created_at, rowid",
                (project_id,),
            )
        return [_row_to_relation(row) for row in rows]

    async def list_relations_for_setting(self, setting_id: str) -> list[SettingRelation]:
        """Relations visible from a setting.

        Outgoing relations always; incoming ones only when bidirectional.
        """
        db = await get_db()
        async with db.transaction(immediate=False) as conn:
            await _get_setting(conn, setting_id)
            rows = await fetch_all(
                conn,
                """
                SELECT * FROM setting_relations
                WHERE source_id = ? OR (target_id = ? AND bidirectional = 1)
                ORDER BY created_at, rowid
                """,
                (setting_id, setting_id),
            )
        return [_row_to_relation(row) for row in rows]

    async def update_relation(
        self, relation_id: str, update: SettingRelationUpdate
    ) -> SettingRelation:
        db = await get_db()
        fields = update.model_dump(exclude_unset=True)
        if "bidirectional" in fields:
            fields["bidirectional"] = 1 if fields["bidirectional"] else 0

        async with db.transaction() as conn:
            await update_row(
                conn, "setting_relations", "SettingRelation", relation_id, fields, touch=False
            )
            row = await fetch_one(
                conn,
                "SELECT * FROM setting_relations WHERE id = ?",
                (relation_id,),
                "SettingRelation",
                relation_id,
            )
        return _row_to_relation(row)

    async def delete_relation(self, relation_id: str) -> None:
        db = await get_db()
        async with db.transaction() as conn:
            await delete_row(conn, "setting_relations", "SettingRelation", relation_id)

    # ==================== Import / export ====================

    async def export_settings(self, project_id: str) -> ExportedSettings:
        """Export a project's settings library."""
        db = await get_db()
        async with db.transaction(immediate=False) as conn:
            await fetch_one(
                conn, "SELECT 1 FROM projects WHERE id = ?", (project_id,), "Project", project_id
            )
            return await export_project_settings(conn, project_id)

    async def import_settings(
        self, project_id: str, data: ExportedSettings, mode: ImportMode = "merge"
    ) -> list[Setting]:
        """Import a settings library into a project.

        Returns:
            The project's settings after the import
        """
        db = await get_db()
        async with db.transaction() as conn:
            await fetch_one(
                conn, "SELECT 1 FROM projects WHERE id = ?", (project_id,), "Project", project_id
            )
            await import_project_settings(conn, project_id, data, mode)

        return await self.list_settings(project_id)


setting_store = SettingStore()
