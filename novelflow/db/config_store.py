"""GlobalConfigStore - accessor for the single global_config row."""

import logging

from novelflow.db.database import get_db
from novelflow.db.errors import InitializationError
from novelflow.db.utils import update_row
from novelflow.models import GlobalConfig, GlobalConfigUpdate, Theme

logger = logging.getLogger(__name__)

GLOBAL_CONFIG_ID = 1


class GlobalConfigStore:
    """Read and update the process-wide configuration.

    The row is created by the first migration; there is no create or delete
    path. A missing row means the schema was not initialized correctly.
    """

    async def _get(self, conn) -> GlobalConfig:
        cursor = await conn.execute(
            "SELECT * FROM global_config WHERE id = ?", (GLOBAL_CONFIG_ID,)
        )
        row = await cursor.fetchone()
        if row is None:
            raise InitializationError("global_config row is missing")

        return GlobalConfig(
            ai_providers=row["ai_providers"],
            theme=Theme(row["theme"] or Theme.SYSTEM.value),
            default_loop_max=row["default_loop_max"],
            default_timeout=row["default_timeout"],
            setting_assistant=row["setting_assistant"],
        )

    async def get(self) -> GlobalConfig:
        db = await get_db()
        async with db.transaction(immediate=False) as conn:
            return await self._get(conn)

    async def set(self, update: GlobalConfigUpdate) -> GlobalConfig:
        """Apply a partial update and return the resulting configuration."""
        db = await get_db()
        fields = update.model_dump(exclude_unset=True)
        if fields.get("theme") is not None:
            fields["theme"] = fields["theme"].value

        async with db.transaction() as conn:
            await self._get(conn)
            await update_row(
                conn, "global_config", "GlobalConfig", GLOBAL_CONFIG_ID, fields, touch=False
            )
            config = await self._get(conn)

        logger.debug(f"Updated global config fields {sorted(fields)}")
        return config


config_store = GlobalConfigStore()
