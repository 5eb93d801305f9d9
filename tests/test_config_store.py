"""Tests for the global configuration accessor."""

import pytest
from pydantic import ValidationError

from novelflow.db import config_store
from novelflow.db.database import get_db
from novelflow.db.errors import InitializationError
from novelflow.models import GlobalConfigUpdate, Theme


class TestGlobalConfig:
    """Tests for GlobalConfigStore."""

    @pytest.mark.asyncio
    async def test_defaults_after_migration(self):
        config = await config_store.get()

        assert config.theme == Theme.SYSTEM
        assert config.ai_providers == "{}"
        assert config.default_loop_max == 10
        assert config.default_timeout == 300
        assert config.setting_assistant is None

    @pytest.mark.asyncio
    async def test_set_then_get(self):
        """Test that a written configuration reads back unchanged."""
        providers = '{"openai": {"api_key": "sk-test", "models": ["a", "b"]}}'

        written = await config_store.set(
            GlobalConfigUpdate(ai_providers=providers, theme=Theme.DARK, default_loop_max=3)
        )
        fetched = await config_store.get()

        assert fetched == written
        assert fetched.ai_providers == providers
        assert fetched.theme == Theme.DARK
        assert fetched.default_loop_max == 3
        assert fetched.default_timeout == 300

    @pytest.mark.asyncio
    async def test_set_is_partial(self):
        await config_store.set(GlobalConfigUpdate(theme=Theme.LIGHT))
        await config_store.set(GlobalConfigUpdate(setting_assistant='{"enabled": true}'))

        config = await config_store.get()

        assert config.theme == Theme.LIGHT
        assert config.setting_assistant == '{"enabled": true}'

    @pytest.mark.asyncio
    async def test_null_only_clears_nullable_fields(self):
        """Test that only setting_assistant accepts an explicit None."""
        for field in ("ai_providers", "theme", "default_loop_max", "default_timeout"):
            with pytest.raises(ValidationError):
                GlobalConfigUpdate(**{field: None})

        await config_store.set(GlobalConfigUpdate(setting_assistant='{"enabled": true}'))
        config = await config_store.set(GlobalConfigUpdate(setting_assistant=None))

        assert config.setting_assistant is None
        assert config.default_loop_max == 10

    @pytest.mark.asyncio
    async def test_single_row(self):
        await config_store.set(GlobalConfigUpdate(theme=Theme.DARK))

        db = await get_db()
        cursor = await db.connection.execute("SELECT COUNT(*) FROM global_config")
        assert (await cursor.fetchone())[0] == 1

    @pytest.mark.asyncio
    async def test_missing_row(self):
        """Test that a lost configuration row is reported as an init failure."""
        db = await get_db()
        await db.connection.execute("DELETE FROM global_config")

        with pytest.raises(InitializationError):
            await config_store.get()
