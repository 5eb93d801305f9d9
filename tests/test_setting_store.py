"""Tests for the settings library."""

import pytest
from pydantic import ValidationError

from novelflow.db import get_db, setting_store, workflow_store
from novelflow.db.errors import ConstraintViolationError, NotFoundError, SerializationError
from novelflow.models import (
    ExportedSetting,
    ExportedSettings,
    InjectionMode,
    ProjectCreate,
    SettingCreate,
    SettingPriority,
    SettingPromptCreate,
    SettingPromptUpdate,
    SettingRelationCreate,
    SettingRelationUpdate,
    SettingUpdate,
)


@pytest.fixture
async def project():
    return await workflow_store.create_project(ProjectCreate(name="Novel"))


async def _character(project_id: str, name: str, parent_id: str | None = None, **kwargs):
    return await setting_store.create_setting(
        project_id,
        SettingCreate(category="character", name=name, content=f"About {name}", parent_id=parent_id, **kwargs),
    )


class TestSettings:
    """Tests for setting CRUD."""

    @pytest.mark.asyncio
    async def test_create_defaults(self, project):
        setting = await _character(project.id, "Alice")

        assert setting.enabled is True
        assert setting.parent_id is None
        assert setting.order_index == 0
        assert setting.injection_mode == InjectionMode.MANUAL
        assert setting.priority == SettingPriority.MEDIUM
        assert setting.keywords == []

    @pytest.mark.asyncio
    async def test_parent_and_child_listed_in_order(self, project):
        """Test that a parent and its child both list in insertion order."""
        parent = await _character(project.id, "Family")
        child = await _character(project.id, "Alice", parent_id=parent.id)

        settings = await setting_store.list_settings(project.id)

        assert [s.id for s in settings] == [parent.id, child.id]
        assert child.parent_id == parent.id

    @pytest.mark.asyncio
    async def test_order_index_follows_siblings(self, project):
        parent = await _character(project.id, "Family")
        first = await _character(project.id, "Alice", parent_id=parent.id)
        second = await _character(project.id, "Bob", parent_id=parent.id)
        root = await _character(project.id, "Villain")

        assert (first.order_index, second.order_index) == (0, 1)
        assert root.order_index == 1

    @pytest.mark.asyncio
    async def test_explicit_order_index_wins(self, project):
        """Test that order_index dictates listing order over insertion."""
        late = await _character(project.id, "Late", order_index=5)
        early = await _character(project.id, "Early", order_index=1)

        settings = await setting_store.list_settings(project.id)

        assert [s.id for s in settings] == [early.id, late.id]

    @pytest.mark.asyncio
    async def test_parent_must_exist(self, project):
        with pytest.raises(ConstraintViolationError):
            await _character(project.id, "Alice", parent_id="missing")

    @pytest.mark.asyncio
    async def test_parent_must_be_in_same_project(self, project):
        other = await workflow_store.create_project(ProjectCreate(name="Other"))
        foreign = await _character(other.id, "Stranger")

        with pytest.raises(ConstraintViolationError):
            await _character(project.id, "Alice", parent_id=foreign.id)

    @pytest.mark.asyncio
    async def test_list_filters(self, project):
        alice = await _character(project.id, "Alice", keywords=["hero"])
        await setting_store.create_setting(
            project.id, SettingCreate(category="worldview", name="Magic", content="Runes")
        )

        by_category = await setting_store.list_settings(project.id, category="character")
        by_query = await setting_store.list_settings(project.id, query="Rune")

        assert [s.id for s in by_category] == [alice.id]
        assert [s.name for s in by_query] == ["Magic"]
        assert by_category[0].keywords == ["hero"]

    @pytest.mark.asyncio
    async def test_update(self, project):
        setting = await _character(project.id, "Alice")

        updated = await setting_store.update_setting(
            setting.id,
            SettingUpdate(enabled=False, priority=SettingPriority.HIGH, keywords=["a", "b"]),
        )

        assert updated.enabled is False
        assert updated.priority == SettingPriority.HIGH
        assert updated.keywords == ["a", "b"]
        assert updated.name == "Alice"

    def test_update_rejects_null_fields(self):
        """Test that NOT NULL fields cannot be cleared while parent_id can."""
        for field in ("name", "content", "enabled", "order_index", "injection_mode", "priority", "keywords"):
            with pytest.raises(ValidationError):
                SettingUpdate(**{field: None})

        assert SettingUpdate(parent_id=None).model_dump(exclude_unset=True) == {"parent_id": None}

    @pytest.mark.asyncio
    async def test_corrupt_keywords(self, project):
        """Test that unreadable keywords surface as a serialization error."""
        setting = await _character(project.id, "Alice", keywords=["hero"])
        db = await get_db()

        for corrupt in ("not json", '{"hero": true}'):
            await db.connection.execute(
                "UPDATE settings SET keywords = ? WHERE id = ?", (corrupt, setting.id)
            )
            with pytest.raises(SerializationError):
                await setting_store.get_setting(setting.id)

    @pytest.mark.asyncio
    async def test_delete_removes_descendants_and_relations(self, project):
        """Test that deleting a setting removes its subtree in one go."""
        root = await _character(project.id, "Family")
        child = await _character(project.id, "Alice", parent_id=root.id)
        grandchild = await _character(project.id, "Alice's pet", parent_id=child.id)
        other = await _character(project.id, "Bob")
        await setting_store.create_relation(
            project.id, SettingRelationCreate(source_id=other.id, target_id=grandchild.id, label="owns")
        )

        deleted = await setting_store.delete_setting(root.id)

        assert deleted == [root.id, child.id, grandchild.id]
        assert [s.id for s in await setting_store.list_settings(project.id)] == [other.id]
        assert await setting_store.list_relations(project.id) == []

    @pytest.mark.asyncio
    async def test_delete_twice(self, project):
        setting = await _character(project.id, "Alice")
        await setting_store.delete_setting(setting.id)

        with pytest.raises(NotFoundError):
            await setting_store.delete_setting(setting.id)


class TestHierarchy:
    """Tests for setting tree traversal and moves."""

    @pytest.mark.asyncio
    async def test_traversal(self, project):
        root = await _character(project.id, "Family")
        child = await _character(project.id, "Alice", parent_id=root.id)
        sibling = await _character(project.id, "Bob", parent_id=root.id)
        grandchild = await _character(project.id, "Pet", parent_id=child.id)

        children = await setting_store.children_of(root.id)
        descendants = await setting_store.descendants_of(root.id)
        ancestors = await setting_store.ancestors_of(grandchild.id)

        assert [s.id for s in children] == [child.id, sibling.id]
        assert [s.id for s in descendants] == [child.id, grandchild.id, sibling.id]
        assert [s.id for s in ancestors] == [child.id, root.id]

    @pytest.mark.asyncio
    async def test_tree(self, project):
        root = await _character(project.id, "Family")
        child = await _character(project.id, "Alice", parent_id=root.id)
        await setting_store.create_setting(
            project.id, SettingCreate(category="worldview", name="Magic", content="Runes")
        )

        tree = await setting_store.get_tree(project.id, category="character")

        assert len(tree) == 1
        assert tree[0].setting.id == root.id
        assert [n.setting.id for n in tree[0].children] == [child.id]

    @pytest.mark.asyncio
    async def test_move(self, project):
        first = await _character(project.id, "First")
        second = await _character(project.id, "Second")

        moved = await setting_store.move_setting(second.id, first.id)

        assert moved.parent_id == first.id
        assert moved.order_index == 0

    @pytest.mark.asyncio
    async def test_move_to_root(self, project):
        root = await _character(project.id, "Family")
        child = await _character(project.id, "Alice", parent_id=root.id)

        moved = await setting_store.move_setting(child.id, None)

        assert moved.parent_id is None
        assert moved.order_index == 1

    @pytest.mark.asyncio
    async def test_move_rejects_cycle(self, project):
        """Test that a setting cannot move under its own descendant."""
        root = await _character(project.id, "Family")
        child = await _character(project.id, "Alice", parent_id=root.id)

        with pytest.raises(ConstraintViolationError):
            await setting_store.move_setting(root.id, child.id)
        with pytest.raises(ConstraintViolationError):
            await setting_store.update_setting(root.id, SettingUpdate(parent_id=root.id))


class TestPrompts:
    """Tests for category injection prompts."""

    @pytest.mark.asyncio
    async def test_crud(self, project):
        prompt = await setting_store.create_prompt(
            project.id, SettingPromptCreate(category="character", prompt_template="Characters: {{items}}")
        )

        updated = await setting_store.update_prompt(prompt.id, SettingPromptUpdate(enabled=False))
        listed = await setting_store.list_prompts(project.id)

        assert updated.enabled is False
        assert updated.prompt_template == "Characters: {{items}}"
        assert [p.id for p in listed] == [prompt.id]

        await setting_store.delete_prompt(prompt.id)
        with pytest.raises(NotFoundError):
            await setting_store.get_prompt(prompt.id)

    @pytest.mark.asyncio
    async def test_upsert(self, project):
        """Test that upsert creates once and then updates in place."""
        created = await setting_store.upsert_prompt(project.id, "style", "Write like this")
        updated = await setting_store.upsert_prompt(project.id, "style", "Write like that")

        assert created.id == updated.id
        assert updated.prompt_template == "Write like that"
        by_category = await setting_store.get_prompt_by_category(project.id, "style")
        assert by_category == updated

    @pytest.mark.asyncio
    async def test_get_by_category_missing(self, project):
        assert await setting_store.get_prompt_by_category(project.id, "outline") is None


class TestRelations:
    """Tests for setting relations."""

    @pytest.mark.asyncio
    async def test_create_and_list(self, project):
        alice = await _character(project.id, "Alice")
        bob = await _character(project.id, "Bob")

        relation = await setting_store.create_relation(
            project.id,
            SettingRelationCreate(source_id=alice.id, target_id=bob.id, label="sister", bidirectional=True),
        )

        assert relation.label == "sister"
        assert [r.id for r in await setting_store.list_relations_for_setting(alice.id)] == [relation.id]
        assert [r.id for r in await setting_store.list_relations_for_setting(bob.id)] == [relation.id]

    @pytest.mark.asyncio
    async def test_one_way_relation_seen_from_source_only(self, project):
        alice = await _character(project.id, "Alice")
        bob = await _character(project.id, "Bob")
        await setting_store.create_relation(
            project.id, SettingRelationCreate(source_id=alice.id, target_id=bob.id, label="admires")
        )

        assert await setting_store.list_relations_for_setting(bob.id) == []

        relation = (await setting_store.list_relations(project.id))[0]
        updated = await setting_store.update_relation(relation.id, SettingRelationUpdate(bidirectional=True))
        assert updated.bidirectional is True
        assert len(await setting_store.list_relations_for_setting(bob.id)) == 1

    @pytest.mark.asyncio
    async def test_cross_project_relation_rejected(self, project):
        other = await workflow_store.create_project(ProjectCreate(name="Other"))
        alice = await _character(project.id, "Alice")
        stranger = await _character(other.id, "Stranger")

        with pytest.raises(ConstraintViolationError):
            await setting_store.create_relation(
                project.id, SettingRelationCreate(source_id=alice.id, target_id=stranger.id)
            )

    @pytest.mark.asyncio
    async def test_self_relation_rejected(self, project):
        alice = await _character(project.id, "Alice")

        with pytest.raises(ConstraintViolationError):
            await setting_store.create_relation(
                project.id, SettingRelationCreate(source_id=alice.id, target_id=alice.id)
            )

    @pytest.mark.asyncio
    async def test_delete_twice(self, project):
        alice = await _character(project.id, "Alice")
        bob = await _character(project.id, "Bob")
        relation = await setting_store.create_relation(
            project.id, SettingRelationCreate(source_id=alice.id, target_id=bob.id)
        )
        await setting_store.delete_relation(relation.id)

        with pytest.raises(NotFoundError):
            await setting_store.delete_relation(relation.id)


class TestExchange:
    """Tests for settings import/export."""

    @pytest.mark.asyncio
    async def test_round_trip_keeps_hierarchy(self, project):
        root = await _character(project.id, "Family")
        child = await _character(project.id, "Alice", parent_id=root.id, injection_mode=InjectionMode.AUTO)
        await setting_store.create_relation(
            project.id, SettingRelationCreate(source_id=root.id, target_id=child.id, label="includes")
        )
        await setting_store.upsert_prompt(project.id, "character", "Cast: {{items}}")
        target = await workflow_store.create_project(ProjectCreate(name="Copy"))

        exported = await setting_store.export_settings(project.id)
        imported = await setting_store.import_settings(target.id, exported)

        by_name = {s.name: s for s in imported}
        assert by_name["Alice"].parent_id == by_name["Family"].id
        assert by_name["Alice"].injection_mode == InjectionMode.AUTO
        relations = await setting_store.list_relations(target.id)
        assert [(r.source_id, r.target_id) for r in relations] == [
            (by_name["Family"].id, by_name["Alice"].id)
        ]
        assert (await setting_store.get_prompt_by_category(target.id, "character")).prompt_template == "Cast: {{items}}"

    @pytest.mark.asyncio
    async def test_merge_keeps_existing(self, project):
        existing = await _character(project.id, "Existing")
        await setting_store.upsert_prompt(project.id, "character", "Mine")
        exported = await setting_store.export_settings(project.id)

        imported = await setting_store.import_settings(project.id, exported, mode="merge")

        assert existing.id in {s.id for s in imported}
        assert len(imported) == 2
        prompts = await setting_store.list_prompts(project.id)
        assert [p.prompt_template for p in prompts] == ["Mine"]

    @pytest.mark.asyncio
    async def test_replace_clears_existing(self, project):
        existing = await _character(project.id, "Existing")
        exported = await setting_store.export_settings(project.id)

        imported = await setting_store.import_settings(project.id, exported, mode="replace")

        assert len(imported) == 1
        assert imported[0].id != existing.id
        assert imported[0].name == "Existing"

    @pytest.mark.asyncio
    async def test_import_skips_cyclic_parents(self, project):
        """Test that cyclic parent refs in a file never produce a cycle."""
        data = ExportedSettings(
            settings=[
                ExportedSetting(ref="a", parent_ref="b", category="character", name="A", content="..."),
                ExportedSetting(ref="b", parent_ref="a", category="character", name="B", content="..."),
                ExportedSetting(ref="s", parent_ref="s", category="character", name="S", content="..."),
            ]
        )

        imported = await setting_store.import_settings(project.id, data)
        tree = await setting_store.get_tree(project.id)

        by_name = {s.name: s for s in imported}
        assert by_name["A"].parent_id == by_name["B"].id
        assert by_name["B"].parent_id is None
        assert by_name["S"].parent_id is None
        assert sorted(node.setting.name for node in tree) == ["B", "S"]
        ancestors = await setting_store.ancestors_of(by_name["A"].id)
        assert [s.name for s in ancestors] == ["B"]

    def test_unknown_enum_values_rejected(self):
        """Test that an export file cannot carry an unknown mode or priority."""
        with pytest.raises(ValidationError):
            ExportedSetting(category="character", name="A", content="...", injection_mode="bogus")
        with pytest.raises(ValidationError):
            ExportedSetting(category="character", name="A", content="...", priority="urgent")

    @pytest.mark.asyncio
    async def test_export_missing_project(self):
        with pytest.raises(NotFoundError):
            await setting_store.export_settings("missing")
