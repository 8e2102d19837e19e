"""
DiagramCore - Composition Root Tests
====================================

What:  The permission-gated surface in diagramcore.main plus logging setup
       and settings validation.

What we test:
    ✅ Data flow: authorize → service → store → result
    ✅ Viewers cannot save; editors get Saved / Conflict results
    ✅ Folder operations are reserved to the folder owner
    ✅ Folder listings: children with counts, the forest with depths
    ✅ save() takes the diagram id before the actor id
    ✅ Sharing needs Action.SHARE; subjects resolve by email or username
    ✅ aclose() releases the store
    ✅ setup_logging() and Settings validation
"""

import logging
from uuid import uuid4

import pytest
from pydantic import ValidationError as PydanticValidationError

from diagramcore.config import Settings
from diagramcore.exceptions import CycleDetectedError, ForbiddenError, StorageUnavailableError
from diagramcore.main import DiagramCore, create_core, setup_logging
from diagramcore.schemas.access import Action, Role
from diagramcore.schemas.folder import CascadePolicy


class TestCoreDiagrams:

    @pytest.mark.asyncio
    async def test_owner_creates_and_saves(self, store, actors):
        core = DiagramCore(store)
        diagram = await core.create_diagram(actors.alice, "Plan", content=b"{}")

        result = await core.save(diagram.id, actors.alice, 1, b'{"a": 1}')

        assert result.outcome == "saved"
        assert (await core.load_diagram(actors.alice, diagram.id)).version == 2

    @pytest.mark.asyncio
    async def test_save_takes_diagram_id_first(self, store, actors):
        core = DiagramCore(store)
        diagram = await core.create_diagram(actors.alice, "Plan")

        with pytest.raises(ForbiddenError):
            await core.save(actors.alice, diagram.id, 1, b"x")

        result = await core.save(diagram.id, actors.alice, 1, b"x")
        assert result.outcome == "saved"
        assert result.version == 2

    @pytest.mark.asyncio
    async def test_viewer_cannot_save(self, store, actors):
        core = DiagramCore(store)
        diagram = await core.create_diagram(actors.alice, "Plan")
        await core.grant_share(actors.alice, diagram.id, actors.bob, "viewer")

        assert await core.authorize(actors.bob, diagram.id, Action.READ)
        assert not await core.authorize(actors.bob, diagram.id, Action.WRITE)
        with pytest.raises(ForbiddenError):
            await core.save(diagram.id, actors.bob, 1, b"x")
        assert (await core.load_diagram(actors.bob, diagram.id)).version == 1

    @pytest.mark.asyncio
    async def test_editor_conflict(self, store, actors):
        core = DiagramCore(store)
        diagram = await core.create_diagram(actors.alice, "Plan")
        await core.grant_share(actors.alice, diagram.id, "bob@example.com", "editor")
        await core.save(diagram.id, actors.alice, 1, b"alice")

        result = await core.save(diagram.id, actors.bob, 1, b"bob")

        assert result.outcome == "conflict"
        assert result.content == b"alice"

    @pytest.mark.asyncio
    async def test_stranger_cannot_read_or_delete(self, store, actors):
        core = DiagramCore(store)
        diagram = await core.create_diagram(actors.alice, "Plan")

        with pytest.raises(ForbiddenError):
            await core.load_diagram(actors.dave, diagram.id)
        with pytest.raises(ForbiddenError):
            await core.delete_diagram(actors.dave, diagram.id)

        await core.delete_diagram(actors.alice, diagram.id)
        with pytest.raises(ForbiddenError):
            await core.load_diagram(actors.alice, diagram.id)

    @pytest.mark.asyncio
    async def test_only_owner_moves_or_publishes(self, store, actors):
        core = DiagramCore(store)
        folder = await core.create_folder(actors.alice, "F")
        diagram = await core.create_diagram(actors.alice, "Plan")
        await core.grant_share(actors.alice, diagram.id, actors.bob, "owner_delegate")

        with pytest.raises(ForbiddenError):
            await core.move_diagram(actors.bob, diagram.id, folder.id)
        with pytest.raises(ForbiddenError):
            await core.set_visibility(actors.bob, diagram.id, True)

        assert (await core.move_diagram(actors.alice, diagram.id, folder.id)).folder_id == folder.id
        assert (await core.set_visibility(actors.alice, diagram.id, True)).is_public is True


class TestCoreFolders:

    @pytest.mark.asyncio
    async def test_folder_flow(self, store, actors):
        core = DiagramCore(store)
        f1 = await core.create_folder(actors.alice, "F1")
        f2 = await core.create_folder(actors.alice, "F2", parent_id=f1.id)

        with pytest.raises(CycleDetectedError):
            await core.move_folder(actors.alice, f1.id, f2.id)

        renamed = await core.rename_folder(actors.alice, f2.id, "Inner")
        assert renamed.name == "Inner"
        assert [f.name for f in await core.path_of(actors.alice, f2.id)] == ["F1", "Inner"]

        await core.move_folder(actors.alice, f2.id, None)
        summary = await core.delete_folder(actors.alice, f1.id, CascadePolicy.REJECT)
        assert summary.deleted_folders == 1

    @pytest.mark.asyncio
    async def test_folder_operations_need_ownership(self, store, actors):
        core = DiagramCore(store)
        folder = await core.create_folder(actors.alice, "F")

        for call in (
            core.rename_folder(actors.bob, folder.id, "X"),
            core.move_folder(actors.bob, folder.id, None),
            core.path_of(actors.bob, folder.id),
            core.delete_folder(actors.bob, folder.id),
        ):
            with pytest.raises(ForbiddenError):
                await call

    @pytest.mark.asyncio
    async def test_folder_listings(self, store, actors):
        core = DiagramCore(store)
        top = await core.create_folder(actors.alice, "Top")
        inner = await core.create_folder(actors.alice, "Inner", parent_id=top.id)
        await core.create_diagram(actors.alice, "Plan", folder_id=top.id)
        await core.create_folder(actors.bob, "Elsewhere")

        nodes = await core.list_folder_nodes(actors.alice)
        assert [(n.id, n.children_count, n.diagrams_count) for n in nodes] == [(top.id, 1, 1)]
        assert [n.id for n in await core.list_folder_nodes(actors.alice, top.id)] == [inner.id]
        with pytest.raises(ForbiddenError):
            await core.list_folder_nodes(actors.bob, top.id)

        tree = await core.folder_tree(actors.alice)
        assert [(entry.id, entry.depth) for entry in tree] == [(top.id, 0), (inner.id, 1)]


class TestCoreSharing:

    @pytest.mark.asyncio
    async def test_share_management_needs_share_action(self, store, actors):
        core = DiagramCore(store)
        diagram = await core.create_diagram(actors.alice, "Plan")
        await core.grant_share(actors.alice, diagram.id, "carol", "editor")

        with pytest.raises(ForbiddenError):
            await core.grant_share(actors.carol, diagram.id, actors.dave, "viewer")
        with pytest.raises(ForbiddenError):
            await core.list_shares(actors.carol, diagram.id)

        await core.grant_share(actors.alice, diagram.id, actors.bob, "owner_delegate")
        await core.grant_share(actors.bob, diagram.id, actors.dave, "viewer")

        shares = await core.list_shares(actors.bob, diagram.id)
        assert {(s.subject_id, s.role) for s in shares} == {
            (actors.carol, Role.EDITOR),
            (actors.bob, Role.OWNER_DELEGATE),
            (actors.dave, Role.VIEWER),
        }
        assert await core.revoke_share(actors.alice, diagram.id, actors.dave) is True
        assert await core.revoke_share(actors.alice, diagram.id, actors.dave) is False

    @pytest.mark.asyncio
    async def test_resolve_subject(self, store, actors):
        assert await DiagramCore(store).resolve_subject("bob") == actors.bob


class TestCoreLifecycle:

    @pytest.mark.asyncio
    async def test_create_core_with_injected_store(self, mock_store, make_settings):
        settings = make_settings(folder_share_inheritance=True)

        core = create_core(settings=settings, store=mock_store)
        await core.aclose()

        assert core.settings.folder_share_inheritance is True
        assert core.store is mock_store
        mock_store.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_facade_denies_on_storage_failure(self, mock_store, mock_tx):
        mock_tx.get_diagram.side_effect = StorageUnavailableError()
        core = DiagramCore(mock_store)

        with pytest.raises(ForbiddenError):
            await core.save(uuid4(), uuid4(), 1, b"x")
        mock_tx.cas_update.assert_not_awaited()


class TestLoggingAndSettings:

    def test_setup_logging(self, make_settings):
        setup_logging(make_settings(log_level="debug"))

        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

        setup_logging(make_settings(log_level="WARNING"))
        assert logging.getLogger().level == logging.WARNING

    def test_invalid_log_level(self):
        with pytest.raises(PydanticValidationError):
            Settings(log_level="LOUD")

    def test_defaults(self):
        settings = Settings()

        assert settings.folder_delete_policy is CascadePolicy.REJECT
        assert settings.folder_share_inheritance is False
        assert settings.is_sqlite
