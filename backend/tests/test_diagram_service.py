"""
DiagramCore - Diagram Lifecycle Tests
=====================================

What we test:
    ✅ Create at version 1 with default encoding
    ✅ Folder placement rules (exists, same owner)
    ✅ Listing per folder
    ✅ Visibility toggle
    ✅ Delete removes the diagram and its shares
"""

from uuid import uuid4

import pytest

from diagramcore.exceptions import InvalidMoveError, NotFoundError, ValidationError
from diagramcore.services.diagram_service import DiagramService
from diagramcore.services.folder_service import FolderHierarchyManager
from diagramcore.services.sharing_service import SharingRegistry


class TestDiagramCreate:

    @pytest.mark.asyncio
    async def test_create_defaults(self, store, actors):
        diagram = await DiagramService(store).create_diagram(actors.alice, " Plan ")

        assert diagram.version == 1
        assert diagram.name == "Plan"
        assert diagram.content == b""
        assert diagram.content_encoding == "application/json"
        assert diagram.is_public is False
        assert diagram.folder_id is None

    @pytest.mark.asyncio
    async def test_create_in_folder(self, store, actors):
        folder = await FolderHierarchyManager(store).create_folder(actors.alice, "F")

        diagram = await DiagramService(store).create_diagram(
            actors.alice, "Plan", folder_id=folder.id, content=b"<xml/>", encoding="application/xml"
        )

        assert diagram.folder_id == folder.id
        assert diagram.content_encoding == "application/xml"

    @pytest.mark.asyncio
    async def test_create_in_foreign_folder(self, store, actors):
        folder = await FolderHierarchyManager(store).create_folder(actors.bob, "F")

        with pytest.raises(InvalidMoveError):
            await DiagramService(store).create_diagram(actors.alice, "Plan", folder_id=folder.id)

    @pytest.mark.asyncio
    async def test_create_validation(self, store, actors, make_settings):
        service = DiagramService(store, make_settings(max_content_bytes=1024))

        with pytest.raises(ValidationError):
            await service.create_diagram(actors.alice, "   ")
        with pytest.raises(ValidationError):
            await service.create_diagram(actors.alice, "Big", content=b"x" * 2048)
        with pytest.raises(NotFoundError):
            await service.create_diagram(uuid4(), "Orphan")
        with pytest.raises(NotFoundError):
            await service.create_diagram(actors.alice, "Lost", folder_id=uuid4())


class TestDiagramLifecycle:

    @pytest.mark.asyncio
    async def test_move_and_list(self, store, actors):
        service = DiagramService(store)
        folder = await FolderHierarchyManager(store).create_folder(actors.alice, "F")
        diagram = await service.create_diagram(actors.alice, "Plan")

        moved = await service.move_diagram(diagram.id, folder.id)

        assert moved.folder_id == folder.id
        assert [d.id for d in await service.list_diagrams(actors.alice, folder.id)] == [diagram.id]
        assert await service.list_diagrams(actors.alice) == []

        await service.move_diagram(diagram.id, None)
        assert [d.id for d in await service.list_diagrams(actors.alice)] == [diagram.id]

    @pytest.mark.asyncio
    async def test_move_into_foreign_folder(self, store, actors):
        service = DiagramService(store)
        folder = await FolderHierarchyManager(store).create_folder(actors.bob, "F")
        diagram = await service.create_diagram(actors.alice, "Plan")

        with pytest.raises(InvalidMoveError):
            await service.move_diagram(diagram.id, folder.id)

    @pytest.mark.asyncio
    async def test_set_visibility(self, store, actors):
        service = DiagramService(store)
        diagram = await service.create_diagram(actors.alice, "Plan")

        assert (await service.set_visibility(diagram.id, True)).is_public is True
        assert (await service.set_visibility(diagram.id, False)).is_public is False
        with pytest.raises(NotFoundError):
            await service.set_visibility(uuid4(), True)

    @pytest.mark.asyncio
    async def test_delete_removes_shares(self, store, actors):
        service = DiagramService(store)
        sharing = SharingRegistry(store)
        diagram = await service.create_diagram(actors.alice, "Plan")
        await sharing.grant(diagram.id, actors.bob, "editor")

        await service.delete_diagram(diagram.id)

        with pytest.raises(NotFoundError):
            await service.get_diagram(diagram.id)
        assert await sharing.list(diagram.id) == []
        assert await sharing.shared_with(actors.bob) == []

    @pytest.mark.asyncio
    async def test_delete_missing(self, store):
        with pytest.raises(NotFoundError):
            await DiagramService(store).delete_diagram(uuid4())
