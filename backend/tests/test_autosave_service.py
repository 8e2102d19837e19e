"""
DiagramCore - Autosave Engine Tests
===================================

What:  Tests for AutosaveEngine.save / load.
How:   Real SQLite database for the version checks and the concurrent-save
       race; mock store for storage failures.

What we test:
    ✅ Save at the current version bumps it by exactly one
    ✅ Stale version returns Conflict with the stored content, storage untouched
    ✅ N concurrent saves at one version: exactly one Saved, the rest Conflict
    ✅ Two editors racing at version 3: Saved(4) and Conflict(4, winner content)
    ✅ Missing diagram returns NotFound
    ✅ Transient storage failure returns StorageUnavailable, never retries
    ✅ Malformed calls raise ValidationError
"""

import asyncio
from uuid import uuid4

import pytest
from pydantic import TypeAdapter

from diagramcore.exceptions import DatabaseError, NotFoundError, StorageUnavailableError, ValidationError
from diagramcore.schemas.diagram import Conflict, NotFound, SaveResult, Saved, StorageUnavailable
from diagramcore.services.autosave_service import AutosaveEngine
from diagramcore.services.diagram_service import DiagramService
from diagramcore.services.sharing_service import SharingRegistry


class TestAutosaveSave:
    """Version-checked writes against a real database."""

    @pytest.mark.asyncio
    async def test_save_at_current_version_increments(self, store, actors):
        diagram = await DiagramService(store).create_diagram(actors.alice, "Plan", content=b"{}")
        engine = AutosaveEngine(store)

        result = await engine.save(diagram.id, actors.alice, 1, b'{"shapes": [1]}')

        assert isinstance(result, Saved)
        assert result.version == 2
        assert result.updated_by == actors.alice
        stored = await engine.load(diagram.id)
        assert stored.version == 2
        assert stored.content == b'{"shapes": [1]}'
        assert stored.updated_by == actors.alice

    @pytest.mark.asyncio
    async def test_versions_increase_by_one_and_never_repeat(self, store, actors):
        diagram = await DiagramService(store).create_diagram(actors.alice, "Plan")
        engine = AutosaveEngine(store)

        versions = []
        current = diagram.version
        for i in range(5):
            result = await engine.save(diagram.id, actors.alice, current, f"rev {i}".encode())
            assert result.outcome == "saved"
            versions.append(result.version)
            current = result.version

        assert versions == [2, 3, 4, 5, 6]

    @pytest.mark.asyncio
    async def test_stale_version_returns_conflict_without_writing(self, store, actors):
        diagram = await DiagramService(store).create_diagram(actors.alice, "Plan", content=b"v1")
        engine = AutosaveEngine(store)
        await engine.save(diagram.id, actors.alice, 1, b"v2")

        result = await engine.save(diagram.id, actors.bob, 1, b"stale edit")

        assert isinstance(result, Conflict)
        assert result.version == 2
        assert result.content == b"v2"
        assert result.updated_by == actors.alice
        stored = await engine.load(diagram.id)
        assert stored.version == 2
        assert stored.content == b"v2"

    @pytest.mark.asyncio
    async def test_future_version_is_a_conflict(self, store, actors):
        diagram = await DiagramService(store).create_diagram(actors.alice, "Plan")

        result = await AutosaveEngine(store).save(diagram.id, actors.alice, 7, b"x")

        assert result.outcome == "conflict"
        assert result.version == 1

    @pytest.mark.asyncio
    async def test_missing_diagram_returns_not_found(self, store, actors):
        missing = uuid4()

        result = await AutosaveEngine(store).save(missing, actors.alice, 1, b"x")

        assert isinstance(result, NotFound)
        assert result.diagram_id == missing

    @pytest.mark.asyncio
    async def test_encoding_defaults_and_is_stored(self, store, actors):
        diagram = await DiagramService(store).create_diagram(actors.alice, "Plan")
        engine = AutosaveEngine(store)

        await engine.save(diagram.id, actors.alice, 1, b"<svg/>", encoding="image/svg+xml")
        assert (await engine.load(diagram.id)).content_encoding == "image/svg+xml"

        await engine.save(diagram.id, actors.alice, 2, b"{}")
        assert (await engine.load(diagram.id)).content_encoding == "application/json"


class TestAutosaveConcurrency:
    """Concurrent sessions racing on the same expected version."""

    @pytest.mark.asyncio
    async def test_exactly_one_of_n_concurrent_saves_wins(self, store, actors):
        diagram = await DiagramService(store).create_diagram(actors.alice, "Plan")
        engine = AutosaveEngine(store)

        results = await asyncio.gather(*[
            engine.save(diagram.id, actors.alice, 1, f"tab {i}".encode())
            for i in range(5)
        ])

        saved = [r for r in results if r.outcome == "saved"]
        conflicts = [r for r in results if r.outcome == "conflict"]
        assert len(saved) == 1
        assert len(conflicts) == 4
        assert saved[0].version == 2
        stored = await engine.load(diagram.id)
        assert stored.version == 2
        for conflict in conflicts:
            assert conflict.version == 2
            assert conflict.content == stored.content

    @pytest.mark.asyncio
    async def test_two_editors_at_version_three(self, store, actors):
        """D owned by A at version 3; editors B and C save concurrently."""
        diagrams = DiagramService(store)
        sharing = SharingRegistry(store)
        engine = AutosaveEngine(store)
        diagram = await diagrams.create_diagram(actors.alice, "D", content=b"v1")
        await engine.save(diagram.id, actors.alice, 1, b"v2")
        await engine.save(diagram.id, actors.alice, 2, b"v3")
        await sharing.grant(diagram.id, actors.bob, "editor")
        await sharing.grant(diagram.id, actors.carol, "editor")

        result_b, result_c = await asyncio.gather(
            engine.save(diagram.id, actors.bob, 3, b"from bob"),
            engine.save(diagram.id, actors.carol, 3, b"from carol"),
        )

        outcomes = sorted([result_b.outcome, result_c.outcome])
        assert outcomes == ["conflict", "saved"]
        winner, loser = (result_b, result_c) if result_b.outcome == "saved" else (result_c, result_b)
        winner_content = b"from bob" if winner is result_b else b"from carol"
        assert winner.version == 4
        assert loser.version == 4
        assert loser.content == winner_content
        assert loser.updated_by == winner.updated_by


class TestAutosaveFailures:
    """Validation and storage failures."""

    def setup_method(self):
        self.diagram_id = uuid4()
        self.actor_id = uuid4()

    @pytest.mark.asyncio
    async def test_storage_unavailable_becomes_result(self, mock_store, mock_tx):
        mock_tx.cas_update.side_effect = StorageUnavailableError(retry_after=2)
        engine = AutosaveEngine(mock_store)

        result = await engine.save(self.diagram_id, self.actor_id, 1, b"x")

        assert isinstance(result, StorageUnavailable)
        assert result.retry_after == 2
        # No internal retries
        mock_tx.cas_update.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_database_error_propagates(self, mock_store, mock_tx):
        mock_tx.cas_update.side_effect = DatabaseError()

        with pytest.raises(DatabaseError):
            await AutosaveEngine(mock_store).save(self.diagram_id, self.actor_id, 1, b"x")

    @pytest.mark.asyncio
    async def test_miss_reads_back_in_same_transaction(self, mock_store, mock_tx):
        mock_tx.cas_update.return_value = False
        mock_tx.get_diagram.return_value = None

        result = await AutosaveEngine(mock_store).save(self.diagram_id, self.actor_id, 1, b"x")

        assert result.outcome == "not_found"
        mock_tx.get_diagram.assert_awaited_once_with(self.diagram_id)
        assert mock_store.transaction.call_count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("version", [0, -1, True, "1", 1.0])
    async def test_invalid_expected_version(self, mock_store, mock_tx, version):
        with pytest.raises(ValidationError) as exc_info:
            await AutosaveEngine(mock_store).save(self.diagram_id, self.actor_id, version, b"x")
        assert exc_info.value.field == "expected_version"
        mock_tx.cas_update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_content_must_be_bytes(self, mock_store):
        with pytest.raises(ValidationError) as exc_info:
            await AutosaveEngine(mock_store).save(self.diagram_id, self.actor_id, 1, "text")
        assert exc_info.value.field == "content"

    @pytest.mark.asyncio
    async def test_oversized_content_rejected(self, mock_store, mock_tx, make_settings):
        engine = AutosaveEngine(mock_store, make_settings(max_content_bytes=1024))

        with pytest.raises(ValidationError):
            await engine.save(self.diagram_id, self.actor_id, 1, b"x" * 1025)
        mock_tx.cas_update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_load_missing_raises(self, mock_store, mock_tx):
        mock_tx.get_diagram.return_value = None

        with pytest.raises(NotFoundError):
            await AutosaveEngine(mock_store).load(self.diagram_id)


class TestSaveResultUnion:
    def test_discriminates_on_outcome(self):
        adapter = TypeAdapter(SaveResult)
        diagram_id = uuid4()

        parsed = adapter.validate_python({"outcome": "not_found", "diagram_id": str(diagram_id)})

        assert isinstance(parsed, NotFound)
        assert parsed.diagram_id == diagram_id
