"""
Tests for the one-shot background embedding sweep.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from taleweaver.engine.embeddings import EmbeddingService
from taleweaver.engine.indexer import BackgroundIndexer, pending_targets
from taleweaver.engine.store import WorldStore
from taleweaver.schemas.world import LoreEntry, NPCMemory, Objective, StoryLogEntry


def fake_backend(vector=None):
    backend = MagicMock()
    backend.aembed_query = AsyncMock(return_value=vector or [0.1, 0.2, 0.3])
    return backend


class TestPendingTargets:
    """Test which entries need vectors"""

    def test_only_entries_without_embeddings(self, world):
        world.knowledge = [
            LoreEntry(id="lore-1", title="Kraken", content="Beast"),
            LoreEntry(id="lore-2", title="Tide", embedding=[1.0]),
        ]
        world.objectives = [Objective(id="obj-1", title="Find the map")]
        world.npcs[0].memories = [NPCMemory(id="mem-1", content="Met Aria")]
        world.story_log = [StoryLogEntry(id="log-1", summary="Arrived", content="At the docks")]

        targets = pending_targets(world)

        assert targets == [
            ("knowledge", "lore-1", "Kraken Beast"),
            ("objectives", "obj-1", "Find the map "),
            ("npc_memories", "mem-1", "Met Aria"),
            ("story_log", "log-1", "Arrived At the docks"),
        ]


class TestBackgroundIndexer:
    """Test the sweep and its idempotence"""

    @pytest.mark.asyncio
    async def test_sweep_writes_missing_vectors_once(self, world):
        world.knowledge = [
            LoreEntry(id="lore-1", title="Kraken"),
            LoreEntry(id="lore-2", title="Tide", embedding=[1.0, 0.0, 0.0]),
        ]
        world.npcs[0].memories = [NPCMemory(id="mem-1", content="Met Aria")]
        store = WorldStore(world)
        backend = fake_backend()
        indexer = BackgroundIndexer(store, EmbeddingService(backend), quiet_period=0)

        assert await indexer.run() == 2
        assert await indexer.run() == 0

        snapshot = store.snapshot()
        assert snapshot.knowledge[0].embedding == [0.1, 0.2, 0.3]
        assert snapshot.knowledge[1].embedding == [1.0, 0.0, 0.0]
        assert snapshot.npcs[0].memories[0].embedding == [0.1, 0.2, 0.3]
        assert backend.aembed_query.await_count == 2
        assert indexer.is_indexing is False

    @pytest.mark.asyncio
    async def test_failed_embeddings_are_skipped(self, world):
        world.knowledge = [LoreEntry(id="lore-1", title="Kraken")]
        store = WorldStore(world)
        backend = fake_backend()
        backend.aembed_query.side_effect = RuntimeError("service down")
        indexer = BackgroundIndexer(store, EmbeddingService(backend), quiet_period=0)

        assert await indexer.run() == 0
        assert store.snapshot().knowledge[0].embedding is None

    @pytest.mark.asyncio
    async def test_schedule_is_one_shot(self, world):
        world.knowledge = [LoreEntry(id="lore-1", title="Kraken")]
        indexer = BackgroundIndexer(
            WorldStore(world), EmbeddingService(fake_backend()), quiet_period=0
        )

        task = indexer.schedule()
        assert task is not None
        assert indexer.schedule() is None
        assert await task == 1
        assert indexer.has_run is True

    @pytest.mark.asyncio
    async def test_schedule_without_backend(self, world):
        indexer = BackgroundIndexer(WorldStore(world), EmbeddingService(None))
        assert indexer.schedule() is None

    @pytest.mark.asyncio
    async def test_cancel_stops_armed_sweep(self, world):
        world.knowledge = [LoreEntry(id="lore-1", title="Kraken")]
        backend = fake_backend()
        indexer = BackgroundIndexer(WorldStore(world), EmbeddingService(backend), quiet_period=60)

        task = indexer.schedule()
        await indexer.cancel()

        assert task.cancelled()
        backend.aembed_query.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_join_waits_for_sweep(self, world):
        world.knowledge = [LoreEntry(id="lore-1", title="Kraken")]
        store = WorldStore(world)
        indexer = BackgroundIndexer(store, EmbeddingService(fake_backend()), quiet_period=0)

        indexer.schedule()
        await indexer.join()

        assert indexer.has_run is True
        assert store.snapshot().knowledge[0].embedding == [0.1, 0.2, 0.3]
