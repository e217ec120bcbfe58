"""
Tests for story log compression and objective follow-ups.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from taleweaver.engine.chronicle import (
    ARCHIVE_TIMESTAMP,
    ObjectiveNotFoundError,
    ObjectiveTracker,
    StoryCompressor,
    group_by_day,
    story_day,
)
from taleweaver.engine.embeddings import EmbeddingService
from taleweaver.engine.services import ObjectiveAdvisor, StorySummarizer
from taleweaver.engine.store import WorldStore
from taleweaver.schemas.updates import CompressStoryLog
from taleweaver.schemas.world import Objective, StoryLogEntry


def story(world):
    world.story_log = [
        StoryLogEntry(id="log-1", summary="Arrived", timestamp="March 1, 1024, 08:00", location="Docks"),
        StoryLogEntry(
            id="log-2", summary="Met Greta", timestamp="March 2, 1024, 09:00", location="The Rusty Anchor"
        ),
        StoryLogEntry(id="log-3", summary="Brawl", timestamp="March 2, 1024, 21:00", location="Town Gate"),
        StoryLogEntry(id="log-4", summary="Woke up", timestamp="March 3, 1024, 07:00", location="Inn"),
    ]
    return world


def fake_embeddings():
    backend = MagicMock()
    backend.aembed_query = AsyncMock(return_value=[0.1, 0.2, 0.3])
    return EmbeddingService(backend)


class TestDays:
    """Test grouping of the story log by calendar day"""

    def test_story_day(self):
        assert story_day("March 2, 1024, 21:00") == "March 2, 1024"
        assert story_day("Previous Adventures") == ""

    def test_group_skips_summaries(self, world):
        story(world)
        world.story_log.append(
            StoryLogEntry(id="summary-old", summary="Earlier", timestamp="March 1, 1024, 07:00")
        )
        days = group_by_day(world.story_log)
        assert list(days) == ["March 1, 1024", "March 2, 1024", "March 3, 1024"]
        assert [e.id for e in days["March 1, 1024"]] == ["log-1"]
        assert [e.id for e in days["March 2, 1024"]] == ["log-2", "log-3"]


class TestStoryCompressor:
    """Test folding story entries into summaries"""

    @pytest.mark.asyncio
    async def test_compress_day_keeps_position(self, world, scripted_provider):
        store = WorldStore(story(world))
        provider = scripted_provider(["  A long day at the harbor.  "])
        compressor = StoryCompressor(store, StorySummarizer(provider), fake_embeddings())

        entry = await compressor.compress_day("March 2, 1024")
        log = store.snapshot().story_log

        assert [e.id for e in log] == ["log-1", entry.id, "log-4"]
        assert entry.id.startswith("summary-")
        assert entry.content == "[Daily Summary: March 2, 1024]\nA long day at the harbor."
        assert entry.timestamp == "March 2, 1024, 09:00"
        assert entry.location == "Town Gate"
        assert log[1].embedding == [0.1, 0.2, 0.3]
        prompt = provider.calls[0]["messages"][-1].content
        assert "Arrived" in prompt
        assert "Met Greta" in prompt

    @pytest.mark.asyncio
    async def test_failed_summary_keeps_log(self, world, scripted_provider):
        store = WorldStore(story(world))
        compressor = StoryCompressor(store, StorySummarizer(scripted_provider([RuntimeError("down")])))

        assert await compressor.compress_day("March 2, 1024") is None
        assert len(store.snapshot().story_log) == 4

    @pytest.mark.asyncio
    async def test_unknown_day(self, world, scripted_provider):
        provider = scripted_provider()
        compressor = StoryCompressor(WorldStore(story(world)), StorySummarizer(provider))
        assert await compressor.compress_day("April 9, 1024") is None
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_archive_replaces_whole_log(self, world, scripted_provider):
        store = WorldStore(story(world))
        compressor = StoryCompressor(store, StorySummarizer(scripted_provider(["The journey so far."])))

        entry = await compressor.compress_archive()

        assert store.snapshot().story_log == [entry]
        assert entry.timestamp == ARCHIVE_TIMESTAMP
        assert entry.content == "[Archive Summary]\nThe journey so far."

    @pytest.mark.asyncio
    async def test_past_days_skip_today_and_single_entries(self, world, scripted_provider):
        story(world)
        world.story_log.append(
            StoryLogEntry(id="log-5", summary="Breakfast", timestamp="March 3, 1024, 08:00")
        )
        store = WorldStore(world)
        provider = scripted_provider(["Harbor day."])
        compressor = StoryCompressor(store, StorySummarizer(provider))

        assert await compressor.compress_past_days() == 1

        ids = [e.id for e in store.snapshot().story_log]
        assert ids[0] == "log-1"
        assert ids[1].startswith("summary-")
        assert ids[2:] == ["log-4", "log-5"]
        assert len(provider.calls) == 1

    def test_stale_compression_rejected(self, world):
        store = WorldStore(story(world))
        events = store.apply(CompressStoryLog(remove_ids=["gone"], entry=StoryLogEntry(summary="x")))
        assert [e.kind for e in events] == ["rejected_update"]
        assert len(store.snapshot().story_log) == 4


class TestObjectiveTracker:
    """Test objective completion checks"""

    def objective_world(self, world):
        world.objectives = [
            Objective(id="obj-1", title="Find the map", content="Greta hid it", is_tracked=True)
        ]
        return world

    @pytest.mark.asyncio
    async def test_completed_objective_closed(self, world, scripted_provider):
        store = WorldStore(self.objective_world(world))
        provider = scripted_provider([{"completed": True, "reason": "The map is in hand."}])

        result = await ObjectiveTracker(store, ObjectiveAdvisor(provider)).follow_up("obj-1")
        snapshot = store.snapshot()

        assert result.completed is True
        assert snapshot.objectives[0].status == "completed"
        assert snapshot.objectives[0].is_tracked is False
        assert snapshot.messages[-1].content == "Objective completed: Find the map"
        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_open_objective_gets_suggestion(self, world, scripted_provider):
        store = WorldStore(self.objective_world(world))
        provider = scripted_provider(
            [{"completed": False, "reason": "Not yet"}, "  Ask Greta where she hid the map.  "]
        )

        result = await ObjectiveTracker(store, ObjectiveAdvisor(provider)).follow_up("obj-1")

        assert result.completed is False
        assert result.suggested_action == "Ask Greta where she hid the map."
        assert store.snapshot().objectives[0].status == "active"

    @pytest.mark.asyncio
    async def test_unknown_objective(self, world, scripted_provider):
        tracker = ObjectiveTracker(WorldStore(world), ObjectiveAdvisor(scripted_provider()))
        with pytest.raises(ObjectiveNotFoundError):
            await tracker.follow_up("obj-missing")
