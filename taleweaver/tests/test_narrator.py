"""
Tests for the narrator invoker: message layout, retries and fallbacks.
"""

from unittest.mock import AsyncMock

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from taleweaver.engine.narrator import NarratorInvoker
from taleweaver.schemas.narration import FALLBACK_NARRATION
from taleweaver.schemas.world import ChatMessage
from taleweaver.utils.retry import (
    NarratorUnavailableError,
    ProviderError,
    ProviderOverloadedError,
    RetryPolicy,
)

VALID_REPLY = {
    "location_update": {"site_name": "The Rusty Anchor", "zone": "Harbor Town"},
    "npc_resolution": [{"name": "Greta", "action": "existing", "summary": "Pours ale"}],
    "narration": "Greta slides a mug across the bar.",
    "turnSummary": "Aria orders a drink.",
    "adventure_brief": "Find the smuggler.",
    "active_engagement": False,
    "suggestedActors": [],
    "alignmentOptions": [{"label": "Tip generously", "alignment": "Good"}],
    "updates": {"gmNotes": "Smuggler arrives at dusk.", "objectives": []},
}


def fast_policy(attempts=3):
    return RetryPolicy(max_attempts=attempts, sleep=AsyncMock())


class TestNarratorMessages:
    """Test the prompt layout sent to the service"""

    def test_history_window_and_dice_truth(self, world, scripted_provider):
        for i in range(6):
            sender = "user" if i % 2 == 0 else "model"
            world.messages.append(ChatMessage(sender=sender, content=f"message {i}"))
        world.messages.append(ChatMessage(sender="system", content="You acquired: **Rope**"))

        narrator = NarratorInvoker(scripted_provider(), history_window=4)
        messages = narrator.build_messages(world, "INSTRUCTION", "I sneak", "The dice have spoken:\nX")

        assert [m.content for m in messages[:3]] == ["message 3", "message 4", "message 5"]
        assert isinstance(messages[0], AIMessage)
        assert isinstance(messages[1], HumanMessage)
        assert isinstance(messages[-2], SystemMessage)
        assert messages[-2].content == "INSTRUCTION"
        assert "### The Dice Truth (Unmodifiable)" in messages[-1].content
        assert messages[-1].content.startswith("I sneak")

    def test_no_dice_truth_no_heading(self, world, scripted_provider):
        narrator = NarratorInvoker(scripted_provider())
        messages = narrator.build_messages(world, "INSTRUCTION", "I wave")
        assert messages[-1].content == "I wave"


class TestNarratorInvoke:
    """Test decoding, retries and fallbacks"""

    @pytest.mark.asyncio
    async def test_valid_reply(self, world, scripted_provider):
        provider = scripted_provider([VALID_REPLY])
        response = await NarratorInvoker(provider, fast_policy()).invoke(world, "I", "I order a drink")

        assert response.narration == "Greta slides a mug across the bar."
        assert response.turn_summary == "Aria orders a drink."
        assert response.updates.gm_notes == "Smuggler arrives at dusk."
        assert response.alignment_options[0].label == "Tip generously"

    @pytest.mark.asyncio
    async def test_overload_retried_then_succeeds(self, world, scripted_provider):
        provider = scripted_provider(
            [ProviderOverloadedError("overloaded", 503), ProviderOverloadedError("overloaded", 503), VALID_REPLY]
        )
        response = await NarratorInvoker(provider, fast_policy()).invoke(world, "I", "I order a drink")

        assert len(provider.calls) == 3
        assert response.narration == "Greta slides a mug across the bar."

    @pytest.mark.asyncio
    async def test_overload_exhausted_raises_unavailable(self, world, scripted_provider):
        provider = scripted_provider(default=ProviderOverloadedError("overloaded", 503))
        policy = fast_policy()

        with pytest.raises(NarratorUnavailableError):
            await NarratorInvoker(provider, policy).invoke(world, "I", "I order a drink")
        assert len(provider.calls) == 3
        assert policy.sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_other_error_falls_back_without_retry(self, world, scripted_provider):
        provider = scripted_provider([ProviderError("bad request")])
        response = await NarratorInvoker(provider, fast_policy()).invoke(world, "I", "I order a drink")

        assert len(provider.calls) == 1
        assert response.narration == FALLBACK_NARRATION
        assert response.location_update.site_name == "The Rusty Anchor"
        assert response.suggested_actors == []

    @pytest.mark.asyncio
    async def test_malformed_reply_falls_back(self, world, scripted_provider):
        provider = scripted_provider(["Once upon a time, without any JSON."])
        response = await NarratorInvoker(provider, fast_policy()).invoke(world, "I", "Hello")

        assert response.narration == FALLBACK_NARRATION
        assert response.adventure_brief == world.adventure_brief
