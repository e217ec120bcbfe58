"""
Shared fixtures: a scripted provider and a small starting world.
"""

import json
from typing import Any, Dict, List, Optional, Union

import pytest

from taleweaver.providers.base import BaseProvider, ProviderResponse
from taleweaver.schemas.world import (
    NPC,
    Companion,
    MapZone,
    PlayerCharacter,
    WorldState,
)

Reply = Union[str, Dict[str, Any], Exception]


class ScriptedProvider(BaseProvider):
    """Provider that returns queued replies in order and records every call"""

    def __init__(self, replies: Optional[List[Reply]] = None, default: Optional[Reply] = None):
        super().__init__(api_base="http://test", api_key="test", model_name="scripted")
        self.replies = list(replies or [])
        self.default = default
        self.calls: List[Dict[str, Any]] = []

    async def _invoke(self, messages, json_schema=None, **kwargs) -> ProviderResponse:
        self.calls.append({"messages": messages, "json_schema": json_schema})
        reply = self.replies.pop(0) if self.replies else self.default
        if reply is None:
            raise RuntimeError("no scripted reply left")
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, dict):
            reply = json.dumps(reply)
        return ProviderResponse(content=reply, model=self.model_name)


@pytest.fixture
def scripted_provider():
    return ScriptedProvider


@pytest.fixture
def world() -> WorldState:
    return WorldState(
        player=PlayerCharacter(name="Aria", skill_bonuses={"Stealth": 3, "Persuasion": 1}),
        companions=[Companion(id="comp-bram", name="Bram", hp=12, max_hp=12)],
        npcs=[
            NPC(id="npc-greta", name="Greta", description="Innkeeper", current_poi="The Rusty Anchor"),
            NPC(id="npc-guard", name="Guard Captain", current_poi="Town Gate"),
        ],
        zones={
            "0-0": MapZone(
                coordinates="0-0",
                name="Harbor Town",
                description="A busy port.",
                hostility=0,
                visited=True,
                sites=["The Rusty Anchor", "Town Gate"],
            )
        },
        current_coordinates="0-0",
        current_locale="Harbor Town",
        current_poi="The Rusty Anchor",
        current_time="March 3, 1024, 09:15",
        world_summary="A seafaring kingdom on the edge of war.",
    )
