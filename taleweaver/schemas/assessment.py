"""
Intent assessment and turn input schema definitions
"""

from enum import Enum
from typing import List, Optional, Set

from pydantic import BaseModel, Field

from .mechanics import DiceRollRequest, MechanicsResult


class IntentType(str, Enum):
    COMBAT = "combat"
    SKILL = "skill"
    TRAVEL = "travel"
    NARRATIVE = "narrative"


class ContextKey(str, Enum):
    CORE_STATS = "core_stats"
    INVENTORY = "inventory"
    COMBAT_STATE = "combat_state"
    LOCATION_DETAILS = "location_details"
    ACTIVE_QUESTS = "active_quests"
    RECENT_HISTORY = "recent_history"
    WORLD_LORE = "world_lore"
    SOCIAL_REGISTRY = "social_registry"


DEFAULT_CONTEXT_KEYS = frozenset(
    {
        ContextKey.CORE_STATS,
        ContextKey.RECENT_HISTORY,
        ContextKey.ACTIVE_QUESTS,
        ContextKey.SOCIAL_REGISTRY,
    }
)

COMBAT_CONTEXT_KEYS = frozenset({ContextKey.COMBAT_STATE, ContextKey.INVENTORY})

# Shown to the classifier so it can pick the modules it needs
DATA_MENU = {
    ContextKey.CORE_STATS: "Player and party stats, HP, level and skill bonuses.",
    ContextKey.INVENTORY: "Items carried by the player and companions.",
    ContextKey.COMBAT_STATE: "Active combatants and engagement status.",
    ContextKey.LOCATION_DETAILS: "Current zone description, known sites and neighbouring zones.",
    ContextKey.ACTIVE_QUESTS: "Open objectives and the tracked quest.",
    ContextKey.RECENT_HISTORY: "Recent story log entries.",
    ContextKey.WORLD_LORE: "Lore and knowledge entries relevant to the action.",
    ContextKey.SOCIAL_REGISTRY: "NPCs present, relationships and their memories.",
}


class TravelIntent(BaseModel):
    destination: str
    method: str = "walking"


class Assessment(BaseModel):
    """Closed classification of a player action"""

    intent_type: IntentType = IntentType.NARRATIVE
    required_keys: Set[ContextKey] = Field(default_factory=lambda: set(DEFAULT_CONTEXT_KEYS))
    requests: List[DiceRollRequest] = Field(default_factory=list)
    travel: Optional[TravelIntent] = None
    reasoning: str = ""

    @classmethod
    def fallback(cls, combat_active: bool = False) -> "Assessment":
        keys = set(DEFAULT_CONTEXT_KEYS)
        if combat_active:
            keys |= COMBAT_CONTEXT_KEYS
        return cls(intent_type=IntentType.NARRATIVE, required_keys=keys)


class TurnInput(BaseModel):
    text: str
    message_id: Optional[str] = None
    mechanics_override: Optional[MechanicsResult] = None
    is_heroic: bool = False
    system_instruction: Optional[str] = Field(
        default=None, description="Replaces the mechanics directive, used by automated events"
    )
