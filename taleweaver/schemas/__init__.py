"""
Typed contracts for the Taleweaver turn engine
"""

from .assessment import (
    DEFAULT_CONTEXT_KEYS,
    Assessment,
    ContextKey,
    IntentType,
    TravelIntent,
    TurnInput,
)
from .mechanics import (
    DiceRoll,
    DiceRollRequest,
    EncounterMatrixResult,
    HazardEvent,
    MechanicsResult,
    RollOutcome,
)
from .narration import NARRATOR_JSON_SCHEMA, NarratorResponse
from .services import AuditResult, CombatRelevance, HousekeepingResult, LocaleResolution
from .updates import AIUpdatePayload, WorldDelta, WorldEvent
from .validation import clean_json, decode_or_default, validate_json_schema
from .world import NPC, NPCStatus, WorldState

__all__ = [
    "Assessment",
    "ContextKey",
    "DEFAULT_CONTEXT_KEYS",
    "IntentType",
    "TravelIntent",
    "TurnInput",
    "DiceRoll",
    "DiceRollRequest",
    "EncounterMatrixResult",
    "HazardEvent",
    "MechanicsResult",
    "RollOutcome",
    "NARRATOR_JSON_SCHEMA",
    "NarratorResponse",
    "AuditResult",
    "CombatRelevance",
    "HousekeepingResult",
    "LocaleResolution",
    "AIUpdatePayload",
    "WorldDelta",
    "WorldEvent",
    "clean_json",
    "decode_or_default",
    "validate_json_schema",
    "NPC",
    "NPCStatus",
    "WorldState",
]
