"""
Response contracts for the secondary collaborators (classifier, locale agent,
combat-relevance verifier, auditor, housekeeper). Each model's defaults are
its documented safe fallback.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .mechanics import DiceRollRequest


class ServiceModel(BaseModel):
    """Collaborator replies: accept camelCase keys, ignore unknown ones"""

    class Config:
        populate_by_name = True
        extra = "ignore"


class ClassifierReply(ServiceModel):
    intent_type: str = Field(default="narrative", alias="intentType")
    required_keys: List[str] = Field(default_factory=list, alias="requiredKeys")
    requests: List[DiceRollRequest] = Field(default_factory=list)
    travel_destination: Optional[str] = Field(default=None, alias="travelDestination")
    travel_method: Optional[str] = Field(default=None, alias="travelMethod")
    reasoning: str = ""


class LocaleResolution(ServiceModel):
    """Fallback passes validation and keeps whatever name was requested."""

    name: str = ""
    sub_location: str = ""
    content: str = ""
    is_new: bool = Field(default=False, alias="isNew")
    is_literal_transition: bool = Field(default=False, alias="isLiteralTransition")
    validation_passed: bool = True
    reasoning: str = ""


class CombatRelevance(ServiceModel):
    should_trigger_combat: bool = Field(default=False, alias="shouldTriggerCombat")
    reason: str = "Default to peaceful setback on error."


class NewNPC(ServiceModel):
    name: str
    description: str = ""
    race: Optional[str] = None
    is_sentient: bool = Field(default=True, alias="isSentient")


class NPCStatusUpdate(ServiceModel):
    id: str
    current_poi: Optional[str] = Field(default=None, alias="currentPOI")
    status: Optional[Literal["Alive", "Dead", "Unknown"]] = None
    is_hostile: bool = Field(default=False, alias="isHostile")


class AuditResult(ServiceModel):
    current_locale: Optional[str] = Field(default=None, alias="currentLocale")
    time_passed_minutes: int = Field(default=0, alias="timePassedMinutes")
    new_npcs: List[NewNPC] = Field(default_factory=list, alias="newNPCs")
    npc_updates: List[NPCStatusUpdate] = Field(default_factory=list, alias="npcUpdates")
    active_engagement: bool = Field(default=False, alias="activeEngagement")
    missed_rolls: List[DiceRollRequest] = Field(default_factory=list, alias="missedRolls")
    turn_summary: str = Field(default="", alias="turnSummary")


class ItemDelta(ServiceModel):
    name: str
    quantity: int = 1
    description: str = ""
    rarity: str = "Common"


class InventoryBatch(ServiceModel):
    owner_id: str = Field(default="player", alias="ownerId")
    action: Literal["add", "remove"] = "add"
    items: List[ItemDelta] = Field(default_factory=list)


class RelationshipShift(ServiceModel):
    npc_id: str = Field(alias="npcId")
    change: int = 0
    reason: str = ""


class MemoryNote(ServiceModel):
    npc_id: str = Field(alias="npcId")
    memory: str


class ObjectiveNote(ServiceModel):
    title: str
    content: str = ""
    status: Literal["active", "completed", "failed"] = "active"


class HousekeepingResult(ServiceModel):
    inventory_updates: List[InventoryBatch] = Field(
        default_factory=list, alias="inventoryUpdates"
    )
    relationship_changes: List[RelationshipShift] = Field(
        default_factory=list, alias="relationshipChanges"
    )
    npc_memories: List[MemoryNote] = Field(default_factory=list, alias="npcMemories")
    objectives: List[ObjectiveNote] = Field(default_factory=list)


class ObjectiveCheck(ServiceModel):
    """Completion is only claimed when the recent exchange shows the goal achieved."""

    completed: bool = False
    reason: str = ""


def schema_for(model: type) -> Dict[str, Any]:
    """JSON schema (by alias) handed to the provider for structured output."""
    return model.model_json_schema(by_alias=True)
