"""
Named deltas accepted by the world store.

Every mutation of WorldState is expressed as one of the models below and
applied through ``WorldStore.apply``. Deltas carry intent ("add 5 to the
relationship", "create this NPC unless the name exists") so they can be
resolved against the state that is current at apply time.
"""

from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from .mechanics import DiceRoll
from .narration import NPCResolution, ObjectiveUpdate
from .services import InventoryBatch, NewNPC, NPCStatusUpdate
from .world import ChatMessage, Combatant, LoreEntry, NPCMemory, StoryLogEntry

HOSTILE_RELATIONSHIP = -50


class RelationshipDelta(BaseModel):
    npc_id: str
    change: int = 0
    hostile_override: bool = Field(
        default=False, description="Force the score to -50 or below instead of adding"
    )
    reason: str = ""


class NPCMemoryDelta(BaseModel):
    npc_id: str
    memory: NPCMemory


class AIUpdatePayload(BaseModel):
    """Sparse bag of everything one turn wants to change, applied in one commit"""

    current_locale: Optional[str] = None
    current_poi: Optional[str] = None
    npc_resolutions: List[NPCResolution] = Field(default_factory=list)
    new_npcs: List[NewNPC] = Field(default_factory=list)
    npc_updates: List[NPCStatusUpdate] = Field(default_factory=list)
    inventory_updates: List[InventoryBatch] = Field(default_factory=list)
    objectives: List[ObjectiveUpdate] = Field(default_factory=list)
    relationship_changes: List[RelationshipDelta] = Field(default_factory=list)
    npc_memories: List[NPCMemoryDelta] = Field(default_factory=list)
    knowledge: List[LoreEntry] = Field(default_factory=list)
    story_entry: Optional[StoryLogEntry] = None
    time_advance_minutes: int = 0
    gm_notes: Optional[str] = None
    adventure_brief: Optional[str] = None
    roll_attachments: Dict[str, List[DiceRoll]] = Field(default_factory=dict)
    hp_changes: Dict[str, int] = Field(default_factory=dict)
    system_messages: List[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return self == AIUpdatePayload()


class AppendMessage(BaseModel):
    kind: Literal["append_message"] = "append_message"
    message: ChatMessage


class ApplyTurnUpdate(BaseModel):
    kind: Literal["apply_turn_update"] = "apply_turn_update"
    payload: AIUpdatePayload
    update_id: Optional[str] = Field(
        default=None, description="Replays of an already applied id are ignored"
    )


class SetEmbedding(BaseModel):
    """Back-fill a vector; ignored when the entry already has one."""

    kind: Literal["set_embedding"] = "set_embedding"
    collection: Literal["knowledge", "objectives", "npc_memories", "story_log"]
    entry_id: str
    vector: List[float]


class BeginCombat(BaseModel):
    kind: Literal["begin_combat"] = "begin_combat"
    enemies: List[Combatant] = Field(default_factory=list)


class EndCombat(BaseModel):
    kind: Literal["end_combat"] = "end_combat"


class CompressStoryLog(BaseModel):
    """Replace a run of story entries with one summary entry placed where the run began."""

    kind: Literal["compress_story_log"] = "compress_story_log"
    remove_ids: List[str]
    entry: StoryLogEntry


WorldDelta = Union[
    AppendMessage, ApplyTurnUpdate, SetEmbedding, BeginCombat, EndCombat, CompressStoryLog
]


class WorldEvent(BaseModel):
    """Something noteworthy the store observed while applying a delta"""

    kind: Literal[
        "combat_triggered",
        "npc_created",
        "npc_died",
        "rejected_update",
        "embedding_skipped",
        "story_compressed",
    ]
    detail: str = ""
    npc_id: Optional[str] = None
