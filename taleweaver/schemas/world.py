"""
World state aggregate and the entities it owns
"""

import uuid
from enum import Enum
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, validator

from taleweaver.utils.locale import is_locale_match, normalize_locale

from .mechanics import DiceRoll

RELATIONSHIP_MIN = -100
RELATIONSHIP_MAX = 100
PLAYER_ID = "player"


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def clamp_relationship(value: int) -> int:
    return max(RELATIONSHIP_MIN, min(RELATIONSHIP_MAX, int(value)))


class NPCStatus(str, Enum):
    ALIVE = "Alive"
    DEAD = "Dead"
    UNKNOWN = "Unknown"


class NPCMemory(BaseModel):
    id: str = Field(default_factory=lambda: new_id("mem"))
    content: str
    timestamp: str = ""
    embedding: Optional[List[float]] = None


class NPC(BaseModel):
    id: str = Field(default_factory=lambda: new_id("npc"))
    name: str
    description: str = ""
    race: Optional[str] = None
    current_poi: str = ""
    relationship: int = 0
    status: NPCStatus = NPCStatus.ALIVE
    is_sentient: bool = True
    is_shadowed: bool = Field(default=False, description="Present but not yet noticed")
    is_cleared: bool = Field(default=False, description="Removed from the scene by the player")
    is_ship: bool = False
    memories: List[NPCMemory] = Field(default_factory=list)

    @validator("relationship")
    def clamp(cls, v):
        return clamp_relationship(v)

    @property
    def is_dead(self) -> bool:
        return self.status == NPCStatus.DEAD


class Companion(BaseModel):
    id: str = Field(default_factory=lambda: new_id("comp"))
    name: str
    level: int = 1
    hp: int = 10
    max_hp: int = 10
    relationship: int = 0
    is_in_party: bool = True
    is_ship: bool = False
    is_sentient: bool = True
    skill_bonuses: Dict[str, int] = Field(default_factory=dict)
    memories: List[NPCMemory] = Field(default_factory=list)

    @validator("relationship")
    def clamp(cls, v):
        return clamp_relationship(v)


class PlayerCharacter(BaseModel):
    id: str = PLAYER_ID
    name: str = "Adventurer"
    race: str = "Human"
    char_class: str = "Wanderer"
    level: int = 1
    hp: int = 10
    max_hp: int = 10
    skill_bonuses: Dict[str, int] = Field(default_factory=dict)


class Item(BaseModel):
    id: str = Field(default_factory=lambda: new_id("item"))
    name: str
    quantity: int = 1
    description: str = ""
    rarity: str = "Common"


class MapZone(BaseModel):
    coordinates: str
    name: str
    description: str = ""
    hostility: Union[int, str] = 0
    visited: bool = False
    sites: List[str] = Field(default_factory=list)


class LoreEntry(BaseModel):
    id: str = Field(default_factory=lambda: new_id("lore"))
    title: str
    content: str = ""
    keywords: List[str] = Field(default_factory=list)
    timestamp: str = ""
    embedding: Optional[List[float]] = None


class Objective(BaseModel):
    id: str = Field(default_factory=lambda: new_id("obj"))
    title: str
    content: str = ""
    status: Literal["active", "completed", "failed"] = "active"
    is_tracked: bool = False
    timestamp: str = ""
    embedding: Optional[List[float]] = None


class StoryLogEntry(BaseModel):
    id: str = Field(default_factory=lambda: new_id("log"))
    summary: str
    content: str = ""
    location: str = ""
    timestamp: str = ""
    embedding: Optional[List[float]] = None


class Combatant(BaseModel):
    id: str = Field(default_factory=lambda: new_id("foe"))
    name: str
    template: str = ""
    difficulty: str = "Medium"
    is_ally: bool = False
    is_ship: bool = False


class CombatState(BaseModel):
    is_active: bool = True
    round: int = 1
    enemies: List[Combatant] = Field(default_factory=list)

    @property
    def staged_hostiles(self) -> List[Combatant]:
        return [e for e in self.enemies if not e.is_ally]


class ChatMessage(BaseModel):
    id: str = Field(default_factory=lambda: new_id("msg"))
    sender: Literal["user", "model", "system"]
    content: str
    timestamp: str = ""
    rolls: List[DiceRoll] = Field(default_factory=list)


class WorldState(BaseModel):
    """The one aggregate all turn stages read from and propose deltas against"""

    session_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    player: PlayerCharacter = Field(default_factory=PlayerCharacter)
    companions: List[Companion] = Field(default_factory=list)
    npcs: List[NPC] = Field(default_factory=list)
    inventories: Dict[str, List[Item]] = Field(default_factory=dict)
    zones: Dict[str, MapZone] = Field(default_factory=dict)
    knowledge: List[LoreEntry] = Field(default_factory=list)
    story_log: List[StoryLogEntry] = Field(default_factory=list)
    objectives: List[Objective] = Field(default_factory=list)
    combat: Optional[CombatState] = None
    messages: List[ChatMessage] = Field(default_factory=list)

    current_coordinates: str = "0-0"
    current_locale: str = ""
    current_poi: str = ""
    current_time: str = "January 1, 1000, 08:00"
    world_summary: str = ""
    gm_notes: str = ""
    adventure_brief: str = ""

    @property
    def current_zone(self) -> Optional[MapZone]:
        return self.zones.get(self.current_coordinates)

    @property
    def is_combat_active(self) -> bool:
        return self.combat is not None and self.combat.is_active

    @property
    def tracked_objective(self) -> Optional[Objective]:
        for objective in self.objectives:
            if objective.is_tracked and objective.status == "active":
                return objective
        return None

    @property
    def active_companions(self) -> List[Companion]:
        return [c for c in self.companions if c.is_in_party]

    def find_npc(self, key: str) -> Optional[NPC]:
        """Look an NPC up by id first, then by normalised name."""
        if not key:
            return None
        for npc in self.npcs:
            if npc.id == key:
                return npc
        wanted = normalize_locale(key)
        for npc in self.npcs:
            if normalize_locale(npc.name) == wanted:
                return npc
        return None

    def npcs_present(self) -> List[NPC]:
        """NPCs anchored at the current locale or site."""
        here = [self.current_poi, self.current_locale]
        present = []
        for npc in self.npcs:
            if npc.current_poi in ("Current", "With Party") or any(
                is_locale_match(npc.current_poi, place) for place in here if place
            ):
                present.append(npc)
        return present

    def registered_names(self) -> List[str]:
        names = [self.player.name]
        names.extend(c.name for c in self.companions)
        names.extend(n.name for n in self.npcs)
        return [n for n in names if n]

    def last_narration(self) -> str:
        for message in reversed(self.messages):
            if message.sender == "model":
                return message.content
        return ""
