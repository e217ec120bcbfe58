"""
Dice, encounter and mechanics-resolution schema definitions
"""

from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field


class RollOutcome(str, Enum):
    SUCCESS = "Success"
    FAIL = "Fail"
    CRITICAL_FAIL = "Critical Fail"
    CRITICAL_SUCCESS = "Critical Success"
    ENCOUNTER = "Encounter"
    NO_ENCOUNTER = "No Encounter"

    @property
    def is_failure(self) -> bool:
        return self in (RollOutcome.FAIL, RollOutcome.CRITICAL_FAIL)


class HazardTier(str, Enum):
    WEAK = "Weak"
    POTENT = "Potent"
    DEADLY = "Deadly"


class HazardScope(str, Enum):
    SINGLE = "Single"
    MULTIPLE = "Multiple"


class HpChange(BaseModel):
    previous_hp: int
    new_hp: int

    @property
    def lost(self) -> int:
        return max(0, self.previous_hp - self.new_hp)


class DiceRollRequest(BaseModel):
    """A check the classifier (or the audit) asks the mechanics phase to roll"""

    roller: str = Field(default="Player", description="Player, companion name or 'Player'")
    check: str = Field(..., description="Skill, ability or save name")
    dc: int = Field(default=12, description="Difficulty class")
    hazardous: Optional[bool] = Field(
        default=None,
        description="Whether a critical failure springs a hazard; None infers from the skill",
    )


class DiceRoll(BaseModel):
    """One resolved roll. Immutable once produced."""

    roller_id: str
    roller_name: str
    check: str
    die: int
    sides: int = 20
    modifier: int = 0
    total: int
    dc: Optional[int] = None
    outcome: RollOutcome
    notes: Optional[str] = None
    hp_change: Optional[HpChange] = None
    hazard_tier: Optional[HazardTier] = None
    hazard_scope: Optional[HazardScope] = None

    class Config:
        frozen = True

    @property
    def summary(self) -> str:
        if self.dc is None:
            return f"{self.roller_name} {self.check}: {self.total} -> {self.outcome.value}"
        return (
            f"{self.roller_name} {self.check} Check: {self.total} "
            f"(vs DC {self.dc}) -> {self.outcome.value}"
        )


class EncounterMatrixResult(BaseModel):
    """Three independently rolled encounter pillars"""

    encounter_type: str
    entity_type: str
    condition: str
    rolls: Tuple[int, int, int]

    class Config:
        frozen = True

    @property
    def summary(self) -> str:
        """Debug-only string; never place it into a narrator directive."""
        r1, r2, r3 = self.rolls
        return (
            f"[Rolls: {r1}, {r2}, {r3}] "
            f"{self.encounter_type} | {self.entity_type} | {self.condition}"
        )


class HazardEvent(BaseModel):
    tier: HazardTier
    scope: HazardScope
    dc: int
    damage_dice: str
    save_ability: str
    label: str
    target_ids: List[str] = Field(default_factory=list)

    class Config:
        frozen = True


class MechanicsResult(BaseModel):
    """Everything the mechanics phase decided before narration"""

    rolls: List[DiceRoll] = Field(default_factory=list)
    dice_truth: str = ""
    directive: str = ""
    is_hostile_intent: bool = False
    plot_notes: Optional[str] = None
    encounter: Optional[EncounterMatrixResult] = None
    hazard: Optional[HazardEvent] = None
    hp_changes: Dict[str, int] = Field(
        default_factory=dict, description="Actor id -> signed HP delta"
    )
