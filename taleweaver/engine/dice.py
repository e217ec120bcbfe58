"""
Skill checks, damage dice and the dice-truth string
"""

import random
import re
from typing import Iterable, List, Optional, Tuple

from taleweaver.schemas.mechanics import DiceRoll, DiceRollRequest, RollOutcome
from taleweaver.schemas.world import PLAYER_ID, WorldState
from taleweaver.utils.logger import VERBOSE, get_logger

logger = get_logger(__name__)

DICE_TRUTH_HEADER = "The dice have spoken:"
_DICE_EXPR = re.compile(r"^\s*(\d*)\s*d\s*(\d+)\s*([+-]\s*\d+)?\s*$", re.IGNORECASE)


class DiceRoller:
    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def d(self, sides: int) -> int:
        return self.rng.randint(1, sides)

    def roll_expression(self, expression: str) -> int:
        """Total of a dice expression such as ``2d6+1``; malformed input rolls 0."""
        match = _DICE_EXPR.match(expression or "")
        if not match:
            logger.warning(f"[Dice] Unparseable dice expression: {expression!r}")
            return 0
        count = int(match.group(1) or 1)
        sides = int(match.group(2))
        bonus = int(match.group(3).replace(" ", "")) if match.group(3) else 0
        if sides <= 0:
            return 0
        return sum(self.d(sides) for _ in range(count)) + bonus

    def roll_check(
        self, request: DiceRollRequest, world: WorldState, heroic: bool = False
    ) -> DiceRoll:
        """
        Roll d20 + skill bonus against the request's DC.

        A natural 20 is a critical success and a natural 1 a critical failure
        regardless of the total. Heroic checks roll twice and keep the best.
        """
        roller_id, roller_name, modifier = resolve_roller(request.roller, request.check, world)
        die = self.d(20)
        notes = None
        if heroic:
            die = max(die, self.d(20))
            notes = "Heroic"
        total = die + modifier

        if die == 20:
            outcome = RollOutcome.CRITICAL_SUCCESS
        elif die == 1:
            outcome = RollOutcome.CRITICAL_FAIL
        elif total >= request.dc:
            outcome = RollOutcome.SUCCESS
        else:
            outcome = RollOutcome.FAIL

        roll = DiceRoll(
            roller_id=roller_id,
            roller_name=roller_name,
            check=request.check,
            die=die,
            modifier=modifier,
            total=total,
            dc=request.dc,
            outcome=outcome,
            notes=notes,
        )
        logger.log(VERBOSE, f"[Dice] {roll.summary}")
        return roll

    def roll_checks(
        self, requests: Iterable[DiceRollRequest], world: WorldState, heroic: bool = False
    ) -> List[DiceRoll]:
        return [self.roll_check(request, world, heroic) for request in requests]


def _bonus(bonuses, check: str) -> int:
    wanted = check.strip().lower()
    for name, value in bonuses.items():
        if name.lower() == wanted:
            return int(value)
    return 0


def resolve_roller(roller: str, check: str, world: WorldState) -> Tuple[str, str, int]:
    """Map a roller label onto (id, display name, modifier); unknown labels roll as the player."""
    label = (roller or "").strip().lower()
    for companion in world.companions:
        if companion.name.lower() == label or companion.id == roller:
            return companion.id, companion.name, _bonus(companion.skill_bonuses, check)
    player = world.player
    return PLAYER_ID, player.name, _bonus(player.skill_bonuses, check)


def build_dice_truth(rolls: Iterable[DiceRoll]) -> str:
    lines = [roll.summary for roll in rolls]
    if not lines:
        return ""
    return DICE_TRUTH_HEADER + "\n" + "\n".join(lines)
