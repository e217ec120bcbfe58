"""
Mechanics Resolver

Decides the mechanical truth of a turn before any prose is written:

1. Combat intent with nobody staged to fight runs a "Combat Readiness Audit"
   threat roll. An encounter becomes an ambush; otherwise the hostile intent
   is cancelled and the narrator is forbidden to invent a fight.
2. Skill intent rolls every requested check. Critical failures on physical
   checks spring hazards; plain failures ask the combat-relevance verifier
   whether the failure escalates, and fall back to a setback otherwise.
"""

import random
from typing import List, Optional

from taleweaver.schemas.assessment import Assessment, IntentType
from taleweaver.schemas.mechanics import (
    DiceRoll,
    HazardEvent,
    HpChange,
    MechanicsResult,
    RollOutcome,
)
from taleweaver.schemas.world import PLAYER_ID, WorldState
from taleweaver.utils.locale import compute_hostility
from taleweaver.utils.logger import get_logger

from .dice import DiceRoller, build_dice_truth
from .encounters import (
    EncounterEngine,
    build_ambush_directive,
    build_combat_escalation_directive,
    build_ghost_combat_directive,
    build_hazard_directive,
    build_skill_setback_directive,
    is_hazardous_check,
)
from .services import CombatRelevanceVerifier, PlotExpander, fallback_plot_notes

logger = get_logger(__name__)

COMBAT_READINESS_CHECK = "Combat Readiness Audit"


class MechanicsResolver:
    def __init__(
        self,
        verifier: CombatRelevanceVerifier,
        plot_expander: PlotExpander,
        rng: Optional[random.Random] = None,
    ):
        rng = rng or random.Random()
        self.verifier = verifier
        self.plot_expander = plot_expander
        self.encounters = EncounterEngine(rng)
        self.dice = DiceRoller(rng)

    async def resolve(
        self, assessment: Assessment, world: WorldState, heroic: bool = False
    ) -> MechanicsResult:
        result = MechanicsResult(is_hostile_intent=assessment.intent_type == IntentType.COMBAT)

        if result.is_hostile_intent:
            await self._combat_gate(world, result)

        if assessment.intent_type == IntentType.SKILL and assessment.requests:
            await self._skill_checks(assessment, world, heroic, result)

        result.dice_truth = build_dice_truth(result.rolls)
        logger.info(
            f"[Mechanics] {len(result.rolls)} roll(s), hostile={result.is_hostile_intent}, "
            f"directive={'yes' if result.directive else 'no'}"
        )
        return result

    async def _combat_gate(self, world: WorldState, result: MechanicsResult) -> None:
        staged = world.combat.staged_hostiles if world.combat else []
        if staged:
            return

        zone = world.current_zone
        hostility = compute_hostility(
            zone.hostility if zone else 0,
            first_discovery=zone is not None and not zone.visited,
        )
        roll, matrix = self.encounters.roll_threat(COMBAT_READINESS_CHECK, hostility)
        result.rolls.append(roll)

        if roll.outcome == RollOutcome.ENCOUNTER and matrix is not None:
            notes = await self._expand(matrix, world)
            result.encounter = matrix
            result.plot_notes = notes
            result.directive = build_ambush_directive(matrix, notes)
        else:
            result.is_hostile_intent = False
            result.directive = build_ghost_combat_directive()

    async def _skill_checks(
        self, assessment: Assessment, world: WorldState, heroic: bool, result: MechanicsResult
    ) -> None:
        rolls = self.dice.roll_checks(assessment.requests, world, heroic)
        hazards: List[HazardEvent] = []
        resolved: List[DiceRoll] = []
        hp = {PLAYER_ID: world.player.hp}
        hp.update({c.id: c.hp for c in world.companions})

        for roll, request in zip(rolls, assessment.requests):
            if roll.outcome == RollOutcome.CRITICAL_FAIL and is_hazardous_check(
                roll.check, request.hazardous
            ):
                hazard, damaged = self._spring_hazard(roll, world, hp, result)
                hazards.append(hazard)
                resolved.extend(damaged)
            else:
                resolved.append(roll)
        result.rolls.extend(resolved)

        if hazards:
            first = hazards[0]
            total_damage = sum(-delta for delta in result.hp_changes.values() if delta < 0)
            result.hazard = first
            result.directive += build_hazard_directive(first.tier, first.scope, total_damage)
            return

        failed = next((r for r in resolved if r.outcome.is_failure), None)
        if failed is None:
            return

        locale = world.current_poi or world.current_locale or "Open Area"
        verdict = await self.verifier.verify(
            failed.check, locale, "User action attempted", world.world_summary
        )
        if verdict.should_trigger_combat:
            matrix = self.encounters.roll_matrix()
            notes = await self._expand(matrix, world)
            result.is_hostile_intent = True
            result.encounter = matrix
            result.plot_notes = notes
            result.directive = build_combat_escalation_directive(verdict.reason, matrix, notes)
        else:
            result.directive = build_skill_setback_directive(failed.check, verdict.reason)

    def _spring_hazard(self, roll: DiceRoll, world: WorldState, hp: dict, result: MechanicsResult):
        party_ids = [PLAYER_ID] + [c.id for c in world.active_companions if not c.is_ship]
        hazard = self.encounters.roll_hazard(world.player.level, roll.roller_id, party_ids)

        rolls = []
        for target_id in hazard.target_ids:
            damage = max(0, self.dice.roll_expression(hazard.damage_dice))
            previous = hp.get(target_id, 0)
            new = max(0, previous - damage)
            hp[target_id] = new
            result.hp_changes[target_id] = result.hp_changes.get(target_id, 0) - (previous - new)
            if target_id == roll.roller_id:
                rolls.append(
                    roll.model_copy(
                        update={
                            "notes": f"Hazard: {hazard.label}",
                            "hp_change": HpChange(previous_hp=previous, new_hp=new),
                            "hazard_tier": hazard.tier,
                            "hazard_scope": hazard.scope,
                        }
                    )
                )
        logger.info(
            f"[Mechanics] Hazard {hazard.tier.value}/{hazard.scope.value} sprung by {roll.roller_name}"
        )
        return hazard, rolls or [roll]

    async def _expand(self, matrix, world: WorldState) -> str:
        try:
            return await self.plot_expander.expand(matrix, world.world_summary)
        except Exception as e:
            logger.warning(f"[Mechanics] Plot expansion failed: {e}")
            return fallback_plot_notes(matrix)
