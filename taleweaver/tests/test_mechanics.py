"""
Tests for the mechanics resolver: combat gate, skill checks, hazards and
combat escalation.
"""

import random
from unittest.mock import AsyncMock, MagicMock

import pytest

from taleweaver.engine.mechanics import COMBAT_READINESS_CHECK, MechanicsResolver
from taleweaver.schemas.assessment import Assessment, IntentType
from taleweaver.schemas.mechanics import DiceRollRequest, RollOutcome
from taleweaver.schemas.services import CombatRelevance
from taleweaver.schemas.world import CombatState, Combatant


def make_rng(d20: int = 10, d100: int = 10, uniform: float = 0.1) -> MagicMock:
    rng = MagicMock(spec=random.Random)
    rng.randint.side_effect = lambda a, b: d100 if b == 100 else min(d20, b)
    rng.random.return_value = uniform
    rng.choice.side_effect = lambda seq: seq[0]
    return rng


def make_resolver(rng, should_trigger=False, notes="Bandits want the cargo."):
    verifier = MagicMock()
    verifier.verify = AsyncMock(
        return_value=CombatRelevance(should_trigger_combat=should_trigger, reason="Guards nearby")
    )
    expander = MagicMock()
    expander.expand = AsyncMock(return_value=notes)
    return MechanicsResolver(verifier, expander, rng=rng), verifier, expander


class TestCombatGate:
    """Test the combat readiness audit"""

    @pytest.mark.asyncio
    async def test_attack_in_empty_scene_is_cancelled(self, world):
        resolver, _, expander = make_resolver(make_rng(d100=10))
        assessment = Assessment(intent_type=IntentType.COMBAT)

        result = await resolver.resolve(assessment, world)

        assert result.is_hostile_intent is False
        assert "GHOST COMBAT CANCELLED" in result.directive
        assert result.rolls[0].check == COMBAT_READINESS_CHECK
        assert result.rolls[0].outcome == RollOutcome.NO_ENCOUNTER
        expander.expand.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_attack_in_empty_scene_with_real_dice(self, world):
        """Hostility 0 only encounters on d100 >= 75; seeded runs stay deterministic."""
        resolver, _, _ = make_resolver(random.Random(0))
        result = await resolver.resolve(Assessment(intent_type=IntentType.COMBAT), world)
        roll = result.rolls[0]
        assert result.is_hostile_intent == (roll.total >= 75)

    @pytest.mark.asyncio
    async def test_ambush_keeps_hostile_intent(self, world):
        resolver, _, expander = make_resolver(make_rng(d100=90))

        result = await resolver.resolve(Assessment(intent_type=IntentType.COMBAT), world)

        assert result.is_hostile_intent is True
        assert result.encounter is not None
        assert result.plot_notes == "Bandits want the cargo."
        assert "PROCEDURAL AMBUSH" in result.directive
        assert result.encounter.summary not in result.directive
        expander.expand.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_first_discovery_raises_hostility(self, world):
        world.zones["0-0"].visited = False
        resolver, _, _ = make_resolver(make_rng(d100=1))

        result = await resolver.resolve(Assessment(intent_type=IntentType.COMBAT), world)

        assert result.rolls[0].modifier == 75
        assert result.rolls[0].outcome == RollOutcome.ENCOUNTER

    @pytest.mark.asyncio
    async def test_staged_hostiles_skip_audit(self, world):
        world.combat = CombatState(enemies=[Combatant(name="Bandit")])
        resolver, _, _ = make_resolver(make_rng())

        result = await resolver.resolve(Assessment(intent_type=IntentType.COMBAT), world)

        assert result.is_hostile_intent is True
        assert result.rolls == []


class TestSkillResolution:
    """Test skill checks and their consequences"""

    @pytest.mark.asyncio
    async def test_failed_stealth_escalates_to_combat(self, world):
        resolver, verifier, expander = make_resolver(make_rng(d20=5), should_trigger=True)
        assessment = Assessment(
            intent_type=IntentType.SKILL, requests=[DiceRollRequest(check="Stealth", dc=14)]
        )

        result = await resolver.resolve(assessment, world)

        assert result.rolls[0].outcome == RollOutcome.FAIL
        assert result.is_hostile_intent is True
        assert result.plot_notes == "Bandits want the cargo."
        assert "COMBAT ENCOUNTER" in result.directive
        verifier.verify.assert_awaited_once()
        expander.expand.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_check_without_escalation_is_setback(self, world):
        resolver, _, expander = make_resolver(make_rng(d20=5), should_trigger=False)
        assessment = Assessment(
            intent_type=IntentType.SKILL, requests=[DiceRollRequest(check="Stealth", dc=14)]
        )

        result = await resolver.resolve(assessment, world)

        assert result.is_hostile_intent is False
        assert "SKILL SETBACK" in result.directive
        expander.expand.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_success_needs_no_directive(self, world):
        resolver, verifier, _ = make_resolver(make_rng(d20=15))
        assessment = Assessment(
            intent_type=IntentType.SKILL, requests=[DiceRollRequest(check="Stealth", dc=14)]
        )

        result = await resolver.resolve(assessment, world)

        assert result.directive == ""
        assert result.dice_truth.startswith("The dice have spoken:")
        verifier.verify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_critical_failure_springs_hazard(self, world):
        resolver, verifier, _ = make_resolver(make_rng(d20=1, d100=10, uniform=0.1))
        assessment = Assessment(
            intent_type=IntentType.SKILL, requests=[DiceRollRequest(check="Athletics", dc=12)]
        )

        result = await resolver.resolve(assessment, world)

        assert result.hazard is not None
        assert result.hazard.target_ids == ["player"]
        assert "HAZARD TRIGGERED" in result.directive
        assert result.hp_changes == {"player": -1}
        roll = result.rolls[0]
        assert roll.notes == "Hazard: Minor Hazard"
        assert roll.hp_change.previous_hp == 10
        assert roll.hp_change.new_hp == 9
        verifier.verify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_critical_social_failure_is_not_hazard(self, world):
        resolver, verifier, _ = make_resolver(make_rng(d20=1))
        assessment = Assessment(
            intent_type=IntentType.SKILL, requests=[DiceRollRequest(check="Persuasion", dc=12)]
        )

        result = await resolver.resolve(assessment, world)

        assert result.hazard is None
        verifier.verify.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_expansion_failure_uses_deterministic_notes(self, world):
        resolver, _, expander = make_resolver(make_rng(d20=5), should_trigger=True)
        expander.expand.side_effect = RuntimeError("service down")
        assessment = Assessment(
            intent_type=IntentType.SKILL, requests=[DiceRollRequest(check="Stealth", dc=14)]
        )

        result = await resolver.resolve(assessment, world)

        assert result.is_hostile_intent is True
        assert result.encounter.entity_type in result.plot_notes
