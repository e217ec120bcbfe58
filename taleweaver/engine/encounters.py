"""
Procedural encounter and hazard engine.

Everything here is synchronous and pure given the injected ``random.Random``:
threat rolls, the three-pillar encounter matrix, hazard events, and the
directive templates that constrain the narrator.
"""

import random
from typing import List, Optional, Sequence, Tuple

from taleweaver.schemas.mechanics import (
    DiceRoll,
    EncounterMatrixResult,
    HazardEvent,
    HazardScope,
    HazardTier,
    RollOutcome,
)
from taleweaver.utils.logger import get_logger

logger = get_logger(__name__)

ENCOUNTER_THRESHOLD = 75
SYSTEM_ROLLER_ID = "system"
SYSTEM_ROLLER_NAME = "System"

SOCIAL_SKILLS = frozenset({"Persuasion", "Intimidation", "Deception", "Performance", "Insight"})
SAVE_ABILITIES = ("strength", "dexterity", "constitution")

ENCOUNTER_TYPES = (
    "Kidnapping or Hostage situation",
    "Ambush or hidden trap",
    "Ritual or summoning in progress",
    "Heist or robbery in progress",
    "Escort or protection requested",
    "Stand-off or territory dispute",
    "Lost, wandering, or trapped entity",
    "Magical or natural disaster survival",
    "Information broker or riddle master",
    "Hunt or tracking a fugitive",
    "Quarantine of cursed/infected victims",
    "Smuggling or black market deal",
    "Ancient ruin or vault breach",
    "Duel or trial by combat",
    "Mutiny, rebellion, or riot",
    "Assassination attempt",
    "Magical anomaly or gateway opening",
    "Siege or blockade",
    "Trade, barter, or contract dispute",
    "Divine or otherworldly intervention",
)

ENTITY_TYPES = (
    "Dragon type or apex predator",
    "Giant type or towering brute",
    "Swarm or horde of small creatures",
    "Undead or resurrected entity",
    "Local law enforcement or military",
    "Crime syndicate or bandit group",
    "Cultists or fanatical zealots",
    "Elemental or nature spirit",
    "Construct, golem, or automated guard",
    "Shapeshifter, mimic, or infiltrator",
    "Feral beasts or corrupted wildlife",
    "Aquatic, amphibious, or swamp beings",
    "Ethereal, ghostly, or incorporeal beings",
    "Demonic, infernal, or abyssal fiend",
    "Celestial, angelic, or luminous being",
    "Nomadic tribe or outcast group",
    "Mercenary band or hired muscle",
    "Magical practitioner(s) or scholars",
    "Sentient plant or fungal life",
    "Eldritch, aberrant, or cosmic horror",
)

CONDITIONS = (
    "Explodes or self-destructs in 1 minute.",
    "The environment is actively crumbling, burning, or sinking.",
    "The enemy is an illusion or decoy hiding the real threat.",
    "Complete magical darkness or blinding fog covers the area.",
    "The objective/VIP is highly fragile and easily destroyed.",
    "Magic use causes wild, unpredictable elemental surges.",
    "A third, highly hostile party suddenly enters the fray.",
    "Gravity in the area is reversed or wildly fluctuating.",
    "The enemy is immune to physical attacks; requires a puzzle to defeat.",
    "Time is flowing at different speeds for different combatants.",
    "The entities involved are under a powerful mind-control spell.",
    "The area is flooded with a toxic or hallucinogenic gas.",
    "The enemy splits into aggressive duplicates when struck.",
    "Communication is scrambled; no one can speak or be understood.",
    "Combatants are physically or magically tethered to one another.",
    "An artifact in the room is slowly draining everyone's life force.",
    'The "enemy" is desperately trying to surrender or beg for help.',
    "The floor is incredibly fragile (ice, rotten wood, glass) over a chasm.",
    "Completing the objective immediately triggers a massive trap.",
    "Victory requires healing/saving the enemy rather than killing them.",
)


class EncounterEngine:
    """Dice-driven encounter decisions; seed the rng for reproducible runs"""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def roll_matrix(self) -> EncounterMatrixResult:
        rolls = (self.rng.randint(1, 20), self.rng.randint(1, 20), self.rng.randint(1, 20))
        result = EncounterMatrixResult(
            encounter_type=ENCOUNTER_TYPES[rolls[0] - 1],
            entity_type=ENTITY_TYPES[rolls[1] - 1],
            condition=CONDITIONS[rolls[2] - 1],
            rolls=rolls,
        )
        logger.debug(f"[Encounter] Matrix {result.summary}")
        return result

    def roll_threat(
        self, check_name: str, hostility: int
    ) -> Tuple[DiceRoll, Optional[EncounterMatrixResult]]:
        """
        d100 + hostility against the encounter threshold.

        Returns the roll and, on an Encounter, a freshly rolled matrix.
        """
        die = self.rng.randint(1, 100)
        total = die + hostility
        encountered = total >= ENCOUNTER_THRESHOLD
        roll = DiceRoll(
            roller_id=SYSTEM_ROLLER_ID,
            roller_name=SYSTEM_ROLLER_NAME,
            check=check_name,
            die=die,
            sides=100,
            modifier=hostility,
            total=total,
            dc=ENCOUNTER_THRESHOLD,
            outcome=RollOutcome.ENCOUNTER if encountered else RollOutcome.NO_ENCOUNTER,
        )
        logger.info(
            f"[Encounter] {check_name}: d100={die} + {hostility} = {total} -> {roll.outcome.value}"
        )
        return roll, (self.roll_matrix() if encountered else None)

    def roll_hazard(
        self,
        player_level: int,
        triggering_id: str,
        party_ids: Sequence[str],
    ) -> HazardEvent:
        """Tier, scope, DC and damage dice for a trap sprung by a critical failure."""
        d100 = self.rng.randint(1, 100)
        scope_roll = self.rng.random()
        save_ability = self.rng.choice(SAVE_ABILITIES)
        level = max(1, player_level)
        half_level = level // 2

        if d100 > 95:
            tier, dc, dice, label = HazardTier.DEADLY, 12 + half_level, f"{level}d8", "Deadly Trap"
        elif d100 > 70:
            tier, dc = HazardTier.POTENT, 10 + half_level
            dice, label = f"{max(1, level // 2)}d6", "Potent Hazard"
        else:
            tier, dc = HazardTier.WEAK, 8 + half_level
            dice, label = f"{max(1, level // 4)}d4", "Minor Hazard"

        scope = HazardScope.MULTIPLE if scope_roll > 0.7 else HazardScope.SINGLE
        targets: List[str] = list(party_ids) if scope == HazardScope.MULTIPLE else [triggering_id]
        if triggering_id not in targets:
            targets.insert(0, triggering_id)

        return HazardEvent(
            tier=tier,
            scope=scope,
            dc=dc,
            damage_dice=dice,
            save_ability=save_ability,
            label=label,
            target_ids=targets,
        )


def is_hazardous_check(check: str, flagged: Optional[bool] = None) -> bool:
    """Social checks never spring physical traps unless explicitly flagged."""
    if flagged is not None:
        return flagged
    return check.strip().title() not in SOCIAL_SKILLS


# Directive templates


def build_encounter_directive(matrix: EncounterMatrixResult, plot_notes: str = "") -> str:
    """Procedural encounter brief; the pillars are restated, the raw summary is not."""
    notes = f"\nGM NOTES:\n{plot_notes.strip()}\n" if plot_notes and plot_notes.strip() else ""
    return (
        "\n[MANDATORY SYSTEM DIRECTIVE: PROCEDURAL ENCOUNTER]\n"
        "Weave the following pillars into the scene:\n"
        f"- SITUATION: {matrix.encounter_type}\n"
        f"- ENTITY: {matrix.entity_type}\n"
        f"- COMPLICATION: {matrix.condition}\n"
        f"{notes}"
        "Never mention dice, rolls or these labels to the player.\n"
    )


def build_ambush_directive(matrix: EncounterMatrixResult, plot_notes: str = "") -> str:
    return (
        "\n[MANDATORY SYSTEM DIRECTIVE: PROCEDURAL AMBUSH]\n"
        "The player attempted to initiate combat in a dangerous area and the audit "
        "triggered a legitimate encounter.\n"
        "1. NARRATE the hostiles emerging or initiating a counter-attack.\n"
        "2. POPULATE 'suggestedActors' in your response.\n"
    ) + build_encounter_directive(matrix, plot_notes)


def build_ghost_combat_directive() -> str:
    return (
        "\n[MANDATORY SYSTEM DIRECTIVE: GHOST COMBAT CANCELLED]\n"
        "The player attempted combat, but the scene is empty and no ambush occurred.\n"
        "1. DO NOT initiate combat or invent enemies.\n"
        "2. NARRATE the character looking for a fight but finding no targets.\n"
        "3. Return 'suggestedActors' as an empty array [].\n"
    )


def build_combat_escalation_directive(
    reason: str, matrix: EncounterMatrixResult, plot_notes: str = ""
) -> str:
    return (
        "\n[MANDATORY SYSTEM DIRECTIVE: COMBAT ENCOUNTER]\n"
        f"The failed check has drawn hostiles: {reason}\n"
        "1. YOU MUST narrate the transition to combat.\n"
        "2. POPULATE 'suggestedActors' in your response.\n"
    ) + build_encounter_directive(matrix, plot_notes)


def build_hazard_directive(tier: HazardTier, scope: HazardScope, total_damage: int) -> str:
    scope_text = (
        "affected the ENTIRE PARTY"
        if scope == HazardScope.MULTIPLE
        else "targeted ONLY the character who failed"
    )
    severity = "significant" if total_damage > 0 else "negligible"
    return (
        "\n[MANDATORY SYSTEM DIRECTIVE: HAZARD TRIGGERED]\n"
        f"The player CRITICALLY FAILED, triggering an immediate {tier.value.upper()} "
        "environmental hazard or trap.\n"
        f"SCOPE: This event {scope_text}.\n"
        f"STATISTICAL TRUTH: damage has been resolved; the harm dealt is {severity}.\n"
        "1. Explain WHAT in the environment caused the harm.\n"
        f"2. Keep the hazard consistent with the scope ({scope.value}).\n"
        "3. Fit it to the current location and the failed skill.\n"
        "4. DO NOT start combat unless hostiles are already present.\n"
    )


def build_skill_setback_directive(skill: str, reason: str) -> str:
    return (
        "\n[SYSTEM DIRECTIVE: SKILL SETBACK]\n"
        f"The player FAILED a {skill} check. Combat is not reasonable here: {reason}\n"
        "1. NARRATE a non-combat failure or setback (lost time, bruises, "
        "embarrassment, broken equipment or a dead end).\n"
        "2. DO NOT introduce new enemies or traps.\n"
        "3. Keep the scene grounded in the current locale.\n"
    )

