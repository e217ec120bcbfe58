"""
Context Assembler

Turns a world snapshot plus the classifier's requested data modules into the
single instruction string handed to the narrator. Sections are tiered:

- always: persona, temporal context, core position, adventure brief, GM notes
- ``world_lore`` / ``location_details``: resonant lore, local sites, neighbours
- ``recent_history``: last story entries plus semantically resonant echoes
- ``social_registry``: NPCs present with composite memories, name protection
- ``core_stats`` / ``inventory`` / ``combat_state``: party sheet details
"""

from typing import Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field

from taleweaver import prompts
from taleweaver.schemas.assessment import ContextKey
from taleweaver.schemas.world import WorldState
from taleweaver.utils.game_time import get_time_period
from taleweaver.utils.locale import adjacent_coords, is_locale_match
from taleweaver.utils.logger import get_logger

from .memory_search import (
    DEFAULT_THRESHOLD,
    format_memories,
    relevant_lore,
    relevant_memories,
    relevant_story,
)

logger = get_logger(__name__)

ISOLATION_MARKERS = ("space", "underground", "vault", "cave")


class ContextBundle(BaseModel):
    """Ordered named sections of the narrator instruction"""

    sections: Dict[str, str] = Field(default_factory=dict)
    registered_names: List[str] = Field(default_factory=list)

    @property
    def instruction(self) -> str:
        return "\n\n".join(text for text in self.sections.values() if text.strip())

    def with_directive(self, directive: str) -> str:
        if not directive or not directive.strip():
            return self.instruction
        return f"{self.instruction}\n\n{directive.strip()}"


def is_isolated(zone_description: str) -> bool:
    text = (zone_description or "").lower()
    return any(marker in text for marker in ISOLATION_MARKERS)


class ContextAssembler:
    def __init__(self, threshold: float = DEFAULT_THRESHOLD):
        self.threshold = threshold

    def build(
        self,
        world: WorldState,
        keys: Iterable[ContextKey],
        search_text: str = "",
        query_vector: Optional[Sequence[float]] = None,
        heroic: bool = False,
    ) -> ContextBundle:
        requested = set(keys)
        bundle = ContextBundle(registered_names=world.registered_names())

        bundle.sections["persona"] = prompts.NARRATOR_PERSONA
        bundle.sections["temporal"] = self._temporal(world)
        bundle.sections["core"] = self._core(world, requested)
        if heroic:
            bundle.sections["heroic"] = prompts.HEROIC_DIRECTIVE

        if ContextKey.WORLD_LORE in requested or ContextKey.LOCATION_DETAILS in requested:
            bundle.sections["resonance"] = self._resonance(
                world, requested, search_text, query_vector
            )
        if ContextKey.RECENT_HISTORY in requested:
            bundle.sections["recency"] = self._recency(world, search_text, query_vector)
        if ContextKey.SOCIAL_REGISTRY in requested:
            bundle.sections["social"] = self._social(world, search_text, query_vector)
        if requested & {ContextKey.CORE_STATS, ContextKey.INVENTORY, ContextKey.COMBAT_STATE}:
            bundle.sections["party"] = self._party(world, requested)

        bundle.sections["invariants"] = prompts.CORE_INVARIANTS

        logger.debug(
            f"[Context] Built {len(bundle.sections)} sections "
            f"({len(bundle.instruction)} chars) for keys {sorted(k.value for k in requested)}"
        )
        return bundle

    def _temporal(self, world: WorldState) -> str:
        period = get_time_period(world.current_time)
        text = prompts.TEMPORAL_CONTEXT.format(time=world.current_time, period=period)
        zone = world.current_zone
        if zone is not None and is_isolated(zone.description):
            text += "\n" + prompts.ISOLATED_ENVIRONMENT_OVERRIDE
        return text

    def _core(self, world: WorldState, requested: set) -> str:
        zone = world.current_zone
        zone_name = zone.name if zone else "Unknown"
        site = world.current_poi or world.current_locale or "Open Area"
        lines = [
            "### TIER 1: CORE REALITY",
            f"[CURRENT POSITION]: Zone: {zone_name} ({world.current_coordinates}) | Locale: {site}",
        ]
        if ContextKey.LOCATION_DETAILS in requested:
            description = zone.description if zone and zone.description else "Uncharted territory."
            lines.append(f"[ZONE DESCRIPTION]: {description}")
        lines.append(f"[ADVENTURE BRIEF]: {world.adventure_brief or 'Proceed with exploration.'}")
        if ContextKey.ACTIVE_QUESTS in requested:
            tracked = world.tracked_objective
            quest = f'"{tracked.title}" - {tracked.content}' if tracked else "None."
            lines.append(f"[PRIMARY TRACKED QUEST]: {quest}")
            others = [o.title for o in world.objectives if o.status == "active" and o is not tracked]
            if others:
                lines.append(f"[OTHER OBJECTIVES]: {', '.join(others)}")
        if world.gm_notes:
            lines.append(f"[MANDATORY PLOT ANCHOR]: {world.gm_notes}")
        else:
            lines.append("[GM NOTES]: No active encounter brief.")
        return "\n".join(lines)

    def _resonance(
        self,
        world: WorldState,
        requested: set,
        search_text: str,
        query_vector: Optional[Sequence[float]],
    ) -> str:
        lines = ["### TIER 2: WORLD RESONANCE"]
        lore = relevant_lore(search_text, world.knowledge, query_vector, self.threshold)
        if lore:
            lines.extend(f"[RESONANT LORE ({e.title})]: {e.content}" for e in lore)
        else:
            lines.append("No relevant historical lore detected.")

        if ContextKey.LOCATION_DETAILS in requested:
            zone = world.current_zone
            sites = zone.sites if zone else []
            lines.append("[LOCAL POINTS OF INTEREST]:")
            lines.append("\n".join(f"- {s}" for s in sites) or "No specific local landmarks.")
            neighbours = [
                world.zones[c]
                for c in adjacent_coords(world.current_coordinates)
                if c in world.zones and world.zones[c].visited
            ]
            for z in neighbours:
                lines.append(f"[ADJACENT: {z.name} ({z.coordinates})]: {z.description}")
        return "\n".join(lines)

    def _recency(
        self, world: WorldState, search_text: str, query_vector: Optional[Sequence[float]]
    ) -> str:
        entries = relevant_story(search_text, world.story_log, query_vector, self.threshold)
        recent_ids = {e.id for e in world.story_log[-3:]}
        lines = ["### TIER 3: NARRATIVE CONTINUITY"]
        echoes = [e for e in entries if e.id not in recent_ids]
        if echoes:
            lines.append("[HISTORICAL ECHOES]:")
            lines.extend(f"- (Archived Memory): {e.summary or e.content}" for e in echoes)
        lines.append("[RECENT DEEDS]:")
        recent = [e for e in entries if e.id in recent_ids]
        lines.append(
            "\n".join(f"- {e.summary or e.content}" for e in recent)
            or "The journey has just begun."
        )
        return "\n".join(lines)

    def _social(
        self, world: WorldState, search_text: str, query_vector: Optional[Sequence[float]]
    ) -> str:
        lines = ["### TIER 4: SOCIAL STATE", prompts.SOCIAL_RULES, "[ACTIVE SOCIAL CONTEXT]:"]
        here = world.current_poi or world.current_locale
        entries = []
        for npc in world.npcs:
            if npc.is_cleared:
                continue
            if not (npc.current_poi in ("Current", "With Party") or is_locale_match(npc.current_poi, here)):
                continue
            memories = format_memories(
                relevant_memories(search_text, npc.memories, query_vector, self.threshold)
            )
            if npc.is_dead:
                entries.append(f"- [CORPSE]: {npc.name}. [CONDITION]: Dead. [FINAL MEMORY]: {memories}")
                continue
            sentient = "YES" if npc.is_sentient else "NO"
            kind = "Vehicle" if npc.is_ship else "Personnel"
            visibility = " | [Visibility: Concealed]" if npc.is_shadowed else ""
            entries.append(
                f"- {npc.name} [STATUS: {npc.status.value}] [RELATIONSHIP: {npc.relationship}] "
                f"[TYPE: {kind}] [SENTIENT: {sentient}]{visibility} [MEMORIES: {memories}]: "
                f"{npc.description[:50]}"
            )
        for companion in world.active_companions:
            memories = format_memories(
                relevant_memories(search_text, companion.memories, query_vector, self.threshold)
            )
            entries.append(
                f"- {companion.name} [COMPANION] [RELATIONSHIP: {companion.relationship}] "
                f"[MEMORIES: {memories}]"
            )
        lines.append("\n".join(entries) or "No notable NPCs nearby.")
        lines.append(prompts.NAME_PROTECTION_RULE.format(names=", ".join(world.registered_names())))
        return "\n".join(lines)

    def _party(self, world: WorldState, requested: set) -> str:
        lines = ["### PARTY DETAILS"]
        player = world.player
        if ContextKey.CORE_STATS in requested:
            bonuses = ", ".join(f"{k} {v:+d}" for k, v in player.skill_bonuses.items()) or "none"
            lines.append(
                f"[PLAYER]: {player.name}, level {player.level} {player.race} {player.char_class}, "
                f"HP {player.hp}/{player.max_hp}, skills: {bonuses}"
            )
            for c in world.active_companions:
                lines.append(f"[COMPANION]: {c.name}, level {c.level}, HP {c.hp}/{c.max_hp}")
        if ContextKey.INVENTORY in requested:
            for owner, items in world.inventories.items():
                carried = ", ".join(f"{i.name} x{i.quantity}" for i in items) or "nothing"
                lines.append(f"[INVENTORY {owner}]: {carried}")
        if ContextKey.COMBAT_STATE in requested:
            if world.is_combat_active:
                foes = ", ".join(f"{e.name} ({e.difficulty})" for e in world.combat.staged_hostiles)
                lines.append(f"[COMBAT]: Round {world.combat.round}; hostiles: {foes or 'none staged'}")
            else:
                lines.append("[COMBAT]: No active engagement.")
        return "\n".join(lines)
