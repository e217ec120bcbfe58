"""
Secondary collaborators of the turn pipeline.

Each collaborator is one structured call to the Narrative Service whose
reply is decoded against its schema. Any failure, whether transport, parse
or validation, returns that schema's documented default so a caller never
has to handle an exception.
"""

from typing import List, Optional, Type, TypeVar

from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel

from taleweaver import prompts
from taleweaver.providers.base import BaseProvider
from taleweaver.schemas.mechanics import EncounterMatrixResult
from taleweaver.schemas.services import (
    AuditResult,
    CombatRelevance,
    HousekeepingResult,
    LocaleResolution,
    ObjectiveCheck,
    schema_for,
)
from taleweaver.schemas.validation import decode_or_default
from taleweaver.schemas.world import ChatMessage, Objective, StoryLogEntry, WorldState
from taleweaver.utils.logger import get_logger
from taleweaver.utils.retry import RetryPolicy

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class ServiceClient:
    """Shared plumbing: build messages, run under the retry policy, decode"""

    name = "service"

    def __init__(self, provider: BaseProvider, policy: Optional[RetryPolicy] = None):
        self.provider = provider
        self.policy = policy or RetryPolicy.single_attempt()

    async def _ask_text(self, system: str, user: str) -> Optional[str]:
        messages = [SystemMessage(content=system), HumanMessage(content=user)]
        try:
            response = await self.policy.run(
                lambda: self.provider.chat(messages), label=self.name
            )
        except Exception as e:
            logger.warning(f"[{self.name}] Call failed: {e}")
            return None
        return response.content

    async def _ask(
        self, system: str, user: str, model: Type[ModelT], default: ModelT
    ) -> ModelT:
        messages = [SystemMessage(content=system), HumanMessage(content=user)]
        try:
            response = await self.policy.run(
                lambda: self.provider.chat(messages, json_schema=schema_for(model)),
                label=self.name,
            )
        except Exception as e:
            logger.warning(f"[{self.name}] Call failed, using default: {e}")
            return default
        return decode_or_default(response.content, model, default, label=self.name)


class LocaleAgent(ServiceClient):
    """Validates that a narrated destination is physically reachable"""

    name = "LocaleAgent"

    async def resolve(self, destination: str, world: WorldState, narration: str = "") -> LocaleResolution:
        zone = world.current_zone
        # Fallback passes validation under the requested name
        default = LocaleResolution(name=destination, validation_passed=True)
        user = prompts.LOCALE_USER.format(
            destination=destination,
            zone=zone.name if zone else "Unknown",
            zone_description=zone.description if zone else "",
            site=world.current_poi or world.current_locale or "Open Area",
            known_sites=", ".join(zone.sites) if zone and zone.sites else "none",
            narration=narration[:600],
        )
        result = await self._ask(prompts.LOCALE_SYSTEM, user, LocaleResolution, default)
        if not result.name:
            result = result.model_copy(update={"name": destination})
        return result


class CombatRelevanceVerifier(ServiceClient):
    name = "CombatRelevance"

    async def verify(
        self, check: str, locale: str, scene: str, world_summary: str = ""
    ) -> CombatRelevance:
        user = prompts.RELEVANCE_USER.format(
            check=check, locale=locale, scene=scene, world_summary=world_summary
        )
        return await self._ask(prompts.RELEVANCE_SYSTEM, user, CombatRelevance, CombatRelevance())


def fallback_plot_notes(matrix: EncounterMatrixResult) -> str:
    """Deterministic notes when the expander is unavailable."""
    return (
        f"{matrix.entity_type} are at the heart of this scene. "
        f"The situation: {matrix.encounter_type.lower()}. "
        f"Complication: {matrix.condition}"
    )


class PlotExpander(ServiceClient):
    name = "PlotExpander"

    async def expand(self, matrix: EncounterMatrixResult, world_summary: str = "") -> str:
        user = prompts.PLOT_EXPANSION_USER.format(
            encounter_type=matrix.encounter_type,
            entity_type=matrix.entity_type,
            condition=matrix.condition,
            world_summary=world_summary or "Unknown world.",
        )
        notes = await self._ask_text(prompts.PLOT_EXPANSION_SYSTEM, user)
        if not notes or not notes.strip():
            return fallback_plot_notes(matrix)
        return notes.strip()


class Auditor(ServiceClient):
    name = "Auditor"

    async def audit(self, narration: str, dice_truth: str, world: WorldState) -> AuditResult:
        npcs = "; ".join(
            f"{n.id}: {n.name} ({n.status.value}) at {n.current_poi or 'Unknown'}" for n in world.npcs
        )
        user = prompts.AUDITOR_USER.format(
            narration=narration,
            dice_truth=dice_truth or "None.",
            site=world.current_poi or world.current_locale or "Open Area",
            npcs=npcs or "none",
            names=", ".join(world.registered_names()),
        )
        return await self._ask(prompts.AUDITOR_SYSTEM, user, AuditResult, AuditResult())


class Housekeeper(ServiceClient):
    name = "Housekeeper"

    async def reconcile(
        self, narration: str, player_text: str, world: WorldState, registry_ids: List[str]
    ) -> HousekeepingResult:
        registry = "; ".join(
            f"{n.id}: {n.name} (relationship {n.relationship})"
            for n in [*world.npcs, *world.companions]
            if n.id in registry_ids
        )
        party = ", ".join(
            [f"player: {world.player.name}"] + [f"{c.id}: {c.name}" for c in world.active_companions]
        )
        objectives = "; ".join(o.title for o in world.objectives if o.status == "active")
        user = prompts.HOUSEKEEPER_USER.format(
            narration=narration,
            player_text=player_text,
            registry=registry or "none",
            party=party,
            objectives=objectives or "none",
        )
        return await self._ask(
            prompts.HOUSEKEEPER_SYSTEM, user, HousekeepingResult, HousekeepingResult()
        )


def format_story_entries(entries: List[StoryLogEntry]) -> str:
    return "\n".join(
        f"- [{e.timestamp or 'Unknown'} @ {e.location or 'Unknown'}] {e.summary}: {e.content}"
        for e in entries
    )


def format_exchange(messages: List[ChatMessage]) -> str:
    return "\n".join(f"{m.sender}: {m.content}" for m in messages) or "none"


class StorySummarizer(ServiceClient):
    """Prose summaries used to compress the story log; None when the call fails"""

    name = "StorySummarizer"

    async def summarize_day(
        self, entries: List[StoryLogEntry], previous: List[StoryLogEntry]
    ) -> Optional[str]:
        user = prompts.DAY_SUMMARY_USER.format(
            previous=format_story_entries(previous[-2:]) or "none",
            entries=format_story_entries(entries),
        )
        return self._clean(await self._ask_text(prompts.STORY_SUMMARY_SYSTEM, user))

    async def summarize_archive(self, entries: List[StoryLogEntry]) -> Optional[str]:
        user = prompts.ARCHIVE_SUMMARY_USER.format(entries=format_story_entries(entries))
        return self._clean(await self._ask_text(prompts.STORY_SUMMARY_SYSTEM, user))

    def _clean(self, text: Optional[str]) -> Optional[str]:
        if not text or not text.strip():
            return None
        return text.strip()


class ObjectiveAdvisor(ServiceClient):
    name = "ObjectiveAdvisor"

    def _user(self, objective: Objective, recent: List[ChatMessage]) -> str:
        return prompts.OBJECTIVE_USER.format(
            title=objective.title,
            content=objective.content or "No description available.",
            history=format_exchange(recent[-3:]),
        )

    async def check(self, objective: Objective, recent: List[ChatMessage]) -> ObjectiveCheck:
        return await self._ask(
            prompts.OBJECTIVE_CHECK_SYSTEM,
            self._user(objective, recent),
            ObjectiveCheck,
            ObjectiveCheck(reason="Analysis failed."),
        )

    async def suggest_action(self, objective: Objective, recent: List[ChatMessage]) -> str:
        text = await self._ask_text(prompts.OBJECTIVE_FOLLOWUP_SYSTEM, self._user(objective, recent))
        return (text or "").strip()
