"""
Extraction / Audit Step

Runs after narration has been committed. The auditor and the housekeeper are
consulted concurrently and their replies are folded, together with the
narrator's structured updates, into a single AIUpdatePayload that the world
store applies in one commit. Every sub-step is independently fallible: a
failure is logged and that part of the update is skipped.
"""

import asyncio
from typing import Dict, List, Optional, Set, Tuple

from pydantic import BaseModel, Field

from taleweaver.schemas.assessment import IntentType
from taleweaver.schemas.mechanics import MechanicsResult
from taleweaver.schemas.narration import FALLBACK_SUMMARY, NarratorResponse, ObjectiveUpdate
from taleweaver.schemas.services import (
    AuditResult,
    HousekeepingResult,
    InventoryBatch,
    ItemDelta,
)
from taleweaver.schemas.updates import (
    AIUpdatePayload,
    ApplyTurnUpdate,
    BeginCombat,
    NPCMemoryDelta,
    RelationshipDelta,
    WorldEvent,
)
from taleweaver.schemas.world import (
    PLAYER_ID,
    Combatant,
    LoreEntry,
    NPCMemory,
    StoryLogEntry,
    WorldState,
)
from taleweaver.utils.locale import is_event_locale, is_locale_match, normalize_locale
from taleweaver.utils.logger import get_logger

from .dice import DiceRoller
from .embeddings import EmbeddingService
from .services import Auditor, Housekeeper, LocaleAgent
from .store import WorldStore

logger = get_logger(__name__)

STORY_SUMMARY_WORDS = 10
MAX_RELATIONSHIP_SHIFT = 10


class TurnRecord(BaseModel):
    """What the critical path hands to the detached extraction job"""

    message_id: str
    player_text: str
    intent_type: IntentType = IntentType.NARRATIVE
    response: NarratorResponse
    mechanics: MechanicsResult = Field(default_factory=MechanicsResult)
    traveled: bool = False


class ExtractionReport(BaseModel):
    engagement_confirmed: bool = False
    locale_rejected: bool = False
    payload: AIUpdatePayload = Field(default_factory=AIUpdatePayload)
    events: List[WorldEvent] = Field(default_factory=list)


def truncate_words(text: str, limit: int = STORY_SUMMARY_WORDS) -> str:
    words = (text or "").split()
    if len(words) <= limit:
        return " ".join(words)
    return " ".join(words[:limit]) + "..."


def merge_inventory_batches(batches: List[InventoryBatch]) -> List[InventoryBatch]:
    """Combine batches sharing owner and action; quantities of the same item add up."""
    merged: Dict[Tuple[str, str], Dict[str, ItemDelta]] = {}
    for batch in batches:
        items = merged.setdefault((batch.owner_id or PLAYER_ID, batch.action), {})
        for item in batch.items:
            key = normalize_locale(item.name)
            if key in items:
                current = items[key]
                items[key] = current.model_copy(update={"quantity": current.quantity + item.quantity})
            else:
                items[key] = item
    return [
        InventoryBatch(owner_id=owner, action=action, items=list(items.values()))
        for (owner, action), items in merged.items()
        if items
    ]


def inventory_messages(batches: List[InventoryBatch], world: WorldState) -> List[str]:
    messages = []
    for batch in batches:
        names = ", ".join(
            f"{i.name} x{i.quantity}" if i.quantity > 1 else i.name for i in batch.items
        )
        if batch.owner_id == PLAYER_ID:
            subject = "You"
        else:
            owner = next((c for c in world.companions if c.id == batch.owner_id), None)
            subject = owner.name if owner else batch.owner_id
        verb = "acquired" if batch.action == "add" else "lost"
        messages.append(f"{subject} {verb}: **{names}**")
    return messages


def eligible_registry(world: WorldState) -> List[str]:
    """Ids of the living, sentient characters the player can interact with here."""
    here = world.current_poi or world.current_locale
    ids = []
    for npc in world.npcs:
        if npc.is_dead or not npc.is_sentient or npc.is_cleared:
            continue
        if npc.current_poi in ("Current", "With Party") or is_locale_match(npc.current_poi, here):
            ids.append(npc.id)
    ids.extend(c.id for c in world.active_companions if c.is_sentient)
    return ids


class ExtractionStep:
    def __init__(
        self,
        store: WorldStore,
        auditor: Auditor,
        housekeeper: Housekeeper,
        locale_agent: LocaleAgent,
        embeddings: Optional[EmbeddingService] = None,
        dice: Optional[DiceRoller] = None,
    ):
        self.store = store
        self.auditor = auditor
        self.housekeeper = housekeeper
        self.locale_agent = locale_agent
        self.embeddings = embeddings
        self.dice = dice or DiceRoller()
        # In-flight counts; extraction jobs of consecutive turns may overlap
        self._auditing = 0
        self._housekeeping = 0

    @property
    def is_auditing(self) -> bool:
        return self._auditing > 0

    @property
    def is_housekeeping(self) -> bool:
        return self._housekeeping > 0

    async def run(self, record: TurnRecord) -> ExtractionReport:
        world = self.store.snapshot()
        response = record.response
        narration = response.narration
        registry = eligible_registry(world)

        audit, housekeeping = await asyncio.gather(
            self._audit(narration, record.mechanics.dice_truth, world),
            self._housekeep(narration, record.player_text, world, registry),
        )

        report = ExtractionReport()
        payload = report.payload
        report.engagement_confirmed = (
            (record.intent_type == IntentType.COMBAT and record.mechanics.is_hostile_intent)
            or response.active_engagement
            or audit.active_engagement
        )

        steps = [
            ("spatial", lambda: self._spatial_gate(record, audit, world, report)),
            ("npcs", lambda: self._npcs(response, audit, world, registry, payload)),
            ("inventory", lambda: self._inventory(housekeeping, world, payload)),
            ("relationships", lambda: self._relationships(housekeeping, world, registry, payload)),
            ("memories", lambda: self._memories(housekeeping, world, registry, report)),
            ("objectives", lambda: self._objectives(response, housekeeping, payload)),
            ("missed rolls", lambda: self._missed_rolls(record, audit, world, payload)),
            ("story", lambda: self._story(record, audit, world, report)),
        ]
        for name, step in steps:
            try:
                await step()
            except Exception as e:
                logger.error(f"[Extraction] {name} step failed: {e}", exc_info=True)

        payload.time_advance_minutes = max(0, audit.time_passed_minutes)
        if response.updates.gm_notes is not None:
            payload.gm_notes = response.updates.gm_notes
        if response.adventure_brief:
            payload.adventure_brief = response.adventure_brief

        await self._embed_new_entries(payload)

        report.events = self.store.apply(
            ApplyTurnUpdate(payload=payload, update_id=f"extract-{record.message_id}")
        )
        self._begin_combat_if_needed(report, response)

        logger.info(
            f"[Extraction] Committed turn {record.message_id}: "
            f"engagement={report.engagement_confirmed}, events={len(report.events)}"
        )
        return report

    async def _audit(self, narration: str, dice_truth: str, world: WorldState) -> AuditResult:
        self._auditing += 1
        try:
            return await self.auditor.audit(narration, dice_truth, world)
        except Exception as e:
            logger.error(f"[Extraction] Audit failed: {e}")
            return AuditResult()
        finally:
            self._auditing -= 1

    async def _housekeep(
        self, narration: str, player_text: str, world: WorldState, registry: List[str]
    ) -> HousekeepingResult:
        self._housekeeping += 1
        try:
            return await self.housekeeper.reconcile(narration, player_text, world, registry)
        except Exception as e:
            logger.error(f"[Extraction] Housekeeping failed: {e}")
            return HousekeepingResult()
        finally:
            self._housekeeping -= 1

    async def _spatial_gate(
        self, record: TurnRecord, audit: AuditResult, world: WorldState, report: ExtractionReport
    ) -> None:
        current = world.current_poi or world.current_locale
        candidate = (record.response.location_update.site_name or audit.current_locale or "").strip()
        if not candidate or normalize_locale(candidate) == normalize_locale(current):
            return

        if is_event_locale(candidate):
            logger.info(f"[Extraction] '{candidate}' names an event, not a place; keeping '{current}'")
            report.locale_rejected = True
            return

        resolution = await self.locale_agent.resolve(candidate, world, record.response.narration)
        if not resolution.validation_passed:
            logger.info(
                f"[Extraction] Locale agent rejected '{candidate}': {resolution.reasoning or 'no reason'}"
            )
            report.locale_rejected = True
            return

        name = resolution.name or candidate
        report.payload.current_poi = name
        report.payload.current_locale = name
        if resolution.is_new and resolution.is_literal_transition:
            content = resolution.content or record.response.location_update.narrative_detail
            report.payload.knowledge.append(
                LoreEntry(
                    title=name,
                    content=content or f"A place discovered at {world.current_time}.",
                    keywords=[name],
                    timestamp=world.current_time,
                )
            )

    async def _npcs(
        self,
        response: NarratorResponse,
        audit: AuditResult,
        world: WorldState,
        registry: List[str],
        payload: AIUpdatePayload,
    ) -> None:
        payload.npc_resolutions = list(response.npc_resolution)
        payload.new_npcs = list(audit.new_npcs)
        updates = []
        for update in audit.npc_updates:
            if update.is_hostile and self._resolve_registry_id(update.id, world, registry) is None:
                logger.info(f"[Extraction] Ignoring hostility of '{update.id}': not present here")
                update = update.model_copy(update={"is_hostile": False})
            updates.append(update)
        payload.npc_updates = updates

    def _hostile_ids(self, world: WorldState, registry: List[str], payload: AIUpdatePayload) -> Set[str]:
        ids = set()
        for update in payload.npc_updates:
            if update.is_hostile:
                npc_id = self._resolve_registry_id(update.id, world, registry)
                if npc_id is not None:
                    ids.add(npc_id)
        return ids

    async def _inventory(
        self, housekeeping: HousekeepingResult, world: WorldState, payload: AIUpdatePayload
    ) -> None:
        batches = merge_inventory_batches(housekeeping.inventory_updates)
        payload.inventory_updates = batches
        payload.system_messages.extend(inventory_messages(batches, world))

    def _resolve_registry_id(self, key: str, world: WorldState, registry: List[str]) -> Optional[str]:
        if key in registry:
            return key
        wanted = normalize_locale(key)
        for actor in [*world.npcs, *world.companions]:
            if actor.id in registry and normalize_locale(actor.name) == wanted:
                return actor.id
        return None

    async def _relationships(
        self,
        housekeeping: HousekeepingResult,
        world: WorldState,
        registry: List[str],
        payload: AIUpdatePayload,
    ) -> None:
        # The hostile override replaces any alignment shift for the same NPC
        hostile = self._hostile_ids(world, registry, payload)
        for shift in housekeeping.relationship_changes:
            npc_id = self._resolve_registry_id(shift.npc_id, world, registry)
            if npc_id is None:
                logger.debug(f"[Extraction] Ignoring relationship change for '{shift.npc_id}'")
                continue
            if npc_id in hostile:
                logger.debug(f"[Extraction] {npc_id} turned hostile; dropping shift of {shift.change}")
                continue
            change = max(-MAX_RELATIONSHIP_SHIFT, min(MAX_RELATIONSHIP_SHIFT, shift.change))
            if change:
                payload.relationship_changes.append(
                    RelationshipDelta(npc_id=npc_id, change=change, reason=shift.reason)
                )

    async def _memories(
        self,
        housekeeping: HousekeepingResult,
        world: WorldState,
        registry: List[str],
        report: ExtractionReport,
    ) -> None:
        if world.is_combat_active:
            return
        seen: Set[str] = set()
        for note in housekeeping.npc_memories:
            npc_id = self._resolve_registry_id(note.npc_id, world, registry)
            if npc_id is None or npc_id in seen or not note.memory.strip():
                continue
            seen.add(npc_id)
            report.payload.npc_memories.append(
                NPCMemoryDelta(
                    npc_id=npc_id,
                    memory=NPCMemory(content=note.memory.strip(), timestamp=world.current_time),
                )
            )

    async def _objectives(
        self, response: NarratorResponse, housekeeping: HousekeepingResult, payload: AIUpdatePayload
    ) -> None:
        updates = {normalize_locale(o.title): o for o in response.updates.objectives if o.title}
        for note in housekeeping.objectives:
            key = normalize_locale(note.title)
            if key and key not in updates:
                updates[key] = ObjectiveUpdate(title=note.title, content=note.content, status=note.status)
        payload.objectives = list(updates.values())

    async def _missed_rolls(
        self, record: TurnRecord, audit: AuditResult, world: WorldState, payload: AIUpdatePayload
    ) -> None:
        if not audit.missed_rolls:
            return
        rolled = {normalize_locale(r.check) for r in record.mechanics.rolls}
        requests = [r for r in audit.missed_rolls if normalize_locale(r.check) not in rolled]
        if not requests:
            return
        rolls = self.dice.roll_checks(requests, world)
        payload.roll_attachments[record.message_id] = rolls
        logger.info(f"[Extraction] Resolved {len(rolls)} missed roll(s)")

    async def _story(
        self, record: TurnRecord, audit: AuditResult, world: WorldState, report: ExtractionReport
    ) -> None:
        if world.is_combat_active or report.engagement_confirmed:
            return
        summary = record.response.turn_summary or audit.turn_summary
        if not summary or summary == FALLBACK_SUMMARY:
            return
        report.payload.story_entry = StoryLogEntry(
            summary=truncate_words(summary),
            content=record.response.narration,
            location=report.payload.current_poi or world.current_poi or world.current_locale,
            timestamp=world.current_time,
        )

    async def _embed_new_entries(self, payload: AIUpdatePayload) -> None:
        if self.embeddings is None or not self.embeddings.is_available():
            return
        targets = []
        for entry in payload.knowledge:
            targets.append((entry, f"{entry.title} {entry.content}"))
        if payload.story_entry is not None:
            entry = payload.story_entry
            targets.append((entry, f"{entry.summary} {entry.content}"))
        for note in payload.npc_memories:
            targets.append((note.memory, note.memory.content))

        for entry, text in targets:
            if entry.embedding:
                continue
            try:
                entry.embedding = await self.embeddings.embed(text)
            except Exception as e:
                logger.warning(f"[Extraction] Inline embedding failed: {e}")

    def _begin_combat_if_needed(self, report: ExtractionReport, response: NarratorResponse) -> None:
        triggered = [e for e in report.events if e.kind == "combat_triggered"]
        if not (report.engagement_confirmed or triggered):
            return
        world = self.store.snapshot()
        if world.is_combat_active:
            return
        enemies = [
            Combatant(name=a.name, template=a.template, difficulty=a.difficulty, is_ship=a.is_ship)
            for a in response.suggested_actors
        ]
        for event in triggered:
            npc = world.find_npc(event.npc_id or "")
            if npc is not None and all(e.name != npc.name for e in enemies):
                enemies.append(Combatant(name=npc.name, template=npc.race or "", is_ship=npc.is_ship))
        report.events.extend(self.store.apply(BeginCombat(enemies=enemies)))
