"""
World Store

The single writer of a session's WorldState. Every mutation arrives as a
named delta and is applied by ``apply()`` under one lock; readers only ever
get deep-copied snapshots. Deltas carry intent (add to a relationship, merge
an NPC by name) and are resolved against the state that is current when they
are applied, so a turn and a background extraction never overwrite each
other's work.
"""

import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set, Union

from taleweaver.schemas.narration import ObjectiveUpdate
from taleweaver.schemas.services import InventoryBatch, NewNPC, NPCStatusUpdate
from taleweaver.schemas.updates import (
    HOSTILE_RELATIONSHIP,
    AIUpdatePayload,
    AppendMessage,
    ApplyTurnUpdate,
    BeginCombat,
    CompressStoryLog,
    EndCombat,
    NPCMemoryDelta,
    RelationshipDelta,
    SetEmbedding,
    WorldDelta,
    WorldEvent,
)
from taleweaver.schemas.world import (
    NPC,
    PLAYER_ID,
    ChatMessage,
    CombatState,
    Companion,
    Item,
    NPCStatus,
    Objective,
    WorldState,
    clamp_relationship,
)
from taleweaver.utils.game_time import advance_game_time
from taleweaver.utils.locale import normalize_locale
from taleweaver.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_MEMORY_CAP = 20
LEAVES_POI = "Unknown"

Actor = Union[NPC, Companion]


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class WorldStore:
    def __init__(self, world: Optional[WorldState] = None, memory_cap: int = DEFAULT_MEMORY_CAP):
        self._world = world or WorldState()
        self._lock = threading.RLock()
        self._applied_updates: Set[str] = set()
        self.memory_cap = memory_cap
        self.version = 0

    @property
    def session_id(self) -> str:
        return self._world.session_id

    def snapshot(self) -> WorldState:
        """Deep copy of the current state; mutating it never affects the store."""
        with self._lock:
            return self._world.model_copy(deep=True)

    def to_json(self) -> str:
        with self._lock:
            return self._world.model_dump_json()

    @classmethod
    def from_json(cls, data: Union[str, bytes], memory_cap: int = DEFAULT_MEMORY_CAP) -> "WorldStore":
        return cls(WorldState.model_validate_json(data), memory_cap=memory_cap)

    def apply(self, delta: WorldDelta) -> List[WorldEvent]:
        """Apply one delta atomically and return what the store observed."""
        handlers: Dict[str, Callable] = {
            "append_message": self._append_message,
            "apply_turn_update": self._apply_turn_update,
            "set_embedding": self._set_embedding,
            "begin_combat": self._begin_combat,
            "end_combat": self._end_combat,
            "compress_story_log": self._compress_story_log,
        }
        handler = handlers.get(delta.kind)
        if handler is None:
            raise ValueError(f"Unknown delta kind: {delta.kind}")

        with self._lock:
            events = handler(self._world, delta)
            self.version += 1

        logger.debug(f"[Store] Applied {delta.kind} -> v{self.version} ({len(events)} events)")
        for event in events:
            if event.kind == "rejected_update":
                logger.warning(f"[Store] Rejected: {event.detail}")
            elif event.kind in ("combat_triggered", "npc_died", "npc_created", "story_compressed"):
                logger.info(f"[Store] {event.kind}: {event.detail}")
        return events

    def apply_all(self, deltas: List[WorldDelta]) -> List[WorldEvent]:
        events: List[WorldEvent] = []
        for delta in deltas:
            events.extend(self.apply(delta))
        return events

    # Delta handlers. All run with the lock held.

    def _append_message(self, world: WorldState, delta: AppendMessage) -> List[WorldEvent]:
        if any(m.id == delta.message.id for m in world.messages):
            return []
        message = delta.message
        if not message.timestamp:
            message = message.model_copy(update={"timestamp": utc_timestamp()})
        world.messages.append(message)
        return []

    def _begin_combat(self, world: WorldState, delta: BeginCombat) -> List[WorldEvent]:
        if world.is_combat_active:
            known = {normalize_locale(e.name) for e in world.combat.enemies}
            world.combat.enemies.extend(
                e for e in delta.enemies if normalize_locale(e.name) not in known
            )
        else:
            world.combat = CombatState(enemies=list(delta.enemies))
        return []

    def _end_combat(self, world: WorldState, delta: EndCombat) -> List[WorldEvent]:
        world.combat = None
        return []

    def _compress_story_log(self, world: WorldState, delta: CompressStoryLog) -> List[WorldEvent]:
        remove = set(delta.remove_ids)
        positions = [i for i, e in enumerate(world.story_log) if e.id in remove]
        if not positions:
            return [WorldEvent(kind="rejected_update", detail="Story entries to compress are gone")]
        if any(e.id == delta.entry.id for e in world.story_log):
            return []
        kept = [e for e in world.story_log if e.id not in remove]
        kept.insert(positions[0], delta.entry)
        world.story_log = kept
        return [
            WorldEvent(
                kind="story_compressed",
                detail=f"{len(positions)} entries folded into {delta.entry.id}",
            )
        ]

    def _set_embedding(self, world: WorldState, delta: SetEmbedding) -> List[WorldEvent]:
        if delta.collection == "npc_memories":
            entries = [m for actor in [*world.npcs, *world.companions] for m in actor.memories]
        else:
            entries = getattr(world, delta.collection)

        entry = next((e for e in entries if e.id == delta.entry_id), None)
        if entry is None:
            return [
                WorldEvent(
                    kind="embedding_skipped",
                    detail=f"{delta.collection}/{delta.entry_id} no longer exists",
                )
            ]
        if entry.embedding:
            return [
                WorldEvent(
                    kind="embedding_skipped",
                    detail=f"{delta.collection}/{delta.entry_id} already embedded",
                )
            ]
        entry.embedding = list(delta.vector)
        return []

    def _apply_turn_update(self, world: WorldState, delta: ApplyTurnUpdate) -> List[WorldEvent]:
        if delta.update_id:
            if delta.update_id in self._applied_updates:
                logger.info(f"[Store] Update {delta.update_id} already applied; skipping replay")
                return []
            self._applied_updates.add(delta.update_id)

        payload = delta.payload
        events: List[WorldEvent] = []

        self._apply_location(world, payload)
        events.extend(self._apply_resolutions(world, payload))
        for new_npc in payload.new_npcs:
            events.extend(self._merge_new_npc(world, new_npc))
        for update in payload.npc_updates:
            events.extend(self._apply_npc_update(world, update))
        for batch in payload.inventory_updates:
            self._apply_inventory(world, batch)
        for objective in payload.objectives:
            self._merge_objective(world, objective)
        overridden = self._hostile_targets(world, payload)
        for change in payload.relationship_changes:
            actor = self._find_actor(world, change.npc_id)
            if actor is not None and actor.id in overridden and not change.hostile_override:
                continue
            events.extend(self._apply_relationship(world, change))
        for note in payload.npc_memories:
            events.extend(self._append_memory(world, note))

        known_lore = {e.id for e in world.knowledge} | {
            normalize_locale(e.title) for e in world.knowledge
        }
        for entry in payload.knowledge:
            if entry.id in known_lore or normalize_locale(entry.title) in known_lore:
                continue
            world.knowledge.append(entry)
            known_lore.update({entry.id, normalize_locale(entry.title)})

        if payload.story_entry and all(e.id != payload.story_entry.id for e in world.story_log):
            world.story_log.append(payload.story_entry)

        if payload.time_advance_minutes > 0:
            world.current_time = advance_game_time(world.current_time, payload.time_advance_minutes)
        if payload.gm_notes is not None:
            world.gm_notes = payload.gm_notes
        if payload.adventure_brief is not None:
            world.adventure_brief = payload.adventure_brief

        self._attach_rolls(world, payload)
        self._apply_hp(world, payload.hp_changes)

        for text in payload.system_messages:
            world.messages.append(
                ChatMessage(sender="system", content=text, timestamp=utc_timestamp())
            )
        for event in events:
            if event.kind == "combat_triggered":
                world.messages.append(
                    ChatMessage(sender="system", content=event.detail, timestamp=utc_timestamp())
                )
        return events

    def _apply_location(self, world: WorldState, payload: AIUpdatePayload) -> None:
        if payload.current_locale:
            world.current_locale = payload.current_locale
        if payload.current_poi:
            world.current_poi = payload.current_poi
        zone = world.current_zone
        if zone is None:
            return
        zone.visited = True
        site = payload.current_poi or payload.current_locale
        if site and all(normalize_locale(s) != normalize_locale(site) for s in zone.sites):
            zone.sites.append(site)

    def _here(self, world: WorldState) -> str:
        return world.current_poi or world.current_locale or "Open Area"

    def _party_names(self, world: WorldState) -> Set[str]:
        names = {normalize_locale(world.player.name)}
        names.update(normalize_locale(c.name) for c in world.companions)
        return names

    def _apply_resolutions(self, world: WorldState, payload: AIUpdatePayload) -> List[WorldEvent]:
        events: List[WorldEvent] = []
        here = self._here(world)
        for resolution in payload.npc_resolutions:
            npc = world.find_npc(resolution.name)
            if resolution.action == "leaves":
                if npc is not None and not npc.is_dead:
                    npc.current_poi = LEAVES_POI
                continue
            if npc is not None:
                if not npc.is_dead:
                    npc.current_poi = here
                continue
            if normalize_locale(resolution.name) in self._party_names(world):
                continue
            created = NPC(name=resolution.name, description=resolution.summary, current_poi=here)
            world.npcs.append(created)
            events.append(
                WorldEvent(kind="npc_created", detail=f"{created.name} at {here}", npc_id=created.id)
            )
        return events

    def _merge_new_npc(self, world: WorldState, new_npc: NewNPC) -> List[WorldEvent]:
        if normalize_locale(new_npc.name) in self._party_names(world):
            return [
                WorldEvent(
                    kind="rejected_update",
                    detail=f"New NPC '{new_npc.name}' collides with a party member's name",
                )
            ]
        existing = world.find_npc(new_npc.name)
        if existing is not None:
            if not existing.description and new_npc.description:
                existing.description = new_npc.description
            if not existing.race and new_npc.race:
                existing.race = new_npc.race
            return []
        created = NPC(
            name=new_npc.name,
            description=new_npc.description,
            race=new_npc.race,
            is_sentient=new_npc.is_sentient,
            current_poi=self._here(world),
        )
        world.npcs.append(created)
        return [WorldEvent(kind="npc_created", detail=created.name, npc_id=created.id)]

    def _apply_npc_update(self, world: WorldState, update: NPCStatusUpdate) -> List[WorldEvent]:
        npc = world.find_npc(update.id)
        if npc is None:
            return [WorldEvent(kind="rejected_update", detail=f"Unknown NPC '{update.id}'")]
        if npc.is_dead:
            if update.status and update.status != NPCStatus.DEAD.value:
                return [
                    WorldEvent(
                        kind="rejected_update",
                        detail=f"{npc.name} is dead; ignoring status {update.status}",
                        npc_id=npc.id,
                    )
                ]
            return []

        events: List[WorldEvent] = []
        if update.current_poi:
            npc.current_poi = update.current_poi
        if update.status:
            npc.status = NPCStatus(update.status)
            if npc.is_dead:
                events.append(WorldEvent(kind="npc_died", detail=npc.name, npc_id=npc.id))
        if update.is_hostile and not npc.is_dead:
            events.extend(
                self._apply_relationship(
                    world,
                    RelationshipDelta(npc_id=npc.id, hostile_override=True, reason="Attacked the party"),
                )
            )
        return events

    def _apply_inventory(self, world: WorldState, batch: InventoryBatch) -> None:
        items = world.inventories.setdefault(batch.owner_id or PLAYER_ID, [])
        for delta in batch.items:
            if delta.quantity <= 0:
                continue
            key = normalize_locale(delta.name)
            existing = next((i for i in items if normalize_locale(i.name) == key), None)
            if batch.action == "add":
                if existing is not None:
                    existing.quantity += delta.quantity
                else:
                    items.append(
                        Item(
                            name=delta.name,
                            quantity=delta.quantity,
                            description=delta.description,
                            rarity=delta.rarity,
                        )
                    )
            elif existing is not None:
                existing.quantity -= delta.quantity
                if existing.quantity <= 0:
                    items.remove(existing)

    def _merge_objective(self, world: WorldState, update: ObjectiveUpdate) -> None:
        key = normalize_locale(update.title)
        existing = next((o for o in world.objectives if normalize_locale(o.title) == key), None)
        if existing is None:
            existing = Objective(
                title=update.title, content=update.content, timestamp=world.current_time
            )
            world.objectives.append(existing)
        elif update.content:
            existing.content = update.content
        existing.status = update.status

        if update.is_tracked and existing.status == "active":
            for objective in world.objectives:
                objective.is_tracked = objective is existing
        if existing.status != "active":
            existing.is_tracked = False

    def _find_actor(self, world: WorldState, key: str) -> Optional[Actor]:
        npc = world.find_npc(key)
        if npc is not None:
            return npc
        wanted = normalize_locale(key)
        for companion in world.companions:
            if companion.id == key or normalize_locale(companion.name) == wanted:
                return companion
        return None

    def _hostile_targets(self, world: WorldState, payload: AIUpdatePayload) -> Set[str]:
        """Ids forced hostile by this commit; additive shifts never lift them back."""
        ids = {c.npc_id for c in payload.relationship_changes if c.hostile_override}
        for update in payload.npc_updates:
            npc = world.find_npc(update.id) if update.is_hostile else None
            if npc is not None:
                ids.add(npc.id)
        resolved = set()
        for key in ids:
            actor = self._find_actor(world, key)
            if actor is not None:
                resolved.add(actor.id)
        return resolved

    def _apply_relationship(self, world: WorldState, delta: RelationshipDelta) -> List[WorldEvent]:
        actor = self._find_actor(world, delta.npc_id)
        if actor is None:
            return [
                WorldEvent(kind="rejected_update", detail=f"Relationship target '{delta.npc_id}' unknown")
            ]
        if isinstance(actor, NPC) and actor.is_dead:
            return []

        previous = actor.relationship
        if delta.hostile_override:
            updated = min(previous, HOSTILE_RELATIONSHIP)
        else:
            updated = previous + delta.change
        actor.relationship = clamp_relationship(updated)

        if (
            isinstance(actor, NPC)
            and previous > HOSTILE_RELATIONSHIP
            and actor.relationship <= HOSTILE_RELATIONSHIP
            and not world.is_combat_active
        ):
            return [
                WorldEvent(
                    kind="combat_triggered",
                    detail=f"{actor.name} turns hostile! Combat is imminent.",
                    npc_id=actor.id,
                )
            ]
        return []

    def _append_memory(self, world: WorldState, delta: NPCMemoryDelta) -> List[WorldEvent]:
        actor = self._find_actor(world, delta.npc_id)
        if actor is None:
            return [WorldEvent(kind="rejected_update", detail=f"Memory target '{delta.npc_id}' unknown")]
        if isinstance(actor, NPC) and actor.is_dead:
            return []
        if any(m.id == delta.memory.id for m in actor.memories):
            return []
        memory = delta.memory
        if not memory.timestamp:
            memory = memory.model_copy(update={"timestamp": world.current_time})
        actor.memories.append(memory)
        if len(actor.memories) > self.memory_cap:
            del actor.memories[: len(actor.memories) - self.memory_cap]
        return []

    def _attach_rolls(self, world: WorldState, payload: AIUpdatePayload) -> None:
        for message_id, rolls in payload.roll_attachments.items():
            message = next((m for m in world.messages if m.id == message_id), None)
            if message is None:
                logger.warning(f"[Store] Cannot attach rolls; message {message_id} not found")
                continue
            message.rolls.extend(r for r in rolls if r not in message.rolls)

    def _apply_hp(self, world: WorldState, hp_changes: Dict[str, int]) -> None:
        for actor_id, change in hp_changes.items():
            if actor_id == PLAYER_ID:
                target = world.player
            else:
                target = next((c for c in world.companions if c.id == actor_id), None)
            if target is None:
                continue
            target.hp = max(0, min(target.max_hp, target.hp + change))
