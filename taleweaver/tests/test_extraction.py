"""
Tests for the post-narration extraction step.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from taleweaver.engine.extraction import (
    ExtractionStep,
    TurnRecord,
    eligible_registry,
    inventory_messages,
    merge_inventory_batches,
    truncate_words,
)
from taleweaver.engine.store import WorldStore
from taleweaver.schemas.assessment import IntentType
from taleweaver.schemas.mechanics import DiceRollRequest, MechanicsResult
from taleweaver.schemas.narration import (
    FALLBACK_SUMMARY,
    LocationUpdate,
    NarratorResponse,
    SuggestedActor,
)
from taleweaver.schemas.services import (
    AuditResult,
    HousekeepingResult,
    InventoryBatch,
    ItemDelta,
    LocaleResolution,
    MemoryNote,
    RelationshipShift,
)
from taleweaver.schemas.updates import AppendMessage
from taleweaver.schemas.world import NPC, ChatMessage, CombatState, Combatant, NPCStatus


def narrator_response(site="The Rusty Anchor", summary="Aria shares a drink with Greta.", **fields):
    return NarratorResponse(
        location_update=LocationUpdate(site_name=site, zone="Harbor Town"),
        narration="Greta laughs and refills the mug.",
        turnSummary=summary,
        **fields,
    )


def make_step(world, audit=None, housekeeping=None, locale=None):
    store = WorldStore(world)
    auditor = MagicMock()
    auditor.audit = AsyncMock(return_value=audit or AuditResult())
    housekeeper = MagicMock()
    housekeeper.reconcile = AsyncMock(return_value=housekeeping or HousekeepingResult())
    locale_agent = MagicMock()
    locale_agent.resolve = AsyncMock(return_value=locale or LocaleResolution())
    step = ExtractionStep(store, auditor, housekeeper, locale_agent)
    return step, store


def record(response=None, **fields):
    return TurnRecord(
        message_id="msg-1",
        player_text="I buy Greta a drink",
        response=response or narrator_response(),
        **fields,
    )


class TestHelpers:
    """Test the pure helpers"""

    def test_truncate_words(self):
        assert truncate_words("one two three", 10) == "one two three"
        assert truncate_words("a b c d e f g h i j k l", 10) == "a b c d e f g h i j..."

    def test_merge_inventory_batches_sums_same_item(self):
        merged = merge_inventory_batches(
            [
                InventoryBatch(items=[ItemDelta(name="Rope")]),
                InventoryBatch(items=[ItemDelta(name="rope", quantity=2), ItemDelta(name="Torch")]),
                InventoryBatch(action="remove", items=[ItemDelta(name="Coin")]),
            ]
        )
        assert len(merged) == 2
        adds = merged[0]
        assert [(i.name, i.quantity) for i in adds.items] == [("Rope", 3), ("Torch", 1)]
        assert merged[1].action == "remove"

    def test_inventory_messages(self, world):
        batches = [
            InventoryBatch(items=[ItemDelta(name="Rope", quantity=2)]),
            InventoryBatch(owner_id="comp-bram", items=[ItemDelta(name="Shield")]),
            InventoryBatch(action="remove", items=[ItemDelta(name="Coin")]),
        ]
        assert inventory_messages(batches, world) == [
            "You acquired: **Rope x2**",
            "Bram acquired: **Shield**",
            "You lost: **Coin**",
        ]

    def test_registry_excludes_dead_absent_and_non_sentient(self, world):
        world.npcs.append(NPC(id="npc-dead", name="Old Tom", current_poi="The Rusty Anchor", status=NPCStatus.DEAD))
        world.npcs.append(NPC(id="npc-cat", name="Cat", current_poi="The Rusty Anchor", is_sentient=False))
        world.npcs.append(NPC(id="npc-follower", name="Pip", current_poi="With Party"))
        assert eligible_registry(world) == ["npc-greta", "npc-follower", "comp-bram"]


class TestSpatialGate:
    """Test location changes proposed by the narrator"""

    @pytest.mark.asyncio
    async def test_event_name_snaps_back(self, world):
        step, store = make_step(world)

        report = await step.run(record(narrator_response(site="Aftermath of the Battle")))

        assert report.locale_rejected is True
        assert store.snapshot().current_poi == "The Rusty Anchor"
        assert store.snapshot().current_locale == "Harbor Town"
        step.locale_agent.resolve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejected_by_locale_agent(self, world):
        step, store = make_step(
            world, locale=LocaleResolution(validation_passed=False, reasoning="Too far")
        )

        report = await step.run(record(narrator_response(site="Royal Palace")))

        assert report.locale_rejected is True
        assert store.snapshot().current_poi == "The Rusty Anchor"

    @pytest.mark.asyncio
    async def test_new_literal_transition_records_lore(self, world):
        step, store = make_step(
            world,
            locale=LocaleResolution(
                name="Smuggler's Cove",
                content="A hidden inlet",
                isNew=True,
                isLiteralTransition=True,
            ),
        )

        report = await step.run(record(narrator_response(site="the cove")))
        snapshot = store.snapshot()

        assert report.locale_rejected is False
        assert snapshot.current_poi == "Smuggler's Cove"
        assert "Smuggler's Cove" in snapshot.zones["0-0"].sites
        assert snapshot.knowledge[0].title == "Smuggler's Cove"
        assert snapshot.knowledge[0].content == "A hidden inlet"

    @pytest.mark.asyncio
    async def test_same_place_is_not_a_move(self, world):
        step, _ = make_step(world)
        await step.run(record())
        step.locale_agent.resolve.assert_not_awaited()


class TestReconciliation:
    """Test how housekeeping and audit replies are folded into the world"""

    @pytest.mark.asyncio
    async def test_inventory_relationships_and_memories(self, world):
        housekeeping = HousekeepingResult(
            inventoryUpdates=[
                InventoryBatch(items=[ItemDelta(name="Ale")]),
                InventoryBatch(items=[ItemDelta(name="ale")]),
            ],
            relationshipChanges=[
                RelationshipShift(npcId="Greta", change=25, reason="Generous"),
                RelationshipShift(npcId="npc-guard", change=5),
            ],
            npcMemories=[
                MemoryNote(npcId="npc-greta", memory="Aria bought me a drink."),
                MemoryNote(npcId="npc-greta", memory="Second note is dropped."),
            ],
        )
        step, store = make_step(world, housekeeping=housekeeping)

        await step.run(record())
        snapshot = store.snapshot()

        assert [(i.name, i.quantity) for i in snapshot.inventories["player"]] == [("Ale", 2)]
        assert snapshot.find_npc("npc-greta").relationship == 10
        assert snapshot.find_npc("npc-guard").relationship == 0
        memories = snapshot.find_npc("npc-greta").memories
        assert [m.content for m in memories] == ["Aria bought me a drink."]
        assert any(m.content == "You acquired: **Ale x2**" for m in snapshot.messages)

    @pytest.mark.asyncio
    async def test_memories_skipped_in_combat(self, world):
        world.combat = CombatState(enemies=[Combatant(name="Bandit")])
        housekeeping = HousekeepingResult(
            npcMemories=[MemoryNote(npcId="npc-greta", memory="Hid behind the bar.")]
        )
        step, store = make_step(world, housekeeping=housekeeping)

        await step.run(record())

        assert store.snapshot().find_npc("npc-greta").memories == []

    @pytest.mark.asyncio
    async def test_story_entry_truncated(self, world):
        step, store = make_step(world, audit=AuditResult(timePassedMinutes=30))
        summary = "Aria shares a long drink with Greta while the rain hammers on the shutters"

        await step.run(record(narrator_response(summary=summary)))
        snapshot = store.snapshot()

        assert snapshot.story_log[0].summary == "Aria shares a long drink with Greta while the rain..."
        assert snapshot.current_time == "March 3, 1024, 09:45"

    @pytest.mark.asyncio
    async def test_fallback_summary_not_logged(self, world):
        step, store = make_step(world)
        await step.run(record(narrator_response(summary=FALLBACK_SUMMARY)))
        assert store.snapshot().story_log == []

    @pytest.mark.asyncio
    async def test_missed_rolls_attach_to_message(self, world):
        audit = AuditResult(
            missedRolls=[DiceRollRequest(check="Perception", dc=10), DiceRollRequest(check="Stealth")]
        )
        step, store = make_step(world, audit=audit)
        store.apply(AppendMessage(message=ChatMessage(id="msg-1", sender="model", content="...")))
        already = step.dice.roll_check(DiceRollRequest(check="Stealth"), world)

        await step.run(record(mechanics=MechanicsResult(rolls=[already])))

        rolls = store.snapshot().messages[-1].rolls
        assert [r.check for r in rolls] == ["Perception"]

    @pytest.mark.asyncio
    async def test_extraction_replay_is_idempotent(self, world):
        housekeeping = HousekeepingResult(
            relationshipChanges=[RelationshipShift(npcId="npc-greta", change=5)]
        )
        step, store = make_step(world, housekeeping=housekeeping)

        await step.run(record())
        await step.run(record())

        assert store.snapshot().find_npc("npc-greta").relationship == 5

    @pytest.mark.asyncio
    async def test_collaborator_failure_uses_defaults(self, world):
        step, store = make_step(world)
        step.auditor.audit.side_effect = RuntimeError("audit down")
        step.housekeeper.reconcile.side_effect = RuntimeError("housekeeper down")

        report = await step.run(record())

        assert report.engagement_confirmed is False
        assert len(store.snapshot().story_log) == 1


class TestEngagement:
    """Test combat started by extraction"""

    @pytest.mark.asyncio
    async def test_confirmed_engagement_begins_combat(self, world):
        response = narrator_response(
            active_engagement=True,
            suggestedActors=[SuggestedActor(name="Dock Thug", difficulty="Easy")],
        )
        step, store = make_step(world)

        report = await step.run(record(response, intent_type=IntentType.COMBAT))
        snapshot = store.snapshot()

        assert report.engagement_confirmed is True
        assert snapshot.is_combat_active
        assert [e.name for e in snapshot.combat.enemies] == ["Dock Thug"]
        assert snapshot.story_log == []

    @pytest.mark.asyncio
    async def test_hostile_npc_update_begins_combat(self, world):
        audit = AuditResult(npcUpdates=[{"id": "npc-greta", "isHostile": True}])
        step, store = make_step(world, audit=audit)

        report = await step.run(record())
        snapshot = store.snapshot()

        assert "combat_triggered" in [e.kind for e in report.events]
        assert [e.name for e in snapshot.combat.enemies] == ["Greta"]

    @pytest.mark.asyncio
    async def test_hostile_override_beats_alignment_shift(self, world):
        audit = AuditResult(npcUpdates=[{"id": "npc-greta", "isHostile": True}])
        housekeeping = HousekeepingResult(
            relationshipChanges=[RelationshipShift(npcId="npc-greta", change=10, reason="Shared a drink")]
        )
        step, store = make_step(world, audit=audit, housekeeping=housekeeping)

        report = await step.run(record())
        snapshot = store.snapshot()

        assert report.payload.relationship_changes == []
        assert snapshot.find_npc("npc-greta").relationship <= -50
        assert [e.name for e in snapshot.combat.enemies] == ["Greta"]

    @pytest.mark.asyncio
    async def test_hostility_of_absent_npc_ignored(self, world):
        world.npcs.append(NPC(id="npc-cat", name="Cat", current_poi="The Rusty Anchor", is_sentient=False))
        audit = AuditResult(
            npcUpdates=[
                {"id": "npc-guard", "isHostile": True, "currentPOI": "Town Gate"},
                {"id": "npc-cat", "isHostile": True},
            ]
        )
        step, store = make_step(world, audit=audit)

        report = await step.run(record())
        snapshot = store.snapshot()

        assert not any(u.is_hostile for u in report.payload.npc_updates)
        assert snapshot.find_npc("npc-guard").relationship == 0
        assert snapshot.find_npc("npc-cat").relationship == 0
        assert "combat_triggered" not in [e.kind for e in report.events]
        assert not snapshot.is_combat_active


class TestBusyFlags:
    """Test the auditing flag across overlapping extraction jobs"""

    @pytest.mark.asyncio
    async def test_flag_held_until_last_job_finishes(self, world):
        step, _ = make_step(world)
        first_gate, second_gate = asyncio.Event(), asyncio.Event()
        gates = [first_gate, second_gate]

        async def slow_audit(narration, dice_truth, snapshot):
            await gates.pop(0).wait()
            return AuditResult()

        step.auditor.audit = slow_audit
        first = asyncio.create_task(step.run(record()))
        second = asyncio.create_task(step.run(record()))
        while gates:
            await asyncio.sleep(0)
        assert step.is_auditing

        second_gate.set()
        await second
        assert step.is_auditing

        first_gate.set()
        await first
        assert not step.is_auditing
        assert not step.is_housekeeping
