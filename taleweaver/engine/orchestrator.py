"""
Turn Orchestrator

Drives one turn end to end:

    player text -> intent classification -> (travel handler | mechanics)
    -> context assembly -> narration -> commit
    -> detached extraction/audit through the background task queue

The critical path ends once the narrated message is committed to the world
store. Only one turn per session may be on the critical path at a time.
"""

from typing import Awaitable, Callable, Optional

from pydantic import BaseModel, Field

from taleweaver.config import Settings
from taleweaver.providers.base import BaseProvider
from taleweaver.schemas.assessment import Assessment, IntentType, TurnInput
from taleweaver.schemas.mechanics import MechanicsResult
from taleweaver.schemas.narration import NarratorResponse
from taleweaver.schemas.updates import (
    AIUpdatePayload,
    AppendMessage,
    ApplyTurnUpdate,
    BeginCombat,
)
from taleweaver.schemas.world import ChatMessage, Combatant, StoryLogEntry, WorldState, new_id
from taleweaver.utils.logger import get_logger
from taleweaver.utils.retry import NarratorUnavailableError, RetryPolicy

from .chronicle import ObjectiveFollowUp, ObjectiveTracker, StoryCompressor
from .classifier import IntentClassifier
from .context import ContextAssembler
from .dice import DiceRoller
from .embeddings import EmbeddingService
from .extraction import ExtractionStep, TurnRecord
from .indexer import BackgroundIndexer
from .mechanics import MechanicsResolver
from .narrator import NarratorInvoker
from .services import (
    Auditor,
    CombatRelevanceVerifier,
    Housekeeper,
    LocaleAgent,
    ObjectiveAdvisor,
    PlotExpander,
    StorySummarizer,
)
from .store import WorldStore
from .tasks import BackgroundTaskQueue

logger = get_logger(__name__)

NARRATOR_UNAVAILABLE_MESSAGE = (
    "The storyteller is overwhelmed right now. Please try your action again in a moment."
)

TravelHandler = Callable[[Assessment, WorldState], Awaitable[Optional[str]]]


class TurnInProgressError(Exception):
    """A turn is already being narrated for this session"""


class SessionNotFoundError(Exception):
    """No world state exists for the requested session"""


class TurnResult(BaseModel):
    message: Optional[ChatMessage] = None
    assessment: Assessment
    mechanics: MechanicsResult = Field(default_factory=MechanicsResult)
    response: Optional[NarratorResponse] = None
    combat_started: bool = False
    traveled: bool = False
    narrator_unavailable: bool = False


class TurnOrchestrator:
    def __init__(
        self,
        store: WorldStore,
        classifier: IntentClassifier,
        mechanics: MechanicsResolver,
        narrator: NarratorInvoker,
        extraction: ExtractionStep,
        context: Optional[ContextAssembler] = None,
        embeddings: Optional[EmbeddingService] = None,
        indexer: Optional[BackgroundIndexer] = None,
        tasks: Optional[BackgroundTaskQueue] = None,
        travel_handler: Optional[TravelHandler] = None,
        compressor: Optional[StoryCompressor] = None,
        objectives: Optional[ObjectiveTracker] = None,
        story_log_limit: int = 40,
    ):
        self.store = store
        self.classifier = classifier
        self.mechanics = mechanics
        self.narrator = narrator
        self.extraction = extraction
        self.context = context or ContextAssembler()
        self.embeddings = embeddings
        self.indexer = indexer
        self.tasks = tasks or BackgroundTaskQueue()
        self.travel_handler = travel_handler
        self.compressor = compressor
        self.objectives = objectives
        self.story_log_limit = story_log_limit

        self.is_assessing = False
        self.is_generating = False

    @classmethod
    def build(
        cls,
        store: WorldStore,
        provider: BaseProvider,
        embeddings: EmbeddingService,
        settings: Settings,
        travel_handler: Optional[TravelHandler] = None,
    ) -> "TurnOrchestrator":
        """Wire every collaborator of a session from application settings."""
        narrator_policy = RetryPolicy(
            max_attempts=settings.narrator_max_attempts,
            base_delay=settings.retry_base_delay,
            max_jitter=settings.retry_max_jitter,
        )
        dice = DiceRoller()
        return cls(
            store=store,
            classifier=IntentClassifier(provider),
            mechanics=MechanicsResolver(
                CombatRelevanceVerifier(provider), PlotExpander(provider)
            ),
            narrator=NarratorInvoker(
                provider, policy=narrator_policy, history_window=settings.history_window
            ),
            extraction=ExtractionStep(
                store,
                Auditor(provider),
                Housekeeper(provider),
                LocaleAgent(provider),
                embeddings=embeddings,
                dice=dice,
            ),
            context=ContextAssembler(threshold=settings.semantic_threshold),
            embeddings=embeddings,
            indexer=BackgroundIndexer(store, embeddings, settings.indexer_quiet_period),
            tasks=BackgroundTaskQueue(max_attempts=settings.background_max_attempts),
            travel_handler=travel_handler,
            compressor=StoryCompressor(store, StorySummarizer(provider), embeddings),
            objectives=ObjectiveTracker(store, ObjectiveAdvisor(provider)),
            story_log_limit=settings.story_log_limit,
        )

    @property
    def is_auditing(self) -> bool:
        return self.extraction.is_auditing

    @property
    def is_housekeeping(self) -> bool:
        return self.extraction.is_housekeeping

    @property
    def is_indexing(self) -> bool:
        return self.indexer is not None and self.indexer.is_indexing

    async def drain(self) -> None:
        """Wait for background extraction and an armed indexer sweep."""
        await self.tasks.join()
        if self.indexer is not None:
            await self.indexer.join()

    async def close(self) -> None:
        """Cancel everything still running in the background for this session."""
        await self.tasks.cancel_all()
        if self.indexer is not None:
            await self.indexer.cancel()

    async def process_turn(self, turn: TurnInput) -> TurnResult:
        """
        Resolve one player action.

        Raises:
            TurnInProgressError: another turn is still on the critical path
        """
        if self.is_generating:
            raise TurnInProgressError("A turn is already in progress for this session")
        self.is_generating = True
        try:
            return await self._process(turn)
        finally:
            self.is_generating = False

    async def submit_automated_event(
        self,
        text: str,
        mechanics: MechanicsResult,
        system_instruction: Optional[str] = None,
    ) -> TurnResult:
        """Narrate a travel, wait or rest event whose mechanics were decided elsewhere."""
        return await self.process_turn(
            TurnInput(
                text=text,
                message_id=new_id("auto"),
                mechanics_override=mechanics,
                system_instruction=system_instruction,
            )
        )

    async def summarize_day_log(self, day: str) -> Optional[StoryLogEntry]:
        if self.compressor is None:
            return None
        return await self.compressor.compress_day(day)

    async def summarize_past_story_logs(self) -> Optional[StoryLogEntry]:
        if self.compressor is None:
            return None
        return await self.compressor.compress_archive()

    async def objective_follow_up(self, objective_id: str) -> ObjectiveFollowUp:
        """
        Raises:
            ObjectiveNotFoundError: no objective with that id
            RuntimeError: no objective tracker is configured
        """
        if self.objectives is None:
            raise RuntimeError("Objective follow-ups are not configured for this session")
        return await self.objectives.follow_up(objective_id)

    async def _extract(self, record: TurnRecord) -> None:
        await self.extraction.run(record)
        if self.compressor is None:
            return
        size = len(self.store.snapshot().story_log)
        if size > self.story_log_limit:
            compressed = await self.compressor.compress_past_days()
            logger.info(f"[Orchestrator] Story log at {size} entries; summarized {compressed} day(s)")

    async def _process(self, turn: TurnInput) -> TurnResult:
        world = self.store.snapshot()
        user_message = ChatMessage(id=turn.message_id or new_id("msg"), sender="user", content=turn.text)
        self.store.apply(AppendMessage(message=user_message))

        assessment = await self._assess(turn, world)
        logger.info(f"[Orchestrator] Turn '{turn.text[:60]}' classified as {assessment.intent_type.value}")

        if assessment.intent_type == IntentType.TRAVEL and self.travel_handler is not None:
            return await self._travel(assessment, world)

        if turn.mechanics_override is not None:
            mechanics = turn.mechanics_override
        elif assessment.intent_type in (IntentType.COMBAT, IntentType.SKILL):
            mechanics = await self.mechanics.resolve(assessment, world, heroic=turn.is_heroic)
        else:
            mechanics = MechanicsResult()

        query_vector = None
        if self.embeddings is not None:
            query_vector = await self.embeddings.embed(turn.text)

        bundle = self.context.build(
            world,
            assessment.required_keys,
            search_text=turn.text,
            query_vector=query_vector,
            heroic=turn.is_heroic,
        )
        instruction = bundle.with_directive(turn.system_instruction or mechanics.directive)

        unavailable = False
        try:
            response = await self.narrator.invoke(world, instruction, turn.text, mechanics.dice_truth)
        except NarratorUnavailableError:
            unavailable = True
            response = self.narrator.fallback(world)

        model_message = ChatMessage(sender="model", content=response.narration, rolls=mechanics.rolls)
        self.store.apply(AppendMessage(message=model_message))

        payload = AIUpdatePayload(hp_changes=dict(mechanics.hp_changes))
        if mechanics.plot_notes:
            payload.gm_notes = mechanics.plot_notes
        if unavailable:
            payload.system_messages.append(NARRATOR_UNAVAILABLE_MESSAGE)
        if not payload.is_empty():
            self.store.apply(ApplyTurnUpdate(payload=payload))

        combat_started = self._maybe_begin_combat(assessment, mechanics, response, world)

        if not unavailable:
            record = TurnRecord(
                message_id=model_message.id,
                player_text=turn.text,
                intent_type=assessment.intent_type,
                response=response,
                mechanics=mechanics,
            )
            self.tasks.submit(lambda: self._extract(record), label=f"extraction {model_message.id}")
        if self.indexer is not None:
            self.indexer.schedule()

        return TurnResult(
            message=model_message,
            assessment=assessment,
            mechanics=mechanics,
            response=response,
            combat_started=combat_started,
            narrator_unavailable=unavailable,
        )

    async def _assess(self, turn: TurnInput, world: WorldState) -> Assessment:
        if turn.mechanics_override is not None:
            override = turn.mechanics_override
            intent = IntentType.COMBAT if override.is_hostile_intent else IntentType.NARRATIVE
            if intent == IntentType.NARRATIVE and override.rolls:
                intent = IntentType.SKILL
            assessment = Assessment.fallback(world.is_combat_active)
            return assessment.model_copy(update={"intent_type": intent})

        self.is_assessing = True
        try:
            return await self.classifier.classify(
                turn.text,
                combat_active=world.is_combat_active,
                last_narration=world.last_narration(),
                skills=list(world.player.skill_bonuses),
            )
        finally:
            self.is_assessing = False

    async def _travel(self, assessment: Assessment, world: WorldState) -> TurnResult:
        destination = assessment.travel.destination if assessment.travel else "?"
        logger.info(f"[Orchestrator] Delegating travel to '{destination}'")
        narration = await self.travel_handler(assessment, world)
        message = None
        if narration:
            message = ChatMessage(sender="model", content=narration)
            self.store.apply(AppendMessage(message=message))
        return TurnResult(message=message, assessment=assessment, traveled=True)

    def _maybe_begin_combat(
        self,
        assessment: Assessment,
        mechanics: MechanicsResult,
        response: NarratorResponse,
        world: WorldState,
    ) -> bool:
        if world.is_combat_active:
            return False
        resolved_hostile = assessment.intent_type == IntentType.COMBAT and mechanics.is_hostile_intent
        if not (resolved_hostile or response.active_engagement):
            return False
        enemies = [
            Combatant(name=a.name, template=a.template, difficulty=a.difficulty, is_ship=a.is_ship)
            for a in response.suggested_actors
        ]
        self.store.apply(BeginCombat(enemies=enemies))
        logger.info(f"[Orchestrator] Combat begins with {len(enemies)} staged hostile(s)")
        return True
