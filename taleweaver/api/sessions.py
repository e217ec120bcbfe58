"""
Session management API endpoints.

Each session owns one world store and the turn orchestrator wired around it.
Sessions live in memory; a session's full state can be exported as JSON and
imported again losslessly.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Response
from pydantic import BaseModel, Field, ValidationError

from taleweaver.config import settings
from taleweaver.engine.chronicle import ObjectiveNotFoundError
from taleweaver.engine.embeddings import EmbeddingService
from taleweaver.engine.orchestrator import (
    SessionNotFoundError,
    TurnInProgressError,
    TurnOrchestrator,
    TurnResult,
)
from taleweaver.engine.store import WorldStore
from taleweaver.providers import create_embedding_provider, create_provider
from taleweaver.schemas.assessment import TurnInput
from taleweaver.schemas.mechanics import MechanicsResult
from taleweaver.schemas.world import (
    Companion,
    MapZone,
    PlayerCharacter,
    WorldState,
)
from taleweaver.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()

# session id -> orchestrator (which owns the session's world store)
sessions_db: Dict[str, TurnOrchestrator] = {}


class SessionCreateRequest(BaseModel):
    """Request to start a new adventure"""

    player: PlayerCharacter = Field(default_factory=PlayerCharacter)
    companions: List[Companion] = Field(default_factory=list)
    world_summary: str = ""
    adventure_brief: str = ""
    starting_zone: Optional[MapZone] = None
    starting_site: str = ""
    current_time: Optional[str] = None


class SessionCreateResponse(BaseModel):
    id: str
    status: str


class SessionTurnRequest(BaseModel):
    """Request for a turn in a session"""

    action: str = Field(..., min_length=1)
    message_id: Optional[str] = None
    is_heroic: bool = False


class AutomatedEventRequest(BaseModel):
    """Travel, wait or rest event with mechanics already decided by the caller"""

    action: str = Field(..., min_length=1)
    mechanics: MechanicsResult = Field(default_factory=MechanicsResult)
    system_instruction: Optional[str] = None


class StoryCompressRequest(BaseModel):
    day: Optional[str] = Field(
        default=None, description="Day to summarize, e.g. \"March 3, 1024\"; omit to archive the whole log"
    )


class SessionTurnResponse(BaseModel):
    session_id: str
    narration: str
    intent: str
    rolls: List[Dict[str, Any]] = Field(default_factory=list)
    combat_started: bool = False
    traveled: bool = False
    narrator_unavailable: bool = False
    message_id: Optional[str] = None


def _build_orchestrator(store: WorldStore) -> TurnOrchestrator:
    provider = create_provider()
    embeddings = EmbeddingService(create_embedding_provider())
    return TurnOrchestrator.build(store, provider, embeddings, settings)


def get_orchestrator(session_id: str) -> TurnOrchestrator:
    orchestrator = sessions_db.get(session_id)
    if orchestrator is None:
        raise SessionNotFoundError(session_id)
    return orchestrator


def _require(session_id: str) -> TurnOrchestrator:
    try:
        return get_orchestrator(session_id)
    except SessionNotFoundError:
        logger.warning(f"[API] Session not found: {session_id}")
        raise HTTPException(status_code=404, detail="Session not found")


def _register(store: WorldStore) -> SessionCreateResponse:
    sessions_db[store.session_id] = _build_orchestrator(store)
    return SessionCreateResponse(id=store.session_id, status="active")


@router.post("/", response_model=SessionCreateResponse)
async def create_session(request: SessionCreateRequest):
    """
    Create a new session with a fresh world.

    Args:
        request: Player sheet, companions and starting location

    Returns:
        SessionCreateResponse with the new session id
    """
    world = WorldState(
        player=request.player,
        companions=request.companions,
        world_summary=request.world_summary,
        adventure_brief=request.adventure_brief,
    )
    if request.current_time:
        world.current_time = request.current_time
    if request.starting_zone is not None:
        zone = request.starting_zone.model_copy(update={"visited": True})
        world.zones[zone.coordinates] = zone
        world.current_coordinates = zone.coordinates
        world.current_locale = zone.name
    if request.starting_site:
        world.current_poi = request.starting_site

    response = _register(WorldStore(world, memory_cap=settings.memory_cap))
    logger.info(f"[API] Session created: {response.id} (player: {world.player.name})")
    return response


@router.post("/import", response_model=SessionCreateResponse)
async def import_session(state: Dict[str, Any]):
    """
    Restore a session from an exported world state.

    Raises:
        HTTPException 422: The state does not validate
        HTTPException 409: A live session already uses that id
    """
    try:
        world = WorldState.model_validate(state)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=f"Invalid world state: {e.error_count()} errors")
    if world.session_id in sessions_db:
        logger.warning(f"[API] Import refused; session {world.session_id} is live")
        raise HTTPException(status_code=409, detail="Session already exists")
    response = _register(WorldStore(world, memory_cap=settings.memory_cap))
    logger.info(f"[API] Session imported: {response.id}")
    return response


@router.get("/")
async def list_sessions():
    return {
        "sessions": [
            {"id": session_id, "version": orchestrator.store.version}
            for session_id, orchestrator in sessions_db.items()
        ]
    }


@router.get("/{session_id}")
async def get_session(session_id: str):
    """Current world state plus pipeline busy flags."""
    orchestrator = _require(session_id)
    world = orchestrator.store.snapshot()
    return {
        "id": session_id,
        "version": orchestrator.store.version,
        "status": {
            "is_assessing": orchestrator.is_assessing,
            "is_generating": orchestrator.is_generating,
            "is_auditing": orchestrator.is_auditing,
            "is_housekeeping": orchestrator.is_housekeeping,
            "is_indexing": orchestrator.is_indexing,
        },
        "state": world.model_dump(mode="json", exclude={"messages"}),
    }


@router.post("/{session_id}/turns", response_model=SessionTurnResponse)
async def process_turn(session_id: str, request: SessionTurnRequest):
    """
    Resolve one player action and return the committed narration.

    Raises:
        HTTPException 404: Session not found
        HTTPException 409: A turn is already in progress
    """
    orchestrator = _require(session_id)
    logger.info(f"[API] Turn for {session_id}: {request.action[:80]}")

    try:
        result = await orchestrator.process_turn(
            TurnInput(text=request.action, message_id=request.message_id, is_heroic=request.is_heroic)
        )
    except TurnInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _turn_response(session_id, result)


@router.post("/{session_id}/events", response_model=SessionTurnResponse)
async def submit_event(session_id: str, request: AutomatedEventRequest):
    """Narrate an automated event; its mechanics bypass intent classification."""
    orchestrator = _require(session_id)
    logger.info(f"[API] Automated event for {session_id}: {request.action[:80]}")

    try:
        result = await orchestrator.submit_automated_event(
            request.action, request.mechanics, request.system_instruction
        )
    except TurnInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _turn_response(session_id, result)


def _turn_response(session_id: str, result: TurnResult) -> SessionTurnResponse:
    message = result.message
    return SessionTurnResponse(
        session_id=session_id,
        narration=message.content if message else "",
        intent=result.assessment.intent_type.value,
        rolls=[r.model_dump(mode="json") for r in result.mechanics.rolls],
        combat_started=result.combat_started,
        traveled=result.traveled,
        narrator_unavailable=result.narrator_unavailable,
        message_id=message.id if message else None,
    )


@router.get("/{session_id}/messages")
async def list_messages(session_id: str, limit: int = 50):
    orchestrator = _require(session_id)
    messages = orchestrator.store.snapshot().messages
    if limit > 0:
        messages = messages[-limit:]
    return {"session_id": session_id, "messages": [m.model_dump(mode="json") for m in messages]}


@router.post("/{session_id}/story/compress")
async def compress_story(session_id: str, request: StoryCompressRequest):
    """Fold one day, or the whole story log, into a summary entry."""
    orchestrator = _require(session_id)
    if request.day:
        entry = await orchestrator.summarize_day_log(request.day)
    else:
        entry = await orchestrator.summarize_past_story_logs()
    return {
        "session_id": session_id,
        "compressed": entry is not None,
        "entry": entry.model_dump(mode="json", exclude={"embedding"}) if entry else None,
    }


@router.post("/{session_id}/objectives/{objective_id}/follow-up")
async def objective_follow_up(session_id: str, objective_id: str):
    """Close the objective if the recent exchange achieved it, else suggest a next action."""
    orchestrator = _require(session_id)
    try:
        result = await orchestrator.objective_follow_up(objective_id)
    except ObjectiveNotFoundError:
        raise HTTPException(status_code=404, detail="Objective not found")
    return result.model_dump()


@router.get("/{session_id}/export")
async def export_session(session_id: str):
    """Full world state as JSON, embeddings included."""
    orchestrator = _require(session_id)
    return Response(content=orchestrator.store.to_json(), media_type="application/json")


@router.delete("/{session_id}")
async def delete_session(session_id: str):
    orchestrator = _require(session_id)
    await orchestrator.close()
    del sessions_db[session_id]
    logger.info(f"[API] Session deleted: {session_id}")
    return {"id": session_id, "status": "deleted"}
