"""
Core engine components for the Taleweaver turn pipeline
"""

from .chronicle import ObjectiveFollowUp, ObjectiveNotFoundError, ObjectiveTracker, StoryCompressor
from .classifier import IntentClassifier
from .context import ContextAssembler, ContextBundle
from .dice import DiceRoller
from .embeddings import EmbeddingService
from .encounters import EncounterEngine
from .extraction import ExtractionReport, ExtractionStep, TurnRecord
from .indexer import BackgroundIndexer
from .mechanics import MechanicsResolver
from .narrator import NarratorInvoker
from .orchestrator import (
    SessionNotFoundError,
    TurnInProgressError,
    TurnOrchestrator,
    TurnResult,
)
from .store import WorldStore
from .tasks import BackgroundTaskQueue

__all__ = [
    "IntentClassifier",
    "ContextAssembler",
    "ContextBundle",
    "DiceRoller",
    "EmbeddingService",
    "EncounterEngine",
    "ExtractionStep",
    "ExtractionReport",
    "TurnRecord",
    "BackgroundIndexer",
    "ObjectiveFollowUp",
    "ObjectiveNotFoundError",
    "ObjectiveTracker",
    "StoryCompressor",
    "MechanicsResolver",
    "NarratorInvoker",
    "TurnOrchestrator",
    "TurnResult",
    "TurnInProgressError",
    "SessionNotFoundError",
    "WorldStore",
    "BackgroundTaskQueue",
]
