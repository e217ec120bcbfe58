"""
Background indexer: after a quiet period, back-fill embeddings for every
embeddable entry that lacks one. Runs at most once per session.
"""

import asyncio
from typing import List, Optional, Tuple

from taleweaver.schemas.updates import SetEmbedding
from taleweaver.schemas.world import WorldState
from taleweaver.utils.logger import get_logger

from .embeddings import EmbeddingService
from .store import WorldStore

logger = get_logger(__name__)

DEFAULT_QUIET_PERIOD = 10.0

# (collection, entry id, text to embed)
IndexTarget = Tuple[str, str, str]


def pending_targets(world: WorldState) -> List[IndexTarget]:
    targets: List[IndexTarget] = []
    for entry in world.knowledge:
        if not entry.embedding:
            targets.append(("knowledge", entry.id, f"{entry.title} {entry.content}"))
    for objective in world.objectives:
        if not objective.embedding:
            targets.append(("objectives", objective.id, f"{objective.title} {objective.content}"))
    for actor in [*world.npcs, *world.companions]:
        for memory in actor.memories:
            if not memory.embedding:
                targets.append(("npc_memories", memory.id, memory.content))
    for entry in world.story_log:
        if not entry.embedding:
            targets.append(("story_log", entry.id, f"{entry.summary} {entry.content}"))
    return targets


class BackgroundIndexer:
    def __init__(
        self,
        store: WorldStore,
        embeddings: EmbeddingService,
        quiet_period: float = DEFAULT_QUIET_PERIOD,
    ):
        self.store = store
        self.embeddings = embeddings
        self.quiet_period = quiet_period
        self.has_run = False
        self.is_indexing = False
        self._task: Optional[asyncio.Task] = None

    def schedule(self) -> Optional[asyncio.Task]:
        """Arm the one-shot sweep; later calls are no-ops."""
        if self.has_run or self._task is not None or not self.embeddings.is_available():
            return None
        self._task = asyncio.create_task(self._delayed())
        return self._task

    async def _delayed(self) -> int:
        if self.quiet_period > 0:
            await asyncio.sleep(self.quiet_period)
        return await self.run()

    async def run(self) -> int:
        """Embed every entry without a vector; returns how many were written."""
        if self.has_run:
            return 0
        self.has_run = True
        self.is_indexing = True
        written = 0
        try:
            targets = pending_targets(self.store.snapshot())
            logger.info(f"[Indexer] Sweeping {len(targets)} entries without embeddings")
            for collection, entry_id, text in targets:
                vector = await self.embeddings.embed(text)
                if not vector:
                    continue
                events = self.store.apply(
                    SetEmbedding(collection=collection, entry_id=entry_id, vector=vector)
                )
                if not events:
                    written += 1
        finally:
            self.is_indexing = False
        logger.info(f"[Indexer] Wrote {written} embeddings")
        return written

    async def join(self) -> None:
        """Wait for an armed sweep to finish."""
        if self._task is not None and not self._task.done():
            await asyncio.gather(self._task, return_exceptions=True)

    async def cancel(self) -> None:
        task = self._task
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("[Indexer] Sweep cancelled")
