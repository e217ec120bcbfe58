"""
Chronicle upkeep: story log compression and objective follow-ups.

Past days of the story log are folded into one summary entry each, and the
whole log can be folded into a single archive entry. Summary entries are
embedded before they are committed so semantic recall keeps working on the
compressed log.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel

from taleweaver.schemas.narration import ObjectiveUpdate
from taleweaver.schemas.updates import AIUpdatePayload, ApplyTurnUpdate, CompressStoryLog
from taleweaver.schemas.world import StoryLogEntry, new_id
from taleweaver.utils.game_time import parse_game_time
from taleweaver.utils.logger import get_logger

from .embeddings import EmbeddingService
from .services import ObjectiveAdvisor, StorySummarizer
from .store import WorldStore

logger = get_logger(__name__)

SUMMARY_PREFIXES = ("summary-", "archive-")
ARCHIVE_TIMESTAMP = "Previous Adventures"


class ObjectiveNotFoundError(Exception):
    """No objective with the requested id exists"""


def story_day(timestamp: str) -> str:
    """Calendar day of a world clock string ("March 3, 1024"), or "" when unparseable."""
    moment = parse_game_time(timestamp)
    if moment is None:
        return ""
    return f"{moment.strftime('%B')} {moment.day}, {moment.year}"


def is_summary(entry: StoryLogEntry) -> bool:
    return entry.id.startswith(SUMMARY_PREFIXES)


def group_by_day(entries: List[StoryLogEntry]) -> Dict[str, List[StoryLogEntry]]:
    """Raw (non-summary) entries per day, in log order."""
    days: Dict[str, List[StoryLogEntry]] = {}
    for entry in entries:
        day = story_day(entry.timestamp)
        if day and not is_summary(entry):
            days.setdefault(day, []).append(entry)
    return days


class StoryCompressor:
    def __init__(
        self,
        store: WorldStore,
        summarizer: StorySummarizer,
        embeddings: Optional[EmbeddingService] = None,
    ):
        self.store = store
        self.summarizer = summarizer
        self.embeddings = embeddings

    async def compress_day(self, day: str) -> Optional[StoryLogEntry]:
        """Fold one day's entries into a daily summary; None if nothing was compressed."""
        story = self.store.snapshot().story_log
        entries = group_by_day(story).get(day, [])
        if not entries:
            return None
        first = story.index(entries[0])
        summary = await self.summarizer.summarize_day(entries, story[:first])
        if summary is None:
            logger.warning(f"[Chronicle] No summary for {day}; keeping {len(entries)} entries")
            return None
        entry = StoryLogEntry(
            id=new_id("summary"),
            summary=summary,
            content=f"[Daily Summary: {day}]\n{summary}",
            location=entries[-1].location,
            timestamp=entries[0].timestamp,
        )
        return await self._commit(entries, entry)

    async def compress_archive(self) -> Optional[StoryLogEntry]:
        """Fold the whole story log into one archive entry."""
        story = self.store.snapshot().story_log
        if len(story) < 2:
            return None
        summary = await self.summarizer.summarize_archive(story)
        if summary is None:
            logger.warning("[Chronicle] Archive summary failed; story log left as is")
            return None
        entry = StoryLogEntry(
            id=new_id("archive"),
            summary=summary,
            content=f"[Archive Summary]\n{summary}",
            location="Various",
            timestamp=ARCHIVE_TIMESTAMP,
        )
        return await self._commit(story, entry)

    async def compress_past_days(self) -> int:
        """Summarize every finished day holding at least two raw entries."""
        world = self.store.snapshot()
        today = story_day(world.current_time)
        compressed = 0
        for day, entries in group_by_day(world.story_log).items():
            if day == today or len(entries) < 2:
                continue
            if await self.compress_day(day) is not None:
                compressed += 1
        return compressed

    async def _commit(
        self, removed: List[StoryLogEntry], entry: StoryLogEntry
    ) -> Optional[StoryLogEntry]:
        if self.embeddings is not None:
            entry.embedding = await self.embeddings.embed(f"{entry.summary} {entry.content}")
        events = self.store.apply(CompressStoryLog(remove_ids=[e.id for e in removed], entry=entry))
        if not any(e.kind == "story_compressed" for e in events):
            return None
        return entry


class ObjectiveFollowUp(BaseModel):
    objective_id: str
    completed: bool = False
    reason: str = ""
    suggested_action: str = ""


class ObjectiveTracker:
    """Checks a quest against the recent exchange and either closes it or hints the next step"""

    def __init__(self, store: WorldStore, advisor: ObjectiveAdvisor):
        self.store = store
        self.advisor = advisor

    async def follow_up(self, objective_id: str) -> ObjectiveFollowUp:
        world = self.store.snapshot()
        objective = next((o for o in world.objectives if o.id == objective_id), None)
        if objective is None:
            raise ObjectiveNotFoundError(objective_id)

        recent = world.messages[-3:]
        check = await self.advisor.check(objective, recent)
        if check.completed:
            self.store.apply(
                ApplyTurnUpdate(
                    payload=AIUpdatePayload(
                        objectives=[ObjectiveUpdate(title=objective.title, status="completed")],
                        system_messages=[f"Objective completed: {objective.title}"],
                    )
                )
            )
            logger.info(f"[Chronicle] Objective '{objective.title}' completed: {check.reason}")
            return ObjectiveFollowUp(objective_id=objective_id, completed=True, reason=check.reason)

        action = await self.advisor.suggest_action(objective, recent)
        return ObjectiveFollowUp(objective_id=objective_id, reason=check.reason, suggested_action=action)
