"""
Resonance retrieval over NPC memories, lore and the story log.

When a query vector is available entries are ranked with the similarity
engine; otherwise a lexical scorer over the player's words stands in. All
entry lists are append-only, so list position doubles as chronology.
"""

import re
from typing import List, Optional, Sequence

from taleweaver.schemas.world import LoreEntry, NPCMemory, StoryLogEntry
from taleweaver.utils.logger import get_logger

from .similarity import search_top_k

logger = get_logger(__name__)

RECENT_MEMORIES = 5
RESONANT_MEMORIES = 5
RESONANT_LORE = 3
RECENT_STORY = 3
RESONANT_STORY = 3
DEFAULT_THRESHOLD = 0.4
FIRST_MEETING = "First meeting."

_SPLIT = re.compile(r"[\W_]+")


def search_terms(text: str) -> List[str]:
    """Lower-cased words longer than three characters."""
    return [t for t in _SPLIT.split((text or "").lower()) if len(t) > 3]


def _has_query(query_vector: Optional[Sequence[float]]) -> bool:
    return bool(query_vector)


def relevant_memories(
    search_text: str,
    memories: Sequence[NPCMemory],
    query_vector: Optional[Sequence[float]] = None,
    threshold: float = DEFAULT_THRESHOLD,
) -> List[NPCMemory]:
    """
    Composite memory: the 5 most recent plus up to 5 resonant older ones,
    returned in chronological order without duplicates.
    """
    if not memories:
        return []

    recent = list(memories[-RECENT_MEMORIES:])
    recent_ids = {m.id for m in recent}
    pool = [m for m in memories if m.id not in recent_ids]

    if _has_query(query_vector):
        ranked = search_top_k(
            query_vector, pool, lambda m: m.embedding, RESONANT_MEMORIES, threshold
        )
        resonant = [m for m, _ in ranked]
    else:
        terms = search_terms(search_text)
        scored = []
        for memory in pool:
            content = memory.content.lower()
            score = sum(10 for term in terms if term in content)
            if score > 0:
                scored.append((score, memory))
        scored.sort(key=lambda pair: -pair[0])
        resonant = [m for _, m in scored[:RESONANT_MEMORIES]]

    chosen = {m.id for m in resonant} | recent_ids
    return [m for m in memories if m.id in chosen]


def format_memories(memories: Sequence[NPCMemory]) -> str:
    if not memories:
        return FIRST_MEETING
    return "; ".join(f"[{m.timestamp}]: {m.content}" for m in memories)


def _lexical_lore_score(entry: LoreEntry, terms: List[str]) -> int:
    title = (entry.title or "").lower()
    content = (entry.content or "").lower()
    keywords = [k.lower() for k in entry.keywords]
    score = 0
    for term in terms:
        if title == term:
            score += 20
        elif term in title:
            score += 10
        if term in keywords:
            score += 8
        if term in content:
            score += 2
    return score


def relevant_lore(
    search_text: str,
    lore: Sequence[LoreEntry],
    query_vector: Optional[Sequence[float]] = None,
    threshold: float = DEFAULT_THRESHOLD,
) -> List[LoreEntry]:
    """Up to three lore entries, best first."""
    if not lore:
        return []

    if _has_query(query_vector):
        ranked = search_top_k(query_vector, lore, lambda e: e.embedding, RESONANT_LORE, threshold)
        return [entry for entry, _ in ranked]

    terms = search_terms(search_text)
    if not terms:
        return []
    scored = [(_lexical_lore_score(entry, terms), i, entry) for i, entry in enumerate(lore)]
    scored = [s for s in scored if s[0] > 5]
    scored.sort(key=lambda s: (-s[0], s[1]))
    return [entry for _, _, entry in scored[:RESONANT_LORE]]


def relevant_story(
    search_text: str,
    story_log: Sequence[StoryLogEntry],
    query_vector: Optional[Sequence[float]] = None,
    threshold: float = DEFAULT_THRESHOLD,
) -> List[StoryLogEntry]:
    """
    The last three story entries plus up to three semantically resonant
    older ones, re-sorted chronologically.
    """
    if not story_log:
        return []

    recent = list(story_log[-RECENT_STORY:])
    older = list(story_log[:-RECENT_STORY])
    echoes: List[StoryLogEntry] = []
    if older and _has_query(query_vector):
        ranked = search_top_k(query_vector, older, lambda e: e.embedding, RESONANT_STORY, threshold)
        echoes = [entry for entry, _ in ranked]
    elif older:
        terms = search_terms(search_text)
        scored = []
        for i, entry in enumerate(older):
            text = f"{entry.summary} {entry.content}".lower()
            score = sum(1 for term in terms if term in text)
            if score > 0:
                scored.append((score, i, entry))
        scored.sort(key=lambda s: (-s[0], s[1]))
        echoes = [entry for _, _, entry in scored[:RESONANT_STORY]]

    chosen = {e.id for e in echoes} | {e.id for e in recent}
    return [entry for entry in story_log if entry.id in chosen]
