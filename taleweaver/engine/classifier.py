"""
Intent Classifier

Maps raw player text to the closed intent set and the context modules the
narrator will need. The heavy lifting is delegated to the Narrative Service;
a fixed post-decision policy then normalises the reply so downstream code
only ever sees a valid ``Assessment``.
"""

import re
from typing import List, Optional, Sequence

from langchain_core.messages import HumanMessage, SystemMessage

from taleweaver import prompts
from taleweaver.providers.base import BaseProvider
from taleweaver.schemas.assessment import (
    COMBAT_CONTEXT_KEYS,
    DATA_MENU,
    DEFAULT_CONTEXT_KEYS,
    Assessment,
    ContextKey,
    IntentType,
    TravelIntent,
)
from taleweaver.schemas.services import ClassifierReply, schema_for
from taleweaver.schemas.validation import decode_or_default
from taleweaver.utils.logger import get_logger
from taleweaver.utils.retry import RetryPolicy

logger = get_logger(__name__)

AGGRESSIVE_VERBS = (
    "attack",
    "assault",
    "strike",
    "stab",
    "slash",
    "shoot",
    "fire at",
    "punch",
    "kick",
    "hit",
    "smite",
    "swing at",
    "lunge at",
    "charge at",
    "tackle",
    "kill",
    "murder",
    "behead",
    "fight",
    "ambush",
    "bash",
    "cleave",
)

_AGGRESSION = re.compile(
    r"\b(" + "|".join(re.escape(v) for v in AGGRESSIVE_VERBS) + r")(s|es|ed|ing)?\b",
    re.IGNORECASE,
)


def has_aggressive_verb(text: str) -> bool:
    """Explicit violence only; drawing or readying a weapon does not count."""
    return bool(_AGGRESSION.search(text or ""))


def _coerce_keys(raw: Sequence[str]) -> set:
    keys = set()
    for value in raw:
        try:
            keys.add(ContextKey(str(value).strip().lower()))
        except ValueError:
            logger.debug(f"[Classifier] Dropping unknown context key: {value!r}")
    return keys


def apply_policy(reply: ClassifierReply, text: str, combat_active: bool) -> Assessment:
    """Normalise a raw classifier reply into an Assessment."""
    try:
        intent = IntentType(reply.intent_type.strip().lower())
    except ValueError:
        logger.warning(f"[Classifier] Unknown intent {reply.intent_type!r}; treating as narrative")
        intent = IntentType.NARRATIVE

    if intent == IntentType.COMBAT and not has_aggressive_verb(text):
        logger.info("[Classifier] Combat without an aggressive verb; downgrading to narrative")
        intent = IntentType.NARRATIVE

    travel = None
    if intent == IntentType.TRAVEL:
        if reply.travel_destination:
            travel = TravelIntent(
                destination=reply.travel_destination,
                method=reply.travel_method or "walking",
            )
        else:
            intent = IntentType.NARRATIVE

    requests = reply.requests if intent == IntentType.SKILL else []
    if intent == IntentType.SKILL and not requests:
        intent = IntentType.NARRATIVE

    keys = set(DEFAULT_CONTEXT_KEYS) | _coerce_keys(reply.required_keys)
    if combat_active or intent == IntentType.COMBAT:
        keys |= COMBAT_CONTEXT_KEYS
    if intent == IntentType.TRAVEL:
        keys.add(ContextKey.LOCATION_DETAILS)

    return Assessment(
        intent_type=intent,
        required_keys=keys,
        requests=requests,
        travel=travel,
        reasoning=reply.reasoning,
    )


class IntentClassifier:
    def __init__(self, provider: BaseProvider, policy: Optional[RetryPolicy] = None):
        self.provider = provider
        self.policy = policy or RetryPolicy.single_attempt()

    async def classify(
        self,
        text: str,
        combat_active: bool = False,
        last_narration: str = "",
        skills: Optional[List[str]] = None,
    ) -> Assessment:
        """Classify ``text``; any failure yields a narrative assessment with default keys."""
        menu = "\n".join(f'- "{key.value}": {desc}' for key, desc in DATA_MENU.items())
        messages = [
            SystemMessage(content=prompts.CLASSIFIER_SYSTEM.format(menu=menu)),
            HumanMessage(
                content=prompts.CLASSIFIER_USER.format(
                    text=text,
                    last_narration=(last_narration or "")[:100],
                    combat_active=combat_active,
                    skills=", ".join(skills or []) or "any",
                )
            ),
        ]

        try:
            response = await self.policy.run(
                lambda: self.provider.chat(messages, json_schema=schema_for(ClassifierReply)),
                label="intent classification",
            )
        except Exception as e:
            logger.warning(f"[Classifier] Service failed, defaulting to narrative: {e}")
            return Assessment.fallback(combat_active)

        reply = decode_or_default(response.content, ClassifierReply, None, label="classifier")
        if reply is None:
            return Assessment.fallback(combat_active)

        assessment = apply_policy(reply, text, combat_active)
        logger.info(
            f"[Classifier] {assessment.intent_type.value} "
            f"({len(assessment.requests)} checks, keys={sorted(k.value for k in assessment.required_keys)})"
        )
        return assessment
