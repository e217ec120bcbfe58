"""
Narrator Invoker

Sends the assembled instruction, a short window of chat history and the
player's action (with the dice truth appended) to the Narrative Service and
decodes the reply against the fixed narrator schema.
"""

from typing import List, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from taleweaver import prompts
from taleweaver.providers.base import BaseProvider
from taleweaver.schemas.narration import NARRATOR_JSON_SCHEMA, NarratorResponse
from taleweaver.schemas.validation import decode_or_default
from taleweaver.schemas.world import WorldState
from taleweaver.utils.logger import get_logger
from taleweaver.utils.retry import NarratorUnavailableError, RetryPolicy, is_overloaded_error

logger = get_logger(__name__)

DEFAULT_HISTORY_WINDOW = 4


class NarratorInvoker:
    def __init__(
        self,
        provider: BaseProvider,
        policy: Optional[RetryPolicy] = None,
        history_window: int = DEFAULT_HISTORY_WINDOW,
    ):
        self.provider = provider
        self.policy = policy or RetryPolicy(max_attempts=3)
        self.history_window = history_window

    def build_messages(
        self, world: WorldState, instruction: str, player_text: str, dice_truth: str = ""
    ) -> List[BaseMessage]:
        history: List[BaseMessage] = []
        window = world.messages[-self.history_window :] if self.history_window > 0 else []
        for message in window:
            if message.sender == "user":
                history.append(HumanMessage(content=message.content))
            elif message.sender == "model":
                history.append(AIMessage(content=message.content))

        content = player_text
        if dice_truth:
            content = f"{player_text}\n\n{prompts.DICE_TRUTH_HEADING}\n{dice_truth}"

        return [*history, SystemMessage(content=instruction), HumanMessage(content=content)]

    def fallback(self, world: WorldState) -> NarratorResponse:
        zone = world.current_zone
        return NarratorResponse.fallback(
            site_name=world.current_poi or world.current_locale,
            zone=zone.name if zone else "",
            brief=world.adventure_brief,
        )

    async def invoke(
        self, world: WorldState, instruction: str, player_text: str, dice_truth: str = ""
    ) -> NarratorResponse:
        """
        Generate the narration for one turn.

        Args:
            world: Snapshot the turn was planned against
            instruction: Rendered context bundle plus any mechanics directive
            player_text: The raw player action
            dice_truth: Dice summary appended under the dice-truth heading

        Returns:
            The decoded reply, or the fallback reply for malformed output and
            non-overload failures

        Raises:
            NarratorUnavailableError: the service stayed overloaded through
            every retry
        """
        messages = self.build_messages(world, instruction, player_text, dice_truth)
        try:
            response = await self.policy.run(
                lambda: self.provider.chat(messages, json_schema=NARRATOR_JSON_SCHEMA),
                label="narrator",
            )
        except Exception as e:
            if is_overloaded_error(e):
                logger.error(f"[Narrator] Service overloaded after retries: {e}")
                raise NarratorUnavailableError(str(e)) from e
            logger.error(f"[Narrator] Generation failed, using fallback: {e}")
            return self.fallback(world)

        return decode_or_default(
            response.content,
            NarratorResponse,
            lambda: self.fallback(world),
            schema=NARRATOR_JSON_SCHEMA,
            label="narrator",
        )
