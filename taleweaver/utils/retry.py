"""
Retry policy shared by every external-service call.

A RetryPolicy owns three decisions: how many attempts are allowed, how long
to back off between them and which failures are worth retrying. Callers wrap
their coroutine factory with ``await policy.run(fn, label=...)``.
"""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from taleweaver.utils.logger import get_logger

logger = get_logger(__name__)

OVERLOAD_STATUS_CODES = {503, 529}
OVERLOAD_MARKERS = ("overloaded", "unavailable", "503")


class ProviderError(Exception):
    """A collaborator call failed for a reason that retrying will not fix"""


class ProviderOverloadedError(ProviderError):
    """The remote service reported that it is overloaded"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NarratorUnavailableError(Exception):
    """The narrator stayed overloaded through every retry"""


def is_overloaded_error(exc: BaseException) -> bool:
    """Return True when ``exc`` signals a transient overload of the service."""
    if isinstance(exc, ProviderOverloadedError):
        return True
    status = getattr(exc, "status_code", None)
    if status in OVERLOAD_STATUS_CODES:
        return True
    text = str(exc).lower()
    return any(marker in text for marker in OVERLOAD_MARKERS)


def never_retry(exc: BaseException) -> bool:
    return False


@dataclass
class RetryPolicy:
    """
    Bounded exponential backoff.

    The delay before retry ``n`` (zero-based) is
    ``base_delay * 2 ** n + uniform(0, max_jitter)``.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_jitter: float = 0.5
    retryable: Callable[[BaseException], bool] = is_overloaded_error
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    rng: random.Random = field(default_factory=random.Random)

    @classmethod
    def single_attempt(cls) -> "RetryPolicy":
        """Policy for best-effort calls: one try, no retry."""
        return cls(max_attempts=1, base_delay=0.0, max_jitter=0.0, retryable=never_retry)

    def backoff(self, attempt_index: int) -> float:
        jitter = self.rng.uniform(0, self.max_jitter) if self.max_jitter > 0 else 0.0
        return self.base_delay * (2**attempt_index) + jitter

    async def run(self, fn: Callable[[], Awaitable[Any]], label: str = "call") -> Any:
        """
        Invoke ``fn`` until it succeeds, a non-retryable error occurs or the
        attempts are exhausted. The last error is re-raised.
        """
        attempts = max(1, self.max_attempts)
        for attempt_index in range(attempts):
            try:
                return await fn()
            except Exception as exc:
                is_last = attempt_index == attempts - 1
                if is_last or not self.retryable(exc):
                    if attempts > 1:
                        logger.warning(
                            f"[Retry] {label} failed after {attempt_index + 1} attempt(s): {exc}"
                        )
                    raise
                delay = self.backoff(attempt_index)
                logger.warning(
                    f"[Retry] {label} attempt {attempt_index + 1}/{attempts} overloaded, "
                    f"retrying in {delay:.2f}s"
                )
                await self.sleep(delay)
        raise RuntimeError("unreachable")  # pragma: no cover
