"""Fixed-step retry backoff.

Retries wait a fixed, configurable delay per attempt rather than an
exponential curve: tool calls are local and cheap, so short predictable
pauses (100ms, 500ms, 1s) are enough to ride out a transient hiccup.

Example:
    >>> backoff = RetryBackoff(steps_ms=(100, 500, 1000))
    >>> backoff.delay_ms(attempt=1)
    100
    >>> backoff.delay_ms(attempt=7)  # past the table: last step repeats
    1000
    >>> await backoff.sleep(attempt=1)
"""

import asyncio
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class RetryBackoff:
    """Delay table for retries.

    Attributes:
        steps_ms: Delay before retry N is ``steps_ms[N-1]``; the last entry
            repeats for later attempts.
    """

    steps_ms: tuple[int, ...] = (100, 500, 1000)
    """Delays in milliseconds, one per retry."""

    def __post_init__(self) -> None:
        """Validate the delay table."""
        if not self.steps_ms:
            raise ValueError("steps_ms must not be empty")
        if any(step < 0 for step in self.steps_ms):
            raise ValueError("steps_ms must be non-negative")

    def delay_ms(self, attempt: int) -> int:
        """Delay in milliseconds after failed attempt ``attempt`` (1-indexed)."""
        index = min(max(attempt, 1), len(self.steps_ms)) - 1
        return self.steps_ms[index]

    async def sleep(self, attempt: int, abort_event: asyncio.Event | None = None) -> bool:
        """Sleep before the next attempt, yielding to the event loop.

        Returns:
            True if the sleep completed, False if aborted.
        """
        delay_s = self.delay_ms(attempt) / 1000

        if abort_event:
            try:
                await asyncio.wait_for(abort_event.wait(), timeout=delay_s)
                return False
            except asyncio.TimeoutError:
                return True
        await asyncio.sleep(delay_s)
        return True

    def sequence(self, retries: int) -> list[int]:
        """Delays used for ``retries`` retries, for logging."""
        return [self.delay_ms(attempt) for attempt in range(1, retries + 1)]


DEFAULT_RETRY_BACKOFF = RetryBackoff()
"""100ms -> 500ms -> 1s."""
