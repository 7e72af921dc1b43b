"""Exponential backoff for rate-limited requests."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Maps a rate-limit attempt count to a wait and a give-up decision.

    - attempt counts consecutive 429 responses for the same request, starting at 1.
    - the wait for attempt n is base_delay * 2**n (2s, 4s, 8s, ... with the defaults).
    - max_retries is the number of retries allowed; attempt max_retries + 1 gives up.
    """

    base_delay: float = 1.0
    max_retries: int = 5
    max_delay: float | None = None

    def __post_init__(self) -> None:
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.max_delay is not None and self.max_delay < 0:
            raise ValueError("max_delay must be >= 0")

    def next_wait(self, attempt: int) -> float:
        delay = self.base_delay * (2 ** max(0, int(attempt)))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return float(delay)

    def should_give_up(self, attempt: int) -> bool:
        return attempt > self.max_retries
