"""
Retry policy for optimistic-concurrency conflicts.

Design Pattern: Strategy Pattern
FlowEngine.deliver_input() refetches and retries a context mutation that
lost a race (StaleContext). RetryPolicy decides how many tries that loop
gets and how long it backs off between them.

Conflicts on one context come from two deliveries, or a delivery and a
wakeup, landing together. The loser's refetch almost always sees a settled
row, so delays stay in the low milliseconds and attempts stay few.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar


@dataclass(frozen=True)
class RetryPolicy:
    """
    How deliver_input() retries after StaleContext.

    Examples:
        # Same backoff as the default, more tries
        policy = RetryPolicy.with_max_attempts(5)

        # Fail on the first conflict
        engine = FlowEngine(store, retry_policy=RetryPolicy.NO_RETRY)

        # Fully custom
        policy = RetryPolicy(max_attempts=4, initial_delay_ms=2, max_delay_ms=50)
    """

    max_attempts: int
    """Total tries, the first one included. Must be at least 1."""

    initial_delay_ms: int = 5
    max_delay_ms: int = 200
    backoff_multiplier: float = 2.0

    DEFAULT: ClassVar[RetryPolicy]
    NO_RETRY: ClassVar[RetryPolicy]
    CONTENDED: ClassVar[RetryPolicy]

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.initial_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("retry delays cannot be negative")

    @classmethod
    def with_max_attempts(cls, max_attempts: int) -> RetryPolicy:
        """Default backoff with a custom number of tries (PYRHOE_STALE_RETRIES)."""
        return cls(max_attempts=max_attempts)

    def delay_for_attempt(self, attempt: int) -> int | None:
        """
        Milliseconds to wait after a failed attempt.

        Args:
            attempt: The attempt that just lost its race (1-indexed)

        Returns:
            The backoff delay, or None when the attempt was the last one and
            the StaleContext should propagate.
        """
        if attempt >= self.max_attempts:
            return None

        delay_ms = self.initial_delay_ms * self.backoff_multiplier ** (attempt - 1)
        return int(min(delay_ms, self.max_delay_ms))

    @property
    def retries(self) -> int:
        return self.max_attempts - 1


RetryPolicy.DEFAULT = RetryPolicy(max_attempts=3)
RetryPolicy.NO_RETRY = RetryPolicy(max_attempts=1, initial_delay_ms=0, max_delay_ms=0)
# Hot contacts (bulk broadcasts, chatty integrations) see more collisions
RetryPolicy.CONTENDED = RetryPolicy(
    max_attempts=8, initial_delay_ms=2, max_delay_ms=100, backoff_multiplier=1.5
)
