"""
Retry Policy
============

Exponential backoff for rate-limited frames.

Backoff before retry ``n`` (0-based) is
``min(initial_backoff_ms * multiplier ** n, max_backoff_ms)``,
i.e. 5s, 10s, 20s, 40s, 60s, ... with the defaults.

``max_retries`` bounds the total number of attempts per frame.
"""

from dataclasses import dataclass
from enum import Enum

from avatar3d.remote.errors import RemoteGenerationError


class FrameState(str, Enum):
    """
    Per-frame lifecycle inside a batch.

    PENDING -> ATTEMPTING -> SUCCEEDED
                          -> PENDING (after backoff, rate-limited only)
                          -> GIVEN_UP
    """

    PENDING = "PENDING"
    ATTEMPTING = "ATTEMPTING"
    SUCCEEDED = "SUCCEEDED"
    GIVEN_UP = "GIVEN_UP"


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry limits and backoff schedule.

    Attributes:
        max_retries: Maximum attempts per frame (>= 1)
        initial_backoff_ms: Delay before the first retry
        multiplier: Growth factor between retries
        max_backoff_ms: Cap on a single delay
    """

    max_retries: int = 5
    initial_backoff_ms: int = 5000
    multiplier: float = 2.0
    max_backoff_ms: int = 60000

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if self.initial_backoff_ms < 0 or self.max_backoff_ms < 0:
            raise ValueError("backoff values must be >= 0")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    @classmethod
    def from_config(cls, config) -> "RetryPolicy":
        """Build from an OrchestratorConfig section."""
        return cls(
            max_retries=config.max_retries,
            initial_backoff_ms=config.initial_backoff_ms,
            multiplier=config.backoff_multiplier,
            max_backoff_ms=config.max_backoff_ms,
        )

    def backoff_ms(self, attempt: int) -> float:
        return min(self.initial_backoff_ms * self.multiplier ** attempt, self.max_backoff_ms)

    def backoff_seconds(self, attempt: int) -> float:
        """Delay in seconds after failed attempt ``attempt`` (0-based)."""
        return self.backoff_ms(attempt) / 1000.0

    def should_retry(self, attempt: int, error: RemoteGenerationError) -> bool:
        """
        Whether a frame gets another attempt.

        Args:
            attempt: 0-based index of the attempt that just failed
            error: Classified failure
        """
        return error.retryable and attempt + 1 < self.max_retries
