"""
Retry Policy

Maps (attempt, failure class) to either a backoff delay or a terminal
decision. Pure apart from the jitter source, which is injectable so tests
can pin it.
"""

import random
from dataclasses import dataclass
from typing import Optional

from config.settings import (
    MAX_UPLOAD_RETRIES,
    RETRY_BASE_DELAY_SECONDS,
    RETRY_JITTER_RATIO,
    RETRY_MAX_DELAY_SECONDS,
)
from upload.constants import RETRYABLE_ERRORS, ErrorClass


@dataclass(frozen=True)
class RetryDecision:
    """
    Outcome of a retry consultation.

    Attributes:
        terminal: True if the task must stay failed
        delay_seconds: Wait before the task re-enters pending (0 when terminal)
        refresh_credentials: Caller should refresh credentials before retrying
    """

    terminal: bool
    delay_seconds: float = 0.0
    refresh_credentials: bool = False

    @classmethod
    def give_up(cls) -> "RetryDecision":
        return cls(terminal=True)

    @classmethod
    def retry_after(
        cls,
        delay_seconds: float,
        refresh_credentials: bool = False,
    ) -> "RetryDecision":
        return cls(
            terminal=False,
            delay_seconds=delay_seconds,
            refresh_credentials=refresh_credentials,
        )


class RetryPolicy:
    """
    Exponential backoff with jitter.

    - InvalidInput / Cancelled: never retried
    - Unauthorized: one retry after a credential refresh, terminal if it recurs
    - Network / ServerError: min(base * 2^(attempt-1), max) +/- jitter,
      terminal once attempt exceeds max_retries

    Usage:
        policy = RetryPolicy(max_retries=2)
        decision = policy.decide(attempt=1, error_class=ErrorClass.NETWORK)
        if not decision.terminal:
            schedule_retry(decision.delay_seconds)
    """

    def __init__(
        self,
        base_delay_seconds: float = RETRY_BASE_DELAY_SECONDS,
        max_delay_seconds: float = RETRY_MAX_DELAY_SECONDS,
        max_retries: int = MAX_UPLOAD_RETRIES,
        jitter_ratio: float = RETRY_JITTER_RATIO,
        rng: Optional[random.Random] = None,
    ):
        if base_delay_seconds < 0 or max_delay_seconds < 0:
            raise ValueError("Retry delays cannot be negative")
        if max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if not 0.0 <= jitter_ratio < 1.0:
            raise ValueError("jitter_ratio must be in [0, 1)")

        self.base_delay_seconds = base_delay_seconds
        self.max_delay_seconds = max_delay_seconds
        self.max_retries = max_retries
        self.jitter_ratio = jitter_ratio
        self._rng = rng or random.Random()

    @property
    def max_attempts(self) -> int:
        """Total executor runs allowed for transient failures"""
        return self.max_retries + 1

    def decide(
        self,
        attempt: int,
        error_class: ErrorClass,
        auth_refreshed: bool = False,
    ) -> RetryDecision:
        """
        Decide what happens after a failed attempt.

        Args:
            attempt: 1-based number of the attempt that just failed
            error_class: Failure classification from the transport
            auth_refreshed: Credentials were already refreshed for this task

        Returns:
            RetryDecision
        """
        if attempt < 1:
            raise ValueError(f"attempt is 1-based, got {attempt}")

        if error_class not in RETRYABLE_ERRORS:
            return RetryDecision.give_up()

        if attempt > self.max_retries:
            return RetryDecision.give_up()

        if error_class == ErrorClass.UNAUTHORIZED:
            if auth_refreshed:
                return RetryDecision.give_up()
            return RetryDecision.retry_after(0.0, refresh_credentials=True)

        return RetryDecision.retry_after(self.backoff_delay(attempt))

    def backoff_delay(self, attempt: int) -> float:
        """Jittered exponential delay for a 1-based attempt number"""
        delay = min(
            self.base_delay_seconds * (2 ** (attempt - 1)),
            self.max_delay_seconds,
        )
        if self.jitter_ratio:
            delay *= 1.0 + self._rng.uniform(-self.jitter_ratio, self.jitter_ratio)
        return max(0.0, delay)

    def __repr__(self) -> str:
        return (
            f"RetryPolicy(base={self.base_delay_seconds}s, "
            f"max={self.max_delay_seconds}s, retries={self.max_retries}, "
            f"jitter={self.jitter_ratio})"
        )
