"""
Progress Throttler

Turns the raw, possibly noisy or out-of-order progress stream of an upload
into a monotonic, rate-limited stream for observers.

A sample is emitted only if it does not move backward AND one of:
- it advanced by at least min_delta since the last emitted value
- at least min_interval has passed since the last emission
- it is 0.0 or 1.0
- it is the first sample of an uploading episode
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from config.settings import PROGRESS_MIN_DELTA, PROGRESS_MIN_INTERVAL_SECONDS

# Absorbs float error so a step of exactly min_delta always counts
DELTA_TOLERANCE = 1e-9


@dataclass
class _Episode:
    last_fraction: float = 0.0
    last_emit_time: Optional[float] = None  # None until the first emission


class ProgressThrottler:
    """
    Per-task progress filter.

    Usage:
        throttler = ProgressThrottler()
        throttler.begin(task_id)                  # task entered uploading
        emitted = throttler.offer(task_id, 0.42)  # None if suppressed
        final = throttler.finish(task_id, completed=True)
    """

    def __init__(
        self,
        min_delta: float = PROGRESS_MIN_DELTA,
        min_interval_seconds: float = PROGRESS_MIN_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if min_delta < 0 or min_interval_seconds < 0:
            raise ValueError("Throttle thresholds cannot be negative")

        self.logger = logging.getLogger(__name__)
        self.min_delta = min_delta
        self.min_interval_seconds = min_interval_seconds
        self._clock = clock
        self._episodes: Dict[str, _Episode] = {}

    def begin(self, task_id: str) -> None:
        """Start a new uploading episode; progress restarts from 0"""
        self._episodes[task_id] = _Episode()

    def offer(
        self,
        task_id: str,
        fraction: float,
        timestamp: Optional[float] = None,
    ) -> Optional[float]:
        """
        Submit a raw progress sample.

        Args:
            task_id: Task the sample belongs to
            fraction: Raw progress, clamped into [0, 1]
            timestamp: Sample time in clock units (None = now)

        Returns:
            The fraction to deliver to observers, or None if suppressed
        """
        if fraction is None or math.isnan(fraction):
            self.logger.debug(f"Dropping non-numeric progress for {task_id}")
            return None

        fraction = min(1.0, max(0.0, float(fraction)))
        now = self._clock() if timestamp is None else timestamp

        episode = self._episodes.get(task_id)
        if episode is None:
            # Samples outside an episode start one implicitly
            episode = self._episodes[task_id] = _Episode()

        if fraction < episode.last_fraction:
            self.logger.debug(
                f"Progress regression dropped for {task_id}: "
                f"{episode.last_fraction:.1%} -> {fraction:.1%}",
            )
            return None

        if episode.last_emit_time is not None:
            step = fraction - episode.last_fraction
            advanced = step >= self.min_delta or math.isclose(
                step, self.min_delta, abs_tol=DELTA_TOLERANCE,
            )
            waited = now - episode.last_emit_time >= self.min_interval_seconds
            boundary = fraction in (0.0, 1.0)
            if not (advanced or waited or boundary):
                return None
            if fraction == episode.last_fraction and not waited:
                # Same value again inside the interval carries no news
                return None

        episode.last_fraction = fraction
        episode.last_emit_time = now
        return fraction

    def finish(self, task_id: str, completed: bool) -> Optional[float]:
        """
        End the uploading episode.

        Args:
            completed: True if the upload succeeded

        Returns:
            1.0 if the task completed and 1.0 was not emitted yet, else None
        """
        episode = self._episodes.pop(task_id, None)
        if not completed:
            return None
        if episode is not None and episode.last_fraction >= 1.0:
            return None
        return 1.0

    def last_emitted(self, task_id: str) -> float:
        """Last fraction delivered for the task's current episode"""
        episode = self._episodes.get(task_id)
        return episode.last_fraction if episode else 0.0

    def reset(self, task_id: Optional[str] = None) -> None:
        """Forget one task, or every task when task_id is None"""
        if task_id is None:
            self._episodes.clear()
        else:
            self._episodes.pop(task_id, None)
