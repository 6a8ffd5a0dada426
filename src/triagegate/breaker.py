from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from triagegate.fs import now_ms
from triagegate.models import CircuitBreakerState

logger = logging.getLogger(__name__)


class CircuitBreaker:
    """Consecutive-failure breaker with a cooldown before a single trial call.

    closed -> open after ``max_failures`` consecutive failures. While open,
    attempts are refused until ``cooldown_ms`` has passed since the last
    failure; refusals never count as failures. After the cooldown one trial
    attempt is let through: success closes the breaker, failure keeps it open
    and restarts the cooldown.
    """

    def __init__(
        self,
        *,
        max_failures: int = 3,
        cooldown_ms: int = 60000,
        clock: Callable[[], int] = now_ms,
        state: CircuitBreakerState | None = None,
    ) -> None:
        self.max_failures = max_failures
        self.cooldown_ms = cooldown_ms
        self._clock = clock
        self._state = state.model_copy() if state else CircuitBreakerState()
        self._trial_in_flight = False
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitBreakerState:
        with self._lock:
            return self._state.model_copy()

    @property
    def is_open(self) -> bool:
        with self._lock:
            return self._state.is_open

    def cooldown_elapsed(self) -> bool:
        with self._lock:
            return self._cooldown_elapsed()

    def is_refusing(self) -> bool:
        """True while open and either inside the cooldown or with the trial attempt in flight."""
        with self._lock:
            return self._state.is_open and (self._trial_in_flight or not self._cooldown_elapsed())

    def allow_request(self) -> bool:
        with self._lock:
            if not self._state.is_open:
                return True
            if not self._cooldown_elapsed():
                logger.debug(
                    "Circuit open: refusing attempt (%d consecutive failures)", self._state.consecutive_failures
                )
                return False
            if self._trial_in_flight:
                logger.debug("Circuit open: trial attempt already in flight")
                return False
            self._trial_in_flight = True
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._state.is_open:
                logger.info("Circuit closed after successful trial attempt")
            self._state = CircuitBreakerState()
            self._trial_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            self._state.consecutive_failures += 1
            self._state.last_failure_timestamp = self._clock()
            self._trial_in_flight = False
            if not self._state.is_open and self._state.consecutive_failures >= self.max_failures:
                self._state.is_open = True
                logger.warning(
                    "Circuit opened after %d consecutive failures; cooling down for %d ms",
                    self._state.consecutive_failures,
                    self.cooldown_ms,
                )

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitBreakerState()
            self._trial_in_flight = False

    def restore(self, state: CircuitBreakerState) -> None:
        with self._lock:
            self._state = state.model_copy()
            self._trial_in_flight = False

    def _cooldown_elapsed(self) -> bool:
        return self._clock() - self._state.last_failure_timestamp >= self.cooldown_ms
