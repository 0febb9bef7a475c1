"""Circuit breaker guarding the AI provider.

State machine: CLOSED -> OPEN -> HALF_OPEN -> CLOSED.

- CLOSED: calls pass; consecutive failures are counted.
- OPEN: calls are refused with ``CircuitOpenError`` until
  ``recovery_timeout`` has elapsed since the last failure.
- HALF_OPEN: exactly one trial call is let through; other callers are refused
  until it reports. Success closes the circuit and failure re-opens it.
  A cancelled trial call frees the slot for the next caller.

The caller reports outcomes explicitly (``record_success`` /
``record_failure``) because an HTTP 200 carrying an unusable payload is still
a provider failure for our purposes.
"""

import enum
import logging
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class CircuitState(enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    """Raised by ``before_call`` while the circuit is open."""


class CircuitBreaker:
    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        name: str = "evaluator",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._name = name
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = 0.0
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def before_call(self) -> None:
        """Admit or refuse a call.

        Raises:
            CircuitOpenError: The circuit is open and still cooling down, or
                a half-open trial call is already in flight.
        """
        if self._state == CircuitState.CLOSED:
            return
        if self._state == CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                raise CircuitOpenError(
                    f"Circuit breaker {self._name} is HALF_OPEN (trial call in flight)"
                )
            self._trial_in_flight = True
            return
        if self._clock() - self._opened_at < self._recovery_timeout:
            raise CircuitOpenError(f"Circuit breaker {self._name} is OPEN")
        self._state = CircuitState.HALF_OPEN
        self._trial_in_flight = True
        logger.info("Circuit breaker %s: OPEN -> HALF_OPEN (recovery trial)", self._name)

    def record_success(self) -> None:
        self._trial_in_flight = False
        if self._state == CircuitState.HALF_OPEN:
            logger.info("Circuit breaker %s: HALF_OPEN -> CLOSED", self._name)
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0

    def record_failure(self) -> None:
        self._trial_in_flight = False
        self._consecutive_failures += 1
        if self._state == CircuitState.HALF_OPEN:
            self._trip()
            logger.warning("Circuit breaker %s: HALF_OPEN -> OPEN (trial call failed)", self._name)
        elif (
            self._state == CircuitState.CLOSED
            and self._consecutive_failures >= self._failure_threshold
        ):
            self._trip()
            logger.warning(
                "Circuit breaker %s: CLOSED -> OPEN after %d failures",
                self._name,
                self._consecutive_failures,
            )

    def record_cancelled(self) -> None:
        """The admitted call was abandoned without an outcome."""
        self._trial_in_flight = False

    def _trip(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
