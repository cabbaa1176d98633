"""
Reliability utilities for upstream provider calls.

Includes the Circuit Breaker pattern.
"""

import time
import logging
from typing import Callable, Any, Tuple, Type

logger = logging.getLogger("otp_numbers.reliability")


class CircuitOpenError(Exception):
    pass


class CircuitBreaker:
    """
    Simple Circuit Breaker implementation.

    After ``failure_threshold`` consecutive failures the circuit opens and
    rejects calls for ``reset_timeout`` seconds. The next call after that is
    a single trial (HALF_OPEN): other callers keep failing fast while it is
    in flight, success closes the circuit and failure re-opens it.

    Only exceptions listed in ``trip_on`` count as failures, so a vendor
    saying "no numbers available" does not take the whole provider offline.
    """

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = 5,
        reset_timeout: int = 60,
        trip_on: Tuple[Type[BaseException], ...] = (Exception,)
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.trip_on = trip_on
        self.failures = 0
        self.last_failure_time = 0.0
        self.state = "CLOSED"  # CLOSED, OPEN, HALF_OPEN
        self._trial_in_flight = False

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        if self.state == "OPEN":
            if time.time() - self.last_failure_time > self.reset_timeout:
                self.state = "HALF_OPEN"
            else:
                raise CircuitOpenError(f"Circuit {self.name} is OPEN")

        trial = self.state == "HALF_OPEN"
        if trial:
            if self._trial_in_flight:
                raise CircuitOpenError(f"Circuit {self.name} is HALF_OPEN, trial call in flight")
            self._trial_in_flight = True

        try:
            result = await func(*args, **kwargs)
        except self.trip_on:
            self.record_failure()
            raise
        finally:
            if trial:
                self._trial_in_flight = False

        if self.state == "HALF_OPEN" or self.failures:
            self.reset_state()
        return result

    def record_failure(self):
        self.failures += 1
        self.last_failure_time = time.time()
        if self.state == "HALF_OPEN" or self.failures >= self.failure_threshold:
            if self.state != "OPEN":
                logger.warning("Circuit %s opened after %d failures", self.name, self.failures)
            self.state = "OPEN"

    def reset_state(self):
        self.failures = 0
        self.state = "CLOSED"
