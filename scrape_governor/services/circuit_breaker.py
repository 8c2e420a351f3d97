"""
Failure-counting gates for unreliable external providers.

A provider's circuit opens after ``threshold`` consecutive failures and
closes again on its own once ``reset_seconds`` have passed since the last
failure. There is no half-open probe: the next call after the cool-down is
simply attempted.
"""

import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

FAILURE_THRESHOLD = 5
RESET_SECONDS = 300.0


@dataclass
class CircuitBreakerState:
    failures: int = 0
    last_failure_time: Optional[float] = None
    is_open: bool = False


class CircuitBreakerRegistry:
    def __init__(
        self,
        threshold: int = FAILURE_THRESHOLD,
        reset_seconds: float = RESET_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.threshold = threshold
        self.reset_seconds = reset_seconds
        self.clock = clock
        self._states: Dict[str, CircuitBreakerState] = {}
        self._lock = threading.Lock()

    def is_open(self, provider: str) -> bool:
        with self._lock:
            state = self._states.get(provider)
            if state is None or not state.is_open:
                return False
            if self.clock() - (state.last_failure_time or 0.0) > self.reset_seconds:
                logger.info(f"Circuit for {provider} cooled down; closing")
                self._states[provider] = CircuitBreakerState()
                return False
            return True

    def record_failure(self, provider: str) -> CircuitBreakerState:
        with self._lock:
            state = self._states.setdefault(provider, CircuitBreakerState())
            state.failures += 1
            state.last_failure_time = self.clock()
            if state.failures >= self.threshold and not state.is_open:
                state.is_open = True
                logger.warning(f"Circuit for {provider} opened after {state.failures} consecutive failures")
            return replace(state)

    def record_success(self, provider: str) -> None:
        with self._lock:
            self._states[provider] = CircuitBreakerState()

    def state(self, provider: str) -> CircuitBreakerState:
        with self._lock:
            return replace(self._states.get(provider) or CircuitBreakerState())

    def reset(self) -> None:
        with self._lock:
            self._states.clear()
