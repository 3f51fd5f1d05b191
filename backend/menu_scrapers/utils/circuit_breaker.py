"""
Circuit breaker for external dependencies (BrowserBase).

A registry holds one circuit per key. The orchestrator receives a registry
instead of reaching for module state, so tests can build their own.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, TypeVar

from ..errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class CircuitState(Enum):
    """States of a single circuit."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass
class CircuitBreakerOptions:
    """Thresholds for a circuit. reset_time is in seconds."""
    failure_threshold: int = 5
    reset_time: float = 60.0
    half_open_requests: int = 1


@dataclass
class Circuit:
    """Mutable state of one circuit."""
    failures: int = 0
    last_failure: float = 0.0
    state: CircuitState = CircuitState.CLOSED
    probes_in_flight: int = 0

    def to_dict(self) -> Dict:
        return {
            'failures': self.failures,
            'last_failure': self.last_failure,
            'state': self.state.value,
        }


class CircuitBreakerRegistry:
    """
    Process-wide set of named circuits.

    Usage:
        breakers = CircuitBreakerRegistry()
        session = await breakers.call('browserbase', open_session,
                                      CircuitBreakerOptions(failure_threshold=3))
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._circuits: Dict[str, Circuit] = {}

    def get(self, key: str) -> Circuit:
        """Get (or lazily create) the circuit for a key."""
        circuit = self._circuits.get(key)
        if circuit is None:
            circuit = Circuit()
            self._circuits[key] = circuit
        return circuit

    def state(self, key: str) -> CircuitState:
        return self.get(key).state

    def snapshot(self) -> Dict[str, Dict]:
        """State of every known circuit, for health endpoints."""
        return {key: circuit.to_dict() for key, circuit in self._circuits.items()}

    def reset(self, key: Optional[str] = None):
        """Forget one circuit, or all of them."""
        if key is None:
            self._circuits.clear()
        else:
            self._circuits.pop(key, None)

    async def call(
        self,
        key: str,
        fn: Callable[[], Awaitable[T]],
        options: Optional[CircuitBreakerOptions] = None
    ) -> T:
        """
        Run ``fn`` through the circuit named ``key``.

        Raises:
            CircuitOpenError: If the circuit is open (``fn`` is not called)
        """
        opts = options or CircuitBreakerOptions()
        circuit = self.get(key)
        now = self._clock()

        if circuit.state == CircuitState.OPEN:
            elapsed = now - circuit.last_failure
            if elapsed > opts.reset_time:
                logger.info(f"[CircuitBreaker] {key} half-open, allowing probe")
                circuit.state = CircuitState.HALF_OPEN
                circuit.probes_in_flight = 0
            else:
                raise CircuitOpenError(key, opts.reset_time - elapsed)

        is_probe = circuit.state == CircuitState.HALF_OPEN
        if is_probe:
            if circuit.probes_in_flight >= opts.half_open_requests:
                raise CircuitOpenError(key, opts.reset_time)
            circuit.probes_in_flight += 1

        try:
            result = await fn()
        except Exception:
            circuit.failures += 1
            circuit.last_failure = self._clock()
            if is_probe:
                circuit.probes_in_flight -= 1
                circuit.state = CircuitState.OPEN
                logger.error(f"[CircuitBreaker] {key} probe failed, reopening")
            elif circuit.failures >= opts.failure_threshold:
                circuit.state = CircuitState.OPEN
                logger.error(f"[CircuitBreaker] {key} opened after {circuit.failures} failures")
            raise

        if is_probe:
            circuit.probes_in_flight -= 1
            logger.info(f"[CircuitBreaker] {key} probe succeeded, closing")
        circuit.failures = 0
        circuit.state = CircuitState.CLOSED
        return result


# Shared by every batch run in this process; not persisted.
default_registry = CircuitBreakerRegistry()
