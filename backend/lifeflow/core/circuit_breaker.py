"""Circuit Breaker — per-collaborator CLOSED/OPEN/HALF_OPEN state machine.

Invariants:
    - CLOSED: every outcome lands in a count-based sliding window (default 100 calls)
    - CLOSED -> OPEN once the window holds minimum_calls outcomes and the failure
      rate OR slow-call rate reaches its threshold
    - OPEN: try_acquire() rejects until wait_duration elapses; the first call after
      that moves the breaker to HALF_OPEN
    - HALF_OPEN: at most permitted_half_open_calls trial permits; that many successes
      -> CLOSED with an empty window; any failure -> OPEN with the wait timer restarted
    - Each breaker guards its state with its own lock — safe from any task or thread

Design Decisions:
    - Clock injected (time.monotonic by default): tests drive time without sleeping
    - No logging here: the gateway compares snapshots and logs transitions
    - Registry creates breakers lazily; unknown names get the default config
"""

import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from lifeflow.core.domain_types import BreakerState, Collaborator


@dataclass(frozen=True)
class BreakerConfig:
    failure_rate_threshold: float         # percent, 0-100
    slow_call_rate_threshold: float       # percent, 0-100
    slow_call_duration_seconds: float
    wait_duration_open_seconds: float
    permitted_half_open_calls: int = 3
    window_size: int = 100
    minimum_calls: int = 100


DEFAULT_BREAKER_CONFIG = BreakerConfig(
    failure_rate_threshold=50.0,
    slow_call_rate_threshold=50.0,
    slow_call_duration_seconds=2.0,
    wait_duration_open_seconds=30.0,
)

# Geolocation is more lenient than the safety-critical inventory/donor paths;
# notification/analytics are off the critical path entirely.
DEFAULT_BREAKER_CONFIGS: dict[str, BreakerConfig] = {
    Collaborator.INVENTORY.value: DEFAULT_BREAKER_CONFIG,
    Collaborator.DONOR.value: DEFAULT_BREAKER_CONFIG,
    Collaborator.GEOLOCATION.value: BreakerConfig(
        failure_rate_threshold=40.0,
        slow_call_rate_threshold=40.0,
        slow_call_duration_seconds=4.0,
        wait_duration_open_seconds=45.0,
    ),
    Collaborator.NOTIFICATION.value: BreakerConfig(
        failure_rate_threshold=60.0,
        slow_call_rate_threshold=60.0,
        slow_call_duration_seconds=5.0,
        wait_duration_open_seconds=60.0,
    ),
    Collaborator.ANALYTICS.value: BreakerConfig(
        failure_rate_threshold=70.0,
        slow_call_rate_threshold=70.0,
        slow_call_duration_seconds=5.0,
        wait_duration_open_seconds=60.0,
    ),
}


@dataclass(frozen=True)
class _Outcome:
    failed: bool
    slow: bool


@dataclass(frozen=True)
class BreakerSnapshot:
    name: str
    state: BreakerState
    buffered_calls: int
    failure_rate: float
    slow_call_rate: float
    half_open_trials: int
    last_state_change: float


class CircuitBreaker:
    """One collaborator's breaker."""

    def __init__(
        self,
        name: str,
        config: BreakerConfig = DEFAULT_BREAKER_CONFIG,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config
        self._clock = clock
        self._lock = threading.Lock()
        self._window: deque[_Outcome] = deque(maxlen=config.window_size)
        self._state = BreakerState.CLOSED
        self._opened_at = 0.0
        self._last_state_change = clock()
        self._half_open_issued = 0
        self._half_open_successes = 0

    @property
    def state(self) -> BreakerState:
        with self._lock:
            return self._state

    def try_acquire(self) -> bool:
        """Ask permission for one call. False means reject without calling."""
        with self._lock:
            if self._state == BreakerState.OPEN:
                if self._clock() - self._opened_at < self.config.wait_duration_open_seconds:
                    return False
                self._transition(BreakerState.HALF_OPEN)

            if self._state == BreakerState.HALF_OPEN:
                if self._half_open_issued >= self.config.permitted_half_open_calls:
                    return False
                self._half_open_issued += 1
            return True

    def record_success(self, duration_seconds: float = 0.0) -> None:
        slow = duration_seconds > self.config.slow_call_duration_seconds
        with self._lock:
            if self._state == BreakerState.HALF_OPEN:
                self._half_open_successes += 1
                if self._half_open_successes >= self.config.permitted_half_open_calls:
                    self._transition(BreakerState.CLOSED)
                return
            if self._state == BreakerState.CLOSED:
                self._record(_Outcome(failed=False, slow=slow))

    def record_failure(self, duration_seconds: float = 0.0) -> None:
        slow = duration_seconds > self.config.slow_call_duration_seconds
        with self._lock:
            if self._state == BreakerState.HALF_OPEN:
                self._transition(BreakerState.OPEN)
                return
            if self._state == BreakerState.CLOSED:
                self._record(_Outcome(failed=True, slow=slow))

    def release(self) -> None:
        """Return a permit whose outcome must not count (caller-input errors, cancelled calls)."""
        with self._lock:
            if self._state == BreakerState.HALF_OPEN and self._half_open_issued > 0:
                self._half_open_issued -= 1

    def retry_after_seconds(self) -> float:
        with self._lock:
            if self._state != BreakerState.OPEN:
                return 0.0
            elapsed = self._clock() - self._opened_at
            return max(0.0, self.config.wait_duration_open_seconds - elapsed)

    def snapshot(self) -> BreakerSnapshot:
        with self._lock:
            failure_rate, slow_rate = self._rates()
            return BreakerSnapshot(
                name=self.name,
                state=self._state,
                buffered_calls=len(self._window),
                failure_rate=failure_rate,
                slow_call_rate=slow_rate,
                half_open_trials=self._half_open_issued,
                last_state_change=self._last_state_change,
            )

    # --- Internals (caller holds the lock) ----------------------------------

    def _record(self, outcome: _Outcome) -> None:
        self._window.append(outcome)
        minimum = min(self.config.minimum_calls, self.config.window_size)
        if len(self._window) < minimum:
            return
        failure_rate, slow_rate = self._rates()
        if (
            failure_rate >= self.config.failure_rate_threshold
            or slow_rate >= self.config.slow_call_rate_threshold
        ):
            self._transition(BreakerState.OPEN)

    def _rates(self) -> tuple[float, float]:
        total = len(self._window)
        if not total:
            return 0.0, 0.0
        failures = sum(1 for o in self._window if o.failed)
        slow = sum(1 for o in self._window if o.slow)
        return failures * 100.0 / total, slow * 100.0 / total

    def _transition(self, target: BreakerState) -> None:
        now = self._clock()
        self._state = target
        self._last_state_change = now
        self._half_open_issued = 0
        self._half_open_successes = 0
        if target == BreakerState.OPEN:
            self._opened_at = now
        if target == BreakerState.CLOSED:
            self._window.clear()


class CircuitBreakerRegistry:
    """Process-wide table of breakers keyed by collaborator name."""

    def __init__(
        self,
        configs: dict[str, BreakerConfig] | None = None,
        default_config: BreakerConfig = DEFAULT_BREAKER_CONFIG,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._configs = dict(DEFAULT_BREAKER_CONFIGS if configs is None else configs)
        self._default = default_config
        self._clock = clock
        self._lock = threading.Lock()
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, name: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                config = self._configs.get(name, self._default)
                breaker = CircuitBreaker(name, config, self._clock)
                self._breakers[name] = breaker
            return breaker

    def snapshots(self) -> list[BreakerSnapshot]:
        with self._lock:
            breakers = list(self._breakers.values())
        return [b.snapshot() for b in breakers]
