from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from lara.core.logger import get_logger


class BreakerState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class BreakerConfig:
    failures: int
    window_seconds: int
    cooldown_seconds: int


class CircuitBreaker:
    """
    Trips after `failures` failures inside `window_seconds`; while OPEN callers skip the
    guarded service. After the cooldown one probe call is let through (HALF_OPEN).
    """

    def __init__(
        self,
        cfg: BreakerConfig,
        *,
        name: str = "breaker",
        clock: Callable[[], float] = time.monotonic,
        on_state_change: Optional[Callable[[str, BreakerState], None]] = None,
    ):
        self.cfg = cfg
        self.name = name
        self._clock = clock
        self._lock = threading.Lock()
        self._fail_times: List[float] = []
        self._state = BreakerState.CLOSED
        self._opened_at: Optional[float] = None
        self._probe_in_flight = False
        self._on_state_change = on_state_change

    def state(self) -> BreakerState:
        with self._lock:
            self._refresh_locked()
            return self._state

    def allow(self) -> bool:
        with self._lock:
            self._refresh_locked()
            if self._state == BreakerState.CLOSED:
                return True
            if self._state == BreakerState.OPEN:
                return False
            if self._probe_in_flight:
                return False
            self._probe_in_flight = True
            return True

    def record_success(self) -> None:
        with self._lock:
            self._fail_times.clear()
            self._opened_at = None
            self._probe_in_flight = False
            self._transition_locked(BreakerState.CLOSED)

    def record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            self._probe_in_flight = False
            if self._state == BreakerState.HALF_OPEN:
                self._opened_at = now
                self._transition_locked(BreakerState.OPEN)
                return
            self._fail_times.append(now)
            cutoff = now - float(self.cfg.window_seconds)
            self._fail_times = [t for t in self._fail_times if t >= cutoff]
            if len(self._fail_times) >= int(self.cfg.failures) and self._state == BreakerState.CLOSED:
                self._opened_at = now
                self._transition_locked(BreakerState.OPEN)

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            self._refresh_locked()
            return {
                "name": self.name,
                "state": self._state.value,
                "failure_count_window": len(self._fail_times),
                "opened_at": self._opened_at,
            }

    def _refresh_locked(self) -> None:
        if self._state == BreakerState.OPEN and self._opened_at is not None:
            if (self._clock() - self._opened_at) >= float(self.cfg.cooldown_seconds):
                self._probe_in_flight = False
                self._transition_locked(BreakerState.HALF_OPEN)

    def _transition_locked(self, new_state: BreakerState) -> None:
        if new_state == self._state:
            return
        self._state = new_state
        if self._on_state_change is not None:
            try:
                self._on_state_change(self.name, new_state)
            except Exception as e:  # noqa: BLE001
                get_logger("breaker").warning(f"{self.name} state-change hook failed: {e}")
