"""In-memory circuit breaker keyed by upstream source (process-local).

CLOSED -> OPEN after ``failure_threshold`` consecutive failures; OPEN refuses
calls until ``open_cooldown_seconds`` elapse, then HALF_OPEN lets a limited
number of probes through. One success closes the circuit, one probe failure
re-opens it.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict

from invoice_recon.config import CIRCUIT_BREAKER
from invoice_recon.utils.time import utc_now

CLOSED = "CLOSED"
OPEN = "OPEN"
HALF_OPEN = "HALF_OPEN"


@dataclass
class BreakerState:
    failures: int = 0
    state: str = CLOSED
    opened_at: datetime | None = None
    half_open_probes: int = 0


class CircuitBreaker:
    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._states: Dict[str, BreakerState] = {}
        self._clock = clock
        # Both source drains of a run share this breaker from the worker thread
        self._lock = threading.Lock()

    def _get(self, source: str) -> BreakerState:
        return self._states.setdefault(source, BreakerState())

    def allow_call(self, source: str) -> tuple[bool, str | None]:
        with self._lock:
            st = self._get(source)
            if st.state == OPEN:
                cooldown = timedelta(seconds=float(CIRCUIT_BREAKER["open_cooldown_seconds"]))
                if st.opened_at is None or self._clock() - st.opened_at < cooldown:
                    return False, "circuit_open"
                st.state = HALF_OPEN
                st.half_open_probes = 0
            if st.state == HALF_OPEN:
                if st.half_open_probes >= int(CIRCUIT_BREAKER["half_open_probe_count"]):
                    return False, "half_open_probe_exhausted"
                st.half_open_probes += 1
            return True, None

    def record_success(self, source: str) -> None:
        with self._lock:
            st = self._get(source)
            st.failures = 0
            st.state = CLOSED
            st.opened_at = None
            st.half_open_probes = 0

    def record_failure(self, source: str) -> None:
        with self._lock:
            st = self._get(source)
            st.failures += 1
            tripped = st.state == CLOSED and st.failures >= int(CIRCUIT_BREAKER["failure_threshold"])
            if tripped or st.state == HALF_OPEN:
                st.state = OPEN
                st.opened_at = self._clock()

    def reset(self, source: str | None = None) -> None:
        with self._lock:
            if source is None:
                self._states.clear()
            else:
                self._states.pop(source, None)

    def snapshot(self) -> dict[str, dict[str, object]]:
        with self._lock:
            return {
                name: {
                    "failures": st.failures,
                    "state": st.state,
                    "opened_at": st.opened_at.isoformat() if st.opened_at else None,
                    "half_open_probes": st.half_open_probes,
                }
                for name, st in self._states.items()
            }


SOURCE_CIRCUIT_BREAKER = CircuitBreaker()

__all__ = ["CircuitBreaker", "SOURCE_CIRCUIT_BREAKER", "CLOSED", "OPEN", "HALF_OPEN"]
