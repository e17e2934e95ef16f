"""
Passive health tracking for the engine's external providers.

Every HTTP client in the engine (Overpass mirrors, Nominatim, Google
Directions, Open-Meteo, the listings collaborator) reports the outcome
of each real call through record_call(). The monitor keeps a rolling
window per service and derives a healthy / degraded / down / unknown
status from the success rate, so operators can tell a flaky mirror from
a broken query without reading logs.

There are no active probes: the public Overpass mirrors are rate
limited, and probing them would spend the same budget the engine needs.

Module-level singleton: all callers in this process share one HealthMonitor.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

WINDOW_SIZE = 50

# Minimum success rate for each status; anything below the last is "down".
STATUS_FLOORS = (
    ("healthy", 0.95),
    ("degraded", 0.70),
)

MONITORED_SERVICES = (
    "overpass",
    "nominatim",
    "google_directions",
    "open_meteo",
    "listings",
)


@dataclass(frozen=True)
class CallOutcome:
    at: float
    success: bool
    latency_ms: int
    error: Optional[str] = None


@dataclass
class ProviderHealth:
    """Snapshot of one provider's recent behaviour."""
    service: str
    status: str
    latency_ms: int
    last_checked: str
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "status": self.status,
            "latency_ms": self.latency_ms,
            "last_checked": self.last_checked,
            **self.details,
        }
        if self.error:
            out["error"] = self.error
        return out


def classify(success_rate: float) -> str:
    for status, floor in STATUS_FLOORS:
        if success_rate >= floor:
            return status
    return "down"


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def summarize(service: str, outcomes: List[CallOutcome]) -> ProviderHealth:
    """Fold a window of call outcomes into a ProviderHealth."""
    if not outcomes:
        return ProviderHealth(
            service=service,
            status="unknown",
            latency_ms=0,
            last_checked=_iso(time.time()),
            details={"sample_size": 0},
        )

    failures = [o for o in outcomes if not o.success]
    rate = (len(outcomes) - len(failures)) / len(outcomes)
    latest_error = next((o.error for o in reversed(failures) if o.error), None)

    return ProviderHealth(
        service=service,
        status=classify(rate),
        latency_ms=int(sum(o.latency_ms for o in outcomes) / len(outcomes)),
        last_checked=_iso(outcomes[-1].at),
        error=latest_error,
        details={"success_rate": round(rate, 3), "sample_size": len(outcomes)},
    )


class HealthMonitor:
    """Per-service rolling windows of call outcomes.

    Calls arrive from asyncio.to_thread workers as well as the event loop
    thread, so every window access holds the lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._passive: Dict[str, Deque[CallOutcome]] = {}
        self._last_status: Dict[str, str] = {}
        for service in MONITORED_SERVICES:
            self._window(service)

    def _window(self, service: str) -> Deque[CallOutcome]:
        return self._passive.setdefault(service, deque(maxlen=WINDOW_SIZE))

    def record_call(
        self,
        service: str,
        success: bool,
        latency_ms: int,
        error: Optional[str] = None,
    ) -> None:
        outcome = CallOutcome(time.time(), success, latency_ms, error)
        with self._lock:
            window = self._window(service)
            window.append(outcome)
            current = classify(sum(o.success for o in window) / len(window))
            previous = self._last_status.get(service)
            self._last_status[service] = current

        if previous is not None and previous != current:
            logger.warning(
                "[health] %s status changed: %s -> %s (error=%s)",
                service, previous, current, error,
            )

    def compute_status(self, service: str) -> ProviderHealth:
        with self._lock:
            outcomes = list(self._passive.get(service, ()))
        return summarize(service, outcomes)

    def get_all_status(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            services = sorted(self._passive)
        return {service: self.compute_status(service).as_dict() for service in services}

    def reset(self) -> None:
        with self._lock:
            for window in self._passive.values():
                window.clear()
            self._last_status.clear()


_monitor = HealthMonitor()


def record_call(
    service: str,
    success: bool,
    latency_ms: int,
    error: Optional[str] = None,
) -> None:
    """Record an API call outcome for passive health tracking.

    Callers wrap this in try/except so health tracking can never break a request.
    """
    _monitor.record_call(service, success, latency_ms, error)


def get_status() -> Dict[str, Dict[str, Any]]:
    """Current health for every provider seen by this process."""
    return _monitor.get_all_status()
