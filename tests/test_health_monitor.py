"""
Tests for the passive provider health monitor.

Covers:
  - record_call → status computation over the rolling window
  - Threshold boundaries (healthy / degraded / down / unknown)
  - Status transition logging
  - Module-level get_status() output
"""

import logging

import pytest

import health_monitor
from health_monitor import MONITORED_SERVICES, HealthMonitor


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def monitor():
    """Fresh HealthMonitor instance."""
    return HealthMonitor()


# ---------------------------------------------------------------------------
# Passive tracking: record_call + status computation
# ---------------------------------------------------------------------------

class TestPassiveTracking:

    def test_record_call_tracks_outcomes(self, monitor):
        """Recorded calls accumulate in the passive window."""
        monitor.record_call("overpass", True, 100)
        monitor.record_call("overpass", False, 200, "timeout")
        monitor.record_call("overpass", True, 150)

        window = list(monitor._passive["overpass"])
        assert len(window) == 3
        assert window[1].success is False
        assert window[1].error == "timeout"

    def test_status_unknown_when_empty(self, monitor):
        result = monitor.compute_status("nominatim")
        assert result.status == "unknown"
        assert result.details["sample_size"] == 0

    def test_status_healthy(self, monitor):
        for _ in range(20):
            monitor.record_call("nominatim", True, 100)
        result = monitor.compute_status("nominatim")
        assert result.status == "healthy"
        assert result.details["success_rate"] == 1.0

    def test_status_degraded(self, monitor):
        """80% success rate → 'degraded' (below 95%, above 70%)."""
        for _ in range(16):
            monitor.record_call("overpass", True, 100)
        for _ in range(4):
            monitor.record_call("overpass", False, 200, "http_error")
        result = monitor.compute_status("overpass")
        assert result.status == "degraded"
        assert result.details["success_rate"] == 0.8

    def test_status_down(self, monitor):
        for _ in range(5):
            monitor.record_call("overpass", True, 100)
        for _ in range(5):
            monitor.record_call("overpass", False, 200, "timeout")
        assert monitor.compute_status("overpass").status == "down"

    def test_threshold_boundary(self, monitor):
        """Exactly 95% success → 'healthy' (>= threshold)."""
        for _ in range(19):
            monitor.record_call("listings", True, 100)
        monitor.record_call("listings", False, 200, "error")
        assert monitor.compute_status("listings").status == "healthy"

    def test_latency_average(self, monitor):
        monitor.record_call("open_meteo", True, 100)
        monitor.record_call("open_meteo", True, 300)
        assert monitor.compute_status("open_meteo").latency_ms == 200

    def test_last_error_reported(self, monitor):
        monitor.record_call("overpass", False, 100, "first error")
        monitor.record_call("overpass", True, 100)
        monitor.record_call("overpass", False, 100, "latest error")
        assert monitor.compute_status("overpass").error == "latest error"

    def test_unregistered_service_creates_window(self, monitor):
        monitor.record_call("reviews", True, 50)
        assert monitor.compute_status("reviews").details["sample_size"] == 1

    def test_reset_clears_windows(self, monitor):
        monitor.record_call("overpass", False, 100, "x")
        monitor.reset()
        assert monitor.compute_status("overpass").status == "unknown"


class TestTransitions:

    def test_transition_is_logged(self, monitor, caplog):
        monitor.record_call("overpass", True, 100)
        with caplog.at_level(logging.WARNING, logger="health_monitor"):
            monitor.record_call("overpass", False, 100, "timeout")
        assert "overpass status changed: healthy -> down" in caplog.text

    def test_steady_state_not_logged(self, monitor, caplog):
        with caplog.at_level(logging.WARNING, logger="health_monitor"):
            monitor.record_call("overpass", True, 100)
            monitor.record_call("overpass", True, 100)
        assert "status changed" not in caplog.text


class TestModuleApi:

    def test_get_status_lists_every_monitored_service(self):
        health_monitor.record_call("google_directions", True, 80)
        status = health_monitor.get_status()
        assert set(MONITORED_SERVICES) <= set(status)
        assert status["google_directions"]["status"] == "healthy"
        assert status["overpass"]["status"] == "unknown"
