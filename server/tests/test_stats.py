"""Tests for ServerStats and active device tracking."""

from __future__ import annotations

import time

from paygate.core.stats import ServerStats


def test_initial_stats():
    stats = ServerStats()
    snap = stats.snapshot()
    assert snap["auth"]["accepted"] == 0
    assert snap["auth"]["rejected"] == 0
    assert snap["payments_received"] == 0
    assert snap["active_devices"]["total"] == 0


def test_auth_outcomes():
    stats = ServerStats()
    stats.record_auth_accepted("device-a")
    stats.record_auth_accepted("device-b")
    stats.record_auth_rejected("SignatureMismatch")
    stats.record_auth_rejected("SignatureMismatch")
    stats.record_auth_rejected("Expired")

    snap = stats.snapshot()
    assert snap["auth"]["accepted"] == 2
    assert snap["auth"]["rejected"] == 3
    assert snap["auth"]["rejected_by_reason"] == {"SignatureMismatch": 2, "Expired": 1}
    assert snap["active_devices"]["total"] == 2
    assert snap["active_devices"]["sending_payments"] == 0


def test_payments_mark_device_as_sending():
    stats = ServerStats()
    stats.record_auth_accepted("device-c")
    stats.record_heartbeat("device-c")
    stats.record_auth_accepted("device-d")
    stats.record_payment("device-d")

    snap = stats.snapshot()
    assert snap["heartbeats_received"] == 1
    assert snap["payments_received"] == 1
    assert snap["active_devices"]["total"] == 2
    assert snap["active_devices"]["sending_payments"] == 1


def test_stale_devices_pruned():
    """Devices older than the active window should be pruned from stats."""
    stats = ServerStats(active_window_seconds=0.1)
    stats.record_auth_accepted("device-e")

    snap = stats.snapshot()
    assert snap["active_devices"]["total"] == 1

    # Wait for the window to expire
    time.sleep(0.15)

    snap = stats.snapshot()
    assert snap["active_devices"]["total"] == 0


def test_queue_depth_tracking():
    stats = ServerStats()
    stats.update_queue_depth(50)
    stats.update_queue_depth(100)
    stats.update_queue_depth(30)

    snap = stats.snapshot()
    assert snap["queue_depth"] == 30
    assert snap["queue_max_depth_ever"] == 100


def test_stored_and_rejected_counters():
    stats = ServerStats()
    stats.record_registration()
    stats.record_stored(5)
    stats.record_rejected(2)
    stats.record_storage_error()

    snap = stats.snapshot()
    assert snap["devices_registered"] == 1
    assert snap["payments_stored"] == 5
    assert snap["payments_rejected"] == 2
    assert snap["storage_errors"] == 1
