"""Server statistics and active-device tracking.

Tracks in-memory counters and a sliding window of recently seen devices.
No framework dependencies.
"""

from __future__ import annotations

import threading
import time
from collections import Counter
from dataclasses import dataclass


@dataclass
class DeviceActivity:
    """Tracks a single device's recent authenticated activity."""
    last_seen: float          # time.monotonic() timestamp
    requests: int = 0
    payments_sent: int = 0


class ServerStats:
    """Thread-safe server statistics.

    A device counts as active if it passed authentication within
    ``active_window_seconds`` (default 600s, the heartbeat online threshold).
    """

    def __init__(self, active_window_seconds: float = 600.0) -> None:
        self._lock = threading.Lock()
        self._started_at = time.time()
        self._active_window = active_window_seconds

        # Counters
        self.auth_accepted: int = 0
        self.auth_rejected: Counter[str] = Counter()
        self.devices_registered: int = 0
        self.heartbeats_received: int = 0
        self.payments_received: int = 0
        self.payments_stored: int = 0
        self.payments_rejected: int = 0
        self.storage_errors: int = 0
        self.queue_depth: int = 0
        self.queue_max_depth: int = 0

        # Device tracking: device_id → DeviceActivity
        self._devices: dict[str, DeviceActivity] = {}

    def _touch(self, device_id: str, now: float) -> DeviceActivity:
        """Caller holds lock."""
        dev = self._devices.get(device_id)
        if dev is None:
            dev = self._devices[device_id] = DeviceActivity(last_seen=now)
        dev.last_seen = now
        return dev

    def record_auth_accepted(self, device_id: str) -> None:
        now = time.monotonic()
        with self._lock:
            self.auth_accepted += 1
            self._touch(device_id, now).requests += 1

    def record_auth_rejected(self, code: str) -> None:
        with self._lock:
            self.auth_rejected[code] += 1

    def record_registration(self) -> None:
        with self._lock:
            self.devices_registered += 1

    def record_heartbeat(self, device_id: str) -> None:
        now = time.monotonic()
        with self._lock:
            self.heartbeats_received += 1
            self._touch(device_id, now)

    def record_payment(self, device_id: str) -> None:
        now = time.monotonic()
        with self._lock:
            self.payments_received += 1
            self._touch(device_id, now).payments_sent += 1

    def record_stored(self, count: int = 1) -> None:
        with self._lock:
            self.payments_stored += count

    def record_rejected(self, count: int = 1) -> None:
        with self._lock:
            self.payments_rejected += count

    def record_storage_error(self) -> None:
        with self._lock:
            self.storage_errors += 1

    def update_queue_depth(self, depth: int) -> None:
        with self._lock:
            self.queue_depth = depth
            if depth > self.queue_max_depth:
                self.queue_max_depth = depth

    def _prune_stale_devices(self, now: float) -> None:
        """Remove devices not seen within the active window. Caller holds lock."""
        cutoff = now - self._active_window
        stale = [did for did, dev in self._devices.items() if dev.last_seen < cutoff]
        for did in stale:
            del self._devices[did]

    def snapshot(self) -> dict:
        """Return a JSON-serializable snapshot of all stats."""
        now_mono = time.monotonic()
        with self._lock:
            self._prune_stale_devices(now_mono)

            return {
                "uptime_seconds": round(time.time() - self._started_at, 1),
                "auth": {
                    "accepted": self.auth_accepted,
                    "rejected": sum(self.auth_rejected.values()),
                    "rejected_by_reason": dict(self.auth_rejected),
                },
                "devices_registered": self.devices_registered,
                "heartbeats_received": self.heartbeats_received,
                "payments_received": self.payments_received,
                "payments_stored": self.payments_stored,
                "payments_rejected": self.payments_rejected,
                "storage_errors": self.storage_errors,
                "queue_depth": self.queue_depth,
                "queue_max_depth_ever": self.queue_max_depth,
                "active_devices": {
                    "total": len(self._devices),
                    "sending_payments": sum(
                        1 for dev in self._devices.values() if dev.payments_sent
                    ),
                    "window_seconds": self._active_window,
                },
            }
