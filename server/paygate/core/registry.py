"""Device registry: identity, secret issuance and heartbeat bookkeeping.

All persistence goes through the DeviceStore port. Store calls are bounded
by a timeout; a failing or slow store surfaces as InternalError, never as a
silent success or a silent rejection.
"""

from __future__ import annotations

import asyncio
import secrets
from datetime import datetime, timedelta
from typing import Awaitable, TypeVar, TYPE_CHECKING

import structlog

from paygate.core.errors import Conflict, InternalError, MissingFields, NotFound
from paygate.core.models import (
    DEFAULT_DEVICE_NAME,
    Connectivity,
    Device,
    DeviceStatus,
    utcnow,
)
from paygate.storage.base import DuplicateDeviceError

if TYPE_CHECKING:
    from paygate.storage.base import DeviceStore

log = structlog.get_logger()

T = TypeVar("T")

# 32 random bytes, 64 hex characters.
SECRET_KEY_BYTES = 32

ONLINE_THRESHOLD = timedelta(minutes=10)


def generate_secret_key() -> str:
    return secrets.token_hex(SECRET_KEY_BYTES)


class DeviceRegistry:
    """Owns device identity on top of a DeviceStore."""

    def __init__(self, store: DeviceStore, timeout_seconds: float = 5.0) -> None:
        self._store = store
        self._timeout = timeout_seconds
        # Read-modify-write of a device record is serialized per device_id.
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, device_id: str) -> asyncio.Lock:
        lock = self._locks.get(device_id)
        if lock is None:
            lock = self._locks[device_id] = asyncio.Lock()
        return lock

    async def _call(self, op: str, device_id: str, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except DuplicateDeviceError:
            raise
        except asyncio.TimeoutError as exc:
            log.error("device_store_timeout", op=op, device=device_id[:8],
                      timeout=self._timeout)
            raise InternalError(f"device store {op} timed out") from exc
        except Exception as exc:
            log.error("device_store_failed", op=op, device=device_id[:8],
                      exc_info=True)
            raise InternalError(f"device store {op} failed") from exc

    async def register(self, device_id: str, name: str | None = None) -> Device:
        """Create a device with a fresh secret key.

        The returned Device carries the secret; callers must disclose it once
        and only in the registration response.
        """
        if not isinstance(device_id, str) or not device_id.strip():
            raise MissingFields("device_id is required")
        if name is not None and not isinstance(name, str):
            raise MissingFields("name must be a string")

        now = utcnow()
        device = Device(
            device_id=device_id,
            secret_key=generate_secret_key(),
            name=name or DEFAULT_DEVICE_NAME,
            status=DeviceStatus.ACTIVE,
            last_heartbeat=now,
            created_at=now,
            updated_at=now,
        )
        try:
            await self._call("create", device_id, self._store.create(device))
        except DuplicateDeviceError as exc:
            log.info("device_register_conflict", device=device_id[:8])
            raise Conflict(f"device {device_id} already registered") from exc

        log.info("device_registered", device=device_id[:8], name=device.name)
        return device

    async def find(self, device_id: str) -> Device | None:
        return await self._call("find", device_id, self._store.find(device_id))

    async def lookup(self, device_id: str) -> Device:
        device = await self.find(device_id)
        if device is None:
            raise NotFound(f"device {device_id} not found")
        return device

    async def touch_heartbeat(self, device_id: str, now: datetime | None = None) -> Device:
        async with self._lock_for(device_id):
            device = await self.lookup(device_id)
            now = now or utcnow()
            device.last_heartbeat = now
            device.updated_at = now
            await self._call("update", device_id, self._store.update(device))
        log.debug("heartbeat_recorded", device=device_id[:8])
        return device

    async def set_status(self, device_id: str, status: DeviceStatus | str) -> Device:
        try:
            new_status = DeviceStatus(status)
        except ValueError as exc:
            raise MissingFields(f"unknown status {status!r}") from exc

        async with self._lock_for(device_id):
            device = await self.lookup(device_id)
            old_status = device.status
            device.status = new_status
            device.updated_at = utcnow()
            await self._call("update", device_id, self._store.update(device))
        log.info("device_status_changed", device=device_id[:8],
                 old=old_status.value, new=new_status.value)
        return device

    @staticmethod
    def connectivity(device: Device, now: datetime | None = None) -> Connectivity:
        now = now or utcnow()
        if now - device.last_heartbeat < ONLINE_THRESHOLD:
            return Connectivity.ONLINE
        return Connectivity.OFFLINE
