"""DeviceStore implementations: in-memory and a single JSON document on disk."""

from __future__ import annotations

import asyncio
import dataclasses
import json
from pathlib import Path

import structlog

from paygate.core.models import Device
from paygate.storage.base import DuplicateDeviceError

log = structlog.get_logger()


class InMemoryDeviceStore:
    """DeviceStore backed by a dict. Returns copies so callers never share records."""

    def __init__(self) -> None:
        self._devices: dict[str, Device] = {}

    async def find(self, device_id: str) -> Device | None:
        device = self._devices.get(device_id)
        return dataclasses.replace(device) if device is not None else None

    async def create(self, device: Device) -> Device:
        if device.device_id in self._devices:
            raise DuplicateDeviceError(device.device_id)
        self._devices[device.device_id] = dataclasses.replace(device)
        return device

    async def update(self, device: Device) -> Device:
        if device.device_id not in self._devices:
            raise KeyError(device.device_id)
        self._devices[device.device_id] = dataclasses.replace(device)
        return device

    def __len__(self) -> int:
        return len(self._devices)


class FileDeviceStore:
    """DeviceStore persisted as one JSON file keyed by device_id.

    The whole document is rewritten on every change (write to a temp file,
    then rename), which is fine for a fleet of field phones.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()
        self._devices: dict[str, Device] = self._load()

    def _load(self) -> dict[str, Device]:
        if not self._path.exists():
            return {}
        raw = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        devices = {did: Device.from_record(rec) for did, rec in raw.items()}
        log.info("devices_loaded", count=len(devices), path=str(self._path))
        return devices

    def _flush(self) -> None:
        doc = {did: dev.to_record() for did, dev in self._devices.items()}
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(doc, indent=2), encoding="utf-8")
        tmp_path.replace(self._path)

    async def find(self, device_id: str) -> Device | None:
        device = self._devices.get(device_id)
        return dataclasses.replace(device) if device is not None else None

    async def create(self, device: Device) -> Device:
        async with self._lock:
            if device.device_id in self._devices:
                raise DuplicateDeviceError(device.device_id)
            self._devices[device.device_id] = dataclasses.replace(device)
            self._flush()
        return device

    async def update(self, device: Device) -> Device:
        async with self._lock:
            if device.device_id not in self._devices:
                raise KeyError(device.device_id)
            self._devices[device.device_id] = dataclasses.replace(device)
            self._flush()
        return device
