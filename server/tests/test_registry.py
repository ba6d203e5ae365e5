"""Tests for DeviceRegistry and the device stores."""

from __future__ import annotations

import asyncio
import re
from datetime import timedelta

import pytest

from paygate.core.errors import Conflict, InternalError, MissingFields, NotFound
from paygate.core.models import Connectivity, Device, DeviceStatus, utcnow
from paygate.core.registry import DeviceRegistry
from paygate.storage.device_store import FileDeviceStore, InMemoryDeviceStore


class SlowStore(InMemoryDeviceStore):
    async def find(self, device_id):
        await asyncio.sleep(1)
        return await super().find(device_id)


class BrokenStore(InMemoryDeviceStore):
    async def find(self, device_id):
        raise RuntimeError("connection reset by peer")


@pytest.mark.asyncio
async def test_register_issues_256_bit_hex_secret():
    registry = DeviceRegistry(InMemoryDeviceStore())
    device = await registry.register("dev1", "Shop phone")
    assert re.fullmatch(r"[0-9a-f]{64}", device.secret_key)
    assert device.name == "Shop phone"
    assert device.status is DeviceStatus.ACTIVE

    other = await registry.register("dev2")
    assert other.secret_key != device.secret_key
    assert other.name == "Detector Phone"


@pytest.mark.asyncio
async def test_register_duplicate_is_conflict():
    registry = DeviceRegistry(InMemoryDeviceStore())
    first = await registry.register("dev1")
    with pytest.raises(Conflict):
        await registry.register("dev1")
    # The original secret is untouched.
    assert (await registry.lookup("dev1")).secret_key == first.secret_key


@pytest.mark.asyncio
@pytest.mark.parametrize("device_id", ["", "   ", None, 42])
async def test_register_requires_device_id(device_id):
    registry = DeviceRegistry(InMemoryDeviceStore())
    with pytest.raises(MissingFields):
        await registry.register(device_id)


@pytest.mark.asyncio
async def test_lookup_unknown_is_not_found():
    registry = DeviceRegistry(InMemoryDeviceStore())
    with pytest.raises(NotFound):
        await registry.lookup("ghost")
    assert await registry.find("ghost") is None


@pytest.mark.asyncio
async def test_touch_heartbeat_and_connectivity():
    registry = DeviceRegistry(InMemoryDeviceStore())
    await registry.register("dev1")
    beat = utcnow() - timedelta(minutes=3)
    device = await registry.touch_heartbeat("dev1", now=beat)

    stored = await registry.lookup("dev1")
    assert stored.last_heartbeat == beat
    assert registry.connectivity(stored, now=beat + timedelta(minutes=9)) is Connectivity.ONLINE
    assert registry.connectivity(stored, now=beat + timedelta(minutes=10)) is Connectivity.OFFLINE
    assert device.updated_at == beat


@pytest.mark.asyncio
async def test_set_status():
    registry = DeviceRegistry(InMemoryDeviceStore())
    await registry.register("dev1")
    await registry.set_status("dev1", "suspended")
    assert (await registry.lookup("dev1")).status is DeviceStatus.SUSPENDED

    with pytest.raises(MissingFields):
        await registry.set_status("dev1", "deleted")


@pytest.mark.asyncio
async def test_store_timeout_is_internal_error():
    registry = DeviceRegistry(SlowStore(), timeout_seconds=0.05)
    with pytest.raises(InternalError):
        await registry.find("dev1")


@pytest.mark.asyncio
async def test_store_failure_is_internal_error():
    registry = DeviceRegistry(BrokenStore())
    with pytest.raises(InternalError):
        await registry.find("dev1")


def test_device_rejects_unknown_status():
    with pytest.raises(ValueError):
        Device(device_id="dev1", secret_key="00", status="deleted")


def test_public_view_hides_secret():
    device = Device(device_id="dev1", secret_key="s3cr3t")
    assert "secret_key" not in device.public_view()
    assert device.to_record()["secret_key"] == "s3cr3t"


@pytest.mark.asyncio
async def test_file_store_persists_across_instances(tmp_path):
    path = tmp_path / "devices.json"
    registry = DeviceRegistry(FileDeviceStore(path))
    created = await registry.register("dev1", "Till 1")
    await registry.set_status("dev1", DeviceStatus.INACTIVE)

    reloaded = await DeviceRegistry(FileDeviceStore(path)).lookup("dev1")
    assert reloaded.secret_key == created.secret_key
    assert reloaded.name == "Till 1"
    assert reloaded.status is DeviceStatus.INACTIVE
    assert reloaded.created_at == created.created_at


@pytest.mark.asyncio
async def test_store_returns_copies():
    store = InMemoryDeviceStore()
    registry = DeviceRegistry(store)
    await registry.register("dev1")
    device = await registry.lookup("dev1")
    device.status = DeviceStatus.SUSPENDED
    assert (await registry.lookup("dev1")).status is DeviceStatus.ACTIVE


class SlowActiveUpdateStore(InMemoryDeviceStore):
    async def update(self, device):
        if device.status is DeviceStatus.ACTIVE:
            await asyncio.sleep(0.05)
        return await super().update(device)


@pytest.mark.asyncio
async def test_concurrent_heartbeat_does_not_undo_suspension():
    registry = DeviceRegistry(SlowActiveUpdateStore())
    await registry.register("dev1")

    await asyncio.gather(
        registry.touch_heartbeat("dev1"),
        registry.set_status("dev1", "suspended"),
    )

    assert (await registry.lookup("dev1")).status is DeviceStatus.SUSPENDED
