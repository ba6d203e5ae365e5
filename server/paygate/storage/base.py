"""Storage interfaces (ports) for devices and payment records."""

from __future__ import annotations

from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from paygate.core.models import Device, PaymentPage, PaymentRecord


class DuplicateDeviceError(Exception):
    """Raised by ``DeviceStore.create`` when the device_id is taken."""


class DeviceStore(Protocol):
    """Port: device records, one per device_id."""

    async def find(self, device_id: str) -> Device | None: ...

    async def create(self, device: Device) -> Device: ...

    async def update(self, device: Device) -> Device: ...


class PaymentStorage(Protocol):
    """Port: persists payment records to durable storage."""

    async def store(self, record: PaymentRecord) -> None: ...

    def read_all(self) -> list[dict]: ...

    async def query(
        self,
        bank: str | None = None,
        device_id: str | None = None,
        start_ms: int | None = None,
        end_ms: int | None = None,
        processed: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> PaymentPage: ...

    async def summarize(self, since_ms: int) -> dict: ...
