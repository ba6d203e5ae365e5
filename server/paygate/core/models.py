"""PayGate core internal data models.

These are plain dataclasses with no framework dependencies.
JSON bodies are converted to/from these at the boundary.
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeviceStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class Connectivity(str, enum.Enum):
    ONLINE = "online"
    OFFLINE = "offline"


DEFAULT_DEVICE_NAME = "Detector Phone"

BANKS = ("Telebirr", "CBE", "Dashen", "Awash", "Hibret", "Abyssinia", "Unknown")


@dataclass
class Device:
    """A registered field unit.

    ``status`` is always a ``DeviceStatus``; plain strings are coerced (and
    rejected if unknown) when the record is built.
    """
    device_id: str
    secret_key: str
    name: str = DEFAULT_DEVICE_NAME
    status: DeviceStatus = DeviceStatus.ACTIVE
    last_heartbeat: datetime = field(default_factory=utcnow)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.status = DeviceStatus(self.status)

    @property
    def is_active(self) -> bool:
        return self.status is DeviceStatus.ACTIVE

    def public_view(self) -> dict:
        """Serializable view without the secret key."""
        return {
            "device_id": self.device_id,
            "name": self.name,
            "status": self.status.value,
            "last_heartbeat": self.last_heartbeat.isoformat(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    def to_record(self) -> dict:
        """Full serializable record, secret included. Storage use only."""
        record = self.public_view()
        record["secret_key"] = self.secret_key
        return record

    @classmethod
    def from_record(cls, record: dict) -> Device:
        return cls(
            device_id=record["device_id"],
            secret_key=record["secret_key"],
            name=record.get("name", DEFAULT_DEVICE_NAME),
            status=DeviceStatus(record.get("status", DeviceStatus.ACTIVE.value)),
            last_heartbeat=datetime.fromisoformat(record["last_heartbeat"]),
            created_at=datetime.fromisoformat(record["created_at"]),
            updated_at=datetime.fromisoformat(record["updated_at"]),
        )


@dataclass(frozen=True)
class AuthenticatedContext:
    """Result of a successful admission: the verified device and what it signed."""
    device: Device
    payload: dict[str, Any]
    timestamp_ms: int


@dataclass
class PaymentRecord:
    device_id: str
    message_id: str
    bank: str
    amount: float
    sender: str
    from_number: str
    raw_text: str
    sms_timestamp_ms: int
    server_timestamp_ms: int
    verified: bool = True
    processed: bool = False
    processed_at_ms: int | None = None
    record_id: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class PaymentPage:
    """One page of payment records plus totals over the whole filtered set."""
    payments: list[dict]
    total: int
    total_amount: float
    by_bank: dict[str, int] = field(default_factory=dict)

    @property
    def average_amount(self) -> float:
        return self.total_amount / self.total if self.total else 0.0
