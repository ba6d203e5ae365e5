"""Queue interface (port) for payment record ingestion."""

from __future__ import annotations

from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from paygate.core.models import PaymentRecord


class PaymentQueue(Protocol):
    """Port: accepts payment records and delivers them to consumers."""

    async def put(self, record: PaymentRecord) -> None: ...

    async def get(self) -> PaymentRecord: ...

    def qsize(self) -> int: ...
