"""Payment processor: validates authenticated SMS payments and enqueues them.

Depends on the PaymentQueue and PaymentStorage protocols, not on concrete
implementations.
"""

from __future__ import annotations

import math
import time
from typing import Any, TYPE_CHECKING

import structlog

from paygate.core.errors import DuplicatePayment, InternalError
from paygate.core.models import BANKS, PaymentRecord

if TYPE_CHECKING:
    from paygate.core.models import AuthenticatedContext
    from paygate.core.stats import ServerStats
    from paygate.queue.base import PaymentQueue
    from paygate.storage.base import PaymentStorage

log = structlog.get_logger()


def _parse_amount(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(amount) or amount < 0:
        return None
    return amount


class PaymentProcessor:
    """Turns authenticated payment submissions into stored PaymentRecords."""

    def __init__(
        self,
        queue: PaymentQueue,
        storage: PaymentStorage,
        stats: ServerStats,
    ) -> None:
        self._queue = queue
        self._storage = storage
        self._stats = stats
        self._next_record_id = 1
        # (device_id, message_id) of every payment accepted so far.
        self._seen: set[tuple[str, str]] = set()

    def load_history(self) -> None:
        """Seed record ids and the duplicate index from what storage already holds."""
        max_record_id = 0
        for r in self._storage.read_all():
            self._seen.add((r.get("device_id", ""), r.get("message_id", "")))
            max_record_id = max(max_record_id, int(r.get("record_id", 0)))
        self._next_record_id = max(self._next_record_id, max_record_id + 1)
        log.info("payment_history_loaded", payments=len(self._seen),
                 next_record_id=self._next_record_id)

    def _build_record(self, ctx: AuthenticatedContext) -> tuple[PaymentRecord | None, str]:
        payload = ctx.payload
        now_ms = int(time.time() * 1000)

        bank = payload.get("bank")
        if not isinstance(bank, str) or not bank:
            return None, "bank is required"
        if bank not in BANKS:
            bank = "Unknown"

        amount = _parse_amount(payload.get("amount"))
        if amount is None:
            return None, "amount must be a non-negative number"

        message_id = payload.get("message_id")
        if not isinstance(message_id, str) or not message_id:
            message_id = f"pay_{now_ms}_{self._next_record_id}"

        sms_ts = payload.get("sms_timestamp_ms")
        if not isinstance(sms_ts, int) or isinstance(sms_ts, bool):
            sms_ts = ctx.timestamp_ms

        record = PaymentRecord(
            device_id=ctx.device.device_id,
            message_id=message_id,
            bank=bank,
            amount=amount,
            sender=str(payload.get("sender", "")),
            from_number=str(payload.get("from", "Unknown")),
            raw_text=str(payload.get("raw_text", "")),
            sms_timestamp_ms=sms_ts,
            server_timestamp_ms=now_ms,
            verified=True,
            record_id=self._next_record_id,
        )
        self._next_record_id += 1
        return record, ""

    async def process_payment(self, ctx: AuthenticatedContext) -> tuple[bool, str, PaymentRecord | None]:
        """Validate and enqueue one payment. Returns (accepted, error_message, record)."""
        device_id = ctx.device.device_id
        record, error = self._build_record(ctx)
        if record is None:
            self._stats.record_rejected()
            log.info("payment_rejected", device=device_id[:8], reason=error)
            return False, error, None

        key = (device_id, record.message_id)
        if key in self._seen:
            self._stats.record_rejected()
            log.info("payment_duplicate", device=device_id[:8],
                     message_id=record.message_id)
            raise DuplicatePayment(f"message {record.message_id} already received")
        self._seen.add(key)

        self._stats.record_payment(device_id)
        try:
            await self._queue.put(record)
        except Exception:
            log.error("queue_put_failed", device=device_id[:8],
                      record_id=record.record_id, exc_info=True)
            self._seen.discard(key)
            self._stats.record_rejected()
            raise InternalError("payment queue unavailable")

        self._stats.update_queue_depth(self._queue.qsize())
        log.info("payment_enqueued", device=device_id[:8], record_id=record.record_id,
                 bank=record.bank, amount=record.amount)
        return True, "", record

    async def run_storage_consumer(self) -> None:
        """Consume from the queue and write to storage. Runs as a background task."""
        log.info("storage_consumer_started")
        while True:
            record = await self._queue.get()
            try:
                await self._storage.store(record)
                self._stats.record_stored(1)
                self._stats.update_queue_depth(self._queue.qsize())
                log.debug("payment_stored", record_id=record.record_id,
                          device=record.device_id[:8])
            except Exception:
                log.error("storage_write_failed", record_id=record.record_id,
                          exc_info=True)
                self._stats.record_storage_error()
