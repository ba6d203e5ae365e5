"""File-based payment storage.

Stores payment records as JSON Lines, one file per UTC day of arrival:
base_dir/YYYY/MM/DD/payments.jsonl
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from paygate.core.models import PaymentPage

if TYPE_CHECKING:
    from paygate.core.models import PaymentRecord

log = structlog.get_logger()


class FilePaymentStorage:
    """PaymentStorage backed by day-partitioned JSONL files on disk."""

    def __init__(self, base_dir: str | Path) -> None:
        self._base_dir = Path(base_dir)
        self._base_dir.mkdir(parents=True, exist_ok=True)

    def _day_dir(self, timestamp_ms: int) -> Path:
        """Return the directory for a given timestamp."""
        dt = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
        path = self._base_dir / f"{dt.year:04d}" / f"{dt.month:02d}" / f"{dt.day:02d}"
        path.mkdir(parents=True, exist_ok=True)
        return path

    def is_writable(self) -> bool:
        return self._base_dir.exists() and self._base_dir.is_dir()

    async def store(self, record: PaymentRecord) -> None:
        """Append a single payment record to its day file."""
        day_dir = self._day_dir(record.server_timestamp_ms)
        line = json.dumps(record.to_dict(), separators=(",", ":"), ensure_ascii=False)
        with open(day_dir / "payments.jsonl", "a", encoding="utf-8") as f:
            f.write(line + "\n")

        log.debug("payment_written", record_id=record.record_id,
                  path=str(day_dir))

    def read_all(self) -> list[dict]:
        """Read every stored record, oldest day first."""
        records: list[dict] = []
        for path in sorted(self._base_dir.glob("*/*/*/payments.jsonl")):
            with open(path, encoding="utf-8") as f:
                for lineno, line in enumerate(f, 1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        records.append(json.loads(line))
                    except json.JSONDecodeError:
                        log.warning("payment_line_corrupt", path=str(path), line=lineno)
        return records

    async def query(
        self,
        bank: str | None = None,
        device_id: str | None = None,
        start_ms: int | None = None,
        end_ms: int | None = None,
        processed: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> PaymentPage:
        """Filter, newest first, with totals over the whole filtered set.

        ``start_ms`` and ``end_ms`` bound the SMS timestamp, both inclusive.
        """
        matched = [
            r for r in self.read_all()
            if (bank is None or r.get("bank") == bank)
            and (device_id is None or r.get("device_id") == device_id)
            and (start_ms is None or r.get("sms_timestamp_ms", 0) >= start_ms)
            and (end_ms is None or r.get("sms_timestamp_ms", 0) <= end_ms)
            and (processed is None or bool(r.get("processed", False)) is processed)
        ]
        matched.sort(key=lambda r: r.get("sms_timestamp_ms", 0), reverse=True)

        by_bank: dict[str, int] = {}
        for r in matched:
            by_bank[r.get("bank", "Unknown")] = by_bank.get(r.get("bank", "Unknown"), 0) + 1

        return PaymentPage(
            payments=matched[offset:offset + limit],
            total=len(matched),
            total_amount=sum(float(r.get("amount", 0)) for r in matched),
            by_bank=by_bank,
        )

    async def summarize(self, since_ms: int) -> dict:
        """Per-bank and per-day totals for payments with an SMS timestamp >= since_ms.

        Banks are ordered by total amount, largest first; days (UTC,
        ``YYYY-MM-DD``) oldest first.
        """
        banks: dict[str, dict] = {}
        days: dict[str, dict] = {}
        for r in self.read_all():
            sms_ts = r.get("sms_timestamp_ms", 0)
            if sms_ts < since_ms:
                continue
            amount = float(r.get("amount", 0))

            bank = banks.setdefault(r.get("bank", "Unknown"), {"count": 0, "total_amount": 0.0})
            bank["count"] += 1
            bank["total_amount"] += amount

            day_key = datetime.fromtimestamp(sms_ts / 1000, tz=timezone.utc).strftime("%Y-%m-%d")
            day = days.setdefault(day_key, {"count": 0, "total_amount": 0.0})
            day["count"] += 1
            day["total_amount"] += amount

        bank_stats = [
            {
                "bank": name,
                "count": b["count"],
                "total_amount": b["total_amount"],
                "avg_amount": b["total_amount"] / b["count"],
            }
            for name, b in banks.items()
        ]
        bank_stats.sort(key=lambda b: b["total_amount"], reverse=True)
        daily_stats = [{"date": key, **days[key]} for key in sorted(days)]
        return {"bank_stats": bank_stats, "daily_stats": daily_stats}
