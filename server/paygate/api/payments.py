"""Payment SMS ingestion and listing endpoints.

This is the thin FastAPI adapter: authentication happens in the
``require_device`` dependency, validation and queueing in the processor.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from paygate.api.auth import require_device
from paygate.core.models import AuthenticatedContext

router = APIRouter(prefix="/api/v1")


@router.post("/sms/receive")
async def receive_payment(ctx: AuthenticatedContext = Depends(require_device)) -> JSONResponse:
    """Accept one bank SMS payment from a signed device request.

    Body (signed): device_id, signature, bank, amount, and optionally
    message_id, sender, from, raw_text, sms_timestamp_ms. A message_id the
    device already sent is rejected with 409.
    """
    from paygate.main import get_processor

    accepted, error, record = await get_processor().process_payment(ctx)
    if not accepted:
        return JSONResponse(
            status_code=422,
            content={"success": False, "error": "InvalidPayment", "message": error},
        )

    return JSONResponse(
        status_code=202,
        content={
            "success": True,
            "message": "Payment accepted",
            "payment_id": record.message_id,
            "record_id": record.record_id,
        },
    )


def _epoch_ms(value: datetime | None) -> int | None:
    """Epoch milliseconds for a query datetime; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


@router.get("/payments")
async def list_payments(
    bank: str | None = None,
    device_id: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    processed: bool | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1),
) -> dict:
    """List stored payments, newest first, with a summary over the filter."""
    from paygate.main import get_config, get_storage

    limit = min(limit, get_config().limits.max_page_size)
    result = await get_storage().query(
        bank=bank,
        device_id=device_id,
        start_ms=_epoch_ms(start_date),
        end_ms=_epoch_ms(end_date),
        processed=processed,
        limit=limit,
        offset=(page - 1) * limit,
    )
    return {
        "payments": result.payments,
        "summary": {
            "total_payments": result.total,
            "total_amount": result.total_amount,
            "average_amount": result.average_amount,
            "by_bank": result.by_bank,
        },
        "pagination": {
            "page": page,
            "limit": limit,
            "total": result.total,
            "pages": math.ceil(result.total / limit),
        },
    }


@router.get("/payments/stats")
async def payment_stats(days: int = Query(default=30, ge=1, le=3660)) -> dict:
    """Per-bank and daily payment totals over the last ``days`` days."""
    from paygate.main import get_storage

    end = datetime.now(timezone.utc)
    start = end - timedelta(days=days)
    totals = await get_storage().summarize(since_ms=_epoch_ms(start))
    return {
        **totals,
        "period": {
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
            "days": days,
        },
    }
