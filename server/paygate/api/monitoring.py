"""Health check and monitoring endpoints."""

from __future__ import annotations

import shutil
from pathlib import Path

from fastapi import APIRouter

router = APIRouter(prefix="/api/v1")


@router.get("/health")
async def health() -> dict:
    """Basic health check."""
    from paygate.main import get_config, get_stats, get_storage

    config = get_config()
    snapshot = get_stats().snapshot()

    storage_path = Path(config.storage.payments_dir)
    try:
        disk = shutil.disk_usage(storage_path if storage_path.exists() else ".")
        disk_free_gb = round(disk.free / (1024 ** 3), 1)
    except OSError:
        disk_free_gb = -1

    return {
        "status": "ok",
        "version": "0.1.0",
        "uptime_seconds": snapshot["uptime_seconds"],
        "queue_depth": snapshot["queue_depth"],
        "storage_writable": get_storage().is_writable(),
        "disk_free_gb": disk_free_gb,
    }


@router.get("/stats")
async def stats() -> dict:
    """Detailed server statistics.

    ``auth.rejected_by_reason`` counts rejections per error code
    (MissingFields, Expired, Unauthorized, SignatureMismatch, RateLimited...).
    ``rate_limit.tracked_devices`` is the number of live rate-limit windows.
    """
    from paygate.main import get_limiter, get_stats

    result = get_stats().snapshot()
    result["rate_limit"] = {"tracked_devices": get_limiter().tracked_keys()}
    return result
