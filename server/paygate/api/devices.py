"""Device registration, heartbeat and status endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from paygate.api.auth import read_json_body, require_device
from paygate.core.models import AuthenticatedContext, utcnow

router = APIRouter(prefix="/api/v1/devices")


@router.post("/register")
async def register_device(request: Request) -> JSONResponse:
    """Register a new device and disclose its secret key.

    Body: {"device_id": "...", "name": "..."}
    This response is the only place the secret key is ever returned.
    """
    from paygate.main import get_registry, get_stats

    body = await read_json_body(request)
    device = await get_registry().register(body.get("device_id"), body.get("name"))
    get_stats().record_registration()

    return JSONResponse(
        status_code=201,
        content={
            "success": True,
            "message": "Device registered successfully",
            "device": {
                "device_id": device.device_id,
                "name": device.name,
                "secret_key": device.secret_key,
                "status": device.status.value,
                "created_at": device.created_at.isoformat(),
            },
        },
    )


@router.post("/heartbeat")
async def heartbeat(ctx: AuthenticatedContext = Depends(require_device)) -> dict:
    from paygate.main import get_registry, get_stats

    now = utcnow()
    device = await get_registry().touch_heartbeat(ctx.device.device_id, now=now)
    get_stats().record_heartbeat(device.device_id)
    return {
        "success": True,
        "timestamp": now.isoformat(),
        "status": device.status.value,
    }


@router.post("/status")
async def device_status(ctx: AuthenticatedContext = Depends(require_device)) -> dict:
    """Device view plus connectivity derived from the last heartbeat."""
    from paygate.main import get_registry

    device = ctx.device
    result = device.public_view()
    result["connectivity"] = get_registry().connectivity(device).value
    return result
