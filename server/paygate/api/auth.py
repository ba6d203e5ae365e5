"""FastAPI dependency that runs the admission pipeline on a signed request."""

from __future__ import annotations

import json

from fastapi import Header, Request

from paygate.core.errors import MissingFields
from paygate.core.models import AuthenticatedContext


async def read_json_body(request: Request) -> dict:
    """Parse the request body as a JSON object; anything else is MissingFields."""
    body_bytes = await request.body()
    try:
        body = json.loads(body_bytes)
    except (ValueError, RecursionError) as exc:
        # ValueError covers JSONDecodeError, UnicodeDecodeError and
        # integers past the interpreter's digit limit.
        raise MissingFields("invalid JSON") from exc
    if not isinstance(body, dict):
        raise MissingFields("body must be a JSON object")
    return body


async def require_device(
    request: Request,
    x_timestamp: str | None = Header(default=None),
) -> AuthenticatedContext:
    """Admit the request or raise the AuthError that rejects it."""
    from paygate.main import get_pipeline

    body = await read_json_body(request)
    return await get_pipeline().admit(body, x_timestamp)
