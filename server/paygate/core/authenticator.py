"""Per-request device authentication.

Checks run in a fixed order and the first failure ends the request:

1. ``device_id``, ``signature`` and a timestamp are present and well formed.
2. The timestamp is within ``tolerance_ms`` of the server clock, either way.
3. The device exists and is active.
4. The signature equals HMAC-SHA256 over the canonical encoding
   (see ``paygate.core.signing``), compared in constant time.

Unknown and inactive devices get the same external error; only the log
line says which one it was.
"""

from __future__ import annotations

import re
import time
from typing import Any, Callable, Mapping, TYPE_CHECKING

import structlog

from paygate.core.errors import (
    Expired,
    InternalError,
    MissingFields,
    SignatureMismatch,
    Unauthorized,
)
from paygate.core.models import AuthenticatedContext
from paygate.core.signing import compute_signature, signatures_match, signed_fields

if TYPE_CHECKING:
    from paygate.core.registry import DeviceRegistry

log = structlog.get_logger()

DEFAULT_TOLERANCE_MS = 5 * 60 * 1000

# 16 digits of epoch milliseconds reach far past any real clock.
_TIMESTAMP_RE = re.compile(r"\d{1,16}", re.ASCII)


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


def parse_timestamp(value: Any) -> int | None:
    """Parse epoch milliseconds from a header string or JSON number.

    Returns None for anything that is not a non-negative integer.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str):
        value = value.strip()
        if _TIMESTAMP_RE.fullmatch(value):
            return int(value)
    return None


class RequestAuthenticator:
    """Verifies that a request was signed by an active registered device."""

    def __init__(
        self,
        registry: DeviceRegistry,
        tolerance_ms: int = DEFAULT_TOLERANCE_MS,
        clock: Callable[[], int] = wall_clock_ms,
    ) -> None:
        self._registry = registry
        self._tolerance_ms = tolerance_ms
        self._clock = clock

    async def authenticate(
        self,
        body: Mapping[str, Any],
        timestamp_header: str | None = None,
    ) -> AuthenticatedContext:
        device_id = body.get("device_id")
        signature = body.get("signature")
        raw_timestamp = timestamp_header if timestamp_header is not None else body.get("timestamp")

        if not isinstance(device_id, str) or not device_id:
            log.info("auth_rejected", reason="missing_device_id")
            raise MissingFields("device_id")
        if not isinstance(signature, str) or not signature:
            log.info("auth_rejected", reason="missing_signature", device=device_id[:8])
            raise MissingFields("signature")
        timestamp_ms = parse_timestamp(raw_timestamp)
        if timestamp_ms is None:
            log.info("auth_rejected", reason="bad_timestamp", device=device_id[:8])
            raise MissingFields("timestamp")

        skew_ms = abs(self._clock() - timestamp_ms)
        if skew_ms > self._tolerance_ms:
            log.info("auth_rejected", reason="timestamp_expired",
                     device=device_id[:8], skew_ms=skew_ms)
            raise Expired(f"skew {skew_ms}ms")

        device = await self._registry.find(device_id)
        if device is None:
            log.info("auth_rejected", reason="unknown_device", device=device_id[:8])
            raise Unauthorized("unknown device")
        if not device.is_active:
            log.info("auth_rejected", reason="device_not_active",
                     device=device_id[:8], status=device.status.value)
            raise Unauthorized(f"device status {device.status.value}")

        try:
            expected = compute_signature(device.secret_key, body, timestamp_ms)
        except (TypeError, ValueError) as exc:
            log.error("auth_canonicalization_failed", device=device_id[:8], exc_info=True)
            raise InternalError("payload could not be canonicalized") from exc

        if not signatures_match(signature, expected):
            log.info("auth_rejected", reason="signature_mismatch", device=device_id[:8])
            raise SignatureMismatch()

        log.debug("auth_accepted", device=device_id[:8])
        return AuthenticatedContext(
            device=device,
            payload=signed_fields(body),
            timestamp_ms=timestamp_ms,
        )
