"""Canonical request encoding and HMAC signatures.

Both the device (signer) and the server (verifier) must produce the same
bytes for a request, so the encoding is pinned down here and versioned.

Canonical encoding ``paygate-v1``:

1. Start from the request body and drop ``device_id`` and ``signature``
   (and a body-level ``timestamp``, if present).
2. Set ``timestamp`` to the request timestamp as an integer number of
   epoch milliseconds.
3. Serialize as JSON with object keys sorted lexicographically at every
   nesting level, ``,`` and ``:`` separators and no whitespace. Non-ASCII
   characters are emitted as-is; NaN and Infinity are not allowed.
   Numbers are written the way Python writes the parsed value: a JSON
   float keeps its fraction (``100.0``, not ``100``), so signers must send
   whole amounts as integers and never use exponent notation.
4. Encode the resulting text as UTF-8.

The signature is the lowercase hex HMAC-SHA256 of those bytes, keyed with
the UTF-8 bytes of the device's hex secret key.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any, Mapping

CANONICAL_VERSION = "paygate-v1"

# Fields carried alongside the signed payload but never part of it.
UNSIGNED_FIELDS = frozenset({"device_id", "signature", "timestamp"})


def signed_fields(body: Mapping[str, Any]) -> dict[str, Any]:
    """Return the part of a request body that is covered by the signature."""
    return {k: v for k, v in body.items() if k not in UNSIGNED_FIELDS}


def canonical_bytes(payload: Mapping[str, Any], timestamp_ms: int) -> bytes:
    """Encode ``payload`` plus ``timestamp_ms`` in the ``paygate-v1`` form.

    Raises ``TypeError`` or ``ValueError`` when the payload holds values JSON
    cannot represent.
    """
    data = signed_fields(payload)
    data["timestamp"] = int(timestamp_ms)
    text = json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )
    return text.encode("utf-8")


def compute_signature(secret_key: str, payload: Mapping[str, Any], timestamp_ms: int) -> str:
    mac = hmac.new(secret_key.encode("utf-8"), canonical_bytes(payload, timestamp_ms), hashlib.sha256)
    return mac.hexdigest()


def signatures_match(received: str, expected: str) -> bool:
    """Constant-time comparison of two hex signatures.

    A length difference is just another mismatch; the comparison time
    does not depend on where the strings first differ.
    """
    try:
        received_bytes = received.encode("ascii")
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(received_bytes, expected.encode("ascii"))


def sign_payload(
    device_id: str,
    secret_key: str,
    payload: Mapping[str, Any],
    timestamp_ms: int,
) -> tuple[dict[str, Any], dict[str, str]]:
    """Build a signed request body and its headers, as a device would.

    Returns ``(body, headers)`` ready to be posted as JSON.
    """
    body = signed_fields(payload)
    body["device_id"] = device_id
    body["signature"] = compute_signature(secret_key, payload, timestamp_ms)
    headers = {"x-timestamp": str(int(timestamp_ms))}
    return body, headers
