"""Webhook payload signing and verification.

Signature header format::

    t=<unix timestamp>,v1=<hex HMAC-SHA256(secret, "<t>.<raw body>")>

Receivers recompute the HMAC over ``"{t}.{raw_body}"`` with the endpoint
secret and compare in constant time.
"""
from __future__ import annotations

import hashlib
import hmac
import secrets
import time

from sbtc_gateway.core.exceptions import SignatureVerificationError
from sbtc_gateway.settings import settings

SIGNATURE_HEADER = "X-SBTC-Signature"
EVENT_ID_HEADER = "X-SBTC-Event-Id"
EVENT_TYPE_HEADER = "X-SBTC-Event-Type"

SECRET_PREFIX = "whsec_"


def generate_secret() -> str:
    return f"{SECRET_PREFIX}{secrets.token_urlsafe(32)}"


def _as_bytes(value: str | bytes) -> bytes:
    return value if isinstance(value, bytes) else value.encode("utf-8")


def _mac(raw_payload: bytes, secret: str, timestamp: int | str) -> str:
    signed = str(timestamp).encode("ascii") + b"." + raw_payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def sign(payload: str | bytes, secret: str, timestamp: int) -> str:
    """Render the signature header value for ``payload`` at ``timestamp``."""
    return f"t={timestamp},v1={_mac(_as_bytes(payload), secret, timestamp)}"


def _parse_header(header: str) -> tuple[str, list[str]] | None:
    timestamp: str | None = None
    signatures: list[str] = []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep or not value:
            continue
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)
    if timestamp is None or not timestamp.isdigit() or not signatures:
        return None
    return timestamp, signatures


def verify(
    raw_payload: str | bytes,
    signature_header: str | None,
    secret: str,
    *,
    tolerance_seconds: int | None = None,
    now: float | None = None,
) -> bool:
    """Check ``signature_header`` against ``raw_payload``. Never raises.

    With ``tolerance_seconds`` set, headers whose timestamp is further than
    that from ``now`` are rejected as replays.
    """
    if not signature_header or not secret:
        return False
    try:
        parsed = _parse_header(signature_header)
        if parsed is None:
            return False
        timestamp, candidates = parsed
        if tolerance_seconds is not None:
            current = time.time() if now is None else now
            if abs(current - int(timestamp)) > tolerance_seconds:
                return False
        expected = _mac(_as_bytes(raw_payload), secret, timestamp)
        return any(hmac.compare_digest(expected, candidate) for candidate in candidates)
    except (TypeError, ValueError, UnicodeError):
        return False


def verify_or_raise(
    raw_payload: str | bytes,
    signature_header: str | None,
    secret: str,
    *,
    tolerance_seconds: int | None = None,
    now: float | None = None,
) -> None:
    """Receiver-side guard: reject the request outright on a bad signature.

    The replay window defaults to ``webhook_signature_tolerance_seconds``.
    """
    if tolerance_seconds is None:
        tolerance_seconds = settings.webhook_signature_tolerance_seconds
    if not verify(
        raw_payload, signature_header, secret, tolerance_seconds=tolerance_seconds, now=now
    ):
        raise SignatureVerificationError("Webhook signature verification failed")
