from __future__ import annotations

from dataclasses import dataclass
import hashlib
import hmac
import math
import re

from pulsewatch.core.errors import (
    BadSignatureError,
    ConfigError,
    InvalidTimestampError,
    MissingSignatureFieldError,
    SkewError,
)


# Symmetric window so clients whose clocks run ahead or behind both verify.
MAX_TIMESTAMP_SKEW_MS = 300_000


@dataclass(frozen=True)
class Verified:
    tenant_id: str
    client_id: str
    timestamp_ms: float


def signing_message(tenant_id: str, client_id: str, timestamp: str) -> bytes:
    # Field order is part of the wire contract; reordering breaks every deployed client.
    return f"{tenant_id}\n{client_id}\n{timestamp}".encode("utf-8")


def build_ping_signature(secret: str, tenant_id: str, client_id: str, timestamp: str | int) -> str:
    # Compute the hex HMAC-SHA256 clients attach to pings.
    message = signing_message(tenant_id, client_id, str(timestamp))
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


# Plain ASCII decimal milliseconds; underscores, exponents and hex are not numbers here.
_TIMESTAMP_RE = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)", re.ASCII)


def _parse_timestamp(raw: str) -> float:
    if not _TIMESTAMP_RE.fullmatch(raw):
        raise InvalidTimestampError(f"Timestamp is not a number: {raw!r}")
    value = float(raw)
    if not math.isfinite(value):
        raise InvalidTimestampError(f"Timestamp is not a number: {raw!r}")
    return value


def verify_ping_signature(
    secret: str | None,
    tenant_id: str,
    client_id: str,
    timestamp: str | None,
    signature: str | None,
    *,
    now_ms: int,
    max_skew_ms: int = MAX_TIMESTAMP_SKEW_MS,
) -> Verified:
    """Check that a ping was signed by a holder of ``secret``.

    The timestamp is signed exactly as received, so clients must send the
    same string they signed. Raises a ``VerificationError`` subclass on any
    failure and ``ConfigError`` when the host has no secret configured.
    """
    if not secret:
        raise ConfigError("Heartbeat signing secret is not configured")
    timestamp = (timestamp or "").strip()
    signature = (signature or "").strip()
    if not timestamp or not signature:
        raise MissingSignatureFieldError("Both timestamp and signature are required")
    timestamp_ms = _parse_timestamp(timestamp)
    if abs(now_ms - timestamp_ms) > max_skew_ms:
        raise SkewError(f"Timestamp outside the allowed {max_skew_ms}ms window")
    expected = build_ping_signature(secret, tenant_id, client_id, timestamp)
    # compare_digest only short-circuits on length; content comparison is constant time.
    if not hmac.compare_digest(expected.encode("ascii"), signature.lower().encode("utf-8")):
        raise BadSignatureError("Signature does not match")
    return Verified(tenant_id=tenant_id, client_id=client_id, timestamp_ms=timestamp_ms)
