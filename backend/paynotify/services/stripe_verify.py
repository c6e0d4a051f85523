"""
Verification of Stripe-style webhook signatures.

The header has the form ``t=<unix-seconds>,v1=<hex>[,v1=<hex>...]``. The
signed payload is ``b"<t>." + raw_body`` over the exact bytes received, and
several ``v1`` entries may be present while a signing secret is rotated.
"""
import hashlib
import hmac
import time


def parse_signature_header(header: str | None) -> tuple[str, list[str]] | None:
    """Return ``(timestamp, [v1 signatures])``, or None when the header is unusable."""
    if not header:
        return None
    timestamp = ""
    signatures: list[str] = []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep or not key or not value:
            continue
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)
    if not timestamp or not signatures:
        return None
    return timestamp, signatures


def compute_signature(secret: str, timestamp: str, raw_body: bytes) -> str:
    payload = timestamp.encode("utf-8") + b"." + raw_body
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def _constant_time_equal(a: str, b: str) -> bool:
    a_bytes = a.encode("utf-8")
    b_bytes = b.encode("utf-8")
    if len(a_bytes) != len(b_bytes):
        return False
    return hmac.compare_digest(a_bytes, b_bytes)


def verify(
    secret: str,
    header: str | None,
    raw_body: bytes,
    tolerance: int | None = 300,
    now: float | None = None,
) -> bool:
    """
    True if at least one ``v1`` signature in ``header`` matches ``raw_body``.

    A missing or malformed header is simply not authentic; the caller decides
    how to answer. With ``tolerance`` set, a timestamp further than that many
    seconds from ``now`` is rejected as a replay.
    """
    parsed = parse_signature_header(header)
    if parsed is None:
        return False
    timestamp, signatures = parsed

    if tolerance:
        try:
            signed_at = int(timestamp)
        except ValueError:
            return False
        current = time.time() if now is None else now
        if abs(current - signed_at) > tolerance:
            return False

    expected = compute_signature(secret, timestamp, raw_body)
    matched = False
    # Every candidate is compared so the work done does not depend on which one matches
    for candidate in signatures:
        matched |= _constant_time_equal(candidate, expected)
    return matched
