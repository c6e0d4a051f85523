#!/usr/bin/env python3
"""
Sign a webhook body for local testing.

    make_sig.py <secret> <payload.json> [timestamp]

Prints the ``Stripe-Signature`` header for the file's exact bytes, so the
same file can be sent with ``curl --data-binary @payload.json``.
"""
import json
import sys
import time
from pathlib import Path

from paynotify.services.stripe_verify import compute_signature


def make_signature_header(secret: str, raw_body: bytes, timestamp: int | None = None) -> str:
    ts = str(int(time.time()) if timestamp is None else timestamp)
    return f"t={ts},v1={compute_signature(secret, ts, raw_body)}"


def main(argv: list[str]) -> int:
    if len(argv) not in (3, 4):
        print("Usage: make_sig.py <secret> <payload.json> [timestamp]", file=sys.stderr)
        return 1

    secret, path = argv[1], Path(argv[2])
    raw_body = path.read_bytes()
    try:
        json.loads(raw_body)
    except ValueError:
        print("Error: payload must be valid JSON", file=sys.stderr)
        return 1

    timestamp = int(argv[3]) if len(argv) == 4 else None
    print(make_signature_header(secret, raw_body, timestamp))
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
