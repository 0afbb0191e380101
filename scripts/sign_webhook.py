#!/usr/bin/env python3
"""Sign a webhook body the way the gateway does, for local testing.

Usage:
    RAZORPAY_WEBHOOK_SECRET=... python scripts/sign_webhook.py event.json
    RAZORPAY_WEBHOOK_SECRET=... python scripts/sign_webhook.py event.json --curl http://localhost:8000

Prints the X-Razorpay-Signature value for the file's exact bytes, or a
ready-to-run curl command when --curl is given.
"""

from __future__ import annotations

import os
import shlex
import sys
import uuid
from pathlib import Path

from roomly.gateway.webhook import EVENT_ID_HEADER, SIGNATURE_HEADER
from roomly.infra.hashing import hmac_sha256_hex


def sign(body: bytes, secret: str) -> str:
    return hmac_sha256_hex(secret, body)


def curl_command(base_url: str, path: Path, signature: str, event_id: str) -> str:
    return " ".join(
        [
            "curl -sS -X POST",
            shlex.quote(f"{base_url.rstrip('/')}/payments/webhook"),
            "-H 'Content-Type: application/json'",
            "-H",
            shlex.quote(f"{SIGNATURE_HEADER}: {signature}"),
            "-H",
            shlex.quote(f"{EVENT_ID_HEADER}: {event_id}"),
            "--data-binary",
            shlex.quote(f"@{path}"),
        ]
    )


def main(argv: list[str]) -> int:
    if not argv or argv[0] in ("-h", "--help"):
        sys.stderr.write(__doc__ or "")
        return 2

    secret = os.environ.get("RAZORPAY_WEBHOOK_SECRET", "")
    if not secret:
        sys.stderr.write("ERROR: RAZORPAY_WEBHOOK_SECRET not set\n")
        return 1

    path = Path(argv[0])
    if not path.is_file():
        sys.stderr.write(f"ERROR: file not found: {path}\n")
        return 1

    signature = sign(path.read_bytes(), secret)

    if len(argv) >= 3 and argv[1] == "--curl":
        sys.stdout.write(curl_command(argv[2], path, signature, f"evt_{uuid.uuid4().hex[:14]}") + "\n")
    else:
        sys.stdout.write(signature + "\n")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
