"""Stripe webhook signature verification.

Stripe signs each delivery with HMAC-SHA256 over ``"{timestamp}.{payload}"``
and sends the result in the ``Stripe-Signature`` header as
``t=<unix-seconds>,v1=<hex-digest>[,...]``.
"""

import hashlib
import hmac
import logging
import re
import time
from typing import Optional, Union

from membersync.errors import AuthError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "Stripe-Signature"

_HEADER_PATTERN = re.compile(r"t=([0-9]+),v1=([a-f0-9]+)")


def parse_signature_header(sig_header: Optional[str]) -> tuple[str, str]:
    """Extract the raw timestamp and v1 signature from a Stripe-Signature header.

    Raises:
        AuthError: If the header is missing or does not match the pattern
    """
    if not sig_header:
        raise AuthError("Missing Stripe webhook signature header")

    match = _HEADER_PATTERN.search(sig_header)
    if match is None:
        raise AuthError("Invalid Stripe webhook signature header")

    return match.group(1), match.group(2)


def compute_signature(timestamp: Union[int, str], payload: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of ``"{timestamp}.{payload}"`` keyed with the secret."""
    signed_payload = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(
        secret.encode("utf-8"),
        signed_payload,
        hashlib.sha256,
    ).hexdigest()


def verify_signature(
    payload: bytes,
    sig_header: Optional[str],
    secret: str,
    tolerance_seconds: int = 0,
    now: Optional[float] = None,
) -> None:
    """Verify a webhook delivery.

    Args:
        payload: Raw request body
        sig_header: Stripe-Signature header value
        secret: Webhook signing secret
        tolerance_seconds: Reject timestamps older than this (0 disables)
        now: Current unix time, for tests

    Raises:
        AuthError: On missing/malformed header, stale timestamp or mismatch
    """
    timestamp, signature = parse_signature_header(sig_header)

    expected = compute_signature(timestamp, payload, secret)
    if not hmac.compare_digest(expected, signature):
        raise AuthError("Wrong Stripe webhook signature")

    if tolerance_seconds > 0:
        current = time.time() if now is None else now
        if current - int(timestamp) > tolerance_seconds:
            raise AuthError("Stripe webhook timestamp outside tolerance")

    logger.debug(f"Verified webhook signature (t={timestamp})")
