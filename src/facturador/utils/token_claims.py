"""Unverified JWT claim decoding.

The signature is never checked here. Claims read through this module are
hints (tenant id, expiry) used for caching and header building; they must not
be used to decide whether a request is authorized.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any


def decode_token_claims(token: str) -> dict[str, Any] | None:
    """Decode the payload segment of a JWT without verifying it.

    Returns None if the token is not three dot-separated segments or the
    middle one is not padded-Base64URL JSON object.
    """
    parts = (token or "").split(".")
    if len(parts) != 3 or not parts[1]:
        return None
    segment = parts[1]
    padded = segment + "=" * (-len(segment) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        claims = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError):
        return None
    if not isinstance(claims, dict):
        return None
    return claims


def claim_expiry(token: str) -> float | None:
    """Return the ``exp`` claim as epoch seconds, or None."""
    claims = decode_token_claims(token)
    if not claims:
        return None
    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    return float(exp)
