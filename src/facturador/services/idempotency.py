from __future__ import annotations

import re
import time
import uuid
from collections.abc import Callable
from typing import Any

from facturador.config import IDEMPOTENCY_TTL

_UUID4 = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}", re.IGNORECASE
)
_UUID4_COMPACT = re.compile(r"[0-9a-f]{32}", re.IGNORECASE)
_SAFE_TOKEN = re.compile(r"[A-Za-z0-9_-]{10,64}")


def normalize_key(key: str | None) -> str | None:
    """Normalize a caller idempotency key, or return None if it is not acceptable.

    A hyphenated UUID v4 is reduced to its 32-char compact form; compact UUIDs
    and 10-64 char ``[A-Za-z0-9_-]`` tokens are kept as-is.
    """
    if not isinstance(key, str):
        return None
    text = key.strip()
    if _UUID4.fullmatch(text):
        return text.replace("-", "")
    if _UUID4_COMPACT.fullmatch(text) or _SAFE_TOKEN.fullmatch(text):
        return text
    return None


def generate_key() -> str:
    return uuid.uuid4().hex


class IdempotencyStore:
    """TTL map from normalized idempotency key to the invoice result it produced."""

    def __init__(self, ttl: float = IDEMPOTENCY_TTL, clock: Callable[[], float] = time.time) -> None:
        self.ttl = ttl
        self._clock = clock
        self._store: dict[str, tuple[dict[str, Any], float]] = {}  # key -> (result, expires_at)

    def get(self, key: str) -> dict[str, Any] | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        result, expires_at = entry
        if self._clock() > expires_at:
            self._store.pop(key, None)
            return None
        return result

    def set(self, key: str, result: dict[str, Any]) -> None:
        self._store[key] = (result, self._clock() + self.ttl)
