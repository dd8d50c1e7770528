from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from facturador.config import TOKEN_CACHE_TTL, TOKEN_SAFETY_MARGIN
from facturador.models.credential import Credential
from facturador.utils.token_claims import claim_expiry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CachedToken:
    token: str
    credential: Credential
    cache_expiry: float
    claim_expiry: float | None = None

    def expires_at(self, safety_margin: float) -> float:
        """Effective expiry: the earlier of the cache TTL and the claim expiry minus margin."""
        if self.claim_expiry is None:
            return self.cache_expiry
        return min(self.cache_expiry, self.claim_expiry - safety_margin)


class TokenCache:
    """Holds the token of the most recently authenticated credential.

    Memory only: one entry, replaced on every set(), gone on restart.
    """

    def __init__(
        self,
        ttl: float = TOKEN_CACHE_TTL,
        safety_margin: float = TOKEN_SAFETY_MARGIN,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl = ttl
        self.safety_margin = safety_margin
        self._clock = clock
        self._entry: CachedToken | None = None

    def get(self, credential: Credential) -> str | None:
        entry = self._entry
        if entry is None:
            return None
        if entry.credential != credential:
            self.clear()
            return None
        if self._clock() >= entry.expires_at(self.safety_margin):
            logger.info("Token for %s expired, dropping it", credential.identity)
            self.clear()
            return None
        return entry.token

    def set(self, credential: Credential, token: str) -> CachedToken:
        entry = CachedToken(
            token=token,
            credential=credential,
            cache_expiry=self._clock() + self.ttl,
            claim_expiry=claim_expiry(token),
        )
        self._entry = entry
        return entry

    def clear(self) -> None:
        self._entry = None
