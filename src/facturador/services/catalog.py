from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

import httpx

from facturador.config import CATALOG_TTL, INVOICE_DOCUMENT_TYPE, Settings
from facturador.services.api_client import ApiClient
from facturador.services.auth import AuthHeaders
from facturador.services.exceptions import ExternalApiError, SellerUnresolvedError

logger = logging.getLogger(__name__)

CASH_NAMES = frozenset({"efectivo", "cash"})


class CatalogKind(str, Enum):
    PAYMENT_TYPES = "payment-types"
    USERS = "users"
    TAXES = "taxes"


@dataclass(frozen=True)
class CatalogEntry:
    """One payment method, user or tax as listed by the API."""

    id: int
    name: str | None = None
    email: str | None = None
    username: str | None = None
    active: bool = True
    is_seller: bool = False
    percentage: Decimal | None = None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> CatalogEntry | None:
        """Parse an API item; returns None for items without a numeric id."""
        try:
            entry_id = int(d["id"])
        except (KeyError, TypeError, ValueError):
            return None
        roles = d.get("roles") if isinstance(d.get("roles"), list) else []
        is_seller = d.get("is_seller") is True or any(str(r).lower() == "seller" for r in roles)
        active = d.get("active")
        return cls(
            id=entry_id,
            name=d.get("name"),
            email=d.get("email"),
            username=d.get("username"),
            active=True if active is None else bool(active),
            is_seller=is_seller,
            percentage=_percentage(d),
        )

    @property
    def rate(self) -> Decimal:
        """Fractional tax rate (19% -> 0.19); 0 for missing or non-positive percentages."""
        if self.percentage is None or self.percentage <= 0:
            return Decimal("0")
        return self.percentage / 100

    def slim(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "username": self.username,
            "is_seller": self.is_seller,
            "active": self.active,
        }


def _percentage(d: dict[str, Any]) -> Decimal | None:
    for key in ("percentage", "rate", "value"):
        raw = d.get(key)
        if raw is None or isinstance(raw, bool):
            continue
        try:
            pct = Decimal(str(raw))
        except InvalidOperation:
            return None
        return pct if pct.is_finite() else None
    return None


def _results(body: Any) -> list[dict[str, Any]]:
    if isinstance(body, dict):
        body = body.get("results", [])
    if not isinstance(body, list):
        return []
    return [item for item in body if isinstance(item, dict)]


def _norm(value: str | None) -> str:
    return (value or "").strip().lower()


@dataclass(frozen=True)
class Catalog:
    entries: tuple[CatalogEntry, ...]
    expires_at: float


class CatalogCache:
    """Per-tenant TTL cache of payment methods, users and taxes.

    Each catalog is fetched whole on miss and replaced whole on refetch. A failed
    fetch is treated as an empty catalog (and not cached), except for 401s which
    propagate so the caller can refresh its token.
    """

    def __init__(
        self,
        api: ApiClient,
        settings: Settings,
        ttl: float = CATALOG_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._api = api
        self.settings = settings
        self.ttl = ttl
        self._clock = clock
        self._catalogs: dict[tuple[str, ...], Catalog] = {}

    async def _entries(
        self,
        auth: AuthHeaders,
        kind: CatalogKind,
        params: dict[str, str] | None = None,
    ) -> tuple[CatalogEntry, ...]:
        key = (auth.tenant_id, kind.value, *(params or {}).values())
        now = self._clock()
        cached = self._catalogs.get(key)
        if cached is not None and cached.expires_at > now:
            return cached.entries

        try:
            body = await self._api.get(f"/v1/{kind.value}", auth.as_dict(), params)
        except ExternalApiError as exc:
            if exc.is_unauthorized:
                raise
            logger.warning("Could not fetch %s catalog: %s", kind.value, exc)
            return ()
        except httpx.HTTPError as exc:
            logger.warning("Could not reach the %s catalog: %r", kind.value, exc)
            return ()

        entries = tuple(e for e in map(CatalogEntry.from_dict, _results(body)) if e is not None)
        self._catalogs[key] = Catalog(entries=entries, expires_at=now + self.ttl)
        return entries

    async def payment_methods(
        self, auth: AuthHeaders, document_type: str = INVOICE_DOCUMENT_TYPE
    ) -> tuple[CatalogEntry, ...]:
        return await self._entries(auth, CatalogKind.PAYMENT_TYPES, {"document_type": document_type})

    async def users(self, auth: AuthHeaders) -> tuple[CatalogEntry, ...]:
        return await self._entries(auth, CatalogKind.USERS)

    async def taxes(self, auth: AuthHeaders) -> tuple[CatalogEntry, ...]:
        return await self._entries(auth, CatalogKind.TAXES)

    async def resolve_payment_method(
        self, auth: AuthHeaders, document_type: str = INVOICE_DOCUMENT_TYPE
    ) -> int | None:
        """Pick the payment method id for an invoice.

        Configured override when active in the catalog, then the active cash
        entry, then the first active entry, then the override unchecked.
        """
        override = self.settings.payment_method_id
        methods = await self.payment_methods(auth, document_type)
        active = [m for m in methods if m.active]
        if override is not None and any(m.id == override for m in active):
            return override
        cash = next((m for m in active if _norm(m.name) in CASH_NAMES), None)
        if cash is not None:
            return cash.id
        if active:
            return active[0].id
        return override

    async def resolve_seller(self, auth: AuthHeaders, email_hint: str | None = None) -> int:
        """Pick the seller id for an invoice.

        Active user matching *email_hint* by email or username, then the first
        seller-flagged user, then the first active user, then the configured
        seller ids. Raises SellerUnresolvedError when nothing is left.
        """
        users = await self.users(auth)
        hint = _norm(email_hint)
        if hint:
            matched = next(
                (u for u in users if hint in (_norm(u.email), _norm(u.username))), None
            )
            if matched is not None and matched.active:
                return matched.id
        seller = next((u for u in users if u.is_seller), None)
        if seller is not None:
            return seller.id
        first_active = next((u for u in users if u.active), None)
        if first_active is not None:
            return first_active.id
        for configured in (self.settings.seller_id, self.settings.fallback_seller_id):
            if configured is not None:
                return configured
        raise SellerUnresolvedError("Could not resolve a valid seller", hint=email_hint)

    async def is_valid_tax(self, auth: AuthHeaders, tax_id: int | None) -> bool:
        if tax_id is None:
            return False
        return any(t.id == tax_id for t in await self.taxes(auth))

    async def get_tax_rate(self, auth: AuthHeaders, tax_id: int) -> Decimal:
        tax = next((t for t in await self.taxes(auth) if t.id == tax_id), None)
        return tax.rate if tax is not None else Decimal("0")
