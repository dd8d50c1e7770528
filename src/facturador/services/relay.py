from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import date
from typing import Any

import httpx

from facturador.config import INVOICE_DOCUMENT_TYPE, Settings, load_settings
from facturador.models.credential import Credential
from facturador.models.invoice import InvoiceSubmission
from facturador.models.order import Order
from facturador.services.api_client import ApiClient
from facturador.services.auth import AuthHeaders, AuthResolver
from facturador.services.auth_retry import AuthRetryInterceptor
from facturador.services.catalog import CatalogCache
from facturador.services.credit_note import CreditNoteIssuer
from facturador.services.idempotency import IdempotencyStore
from facturador.services.invoicing import InvoiceSubmitter
from facturador.services.token_cache import TokenCache

logger = logging.getLogger(__name__)


class InvoiceRelay:
    """Process-lifetime entry point owning the HTTP client and every cache.

    Each public operation runs through the AuthRetryInterceptor, so a single
    expired token is refreshed transparently.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        http: httpx.AsyncClient | None = None,
        *,
        clock: Callable[[], float] = time.time,
        today: Callable[[], date] = date.today,
        sleep_func: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or load_settings()
        self.api = ApiClient(self.settings, http, sleep_func=sleep_func)
        self.today = today
        self.token_cache = TokenCache(clock=clock)
        self.catalog = CatalogCache(self.api, self.settings, clock=clock)
        self.idempotency = IdempotencyStore(clock=clock)
        self.resolver = AuthResolver(self.settings, self.api.http, self.token_cache)
        self.interceptor = AuthRetryInterceptor(self.resolver)
        self.submitter = InvoiceSubmitter(
            self.api, self.catalog, self.idempotency, self.settings, today=today
        )
        self.issuer = CreditNoteIssuer(self.api, self.settings, today=today)

    async def aclose(self) -> None:
        await self.api.aclose()

    async def __aenter__(self) -> InvoiceRelay:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def create_invoice(
        self,
        data: InvoiceSubmission | dict,
        credential: Credential,
        idempotency_key: str | None = None,
        *,
        seller_id: int | None = None,
        seller_email_hint: str | None = None,
    ) -> Any:
        """Create an invoice from a submission or its dict form."""
        submission = data if isinstance(data, InvoiceSubmission) else InvoiceSubmission.from_dict(data)
        hint = seller_email_hint or credential.identity

        async def _op(auth: AuthHeaders) -> Any:
            return await self.submitter.create_invoice(
                submission,
                auth,
                idempotency_key,
                seller_id=seller_id,
                seller_email_hint=hint,
            )

        return await self.interceptor.call(credential, _op)

    async def create_invoice_from_order(
        self,
        order: Order | dict,
        credential: Credential,
        idempotency_key: str | None = None,
    ) -> Any:
        if not isinstance(order, Order):
            order = Order.from_dict(order)
        logger.info("Invoicing order %s", order.id)
        return await self.create_invoice(
            order.to_submission(self.today()), credential, idempotency_key
        )

    async def cancel_invoice(
        self,
        serie: str,
        number: int | str,
        credential: Credential,
        reason: str | None = None,
    ) -> Any:
        async def _op(auth: AuthHeaders) -> Any:
            return await self.issuer.cancel(serie, number, auth, reason)

        return await self.interceptor.call(credential, _op)

    async def get_payment_types(
        self, credential: Credential, document_type: str = INVOICE_DOCUMENT_TYPE
    ) -> Any:
        """Raw payment-type list as returned upstream (uncached)."""

        async def _op(auth: AuthHeaders) -> Any:
            return await self.api.get(
                "/v1/payment-types", auth.as_dict(), {"document_type": document_type}
            )

        return await self.interceptor.call(credential, _op)

    async def get_sellers(self, credential: Credential) -> list[dict[str, Any]]:
        async def _op(auth: AuthHeaders) -> list[dict[str, Any]]:
            return [user.slim() for user in await self.catalog.users(auth)]

        return await self.interceptor.call(credential, _op)
