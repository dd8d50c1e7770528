from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date
from decimal import Decimal
from typing import Any

import httpx

from facturador.config import CUSTOMERS_PATH, IDEMPOTENCY_HEADER, INVOICES_PATH, Settings
from facturador.models.invoice import CustomerProfile, InvoiceSubmission
from facturador.services.api_client import ApiClient, build_transport_error
from facturador.services.auth import AuthHeaders
from facturador.services.catalog import CatalogCache
from facturador.services.exceptions import CustomerCreateError, ExternalApiError
from facturador.services.idempotency import IdempotencyStore, generate_key, normalize_key
from facturador.services.payload_builder import (
    PricedItems,
    build_customer_payload,
    build_invoice_payload,
    item_tax_ids,
    payload_shape,
    price_items,
    seller_variants,
    strip_taxes,
)

logger = logging.getLogger(__name__)

_ALREADY_EXISTS = "already_exists"


def is_seller_required(exc: ExternalApiError) -> bool:
    return exc.error_code == "parameter_required" and exc.mentions("seller")


def is_invalid_tax(exc: ExternalApiError) -> bool:
    return exc.error_code == "invalid_reference" and exc.mentions("tax")


def is_idempotency_rejected(exc: ExternalApiError) -> bool:
    return exc.error_code == "invalid_idempotency_key" or exc.mentions("idempotency-key")


def _with_shape(exc: ExternalApiError, payload: dict[str, Any]) -> ExternalApiError:
    exc.payload_shape = payload_shape(payload)
    return exc


class InvoiceSubmitter:
    """Creates invoices upstream, working around the API's schema ambiguities.

    The invoice endpoint has accepted the seller reference under several
    field names over time, so each submission walks SELLER_ENCODINGS in order
    until one is accepted. Results are cached by idempotency key.
    """

    def __init__(
        self,
        api: ApiClient,
        catalog: CatalogCache,
        idempotency: IdempotencyStore,
        settings: Settings,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._api = api
        self.catalog = catalog
        self.idempotency = idempotency
        self.settings = settings
        self._today = today

    async def ensure_customer(self, profile: CustomerProfile, auth: AuthHeaders) -> None:
        """Create the customer upstream unless it already exists."""
        headers = auth.as_dict()
        try:
            body = await self._api.get(
                CUSTOMERS_PATH, headers, {"identification": profile.document_number}
            )
        except ExternalApiError as exc:
            if exc.is_unauthorized:
                raise
            logger.warning("Customer lookup failed, trying to create it: %s", exc)
            body = None
        except httpx.HTTPError as exc:
            logger.warning("Customer lookup unreachable, trying to create it: %r", exc)
            body = None
        results = body.get("results") if isinstance(body, dict) else body
        if results:
            return

        try:
            await self._api.post(CUSTOMERS_PATH, build_customer_payload(profile), headers)
        except ExternalApiError as exc:
            if exc.is_unauthorized:
                raise
            if exc.error_code == _ALREADY_EXISTS:
                logger.info("Customer %s already exists", profile.document_number)
                return
            raise CustomerCreateError(
                f"Could not create customer {profile.document_number}: {exc}",
                status_code=exc.status_code,
                error_code=exc.error_code,
                params=exc.params,
                response=exc.response,
                method=exc.method,
                url=exc.url,
            ) from exc
        except httpx.HTTPError as exc:
            raise CustomerCreateError(
                f"Could not create customer {profile.document_number}: {exc!r}", status_code=502
            ) from exc
        logger.info("Created customer %s", profile.document_number)

    async def _price(self, submission: InvoiceSubmission, auth: AuthHeaders) -> PricedItems:
        default_tax_id = self.settings.default_tax_id
        if default_tax_id is not None and not await self.catalog.is_valid_tax(auth, default_tax_id):
            logger.warning("Configured tax id %s is not in the tax catalog, ignoring it", default_tax_id)
            default_tax_id = None

        rates: dict[int, Decimal] = {}
        for item in submission.items:
            for tax_id in item_tax_ids(item, default_tax_id):
                if tax_id not in rates:
                    rates[tax_id] = await self.catalog.get_tax_rate(auth, tax_id)
        return price_items(submission.items, default_tax_id, rates)

    async def _post_invoice(self, payload: dict[str, Any], headers: dict[str, str]) -> Any:
        """POST one invoice variant; a failed transport surfaces as a 502 ExternalApiError."""
        try:
            return await self._api.post(
                INVOICES_PATH, payload, headers, timeout=self.settings.invoice_timeout
            )
        except httpx.HTTPError as exc:
            logger.warning("Invoice POST failed in transport: %r", exc)
            raise build_transport_error(exc) from exc

    async def create_invoice(
        self,
        submission: InvoiceSubmission,
        auth: AuthHeaders,
        idempotency_key: str | None = None,
        *,
        seller_id: int | None = None,
        seller_email_hint: str | None = None,
    ) -> Any:
        """Submit *submission* as an invoice and return the upstream result.

        A result already cached under the idempotency key is returned without
        any network call. 401s always propagate untouched.
        """
        key = normalize_key(idempotency_key) or generate_key()
        cached = self.idempotency.get(key)
        if cached is not None:
            logger.info("Returning cached invoice for idempotency key %s", key)
            return cached

        if submission.customer_profile is not None:
            await self.ensure_customer(submission.customer_profile, auth)

        payment_method_id = await self.catalog.resolve_payment_method(auth)
        if seller_id is None:
            seller_id = await self.catalog.resolve_seller(auth, seller_email_hint)

        invoice_date = submission.date or self._today().isoformat()
        priced = await self._price(submission, auth)
        base = build_invoice_payload(
            submission,
            priced,
            document_id=self.settings.invoice_document_id,
            payment_method_id=payment_method_id,
            invoice_date=invoice_date,
        )

        last_error: ExternalApiError | None = None
        last_payload = base
        for variant in seller_variants(base, seller_id):
            payload = variant.payload
            headers = {**auth.as_dict(), IDEMPOTENCY_HEADER: key}
            try:
                result = await self._post_invoice(payload, headers)
            except ExternalApiError as exc:
                if exc.is_unauthorized:
                    raise
                if is_seller_required(exc):
                    logger.warning("Seller encoding %s rejected, trying the next one", variant.name)
                    last_error, last_payload = exc, payload
                    continue
                if is_idempotency_rejected(exc):
                    logger.warning("Idempotency key rejected, resending %s without it", variant.name)
                    headers.pop(IDEMPOTENCY_HEADER)
                elif is_invalid_tax(exc):
                    logger.warning("Tax reference rejected, resending %s without taxes", variant.name)
                    payload = strip_taxes(payload)
                else:
                    raise _with_shape(exc, payload)
                try:
                    result = await self._post_invoice(payload, headers)
                except ExternalApiError as retry_exc:
                    if retry_exc.is_unauthorized:
                        raise
                    raise _with_shape(retry_exc, payload) from exc

            logger.info("Invoice accepted with seller encoding %s", variant.name)
            self.idempotency.set(key, result)
            return result

        if last_error is None:
            raise ExternalApiError("No seller encodings configured")
        raise _with_shape(last_error, last_payload)
