from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date
from typing import Any

import httpx

from facturador.config import CREDIT_NOTES_PATH, INVOICES_PATH, Settings
from facturador.services.api_client import ApiClient, build_transport_error
from facturador.services.auth import AuthHeaders
from facturador.services.exceptions import NotFoundError
from facturador.services.payload_builder import build_credit_note_payload

logger = logging.getLogger(__name__)


def _pick_invoice(results: list[dict[str, Any]], serie: str) -> dict[str, Any] | None:
    """Prefer the invoice whose prefix matches *serie*, else the first one."""
    if not results:
        return None
    wanted = serie.strip().upper()
    for invoice in results:
        prefix = invoice.get("prefix") or (invoice.get("document") or {}).get("prefix")
        if prefix and str(prefix).strip().upper() == wanted:
            return invoice
    return results[0]


class CreditNoteIssuer:
    """Cancels an invoice by issuing a full credit note against it."""

    def __init__(
        self,
        api: ApiClient,
        settings: Settings,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._api = api
        self.settings = settings
        self._today = today

    async def find_invoice(self, serie: str, number: int | str, auth: AuthHeaders) -> dict[str, Any]:
        try:
            body = await self._api.get(INVOICES_PATH, auth.as_dict(), {"number": str(number)})
        except httpx.HTTPError as exc:
            raise build_transport_error(exc) from exc
        results = body.get("results") if isinstance(body, dict) else body
        if not isinstance(results, list):
            results = []
        invoice = _pick_invoice([r for r in results if isinstance(r, dict)], serie)
        if invoice is None or invoice.get("id") is None:
            raise NotFoundError(f"Invoice {serie}-{number} not found")
        return invoice

    async def cancel(
        self,
        serie: str,
        number: int | str,
        auth: AuthHeaders,
        reason: str | None = None,
    ) -> Any:
        """Issue a credit note cancelling invoice *serie*-*number*. Submitted once."""
        invoice = await self.find_invoice(serie, number, auth)
        payload = build_credit_note_payload(
            invoice,
            document_id=self.settings.credit_note_document_id,
            credit_note_date=self._today().isoformat(),
            reason=reason,
        )
        try:
            result = await self._api.post(
                CREDIT_NOTES_PATH, payload, auth.as_dict(), timeout=self.settings.invoice_timeout
            )
        except httpx.HTTPError as exc:
            raise build_transport_error(exc) from exc
        logger.info("Issued credit note for invoice %s-%s", serie, number)
        return result
