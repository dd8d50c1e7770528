from __future__ import annotations

import copy
import re
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from facturador.models.invoice import CustomerProfile, InvoiceItem, InvoiceSubmission

CENT = Decimal("0.01")

_ID_TYPES = {"NIT": "31", "CC": "13", "CE": "22", "DNI": "13", "RUC": "41"}
_COMPANY_TYPES = frozenset({"NIT", "RUC"})
_PHONE_INDICATIVE = "57"

DEFAULT_CANCEL_OBSERVATION = "Anulación total"


def round2(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _num(value: Decimal) -> int | float:
    """JSON-friendly number: int when integral, float otherwise."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


# --- Customer ---


def build_customer_payload(profile: CustomerProfile) -> dict[str, Any]:
    """Build the customer-creation body from a customer profile."""
    full_name = profile.name.strip()
    words = full_name.split()
    is_company = profile.document_type in _COMPANY_TYPES

    if is_company:

        def _letters(s: str) -> str:
            return re.sub(r"[^A-Za-zÁÉÍÓÚÜÑáéíóúüñ]", "", s).upper()

        first = _letters(words[0] if words else full_name) or "EMPRESA"
        last = _letters(words[1] if len(words) > 1 else "SOCIEDAD") or "SOCIEDAD"
    else:
        first = words[0] if words else full_name
        last = " ".join(words[1:]) or first

    payload: dict[str, Any] = {
        "type": "Customer",
        "person_type": "Company" if is_company else "Person",
        "id_type": _ID_TYPES.get(profile.document_type, "31"),
        "identification": profile.document_number,
        "name": [first, last],
        "commercial_name": full_name,
        "active": profile.active,
        "vat_responsible": False,
        "fiscal_responsibilities": [{"code": "R-99-PN"}],
    }
    phone = {"indicative": _PHONE_INDICATIVE, "number": profile.phone} if profile.phone else None
    if profile.address:
        payload["address"] = {"address": profile.address}
    if phone:
        payload["phones"] = [phone]
    if profile.email:
        contact: dict[str, Any] = {"first_name": first, "last_name": last, "email": profile.email}
        if phone:
            contact["phone"] = phone
        payload["contacts"] = [contact]
    return payload


# --- Items and totals ---


@dataclass(frozen=True)
class PricedItems:
    items: tuple[dict[str, Any], ...]
    subtotal: Decimal
    tax_total: Decimal
    total: Decimal


def item_tax_ids(item: InvoiceItem, default_tax_id: int | None) -> tuple[int, ...]:
    """Explicit item taxes, else the (already validated) default tax id."""
    if item.taxes:
        return item.taxes
    if default_tax_id is not None:
        return (default_tax_id,)
    return ()


def price_items(
    items: tuple[InvoiceItem, ...],
    default_tax_id: int | None,
    rates: Mapping[int, Decimal],
) -> PricedItems:
    """Compute line payloads and totals.

    base = quantity * price - discount, tax = sum(base * rate) over rates > 0.
    Subtotal, tax and total are each rounded to 2 decimals, half-up.
    """
    lines: list[dict[str, Any]] = []
    subtotal = Decimal("0")
    tax_total = Decimal("0")
    for item in items:
        tax_ids = item_tax_ids(item, default_tax_id)
        base = item.base
        for tax_id in tax_ids:
            rate = rates.get(tax_id, Decimal("0"))
            if rate > 0:
                tax_total += base * rate
        subtotal += base
        line: dict[str, Any] = {
            "code": item.code,
            "description": item.description,
            "quantity": _num(item.quantity),
            "price": _num(item.price),
            "discount": _num(item.discount),
        }
        if tax_ids:
            line["taxes"] = [{"id": tax_id} for tax_id in tax_ids]
        lines.append(line)
    return PricedItems(
        items=tuple(lines),
        subtotal=round2(subtotal),
        tax_total=round2(tax_total),
        total=round2(subtotal + tax_total),
    )


def build_invoice_payload(
    submission: InvoiceSubmission,
    priced: PricedItems,
    *,
    document_id: int,
    payment_method_id: int | None,
    invoice_date: str,
) -> dict[str, Any]:
    """Build the invoice body without any seller reference."""
    if submission.payments:
        payments = [
            {"id": p.id, "value": _num(p.value), "due_date": p.due_date}
            for p in submission.payments
        ]
    else:
        payments = [
            {
                "id": payment_method_id if payment_method_id is not None else 1,
                "value": _num(priced.total),
                "due_date": invoice_date,
            }
        ]
    payload: dict[str, Any] = {
        "document": {"id": document_id},
        "date": invoice_date,
        "customer": {
            "identification": submission.customer.identification,
            "branch_office": submission.customer.branch_office,
        },
        "items": [dict(line) for line in priced.items],
        "payments": payments,
    }
    if submission.observations:
        payload["observations"] = submission.observations
    return payload


# --- Seller encodings ---

_SELLER_KEYS = ("seller", "seller_id", "SalesmanIdentification")


def _without_seller(base: dict[str, Any]) -> dict[str, Any]:
    payload = copy.deepcopy(base)
    for key in _SELLER_KEYS:
        payload.pop(key, None)
    document = payload.get("document")
    if isinstance(document, dict):
        document.pop("seller", None)
        document.pop("seller_id", None)
    return payload


def _root_id(base: dict[str, Any], seller_id: int) -> dict[str, Any]:
    payload = _without_seller(base)
    payload["seller"] = seller_id
    return payload


def _root_object(base: dict[str, Any], seller_id: int) -> dict[str, Any]:
    payload = _without_seller(base)
    payload["seller"] = {"id": seller_id}
    return payload


def _root_seller_id(base: dict[str, Any], seller_id: int) -> dict[str, Any]:
    payload = _without_seller(base)
    payload["seller_id"] = seller_id
    return payload


def _document_seller(base: dict[str, Any], seller_id: int) -> dict[str, Any]:
    payload = _without_seller(base)
    payload["document"] = {**payload.get("document", {}), "seller": seller_id}
    return payload


def _document_seller_id(base: dict[str, Any], seller_id: int) -> dict[str, Any]:
    payload = _without_seller(base)
    payload["document"] = {**payload.get("document", {}), "seller_id": seller_id}
    return payload


def _salesman_identification(base: dict[str, Any], seller_id: int) -> dict[str, Any]:
    payload = _without_seller(base)
    payload["SalesmanIdentification"] = str(seller_id)
    return payload


@dataclass(frozen=True)
class SellerEncoding:
    """A named way of placing the seller reference in the invoice body."""

    name: str
    encode: Callable[[dict[str, Any], int], dict[str, Any]]


# Attempted in this order until one is accepted.
SELLER_ENCODINGS: tuple[SellerEncoding, ...] = (
    SellerEncoding("root_id", _root_id),
    SellerEncoding("root_object", _root_object),
    SellerEncoding("root_seller_id", _root_seller_id),
    SellerEncoding("document_seller", _document_seller),
    SellerEncoding("document_seller_id", _document_seller_id),
    SellerEncoding("salesman_identification", _salesman_identification),
)


@dataclass(frozen=True)
class PayloadVariant:
    name: str
    payload: dict[str, Any]


def seller_variants(
    base: dict[str, Any],
    seller_id: int,
    encodings: tuple[SellerEncoding, ...] = SELLER_ENCODINGS,
) -> Iterator[PayloadVariant]:
    for encoding in encodings:
        yield PayloadVariant(encoding.name, encoding.encode(base, seller_id))


def strip_taxes(payload: dict[str, Any]) -> dict[str, Any]:
    """Copy of *payload* with every item's ``taxes`` removed."""
    stripped = copy.deepcopy(payload)
    for item in stripped.get("items") or []:
        if isinstance(item, dict):
            item.pop("taxes", None)
    return stripped


def payload_shape(payload: dict[str, Any]) -> dict[str, Any]:
    """Describe where the seller and taxes were placed, for error diagnostics."""
    document = payload.get("document") if isinstance(payload.get("document"), dict) else {}

    def _type(value: Any) -> str | None:
        return type(value).__name__ if value is not None else None

    items = payload.get("items") or []
    return {
        "root_seller": _type(payload.get("seller")),
        "root_seller_id": _type(payload.get("seller_id")),
        "document_seller": _type(document.get("seller")),
        "document_seller_id": _type(document.get("seller_id")),
        "salesman_identification": _type(payload.get("SalesmanIdentification")),
        "items": len(items),
        "items_with_taxes": sum(1 for it in items if isinstance(it, dict) and it.get("taxes")),
    }


# --- Credit note ---


def build_credit_note_payload(
    invoice: dict[str, Any],
    *,
    document_id: int,
    credit_note_date: str,
    reason: str | None = None,
) -> dict[str, Any]:
    """Build a full-cancellation credit note for an upstream invoice record."""
    customer = invoice.get("customer") if isinstance(invoice.get("customer"), dict) else {}
    return {
        "document": {"id": document_id},
        "date": credit_note_date,
        "customer": {
            "identification": str(customer.get("identification") or ""),
            "branch_office": 0,
        },
        "invoice": {"id": invoice["id"]},
        "observations": reason or DEFAULT_CANCEL_OBSERVATION,
    }
