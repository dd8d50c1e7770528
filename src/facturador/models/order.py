"""Upstream e-commerce order payload and its conversion into an invoice.

The webhook signature has already been verified by the time an Order is built.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from facturador.models.invoice import Customer, CustomerProfile, InvoiceItem, InvoiceSubmission
from facturador.services.exceptions import ValidationError
from facturador.utils.validators import validate_amount, validate_int_id, validate_quantity

# Final-consumer identification used when the order carries no document number.
GENERIC_IDENTIFICATION = "222222222222"


@dataclass(frozen=True)
class OrderItem:
    product_id: int
    title: str
    quantity: Decimal
    final_price: Decimal
    code: str | None = None


@dataclass(frozen=True)
class OrderBuyer:
    document_number: str | None = None
    name: str | None = None
    email: str | None = None
    phone: str | None = None

    @classmethod
    def from_dict(cls, d: dict | None) -> OrderBuyer | None:
        if not d:
            return None
        return cls(
            document_number=(str(d["documentNumber"]).strip() if d.get("documentNumber") else None),
            name=d.get("name"),
            email=d.get("email"),
            phone=d.get("phone"),
        )


@dataclass(frozen=True)
class Order:
    id: int
    items: tuple[OrderItem, ...]
    store_name: str | None = None
    customer: OrderBuyer | None = None
    user: OrderBuyer | None = None
    paid_at: str | None = None

    @classmethod
    def from_dict(cls, d: dict) -> Order:
        if not isinstance(d, dict) or d.get("id") in (None, ""):
            raise ValidationError("order.id: required")
        raw_items = d.get("items")
        if not isinstance(raw_items, list) or not raw_items:
            raise ValidationError("order.items: at least one item is required")
        items = []
        for i, it in enumerate(raw_items):
            if not isinstance(it, dict):
                raise ValidationError(f"order.items[{i}]: expected a mapping")
            product: dict[str, Any] = it.get("product") or {}
            if product.get("id") is None or not product.get("title"):
                raise ValidationError(f"order.items[{i}].product: id and title are required")
            items.append(
                OrderItem(
                    product_id=validate_int_id(product["id"], f"order.items[{i}].product.id"),
                    title=str(product["title"]),
                    code=product.get("code") or None,
                    quantity=validate_quantity(it.get("quantity"), f"order.items[{i}].quantity"),
                    final_price=validate_amount(
                        it.get("finalPrice"), f"order.items[{i}].finalPrice"
                    ),
                )
            )
        store = d.get("store") or {}
        return cls(
            id=validate_int_id(d["id"], "order.id"),
            items=tuple(items),
            store_name=store.get("name"),
            customer=OrderBuyer.from_dict(d.get("customer")),
            user=OrderBuyer.from_dict(d.get("user")),
            paid_at=d.get("paidAt") or d.get("paid_at"),
        )

    def _buyer_field(self, name: str) -> str | None:
        for buyer in (self.customer, self.user):
            value = getattr(buyer, name, None) if buyer else None
            if value:
                return value
        return None

    def invoice_date(self, today: date) -> str:
        """Date the invoice from the payment timestamp, else *today*."""
        if self.paid_at:
            try:
                return datetime.fromisoformat(self.paid_at.replace("Z", "+00:00")).date().isoformat()
            except ValueError:
                pass
        return today.isoformat()

    def to_submission(self, today: date) -> InvoiceSubmission:
        identification = self._buyer_field("document_number") or GENERIC_IDENTIFICATION
        profile = None
        if identification != GENERIC_IDENTIFICATION:
            profile = CustomerProfile(
                document_type="CC",
                document_number=identification,
                name=self._buyer_field("name") or "Cliente Sin Nombre",
                email=self._buyer_field("email"),
                phone=self.customer.phone if self.customer else None,
            )
        observations = f"Factura generada desde orden #{self.id}"
        if self.store_name:
            observations += f" - Tienda: {self.store_name}"
        return InvoiceSubmission(
            customer=Customer(identification=identification),
            customer_profile=profile,
            date=self.invoice_date(today),
            items=tuple(
                InvoiceItem(
                    code=it.code or f"GRAF-{it.product_id}",
                    description=it.title,
                    quantity=it.quantity,
                    price=it.final_price,
                )
                for it in self.items
            ),
            observations=observations,
        )
