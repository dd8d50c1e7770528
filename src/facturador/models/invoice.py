from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from facturador.services.exceptions import ValidationError
from facturador.utils.validators import (
    validate_amount,
    validate_date,
    validate_document_type,
    validate_email,
    validate_identification,
    validate_int_id,
    validate_quantity,
)


def _required(d: dict, key: str, where: str) -> Any:
    if d.get(key) in (None, ""):
        raise ValidationError(f"{where}.{key}: required")
    return d[key]


@dataclass(frozen=True)
class Customer:
    """Customer reference placed on the invoice."""

    identification: str
    branch_office: int = 0

    @classmethod
    def from_dict(cls, d: dict) -> Customer:
        return cls(
            identification=validate_identification(
                _required(d, "identification", "customer"), "customer.identification"
            ),
            branch_office=validate_int_id(d.get("branch_office", 0), "customer.branch_office"),
        )


@dataclass(frozen=True)
class CustomerProfile:
    """Full customer data, used to create the customer upstream when missing."""

    document_type: str
    document_number: str
    name: str
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    active: bool = True

    @classmethod
    def from_dict(cls, d: dict) -> CustomerProfile:
        name = str(_required(d, "name", "customer_profile")).strip()
        if len(name) < 3:
            raise ValidationError("customer_profile.name: at least 3 characters")
        email = d.get("email")
        return cls(
            document_type=validate_document_type(d.get("document_type", "CC")),
            document_number=validate_identification(
                _required(d, "document_number", "customer_profile"),
                "customer_profile.document_number",
            ),
            name=name,
            email=validate_email(email) if email else None,
            phone=str(d["phone"]).strip() if d.get("phone") else None,
            address=str(d["address"]).strip() if d.get("address") else None,
            active=bool(d.get("active", True)),
        )


@dataclass(frozen=True)
class InvoiceItem:
    code: str
    description: str
    quantity: Decimal
    price: Decimal
    discount: Decimal = Decimal("0")
    taxes: tuple[int, ...] = ()

    @property
    def base(self) -> Decimal:
        """Pre-tax line amount: quantity * price - discount."""
        return self.quantity * self.price - self.discount

    @classmethod
    def from_dict(cls, d: dict, index: int = 0) -> InvoiceItem:
        where = f"items[{index}]"
        taxes = d.get("taxes") or []
        if not isinstance(taxes, list):
            raise ValidationError(f"{where}.taxes: expected a list")
        return cls(
            code=str(_required(d, "code", where)),
            description=str(_required(d, "description", where)),
            quantity=validate_quantity(_required(d, "quantity", where), f"{where}.quantity"),
            price=validate_amount(_required(d, "price", where), f"{where}.price"),
            discount=validate_amount(d.get("discount") or 0, f"{where}.discount"),
            taxes=tuple(
                validate_int_id(t["id"] if isinstance(t, dict) else t, f"{where}.taxes") for t in taxes
            ),
        )


@dataclass(frozen=True)
class Payment:
    id: int
    value: Decimal
    due_date: str

    @classmethod
    def from_dict(cls, d: dict, index: int = 0) -> Payment:
        where = f"payments[{index}]"
        return cls(
            id=validate_int_id(_required(d, "id", where), f"{where}.id"),
            value=validate_amount(_required(d, "value", where), f"{where}.value"),
            due_date=validate_date(str(_required(d, "due_date", where)), f"{where}.due_date"),
        )


@dataclass(frozen=True)
class InvoiceSubmission:
    """Sale to be invoiced. Transient, never persisted."""

    customer: Customer
    items: tuple[InvoiceItem, ...]
    date: str | None = None
    customer_profile: CustomerProfile | None = None
    payments: tuple[Payment, ...] | None = None
    observations: str | None = None

    @classmethod
    def from_dict(cls, d: dict) -> InvoiceSubmission:
        """Parse a caller payload, raising ValidationError on malformed input."""
        if not isinstance(d, dict):
            raise ValidationError("invoice: expected a mapping")
        items = d.get("items")
        if not isinstance(items, list) or not items:
            raise ValidationError("items: at least one item is required")
        customer = d.get("customer")
        if not isinstance(customer, dict):
            raise ValidationError("customer: required")
        profile = d.get("customer_profile")
        payments = d.get("payments")
        if payments is not None and not isinstance(payments, list):
            raise ValidationError("payments: expected a list")
        date = d.get("date")
        return cls(
            customer=Customer.from_dict(customer),
            items=tuple(InvoiceItem.from_dict(it, i) for i, it in enumerate(items)),
            date=validate_date(str(date)) if date else None,
            customer_profile=CustomerProfile.from_dict(profile) if profile else None,
            payments=(
                tuple(Payment.from_dict(p, i) for i, p in enumerate(payments))
                if payments
                else None
            ),
            observations=d.get("observations"),
        )
