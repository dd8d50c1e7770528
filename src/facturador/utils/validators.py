from __future__ import annotations

import re
from datetime import date
from decimal import Decimal, InvalidOperation

from facturador.services.exceptions import ValidationError

DOCUMENT_TYPES = frozenset({"NIT", "CC", "CE", "DNI", "RUC"})


def _decimal(value: object, field: str) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{field}: invalid number '{value}'")
    try:
        d = Decimal(str(value).strip())
        if not d.is_finite():
            raise InvalidOperation
    except InvalidOperation:
        raise ValidationError(f"{field}: invalid number '{value}'") from None
    return d


def validate_amount(value: object, field: str = "amount") -> Decimal:
    """Parse a monetary amount. Zero is allowed, negatives are not."""
    d = _decimal(value, field)
    if d < 0:
        raise ValidationError(f"{field}: must not be negative")
    return d


def validate_quantity(value: object, field: str = "quantity") -> Decimal:
    """Parse an item quantity, which must be strictly positive."""
    d = _decimal(value, field)
    if d <= 0:
        raise ValidationError(f"{field}: must be positive")
    return d


def validate_date(value: str, field: str = "date") -> str:
    """Validate an ISO date string (YYYY-MM-DD), returning it unchanged."""
    try:
        date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field}: invalid date '{value}'. Use YYYY-MM-DD.") from None
    return value


def validate_document_type(value: str) -> str:
    """Validate a customer document type (NIT, CC, CE, DNI, RUC)."""
    upper = str(value or "").strip().upper()
    if upper not in DOCUMENT_TYPES:
        raise ValidationError(f"document_type: unsupported '{value}'")
    return upper


def validate_identification(value: object, field: str = "identification") -> str:
    """Validate a customer identification: 3-20 digits, optionally one check-digit dash."""
    text = str(value or "").strip()
    if not re.fullmatch(r"\d{3,20}(-\d)?", text):
        raise ValidationError(f"{field}: expected digits, got '{value}'")
    return text


def validate_email(value: str) -> str:
    """Loose email sanity check; the upstream API performs the strict one."""
    text = value.strip()
    if not re.fullmatch(r"[^@\s]+@[^@\s]+\.[^@\s]+", text):
        raise ValidationError(f"email: invalid address '{value}'")
    return text


def validate_int_id(value: object, field: str = "id") -> int:
    """Parse a numeric catalog or record id. Booleans are rejected."""
    if isinstance(value, bool):
        raise ValidationError(f"{field}: expected an integer id, got '{value}'")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field}: expected an integer id, got '{value}'") from None
