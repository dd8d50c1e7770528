from __future__ import annotations

from decimal import Decimal

import pytest

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


class TestValidateAmount:
    def test_valid(self):
        assert validate_amount("47500.50") == Decimal("47500.50")

    def test_zero_allowed(self):
        assert validate_amount(0) == 0

    def test_negative(self):
        with pytest.raises(ValidationError, match="negative"):
            validate_amount("-1", "items[0].price")

    def test_not_a_number(self):
        with pytest.raises(ValidationError, match="price"):
            validate_amount("abc", "price")

    def test_rejects_nan_and_bool(self):
        with pytest.raises(ValidationError):
            validate_amount("NaN")
        with pytest.raises(ValidationError):
            validate_amount(True)

    def test_is_a_value_error(self):
        with pytest.raises(ValueError):
            validate_amount("x")


class TestValidateQuantity:
    def test_fractional(self):
        assert validate_quantity("1.5") == Decimal("1.5")

    def test_zero_rejected(self):
        with pytest.raises(ValidationError, match="positive"):
            validate_quantity(0)


class TestValidateDate:
    def test_valid(self):
        assert validate_date("2026-03-02") == "2026-03-02"

    def test_invalid(self):
        with pytest.raises(ValidationError, match="YYYY-MM-DD"):
            validate_date("02/03/2026")


class TestValidateDocumentType:
    def test_normalizes_case(self):
        assert validate_document_type(" nit ") == "NIT"

    def test_unsupported(self):
        with pytest.raises(ValidationError):
            validate_document_type("PASSPORT")


class TestValidateIdentification:
    def test_digits(self):
        assert validate_identification(900123456) == "900123456"

    def test_check_digit(self):
        assert validate_identification("900123456-7") == "900123456-7"

    def test_invalid(self):
        for value in ("12", "90012A456", "", None):
            with pytest.raises(ValidationError):
                validate_identification(value)


class TestValidateEmail:
    def test_valid(self):
        assert validate_email(" ana@shop.co ") == "ana@shop.co"

    def test_invalid(self):
        with pytest.raises(ValidationError):
            validate_email("ana@shop")


class TestValidateIntId:
    def test_numeric_string(self):
        assert validate_int_id("28418") == 28418
        assert validate_int_id(7) == 7

    @pytest.mark.parametrize("value", ["IVA", None, "1.5", True, False])
    def test_rejected(self, value):
        with pytest.raises(ValidationError, match="taxes"):
            validate_int_id(value, "items[0].taxes")
