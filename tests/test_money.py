"""
Tests for Decimal money and rate primitives
"""

import pytest
from decimal import Decimal

from village_sacco.errors import InvalidAmount, ValidationError
from village_sacco.money import (
    to_decimal, round_money, positive_amount, validate_rate, monthly_rate, daily_rate, format_amount
)


class TestToDecimal:

    def test_strings_with_symbols_and_separators(self):
        assert to_decimal("KES 1,200.50") == Decimal('1200.50')
        assert to_decimal("$99") == Decimal('99')

    def test_float_goes_through_str(self):
        assert to_decimal(0.1) == Decimal('0.1')

    def test_rejects_garbage(self):
        with pytest.raises(ValidationError):
            to_decimal("abc")
        with pytest.raises(ValidationError):
            to_decimal(None)
        with pytest.raises(ValidationError):
            to_decimal(True)

    def test_rejects_non_finite(self):
        with pytest.raises(ValidationError):
            to_decimal(Decimal('Infinity'))

    def test_rejects_malformed_numbers_instead_of_rewriting_them(self):
        for text in ["1e3", "12abc34", "1.2.3", "10-5", "NaN", "KES"]:
            with pytest.raises(ValidationError):
                to_decimal(text)

    def test_currency_code_with_period(self):
        assert to_decimal("Ksh. 2,500") == Decimal('2500')
        assert to_decimal(" -12.50 ") == Decimal('-12.50')


class TestRounding:

    def test_round_half_up_not_bankers(self):
        assert round_money(Decimal('0.125')) == Decimal('0.13')
        assert round_money(Decimal('0.135')) == Decimal('0.14')
        assert round_money(Decimal('2.345')) == Decimal('2.35')

    def test_rounds_down_below_half(self):
        assert round_money(Decimal('4.109589')) == Decimal('4.11')
        assert round_money(Decimal('451.291562')) == Decimal('451.29')


class TestValidation:

    def test_positive_amount(self):
        assert positive_amount("100") == Decimal('100.00')

    def test_zero_and_negative_amounts_rejected(self):
        with pytest.raises(InvalidAmount):
            positive_amount(0)
        with pytest.raises(InvalidAmount):
            positive_amount("-5")
        # Rounds to zero cents
        with pytest.raises(InvalidAmount):
            positive_amount("0.004")

    def test_invalid_amount_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            positive_amount("not money")

    def test_rates_are_fractions(self):
        assert validate_rate("0.15") == Decimal('0.15')
        assert validate_rate(0) == Decimal('0')
        with pytest.raises(ValidationError):
            validate_rate("-0.01")
        with pytest.raises(ValidationError):
            validate_rate("15")


class TestRates:

    def test_monthly_and_daily_rates(self):
        assert monthly_rate(Decimal('0.12')) == Decimal('0.01')
        assert daily_rate(Decimal('0.365')) == Decimal('0.001')
        assert daily_rate(Decimal('0.36'), days_in_year=360) == Decimal('0.001')

    def test_format_amount(self):
        assert format_amount(Decimal('1234567.5')) == "1,234,567.50"
