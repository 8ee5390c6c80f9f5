"""Tests for the ledger primitives."""

from __future__ import annotations

from decimal import Decimal

import pytest

from visa_escrow.domain.exceptions import (
    CurrencyMismatchError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidPercentageError,
)
from visa_escrow.domain.money import (
    Money,
    add,
    allocate,
    percent_of,
    ratio_percent,
    subtract,
    to_percentage,
    total,
)


class TestMoney:
    def test_from_major_converts_to_minor_units(self) -> None:
        assert Money.from_major("2000.00") == Money(200000, "USD")
        assert Money.from_major(Decimal("19.99"), "eur") == Money(1999, "EUR")

    def test_to_major_has_two_places(self) -> None:
        assert Money(50000).to_major() == Decimal("500.00")
        assert str(Money(1999, "EUR")) == "19.99 EUR"

    def test_rejects_fractional_cents(self) -> None:
        with pytest.raises(InvalidAmountError):
            Money.from_major("10.005")

    def test_rejects_negative_and_non_integer(self) -> None:
        with pytest.raises(InvalidAmountError):
            Money(-1)
        with pytest.raises(InvalidAmountError):
            Money(1.5)  # type: ignore[arg-type]
        with pytest.raises(InvalidAmountError):
            Money.from_major("abc")

    def test_rejects_bad_currency(self) -> None:
        with pytest.raises(InvalidAmountError):
            Money(100, "US")


class TestArithmetic:
    def test_add_and_subtract(self) -> None:
        assert add(Money(150), Money(50)) == Money(200)
        assert subtract(Money(150), Money(50)) == Money(100)

    def test_subtract_below_zero_fails(self) -> None:
        with pytest.raises(InsufficientFundsError) as exc_info:
            subtract(Money(100), Money(101))
        assert exc_info.value.code == "INSUFFICIENT_FUNDS"

    def test_currency_mismatch(self) -> None:
        with pytest.raises(CurrencyMismatchError):
            add(Money(100, "USD"), Money(100, "EUR"))

    def test_total_of_empty_is_zero(self) -> None:
        assert total([], "USD") == Money.zero("USD")
        assert total([Money(50000)] * 4) == Money(200000)


class TestPercentages:
    def test_to_percentage_bounds(self) -> None:
        assert to_percentage("0") == Decimal(0)
        assert to_percentage(100) == Decimal(100)
        with pytest.raises(InvalidPercentageError):
            to_percentage("100.01")
        with pytest.raises(InvalidPercentageError):
            to_percentage(-1)

    def test_to_percentage_allows_two_decimals(self) -> None:
        assert to_percentage("33.34") == Decimal("33.34")
        assert to_percentage("12.500") == Decimal("12.5")
        with pytest.raises(InvalidPercentageError):
            to_percentage("33.335")

    def test_percent_of_rounds_half_up(self) -> None:
        assert percent_of(Money(200000), "5") == Money(10000)
        # 2.9% of $10.50 = 30.45 cents -> 30
        assert percent_of(Money(1050), "2.9") == Money(30)
        # 50% of 1 cent = 0.5 -> 1
        assert percent_of(Money(1), 50) == Money(1)

    def test_ratio_percent(self) -> None:
        assert ratio_percent(Money(50000), Money(200000)) == Decimal("25.00")
        assert ratio_percent(Money(1), Money(3)) == Decimal("33.33")
        assert ratio_percent(Money(0), Money(0)) == Decimal("0.00")


class TestAllocate:
    def test_even_split(self) -> None:
        assert allocate(Money(150000), [50, 50]) == [Money(75000), Money(75000)]

    def test_remainder_goes_to_last_share(self) -> None:
        shares = allocate(Money(100), ["33.3", "33.3", "33.4"])
        assert shares == [Money(33), Money(33), Money(34)]
        assert sum(s.amount for s in shares) == 100

    def test_parts_always_sum_to_whole(self) -> None:
        for cents in (1, 7, 99, 150001):
            agent, client = allocate(Money(cents), ["40", "60"])
            assert agent.amount + client.amount == cents

    def test_shares_must_sum_to_hundred(self) -> None:
        with pytest.raises(InvalidPercentageError):
            allocate(Money(100), [40, 50])
        with pytest.raises(InvalidPercentageError):
            allocate(Money(100), [])
