"""Ledger primitives: Money and percentage arithmetic.

Amounts are integer minor units (cents) tagged with an ISO currency code.
No floating point is ever involved; percentages are Decimals in [0, 100].

Usage:
    total = Money.from_major("2000.00", "USD")   # Money(200000, "USD")
    agent, client = allocate(total, [Decimal("33.3"), Decimal("66.7")])
    assert add(agent, client) == total
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING

from visa_escrow.domain.exceptions import (
    CurrencyMismatchError,
    InsufficientFundsError,
    InvalidAmountError,
    InvalidPercentageError,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

MINOR_UNITS = 100
HUNDRED = Decimal(100)
PERCENT_STEP = Decimal("0.01")


@dataclass(frozen=True, slots=True)
class Money:
    """A non-negative amount of minor units in a single currency."""

    amount: int
    currency: str = "USD"

    def __post_init__(self) -> None:
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise InvalidAmountError(f"Amount must be integer minor units, got {self.amount!r}")
        if self.amount < 0:
            raise InvalidAmountError(f"Amount cannot be negative: {self.amount}")
        if len(self.currency) != 3 or not self.currency.isalpha():
            raise InvalidAmountError(f"Invalid currency code: {self.currency!r}")

    @classmethod
    def zero(cls, currency: str = "USD") -> Money:
        return cls(0, currency)

    @classmethod
    def from_major(cls, value: Decimal | str | int, currency: str = "USD") -> Money:
        """Convert a major-unit value (e.g. ``"19.99"``) to Money.

        Raises InvalidAmountError for negative values or more than two
        decimal places; amounts are never silently rounded.
        """
        try:
            major = Decimal(str(value))
        except InvalidOperation as err:
            raise InvalidAmountError(f"Not a decimal amount: {value!r}") from err
        if not major.is_finite():
            raise InvalidAmountError(f"Not a finite amount: {value!r}")
        minor = major * MINOR_UNITS
        if minor != minor.to_integral_value():
            raise InvalidAmountError(f"At most two decimal places allowed: {value}")
        return cls(int(minor), currency.upper())

    def to_major(self) -> Decimal:
        return (Decimal(self.amount) / MINOR_UNITS).quantize(Decimal("0.01"))

    @property
    def is_zero(self) -> bool:
        return self.amount == 0

    def __str__(self) -> str:
        return f"{self.to_major()} {self.currency}"


def _check_currency(left: Money, right: Money) -> None:
    if left.currency != right.currency:
        raise CurrencyMismatchError(left.currency, right.currency)


def add(left: Money, right: Money) -> Money:
    _check_currency(left, right)
    return Money(left.amount + right.amount, left.currency)


def subtract(left: Money, right: Money) -> Money:
    """Return ``left - right``; a negative result raises InsufficientFundsError."""
    _check_currency(left, right)
    if right.amount > left.amount:
        raise InsufficientFundsError(required=right.amount, available=left.amount)
    return Money(left.amount - right.amount, left.currency)


def total(amounts: Sequence[Money], currency: str = "USD") -> Money:
    """Sum a sequence of Money values (all in the same currency)."""
    result = Money.zero(currency)
    for amount in amounts:
        result = add(result, amount)
    return result


def to_percentage(value: Decimal | str | int) -> Decimal:
    """Validate a percentage in the closed range [0, 100] with at most two decimals."""
    try:
        pct = Decimal(str(value))
    except InvalidOperation as err:
        raise InvalidPercentageError(f"Not a percentage: {value!r}") from err
    if not pct.is_finite() or pct < 0 or pct > HUNDRED:
        raise InvalidPercentageError(f"Percentage must be between 0 and 100: {value}")
    if pct != pct.quantize(PERCENT_STEP):
        raise InvalidPercentageError(f"Percentage allows at most two decimal places: {value}")
    return pct


def percent_of(amount: Money, percentage: Decimal | str | int) -> Money:
    """Return ``percentage`` % of ``amount``, rounded half-up to the minor unit."""
    pct = to_percentage(percentage)
    share = (Decimal(amount.amount) * pct / HUNDRED).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return Money(int(share), amount.currency)


def ratio_percent(part: Money, whole: Money) -> Decimal:
    """Return ``part`` as a percentage of ``whole`` with two decimals."""
    _check_currency(part, whole)
    if whole.amount == 0:
        return Decimal("0.00")
    return (Decimal(part.amount) * HUNDRED / Decimal(whole.amount)).quantize(
        Decimal("0.01"), rounding=ROUND_DOWN
    )


def allocate(amount: Money, percentages: Sequence[Decimal | str | int]) -> list[Money]:
    """Split ``amount`` across shares so that the parts sum exactly to it.

    Every share except the last is rounded down; the last share absorbs the
    remainder, so there is never any rounding drift.

    Raises:
        InvalidPercentageError: if there are no shares, a share is outside
            [0, 100], or the shares do not sum to exactly 100.
    """
    if not percentages:
        raise InvalidPercentageError("At least one share is required")
    pcts = [to_percentage(p) for p in percentages]
    if sum(pcts) != HUNDRED:
        raise InvalidPercentageError(f"Shares must sum to 100, got {sum(pcts)}")

    shares: list[Money] = []
    assigned = 0
    for pct in pcts[:-1]:
        part = int((Decimal(amount.amount) * pct / HUNDRED).to_integral_value(rounding=ROUND_DOWN))
        shares.append(Money(part, amount.currency))
        assigned += part
    shares.append(Money(amount.amount - assigned, amount.currency))
    return shares
