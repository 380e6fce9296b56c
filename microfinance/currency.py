"""
Money Module

Currency codes with their minor-unit precision and an immutable Money type.
NEVER uses float for monetary values: installment splits, penalties and
tolerances are all Decimal.
"""

from decimal import Decimal, ROUND_HALF_UP, ROUND_DOWN, getcontext
from dataclasses import dataclass
from enum import Enum
from typing import Union

getcontext().prec = 28


class Currency(Enum):
    """ISO 4217 Currency Codes with precision info"""
    PHP = ("PHP", 2, "₱")  # Philippine Peso
    USD = ("USD", 2, "$")
    EUR = ("EUR", 2, "€")
    JPY = ("JPY", 0, "¥")

    def __init__(self, code: str, precision: int, symbol: str):
        self.code = code
        self.precision = precision
        self.symbol = symbol

    @property
    def quantum(self) -> Decimal:
        return Decimal('0.1') ** self.precision


def to_decimal(value: Union[Decimal, int, str, float]) -> Decimal:
    """Convert a number to Decimal via its string form"""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_minor(value: Union[Decimal, int, str], currency: Currency = Currency.PHP) -> Decimal:
    """Round half-up to the currency's minor unit"""
    return to_decimal(value).quantize(currency.quantum, rounding=ROUND_HALF_UP)


def floor_minor(value: Union[Decimal, int, str], currency: Currency = Currency.PHP) -> Decimal:
    """Truncate toward zero to the currency's minor unit"""
    return to_decimal(value).quantize(currency.quantum, rounding=ROUND_DOWN)


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    Amounts are quantized half-up to the currency's minor unit on creation.
    """
    amount: Decimal
    currency: Currency = Currency.PHP

    def __post_init__(self):
        amount = to_decimal(self.amount).quantize(self.currency.quantum, rounding=ROUND_HALF_UP)
        object.__setattr__(self, 'amount', amount)

    @classmethod
    def zero(cls, currency: Currency = Currency.PHP) -> 'Money':
        return cls(Decimal('0'), currency)

    def _check(self, other: 'Money') -> None:
        if self.currency != other.currency:
            raise ValueError(f"Currency mismatch: {self.currency.code} vs {other.currency.code}")

    def __add__(self, other: 'Money') -> 'Money':
        self._check(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check(other)
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, multiplier) -> 'Money':
        return Money(self.amount * to_decimal(multiplier), self.currency)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Money):
            return False
        return self.amount == other.amount and self.currency == other.currency

    def __hash__(self) -> int:
        return hash((self.amount, self.currency))

    def __lt__(self, other: 'Money') -> bool:
        self._check(other)
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check(other)
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check(other)
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check(other)
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        return self.amount == Decimal('0')

    def is_positive(self) -> bool:
        return self.amount > Decimal('0')

    def is_negative(self) -> bool:
        return self.amount < Decimal('0')

    def max_zero(self) -> 'Money':
        """Clamp negative amounts to zero"""
        return self if self.amount > 0 else Money.zero(self.currency)

    def to_string(self) -> str:
        """Format for display, e.g. '₱8,583.33'"""
        if self.currency.precision == 0:
            return f"{self.currency.symbol}{self.amount:,.0f}"
        return f"{self.currency.symbol}{self.amount:,.{self.currency.precision}f}"


def money_sum(values, currency: Currency = Currency.PHP) -> Money:
    """Sum Money values, returning zero for an empty iterable"""
    total = Money.zero(currency)
    for value in values:
        total = total + value
    return total
