"""
Amortization Schedule Module

Turns a principal, a table rate and an installment count into dated term
drafts. The first N-1 installments are the total divided evenly and truncated
to the currency's minor unit; the final installment absorbs the remainder, so
the drafts always sum exactly to the total amount.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass
from enum import Enum
from typing import List, Union

from .currency import Money, floor_minor, round_minor, to_decimal
from .dates import add_months
from .exceptions import InvalidScheduleParameters


class InterestBasis(Enum):
    """How the table rate maps to the interest charged over the loan"""
    ANNUAL = "annual"  # Table rate is per year, pro-rated by months / 12
    FLAT = "flat"      # Table rate applies once to the whole loan


@dataclass(frozen=True)
class TermDraft:
    """One installment before it is persisted"""
    term_number: int
    amount: Money
    due_date: date


@dataclass(frozen=True)
class Schedule:
    """Generated schedule with its totals"""
    principal: Money
    rate: Decimal
    period_rate: Decimal
    total_amount: Money
    terms: List[TermDraft]

    @property
    def final_due_date(self) -> date:
        return self.terms[-1].due_date


class ScheduleGenerator:
    """
    Generates equal-split installment schedules
    """

    def __init__(self, basis: Union[InterestBasis, str, None] = None):
        if basis is None:
            from .config import get_config
            basis = get_config().interest_basis
        self.basis = InterestBasis(basis) if isinstance(basis, str) else basis

    def period_rate(self, rate: Decimal, months: int) -> Decimal:
        """Percentage applied to the principal over the whole loan"""
        if self.basis == InterestBasis.ANNUAL:
            return rate * Decimal(months) / Decimal(12)
        return rate

    def total_amount(self, principal: Money, rate: Decimal, months: int) -> Money:
        rate = to_decimal(rate)
        total = round_minor(principal.amount * (Decimal('1') + self.period_rate(rate, months) / Decimal('100')),
                            principal.currency)
        return Money(total, principal.currency)

    def generate(self, principal: Money, rate: Union[Decimal, str, int], months: int,
                 start_date: date) -> Schedule:
        """
        Build the schedule

        Args:
            principal: Approved loan amount
            rate: Table percentage rate for this installment count
            months: Number of monthly installments
            start_date: Loan creation date; term i is due i calendar months later

        Returns:
            Schedule whose term amounts sum exactly to its total_amount

        Raises:
            InvalidScheduleParameters: non-positive months or principal, or negative rate
        """
        rate = to_decimal(rate)
        if months is None or months <= 0:
            raise InvalidScheduleParameters(f"Number of installments must be positive, got {months}")
        if not principal.is_positive():
            raise InvalidScheduleParameters(f"Principal must be positive, got {principal.to_string()}")
        if rate < 0:
            raise InvalidScheduleParameters(f"Interest rate cannot be negative, got {rate}")

        total = self.total_amount(principal, rate, months)
        installment = floor_minor(total.amount / Decimal(months), principal.currency)

        terms: List[TermDraft] = []
        allocated = Decimal('0')
        for term_number in range(1, months + 1):
            if term_number < months:
                amount = installment
            else:
                amount = total.amount - allocated
            allocated += amount
            terms.append(TermDraft(
                term_number=term_number,
                amount=Money(amount, principal.currency),
                due_date=add_months(start_date, term_number)
            ))

        return Schedule(
            principal=principal,
            rate=rate,
            period_rate=self.period_rate(rate, months),
            total_amount=total,
            terms=terms
        )
