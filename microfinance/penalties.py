"""
Late Penalty Module

Days late and accrued penalty for a term. Day counts use calendar dates in the
business timezone, so a payment any time on the due date is never late.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Tuple, Union

from .currency import Money
from .dates import business_date, days_between


class PenaltyCalculator:
    """
    Computes late penalties for installment terms

    Works on any term object exposing ``due_date``, ``is_paid``, ``days_late``
    and ``penalty_amount``.
    """

    def __init__(self, tz_name: Optional[str] = None):
        self.tz_name = tz_name

    def _as_of_date(self, as_of: Union[datetime, date]) -> date:
        return business_date(as_of, self.tz_name)

    def days_late(self, due_date: date, as_of: Union[datetime, date]) -> int:
        return max(0, days_between(due_date, self._as_of_date(as_of)))

    def days_until_due(self, term, as_of: Union[datetime, date]) -> int:
        """Calendar days until the due date; negative once past due"""
        return days_between(self._as_of_date(as_of), term.due_date)

    def calculate(self, term, penalty_per_day: Money,
                  as_of: Union[datetime, date]) -> Tuple[int, Money]:
        """
        Live days late and penalty

        Returns:
            (days_late, penalty_amount) with penalty = days_late * penalty_per_day
        """
        days = self.days_late(term.due_date, as_of)
        return days, penalty_per_day * Decimal(days)

    def current_penalty(self, term, penalty_per_day: Money,
                        as_of: Union[datetime, date]) -> Tuple[int, Money]:
        """Frozen values for PAID terms, live values otherwise"""
        if term.is_paid:
            return term.days_late, term.penalty_amount
        return self.calculate(term, penalty_per_day, as_of)
