"""
Loan Status Module

Derives the loan status from its terms and persists it.
"""

from datetime import date, datetime, timezone
from typing import List, Optional, Union

from .loans import Loan, LoanManager, LoanStatus, Term
from .dates import business_date
from .exceptions import ConcurrentModification
from .logging_config import get_logger

logger = get_logger("microfinance.status")

MAX_RETRIES = 3


def derive_loan_status(loan: Loan, terms: List[Term], as_of: Union[datetime, date]) -> LoanStatus:
    """
    Status implied by the terms at as_of

    PAID when every term is paid and nothing remains. Otherwise DEFAULTED stays
    DEFAULTED, any unpaid term due before today makes the loan OVERDUE, and
    everything else is ACTIVE.
    """
    if terms and all(t.is_paid for t in terms) and loan.remaining_amount.is_zero():
        return LoanStatus.PAID
    if loan.status == LoanStatus.DEFAULTED:
        return LoanStatus.DEFAULTED

    today = business_date(as_of)
    if any(not t.is_paid and t.due_date < today for t in terms):
        return LoanStatus.OVERDUE
    return LoanStatus.ACTIVE


class StatusPropagator:
    """
    Writes derived loan status back to storage
    """

    def __init__(self, loan_manager: LoanManager):
        self.loan_manager = loan_manager

    def apply(self, loan: Loan, terms: List[Term], as_of: Union[datetime, date]) -> bool:
        """Set loan.status in memory; returns whether it changed"""
        status = derive_loan_status(loan, terms, as_of)
        if status == loan.status:
            return False
        loan.status = status
        return True

    def propagate(self, loan_id: str, as_of: Optional[datetime] = None) -> bool:
        """
        Recompute and persist a loan's status

        Retries on concurrent modification by re-reading the loan.

        Returns:
            True if the stored status changed
        """
        as_of = as_of or datetime.now(timezone.utc)
        for attempt in range(1, MAX_RETRIES + 1):
            loan = self.loan_manager.require_loan(loan_id)
            terms = self.loan_manager.get_terms(loan_id)
            previous = loan.status
            if not self.apply(loan, terms, as_of):
                return False
            loan.updated_at = datetime.now(timezone.utc)
            try:
                self.loan_manager.save_loan(loan)
            except ConcurrentModification:
                logger.info(f"Loan {loan_id} changed during status update, retry {attempt}/{MAX_RETRIES}")
                continue
            logger.info(f"Loan {loan_id} status {previous.value} -> {loan.status.value}")
            return True
        raise ConcurrentModification(self.loan_manager.loans_table, loan_id, loan.version)
