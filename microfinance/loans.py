"""
Loan Module

Loan and term records, loan creation from a loan type, and the read path that
refreshes late penalties of unpaid terms from the current time.

Principal, total amount, rate and the penalty per day are fixed when the loan
is created. amount_paid, remaining_amount and status are only changed by the
payment ledger and the status propagator.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Dict, List, Optional, Any, Tuple
from enum import Enum
import uuid

from .currency import Money, Currency, money_sum
from .storage import StorageInterface, StorageRecord
from .audit import ActivityLog, ActivityAction
from .rates import LoanTypeManager, RateTable
from .schedule import ScheduleGenerator
from .penalties import PenaltyCalculator
from .notifications import NotificationCenter, NotificationType
from .dates import business_date, parse_date, parse_datetime
from .exceptions import AmountOutOfRange, RecordNotFound
from .logging_config import get_logger, log_action

logger = get_logger("microfinance.loans")


class LoanStatus(Enum):
    """Loan lifecycle states"""
    ACTIVE = "ACTIVE"
    OVERDUE = "OVERDUE"
    PAID = "PAID"
    DEFAULTED = "DEFAULTED"


class TermStatus(Enum):
    """Installment states; PAID is terminal"""
    PENDING = "PENDING"
    OVERDUE = "OVERDUE"
    PAID = "PAID"


@dataclass
class Loan(StorageRecord):
    """Loan with cached payment totals"""
    user_id: str
    loan_type_id: str
    principal_amount: Money
    interest_rate: Decimal       # Table percentage actually applied
    term_months: int
    total_amount: Money
    amount_paid: Money
    remaining_amount: Money
    penalty_per_day: Money
    due_date: date               # Due date of the final term
    status: LoanStatus = LoanStatus.ACTIVE
    currency: Currency = Currency.PHP
    version: int = 0

    @property
    def is_open(self) -> bool:
        return self.status in (LoanStatus.ACTIVE, LoanStatus.OVERDUE)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        data = dict(data)
        currency = Currency[data.get('currency', 'PHP')]
        data['currency'] = currency
        for money_field in ('principal_amount', 'total_amount', 'amount_paid',
                            'remaining_amount', 'penalty_per_day'):
            data[money_field] = Money(Decimal(data[money_field]), currency)
        data['interest_rate'] = Decimal(data['interest_rate'])
        data['due_date'] = parse_date(data['due_date'])
        data['status'] = LoanStatus(data['status'])
        return super().from_dict(data)


@dataclass
class Term(StorageRecord):
    """One scheduled installment of a loan"""
    loan_id: str
    term_number: int
    amount: Money
    due_date: date
    amount_paid: Money
    penalty_amount: Money
    days_late: int = 0
    status: TermStatus = TermStatus.PENDING
    paid_at: Optional[datetime] = None
    reminder_sent: bool = False
    overdue_sent: bool = False
    currency: Currency = Currency.PHP
    version: int = 0

    @property
    def is_paid(self) -> bool:
        return self.status == TermStatus.PAID

    @property
    def outstanding(self) -> Money:
        """Unpaid installment amount, excluding penalty"""
        return (self.amount - self.amount_paid).max_zero()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Term':
        data = dict(data)
        currency = Currency[data.get('currency', 'PHP')]
        data['currency'] = currency
        for money_field in ('amount', 'amount_paid', 'penalty_amount'):
            data[money_field] = Money(Decimal(data[money_field]), currency)
        data['due_date'] = parse_date(data['due_date'])
        data['paid_at'] = parse_datetime(data.get('paid_at'))
        data['status'] = TermStatus(data['status'])
        return super().from_dict(data)


class LoanManager:
    """
    Creates loans and serves loan and term reads
    """

    def __init__(
        self,
        storage: StorageInterface,
        loan_type_manager: LoanTypeManager,
        rate_table: Optional[RateTable] = None,
        schedule_generator: Optional[ScheduleGenerator] = None,
        penalty_calculator: Optional[PenaltyCalculator] = None,
        activity_log: Optional[ActivityLog] = None,
        notification_center: Optional[NotificationCenter] = None
    ):
        self.storage = storage
        self.loan_type_manager = loan_type_manager
        self.rate_table = rate_table or RateTable()
        self.schedule_generator = schedule_generator or ScheduleGenerator()
        self.penalty_calculator = penalty_calculator or PenaltyCalculator()
        self.activity_log = activity_log
        self.notification_center = notification_center

        self.loans_table = "loans"
        self.terms_table = "loan_terms"

    def create_loan(
        self,
        user_id: str,
        loan_type_id: str,
        principal: Money,
        months: int,
        created_by: Optional[str] = None,
        created_at: Optional[datetime] = None
    ) -> Tuple[Loan, List[Term]]:
        """
        Create a loan and its term schedule

        Args:
            user_id: Borrower
            loan_type_id: Loan type providing the rate table and penalty
            principal: Approved amount
            months: Chosen number of monthly installments
            created_by: Staff member creating the loan
            created_at: Creation instant; term due dates count from its business date

        Returns:
            (loan, terms)

        Raises:
            RecordNotFound: unknown loan type
            AmountOutOfRange: principal outside the loan type's limits
            InvalidTermLength: months not offered by the loan type
            InvalidScheduleParameters: schedule cannot be built
        """
        now = created_at or datetime.now(timezone.utc)
        loan_type = self.loan_type_manager.require_loan_type(loan_type_id)
        if not loan_type.is_active:
            raise ValueError(f"Loan type '{loan_type.name}' is not active")

        if principal.currency != loan_type.currency:
            raise ValueError(
                f"Principal currency {principal.currency.code} does not match "
                f"loan type currency {loan_type.currency.code}"
            )
        if principal < loan_type.min_amount or principal > loan_type.max_amount:
            raise AmountOutOfRange(
                f"Amount {principal.to_string()} is outside "
                f"{loan_type.min_amount.to_string()} - {loan_type.max_amount.to_string()}"
            )

        rate = self.rate_table.rate_for(loan_type, months)
        schedule = self.schedule_generator.generate(principal, rate, months, business_date(now))
        zero = Money.zero(principal.currency)

        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            loan_type_id=loan_type.id,
            principal_amount=principal,
            interest_rate=rate,
            term_months=months,
            total_amount=schedule.total_amount,
            amount_paid=zero,
            remaining_amount=schedule.total_amount,
            penalty_per_day=loan_type.late_payment_penalty_per_day,
            due_date=schedule.final_due_date,
            currency=principal.currency
        )
        terms = [
            Term(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                loan_id=loan.id,
                term_number=draft.term_number,
                amount=draft.amount,
                due_date=draft.due_date,
                amount_paid=zero,
                penalty_amount=zero,
                currency=principal.currency
            )
            for draft in schedule.terms
        ]

        with self.storage.atomic():
            self.save_loan(loan)
            for term in terms:
                self.save_term(term)

        if self.activity_log:
            self.activity_log.log_activity(
                action=ActivityAction.CREATE_LOAN,
                entity_type="LOAN",
                entity_id=loan.id,
                description=f"Created loan of {principal.to_string()} over {months} months",
                metadata={
                    "user_id": user_id,
                    "loan_type_id": loan_type.id,
                    "principal_amount": principal.amount,
                    "interest_rate": rate,
                    "total_amount": loan.total_amount.amount,
                    "term_months": months
                },
                user_id=created_by
            )

        if self.notification_center:
            self.notification_center.create_notification(
                user_id=user_id,
                notification_type=NotificationType.LOAN_APPROVED,
                title="Loan Approved",
                message=(f"Your loan of {principal.to_string()} has been approved. "
                         f"Total amount due: {loan.total_amount.to_string()} "
                         f"in {months} monthly payments."),
                link=f"/dashboard/loans/{loan.id}",
                entity_type="LOAN",
                entity_id=loan.id,
                now=now
            )

        log_action(logger, "info", f"Loan created: {loan.total_amount.to_string()} over {months} terms",
                   user_id=created_by, action="create_loan", resource=loan.id,
                   extra={"borrower": user_id, "rate": str(rate)})
        return loan, terms

    def save_loan(self, loan: Loan) -> None:
        """Versioned write; raises ConcurrentModification if the loan changed since it was read"""
        loan.version = self.storage.save_versioned(self.loans_table, loan.id, loan.to_dict(), loan.version)

    def save_term(self, term: Term) -> None:
        """Versioned write; raises ConcurrentModification if the term changed since it was read"""
        term.version = self.storage.save_versioned(self.terms_table, term.id, term.to_dict(), term.version)

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        data = self.storage.load(self.loans_table, loan_id)
        return Loan.from_dict(data) if data else None

    def require_loan(self, loan_id: str) -> Loan:
        loan = self.get_loan(loan_id)
        if loan is None:
            raise RecordNotFound(f"Loan {loan_id} not found")
        return loan

    def get_term(self, term_id: str) -> Optional[Term]:
        data = self.storage.load(self.terms_table, term_id)
        return Term.from_dict(data) if data else None

    def require_term(self, term_id: str) -> Term:
        term = self.get_term(term_id)
        if term is None:
            raise RecordNotFound(f"Term {term_id} not found")
        return term

    def get_terms(self, loan_id: str, as_of: Optional[datetime] = None,
                  loan: Optional[Loan] = None) -> List[Term]:
        """
        Terms of a loan ordered by term number

        With as_of, days_late and penalty_amount of unpaid terms are
        recomputed for that instant. The refreshed values are not persisted.
        """
        terms = [Term.from_dict(d) for d in self.storage.find(self.terms_table, {'loan_id': loan_id})]
        terms.sort(key=lambda t: t.term_number)

        if as_of is not None:
            loan = loan or self.require_loan(loan_id)
            for term in terms:
                term.days_late, term.penalty_amount = self.penalty_calculator.current_penalty(
                    term, loan.penalty_per_day, as_of
                )
        return terms

    def get_schedule(self, loan_id: str, as_of: Optional[datetime] = None) -> Tuple[Loan, List[Term]]:
        loan = self.require_loan(loan_id)
        as_of = as_of or datetime.now(timezone.utc)
        return loan, self.get_terms(loan_id, as_of=as_of, loan=loan)

    def get_user_loans(self, user_id: str) -> List[Loan]:
        loans = [Loan.from_dict(d) for d in self.storage.find(self.loans_table, {'user_id': user_id})]
        return sorted(loans, key=lambda l: l.created_at, reverse=True)

    def get_loans_by_status(self, *statuses: LoanStatus) -> List[Loan]:
        wanted = {s.value for s in statuses}
        loans = [Loan.from_dict(d) for d in self.storage.load_all(self.loans_table)
                 if d.get('status') in wanted]
        return sorted(loans, key=lambda l: l.created_at)

    def get_open_loans(self) -> List[Loan]:
        """Loans the reminder sweep looks at"""
        return self.get_loans_by_status(LoanStatus.ACTIVE, LoanStatus.OVERDUE)

    def list_loans(self) -> List[Loan]:
        return sorted((Loan.from_dict(d) for d in self.storage.load_all(self.loans_table)),
                      key=lambda l: l.created_at, reverse=True)

    def recompute_totals(self, loan: Loan, terms: List[Term]) -> None:
        """Refresh the cached amount_paid and remaining_amount from the terms"""
        loan.amount_paid = money_sum((t.amount_paid for t in terms), loan.currency)
        loan.remaining_amount = (loan.total_amount - loan.amount_paid).max_zero()
