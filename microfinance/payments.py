"""
Payment Ledger Module

Borrower payment submission and administrator approval or rejection.

Each payment targets exactly one term. Approval runs in two phases:
``prepare_approval`` reads and validates the payment and its term, capturing
their versions; ``commit_approval`` writes the payment, the term and the loan
inside one atomic block, and every write checks the captured version. Two
approvals racing on the same payment or the same term cannot both commit; the
loser gets ConcurrentModification and none of its writes are kept.

The borrower SMS and in-app notification sent after a commit are best effort
and never undo the approval.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Any, Tuple
from enum import Enum
import uuid

from .currency import Money, Currency, to_decimal
from .storage import StorageInterface, StorageRecord
from .audit import ActivityLog, ActivityAction
from .loans import Loan, LoanManager, LoanStatus, Term, TermStatus
from .status import StatusPropagator
from .penalties import PenaltyCalculator
from .notifications import NotificationCenter, NotificationType
from .borrowers import BorrowerDirectory
from .sms import SMSGateway, payment_approved_message, payment_rejected_message
from .dates import parse_datetime
from .exceptions import (
    InvalidPaymentAmount, OverpaymentNotAllowed, PaymentNotPending,
    RecordNotFound, TermAlreadySettled
)
from .logging_config import get_logger, log_action

logger = get_logger("microfinance.payments")


class PaymentType(Enum):
    PARTIAL = "PARTIAL"
    FULL = "FULL"


class PaymentStatus(Enum):
    """PENDING moves once to COMPLETED or FAILED"""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass
class Payment(StorageRecord):
    """A borrower payment against one term"""
    loan_id: str
    term_id: str
    user_id: str
    amount: Money
    payment_type: PaymentType
    status: PaymentStatus = PaymentStatus.PENDING
    receipt_url: Optional[str] = None  # Resolved by the upload service, opaque here
    payment_method: Optional[str] = None
    rejection_reason: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    currency: Currency = Currency.PHP
    version: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Payment':
        data = dict(data)
        currency = Currency[data.get('currency', 'PHP')]
        data['currency'] = currency
        data['amount'] = Money(Decimal(data['amount']), currency)
        data['payment_type'] = PaymentType(data['payment_type'])
        data['status'] = PaymentStatus(data['status'])
        data['approved_at'] = parse_datetime(data.get('approved_at'))
        data['rejected_at'] = parse_datetime(data.get('rejected_at'))
        return super().from_dict(data)


@dataclass
class PaymentAllocation:
    """Validated approval waiting to be committed"""
    payment: Payment
    term: Term
    loan: Loan
    amount_due: Money   # Outstanding installment plus current penalty
    days_late: int
    penalty: Money
    approved_by: Optional[str]
    now: datetime


class PaymentLedger:
    """
    Applies approved payments to terms and keeps loan totals in step
    """

    def __init__(
        self,
        storage: StorageInterface,
        loan_manager: LoanManager,
        status_propagator: Optional[StatusPropagator] = None,
        penalty_calculator: Optional[PenaltyCalculator] = None,
        activity_log: Optional[ActivityLog] = None,
        notification_center: Optional[NotificationCenter] = None,
        sms_gateway: Optional[SMSGateway] = None,
        borrower_directory: Optional[BorrowerDirectory] = None,
        overpayment_tolerance: Optional[Decimal] = None,
        company_name: Optional[str] = None
    ):
        from .config import get_config
        config = get_config()

        self.storage = storage
        self.loan_manager = loan_manager
        self.status_propagator = status_propagator or StatusPropagator(loan_manager)
        self.penalty_calculator = penalty_calculator or loan_manager.penalty_calculator
        self.activity_log = activity_log
        self.notification_center = notification_center
        self.sms_gateway = sms_gateway
        self.borrower_directory = borrower_directory
        self.overpayment_tolerance = to_decimal(
            overpayment_tolerance if overpayment_tolerance is not None else config.overpayment_tolerance
        )
        self.company_name = company_name or config.company_name

        self.payments_table = "payments"

    def amount_due(self, term: Term, loan: Loan, as_of: datetime) -> Tuple[Money, int, Money]:
        """
        Outstanding installment plus current penalty

        Returns:
            (amount_due, days_late, penalty)
        """
        days_late, penalty = self.penalty_calculator.current_penalty(term, loan.penalty_per_day, as_of)
        return term.outstanding + penalty, days_late, penalty

    def _validate_amount(self, term: Term, loan: Loan, amount: Money,
                         as_of: datetime) -> Tuple[Money, int, Money]:
        if term.is_paid:
            raise TermAlreadySettled(f"Term {term.term_number} of loan {loan.id} is already paid")
        if not amount.is_positive():
            raise InvalidPaymentAmount(f"Payment amount must be positive, got {amount.to_string()}")

        amount_due, days_late, penalty = self.amount_due(term, loan, as_of)
        if (amount - amount_due).amount >= self.overpayment_tolerance:
            raise OverpaymentNotAllowed(
                f"Payment of {amount.to_string()} exceeds amount due {amount_due.to_string()} "
                f"for term {term.term_number}"
            )
        return amount_due, days_late, penalty

    def submit_payment(
        self,
        loan_id: str,
        term_id: str,
        user_id: str,
        amount: Money,
        payment_type: Optional[PaymentType] = None,
        receipt_url: Optional[str] = None,
        payment_method: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Payment:
        """
        Record a borrower payment for review. Terms and loan are not touched.

        payment_type defaults to FULL when the amount covers everything due
        on the term, PARTIAL otherwise.

        Raises:
            RecordNotFound: loan not owned by user, or term not part of loan
            TermAlreadySettled, InvalidPaymentAmount, OverpaymentNotAllowed
        """
        now = now or datetime.now(timezone.utc)
        loan = self.loan_manager.get_loan(loan_id)
        if loan is None or loan.user_id != user_id:
            raise RecordNotFound(f"Loan {loan_id} not found")
        term = self.loan_manager.get_term(term_id)
        if term is None or term.loan_id != loan.id:
            raise RecordNotFound(f"Term {term_id} not found on loan {loan_id}")
        if amount.currency != loan.currency:
            raise ValueError(f"Payment currency {amount.currency.code} does not match loan currency")

        amount_due, _, _ = self._validate_amount(term, loan, amount, now)
        if payment_type is None:
            payment_type = PaymentType.FULL if amount >= amount_due else PaymentType.PARTIAL

        payment = Payment(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            loan_id=loan.id,
            term_id=term.id,
            user_id=user_id,
            amount=amount,
            payment_type=payment_type,
            receipt_url=receipt_url,
            payment_method=payment_method,
            currency=loan.currency
        )
        self._save_payment(payment)

        if self.activity_log:
            self.activity_log.log_activity(
                action=ActivityAction.SUBMIT_PAYMENT,
                entity_type="PAYMENT",
                entity_id=payment.id,
                description=f"Submitted {payment_type.value.lower()} payment of {amount.to_string()} "
                            f"for term {term.term_number}",
                metadata={"loan_id": loan.id, "term_id": term.id, "amount": amount.amount},
                user_id=user_id
            )
        log_action(logger, "info", f"Payment submitted: {amount.to_string()}",
                   user_id=user_id, action="submit_payment", resource=payment.id,
                   extra={"loan_id": loan.id, "term_number": term.term_number})
        return payment

    def prepare_approval(self, payment_id: str, approved_by: Optional[str] = None,
                         now: Optional[datetime] = None) -> PaymentAllocation:
        """
        Read and validate an approval without writing anything

        Raises:
            RecordNotFound, PaymentNotPending, TermAlreadySettled,
            InvalidPaymentAmount, OverpaymentNotAllowed
        """
        now = now or datetime.now(timezone.utc)
        payment = self.require_payment(payment_id)
        if payment.status != PaymentStatus.PENDING:
            raise PaymentNotPending(f"Payment {payment_id} is already {payment.status.value}")

        term = self.loan_manager.require_term(payment.term_id)
        loan = self.loan_manager.require_loan(payment.loan_id)
        amount_due, days_late, penalty = self._validate_amount(term, loan, payment.amount, now)

        return PaymentAllocation(
            payment=payment,
            term=term,
            loan=loan,
            amount_due=amount_due,
            days_late=days_late,
            penalty=penalty,
            approved_by=approved_by,
            now=now
        )

    def commit_approval(self, allocation: PaymentAllocation) -> PaymentAllocation:
        """
        Write a prepared approval

        Returns:
            A new allocation holding the committed payment, term and loan

        Raises:
            ConcurrentModification: payment or term changed since prepare_approval
        """
        now = allocation.now
        payment = replace(allocation.payment)
        term = replace(allocation.term)

        payment.status = PaymentStatus.COMPLETED
        payment.approved_at = now
        payment.approved_by = allocation.approved_by
        payment.updated_at = now

        term.amount_paid = term.amount_paid + payment.amount
        term.days_late = allocation.days_late
        term.penalty_amount = allocation.penalty
        term.updated_at = now
        if term.amount_paid >= term.amount:
            term.status = TermStatus.PAID
            term.paid_at = now

        with self.storage.atomic():
            self._save_payment(payment)
            self.loan_manager.save_term(term)

            loan = self.loan_manager.require_loan(term.loan_id)
            terms = self.loan_manager.get_terms(loan.id)
            self.loan_manager.recompute_totals(loan, terms)
            self.status_propagator.apply(loan, terms, now)
            loan.updated_at = now
            self.loan_manager.save_loan(loan)

        log_action(logger, "info", f"Payment approved: {payment.amount.to_string()} applied to term {term.term_number}",
                   user_id=allocation.approved_by, action="approve_payment", resource=payment.id,
                   extra={"loan_id": loan.id, "term_status": term.status.value,
                          "loan_status": loan.status.value,
                          "remaining_amount": str(loan.remaining_amount.amount)})

        return replace(allocation, payment=payment, term=term, loan=loan)

    def apply_approved_payment(self, payment_id: str, approved_by: Optional[str] = None,
                               now: Optional[datetime] = None) -> PaymentAllocation:
        """
        Approve a pending payment and apply it to its term

        Returns:
            The committed allocation (payment, term, loan)
        """
        allocation = self.commit_approval(self.prepare_approval(payment_id, approved_by, now))
        previously_paid = allocation.term.amount_paid - allocation.payment.amount

        if self.activity_log:
            self.activity_log.log_activity(
                action=ActivityAction.APPROVE_PAYMENT,
                entity_type="PAYMENT",
                entity_id=payment_id,
                description=f"Approved payment of {allocation.payment.amount.to_string()} "
                            f"for term {allocation.term.term_number}",
                metadata={
                    "loan_id": allocation.loan.id,
                    "term_id": allocation.term.id,
                    "amount": allocation.payment.amount.amount,
                    "term_amount_paid_before": previously_paid.amount,
                    "remaining_amount": allocation.loan.remaining_amount.amount
                },
                user_id=approved_by
            )
        self._after_approval(allocation)
        return allocation

    def _after_approval(self, allocation: PaymentAllocation) -> None:
        payment, term, loan = allocation.payment, allocation.term, allocation.loan

        if self.notification_center:
            self.notification_center.create_notification(
                user_id=payment.user_id,
                notification_type=NotificationType.PAYMENT_APPROVED,
                title="Payment Approved",
                message=(f"Your payment of {payment.amount.to_string()} for term {term.term_number} "
                         f"has been approved. Remaining balance: {loan.remaining_amount.to_string()}"),
                link=f"/dashboard/loans/{loan.id}",
                entity_type="PAYMENT",
                entity_id=payment.id,
                now=allocation.now
            )
            if loan.status == LoanStatus.PAID:
                self.notification_center.create_notification(
                    user_id=payment.user_id,
                    notification_type=NotificationType.LOAN_COMPLETED,
                    title="Loan Completed",
                    message=f"Congratulations! Your loan of {loan.total_amount.to_string()} is fully paid.",
                    link=f"/dashboard/loans/{loan.id}",
                    entity_type="LOAN",
                    entity_id=loan.id,
                    now=allocation.now
                )

        self._send_borrower_sms(payment.user_id, lambda name: payment_approved_message(
            name, payment.payment_type.value, payment.amount, term.due_date,
            loan.remaining_amount, self.company_name
        ))

    def reject_payment(self, payment_id: str, reason: str, rejected_by: Optional[str] = None,
                       now: Optional[datetime] = None) -> Payment:
        """
        Reject a pending payment. Terms and loan are not touched.

        Raises:
            ValueError: empty reason
            RecordNotFound, PaymentNotPending
            ConcurrentModification: payment changed while rejecting
        """
        if not reason or not reason.strip():
            raise ValueError("Rejection reason is required")
        now = now or datetime.now(timezone.utc)

        payment = self.require_payment(payment_id)
        if payment.status != PaymentStatus.PENDING:
            raise PaymentNotPending(f"Payment {payment_id} is already {payment.status.value}")

        payment.status = PaymentStatus.FAILED
        payment.rejection_reason = reason.strip()
        payment.rejected_by = rejected_by
        payment.rejected_at = now
        payment.updated_at = now
        self._save_payment(payment)

        if self.activity_log:
            self.activity_log.log_activity(
                action=ActivityAction.REJECT_PAYMENT,
                entity_type="PAYMENT",
                entity_id=payment.id,
                description=f"Rejected payment of {payment.amount.to_string()}",
                metadata={"loan_id": payment.loan_id, "term_id": payment.term_id,
                          "reason": payment.rejection_reason},
                user_id=rejected_by
            )
        log_action(logger, "info", f"Payment rejected: {payment.rejection_reason}",
                   user_id=rejected_by, action="reject_payment", resource=payment.id)

        if self.notification_center:
            self.notification_center.create_notification(
                user_id=payment.user_id,
                notification_type=NotificationType.PAYMENT_REJECTED,
                title="Payment Rejected",
                message=f"Your payment of {payment.amount.to_string()} was rejected: {payment.rejection_reason}",
                link=f"/dashboard/loans/{payment.loan_id}",
                entity_type="PAYMENT",
                entity_id=payment.id,
                now=now
            )

        term = self.loan_manager.get_term(payment.term_id)
        if term is not None:
            self._send_borrower_sms(payment.user_id, lambda name: payment_rejected_message(
                name, payment.payment_type.value, payment.amount, term.due_date,
                payment.rejection_reason, self.company_name
            ))
        return payment

    def _send_borrower_sms(self, user_id: str, build_message) -> bool:
        if self.sms_gateway is None or self.borrower_directory is None:
            return False
        contact = self.borrower_directory.get_contact(user_id)
        if contact is None or not contact.phone:
            logger.info(f"No phone number on file for user {user_id}, SMS not sent")
            return False
        try:
            return self.sms_gateway.send_sms(contact.phone, build_message(contact.name), user_id)
        except Exception:
            logger.exception(f"Borrower SMS failed for user {user_id}")
            return False

    def _save_payment(self, payment: Payment) -> None:
        payment.version = self.storage.save_versioned(
            self.payments_table, payment.id, payment.to_dict(), payment.version
        )

    def get_payment(self, payment_id: str) -> Optional[Payment]:
        data = self.storage.load(self.payments_table, payment_id)
        return Payment.from_dict(data) if data else None

    def require_payment(self, payment_id: str) -> Payment:
        payment = self.get_payment(payment_id)
        if payment is None:
            raise RecordNotFound(f"Payment {payment_id} not found")
        return payment

    def _find(self, filters: Dict[str, Any]) -> List[Payment]:
        payments = [Payment.from_dict(d) for d in self.storage.find(self.payments_table, filters)]
        return sorted(payments, key=lambda p: p.created_at)

    def get_loan_payments(self, loan_id: str) -> List[Payment]:
        return self._find({'loan_id': loan_id})

    def get_term_payments(self, term_id: str) -> List[Payment]:
        return self._find({'term_id': term_id})

    def get_user_payments(self, user_id: str) -> List[Payment]:
        return self._find({'user_id': user_id})

    def get_pending_payments(self) -> List[Payment]:
        return self._find({'status': PaymentStatus.PENDING.value})
