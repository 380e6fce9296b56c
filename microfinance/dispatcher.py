"""
Payment Reminder Dispatch Module

Periodic sweep over open loans that sends "due soon" and "overdue" reminders.

For each unpaid term and each rule the sweep first creates the day's in-app
notification. That record is the fence: it is created with a deterministic id
and create-if-absent semantics, so a second sweep on the same calendar day
finds it and does nothing. Only a newly created fence leads to an SMS attempt,
and only a successful SMS sets the term's reminder_sent / overdue_sent flag.
A skipped or failed SMS leaves the flag unset and the next day's sweep tries
again.
"""

from datetime import datetime, timezone
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from .loans import Loan, LoanManager, Term, TermStatus
from .status import StatusPropagator
from .penalties import PenaltyCalculator
from .notifications import NotificationCenter, NotificationType
from .borrowers import BorrowerContact, BorrowerDirectory
from .sms import SMSGateway, due_soon_message, overdue_message
from .audit import ActivityLog, ActivityAction
from .exceptions import ConcurrentModification
from .logging_config import get_logger, log_action

logger = get_logger("microfinance.dispatcher")

MAX_FLAG_RETRIES = 3


@dataclass
class SweepResult:
    """Counters and errors of one sweep"""
    started_at: datetime
    loans_checked: int = 0
    terms_checked: int = 0
    due_soon_notifications: int = 0
    due_soon_sms_sent: int = 0
    overdue_notifications: int = 0
    overdue_sms_sent: int = 0
    already_notified: int = 0
    sms_not_sent: int = 0
    status_changes: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result['started_at'] = self.started_at.isoformat()
        return result


class NotificationDispatcher:
    """
    Sends due-soon and overdue reminders at most once per term, rule and day
    """

    def __init__(
        self,
        loan_manager: LoanManager,
        notification_center: NotificationCenter,
        sms_gateway: SMSGateway,
        borrower_directory: BorrowerDirectory,
        status_propagator: Optional[StatusPropagator] = None,
        penalty_calculator: Optional[PenaltyCalculator] = None,
        activity_log: Optional[ActivityLog] = None,
        due_soon_days: Optional[int] = None,
        company_name: Optional[str] = None
    ):
        from .config import get_config
        config = get_config()

        self.loan_manager = loan_manager
        self.notification_center = notification_center
        self.sms_gateway = sms_gateway
        self.borrower_directory = borrower_directory
        self.status_propagator = status_propagator or StatusPropagator(loan_manager)
        self.penalty_calculator = penalty_calculator or loan_manager.penalty_calculator
        self.activity_log = activity_log
        self.due_soon_days = due_soon_days if due_soon_days is not None else config.due_soon_days
        self.company_name = company_name or config.company_name

    def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """
        Run one pass over all ACTIVE and OVERDUE loans

        Errors for a single term or loan are logged and collected in the
        result; they never stop the sweep.
        """
        now = now or datetime.now(timezone.utc)
        result = SweepResult(started_at=now)

        for loan in self.loan_manager.get_open_loans():
            result.loans_checked += 1
            try:
                self._sweep_loan(loan, now, result)
            except Exception as e:
                logger.exception(f"Reminder sweep failed for loan {loan.id}")
                result.errors.append(f"Loan {loan.id}: {e}")

            try:
                if self.status_propagator.propagate(loan.id, now):
                    result.status_changes += 1
            except Exception as e:
                logger.exception(f"Status update failed for loan {loan.id}")
                result.errors.append(f"Loan {loan.id} status: {e}")

        log_action(logger, "info", "Reminder sweep finished", action="sweep",
                   extra={k: v for k, v in result.to_dict().items() if k != 'errors'})
        return result

    def _sweep_loan(self, loan: Loan, now: datetime, result: SweepResult) -> None:
        contact = self.borrower_directory.get_contact(loan.user_id)
        for term in self.loan_manager.get_terms(loan.id):
            if term.is_paid:
                continue
            result.terms_checked += 1
            try:
                self._sweep_term(loan, term, contact, now, result)
            except Exception as e:
                logger.exception(f"Reminder failed for term {term.id}")
                result.errors.append(f"Term {term.id}: {e}")

    def _sweep_term(self, loan: Loan, term: Term, contact: Optional[BorrowerContact],
                    now: datetime, result: SweepResult) -> None:
        name = contact.name if contact else "Borrower"
        amount_due = term.outstanding

        days_until_due = self.penalty_calculator.days_until_due(term, now)
        if 0 <= days_until_due <= self.due_soon_days and not term.reminder_sent:
            created, sent = self._dispatch(
                loan, term, contact, now, result,
                notification_type=NotificationType.PAYMENT_DUE_SOON,
                title="Payment Due Soon",
                message=(f"Your payment of {amount_due.to_string()} for Term {term.term_number} "
                         f"is due on {term.due_date.isoformat()}."),
                sms_text=due_soon_message(name, term.term_number, loan.id, term.due_date,
                                          days_until_due, amount_due, self.company_name)
            )
            result.due_soon_notifications += created
            result.due_soon_sms_sent += sent

        days_late, penalty = self.penalty_calculator.calculate(term, loan.penalty_per_day, now)
        if days_late > 0:
            total_due = amount_due + penalty
            created, sent = self._dispatch(
                loan, term, contact, now, result,
                notification_type=NotificationType.PAYMENT_OVERDUE,
                title="Payment Overdue",
                message=(f"Your payment for Term {term.term_number} is {days_late} day(s) overdue. "
                         f"Total amount due including late fees: {total_due.to_string()}."),
                sms_text=overdue_message(name, term.term_number, loan.id, term.due_date,
                                         days_late, amount_due, penalty, self.company_name)
            )
            result.overdue_notifications += created
            result.overdue_sms_sent += sent

    def _dispatch(self, loan: Loan, term: Term, contact: Optional[BorrowerContact],
                  now: datetime, result: SweepResult, notification_type: NotificationType,
                  title: str, message: str, sms_text: str) -> tuple:
        """
        Fence, send, flag

        Returns:
            (notifications created, SMS sent) as 0/1 counts
        """
        notification = self.notification_center.create_once(
            user_id=loan.user_id,
            notification_type=notification_type,
            title=title,
            message=message,
            entity_type="TERM",
            entity_id=term.id,
            link=f"/dashboard/loans/{loan.id}",
            now=now
        )
        if notification is None:
            result.already_notified += 1
            return 0, 0

        if contact is None or not contact.phone:
            logger.info(f"No phone number for user {loan.user_id}, {notification_type.value} SMS skipped")
            result.sms_not_sent += 1
            return 1, 0

        if not self.sms_gateway.send_sms(contact.phone, sms_text, loan.user_id):
            logger.warning(f"{notification_type.value} SMS not sent for term {term.id}, retrying next day")
            result.sms_not_sent += 1
            return 1, 0

        self._mark_sent(term.id, overdue=notification_type == NotificationType.PAYMENT_OVERDUE, now=now)
        return 1, 1

    def _mark_sent(self, term_id: str, overdue: bool, now: datetime) -> None:
        """Flip the sent flag on the current version of the term"""
        for attempt in range(1, MAX_FLAG_RETRIES + 1):
            term = self.loan_manager.require_term(term_id)
            if overdue:
                term.overdue_sent = True
                if not term.is_paid:
                    term.status = TermStatus.OVERDUE
            else:
                term.reminder_sent = True
            term.updated_at = now
            try:
                self.loan_manager.save_term(term)
                return
            except ConcurrentModification:
                logger.info(f"Term {term_id} changed while flagging, retry {attempt}/{MAX_FLAG_RETRIES}")
        raise ConcurrentModification(self.loan_manager.terms_table, term_id, term.version)

    def reset_dispatch_flags(self, reminders: bool = True, overdue: bool = True,
                             loan_id: Optional[str] = None,
                             performed_by: Optional[str] = None) -> int:
        """
        Clear reminder_sent / overdue_sent so reminders go out again

        Administrative tool. Returns the number of terms changed.
        """
        if loan_id:
            terms = self.loan_manager.get_terms(loan_id)
        else:
            terms = [Term.from_dict(d) for d in
                     self.loan_manager.storage.load_all(self.loan_manager.terms_table)]

        changed = 0
        now = datetime.now(timezone.utc)
        for term in terms:
            if not ((reminders and term.reminder_sent) or (overdue and term.overdue_sent)):
                continue
            if reminders:
                term.reminder_sent = False
            if overdue:
                term.overdue_sent = False
            term.updated_at = now
            try:
                self.loan_manager.save_term(term)
                changed += 1
            except ConcurrentModification:
                logger.warning(f"Term {term.id} changed during flag reset, left as is")

        if self.activity_log:
            self.activity_log.log_activity(
                action=ActivityAction.RESET_SMS_FLAGS,
                entity_type="LOAN" if loan_id else "TERM",
                entity_id=loan_id or "*",
                description=f"Reset SMS flags on {changed} term(s)",
                metadata={"reminders": reminders, "overdue": overdue},
                user_id=performed_by
            )
        log_action(logger, "info", f"Reset SMS flags on {changed} term(s)",
                   user_id=performed_by, action="reset_sms_flags", resource=loan_id)
        return changed
