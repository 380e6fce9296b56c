"""
Test suite for the payment reminder sweep and the worker loop
"""

import pytest
import threading
from decimal import Decimal
from datetime import datetime, timezone
from unittest.mock import Mock

from microfinance.currency import Money
from microfinance.storage import InMemoryStorage
from microfinance.audit import ActivityLog, ActivityAction
from microfinance.notifications import NotificationCenter, NotificationType
from microfinance.borrowers import InMemoryBorrowerDirectory
from microfinance.sms import LogSMSGateway
from microfinance.rates import LoanTypeManager
from microfinance.schedule import ScheduleGenerator, InterestBasis
from microfinance.penalties import PenaltyCalculator
from microfinance.loans import LoanManager, LoanStatus, TermStatus
from microfinance.dispatcher import NotificationDispatcher, SweepResult
from microfinance.worker import run_worker
from microfinance.exceptions import ConcurrentModification


CREATED_AT = datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)


def at(month, day, hour=8):
    return datetime(2024, month, day, hour, 0, tzinfo=timezone.utc)


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def activity_log(storage):
    return ActivityLog(storage)


@pytest.fixture
def center(storage):
    return NotificationCenter(storage)


@pytest.fixture
def gateway(storage):
    return LogSMSGateway(storage)


@pytest.fixture
def directory():
    directory = InMemoryBorrowerDirectory()
    directory.add("USER001", "Juan Dela Cruz", "+639171234567")
    directory.add("USER002", "Maria Santos")
    return directory


@pytest.fixture
def loan_manager(storage):
    return LoanManager(
        storage,
        LoanTypeManager(storage),
        schedule_generator=ScheduleGenerator(InterestBasis.ANNUAL),
        penalty_calculator=PenaltyCalculator("UTC")
    )


@pytest.fixture
def dispatcher(loan_manager, center, gateway, directory, activity_log):
    return NotificationDispatcher(
        loan_manager,
        center,
        gateway,
        directory,
        activity_log=activity_log,
        due_soon_days=7,
        company_name="Test Lending"
    )


@pytest.fixture
def loan_type(loan_manager):
    return loan_manager.loan_type_manager.create_loan_type(
        name="Zero Interest",
        min_amount=Money(Decimal("1000")),
        max_amount=Money(Decimal("50000")),
        allowed_months_to_pay=[3],
        interest_rates_by_month={3: Decimal("0")},
        late_payment_penalty_per_day=Money(Decimal("50"))
    )


@pytest.fixture
def loan(loan_manager, loan_type):
    """Terms of 1000.00 due 2024-02-15, 2024-03-15 and 2024-04-15"""
    loan, _ = loan_manager.create_loan("USER001", loan_type.id, Money(Decimal("3000")), 3,
                                       created_at=CREATED_AT)
    return loan


def notifications_of(center, user_id, notification_type):
    return [n for n in center.get_notifications(user_id, limit=1000) if n.type == notification_type]


class TestDueSoonReminders:
    """Test the due-soon rule"""

    def test_reminder_sent_once(self, dispatcher, loan_manager, center, gateway, loan):
        result = dispatcher.sweep(at(2, 10))

        assert result.loans_checked == 1
        assert result.terms_checked == 3
        assert result.due_soon_notifications == 1
        assert result.due_soon_sms_sent == 1
        assert result.errors == []

        term = loan_manager.get_terms(loan.id)[0]
        assert term.reminder_sent
        assert "REMINDER:" in gateway.outbox[0]["message"]
        assert "due in 5 days" in gateway.outbox[0]["message"]

    def test_second_sweep_same_day_sends_nothing(self, dispatcher, center, gateway, loan):
        dispatcher.sweep(at(2, 10))
        result = dispatcher.sweep(at(2, 10, 20))

        assert result.due_soon_notifications == 0
        assert len(notifications_of(center, "USER001", NotificationType.PAYMENT_DUE_SOON)) == 1
        assert len(gateway.outbox) == 1

    def test_outside_window_is_quiet(self, dispatcher, center, loan):
        result = dispatcher.sweep(at(2, 7))

        assert result.due_soon_notifications == 0
        assert notifications_of(center, "USER001", NotificationType.PAYMENT_DUE_SOON) == []

    def test_due_today_still_reminds(self, dispatcher, loan):
        result = dispatcher.sweep(at(2, 15))
        assert result.due_soon_notifications == 1
        assert result.overdue_notifications == 0

    def test_failed_sms_retried_next_day(self, dispatcher, loan_manager, center, gateway, loan):
        gateway.succeed = False
        first = dispatcher.sweep(at(2, 10))

        assert first.due_soon_notifications == 1
        assert first.sms_not_sent == 1
        assert not loan_manager.get_terms(loan.id)[0].reminder_sent

        same_day = dispatcher.sweep(at(2, 10, 18))
        assert same_day.already_notified == 1
        assert len(gateway.get_logs()) == 1

        gateway.succeed = True
        next_day = dispatcher.sweep(at(2, 11))
        assert next_day.due_soon_sms_sent == 1
        assert loan_manager.get_terms(loan.id)[0].reminder_sent
        assert len(notifications_of(center, "USER001", NotificationType.PAYMENT_DUE_SOON)) == 2

    def test_missing_phone(self, dispatcher, loan_manager, loan_type, center, gateway):
        loan, _ = loan_manager.create_loan("USER002", loan_type.id, Money(Decimal("3000")), 3,
                                           created_at=CREATED_AT)
        result = dispatcher.sweep(at(2, 10))

        assert result.due_soon_notifications == 1
        assert result.sms_not_sent == 1
        assert gateway.outbox == []
        assert len(notifications_of(center, "USER002", NotificationType.PAYMENT_DUE_SOON)) == 1
        assert not loan_manager.get_terms(loan.id)[0].reminder_sent


class TestOverdueReminders:
    """Test the overdue rule"""

    def test_overdue_marks_term_and_loan(self, dispatcher, loan_manager, gateway, loan):
        result = dispatcher.sweep(at(2, 17))

        assert result.overdue_notifications == 1
        assert result.overdue_sms_sent == 1
        assert result.status_changes == 1

        term = loan_manager.get_terms(loan.id)[0]
        assert term.overdue_sent
        assert term.status == TermStatus.OVERDUE
        assert loan_manager.require_loan(loan.id).status == LoanStatus.OVERDUE

        message = gateway.outbox[0]["message"]
        assert "is OVERDUE!" in message
        assert "Days Overdue: 2" in message
        assert "Late Fee: ₱100.00" in message

    def test_overdue_repeats_daily(self, dispatcher, center, gateway, loan):
        dispatcher.sweep(at(2, 17))
        dispatcher.sweep(at(2, 17, 22))
        dispatcher.sweep(at(2, 18))

        assert len(notifications_of(center, "USER001", NotificationType.PAYMENT_OVERDUE)) == 2
        assert len(gateway.outbox) == 2

    def test_paid_terms_and_closed_loans_skipped(self, dispatcher, loan_manager, loan):
        terms = loan_manager.get_terms(loan.id)
        terms[0].amount_paid = terms[0].amount
        terms[0].status = TermStatus.PAID
        loan_manager.save_term(terms[0])

        result = dispatcher.sweep(at(2, 17))
        assert result.terms_checked == 2
        assert result.overdue_notifications == 0

        stored = loan_manager.require_loan(loan.id)
        stored.status = LoanStatus.DEFAULTED
        loan_manager.save_loan(stored)
        assert dispatcher.sweep(at(4, 20)).loans_checked == 0

    def test_errors_are_isolated_per_term(self, dispatcher, center, loan, monkeypatch):
        terms = dispatcher.loan_manager.get_terms(loan.id)
        original = center.create_once

        def flaky_create_once(**kwargs):
            if kwargs["entity_id"] == terms[0].id:
                raise RuntimeError("storage hiccup")
            return original(**kwargs)

        monkeypatch.setattr(center, "create_once", flaky_create_once)

        result = dispatcher.sweep(at(4, 20))

        assert result.overdue_notifications == 2
        assert len(result.errors) == 1
        assert "storage hiccup" in result.errors[0]

    def test_flag_write_retries_on_conflict(self, dispatcher, loan_manager, loan, monkeypatch):
        original_save = loan_manager.save_term
        calls = []

        def flaky_save(term):
            calls.append(term.id)
            if len(calls) == 1:
                raise ConcurrentModification("loan_terms", term.id, term.version, term.version + 1)
            original_save(term)

        monkeypatch.setattr(loan_manager, "save_term", flaky_save)

        dispatcher.sweep(at(2, 10))
        assert len(calls) == 2
        assert loan_manager.get_terms(loan.id)[0].reminder_sent

    def test_result_serializes(self, dispatcher, loan):
        data = dispatcher.sweep(at(2, 17)).to_dict()
        assert data["started_at"] == "2024-02-17T08:00:00+00:00"
        assert data["overdue_notifications"] == 1


class TestResetDispatchFlags:
    """Test the administrative flag reset"""

    def test_reset_all(self, dispatcher, loan_manager, activity_log, loan):
        dispatcher.sweep(at(2, 10))
        assert loan_manager.get_terms(loan.id)[0].reminder_sent

        changed = dispatcher.reset_dispatch_flags(performed_by="ADMIN001")

        assert changed == 1
        assert not loan_manager.get_terms(loan.id)[0].reminder_sent
        events = activity_log.get_all_events(action=ActivityAction.RESET_SMS_FLAGS)
        assert events[0].user_id == "ADMIN001"

    def test_reset_only_overdue(self, dispatcher, loan_manager, loan):
        dispatcher.sweep(at(2, 10))
        dispatcher.sweep(at(2, 17))

        assert dispatcher.reset_dispatch_flags(reminders=False, overdue=True, loan_id=loan.id) == 1
        term = loan_manager.get_terms(loan.id)[0]
        assert term.reminder_sent
        assert not term.overdue_sent

    def test_reset_lets_reminder_go_out_again(self, dispatcher, gateway, loan):
        dispatcher.sweep(at(2, 10))
        dispatcher.reset_dispatch_flags()
        dispatcher.sweep(at(2, 11))
        assert len(gateway.outbox) == 2


class TestRunWorker:
    """Test the worker loop"""

    def test_max_runs(self):
        dispatcher = Mock()
        dispatcher.sweep.return_value = SweepResult(started_at=at(2, 10))

        assert run_worker(dispatcher, interval_seconds=0, max_runs=3) == 3
        assert dispatcher.sweep.call_count == 3

    def test_failing_sweep_keeps_running(self):
        dispatcher = Mock()
        dispatcher.sweep.side_effect = [RuntimeError("database locked"), SweepResult(started_at=at(2, 10))]

        assert run_worker(dispatcher, interval_seconds=0, max_runs=2) == 2

    def test_stop_event(self):
        dispatcher = Mock()
        stop_event = threading.Event()
        stop_event.set()

        assert run_worker(dispatcher, interval_seconds=0, stop_event=stop_event) == 0
        dispatcher.sweep.assert_not_called()
