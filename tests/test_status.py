"""
Test suite for loan status derivation and propagation
"""

import pytest
from decimal import Decimal
from datetime import date, datetime, timezone

from microfinance.currency import Money
from microfinance.storage import InMemoryStorage
from microfinance.rates import LoanTypeManager
from microfinance.schedule import ScheduleGenerator, InterestBasis
from microfinance.penalties import PenaltyCalculator
from microfinance.loans import LoanManager, LoanStatus, TermStatus
from microfinance.status import StatusPropagator, derive_loan_status
from microfinance.exceptions import ConcurrentModification


CREATED_AT = datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def loan_manager(storage):
    return LoanManager(
        storage,
        LoanTypeManager(storage),
        schedule_generator=ScheduleGenerator(InterestBasis.ANNUAL),
        penalty_calculator=PenaltyCalculator("UTC")
    )


@pytest.fixture
def propagator(loan_manager):
    return StatusPropagator(loan_manager)


@pytest.fixture
def loan(loan_manager):
    loan_type = loan_manager.loan_type_manager.create_loan_type(
        name="Flat Loan",
        min_amount=Money(Decimal("1000")),
        max_amount=Money(Decimal("10000")),
        allowed_months_to_pay=[3],
        interest_rates_by_month={3: Decimal("0")},
        late_payment_penalty_per_day=Money(Decimal("10"))
    )
    loan, _ = loan_manager.create_loan("USER001", loan_type.id, Money(Decimal("3000")), 3,
                                       created_at=CREATED_AT)
    return loan


def pay_all(loan_manager, loan):
    terms = loan_manager.get_terms(loan.id)
    for term in terms:
        term.amount_paid = term.amount
        term.status = TermStatus.PAID
        loan_manager.save_term(term)
    loan_manager.recompute_totals(loan, terms)
    loan_manager.save_loan(loan)
    return terms


class TestDeriveLoanStatus:
    """Test the pure status rule"""

    def test_active_before_first_due_date(self, loan_manager, loan):
        terms = loan_manager.get_terms(loan.id)
        assert derive_loan_status(loan, terms, date(2024, 1, 20)) == LoanStatus.ACTIVE

    def test_due_today_is_not_overdue(self, loan_manager, loan):
        terms = loan_manager.get_terms(loan.id)
        assert derive_loan_status(loan, terms, date(2024, 2, 15)) == LoanStatus.ACTIVE

    def test_overdue_after_due_date(self, loan_manager, loan):
        terms = loan_manager.get_terms(loan.id)
        assert derive_loan_status(loan, terms, date(2024, 2, 16)) == LoanStatus.OVERDUE

    def test_paid_late_term_is_not_overdue(self, loan_manager, loan):
        terms = loan_manager.get_terms(loan.id)
        terms[0].status = TermStatus.PAID
        assert derive_loan_status(loan, terms, date(2024, 2, 20)) == LoanStatus.ACTIVE

    def test_paid_when_everything_settled(self, loan_manager, loan):
        terms = pay_all(loan_manager, loan)
        assert derive_loan_status(loan, terms, date(2024, 6, 1)) == LoanStatus.PAID

    def test_all_terms_paid_but_balance_left(self, loan_manager, loan):
        terms = loan_manager.get_terms(loan.id)
        for term in terms:
            term.status = TermStatus.PAID
        assert derive_loan_status(loan, terms, date(2024, 1, 20)) == LoanStatus.ACTIVE

    def test_defaulted_is_sticky(self, loan_manager, loan):
        terms = loan_manager.get_terms(loan.id)
        loan.status = LoanStatus.DEFAULTED
        assert derive_loan_status(loan, terms, date(2024, 1, 20)) == LoanStatus.DEFAULTED
        assert derive_loan_status(loan, terms, date(2024, 3, 20)) == LoanStatus.DEFAULTED

    def test_defaulted_loan_can_still_be_paid_off(self, loan_manager, loan):
        terms = pay_all(loan_manager, loan)
        loan.status = LoanStatus.DEFAULTED
        assert derive_loan_status(loan, terms, date(2024, 6, 1)) == LoanStatus.PAID

    def test_no_terms(self, loan):
        assert derive_loan_status(loan, [], date(2024, 6, 1)) == LoanStatus.ACTIVE


class TestStatusPropagator:
    """Test status persistence"""

    def test_no_change(self, propagator, loan_manager, loan):
        assert not propagator.propagate(loan.id, datetime(2024, 1, 20, tzinfo=timezone.utc))
        assert loan_manager.require_loan(loan.id).version == 1

    def test_becomes_overdue(self, propagator, loan_manager, loan):
        assert propagator.propagate(loan.id, datetime(2024, 2, 16, tzinfo=timezone.utc))
        assert loan_manager.require_loan(loan.id).status == LoanStatus.OVERDUE

    def test_overdue_returns_to_active_once_caught_up(self, propagator, loan_manager, loan):
        propagator.propagate(loan.id, datetime(2024, 2, 16, tzinfo=timezone.utc))

        term = loan_manager.get_terms(loan.id)[0]
        term.amount_paid = term.amount
        term.status = TermStatus.PAID
        loan_manager.save_term(term)

        assert propagator.propagate(loan.id, datetime(2024, 2, 17, tzinfo=timezone.utc))
        assert loan_manager.require_loan(loan.id).status == LoanStatus.ACTIVE

    def test_apply_only_touches_memory(self, propagator, loan_manager, loan):
        terms = loan_manager.get_terms(loan.id)
        assert propagator.apply(loan, terms, date(2024, 2, 16))
        assert loan.status == LoanStatus.OVERDUE
        assert loan_manager.require_loan(loan.id).status == LoanStatus.ACTIVE

    def test_retries_after_concurrent_write(self, propagator, loan_manager, loan, monkeypatch):
        original_save = loan_manager.save_loan
        calls = []

        def flaky_save(record):
            calls.append(record.version)
            if len(calls) == 1:
                raise ConcurrentModification("loans", record.id, record.version, record.version + 1)
            original_save(record)

        monkeypatch.setattr(loan_manager, "save_loan", flaky_save)

        assert propagator.propagate(loan.id, datetime(2024, 2, 16, tzinfo=timezone.utc))
        assert len(calls) == 2
        assert loan_manager.require_loan(loan.id).status == LoanStatus.OVERDUE

    def test_gives_up_after_repeated_conflicts(self, propagator, loan_manager, loan, monkeypatch):
        def always_conflict(record):
            raise ConcurrentModification("loans", record.id, record.version, record.version + 1)

        monkeypatch.setattr(loan_manager, "save_loan", always_conflict)

        with pytest.raises(ConcurrentModification):
            propagator.propagate(loan.id, datetime(2024, 2, 16, tzinfo=timezone.utc))
