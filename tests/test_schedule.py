"""
Test suite for schedule generation

Term amounts must always reconcile exactly to the total amount, with the
division remainder on the final installment.
"""

import pytest
from decimal import Decimal
from datetime import date

from microfinance.currency import Money, Currency, round_minor
from microfinance.schedule import ScheduleGenerator, InterestBasis
from microfinance.exceptions import InvalidScheduleParameters


@pytest.fixture
def annual():
    return ScheduleGenerator(InterestBasis.ANNUAL)


@pytest.fixture
def flat():
    return ScheduleGenerator(InterestBasis.FLAT)


class TestScheduleGenerator:
    """Test installment splitting"""

    def test_three_month_loan_at_twelve_percent(self, annual):
        schedule = annual.generate(Money(Decimal("25000")), Decimal("12"), 3, date(2024, 1, 15))

        assert schedule.total_amount == Money(Decimal("25750.00"))
        assert [t.amount.amount for t in schedule.terms] == [
            Decimal("8583.33"), Decimal("8583.33"), Decimal("8583.34")
        ]
        assert schedule.period_rate == Decimal("3")

    def test_flat_basis_applies_rate_once(self, flat):
        schedule = flat.generate(Money(Decimal("25000")), Decimal("12"), 3, date(2024, 1, 15))

        assert schedule.total_amount == Money(Decimal("28000.00"))
        assert [t.amount.amount for t in schedule.terms] == [
            Decimal("9333.33"), Decimal("9333.33"), Decimal("9333.34")
        ]

    def test_basis_from_string(self):
        assert ScheduleGenerator("flat").basis == InterestBasis.FLAT
        assert ScheduleGenerator("annual").basis == InterestBasis.ANNUAL

    @pytest.mark.parametrize("principal,rate,months,currency", [
        ("1", "0", 1, Currency.PHP),
        ("100", "0", 3, Currency.PHP),
        ("1000", "7", 7, Currency.PHP),
        ("25000", "12", 3, Currency.PHP),
        ("33333.33", "13.5", 11, Currency.PHP),
        ("0.05", "0", 6, Currency.PHP),
        ("999999.99", "99.99", 36, Currency.PHP),
        ("5000", "2.75", 24, Currency.USD),
        ("1000", "0", 3, Currency.JPY),
        ("25000", "12", 7, Currency.JPY),
        ("5", "0", 6, Currency.JPY),
        ("1000001", "13.5", 11, Currency.JPY),
    ])
    @pytest.mark.parametrize("basis", [InterestBasis.ANNUAL, InterestBasis.FLAT])
    def test_terms_sum_to_total(self, principal, rate, months, currency, basis):
        generator = ScheduleGenerator(basis)
        schedule = generator.generate(Money(Decimal(principal), currency), Decimal(rate), months,
                                      date(2024, 3, 31))

        total = sum((t.amount.amount for t in schedule.terms), Decimal("0"))
        assert total == schedule.total_amount.amount
        expected = round_minor(Decimal(principal) * (1 + generator.period_rate(Decimal(rate), months) / 100),
                               currency)
        assert schedule.total_amount.amount == expected
        assert len(schedule.terms) == months

    def test_remainder_lands_on_last_term(self, flat):
        schedule = flat.generate(Money(Decimal("100")), Decimal("0"), 3, date(2024, 1, 1))

        assert [t.amount.amount for t in schedule.terms] == [
            Decimal("33.33"), Decimal("33.33"), Decimal("33.34")
        ]

    def test_whole_unit_currency_split(self, flat):
        schedule = flat.generate(Money(Decimal("1000"), Currency.JPY), Decimal("0"), 3, date(2024, 1, 1))

        assert [t.amount for t in schedule.terms] == [
            Money(Decimal("333"), Currency.JPY),
            Money(Decimal("333"), Currency.JPY),
            Money(Decimal("334"), Currency.JPY)
        ]
        assert schedule.total_amount == Money(Decimal("1000"), Currency.JPY)

    def test_term_numbers_are_one_based(self, annual):
        schedule = annual.generate(Money(Decimal("1200")), Decimal("0"), 4, date(2024, 1, 10))
        assert [t.term_number for t in schedule.terms] == [1, 2, 3, 4]

    def test_due_dates_use_calendar_months(self, annual):
        schedule = annual.generate(Money(Decimal("1200")), Decimal("10"), 4, date(2024, 1, 31))

        assert [t.due_date for t in schedule.terms] == [
            date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30), date(2024, 5, 31)
        ]
        assert schedule.final_due_date == date(2024, 5, 31)

    def test_due_dates_cross_year(self, annual):
        schedule = annual.generate(Money(Decimal("1200")), Decimal("10"), 3, date(2024, 11, 15))
        assert [t.due_date for t in schedule.terms] == [
            date(2024, 12, 15), date(2025, 1, 15), date(2025, 2, 15)
        ]

    @pytest.mark.parametrize("principal,rate,months", [
        ("1000", "10", 0),
        ("1000", "10", -3),
        ("0", "10", 3),
        ("-100", "10", 3),
        ("1000", "-1", 3),
    ])
    def test_invalid_parameters(self, annual, principal, rate, months):
        with pytest.raises(InvalidScheduleParameters):
            annual.generate(Money(Decimal(principal)), Decimal(rate), months, date(2024, 1, 1))
