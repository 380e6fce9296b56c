"""
Loan Types and Rate Table Module

Loan types carry the rate policy of a loan: amount limits, the installment
counts a borrower may choose, a percentage rate per installment count and the
per-day late penalty. Existing loans copy what they need at creation and never
read the loan type again.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any
import uuid

from .currency import Money, Currency, to_decimal
from .storage import StorageInterface, StorageRecord
from .audit import ActivityLog, ActivityAction
from .exceptions import InvalidTermLength, RecordNotFound
from .logging_config import get_logger, log_action

logger = get_logger("microfinance.rates")


@dataclass
class LoanType(StorageRecord):
    """Rate policy chosen by a loan at creation"""
    name: str
    min_amount: Money
    max_amount: Money
    allowed_months_to_pay: List[int]
    interest_rates_by_month: Dict[int, Decimal]
    late_payment_penalty_per_day: Money
    credit_score_required: int = 0
    interest_rate: Optional[Decimal] = None  # Legacy single rate, used when a month has no entry
    description: str = ""
    is_active: bool = True
    currency: Currency = Currency.PHP
    version: int = 0

    def __post_init__(self):
        self.allowed_months_to_pay = sorted({int(m) for m in self.allowed_months_to_pay})
        self.interest_rates_by_month = {
            int(months): to_decimal(rate) for months, rate in self.interest_rates_by_month.items()
        }
        if self.interest_rate is not None:
            self.interest_rate = to_decimal(self.interest_rate)

    def validate(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("Loan type name is required")
        if self.min_amount.is_negative() or self.max_amount.is_negative():
            raise ValueError("Loan amounts cannot be negative")
        if self.min_amount > self.max_amount:
            raise ValueError("Minimum amount cannot exceed maximum amount")
        if not self.allowed_months_to_pay:
            raise ValueError("At least one installment count must be allowed")
        if any(months <= 0 for months in self.allowed_months_to_pay):
            raise ValueError("Installment counts must be positive")
        if any(rate < 0 for rate in self.interest_rates_by_month.values()):
            raise ValueError("Interest rates cannot be negative")
        if self.interest_rate is not None and self.interest_rate < 0:
            raise ValueError("Interest rate cannot be negative")
        if self.late_payment_penalty_per_day.is_negative():
            raise ValueError("Late payment penalty cannot be negative")
        if self.credit_score_required < 0:
            raise ValueError("Credit score requirement cannot be negative")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LoanType':
        data = dict(data)
        currency = Currency[data.get('currency', 'PHP')]
        data['currency'] = currency
        for money_field in ('min_amount', 'max_amount', 'late_payment_penalty_per_day'):
            data[money_field] = Money(Decimal(data[money_field]), currency)
        if data.get('interest_rate') is not None:
            data['interest_rate'] = Decimal(data['interest_rate'])
        return super().from_dict(data)


class RateTable:
    """Resolves the percentage rate for a chosen number of installments"""

    def rate_for(self, loan_type: LoanType, months: int) -> Decimal:
        """
        Rate for a loan of the given length

        Raises:
            InvalidTermLength: months is not offered, or no rate is configured for it
        """
        if months not in loan_type.allowed_months_to_pay:
            raise InvalidTermLength(
                f"{months} months is not offered by loan type '{loan_type.name}' "
                f"(allowed: {loan_type.allowed_months_to_pay})"
            )

        rate = loan_type.interest_rates_by_month.get(months)
        if rate is None:
            rate = loan_type.interest_rate
        if rate is None:
            raise InvalidTermLength(
                f"No interest rate configured for {months} months on loan type '{loan_type.name}'"
            )
        return rate


class LoanTypeManager:
    """
    Administrator CRUD over loan types
    """

    def __init__(self, storage: StorageInterface, activity_log: Optional[ActivityLog] = None):
        self.storage = storage
        self.activity_log = activity_log
        self.table_name = "loan_types"

    def create_loan_type(
        self,
        name: str,
        min_amount: Money,
        max_amount: Money,
        allowed_months_to_pay: List[int],
        interest_rates_by_month: Dict[int, Decimal],
        late_payment_penalty_per_day: Money,
        credit_score_required: int = 0,
        interest_rate: Optional[Decimal] = None,
        description: str = "",
        created_by: Optional[str] = None
    ) -> LoanType:
        """
        Create a loan type

        Raises:
            ValueError: if limits, installment counts, rates or penalty are invalid
        """
        now = datetime.now(timezone.utc)
        loan_type = LoanType(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name.strip(),
            min_amount=min_amount,
            max_amount=max_amount,
            allowed_months_to_pay=allowed_months_to_pay,
            interest_rates_by_month=interest_rates_by_month,
            late_payment_penalty_per_day=late_payment_penalty_per_day,
            credit_score_required=credit_score_required,
            interest_rate=interest_rate,
            description=description,
            currency=min_amount.currency
        )
        loan_type.validate()

        loan_type.version = self.storage.save_versioned(
            self.table_name, loan_type.id, loan_type.to_dict(), 0
        )

        if self.activity_log:
            self.activity_log.log_activity(
                action=ActivityAction.CREATE_LOAN_TYPE,
                entity_type="LOAN_TYPE",
                entity_id=loan_type.id,
                description=f"Created loan type {loan_type.name}",
                metadata={"allowed_months_to_pay": loan_type.allowed_months_to_pay},
                user_id=created_by
            )
        log_action(logger, "info", f"Loan type created: {loan_type.name}",
                   user_id=created_by, action="create_loan_type", resource=loan_type.id)
        return loan_type

    def get_loan_type(self, loan_type_id: str) -> Optional[LoanType]:
        data = self.storage.load(self.table_name, loan_type_id)
        return LoanType.from_dict(data) if data else None

    def require_loan_type(self, loan_type_id: str) -> LoanType:
        loan_type = self.get_loan_type(loan_type_id)
        if loan_type is None:
            raise RecordNotFound(f"Loan type {loan_type_id} not found")
        return loan_type

    def list_loan_types(self, active_only: bool = False) -> List[LoanType]:
        loan_types = [LoanType.from_dict(d) for d in self.storage.load_all(self.table_name)]
        if active_only:
            loan_types = [lt for lt in loan_types if lt.is_active]
        return sorted(loan_types, key=lambda lt: lt.name)

    def update_loan_type(self, loan_type_id: str, updated_by: Optional[str] = None,
                         **changes) -> LoanType:
        """
        Update editable fields of a loan type

        Existing loans are unaffected: they froze rate and penalty at creation.
        """
        loan_type = self.require_loan_type(loan_type_id)
        editable = {
            'name', 'min_amount', 'max_amount', 'allowed_months_to_pay',
            'interest_rates_by_month', 'late_payment_penalty_per_day',
            'credit_score_required', 'interest_rate', 'description', 'is_active'
        }
        unknown = set(changes) - editable
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")

        for key, value in changes.items():
            setattr(loan_type, key, value)
        loan_type.__post_init__()
        loan_type.validate()
        loan_type.updated_at = datetime.now(timezone.utc)

        loan_type.version = self.storage.save_versioned(
            self.table_name, loan_type.id, loan_type.to_dict(), loan_type.version
        )

        if self.activity_log:
            self.activity_log.log_activity(
                action=ActivityAction.UPDATE_LOAN_TYPE,
                entity_type="LOAN_TYPE",
                entity_id=loan_type.id,
                description=f"Updated loan type {loan_type.name}",
                metadata={"fields": sorted(changes)},
                user_id=updated_by
            )
        return loan_type

    def deactivate_loan_type(self, loan_type_id: str, updated_by: Optional[str] = None) -> LoanType:
        return self.update_loan_type(loan_type_id, updated_by=updated_by, is_active=False)
