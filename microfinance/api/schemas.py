"""
Pydantic schemas for API requests and responses
"""

from decimal import Decimal
from typing import Dict, List, Optional, Any
from pydantic import BaseModel, Field

from ..config import get_config
from ..currency import Money, Currency
from ..rates import LoanType
from ..loans import Loan, Term
from ..payments import Payment
from ..notifications import Notification
from ..sms import SMSSettings


class MoneyModel(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    currency: str = Field(default_factory=lambda: get_config().currency,
                          description="Currency code (PHP, USD, etc.); defaults to the configured currency")

    def to_money(self) -> Money:
        return Money(Decimal(self.amount), Currency[self.currency])

    @classmethod
    def from_money(cls, money: Money) -> 'MoneyModel':
        return cls(amount=str(money.amount), currency=money.currency.code)


def money_dict(money: Money) -> Dict[str, str]:
    return {"amount": str(money.amount), "currency": money.currency.code}


# Loan type schemas
class CreateLoanTypeRequest(BaseModel):
    name: str
    min_amount: MoneyModel
    max_amount: MoneyModel
    allowed_months_to_pay: List[int]
    interest_rates_by_month: Dict[int, str] = Field(default_factory=dict,
                                                    description="Installment count -> percentage rate")
    late_payment_penalty_per_day: MoneyModel
    credit_score_required: int = 0
    interest_rate: Optional[str] = Field(None, description="Fallback rate for months without an entry")
    description: str = ""
    created_by: Optional[str] = None


class UpdateLoanTypeRequest(BaseModel):
    name: Optional[str] = None
    min_amount: Optional[MoneyModel] = None
    max_amount: Optional[MoneyModel] = None
    allowed_months_to_pay: Optional[List[int]] = None
    interest_rates_by_month: Optional[Dict[int, str]] = None
    late_payment_penalty_per_day: Optional[MoneyModel] = None
    credit_score_required: Optional[int] = None
    interest_rate: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None
    updated_by: Optional[str] = None


# Loan schemas
class CreateLoanRequest(BaseModel):
    user_id: str
    loan_type_id: str
    principal: MoneyModel
    months: int = Field(..., description="Number of monthly installments")
    created_by: Optional[str] = None


# Payment schemas
class SubmitPaymentRequest(BaseModel):
    loan_id: str
    term_id: str
    user_id: str
    amount: MoneyModel
    payment_type: Optional[str] = Field(None, description="PARTIAL or FULL; derived when omitted")
    receipt_url: Optional[str] = None
    payment_method: Optional[str] = None


class ApprovePaymentRequest(BaseModel):
    approved_by: Optional[str] = None


class RejectPaymentRequest(BaseModel):
    reason: str
    rejected_by: Optional[str] = None


# SMS and admin schemas
class SMSTestRequest(BaseModel):
    phone: str
    message: str = "This is a test message from the loan management system."


class SMSSettingsRequest(BaseModel):
    mode: str = Field(..., description="local or cloud")
    username: str
    local_server_url: Optional[str] = None
    password: Optional[str] = Field(None, description="Blank keeps the stored password")
    is_active: Optional[bool] = None


class ResetSMSFlagsRequest(BaseModel):
    reminders: bool = True
    overdue: bool = True
    loan_id: Optional[str] = None
    performed_by: Optional[str] = None


class BorrowerContactRequest(BaseModel):
    name: str
    phone: Optional[str] = None


def loan_type_response(loan_type: LoanType) -> Dict[str, Any]:
    return {
        "id": loan_type.id,
        "name": loan_type.name,
        "description": loan_type.description,
        "min_amount": money_dict(loan_type.min_amount),
        "max_amount": money_dict(loan_type.max_amount),
        "credit_score_required": loan_type.credit_score_required,
        "allowed_months_to_pay": loan_type.allowed_months_to_pay,
        "interest_rates_by_month": {str(m): str(r) for m, r in loan_type.interest_rates_by_month.items()},
        "interest_rate": str(loan_type.interest_rate) if loan_type.interest_rate is not None else None,
        "late_payment_penalty_per_day": money_dict(loan_type.late_payment_penalty_per_day),
        "is_active": loan_type.is_active
    }


def loan_response(loan: Loan) -> Dict[str, Any]:
    return {
        "id": loan.id,
        "user_id": loan.user_id,
        "loan_type_id": loan.loan_type_id,
        "status": loan.status.value,
        "principal_amount": money_dict(loan.principal_amount),
        "interest_rate": str(loan.interest_rate),
        "term_months": loan.term_months,
        "total_amount": money_dict(loan.total_amount),
        "amount_paid": money_dict(loan.amount_paid),
        "remaining_amount": money_dict(loan.remaining_amount),
        "penalty_per_day": money_dict(loan.penalty_per_day),
        "due_date": loan.due_date.isoformat(),
        "created_at": loan.created_at.isoformat()
    }


def term_response(term: Term) -> Dict[str, Any]:
    return {
        "id": term.id,
        "term_number": term.term_number,
        "amount": money_dict(term.amount),
        "amount_paid": money_dict(term.amount_paid),
        "due_date": term.due_date.isoformat(),
        "status": term.status.value,
        "days_late": term.days_late,
        "penalty_amount": money_dict(term.penalty_amount),
        "paid_at": term.paid_at.isoformat() if term.paid_at else None,
        "reminder_sent": term.reminder_sent,
        "overdue_sent": term.overdue_sent
    }


def payment_response(payment: Payment) -> Dict[str, Any]:
    return {
        "id": payment.id,
        "loan_id": payment.loan_id,
        "term_id": payment.term_id,
        "user_id": payment.user_id,
        "amount": money_dict(payment.amount),
        "payment_type": payment.payment_type.value,
        "status": payment.status.value,
        "receipt_url": payment.receipt_url,
        "payment_method": payment.payment_method,
        "rejection_reason": payment.rejection_reason,
        "approved_by": payment.approved_by,
        "approved_at": payment.approved_at.isoformat() if payment.approved_at else None,
        "rejected_by": payment.rejected_by,
        "rejected_at": payment.rejected_at.isoformat() if payment.rejected_at else None,
        "created_at": payment.created_at.isoformat()
    }


def notification_response(notification: Notification) -> Dict[str, Any]:
    return {
        "id": notification.id,
        "type": notification.type.value,
        "title": notification.title,
        "message": notification.message,
        "link": notification.link,
        "entity_type": notification.entity_type,
        "entity_id": notification.entity_id,
        "icon": notification.icon,
        "is_read": notification.is_read,
        "read_at": notification.read_at.isoformat() if notification.read_at else None,
        "created_at": notification.created_at.isoformat()
    }


def sms_settings_response(settings: SMSSettings) -> Dict[str, Any]:
    # Password is write-only
    return {
        "mode": settings.mode,
        "local_server_url": settings.local_server_url,
        "cloud_server_url": settings.cloud_server_url,
        "username": settings.username,
        "password": "",
        "is_active": settings.is_active,
        "updated_at": settings.updated_at.isoformat()
    }
