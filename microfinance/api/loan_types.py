"""
Loan type endpoints
"""

from decimal import Decimal
from fastapi import APIRouter, Depends, status

from .dependencies import CLIENT_ERRORS, LendingSystem, get_lending_system, http_error
from .schemas import CreateLoanTypeRequest, UpdateLoanTypeRequest, loan_type_response
from ..exceptions import LendingError


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan_type(
    request: CreateLoanTypeRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Create a loan type"""
    try:
        loan_type = system.loan_type_manager.create_loan_type(
            name=request.name,
            min_amount=request.min_amount.to_money(),
            max_amount=request.max_amount.to_money(),
            allowed_months_to_pay=request.allowed_months_to_pay,
            interest_rates_by_month={m: Decimal(r) for m, r in request.interest_rates_by_month.items()},
            late_payment_penalty_per_day=request.late_payment_penalty_per_day.to_money(),
            credit_score_required=request.credit_score_required,
            interest_rate=Decimal(request.interest_rate) if request.interest_rate else None,
            description=request.description,
            created_by=request.created_by
        )
        return loan_type_response(loan_type)
    except CLIENT_ERRORS as e:
        raise http_error(e)


@router.get("")
async def list_loan_types(
    active_only: bool = False,
    system: LendingSystem = Depends(get_lending_system)
):
    """List loan types"""
    loan_types = system.loan_type_manager.list_loan_types(active_only=active_only)
    return {"loan_types": [loan_type_response(lt) for lt in loan_types]}


@router.get("/{loan_type_id}")
async def get_loan_type(
    loan_type_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Get loan type details"""
    try:
        return loan_type_response(system.loan_type_manager.require_loan_type(loan_type_id))
    except LendingError as e:
        raise http_error(e)


@router.patch("/{loan_type_id}")
async def update_loan_type(
    loan_type_id: str,
    request: UpdateLoanTypeRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Update a loan type; existing loans keep their frozen terms"""
    try:
        changes = {}
        for key in ("name", "allowed_months_to_pay", "credit_score_required", "description", "is_active"):
            value = getattr(request, key)
            if value is not None:
                changes[key] = value
        for key in ("min_amount", "max_amount", "late_payment_penalty_per_day"):
            value = getattr(request, key)
            if value is not None:
                changes[key] = value.to_money()
        if request.interest_rates_by_month is not None:
            changes["interest_rates_by_month"] = {m: Decimal(r) for m, r in request.interest_rates_by_month.items()}
        if request.interest_rate is not None:
            changes["interest_rate"] = Decimal(request.interest_rate)
        loan_type = system.loan_type_manager.update_loan_type(
            loan_type_id, updated_by=request.updated_by, **changes
        )
        return loan_type_response(loan_type)
    except CLIENT_ERRORS as e:
        raise http_error(e)


@router.delete("/{loan_type_id}")
async def deactivate_loan_type(
    loan_type_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Deactivate a loan type"""
    try:
        loan_type = system.loan_type_manager.deactivate_loan_type(loan_type_id)
        return {"id": loan_type.id, "is_active": loan_type.is_active, "message": "Loan type deactivated"}
    except LendingError as e:
        raise http_error(e)
