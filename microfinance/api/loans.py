"""
Loan endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, status

from .dependencies import CLIENT_ERRORS, LendingSystem, get_lending_system, http_error
from .schemas import CreateLoanRequest, loan_response, term_response, payment_response


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: CreateLoanRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Create a loan and its installment schedule"""
    try:
        loan, terms = system.loan_manager.create_loan(
            user_id=request.user_id,
            loan_type_id=request.loan_type_id,
            principal=request.principal.to_money(),
            months=request.months,
            created_by=request.created_by
        )
        return {
            **loan_response(loan),
            "terms": [term_response(t) for t in terms],
            "message": "Loan created successfully"
        }
    except CLIENT_ERRORS as e:
        raise http_error(e)


@router.get("")
async def list_loans(
    user_id: Optional[str] = None,
    system: LendingSystem = Depends(get_lending_system)
):
    """List loans, optionally for one borrower"""
    if user_id:
        loans = system.loan_manager.get_user_loans(user_id)
    else:
        loans = system.loan_manager.list_loans()
    return {"loans": [loan_response(loan) for loan in loans]}


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Get loan details with live term penalties and its payments"""
    try:
        loan, terms = system.loan_manager.get_schedule(loan_id)
    except CLIENT_ERRORS as e:
        raise http_error(e)

    payments = system.payment_ledger.get_loan_payments(loan_id)
    return {
        **loan_response(loan),
        "terms": [term_response(t) for t in terms],
        "payments": [payment_response(p) for p in payments]
    }


@router.get("/{loan_id}/schedule")
async def get_loan_schedule(
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Get the installment schedule"""
    try:
        loan, terms = system.loan_manager.get_schedule(loan_id)
    except CLIENT_ERRORS as e:
        raise http_error(e)

    return {
        "loan_id": loan.id,
        "total_amount": str(loan.total_amount.amount),
        "schedule": [term_response(t) for t in terms]
    }
