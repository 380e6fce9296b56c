"""
Payment endpoints

Approve and reject send a borrower SMS, so they are plain functions that
FastAPI runs in its threadpool.
"""

from typing import Optional
from fastapi import APIRouter, Depends, status

from .dependencies import CLIENT_ERRORS, LendingSystem, get_lending_system, http_error
from .schemas import (
    SubmitPaymentRequest, ApprovePaymentRequest, RejectPaymentRequest,
    payment_response, term_response, loan_response
)
from ..payments import PaymentType


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def submit_payment(
    request: SubmitPaymentRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Submit a payment for review"""
    try:
        payment = system.payment_ledger.submit_payment(
            loan_id=request.loan_id,
            term_id=request.term_id,
            user_id=request.user_id,
            amount=request.amount.to_money(),
            payment_type=PaymentType(request.payment_type.upper()) if request.payment_type else None,
            receipt_url=request.receipt_url,
            payment_method=request.payment_method
        )
        return {**payment_response(payment), "message": "Payment submitted successfully"}
    except CLIENT_ERRORS as e:
        raise http_error(e)


@router.get("")
async def list_payments(
    loan_id: Optional[str] = None,
    user_id: Optional[str] = None,
    pending_only: bool = False,
    system: LendingSystem = Depends(get_lending_system)
):
    """List payments by loan, by borrower, or all pending"""
    ledger = system.payment_ledger
    if pending_only:
        payments = ledger.get_pending_payments()
    elif loan_id:
        payments = ledger.get_loan_payments(loan_id)
    elif user_id:
        payments = ledger.get_user_payments(user_id)
    else:
        payments = ledger.get_pending_payments()
    return {"payments": [payment_response(p) for p in payments]}


@router.get("/{payment_id}")
async def get_payment(
    payment_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Get payment details"""
    try:
        return payment_response(system.payment_ledger.require_payment(payment_id))
    except CLIENT_ERRORS as e:
        raise http_error(e)


@router.post("/{payment_id}/approve")
def approve_payment(
    payment_id: str,
    request: Optional[ApprovePaymentRequest] = None,
    system: LendingSystem = Depends(get_lending_system)
):
    """Approve a pending payment and apply it to its term"""
    try:
        allocation = system.payment_ledger.apply_approved_payment(
            payment_id, approved_by=request.approved_by if request else None
        )
        return {
            "payment": payment_response(allocation.payment),
            "term": term_response(allocation.term),
            "loan": loan_response(allocation.loan),
            "message": "Payment approved successfully"
        }
    except CLIENT_ERRORS as e:
        raise http_error(e)


@router.post("/{payment_id}/reject")
def reject_payment(
    payment_id: str,
    request: RejectPaymentRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Reject a pending payment"""
    try:
        payment = system.payment_ledger.reject_payment(
            payment_id, reason=request.reason, rejected_by=request.rejected_by
        )
        return {**payment_response(payment), "message": "Payment rejected"}
    except CLIENT_ERRORS as e:
        raise http_error(e)
