"""
Member loan endpoints
"""

from fastapi import APIRouter, Depends, status

from .dependencies import get_current_user, get_system
from .schemas import (
    LoanQuoteRequest, LoanApplicationRequest, RepaymentRequest,
    record_to_response, records_to_response, payment_to_response, parse_choice
)
from ..errors import NotFound, PermissionDenied
from ..loans import CollateralType, LoanApplication
from ..members import Member
from ..system import SaccoSystem


router = APIRouter()


def _visible_loan(system: SaccoSystem, loan_id: str, user: Member) -> LoanApplication:
    loan = system.loan_manager.get_loan(loan_id)
    if not loan:
        raise NotFound(f"Loan {loan_id} not found")
    if loan.borrower_id != user.id and not user.is_admin:
        raise PermissionDenied(f"Loan {loan_id} belongs to another member")
    return loan


@router.post("/quote")
async def quote_loan(
    request: LoanQuoteRequest,
    user: Member = Depends(get_current_user),
    system: SaccoSystem = Depends(get_system)
):
    """Preview monthly payment and totals"""
    quote = system.loan_manager.quote(
        principal=request.principal,
        term_months=request.term_months,
        annual_interest_rate=request.annual_interest_rate
    )
    return {
        "principal": str(quote.principal),
        "annual_interest_rate": str(quote.annual_interest_rate),
        "term_months": quote.term_months,
        "monthly_payment": str(quote.monthly_payment),
        "total_repayment": str(quote.total_repayment),
        "total_interest": str(quote.total_interest)
    }


@router.get("/applications")
async def list_applications(
    user: Member = Depends(get_current_user),
    system: SaccoSystem = Depends(get_system)
):
    """Loans of the calling member, newest first"""
    loans = system.loan_manager.get_borrower_loans(user.id)
    return {"loans": records_to_response(loans), "count": len(loans)}


@router.post("/applications", status_code=status.HTTP_201_CREATED)
async def submit_application(
    request: LoanApplicationRequest,
    user: Member = Depends(get_current_user),
    system: SaccoSystem = Depends(get_system)
):
    """Apply for a loan"""
    loan = system.loan_manager.submit_application(
        borrower_id=user.id,
        principal=request.principal,
        purpose=request.purpose,
        term_months=request.term_months,
        annual_interest_rate=request.annual_interest_rate,
        collateral_type=parse_choice(CollateralType, request.collateral_type, "collateral_type"),
        collateral_value=request.collateral_value,
        collateral_description=request.collateral_description
    )
    return {"loan": record_to_response(loan), "message": "Loan application submitted successfully"}


@router.get("/active")
async def active_loans(
    user: Member = Depends(get_current_user),
    system: SaccoSystem = Depends(get_system)
):
    """Approved and disbursed loans of the calling member"""
    loans = system.loan_manager.get_active_loans(user.id)
    return {"loans": records_to_response(loans), "count": len(loans)}


@router.get("/{loan_id}/repayments")
async def get_repayments(
    loan_id: str,
    user: Member = Depends(get_current_user),
    system: SaccoSystem = Depends(get_system)
):
    """Repayment schedule of a loan"""
    loan = _visible_loan(system, loan_id, user)
    schedule = system.loan_manager.get_schedule(loan.id)
    return {
        "loan_id": loan.id,
        "remaining_balance": str(loan.remaining_balance),
        "next_payment_due": loan.next_payment_due.isoformat() if loan.next_payment_due else None,
        "schedule": records_to_response(schedule)
    }


@router.post("/{loan_id}/repayments")
async def make_repayment(
    loan_id: str,
    request: RepaymentRequest,
    user: Member = Depends(get_current_user),
    system: SaccoSystem = Depends(get_system)
):
    """Pay toward a disbursed loan"""
    result = system.loan_manager.record_payment(
        loan_id=loan_id,
        amount=request.amount,
        idempotency_key=request.idempotency_key,
        payer_id=user.id
    )
    return {"payment": payment_to_response(result), "message": "Payment recorded successfully"}
