"""
Administrative loan endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends

from .dependencies import get_system, require_admin_user
from .schemas import LoanActionRequest, record_to_response, records_to_response, parse_choice
from ..errors import NotFound, ValidationError
from ..loans import LoanStatus
from ..members import Member
from ..system import SaccoSystem


router = APIRouter()


@router.get("/loans")
async def list_loans(
    status: Optional[str] = None,
    admin: Member = Depends(require_admin_user),
    system: SaccoSystem = Depends(get_system)
):
    """All loans, optionally filtered by status"""
    loans = system.loan_manager.list_loans(parse_choice(LoanStatus, status, "status"))
    return {"loans": records_to_response(loans), "count": len(loans)}


@router.get("/loans/{loan_id}")
async def get_loan(
    loan_id: str,
    admin: Member = Depends(require_admin_user),
    system: SaccoSystem = Depends(get_system)
):
    """Loan with its schedule and journal entries"""
    loan = system.loan_manager.get_loan(loan_id)
    if not loan:
        raise NotFound(f"Loan {loan_id} not found")
    return {
        "loan": record_to_response(loan),
        "schedule": records_to_response(system.repayment_ledger.get_schedule(loan_id)),
        "transactions": records_to_response(system.journal.list_for_loan(loan_id))
    }


@router.put("/loans/{loan_id}")
async def decide_loan(
    loan_id: str,
    request: LoanActionRequest,
    admin: Member = Depends(require_admin_user),
    system: SaccoSystem = Depends(get_system)
):
    """Approve, reject or disburse a loan"""
    action = request.action.lower()
    if action == "approve":
        loan = system.loan_manager.approve(loan_id, admin.id)
    elif action == "reject":
        loan = system.loan_manager.reject(loan_id, admin.id, reason=request.reason)
    elif action == "disburse":
        loan = system.loan_manager.disburse(loan_id, admin.id)
    else:
        raise ValidationError(f"Unknown loan action {request.action!r}")

    return {"loan": record_to_response(loan), "message": f"Loan {loan.status.value.lower()} successfully"}
