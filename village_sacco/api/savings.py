"""
Savings endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query, status

from .dependencies import get_current_user, get_system, require_admin_user
from .schemas import (
    OpenSavingsAccountRequest, SavingsMovementRequest,
    record_to_response, records_to_response, accrual_to_response, parse_choice
)
from ..errors import PermissionDenied
from ..interest import summarize
from ..journal import TransactionType
from ..members import Member
from ..savings import SavingsAccount, SavingsAccountType
from ..system import SaccoSystem


router = APIRouter()


def _owned_account(system: SaccoSystem, account_id: str, user: Member) -> SavingsAccount:
    account = system.savings_manager.require_account(account_id)
    if account.owner_id != user.id and not user.is_admin:
        raise PermissionDenied(f"Savings account {account_id} belongs to another member")
    return account


@router.get("/accounts")
async def list_accounts(
    user: Member = Depends(get_current_user),
    system: SaccoSystem = Depends(get_system)
):
    accounts = system.savings_manager.get_owner_accounts(user.id)
    return {"accounts": records_to_response(accounts), "count": len(accounts)}


@router.post("/accounts", status_code=status.HTTP_201_CREATED)
async def open_account(
    request: OpenSavingsAccountRequest,
    user: Member = Depends(get_current_user),
    system: SaccoSystem = Depends(get_system)
):
    """Open a savings account for the calling member"""
    account = system.savings_manager.open_account(
        owner_id=user.id,
        account_type=parse_choice(SavingsAccountType, request.account_type, "account_type"),
        annual_interest_rate=request.annual_interest_rate
    )
    return {"account": record_to_response(account), "message": "Savings account opened successfully"}


@router.post("/deposit")
async def deposit(
    request: SavingsMovementRequest,
    user: Member = Depends(get_current_user),
    system: SaccoSystem = Depends(get_system)
):
    _owned_account(system, request.account_id, user)
    transaction = system.savings_manager.deposit(
        account_id=request.account_id,
        amount=request.amount,
        description=request.description,
        idempotency_key=request.idempotency_key
    )
    account = system.savings_manager.get_account(request.account_id)
    return {
        "transaction": record_to_response(transaction),
        "balance": str(account.balance),
        "message": "Deposit successful"
    }


@router.post("/withdraw")
async def withdraw(
    request: SavingsMovementRequest,
    user: Member = Depends(get_current_user),
    system: SaccoSystem = Depends(get_system)
):
    _owned_account(system, request.account_id, user)
    transaction = system.savings_manager.withdraw(
        account_id=request.account_id,
        amount=request.amount,
        description=request.description,
        idempotency_key=request.idempotency_key
    )
    account = system.savings_manager.get_account(request.account_id)
    return {
        "transaction": record_to_response(transaction),
        "balance": str(account.balance),
        "message": "Withdrawal successful"
    }


@router.get("/transactions")
async def transaction_history(
    type: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user: Member = Depends(get_current_user),
    system: SaccoSystem = Depends(get_system)
):
    """Money movements of the calling member, newest first"""
    transaction_type = parse_choice(TransactionType, type, "type")
    transactions = system.journal.list_for_owner(
        user.id,
        transaction_types=[transaction_type] if transaction_type else None,
        limit=limit,
        offset=offset
    )
    return {
        "transactions": records_to_response(transactions),
        "count": len(transactions),
        "limit": limit,
        "offset": offset
    }


@router.post("/calculate-interest")
async def calculate_interest(
    admin: Member = Depends(require_admin_user),
    system: SaccoSystem = Depends(get_system)
):
    """Run the interest accrual job over every active account"""
    results = system.interest_job.accrue_all(admin_id=admin.id)
    summary = summarize(results)
    return {
        "processed": summary["processed"],
        "skipped": summary["skipped"],
        "failed": summary["failed"],
        "total_interest": str(summary["total_interest"]),
        "results": [accrual_to_response(result) for result in results]
    }
