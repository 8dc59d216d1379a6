"""
Pydantic schemas for API requests and response helpers
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from ..errors import ValidationError
from ..interest import AccrualResult
from ..repayments import PaymentResult
from ..storage import StorageRecord


# Loan schemas
class LoanQuoteRequest(BaseModel):
    principal: str = Field(..., description="Decimal amount as string")
    term_months: int
    annual_interest_rate: Optional[str] = Field(None, description="Annual rate as a fraction, e.g. 0.15")


class LoanApplicationRequest(BaseModel):
    principal: str = Field(..., description="Decimal amount as string")
    purpose: str
    term_months: int
    annual_interest_rate: Optional[str] = None
    collateral_type: Optional[str] = None
    collateral_value: Optional[str] = None
    collateral_description: Optional[str] = None


class RepaymentRequest(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    idempotency_key: Optional[str] = None


class LoanActionRequest(BaseModel):
    action: str = Field(..., description="approve, reject or disburse")
    reason: Optional[str] = None


# Savings schemas
class OpenSavingsAccountRequest(BaseModel):
    account_type: str = "REGULAR"
    annual_interest_rate: Optional[str] = None


class SavingsMovementRequest(BaseModel):
    account_id: str
    amount: str = Field(..., description="Decimal amount as string")
    description: Optional[str] = None
    idempotency_key: Optional[str] = None


def record_to_response(record: StorageRecord) -> Dict[str, Any]:
    """Stored records already serialize money, dates and enums to strings"""
    return record.to_dict()


def records_to_response(records: List[StorageRecord]) -> List[Dict[str, Any]]:
    return [record.to_dict() for record in records]


def payment_to_response(result: PaymentResult) -> Dict[str, Any]:
    return {
        "loan_id": result.loan_id,
        "transaction_id": result.transaction_id,
        "reference": result.reference,
        "entry_id": result.entry_id,
        "applied": str(result.applied),
        "unapplied": str(result.unapplied),
        "principal_credited": str(result.principal_credited),
        "interest_credited": str(result.interest_credited),
        "remaining_balance": str(result.remaining_balance),
        "next_payment_due": result.next_payment_due.isoformat() if result.next_payment_due else None,
        "loan_status": result.loan_status,
        "replayed": result.replayed
    }


def accrual_to_response(result: AccrualResult) -> Dict[str, Any]:
    return {
        "account_id": result.account_id,
        "owner_id": result.owner_id,
        "status": result.status.value,
        "days": result.days,
        "interest": str(result.interest),
        "balance": str(result.balance) if result.balance is not None else None,
        "transaction_id": result.transaction_id,
        "reason": result.reason
    }


def parse_choice(enum_cls, value: Optional[str], field_name: str):
    """Read an enum member from request text, reporting bad values as a validation failure"""
    if value is None:
        return None
    try:
        return enum_cls(value.upper())
    except ValueError:
        choices = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"{field_name} must be one of {choices}, got {value!r}")
