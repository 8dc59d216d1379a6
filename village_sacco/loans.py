"""
Loan Module

Handles loan application intake, the approve/reject/disburse lifecycle,
repayment schedule materialisation on disbursement and borrower payments.
All status checks go through a single transition table.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Any
from enum import Enum
import uuid

from .amortization import LoanQuote, compute_schedule
from .errors import (
    DuplicatePendingApplication, InvalidStateTransition, NotFound, PermissionDenied, ValidationError
)
from .money import ZERO, to_decimal, positive_amount, validate_rate, format_amount
from .storage import StorageInterface, StorageRecord, parse_datetime, parse_date, parse_decimal
from .journal import TransactionJournal, TransactionType
from .repayments import RepaymentLedger, RepaymentScheduleEntry, PaymentResult
from .members import UserDirectory, require_admin, require_approved_member, require_member
from .locks import EntityLockRegistry
from .chain import ChainLedger, NullChainLedger
from .audit import AuditTrail, AuditEventType
from .logging_config import get_logger, log_action


class LoanStatus(Enum):
    """Loan lifecycle states"""
    PENDING = "PENDING"        # Application submitted, awaiting a decision
    APPROVED = "APPROVED"      # Approved, funds not yet released
    REJECTED = "REJECTED"      # Terminal
    DISBURSED = "DISBURSED"    # Funds released, schedule running
    COMPLETED = "COMPLETED"    # Fully repaid, terminal

    def can_transition_to(self, target: 'LoanStatus') -> bool:
        return target in LOAN_TRANSITIONS[self]


LOAN_TRANSITIONS = {
    LoanStatus.PENDING: frozenset({LoanStatus.APPROVED, LoanStatus.REJECTED}),
    LoanStatus.APPROVED: frozenset({LoanStatus.DISBURSED}),
    LoanStatus.DISBURSED: frozenset({LoanStatus.COMPLETED}),
    LoanStatus.REJECTED: frozenset(),
    LoanStatus.COMPLETED: frozenset(),
}


class CollateralType(Enum):
    LAND = "LAND"
    VEHICLE = "VEHICLE"
    LIVESTOCK = "LIVESTOCK"
    EQUIPMENT = "EQUIPMENT"
    SAVINGS = "SAVINGS"
    GUARANTOR = "GUARANTOR"
    OTHER = "OTHER"


@dataclass
class LoanApplication(StorageRecord):
    """A loan from application through repayment"""
    borrower_id: str
    principal: Decimal
    purpose: str
    term_months: int
    annual_interest_rate: Decimal
    monthly_payment: Decimal
    total_repayment: Decimal
    total_interest: Decimal
    remaining_balance: Decimal
    status: LoanStatus
    applied_at: datetime
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None      # Deciding admin, also for rejections
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    disbursed_at: Optional[datetime] = None
    next_payment_due: Optional[date] = None
    completed_at: Optional[datetime] = None
    collateral_type: Optional[CollateralType] = None
    collateral_value: Optional[Decimal] = None
    collateral_description: Optional[str] = None

    def __post_init__(self):
        if self.remaining_balance < ZERO or self.remaining_balance > self.principal:
            raise ValidationError(
                f"Remaining balance {self.remaining_balance} outside 0..{self.principal}"
            )

    @property
    def is_active(self) -> bool:
        return self.status in (LoanStatus.APPROVED, LoanStatus.DISBURSED)

    @property
    def amount_repaid(self) -> Decimal:
        return self.principal - self.remaining_balance

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LoanApplication':
        collateral_type = data.get('collateral_type')
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            borrower_id=data['borrower_id'],
            principal=Decimal(data['principal']),
            purpose=data['purpose'],
            term_months=data['term_months'],
            annual_interest_rate=Decimal(data['annual_interest_rate']),
            monthly_payment=Decimal(data['monthly_payment']),
            total_repayment=Decimal(data['total_repayment']),
            total_interest=Decimal(data['total_interest']),
            remaining_balance=Decimal(data['remaining_balance']),
            status=LoanStatus(data['status']),
            applied_at=parse_datetime(data['applied_at']),
            approved_at=parse_datetime(data.get('approved_at')),
            approved_by=data.get('approved_by'),
            rejected_at=parse_datetime(data.get('rejected_at')),
            rejection_reason=data.get('rejection_reason'),
            disbursed_at=parse_datetime(data.get('disbursed_at')),
            next_payment_due=parse_date(data.get('next_payment_due')),
            completed_at=parse_datetime(data.get('completed_at')),
            collateral_type=CollateralType(collateral_type) if collateral_type else None,
            collateral_value=parse_decimal(data.get('collateral_value')),
            collateral_description=data.get('collateral_description')
        )


class LoanManager:
    """
    Manages loan applications and their lifecycle
    """

    def __init__(
        self,
        storage: StorageInterface,
        journal: TransactionJournal,
        ledger: RepaymentLedger,
        audit_trail: AuditTrail,
        users: UserDirectory,
        locks: Optional[EntityLockRegistry] = None,
        chain: Optional[ChainLedger] = None,
        default_interest_rate: Decimal = Decimal('0.15')
    ):
        self.storage = storage
        self.journal = journal
        self.ledger = ledger
        self.audit_trail = audit_trail
        self.users = users
        self.locks = locks or EntityLockRegistry()
        self.chain = chain or NullChainLedger()
        self.default_interest_rate = to_decimal(default_interest_rate)
        self.table_name = "loans"
        self.logger = get_logger("sacco.loans")

    def quote(self, principal, term_months: int, annual_interest_rate=None) -> LoanQuote:
        """Preview the repayment terms of a prospective loan"""
        rate = self.default_interest_rate if annual_interest_rate is None else annual_interest_rate
        return compute_schedule(principal, rate, term_months)

    def submit_application(
        self,
        borrower_id: str,
        principal,
        purpose: str,
        term_months: int,
        annual_interest_rate=None,
        collateral_type: Optional[CollateralType] = None,
        collateral_value=None,
        collateral_description: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> LoanApplication:
        """
        Submit a loan application

        Args:
            borrower_id: Applying member
            principal: Amount requested (> 0)
            purpose: What the money is for
            term_months: Repayment term in months (> 0)
            annual_interest_rate: Annual rate, defaults to the SACCO lending rate
            collateral_type: Optional pledged collateral
            collateral_value: Declared value of the collateral
            collateral_description: Free text description of the collateral
            now: Timestamp override

        Returns:
            The PENDING LoanApplication

        Raises:
            PermissionDenied: If the borrower is not an approved member
            ValidationError: On bad input or a non-amortizing loan
            DuplicatePendingApplication: If the borrower already has a PENDING application
        """
        require_approved_member(self.users, borrower_id)

        if not purpose or not purpose.strip():
            raise ValidationError("Loan purpose is required")
        rate = self.default_interest_rate if annual_interest_rate is None else validate_rate(annual_interest_rate)
        quote = compute_schedule(principal, rate, term_months)

        if collateral_value is not None:
            collateral_value = to_decimal(collateral_value)
            if collateral_value < ZERO:
                raise ValidationError("Collateral value cannot be negative")

        now = now or datetime.now(timezone.utc)

        with self.locks.hold("borrower", borrower_id):
            with self.storage.atomic():
                pending = self.storage.find(self.table_name, {
                    "borrower_id": borrower_id,
                    "status": LoanStatus.PENDING.value
                })
                if pending:
                    raise DuplicatePendingApplication(
                        f"Borrower {borrower_id} already has a pending loan application",
                        details={"loan_id": pending[0]['id']}
                    )

                loan = LoanApplication(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    borrower_id=borrower_id,
                    principal=quote.principal,
                    purpose=purpose.strip(),
                    term_months=quote.term_months,
                    annual_interest_rate=quote.annual_interest_rate,
                    monthly_payment=quote.monthly_payment,
                    total_repayment=quote.total_repayment,
                    total_interest=quote.total_interest,
                    remaining_balance=quote.principal,
                    status=LoanStatus.PENDING,
                    applied_at=now,
                    collateral_type=collateral_type,
                    collateral_value=collateral_value,
                    collateral_description=collateral_description
                )
                self._save_loan(loan)

                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_APPLIED,
                    entity_type="loan",
                    entity_id=loan.id,
                    metadata={
                        "principal": loan.principal,
                        "term_months": loan.term_months,
                        "annual_interest_rate": loan.annual_interest_rate,
                        "monthly_payment": loan.monthly_payment
                    },
                    user_id=borrower_id
                )

        log_action(
            self.logger, "info", "Loan application submitted",
            user_id=borrower_id, action="submit_application", resource=f"loan:{loan.id}",
            extra={
                "principal": format_amount(loan.principal),
                "term_months": loan.term_months,
                "monthly_payment": format_amount(loan.monthly_payment)
            }
        )
        self.chain.request_loan(borrower_id, loan.principal, loan.term_months, loan.purpose)
        return loan

    def approve(self, loan_id: str, admin_id: str, now: Optional[datetime] = None) -> LoanApplication:
        """Approve a PENDING application"""
        require_admin(self.users, admin_id)
        now = now or datetime.now(timezone.utc)

        with self.locks.hold("loan", loan_id):
            with self.storage.atomic():
                loan = self._require_loan(loan_id)
                self._transition(loan, LoanStatus.APPROVED, now)
                loan.approved_at = now
                loan.approved_by = admin_id
                self._save_loan(loan)

                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_APPROVED,
                    entity_type="loan",
                    entity_id=loan.id,
                    metadata={"borrower_id": loan.borrower_id, "principal": loan.principal},
                    user_id=admin_id
                )

        log_action(
            self.logger, "info", "Loan approved",
            user_id=admin_id, action="approve_loan", resource=f"loan:{loan.id}"
        )
        return loan

    def reject(self, loan_id: str, admin_id: str, reason: Optional[str] = None,
               now: Optional[datetime] = None) -> LoanApplication:
        """Reject a PENDING application"""
        require_admin(self.users, admin_id)
        now = now or datetime.now(timezone.utc)

        with self.locks.hold("loan", loan_id):
            with self.storage.atomic():
                loan = self._require_loan(loan_id)
                self._transition(loan, LoanStatus.REJECTED, now)
                loan.rejected_at = now
                loan.approved_by = admin_id
                loan.rejection_reason = reason
                self._save_loan(loan)

                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_REJECTED,
                    entity_type="loan",
                    entity_id=loan.id,
                    metadata={"borrower_id": loan.borrower_id, "reason": reason},
                    user_id=admin_id
                )

        log_action(
            self.logger, "info", "Loan rejected",
            user_id=admin_id, action="reject_loan", resource=f"loan:{loan.id}",
            extra={"reason": reason}
        )
        return loan

    def disburse(self, loan_id: str, admin_id: str, now: Optional[datetime] = None) -> LoanApplication:
        """
        Release the funds of an APPROVED loan

        The disbursement transaction, the full repayment schedule and the
        status change commit together or not at all.

        Returns:
            The DISBURSED loan with ``next_payment_due`` set to the first installment
        """
        require_admin(self.users, admin_id)
        now = now or datetime.now(timezone.utc)

        with self.locks.hold("loan", loan_id):
            with self.storage.atomic():
                loan = self._require_loan(loan_id)
                self._transition(loan, LoanStatus.DISBURSED, now)

                disbursement = self.journal.record(
                    owner_id=loan.borrower_id,
                    transaction_type=TransactionType.LOAN_DISBURSEMENT,
                    amount=loan.principal,
                    description=f"Loan disbursement - {loan.purpose}",
                    loan_id=loan.id,
                    metadata={"approved_by": loan.approved_by, "disbursed_by": admin_id},
                    now=now
                )
                schedule = self.ledger.generate_schedule(loan, now)

                loan.disbursed_at = now
                loan.next_payment_due = schedule[0].due_date
                self._save_loan(loan)

                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_DISBURSED,
                    entity_type="loan",
                    entity_id=loan.id,
                    metadata={
                        "transaction_id": disbursement.id,
                        "amount": loan.principal,
                        "installments": len(schedule),
                        "next_payment_due": loan.next_payment_due.isoformat()
                    },
                    user_id=admin_id
                )

        log_action(
            self.logger, "info", "Loan disbursed",
            user_id=admin_id, action="disburse_loan", resource=f"loan:{loan.id}",
            extra={
                "amount": format_amount(loan.principal),
                "reference": disbursement.reference,
                "installments": len(schedule)
            }
        )
        return loan

    def record_payment(
        self,
        loan_id: str,
        amount,
        idempotency_key: Optional[str] = None,
        payer_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> PaymentResult:
        """
        Apply a borrower payment

        Args:
            loan_id: Loan being repaid
            amount: Amount paid (> 0)
            idempotency_key: Repeating a key returns the first outcome unchanged
            payer_id: When given, must be the borrower or an admin
            now: Payment timestamp

        Returns:
            PaymentResult of the application

        Raises:
            NotFound: If the loan does not exist
            InvalidStateTransition: If the loan is not DISBURSED with a balance owing
            InvalidAmount: If the amount is not positive
        """
        amount = positive_amount(amount)
        now = now or datetime.now(timezone.utc)

        with self.locks.hold("loan", loan_id):
            with self.storage.atomic():
                loan = self._require_loan(loan_id)
                if payer_id is not None and payer_id != loan.borrower_id:
                    if not require_member(self.users, payer_id).is_admin:
                        raise PermissionDenied(f"User {payer_id} cannot repay loan {loan_id}")

                if idempotency_key:
                    replay = self.ledger.find_payment(idempotency_key)
                    if replay:
                        if replay.loan_id != loan_id:
                            raise ValidationError(
                                f"Idempotency key {idempotency_key} belongs to another loan"
                            )
                        return replay

                if loan.status != LoanStatus.DISBURSED:
                    raise InvalidStateTransition(
                        f"Payments require a DISBURSED loan, loan {loan_id} is {loan.status.value}"
                    )
                if loan.remaining_balance <= ZERO:
                    raise InvalidStateTransition(f"Loan {loan_id} has no outstanding balance")

                result = self.ledger.apply_payment(loan, amount, idempotency_key=idempotency_key, now=now)

                if result.paid_off:
                    self._transition(loan, LoanStatus.COMPLETED, now)
                    loan.completed_at = now
                loan.updated_at = now
                self._save_loan(loan)

                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_PAYMENT_MADE,
                    entity_type="loan",
                    entity_id=loan.id,
                    metadata={
                        "transaction_id": result.transaction_id,
                        "applied": result.applied,
                        "principal_credited": result.principal_credited,
                        "interest_credited": result.interest_credited,
                        "remaining_balance": result.remaining_balance
                    },
                    user_id=payer_id or loan.borrower_id
                )
                if result.paid_off:
                    self.audit_trail.log_event(
                        event_type=AuditEventType.LOAN_PAID_OFF,
                        entity_type="loan",
                        entity_id=loan.id,
                        metadata={"completed_at": now}
                    )

        if result.paid_off:
            log_action(
                self.logger, "info", "Loan fully repaid",
                user_id=loan.borrower_id, action="loan_paid_off", resource=f"loan:{loan.id}"
            )
        return replace(result, loan_status=loan.status.value)

    def get_loan(self, loan_id: str) -> Optional[LoanApplication]:
        data = self.storage.load(self.table_name, loan_id)
        if data:
            return LoanApplication.from_dict(data)
        return None

    def get_borrower_loans(self, borrower_id: str) -> List[LoanApplication]:
        """All loans of a member, newest application first"""
        loans = [
            LoanApplication.from_dict(data)
            for data in self.storage.find(self.table_name, {"borrower_id": borrower_id})
        ]
        loans.sort(key=lambda loan: loan.applied_at, reverse=True)
        return loans

    def get_active_loans(self, borrower_id: str) -> List[LoanApplication]:
        """Approved or disbursed loans of a member"""
        return [loan for loan in self.get_borrower_loans(borrower_id) if loan.is_active]

    def list_loans(self, status: Optional[LoanStatus] = None) -> List[LoanApplication]:
        """Every loan, optionally filtered by status, newest application first"""
        if status is None:
            records = self.storage.load_all(self.table_name)
        else:
            records = self.storage.find(self.table_name, {"status": status.value})
        loans = [LoanApplication.from_dict(data) for data in records]
        loans.sort(key=lambda loan: loan.applied_at, reverse=True)
        return loans

    def get_schedule(self, loan_id: str) -> List[RepaymentScheduleEntry]:
        self._require_loan(loan_id)
        return self.ledger.get_schedule(loan_id)

    def _require_loan(self, loan_id: str) -> LoanApplication:
        loan = self.get_loan(loan_id)
        if not loan:
            raise NotFound(f"Loan {loan_id} not found")
        return loan

    def _transition(self, loan: LoanApplication, target: LoanStatus, now: datetime) -> None:
        if not loan.status.can_transition_to(target):
            raise InvalidStateTransition(
                f"Cannot move loan {loan.id} from {loan.status.value} to {target.value}",
                details={"from": loan.status.value, "to": target.value}
            )
        loan.status = target
        loan.updated_at = now

    def _save_loan(self, loan: LoanApplication) -> None:
        self.storage.save(self.table_name, loan.id, loan.to_dict())
