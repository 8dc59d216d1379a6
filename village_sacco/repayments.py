"""
Repayment Ledger Module

Materialises a disbursed loan's repayment schedule and applies borrower
payments against it: principal/interest split, balance update and
next-due-date rollover. Every method that writes is meant to run inside the
caller's atomic unit so the schedule entry, the journal entry and the loan
balance move together.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
import uuid

from .amortization import LoanQuote, build_schedule, split_installment, add_months
from .errors import InvalidStateTransition, ValidationError
from .money import ZERO, round_money, positive_amount, format_amount
from .storage import StorageInterface, StorageRecord, parse_datetime, parse_date
from .journal import TransactionJournal, TransactionType, Transaction
from .audit import AuditTrail, AuditEventType
from .logging_config import get_logger, log_action


class RepaymentStatus(Enum):
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"


@dataclass
class RepaymentScheduleEntry(StorageRecord):
    """One installment of a disbursed loan"""
    loan_id: str
    sequence: int
    due_date: date
    amount: Decimal
    principal_portion: Decimal
    interest_portion: Decimal
    amount_paid: Decimal = ZERO
    principal_paid: Decimal = ZERO
    status: RepaymentStatus = RepaymentStatus.PENDING
    paid_date: Optional[datetime] = None
    linked_transaction_id: Optional[str] = None

    @property
    def amount_due(self) -> Decimal:
        return self.amount - self.amount_paid

    @property
    def is_outstanding(self) -> bool:
        return self.status != RepaymentStatus.PAID

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RepaymentScheduleEntry':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            loan_id=data['loan_id'],
            sequence=data['sequence'],
            due_date=parse_date(data['due_date']),
            amount=Decimal(data['amount']),
            principal_portion=Decimal(data['principal_portion']),
            interest_portion=Decimal(data['interest_portion']),
            amount_paid=Decimal(data.get('amount_paid', '0')),
            principal_paid=Decimal(data.get('principal_paid', '0')),
            status=RepaymentStatus(data['status']),
            paid_date=parse_datetime(data.get('paid_date')),
            linked_transaction_id=data.get('linked_transaction_id')
        )


@dataclass(frozen=True)
class PaymentResult:
    """Outcome of applying one payment to a loan"""
    loan_id: str
    transaction_id: str
    reference: str
    entry_id: str
    applied: Decimal
    unapplied: Decimal
    principal_credited: Decimal
    interest_credited: Decimal
    remaining_balance: Decimal
    next_payment_due: Optional[date]
    loan_status: str
    replayed: bool = False

    @property
    def paid_off(self) -> bool:
        return self.remaining_balance == ZERO


class RepaymentLedger:
    """
    Schedule and payment application for disbursed loans

    The ledger updates the loan's ``remaining_balance`` and
    ``next_payment_due`` in place; persisting the loan and moving it to
    COMPLETED is left to the loan manager that owns the state machine.
    """

    def __init__(self, storage: StorageInterface, journal: TransactionJournal, audit_trail: AuditTrail):
        self.storage = storage
        self.journal = journal
        self.audit_trail = audit_trail
        self.table_name = "repayment_schedule_entries"
        self.logger = get_logger("sacco.repayments")

    def generate_schedule(self, loan, disbursed_at: datetime) -> List[RepaymentScheduleEntry]:
        """
        Materialise the full schedule of a loan being disbursed

        Due dates fall on the disbursement date plus 1..N months.

        Raises:
            InvalidStateTransition: If the loan already has a schedule
        """
        if self.get_schedule(loan.id):
            raise InvalidStateTransition(f"Loan {loan.id} already has a repayment schedule")

        quote = LoanQuote(
            principal=loan.principal,
            annual_interest_rate=loan.annual_interest_rate,
            term_months=loan.term_months,
            monthly_payment=loan.monthly_payment,
            total_repayment=loan.total_repayment,
            total_interest=loan.total_repayment - loan.principal
        )

        entries = []
        for installment in build_schedule(quote, disbursed_at.date()):
            entry = RepaymentScheduleEntry(
                id=str(uuid.uuid4()),
                created_at=disbursed_at,
                updated_at=disbursed_at,
                loan_id=loan.id,
                sequence=installment.sequence,
                due_date=installment.due_date,
                amount=installment.amount,
                principal_portion=installment.principal_portion,
                interest_portion=installment.interest_portion
            )
            self._save_entry(entry)
            entries.append(entry)

        self.audit_trail.log_event(
            event_type=AuditEventType.REPAYMENT_SCHEDULE_GENERATED,
            entity_type="loan",
            entity_id=loan.id,
            metadata={
                "installments": len(entries),
                "first_due_date": entries[0].due_date.isoformat(),
                "last_due_date": entries[-1].due_date.isoformat(),
                "total_scheduled": sum((e.amount for e in entries), ZERO)
            }
        )
        return entries

    def apply_payment(
        self,
        loan,
        amount,
        idempotency_key: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> PaymentResult:
        """
        Apply a borrower payment to the loan's current installment

        Args:
            loan: Disbursed loan with an outstanding balance
            amount: Amount paid (> 0)
            idempotency_key: Caller supplied key guarding against double submission
            now: Payment timestamp

        Returns:
            PaymentResult. Any excess over what the current installment still
            owes is reported as ``unapplied`` and not taken.

        Raises:
            InvalidAmount: If the amount is not positive
            InvalidStateTransition: If nothing is owed on the loan
        """
        amount = positive_amount(amount)
        now = now or datetime.now(timezone.utc)

        if idempotency_key:
            replay = self.find_payment(idempotency_key)
            if replay:
                return replay

        if loan.remaining_balance <= ZERO:
            raise InvalidStateTransition(f"Loan {loan.id} has no outstanding balance")

        entry = self.current_entry(loan.id)
        if entry is None:
            entry = self._fallback_entry(loan, now)

        applied = min(amount, entry.amount_due)
        unapplied = amount - applied
        entry.amount_paid = entry.amount_paid + applied

        if entry.amount_paid >= entry.amount:
            principal_target = entry.principal_portion
            entry.status = RepaymentStatus.PAID
            entry.paid_date = now
        else:
            principal_target = round_money(entry.principal_portion * entry.amount_paid / entry.amount)
            entry.status = RepaymentStatus.PARTIAL
        principal_credited = principal_target - entry.principal_paid
        interest_credited = applied - principal_credited
        entry.principal_paid = principal_target

        loan.remaining_balance = max(ZERO, loan.remaining_balance - principal_credited)
        paid_off = loan.remaining_balance == ZERO
        if paid_off:
            loan.next_payment_due = None
        else:
            loan.next_payment_due = self._next_due_date(loan.id, entry)

        transaction = self.journal.record(
            owner_id=loan.borrower_id,
            transaction_type=TransactionType.LOAN_REPAYMENT,
            amount=applied,
            description=f"Loan repayment - installment {entry.sequence}",
            loan_id=loan.id,
            idempotency_key=idempotency_key,
            metadata={
                "entry_id": entry.id,
                "sequence": entry.sequence,
                "principal_credited": principal_credited,
                "interest_credited": interest_credited,
                "unapplied": unapplied,
                "remaining_balance": loan.remaining_balance,
                "next_payment_due": loan.next_payment_due,
                "paid_off": paid_off
            },
            now=now
        )

        entry.linked_transaction_id = transaction.id
        entry.updated_at = now
        self._save_entry(entry)

        log_action(
            self.logger, "info", f"Payment applied to loan {loan.id}",
            user_id=loan.borrower_id, action="apply_payment", resource=f"loan:{loan.id}",
            extra={
                "applied": format_amount(applied),
                "unapplied": format_amount(unapplied),
                "sequence": entry.sequence,
                "entry_status": entry.status.value,
                "remaining_balance": format_amount(loan.remaining_balance)
            }
        )

        return PaymentResult(
            loan_id=loan.id,
            transaction_id=transaction.id,
            reference=transaction.reference,
            entry_id=entry.id,
            applied=applied,
            unapplied=unapplied,
            principal_credited=principal_credited,
            interest_credited=interest_credited,
            remaining_balance=loan.remaining_balance,
            next_payment_due=loan.next_payment_due,
            loan_status="COMPLETED" if paid_off else loan.status.value
        )

    def find_payment(self, idempotency_key: str) -> Optional[PaymentResult]:
        """
        Rebuild the result of a payment already recorded under this key

        Raises:
            ValidationError: If the key was used for a different kind of movement
        """
        transaction = self.journal.find_by_idempotency_key(idempotency_key)
        if transaction is None:
            return None
        if transaction.transaction_type != TransactionType.LOAN_REPAYMENT:
            raise ValidationError(
                f"Idempotency key {idempotency_key} was already used for a {transaction.transaction_type.value}"
            )
        return self._result_from_transaction(transaction)

    def get_schedule(self, loan_id: str) -> List[RepaymentScheduleEntry]:
        """Schedule of a loan in due-date order"""
        entries = [
            RepaymentScheduleEntry.from_dict(data)
            for data in self.storage.find(self.table_name, {"loan_id": loan_id})
        ]
        entries.sort(key=lambda e: (e.due_date, e.sequence))
        return entries

    def current_entry(self, loan_id: str) -> Optional[RepaymentScheduleEntry]:
        """Earliest installment not yet fully paid"""
        for entry in self.get_schedule(loan_id):
            if entry.is_outstanding:
                return entry
        return None

    def reconstruct_remaining_balance(self, loan) -> Decimal:
        """Outstanding principal recomputed from the schedule alone"""
        principal_repaid = sum((entry.principal_paid for entry in self.get_schedule(loan.id)), ZERO)
        return max(ZERO, loan.principal - principal_repaid)

    def _fallback_entry(self, loan, now: datetime) -> RepaymentScheduleEntry:
        """
        Create an installment on the fly for a loan whose schedule ran out
        while a balance remains
        """
        interest, principal = split_installment(
            loan.remaining_balance, loan.annual_interest_rate, loan.monthly_payment
        )
        if principal <= ZERO:
            principal = loan.remaining_balance
        schedule = self.get_schedule(loan.id)
        entry = RepaymentScheduleEntry(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            loan_id=loan.id,
            sequence=(schedule[-1].sequence + 1) if schedule else 1,
            due_date=loan.next_payment_due or now.date(),
            amount=principal + interest,
            principal_portion=principal,
            interest_portion=interest
        )
        self._save_entry(entry)

        log_action(
            self.logger, "warning", f"Created unscheduled installment for loan {loan.id}",
            user_id=loan.borrower_id, action="fallback_installment", resource=f"loan:{loan.id}",
            extra={"sequence": entry.sequence, "amount": format_amount(entry.amount)}
        )
        return entry

    def _next_due_date(self, loan_id: str, settled: RepaymentScheduleEntry) -> date:
        if settled.is_outstanding:
            return settled.due_date
        for entry in self.get_schedule(loan_id):
            if entry.id != settled.id and entry.is_outstanding:
                return entry.due_date
        return add_months(settled.due_date, 1)

    def _result_from_transaction(self, transaction: Transaction) -> PaymentResult:
        metadata = transaction.metadata
        paid_off = bool(metadata.get("paid_off"))
        return PaymentResult(
            loan_id=transaction.loan_id,
            transaction_id=transaction.id,
            reference=transaction.reference,
            entry_id=metadata["entry_id"],
            applied=transaction.amount,
            unapplied=Decimal(metadata["unapplied"]),
            principal_credited=Decimal(metadata["principal_credited"]),
            interest_credited=Decimal(metadata["interest_credited"]),
            remaining_balance=Decimal(metadata["remaining_balance"]),
            next_payment_due=parse_date(metadata.get("next_payment_due")),
            loan_status="COMPLETED" if paid_off else "DISBURSED",
            replayed=True
        )

    def _save_entry(self, entry: RepaymentScheduleEntry) -> None:
        self.storage.save(self.table_name, entry.id, entry.to_dict())
