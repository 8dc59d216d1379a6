"""
Transaction Journal Module

Append-only record of every money movement: deposits, withdrawals, interest
payments, loan disbursements and loan repayments. Amounts are always
positive; direction is carried by the transaction type. References are
unique so any entry can be correlated from a receipt or statement line.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any, Iterable
from enum import Enum
import uuid

from .errors import InvalidStateTransition, NotFound, ValidationError
from .money import positive_amount, format_amount
from .storage import StorageInterface, StorageRecord, parse_datetime
from .audit import AuditTrail, AuditEventType
from .logging_config import get_logger, log_action


class TransactionType(Enum):
    """Kinds of money movement"""
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    INTEREST_PAYMENT = "INTEREST_PAYMENT"
    LOAN_DISBURSEMENT = "LOAN_DISBURSEMENT"
    LOAN_REPAYMENT = "LOAN_REPAYMENT"


class TransactionStatus(Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


REFERENCE_PREFIXES = {
    TransactionType.DEPOSIT: "DEP",
    TransactionType.WITHDRAWAL: "WTH",
    TransactionType.INTEREST_PAYMENT: "INT",
    TransactionType.LOAN_DISBURSEMENT: "DISB",
    TransactionType.LOAN_REPAYMENT: "RPMT",
}


@dataclass
class Transaction(StorageRecord):
    """
    Journal entry for a single money movement
    """
    owner_id: str
    transaction_type: TransactionType
    amount: Decimal
    description: str
    reference: str
    account_id: Optional[str] = None   # Savings account moved
    loan_id: Optional[str] = None      # Loan disbursed or repaid
    status: TransactionStatus = TransactionStatus.COMPLETED
    idempotency_key: Optional[str] = None
    processed_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.account_id and not self.loan_id:
            raise ValidationError("Transaction must reference a savings account or a loan")
        if self.amount <= Decimal('0'):
            raise ValidationError("Transaction amount must be positive")

    @property
    def is_completed(self) -> bool:
        return self.status == TransactionStatus.COMPLETED

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            owner_id=data['owner_id'],
            transaction_type=TransactionType(data['transaction_type']),
            amount=Decimal(data['amount']),
            description=data['description'],
            reference=data['reference'],
            account_id=data.get('account_id'),
            loan_id=data.get('loan_id'),
            status=TransactionStatus(data['status']),
            idempotency_key=data.get('idempotency_key'),
            processed_at=parse_datetime(data.get('processed_at')),
            metadata=data.get('metadata') or {}
        )


class TransactionJournal:
    """
    Writes and queries journal entries. There is no update or delete path
    other than finalising a PENDING entry.
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "transactions"
        self.logger = get_logger("sacco.journal")

    def record(
        self,
        owner_id: str,
        transaction_type: TransactionType,
        amount: Decimal,
        description: str,
        account_id: Optional[str] = None,
        loan_id: Optional[str] = None,
        reference: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        status: TransactionStatus = TransactionStatus.COMPLETED,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None
    ) -> Transaction:
        """
        Append a journal entry

        Args:
            owner_id: Member whose money moved
            transaction_type: Kind of movement
            amount: Positive amount
            description: Human readable description
            account_id: Savings account involved, if any
            loan_id: Loan involved, if any
            reference: Unique reference (generated from the type prefix if omitted)
            idempotency_key: Caller supplied key; an existing entry with the same key is returned as is
            status: COMPLETED for settled movements, PENDING to finalise later
            metadata: Extra structured data (days accrued, schedule entry, ...)
            now: Timestamp override

        Returns:
            The stored Transaction

        Raises:
            ValidationError: On a non-positive amount or a reference already in use
        """
        amount = positive_amount(amount)

        if idempotency_key:
            existing = self.find_by_idempotency_key(idempotency_key)
            if existing:
                return existing

        now = now or datetime.now(timezone.utc)
        transaction_id = str(uuid.uuid4())

        if not reference:
            prefix = REFERENCE_PREFIXES[transaction_type]
            reference = f"{prefix}-{transaction_id.replace('-', '')[:12].upper()}"
        elif self.find_by_reference(reference):
            raise ValidationError(f"Transaction reference {reference} already exists")

        transaction = Transaction(
            id=transaction_id,
            created_at=now,
            updated_at=now,
            owner_id=owner_id,
            transaction_type=transaction_type,
            amount=amount,
            description=description,
            reference=reference,
            account_id=account_id,
            loan_id=loan_id,
            status=status,
            idempotency_key=idempotency_key,
            processed_at=now if status == TransactionStatus.COMPLETED else None,
            metadata=metadata or {}
        )
        self.storage.save(self.table_name, transaction.id, transaction.to_dict())

        log_action(
            self.logger, "info", f"Transaction recorded: {transaction_type.value}",
            user_id=owner_id, action="record_transaction", resource=f"transaction:{transaction.id}",
            extra={
                "amount": format_amount(amount),
                "reference": reference,
                "account_id": account_id,
                "loan_id": loan_id,
                "status": status.value
            }
        )
        self.audit_trail.log_event(
            event_type=AuditEventType.TRANSACTION_RECORDED,
            entity_type="transaction",
            entity_id=transaction.id,
            metadata={
                "transaction_type": transaction_type.value,
                "amount": amount,
                "reference": reference,
                "account_id": account_id,
                "loan_id": loan_id
            },
            user_id=owner_id
        )
        return transaction

    def finalize(self, transaction_id: str, status: TransactionStatus,
                 now: Optional[datetime] = None) -> Transaction:
        """Settle a PENDING entry as COMPLETED or FAILED"""
        transaction = self.get_transaction(transaction_id)
        if not transaction:
            raise NotFound(f"Transaction {transaction_id} not found")
        if transaction.status != TransactionStatus.PENDING:
            raise InvalidStateTransition(
                f"Transaction {transaction_id} is already {transaction.status.value}"
            )
        if status == TransactionStatus.PENDING:
            raise ValidationError("A transaction can only be finalised as COMPLETED or FAILED")

        now = now or datetime.now(timezone.utc)
        transaction.status = status
        transaction.processed_at = now
        transaction.updated_at = now
        self.storage.save(self.table_name, transaction.id, transaction.to_dict())

        self.audit_trail.log_event(
            event_type=AuditEventType.TRANSACTION_FINALIZED,
            entity_type="transaction",
            entity_id=transaction.id,
            metadata={"status": status.value}
        )
        return transaction

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        data = self.storage.load(self.table_name, transaction_id)
        if data:
            return Transaction.from_dict(data)
        return None

    def find_by_reference(self, reference: str) -> Optional[Transaction]:
        found = self.storage.find(self.table_name, {"reference": reference})
        if found:
            return Transaction.from_dict(found[0])
        return None

    def find_by_idempotency_key(self, idempotency_key: str) -> Optional[Transaction]:
        found = self.storage.find(self.table_name, {"idempotency_key": idempotency_key})
        if found:
            return Transaction.from_dict(found[0])
        return None

    def list_for_owner(
        self,
        owner_id: str,
        transaction_types: Optional[Iterable[TransactionType]] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Transaction]:
        """Member's history, newest first"""
        transactions = self._find({"owner_id": owner_id})
        if transaction_types is not None:
            wanted = set(transaction_types)
            transactions = [t for t in transactions if t.transaction_type in wanted]
        transactions.sort(key=lambda t: t.created_at, reverse=True)
        return transactions[offset:offset + limit]

    def list_for_account(self, account_id: str) -> List[Transaction]:
        """Entries touching a savings account, oldest first"""
        transactions = self._find({"account_id": account_id})
        transactions.sort(key=lambda t: t.created_at)
        return transactions

    def list_for_loan(self, loan_id: str) -> List[Transaction]:
        """Disbursement and repayments of a loan, oldest first"""
        transactions = self._find({"loan_id": loan_id})
        transactions.sort(key=lambda t: t.created_at)
        return transactions

    def _find(self, filters: Dict[str, Any]) -> List[Transaction]:
        return [Transaction.from_dict(data) for data in self.storage.find(self.table_name, filters)]
