"""
Savings Account Module

Member savings accounts with deposit and withdrawal. Each movement writes a
journal entry and updates the balance in one atomic unit; accounts are
soft-deactivated, never deleted.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum
import uuid

from .errors import InsufficientFunds, InvalidStateTransition, NotFound, ValidationError
from .money import ZERO, positive_amount, validate_rate, format_amount
from .storage import StorageInterface, StorageRecord, parse_datetime
from .journal import TransactionJournal, TransactionType, Transaction
from .members import UserDirectory, require_approved_member
from .locks import EntityLockRegistry
from .chain import ChainLedger, NullChainLedger
from .audit import AuditTrail, AuditEventType
from .logging_config import get_logger, log_action


class SavingsAccountType(Enum):
    REGULAR = "REGULAR"
    FIXED_DEPOSIT = "FIXED_DEPOSIT"


@dataclass
class SavingsAccount(StorageRecord):
    """Interest-bearing savings account of one member"""
    owner_id: str
    account_type: SavingsAccountType
    balance: Decimal
    annual_interest_rate: Decimal
    total_interest_earned: Decimal
    last_interest_calculated: datetime
    is_active: bool = True

    def __post_init__(self):
        if self.balance < ZERO:
            raise ValidationError(f"Savings balance cannot be negative, got {self.balance}")
        if self.total_interest_earned < ZERO:
            raise ValidationError("Total interest earned cannot be negative")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SavingsAccount':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            owner_id=data['owner_id'],
            account_type=SavingsAccountType(data['account_type']),
            balance=Decimal(data['balance']),
            annual_interest_rate=Decimal(data['annual_interest_rate']),
            total_interest_earned=Decimal(data['total_interest_earned']),
            last_interest_calculated=parse_datetime(data['last_interest_calculated']),
            is_active=data.get('is_active', True)
        )


class SavingsManager:
    """
    Opens savings accounts and moves money in and out of them
    """

    def __init__(
        self,
        storage: StorageInterface,
        journal: TransactionJournal,
        audit_trail: AuditTrail,
        users: UserDirectory,
        locks: Optional[EntityLockRegistry] = None,
        chain: Optional[ChainLedger] = None,
        default_rates: Optional[Dict[SavingsAccountType, Decimal]] = None
    ):
        self.storage = storage
        self.journal = journal
        self.audit_trail = audit_trail
        self.users = users
        self.locks = locks or EntityLockRegistry()
        self.chain = chain or NullChainLedger()
        self.default_rates = default_rates or {
            SavingsAccountType.REGULAR: Decimal('0.05'),
            SavingsAccountType.FIXED_DEPOSIT: Decimal('0.08'),
        }
        self.table_name = "savings_accounts"
        self.logger = get_logger("sacco.savings")

    def open_account(
        self,
        owner_id: str,
        account_type: SavingsAccountType = SavingsAccountType.REGULAR,
        annual_interest_rate=None,
        now: Optional[datetime] = None
    ) -> SavingsAccount:
        """
        Open a savings account for an approved member

        Interest accrues from the opening time.
        """
        require_approved_member(self.users, owner_id)
        if annual_interest_rate is None:
            rate = self.default_rates[account_type]
        else:
            rate = validate_rate(annual_interest_rate)
        now = now or datetime.now(timezone.utc)

        account = SavingsAccount(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            owner_id=owner_id,
            account_type=account_type,
            balance=ZERO,
            annual_interest_rate=rate,
            total_interest_earned=ZERO,
            last_interest_calculated=now
        )

        with self.storage.atomic():
            self._save_account(account)
            self.audit_trail.log_event(
                event_type=AuditEventType.SAVINGS_ACCOUNT_OPENED,
                entity_type="savings_account",
                entity_id=account.id,
                metadata={"account_type": account_type.value, "annual_interest_rate": rate},
                user_id=owner_id
            )

        log_action(
            self.logger, "info", "Savings account opened",
            user_id=owner_id, action="open_account", resource=f"savings_account:{account.id}",
            extra={"account_type": account_type.value, "annual_interest_rate": str(rate)}
        )
        return account

    def deposit(
        self,
        account_id: str,
        amount,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Transaction:
        """
        Credit an account

        Returns:
            The DEPOSIT journal entry; its metadata carries ``balance_after``.
            A repeated idempotency key returns the first entry unchanged.

        Raises:
            InvalidAmount: If the amount is not positive
            NotFound: If the account does not exist
            InvalidStateTransition: If the account is deactivated
        """
        return self._move(TransactionType.DEPOSIT, account_id, amount, description, idempotency_key, now)

    def withdraw(
        self,
        account_id: str,
        amount,
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Transaction:
        """
        Debit an account. The balance may reach exactly zero, never below.

        Raises:
            InsufficientFunds: If the amount exceeds the balance
        """
        return self._move(TransactionType.WITHDRAWAL, account_id, amount, description, idempotency_key, now)

    def deactivate_account(self, account_id: str, now: Optional[datetime] = None) -> SavingsAccount:
        now = now or datetime.now(timezone.utc)
        with self.locks.hold("savings_account", account_id):
            with self.storage.atomic():
                account = self.require_account(account_id)
                if not account.is_active:
                    raise InvalidStateTransition(f"Savings account {account_id} is already inactive")
                account.is_active = False
                account.updated_at = now
                self._save_account(account)
                self.audit_trail.log_event(
                    event_type=AuditEventType.SAVINGS_ACCOUNT_DEACTIVATED,
                    entity_type="savings_account",
                    entity_id=account.id,
                    metadata={"balance": account.balance}
                )
        return account

    def get_account(self, account_id: str) -> Optional[SavingsAccount]:
        data = self.storage.load(self.table_name, account_id)
        if data:
            return SavingsAccount.from_dict(data)
        return None

    def get_owner_accounts(self, owner_id: str) -> List[SavingsAccount]:
        accounts = [
            SavingsAccount.from_dict(data)
            for data in self.storage.find(self.table_name, {"owner_id": owner_id})
        ]
        accounts.sort(key=lambda a: a.created_at)
        return accounts

    def list_active_accounts(self) -> List[SavingsAccount]:
        return [
            SavingsAccount.from_dict(data)
            for data in self.storage.find(self.table_name, {"is_active": True})
        ]

    def get_account_transactions(self, account_id: str) -> List[Transaction]:
        self.require_account(account_id)
        return self.journal.list_for_account(account_id)

    def save_account(self, account: SavingsAccount) -> None:
        """Persist an account mutated by the interest job"""
        self._save_account(account)

    def _move(
        self,
        transaction_type: TransactionType,
        account_id: str,
        amount,
        description: Optional[str],
        idempotency_key: Optional[str],
        now: Optional[datetime]
    ) -> Transaction:
        amount = positive_amount(amount)
        now = now or datetime.now(timezone.utc)
        withdrawal = transaction_type == TransactionType.WITHDRAWAL

        with self.locks.hold("savings_account", account_id):
            with self.storage.atomic():
                account = self.require_account(account_id)

                if idempotency_key:
                    existing = self.journal.find_by_idempotency_key(idempotency_key)
                    if existing:
                        if existing.transaction_type != transaction_type or existing.account_id != account_id:
                            raise ValidationError(
                                f"Idempotency key {idempotency_key} was already used for another movement"
                            )
                        return existing

                if not account.is_active:
                    raise InvalidStateTransition(f"Savings account {account_id} is inactive")

                if withdrawal:
                    if amount > account.balance:
                        raise InsufficientFunds(
                            f"Withdrawal of {format_amount(amount)} exceeds balance {format_amount(account.balance)}",
                            details={"balance": str(account.balance), "requested": str(amount)}
                        )
                    account.balance = account.balance - amount
                else:
                    account.balance = account.balance + amount
                account.updated_at = now

                transaction = self.journal.record(
                    owner_id=account.owner_id,
                    transaction_type=transaction_type,
                    amount=amount,
                    description=description or ("Savings withdrawal" if withdrawal else "Savings deposit"),
                    account_id=account.id,
                    idempotency_key=idempotency_key,
                    metadata={"balance_after": account.balance},
                    now=now
                )
                self._save_account(account)

                self.audit_trail.log_event(
                    event_type=AuditEventType.WITHDRAWAL_POSTED if withdrawal else AuditEventType.DEPOSIT_POSTED,
                    entity_type="savings_account",
                    entity_id=account.id,
                    metadata={
                        "transaction_id": transaction.id,
                        "amount": amount,
                        "balance_after": account.balance
                    },
                    user_id=account.owner_id
                )

        log_action(
            self.logger, "info", f"Savings {transaction_type.value.lower()} posted",
            user_id=account.owner_id, action=transaction_type.value.lower(),
            resource=f"savings_account:{account.id}",
            extra={"amount": format_amount(amount), "balance": format_amount(account.balance)}
        )
        if withdrawal:
            self.chain.withdraw(account.owner_id, amount)
        else:
            self.chain.deposit(account.owner_id, amount)
        return transaction

    def require_account(self, account_id: str) -> SavingsAccount:
        account = self.get_account(account_id)
        if not account:
            raise NotFound(f"Savings account {account_id} not found")
        return account

    def _save_account(self, account: SavingsAccount) -> None:
        self.storage.save(self.table_name, account.id, account.to_dict())
