"""
Test suite for the transaction journal

References, idempotency keys, finalisation and history queries.
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone, timedelta

from village_sacco.storage import InMemoryStorage
from village_sacco.audit import AuditTrail, AuditEventType
from village_sacco.errors import InvalidAmount, InvalidStateTransition, NotFound, ValidationError
from village_sacco.journal import (
    TransactionJournal, Transaction, TransactionType, TransactionStatus
)


class TestTransactionJournal:
    """Test journal writes and queries"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.journal = TransactionJournal(self.storage, self.audit)

    def _deposit(self, amount="100.00", **kwargs):
        return self.journal.record(
            owner_id=kwargs.pop("owner_id", "member-1"),
            transaction_type=kwargs.pop("transaction_type", TransactionType.DEPOSIT),
            amount=amount,
            description="Savings deposit",
            account_id=kwargs.pop("account_id", "acct-1"),
            **kwargs
        )

    def test_record_generates_prefixed_reference(self):
        transaction = self._deposit()

        assert transaction.reference.startswith("DEP-")
        assert len(transaction.reference) == len("DEP-") + 12
        assert transaction.amount == Decimal('100.00')
        assert transaction.status == TransactionStatus.COMPLETED
        assert transaction.processed_at is not None

    def test_reference_prefix_per_type(self):
        prefixes = {
            TransactionType.WITHDRAWAL: "WTH-",
            TransactionType.INTEREST_PAYMENT: "INT-",
        }
        for transaction_type, prefix in prefixes.items():
            assert self._deposit(transaction_type=transaction_type).reference.startswith(prefix)

        disbursement = self.journal.record(
            owner_id="member-1", transaction_type=TransactionType.LOAN_DISBURSEMENT,
            amount="500", description="Loan disbursement", loan_id="loan-1"
        )
        assert disbursement.reference.startswith("DISB-")

    def test_references_are_unique(self):
        references = {self._deposit().reference for _ in range(50)}
        assert len(references) == 50

    def test_duplicate_reference_rejected(self):
        self._deposit(reference="RCPT-001")
        with pytest.raises(ValidationError):
            self._deposit(reference="RCPT-001")

    def test_non_positive_amount_rejected(self):
        with pytest.raises(InvalidAmount):
            self._deposit(amount="0")
        with pytest.raises(InvalidAmount):
            self._deposit(amount="-10")

    def test_requires_account_or_loan(self):
        with pytest.raises(ValidationError):
            self.journal.record(
                owner_id="member-1", transaction_type=TransactionType.DEPOSIT,
                amount="10", description="orphan"
            )

    def test_idempotency_key_returns_existing_entry(self):
        first = self._deposit(idempotency_key="key-1")
        second = self._deposit(idempotency_key="key-1")

        assert second.id == first.id
        assert self.storage.count("transactions") == 1

    def test_round_trip_through_storage(self):
        transaction = self._deposit(metadata={"balance_after": Decimal('100.00')})
        loaded = self.journal.get_transaction(transaction.id)

        assert loaded.amount == Decimal('100.00')
        assert loaded.transaction_type == TransactionType.DEPOSIT
        assert loaded.metadata == {"balance_after": "100.00"}
        assert self.journal.find_by_reference(transaction.reference).id == transaction.id

    def test_finalize_pending(self):
        pending = self._deposit(status=TransactionStatus.PENDING)
        assert pending.processed_at is None

        finalized = self.journal.finalize(pending.id, TransactionStatus.COMPLETED)

        assert finalized.status == TransactionStatus.COMPLETED
        assert finalized.processed_at is not None
        assert self.journal.get_transaction(pending.id).status == TransactionStatus.COMPLETED

    def test_finalize_only_once(self):
        pending = self._deposit(status=TransactionStatus.PENDING)
        self.journal.finalize(pending.id, TransactionStatus.FAILED)

        with pytest.raises(InvalidStateTransition):
            self.journal.finalize(pending.id, TransactionStatus.COMPLETED)

    def test_finalize_rejects_pending_target_and_unknown_id(self):
        pending = self._deposit(status=TransactionStatus.PENDING)
        with pytest.raises(ValidationError):
            self.journal.finalize(pending.id, TransactionStatus.PENDING)
        with pytest.raises(NotFound):
            self.journal.finalize("missing", TransactionStatus.COMPLETED)

    def test_list_for_owner_newest_first_with_paging(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        for day in range(5):
            self._deposit(amount=str(day + 1), now=start + timedelta(days=day))
        self._deposit(transaction_type=TransactionType.WITHDRAWAL, now=start + timedelta(days=10))
        self._deposit(owner_id="member-2")

        history = self.journal.list_for_owner("member-1")
        assert len(history) == 6
        assert history[0].transaction_type == TransactionType.WITHDRAWAL

        deposits = self.journal.list_for_owner(
            "member-1", transaction_types=[TransactionType.DEPOSIT], limit=2, offset=1
        )
        assert [t.amount for t in deposits] == [Decimal('4.00'), Decimal('3.00')]

    def test_list_for_account_and_loan(self):
        self._deposit(account_id="acct-1")
        self._deposit(account_id="acct-2")
        self.journal.record(
            owner_id="member-1", transaction_type=TransactionType.LOAN_REPAYMENT,
            amount="50", description="repayment", loan_id="loan-1"
        )

        assert len(self.journal.list_for_account("acct-1")) == 1
        assert len(self.journal.list_for_loan("loan-1")) == 1

    def test_recording_is_audited(self):
        transaction = self._deposit()
        events = self.audit.get_events_for_entity("transaction", transaction.id)

        assert len(events) == 1
        assert events[0].event_type == AuditEventType.TRANSACTION_RECORDED
        assert events[0].metadata["amount"] == "100.00"
