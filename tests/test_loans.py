"""
Test suite for loans module

Tests application intake, the approve/reject/disburse state machine,
schedule materialisation on disbursement and full repayment. All financial
math must be precise.
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone, date

from village_sacco.config import SaccoConfig
from village_sacco.storage import InMemoryStorage
from village_sacco.system import build_system
from village_sacco.members import InMemoryUserDirectory, MemberRole, MembershipStatus
from village_sacco.chain import RecordingChainLedger
from village_sacco.journal import TransactionType
from village_sacco.audit import AuditEventType
from village_sacco.repayments import RepaymentStatus
from village_sacco.loans import LoanStatus, LoanApplication, CollateralType, LOAN_TRANSITIONS
from village_sacco.errors import (
    DuplicatePendingApplication, InvalidAmount, InvalidStateTransition, NotFound,
    PermissionDenied, ValidationError
)


DISBURSED_AT = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


class TestLoanStatus:
    """Test the transition table"""

    def test_allowed_transitions(self):
        assert LoanStatus.PENDING.can_transition_to(LoanStatus.APPROVED)
        assert LoanStatus.PENDING.can_transition_to(LoanStatus.REJECTED)
        assert LoanStatus.APPROVED.can_transition_to(LoanStatus.DISBURSED)
        assert LoanStatus.DISBURSED.can_transition_to(LoanStatus.COMPLETED)

    def test_forbidden_transitions(self):
        assert not LoanStatus.PENDING.can_transition_to(LoanStatus.DISBURSED)
        assert not LoanStatus.APPROVED.can_transition_to(LoanStatus.PENDING)
        assert not LoanStatus.DISBURSED.can_transition_to(LoanStatus.APPROVED)

    def test_terminal_states(self):
        assert LOAN_TRANSITIONS[LoanStatus.REJECTED] == frozenset()
        assert LOAN_TRANSITIONS[LoanStatus.COMPLETED] == frozenset()
        assert set(LOAN_TRANSITIONS) == set(LoanStatus)


class TestLoanManager:
    """Test the loan lifecycle"""

    def setup_method(self):
        self.users = InMemoryUserDirectory()
        self.users.add_member("member-1")
        self.users.add_member("member-2")
        self.users.add_member("pending-member", membership_status=MembershipStatus.PENDING)
        self.users.add_member("admin-1", role=MemberRole.ADMIN)
        self.chain = RecordingChainLedger()
        self.system = build_system(
            config=SaccoConfig(database_url="memory://"),
            storage=InMemoryStorage(),
            users=self.users,
            chain=self.chain
        )
        self.loans = self.system.loan_manager

    def _apply(self, borrower="member-1", principal="5000", term=12, rate=None):
        return self.loans.submit_application(
            borrower_id=borrower,
            principal=principal,
            purpose="Dairy cow",
            term_months=term,
            annual_interest_rate=rate
        )

    def _disbursed(self, principal="5000", term=12, rate=None):
        loan = self._apply(principal=principal, term=term, rate=rate)
        self.loans.approve(loan.id, "admin-1")
        return self.loans.disburse(loan.id, "admin-1", now=DISBURSED_AT)

    # Application intake

    def test_submit_application(self):
        loan = self._apply()

        assert loan.status == LoanStatus.PENDING
        assert loan.principal == Decimal('5000.00')
        assert loan.annual_interest_rate == Decimal('0.15')
        assert loan.monthly_payment == Decimal('451.29')
        assert loan.total_repayment == Decimal('5415.48')
        assert loan.total_interest == Decimal('415.48')
        assert loan.remaining_balance == loan.principal
        assert loan.applied_at is not None

        stored = self.loans.get_loan(loan.id)
        assert stored.monthly_payment == Decimal('451.29')
        assert stored.status == LoanStatus.PENDING

    def test_submit_with_collateral(self):
        loan = self.loans.submit_application(
            borrower_id="member-1", principal="2000", purpose="Maize seed", term_months=6,
            collateral_type=CollateralType.LIVESTOCK, collateral_value="3500",
            collateral_description="Two goats"
        )
        stored = self.loans.get_loan(loan.id)
        assert stored.collateral_type == CollateralType.LIVESTOCK
        assert stored.collateral_value == Decimal('3500')

    def test_only_approved_members_may_apply(self):
        with pytest.raises(PermissionDenied):
            self._apply(borrower="pending-member")
        with pytest.raises(NotFound):
            self._apply(borrower="stranger")

    def test_invalid_applications(self):
        with pytest.raises(ValidationError):
            self._apply(principal="0")
        with pytest.raises(ValidationError):
            self._apply(term=0)
        with pytest.raises(ValidationError):
            self.loans.submit_application("member-1", "5000", "   ", 12)
        with pytest.raises(ValidationError):
            self.loans.submit_application(
                "member-1", "5000", "Roof", 12, collateral_value="-1"
            )

    def test_duplicate_pending_application(self):
        first = self._apply()

        with pytest.raises(DuplicatePendingApplication) as exc_info:
            self._apply(principal="100")
        assert exc_info.value.details["loan_id"] == first.id

        # Other borrowers are unaffected
        self._apply(borrower="member-2")

        # Once decided, the borrower may apply again
        self.loans.reject(first.id, "admin-1")
        second = self._apply()
        assert second.status == LoanStatus.PENDING

    def test_application_is_mirrored_to_chain(self):
        self._apply()
        assert self.chain.calls[-1]["function"] == "requestLoan"
        assert self.chain.calls[-1]["term_months"] == 12

    def test_quote_uses_default_rate(self):
        quote = self.loans.quote("5000", 12)
        assert quote.monthly_payment == Decimal('451.29')
        assert self.loans.quote("1200", 12, annual_interest_rate="0").monthly_payment == Decimal('100.00')

    # Decisions

    def test_approve(self):
        loan = self._apply()
        approved = self.loans.approve(loan.id, "admin-1")

        assert approved.status == LoanStatus.APPROVED
        assert approved.approved_by == "admin-1"
        assert approved.approved_at is not None

    def test_only_admins_decide(self):
        loan = self._apply()
        with pytest.raises(PermissionDenied):
            self.loans.approve(loan.id, "member-2")
        with pytest.raises(PermissionDenied):
            self.loans.reject(loan.id, "member-1")
        assert self.loans.get_loan(loan.id).status == LoanStatus.PENDING

    def test_cannot_approve_twice(self):
        loan = self._apply()
        self.loans.approve(loan.id, "admin-1")
        with pytest.raises(InvalidStateTransition):
            self.loans.approve(loan.id, "admin-1")

    def test_reject_is_terminal(self):
        loan = self._apply()
        rejected = self.loans.reject(loan.id, "admin-1", reason="Insufficient savings history")

        assert rejected.status == LoanStatus.REJECTED
        assert rejected.rejected_at is not None
        assert rejected.rejection_reason == "Insufficient savings history"
        with pytest.raises(InvalidStateTransition):
            self.loans.approve(loan.id, "admin-1")
        with pytest.raises(InvalidStateTransition):
            self.loans.disburse(loan.id, "admin-1")

    def test_unknown_loan(self):
        with pytest.raises(NotFound):
            self.loans.approve("missing", "admin-1")

    # Disbursement

    def test_disburse_requires_approval(self):
        loan = self._apply()
        with pytest.raises(InvalidStateTransition):
            self.loans.disburse(loan.id, "admin-1")

    def test_disburse(self):
        loan = self._disbursed()

        assert loan.status == LoanStatus.DISBURSED
        assert loan.disbursed_at == DISBURSED_AT
        assert loan.next_payment_due == date(2024, 2, 15)

        schedule = self.loans.get_schedule(loan.id)
        assert len(schedule) == 12
        assert all(entry.status == RepaymentStatus.PENDING for entry in schedule)
        assert sum(entry.principal_portion for entry in schedule) == Decimal('5000.00')

        transactions = self.system.journal.list_for_loan(loan.id)
        assert len(transactions) == 1
        assert transactions[0].transaction_type == TransactionType.LOAN_DISBURSEMENT
        assert transactions[0].amount == Decimal('5000.00')
        assert transactions[0].reference.startswith("DISB-")

    def test_disburse_twice_rejected(self):
        loan = self._disbursed()
        with pytest.raises(InvalidStateTransition):
            self.loans.disburse(loan.id, "admin-1")
        assert len(self.loans.get_schedule(loan.id)) == 12

    def test_disbursement_rolls_back_on_failure(self, monkeypatch):
        loan = self._apply()
        self.loans.approve(loan.id, "admin-1")
        events_before = self.system.audit_trail.count_events()

        def failing_schedule(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(self.system.repayment_ledger, "generate_schedule", failing_schedule)

        with pytest.raises(RuntimeError):
            self.loans.disburse(loan.id, "admin-1", now=DISBURSED_AT)

        stored = self.loans.get_loan(loan.id)
        assert stored.status == LoanStatus.APPROVED
        assert stored.disbursed_at is None
        assert self.system.journal.list_for_loan(loan.id) == []
        assert self.system.audit_trail.count_events() == events_before

    # Payments

    def test_payment_requires_disbursed_loan(self):
        loan = self._apply()
        with pytest.raises(InvalidStateTransition):
            self.loans.record_payment(loan.id, "100")

    def test_payment_amount_must_be_positive(self):
        loan = self._disbursed()
        with pytest.raises(InvalidAmount):
            self.loans.record_payment(loan.id, "0")
        with pytest.raises(ValidationError):
            self.loans.record_payment(loan.id, "-50")

    def test_payment_by_another_member_rejected(self):
        loan = self._disbursed()
        with pytest.raises(PermissionDenied):
            self.loans.record_payment(loan.id, "100", payer_id="member-2")
        result = self.loans.record_payment(loan.id, "100", payer_id="admin-1")
        assert result.applied == Decimal('100.00')

    def test_round_trip_payoff(self):
        """Paying every installment exactly leaves zero balance and completes the loan"""
        loan = self._disbursed()
        schedule = self.loans.get_schedule(loan.id)

        for entry in schedule:
            result = self.loans.record_payment(loan.id, entry.amount)
            assert result.unapplied == Decimal('0')

        completed = self.loans.get_loan(loan.id)
        assert completed.status == LoanStatus.COMPLETED
        assert completed.remaining_balance == Decimal('0')
        assert completed.next_payment_due is None
        assert completed.completed_at is not None
        assert result.loan_status == "COMPLETED"
        assert result.paid_off

        paid = sum(t.amount for t in self.system.journal.list_for_loan(loan.id)
                   if t.transaction_type == TransactionType.LOAN_REPAYMENT)
        assert paid == sum(entry.amount for entry in schedule)
        assert self.system.audit_trail.get_events_by_type(AuditEventType.LOAN_PAID_OFF)

        with pytest.raises(InvalidStateTransition):
            self.loans.record_payment(loan.id, "10")

    def test_zero_rate_loan_payoff(self):
        """1200 at 0% over 12 months paid off with twelve payments of 100"""
        loan = self._disbursed(principal="1200", rate="0")

        schedule = self.loans.get_schedule(loan.id)
        assert len(schedule) == 12
        assert all(e.principal_portion == Decimal('100.00') and e.interest_portion == Decimal('0.00')
                   for e in schedule)

        for _ in range(12):
            self.loans.record_payment(loan.id, "100")

        completed = self.loans.get_loan(loan.id)
        assert completed.remaining_balance == Decimal('0')
        assert completed.status == LoanStatus.COMPLETED

    # Queries

    def test_queries(self):
        first = self._disbursed()
        pending = self._apply()
        other = self._apply(borrower="member-2")

        assert {l.id for l in self.loans.get_borrower_loans("member-1")} == {first.id, pending.id}
        assert [l.id for l in self.loans.get_active_loans("member-1")] == [first.id]
        assert {l.id for l in self.loans.list_loans(LoanStatus.PENDING)} == {pending.id, other.id}
        assert len(self.loans.list_loans()) == 3


class TestLoanApplicationRecord:

    def test_remaining_balance_bounds(self):
        now = datetime.now(timezone.utc)
        kwargs = dict(
            id="L1", created_at=now, updated_at=now, borrower_id="m", principal=Decimal('100'),
            purpose="x", term_months=1, annual_interest_rate=Decimal('0'),
            monthly_payment=Decimal('100'), total_repayment=Decimal('100'), total_interest=Decimal('0'),
            status=LoanStatus.PENDING, applied_at=now
        )
        with pytest.raises(ValidationError):
            LoanApplication(remaining_balance=Decimal('101'), **kwargs)
        with pytest.raises(ValidationError):
            LoanApplication(remaining_balance=Decimal('-1'), **kwargs)
        assert LoanApplication(remaining_balance=Decimal('0'), **kwargs).amount_repaid == Decimal('100')
