"""
Interest Accrual Module

Batch job posting simple daily interest on savings balances. Each account is
accrued in its own atomic unit so one failing account never blocks the rest
of the batch, and the stored watermark makes reruns with the same timestamp
a no-op.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from enum import Enum

from .money import ZERO, round_money, daily_rate, format_amount
from .journal import TransactionJournal, TransactionType
from .savings import SavingsManager, SavingsAccount
from .members import UserDirectory, require_admin
from .locks import EntityLockRegistry
from .audit import AuditTrail, AuditEventType
from .logging_config import get_logger, log_action


class AccrualStatus(Enum):
    POSTED = "POSTED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class AccrualResult:
    """Outcome of accruing one account"""
    account_id: str
    owner_id: str
    status: AccrualStatus
    days: int = 0
    interest: Decimal = ZERO
    balance: Optional[Decimal] = None
    transaction_id: Optional[str] = None
    reason: Optional[str] = None


def summarize(results: List[AccrualResult]) -> Dict[str, Any]:
    """Counts and total interest of an accrual run"""
    posted = [r for r in results if r.status == AccrualStatus.POSTED]
    return {
        "processed": len(posted),
        "skipped": sum(1 for r in results if r.status == AccrualStatus.SKIPPED),
        "failed": sum(1 for r in results if r.status == AccrualStatus.FAILED),
        "total_interest": sum((r.interest for r in posted), ZERO),
    }


def calculate_interest(balance: Decimal, annual_rate: Decimal, days: int, days_in_year: int = 365) -> Decimal:
    """Simple interest over whole days, rounded half-up to cents"""
    return round_money(balance * daily_rate(annual_rate, days_in_year) * days)


class InterestAccrualJob:
    """
    Posts interest earned since each account's last accrual
    """

    def __init__(
        self,
        savings: SavingsManager,
        journal: TransactionJournal,
        audit_trail: AuditTrail,
        users: UserDirectory,
        locks: Optional[EntityLockRegistry] = None,
        days_in_year: int = 365,
        posting_threshold: Decimal = Decimal('0.01')
    ):
        self.savings = savings
        self.storage = savings.storage
        self.journal = journal
        self.audit_trail = audit_trail
        self.users = users
        self.locks = locks or savings.locks
        self.days_in_year = days_in_year
        self.posting_threshold = posting_threshold
        self.logger = get_logger("sacco.interest")

    def accrue_all(self, now: Optional[datetime] = None, admin_id: Optional[str] = None) -> List[AccrualResult]:
        """
        Accrue every active savings account up to ``now``

        Args:
            now: Accrual timestamp, also the new watermark of posted accounts
            admin_id: Triggering user; must be an admin when given

        Returns:
            One AccrualResult per active account
        """
        if admin_id is not None:
            require_admin(self.users, admin_id)
        now = now or datetime.now(timezone.utc)

        results = []
        for account in self.savings.list_active_accounts():
            results.append(self._accrue_account(account.id, account.owner_id, now))

        summary = summarize(results)
        log_action(
            self.logger, "info", "Interest accrual run finished",
            user_id=admin_id, action="accrue_interest", resource="savings_accounts",
            extra={
                "processed": summary["processed"],
                "skipped": summary["skipped"],
                "failed": summary["failed"],
                "total_interest": format_amount(summary["total_interest"])
            }
        )
        return results

    def accrue_account(self, account_id: str, now: Optional[datetime] = None) -> AccrualResult:
        """Accrue a single account, e.g. when retrying a failed one"""
        account = self.savings.require_account(account_id)
        return self._accrue_account(account.id, account.owner_id, now or datetime.now(timezone.utc))

    def _accrue_account(self, account_id: str, owner_id: str, now: datetime) -> AccrualResult:
        try:
            with self.locks.hold("savings_account", account_id):
                with self.storage.atomic():
                    account = self.savings.require_account(account_id)
                    return self._post(account, now)
        except Exception as e:
            log_action(
                self.logger, "error", f"Interest accrual failed for account {account_id}: {e}",
                user_id=owner_id, action="accrue_interest", resource=f"savings_account:{account_id}",
                extra={"error": type(e).__name__}
            )
            try:
                self.audit_trail.log_event(
                    event_type=AuditEventType.INTEREST_ACCRUAL_FAILED,
                    entity_type="savings_account",
                    entity_id=account_id,
                    metadata={"error": str(e), "now": now}
                )
            except Exception as audit_error:
                # Storage may be the failing part; the batch still reports this account
                self.logger.error(
                    f"Could not audit failed accrual of account {account_id}: {audit_error}"
                )
            return AccrualResult(
                account_id=account_id,
                owner_id=owner_id,
                status=AccrualStatus.FAILED,
                reason=str(e)
            )

    def _post(self, account: SavingsAccount, now: datetime) -> AccrualResult:
        days = (now - account.last_interest_calculated).days
        if not account.is_active:
            return self._skipped(account, days, "inactive")
        if days <= 0:
            return self._skipped(account, days, "no whole day elapsed")
        if account.balance <= ZERO:
            return self._skipped(account, days, "no balance")

        interest = calculate_interest(account.balance, account.annual_interest_rate, days, self.days_in_year)
        if interest < self.posting_threshold:
            return self._skipped(account, days, "below posting threshold")

        account.balance = account.balance + interest
        account.total_interest_earned = account.total_interest_earned + interest
        account.last_interest_calculated = now
        account.updated_at = now

        transaction = self.journal.record(
            owner_id=account.owner_id,
            transaction_type=TransactionType.INTEREST_PAYMENT,
            amount=interest,
            description=f"Interest for {days} days at {account.annual_interest_rate * 100}% p.a.",
            account_id=account.id,
            metadata={"days": days, "balance_after": account.balance},
            now=now
        )
        self.savings.save_account(account)

        self.audit_trail.log_event(
            event_type=AuditEventType.INTEREST_POSTED,
            entity_type="savings_account",
            entity_id=account.id,
            metadata={
                "transaction_id": transaction.id,
                "days": days,
                "interest": interest,
                "balance_after": account.balance
            },
            user_id=account.owner_id
        )
        log_action(
            self.logger, "info", "Interest posted",
            user_id=account.owner_id, action="post_interest", resource=f"savings_account:{account.id}",
            extra={"days": days, "interest": format_amount(interest)}
        )
        return AccrualResult(
            account_id=account.id,
            owner_id=account.owner_id,
            status=AccrualStatus.POSTED,
            days=days,
            interest=interest,
            balance=account.balance,
            transaction_id=transaction.id
        )

    def _skipped(self, account: SavingsAccount, days: int, reason: str) -> AccrualResult:
        return AccrualResult(
            account_id=account.id,
            owner_id=account.owner_id,
            status=AccrualStatus.SKIPPED,
            days=max(days, 0),
            balance=account.balance,
            reason=reason
        )
