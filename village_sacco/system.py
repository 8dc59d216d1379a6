"""
SACCO System Composition

Builds the storage handle and every component on top of it. The storage
handle is injected, never global, so tests run against in-memory storage and
the process entry point owns the lifecycle of the persistent one.
"""

from decimal import Decimal
from typing import Optional

from .config import SaccoConfig, get_config
from .storage import StorageInterface, create_storage
from .audit import AuditTrail
from .journal import TransactionJournal
from .repayments import RepaymentLedger
from .loans import LoanManager
from .savings import SavingsManager, SavingsAccountType
from .interest import InterestAccrualJob
from .members import UserDirectory, create_user_directory
from .locks import EntityLockRegistry
from .chain import ChainLedger, create_chain_ledger


class SaccoSystem:
    """Village SACCO core with all components initialized"""

    def __init__(
        self,
        storage: StorageInterface,
        users: UserDirectory,
        config: Optional[SaccoConfig] = None,
        chain: Optional[ChainLedger] = None
    ):
        self.config = config or get_config()
        self.storage = storage
        self.users = users
        self.locks = EntityLockRegistry()
        self.chain = chain or create_chain_ledger(
            self.config.chain_relay_url,
            timeout=self.config.chain_relay_timeout,
            api_key=self.config.chain_relay_api_key
        )

        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.journal = TransactionJournal(self.storage, self.audit_trail)
        self.repayment_ledger = RepaymentLedger(self.storage, self.journal, self.audit_trail)
        self.loan_manager = LoanManager(
            self.storage, self.journal, self.repayment_ledger, self.audit_trail, self.users,
            locks=self.locks,
            chain=self.chain,
            default_interest_rate=Decimal(self.config.default_loan_interest_rate)
        )
        self.savings_manager = SavingsManager(
            self.storage, self.journal, self.audit_trail, self.users,
            locks=self.locks,
            chain=self.chain,
            default_rates={
                SavingsAccountType.REGULAR: Decimal(self.config.regular_savings_rate),
                SavingsAccountType.FIXED_DEPOSIT: Decimal(self.config.fixed_deposit_rate),
            }
        )
        self.interest_job = InterestAccrualJob(
            self.savings_manager, self.journal, self.audit_trail, self.users,
            locks=self.locks,
            days_in_year=self.config.days_in_year,
            posting_threshold=Decimal(self.config.interest_posting_threshold)
        )

    def close(self) -> None:
        """Release the storage connection and the outbound clients"""
        self.chain.close()
        self.users.close()
        self.storage.close()


def build_system(
    config: Optional[SaccoConfig] = None,
    storage: Optional[StorageInterface] = None,
    users: Optional[UserDirectory] = None,
    chain: Optional[ChainLedger] = None
) -> SaccoSystem:
    """
    Assemble a SaccoSystem

    Storage defaults to the configured ``database_url``. The member
    directory defaults to the auth service when ``user_directory_url`` is
    set, otherwise to the members table in that storage.
    """
    config = config or get_config()
    if storage is None:
        storage = create_storage(config.database_url)
    if users is None:
        users = create_user_directory(
            storage,
            base_url=config.user_directory_url,
            timeout=config.user_directory_timeout,
            api_key=config.user_directory_api_key
        )
    return SaccoSystem(storage, users, config=config, chain=chain)
