"""
External Ledger Mirror Module

Money movements are mirrored to the cooperative's on-chain contract through
a relay service. The core treats the chain as an opaque ledger: calls are
made after the local unit has committed and a failing relay is logged,
never raised, so it cannot affect local balances.
"""

import httpx
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

logger = logging.getLogger("sacco.chain")


class ChainLedger(ABC):
    """Deposit/withdraw/loan-request/vote interface of the on-chain ledger"""

    @abstractmethod
    def register_member(self, member_id: str, wallet_address: str) -> bool:
        pass

    @abstractmethod
    def deposit(self, member_id: str, amount: Decimal) -> bool:
        pass

    @abstractmethod
    def withdraw(self, member_id: str, amount: Decimal) -> bool:
        pass

    @abstractmethod
    def request_loan(self, member_id: str, amount: Decimal, term_months: int, purpose: str) -> bool:
        pass

    @abstractmethod
    def vote(self, member_id: str, proposal_id: str, support: bool) -> bool:
        pass

    def close(self) -> None:
        pass


class NullChainLedger(ChainLedger):
    """Mirror disabled: every call is accepted and dropped"""

    def register_member(self, member_id: str, wallet_address: str) -> bool:
        return False

    def deposit(self, member_id: str, amount: Decimal) -> bool:
        return False

    def withdraw(self, member_id: str, amount: Decimal) -> bool:
        return False

    def request_loan(self, member_id: str, amount: Decimal, term_months: int, purpose: str) -> bool:
        return False

    def vote(self, member_id: str, proposal_id: str, support: bool) -> bool:
        return False


@dataclass
class RecordingChainLedger(ChainLedger):
    """Keeps every mirrored call in memory, for tests and local development"""
    calls: List[Dict[str, Any]] = field(default_factory=list)

    def _record(self, function: str, **arguments) -> bool:
        self.calls.append({"function": function, **arguments})
        return True

    def register_member(self, member_id: str, wallet_address: str) -> bool:
        return self._record("registerMember", member_id=member_id, wallet_address=wallet_address)

    def deposit(self, member_id: str, amount: Decimal) -> bool:
        return self._record("deposit", member_id=member_id, amount=amount)

    def withdraw(self, member_id: str, amount: Decimal) -> bool:
        return self._record("withdraw", member_id=member_id, amount=amount)

    def request_loan(self, member_id: str, amount: Decimal, term_months: int, purpose: str) -> bool:
        return self._record(
            "requestLoan", member_id=member_id, amount=amount, term_months=term_months, purpose=purpose
        )

    def vote(self, member_id: str, proposal_id: str, support: bool) -> bool:
        return self._record("vote", member_id=member_id, proposal_id=proposal_id, support=support)


class HttpChainLedger(ChainLedger):
    """REST client for the contract relay service"""

    def __init__(
        self,
        base_url: str,
        timeout: float = 2.0,  # Mirroring must not hold up the request
        api_key: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.api_key = api_key
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def _call(self, function: str, member_id: str, payload: Dict[str, Any]) -> bool:
        """POST one contract call to the relay; True when the relay accepted it"""
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        body = {"function": function, "member_id": member_id, "arguments": payload}
        start = time.time()
        try:
            response = self._client.post(f"{self.base_url}/calls", json=body, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Chain relay call {function} failed: {e}")
            return False

        latency_ms = (time.time() - start) * 1000
        if response.status_code in (200, 201, 202):
            logger.info(f"Chain relay accepted {function} for {member_id} in {latency_ms:.0f}ms")
            return True

        logger.warning(f"Chain relay returned {response.status_code} for {function}: {response.text}")
        return False

    def register_member(self, member_id: str, wallet_address: str) -> bool:
        return self._call("registerMember", member_id, {"memberAddress": wallet_address, "memberId": member_id})

    def deposit(self, member_id: str, amount: Decimal) -> bool:
        return self._call("deposit", member_id, {"amount": str(amount)})

    def withdraw(self, member_id: str, amount: Decimal) -> bool:
        return self._call("withdraw", member_id, {"amount": str(amount)})

    def request_loan(self, member_id: str, amount: Decimal, term_months: int, purpose: str) -> bool:
        return self._call(
            "requestLoan", member_id,
            {"amount": str(amount), "termMonths": term_months, "purpose": purpose}
        )

    def vote(self, member_id: str, proposal_id: str, support: bool) -> bool:
        return self._call("vote", member_id, {"proposalId": proposal_id, "support": support})

    def health_check(self) -> bool:
        """Check if the relay is reachable"""
        try:
            r = self._client.get(f"{self.base_url}/health")
            return r.status_code == 200
        except httpx.HTTPError:
            return False

    def close(self) -> None:
        """Close the HTTP client"""
        self._client.close()


def create_chain_ledger(base_url: str, timeout: float = 2.0, api_key: Optional[str] = None) -> ChainLedger:
    """HTTP relay client when a URL is configured, otherwise the null mirror"""
    if not base_url:
        return NullChainLedger()
    return HttpChainLedger(base_url, timeout=timeout, api_key=api_key or None)
