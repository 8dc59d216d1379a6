"""
Test suite for the chain mirror clients

The relay client is exercised through httpx.MockTransport; failures must be
reported as False and never raised.
"""

import json
from decimal import Decimal

import httpx

from village_sacco.chain import (
    HttpChainLedger, NullChainLedger, RecordingChainLedger, create_chain_ledger
)


class TestHttpChainLedger:
    """Test the REST relay client"""

    def setup_method(self):
        self.requests = []

    def _client(self, status_code=202, api_key=None):
        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            if request.url.path == "/health":
                return httpx.Response(200, json={"status": "ok"})
            return httpx.Response(status_code, json={"accepted": status_code < 300})

        return HttpChainLedger(
            "http://relay.local/", api_key=api_key, transport=httpx.MockTransport(handler)
        )

    def test_deposit_is_posted(self):
        ledger = self._client(api_key="relay-key")

        assert ledger.deposit("member-1", Decimal('250.50'))

        request = self.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "http://relay.local/calls"
        assert request.headers["Authorization"] == "Bearer relay-key"
        assert json.loads(request.content) == {
            "function": "deposit",
            "member_id": "member-1",
            "arguments": {"amount": "250.50"}
        }

    def test_request_loan_arguments(self):
        ledger = self._client()

        assert ledger.request_loan("member-1", Decimal('5000.00'), 12, "Boda boda")

        body = json.loads(self.requests[0].content)
        assert body["function"] == "requestLoan"
        assert body["arguments"] == {"amount": "5000.00", "termMonths": 12, "purpose": "Boda boda"}
        assert "Authorization" not in self.requests[0].headers

    def test_other_calls(self):
        ledger = self._client()

        assert ledger.withdraw("member-1", Decimal('10'))
        assert ledger.vote("member-1", "proposal-7", True)
        assert ledger.register_member("member-1", "0xabc")

        functions = [json.loads(r.content)["function"] for r in self.requests]
        assert functions == ["withdraw", "vote", "registerMember"]

    def test_rejected_call_returns_false(self):
        ledger = self._client(status_code=500)
        assert ledger.deposit("member-1", Decimal('1')) is False

    def test_unreachable_relay_returns_false(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        ledger = HttpChainLedger("http://relay.local", transport=httpx.MockTransport(handler))

        assert ledger.deposit("member-1", Decimal('1')) is False
        assert ledger.health_check() is False
        ledger.close()

    def test_health_check(self):
        assert self._client().health_check()


class TestChainFactories:
    """Test the offline mirrors"""

    def test_null_ledger_without_url(self):
        ledger = create_chain_ledger("")
        assert isinstance(ledger, NullChainLedger)
        assert ledger.deposit("member-1", Decimal('1')) is False

    def test_http_ledger_with_url(self):
        ledger = create_chain_ledger("http://relay.local", timeout=1.0, api_key="")
        assert isinstance(ledger, HttpChainLedger)
        assert ledger.api_key is None
        ledger.close()

    def test_recording_ledger(self):
        ledger = RecordingChainLedger()
        ledger.vote("member-1", "p1", False)
        assert ledger.calls == [{"function": "vote", "member_id": "member-1", "proposal_id": "p1", "support": False}]
