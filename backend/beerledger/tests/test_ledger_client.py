import pytest
import requests

from beerledger.core.errors import LedgerUnavailableError
from beerledger.services.ledger_client import JsonRpcLedgerClient, LedgerClient


class FakeResponse:
    def __init__(self, body, status=200):
        self.body = body
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        if isinstance(self.body, Exception):
            raise self.body
        return self.body


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.posts = []

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json, timeout))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self):
        pass


def client_with(*responses):
    session = FakeSession(*responses)
    return JsonRpcLedgerClient("http://ledger.local/rpc/", timeout=3, session=session), session


def test_submit_sends_a_json_rpc_request():
    client, session = client_with(FakeResponse({"jsonrpc": "2.0", "id": 1, "result": {"txHash": "0xabc"}}))

    receipt = client.submit("placeOrder", {"quantity": 4})

    assert receipt.success and receipt.external_ref == "0xabc"
    url, payload, timeout = session.posts[0]
    assert url == "http://ledger.local/rpc"
    assert payload == {"jsonrpc": "2.0", "id": 1, "method": "placeOrder", "params": {"quantity": 4}}
    assert timeout == 3


def test_reads_week_and_order():
    client, _ = client_with(
        FakeResponse({"result": "7"}),
        FakeResponse({"result": {"status": "Shipped"}}),
        FakeResponse({"result": None}),
    )

    assert client.get_current_week("contract-1") == 7
    assert client.get_order("contract-1", "tx-1") == {"status": "Shipped"}
    assert client.get_order("contract-1", "tx-2") is None


@pytest.mark.parametrize(
    "response",
    [
        FakeResponse({"error": {"code": -32000, "message": "reverted"}}),
        FakeResponse(None, status=503),
        FakeResponse(ValueError("not json")),
        requests.ConnectionError("refused"),
    ],
)
def test_failures_become_ledger_unavailable(response):
    client, _ = client_with(response)
    with pytest.raises(LedgerUnavailableError):
        client.submit("advanceWeek", {"week": 1})


def test_client_is_only_built_when_configured(settings):
    assert JsonRpcLedgerClient.from_settings(settings) is None

    configured = settings.model_copy(update={"LEDGER_RPC_URL": "http://ledger.local"})
    client = JsonRpcLedgerClient.from_settings(configured)
    assert isinstance(client, LedgerClient)
    client.close()
