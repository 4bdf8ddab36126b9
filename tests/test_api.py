import io

import openpyxl
import pytest
from fastapi.testclient import TestClient

from main import create_app
from models import TokenMetadata

from conftest import (
    TEST_ADDRESS,
    TEST_MNEMONIC,
    TEST_MNEMONIC_ADDRESS,
    TEST_PRIVATE_KEY,
    make_transfer,
)

UNKNOWN = "0x" + "9" * 40


@pytest.fixture
def client(services):
    app = create_app(services)
    with TestClient(app) as c:
        yield c


def _import_key(client, key=TEST_PRIVATE_KEY):
    resp = client.post("/wallet/import", json={"privateKey": key})
    assert resp.status_code == 200
    return resp.json()["wallet"]


# ── Info ──────────────────────────────────────────────────────────────────────


def test_health(client):
    assert client.get("/health").json() == {"status": "ok", "version": "1.0.0"}


def test_echo_returns_body(client):
    resp = client.post("/echo", json={"hello": "pluto", "n": 1})
    assert resp.json() == {"youSent": {"hello": "pluto", "n": 1}}


def test_echo_empty_body(client):
    assert client.post("/echo").json() == {"youSent": None}


# ── Chat ──────────────────────────────────────────────────────────────────────


@pytest.mark.parametrize("body", [{"text": ""}, {"text": "   "}, {}])
def test_chat_rejects_blank_text(client, body):
    resp = client.post("/", json=body)

    assert resp.status_code == 400
    assert resp.json()["success"] is False
    assert resp.json()["error"] == "validation_error"


def test_chat_conversational_reply_is_spoken(client, speaker):
    resp = client.post("/", json={"text": "What is a blockchain?"})

    body = resp.json()
    assert resp.status_code == 200
    assert body["success"] is True
    assert body["user_input"] == "What is a blockchain?"
    assert body["pluto_response"] == "Blockchains are ledgers."
    assert body["action"] is None
    assert speaker.spoken == ["Blockchains are ledgers."]


def test_low_confidence_action_falls_back_to_chat(client, assistant, registry):
    _import_key(client)
    assistant.intent = {
        "action": "MONITOR_WALLET",
        "confidence": 0.5,
        "parameters": {"address": TEST_ADDRESS},
    }

    body = client.post("/", json={"text": f"hmm, watch {TEST_ADDRESS}?"}).json()

    assert body["action"] is None
    assert body["pluto_response"] == "Blockchains are ledgers."
    assert registry.monitor.watched() == []


def test_chat_creates_wallet(client, assistant, registry):
    assistant.intent = {"action": "CREATE_WALLET", "confidence": 0.95, "parameters": {}}

    body = client.post("/", json={"text": "make me a new wallet"}).json()

    assert body["action"] == "CREATE_WALLET"
    assert body["data"]["address"] in body["pluto_response"]
    assert len(body["data"]["mnemonic"].split()) == 12
    assert registry.get(body["data"]["address"]) is not None


def test_chat_imports_mnemonic(client, assistant):
    assistant.intent = {
        "action": "IMPORT_WALLET_MNEMONIC",
        "confidence": 0.9,
        "parameters": {"mnemonic": TEST_MNEMONIC},
    }

    body = client.post("/", json={"text": f"import {TEST_MNEMONIC}"}).json()

    assert body["data"]["address"] == TEST_MNEMONIC_ADDRESS
    assert "mnemonic" not in body["data"]


def test_chat_bad_key_is_conversational(client, assistant):
    assistant.intent = {
        "action": "IMPORT_WALLET_PRIVATE_KEY",
        "confidence": 0.9,
        "parameters": {"private_key": "0x1234"},
    }

    resp = client.post("/", json={"text": "import key 0x1234"})

    assert resp.status_code == 200
    assert resp.json()["pluto_response"].startswith("Sorry, I couldn't do that")


def test_chat_monitors_address_from_text(client, assistant, registry):
    _import_key(client)
    assistant.intent = {"action": "MONITOR_WALLET", "confidence": 0.9, "parameters": {}}

    body = client.post("/", json={"text": f"watch {TEST_ADDRESS} please"}).json()

    assert body["action"] == "MONITOR_WALLET"
    assert body["data"]["monitoring"] is True
    assert registry.monitor.is_watching(TEST_ADDRESS)


def test_chat_wallet_info_lists_wallets(client, assistant):
    _import_key(client)
    assistant.intent = {"action": "GET_WALLET_INFO", "confidence": 0.9}

    body = client.post("/", json={"text": "what wallets do I have"}).json()

    assert "1 wallet" in body["pluto_response"]
    assert body["data"][0]["address"] == TEST_ADDRESS


def test_chat_stream(client):
    resp = client.post("/chat/stream", json={"text": "hello"})

    assert resp.status_code == 200
    assert resp.text.strip() == "Blockchains are ledgers."


def test_chat_stream_rejects_blank_text(client):
    assert client.post("/chat/stream", json={"text": " "}).status_code == 400


# ── Wallets ───────────────────────────────────────────────────────────────────


def test_generate_wallet_returns_secrets(client):
    resp = client.post("/wallet/generate")

    wallet = resp.json()["wallet"]
    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert wallet["private_key"].startswith("0x")
    assert len(wallet["mnemonic"].split()) == 12
    assert wallet["data"]["eth_balance"] == "1.5"


def test_import_private_key(client):
    wallet = _import_key(client)

    assert wallet["address"] == TEST_ADDRESS
    assert wallet["private_key"] == TEST_PRIVATE_KEY
    assert wallet["mnemonic"] == ""


def test_import_mnemonic(client):
    resp = client.post("/wallet/import", json={"mnemonic": TEST_MNEMONIC})
    assert resp.json()["wallet"]["address"] == TEST_MNEMONIC_ADDRESS


def test_import_prefers_private_key(client):
    resp = client.post(
        "/wallet/import", json={"privateKey": TEST_PRIVATE_KEY, "mnemonic": TEST_MNEMONIC}
    )
    assert resp.json()["wallet"]["address"] == TEST_ADDRESS


@pytest.mark.parametrize("body", [{}, {"privateKey": "", "mnemonic": "  "}])
def test_import_requires_key_material(client, body):
    resp = client.post("/wallet/import", json=body)

    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_error"


def test_import_invalid_key(client):
    resp = client.post("/wallet/import", json={"privateKey": "0xnope"})

    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_key_material"


def test_get_wallet_hides_secrets_unless_asked(client):
    _import_key(client)

    plain = client.get(f"/wallet/{TEST_ADDRESS.lower()}").json()["wallet"]
    full = client.get(f"/wallet/{TEST_ADDRESS}", params={"include_secrets": True}).json()["wallet"]

    assert plain["address"] == TEST_ADDRESS
    assert "private_key" not in plain
    assert full["private_key"] == TEST_PRIVATE_KEY


@pytest.mark.parametrize(
    "method, path",
    [
        ("get", f"/wallet/{UNKNOWN}"),
        ("post", f"/wallet/{UNKNOWN}/update"),
        ("get", f"/wallet/{UNKNOWN}/transactions"),
        ("post", f"/wallet/{UNKNOWN}/monitor"),
        ("delete", f"/wallet/{UNKNOWN}"),
    ],
)
def test_unknown_wallet_is_404(client, method, path):
    resp = getattr(client, method)(path)

    assert resp.status_code == 404
    assert resp.json() == {
        "success": False,
        "error": "unknown_wallet",
        "message": f"Wallet {UNKNOWN} not found",
    }


def test_update_wallet(client, data_client):
    _import_key(client)
    calls = data_client.snapshot_calls

    resp = client.post(f"/wallet/{TEST_ADDRESS}/update")

    assert resp.json()["data"]["eth_balance"] == "1.5"
    assert data_client.snapshot_calls == calls + 1


def test_update_wallet_fetch_failure(client, data_client):
    _import_key(client)
    data_client.fail_snapshot = True

    resp = client.post(f"/wallet/{TEST_ADDRESS}/update")

    assert resp.status_code == 500
    assert resp.json()["error"] == "data_fetch_failed"


def test_list_and_remove_wallets(client):
    _import_key(client)
    client.post("/wallet/import", json={"mnemonic": TEST_MNEMONIC})

    assert client.get("/wallets").json()["count"] == 2
    assert client.delete(f"/wallet/{TEST_ADDRESS}").status_code == 200
    assert [w["address"] for w in client.get("/wallets").json()["wallets"]] == [
        TEST_MNEMONIC_ADDRESS
    ]


# ── Transactions ──────────────────────────────────────────────────────────────


def test_transactions_json(client, data_client):
    data_client.transfers = [make_transfer(f"0x{i}") for i in range(5)]
    _import_key(client)

    body = client.get(f"/wallet/{TEST_ADDRESS}/transactions", params={"limit": 2}).json()

    assert body["count"] == 2
    assert [t["id"] for t in body["transactions"]] == ["0x0", "0x1"]


def test_transactions_limit_is_bounded(client):
    _import_key(client)
    resp = client.get(f"/wallet/{TEST_ADDRESS}/transactions", params={"limit": 0})
    assert resp.status_code == 400


def test_transactions_csv(client, data_client):
    data_client.transfers = [make_transfer("0xabc", value="1500000000000000000")]
    _import_key(client)

    resp = client.get(f"/wallet/{TEST_ADDRESS}/transactions", params={"format": "csv"})

    assert resp.headers["content-type"].startswith("text/csv")
    assert "0xabc" in resp.text
    assert ",1.5," in resp.text


def test_transactions_excel(client, data_client):
    data_client.transfers = [make_transfer("0xabc")]
    _import_key(client)

    resp = client.get(f"/wallet/{TEST_ADDRESS}/transactions", params={"format": "excel"})

    ws = openpyxl.load_workbook(io.BytesIO(resp.content)).active
    assert ws.cell(row=3, column=1).value == "Hash"
    assert ws.cell(row=4, column=1).value == "0xabc"


# ── Monitoring ────────────────────────────────────────────────────────────────


def test_monitor_lifecycle(client):
    _import_key(client)

    first = client.post(f"/wallet/{TEST_ADDRESS}/monitor", json={"intervalMs": 5000})
    second = client.post(f"/wallet/{TEST_ADDRESS}/monitor")

    assert first.json()["intervalMs"] == 5000
    assert first.json()["message"].startswith("Started")
    assert second.json()["message"].endswith("already being monitored")
    assert client.get(f"/wallet/{TEST_ADDRESS}").json()["wallet"]["monitoring"] is True

    stop = client.post(f"/wallet/{TEST_ADDRESS}/stop-monitor")
    again = client.post(f"/wallet/{TEST_ADDRESS}/stop-monitor")

    assert stop.json()["monitoring"] is False
    assert again.status_code == 200
    assert again.json()["success"] is True
    assert client.get(f"/wallet/{TEST_ADDRESS}").json()["wallet"]["monitoring"] is False


def test_monitor_default_interval(client):
    _import_key(client)
    resp = client.post(f"/wallet/{TEST_ADDRESS}/monitor")
    assert resp.json()["intervalMs"] == 1000


def test_monitor_rejects_short_interval(client):
    _import_key(client)
    resp = client.post(f"/wallet/{TEST_ADDRESS}/monitor", json={"intervalMs": 10})
    assert resp.status_code == 400


def test_stop_monitor_unknown_wallet_is_noop(client):
    resp = client.post(f"/wallet/{UNKNOWN}/stop-monitor")
    assert resp.status_code == 200
    assert resp.json()["monitoring"] is False


def test_monitor_stopped_during_start_is_reported(client, data_client, registry):
    _import_key(client)
    data_client.on_fetch = lambda: registry.stop_monitoring(TEST_ADDRESS)

    resp = client.post(f"/wallet/{TEST_ADDRESS}/monitor")

    assert resp.status_code == 200
    assert resp.json()["monitoring"] is False
    assert "cancelled" in resp.json()["message"]
    assert not registry.monitor.is_watching(TEST_ADDRESS)


# ── Tokens ────────────────────────────────────────────────────────────────────

USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"


def test_token_info(client, data_client):
    data_client.tokens[USDC] = TokenMetadata(
        contract=USDC, name="USD Coin", symbol="USDC", decimals=6, price_usd=1.0
    )

    resp = client.get(f"/token/{USDC.upper().replace('0X', '0x')}")

    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert resp.json()["token"]["symbol"] == "USDC"
    assert resp.json()["token"]["price_usd"] == 1.0


def test_unknown_token_is_404(client):
    resp = client.get(f"/token/{UNKNOWN}")

    assert resp.status_code == 404
    assert resp.json()["success"] is False
    assert resp.json()["error"] == "unknown_token"


# ── MCP ───────────────────────────────────────────────────────────────────────

MCP_HEADERS = {"Accept": "application/json, text/event-stream"}


def _mcp(client, method, params, request_id=1):
    resp = client.post(
        "/mcp/",
        json={"jsonrpc": "2.0", "id": request_id, "method": method, "params": params},
        headers=MCP_HEADERS,
    )
    assert resp.status_code == 200
    return resp.json()


def test_mcp_initialize(client):
    body = _mcp(client, "initialize", {
        "protocolVersion": "2025-03-26",
        "capabilities": {},
        "clientInfo": {"name": "pytest", "version": "1.0"},
    })

    assert body["result"]["serverInfo"]["name"] == "Pluto Wallet Agent"


def test_mcp_get_wallet_tool(client):
    _import_key(client)

    body = _mcp(client, "tools/call", {
        "name": "get_wallet",
        "arguments": {"address": TEST_ADDRESS},
    }, request_id=2)

    assert body["result"]["isError"] is False
    assert TEST_ADDRESS in body["result"]["content"][0]["text"]
    assert TEST_PRIVATE_KEY not in body["result"]["content"][0]["text"]


def test_mcp_lists_tools(client):
    body = _mcp(client, "tools/list", {})

    names = {tool["name"] for tool in body["result"]["tools"]}
    assert {"chat_with_pluto", "generate_wallet", "get_wallet", "get_token_info"} <= names
