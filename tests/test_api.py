"""
API tests: FastAPI app driven through httpx ASGITransport
"""

from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from api_server import create_app
from config.config import USDC_TOKEN
from conftest import CUSTODIAL_ADDRESS, FakeChain, FakeDex, no_sleep
from src.api import api_key_auth
from src.services.chain_schemas import ChainTransaction
from src.services.container import ServiceContainer
from src.utils.address import normalize_address


WALLET = "0xabc"


@pytest.fixture
def services(session_maker) -> ServiceContainer:
    chain = FakeChain(balances={"MOVE": Decimal("0"), "USDC": Decimal("1000")})
    return ServiceContainer.create(session_maker=session_maker, chain=chain, dex=FakeDex(), sleep=no_sleep)


@pytest.fixture
async def client(services):
    app = create_app(services)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http
    await services.scheduler.shutdown()


@pytest.mark.asyncio
async def test_health_is_public(client, monkeypatch):
    monkeypatch.setattr(api_key_auth, "API_KEY", "secret")

    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["database"] is True
    assert body["rpc_latency_ms"] == 5
    assert body["wallet_configured"] is True


@pytest.mark.asyncio
async def test_api_key_required_when_configured(client, monkeypatch):
    monkeypatch.setattr(api_key_auth, "API_KEY", "secret")

    missing = await client.get("/api/twap/status")
    assert missing.status_code == 401
    assert missing.json() == {"success": False, "error": "API key required. Provide X-API-Key header."}

    wrong = await client.get("/api/twap/status", headers={"X-API-Key": "nope"})
    assert wrong.status_code == 401
    assert wrong.json()["error"] == "Invalid API key"

    ok = await client.get("/api/twap/status", headers={"X-API-Key": "secret"})
    assert ok.status_code == 200
    assert ok.json()["success"] is True


@pytest.mark.asyncio
async def test_twap_start_runs_schedule(client, services):
    await services.ledger.record_deposit(WALLET, "USDC", Decimal("100"), "0xtx1")

    response = await client.post(
        "/api/twap/start",
        json={"totalAmount": 100, "numSlices": 2, "intervalMs": 1000, "walletAddress": WALLET},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["is_active"] is True
    assert body["data"]["trades_completed"] == 1
    assert body["data"]["amount_per_slice"] == 50.0

    await services.scheduler.join(WALLET)

    history = await client.get("/api/history", params={"walletAddress": WALLET})
    trades = history.json()["data"]
    assert len(trades) == 2
    assert {t["status"] for t in trades} == {"success"}

    sessions = await client.get("/api/twap/sessions", params={"walletAddress": WALLET})
    assert sessions.json()["data"][0]["status"] == "completed"

    balance = await client.get(f"/api/wallet/user-balance/{WALLET}")
    data = balance.json()["data"]
    assert data["USDC"]["available"] == 0.0
    assert data["MOVE"]["available"] == 200.0


@pytest.mark.asyncio
async def test_twap_start_errors_use_envelope(client, services):
    invalid = await client.post("/api/twap/start", json={"totalAmount": 100, "numSlices": 0, "walletAddress": WALLET})
    assert invalid.status_code == 400
    assert invalid.json() == {"success": False, "error": "Number of slices must be greater than 0"}

    broke = await client.post("/api/twap/start", json={"totalAmount": 100, "numSlices": 2, "walletAddress": WALLET})
    assert broke.status_code == 400
    assert broke.json()["success"] is False
    assert "Insufficient balance" in broke.json()["error"]

    malformed = await client.post("/api/twap/start", json={"numSlices": 2})
    assert malformed.status_code == 400
    assert malformed.json()["success"] is False


@pytest.mark.asyncio
async def test_twap_stop_is_idempotent(client, services):
    first = await client.post("/api/twap/stop", json={"walletAddress": WALLET})
    second = await client.post("/api/twap/stop", json={"walletAddress": WALLET})

    assert first.status_code == 200
    assert first.json()["data"]["is_active"] is False
    assert second.json() == first.json()


@pytest.mark.asyncio
async def test_quote_endpoint(client):
    response = await client.post("/api/twap/quote", json={"amount": 10, "tokenIn": "USDC", "tokenOut": "MOVE"})

    assert response.status_code == 200
    assert response.json()["data"]["amount_out"] == 20.0


@pytest.mark.asyncio
async def test_withdraw_endpoint(client, services):
    await services.ledger.record_deposit(WALLET, "USDC", Decimal("150"), "0xtx1")

    rejected = await client.post("/api/wallet/withdraw", json={"walletAddress": WALLET, "token": "USDC", "amount": 200})
    assert rejected.status_code == 400
    assert "Insufficient balance" in rejected.json()["error"]
    assert services.chain.transfers == []

    accepted = await client.post("/api/wallet/withdraw", json={"walletAddress": WALLET, "token": "USDC", "amount": 100})
    assert accepted.status_code == 200
    data = accepted.json()["data"]
    assert data["tx_hash"] == "0xtransfer1"
    assert data["remaining_balance"] == 50.0


@pytest.mark.asyncio
async def test_deposit_endpoints(client, services):
    services.chain.transactions = [
        ChainTransaction.model_validate(
            {
                "hash": "0xdep1",
                "type": "user_transaction",
                "sender": WALLET,
                "success": True,
                "payload": {
                    "function": "0x1::coin::transfer",
                    "type_arguments": [USDC_TOKEN],
                    "arguments": [CUSTODIAL_ADDRESS, "25000000"],
                },
            }
        )
    ]

    scanned = await client.post("/api/wallet/scan-deposits")
    assert scanned.json()["data"] == {"new_deposits_found": 1}

    verify = await client.post("/api/wallet/verify-deposit", json={"txHash": "0xdep1", "walletAddress": WALLET})
    assert verify.status_code == 400
    assert verify.json() == {"success": False, "error": "Transaction already processed"}

    deposits = await client.get(f"/api/wallet/deposits/{WALLET}")
    records = deposits.json()["data"]
    assert len(records) == 1
    assert records[0]["amount"] == 25.0
    assert records[0]["wallet_address"] == normalize_address(WALLET)


@pytest.mark.asyncio
async def test_wallet_status_and_address(client, services):
    status = await client.get("/api/wallet/status")
    data = status.json()["data"]
    assert data["configured"] is True
    assert data["address"] == CUSTODIAL_ADDRESS
    assert data["simulation"] is True

    address = await client.get("/api/wallet/address")
    assert address.json()["data"]["address"] == CUSTODIAL_ADDRESS

    balance = await client.get("/api/wallet/balance")
    assert balance.json()["data"]["balances"]["USDC"] == 1000.0
