from fastapi.testclient import TestClient

from lottery_dapp.lottery.engine import LotteryEngine
from lottery_dapp.web_server import LotteryWebServer

from fakes import ALICE, CONTRACT, FAST_CONFIG, FakeChain, FakeGateway, FakeProvider


def make_client(provider="default", chain=None):
    if provider == "default":
        provider = FakeProvider()
    gateway = FakeGateway(chain or FakeChain())
    engine = LotteryEngine(FAST_CONFIG, provider, gateway=gateway)
    server = LotteryWebServer(FAST_CONFIG, engine)
    return TestClient(server.app), gateway


def test_state_before_connect():
    client, _ = make_client()
    with client:
        resp = client.get("/api/state")
    assert resp.status_code == 200
    data = resp.json()
    assert data["snapshot"]["roundId"] == 1
    assert data["session"]["connected"] is False
    assert data["view"]["primary_action_label"] == "Connect Wallet to Enter"


def test_contract_and_health():
    client, _ = make_client()
    with client:
        contract = client.get("/api/contract").json()
        health = client.get("/api/health").json()
    assert contract["address"] == CONTRACT
    assert contract["entryFeeWei"] == 10**16
    assert contract["entryFeeEth"] == "0.01"
    assert health["status"] == "ok"
    assert health["components"]["node"]["status"] == "healthy"
    assert health["components"]["engine"]["status"] == "running"


def test_connect_enter_and_players():
    client, gateway = make_client()
    with client:
        connected = client.post("/api/wallet/connect")
        entered = client.post("/api/actions/enter", json={"value_wei": 10**16})
        players = client.get("/api/players").json()
        state = client.get("/api/state").json()

    assert connected.status_code == 200
    assert connected.json()["session"]["address"].lower() == ALICE
    assert entered.status_code == 200
    assert entered.json()["status"] == "success"
    assert players["count"] == 1
    assert players["players"][0].lower() == ALICE
    assert state["view"]["primary_action_label"] == "Ticket Purchased (Max 1 Per Round)"


def test_action_errors():
    client, gateway = make_client()
    with client:
        unknown = client.post("/api/actions/withdraw")
        no_wallet = client.post("/api/actions/enter")
        client.post("/api/wallet/connect")
        wrong_fee = client.post("/api/actions/enter", json={"value_wei": 1})

    assert unknown.status_code == 400
    assert no_wallet.status_code == 409
    assert no_wallet.json()["detail"]["reason"] == "wallet required"
    assert wrong_fee.status_code == 409
    assert gateway.chain.sent == []


def test_connect_errors():
    rejected, _ = make_client(FakeProvider(approve=False))
    with rejected:
        resp = rejected.post("/api/wallet/connect")
    assert resp.status_code == 403

    missing, _ = make_client(None)
    with missing:
        resp = missing.post("/api/wallet/connect")
    assert resp.status_code == 503


def test_disconnect_and_refresh():
    client, _ = make_client()
    with client:
        client.post("/api/wallet/connect")
        disconnected = client.post("/api/wallet/disconnect").json()
        refreshed = client.post("/api/refresh").json()
    assert disconnected["session"]["connected"] is False
    assert refreshed["published"] is True
    assert refreshed["state"]["snapshot"]["callerAddress"] is None


def test_websocket_receives_state_then_updates():
    client, _ = make_client()
    with client:
        with client.websocket_connect("/ws/lottery") as ws:
            first = ws.receive_json()
            client.post("/api/wallet/connect")
            seen = []
            while "session_update" not in seen and len(seen) < 8:
                seen.append(ws.receive_json()["type"])

    assert first["type"] == "state"
    assert first["payload"]["session"]["connected"] is False
    assert "session_update" in seen
