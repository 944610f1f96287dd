import httpx
import pytest

from offpeak.api import create_app
from offpeak.transactions import record_meter_values


def client_for(engine) -> httpx.AsyncClient:
    transport = httpx.ASGITransport(app=create_app(engine))
    return httpx.AsyncClient(transport=transport, base_url="http://test")


@pytest.mark.asyncio
async def test_health(engine):
    async with client_for(engine) as client:
        resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["ok"] is True


@pytest.mark.asyncio
async def test_list_and_show_clients(engine, charger):
    engine.connect("CP1", charger)
    engine.on_status_notification("CP1", 1, "Available", error_code="NoError")
    async with client_for(engine) as client:
        listed = await client.get("/clients")
        shown = await client.get("/clients/CP1")
    assert listed.json() == ["CP1"]
    body = shown.json()
    assert body["identity"] == "CP1"
    assert body["connected"] is True
    assert body["status"] == "Available"
    assert body["statusHistory"][0]["errorCode"] == "NoError"
    assert body["startPending"] is False


@pytest.mark.asyncio
async def test_unknown_client_is_503(engine):
    async with client_for(engine) as client:
        resp = await client.get("/clients/CP9")
    assert resp.status_code == 503
    assert resp.json()["detail"] == "ChargePoint 'CP9' not connected"


@pytest.mark.asyncio
async def test_transactions_are_abridged_unless_full(engine, charger):
    engine.connect("CP1", charger)
    engine.on_start_transaction("CP1", connector_id=1, id_tag="T", meter_start=0)
    record_meter_values(engine.store.get("CP1"), list(range(150)))
    async with client_for(engine) as client:
        short = await client.get("/clients/CP1/transactions")
        full = await client.get("/clients/CP1/transactions", params={"full": "true"})
    assert short.json()["activeTransactionId"] == 1
    assert len(short.json()["transactions"]["1"]) == 100
    assert short.json()["transactions"]["1"][-1] == 149
    assert len(full.json()["transactions"]["1"]) == 150


@pytest.mark.asyncio
async def test_start_with_connector(engine, charger):
    engine.connect("CP1", charger)
    async with client_for(engine) as client:
        resp = await client.post("/clients/CP1/start", json={"connectorId": 2})
    assert resp.status_code == 200
    assert charger.commands("RemoteStartTransaction") == [{"connector_id": 2, "id_tag": "TESTTAG"}]


@pytest.mark.asyncio
async def test_start_rejected_is_409(engine, charger):
    charger.responses["RemoteStartTransaction"] = {"status": "Rejected"}
    engine.connect("CP1", charger)
    async with client_for(engine) as client:
        resp = await client.post("/clients/CP1/start")
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_stop_without_transaction_is_400(engine, charger):
    engine.connect("CP1", charger)
    async with client_for(engine) as client:
        resp = await client.post("/clients/CP1/stop")
    assert resp.status_code == 400
    assert charger.sent == []


@pytest.mark.asyncio
async def test_stop_active_transaction(engine, charger):
    engine.connect("CP1", charger)
    tx_id = engine.on_start_transaction("CP1", connector_id=1, id_tag="T", meter_start=0)
    async with client_for(engine) as client:
        resp = await client.post("/clients/CP1/stop")
    assert resp.status_code == 200
    assert resp.json()["transactionId"] == tx_id


@pytest.mark.asyncio
async def test_command_on_disconnected_client_is_503(engine, charger):
    engine.connect("CP1", charger)
    engine.disconnect("CP1", charger)
    async with client_for(engine) as client:
        resp = await client.post("/clients/CP1/softreset")
    assert resp.status_code == 503


@pytest.mark.asyncio
async def test_soft_reset_all(engine, charger):
    engine.connect("CP1", charger)
    async with client_for(engine) as client:
        resp = await client.post("/softreset")
    assert resp.json()["responses"] == {"CP1": {"status": "Accepted"}}


@pytest.mark.asyncio
async def test_config(engine, charger):
    engine.connect("CP1", charger)
    async with client_for(engine) as client:
        resp = await client.get("/clients/CP1/config")
    assert resp.json()["configuration_key"][0]["key"] == "HeartbeatInterval"


@pytest.mark.asyncio
async def test_trigger(engine, charger):
    charger.triggered_payload = {"connector_id": 1, "status": "Preparing", "error_code": "NoError"}
    engine.connect("CP1", charger)
    async with client_for(engine) as client:
        resp = await client.get("/clients/CP1/trigger/StatusNotification")
    assert resp.status_code == 200
    assert resp.json()["status"] == "Preparing"
    engine.timers.cancel_all()


@pytest.mark.asyncio
async def test_trigger_invalid_message_is_400(engine, charger):
    engine.connect("CP1", charger)
    async with client_for(engine) as client:
        resp = await client.get("/clients/CP1/trigger/Reset")
    assert resp.status_code == 400
    assert resp.json()["detail"] == "invalid message: Reset"


@pytest.mark.asyncio
async def test_trigger_timeout_is_503(engine, charger):
    engine.connect("CP1", charger)
    async with client_for(engine) as client:
        resp = await client.get("/clients/CP1/trigger/Heartbeat")
    assert resp.status_code == 503
    assert "Timeout while waiting" in resp.json()["detail"]
