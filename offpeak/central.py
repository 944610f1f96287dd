import asyncio
import contextlib
import logging
import signal
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import uvicorn
from websockets import serve
from ocpp.exceptions import OCPPError
from ocpp.messages import MessageType, unpack
from ocpp.routing import on
from ocpp.v16 import ChargePoint, call, call_result
from ocpp.v16.enums import AuthorizationStatus, RegistrationStatus

from .api import create_app
from .config import (
    HEARTBEAT_INTERVAL_SEC,
    HTTP_HOST,
    HTTP_PORT,
    LOG_LEVEL,
    RESPONSE_TIMEOUT_SEC,
    STATE_FILE,
    WS_HOST,
    WS_PORT,
)
from .engine import SessionEngine
from .errors import OrphanMeterValue
from .persistence import PersistenceGateway
from .store import SessionStore


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class CentralSystem(ChargePoint):
    """OCPP 1.6 side of one charger connection.

    Handlers translate the requests into engine calls and build the replies;
    ``send_command`` is what the engine uses to talk back to the charger.
    """

    def __init__(self, id, connection, engine: SessionEngine, response_timeout: int = RESPONSE_TIMEOUT_SEC):
        super().__init__(id, connection, response_timeout=response_timeout)
        self.engine = engine

    async def send_command(self, name: str, **kwargs) -> Optional[Dict[str, Any]]:
        request = getattr(call, name)(**kwargs)
        resp = await self.call(request)
        if resp is None:
            # CallError from the charger, already logged by ocpp
            return None
        return asdict(resp) if is_dataclass(resp) else resp

    async def route_message(self, raw_msg):
        try:
            msg = unpack(raw_msg)
        except OCPPError:
            msg = None
        if msg is not None and msg.message_type_id == MessageType.Call and msg.action not in self.route_map:
            self.engine.on_unsupported(self.id, msg.action, msg.payload)
        # unknown actions are answered with a NotImplemented CallError by ocpp
        await super().route_message(raw_msg)

    @on("BootNotification")
    async def on_boot_notification(self, charge_point_model, charge_point_vendor, **kwargs):
        logging.info(f"← BootNotification from {self.id}: vendor={charge_point_vendor}, model={charge_point_model}")
        self.engine.on_notification(
            self.id,
            "BootNotification",
            {"charge_point_model": charge_point_model, "charge_point_vendor": charge_point_vendor, **kwargs},
        )
        return call_result.BootNotification(
            current_time=_utcnow(),
            interval=HEARTBEAT_INTERVAL_SEC,
            status=RegistrationStatus.accepted,
        )

    @on("Heartbeat")
    async def on_heartbeat(self, **kwargs):
        logging.info(f"← Heartbeat from {self.id}")
        self.engine.on_notification(self.id, "Heartbeat", kwargs)
        return call_result.Heartbeat(current_time=_utcnow())

    @on("Authorize")
    async def on_authorize(self, id_tag, **kwargs):
        logging.info(f"← Authorize from {self.id}, idTag={id_tag}")
        self.engine.on_notification(self.id, "Authorize", {"id_tag": id_tag, **kwargs})
        return call_result.Authorize(id_tag_info={"status": AuthorizationStatus.accepted})

    @on("StatusNotification")
    async def on_status_notification(self, connector_id, error_code, status, **kwargs):
        logging.info(
            f"← StatusNotification from {self.id}: connector {connector_id} → status={status}, errorCode={error_code}"
        )
        self.engine.on_status_notification(
            self.id, int(connector_id), status, error_code=error_code, **kwargs
        )
        return call_result.StatusNotification()

    @on("StartTransaction")
    async def on_start_transaction(self, connector_id, id_tag, meter_start, timestamp, **kwargs):
        logging.info(
            f"← StartTransaction from {self.id}: connector={connector_id}, idTag={id_tag}, meterStart={meter_start}"
        )
        tx_id = self.engine.on_start_transaction(
            self.id,
            connector_id=connector_id,
            id_tag=id_tag,
            meter_start=meter_start,
            timestamp=timestamp,
            **kwargs,
        )
        return call_result.StartTransaction(
            transaction_id=tx_id,
            id_tag_info={"status": AuthorizationStatus.accepted},
        )

    @on("StopTransaction")
    async def on_stop_transaction(self, meter_stop, timestamp, transaction_id, **kwargs):
        logging.info(f"← StopTransaction from {self.id}: tx={transaction_id}, meterStop={meter_stop}")
        self.engine.on_stop_transaction(
            self.id, int(transaction_id), meter_stop=meter_stop, timestamp=timestamp, **kwargs
        )
        return call_result.StopTransaction()

    @on("MeterValues")
    async def on_meter_values(self, connector_id, meter_value, **kwargs):
        logging.info(f"← MeterValues from {self.id}, connector {connector_id}: {meter_value}")
        try:
            self.engine.on_meter_values(self.id, meter_value, connector_id=connector_id, **kwargs)
        except OrphanMeterValue as e:
            logging.warning(f"Dropping meter values: {e}")
        return call_result.MeterValues()


class ApiServer(uvicorn.Server):
    """uvicorn server that leaves SIGINT/SIGTERM to ``main``."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


async def shutdown(api, api_task: asyncio.Task, engine: SessionEngine, persistence: PersistenceGateway) -> None:
    """Stop the HTTP server, cancel timers and write the session snapshot.

    The snapshot is written even when the HTTP server task failed.
    """
    api.should_exit = True
    try:
        await api_task
    except Exception:
        logging.exception("HTTP server stopped with an error")
    finally:
        engine.shutdown()
        persistence.snapshot(engine.store)


async def main():
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s | %(levelname)s | %(message)s")

    store = SessionStore()
    persistence = PersistenceGateway(STATE_FILE)
    restored = store.restore(persistence.restore())
    logging.info(f"Restored {restored} session(s) before accepting connections")

    engine = SessionEngine(store)
    app = create_app(engine)

    async def handler(websocket, path=None):
        if path is None:
            try:
                path = websocket.request.path
            except AttributeError:
                path = websocket.path if hasattr(websocket, "path") else ""
        cp_id = path.rstrip("/").rsplit("/", 1)[-1] if path else "UNKNOWN"
        logging.info(f"[Central] New connection for Charge Point ID: {cp_id}")

        central = CentralSystem(cp_id, websocket, engine)
        engine.connect(cp_id, central)
        try:
            await central.start()
        except Exception as e:
            logging.info(f"[Central] Connection error for {cp_id}: {e}")
        finally:
            engine.disconnect(cp_id, central)

    api = ApiServer(uvicorn.Config(app, host=HTTP_HOST, port=HTTP_PORT, loop="asyncio", log_level=LOG_LEVEL.lower()))
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    api_task = asyncio.create_task(api.serve())
    try:
        async with serve(handler, host=WS_HOST, port=WS_PORT, subprotocols=["ocpp1.6"]):
            logging.info(f"⚡ Central listening on ws://{WS_HOST}:{WS_PORT}/<ChargePointID> | HTTP :{HTTP_PORT}")
            await stop.wait()
            logging.info("Shutting down")
    finally:
        await shutdown(api, api_task, engine, persistence)


if __name__ == "__main__":
    asyncio.run(main())
