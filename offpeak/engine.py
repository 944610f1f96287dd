import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Set

from .config import ID_TAG, TRIGGER_TIMEOUT_SEC
from .errors import (
    CentralSystemError,
    CommandFailed,
    CommandRejected,
    InvalidTrigger,
    NoActiveTransaction,
    NotConnected,
    UnsupportedNotification,
)
from .events import EventBus, Notification, NotificationWaiter
from .models import ChargerStatus, CommandStatus, Session, StatusRecord
from .policy import SAFETY_MARGIN, compute_next_start, compute_stop
from .store import SessionStore
from .timers import START, STOP, TimerManager
from . import transactions

TRIGGERABLE = ("StatusNotification", "BootNotification", "Heartbeat", "MeterValues")


class Connection(Protocol):
    async def send_command(self, name: str, **kwargs) -> Optional[Dict[str, Any]]:
        ...


class SessionEngine:
    """Reacts to charger notifications and drives the off-peak schedule.

    Inbound handlers are plain methods: each one runs to completion before the
    next notification is processed, so sessions are never edited concurrently.
    Outbound commands go through ``call``/``safe_call`` on the connection that
    is currently registered for the identity.
    """

    def __init__(
        self,
        store: SessionStore,
        timers: Optional[TimerManager] = None,
        bus: Optional[EventBus] = None,
        id_tag: str = ID_TAG,
        clock: Callable[[], datetime] = datetime.now,
        margin: timedelta = SAFETY_MARGIN,
        trigger_timeout: float = TRIGGER_TIMEOUT_SEC,
    ):
        self.store = store
        self.timers = timers or TimerManager(clock)
        self.bus = bus or EventBus()
        self.waiter = NotificationWaiter(self.bus)
        self.id_tag = id_tag
        self.clock = clock
        self.margin = margin
        self.trigger_timeout = trigger_timeout
        self._connections: Dict[str, Connection] = {}
        self._tasks: Set[asyncio.Task] = set()

    # ---------- connection lifecycle ----------

    def connect(self, identity: str, connection: Connection) -> Session:
        session, merged = self.store.connect(identity)
        self._connections[identity] = connection
        logging.info(f"[Central] {identity} connected (merged={merged})")
        if merged and session.status is not None:
            # scheduled instants carried over are stale until the device reports again
            self._spawn(self._refresh_status(identity))
        return session

    def disconnect(self, identity: str, connection: Optional[Connection] = None) -> None:
        current = self._connections.get(identity)
        if connection is not None and current is not connection:
            logging.info(f"[Central] stale connection for {identity} closed, keeping the newer one")
            return
        self._connections.pop(identity, None)
        self.store.disconnect(identity)
        logging.info(f"[Central] Disconnected: {identity}")

    def is_connected(self, identity: str) -> bool:
        session = self.store.get(identity)
        return session is not None and session.connected and identity in self._connections

    def _spawn(self, coro: Awaitable) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _refresh_status(self, identity: str) -> None:
        resp = await self.safe_call(identity, "TriggerMessage", requested_message="StatusNotification")
        logging.info(f"Requested fresh StatusNotification from {identity}: {resp}")

    # ---------- outbound commands ----------

    async def call(self, identity: str, name: str, **kwargs) -> Optional[Dict[str, Any]]:
        connection = self._connections.get(identity)
        if connection is None or not self.is_connected(identity):
            raise NotConnected(identity)
        logging.info(f"→ {name} to {identity} {kwargs}")
        try:
            resp = await connection.send_command(name, **kwargs)
        except Exception as e:
            raise CommandFailed(identity, name, e) from e
        logging.info(f"← {name}.conf from {identity}: {resp}")
        return resp

    async def safe_call(self, identity: str, name: str, **kwargs) -> Optional[Dict[str, Any]]:
        """Like ``call`` but never raises; a failed command yields ``None``."""
        try:
            return await self.call(identity, name, **kwargs)
        except CentralSystemError as e:
            logging.warning(f"{name} to {identity} failed: {e}")
            return None

    # ---------- inbound notifications ----------

    def _publish(self, identity: str, action: str, payload: Dict[str, Any]) -> None:
        self.bus.publish(Notification(identity=identity, action=action, payload=payload))

    def on_notification(self, identity: str, action: str, payload: Dict[str, Any]) -> None:
        self._publish(identity, action, payload)

    def on_unsupported(self, identity: str, action: str, payload: Dict[str, Any]) -> UnsupportedNotification:
        error = UnsupportedNotification(identity, action)
        logging.warning(f"← {error}: {payload}")
        self._publish(identity, action, payload)
        return error

    def on_status_notification(self, identity: str, connector_id: int, status: str, **params) -> None:
        session = self.store.require(identity)
        error_code = params.get("error_code")
        session.status_history.append(
            StatusRecord(
                status=status,
                received_at=self.clock(),
                connector_id=connector_id,
                error_code=error_code,
            )
        )
        session.status = status
        if status == ChargerStatus.PREPARING:
            self._schedule_start(session, connector_id)
        elif status == ChargerStatus.AVAILABLE and session.active_transaction_id is not None:
            tx_id = transactions.close_active(session)
            if self.timers.cancel(identity, STOP):
                logging.info(f"Window closed early on {identity}, stop timer cancelled")
            session.scheduled_stop = None
            logging.info(f"{identity} is Available, transaction {tx_id} treated as finished")
        self._publish(identity, "StatusNotification", {"connector_id": connector_id, "status": status, **params})

    def on_start_transaction(self, identity: str, **params) -> int:
        session = self.store.require(identity)
        tx_id = transactions.start_transaction(session)
        logging.info(f"→ Assign transactionId={tx_id} to {identity}")
        self._publish(identity, "StartTransaction", params)
        return tx_id

    def on_stop_transaction(self, identity: str, transaction_id: int, **params) -> None:
        session = self.store.require(identity)
        transactions.stop_transaction(session, int(transaction_id), params.get("transaction_data"))
        self._publish(identity, "StopTransaction", {"transaction_id": transaction_id, **params})

    def on_meter_values(self, identity: str, meter_value: List[Any], **params) -> int:
        session = self.store.require(identity)
        self._publish(identity, "MeterValues", {"meter_value": meter_value, **params})
        tx_id = params.get("transaction_id")
        return transactions.record_meter_values(
            session, meter_value, int(tx_id) if tx_id is not None else None
        )

    # ---------- off-peak schedule ----------

    def _schedule_start(self, session: Session, connector_id: int) -> None:
        identity = session.identity
        start_at = compute_next_start(self.clock(), self.margin)
        session.scheduled_start = start_at
        logging.info(f"startTime for {identity} set to {start_at.isoformat()}")
        self.timers.arm(identity, START, start_at, lambda: self._start_window(identity, connector_id))

    async def _start_window(self, identity: str, connector_id: int) -> None:
        session = self.store.get(identity)
        if session is not None:
            session.scheduled_start = None
        stop_at = compute_stop(self.clock())
        if stop_at <= self.clock():
            logging.warning(f"Charging window on {identity} already closed at {stop_at.isoformat()}; not starting")
            return
        resp = await self.safe_call(
            identity, "RemoteStartTransaction", connector_id=connector_id, id_tag=self.id_tag
        )
        status = (resp or {}).get("status")
        if status != CommandStatus.ACCEPTED:
            logging.warning(f"Remote start on {identity} rejected ({status}); no stop scheduled")
            return
        logging.info(f"Remote start on {identity} accepted, stopping at {stop_at.isoformat()}")
        session = self.store.get(identity)
        if session is not None:
            session.scheduled_stop = stop_at
        self.timers.arm(identity, STOP, stop_at, lambda: self._stop_window(identity))

    async def _stop_window(self, identity: str) -> None:
        session = self.store.get(identity)
        if session is None:
            return
        session.scheduled_stop = None
        if session.active_transaction_id is None:
            logging.info(f"Charging window over on {identity}, no transaction to stop")
            return
        resp = await self.safe_call(
            identity, "RemoteStopTransaction", transaction_id=session.active_transaction_id
        )
        status = (resp or {}).get("status")
        if status != CommandStatus.ACCEPTED:
            logging.warning(f"Remote stop on {identity} rejected: {status}")

    # ---------- control operations ----------

    async def remote_start(self, identity: str, connector_id: int = 1) -> str:
        resp = await self.call(identity, "RemoteStartTransaction", connector_id=connector_id, id_tag=self.id_tag)
        status = (resp or {}).get("status")
        if status != CommandStatus.ACCEPTED:
            raise CommandRejected(identity, "RemoteStartTransaction", status)
        return status

    async def remote_stop(self, identity: str) -> int:
        session = self.store.require(identity)
        tx_id = session.active_transaction_id
        if tx_id is None:
            raise NoActiveTransaction(identity)
        resp = await self.call(identity, "RemoteStopTransaction", transaction_id=tx_id)
        status = (resp or {}).get("status")
        if status != CommandStatus.ACCEPTED:
            raise CommandRejected(identity, "RemoteStopTransaction", status)
        return tx_id

    async def soft_reset(self, identity: str) -> Optional[Dict[str, Any]]:
        return await self.call(identity, "Reset", type="Soft")

    async def soft_reset_all(self) -> Dict[str, Optional[Dict[str, Any]]]:
        results = {}
        for identity in self.store.identities():
            if self.is_connected(identity):
                results[identity] = await self.safe_call(identity, "Reset", type="Soft")
        return results

    async def get_configuration(self, identity: str) -> Optional[Dict[str, Any]]:
        return await self.call(identity, "GetConfiguration")

    async def trigger(self, identity: str, message: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Ask the charger to send ``message`` and return what it sends."""
        if message not in TRIGGERABLE:
            raise InvalidTrigger(message)
        if not self.is_connected(identity):
            raise NotConnected(identity)
        timeout = self.trigger_timeout if timeout is None else timeout
        future = self.waiter.expect(identity, message)
        try:
            resp = await self.call(identity, "TriggerMessage", requested_message=message)
            status = (resp or {}).get("status")
            if status != CommandStatus.ACCEPTED:
                raise CommandRejected(identity, "TriggerMessage", status)
            return await self.waiter.wait(identity, message, future, timeout)
        finally:
            self.waiter.discard(identity, message, future)

    def shutdown(self) -> None:
        self.timers.cancel_all()
        self.waiter.close()
        for task in list(self._tasks):
            task.cancel()
