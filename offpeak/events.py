import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Tuple

from .errors import AwaitTimeout


@dataclass(frozen=True)
class Notification:
    """An inbound OCPP request as seen by the central system."""

    identity: str
    action: str
    payload: Dict[str, Any] = field(default_factory=dict)


Listener = Callable[[Notification], None]


class EventBus:
    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, notification: Notification) -> None:
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception:
                logging.exception(f"Listener failed for {notification.action} from {notification.identity}")


class NotificationWaiter:
    """Lets a caller await the next notification of one kind from one charger.

    Every registration is single shot and keyed by ``(identity, action)`` so a
    notification from one charger never resolves a wait on another.
    """

    def __init__(self, bus: EventBus) -> None:
        self._waiting: Dict[Tuple[str, str], List[asyncio.Future]] = {}
        self._unsubscribe = bus.subscribe(self._dispatch)

    def expect(self, identity: str, action: str) -> asyncio.Future:
        future = asyncio.get_running_loop().create_future()
        self._waiting.setdefault((identity, action), []).append(future)
        return future

    def discard(self, identity: str, action: str, future: asyncio.Future) -> None:
        waiters = self._waiting.get((identity, action))
        if waiters and future in waiters:
            waiters.remove(future)
            if not waiters:
                del self._waiting[(identity, action)]
        if not future.done():
            future.cancel()

    async def wait(self, identity: str, action: str, future: asyncio.Future, timeout: float) -> Dict[str, Any]:
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise AwaitTimeout(identity, action, timeout) from None
        finally:
            self.discard(identity, action, future)

    def waiting(self, identity: str, action: str) -> int:
        return len(self._waiting.get((identity, action), []))

    def _dispatch(self, notification: Notification) -> None:
        waiters = self._waiting.pop((notification.identity, notification.action), [])
        for future in waiters:
            if not future.done():
                future.set_result(notification.payload)

    def close(self) -> None:
        self._unsubscribe()
        for waiters in self._waiting.values():
            for future in waiters:
                future.cancel()
        self._waiting.clear()
