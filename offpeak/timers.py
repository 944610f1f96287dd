import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Dict, Tuple

START = "start"
STOP = "stop"
KINDS = (START, STOP)

Action = Callable[[], Awaitable[None]]


class TimerManager:
    """Deferred start/stop actions, at most one of each kind per identity.

    Arming a kind that is already pending cancels the earlier timer. Timers only
    live in memory; nothing here survives a restart.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self._clock = clock
        self._timers: Dict[Tuple[str, str], asyncio.Task] = {}

    def arm(self, identity: str, kind: str, at: datetime, action: Action) -> None:
        if kind not in KINDS:
            raise ValueError(f"unknown timer kind: {kind}")
        key = (identity, kind)
        self.cancel(identity, kind)
        delay = max(0.0, (at - self._clock()).total_seconds())
        logging.info(f"Timer {kind} armed for {identity} at {at.isoformat()} (in {delay:.0f}s)")
        self._timers[key] = asyncio.create_task(self._fire(key, delay, action))

    async def _fire(self, key: Tuple[str, str], delay: float, action: Action) -> None:
        identity, kind = key
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            logging.debug(f"Timer {kind} for {identity} cancelled")
            raise
        # the slot is free before the action runs so it can re-arm either kind
        if self._timers.get(key) is asyncio.current_task():
            del self._timers[key]
        logging.info(f"Timer {kind} fired for {identity}")
        try:
            await action()
        except Exception:
            logging.exception(f"Timer {kind} action for {identity} crashed")

    def cancel(self, identity: str, kind: str) -> bool:
        task = self._timers.pop((identity, kind), None)
        if task is None:
            return False
        task.cancel()
        return True

    def pending(self, identity: str, kind: str) -> bool:
        return (identity, kind) in self._timers

    def cancel_all(self) -> None:
        for task in self._timers.values():
            task.cancel()
        self._timers.clear()
