import asyncio
from datetime import datetime, timedelta

import pytest

from offpeak.engine import SessionEngine
from offpeak.store import SessionStore

# Wednesday
WEEKDAY = datetime(2024, 6, 5)
# Saturday
WEEKEND = datetime(2024, 6, 8)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeCharger:
    """Stands in for a live CentralSystem connection."""

    def __init__(self, engine=None, identity="CP1"):
        self.engine = engine
        self.identity = identity
        self.sent: list[tuple[str, dict]] = []
        self.responses: dict[str, dict | None] = {
            "RemoteStartTransaction": {"status": "Accepted"},
            "RemoteStopTransaction": {"status": "Accepted"},
            "TriggerMessage": {"status": "Accepted"},
            "Reset": {"status": "Accepted"},
            "GetConfiguration": {"configuration_key": [{"key": "HeartbeatInterval", "readonly": False, "value": "300"}]},
        }
        # payload the charger "sends" after accepting a TriggerMessage
        self.triggered_payload: dict | None = None
        self.fail_with: Exception | None = None

    def commands(self, name: str) -> list[dict]:
        return [kwargs for sent, kwargs in self.sent if sent == name]

    async def send_command(self, name, **kwargs):
        self.sent.append((name, kwargs))
        if self.fail_with is not None:
            raise self.fail_with
        if name == "TriggerMessage" and self.triggered_payload is not None:
            message = kwargs["requested_message"]
            payload = dict(self.triggered_payload)
            loop = asyncio.get_running_loop()
            if message == "StatusNotification":
                loop.call_soon(
                    lambda: self.engine.on_status_notification(
                        self.identity, payload.pop("connector_id", 1), payload.pop("status"), **payload
                    )
                )
            else:
                loop.call_soon(lambda: self.engine.on_notification(self.identity, message, payload))
        return self.responses.get(name)


@pytest.fixture
def clock():
    return FakeClock(WEEKDAY.replace(hour=5))


@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def engine(store, clock):
    return SessionEngine(store, clock=clock, margin=timedelta(0), id_tag="TESTTAG", trigger_timeout=0.2)


@pytest.fixture
def charger(engine):
    return FakeCharger(engine)
