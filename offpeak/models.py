from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


class ChargerStatus:
    AVAILABLE = "Available"
    PREPARING = "Preparing"
    CHARGING = "Charging"
    FINISHING = "Finishing"
    FAULTED = "Faulted"
    SUSPENDED_EV = "SuspendedEV"
    SUSPENDED_EVSE = "SuspendedEVSE"


class CommandStatus:
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"


@dataclass
class TransactionRecord:
    """One charging event and the meter samples reported for it."""

    meter_values: List[Any] = field(default_factory=list)


@dataclass
class StatusRecord:
    status: str
    received_at: datetime
    connector_id: Optional[int] = None
    error_code: Optional[str] = None


@dataclass
class Session:
    """State of one charger identity across its connection lifetime.

    Only the scheduled instants are kept here; the timers enforcing them are
    owned by ``TimerManager`` and never travel with the session.
    """

    identity: str
    connected: bool = False
    status: Optional[str] = None
    status_history: List[StatusRecord] = field(default_factory=list)
    active_transaction_id: Optional[int] = None
    last_transaction_id: Optional[int] = None
    last_transaction: Optional[TransactionRecord] = None
    transactions: Dict[int, TransactionRecord] = field(default_factory=dict)
    scheduled_start: Optional[datetime] = None
    scheduled_stop: Optional[datetime] = None
