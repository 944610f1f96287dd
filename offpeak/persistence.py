import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from .errors import PersistenceError
from .models import Session, StatusRecord, TransactionRecord
from .store import SessionStore


class TransactionSnapshot(BaseModel):
    meter_values: List[Any] = Field(default_factory=list)


class StatusSnapshot(BaseModel):
    status: str
    received_at: datetime
    connector_id: Optional[int] = None
    error_code: Optional[str] = None


class SessionSnapshot(BaseModel):
    identity: str
    status: Optional[str] = None
    status_history: List[StatusSnapshot] = Field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    transactions: Dict[int, TransactionSnapshot] = Field(default_factory=dict)
    active_transaction_id: Optional[int] = None
    last_transaction: Optional[TransactionSnapshot] = None
    last_transaction_id: Optional[int] = None

    @classmethod
    def from_session(cls, session: Session) -> "SessionSnapshot":
        last = session.last_transaction
        return cls(
            identity=session.identity,
            status=session.status,
            status_history=[
                StatusSnapshot(
                    status=r.status,
                    received_at=r.received_at,
                    connector_id=r.connector_id,
                    error_code=r.error_code,
                )
                for r in session.status_history
            ],
            start_time=session.scheduled_start,
            end_time=session.scheduled_stop,
            transactions={
                tx_id: TransactionSnapshot(meter_values=list(record.meter_values))
                for tx_id, record in session.transactions.items()
            },
            active_transaction_id=session.active_transaction_id,
            last_transaction=TransactionSnapshot(meter_values=list(last.meter_values)) if last else None,
            last_transaction_id=session.last_transaction_id,
        )

    def to_session(self) -> Session:
        transactions = {
            tx_id: TransactionRecord(meter_values=list(tx.meter_values))
            for tx_id, tx in self.transactions.items()
        }
        last = None
        if self.last_transaction_id is not None and self.last_transaction_id in transactions:
            last = transactions[self.last_transaction_id]
        elif self.last_transaction is not None:
            last = TransactionRecord(meter_values=list(self.last_transaction.meter_values))
        return Session(
            identity=self.identity,
            connected=False,
            status=self.status,
            status_history=[
                StatusRecord(
                    status=r.status,
                    received_at=r.received_at,
                    connector_id=r.connector_id,
                    error_code=r.error_code,
                )
                for r in self.status_history
            ],
            active_transaction_id=self.active_transaction_id,
            last_transaction_id=self.last_transaction_id,
            last_transaction=last,
            transactions=transactions,
            scheduled_start=self.start_time,
            scheduled_stop=self.end_time,
        )


class StoreSnapshot(BaseModel):
    saved_at: datetime
    sessions: Dict[str, SessionSnapshot] = Field(default_factory=dict)


class PersistenceGateway:
    """Write the session store to a JSON file on shutdown, read it on startup."""

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path)
        self._written = False

    def snapshot(self, store: SessionStore) -> bool:
        """Persist ``store`` once; later calls are no-ops and return False."""
        if self._written:
            logging.debug("Session snapshot already written, skipping")
            return False
        doc = StoreSnapshot(
            saved_at=datetime.now(),
            sessions={s.identity: SessionSnapshot.from_session(s) for s in store.sessions()},
        )
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(doc.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, self.path)
        self._written = True
        logging.info(f"Saved {len(doc.sessions)} session(s) to {self.path}")
        return True

    def restore(self) -> List[Session]:
        if not self.path.exists():
            logging.info(f"No session snapshot at {self.path}, starting fresh")
            return []
        try:
            doc = StoreSnapshot.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError, ValidationError) as e:
            raise PersistenceError(f"Cannot restore sessions from {self.path}: {e}") from e
        sessions = [snap.to_session() for snap in doc.sessions.values()]
        logging.info(f"Restored {len(sessions)} session(s) from {self.path} (saved {doc.saved_at.isoformat()})")
        return sessions
