from typing import Any, Dict, Iterable, List, Optional

from .errors import OrphanMeterValue
from .models import Session, TransactionRecord

ABRIDGE_LIMIT = 100
ABRIDGE_HEAD = 75
ABRIDGE_TAIL = 25


def next_transaction_id(session: Session) -> int:
    known = [tx for tx in (session.last_transaction_id, session.active_transaction_id) if tx is not None]
    known.extend(session.transactions)
    return max(known, default=0) + 1


def start_transaction(session: Session) -> int:
    """Open a new transaction on ``session`` and return its id."""
    tx_id = next_transaction_id(session)
    session.transactions[tx_id] = TransactionRecord()
    session.active_transaction_id = tx_id
    return tx_id


def stop_transaction(
    session: Session, transaction_id: int, final_payload: Optional[Iterable[Any]] = None
) -> TransactionRecord:
    """Close ``transaction_id`` and remember it as the last transaction."""
    if session.active_transaction_id == transaction_id:
        session.active_transaction_id = None
    record = session.transactions.setdefault(transaction_id, TransactionRecord())
    if final_payload:
        record.meter_values.extend(final_payload)
    session.last_transaction_id = transaction_id
    session.last_transaction = record
    return record


def close_active(session: Session) -> Optional[int]:
    """End the active transaction without a StopTransaction from the device."""
    tx_id = session.active_transaction_id
    if tx_id is None:
        return None
    session.last_transaction_id = tx_id
    session.last_transaction = session.transactions.setdefault(tx_id, TransactionRecord())
    session.active_transaction_id = None
    return tx_id


def record_meter_values(
    session: Session, samples: Iterable[Any], transaction_id: Optional[int] = None
) -> int:
    """Append ``samples`` to a transaction and return the id they went to.

    A ``transaction_id`` reported by the device wins when it is known; otherwise
    the samples belong to the active transaction.
    """
    if transaction_id is not None and transaction_id in session.transactions:
        tx_id = transaction_id
    elif session.active_transaction_id is not None:
        tx_id = session.active_transaction_id
    else:
        raise OrphanMeterValue(session.identity, transaction_id)
    record = session.transactions.setdefault(tx_id, TransactionRecord())
    record.meter_values.extend(samples)
    return tx_id


def abridge(values: List[Any]) -> List[Any]:
    if len(values) <= ABRIDGE_LIMIT:
        return list(values)
    return values[:ABRIDGE_HEAD] + values[-ABRIDGE_TAIL:]


def abridged_transactions(session: Session) -> Dict[int, List[Any]]:
    return {tx_id: abridge(record.meter_values) for tx_id, record in session.transactions.items()}
