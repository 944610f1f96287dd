import logging
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import NotConnected
from .models import Session


class SessionStore:
    """Charger identity -> Session. Sessions are never removed."""

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}

    def __contains__(self, identity: str) -> bool:
        return identity in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, identity: str) -> Optional[Session]:
        return self._sessions.get(identity)

    def require(self, identity: str) -> Session:
        session = self._sessions.get(identity)
        if session is None:
            raise NotConnected(identity)
        return session

    def identities(self) -> List[str]:
        return list(self._sessions)

    def sessions(self) -> List[Session]:
        return list(self._sessions.values())

    def connect(self, identity: str) -> Tuple[Session, bool]:
        """Mark ``identity`` connected, merging with what is already known.

        Returns the live session and whether it was merged from an earlier one.
        Transaction history, status and the scheduled instants carry over; an
        earlier session that still claims to be connected is simply replaced.
        """
        previous = self._sessions.get(identity)
        if previous is None:
            session = Session(identity=identity, connected=True)
            self._sessions[identity] = session
            return session, False
        if previous.connected:
            logging.warning(f"{identity} reconnected without a disconnect; merging")
        session = replace(previous, connected=True)
        self._sessions[identity] = session
        return session, True

    def disconnect(self, identity: str) -> Optional[Session]:
        session = self._sessions.get(identity)
        if session is not None:
            session.connected = False
        return session

    def restore(self, sessions: Iterable[Session]) -> int:
        restored = 0
        for session in sessions:
            if session.identity in self._sessions:
                continue
            session.connected = False
            self._sessions[session.identity] = session
            restored += 1
        return restored
