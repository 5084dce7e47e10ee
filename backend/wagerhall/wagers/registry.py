from __future__ import annotations

import logging

from .exceptions import ParticipantBusyError, SessionNotFoundError
from .session import WagerSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Live wager sessions plus the participant busy-lock.

    The busy-lock maps an identity to the key of whatever holds it (a wager
    session's ``busy_key``, or a key chosen by a match component). It is the
    only record of who is busy; a participant cannot be reserved twice.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, WagerSession] = {}
        self._busy: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    # Busy-lock

    def is_busy(self, identity: str) -> bool:
        return identity in self._busy

    def holder(self, identity: str) -> str | None:
        return self._busy.get(identity)

    def reserve(self, key: str, *identities: str) -> None:
        """Reserve all identities for ``key`` or none of them."""
        taken = tuple(i for i in identities if self._busy.get(i, key) != key)
        if taken:
            raise ParticipantBusyError(
                "One of the players is already in an active wager.", taken
            )
        for identity in identities:
            self._busy[identity] = key

    def release(self, key: str, *identities: str) -> None:
        """Release identities held by ``key``; others' reservations are untouched."""
        for identity in identities:
            if self._busy.get(identity) == key:
                del self._busy[identity]

    # Sessions

    def register(self, session: WagerSession) -> None:
        if session.id in self._sessions:
            raise ValueError(f"Session {session.id} already registered")
        self._sessions[session.id] = session

    def find(self, session_id: str) -> WagerSession | None:
        return self._sessions.get(session_id)

    def get(self, session_id: str) -> WagerSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"No live wager with id {session_id}")
        return session

    def find_by_parties(self, identity_a: str, identity_b: str) -> WagerSession | None:
        for session in self._sessions.values():
            if session.involves(identity_a, identity_b):
                return session
        return None

    def remove(self, session_id: str) -> WagerSession | None:
        return self._sessions.pop(session_id, None)

    def live_sessions(self) -> list[WagerSession]:
        return list(self._sessions.values())

    def close(self) -> None:
        """Cancel every session's tasks and forget all state."""
        for session in self._sessions.values():
            cancelled = session.cancel_tasks()
            if session.match_handle:
                session.match_handle.cancel()
            if session.funded_sides() and not session.closing:
                logger.warning(
                    f"Session {session.id} closed with funds in escrow "
                    f"(funded: {', '.join(session.funded_sides())})"
                )
            logger.info(f"Closed session {session.id} ({cancelled} tasks cancelled)")
        self._sessions.clear()
        self._busy.clear()
