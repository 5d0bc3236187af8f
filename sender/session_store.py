"""In-memory Session Store: per-transfer state for the lifetime of the process."""

from datetime import datetime
from typing import Dict, List, Optional

from common.types import TransferSession, utc_now


class SessionStore:
    """
    Holds active TransferSessions keyed by session_id.

    All access happens on the event loop that owns the sessions, so no
    locking is needed.
    """

    def __init__(self):
        self._sessions: Dict[str, TransferSession] = {}

    def add(self, session: TransferSession) -> None:
        self._sessions[session.session_id] = session

    def get(self, session_id: str) -> Optional[TransferSession]:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Optional[TransferSession]:
        """Remove a session. Removing an unknown id returns None."""
        return self._sessions.pop(session_id, None)

    def active(self) -> List[TransferSession]:
        return list(self._sessions.values())

    def expired(self, now: Optional[datetime] = None) -> List[TransferSession]:
        """Sessions whose expiry has passed."""
        now = now or utc_now()
        return [s for s in self._sessions.values() if s.is_expired(now)]

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions
