"""
Live channel registry: which sessions belong to which user.

The registry is the only shared mutable map of the service. The transport
attaches a session when the client sends ``/app/subscribe`` and detaches it
when the session closes; the dispatcher reads it to fan a payload out to
every live session of a user.

Invariants:
- a session belongs to at most one user
- a user key with no sessions is removed
- sessions_for() returns a snapshot, so delivery can iterate while other
  flows attach or detach

The registry is volatile: a restart or disconnect loses subscriptions.
"""

import logging
import threading
from typing import Optional, Union

logger = logging.getLogger("registry")

UserId = Union[str, int]


class RegistryInvariantError(AssertionError):
    """A session was attached under two users. Indicates a transport bug."""


class SessionRegistry:
    """
    Mapping from user id (string form) to the set of live session ids.

    Writers serialize on a single lock; readers get frozenset snapshots.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions_by_user: dict[str, set[str]] = {}
        self._user_by_session: dict[str, str] = {}

    def attach(self, user_id: UserId, session_id: str) -> None:
        """
        Register ``session_id`` under ``user_id``. Idempotent per pair.

        Raises:
            RegistryInvariantError: If the session is already attached to
                a different user
        """
        user_key = str(user_id)
        with self._lock:
            owner = self._user_by_session.get(session_id)
            if owner is not None and owner != user_key:
                raise RegistryInvariantError(
                    f"session {session_id} already attached to user {owner}, "
                    f"cannot attach to user {user_key}"
                )
            self._sessions_by_user.setdefault(user_key, set()).add(session_id)
            self._user_by_session[session_id] = user_key

        logger.debug(f"Attached session {session_id} to user {user_key}")

    def detach(self, session_id: str) -> Optional[str]:
        """
        Remove a session. Safe to call for an unknown session.

        Returns:
            The user the session was attached to, or None
        """
        with self._lock:
            user_key = self._user_by_session.pop(session_id, None)
            if user_key is None:
                return None
            sessions = self._sessions_by_user[user_key]
            sessions.discard(session_id)
            if not sessions:
                del self._sessions_by_user[user_key]

        logger.debug(f"Detached session {session_id} from user {user_key}")
        return user_key

    def sessions_for(self, user_id: UserId) -> frozenset[str]:
        """Snapshot of the sessions currently attached to a user."""
        with self._lock:
            return frozenset(self._sessions_by_user.get(str(user_id), ()))

    def user_for(self, session_id: str) -> Optional[str]:
        with self._lock:
            return self._user_by_session.get(session_id)

    def users(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._sessions_by_user)

    def user_count(self) -> int:
        with self._lock:
            return len(self._sessions_by_user)

    def session_count(self) -> int:
        with self._lock:
            return len(self._user_by_session)

    def clear(self) -> None:
        """Drop every entry (used on shutdown)."""
        with self._lock:
            self._sessions_by_user.clear()
            self._user_by_session.clear()
