"""Durable per-browser conversation identity."""

import logging
import uuid
from collections.abc import MutableMapping

logger = logging.getLogger(__name__)

SESSION_STORAGE_KEY = "devtwin.session_id"


class SessionIdentityStore:
    """Owns the session id persisted in browser-scoped storage.

    The storage is any string mapping. The chat page passes NiceGUI's
    ``app.storage.user``; tests pass a plain dict.
    """

    def __init__(
        self,
        storage: MutableMapping[str, str],
        key: str = SESSION_STORAGE_KEY,
    ) -> None:
        self._storage = storage
        self._key = key

    def get_or_create_session_id(self) -> str:
        """Return the stored session id, creating and persisting one if absent."""
        session_id = self._storage.get(self._key)
        if session_id:
            return session_id
        session_id = self._new_id()
        self._storage[self._key] = session_id
        logger.info(f"Created session {session_id}")
        return session_id

    def reset_session(self) -> str:
        """Issue a fresh session id, overwriting the stored one."""
        previous = self._storage.get(self._key)
        session_id = self._new_id()
        self._storage[self._key] = session_id
        logger.info(f"Reset session {previous} -> {session_id}")
        return session_id

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())
