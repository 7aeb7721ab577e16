from __future__ import annotations
import uuid
from typing import Optional

from .storage import FileStorage, MemoryStorage

PIXEL_ID_KEY = "neura_pixel_id"
SESSION_ID_KEY = "neura_session_id"
USER_ID_KEY = "neura_user_id"
OPT_OUT_KEY = "neura_tracking_opt_out"


class IdentityStore:
    """Pixel id (durable, never rotated) and session id (session-scoped)."""

    def __init__(self, durable=None, session=None):
        self.durable = durable if durable is not None else MemoryStorage()
        self.session = session if session is not None else MemoryStorage()

    @classmethod
    def at(cls, path) -> "IdentityStore":
        return cls(durable=FileStorage(path))

    @staticmethod
    def _get_or_create(store, key: str) -> str:
        value = store.get(key)
        if not value:
            value = str(uuid.uuid4())
            store.set(key, value)
        return value

    def get_or_create_pixel_id(self) -> str:
        return self._get_or_create(self.durable, PIXEL_ID_KEY)

    def get_or_create_session_id(self) -> str:
        return self._get_or_create(self.session, SESSION_ID_KEY)

    def get_user_id(self) -> Optional[str]:
        return self.durable.get(USER_ID_KEY)

    def set_user_id(self, user_id: Optional[str]) -> None:
        if user_id:
            self.durable.set(USER_ID_KEY, user_id)
        else:
            self.durable.delete(USER_ID_KEY)

    def is_opted_out(self) -> bool:
        return self.durable.get(OPT_OUT_KEY) == "true"

    def set_opted_out(self, opted_out: bool) -> None:
        if opted_out:
            self.durable.set(OPT_OUT_KEY, "true")
        else:
            self.durable.delete(OPT_OUT_KEY)

    def clear(self) -> None:
        for key in (PIXEL_ID_KEY, USER_ID_KEY, OPT_OUT_KEY):
            self.durable.delete(key)
        self.session.delete(SESSION_ID_KEY)
