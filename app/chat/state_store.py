from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Protocol

from app.config import Settings

logger = logging.getLogger(__name__)


def _now() -> float:
    return time.time()


class SessionStore(Protocol):
    """Optional persistence for serialized sessions."""

    def load(self, key: str) -> dict[str, Any] | None: ...

    def save(self, key: str, state: dict[str, Any]) -> None: ...

    def delete(self, key: str) -> bool: ...


class InMemorySessionStore:
    def __init__(self, *, ttl_seconds: int = 86400) -> None:
        self.ttl_seconds = ttl_seconds
        self._store: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def load(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            entry = self._store.get(key)
            if not entry:
                return None
            expires_at = entry.get("expires_at")
            if expires_at is not None and expires_at <= _now():
                self._store.pop(key, None)
                return None
            return entry["state"]

    def save(self, key: str, state: dict[str, Any]) -> None:
        now = _now()
        with self._lock:
            self._store[key] = {
                "state": dict(state),
                "updated_at": now,
                "expires_at": now + self.ttl_seconds,
            }

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._store.pop(key, None) is not None

    def cleanup(self) -> None:
        now = _now()
        with self._lock:
            for key, entry in list(self._store.items()):
                expires_at = entry.get("expires_at")
                if expires_at is not None and expires_at <= now:
                    self._store.pop(key, None)


class SqlSessionStore:
    """
    Sessions persisted to the ``chat_sessions`` table. Each call opens its
    own DB session so the store can be shared across request threads.
    """

    def __init__(self, session_factory: Callable[[], Any], *, ttl_seconds: int = 86400) -> None:
        self.session_factory = session_factory
        self.ttl_seconds = ttl_seconds

    def load(self, key: str) -> dict[str, Any] | None:
        from db.repos.chat_sessions_repo import get_chat_session

        db = self.session_factory()
        try:
            row = get_chat_session(db, session_key=key, ttl_seconds=self.ttl_seconds)
            return dict(row.state) if row is not None else None
        finally:
            db.close()

    def save(self, key: str, state: dict[str, Any]) -> None:
        from db.repos.chat_sessions_repo import upsert_chat_session

        db = self.session_factory()
        try:
            upsert_chat_session(db, session_key=key, state=state)
        finally:
            db.close()

    def delete(self, key: str) -> bool:
        from db.repos.chat_sessions_repo import delete_chat_session

        db = self.session_factory()
        try:
            return delete_chat_session(db, session_key=key)
        finally:
            db.close()


def build_session_store(settings: Settings) -> SessionStore | None:
    kind = (settings.session_store or "memory").lower()
    if kind == "none":
        return None
    if kind == "memory":
        return InMemorySessionStore(ttl_seconds=settings.session_ttl_seconds)
    if kind == "sql":
        from db.session import SessionLocal, init_db

        init_db()
        return SqlSessionStore(SessionLocal, ttl_seconds=settings.session_ttl_seconds)
    raise ValueError(f"unknown SESSION_STORE '{settings.session_store}'")
