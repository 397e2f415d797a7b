from __future__ import annotations

from contextvars import ContextVar
from typing import Optional

session_key_ctx: ContextVar[Optional[str]] = ContextVar("session_key", default=None)


def set_session_key(session_key: Optional[str]) -> None:
    session_key_ctx.set(session_key)


def get_session_key() -> Optional[str]:
    return session_key_ctx.get()
