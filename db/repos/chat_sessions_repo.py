from __future__ import annotations

from datetime import timedelta, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models.chat_session import ChatSession
from db.utils import utcnow


def get_chat_session(db: Session, *, session_key: str, ttl_seconds: int | None = None) -> ChatSession | None:
    row = db.execute(
        select(ChatSession).where(ChatSession.session_key == session_key)
    ).scalar_one_or_none()
    if row is None or ttl_seconds is None:
        return row

    updated_at = row.updated_at
    if updated_at.tzinfo is None:
        # sqlite drops tzinfo
        updated_at = updated_at.replace(tzinfo=timezone.utc)
    if updated_at + timedelta(seconds=ttl_seconds) <= utcnow():
        db.delete(row)
        db.commit()
        return None
    return row


def upsert_chat_session(db: Session, *, session_key: str, state: dict[str, Any]) -> ChatSession:
    row = db.get(ChatSession, session_key)
    if row is None:
        row = ChatSession(session_key=session_key, state=state)
    else:
        row.state = state
        row.updated_at = utcnow()
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def delete_chat_session(db: Session, *, session_key: str) -> bool:
    row = db.get(ChatSession, session_key)
    if row is None:
        return False
    db.delete(row)
    db.commit()
    return True
