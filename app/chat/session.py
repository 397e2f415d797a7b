from __future__ import annotations

import logging
import re
import threading
import time
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Literal

from pydantic import BaseModel, ConfigDict, Field

from app.chat.state_store import SessionStore
from app.config import get_settings
from app.domain.actions import PendingAction
from app.domain.intents import Intent, IntentKind

logger = logging.getLogger(__name__)

ANONYMOUS_KEY = "anonymous"

ENS_NAME_RE = re.compile(r"\b[a-z0-9][a-z0-9-]*\.eth\b", re.IGNORECASE)
ADDRESS_RE = re.compile(r"\b0x[a-fA-F0-9]{40}\b")

# "the name" / "the address" describe an explicit entity, they never refer back
_NAME_NOUN_MARKERS = r"that name|this name|that domain|this domain"
# longest markers first so "that name" wins over "that"
_NAME_MARKERS = re.compile(
    rf"\b(?:{_NAME_NOUN_MARKERS}|it|that|this)\b(?!\s+(?:address|wallet))",
    re.IGNORECASE,
)
_ADDRESS_MARKERS = re.compile(
    r"\b(?:that address|this address|that wallet|this wallet)\b",
    re.IGNORECASE,
)
_NAME_NOUN_RE = re.compile(rf"^(?:{_NAME_NOUN_MARKERS})$", re.IGNORECASE)


def _now() -> float:
    return time.time()


def session_key_for(user_address: str | None) -> str:
    if user_address and user_address.strip():
        return user_address.strip().lower()
    return ANONYMOUS_KEY


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="forbid")

    role: Literal["user", "assistant"]
    content: str
    timestamp: float = Field(default_factory=_now)
    operation: dict[str, Any] | None = None
    result: dict[str, Any] | None = None


class Context(BaseModel):
    model_config = ConfigDict(extra="forbid")

    messages: list[ChatMessage] = Field(default_factory=list)
    last_entity_name: str | None = None
    last_address: str | None = None
    last_operation: str | None = None
    last_result: dict[str, Any] | None = None
    pending_record: dict[str, Any] | None = None
    user_address: str | None = None

    def summary(self) -> dict[str, Any]:
        return {
            "lastEntityName": self.last_entity_name,
            "lastOperation": self.last_operation,
            "historyLength": len(self.messages),
        }


class FifoLock:
    """
    Re-entrant lock granted in the order ``acquire`` was called.

    Waiters on ``threading.RLock`` may wake in any order; each waiter here
    takes a ticket and runs only when it is served.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._next_ticket = 0
        self._serving = 0
        self._owner: int | None = None
        self._depth = 0

    def acquire(self) -> None:
        me = threading.get_ident()
        with self._cond:
            if self._owner == me:
                self._depth += 1
                return
            ticket = self._next_ticket
            self._next_ticket += 1
            while self._serving != ticket:
                self._cond.wait()
            self._owner = me
            self._depth = 1

    def release(self) -> None:
        with self._cond:
            if self._owner != threading.get_ident():
                raise RuntimeError("cannot release a lock held by another thread")
            self._depth -= 1
            if self._depth:
                return
            self._owner = None
            self._serving += 1
            self._cond.notify_all()

    def __enter__(self) -> "FifoLock":
        self.acquire()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.release()


class Session:
    """
    Conversation and transactional state for one key.

    ``lock`` is held for the whole processing of one message; the chat
    pipeline never touches ``context`` or ``pending`` without it. Once
    ``evicted`` is set the instance is dead and is never saved again.
    """

    def __init__(self, key: str, *, context: Context | None = None, pending: PendingAction | None = None) -> None:
        self.key = key
        self.context = context or Context()
        self.pending = pending
        self.lock = FifoLock()
        self.evicted = False

    def to_state(self) -> dict[str, Any]:
        return {
            "context": self.context.model_dump(mode="json"),
            "pending": self.pending.model_dump(mode="json") if self.pending else None,
        }

    @classmethod
    def from_state(cls, key: str, state: dict[str, Any]) -> "Session":
        pending = state.get("pending")
        return cls(
            key,
            context=Context.model_validate(state.get("context") or {}),
            pending=PendingAction.model_validate(pending) if pending else None,
        )


# ---------------------------
# Context operations
# ---------------------------

def append_message(session: Session, message: ChatMessage, *, limit: int | None = None) -> None:
    limit = limit or get_settings().chat_history_limit
    messages = session.context.messages
    messages.append(message)
    overflow = len(messages) - limit
    if overflow > 0:
        del messages[:overflow]


def find_references(text: str) -> list[str]:
    markers = [m.group(0).lower() for m in _ADDRESS_MARKERS.finditer(text or "")]
    markers.extend(m.group(0).lower() for m in _NAME_MARKERS.finditer(text or ""))
    return markers


def resolve_references(session: Session, raw_text: str) -> str:
    """
    Replace anaphoric markers with the last referenced entity.

    No-op when there is no antecedent or the text already names the entity
    explicitly; unresolved markers are left for the recognizer to flag.
    """
    text = raw_text or ""
    context = session.context
    explicit_name = bool(ENS_NAME_RE.search(text))
    explicit_address = bool(ADDRESS_RE.search(text))

    if context.last_address and not explicit_address and not explicit_name:
        text = _ADDRESS_MARKERS.sub(context.last_address, text)

    if context.last_entity_name and not explicit_name:
        last_name = context.last_entity_name

        def _name_for(match: re.Match[str]) -> str:
            # next to an explicit address, "that name" asks about that address
            if explicit_address and _NAME_NOUN_RE.match(match.group(0)):
                return match.group(0)
            return last_name

        text = _NAME_MARKERS.sub(_name_for, text)

    if text != raw_text:
        logger.debug("references resolved session=%s", session.key)
    return text


def _entity_from(intent: Intent, result: dict[str, Any] | None) -> tuple[str | None, str | None]:
    params = intent.params
    name = params.get("name")
    address = params.get("address") or params.get("recipient") or params.get("new_owner")
    data = (result or {}).get("data") or {}
    if intent.kind == IntentKind.RESOLVE_NAME and data.get("address"):
        address = data["address"]
    if intent.kind == IntentKind.RESOLVE_ADDRESS and data.get("name"):
        name = data["name"]
    if isinstance(address, str) and not ADDRESS_RE.fullmatch(address):
        # recipients may be ENS names
        if ENS_NAME_RE.fullmatch(address):
            name = name or address
        address = None
    return name, address


def record_outcome(
    session: Session,
    intent: Intent,
    result: dict[str, Any] | None,
    *,
    message: str = "",
) -> None:
    context = session.context
    name, address = _entity_from(intent, result)
    if name:
        context.last_entity_name = name
    if address:
        context.last_address = address
    context.last_operation = intent.kind.value
    context.last_result = result
    append_message(
        session,
        ChatMessage(
            role="assistant",
            content=message,
            operation={"kind": intent.kind.value, "params": dict(intent.params)},
            result=result,
        ),
    )


def restore_history(session: Session, history: Iterable[ChatMessage], *, limit: int | None = None) -> bool:
    """
    Adopt a client-supplied history when it is longer than the server copy
    (e.g. after a process restart). Returns True when restored.
    """
    history = list(history)
    if len(history) <= len(session.context.messages):
        return False
    limit = limit or get_settings().chat_history_limit
    session.context.messages = history[-limit:]
    if not session.context.last_entity_name:
        for msg in reversed(session.context.messages):
            names = ENS_NAME_RE.findall(msg.content)
            if names:
                session.context.last_entity_name = names[-1].lower()
                break
    logger.info("history restored session=%s length=%s", session.key, len(session.context.messages))
    return True


# ---------------------------
# Registry
# ---------------------------

class SessionRegistry:
    """
    Owns every live Session. The registry lock only guards the mapping;
    per-session work is serialized by ``Session.lock``.
    """

    def __init__(self, store: SessionStore | None = None) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()
        self.store = store

    def _load(self, key: str) -> Session | None:
        if self.store is None:
            return None
        state = self.store.load(key)
        if not state:
            return None
        try:
            return Session.from_state(key, state)
        except ValueError as e:
            logger.warning("discarding unreadable persisted session key=%s: %s", key, e)
            self.store.delete(key)
            return None

    def get_or_create(self, key: str) -> Session:
        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                session = self._load(key) or Session(key)
                self._sessions[key] = session
            return session

    def get(self, key: str) -> Session | None:
        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                session = self._load(key)
                if session is not None:
                    self._sessions[key] = session
            return session

    @contextmanager
    def locked(self, key: str) -> Iterator[Session]:
        """
        Yield the live session for ``key`` with its lock held. A session
        evicted while this caller waited is skipped for a fresh one.
        """
        while True:
            session = self.get_or_create(key)
            with session.lock:
                if session.evicted:
                    continue
                yield session
                return

    def evict(self, key: str) -> bool:
        with self._lock:
            live = self._sessions.get(key)
        if live is None:
            return self._remove(key)
        # queue behind messages already in flight for this session
        with live.lock:
            return self._remove(key)

    def _remove(self, key: str) -> bool:
        with self._lock:
            session = self._sessions.pop(key, None)
            removed = session is not None
            if session is not None:
                session.evicted = True
            if self.store is not None:
                removed = self.store.delete(key) or removed
        return removed

    def save(self, session: Session) -> None:
        with self._lock:
            if session.evicted:
                logger.info("not saving evicted session key=%s", session.key)
                return
            if self.store is not None:
                self.store.save(session.key, session.to_state())
