from __future__ import annotations

import logging
import re
import time
from enum import Enum

from pydantic import BaseModel, ConfigDict

from app.chat.session import Session
from app.config import get_settings
from app.domain.actions import ConfirmedAction, PendingAction, SmartContractAction

logger = logging.getLogger(__name__)

AFFIRMATIVE = {
    "yes", "y", "yep", "yeah", "confirm", "confirmed", "proceed", "go ahead",
    "do it", "sure", "ok", "okay", "approve",
}
NEGATIVE = {
    "no", "n", "nope", "cancel", "stop", "abort", "nevermind", "never mind",
    "don't", "dont", "reject",
}
_FILLER = {
    "please", "thanks", "thank", "you", "it", "that", "now", "go", "ahead", "do",
    "the", "transaction", "registration", "payment", "fine", "lets", "let's",
}
_MAX_REPLY_WORDS = 5


def _now() -> float:
    return time.time()


class ReplyKind(str, Enum):
    AFFIRMATIVE = "affirmative"
    NEGATIVE = "negative"
    OTHER = "other"


class ConfirmationState(str, Enum):
    IDLE = "idle"
    AWAITING_CONFIRMATION = "awaiting_confirmation"


class Outcome(str, Enum):
    PARKED = "parked"
    REPLACED = "replaced"
    RELEASED = "released"
    CANCELLED = "cancelled"
    ABANDONED = "abandoned"
    EXPIRED = "expired"
    NO_PENDING = "no_pending"


ALLOWED = {
    ConfirmationState.IDLE: {Outcome.PARKED, Outcome.NO_PENDING},
    ConfirmationState.AWAITING_CONFIRMATION: {
        Outcome.REPLACED,
        Outcome.RELEASED,
        Outcome.CANCELLED,
        Outcome.ABANDONED,
        Outcome.EXPIRED,
    },
}


class Transition(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    outcome: Outcome
    reply: ReplyKind | None = None
    state: ConfirmationState
    pending: PendingAction | None = None
    released: ConfirmedAction | None = None
    discarded: SmartContractAction | None = None


def classify_reply(text: str) -> ReplyKind:
    normalized = re.sub(r"[^\w\s']", " ", (text or "").lower())
    normalized = " ".join(normalized.split())
    if not normalized:
        return ReplyKind.OTHER
    words = normalized.split(" ")
    if len(words) > _MAX_REPLY_WORDS:
        return ReplyKind.OTHER

    for phrases, kind in ((NEGATIVE, ReplyKind.NEGATIVE), (AFFIRMATIVE, ReplyKind.AFFIRMATIVE)):
        for phrase in phrases:
            if normalized == phrase or normalized.startswith(phrase + " "):
                rest = normalized[len(phrase):].split()
                if all(word in _FILLER or word in phrases for word in rest):
                    return kind
    return ReplyKind.OTHER


def state_of(session: Session, *, now: float | None = None) -> ConfirmationState:
    now = _now() if now is None else now
    if session.pending is None or session.pending.is_expired(now):
        return ConfirmationState.IDLE
    return ConfirmationState.AWAITING_CONFIRMATION


def _check(state: ConfirmationState, outcome: Outcome) -> None:
    if outcome not in ALLOWED[state]:
        raise ValueError(f"Invalid confirmation transition: {state.value} -> {outcome.value}")


def park(
    session: Session,
    action: SmartContractAction,
    *,
    now: float | None = None,
    ttl_seconds: int | None = None,
) -> Transition:
    """
    Store a mutating action as the session's only pending action. A pending
    action that is still live is replaced.
    """
    now = _now() if now is None else now
    ttl = ttl_seconds if ttl_seconds is not None else get_settings().confirmation_ttl_seconds
    state = state_of(session, now=now)
    outcome = Outcome.REPLACED if state == ConfirmationState.AWAITING_CONFIRMATION else Outcome.PARKED
    _check(state, outcome)

    discarded = session.pending.action if outcome == Outcome.REPLACED else None
    session.pending = PendingAction(action=action, created_at=now, expires_at=now + ttl)
    logger.info("action parked session=%s kind=%s outcome=%s", session.key, action.intent_kind.value, outcome.value)
    return Transition(
        outcome=outcome,
        state=ConfirmationState.AWAITING_CONFIRMATION,
        pending=session.pending,
        discarded=discarded,
    )


def transition(session: Session, reply_text: str, *, now: float | None = None) -> Transition:
    """
    Apply one incoming message to the session's confirmation state.

    Only ``RELEASED`` carries a ``ConfirmedAction``; every other outcome
    leaves the session idle without executing anything.
    """
    now = _now() if now is None else now
    reply = classify_reply(reply_text)
    pending = session.pending

    if pending is None:
        return Transition(outcome=Outcome.NO_PENDING, reply=reply, state=ConfirmationState.IDLE)

    session.pending = None
    if pending.is_expired(now):
        _check(ConfirmationState.AWAITING_CONFIRMATION, Outcome.EXPIRED)
        logger.info("pending action expired session=%s", session.key)
        return Transition(
            outcome=Outcome.EXPIRED,
            reply=reply,
            state=ConfirmationState.IDLE,
            discarded=pending.action,
        )

    if reply == ReplyKind.AFFIRMATIVE:
        outcome = Outcome.RELEASED
    elif reply == ReplyKind.NEGATIVE:
        outcome = Outcome.CANCELLED
    else:
        outcome = Outcome.ABANDONED
    _check(ConfirmationState.AWAITING_CONFIRMATION, outcome)
    logger.info("confirmation %s session=%s", outcome.value, session.key)

    if outcome == Outcome.RELEASED:
        return Transition(
            outcome=outcome,
            reply=reply,
            state=ConfirmationState.IDLE,
            released=ConfirmedAction(action=pending.action, confirmed_at=now),
        )
    return Transition(outcome=outcome, reply=reply, state=ConfirmationState.IDLE, discarded=pending.action)
