from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from api.deps import get_interactor, get_registry
from app.chat.confirmation import state_of
from app.chat.contracts import (
    ChatRequest,
    ChatResponse,
    ClearSessionRequest,
    ClearSessionResponse,
    ConversationContext,
    SessionInfoResponse,
)
from app.chat.router import route_chat
from app.chat.session import SessionRegistry, session_key_for
from app.domain.errors import ErrorCode
from chain.client import ContractInteractor

router = APIRouter(prefix="/chat", tags=["chat"])
logger = logging.getLogger(__name__)


@router.post("", response_model=ChatResponse)
def chat(
    req: ChatRequest,
    registry: SessionRegistry = Depends(get_registry),
    interactor: ContractInteractor = Depends(get_interactor),
) -> ChatResponse:
    if not req.message or not req.message.strip():
        raise HTTPException(status_code=400, detail="Message is required")
    return route_chat(req, registry=registry, interactor=interactor)


def _sse_event(payload: dict) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=True)}\n\n"


@router.post("/stream")
def chat_stream(
    req: ChatRequest,
    registry: SessionRegistry = Depends(get_registry),
    interactor: ContractInteractor = Depends(get_interactor),
) -> StreamingResponse:
    if not req.message or not req.message.strip():
        raise HTTPException(status_code=400, detail="Message is required")

    def event_stream():
        yield _sse_event({"type": "status", "status": "processing"})
        response = route_chat(req, registry=registry, interactor=interactor)
        message = response.message or ""
        for i in range(0, len(message), 48):
            chunk = message[i : i + 48]
            yield _sse_event({"type": "delta", "content": chunk})
        yield _sse_event({"type": "final", "response": response.model_dump(mode="json", by_alias=True)})

    return StreamingResponse(event_stream(), media_type="text/event-stream")


@router.delete("/session", response_model=ClearSessionResponse)
def clear_session(
    req: ClearSessionRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> ClearSessionResponse:
    key = session_key_for(req.user_address)
    removed = registry.evict(key)
    logger.info("session cleared key=%s existed=%s", key, removed)
    return ClearSessionResponse(success=True, message="Conversation cleared")


@router.get("/session", response_model=SessionInfoResponse)
def get_session(
    user_address: str | None = Query(default=None, alias="userAddress"),
    registry: SessionRegistry = Depends(get_registry),
) -> SessionInfoResponse:
    key = session_key_for(user_address)
    session = registry.get(key)
    if session is None:
        raise HTTPException(
            status_code=404,
            detail={"error": ErrorCode.SESSION_NOT_FOUND.value, "message": f"No session for {key}"},
        )

    with session.lock:
        pending = session.pending if state_of(session).value == "awaiting_confirmation" else None
        return SessionInfoResponse(
            session_key=key,
            conversation_context=ConversationContext.model_validate(session.context.summary()),
            last_address=session.context.last_address,
            pending_action=pending.action.description if pending else None,
            pending_expires_at=pending.expires_at if pending else None,
        )
