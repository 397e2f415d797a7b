from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)


class ChatHistoryItem(BaseModel):
    # clients echo back whatever they rendered; unknown keys are dropped
    model_config = ConfigDict(extra="ignore")

    role: Literal["user", "assistant"]
    content: str
    timestamp: float | None = None
    operation: dict[str, Any] | None = None
    result: dict[str, Any] | None = None


class ChatRequest(_CamelModel):
    message: str
    user_address: str | None = None
    conversation_history: list[ChatHistoryItem] = Field(default_factory=list)


class ClearSessionRequest(_CamelModel):
    user_address: str | None = None


class ConversationContext(_CamelModel):
    last_entity_name: str | None = None
    last_operation: str | None = None
    history_length: int = 0


class TransactionInfo(_CamelModel):
    status: str
    tx_id: str | None = None
    block_number: int | None = None
    cost_wei: str | None = None
    cost_eth: str | None = None
    explorer_url: str | None = None
    error: str | None = None
    error_code: str | None = None


class ChatResponse(_CamelModel):
    success: bool
    message: str
    data: dict[str, Any] | None = None
    error: str | None = None
    transaction: TransactionInfo | None = None
    needs_confirmation: bool = False
    questions: list[str] = Field(default_factory=list)
    intent: str | None = None
    conversation_context: ConversationContext = Field(default_factory=ConversationContext)


class ClearSessionResponse(_CamelModel):
    success: bool
    message: str


class SessionInfoResponse(_CamelModel):
    session_key: str
    conversation_context: ConversationContext
    last_address: str | None = None
    pending_action: str | None = None
    pending_expires_at: float | None = None
