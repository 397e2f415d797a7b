from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.domain.errors import ErrorCode
from app.domain.intents import IntentKind


class SmartContractAction(BaseModel):
    """
    A fully resolved description of one ledger call.

    ``target`` is a logical contract identifier (``public_resolver``,
    ``smart_account``, ``native`` ...) or a literal 0x address; the
    interactor maps identifiers to deployed addresses.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    intent_kind: IntentKind
    target: str
    function: str
    args: list[Any] = Field(default_factory=list)
    value_wei: int = Field(default=0, ge=0)
    mutating: bool
    description: str
    token: str | None = None
    decimals: int | None = None
    meta: dict[str, Any] = Field(default_factory=dict)


class ClarificationNeeded(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    error: ErrorCode
    missing: list[str] = Field(default_factory=list)
    questions: list[str] = Field(default_factory=list)
    detail: str | None = None


class PendingAction(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    action: SmartContractAction
    created_at: float
    expires_at: float

    @model_validator(mode="after")
    def _only_mutating(self) -> "PendingAction":
        if not self.action.mutating:
            raise ValueError("only mutating actions can await confirmation")
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be after created_at")
        return self

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class ConfirmedAction(BaseModel):
    """
    A mutating action released by an affirmative confirmation transition.
    The interactor refuses mutating actions that are not wrapped in one.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    action: SmartContractAction
    confirmed_at: float


class TxStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class TransactionResult(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    status: TxStatus
    tx_id: str | None = None
    block_number: int | None = None
    cost_wei: int | None = None
    error: str | None = None
    error_code: ErrorCode | None = None

    @model_validator(mode="after")
    def _failed_has_error(self) -> "TransactionResult":
        if self.status == TxStatus.FAILED and not self.error:
            raise ValueError("failed transaction result requires an error description")
        return self


class ReadResult(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    found: bool
    value: Any = None
    data: dict[str, Any] = Field(default_factory=dict)
