from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class IntentKind(str, Enum):
    RESOLVE_NAME = "resolve_name"
    RESOLVE_ADDRESS = "resolve_address"
    CHECK_AVAILABILITY = "check_availability"
    GET_PRICE = "get_price"
    GET_RECORD = "get_record"
    REGISTER_NAME = "register_name"
    RENEW_NAME = "renew_name"
    SET_RECORD = "set_record"
    TRANSFER_NAME = "transfer_name"
    SEND_PAYMENT = "send_payment"
    SEND_BATCH_PAYMENT = "send_batch_payment"
    CHECK_BALANCE = "check_balance"
    HELP = "help"
    UNKNOWN = "unknown"


MUTATING_KINDS = {
    IntentKind.REGISTER_NAME,
    IntentKind.RENEW_NAME,
    IntentKind.SET_RECORD,
    IntentKind.TRANSFER_NAME,
    IntentKind.SEND_PAYMENT,
    IntentKind.SEND_BATCH_PAYMENT,
}


class _Params(BaseModel):
    model_config = ConfigDict(extra="ignore")


class NameParams(_Params):
    name: str


class DurationNameParams(_Params):
    name: str
    duration_days: int | None = None


class AddressParams(_Params):
    address: str


class RecordParams(_Params):
    name: str
    key: str
    value: str


class RecordKeyParams(_Params):
    name: str
    key: str


class TransferParams(_Params):
    name: str
    new_owner: str


class PaymentParams(_Params):
    recipient: str
    amount: str
    token: str = "ETH"


class BatchPaymentParams(_Params):
    payments: list[PaymentParams] = Field(min_length=1)


class BalanceParams(_Params):
    address: str | None = None
    token: str | None = None


class EmptyParams(_Params):
    pass


PARAMS_MODELS: dict[IntentKind, type[_Params]] = {
    IntentKind.RESOLVE_NAME: NameParams,
    IntentKind.RESOLVE_ADDRESS: AddressParams,
    IntentKind.CHECK_AVAILABILITY: NameParams,
    IntentKind.GET_PRICE: DurationNameParams,
    IntentKind.GET_RECORD: RecordKeyParams,
    IntentKind.REGISTER_NAME: DurationNameParams,
    IntentKind.RENEW_NAME: DurationNameParams,
    IntentKind.SET_RECORD: RecordParams,
    IntentKind.TRANSFER_NAME: TransferParams,
    IntentKind.SEND_PAYMENT: PaymentParams,
    IntentKind.SEND_BATCH_PAYMENT: BatchPaymentParams,
    IntentKind.CHECK_BALANCE: BalanceParams,
    IntentKind.HELP: EmptyParams,
    IntentKind.UNKNOWN: EmptyParams,
}

REQUIRED_PARAMS: dict[IntentKind, tuple[str, ...]] = {
    IntentKind.RESOLVE_NAME: ("name",),
    IntentKind.RESOLVE_ADDRESS: ("address",),
    IntentKind.CHECK_AVAILABILITY: ("name",),
    IntentKind.GET_PRICE: ("name",),
    IntentKind.GET_RECORD: ("name", "key"),
    IntentKind.REGISTER_NAME: ("name",),
    IntentKind.RENEW_NAME: ("name",),
    IntentKind.SET_RECORD: ("name", "key", "value"),
    IntentKind.TRANSFER_NAME: ("name", "new_owner"),
    IntentKind.SEND_PAYMENT: ("recipient", "amount"),
    IntentKind.SEND_BATCH_PAYMENT: ("payments",),
    IntentKind.CHECK_BALANCE: (),
    IntentKind.HELP: (),
    IntentKind.UNKNOWN: (),
}


class Intent(BaseModel):
    """
    Structured interpretation of one chat message.

    ``missing`` is derived from the kind's required parameters at construction,
    so an intent with gaps can never be mistaken for a buildable one.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: IntentKind
    params: dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(default=0.0, ge=0, le=1)
    missing: list[str] = Field(default_factory=list)
    reason: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _derive_missing(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        kind = IntentKind(data.get("kind", IntentKind.UNKNOWN))
        params = {k: v for k, v in (data.get("params") or {}).items() if v not in (None, "", [])}
        missing = list(data.get("missing") or [])
        for key in REQUIRED_PARAMS[kind]:
            if key not in params and key not in missing:
                missing.append(key)
        data = dict(data)
        data["kind"] = kind
        data["params"] = params
        data["missing"] = missing
        return data

    @model_validator(mode="after")
    def _check_param_types(self) -> "Intent":
        # complete intents must carry well-typed parameters
        if not self.missing:
            PARAMS_MODELS[self.kind].model_validate(self.params)
        return self

    @property
    def mutating(self) -> bool:
        return self.kind in MUTATING_KINDS

    @property
    def needs_clarification(self) -> bool:
        return bool(self.missing)

    @classmethod
    def unknown(cls, reason: str = "unparsable") -> "Intent":
        return cls(kind=IntentKind.UNKNOWN, confidence=0.0, reason=reason)
