from __future__ import annotations

import logging
from decimal import ROUND_DOWN, Decimal, InvalidOperation

from web3 import Web3

from app.config import Settings, get_settings
from app.domain.actions import ClarificationNeeded, SmartContractAction
from app.domain.errors import ErrorCode, InvalidAmount
from app.domain.intents import (
    BalanceParams,
    BatchPaymentParams,
    DurationNameParams,
    Intent,
    IntentKind,
    NameParams,
    AddressParams,
    PaymentParams,
    RecordKeyParams,
    RecordParams,
    TransferParams,
)
from chain.ens import InvalidENSName, label_of, namehash, reverse_node, validate_name
from chain.smart_account import batch_calls
from chain.snapshot import NATIVE_DECIMALS, USDC_DECIMALS, format_units

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400
# registration without commit-reveal uses an all-zero secret
ZERO_SECRET = "0x" + "00" * 32

TOKEN_DECIMALS = {"ETH": NATIVE_DECIMALS, "USDC": USDC_DECIMALS}

QUESTION_MAP = {
    "name": "Which .eth name do you mean?",
    "address": "Which address should I look up?",
    "key": "Which record should I use (e.g. twitter, github, url, avatar)?",
    "value": "What value should the record have?",
    "new_owner": "Who should receive the name (address or .eth name)?",
    "recipient": "Who should receive the payment (address or .eth name)?",
    "amount": "How much do you want to send (e.g. 0.01 ETH or 5 USDC)?",
    "payments": "Which recipients and amounts should the batch contain?",
    "wallet_address": "Please connect a wallet so I know which address to use.",
}


def questions_for(missing: list[str]) -> list[str]:
    questions = [QUESTION_MAP[slot] for slot in missing if slot in QUESTION_MAP]
    if not questions:
        questions.append("Can you clarify what you want to do?")
    return questions


def to_base_units(amount: str, decimals: int, *, settings: Settings | None = None) -> int:
    """
    Parse a decimal amount string into integer base units, enforcing the
    configured payment bounds. Raises ``InvalidAmount``.
    """
    settings = settings or get_settings()
    try:
        dec = Decimal(str(amount).strip())
    except (InvalidOperation, TypeError) as exc:
        raise InvalidAmount(f"'{amount}' is not a number") from exc
    if not dec.is_finite() or dec <= 0:
        raise InvalidAmount(f"amount must be positive: {amount}")

    low = Decimal(settings.payment_min_amount)
    high = Decimal(settings.payment_max_amount)
    if dec < low or dec > high:
        raise InvalidAmount(f"amount must be between {low} and {high}")

    base_units = int((dec * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN))
    if base_units <= 0:
        raise InvalidAmount("amount too small after decimals conversion")
    return base_units


def registration_cost_wei(duration_days: int, *, settings: Settings | None = None) -> int:
    settings = settings or get_settings()
    yearly = Decimal(settings.ens_registration_price_eth) * (Decimal(10) ** NATIVE_DECIMALS)
    return int((yearly * duration_days / Decimal(365)).to_integral_value(rounding=ROUND_DOWN))


def _clarify(error: ErrorCode, *, missing: list[str] | None = None, detail: str | None = None) -> ClarificationNeeded:
    missing = missing or []
    questions = questions_for(missing) if missing else []
    return ClarificationNeeded(error=error, missing=missing, questions=questions, detail=detail)


def _node(name: str) -> str:
    return Web3.to_hex(namehash(name))


# ---------------------------
# Per-kind builders
# ---------------------------

def _resolve_name(intent: Intent, owner: str | None, settings: Settings) -> SmartContractAction:
    params = NameParams.model_validate(intent.params)
    name = validate_name(params.name, max_label_length=settings.ens_max_name_length)
    return SmartContractAction(
        intent_kind=intent.kind,
        target="public_resolver",
        function="addr",
        args=[_node(name)],
        mutating=False,
        description=f"Resolve {name} to an address",
        meta={"name": name},
    )


def _resolve_address(intent: Intent, owner: str | None, settings: Settings) -> SmartContractAction | ClarificationNeeded:
    params = AddressParams.model_validate(intent.params)
    if not Web3.is_address(params.address):
        return _clarify(ErrorCode.MISSING_PARAMETER, missing=["address"], detail="not a valid address")
    address = Web3.to_checksum_address(params.address)
    return SmartContractAction(
        intent_kind=intent.kind,
        target="public_resolver",
        function="name",
        args=[Web3.to_hex(reverse_node(address))],
        mutating=False,
        description=f"Look up the primary name of {address}",
        meta={"address": address},
    )


def _check_availability(intent: Intent, owner: str | None, settings: Settings) -> SmartContractAction:
    params = NameParams.model_validate(intent.params)
    name = validate_name(params.name, max_label_length=settings.ens_max_name_length)
    return SmartContractAction(
        intent_kind=intent.kind,
        target="eth_registrar_controller",
        function="available",
        args=[label_of(name)],
        mutating=False,
        description=f"Check whether {name} is available",
        meta={"name": name},
    )


def _duration(params: DurationNameParams, settings: Settings) -> int:
    days = params.duration_days or settings.ens_default_duration_days
    if days < settings.ens_min_duration_days:
        raise InvalidAmount(f"duration must be at least {settings.ens_min_duration_days} days")
    return days


def _get_price(intent: Intent, owner: str | None, settings: Settings) -> SmartContractAction:
    params = DurationNameParams.model_validate(intent.params)
    name = validate_name(params.name, max_label_length=settings.ens_max_name_length)
    days = _duration(params, settings)
    return SmartContractAction(
        intent_kind=intent.kind,
        target="eth_registrar_controller",
        function="rentPrice",
        args=[label_of(name), days * SECONDS_PER_DAY],
        mutating=False,
        description=f"Price {name} for {days} days",
        meta={"name": name, "duration_days": days},
    )


def _get_record(intent: Intent, owner: str | None, settings: Settings) -> SmartContractAction:
    params = RecordKeyParams.model_validate(intent.params)
    name = validate_name(params.name, max_label_length=settings.ens_max_name_length)
    return SmartContractAction(
        intent_kind=intent.kind,
        target="public_resolver",
        function="text",
        args=[_node(name), params.key],
        mutating=False,
        description=f"Read the {params.key} record of {name}",
        meta={"name": name, "key": params.key},
    )


def _check_balance(intent: Intent, owner: str | None, settings: Settings) -> SmartContractAction | ClarificationNeeded:
    params = BalanceParams.model_validate(intent.params)
    address = params.address or owner
    if not address or not Web3.is_address(address):
        return _clarify(ErrorCode.MISSING_PARAMETER, missing=["wallet_address"])
    address = Web3.to_checksum_address(address)
    token = (params.token or "").upper()

    if token == "USDC":
        return SmartContractAction(
            intent_kind=intent.kind,
            target="usdc",
            function="balanceOf",
            args=[address],
            mutating=False,
            description=f"USDC balance of {address}",
            token="USDC",
            decimals=USDC_DECIMALS,
        )
    if token == "ETH":
        return SmartContractAction(
            intent_kind=intent.kind,
            target="native",
            function="getBalance",
            args=[address],
            mutating=False,
            description=f"ETH balance of {address}",
            token="ETH",
            decimals=NATIVE_DECIMALS,
        )
    return SmartContractAction(
        intent_kind=intent.kind,
        target="wallet",
        function="snapshot",
        args=[address],
        mutating=False,
        description=f"Balances of {address}",
    )


def _register(intent: Intent, owner: str, settings: Settings) -> SmartContractAction:
    params = DurationNameParams.model_validate(intent.params)
    name = validate_name(params.name, max_label_length=settings.ens_max_name_length)
    days = _duration(params, settings)
    value = registration_cost_wei(days, settings=settings)
    return SmartContractAction(
        intent_kind=intent.kind,
        target="eth_registrar_controller",
        function="register",
        args=[
            label_of(name),
            owner,
            days * SECONDS_PER_DAY,
            ZERO_SECRET,
            Web3.to_checksum_address(settings.ens_public_resolver_address),
            [],
            False,
            0,
        ],
        value_wei=value,
        mutating=True,
        description=f"Register {name} for {days} days ({format_units(value, NATIVE_DECIMALS)} ETH)",
        token="ETH",
        decimals=NATIVE_DECIMALS,
        meta={"name": name, "duration_days": days},
    )


def _renew(intent: Intent, owner: str, settings: Settings) -> SmartContractAction:
    params = DurationNameParams.model_validate(intent.params)
    name = validate_name(params.name, max_label_length=settings.ens_max_name_length)
    days = _duration(params, settings)
    value = registration_cost_wei(days, settings=settings)
    return SmartContractAction(
        intent_kind=intent.kind,
        target="eth_registrar_controller",
        function="renew",
        args=[label_of(name), days * SECONDS_PER_DAY],
        value_wei=value,
        mutating=True,
        description=f"Renew {name} for {days} days ({format_units(value, NATIVE_DECIMALS)} ETH)",
        token="ETH",
        decimals=NATIVE_DECIMALS,
        meta={"name": name, "duration_days": days},
    )


def _set_record(intent: Intent, owner: str, settings: Settings) -> SmartContractAction | ClarificationNeeded:
    params = RecordParams.model_validate(intent.params)
    name = validate_name(params.name, max_label_length=settings.ens_max_name_length)
    if params.key == "addr":
        if not Web3.is_address(params.value):
            return _clarify(ErrorCode.MISSING_PARAMETER, missing=["value"], detail="address records need a 0x address")
        value = Web3.to_checksum_address(params.value)
        return SmartContractAction(
            intent_kind=intent.kind,
            target="public_resolver",
            function="setAddr",
            args=[_node(name), value],
            mutating=True,
            description=f"Point {name} to {value}",
            meta={"name": name, "key": "addr", "value": value},
        )
    return SmartContractAction(
        intent_kind=intent.kind,
        target="public_resolver",
        function="setText",
        args=[_node(name), params.key, params.value],
        mutating=True,
        description=f"Set the {params.key} record of {name} to '{params.value}'",
        meta={"name": name, "key": params.key, "value": params.value},
    )


def _transfer_name(intent: Intent, owner: str, settings: Settings) -> SmartContractAction | ClarificationNeeded:
    params = TransferParams.model_validate(intent.params)
    name = validate_name(params.name, max_label_length=settings.ens_max_name_length)
    if not Web3.is_address(params.new_owner):
        return _clarify(ErrorCode.MISSING_PARAMETER, missing=["new_owner"], detail="new owner must be an address")
    new_owner = Web3.to_checksum_address(params.new_owner)
    return SmartContractAction(
        intent_kind=intent.kind,
        target="ens_registry",
        function="setOwner",
        args=[_node(name), new_owner],
        mutating=True,
        description=f"Transfer {name} to {new_owner}",
        meta={"name": name, "new_owner": new_owner},
    )


def _payment_leg(params: PaymentParams, settings: Settings) -> dict:
    token = params.token.upper()
    if token not in TOKEN_DECIMALS:
        raise InvalidAmount(f"unsupported token {params.token}; use ETH or USDC")
    if not Web3.is_address(params.recipient):
        raise ValueError(f"recipient {params.recipient} is not an address")
    return {
        "recipient": Web3.to_checksum_address(params.recipient),
        "amount": params.amount,
        "amount_base": to_base_units(params.amount, TOKEN_DECIMALS[token], settings=settings),
        "token": token,
    }


def _send_payment(intent: Intent, owner: str, settings: Settings) -> SmartContractAction | ClarificationNeeded:
    params = PaymentParams.model_validate(intent.params)
    try:
        leg = _payment_leg(params, settings)
    except ValueError:
        return _clarify(ErrorCode.MISSING_PARAMETER, missing=["recipient"], detail="recipient must be an address")

    description = f"Send {params.amount} {leg['token']} to {leg['recipient']}"
    if leg["token"] == "USDC":
        return SmartContractAction(
            intent_kind=intent.kind,
            target="usdc",
            function="transfer",
            args=[leg["recipient"], leg["amount_base"]],
            mutating=True,
            description=description,
            token="USDC",
            decimals=USDC_DECIMALS,
            meta={"token_amount": leg["amount_base"], "recipient": leg["recipient"]},
        )
    return SmartContractAction(
        intent_kind=intent.kind,
        target="native",
        function="transfer",
        args=[leg["recipient"]],
        value_wei=leg["amount_base"],
        mutating=True,
        description=description,
        token="ETH",
        decimals=NATIVE_DECIMALS,
        meta={"recipient": leg["recipient"]},
    )


def _send_batch(intent: Intent, owner: str, settings: Settings) -> SmartContractAction | ClarificationNeeded:
    params = BatchPaymentParams.model_validate(intent.params)
    legs = []
    for item in params.payments:
        try:
            legs.append(_payment_leg(item, settings))
        except ValueError:
            return _clarify(ErrorCode.MISSING_PARAMETER, missing=["recipient"], detail=f"{item.recipient} is not an address")

    dests, values, funcs = batch_calls(legs, usdc_address=settings.usdc_address)
    lines = ", ".join(f"{leg['amount']} {leg['token']} to {leg['recipient']}" for leg in legs)
    return SmartContractAction(
        intent_kind=intent.kind,
        target="smart_account",
        function="executeBatch",
        args=[dests, values, funcs],
        mutating=True,
        description=f"Batch payment from your smart account: {lines}",
        meta={
            "legs": [{k: v for k, v in leg.items() if k != "amount_base"} for leg in legs],
            "native_total": sum(values),
        },
    )


_BUILDERS = {
    IntentKind.RESOLVE_NAME: _resolve_name,
    IntentKind.RESOLVE_ADDRESS: _resolve_address,
    IntentKind.CHECK_AVAILABILITY: _check_availability,
    IntentKind.GET_PRICE: _get_price,
    IntentKind.GET_RECORD: _get_record,
    IntentKind.CHECK_BALANCE: _check_balance,
    IntentKind.REGISTER_NAME: _register,
    IntentKind.RENEW_NAME: _renew,
    IntentKind.SET_RECORD: _set_record,
    IntentKind.TRANSFER_NAME: _transfer_name,
    IntentKind.SEND_PAYMENT: _send_payment,
    IntentKind.SEND_BATCH_PAYMENT: _send_batch,
}


def build(
    intent: Intent,
    *,
    owner: str | None = None,
    settings: Settings | None = None,
) -> SmartContractAction | ClarificationNeeded:
    """
    Map an Intent onto exactly one contract call. Recognition and validation
    problems come back as ``ClarificationNeeded``; nothing here touches the
    ledger.
    """
    settings = settings or get_settings()
    builder = _BUILDERS.get(intent.kind)
    if builder is None:
        return _clarify(ErrorCode.UNSUPPORTED_INTENT, detail=f"'{intent.kind.value}' has no ledger action")
    if intent.needs_clarification:
        return _clarify(ErrorCode.MISSING_PARAMETER, missing=list(intent.missing))

    if intent.mutating:
        if not owner or not Web3.is_address(owner):
            return _clarify(ErrorCode.MISSING_PARAMETER, missing=["wallet_address"])
        owner = Web3.to_checksum_address(owner)

    try:
        return builder(intent, owner, settings)
    except InvalidENSName as e:
        return _clarify(ErrorCode.INVALID_NAME, detail=str(e))
    except InvalidAmount as e:
        return _clarify(ErrorCode.INVALID_AMOUNT, detail=e.message)
