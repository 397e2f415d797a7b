from __future__ import annotations

import logging
from typing import Any

from web3 import Web3

from app.chat.actions import build, questions_for
from app.chat.confirmation import Outcome, ReplyKind, classify_reply, park, transition
from app.chat.contracts import ChatRequest, ChatResponse, ConversationContext, TransactionInfo
from app.chat.intents import recognize
from app.chat.llm import classify_intent, explain, polish_assistant_message
from app.chat.session import (
    ChatMessage,
    Session,
    SessionRegistry,
    append_message,
    record_outcome,
    resolve_references,
    restore_history,
    session_key_for,
)
from app.config import get_settings
from app.core.context import set_session_key
from app.domain.actions import (
    ClarificationNeeded,
    ConfirmedAction,
    ReadResult,
    SmartContractAction,
    TransactionResult,
    TxStatus,
)
from app.domain.errors import ErrorCode, NetworkError
from app.domain.intents import Intent, IntentKind
from chain.chains import tx_url
from chain.client import ContractInteractor
from chain.ens import ZERO_ADDRESS
from chain.snapshot import NATIVE_DECIMALS, format_units

logger = logging.getLogger(__name__)

_HELP_MESSAGE = (
    "I can help you with ENS names and payments:\n"
    "- Check if a name is available: \"Is alice.eth available?\"\n"
    "- Price a registration: \"How much is alice.eth for 2 years?\"\n"
    "- Register or renew: \"Register alice.eth\"\n"
    "- Resolve names and addresses: \"Resolve vitalik.eth\"\n"
    "- Read or set records: \"Set twitter for alice.eth to @alice\"\n"
    "- Transfer a name: \"Transfer alice.eth to 0x...\"\n"
    "- Send payments: \"Send 0.01 ETH to bob.eth\" or several at once\n"
    "- Check balances: \"What's my balance?\"\n"
    "Anything that changes on-chain state waits for your explicit confirmation."
)

_ERROR_INTROS = {
    ErrorCode.UNPARSABLE_INPUT: "I couldn't understand that.",
    ErrorCode.AMBIGUOUS_REFERENCE: "I'm not sure what you're referring to.",
    ErrorCode.UNSUPPORTED_INTENT: "I can't do that yet.",
    ErrorCode.INVALID_AMOUNT: "That amount isn't valid.",
    ErrorCode.INVALID_NAME: "That name isn't valid.",
    ErrorCode.MISSING_PARAMETER: "I need a bit more detail.",
    ErrorCode.LOW_CONFIDENCE: "I'm not confident I understood that.",
}


# ---------------------------
# Formatting helpers
# ---------------------------

def _short_address(value: str | None) -> str:
    if not value or not isinstance(value, str):
        return "unknown"
    if len(value) <= 12:
        return value
    return f"{value[:6]}...{value[-4:]}"


def _conversation_context(session: Session) -> ConversationContext:
    return ConversationContext.model_validate(session.context.summary())


def _clarify_message(clarification: ClarificationNeeded) -> str:
    intro = _ERROR_INTROS.get(clarification.error, "I need a bit more detail.")
    parts = [intro]
    if clarification.detail:
        parts.append(clarification.detail.rstrip(".") + ".")
    questions = clarification.questions
    if len(questions) == 1:
        parts.append(questions[0])
    elif questions:
        parts.append("\n" + "\n".join(f"- {q}" for q in questions))
    return " ".join(parts).replace(" \n", "\n")


def _action_payload(action: SmartContractAction) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "kind": action.intent_kind.value,
        "description": action.description,
        "target": action.target,
        "function": action.function,
        "valueWei": str(action.value_wei),
    }
    if action.value_wei:
        payload["valueEth"] = format_units(action.value_wei, NATIVE_DECIMALS)
    payload.update({k: v for k, v in action.meta.items() if k != "native_total"})
    return payload


def _format_read(action: SmartContractAction, result: ReadResult) -> tuple[str, dict[str, Any]]:
    kind = action.intent_kind
    meta = action.meta
    data = dict(result.data)
    name = meta.get("name")

    if kind == IntentKind.CHECK_AVAILABILITY:
        available = bool(result.value) if result.found else False
        data = {"name": name, "available": available}
        if available:
            return f"{name} is available! Want me to register it?", data
        return f"{name} is already registered.", data

    if kind == IntentKind.RESOLVE_NAME:
        if result.found:
            return f"{name} resolves to {result.value}.", {"name": name, **data}
        return (
            f"{name} doesn't resolve to an address. It may be unregistered or have no address record.",
            {"name": name, "address": None},
        )

    if kind == IntentKind.RESOLVE_ADDRESS:
        address = meta.get("address")
        if result.found:
            return f"The primary name of {address} is {result.value}.", {"address": address, "name": result.value}
        return f"{address} has no primary name set.", {"address": address, "name": None}

    if kind == IntentKind.GET_PRICE:
        days = meta.get("duration_days")
        if not result.found:
            return f"I couldn't get a price for {name}.", {"name": name}
        message = f"Registering {name} for {days} days costs {data['total']} ETH"
        if data.get("premium") not in (None, "0"):
            message += f" (including a {data['premium']} ETH premium)"
        return message + ".", {"name": name, "durationDays": days, **data}

    if kind == IntentKind.GET_RECORD:
        key = meta.get("key")
        if result.found:
            return f"The {key} record of {name} is {result.value}.", {"name": name, "key": key, "value": result.value}
        return f"{name} has no {key} record.", {"name": name, "key": key, "value": None}

    if kind == IntentKind.CHECK_BALANCE:
        if action.target == "wallet":
            lines = [f"Balances for {_short_address(data.get('walletAddress'))}:"]
            for item in data.get("balances") or []:
                lines.append(f"- {item.get('symbol')}: {item.get('formatted')}")
            return "\n".join(lines), data
        return f"Balance: {data.get('formatted')} {action.token}.", data

    return action.description, data


def _transaction_info(result: TransactionResult) -> TransactionInfo:
    settings = get_settings()
    return TransactionInfo(
        status=result.status.value,
        tx_id=result.tx_id,
        block_number=result.block_number,
        cost_wei=str(result.cost_wei) if result.cost_wei is not None else None,
        cost_eth=format_units(result.cost_wei, NATIVE_DECIMALS) if result.cost_wei is not None else None,
        explorer_url=tx_url(settings.chain_id, result.tx_id) if result.tx_id else None,
        error=result.error,
        error_code=result.error_code.value if result.error_code else None,
    )


def _format_transaction(action: SmartContractAction, result: TransactionResult) -> str:
    if result.status == TxStatus.SUCCESS:
        message = f"Done: {action.description}. Transaction {result.tx_id} was included in block {result.block_number}"
        if result.cost_wei is not None:
            message += f" (gas cost {format_units(result.cost_wei, NATIVE_DECIMALS)} ETH)"
        return message + "."
    if result.status == TxStatus.PENDING and result.tx_id is None:
        return (
            "The network dropped the response, but the transaction appears to have been accepted. "
            "Check your wallet before retrying."
        )
    if result.status == TxStatus.PENDING:
        return (
            f"Transaction {result.tx_id} was submitted but isn't confirmed yet. "
            "It may still be included; check the explorer before retrying."
        )
    return f"The transaction failed: {result.error}"


# ---------------------------
# Response assembly
# ---------------------------

def _finalize_response(
    session: Session,
    resp: ChatResponse,
    *,
    intent: Intent | None = None,
    result: dict[str, Any] | None = None,
) -> ChatResponse:
    context = {
        "intent": resp.intent,
        "needs_confirmation": resp.needs_confirmation,
        "error": resp.error,
    }
    if resp.questions:
        context["questions"] = resp.questions
    # confirmation prompts are never rephrased
    if not resp.needs_confirmation:
        resp.message = polish_assistant_message(resp.message, context=context)

    if intent is not None:
        record_outcome(session, intent, result, message=resp.message)
    else:
        append_message(session, ChatMessage(role="assistant", content=resp.message))
    resp.conversation_context = _conversation_context(session)
    return resp


def _clarification_response(
    session: Session,
    clarification: ClarificationNeeded,
    *,
    intent: Intent | None = None,
) -> ChatResponse:
    message = _clarify_message(clarification)
    if clarification.error in (ErrorCode.UNPARSABLE_INPUT, ErrorCode.LOW_CONFIDENCE):
        message = explain(message, {"lastEntityName": session.context.last_entity_name}) or message
    return _finalize_response(
        session,
        ChatResponse(
            success=False,
            message=message,
            error=clarification.error.value,
            questions=list(clarification.questions),
            intent=intent.kind.value if intent else None,
            data={"missing": clarification.missing} if clarification.missing else None,
        ),
    )


def _error_response(session: Session, code: ErrorCode, message: str, *, intent: Intent | None = None) -> ChatResponse:
    return _finalize_response(
        session,
        ChatResponse(success=False, message=message, error=code.value, intent=intent.kind.value if intent else None),
        intent=intent,
        result={"error": code.value, "message": message} if intent else None,
    )


# ---------------------------
# Pipeline steps
# ---------------------------

def _classifier_context(session: Session) -> dict[str, Any]:
    context = session.context
    return {
        "lastEntityName": context.last_entity_name,
        "lastAddress": context.last_address,
        "lastOperation": context.last_operation,
        "pendingRecord": context.pending_record,
        "recentMessages": [
            {"role": m.role, "content": m.content} for m in context.messages[-6:]
        ],
    }


def _resolve_ens(interactor: ContractInteractor, name: str) -> str | ClarificationNeeded:
    lookup = build(Intent(kind=IntentKind.RESOLVE_NAME, params={"name": name}, confidence=1.0))
    if isinstance(lookup, ClarificationNeeded):
        return lookup
    result = interactor.read(lookup)
    if not result.found or result.value in (None, ZERO_ADDRESS):
        return ClarificationNeeded(
            error=ErrorCode.INVALID_NAME,
            missing=[],
            detail=f"{name} does not resolve to an address",
        )
    return str(result.value)


def _resolve_recipients(intent: Intent, interactor: ContractInteractor) -> Intent | ClarificationNeeded:
    """
    Replace ENS recipients with their resolved addresses before building.
    """
    params = dict(intent.params)
    resolved: dict[str, str] = {}

    def lookup(value: Any) -> Any:
        if not isinstance(value, str) or Web3.is_address(value) or not value.lower().endswith(".eth"):
            return value
        address = _resolve_ens(interactor, value.lower())
        if isinstance(address, ClarificationNeeded):
            raise _Unresolved(address)
        resolved[value.lower()] = address
        return address

    try:
        if intent.kind == IntentKind.SEND_PAYMENT:
            params["recipient"] = lookup(params.get("recipient"))
        elif intent.kind == IntentKind.TRANSFER_NAME:
            params["new_owner"] = lookup(params.get("new_owner"))
        elif intent.kind == IntentKind.SEND_BATCH_PAYMENT:
            params["payments"] = [
                {**dict(leg), "recipient": lookup(dict(leg).get("recipient"))} for leg in params.get("payments") or []
            ]
        else:
            return intent
    except _Unresolved as e:
        return e.clarification

    if resolved:
        params["resolved_names"] = resolved
    return intent.model_copy(update={"params": params})


class _Unresolved(Exception):
    def __init__(self, clarification: ClarificationNeeded) -> None:
        super().__init__(clarification.detail)
        self.clarification = clarification


def _execute(session: Session, confirmed: ConfirmedAction, interactor: ContractInteractor) -> ChatResponse:
    action = confirmed.action
    sender = session.context.user_address
    result = interactor.execute(confirmed, sender=sender)
    logger.info(
        "action executed kind=%s status=%s tx=%s",
        action.intent_kind.value,
        result.status.value,
        result.tx_id,
    )

    params = {k: v for k, v in action.meta.items() if isinstance(v, (str, int, float))}
    intent = Intent(kind=action.intent_kind, params=params, confidence=1.0)
    resp = ChatResponse(
        success=result.status != TxStatus.FAILED,
        message=_format_transaction(action, result),
        data={"action": _action_payload(action)},
        error=result.error_code.value if result.status == TxStatus.FAILED and result.error_code else None,
        transaction=_transaction_info(result),
        intent=action.intent_kind.value,
    )
    return _finalize_response(
        session,
        resp,
        intent=intent,
        result={"transaction": result.model_dump(mode="json")},
    )


def _handle_reply(
    session: Session,
    text: str,
    interactor: ContractInteractor,
) -> tuple[ChatResponse | None, SmartContractAction | None]:
    """
    Confirmation handling. A None response means the message is processed
    as a fresh turn; the second item is any pending action it abandoned.
    """
    if session.pending is None:
        reply = classify_reply(text)
        if reply == ReplyKind.AFFIRMATIVE:
            return _error_response(
                session,
                ErrorCode.EXPIRED_CONFIRMATION,
                "There's nothing waiting for confirmation. If you still want to go ahead, please ask again.",
            ), None
        if reply == ReplyKind.NEGATIVE:
            return _finalize_response(
                session,
                ChatResponse(success=True, message="There's nothing to cancel."),
            ), None
        return None, None

    step = transition(session, text)
    if step.outcome == Outcome.RELEASED and step.released is not None:
        return _execute(session, step.released, interactor), None
    if step.outcome == Outcome.CANCELLED:
        return _finalize_response(
            session,
            ChatResponse(
                success=True,
                message=f"Cancelled. Nothing was submitted ({step.discarded.description}).",
                data={"cancelled": _action_payload(step.discarded)},
            ),
        ), None
    if step.outcome == Outcome.EXPIRED and step.reply == ReplyKind.AFFIRMATIVE:
        return _error_response(
            session,
            ErrorCode.EXPIRED_CONFIRMATION,
            f"That confirmation expired, so nothing was submitted ({step.discarded.description}). "
            "Ask again if you still want to proceed.",
        ), None
    if step.outcome == Outcome.EXPIRED and step.reply == ReplyKind.NEGATIVE:
        return _finalize_response(
            session,
            ChatResponse(success=True, message="That request had already expired. Nothing was submitted."),
        ), None
    # abandoned, or expired while the user moved on
    logger.info("pending action dropped session=%s outcome=%s", session.key, step.outcome.value)
    return None, step.discarded


def _handle_turn(
    session: Session,
    text: str,
    interactor: ContractInteractor,
    *,
    abandoned: SmartContractAction | None = None,
) -> ChatResponse:
    settings = get_settings()
    context = session.context

    resolved = resolve_references(session, text)
    classification = classify_intent(resolved, _classifier_context(session))
    intent = recognize(resolved, context, classification=classification)
    logger.info(
        "intent recognized kind=%s confidence=%.2f missing=%s",
        intent.kind.value,
        intent.confidence,
        intent.missing,
    )

    if intent.kind != IntentKind.SET_RECORD or not intent.needs_clarification:
        context.pending_record = None

    if intent.kind == IntentKind.HELP:
        return _finalize_response(session, ChatResponse(success=True, message=_HELP_MESSAGE, intent=intent.kind.value))

    if intent.kind == IntentKind.UNKNOWN:
        error = ErrorCode.UNPARSABLE_INPUT if intent.reason == "empty" else ErrorCode.UNSUPPORTED_INTENT
        return _clarification_response(
            session,
            ClarificationNeeded(
                error=error,
                questions=["Try asking about a .eth name, a payment, or your balance. Say \"help\" for examples."],
            ),
            intent=intent,
        )

    if intent.reason == "ambiguous_reference":
        return _clarification_response(
            session,
            ClarificationNeeded(
                error=ErrorCode.AMBIGUOUS_REFERENCE,
                missing=list(intent.missing),
                questions=questions_for(list(intent.missing)),
            ),
            intent=intent,
        )

    if intent.confidence < settings.chat_min_confidence:
        return _clarification_response(
            session,
            ClarificationNeeded(
                error=ErrorCode.LOW_CONFIDENCE,
                detail=f"It sounded like {intent.kind.value.replace('_', ' ')}",
                questions=["Could you rephrase with the exact name, address or amount?"],
            ),
            intent=intent,
        )

    if intent.needs_clarification:
        if intent.kind == IntentKind.SET_RECORD:
            context.pending_record = {"params": dict(intent.params), "missing": list(intent.missing)}
        return _clarification_response(
            session,
            ClarificationNeeded(
                error=ErrorCode.MISSING_PARAMETER,
                missing=list(intent.missing),
                questions=questions_for(list(intent.missing)),
            ),
            intent=intent,
        )

    try:
        resolved_intent = _resolve_recipients(intent, interactor)
    except NetworkError as e:
        return _error_response(session, ErrorCode.NETWORK_ERROR, f"I couldn't reach the network: {e.message}", intent=intent)
    if isinstance(resolved_intent, ClarificationNeeded):
        return _clarification_response(session, resolved_intent, intent=intent)

    built = build(resolved_intent, owner=context.user_address, settings=settings)
    if isinstance(built, ClarificationNeeded):
        return _clarification_response(session, built, intent=intent)

    if built.mutating:
        step = park(session, built)
        data = {"action": _action_payload(built), "expiresAt": step.pending.expires_at}
        if resolved_intent.params.get("resolved_names"):
            data["resolvedNames"] = resolved_intent.params["resolved_names"]
        replaced = step.discarded if step.outcome == Outcome.REPLACED else abandoned
        if replaced is not None:
            data["replaced"] = replaced.description
        return _finalize_response(
            session,
            ChatResponse(
                success=True,
                message=f"Ready to {built.description[0].lower()}{built.description[1:]}. "
                "Reply \"yes\" to confirm or \"no\" to cancel.",
                data=data,
                needs_confirmation=True,
                intent=intent.kind.value,
            ),
            intent=intent,
            result={"pending": data["action"]},
        )

    try:
        result = interactor.read(built)
    except NetworkError as e:
        return _error_response(session, ErrorCode.NETWORK_ERROR, f"I couldn't reach the network: {e.message}", intent=intent)

    message, data = _format_read(built, result)
    return _finalize_response(
        session,
        ChatResponse(success=True, message=message, data=data, intent=intent.kind.value),
        intent=intent,
        result={"found": result.found, "data": data},
    )


def _history_messages(req: ChatRequest) -> list[ChatMessage]:
    messages = []
    for item in req.conversation_history:
        fields = item.model_dump(exclude_none=True)
        messages.append(ChatMessage(**fields))
    return messages


def route_chat(
    req: ChatRequest,
    *,
    registry: SessionRegistry,
    interactor: ContractInteractor,
) -> ChatResponse:
    key = session_key_for(req.user_address)
    set_session_key(key)
    # one message at a time per session, in arrival order
    with registry.locked(key) as session:
        context = session.context
        if req.user_address and Web3.is_address(req.user_address):
            context.user_address = Web3.to_checksum_address(req.user_address)
        if req.conversation_history:
            restore_history(session, _history_messages(req))
        append_message(session, ChatMessage(role="user", content=req.message))

        resp, abandoned = _handle_reply(session, req.message, interactor)
        if resp is None:
            resp = _handle_turn(session, req.message, interactor, abandoned=abandoned)
        registry.save(session)
    return resp
