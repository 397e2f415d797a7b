from __future__ import annotations

import logging
import re
from typing import Any

from app.chat.session import ADDRESS_RE, ENS_NAME_RE, Context, find_references
from app.domain.intents import MUTATING_KINDS, REQUIRED_PARAMS, Intent, IntentKind

logger = logging.getLogger(__name__)

_RECIPIENT = r"0x[a-fA-F0-9]{40}|[a-z0-9][a-z0-9-]*\.eth"
_AMOUNT_RE = re.compile(r"(?<![\w.])(\d+(?:\.\d+)?|\.\d+)\s*(eth|usdc)?\b", re.IGNORECASE)
_TOKEN_AMOUNT_RE = re.compile(r"(?<![\w.])(\d+(?:\.\d+)?|\.\d+)\s*(eth|usdc)\b", re.IGNORECASE)
_PAYMENT_LEG_RE = re.compile(
    rf"(?<![\w.])(\d+(?:\.\d+)?|\.\d+)\s*(eth|usdc)?\s+to\s+({_RECIPIENT})",
    re.IGNORECASE,
)
_TO_RECIPIENT_RE = re.compile(rf"\bto\s+({_RECIPIENT})", re.IGNORECASE)
_DURATION_RE = re.compile(r"\b(\d+)\s*(years?|yrs?|months?|days?)\b", re.IGNORECASE)
_BARE_LABEL_RE = re.compile(
    r"\b(?:register|claim|buy|mint|renew|extend)\s+(?:the\s+name\s+)?([a-z0-9][a-z0-9-]{1,49})\b(?!\.)",
    re.IGNORECASE,
)
_QUESTION_START = re.compile(r"^\s*(?:what|what's|whats|how|is|are|who|whose|does|which|when)\b", re.IGNORECASE)

_TRIGGERS: dict[IntentKind, re.Pattern[str]] = {
    IntentKind.SEND_BATCH_PAYMENT: re.compile(r"\b(batch|split|each|multiple)\b"),
    IntentKind.SEND_PAYMENT: re.compile(r"\b(send|pay|tip)\b"),
    IntentKind.TRANSFER_NAME: re.compile(r"\b(transfer|give)\b"),
    IntentKind.REGISTER_NAME: re.compile(r"\b(register|claim|buy|mint)\b"),
    IntentKind.RENEW_NAME: re.compile(r"\b(renew|extend)\b"),
    IntentKind.SET_RECORD: re.compile(r"\b(set|update|change|add)\b"),
    IntentKind.CHECK_AVAILABILITY: re.compile(r"\b(available|availability|taken|free)\b"),
    IntentKind.CHECK_BALANCE: re.compile(r"\b(balance|balances|funds|do i have|have i got)\b"),
    IntentKind.GET_PRICE: re.compile(r"\b(price|cost|costs|how much|fee)\b"),
    IntentKind.RESOLVE_ADDRESS: re.compile(r"\b(who|name|reverse|lookup|look up|resolve|primary)\b"),
    IntentKind.RESOLVE_NAME: re.compile(
        r"\b(resolve|address|who is|who owns|owner|lookup|look up|points? to|info|tell me about)\b"
    ),
    IntentKind.HELP: re.compile(r"\b(help|what can you do|hello|hi|hey|thanks|thank you|capabilities|options)\b"),
}

# earlier wins when candidates are otherwise equal
_PRIORITY = [
    IntentKind.SEND_BATCH_PAYMENT,
    IntentKind.SEND_PAYMENT,
    IntentKind.TRANSFER_NAME,
    IntentKind.REGISTER_NAME,
    IntentKind.RENEW_NAME,
    IntentKind.SET_RECORD,
    IntentKind.CHECK_AVAILABILITY,
    IntentKind.GET_RECORD,
    IntentKind.CHECK_BALANCE,
    IntentKind.GET_PRICE,
    IntentKind.RESOLVE_ADDRESS,
    IntentKind.RESOLVE_NAME,
    IntentKind.HELP,
]

RECORD_KEYS = {
    "twitter": "com.twitter",
    "github": "com.github",
    "discord": "com.discord",
    "telegram": "org.telegram",
    "email": "email",
    "url": "url",
    "website": "url",
    "avatar": "avatar",
    "description": "description",
    "bio": "description",
}
_RECORD_KEY_RE = re.compile(r"\b(" + "|".join(RECORD_KEYS) + r")\b", re.IGNORECASE)
_ADDR_RECORD_RE = re.compile(r"\b(?:eth\s+)?address\b", re.IGNORECASE)
_RECORD_VALUE_RE = re.compile(r"(?:\bto\b|\bas\b|=)\s*(.+?)[\s.!]*$", re.IGNORECASE)

_KIND_ALIASES = {
    "register": IntentKind.REGISTER_NAME,
    "registration": IntentKind.REGISTER_NAME,
    "renew": IntentKind.RENEW_NAME,
    "availability": IntentKind.CHECK_AVAILABILITY,
    "available": IntentKind.CHECK_AVAILABILITY,
    "resolve": IntentKind.RESOLVE_NAME,
    "reverse": IntentKind.RESOLVE_ADDRESS,
    "price": IntentKind.GET_PRICE,
    "balance": IntentKind.CHECK_BALANCE,
    "payment": IntentKind.SEND_PAYMENT,
    "transfer": IntentKind.SEND_PAYMENT,
    "batch_payment": IntentKind.SEND_BATCH_PAYMENT,
    "record": IntentKind.SET_RECORD,
    "smalltalk": IntentKind.HELP,
    "general": IntentKind.HELP,
}


# ---------------------------
# Extractors
# ---------------------------

def _names(text: str) -> list[str]:
    return [n.lower() for n in ENS_NAME_RE.findall(text)]


def _addresses(text: str) -> list[str]:
    return ADDRESS_RE.findall(text)


def _duration_days(text: str) -> int | None:
    match = _DURATION_RE.search(text)
    if not match:
        return None
    count = int(match.group(1))
    unit = match.group(2).lower()
    if unit.startswith(("year", "yr")):
        return count * 365
    if unit.startswith("month"):
        return count * 30
    return count


def _name_param(text: str, names: list[str]) -> str | None:
    if names:
        return names[0]
    bare = _BARE_LABEL_RE.search(text)
    if bare and bare.group(1).lower() not in {"it", "that", "this", "my", "name", "domain", "now", "one", "new"}:
        return f"{bare.group(1).lower()}.eth"
    return None


def _payment_legs(text: str) -> list[dict[str, str]]:
    legs = [
        {"amount": amount, "token": (token or "").upper(), "recipient": recipient}
        for amount, token, recipient in _PAYMENT_LEG_RE.findall(text)
    ]
    default_token = next((leg["token"] for leg in legs if leg["token"]), "ETH")
    for leg in legs:
        leg["token"] = leg["token"] or default_token
    return legs


def _each_legs(text: str) -> list[dict[str, str]]:
    # "send 0.01 eth each to a.eth, b.eth and 0x..."
    amount = _TOKEN_AMOUNT_RE.search(text) or _AMOUNT_RE.search(text)
    to_at = re.search(r"\bto\b", text, re.IGNORECASE)
    if not amount or not to_at:
        return []
    recipients = re.findall(_RECIPIENT, text[to_at.end():], re.IGNORECASE)
    token = (amount.group(2) or "ETH").upper()
    return [{"amount": amount.group(1), "token": token, "recipient": r} for r in recipients]


def _record_params(text: str, names: list[str], *, setting: bool) -> dict[str, Any]:
    params: dict[str, Any] = {}
    if names:
        params["name"] = names[0]
    key_match = _RECORD_KEY_RE.search(text)
    if key_match:
        params["key"] = RECORD_KEYS[key_match.group(1).lower()]
    elif setting and _ADDR_RECORD_RE.search(text):
        params["key"] = "addr"
    if setting:
        value = _RECORD_VALUE_RE.search(text)
        if value:
            raw = value.group(1).strip().strip("\"'")
            if names:
                raw = re.sub(rf"\s+(?:for|on|of)\s+{re.escape(names[0])}$", "", raw, flags=re.IGNORECASE)
            if raw and raw.lower() not in names:
                params["value"] = raw
    return params


def _balance_params(text: str, addresses: list[str]) -> dict[str, Any]:
    params: dict[str, Any] = {}
    if addresses:
        params["address"] = addresses[0]
    token = re.search(r"\b(eth|usdc)\b", text, re.IGNORECASE)
    if token:
        params["token"] = token.group(1).upper()
    return params


# ---------------------------
# Candidate detection
# ---------------------------

def _candidates(text: str) -> dict[IntentKind, dict[str, Any]]:
    lower = text.lower()
    names = _names(text)
    addresses = _addresses(text)
    amounts = _AMOUNT_RE.findall(text)
    found: dict[IntentKind, dict[str, Any]] = {}

    def hit(kind: IntentKind) -> bool:
        return bool(_TRIGGERS[kind].search(lower))

    pays = hit(IntentKind.SEND_PAYMENT) or (hit(IntentKind.TRANSFER_NAME) and bool(amounts))
    if pays:
        legs = _payment_legs(text)
        if len(legs) < 2 and hit(IntentKind.SEND_BATCH_PAYMENT):
            legs = _each_legs(text)
        if len(legs) >= 2:
            found[IntentKind.SEND_BATCH_PAYMENT] = {"payments": legs}
        else:
            params: dict[str, Any] = {}
            token_amount = _TOKEN_AMOUNT_RE.search(text) or _AMOUNT_RE.search(text)
            if token_amount:
                params["amount"] = token_amount.group(1)
                params["token"] = (token_amount.group(2) or "ETH").upper()
            recipient = _TO_RECIPIENT_RE.search(text)
            if recipient:
                params["recipient"] = recipient.group(1)
            found[IntentKind.SEND_PAYMENT] = params

    if hit(IntentKind.TRANSFER_NAME) and not amounts:
        params = {"name": names[0]} if names else {}
        recipient = _TO_RECIPIENT_RE.search(text)
        if recipient and recipient.group(1).lower() != params.get("name"):
            params["new_owner"] = recipient.group(1)
        found[IntentKind.TRANSFER_NAME] = params

    for kind in (IntentKind.REGISTER_NAME, IntentKind.RENEW_NAME):
        if hit(kind):
            params = {}
            name = _name_param(text, names)
            if name:
                params["name"] = name
            duration = _duration_days(text)
            if duration:
                params["duration_days"] = duration
            found[kind] = params

    has_record_key = bool(_RECORD_KEY_RE.search(lower))
    if hit(IntentKind.SET_RECORD) and (has_record_key or "record" in lower or _ADDR_RECORD_RE.search(lower)):
        found[IntentKind.SET_RECORD] = _record_params(text, names, setting=True)
    elif has_record_key and names:
        found[IntentKind.GET_RECORD] = _record_params(text, names, setting=False)

    if hit(IntentKind.CHECK_AVAILABILITY):
        found[IntentKind.CHECK_AVAILABILITY] = {"name": _name_param(text, names)}

    if hit(IntentKind.CHECK_BALANCE):
        found[IntentKind.CHECK_BALANCE] = _balance_params(text, addresses)

    if hit(IntentKind.GET_PRICE) and IntentKind.CHECK_BALANCE not in found:
        found[IntentKind.GET_PRICE] = {"name": _name_param(text, names), "duration_days": _duration_days(text)}

    if addresses and not names and (hit(IntentKind.RESOLVE_ADDRESS) or _is_bare(text, addresses[0])):
        found[IntentKind.RESOLVE_ADDRESS] = {"address": addresses[0]}

    if names and (hit(IntentKind.RESOLVE_NAME) or _is_bare(text, names[0])):
        found.setdefault(IntentKind.RESOLVE_NAME, {"name": names[0]})

    if hit(IntentKind.HELP):
        found[IntentKind.HELP] = {}

    return found


def _is_bare(text: str, entity: str) -> bool:
    rest = re.sub(re.escape(entity), "", text, flags=re.IGNORECASE)
    return not re.sub(r"[\s?!.]", "", rest)


def _has_object(kind: IntentKind, params: dict[str, Any]) -> bool:
    required = REQUIRED_PARAMS[kind]
    if not required:
        return True
    return any(params.get(key) not in (None, "", []) for key in required)


def _pick(found: dict[IntentKind, dict[str, Any]], *, question: bool) -> IntentKind:
    def rank(kind: IntentKind) -> tuple[bool, bool, int]:
        mutating = kind in MUTATING_KINDS
        # imperatives favour mutating kinds; questions favour informational ones
        preferred = mutating != question
        return (_has_object(kind, found[kind]), preferred, -_PRIORITY.index(kind))

    return max(found, key=rank)


# ---------------------------
# Recognition
# ---------------------------

def _follow_up(text: str, context: Context) -> Intent | None:
    pending = context.pending_record
    if not pending:
        return None
    params = dict(pending.get("params") or {})
    missing = [key for key in pending.get("missing") or [] if key not in params]
    if not missing:
        return None
    params[missing[0]] = text.strip().strip("\"'")
    return Intent(kind=IntentKind.SET_RECORD, params=params, confidence=0.8, reason="follow_up")


def normalize_classification(raw: dict[str, Any] | None) -> Intent | None:
    """
    Coerce an external classifier payload into an Intent. Accepts either
    ``{kind, params, confidence}`` or ``{intent_type, slots, confidence}``.
    Returns None when the payload cannot be interpreted.
    """
    if not isinstance(raw, dict):
        return None
    kind_raw = raw.get("kind") or raw.get("intent_type")
    if not isinstance(kind_raw, str) or not kind_raw.strip():
        return None
    key = kind_raw.strip().lower().replace("-", "_").replace(" ", "_")
    try:
        kind = IntentKind(key)
    except ValueError:
        kind = _KIND_ALIASES.get(key)
    if kind is None:
        return None

    params = raw.get("params") or raw.get("slots") or {}
    if not isinstance(params, dict):
        return None
    params = dict(params)
    for field in ("name",):
        if isinstance(params.get(field), str):
            params[field] = params[field].strip().lower()
    if "amount" in params and params["amount"] is not None:
        params["amount"] = str(params["amount"])
    if isinstance(params.get("token"), str):
        params["token"] = params["token"].upper()

    confidence = raw.get("confidence")
    try:
        confidence = float(confidence) if confidence is not None else 0.7
    except (TypeError, ValueError):
        confidence = 0.7
    confidence = min(max(confidence, 0.0), 1.0)
    try:
        return Intent(kind=kind, params=params, confidence=confidence, reason=raw.get("reason"))
    except ValueError as e:
        logger.warning("classifier payload rejected: %s", e)
        return None


def recognize(text: str, context: Context, *, classification: dict[str, Any] | None = None) -> Intent:
    """
    Interpret a reference-resolved message. Pure: no I/O, same inputs give
    the same Intent.
    """
    stripped = (text or "").strip()
    if not stripped or not re.search(r"[a-z0-9]", stripped, re.IGNORECASE):
        return Intent.unknown("empty")

    if classification is not None:
        normalized = normalize_classification(classification)
        if normalized is not None and normalized.kind != IntentKind.UNKNOWN:
            return normalized

    found = _candidates(stripped)
    if not found:
        follow_up = _follow_up(stripped, context)
        if follow_up is not None:
            return follow_up
        return Intent.unknown("no_match")

    question = bool(_QUESTION_START.search(stripped)) or stripped.endswith("?")
    kind = _pick(found, question=question)
    intent = Intent(kind=kind, params=found[kind], confidence=0.9 if len(found) == 1 else 0.85)

    if intent.needs_clarification:
        references = find_references(stripped)
        antecedent = context.last_entity_name or context.last_address
        if references and not antecedent:
            return intent.model_copy(update={"confidence": 0.4, "reason": "ambiguous_reference"})
        return intent.model_copy(update={"confidence": 0.7, "reason": "missing_parameters"})

    if kind in (IntentKind.RESOLVE_NAME, IntentKind.RESOLVE_ADDRESS) and not _TRIGGERS[kind].search(stripped.lower()):
        # a bare name or address is a plausible but weak lookup request
        return intent.model_copy(update={"confidence": 0.7})
    return intent
