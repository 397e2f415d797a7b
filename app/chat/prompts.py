from __future__ import annotations

import json
from typing import Any, Dict

from app.domain.intents import IntentKind, REQUIRED_PARAMS


INTENT_CLASSIFIER_SYSTEM = (
    "You are an intent classifier for an ENS and payments assistant. "
    "Return strict JSON only (no markdown). "
    "Required keys: kind, params, confidence, reason. "
    "kind must be one of: "
    + ", ".join(kind.value for kind in IntentKind)
    + ". "
    "params holds only values explicitly present in the message or context; never invent names, "
    "addresses or amounts. ENS names are lower-case and end with .eth. "
    "Amounts are human-readable decimal strings; token is ETH or USDC. "
    "For send_batch_payment, params.payments is a list of {recipient, amount, token}. "
    "When the message mixes a question about a name with a request to change it, "
    "prefer the state-changing kind only if the user asks for it imperatively. "
    "If the input is nonsense or random text, respond with kind unknown and confidence 0."
)

CHAT_RESPONSE_SYSTEM = (
    "You are a helpful ENS and payments assistant. "
    "Rewrite the draft reply so it reads naturally, in 1-3 sentences. "
    "Preserve every fact from the draft exactly: names, addresses, amounts, transaction ids. "
    "If the draft asks the user to confirm, keep the confirmation question verbatim. "
    "If the draft contains questions, keep those questions verbatim. "
    "Do not invent new facts and never claim a transaction happened unless the draft says so. "
    "Return strict JSON only with a single key: message."
)


def _required_params() -> Dict[str, list[str]]:
    return {kind.value: list(params) for kind, params in REQUIRED_PARAMS.items() if params}


def build_intent_classifier_prompt(message: str, context: Dict[str, Any]) -> Dict[str, str]:
    user = {
        "message": message,
        "context": context,
        "required_params": _required_params(),
        "examples": [
            {
                "input": "Is testname.eth available?",
                "output": {
                    "kind": "check_availability",
                    "params": {"name": "testname.eth"},
                    "confidence": 0.95,
                    "reason": "availability question",
                },
            },
            {
                "input": "register coolname.eth for 2 years",
                "output": {
                    "kind": "register_name",
                    "params": {"name": "coolname.eth", "duration_days": 730},
                    "confidence": 0.95,
                    "reason": "registration request",
                },
            },
            {
                "input": "send 0.01 eth to vitalik.eth",
                "output": {
                    "kind": "send_payment",
                    "params": {"recipient": "vitalik.eth", "amount": "0.01", "token": "ETH"},
                    "confidence": 0.9,
                    "reason": "payment request",
                },
            },
            {
                "input": "set my twitter on alice.eth to @alice",
                "output": {
                    "kind": "set_record",
                    "params": {"name": "alice.eth", "key": "com.twitter", "value": "@alice"},
                    "confidence": 0.9,
                    "reason": "text record update",
                },
            },
            {
                "input": "what can you do?",
                "output": {"kind": "help", "params": {}, "confidence": 0.9, "reason": "capabilities request"},
            },
            {
                "input": "asdkjh qwe",
                "output": {"kind": "unknown", "params": {}, "confidence": 0.0, "reason": "gibberish"},
            },
        ],
        "instruction": "Classify the message and return JSON only.",
    }

    return {
        "system": INTENT_CLASSIFIER_SYSTEM,
        "user": json.dumps(user, ensure_ascii=True),
    }


def build_chat_response_prompt(draft: str, context: Dict[str, Any]) -> Dict[str, str]:
    user = {
        "draft": draft,
        "context": context,
        "instruction": "Return JSON: {\"message\": \"...\"}",
    }
    return {
        "system": CHAT_RESPONSE_SYSTEM,
        "user": json.dumps(user, ensure_ascii=True),
    }
