from __future__ import annotations

import pytest

from app.chat.intents import normalize_classification, recognize
from app.chat.session import Context
from app.domain.intents import Intent, IntentKind

ADDR = "0x2222222222222222222222222222222222222222"


@pytest.mark.parametrize(
    "text, kind, params",
    [
        ("Is testname.eth available?", IntentKind.CHECK_AVAILABILITY, {"name": "testname.eth"}),
        ("register coolname.eth for 2 years", IntentKind.REGISTER_NAME, {"name": "coolname.eth", "duration_days": 730}),
        ("renew alice.eth for 90 days", IntentKind.RENEW_NAME, {"name": "alice.eth", "duration_days": 90}),
        ("send 0.01 eth to vitalik.eth", IntentKind.SEND_PAYMENT, {"recipient": "vitalik.eth", "amount": "0.01", "token": "ETH"}),
        ("pay 5 usdc to " + ADDR, IntentKind.SEND_PAYMENT, {"recipient": ADDR, "amount": "5", "token": "USDC"}),
        ("resolve vitalik.eth", IntentKind.RESOLVE_NAME, {"name": "vitalik.eth"}),
        ("what's my balance?", IntentKind.CHECK_BALANCE, {}),
        ("help", IntentKind.HELP, {}),
    ],
)
def test_recognize_common_requests(text, kind, params):
    intent = recognize(text, Context())
    assert intent.kind == kind
    for key, value in params.items():
        assert intent.params[key] == value
    assert not intent.missing
    assert intent.confidence >= 0.6


def test_set_text_record():
    intent = recognize("set twitter for alice.eth to @alice", Context())
    assert intent.kind == IntentKind.SET_RECORD
    assert intent.params == {"name": "alice.eth", "key": "com.twitter", "value": "@alice"}


def test_batch_payment_with_two_legs():
    intent = recognize("send 0.01 eth to alice.eth and 0.02 eth to bob.eth", Context())
    assert intent.kind == IntentKind.SEND_BATCH_PAYMENT
    assert [leg["recipient"] for leg in intent.params["payments"]] == ["alice.eth", "bob.eth"]
    assert [leg["amount"] for leg in intent.params["payments"]] == ["0.01", "0.02"]


def test_transfer_name_is_not_a_payment():
    intent = recognize(f"transfer alice.eth to {ADDR}", Context())
    assert intent.kind == IntentKind.TRANSFER_NAME
    assert intent.params == {"name": "alice.eth", "new_owner": ADDR}


def test_missing_parameters_are_reported():
    intent = recognize("send some eth to bob.eth", Context())
    assert intent.kind == IntentKind.SEND_PAYMENT
    assert intent.missing == ["amount"]
    assert intent.needs_clarification


def test_bare_name_is_a_weak_lookup():
    intent = recognize("alice.eth", Context())
    assert intent.kind == IntentKind.RESOLVE_NAME
    assert intent.confidence == pytest.approx(0.7)


@pytest.mark.parametrize("text", ["", "   ", "???"])
def test_empty_input_is_unparsable(text):
    intent = recognize(text, Context())
    assert intent.kind == IntentKind.UNKNOWN
    assert intent.reason == "empty"


def test_gibberish_is_unknown():
    intent = recognize("asdkjh qwe zzz", Context())
    assert intent.kind == IntentKind.UNKNOWN
    assert intent.confidence == 0.0


def test_recognize_is_deterministic():
    ctx = Context(last_entity_name="alice.eth")
    first = recognize("register bob.eth for 1 year", ctx)
    second = recognize("register bob.eth for 1 year", ctx)
    assert first == second


def test_set_record_follow_up_fills_missing_value():
    ctx = Context(pending_record={"params": {"name": "alice.eth", "key": "com.twitter"}, "missing": ["value"]})
    intent = recognize("@alice_eth", ctx)
    assert intent.kind == IntentKind.SET_RECORD
    assert intent.params["value"] == "@alice_eth"
    assert not intent.missing


def test_classifier_payload_takes_precedence():
    raw = {"kind": "check_availability", "params": {"name": "Alice.ETH"}, "confidence": 0.95}
    intent = recognize("whatever the user typed", Context(), classification=raw)
    assert intent.kind == IntentKind.CHECK_AVAILABILITY
    assert intent.params["name"] == "alice.eth"


def test_normalize_classification_accepts_slot_format():
    intent = normalize_classification(
        {"intent_type": "PAYMENT", "slots": {"recipient": "bob.eth", "amount": 0.5}, "confidence": 2}
    )
    assert intent is not None
    assert intent.kind == IntentKind.SEND_PAYMENT
    assert intent.params["amount"] == "0.5"
    assert intent.confidence == 1.0


@pytest.mark.parametrize("raw", [None, {}, {"kind": "fly_to_moon"}, {"kind": "help", "params": "nope"}])
def test_normalize_classification_rejects_garbage(raw):
    assert normalize_classification(raw) is None


def test_intent_derives_missing_from_required_params():
    intent = Intent(kind=IntentKind.TRANSFER_NAME, params={"name": "alice.eth", "new_owner": ""})
    assert intent.missing == ["new_owner"]
    assert intent.mutating


def test_classifier_payload_with_bad_types_is_rejected():
    raw = {"kind": "register_name", "params": {"name": "alice.eth", "duration_days": "forever"}}
    assert normalize_classification(raw) is None


def test_imperative_mutation_outranks_informational_question():
    intent = recognize("register alice.eth if it's available", Context())
    assert intent.kind == IntentKind.REGISTER_NAME
    assert intent.params["name"] == "alice.eth"
