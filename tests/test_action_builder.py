from __future__ import annotations

import pytest
from web3 import Web3

from app.chat.actions import ZERO_SECRET, build, registration_cost_wei, to_base_units
from app.config import get_settings
from app.domain.actions import ClarificationNeeded, SmartContractAction
from app.domain.errors import ErrorCode, InvalidAmount
from app.domain.intents import Intent, IntentKind
from chain.ens import namehash

OWNER = "0x1111111111111111111111111111111111111111"
RECIPIENT = "0x2222222222222222222222222222222222222222"


def _intent(kind: IntentKind, **params) -> Intent:
    return Intent(kind=kind, params=params, confidence=0.9)


def test_availability_is_read_only():
    action = build(_intent(IntentKind.CHECK_AVAILABILITY, name="Alice.eth"))
    assert isinstance(action, SmartContractAction)
    assert action.mutating is False
    assert action.target == "eth_registrar_controller"
    assert action.function == "available"
    assert action.args == ["alice"]


def test_resolve_name_uses_namehash():
    action = build(_intent(IntentKind.RESOLVE_NAME, name="alice.eth"))
    assert action.args == [Web3.to_hex(namehash("alice.eth"))]


def test_register_builds_payable_call():
    action = build(_intent(IntentKind.REGISTER_NAME, name="alice.eth"), owner=OWNER)
    settings = get_settings()

    assert action.mutating is True
    assert action.function == "register"
    label, owner, duration, secret, resolver, data, reverse, fuses = action.args
    assert label == "alice"
    assert owner == Web3.to_checksum_address(OWNER)
    assert duration == settings.ens_default_duration_days * 86400
    assert secret == ZERO_SECRET
    assert resolver == Web3.to_checksum_address(settings.ens_public_resolver_address)
    assert (data, reverse, fuses) == ([], False, 0)
    assert action.value_wei == 10**16


def test_registration_cost_rounds_down():
    assert registration_cost_wei(365) == 10**16
    assert registration_cost_wei(730) == 2 * 10**16
    assert registration_cost_wei(100) == (10**16 * 100) // 365


def test_mutating_action_requires_wallet():
    result = build(_intent(IntentKind.REGISTER_NAME, name="alice.eth"))
    assert isinstance(result, ClarificationNeeded)
    assert result.error == ErrorCode.MISSING_PARAMETER
    assert result.missing == ["wallet_address"]


def test_duration_below_minimum_is_invalid_amount():
    result = build(_intent(IntentKind.REGISTER_NAME, name="alice.eth", duration_days=7), owner=OWNER)
    assert isinstance(result, ClarificationNeeded)
    assert result.error == ErrorCode.INVALID_AMOUNT


@pytest.mark.parametrize("name", ["alice", "bad_name.eth", "-dash.eth", "sub.alice.eth", "x" * 60 + ".eth"])
def test_invalid_names_are_rejected(name):
    result = build(_intent(IntentKind.CHECK_AVAILABILITY, name=name))
    assert isinstance(result, ClarificationNeeded)
    assert result.error == ErrorCode.INVALID_NAME


def test_missing_parameters_short_circuit():
    result = build(Intent(kind=IntentKind.SEND_PAYMENT, params={"recipient": RECIPIENT}))
    assert isinstance(result, ClarificationNeeded)
    assert result.error == ErrorCode.MISSING_PARAMETER
    assert result.missing == ["amount"]
    assert result.questions


def test_help_has_no_ledger_action():
    result = build(_intent(IntentKind.HELP))
    assert isinstance(result, ClarificationNeeded)
    assert result.error == ErrorCode.UNSUPPORTED_INTENT


def test_native_payment():
    action = build(_intent(IntentKind.SEND_PAYMENT, recipient=RECIPIENT, amount="0.05", token="ETH"), owner=OWNER)
    assert action.target == "native"
    assert action.value_wei == 5 * 10**16
    assert action.args == [Web3.to_checksum_address(RECIPIENT)]


def test_usdc_payment_uses_token_transfer():
    action = build(_intent(IntentKind.SEND_PAYMENT, recipient=RECIPIENT, amount="5", token="USDC"), owner=OWNER)
    assert action.target == "usdc"
    assert action.function == "transfer"
    assert action.args == [Web3.to_checksum_address(RECIPIENT), 5_000_000]
    assert action.value_wei == 0
    assert action.meta["token_amount"] == 5_000_000


@pytest.mark.parametrize("amount", ["0", "-1", "0.0001", "11", "abc"])
def test_payment_amount_out_of_bounds(amount):
    result = build(_intent(IntentKind.SEND_PAYMENT, recipient=RECIPIENT, amount=amount), owner=OWNER)
    assert isinstance(result, ClarificationNeeded)
    assert result.error == ErrorCode.INVALID_AMOUNT


def test_to_base_units_truncates_extra_precision():
    assert to_base_units("1.1234567", 6) == 1_123_456
    with pytest.raises(InvalidAmount):
        to_base_units("1e3", 18)


def test_unresolved_recipient_asks_for_address():
    result = build(_intent(IntentKind.SEND_PAYMENT, recipient="bob.eth", amount="0.01"), owner=OWNER)
    assert isinstance(result, ClarificationNeeded)
    assert result.missing == ["recipient"]


def test_batch_payment_targets_smart_account():
    payments = [
        {"recipient": RECIPIENT, "amount": "0.01", "token": "ETH"},
        {"recipient": OWNER, "amount": "2", "token": "USDC"},
    ]
    action = build(_intent(IntentKind.SEND_BATCH_PAYMENT, payments=payments), owner=OWNER)
    assert action.target == "smart_account"
    assert action.function == "executeBatch"
    dests, values, funcs = action.args
    assert dests[0] == Web3.to_checksum_address(RECIPIENT)
    assert dests[1] == Web3.to_checksum_address(get_settings().usdc_address)
    assert values == [10**16, 0]
    assert funcs[0] == "0x"
    assert funcs[1].startswith("0xa9059cbb")
    assert action.meta["native_total"] == 10**16


def test_set_addr_record_requires_address_value():
    result = build(_intent(IntentKind.SET_RECORD, name="alice.eth", key="addr", value="nope"), owner=OWNER)
    assert isinstance(result, ClarificationNeeded)

    action = build(_intent(IntentKind.SET_RECORD, name="alice.eth", key="addr", value=RECIPIENT), owner=OWNER)
    assert action.function == "setAddr"


def test_transfer_name_calls_registry():
    action = build(_intent(IntentKind.TRANSFER_NAME, name="alice.eth", new_owner=RECIPIENT), owner=OWNER)
    assert action.target == "ens_registry"
    assert action.function == "setOwner"
