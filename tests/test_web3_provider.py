from __future__ import annotations

import pytest
from web3.exceptions import RequestTimedOut, Web3RPCError

from app.chat.actions import build
from app.domain.actions import ConfirmedAction, TxStatus
from app.domain.errors import ErrorCode, ExecutionReverted, InsufficientBalance, NetworkError
from app.domain.intents import Intent, IntentKind
from chain.client import ContractInteractor
from chain.rpc import Web3LedgerProvider

SENDER = "0x1111111111111111111111111111111111111111"
RECIPIENT = "0x2222222222222222222222222222222222222222"


class _StubEth:
    def __init__(self, send_error: Exception | None = None, estimate_error: Exception | None = None) -> None:
        self.send_error = send_error
        self.estimate_error = estimate_error
        self.submitted: list[dict] = []
        self.gas_price = 10**9

    def estimate_gas(self, tx):
        if self.estimate_error is not None:
            raise self.estimate_error
        return 21000

    def get_balance(self, address):
        return 10**18

    def get_transaction_count(self, address, block_identifier):
        assert block_identifier == "pending"
        return 3

    def send_transaction(self, tx):
        self.submitted.append(tx)
        if self.send_error is not None:
            raise self.send_error
        return b"\xab" * 32


class _StubWeb3:
    def __init__(self, eth: _StubEth) -> None:
        self.eth = eth


def _provider(eth: _StubEth) -> Web3LedgerProvider:
    return Web3LedgerProvider(11155111, w3=_StubWeb3(eth))


def test_node_rejection_for_funds_is_insufficient_balance():
    provider = _provider(_StubEth(send_error=Web3RPCError("insufficient funds for gas * price + value")))
    with pytest.raises(InsufficientBalance):
        provider.send_transaction(RECIPIENT, None, [], value=1, sender=SENDER, nonce=0)


def test_other_node_rejection_is_execution_reverted():
    provider = _provider(_StubEth(send_error=Web3RPCError("nonce too low")))
    with pytest.raises(ExecutionReverted) as exc:
        provider.send_transaction(RECIPIENT, None, [], value=1, sender=SENDER, nonce=0)
    assert "nonce too low" in exc.value.message


def test_rpc_timeout_stays_network_error():
    provider = _provider(_StubEth(send_error=RequestTimedOut("request timed out")))
    with pytest.raises(NetworkError):
        provider.send_transaction(RECIPIENT, None, [], value=1, sender=SENDER)


def test_estimate_rejection_for_funds_is_insufficient_balance():
    provider = _provider(_StubEth(estimate_error=Web3RPCError("insufficient funds for transfer")))
    with pytest.raises(InsufficientBalance):
        provider.estimate_gas(RECIPIENT, None, [], value=1, sender=SENDER)


def test_pinned_nonce_is_sent_with_transaction():
    eth = _StubEth()
    provider = _provider(eth)
    nonce = provider.get_transaction_count(SENDER)
    tx_id = provider.send_transaction(RECIPIENT, None, [], value=5, sender=SENDER, nonce=nonce)
    assert tx_id == "0x" + "ab" * 32
    assert eth.submitted[0]["nonce"] == 3
    assert eth.submitted[0]["value"] == 5


def test_node_rejection_surfaces_as_failed_result(clock):
    eth = _StubEth(send_error=Web3RPCError("unknown account"))
    interactor = ContractInteractor(_provider(eth), sleep=clock.sleep, clock=clock)
    action = build(
        Intent(kind=IntentKind.SEND_PAYMENT, params={"recipient": RECIPIENT, "amount": "0.01"}, confidence=1.0),
        owner=SENDER,
    )

    result = interactor.execute(ConfirmedAction(action=action, confirmed_at=0.0), sender=SENDER)

    assert result.status == TxStatus.FAILED
    assert result.error_code == ErrorCode.EXECUTION_REVERTED
    assert "unknown account" in result.error
    assert len(eth.submitted) == 1
