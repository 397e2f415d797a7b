from __future__ import annotations

from web3 import Web3

from chain.abis import function_abi, signature
from chain.rpc import decode_output, encode_call
from chain.smart_account import batch_calls

USDC = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
RECIPIENT = "0x2222222222222222222222222222222222222222"


def test_erc20_transfer_selector():
    entry = function_abi("erc20", "transfer")
    assert signature(entry) == "transfer(address,uint256)"
    data = encode_call(entry, [RECIPIENT, "5"])
    assert data[:4].hex() == "a9059cbb"
    assert len(data) == 4 + 64


def test_plain_transfer_has_no_calldata():
    assert encode_call(None, []) == b""


def test_hex_bytes_are_coerced():
    entry = function_abi("public_resolver", "addr")
    node = "0x" + "11" * 32
    data = encode_call(entry, [node])
    assert data[4:] == bytes.fromhex("11" * 32)


def test_decode_output_for_two_values():
    entry = function_abi("eth_registrar_controller", "rentPrice")
    raw = (5).to_bytes(32, "big") + (7).to_bytes(32, "big")
    assert decode_output(entry, raw) == (5, 7)


def test_batch_calls_split_native_and_token_legs():
    legs = [
        {"recipient": RECIPIENT, "amount_base": 10, "token": "ETH"},
        {"recipient": RECIPIENT, "amount_base": 20, "token": "USDC"},
    ]
    dests, values, funcs = batch_calls(legs, usdc_address=USDC)
    assert dests == [Web3.to_checksum_address(RECIPIENT), Web3.to_checksum_address(USDC)]
    assert values == [10, 0]
    assert funcs[0] == "0x"
    assert funcs[1].startswith("0xa9059cbb")
