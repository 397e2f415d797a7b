from __future__ import annotations

from typing import Any, Iterable

from web3 import Web3

from chain.abis import function_abi
from chain.rpc import LedgerProvider, decode_output, encode_call


def counterfactual_address(
    provider: LedgerProvider,
    *,
    factory: str,
    owner: str,
    salt: int,
) -> str:
    """
    Deterministic smart-account address for (owner, salt). The account may
    not be deployed yet; the account infrastructure deploys it on first use.
    """
    entry = function_abi("account_factory", "getAddress")
    raw = provider.call(factory, entry, [Web3.to_checksum_address(owner), int(salt)])
    return Web3.to_checksum_address(decode_output(entry, raw)[0])


def entry_point_nonce(provider: LedgerProvider, *, entry_point: str, account: str, key: int = 0) -> int:
    entry = function_abi("entry_point", "getNonce")
    raw = provider.call(entry_point, entry, [Web3.to_checksum_address(account), int(key)])
    return int(decode_output(entry, raw)[0])


def batch_calls(legs: Iterable[dict[str, Any]], *, usdc_address: str) -> tuple[list[str], list[int], list[str]]:
    """
    Split payment legs into executeBatch's (dest, value, func) columns.
    Call data is returned as 0x-hex so the columns stay JSON-safe.

    leg format: {"recipient": "0x...", "amount_base": int, "token": "ETH" | "USDC"}
    """
    transfer = function_abi("erc20", "transfer")
    dests: list[str] = []
    values: list[int] = []
    funcs: list[str] = []
    for leg in legs:
        recipient = Web3.to_checksum_address(leg["recipient"])
        amount = int(leg["amount_base"])
        if str(leg.get("token") or "ETH").upper() == "USDC":
            dests.append(Web3.to_checksum_address(usdc_address))
            values.append(0)
            funcs.append(Web3.to_hex(encode_call(transfer, [recipient, amount])))
        else:
            dests.append(recipient)
            values.append(amount)
            funcs.append("0x")
    return dests, values, funcs
