from __future__ import annotations

from typing import Any

from web3 import Web3

from chain.abis import function_abi
from chain.rpc import LedgerProvider, decode_output

NATIVE_DECIMALS = 18
USDC_DECIMALS = 6


def format_units(raw: int | str | None, decimals: int) -> str:
    if raw is None:
        return "unknown"
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return "unknown"
    if decimals <= 0:
        return str(value)
    scale = 10 ** decimals
    whole = value // scale
    frac = value % scale
    frac_str = str(frac).rjust(decimals, "0").rstrip("0")
    if not frac_str:
        return str(whole)
    return f"{whole}.{frac_str[:6]}"


def token_balance(provider: LedgerProvider, token_address: str, owner: str) -> int:
    entry = function_abi("erc20", "balanceOf")
    raw = provider.call(token_address, entry, [Web3.to_checksum_address(owner)])
    return int(decode_output(entry, raw)[0])


def fetch_wallet_snapshot(
    provider: LedgerProvider,
    *,
    wallet_address: str,
    tokens: dict[str, str] | None = None,
) -> dict[str, Any]:
    """
    Native balance plus ERC20 balances for ``tokens`` (symbol -> address).
    Values are strings for JSON safety.
    """
    wallet = Web3.to_checksum_address(wallet_address)
    native_wei = provider.get_balance(wallet)

    balances: list[dict[str, Any]] = [
        {
            "symbol": "ETH",
            "balance": str(native_wei),
            "decimals": NATIVE_DECIMALS,
            "formatted": format_units(native_wei, NATIVE_DECIMALS),
        }
    ]
    for symbol, token_address in (tokens or {}).items():
        raw = token_balance(provider, token_address, wallet)
        balances.append(
            {
                "symbol": symbol,
                "token": Web3.to_checksum_address(token_address),
                "balance": str(raw),
                "decimals": USDC_DECIMALS,
                "formatted": format_units(raw, USDC_DECIMALS),
            }
        )

    return {
        "chainId": provider.chain_id,
        "walletAddress": wallet,
        "balances": balances,
    }
