from __future__ import annotations

import json
from typing import Dict

from app.config import get_settings


class UnsupportedChainError(ValueError):
    pass


# public fallbacks, used when RPC_URLS does not name the chain
DEFAULT_RPC_URLS: Dict[int, str] = {
    11155111: "https://ethereum-sepolia-rpc.publicnode.com",
    84532: "https://sepolia.base.org",
    8453: "https://mainnet.base.org",
}

EXPLORERS: Dict[int, str] = {
    1: "https://etherscan.io",
    11155111: "https://sepolia.etherscan.io",
    84532: "https://sepolia.basescan.org",
    8453: "https://basescan.org",
}


def _load_rpc_urls() -> Dict[int, str]:
    """
    Load RPC URLs from settings, layered over the public defaults.

    Expected env format:
      RPC_URLS='{"11155111":"https://sepolia.example/rpc"}'
    """
    settings = get_settings()
    rpc_urls: Dict[int, str] = dict(DEFAULT_RPC_URLS)

    raw = settings.RPC_URLS
    if not raw:
        return rpc_urls

    try:
        data = json.loads(raw)
    except Exception as e:
        raise ValueError("RPC_URLS must be valid JSON") from e

    for k, v in data.items():
        try:
            chain_id = int(k)
        except ValueError:
            raise ValueError(f"Invalid chain_id key in RPC_URLS: {k}")

        if not isinstance(v, str) or not v:
            raise ValueError(f"Invalid RPC URL for chain {chain_id}")

        rpc_urls[chain_id] = v.rstrip("/")

    return rpc_urls


def get_rpc_url(chain_id: int) -> str:
    """
    Return RPC URL for a given chain_id.
    Raises UnsupportedChainError if not configured.
    """
    rpc_url = _load_rpc_urls().get(chain_id)
    if not rpc_url:
        raise UnsupportedChainError(f"Unsupported chain_id: {chain_id}")
    return rpc_url


def list_supported_chains() -> list[int]:
    return sorted(_load_rpc_urls().keys())


def tx_url(chain_id: int, tx_id: str) -> str | None:
    base = EXPLORERS.get(chain_id)
    if not base or not tx_id:
        return None
    return f"{base}/tx/{tx_id}"
