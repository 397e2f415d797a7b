from __future__ import annotations

from typing import Any


def _fn(
    name: str,
    inputs: list[tuple[str, str]],
    outputs: list[tuple[str, str]] | None = None,
    *,
    mutability: str = "view",
) -> dict[str, Any]:
    return {
        "name": name,
        "type": "function",
        "stateMutability": mutability,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": n, "type": t} for n, t in (outputs or [])],
    }


ERC20_ABI: list[dict[str, Any]] = [
    _fn("balanceOf", [("owner", "address")], [("balance", "uint256")]),
    _fn("decimals", [], [("", "uint8")]),
    _fn("symbol", [], [("", "string")]),
    _fn(
        "transfer",
        [("to", "address"), ("amount", "uint256")],
        [("", "bool")],
        mutability="nonpayable",
    ),
]

ENS_REGISTRY_ABI: list[dict[str, Any]] = [
    _fn("owner", [("node", "bytes32")], [("", "address")]),
    _fn("resolver", [("node", "bytes32")], [("", "address")]),
    _fn("setOwner", [("node", "bytes32"), ("owner", "address")], mutability="nonpayable"),
]

ETH_REGISTRAR_CONTROLLER_ABI: list[dict[str, Any]] = [
    _fn("available", [("name", "string")], [("", "bool")]),
    _fn(
        "rentPrice",
        [("name", "string"), ("duration", "uint256")],
        [("base", "uint256"), ("premium", "uint256")],
    ),
    _fn(
        "register",
        [
            ("name", "string"),
            ("owner", "address"),
            ("duration", "uint256"),
            ("secret", "bytes32"),
            ("resolver", "address"),
            ("data", "bytes[]"),
            ("reverseRecord", "bool"),
            ("ownerControlledFuses", "uint16"),
        ],
        mutability="payable",
    ),
    _fn("renew", [("name", "string"), ("duration", "uint256")], mutability="payable"),
]

PUBLIC_RESOLVER_ABI: list[dict[str, Any]] = [
    _fn("addr", [("node", "bytes32")], [("", "address")]),
    _fn("name", [("node", "bytes32")], [("", "string")]),
    _fn("text", [("node", "bytes32"), ("key", "string")], [("", "string")]),
    _fn(
        "setText",
        [("node", "bytes32"), ("key", "string"), ("value", "string")],
        mutability="nonpayable",
    ),
    _fn("setAddr", [("node", "bytes32"), ("a", "address")], mutability="nonpayable"),
]

ACCOUNT_FACTORY_ABI: list[dict[str, Any]] = [
    _fn("getAddress", [("owner", "address"), ("salt", "uint256")], [("ret", "address")]),
    _fn("isDeployed", [("account", "address")], [("ret", "bool")]),
    _fn(
        "createAccount",
        [("owner", "address"), ("salt", "uint256")],
        [("ret", "address")],
        mutability="nonpayable",
    ),
]

ENTRY_POINT_ABI: list[dict[str, Any]] = [
    _fn("getNonce", [("sender", "address"), ("key", "uint192")], [("nonce", "uint256")]),
]

SMART_ACCOUNT_ABI: list[dict[str, Any]] = [
    _fn(
        "execute",
        [("dest", "address"), ("value", "uint256"), ("func", "bytes")],
        mutability="nonpayable",
    ),
    _fn(
        "executeBatch",
        [("dest", "address[]"), ("value", "uint256[]"), ("func", "bytes[]")],
        mutability="nonpayable",
    ),
]

# logical contract identifier -> ABI
CONTRACT_ABIS: dict[str, list[dict[str, Any]]] = {
    "ens_registry": ENS_REGISTRY_ABI,
    "eth_registrar_controller": ETH_REGISTRAR_CONTROLLER_ABI,
    "public_resolver": PUBLIC_RESOLVER_ABI,
    "usdc": ERC20_ABI,
    "erc20": ERC20_ABI,
    "account_factory": ACCOUNT_FACTORY_ABI,
    "entry_point": ENTRY_POINT_ABI,
    "smart_account": SMART_ACCOUNT_ABI,
}


class UnknownFunctionError(KeyError):
    pass


def function_abi(contract: str, function: str) -> dict[str, Any]:
    for entry in CONTRACT_ABIS.get(contract, []):
        if entry.get("name") == function:
            return entry
    raise UnknownFunctionError(f"{contract}.{function} is not in the ABI registry")


def input_types(entry: dict[str, Any]) -> list[str]:
    return [item["type"] for item in entry.get("inputs", [])]


def output_types(entry: dict[str, Any]) -> list[str]:
    return [item["type"] for item in entry.get("outputs", [])]


def signature(entry: dict[str, Any]) -> str:
    return f"{entry['name']}({','.join(input_types(entry))})"
