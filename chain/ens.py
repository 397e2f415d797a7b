from __future__ import annotations

import re

from web3 import Web3

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ZERO_NODE = b"\x00" * 32

_LABEL_RE = re.compile(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?$")


class InvalidENSName(ValueError):
    pass


def normalize_name(name: str) -> str:
    return (name or "").strip().lower()


def validate_name(name: str, *, max_label_length: int = 50) -> str:
    """
    Normalize and validate a second-level ``.eth`` name. Returns the
    normalized name or raises ``InvalidENSName``.
    """
    normalized = normalize_name(name)
    if not normalized:
        raise InvalidENSName("Name must be a non-empty string")
    if not normalized.endswith(".eth"):
        raise InvalidENSName("Name must end with .eth")

    label = normalized[: -len(".eth")]
    if not label:
        raise InvalidENSName("Name cannot be empty")
    if "." in label:
        raise InvalidENSName("Subdomains are not supported")
    if len(label) > max_label_length:
        raise InvalidENSName(f"Name cannot exceed {max_label_length} characters")
    if not _LABEL_RE.fullmatch(label):
        raise InvalidENSName("Name contains invalid characters")
    return normalized


def label_of(name: str) -> str:
    return normalize_name(name).split(".")[0]


def labelhash(label: str) -> bytes:
    return bytes(Web3.keccak(text=label))


def namehash(name: str) -> bytes:
    node = ZERO_NODE
    normalized = normalize_name(name)
    if not normalized:
        return node
    for label in reversed(normalized.split(".")):
        node = bytes(Web3.keccak(node + labelhash(label)))
    return node


def reverse_node(address: str) -> bytes:
    """
    Node of ``<addr>.addr.reverse`` used for primary-name lookups.
    """
    hex_addr = Web3.to_checksum_address(address)[2:].lower()
    return namehash(f"{hex_addr}.addr.reverse")


def is_empty_address(value: str | None) -> bool:
    return not value or value.lower() == ZERO_ADDRESS
