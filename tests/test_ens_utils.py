from __future__ import annotations

import pytest
from web3 import Web3

from chain.ens import InvalidENSName, is_empty_address, label_of, namehash, reverse_node, validate_name


def test_namehash_known_vectors():
    assert namehash("") == b"\x00" * 32
    assert Web3.to_hex(namehash("eth")) == "0x93cdeb708b7545dc668eb9280176169d1c33cfd8ed6f04690a0bcc88a93fc4ae"
    assert Web3.to_hex(namehash("foo.eth")) == "0xde9b09fd7c5f901e23a3f19fecc54828e9c848539801e86591bd9801b019f84f"


def test_namehash_is_case_insensitive():
    assert namehash("Alice.ETH") == namehash("alice.eth")


def test_validate_name_normalizes():
    assert validate_name("  Alice.ETH ") == "alice.eth"
    assert label_of("alice.eth") == "alice"


@pytest.mark.parametrize("name", ["", "alice", ".eth", "a.b.eth", "al ice.eth", "alice-.eth"])
def test_validate_name_rejects(name):
    with pytest.raises(InvalidENSName):
        validate_name(name)


def test_validate_name_respects_max_length():
    validate_name("a" * 50 + ".eth")
    with pytest.raises(InvalidENSName):
        validate_name("a" * 51 + ".eth")


def test_reverse_node_matches_addr_reverse_name():
    addr = "0x1111111111111111111111111111111111111111"
    assert reverse_node(addr) == namehash("1111111111111111111111111111111111111111.addr.reverse")


def test_is_empty_address():
    assert is_empty_address(None)
    assert is_empty_address("0x0000000000000000000000000000000000000000")
    assert not is_empty_address("0x1111111111111111111111111111111111111111")
