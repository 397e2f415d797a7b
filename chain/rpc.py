from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Protocol, Sequence

import requests
from eth_abi import decode as decode_abi
from eth_abi import encode as encode_abi
from web3 import Web3
from web3.exceptions import (
    ContractLogicError,
    RequestTimedOut,
    TimeExhausted,
    TransactionNotFound,
    Web3RPCError,
)

from app.config import get_settings
from app.domain.errors import ExecutionReverted, InsufficientBalance, NetworkError
from chain.abis import input_types, output_types, signature
from chain.chains import get_rpc_url

logger = logging.getLogger(__name__)


class LedgerProvider(Protocol):
    """
    Minimal ledger surface consumed by the contract interactor.

    ``function`` is an ABI entry (see ``chain.abis``) or ``None`` for a plain
    native-value transfer. Implementations raise ``NetworkError`` for
    transport failures and ``ExecutionReverted`` for on-chain rejections.
    """

    chain_id: int

    def call(self, to: str, function: dict[str, Any], args: Sequence[Any]) -> bytes: ...

    def estimate_gas(
        self,
        to: str,
        function: dict[str, Any] | None,
        args: Sequence[Any],
        *,
        value: int,
        sender: str,
    ) -> int: ...

    def gas_price(self) -> int: ...

    def get_balance(self, address: str) -> int: ...

    def get_transaction_count(self, address: str) -> int: ...

    def send_transaction(
        self,
        to: str,
        function: dict[str, Any] | None,
        args: Sequence[Any],
        *,
        value: int,
        sender: str,
        nonce: int | None = None,
    ) -> str: ...

    def get_transaction_receipt(self, tx_id: str) -> dict[str, Any] | None: ...

    def revert_reason(self, tx_id: str) -> str | None: ...


# ---------------------------
# ABI helpers
# ---------------------------

def _coerce(abi_type: str, value: Any) -> Any:
    # actions keep args JSON-safe: bytes travel as 0x-hex, ints may be strings
    if abi_type.endswith("[]"):
        return [_coerce(abi_type[:-2], item) for item in value]
    if abi_type.startswith("bytes"):
        if isinstance(value, str):
            return Web3.to_bytes(hexstr=value) if value not in ("", "0x") else b""
        return bytes(value)
    if abi_type == "address":
        return Web3.to_checksum_address(value)
    if abi_type.startswith(("uint", "int")):
        return int(value)
    return value


def encode_call(function: dict[str, Any] | None, args: Sequence[Any]) -> bytes:
    if function is None:
        return b""
    types = input_types(function)
    selector = bytes(Web3.keccak(text=signature(function)))[:4]
    coerced = [_coerce(t, v) for t, v in zip(types, args)]
    return selector + encode_abi(types, coerced)


def decode_output(function: dict[str, Any], raw: bytes) -> tuple[Any, ...]:
    types = output_types(function)
    if not types:
        return ()
    return tuple(decode_abi(types, raw))


def _revert_message(e: ContractLogicError) -> str | None:
    message = getattr(e, "message", None) or (str(e.args[0]) if e.args else None)
    if not message:
        return None
    return message.replace("execution reverted:", "").strip() or None


def _node_rejection(e: Exception) -> ExecutionReverted | InsufficientBalance:
    """
    Map a node-side JSON-RPC error (nonce, funds, unknown account) to a
    terminal pipeline error.
    """
    message = getattr(e, "message", None) or str(e)
    if "insufficient funds" in message.lower():
        return InsufficientBalance(message)
    return ExecutionReverted(message)


@lru_cache
def _get_web3(chain_id: int) -> Web3:
    """
    Lazily create and cache a Web3 instance per chain_id.
    """
    settings = get_settings()
    rpc_url = get_rpc_url(chain_id)
    return Web3(
        Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": settings.ledger_timeout_s})
    )


class Web3LedgerProvider:
    """
    web3-backed ledger provider.

    Submission uses ``eth_sendTransaction`` against the node's unlocked
    account (or a wallet-side RPC); signing UX lives outside this service.
    """

    def __init__(self, chain_id: int, w3: Web3 | None = None) -> None:
        self.chain_id = chain_id
        self._w3 = w3

    @property
    def w3(self) -> Web3:
        if self._w3 is None:
            self._w3 = _get_web3(self.chain_id)
        return self._w3

    def _tx(
        self,
        to: str,
        function: dict[str, Any] | None,
        args: Sequence[Any],
        *,
        value: int = 0,
        sender: str | None = None,
        nonce: int | None = None,
    ) -> dict[str, Any]:
        tx: dict[str, Any] = {
            "to": Web3.to_checksum_address(to),
            "data": Web3.to_hex(encode_call(function, args)),
            "value": int(value),
        }
        if sender:
            tx["from"] = Web3.to_checksum_address(sender)
        if nonce is not None:
            tx["nonce"] = int(nonce)
        return tx

    def call(self, to: str, function: dict[str, Any], args: Sequence[Any]) -> bytes:
        try:
            return bytes(self.w3.eth.call(self._tx(to, function, args)))
        except ContractLogicError as e:
            raise ExecutionReverted(_revert_message(e)) from e
        except Exception as e:
            raise NetworkError(f"eth_call failed: {e}") from e

    def estimate_gas(
        self,
        to: str,
        function: dict[str, Any] | None,
        args: Sequence[Any],
        *,
        value: int,
        sender: str,
    ) -> int:
        try:
            return int(self.w3.eth.estimate_gas(self._tx(to, function, args, value=value, sender=sender)))
        except ContractLogicError as e:
            raise ExecutionReverted(_revert_message(e)) from e
        except (requests.exceptions.RequestException, RequestTimedOut, TimeExhausted) as e:
            raise NetworkError(f"estimate_gas failed: {e}") from e
        except (Web3RPCError, ValueError) as e:
            raise _node_rejection(e) from e
        except Exception as e:
            raise NetworkError(f"estimate_gas failed: {e}") from e

    def gas_price(self) -> int:
        try:
            return int(self.w3.eth.gas_price)
        except Exception as e:
            raise NetworkError(f"gas_price failed: {e}") from e

    def get_balance(self, address: str) -> int:
        try:
            return int(self.w3.eth.get_balance(Web3.to_checksum_address(address)))
        except Exception as e:
            raise NetworkError(f"get_balance failed: {e}") from e

    def get_transaction_count(self, address: str) -> int:
        try:
            return int(self.w3.eth.get_transaction_count(Web3.to_checksum_address(address), "pending"))
        except Exception as e:
            raise NetworkError(f"get_transaction_count failed: {e}") from e

    def send_transaction(
        self,
        to: str,
        function: dict[str, Any] | None,
        args: Sequence[Any],
        *,
        value: int,
        sender: str,
        nonce: int | None = None,
    ) -> str:
        tx = self._tx(to, function, args, value=value, sender=sender, nonce=nonce)
        try:
            tx_hash = self.w3.eth.send_transaction(tx)
        except ContractLogicError as e:
            raise ExecutionReverted(_revert_message(e)) from e
        except (requests.exceptions.RequestException, RequestTimedOut, TimeExhausted) as e:
            raise NetworkError(f"send_transaction failed: {e}") from e
        except (Web3RPCError, ValueError) as e:
            # node-side rejection (nonce, funds, unknown account): terminal
            raise _node_rejection(e) from e
        except Exception as e:
            raise NetworkError(f"send_transaction failed: {e}") from e
        logger.info("tx submitted to=%s value=%s nonce=%s", tx["to"], value, tx.get("nonce"))
        return Web3.to_hex(tx_hash)

    def get_transaction_receipt(self, tx_id: str) -> dict[str, Any] | None:
        try:
            receipt = self.w3.eth.get_transaction_receipt(tx_id)
        except TransactionNotFound:
            return None
        except Exception as e:
            raise NetworkError(f"get_transaction_receipt failed: {e}") from e
        return {
            "status": int(receipt.get("status", 0)),
            "blockNumber": receipt.get("blockNumber"),
            "gasUsed": receipt.get("gasUsed"),
            "effectiveGasPrice": receipt.get("effectiveGasPrice"),
        }

    def revert_reason(self, tx_id: str) -> str | None:
        """
        Replay a mined, failed transaction as eth_call to recover its reason.
        """
        try:
            tx = self.w3.eth.get_transaction(tx_id)
            self.w3.eth.call(
                {
                    "from": tx["from"],
                    "to": tx["to"],
                    "data": tx["input"],
                    "value": tx["value"],
                },
                tx["blockNumber"],
            )
        except ContractLogicError as e:
            return _revert_message(e)
        except Exception as e:
            logger.warning("revert reason replay failed tx=%s: %s", tx_id, e)
        return None
