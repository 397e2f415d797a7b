from __future__ import annotations

import logging
import time
from typing import Any, Callable, TypeVar

from web3 import Web3

from app.config import Settings, get_settings
from app.domain.actions import (
    ConfirmedAction,
    ReadResult,
    SmartContractAction,
    TransactionResult,
    TxStatus,
)
from app.domain.errors import (
    ConfirmationRequired,
    ErrorCode,
    ExecutionReverted,
    InsufficientBalance,
    NetworkError,
)
from chain.abis import function_abi
from chain.ens import is_empty_address
from chain.rpc import LedgerProvider, decode_output
from chain.smart_account import counterfactual_address, entry_point_nonce
from chain.snapshot import NATIVE_DECIMALS, fetch_wallet_snapshot, format_units, token_balance

logger = logging.getLogger(__name__)

T = TypeVar("T")

# pseudo-targets handled without a contract address
NATIVE = "native"
WALLET = "wallet"
SMART_ACCOUNT = "smart_account"

# node messages meaning the pinned nonce was already taken
_NONCE_USED = ("nonce too low", "already known", "known transaction", "replacement transaction underpriced")


def _abi_key(target: str) -> str:
    return "erc20" if target == "usdc" else target


class ContractInteractor:
    """
    Executes fully resolved actions against the ledger.

    - ``read`` for non-mutating actions; absence is a valid result
    - ``execute`` for mutating actions: pre-check funds, estimate, submit,
      poll until inclusion or the bounded wait elapses
    - transient ``NetworkError`` is retried once with backoff
    """

    def __init__(
        self,
        provider: LedgerProvider,
        *,
        settings: Settings | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.provider = provider
        self.settings = settings or get_settings()
        self._sleep = sleep
        self._clock = clock

    # ---------------------------
    # Helpers
    # ---------------------------

    def _with_retry(self, op: str, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except NetworkError as e:
            logger.warning("%s failed, retrying once: %s", op, e)
            self._sleep(self.settings.ledger_retry_backoff_s)
            return fn()

    def _address_for(self, target: str) -> str:
        if Web3.is_address(target):
            return Web3.to_checksum_address(target)
        addresses = self.settings.contract_addresses()
        address = addresses.get(target)
        if not address:
            raise ValueError(f"no address configured for contract target '{target}'")
        return Web3.to_checksum_address(address)

    def smart_account_address(self, owner: str) -> str:
        return self._with_retry(
            "account_factory.getAddress",
            lambda: counterfactual_address(
                self.provider,
                factory=self._address_for("account_factory"),
                owner=owner,
                salt=self.settings.smart_account_salt,
            ),
        )

    def smart_account_nonce(self, owner: str) -> int:
        account = self.smart_account_address(owner)
        return self._with_retry(
            "entry_point.getNonce",
            lambda: entry_point_nonce(
                self.provider,
                entry_point=self._address_for("entry_point"),
                account=account,
            ),
        )

    # ---------------------------
    # Reads
    # ---------------------------

    def read(self, action: SmartContractAction) -> ReadResult:
        if action.mutating:
            raise ConfirmationRequired("mutating actions cannot be read")

        if action.target == WALLET:
            snapshot = self._with_retry(
                "wallet.snapshot",
                lambda: fetch_wallet_snapshot(
                    self.provider,
                    wallet_address=action.args[0],
                    tokens={"USDC": self._address_for("usdc")},
                ),
            )
            return ReadResult(found=True, value=snapshot["balances"], data=snapshot)

        if action.target == NATIVE:
            address = action.args[0]
            balance = self._with_retry("eth_getBalance", lambda: self.provider.get_balance(address))
            return ReadResult(
                found=True,
                value=balance,
                data={
                    "address": Web3.to_checksum_address(address),
                    "symbol": "ETH",
                    "balance": str(balance),
                    "formatted": format_units(balance, NATIVE_DECIMALS),
                },
            )

        entry = function_abi(_abi_key(action.target), action.function)
        to = self._address_for(action.target)
        try:
            raw = self._with_retry(
                f"{action.target}.{action.function}",
                lambda: self.provider.call(to, entry, action.args),
            )
        except ExecutionReverted as e:
            # a reverting view (no resolver, unknown name) is absence, not failure
            logger.info("read %s.%s reverted: %s", action.target, action.function, e.reason)
            return ReadResult(found=False, data={"reverted": True, "reason": e.reason})

        values = decode_output(entry, raw)
        return self._shape_read(action, values)

    def _shape_read(self, action: SmartContractAction, values: tuple[Any, ...]) -> ReadResult:
        fn = action.function
        if fn == "addr":
            address = values[0]
            if is_empty_address(address):
                return ReadResult(found=False, data={"address": None})
            address = Web3.to_checksum_address(address)
            return ReadResult(found=True, value=address, data={"address": address})
        if fn in {"name", "text"}:
            text = values[0] or ""
            data: dict[str, Any] = {"value": text or None}
            if fn == "name":
                data = {"name": text or None}
            return ReadResult(found=bool(text), value=text or None, data=data)
        if fn == "available":
            available = bool(values[0])
            return ReadResult(found=True, value=available, data={"available": available})
        if fn == "rentPrice":
            base, premium = int(values[0]), int(values[1])
            total = base + premium
            return ReadResult(
                found=True,
                value=total,
                data={
                    "base": format_units(base, NATIVE_DECIMALS),
                    "premium": format_units(premium, NATIVE_DECIMALS),
                    "total": format_units(total, NATIVE_DECIMALS),
                    "totalWei": str(total),
                },
            )
        if fn == "balanceOf":
            raw = int(values[0])
            decimals = action.decimals or 0
            return ReadResult(
                found=True,
                value=raw,
                data={
                    "symbol": action.token,
                    "balance": str(raw),
                    "formatted": format_units(raw, decimals),
                },
            )
        if fn == "owner":
            owner = values[0]
            if is_empty_address(owner):
                return ReadResult(found=False, data={"owner": None})
            return ReadResult(found=True, value=owner, data={"owner": Web3.to_checksum_address(owner)})
        return ReadResult(found=bool(values), value=values[0] if len(values) == 1 else list(values))

    # ---------------------------
    # Execution
    # ---------------------------

    def _failed(self, code: ErrorCode, error: str, *, tx_id: str | None = None) -> TransactionResult:
        return TransactionResult(status=TxStatus.FAILED, tx_id=tx_id, error=error, error_code=code)

    def execute(self, confirmed: ConfirmedAction, *, sender: str) -> TransactionResult:
        if not isinstance(confirmed, ConfirmedAction):
            raise ConfirmationRequired("execute requires a confirmed action")
        action = confirmed.action
        if not action.mutating:
            raise ConfirmationRequired("read-only actions go through read()")

        sender = Web3.to_checksum_address(sender)
        entry: dict[str, Any] | None = None
        args: list[Any] = []
        try:
            if action.target == NATIVE:
                to = action.args[0]
            else:
                if action.target == SMART_ACCOUNT:
                    to = self.smart_account_address(sender)
                else:
                    to = self._address_for(action.target)
                entry = function_abi(_abi_key(action.target), action.function)
                args = action.args

            self._precheck_funds(action, sender=sender, to=to)
            gas = self._with_retry(
                "estimate_gas",
                lambda: self.provider.estimate_gas(to, entry, args, value=action.value_wei, sender=sender),
            )
            fee = gas * self._with_retry("gas_price", self.provider.gas_price)
            balance = self._with_retry("eth_getBalance", lambda: self.provider.get_balance(sender))
            if balance < action.value_wei + fee:
                raise InsufficientBalance(
                    f"balance {format_units(balance, NATIVE_DECIMALS)} ETH is below "
                    f"value + fee {format_units(action.value_wei + fee, NATIVE_DECIMALS)} ETH"
                )
            nonce = self._with_retry("eth_getTransactionCount", lambda: self.provider.get_transaction_count(sender))
            tx_id = self._submit(to, entry, args, value=action.value_wei, sender=sender, nonce=nonce)
        except InsufficientBalance as e:
            logger.info("execution short-circuited: %s", e.message)
            return self._failed(ErrorCode.INSUFFICIENT_BALANCE, e.message)
        except ExecutionReverted as e:
            return self._failed(ErrorCode.EXECUTION_REVERTED, e.message)
        except NetworkError as e:
            return self._failed(ErrorCode.NETWORK_ERROR, e.message)

        if tx_id is None:
            return TransactionResult(
                status=TxStatus.PENDING,
                error=(
                    f"the node accepted an earlier submission with nonce {nonce} but its id was lost; "
                    "check the wallet before retrying"
                ),
                error_code=ErrorCode.NETWORK_ERROR,
            )
        logger.info("action submitted kind=%s tx=%s", action.intent_kind.value, tx_id)
        return self._await_inclusion(tx_id)

    def _submit(
        self,
        to: str,
        entry: dict[str, Any] | None,
        args: list[Any],
        *,
        value: int,
        sender: str,
        nonce: int,
    ) -> str | None:
        """
        Submit with a pinned nonce, retrying once on ``NetworkError``.

        Both attempts carry the same nonce, so at most one can be mined. When
        the retry is rejected because the nonce is already used, the first
        attempt reached the node and None is returned.
        """

        def send() -> str:
            return self.provider.send_transaction(to, entry, args, value=value, sender=sender, nonce=nonce)

        try:
            return send()
        except NetworkError as e:
            logger.warning("send_transaction failed, retrying once nonce=%s: %s", nonce, e)
            self._sleep(self.settings.ledger_retry_backoff_s)
        try:
            return send()
        except ExecutionReverted as e:
            if any(marker in e.message.lower() for marker in _NONCE_USED):
                logger.warning("retry rejected, first submission landed nonce=%s: %s", nonce, e.message)
                return None
            raise

    def _precheck_funds(self, action: SmartContractAction, *, sender: str, to: str) -> None:
        token_amount = action.meta.get("token_amount")
        if action.target == "usdc" and token_amount is not None:
            held = self._with_retry(
                "erc20.balanceOf",
                lambda: token_balance(self.provider, self._address_for("usdc"), sender),
            )
            if held < int(token_amount):
                raise InsufficientBalance(
                    f"USDC balance {format_units(held, 6)} is below {format_units(token_amount, 6)}"
                )
        native_total = action.meta.get("native_total")
        if action.target == SMART_ACCOUNT and native_total is not None:
            held = self._with_retry("eth_getBalance", lambda: self.provider.get_balance(to))
            if held < int(native_total):
                raise InsufficientBalance(
                    f"smart account balance {format_units(held, NATIVE_DECIMALS)} ETH is below "
                    f"{format_units(native_total, NATIVE_DECIMALS)} ETH"
                )

    def _await_inclusion(self, tx_id: str) -> TransactionResult:
        deadline = self._clock() + self.settings.ledger_timeout_s
        while True:
            try:
                receipt = self._with_retry(
                    "get_transaction_receipt",
                    lambda: self.provider.get_transaction_receipt(tx_id),
                )
            except NetworkError as e:
                logger.warning("receipt polling failed tx=%s: %s", tx_id, e)
                receipt = None

            if receipt is not None:
                return self._result_from_receipt(tx_id, receipt)

            if self._clock() >= deadline:
                return TransactionResult(
                    status=TxStatus.PENDING,
                    tx_id=tx_id,
                    error="timed out waiting for inclusion; the transaction may still be mined",
                    error_code=ErrorCode.NETWORK_ERROR,
                )
            self._sleep(self.settings.ledger_poll_interval_s)

    def _result_from_receipt(self, tx_id: str, receipt: dict[str, Any]) -> TransactionResult:
        raw_status = receipt.get("status")
        status_int: int | None = None
        if isinstance(raw_status, int):
            status_int = raw_status
        elif isinstance(raw_status, str):
            try:
                status_int = int(raw_status, 16) if raw_status.startswith("0x") else int(raw_status)
            except ValueError:
                status_int = None

        gas_used = receipt.get("gasUsed")
        gas_price = receipt.get("effectiveGasPrice")
        cost = int(gas_used) * int(gas_price) if gas_used is not None and gas_price is not None else None
        block = receipt.get("blockNumber")

        if status_int == 1:
            return TransactionResult(
                status=TxStatus.SUCCESS,
                tx_id=tx_id,
                block_number=int(block) if block is not None else None,
                cost_wei=cost,
            )

        reason = self.provider.revert_reason(tx_id)
        return TransactionResult(
            status=TxStatus.FAILED,
            tx_id=tx_id,
            block_number=int(block) if block is not None else None,
            cost_wei=cost,
            error=f"execution reverted: {reason}" if reason else "execution reverted",
            error_code=ErrorCode.EXECUTION_REVERTED,
        )
