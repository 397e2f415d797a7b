import os
from typing import Any, Sequence

import pytest
from eth_abi import encode as encode_abi
from fastapi.testclient import TestClient

# Set test database before any imports
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")

from api.deps import get_interactor, get_registry
from app.chat.session import SessionRegistry
from app.chat.state_store import InMemorySessionStore
from app.config import get_settings
from app.domain.errors import ExecutionReverted, NetworkError
from app.main import create_app
from chain.abis import output_types
from chain.client import ContractInteractor
from db.base import Base
from db.session import engine, init_db


WALLET = "0x1111111111111111111111111111111111111111"
OTHER_WALLET = "0x2222222222222222222222222222222222222222"
SMART_ACCOUNT = "0x5555555555555555555555555555555555555555"
TX_ID = "0x" + "ab" * 32


class FakeLedgerProvider:
    """
    Scripted ledger. ``reads`` maps a function name to its decoded outputs
    (a tuple), a callable taking the call args, or an exception instance.
    Every entry of ``failures`` is raised once, in order, before the call.
    The first ``lost_responses`` submissions are accepted by the node and then
    reported as a NetworkError.
    """

    def __init__(self, chain_id: int = 11155111) -> None:
        self.chain_id = chain_id
        self.reads: dict[str, Any] = {}
        self.balances: dict[str, int] = {}
        self.default_balance = 10**18
        self.gas = 21000
        self.price = 10**9
        self.receipts: list[dict[str, Any] | None] = [
            {"status": 1, "blockNumber": 123, "gasUsed": 21000, "effectiveGasPrice": 10**9}
        ]
        self.reason: str | None = None
        self.failures: dict[str, list[Exception]] = {}
        self.sent: list[dict[str, Any]] = []
        self.calls: list[tuple[str, Sequence[Any]]] = []
        self.nonce = 0
        self.lost_responses = 0

    def _maybe_fail(self, op: str) -> None:
        queue = self.failures.get(op)
        if queue:
            raise queue.pop(0)

    def call(self, to: str, function: dict[str, Any], args: Sequence[Any]) -> bytes:
        name = function["name"]
        self.calls.append((name, list(args)))
        self._maybe_fail("call")
        scripted = self.reads.get(name)
        if scripted is None and name == "getAddress":
            scripted = (SMART_ACCOUNT,)
        if isinstance(scripted, Exception):
            raise scripted
        if callable(scripted):
            scripted = scripted(args)
        if scripted is None:
            raise AssertionError(f"no scripted read for {name}")
        return encode_abi(output_types(function), list(scripted))

    def estimate_gas(self, to, function, args, *, value, sender) -> int:
        self._maybe_fail("estimate_gas")
        return self.gas

    def gas_price(self) -> int:
        self._maybe_fail("gas_price")
        return self.price

    def get_balance(self, address: str) -> int:
        self._maybe_fail("get_balance")
        return self.balances.get(address.lower(), self.default_balance)

    def get_transaction_count(self, address: str) -> int:
        self._maybe_fail("get_transaction_count")
        return self.nonce

    def send_transaction(self, to, function, args, *, value, sender, nonce=None) -> str:
        self._maybe_fail("send_transaction")
        if nonce is not None and nonce < self.nonce:
            raise ExecutionReverted("nonce too low")
        self.sent.append(
            {
                "to": to,
                "function": function["name"] if function else None,
                "args": list(args),
                "value": value,
                "sender": sender,
                "nonce": self.nonce if nonce is None else nonce,
            }
        )
        self.nonce += 1
        if self.lost_responses:
            self.lost_responses -= 1
            raise NetworkError("response lost after submission")
        return TX_ID

    def get_transaction_receipt(self, tx_id: str) -> dict[str, Any] | None:
        self._maybe_fail("get_transaction_receipt")
        if len(self.receipts) > 1:
            return self.receipts.pop(0)
        return self.receipts[0]

    def revert_reason(self, tx_id: str) -> str | None:
        return self.reason


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create all tables before tests run, drop after all tests complete."""
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _configure_llm(monkeypatch, request):
    get_settings.cache_clear()
    if request.node.get_closest_marker("use_llm"):
        yield
        return
    monkeypatch.setenv("LLM_ENABLED", "false")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def provider() -> FakeLedgerProvider:
    return FakeLedgerProvider()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def interactor(provider, clock) -> ContractInteractor:
    return ContractInteractor(provider, sleep=clock.sleep, clock=clock)


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry(store=InMemorySessionStore())


@pytest.fixture
def client(registry, interactor):
    app = create_app()
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_interactor] = lambda: interactor
    with TestClient(app) as client:
        yield client
