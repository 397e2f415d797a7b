from __future__ import annotations

from functools import lru_cache

from app.chat.session import SessionRegistry
from app.chat.state_store import build_session_store
from app.config import get_settings
from chain.client import ContractInteractor
from chain.rpc import Web3LedgerProvider


@lru_cache
def get_registry() -> SessionRegistry:
    """
    Process-wide session registry. Tests override this dependency.
    """
    settings = get_settings()
    return SessionRegistry(store=build_session_store(settings))


@lru_cache
def get_interactor() -> ContractInteractor:
    settings = get_settings()
    return ContractInteractor(Web3LedgerProvider(settings.chain_id), settings=settings)
