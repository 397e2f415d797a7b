from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from api.deps import get_interactor
from app.chat.actions import build
from app.domain.actions import ClarificationNeeded
from app.domain.errors import NetworkError
from app.domain.intents import Intent, IntentKind
from chain.client import ContractInteractor

router = APIRouter(prefix="/ens", tags=["ens"])
logger = logging.getLogger(__name__)


def _lookup(interactor: ContractInteractor, kind: IntentKind, params: dict[str, Any]) -> dict[str, Any]:
    action = build(Intent(kind=kind, params=params, confidence=1.0))
    if isinstance(action, ClarificationNeeded):
        raise HTTPException(
            status_code=400,
            detail={"error": action.error.value, "message": action.detail or action.error.value},
        )
    try:
        result = interactor.read(action)
    except NetworkError as e:
        logger.warning("ens lookup %s failed: %s", kind.value, e.message)
        raise HTTPException(status_code=503, detail={"error": e.code.value, "message": e.message})
    return {"found": result.found, **result.data}


@router.get("/name/{name}/resolve")
def resolve_name(name: str, interactor: ContractInteractor = Depends(get_interactor)):
    return {"name": name.lower(), **_lookup(interactor, IntentKind.RESOLVE_NAME, {"name": name})}


@router.get("/name/{name}/availability")
def availability(name: str, interactor: ContractInteractor = Depends(get_interactor)):
    return {"name": name.lower(), **_lookup(interactor, IntentKind.CHECK_AVAILABILITY, {"name": name})}


@router.get("/name/{name}/price")
def price(
    name: str,
    duration_days: int = Query(default=365, alias="durationDays", ge=1),
    interactor: ContractInteractor = Depends(get_interactor),
):
    params = {"name": name, "duration_days": duration_days}
    return {
        "name": name.lower(),
        "durationDays": duration_days,
        **_lookup(interactor, IntentKind.GET_PRICE, params),
    }


@router.get("/address/{address}/resolve")
def resolve_address(address: str, interactor: ContractInteractor = Depends(get_interactor)):
    return {"address": address, **_lookup(interactor, IntentKind.RESOLVE_ADDRESS, {"address": address})}
