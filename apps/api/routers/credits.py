"""AI credit balance, pricing and deduction router."""

from __future__ import annotations

import logging
from typing import Any, Optional, Union

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from routers.auth_scope import AuthContext, get_optional_auth_context
from routers.rate_limit import rate_limit
from services.credit_types import (
    InsufficientCredits,
    StorageUnavailable,
    UnknownAction,
    parse_action_id,
)
from services.credits import build_credit_ledger
from services.users import ensure_user

router = APIRouter()
logger = logging.getLogger(__name__)


class DeductRequest(BaseModel):
    actionId: Any = None
    amount: Optional[Union[int, float]] = None


def _error(status_code: int, code: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "code": code, **extra})


def _unauthenticated() -> JSONResponse:
    return _error(401, "unauthenticated", error="Not authenticated.")


def _storage_unavailable(exc: StorageUnavailable) -> JSONResponse:
    logger.error("Credit ledger storage unavailable: %s", exc)
    return _error(503, "storage_unavailable", error="Credit ledger is temporarily unavailable.")


@router.get("/balance")
async def credits_balance(
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    db: AsyncSession = Depends(get_db),
):
    if auth is None:
        return _unauthenticated()

    try:
        await ensure_user(db, auth.user_id, auth.email)
        ledger = await build_credit_ledger(db)
        view = await ledger.get_balance(auth.user_id)
    except StorageUnavailable as exc:
        return _storage_unavailable(exc)

    payload = {
        "total": view.total,
        "monthly": view.monthly,
        "purchased": view.purchased,
        "balance": view.total,
        "periodStart": view.period_start.isoformat(),
        "periodEnd": view.period_end.isoformat(),
        "costByAction": view.cost_by_action,
    }
    if view.config is not None:
        payload["config"] = view.config
    return payload


@router.get("/costs")
async def credits_costs(db: AsyncSession = Depends(get_db)):
    """Public price list so the UI can label actions before login."""
    try:
        ledger = await build_credit_ledger(db)
        return {"costByAction": await ledger.get_costs()}
    except StorageUnavailable as exc:
        return _storage_unavailable(exc)


@router.post("/deduct")
async def credits_deduct(
    request: DeductRequest,
    _rate_limit: None = Depends(
        rate_limit("credits_deduct", limit=settings.DEDUCT_RATE_LIMIT_PER_MINUTE, window_seconds=60)
    ),
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    db: AsyncSession = Depends(get_db),
):
    if auth is None:
        return _unauthenticated()
    if parse_action_id(request.actionId) is None:
        return _error(400, "invalid_action", error="Invalid actionId.")

    try:
        await ensure_user(db, auth.user_id, auth.email)
        ledger = await build_credit_ledger(db)
        result = await ledger.deduct(auth.user_id, request.actionId, request.amount)
    except StorageUnavailable as exc:
        return _storage_unavailable(exc)

    if isinstance(result, UnknownAction):
        return _error(400, "invalid_action", error="Invalid actionId.")
    if isinstance(result, InsufficientCredits):
        return _error(
            402,
            "insufficient_credits",
            error="Insufficient credits.",
            balance=result.balance,
            required=result.required,
        )
    return {"ok": True, "balance": result.balance, "charged": result.charged}
