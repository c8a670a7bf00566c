"""Billing router: purchasable credit packs and manual top-ups."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from routers.auth_scope import AuthContext, ensure_user_scope, get_auth_context
from routers.rate_limit import rate_limit
from services.credit_config import SiteSettingsConfigResolver
from services.credit_types import StorageUnavailable
from services.credits import build_credit_ledger, record_credit_purchase
from services.users import ensure_user

router = APIRouter()
logger = logging.getLogger(__name__)


class CreditTopUpRequest(BaseModel):
    user_id: Optional[str] = None
    credits: int = Field(ge=1, le=10000)
    billing_reference: Optional[str] = None


@router.get("/credit-plans")
async def credit_plans(db: AsyncSession = Depends(get_db)):
    """List purchasable credit packs, ordered for display."""
    try:
        plans = await SiteSettingsConfigResolver(db).load_credit_plans()
    except StorageUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {"plans": [plan.to_dict() for plan in plans]}


@router.post("/topup")
async def manual_topup(
    request: CreditTopUpRequest,
    _rate_limit: None = Depends(rate_limit("billing_topup", limit=30, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    scoped_user_id = ensure_user_scope(auth.user_id, request.user_id)

    if not settings.MANUAL_TOPUP_ENABLED:
        raise HTTPException(status_code=503, detail="Manual top-up is disabled. Enable MANUAL_TOPUP_ENABLED to use it.")

    billing_reference = request.billing_reference or f"manual:{request.credits}"
    try:
        await ensure_user(db, scoped_user_id, auth.email)
        ledger = await build_credit_ledger(db)
        view = await record_credit_purchase(
            ledger,
            scoped_user_id,
            credits=request.credits,
            provider="manual",
            billing_reference=billing_reference,
        )
    except StorageUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    return {
        "ok": True,
        "credits_added": request.credits,
        "total": view.total,
        "monthly": view.monthly,
        "purchased": view.purchased,
    }
