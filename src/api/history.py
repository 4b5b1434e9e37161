"""
Trade history API
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from src.api.deps import get_services, ok
from src.services.container import ServiceContainer


router = APIRouter(prefix="/history", tags=["history"])


@router.get("")
async def get_history(
    wallet_address: Optional[str] = Query(default=None, alias="walletAddress"),
    limit: int = Query(default=100, ge=1, le=1000),
    services: ServiceContainer = Depends(get_services),
):
    """Executed slices, newest first"""
    trades = await services.scheduler.get_trade_history(wallet_address, limit=limit)
    return ok(trades)


@router.delete("")
async def clear_history(
    wallet_address: Optional[str] = Query(default=None, alias="walletAddress"),
    services: ServiceContainer = Depends(get_services),
):
    deleted = await services.scheduler.clear_trade_history(wallet_address)
    return ok({"deleted": deleted})
