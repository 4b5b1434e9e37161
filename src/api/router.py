"""
FastAPI Router для TWAP bot API
"""

from fastapi import APIRouter, Depends

from src.api.api_key_auth import verify_api_key

# Import sub-routers
from src.api.twap import router as twap_router
from src.api.wallet import router as wallet_router
from src.api.history import router as history_router


# Главный router: все endpoints под X-API-Key
router = APIRouter(tags=["twap-bot"], dependencies=[Depends(verify_api_key)])

# Include sub-routers (они уже имеют префиксы)
router.include_router(twap_router)
router.include_router(wallet_router)
router.include_router(history_router)
