# coding: utf-8
"""
X-API-Key guard for the /api routes

API_KEY empty -> auth disabled (warned once). The WebSocket endpoint checks
the same key from its `apiKey` query parameter.
"""
import secrets
from typing import Optional

from fastapi import Header, HTTPException
from loguru import logger

from config.config import API_KEY


_disabled_warning_logged = False


def key_matches(candidate: Optional[str]) -> bool:
    """Constant-time comparison against the configured API_KEY"""
    if not candidate:
        return False
    return secrets.compare_digest(candidate.encode(), API_KEY.encode())


async def verify_api_key(x_api_key: Optional[str] = Header(None)) -> Optional[str]:
    """
    FastAPI dependency

    Raises:
        HTTPException 401: header missing or wrong
    """
    global _disabled_warning_logged

    if not API_KEY:
        if not _disabled_warning_logged:
            logger.warning("API_KEY is empty: TWAP control endpoints are unauthenticated")
            _disabled_warning_logged = True
        return None

    if not x_api_key:
        raise HTTPException(status_code=401, detail="API key required. Provide X-API-Key header.")

    if not key_matches(x_api_key):
        logger.warning("Rejected request with invalid API key")
        raise HTTPException(status_code=401, detail="Invalid API key")

    return x_api_key
