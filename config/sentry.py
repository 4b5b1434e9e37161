# coding: utf-8
"""
Sentry error monitoring

Expected domain errors (4xx: bad config, insufficient balance, ...) are
dropped; only failures worth a look reach Sentry. Secrets never leave
the process.
"""
import sentry_sdk
from loguru import logger
from sentry_sdk.integrations.aiohttp import AioHttpIntegration
from sentry_sdk.integrations.asyncio import AsyncioIntegration
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from config.config import ENVIRONMENT, NETWORK, SENTRY_DSN
from src.core.exceptions import TwapBotError


FILTERED = "[Filtered]"
SECRET_MARKERS = ("private_key", "api_key", "x-api-key")


def _scrub(mapping: dict) -> None:
    for key in list(mapping):
        if any(marker in key.lower() for marker in SECRET_MARKERS):
            mapping[key] = FILTERED


def before_send(event, hint):
    exc_info = hint.get("exc_info")
    if exc_info:
        exc_value = exc_info[1]
        if isinstance(exc_value, KeyboardInterrupt):
            return None
        if isinstance(exc_value, TwapBotError) and exc_value.http_status < 500:
            return None

    request = event.get("request") or {}
    _scrub(request.get("headers") or {})
    _scrub(event.get("extra") or {})

    return event


def init_sentry() -> None:
    """Initialize Sentry SDK (no-op without SENTRY_DSN)"""
    if not SENTRY_DSN:
        logger.warning("SENTRY_DSN not configured - error monitoring disabled")
        return

    try:
        sentry_sdk.init(
            dsn=SENTRY_DSN,
            environment=ENVIRONMENT,
            integrations=[
                FastApiIntegration(),
                AsyncioIntegration(),
                SqlalchemyIntegration(),
                AioHttpIntegration(),
            ],
            traces_sample_rate=0.05 if ENVIRONMENT == "production" else 1.0,
            send_default_pii=False,
            before_send=before_send,
        )
        sentry_sdk.set_tag("network", NETWORK)
        logger.info(f"Sentry initialized ({ENVIRONMENT}, {NETWORK})")
    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {e}")
