# coding: utf-8
"""
Retry policies for chain RPC and DEX aggregator calls

- rpc_retry: read-style calls (quotes, balances, tx listing) - 3 attempts
- tx_retry: transaction submission - 2 attempts, to bound double-submission risk

Both retry only transient failures (timeouts, connection resets, rate limits, 5xx)
and re-raise the last error once attempts are exhausted.
"""
import asyncio
import logging  # Needed for tenacity before_sleep_log level constants

import aiohttp
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    before_sleep_log,
)

from src.core.exceptions import ChainUnavailableError, TwapBotError


# Create standard logger for tenacity
std_logger = logging.getLogger(__name__)


TRANSIENT_MARKERS = (
    "timeout",
    "econnreset",
    "econnrefused",
    "socket hang up",
    "network",
    "rate limit",
    "too many requests",
    "429",
    "502",
    "503",
    "504",
)

TX_TRANSIENT_MARKERS = (
    "timeout",
    "econnreset",
    "network",
    "sequence number",
    "transaction expired",
)


def _message_matches(exc: BaseException, markers) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in markers)


def is_transient_error(exc: BaseException) -> bool:
    """True for network/RPC failures worth retrying"""
    if isinstance(exc, ChainUnavailableError):
        return exc.transient
    if isinstance(exc, (aiohttp.ClientError, asyncio.TimeoutError)):
        return True
    if isinstance(exc, TwapBotError):
        # Validation / balance / on-chain rejections are final
        return _message_matches(exc, TRANSIENT_MARKERS) and exc.http_status >= 500
    return _message_matches(exc, TRANSIENT_MARKERS)


def is_transient_tx_error(exc: BaseException) -> bool:
    """True for submission failures that are safe to resubmit"""
    if isinstance(exc, ChainUnavailableError):
        return exc.transient
    if isinstance(exc, (aiohttp.ClientConnectionError, asyncio.TimeoutError)):
        return True
    return _message_matches(exc, TX_TRANSIENT_MARKERS)


rpc_retry = retry(
    retry=retry_if_exception(is_transient_error),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    before_sleep=before_sleep_log(std_logger, logging.WARNING),
    reraise=True,
)

tx_retry = retry(
    retry=retry_if_exception(is_transient_tx_error),
    stop=stop_after_attempt(2),
    wait=wait_exponential(multiplier=1.5, min=2, max=5),
    before_sleep=before_sleep_log(std_logger, logging.WARNING),
    reraise=True,
)
