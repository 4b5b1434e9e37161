# coding: utf-8
"""
Loguru setup for the TWAP bot

Sinks:
- stdout (colored, LOG_LEVEL)
- logs/twap_bot_*.log: everything at DEBUG, daily rotation
- logs/trades_*.log: slice, deposit and withdrawal events (records bound with ledger=True)
- Sentry: ERROR and above when SENTRY_DSN is set

uvicorn / sqlalchemy / apscheduler use stdlib logging, which is routed
into loguru through InterceptHandler.
"""
import logging
import sys
from pathlib import Path

import sentry_sdk
from loguru import logger

from config.config import ENVIRONMENT, LOG_LEVEL, NETWORK, SENTRY_DSN


LOGS_DIR = Path(__file__).parent.parent / "logs"

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"

# stdlib loggers routed through loguru, with the minimum level kept
STDLIB_LEVELS = {
    "uvicorn": "INFO",
    "uvicorn.error": "INFO",
    "uvicorn.access": "WARNING",
    "sqlalchemy.engine": "WARNING",
    "apscheduler": "WARNING",
    "aiohttp": "WARNING",
    "httpx": "WARNING",
}


class InterceptHandler(logging.Handler):
    """Forward stdlib logging records to loguru"""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Найти кадр вызывающего кода, чтобы loguru показал правильный модуль
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _is_ledger_event(record) -> bool:
    return record["extra"].get("ledger", False)


def setup_logging() -> None:
    """
    Configure loguru sinks and route stdlib logging into them
    """
    logger.remove()
    LOGS_DIR.mkdir(exist_ok=True)

    logger.add(
        sys.stdout,
        format=(
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        ),
        level=LOG_LEVEL,
        colorize=True,
    )

    logger.add(
        LOGS_DIR / "twap_bot_{time:YYYY-MM-DD}.log",
        format=FILE_FORMAT,
        level="DEBUG",
        rotation="00:00",
        retention="14 days",
        compression="zip",
        encoding="utf-8",
        enqueue=True,
    )

    # Audit trail of money movements
    logger.add(
        LOGS_DIR / "trades_{time:YYYY-MM-DD}.log",
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {message}",
        level="INFO",
        filter=_is_ledger_event,
        rotation="00:00",
        retention="90 days",
        encoding="utf-8",
        enqueue=True,
    )

    if SENTRY_DSN:
        logger.add(sentry_sink, level="ERROR", format="{message}")

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name, level in STDLIB_LEVELS.items():
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.propagate = False
        std_logger.setLevel(level)

    logger.info(f"Logging ready | env={ENVIRONMENT} network={NETWORK} level={LOG_LEVEL}")


def sentry_sink(message) -> None:
    """ERROR/CRITICAL records -> Sentry (exception if attached, else message)"""
    record = message.record

    if record["exception"]:
        sentry_sdk.capture_exception(record["exception"].value)
        return

    sentry_sdk.capture_message(
        record["message"],
        level="fatal" if record["level"].name == "CRITICAL" else "error",
    )
