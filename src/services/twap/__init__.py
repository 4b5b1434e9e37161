"""
TWAP execution package.

- schemas: TwapConfig, ScheduleStatus, TradeRecord
- executor: TradeExecutor (one slice)
- scheduler: TwapScheduler (schedule lifecycle)
"""

from src.services.twap.executor import TradeExecutor
from src.services.twap.scheduler import TwapScheduler
from src.services.twap.schemas import (
    ScheduleRun,
    ScheduleStatus,
    SessionRecord,
    TradeRecord,
    TwapConfig,
)

__all__ = [
    "TradeExecutor",
    "TwapScheduler",
    "ScheduleRun",
    "ScheduleStatus",
    "SessionRecord",
    "TradeRecord",
    "TwapConfig",
]
