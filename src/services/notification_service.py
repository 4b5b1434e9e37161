# coding: utf-8
"""
Notification Service - fan-out of bot events to live subscribers

Each subscriber (WebSocket connection) owns a bounded asyncio.Queue.
Publishing never blocks: a full queue drops its oldest message.

Event types: trade_executed, balance_update, twap_status, error
"""
import asyncio
from datetime import datetime, UTC
from decimal import Decimal
from typing import Any, Dict, Optional, Set

from loguru import logger
from pydantic import BaseModel


EVENT_TRADE_EXECUTED = "trade_executed"
EVENT_BALANCE_UPDATE = "balance_update"
EVENT_TWAP_STATUS = "twap_status"
EVENT_ERROR = "error"


def _serialize(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    if isinstance(data, dict):
        return {key: _serialize(value) for key, value in data.items()}
    if isinstance(data, (list, tuple)):
        return [_serialize(item) for item in data]
    if isinstance(data, Decimal):
        return float(data)
    if isinstance(data, datetime):
        return data.isoformat()
    return data


class NotificationHub:
    """In-process pub/sub for push channel clients"""

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscribers: Set[asyncio.Queue] = set()

    def subscribe(self, initial: Optional[Dict[str, Any]] = None) -> asyncio.Queue:
        """
        Register a subscriber

        Args:
            initial: Message delivered before any broadcast (current status)
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        if initial is not None:
            queue.put_nowait(initial)
        self._subscribers.add(queue)
        logger.debug(f"Subscriber added ({len(self._subscribers)} connected)")
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)
        logger.debug(f"Subscriber removed ({len(self._subscribers)} connected)")

    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @staticmethod
    def build_message(event_type: str, data: Any) -> Dict[str, Any]:
        return {
            "type": event_type,
            "data": _serialize(data),
            "timestamp": datetime.now(UTC).isoformat(),
        }

    def publish(self, event_type: str, data: Any) -> int:
        """
        Deliver an event to every subscriber

        Returns:
            Number of subscribers reached
        """
        message = self.build_message(event_type, data)

        for queue in list(self._subscribers):
            if queue.full():
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
                logger.warning(f"Subscriber queue full, dropped oldest message before {event_type}")
            queue.put_nowait(message)

        return len(self._subscribers)

    # ===========================
    # TYPED HELPERS
    # ===========================

    def broadcast_trade_executed(self, trade: Any) -> int:
        return self.publish(EVENT_TRADE_EXECUTED, trade)

    def broadcast_balance_update(self, balances: Any) -> int:
        return self.publish(EVENT_BALANCE_UPDATE, balances)

    def broadcast_twap_status(self, status: Any) -> int:
        return self.publish(EVENT_TWAP_STATUS, status)

    def broadcast_error(self, message: str) -> int:
        return self.publish(EVENT_ERROR, {"message": message})
