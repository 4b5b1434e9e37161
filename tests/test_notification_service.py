"""
Unit tests for NotificationHub
"""

from datetime import datetime, UTC
from decimal import Decimal

from src.services.notification_service import (
    EVENT_ERROR,
    EVENT_TWAP_STATUS,
    NotificationHub,
)
from src.services.schemas import BalanceSnapshot


def test_publish_reaches_every_subscriber():
    hub = NotificationHub()
    first, second = hub.subscribe(), hub.subscribe()

    assert hub.publish("trade_executed", {"id": "t1"}) == 2
    assert first.get_nowait()["data"] == {"id": "t1"}
    assert second.get_nowait()["type"] == "trade_executed"


def test_initial_message_delivered_first():
    hub = NotificationHub()
    initial = hub.build_message(EVENT_TWAP_STATUS, {"is_active": False})
    queue = hub.subscribe(initial=initial)

    hub.broadcast_error("boom")

    assert queue.get_nowait()["type"] == EVENT_TWAP_STATUS
    error = queue.get_nowait()
    assert error["type"] == EVENT_ERROR
    assert error["data"] == {"message": "boom"}


def test_full_queue_drops_oldest():
    hub = NotificationHub(queue_size=2)
    queue = hub.subscribe()

    for n in range(3):
        hub.publish("balance_update", {"n": n})

    assert queue.qsize() == 2
    assert queue.get_nowait()["data"] == {"n": 1}
    assert queue.get_nowait()["data"] == {"n": 2}


def test_unsubscribe_stops_delivery():
    hub = NotificationHub()
    queue = hub.subscribe()
    hub.unsubscribe(queue)

    assert hub.publish("twap_status", {}) == 0
    assert queue.empty()
    assert hub.subscriber_count() == 0


def test_messages_are_json_ready():
    hub = NotificationHub()
    queue = hub.subscribe()

    hub.broadcast_balance_update(
        {
            "amount": Decimal("1.5"),
            "at": datetime(2026, 1, 1, tzinfo=UTC),
            "snapshot": BalanceSnapshot(token="USDC", deposited=Decimal("10"), traded=Decimal("4")),
        }
    )

    data = queue.get_nowait()["data"]
    assert data["amount"] == 1.5
    assert data["at"] == "2026-01-01T00:00:00+00:00"
    assert data["snapshot"]["available"] == 6.0
