"""Tests for the notification sinks."""

import json
from datetime import datetime, timezone
from decimal import Decimal

import pika
import pytest

from bookstore.messaging import producer
from bookstore.messaging.producer import (
    InMemoryNotifier,
    Notifier,
    RabbitMQNotifier,
    notify_best_effort,
    order_event,
)
from bookstore.schemas import OrderItemOut, OrderOut

from conftest import FailingNotifier


class FakeChannel:
    def __init__(self):
        self.declared = []
        self.published = []

    def exchange_declare(self, **kwargs):
        self.declared.append(kwargs)

    def basic_publish(self, **kwargs):
        self.published.append(kwargs)


class FakeConnection:
    def __init__(self, parameters):
        self.parameters = parameters
        self.is_closed = False
        self._channel = FakeChannel()

    def channel(self):
        return self._channel

    def close(self):
        self.is_closed = True


class StaleChannel(FakeChannel):
    """Channel on a connection the broker already dropped."""

    def basic_publish(self, **kwargs):
        raise pika.exceptions.StreamLostError("Stream connection lost: ConnectionResetError(104)")


class StaleConnection(FakeConnection):
    def __init__(self, parameters):
        super().__init__(parameters)
        self._channel = StaleChannel()

    def close(self):
        raise pika.exceptions.StreamLostError("Stream connection lost")


def make_order(titles=("Dune",)):
    return OrderOut(
        order_id=7,
        member_id="member-1",
        order_date=datetime(2024, 1, 1, tzinfo=timezone.utc),
        claim_code="ABCD2345",
        subtotal=Decimal("10.00"),
        discount_percentage=Decimal("0"),
        discount_description="",
        total_amount=Decimal("10.00"),
        is_processed=False,
        is_cancelled=False,
        items=[
            OrderItemOut(
                id=n, book_id=n, book_title=title,
                unit_price=Decimal("10.00"), quantity=1, total_price=Decimal("10.00"),
            )
            for n, title in enumerate(titles, start=1)
        ],
    )


class TestRabbitMQNotifier:
    def test_publishes_persistent_json(self, monkeypatch):
        connections = []

        def connect(parameters):
            connections.append(FakeConnection(parameters))
            return connections[-1]

        monkeypatch.setattr(producer.pika, "BlockingConnection", connect)
        notifier = RabbitMQNotifier("broker", exchange_name="bookstore")

        notifier.notify("order.placed", {"orderId": 7, "total": Decimal("9.50")})

        channel = connections[0].channel()
        assert channel.declared == [{"exchange": "bookstore", "exchange_type": "topic", "durable": True}]
        published = channel.published[0]
        assert published["exchange"] == "bookstore"
        assert published["routing_key"] == "order.placed"
        assert json.loads(published["body"]) == {"orderId": 7, "total": "9.50"}
        assert published["properties"].delivery_mode == 2

    def test_reuses_open_connection(self, monkeypatch):
        connections = []

        def connect(parameters):
            connections.append(FakeConnection(parameters))
            return connections[-1]

        monkeypatch.setattr(producer.pika, "BlockingConnection", connect)
        notifier = RabbitMQNotifier("broker")

        notifier.notify("order.placed", {})
        notifier.notify("order.fulfilled", {})
        assert len(connections) == 1

        notifier.close()
        notifier.notify("order.placed", {})
        assert len(connections) == 2

    def test_gives_up_after_bounded_attempts(self, monkeypatch):
        attempts = []

        def refuse(parameters):
            attempts.append(parameters)
            raise pika.exceptions.AMQPConnectionError("refused")

        monkeypatch.setattr(producer.pika, "BlockingConnection", refuse)
        monkeypatch.setattr(producer.time, "sleep", lambda seconds: None)
        notifier = RabbitMQNotifier("broker", connect_attempts=3)

        with pytest.raises(pika.exceptions.AMQPConnectionError):
            notifier.notify("order.placed", {})
        assert len(attempts) == 3

    def test_sets_heartbeat(self, monkeypatch):
        connections = []

        def connect(parameters):
            connections.append(FakeConnection(parameters))
            return connections[-1]

        monkeypatch.setattr(producer.pika, "BlockingConnection", connect)
        RabbitMQNotifier("broker").notify("order.placed", {})

        assert connections[0].parameters.heartbeat == 600

    def test_republishes_after_idle_connection_was_dropped(self, monkeypatch):
        connections = []

        def connect(parameters):
            connection_class = StaleConnection if not connections else FakeConnection
            connections.append(connection_class(parameters))
            return connections[-1]

        monkeypatch.setattr(producer.pika, "BlockingConnection", connect)
        notifier = RabbitMQNotifier("broker")
        notifier.connect()

        delivered = notify_best_effort(notifier, "order.fulfilled", {"orderId": 7})

        assert delivered is True
        assert len(connections) == 2
        published = connections[1].channel().published
        assert [p["routing_key"] for p in published] == ["order.fulfilled"]
        assert json.loads(published[0]["body"]) == {"orderId": 7}

    def test_dropped_connection_and_broker_down(self, monkeypatch):
        connections = []

        def connect(parameters):
            if connections:
                raise pika.exceptions.AMQPConnectionError("refused")
            connections.append(StaleConnection(parameters))
            return connections[-1]

        monkeypatch.setattr(producer.pika, "BlockingConnection", connect)
        monkeypatch.setattr(producer.time, "sleep", lambda seconds: None)
        notifier = RabbitMQNotifier("broker", connect_attempts=2)
        notifier.connect()

        assert notify_best_effort(notifier, "order.placed", {"orderId": 7}) is False
        assert notifier.connection is None


def test_in_memory_notifier_records_events():
    notifier = InMemoryNotifier()
    notifier.notify("order.placed", {"message": "hello"})
    assert notifier.events == [("order.placed", {"message": "hello"})]


def test_order_event_payload():
    event = order_event("order.placed", make_order(("Dune", "Emma")))

    assert event["event"] == "order.placed"
    assert event["orderId"] == 7
    assert event["memberId"] == "member-1"
    assert event["claimCode"] == "ABCD2345"
    assert event["titles"] == ["Dune", "Emma"]
    assert event["message"] == "member-1 just purchased Dune, Emma!"


def test_pickup_event_message():
    event = order_event("order.fulfilled", make_order())
    assert event["message"] == "member-1 just picked up Dune!"


def test_best_effort_swallows_failures():
    failing = FailingNotifier()
    assert notify_best_effort(failing, "order.placed", {"orderId": 7}) is False
    assert failing.attempts == 1


def test_best_effort_reports_delivery():
    notifier = InMemoryNotifier()
    assert notify_best_effort(notifier, "order.placed", {"orderId": 7}) is True
    assert len(notifier.events) == 1


def test_sink_without_notify_cannot_be_created():
    class SilentNotifier(Notifier):
        pass

    with pytest.raises(TypeError):
        SilentNotifier()
