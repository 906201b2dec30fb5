from abc import ABC, abstractmethod
import json
import logging
import threading
import time
from datetime import datetime, timezone

import pika

from ..schemas import OrderOut

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """One-way event sink. ``notify`` may raise; callers treat delivery as best-effort."""

    @abstractmethod
    def notify(self, routing_key: str, message: dict) -> None:
        ...

    def close(self) -> None:
        pass


class InMemoryNotifier(Notifier):
    """Keeps published events in a list; used when RabbitMQ is disabled."""

    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def notify(self, routing_key, message):
        with self._lock:
            self.events.append((routing_key, message))
        logger.info("Notification '%s': %s", routing_key, message.get("message"))


class RabbitMQNotifier(Notifier):
    """
    Publishes events to a RabbitMQ topic exchange.
    Connects lazily and retries a bounded number of times so a broker outage
    never blocks a request for long.
    """

    def __init__(self, host, exchange_name="events", exchange_type="topic",
                 connect_attempts=3, retry_delay=1.0):
        self.host = host
        self.exchange_name = exchange_name
        self.exchange_type = exchange_type
        self.connect_attempts = connect_attempts
        self.retry_delay = retry_delay
        self.connection = None
        self.channel = None
        # BlockingConnection is not thread-safe; requests publish from a threadpool.
        self._lock = threading.Lock()

    def connect(self):
        """Establishes a connection to RabbitMQ, giving up after ``connect_attempts``."""
        for attempt in range(1, self.connect_attempts + 1):
            try:
                credentials = pika.PlainCredentials('guest', 'guest')
                parameters = pika.ConnectionParameters(
                    host=self.host,
                    credentials=credentials,
                    heartbeat=600,
                    blocked_connection_timeout=5,
                    socket_timeout=5,
                )
                self.connection = pika.BlockingConnection(parameters)
                self.channel = self.connection.channel()

                # Declare the exchange (durable ensures it survives restarts)
                self.channel.exchange_declare(
                    exchange=self.exchange_name,
                    exchange_type=self.exchange_type,
                    durable=True
                )
                logger.info("Connected to RabbitMQ exchange %s", self.exchange_name)
                return
            except pika.exceptions.AMQPConnectionError:
                logger.warning("RabbitMQ not ready (attempt %d/%d)", attempt, self.connect_attempts)
                if attempt == self.connect_attempts:
                    raise
                time.sleep(self.retry_delay)

    def notify(self, routing_key, message):
        body = json.dumps(message, default=str)
        with self._lock:
            # Reconnect if the connection was lost
            if not self.connection or self.connection.is_closed:
                self.connect()

            try:
                self._publish(routing_key, body)
            except pika.exceptions.AMQPError as exc:
                # A connection the broker dropped while idle can still report is_closed == False.
                logger.warning("Publish of '%s' failed (%s), reconnecting", routing_key, exc.__class__.__name__)
                self._discard_connection()
                self.connect()
                self._publish(routing_key, body)
            logger.debug("Sent event '%s': %s", routing_key, message)

    def _publish(self, routing_key, body):
        self.channel.basic_publish(
            exchange=self.exchange_name,
            routing_key=routing_key,
            body=body,
            properties=pika.BasicProperties(
                delivery_mode=2,  # Make message persistent
                content_type='application/json'
            )
        )

    def _discard_connection(self):
        connection, self.connection, self.channel = self.connection, None, None
        if connection is None or connection.is_closed:
            return
        try:
            connection.close()
        except pika.exceptions.AMQPError:
            logger.debug("Stale RabbitMQ connection was already gone")

    def close(self):
        """Closes the connection cleanly."""
        with self._lock:
            if self.connection and not self.connection.is_closed:
                self.connection.close()


def order_event(routing_key: str, order: OrderOut) -> dict:
    """Event payload naming the member and the purchased titles."""
    titles = order.titles
    if routing_key == "order.fulfilled":
        text = f"{order.member_id} just picked up {', '.join(titles)}!"
    else:
        text = f"{order.member_id} just purchased {', '.join(titles)}!"
    return {
        "type": "order",
        "event": routing_key,
        "orderId": order.order_id,
        "memberId": order.member_id,
        "claimCode": order.claim_code,
        "titles": titles,
        "message": text,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def notify_best_effort(notifier: Notifier, routing_key: str, message: dict) -> bool:
    """Deliver an event, logging instead of raising on failure."""
    try:
        notifier.notify(routing_key, message)
        return True
    except Exception:
        logger.exception("Failed to publish '%s' for order %s", routing_key, message.get("orderId"))
        return False
