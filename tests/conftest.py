"""Pytest fixtures for the bookstore ordering tests."""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
import threading

import pytest

from bookstore.cart import CartService
from bookstore.config import Settings
from bookstore.database import create_db_engine, init_db, make_session_factory
from bookstore.fulfillment import FulfillmentGateway
from bookstore.inventory import InventoryLedger
from bookstore.messaging.producer import InMemoryNotifier, Notifier
from bookstore.orders import OrderService
from bookstore.purchases import PurchaseVerifier

MEMBER = "member-1"
OTHER_MEMBER = "member-2"
STAFF = "staff-1"


class FailingNotifier(Notifier):
    """Sink whose broker is always down."""

    def __init__(self):
        self.attempts = 0

    def notify(self, routing_key, message):
        self.attempts += 1
        raise ConnectionError("broker unreachable")


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a throwaway file-backed SQLite database."""
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'bookstore.db'}",
        db_timeout_seconds=30,
    )


@pytest.fixture
def engine(settings):
    engine = create_db_engine(settings)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def notifier():
    return InMemoryNotifier()


@pytest.fixture
def ledger(session_factory):
    return InventoryLedger(session_factory)


@pytest.fixture
def carts(session_factory):
    return CartService(session_factory)


@pytest.fixture
def orders(session_factory, ledger, notifier):
    return OrderService(session_factory, ledger, notifier)


@pytest.fixture
def gateway(session_factory, notifier):
    return FulfillmentGateway(session_factory, notifier)


@pytest.fixture
def purchases(session_factory):
    return PurchaseVerifier(session_factory)


@pytest.fixture
def make_book(ledger):
    """Register a book; defaults to $10.00 with 10 units in stock."""

    def _make_book(title="Dune", price="10.00", stock=10, author="Frank Herbert"):
        return ledger.register_book(title, author, Decimal(price), stock)

    return _make_book


@pytest.fixture
def book(make_book):
    return make_book()


@pytest.fixture
def placed_order(carts, orders, book):
    """A pending order for two copies of ``book`` placed by MEMBER."""
    carts.add_item(MEMBER, book.id, 2)
    return orders.place_order(MEMBER)


def run_concurrently(*calls):
    """Start all calls at the same moment; return (results, errors)."""
    barrier = threading.Barrier(len(calls))

    def _run(call):
        barrier.wait()
        try:
            return call(), None
        except Exception as exc:
            return None, exc

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        outcomes = list(pool.map(_run, calls))

    results = [result for result, error in outcomes if error is None]
    errors = [error for result, error in outcomes if error is not None]
    return results, errors
