"""Tests for claim-code fulfillment."""

import pytest

from bookstore.errors import (
    AlreadyCancelledError,
    AlreadyProcessedError,
    InvalidClaimCodeError,
    MemberMismatchError,
)
from bookstore.fulfillment import FulfillmentGateway
from bookstore.orders import OrderService

from conftest import MEMBER, OTHER_MEMBER, STAFF, FailingNotifier, run_concurrently


@pytest.fixture
def fixed_code_order(session_factory, ledger, notifier, carts, book):
    """A pending order whose claim code is ABCD2345."""
    service = OrderService(session_factory, ledger, notifier, code_generator=lambda: "ABCD2345")
    carts.add_item(MEMBER, book.id, 1)
    return service.place_order(MEMBER)


class TestFulfillByClaimCode:
    def test_processes_pending_order(self, gateway, placed_order):
        order = gateway.fulfill_by_claim_code(placed_order.claim_code, STAFF)

        assert order.order_id == placed_order.order_id
        assert order.is_processed is True
        assert order.is_cancelled is False
        assert order.processed_by == STAFF
        assert order.processed_at is not None
        assert [i.book_title for i in order.items] == ["Dune"]

    def test_emits_notification_with_titles(self, gateway, notifier, placed_order):
        gateway.fulfill_by_claim_code(placed_order.claim_code, STAFF)

        routing_key, message = notifier.events[-1]
        assert routing_key == "order.fulfilled"
        assert message["memberId"] == MEMBER
        assert message["orderId"] == placed_order.order_id
        assert message["titles"] == ["Dune"]
        assert "Dune" in message["message"]

    def test_double_fulfillment_is_rejected(self, gateway, orders, fixed_code_order):
        first = gateway.fulfill_by_claim_code("ABCD2345", STAFF)

        with pytest.raises(AlreadyProcessedError):
            gateway.fulfill_by_claim_code("ABCD2345", "staff-2")

        after = orders.get_order(fixed_code_order.order_id, privileged=True)
        assert after.is_processed is True
        assert after.processed_by == STAFF
        assert after.processed_at == first.processed_at

    def test_cancelled_order_cannot_be_fulfilled(self, gateway, orders, placed_order):
        orders.cancel_order(placed_order.order_id)

        with pytest.raises(AlreadyCancelledError):
            gateway.fulfill_by_claim_code(placed_order.claim_code, STAFF)

        after = orders.get_order(placed_order.order_id, privileged=True)
        assert after.is_cancelled is True
        assert after.is_processed is False

    def test_unknown_claim_code(self, gateway, placed_order):
        with pytest.raises(InvalidClaimCodeError) as exc_info:
            gateway.fulfill_by_claim_code("ZZZZ9999", STAFF)
        assert exc_info.value.kind == "InvalidClaimCode"

    def test_claim_code_is_normalized(self, gateway, fixed_code_order):
        order = gateway.fulfill_by_claim_code(" abcd2345 ", STAFF)
        assert order.order_id == fixed_code_order.order_id

    def test_membership_must_match_when_given(self, gateway, orders, placed_order):
        with pytest.raises(MemberMismatchError):
            gateway.fulfill_by_claim_code(placed_order.claim_code, STAFF, member_id=OTHER_MEMBER)
        assert orders.get_order(placed_order.order_id, privileged=True).is_processed is False

        order = gateway.fulfill_by_claim_code(placed_order.claim_code, STAFF, member_id=MEMBER)
        assert order.is_processed is True

    def test_notification_failure_is_swallowed(self, session_factory, orders, placed_order):
        failing = FailingNotifier()
        gateway = FulfillmentGateway(session_factory, failing)

        order = gateway.fulfill_by_claim_code(placed_order.claim_code, STAFF)

        assert failing.attempts == 1
        assert order.is_processed is True
        assert orders.get_order(placed_order.order_id, privileged=True).is_processed is True


class TestFulfillmentRaces:
    def test_two_staff_fulfilling_same_code(self, gateway, orders, placed_order):
        code = placed_order.claim_code
        results, errors = run_concurrently(
            lambda: gateway.fulfill_by_claim_code(code, "staff-a"),
            lambda: gateway.fulfill_by_claim_code(code, "staff-b"),
        )

        assert len(results) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], AlreadyProcessedError)
        after = orders.get_order(placed_order.order_id, privileged=True)
        assert after.processed_by == results[0].processed_by

    def test_cancel_racing_fulfill(self, gateway, orders, placed_order):
        results, errors = run_concurrently(
            lambda: orders.cancel_order(placed_order.order_id),
            lambda: gateway.fulfill_by_claim_code(placed_order.claim_code, STAFF),
        )

        assert len(results) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], (AlreadyCancelledError, AlreadyProcessedError))
        after = orders.get_order(placed_order.order_id, privileged=True)
        assert after.is_processed != after.is_cancelled
