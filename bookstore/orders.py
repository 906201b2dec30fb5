"""Order placement and the Pending -> Processed | Cancelled state machine.

An order is created from the member's cart in a single transaction: prices
are frozen into the order lines, stock is reserved, a claim code assigned
and the cart rows deleted. Both terminal transitions are compare-and-swap
updates on the order row, so an order can never end up processed and
cancelled at once.
"""
from decimal import ROUND_HALF_UP, Decimal
import logging
from typing import List, Optional, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from .cart import CartService
from .claim_codes import generate_claim_code
from .database import session_scope
from .discounts import DiscountPolicy, MemberHistory, volume_and_loyalty_discount
from .errors import (
    AlreadyCancelledError,
    AlreadyProcessedError,
    BookNotFoundError,
    CodeGenerationExhaustedError,
    EmptyCartError,
    InvalidDiscountError,
    NotOrderOwnerError,
    OrderNotFoundError,
)
from .inventory import InventoryLedger
from .messaging.producer import Notifier, notify_best_effort, order_event
from .models import CartItem, Order, OrderItem, utcnow
from .schemas import OrderOut

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

ORDER_PLACED = "order.placed"


class _PlacementConflict(Exception):
    """The claim code or idempotency key was taken by a concurrent placement."""


def with_items(stmt):
    return stmt.options(selectinload(Order.items).joinedload(OrderItem.book))


def ensure_pending(order: Order) -> None:
    """Raise if the order already reached a terminal state."""
    if order.is_cancelled:
        raise AlreadyCancelledError(order.id)
    if order.is_processed:
        raise AlreadyProcessedError(order.id)


def transition(db: Session, order: Order, **values) -> None:
    """Move a pending order to a terminal state, or raise if another call won.

    The WHERE clause re-checks both flags, so of two racing transitions on the
    same order exactly one updates the row.
    """
    result = db.execute(
        update(Order)
        .where(
            Order.id == order.id,
            Order.is_processed.is_(False),
            Order.is_cancelled.is_(False),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.refresh(order)
    if result.rowcount != 1:
        logger.warning("Lost transition race on order %s", order.id)
        ensure_pending(order)
        # Row vanished between read and update.
        raise OrderNotFoundError(order.id)


class OrderService:
    def __init__(
        self,
        session_factory,
        ledger: InventoryLedger,
        notifier: Notifier,
        discount_policy: DiscountPolicy = volume_and_loyalty_discount,
        claim_code_attempts: int = 5,
        restock_on_cancel: bool = False,
        code_generator=generate_claim_code,
    ):
        self._session_factory = session_factory
        self._ledger = ledger
        self._notifier = notifier
        self._discount_policy = discount_policy
        self._claim_code_attempts = claim_code_attempts
        self._restock_on_cancel = restock_on_cancel
        self._generate_code = code_generator

    # --- Placement ---

    def place_order(
        self,
        member_id: str,
        note: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> OrderOut:
        """Turn the member's cart into a pending order.

        Each attempt is its own transaction; a claim code collision rolls the
        attempt back and retries with a fresh code. A repeated
        ``idempotency_key`` returns the order created by the first call.
        """
        for attempt in range(1, self._claim_code_attempts + 1):
            claim_code = self._generate_code()
            try:
                order, created = self._place_once(member_id, claim_code, note, idempotency_key)
            except _PlacementConflict:
                logger.warning(
                    "Claim code conflict placing order for member %s (attempt %d/%d)",
                    member_id, attempt, self._claim_code_attempts,
                )
                continue

            if created:
                notify_best_effort(self._notifier, ORDER_PLACED, order_event(ORDER_PLACED, order))
            return order

        logger.error("Claim code generation exhausted for member %s", member_id)
        raise CodeGenerationExhaustedError(self._claim_code_attempts)

    def _place_once(
        self,
        member_id: str,
        claim_code: str,
        note: Optional[str],
        idempotency_key: Optional[str],
    ) -> Tuple[OrderOut, bool]:
        with session_scope(self._session_factory) as db:
            existing = self._existing_order(db, member_id, idempotency_key)
            if existing is not None:
                return OrderOut.from_model(existing), False

            if db.scalar(select(Order.id).where(Order.claim_code == claim_code)) is not None:
                raise _PlacementConflict(claim_code)

            lines = CartService.lines(db, member_id, lock=True)
            if not lines:
                # A concurrent checkout with the same key may have committed and
                # emptied the cart while this one waited on the row locks.
                existing = self._existing_order(db, member_id, idempotency_key)
                if existing is not None:
                    return OrderOut.from_model(existing), False
                raise EmptyCartError(member_id)
            for line in lines:
                if line.book is None:
                    raise BookNotFoundError(line.book_id)

            # Prices are read once here and frozen into the order lines.
            subtotal = sum((line.book.price * line.quantity for line in lines), Decimal("0"))
            item_count = sum(line.quantity for line in lines)
            discount = self._discount_policy(subtotal, item_count, self._member_history(db, member_id))
            percentage = Decimal(discount.percentage)
            if not Decimal("0") <= percentage <= Decimal("1"):
                raise InvalidDiscountError(percentage)
            total_amount = (subtotal * (1 - percentage)).quantize(CENT, rounding=ROUND_HALF_UP)

            logger.info(
                "Discount calculation: total books %d, percentage %s, description '%s'",
                item_count, percentage, discount.description,
            )

            for line in lines:
                self._ledger.reserve(db, line.book_id, line.quantity)

            order = Order(
                member_id=member_id,
                order_date=utcnow(),
                subtotal=subtotal.quantize(CENT, rounding=ROUND_HALF_UP),
                discount_percentage=percentage,
                discount_description=discount.description,
                total_amount=total_amount,
                claim_code=claim_code,
                note=note,
                idempotency_key=idempotency_key,
                is_processed=False,
                is_cancelled=False,
                items=[
                    OrderItem(book=line.book, quantity=line.quantity, unit_price=line.book.price)
                    for line in lines
                ],
            )
            db.add(order)
            try:
                db.flush()
            except IntegrityError as exc:
                raise _PlacementConflict(claim_code) from exc

            # Delete exactly the rows the order was built from.
            db.execute(
                delete(CartItem)
                .where(CartItem.id.in_([line.id for line in lines]))
                .execution_options(synchronize_session=False)
            )

            logger.info(
                "Order %s placed for member %s: %d line(s), total %s, claim code %s",
                order.id, member_id, len(lines), total_amount, claim_code,
            )
            return OrderOut.from_model(order), True

    @staticmethod
    def _existing_order(db: Session, member_id: str, idempotency_key: Optional[str]) -> Optional[Order]:
        """The order already placed under ``idempotency_key``, if any."""
        if idempotency_key is None:
            return None
        existing = db.scalar(
            with_items(select(Order)).where(
                Order.member_id == member_id,
                Order.idempotency_key == idempotency_key,
            )
        )
        if existing is not None:
            logger.info(
                "Checkout %s for member %s already placed as order %s",
                idempotency_key, member_id, existing.id,
            )
        return existing

    @staticmethod
    def _member_history(db: Session, member_id: str) -> MemberHistory:
        count = db.scalar(
            select(func.count(Order.id)).where(
                Order.member_id == member_id,
                Order.is_cancelled.is_(False),
            )
        )
        return MemberHistory(order_count=count or 0)

    # --- Cancellation ---

    def cancel_order(self, order_id: int, member_id: Optional[str] = None) -> OrderOut:
        """Cancel a pending order.

        When ``member_id`` is given the order must belong to that member.
        Stock goes back to the ledger only if restock-on-cancel is enabled.
        """
        with session_scope(self._session_factory) as db:
            order = db.scalar(with_items(select(Order)).where(Order.id == order_id))
            if order is None:
                raise OrderNotFoundError(order_id)
            if member_id is not None and order.member_id != member_id:
                raise NotOrderOwnerError(order_id, member_id)

            ensure_pending(order)
            transition(db, order, is_cancelled=True, cancelled_at=utcnow())

            if self._restock_on_cancel:
                for item in order.items:
                    self._ledger.release(db, item.book_id, item.quantity)

            logger.info(
                "Order %s cancelled%s",
                order_id, " and restocked" if self._restock_on_cancel else "",
            )
            return OrderOut.from_model(order)

    # --- Queries ---

    def get_order(self, order_id: int, member_id: Optional[str] = None, privileged: bool = False) -> OrderOut:
        with session_scope(self._session_factory) as db:
            order = db.scalar(with_items(select(Order)).where(Order.id == order_id))
            if order is None:
                raise OrderNotFoundError(order_id)
            if not privileged and order.member_id != member_id:
                raise NotOrderOwnerError(order_id, member_id or "")
            return OrderOut.from_model(order)

    def list_member_orders(self, member_id: str) -> List[OrderOut]:
        with session_scope(self._session_factory) as db:
            orders = db.scalars(
                with_items(select(Order))
                .where(Order.member_id == member_id)
                .order_by(Order.order_date.desc(), Order.id.desc())
            )
            return [OrderOut.from_model(order) for order in orders]

    def list_orders(self, processed: Optional[bool] = None) -> List[OrderOut]:
        """All orders, newest first, optionally filtered by processed state."""
        stmt = with_items(select(Order)).order_by(Order.order_date.desc(), Order.id.desc())
        if processed is not None:
            stmt = stmt.where(Order.is_processed.is_(processed))
        with session_scope(self._session_factory) as db:
            return [OrderOut.from_model(order) for order in db.scalars(stmt)]
