import logging

from sqlalchemy import select

from .database import session_scope
from .models import Order, OrderItem

logger = logging.getLogger(__name__)


class PurchaseVerifier:
    """Answers whether a member bought a book, from current order state on every call."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def has_purchased(self, member_id: str, book_id: int) -> bool:
        purchased = (
            select(OrderItem.id)
            .join(Order, OrderItem.order_id == Order.id)
            .where(
                Order.member_id == member_id,
                OrderItem.book_id == book_id,
                Order.is_processed.is_(True),
                Order.is_cancelled.is_(False),
            )
            .exists()
        )
        with session_scope(self._session_factory) as db:
            result = bool(db.scalar(select(purchased)))

        logger.info("Member %s has%s purchased book %s", member_id, "" if result else " not", book_id)
        return result
