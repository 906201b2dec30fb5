"""Cart aggregate: one cart per member, one line per book."""
import logging
from typing import List

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from .database import session_scope
from .errors import BookNotFoundError, CartItemNotFoundError, InvalidQuantityError
from .models import Book, CartItem
from .schemas import CartItemOut

logger = logging.getLogger(__name__)


class CartService:
    def __init__(self, session_factory, max_line_quantity: int = 100):
        self._session_factory = session_factory
        self._max_line_quantity = max_line_quantity

    def _check_quantity(self, quantity: int) -> None:
        if not 1 <= quantity <= self._max_line_quantity:
            raise InvalidQuantityError(quantity, self._max_line_quantity)

    def add_item(self, member_id: str, book_id: int, quantity: int = 1) -> CartItemOut:
        """Add a book to the member's cart, or raise the existing line's quantity."""
        self._check_quantity(quantity)
        with session_scope(self._session_factory) as db:
            if db.get(Book, book_id) is None:
                raise BookNotFoundError(book_id)

            item = self._find_line(db, member_id, book_id)
            if item is None:
                try:
                    # A concurrent add of the same book may insert first.
                    with db.begin_nested():
                        item = CartItem(member_id=member_id, book_id=book_id, quantity=quantity)
                        db.add(item)
                except IntegrityError:
                    item = self._find_line(db, member_id, book_id)
                    if item is None:
                        raise
                    self._increment(item, quantity)
            else:
                self._increment(item, quantity)

            db.flush()
            logger.info("Member %s cart: book %s quantity now %d", member_id, book_id, item.quantity)
            return CartItemOut.from_model(item)

    def _increment(self, item: CartItem, quantity: int) -> None:
        new_quantity = item.quantity + quantity
        self._check_quantity(new_quantity)
        item.quantity = new_quantity

    def update_item(self, member_id: str, cart_item_id: int, quantity: int) -> CartItemOut:
        self._check_quantity(quantity)
        with session_scope(self._session_factory) as db:
            item = self._owned_item(db, member_id, cart_item_id)
            item.quantity = quantity
            db.flush()
            return CartItemOut.from_model(item)

    def remove_item(self, member_id: str, cart_item_id: int) -> None:
        with session_scope(self._session_factory) as db:
            item = self._owned_item(db, member_id, cart_item_id)
            db.delete(item)
            logger.info("Member %s removed cart item %s", member_id, cart_item_id)

    def clear(self, member_id: str) -> int:
        """Empty the member's cart and return how many lines were removed."""
        with session_scope(self._session_factory) as db:
            result = db.execute(delete(CartItem).where(CartItem.member_id == member_id))
            return result.rowcount

    def snapshot(self, member_id: str) -> List[CartItemOut]:
        with session_scope(self._session_factory) as db:
            return [CartItemOut.from_model(item) for item in self.lines(db, member_id)]

    # --- Transaction-scoped helpers ---

    @staticmethod
    def lines(db: Session, member_id: str, lock: bool = False) -> List[CartItem]:
        """Cart rows of a member in insertion order, optionally locked for update."""
        stmt = (
            select(CartItem)
            .options(joinedload(CartItem.book))
            .where(CartItem.member_id == member_id)
            .order_by(CartItem.id)
        )
        if lock:
            stmt = stmt.with_for_update(of=CartItem)
        return list(db.scalars(stmt).unique())

    @staticmethod
    def _find_line(db: Session, member_id: str, book_id: int):
        return db.scalar(
            select(CartItem).where(CartItem.member_id == member_id, CartItem.book_id == book_id)
        )

    @staticmethod
    def _owned_item(db: Session, member_id: str, cart_item_id: int) -> CartItem:
        item = db.get(CartItem, cart_item_id)
        if item is None or item.member_id != member_id:
            raise CartItemNotFoundError(cart_item_id, member_id)
        return item
