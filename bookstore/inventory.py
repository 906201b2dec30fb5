"""Inventory ledger: the only place that changes a book's stock numbers.

``reserve`` and ``release`` take the caller's session so they run inside the
caller's transaction; both are single conditional UPDATEs, so two concurrent
reservations of the last unit cannot both succeed.
"""
from decimal import Decimal
import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from .database import session_scope
from .errors import BookNotFoundError, InsufficientStockError
from .models import Book
from .schemas import BookOut

logger = logging.getLogger(__name__)


class InventoryLedger:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    # --- Transaction-scoped operations ---

    def reserve(self, db: Session, book_id: int, quantity: int) -> None:
        """Move ``quantity`` units from available to sold, or raise.

        - Decrements ``inventory_count`` and increments ``total_sold`` together.
        - Raises InsufficientStockError if fewer than ``quantity`` units are left.
        """
        stmt = (
            update(Book)
            .where(Book.id == book_id, Book.inventory_count >= quantity)
            .values(
                inventory_count=Book.inventory_count - quantity,
                total_sold=Book.total_sold + quantity,
            )
            .execution_options(synchronize_session=False)
        )
        result = db.execute(stmt)
        if result.rowcount == 1:
            logger.debug("Reserved %d unit(s) of book %s", quantity, book_id)
            return

        book = db.get(Book, book_id, populate_existing=True)
        if book is None:
            raise BookNotFoundError(book_id)
        logger.info(
            "Insufficient stock for book %s: requested %d, available %d",
            book_id, quantity, book.inventory_count,
        )
        raise InsufficientStockError(book_id, quantity, book.title)

    def release(self, db: Session, book_id: int, quantity: int) -> None:
        """Return ``quantity`` previously reserved units to available stock."""
        stmt = (
            update(Book)
            .where(Book.id == book_id, Book.total_sold >= quantity)
            .values(
                inventory_count=Book.inventory_count + quantity,
                total_sold=Book.total_sold - quantity,
            )
            .execution_options(synchronize_session=False)
        )
        result = db.execute(stmt)
        if result.rowcount != 1:
            if db.get(Book, book_id) is None:
                raise BookNotFoundError(book_id)
            # total_sold would go negative; the ledger is out of step.
            logger.error("Cannot release %d unit(s) of book %s", quantity, book_id)
            raise InsufficientStockError(book_id, quantity)
        logger.debug("Released %d unit(s) of book %s", quantity, book_id)

    # --- Catalog-facing operations ---

    def register_book(self, title: str, author: str, price: Decimal, inventory_count: int = 0) -> BookOut:
        with session_scope(self._session_factory) as db:
            book = Book(
                title=title,
                author=author,
                price=price,
                inventory_count=inventory_count,
                total_sold=0,
            )
            db.add(book)
            db.flush()
            logger.info("Registered book %s (%s) with %d unit(s)", book.id, title, inventory_count)
            return BookOut.from_model(book)

    def restock(self, book_id: int, quantity: int) -> BookOut:
        """Adds arriving stock for a book."""
        with session_scope(self._session_factory) as db:
            result = db.execute(
                update(Book)
                .where(Book.id == book_id)
                .values(inventory_count=Book.inventory_count + quantity)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise BookNotFoundError(book_id)
            book = db.get(Book, book_id, populate_existing=True)
            logger.info("Restocked book %s by %d unit(s)", book_id, quantity)
            return BookOut.from_model(book)

    def get_book(self, book_id: int) -> BookOut:
        with session_scope(self._session_factory) as db:
            book = db.get(Book, book_id)
            if book is None:
                raise BookNotFoundError(book_id)
            return BookOut.from_model(book)
