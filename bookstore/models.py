from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base  # Import the Base class from our database setup


def utcnow():
    return datetime.now(timezone.utc)


# A catalog book, referenced by id. Only the inventory ledger changes its stock numbers.
class Book(Base):
    __tablename__ = "books"
    __table_args__ = (
        CheckConstraint("inventory_count >= 0", name="ck_books_inventory_non_negative"),
        CheckConstraint("total_sold >= 0", name="ck_books_total_sold_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    author = Column(String(200), nullable=False, default="")
    price = Column(Numeric(10, 2), nullable=False)  # Current catalog price.
    inventory_count = Column(Integer, nullable=False, default=0)  # Units available to reserve.
    total_sold = Column(Integer, nullable=False, default=0)


# One line of a member's cart; at most one row per (member, book).
class CartItem(Base):
    __tablename__ = "cart_items"
    __table_args__ = (
        UniqueConstraint("member_id", "book_id", name="uq_cart_items_member_book"),
        CheckConstraint("quantity >= 1", name="ck_cart_items_quantity_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    member_id = Column(String(64), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False)
    quantity = Column(Integer, nullable=False)

    book = relationship("Book")


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint(
            "NOT (is_processed AND is_cancelled)", name="ck_orders_single_terminal_state"
        ),
        UniqueConstraint("member_id", "idempotency_key", name="uq_orders_member_idempotency_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    member_id = Column(String(64), nullable=False, index=True)
    order_date = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    subtotal = Column(Numeric(10, 2), nullable=False)
    discount_percentage = Column(Numeric(5, 4), nullable=False, default=0)
    discount_description = Column(String(100), nullable=False, default="")
    total_amount = Column(Numeric(10, 2), nullable=False)
    claim_code = Column(String(16), nullable=False, unique=True, index=True)
    note = Column(String(500))
    idempotency_key = Column(String(128))  # Client supplied checkout token.
    is_processed = Column(Boolean, nullable=False, default=False)
    is_cancelled = Column(Boolean, nullable=False, default=False)
    processed_at = Column(DateTime(timezone=True))
    processed_by = Column(String(64))  # Staff member who handed the order over.
    cancelled_at = Column(DateTime(timezone=True))

    items = relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )


# A frozen order line; the unit price is captured when the order is placed.
class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    book_id = Column(Integer, ForeignKey("books.id"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)

    order = relationship("Order", back_populates="items")
    book = relationship("Book")
