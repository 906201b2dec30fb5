"""Request and response models. JSON field names are camelCase on the wire."""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from . import models


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Request Models ---

class BookCreate(CamelModel):
    """Registers a catalog book together with its opening stock."""
    title: str = Field(min_length=1, max_length=200)
    author: str = Field("", max_length=200)
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    inventory_count: int = Field(0, ge=0)


class StockRequest(CamelModel):
    quantity: int = Field(gt=0)


class AddToCartRequest(CamelModel):
    member_id: str = Field(min_length=1, max_length=64)
    book_id: int
    quantity: int = 1


class UpdateCartItemRequest(CamelModel):
    member_id: str = Field(min_length=1, max_length=64)
    quantity: int


class PlaceOrderRequest(CamelModel):
    member_id: str = Field(min_length=1, max_length=64)
    note: Optional[str] = Field(None, max_length=500)
    idempotency_key: Optional[str] = Field(None, min_length=1, max_length=128)


class FulfillOrderRequest(CamelModel):
    claim_code: str = Field(min_length=1, max_length=16)
    # Omitted when staff accept the claim code alone.
    member_id: Optional[str] = None


class CancelOrderRequest(CamelModel):
    member_id: Optional[str] = None


# --- Response Models ---

class BookOut(CamelModel):
    id: int
    title: str
    author: str
    price: Decimal
    inventory_count: int
    total_sold: int

    @classmethod
    def from_model(cls, book: models.Book) -> "BookOut":
        return cls(
            id=book.id,
            title=book.title,
            author=book.author,
            price=book.price,
            inventory_count=book.inventory_count,
            total_sold=book.total_sold,
        )


class CartItemOut(CamelModel):
    id: int
    book_id: int
    book_title: str
    price: Decimal
    quantity: int

    @classmethod
    def from_model(cls, item: models.CartItem) -> "CartItemOut":
        return cls(
            id=item.id,
            book_id=item.book_id,
            book_title=item.book.title,
            price=item.book.price,
            quantity=item.quantity,
        )


class OrderItemOut(CamelModel):
    id: int
    book_id: int
    book_title: str
    unit_price: Decimal
    quantity: int
    total_price: Decimal


class OrderOut(CamelModel):
    order_id: int
    member_id: str
    order_date: datetime
    claim_code: str
    subtotal: Decimal
    discount_percentage: Decimal
    discount_description: str
    total_amount: Decimal
    note: Optional[str] = None
    is_processed: bool
    is_cancelled: bool
    processed_at: Optional[datetime] = None
    processed_by: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    items: List[OrderItemOut]

    @classmethod
    def from_model(cls, order: models.Order) -> "OrderOut":
        return cls(
            order_id=order.id,
            member_id=order.member_id,
            order_date=order.order_date,
            claim_code=order.claim_code,
            subtotal=order.subtotal,
            discount_percentage=order.discount_percentage,
            discount_description=order.discount_description,
            total_amount=order.total_amount,
            note=order.note,
            is_processed=order.is_processed,
            is_cancelled=order.is_cancelled,
            processed_at=order.processed_at,
            processed_by=order.processed_by,
            cancelled_at=order.cancelled_at,
            items=[
                OrderItemOut(
                    id=item.id,
                    book_id=item.book_id,
                    book_title=item.book.title,
                    unit_price=item.unit_price,
                    quantity=item.quantity,
                    total_price=item.unit_price * item.quantity,
                )
                for item in order.items
            ],
        )

    @property
    def titles(self) -> List[str]:
        return [item.book_title for item in self.items]


class PurchaseCheckOut(CamelModel):
    member_id: str
    book_id: int
    has_purchased: bool
