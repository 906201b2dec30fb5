"""HTTP API for the bookstore ordering core.

Run with ``uvicorn bookstore.main:create_app --factory``.
"""
from contextlib import asynccontextmanager
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from .cart import CartService
from .config import Settings, load_settings
from .database import create_db_engine, init_db, make_session_factory
from .errors import (
    AlreadyCancelledError,
    AlreadyProcessedError,
    BookNotFoundError,
    CartItemNotFoundError,
    CodeGenerationExhaustedError,
    EmptyCartError,
    InsufficientStockError,
    InvalidDiscountError,
    InvalidClaimCodeError,
    InvalidQuantityError,
    MemberMismatchError,
    NotOrderOwnerError,
    OrderingError,
    OrderNotFoundError,
    StorageError,
    TransientError,
)
from .fulfillment import FulfillmentGateway
from .inventory import InventoryLedger
from .messaging.producer import InMemoryNotifier, Notifier, RabbitMQNotifier
from .orders import OrderService
from .purchases import PurchaseVerifier
from .schemas import (
    AddToCartRequest,
    BookCreate,
    BookOut,
    CancelOrderRequest,
    CartItemOut,
    FulfillOrderRequest,
    OrderOut,
    PlaceOrderRequest,
    PurchaseCheckOut,
    StockRequest,
    UpdateCartItemRequest,
)

logger = logging.getLogger(__name__)

MEMBER = "Member"
STAFF = "Staff"
ADMIN = "Admin"

# Map error types to HTTP status codes
ERROR_STATUS_CODES: dict[type, int] = {
    EmptyCartError: 400,
    InvalidQuantityError: 400,
    MemberMismatchError: 400,
    BookNotFoundError: 404,
    CartItemNotFoundError: 404,
    OrderNotFoundError: 404,
    InvalidClaimCodeError: 404,
    NotOrderOwnerError: 403,
    InsufficientStockError: 409,
    AlreadyProcessedError: 409,
    AlreadyCancelledError: 409,
    CodeGenerationExhaustedError: 503,
    TransientError: 503,
    InvalidDiscountError: 500,
    StorageError: 500,
}


class Services:
    """Everything a request handler needs, built once per application."""

    def __init__(self, settings: Settings, notifier: Optional[Notifier] = None):
        self.settings = settings
        self.engine = create_db_engine(settings)
        init_db(self.engine)
        self.session_factory = make_session_factory(self.engine)

        if notifier is None:
            if settings.notifications_enabled:
                notifier = RabbitMQNotifier(settings.rabbitmq_host, exchange_name=settings.rabbitmq_exchange)
            else:
                notifier = InMemoryNotifier()
        self.notifier = notifier

        self.inventory = InventoryLedger(self.session_factory)
        self.carts = CartService(self.session_factory, max_line_quantity=settings.max_line_quantity)
        self.orders = OrderService(
            self.session_factory,
            self.inventory,
            self.notifier,
            claim_code_attempts=settings.claim_code_attempts,
            restock_on_cancel=settings.restock_on_cancel,
        )
        self.fulfillment = FulfillmentGateway(self.session_factory, self.notifier)
        self.purchases = PurchaseVerifier(self.session_factory)

    def close(self) -> None:
        self.notifier.close()
        self.engine.dispose()


# --- Dependencies ---

def get_services(request: Request) -> Services:
    return request.app.state.services


def caller_role(x_user_role: str = Header(MEMBER)) -> str:
    """Role claim supplied by the identity layer in front of this service."""
    role = x_user_role.strip().capitalize()
    if role not in {MEMBER, STAFF, ADMIN}:
        raise HTTPException(status_code=400, detail=f"Unknown role: {x_user_role}")
    return role


def require_staff(role: str = Depends(caller_role)) -> str:
    if role not in {STAFF, ADMIN}:
        raise HTTPException(status_code=403, detail="Only staff or admin users may do this")
    return role


router = APIRouter()


@router.get("/")
def root():
    """Health check endpoint."""
    return {"message": "Order service is running"}


# --- Catalog stand-in ---

@router.post("/api/v1/books", response_model=BookOut, status_code=201)
def register_book(req: BookCreate, services: Services = Depends(get_services),
                  role: str = Depends(require_staff)):
    return services.inventory.register_book(req.title, req.author, req.price, req.inventory_count)


@router.get("/api/v1/books/{book_id}", response_model=BookOut)
def get_book(book_id: int, services: Services = Depends(get_services)):
    return services.inventory.get_book(book_id)


@router.post("/api/v1/books/{book_id}/stock", response_model=BookOut)
def restock_book(book_id: int, req: StockRequest, services: Services = Depends(get_services),
                 role: str = Depends(require_staff)):
    return services.inventory.restock(book_id, req.quantity)


# --- Cart ---

@router.get("/api/v1/cart", response_model=List[CartItemOut])
def get_cart(member_id: str = Query(alias="memberId"), services: Services = Depends(get_services)):
    return services.carts.snapshot(member_id)


@router.post("/api/v1/cart/items", response_model=CartItemOut, status_code=201)
def add_to_cart(req: AddToCartRequest, services: Services = Depends(get_services)):
    return services.carts.add_item(req.member_id, req.book_id, req.quantity)


@router.put("/api/v1/cart/items/{cart_item_id}", response_model=CartItemOut)
def update_cart_item(cart_item_id: int, req: UpdateCartItemRequest,
                     services: Services = Depends(get_services)):
    return services.carts.update_item(req.member_id, cart_item_id, req.quantity)


@router.delete("/api/v1/cart/items/{cart_item_id}")
def remove_cart_item(cart_item_id: int, member_id: str = Query(alias="memberId"),
                     services: Services = Depends(get_services)):
    services.carts.remove_item(member_id, cart_item_id)
    return {"success": True}


@router.delete("/api/v1/cart")
def clear_cart(member_id: str = Query(alias="memberId"), services: Services = Depends(get_services)):
    removed = services.carts.clear(member_id)
    return {"success": True, "removed": removed}


# --- Orders ---

@router.post("/api/v1/orders", response_model=OrderOut, status_code=201)
def place_order(req: PlaceOrderRequest, services: Services = Depends(get_services),
                role: str = Depends(caller_role)):
    # Admin accounts manage the store; they do not buy from it.
    if role == ADMIN:
        raise HTTPException(status_code=403, detail="Admin users cannot create orders")
    return services.orders.place_order(req.member_id, note=req.note, idempotency_key=req.idempotency_key)


@router.get("/api/v1/orders", response_model=List[OrderOut])
def list_member_orders(member_id: str = Query(alias="memberId"),
                       services: Services = Depends(get_services)):
    return services.orders.list_member_orders(member_id)


@router.get("/api/v1/orders/all", response_model=List[OrderOut])
def list_all_orders(processed: Optional[bool] = None, services: Services = Depends(get_services),
                    role: str = Depends(require_staff)):
    return services.orders.list_orders(processed)


@router.post("/api/v1/orders/fulfill", response_model=OrderOut)
def fulfill_order(req: FulfillOrderRequest, services: Services = Depends(get_services),
                  role: str = Depends(require_staff),
                  x_user_id: str = Header("unknown-staff")):
    logger.info("Processing order with claim code %s for staff %s", req.claim_code, x_user_id)
    return services.fulfillment.fulfill_by_claim_code(req.claim_code, x_user_id, member_id=req.member_id)


@router.get("/api/v1/orders/{order_id}", response_model=OrderOut)
def get_order(order_id: int, member_id: Optional[str] = Query(None, alias="memberId"),
              services: Services = Depends(get_services), role: str = Depends(caller_role)):
    return services.orders.get_order(order_id, member_id=member_id, privileged=role in {STAFF, ADMIN})


@router.post("/api/v1/orders/{order_id}/cancel")
def cancel_order(order_id: int, req: Optional[CancelOrderRequest] = None,
                 services: Services = Depends(get_services)):
    member_id = req.member_id if req is not None else None
    services.orders.cancel_order(order_id, member_id=member_id)
    return {"success": True, "message": "Order cancelled successfully"}


# --- Purchase verification ---

@router.get("/api/v1/purchases/check", response_model=PurchaseCheckOut)
def check_purchase(member_id: str = Query(alias="memberId"), book_id: int = Query(alias="bookId"),
                   services: Services = Depends(get_services), role: str = Depends(caller_role)):
    # Admins may review any book, so they always count as buyers.
    has_purchased = role == ADMIN or services.purchases.has_purchased(member_id, book_id)
    return PurchaseCheckOut(member_id=member_id, book_id=book_id, has_purchased=has_purchased)


async def ordering_error_handler(request: Request, exc: OrderingError) -> JSONResponse:
    """Map OrderingError subclasses to HTTP responses."""
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.kind, "detail": exc.message, "retryable": exc.retryable},
    )


def create_app(settings: Optional[Settings] = None, notifier: Optional[Notifier] = None) -> FastAPI:
    settings = settings or load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    services = Services(settings, notifier)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        services.close()

    app = FastAPI(title="Bookstore Order Service", lifespan=lifespan)
    app.state.services = services
    app.add_exception_handler(OrderingError, ordering_error_handler)
    app.include_router(router)
    return app
