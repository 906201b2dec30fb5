"""Error kinds raised by the ordering core.

Every failure crossing the service boundary is an ``OrderingError`` carrying
a stable ``kind`` name, a human readable message and a ``retryable`` flag.
"""


class OrderingError(Exception):
    """Base exception for all ordering errors."""

    kind = "OrderingError"
    retryable = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class EmptyCartError(OrderingError):
    """Raised when a member places an order with nothing in the cart."""

    kind = "EmptyCart"

    def __init__(self, member_id: str):
        self.member_id = member_id
        super().__init__(f"Cart is empty for member {member_id}")


class BookNotFoundError(OrderingError):
    kind = "BookNotFound"

    def __init__(self, book_id: int):
        self.book_id = book_id
        super().__init__(f"Book not found with ID {book_id}")


class InsufficientStockError(OrderingError):
    """Raised when a reservation asks for more units than are available."""

    kind = "InsufficientStock"

    def __init__(self, book_id: int, requested: int, title: str | None = None):
        self.book_id = book_id
        self.requested = requested
        name = f"'{title}'" if title else f"ID {book_id}"
        super().__init__(f"Book {name} is not available in the requested quantity ({requested})")


class InvalidQuantityError(OrderingError):
    kind = "InvalidQuantity"

    def __init__(self, quantity: int, maximum: int):
        self.quantity = quantity
        self.maximum = maximum
        super().__init__(f"Quantity must be between 1 and {maximum}, got {quantity}")


class CartItemNotFoundError(OrderingError):
    kind = "CartItemNotFound"

    def __init__(self, cart_item_id: int, member_id: str):
        self.cart_item_id = cart_item_id
        self.member_id = member_id
        super().__init__(f"Cart item not found with ID {cart_item_id} for member {member_id}")


class OrderNotFoundError(OrderingError):
    kind = "OrderNotFound"

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Order not found with ID {order_id}")


class NotOrderOwnerError(OrderingError):
    """Raised when a member acts on an order placed by someone else."""

    kind = "NotOrderOwner"

    def __init__(self, order_id: int, member_id: str):
        self.order_id = order_id
        self.member_id = member_id
        super().__init__(f"Member {member_id} does not have permission to access order {order_id}")


class InvalidClaimCodeError(OrderingError):
    kind = "InvalidClaimCode"

    def __init__(self, claim_code: str):
        self.claim_code = claim_code
        super().__init__(f"Order not found with claim code {claim_code}")


class AlreadyProcessedError(OrderingError):
    kind = "AlreadyProcessed"

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Order {order_id} is already processed")


class AlreadyCancelledError(OrderingError):
    kind = "AlreadyCancelled"

    def __init__(self, order_id: int):
        self.order_id = order_id
        super().__init__(f"Order {order_id} is already cancelled")


class MemberMismatchError(OrderingError):
    """Raised when the membership presented at pickup is not the order's owner."""

    kind = "MemberMismatch"

    def __init__(self, claim_code: str, member_id: str):
        self.claim_code = claim_code
        self.member_id = member_id
        super().__init__(
            f"The provided membership ID {member_id} does not match the owner of order {claim_code}"
        )


class CodeGenerationExhaustedError(OrderingError):
    kind = "CodeGenerationExhausted"
    retryable = True

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Could not generate a unique claim code after {attempts} attempts")


class TransientError(OrderingError):
    """Raised for timeouts and lost connections; the whole operation may be retried."""

    kind = "Transient"
    retryable = True


class StorageError(OrderingError):
    """Raised for any other database failure."""

    kind = "Storage"


class InvalidDiscountError(OrderingError):
    """Raised when a discount policy returns a percentage outside [0, 1]."""

    kind = "InvalidDiscount"

    def __init__(self, percentage):
        self.percentage = percentage
        super().__init__(f"Discount percentage out of range: {percentage}")
