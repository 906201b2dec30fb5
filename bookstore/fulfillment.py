"""Staff-side pickup: process an order by its claim code."""
import logging
from typing import Optional

from sqlalchemy import select

from .claim_codes import normalize_claim_code
from .database import session_scope
from .errors import InvalidClaimCodeError, MemberMismatchError
from .messaging.producer import Notifier, notify_best_effort, order_event
from .models import Order, utcnow
from .orders import ensure_pending, transition, with_items
from .schemas import OrderOut

logger = logging.getLogger(__name__)

ORDER_FULFILLED = "order.fulfilled"


class FulfillmentGateway:
    def __init__(self, session_factory, notifier: Notifier):
        self._session_factory = session_factory
        self._notifier = notifier

    def fulfill_by_claim_code(
        self,
        claim_code: str,
        requested_by_staff_id: str,
        member_id: Optional[str] = None,
    ) -> OrderOut:
        """Mark the order behind ``claim_code`` as processed.

        - Raises InvalidClaimCodeError if no order carries the code.
        - Raises AlreadyCancelledError / AlreadyProcessedError for terminal orders,
          including when a concurrent call wins the race.
        - Raises MemberMismatchError if ``member_id`` is given and is not the owner.

        The pickup notification is sent after commit and never fails the call.
        """
        code = normalize_claim_code(claim_code)
        with session_scope(self._session_factory) as db:
            order = db.scalar(with_items(select(Order)).where(Order.claim_code == code))
            if order is None:
                logger.warning("Staff %s presented unknown claim code %s", requested_by_staff_id, code)
                raise InvalidClaimCodeError(code)

            ensure_pending(order)
            if member_id is not None and member_id != order.member_id:
                raise MemberMismatchError(code, member_id)

            transition(
                db,
                order,
                is_processed=True,
                processed_at=utcnow(),
                processed_by=requested_by_staff_id,
            )
            result = OrderOut.from_model(order)

        logger.info(
            "Order %s (claim code %s) processed by staff %s",
            result.order_id, code, requested_by_staff_id,
        )
        notify_best_effort(self._notifier, ORDER_FULFILLED, order_event(ORDER_FULFILLED, result))
        return result
