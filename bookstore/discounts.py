"""Discount policies applied at checkout.

A policy is any callable ``(subtotal, item_count, history) -> Discount``. The
order service only checks that the returned percentage lies in [0, 1].
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable

VOLUME_THRESHOLD = 5
VOLUME_RATE = Decimal("0.05")
LOYALTY_THRESHOLD = 10
LOYALTY_RATE = Decimal("0.10")


@dataclass(frozen=True)
class MemberHistory:
    # Orders the member placed before this one, cancelled orders excluded.
    order_count: int = 0


@dataclass(frozen=True)
class Discount:
    percentage: Decimal = Decimal("0")
    description: str = ""


DiscountPolicy = Callable[[Decimal, int, MemberHistory], Discount]


def no_discount(subtotal: Decimal, item_count: int, history: MemberHistory) -> Discount:
    return Discount()


def volume_and_loyalty_discount(subtotal: Decimal, item_count: int, history: MemberHistory) -> Discount:
    """5% off orders of 5+ books, plus a stackable 10% once a member has 10+ orders."""
    percentage = Decimal("0")
    reasons = []

    if item_count >= VOLUME_THRESHOLD:
        percentage += VOLUME_RATE
        reasons.append("5% volume discount")

    if history.order_count >= LOYALTY_THRESHOLD:
        percentage += LOYALTY_RATE
        reasons.append("10% loyalty discount")

    return Discount(percentage=percentage, description=", ".join(reasons))
