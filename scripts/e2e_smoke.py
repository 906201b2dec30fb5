#!/usr/bin/env python3
"""
Bookstore Order Service - E2E smoke run against a live deployment

Run:
  python scripts/e2e_smoke.py

Optional env:
  ORDER_BASE=http://localhost:8001
  STAFF_ID=e2e-staff
  DEBUG=1
"""

from __future__ import annotations

import os
import sys
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

import requests


class Style:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"
    GRAY = "\033[90m"


def section_title(text: str):
    print(f"\n{Style.BLUE}{Style.BOLD}== {text} =={Style.RESET}")


def info(msg: str):
    print(f"{Style.CYAN}ℹ {msg}{Style.RESET}")


def ok(msg: str):
    print(f"{Style.GREEN}✔ {msg}{Style.RESET}")


def fail(msg: str):
    print(f"{Style.RED}✘ {msg}{Style.RESET}")


# =========================
# Config
# =========================

ORDER_BASE = os.getenv("ORDER_BASE", "http://localhost:8001")
STAFF_ID = os.getenv("STAFF_ID", "e2e-staff")
DEBUG = os.getenv("DEBUG", "0").strip() in {"1", "true", "True", "YES", "yes"}

STAFF_HEADERS = {"X-User-Role": "Staff", "X-User-Id": STAFF_ID}

# Each run uses fresh members so reruns against the same database stay independent.
RUN_ID = uuid.uuid4().hex[:8]
MEMBER = f"e2e-member-{RUN_ID}"
RIVAL = f"e2e-rival-{RUN_ID}"

INITIAL_STOCK = 5


def debug(msg: str):
    if DEBUG:
        print(f"{Style.GRAY}… {msg}{Style.RESET}")


@dataclass
class CheckResult:
    name: str
    success: bool
    details: str = ""


# =========================
# HTTP helpers
# =========================

def http(method: str, path: str, **kwargs) -> requests.Response:
    kwargs.setdefault("timeout", 8)
    url = ORDER_BASE + path
    debug(f"{method} {url} kwargs={kwargs}")
    resp = requests.request(method, url, **kwargs)
    debug(f"→ {resp.status_code} {resp.text}")
    return resp


def wait_for_health(timeout: int = 30) -> bool:
    start = time.time()
    while time.time() - start < timeout:
        try:
            if http("GET", "/").status_code == 200:
                ok("order service is healthy.")
                return True
        except requests.RequestException as e:
            debug(f"order service not ready: {e}")
        time.sleep(1)
    fail(f"order service did not become healthy in {timeout} seconds.")
    return False


def expect(resp: requests.Response, status: int, ctx: str) -> Dict[str, Any]:
    if resp.status_code != status:
        raise AssertionError(f"{ctx}: expected HTTP {status}, got {resp.status_code}, body={resp.text}")
    return resp.json()


def check(name: str, condition: bool, details: str) -> CheckResult:
    (ok if condition else fail)(f"{name}: {details}")
    return CheckResult(name, condition, details)


# =========================
# API calls
# =========================

def register_book(title: str, price: str, stock: int) -> Dict[str, Any]:
    payload = {"title": title, "author": "E2E", "price": price, "inventoryCount": stock}
    return expect(http("POST", "/api/v1/books", json=payload, headers=STAFF_HEADERS), 201, f"register {title}")


def get_book(book_id: int) -> Dict[str, Any]:
    return expect(http("GET", f"/api/v1/books/{book_id}"), 200, f"GET book {book_id}")


def add_to_cart(member_id: str, book_id: int, quantity: int) -> requests.Response:
    payload = {"memberId": member_id, "bookId": book_id, "quantity": quantity}
    return http("POST", "/api/v1/cart/items", json=payload)


def place_order(member_id: str, idempotency_key: Optional[str] = None) -> requests.Response:
    payload = {"memberId": member_id, "idempotencyKey": idempotency_key}
    return http("POST", "/api/v1/orders", json=payload)


def fulfill(claim_code: str) -> requests.Response:
    return http("POST", "/api/v1/orders/fulfill", json={"claimCode": claim_code}, headers=STAFF_HEADERS)


def has_purchased(member_id: str, book_id: int) -> bool:
    params = {"memberId": member_id, "bookId": book_id}
    return expect(http("GET", "/api/v1/purchases/check", params=params), 200, "purchase check")["hasPurchased"]


# =========================
# Scenarios
# =========================

def scenario_pickup() -> List[CheckResult]:
    section_title("Scenario 1 - Cart, Checkout, Pickup")
    results: List[CheckResult] = []

    book = register_book(f"E2E Book {RUN_ID}", "12.00", INITIAL_STOCK)
    info(f"Registered book id={book['id']} with {INITIAL_STOCK} unit(s)")

    expect(add_to_cart(MEMBER, book["id"], 2), 201, "add to cart")
    key = f"e2e-{uuid.uuid4()}"
    order = expect(place_order(MEMBER, key), 201, "place order")
    info(f"Order {order['orderId']} placed, claim code {order['claimCode']}")

    results.append(check(
        "Order total", Decimal(order["totalAmount"]) == Decimal("24.00"), f"total={order['totalAmount']}",
    ))
    retry = expect(place_order(MEMBER, key), 201, "repeat checkout")
    results.append(check(
        "Idempotent checkout", retry["orderId"] == order["orderId"], f"second call returned {retry['orderId']}",
    ))

    stock = get_book(book["id"])
    results.append(check(
        "Stock reserved", stock["inventoryCount"] == INITIAL_STOCK - 2, f"inventoryCount={stock['inventoryCount']}",
    ))
    results.append(check("Not yet purchased", not has_purchased(MEMBER, book["id"]), "pending order"))

    processed = expect(fulfill(order["claimCode"]), 200, "fulfill")
    results.append(check("Order processed", processed["isProcessed"], f"processedBy={processed['processedBy']}"))
    results.append(check("Purchased after pickup", has_purchased(MEMBER, book["id"]), "processed order"))

    again = fulfill(order["claimCode"])
    results.append(check(
        "Second pickup rejected", again.status_code == 409, f"HTTP {again.status_code} {again.json().get('error')}",
    ))
    return results


def scenario_last_unit() -> List[CheckResult]:
    section_title("Scenario 2 - Last Unit")
    results: List[CheckResult] = []

    book = register_book(f"E2E Rare {RUN_ID}", "30.00", 1)
    expect(add_to_cart(MEMBER, book["id"], 1), 201, "member cart")
    expect(add_to_cart(RIVAL, book["id"], 1), 201, "rival cart")

    first = place_order(MEMBER)
    second = place_order(RIVAL)
    results.append(check("First buyer wins", first.status_code == 201, f"HTTP {first.status_code}"))
    results.append(check(
        "Second buyer refused",
        second.status_code == 409 and second.json().get("error") == "InsufficientStock",
        f"HTTP {second.status_code} {second.text}",
    ))

    stock = get_book(book["id"])
    results.append(check(
        "Stock never negative", stock["inventoryCount"] == 0 and stock["totalSold"] == 1,
        f"inventoryCount={stock['inventoryCount']} totalSold={stock['totalSold']}",
    ))
    return results


def scenario_cancel() -> List[CheckResult]:
    section_title("Scenario 3 - Cancel Before Pickup")
    results: List[CheckResult] = []

    book = register_book(f"E2E Cancel {RUN_ID}", "8.00", INITIAL_STOCK)
    expect(add_to_cart(MEMBER, book["id"], 1), 201, "add to cart")
    order = expect(place_order(MEMBER), 201, "place order")

    resp = http("POST", f"/api/v1/orders/{order['orderId']}/cancel", json={"memberId": MEMBER})
    results.append(check("Cancelled", resp.status_code == 200, f"HTTP {resp.status_code}"))

    late = fulfill(order["claimCode"])
    results.append(check(
        "Cancelled order cannot be picked up",
        late.status_code == 409 and late.json().get("error") == "AlreadyCancelled",
        f"HTTP {late.status_code} {late.text}",
    ))
    results.append(check("Not purchased", not has_purchased(MEMBER, book["id"]), "cancelled order"))
    return results


def print_results(results: List[CheckResult]):
    passed = sum(1 for r in results if r.success)
    failed = len(results) - passed
    print(f"\n{Style.BOLD}================ RESULTS ================{Style.RESET}")
    for r in results:
        color = Style.GREEN if r.success else Style.RED
        print(f"{color}{'✅' if r.success else '❌'} {r.name}{Style.RESET}")
        if r.details:
            print(f"    {Style.DIM}{r.details}{Style.RESET}")
    print(f"Total: {len(results)}  |  Passed: {Style.GREEN}{passed}{Style.RESET}  |  Failed: {Style.RED}{failed}{Style.RESET}")
    if failed:
        print(f"{Style.YELLOW}- Check logs: docker compose logs -f order_service{Style.RESET}")


def main():
    info(f"Target {ORDER_BASE}, run id {RUN_ID}")
    if not wait_for_health():
        sys.exit(1)

    results: List[CheckResult] = []
    for scenario in (scenario_pickup, scenario_last_unit, scenario_cancel):
        try:
            results.extend(scenario())
        except AssertionError as e:
            results.append(check(scenario.__name__, False, str(e)))

    print_results(results)
    sys.exit(0 if all(r.success for r in results) else 1)


if __name__ == "__main__":
    main()
