#!/usr/bin/env python3
"""
End-to-end checkout run against a live store service.

Run:
  uvicorn viyaabhaaram.store_service.app.main:app --port 8000
  python e2e_checkout.py

Optional env:
  STORE_BASE=http://localhost:8000
  TIMEOUT_SECONDS=30
  DEBUG=1
"""

from __future__ import annotations

import asyncio
import os
import sys
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List

import requests

from viyaabhaaram.billing_service.app import accounts
from viyaabhaaram.billing_service.app.checkout import CheckoutService
from viyaabhaaram.billing_service.app.errors import StockExceeded
from viyaabhaaram.billing_service.app.store_client import StoreClient
from viyaabhaaram.logger import setup_logger


# =========================
# Simple CLI UI (ANSI)
# =========================

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
    line = "─" * (len(text) + 2)
    print(f"\n{Style.BLUE}┌{line}┐{Style.RESET}")
    print(f"{Style.BLUE}│ {Style.BOLD}{text}{Style.RESET}{Style.BLUE} │{Style.RESET}")
    print(f"{Style.BLUE}└{line}┘{Style.RESET}")


def info(msg: str):
    print(f"{Style.CYAN}ℹ {msg}{Style.RESET}")


def ok(msg: str):
    print(f"{Style.GREEN}✔ {msg}{Style.RESET}")


def fail(msg: str):
    print(f"{Style.RED}✘ {msg}{Style.RESET}")


# =========================
# Config
# =========================

STORE_BASE = os.getenv("STORE_BASE", "http://localhost:8000")
TIMEOUT_SECONDS = int(os.getenv("TIMEOUT_SECONDS", "30"))
DEBUG = os.getenv("DEBUG", "0").strip() in {"1", "true", "True", "YES", "yes"}


@dataclass
class TestResult:
    name: str
    success: bool
    details: str = ""


def check(name: str, success: bool, details: str) -> TestResult:
    (ok if success else fail)(f"{name}: {details}")
    return TestResult(name, success, details)


def wait_for_health(timeout: int = TIMEOUT_SECONDS) -> bool:
    url = f"{STORE_BASE}/health"
    start = time.time()
    while time.time() - start < timeout:
        try:
            if requests.get(url, timeout=5).status_code == 200:
                ok("store_service is healthy.")
                return True
        except requests.exceptions.RequestException as e:
            if DEBUG:
                print(f"{Style.GRAY}… store not ready: {e}{Style.RESET}")
        time.sleep(1)
    fail(f"store_service did not become healthy in {timeout} seconds.")
    return False


def store_stock(owner: str) -> Dict[str, Any]:
    resp = requests.get(f"{STORE_BASE}/api/v1/items", params={"owner": owner}, timeout=8)
    resp.raise_for_status()
    return {row["name"]: row["stock"] for row in resp.json()}


# =========================
# Scenarios
# =========================

async def scenario_sale() -> List[TestResult]:
    section_title("Scenario 1 - Sale decrements stock")
    results: List[TestResult] = []
    tag = uuid.uuid4().hex[:8]
    client = StoreClient(base_url=STORE_BASE)

    session = await accounts.register(client, f"E2E {tag}", f"e2e-{tag}@example.com", f"9{tag}", "pw")
    info(f"Registered {session.owner}")
    rice = await session.catalog.add_item("Rice", "100", "5")
    oil = await session.catalog.add_item("Oil", "50", "1")

    for _ in range(4):
        session.cart.add_line(rice)
    session.cart.add_line(oil)
    try:
        session.cart.add_line(oil)
        results.append(check("Stock limit", False, "second Oil was accepted"))
    except StockExceeded:
        results.append(check("Stock limit", True, "second Oil rejected"))

    result = await CheckoutService().checkout(session)
    results.append(check("Amount", result.amount == Decimal("450"), f"amount={result.amount}"))
    results.append(check("Reconciled", result.reconciled, f"pending={result.pending}"))

    stock = store_stock(session.owner)
    results.append(check("Store stock", stock == {"Rice": 1, "Oil": 0}, f"stock={stock}"))
    results.append(check("Cart cleared", session.cart.is_empty(), f"lines={len(session.cart)}"))

    again = await accounts.login(client, session.account.mobile, "pw")
    latest = again.history.transactions[0]
    results.append(check("History", latest.id == result.transaction.id, f"latest={latest.id}"))
    return results


async def scenario_floor() -> List[TestResult]:
    section_title("Scenario 2 - Decrement floors at zero")
    tag = uuid.uuid4().hex[:8]
    client = StoreClient(base_url=STORE_BASE)
    session = await accounts.register(client, f"E2E {tag}", f"e2e-{tag}@example.com", f"8{tag}", "pw")
    item = await session.catalog.add_item("Salt", "20", "2")

    level = await client.decrement_stock(item.id, 5)
    return [check("Floor", (level.stock, level.shortfall) == (0, 3), f"level={level}")]


def print_results(results: List[TestResult]):
    passed = sum(1 for r in results if r.success)
    print(f"\n{Style.BOLD}================ TEST RESULTS ================{Style.RESET}")
    for r in results:
        color = Style.GREEN if r.success else Style.RED
        print(f"{color}{'✅' if r.success else '❌'} {r.name}{Style.RESET}")
        if r.details:
            print(f"    {Style.DIM}{r.details}{Style.RESET}")
    print(f"Total: {len(results)}  |  Passed: {Style.GREEN}{passed}{Style.RESET}"
          f"  |  Failed: {Style.RED}{len(results) - passed}{Style.RESET}")


async def run() -> List[TestResult]:
    results: List[TestResult] = []
    results.extend(await scenario_sale())
    results.extend(await scenario_floor())
    return results


def main():
    setup_logger(level="DEBUG" if DEBUG else None)
    info("Waiting for the store service to become healthy...")
    if not wait_for_health():
        sys.exit(1)
    results = asyncio.run(run())
    print_results(results)
    if not all(r.success for r in results):
        sys.exit(1)


if __name__ == "__main__":
    main()
