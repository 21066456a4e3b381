import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from .catalog import StockDiscrepancy, parse_stock
from .errors import RemoteCallFailure, ValidationError
from .reconciliation import PendingStockUpdate, stock_key
from .schemas import LineSnapshot, Transaction

logger = logging.getLogger(__name__)


@dataclass
class StockOutcome:
    stock_levels: Dict[int, int] = field(default_factory=dict)  # item id -> stock after the sale
    shortfalls: Dict[int, int] = field(default_factory=dict)
    pending: List[PendingStockUpdate] = field(default_factory=list)


@dataclass
class CheckoutResult:
    transaction: Transaction
    stock_levels: Dict[int, int]
    shortfalls: Dict[int, int]
    pending: List[PendingStockUpdate]
    handed_off: List[PendingStockUpdate] = field(default_factory=list)
    discrepancies: List[StockDiscrepancy] = field(default_factory=list)

    @property
    def amount(self) -> Decimal:
        return self.transaction.amount

    @property
    def reconciled(self) -> bool:
        """True when every line's stock was taken off by this checkout."""
        return not self.pending and not self.handed_off


@dataclass
class ReconciliationReport:
    resolved: List[PendingStockUpdate]
    still_pending: List[PendingStockUpdate]


class CheckoutService:
    """
    Turns a session's cart into a recorded sale and takes the sold stock off.

    The transaction write is the durability boundary. If it fails nothing else
    happens and the cart is kept for a retry. Once it succeeds the sale stands:
    the cart is cleared, each line's stock is decremented on the store (all
    lines concurrently, each one atomic and floored at zero), and every line
    whose decrement failed is kept in the session's pending log and returned
    in the result. With a publisher, pending lines are handed to the store's
    reconciliation consumer instead.
    """

    def __init__(self, publisher=None):
        self.publisher = publisher

    async def checkout(self, session) -> Optional[CheckoutResult]:
        session.ensure_active()
        cart = session.cart
        if cart.is_empty():
            return None

        amount = cart.total()
        lines = cart.snapshot()
        payload = {
            "user_email": session.owner,
            "type": "SALE",
            "amount": str(amount),
            "items_data": [line.model_dump(mode="json") for line in lines],
            "date": datetime.now(timezone.utc).isoformat(),
        }

        # 1. Record the sale. A failure here leaves stock and cart untouched.
        tx = await session.client.create_transaction(payload)
        session.history.record(tx)
        logger.info("Sale %s recorded for %s: %s over %d lines", tx.id, session.owner, tx.amount, len(lines))

        # 2. Take the stock off. Runs to completion even if the caller goes away.
        try:
            outcome = await asyncio.shield(self._reconcile_stock(session, tx, lines))
        finally:
            # The sale is recorded; the same cart must never be sold twice.
            cart.clear()

        # 3. Bring the catalog in line with the store.
        for item_id, stock in outcome.stock_levels.items():
            session.catalog.apply_stock(item_id, stock)
        discrepancies = []
        try:
            discrepancies = await session.catalog.refresh()
        except RemoteCallFailure as e:
            logger.warning("Catalog refresh after sale %s failed, keeping local stock levels: %s", tx.id, e)

        handed_off = await self._hand_off(session, outcome.pending)
        await self._publish("sale.recorded", {
            "transaction_id": tx.id,
            "user_email": session.owner,
            "amount": str(tx.amount),
            "lines": payload["items_data"],
            "pending_items": [p.item_id for p in outcome.pending if p not in handed_off],
        })

        return CheckoutResult(
            transaction=tx,
            stock_levels=outcome.stock_levels,
            shortfalls=outcome.shortfalls,
            pending=[p for p in outcome.pending if p not in handed_off],
            handed_off=handed_off,
            discrepancies=discrepancies,
        )

    async def _reconcile_stock(self, session, tx: Transaction, lines: List[LineSnapshot]) -> StockOutcome:
        results = await asyncio.gather(
            *(
                session.client.decrement_stock(line.item_id, line.qty, key=stock_key(tx.id, line.item_id))
                for line in lines
            ),
            return_exceptions=True,
        )

        outcome = StockOutcome()
        unexpected = None
        for line, result in zip(lines, results):
            if isinstance(result, RemoteCallFailure):
                outcome.pending.append(session.pending.add(PendingStockUpdate(
                    transaction_id=tx.id,
                    item_id=line.item_id,
                    name=line.name,
                    quantity=line.qty,
                    error=str(result),
                )))
            elif isinstance(result, BaseException):
                unexpected = unexpected or result
            else:
                outcome.stock_levels[line.item_id] = result.stock
                if result.shortfall:
                    outcome.shortfalls[line.item_id] = result.shortfall
                    logger.warning(
                        "Sale %s: item %s (%s) was %d units short; stock floored at zero",
                        tx.id, line.item_id, line.name, result.shortfall,
                    )

        if outcome.pending:
            logger.warning(
                "Sale %s partially reconciled: %d of %d stock updates failed",
                tx.id, len(outcome.pending), len(lines),
            )
        if unexpected is not None:
            raise unexpected
        return outcome

    async def _hand_off(self, session, pending: List[PendingStockUpdate]) -> List[PendingStockUpdate]:
        if self.publisher is None:
            return []
        handed_off = []
        for entry in pending:
            if await self._publish("stock.pending", entry.to_event(session.owner)):
                session.pending.resolve(entry.transaction_id, entry.item_id)
                handed_off.append(entry)
        return handed_off

    async def _publish(self, routing_key: str, event: dict) -> bool:
        if self.publisher is None:
            return False
        try:
            await asyncio.to_thread(self.publisher.publish_event, event, routing_key)
        except RemoteCallFailure as e:
            logger.warning("Could not publish %r: %s", routing_key, e)
            return False
        return True

    async def retry_pending(self, session) -> ReconciliationReport:
        """
        Re-issues every pending stock decrement of the session.

        Each decrement carries the key of its sale line, so a line whose first
        attempt reached the store but lost its response is not taken twice.
        """
        session.ensure_active()
        resolved, still_pending = [], []
        for entry in session.pending.entries():
            try:
                level = await session.client.decrement_stock(entry.item_id, entry.quantity, key=entry.key)
            except RemoteCallFailure as e:
                session.pending.add(PendingStockUpdate(
                    transaction_id=entry.transaction_id,
                    item_id=entry.item_id,
                    name=entry.name,
                    quantity=entry.quantity,
                    error=str(e),
                ))
                still_pending.append(entry)
                continue

            session.pending.resolve(entry.transaction_id, entry.item_id)
            session.catalog.apply_stock(entry.item_id, level.stock)
            if level.shortfall:
                logger.warning(
                    "Pending update for sale %s: item %s was %d units short",
                    entry.transaction_id, entry.item_id, level.shortfall,
                )
            logger.info("Pending update for sale %s, item %s applied", entry.transaction_id, entry.item_id)
            resolved.append(entry)

        return ReconciliationReport(resolved=resolved, still_pending=still_pending)

    async def record_purchase(self, session, item_id: int, quantity) -> Transaction:
        """
        Restocks an item: records a PURCHASE, then adds the quantity on the store.

        The store adds to the level it holds at that moment, so a decrement
        applied elsewhere (by the reconciliation consumer, say) is never
        overwritten by a stale local value. The purchase is recorded first; if
        the stock change then fails the RemoteCallFailure is raised with the
        transaction already in history.
        """
        session.ensure_active()
        quantity = parse_stock(quantity)
        if quantity < 1:
            raise ValidationError("Purchase quantity must be at least 1")
        item = session.catalog.get(item_id)
        if item is None:
            raise ValidationError(f"Item {item_id} is not in the catalog")

        line = LineSnapshot(item_id=item.id, name=item.name, price=item.price, qty=quantity)
        tx = await session.client.create_transaction({
            "user_email": session.owner,
            "type": "PURCHASE",
            "amount": str(line.extension),
            "items_data": [line.model_dump(mode="json")],
            "date": datetime.now(timezone.utc).isoformat(),
        })
        session.history.record(tx)

        try:
            level = await session.client.increment_stock(item.id, quantity, key=stock_key(tx.id, item.id))
        except RemoteCallFailure:
            logger.warning("Purchase %s recorded but stock of item %s was not updated", tx.id, item.id)
            raise
        session.catalog.replace(item.model_copy(update={"stock": level.stock}))
        return tx
