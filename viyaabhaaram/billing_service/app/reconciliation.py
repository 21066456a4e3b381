import logging
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


def stock_key(transaction_id: int, item_id: int) -> str:
    """Idempotency key of the stock change a transaction owes one item."""
    return f"tx-{transaction_id}-item-{item_id}"


# A stock decrement that was owed by a recorded sale but did not complete.
@dataclass
class PendingStockUpdate:
    transaction_id: int
    item_id: int
    name: str
    quantity: int
    error: str = ""
    attempts: int = 1

    @property
    def key(self) -> str:
        return stock_key(self.transaction_id, self.item_id)

    def to_event(self, user_email: str) -> dict:
        event = asdict(self)
        event["user_email"] = user_email
        event["key"] = self.key
        return event


class PendingStockLog:
    """
    Compensation log for partially reconciled sales.

    Keyed by (transaction id, item id) so a line is never owed twice.
    """

    def __init__(self):
        self._entries: Dict[Tuple[int, int], PendingStockUpdate] = {}

    def add(self, entry: PendingStockUpdate) -> PendingStockUpdate:
        key = (entry.transaction_id, entry.item_id)
        existing = self._entries.get(key)
        if existing:
            existing.attempts += 1
            existing.error = entry.error
            return existing
        self._entries[key] = entry
        logger.warning(
            "Transaction %s: stock update for item %s (%s x%s) pending: %s",
            entry.transaction_id, entry.item_id, entry.name, entry.quantity, entry.error,
        )
        return entry

    def resolve(self, transaction_id: int, item_id: int) -> Optional[PendingStockUpdate]:
        return self._entries.pop((transaction_id, item_id), None)

    def entries(self) -> List[PendingStockUpdate]:
        return list(self._entries.values())

    def __len__(self):
        return len(self._entries)

    def __bool__(self):
        return bool(self._entries)
