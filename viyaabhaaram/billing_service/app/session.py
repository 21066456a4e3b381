import logging
from dataclasses import dataclass
from decimal import Decimal

from .cart import Cart
from .catalog import CatalogStore
from .errors import AuthFailure
from .history import TransactionHistory
from .reconciliation import PendingStockLog
from .schemas import Account

logger = logging.getLogger(__name__)


@dataclass
class DashboardSummary:
    stock_value: Decimal
    total_sales: Decimal
    item_count: int
    pending_stock_updates: int


class SessionContext:
    """
    Everything one logged-in operator works with.

    Created on successful login or registration, torn down on logout. The
    billing and catalog operations take this object explicitly.
    """

    def __init__(self, client, account: Account):
        self.client = client
        self.account = account
        self.cart = Cart()
        self.catalog = CatalogStore(client, account.email)
        self.history = TransactionHistory(client, account.email)
        self.pending = PendingStockLog()
        self.active = True

    @property
    def owner(self) -> str:
        return self.account.email

    async def open(self) -> "SessionContext":
        """Loads the catalog and the transaction history for the account."""
        await self.catalog.load()
        await self.history.load()
        logger.info(
            "Session opened for %s: %d items, %d transactions",
            self.owner, len(self.catalog.items), len(self.history.transactions),
        )
        return self

    def ensure_active(self) -> None:
        if not self.active:
            raise AuthFailure("No active session; log in again")

    def close(self) -> None:
        if self.pending:
            logger.warning(
                "Session for %s closed with %d stock updates still pending",
                self.owner, len(self.pending),
            )
        self.cart.clear()
        self.active = False

    def summary(self) -> DashboardSummary:
        return DashboardSummary(
            stock_value=self.catalog.total_value(),
            total_sales=self.history.total("SALE"),
            item_count=len(self.catalog.items),
            pending_stock_updates=len(self.pending),
        )
