from decimal import Decimal
from typing import List

from .schemas import Transaction


class TransactionHistory:
    """A merchant's transactions, latest first."""

    def __init__(self, client, owner: str):
        self.client = client
        self.owner = owner
        self.transactions: List[Transaction] = []

    async def load(self) -> List[Transaction]:
        self.transactions = await self.client.list_transactions(self.owner)
        return self.transactions

    def record(self, tx: Transaction) -> None:
        self.transactions.insert(0, tx)

    def total(self, type_: str = "SALE") -> Decimal:
        return sum((tx.amount for tx in self.transactions if tx.type == type_), Decimal("0"))
