from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from .errors import StockExceeded
from .schemas import Item, LineSnapshot


# Cart line: an item as it was known when selected, and how many to sell.
@dataclass
class CartLine:
    item: Item
    qty: int = 1

    @property
    def extension(self) -> Decimal:
        return self.item.price * self.qty

    def snapshot(self) -> LineSnapshot:
        return LineSnapshot(item_id=self.item.id, name=self.item.name, price=self.item.price, qty=self.qty)


class Cart:
    """
    In-memory billing accumulator. One line per item id.

    A line never holds more than the item's stock as known when the item was
    added; later changes to the store's stock are not re-checked here.
    """

    def __init__(self):
        self.lines: List[CartLine] = []

    def find(self, item_id: int) -> Optional[CartLine]:
        for line in self.lines:
            if line.item.id == item_id:
                return line
        return None

    def add_line(self, item: Item) -> CartLine:
        line = self.find(item.id)
        if line is None:
            if item.stock < 1:
                raise StockExceeded(item, 1)
            line = CartLine(item, 1)
            self.lines.append(line)
            return line

        if line.qty >= item.stock:
            raise StockExceeded(item, line.qty + 1)
        line.qty += 1
        return line

    def clear(self) -> None:
        self.lines.clear()

    def total(self) -> Decimal:
        return sum((line.extension for line in self.lines), Decimal("0"))

    def snapshot(self) -> List[LineSnapshot]:
        return [line.snapshot() for line in self.lines]

    def is_empty(self) -> bool:
        return not self.lines

    def __len__(self):
        return len(self.lines)
