import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

from . import config
from .errors import ValidationError
from .schemas import Item

logger = logging.getLogger(__name__)


@dataclass
class StockDiscrepancy:
    item_id: int
    name: str
    local_stock: Optional[int]
    store_stock: Optional[int]


def parse_price(value) -> Decimal:
    if isinstance(value, float):
        value = repr(value)
    try:
        price = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Price must be a number, got {value!r}")
    if not price.is_finite() or price < 0:
        raise ValidationError(f"Price must be a non-negative number, got {value!r}")
    return price.quantize(Decimal("0.01"))


def parse_stock(value) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"Stock must be a whole number, got {value!r}")
    try:
        stock = int(str(value).strip())
    except ValueError:
        raise ValidationError(f"Stock must be a whole number, got {value!r}")
    if stock < 0:
        raise ValidationError(f"Stock cannot be negative, got {stock}")
    return stock


class CatalogStore:
    """
    The merchant's items, as last read from the store.

    Items are kept newest first, the order the store returns them in, and new
    items are prepended. After a checkout the whole list is re-fetched; only
    when that fails are the stock levels returned by the store patched in
    locally, and the catalog is flagged stale until the next refresh.
    """

    def __init__(self, client, owner: str):
        self.client = client
        self.owner = owner
        self.items: List[Item] = []
        self.stale = False

    async def load(self) -> List[Item]:
        self.items = await self.client.list_items(self.owner)
        self.stale = False
        return self.items

    async def refresh(self) -> List[StockDiscrepancy]:
        """
        Re-reads the catalog; the store always wins.

        Any item whose locally known stock disagrees with the store is logged
        and returned so it can be investigated.
        """
        fresh = await self.client.list_items(self.owner)
        known: Dict[int, Item] = {item.id: item for item in self.items}
        discrepancies = []
        for item in fresh:
            local = known.pop(item.id, None)
            if local is not None and local.stock != item.stock:
                discrepancies.append(StockDiscrepancy(item.id, item.name, local.stock, item.stock))
        for gone in known.values():
            discrepancies.append(StockDiscrepancy(gone.id, gone.name, gone.stock, None))

        for d in discrepancies:
            logger.warning(
                "Catalog discrepancy for item %s (%s): local stock %s, store stock %s",
                d.item_id, d.name, d.local_stock, d.store_stock,
            )
        self.items = fresh
        self.stale = False
        return discrepancies

    def get(self, item_id: int) -> Optional[Item]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def search(self, term: str) -> List[Item]:
        term = (term or "").strip().lower()
        if not term:
            return list(self.items)
        return [item for item in self.items if term in item.name.lower()]

    def total_value(self) -> Decimal:
        return sum((item.price * item.stock for item in self.items), Decimal("0"))

    async def add_item(
        self,
        name,
        price,
        stock,
        category=config.DEFAULT_CATEGORY,
        image=None,
        sizes=None,
        colors=None,
        description=None,
    ) -> Item:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Item name is required")
        payload = {
            "user_email": self.owner,
            "name": name,
            "price": str(parse_price(price)),
            "stock": parse_stock(stock),
            "category": category or config.DEFAULT_CATEGORY,
            "image": image,
            "sizes": sizes,
            "colors": colors,
            "description": description,
        }

        item = await self.client.create_item(payload)
        self.items.insert(0, item)
        logger.info("Item %s (%s) added to catalog of %s", item.id, item.name, self.owner)
        return item

    async def delete_item(self, item_id: int) -> None:
        await self.client.delete_item(item_id)
        self.items = [item for item in self.items if item.id != item_id]

    def replace(self, fresh: Item) -> None:
        """Swaps in a record the store just returned, keeping its position."""
        for i, item in enumerate(self.items):
            if item.id == fresh.id:
                self.items[i] = fresh
                return
        self.items.insert(0, fresh)

    def apply_stock(self, item_id: int, stock: int) -> None:
        """Patches one item's stock locally and marks the catalog stale."""
        for i, item in enumerate(self.items):
            if item.id == item_id:
                self.items[i] = item.model_copy(update={"stock": stock})
                self.stale = True
                return
