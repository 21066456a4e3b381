import logging

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .models import Item, StockAdjustment

logger = logging.getLogger(__name__)


def _applied(db: Session, key):
    if not key:
        return None
    return db.query(StockAdjustment).filter(StockAdjustment.key == key).first()


def _take_locked(db: Session, item_id: int, quantity: int):
    """Locks the row and takes at most what it holds. Returns (item, shortfall)."""
    item = db.query(Item).filter(Item.id == item_id).with_for_update().first()
    if item is None:
        return None, 0
    # The row may have been restocked since the conditional UPDATE missed.
    taken = min(quantity, item.stock)
    item.stock -= taken
    return item, quantity - taken


def _commit(db: Session, key, item_id: int, delta: int, shortfall: int = 0) -> bool:
    """Commits the stock change and its key together. False when the key won a race elsewhere."""
    if key:
        db.add(StockAdjustment(key=key, item_id=item_id, delta=delta, shortfall=shortfall))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return False
    return True


def apply_decrement(db: Session, item_id: int, quantity: int, key=None):
    """
    Takes `quantity` units off an item's stock without letting it go below zero.

    The common case is a single conditional UPDATE, so two sales racing on the
    same row can never both read the same starting stock. Only when the row
    does not hold enough stock is it locked and floored at zero.

    A `key` makes the call idempotent: a key that was already applied returns
    the item's current level and the shortfall recorded the first time, and
    the stock is left alone.

    Returns (item, shortfall) or (None, 0) when the item does not exist.
    """
    done = _applied(db, key)
    if done:
        logger.info("Stock change %s already applied to item %s", key, done.item_id)
        return db.get(Item, item_id), done.shortfall

    result = db.execute(
        update(Item)
        .where(Item.id == item_id, Item.stock >= quantity)
        .values(stock=Item.stock - quantity)
    )
    shortfall = 0
    if result.rowcount != 1:
        item, shortfall = _take_locked(db, item_id, quantity)
        if item is None:
            db.rollback()
            return None, 0

    if not _commit(db, key, item_id, -quantity, shortfall):
        return apply_decrement(db, item_id, quantity, key)
    return db.get(Item, item_id), shortfall


def apply_increment(db: Session, item_id: int, quantity: int, key=None):
    """
    Adds `quantity` units to the stock held by the row right now.

    Same `key` semantics as apply_decrement. Returns the item, or None when it
    does not exist.
    """
    if _applied(db, key):
        logger.info("Stock change %s already applied to item %s", key, item_id)
        return db.get(Item, item_id)

    result = db.execute(
        update(Item).where(Item.id == item_id).values(stock=Item.stock + quantity)
    )
    if result.rowcount != 1:
        db.rollback()
        return None

    if not _commit(db, key, item_id, quantity):
        return apply_increment(db, item_id, quantity, key)
    return db.get(Item, item_id)
