"""Test doubles: an in-memory StoreClient with switchable failures, and a store database factory."""
import asyncio
import itertools
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from viyaabhaaram.billing_service.app.errors import AuthFailure, DuplicateAccountError, RemoteCallFailure
from viyaabhaaram.billing_service.app.schemas import Account, Item, StockLevel, Transaction
from viyaabhaaram.store_service.app.models import Base


class FakeStoreClient:
    def __init__(self):
        self.accounts = {}  # email -> (Account, password)
        self.items = {}
        self.transactions = []
        self._ids = itertools.count(1)
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.calls = []
        self.fail_transactions = False
        self.fail_list_items = False
        self.fail_decrements = set()  # item ids whose decrement fails
        self.lose_responses = set()  # item ids whose next decrement lands but raises
        self.applied = {}  # stock change key -> shortfall

    def _now(self):
        self._clock += timedelta(seconds=1)
        return self._clock

    async def _remote(self, name, fail=False):
        self.calls.append(name)
        await asyncio.sleep(0)
        if fail:
            raise RemoteCallFailure(f"{name} failed", status_code=503)

    # --- seeding helpers ---

    def seed_account(self, email="shop@example.com", mobile="9000000000", password="secret", name="Kadai"):
        account = Account(id=next(self._ids), business_name=name, email=email, mobile=mobile)
        self.accounts[email] = (account, password)
        return account

    def seed_item(self, owner="shop@example.com", name="Rice", price="100", stock=5):
        item = Item(
            id=next(self._ids), user_email=owner, name=name, price=Decimal(price),
            stock=stock, category="General", created_at=self._now(),
        )
        self.items[item.id] = item
        return item

    # --- StoreClient interface ---

    async def lookup_account(self, email=None, mobile=None):
        await self._remote("lookup_account")
        for account, _ in self.accounts.values():
            if account.email == email or account.mobile == mobile:
                return account
        return None

    async def create_account(self, business_name, email, mobile, password):
        await self._remote("create_account")
        if await self.lookup_account(email=email, mobile=mobile):
            raise DuplicateAccountError("User already exists")
        return self.seed_account(email=email, mobile=mobile, password=password, name=business_name)

    async def authenticate(self, credential, password):
        await self._remote("authenticate")
        for account, stored in self.accounts.values():
            if credential in (account.email, account.mobile) and stored == password:
                return account
        raise AuthFailure("Invalid Credentials")

    async def update_password(self, email, old_password, new_password):
        await self._remote("update_password")
        account, stored = self.accounts.get(email, (None, None))
        if account is None or stored != old_password:
            raise AuthFailure("Invalid Credentials")
        self.accounts[email] = (account, new_password)

    async def list_items(self, owner):
        await self._remote("list_items", self.fail_list_items)
        owned = [i for i in self.items.values() if i.user_email == owner]
        return sorted(owned, key=lambda i: (i.created_at, i.id), reverse=True)

    async def create_item(self, payload):
        await self._remote("create_item")
        item = Item(id=next(self._ids), created_at=self._now(), **payload)
        self.items[item.id] = item
        return item

    async def update_item(self, item_id, fields):
        await self._remote("update_item")
        if item_id not in self.items:
            raise RemoteCallFailure("Item not found", status_code=404)
        self.items[item_id] = self.items[item_id].model_copy(update=fields)
        return self.items[item_id]

    def _change_stock(self, item_id, delta, key):
        if item_id not in self.items:
            raise RemoteCallFailure("Item not found", status_code=404)
        item = self.items[item_id]
        if key in self.applied:
            return StockLevel(id=item_id, stock=item.stock, shortfall=self.applied[key])
        shortfall = max(0, -delta - item.stock)
        self.items[item_id] = item.model_copy(update={"stock": max(0, item.stock + delta)})
        if key:
            self.applied[key] = shortfall
        return StockLevel(id=item_id, stock=self.items[item_id].stock, shortfall=shortfall)

    async def decrement_stock(self, item_id, quantity, key=None):
        await self._remote("decrement_stock", item_id in self.fail_decrements)
        level = self._change_stock(item_id, -quantity, key)
        if item_id in self.lose_responses:
            # Applied on the store, but the caller never hears back.
            self.lose_responses.discard(item_id)
            raise RemoteCallFailure("decrement_stock: Read timed out")
        return level

    async def increment_stock(self, item_id, quantity, key=None):
        await self._remote("increment_stock")
        return self._change_stock(item_id, quantity, key)

    async def delete_item(self, item_id):
        await self._remote("delete_item")
        if self.items.pop(item_id, None) is None:
            raise RemoteCallFailure("Item not found", status_code=404)

    async def list_transactions(self, owner):
        await self._remote("list_transactions")
        owned = [t for t in self.transactions if t.user_email == owner]
        return sorted(owned, key=lambda t: (t.date, t.id), reverse=True)

    async def create_transaction(self, payload):
        await self._remote("create_transaction", self.fail_transactions)
        tx = Transaction(id=next(self._ids), **payload)
        self.transactions.append(tx)
        return tx


class FakePublisher:
    def __init__(self, fail=False):
        self.fail = fail
        self.events = []

    def publish_event(self, event_data, routing_key="sale.recorded"):
        if self.fail:
            raise RemoteCallFailure("RabbitMQ unreachable")
        self.events.append((routing_key, event_data))


def make_session_factory():
    """A fresh in-memory store database shared across sessions."""
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
