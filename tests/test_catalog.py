import unittest
from decimal import Decimal

from viyaabhaaram.billing_service.app.catalog import CatalogStore, parse_price, parse_stock
from viyaabhaaram.billing_service.app.errors import RemoteCallFailure, ValidationError

from tests.fakes import FakeStoreClient

OWNER = "shop@example.com"


class CatalogTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.store = FakeStoreClient()
        self.first = self.store.seed_item(name="Rice", price="60", stock=10)
        self.second = self.store.seed_item(name="Sugar", price="45.50", stock=2)
        self.store.seed_item(owner="other@example.com", name="Salt", price="20", stock=7)
        self.catalog = CatalogStore(self.store, OWNER)
        await self.catalog.load()

    async def test_load_returns_only_owner_items_newest_first(self):
        self.assertEqual([i.name for i in self.catalog.items], ["Sugar", "Rice"])

    async def test_add_item_is_prepended_with_store_identity(self):
        item = await self.catalog.add_item("  Dal ", "120.5", "8", sizes="1kg")
        self.assertIs(self.catalog.items[0], item)
        self.assertEqual(item.name, "Dal")
        self.assertEqual(item.price, Decimal("120.50"))
        self.assertEqual(item.stock, 8)
        self.assertEqual(item.category, "General")
        self.assertIsNotNone(item.created_at)

    async def test_invalid_items_are_rejected_without_remote_call(self):
        for name, price, stock in [("", "10", "1"), ("Tea", "abc", "1"), ("Tea", "-1", "1"),
                                   ("Tea", "10", "1.5"), ("Tea", "10", "-2"), ("Tea", "NaN", "1")]:
            with self.assertRaises(ValidationError):
                await self.catalog.add_item(name, price, stock)
        self.assertNotIn("create_item", self.store.calls)

    async def test_delete_item_removes_locally_after_store(self):
        await self.catalog.delete_item(self.first.id)
        self.assertIsNone(self.catalog.get(self.first.id))
        self.assertNotIn(self.first.id, self.store.items)

    async def test_failed_delete_keeps_item(self):
        with self.assertRaises(RemoteCallFailure):
            await self.catalog.delete_item(9999)
        self.assertEqual(len(self.catalog.items), 2)

    async def test_refresh_resolves_discrepancy_in_favour_of_store(self):
        self.catalog.apply_stock(self.first.id, 7)
        self.assertTrue(self.catalog.stale)
        self.store.items[self.first.id] = self.first.model_copy(update={"stock": 4})

        discrepancies = await self.catalog.refresh()

        self.assertEqual(len(discrepancies), 1)
        self.assertEqual((discrepancies[0].local_stock, discrepancies[0].store_stock), (7, 4))
        self.assertEqual(self.catalog.get(self.first.id).stock, 4)
        self.assertFalse(self.catalog.stale)

    async def test_refresh_reports_items_gone_from_store(self):
        del self.store.items[self.second.id]
        discrepancies = await self.catalog.refresh()
        self.assertEqual([(d.item_id, d.store_stock) for d in discrepancies], [(self.second.id, None)])

    async def test_failed_refresh_leaves_catalog_untouched(self):
        self.store.fail_list_items = True
        with self.assertRaises(RemoteCallFailure):
            await self.catalog.refresh()
        self.assertEqual(len(self.catalog.items), 2)

    async def test_search_and_total_value(self):
        self.assertEqual([i.name for i in self.catalog.search("su")], ["Sugar"])
        self.assertEqual(len(self.catalog.search("")), 2)
        self.assertEqual(self.catalog.total_value(), Decimal("691.00"))


class ParsingTests(unittest.TestCase):
    def test_parse_price(self):
        self.assertEqual(parse_price("12"), Decimal("12.00"))
        self.assertEqual(parse_price(0.1), Decimal("0.10"))
        self.assertEqual(parse_price(Decimal("3.456")), Decimal("3.46"))

    def test_parse_stock(self):
        self.assertEqual(parse_stock(" 7 "), 7)
        with self.assertRaises(ValidationError):
            parse_stock(True)


if __name__ == '__main__':
    unittest.main()
