import unittest
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from factories import color, make_item, make_product, use_temp_db
from db import crud
from db import database as db_database
from db.models import PaymentReference, PricingTier, ProductSale, TierStrategy

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class CrudTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.temp_dir = use_temp_db()

    async def asyncSetUp(self):
        # Touch initialization by opening a connection
        async with db_database.connect() as conn:
            cur = await conn.execute("SELECT name FROM sqlite_master WHERE type='table';")
            tables = {r[0] for r in await cur.fetchall()}
            await cur.close()
        self.assertTrue({"cart_items", "wishlist", "payment_refs"} <= tables)

    def tearDown(self):
        self.temp_dir.cleanup()

    # ---------- Cart ----------

    async def test_cart_round_trip_keeps_order_and_snapshot(self):
        tee = make_product(
            "p-tee",
            price=1000,
            sale=ProductSale(id="s1", discount=20),
            pricing_tiers=(PricingTier(1, 4, TierStrategy.PERCENT_OFF, 10),),
        )
        mug = make_product("p-mug", price=4500, stock=3)
        items = [
            replace(make_item(mug, 2), added_at=NOW),
            replace(make_item(tee, 3, [color("Red")]), added_at=NOW - timedelta(hours=1)),
        ]
        await crud.save_cart(items)

        loaded = await crud.load_cart(now=NOW)
        self.assertEqual([i.cart_item_id for i in loaded], ["ci-p-mug", "ci-p-tee"])
        self.assertEqual(loaded[1].qty, 3)
        self.assertEqual(loaded[1].selected_attributes, (color("Red"),))
        self.assertEqual(loaded[1].product.sale.discount, 20)
        self.assertEqual(loaded[1].product.pricing_tiers[0].value, 10)
        self.assertEqual(loaded[0].product.stock, 3)
        self.assertEqual(loaded[0].added_at, NOW)

    async def test_save_cart_replaces_previous_rows(self):
        a = replace(make_item(make_product("a"), 1), added_at=NOW)
        b = replace(make_item(make_product("b"), 1), added_at=NOW)
        await crud.save_cart([a, b])
        await crud.save_cart([replace(b, qty=4)])

        loaded = await crud.load_cart(now=NOW)
        self.assertEqual([(i.cart_item_id, i.qty) for i in loaded], [("ci-b", 4)])

    async def test_expired_items_are_purged(self):
        fresh = replace(make_item(make_product("fresh")), added_at=NOW - timedelta(hours=2))
        stale = replace(make_item(make_product("stale")), added_at=NOW - timedelta(hours=30))
        await crud.save_cart([fresh, stale])

        loaded = await crud.load_cart(ttl_hours=24, now=NOW)
        self.assertEqual([i.product_id for i in loaded], ["fresh"])
        self.assertEqual(await crud.purge_expired_cart_items(ttl_hours=1, now=NOW), 1)
        self.assertEqual(await crud.load_cart(now=NOW), [])

    async def test_delete_and_clear(self):
        a = replace(make_item(make_product("a")), added_at=NOW)
        b = replace(make_item(make_product("b")), added_at=NOW)
        await crud.save_cart_item(a, 0)
        await crud.save_cart_item(b, 1)

        self.assertTrue(await crud.delete_cart_item("ci-a"))
        self.assertFalse(await crud.delete_cart_item("ci-a"))
        self.assertEqual([i.cart_item_id for i in await crud.load_cart(now=NOW)], ["ci-b"])

        await crud.clear_cart()
        self.assertEqual(await crud.load_cart(now=NOW), [])

    # ---------- Wishlist ----------

    async def test_wishlist(self):
        await crud.add_wishlist_item("p-tee", when=NOW)
        await crud.add_wishlist_item("p-mug", when=NOW + timedelta(minutes=1))
        await crud.add_wishlist_item("p-tee", when=NOW + timedelta(minutes=2))
        self.assertEqual(await crud.load_wishlist(), ["p-tee", "p-mug"])

        await crud.remove_wishlist_item("p-tee")
        await crud.remove_wishlist_item("p-unknown")
        self.assertEqual(await crud.load_wishlist(), ["p-mug"])

    # ---------- Payment references ----------

    async def test_payment_references_newest_first(self):
        await crud.record_payment_reference(PaymentReference("REF-1", "ORD-1", NOW))
        await crud.record_payment_reference(PaymentReference("REF-2", "ORD-2", NOW + timedelta(hours=1)))

        refs = await crud.list_payment_references()
        self.assertEqual([r.reference for r in refs], ["REF-2", "REF-1"])

        got = await crud.get_payment_reference("REF-1")
        self.assertEqual(got.order_id, "ORD-1")
        self.assertEqual(got.created_at, NOW)
        self.assertIsNone(await crud.get_payment_reference("REF-404"))


if __name__ == "__main__":
    unittest.main()
