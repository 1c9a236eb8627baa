import asyncio
import json
import unittest

import httpx

from factories import LAGOS, color, color_group, make_product
from db.models import (
    AttributeOption,
    CheckoutBlocked,
    CheckoutCorrection,
    CheckoutSuccess,
    Coupon,
    IssueType,
    PricingTier,
    ProductSale,
    Severity,
    ShippingMethod,
    ThresholdPromotion,
    TierStrategy,
)
from services.api import CART_COUPONS, CART_PROMOTIONS, CHECKOUT_SECURE, ApiClient
from services.checkout import EMPTY_CART, SHIPPING_REQUIRED, CheckoutReconciler, CheckoutState
from services.shipping import ShippingCostNegotiator
from services.verifier import CheckoutVerifier
from utils.errors import CheckoutStateError
from utils.state import CartStore, GlobalState, PaymentStore, WishlistStore

WELCOME = Coupon(code="WELCOME10", discount=10, min_order_value=5000, max_discount_amount=4000)


class CheckoutTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.tee = make_product(
            "p-tee",
            price=1000,
            stock=40,
            category_id="c-apparel",
            sale=ProductSale(id="s-tee", discount=20),
            pricing_tiers=(PricingTier(1, 4, TierStrategy.PERCENT_OFF, 10),),
        )
        self.mug = make_product("p-mug", price=4500, stock=3, category_id="c-kitchen")
        self.shirt = make_product(
            "p-shirt",
            price=3000,
            stock=50,
            attributes=(
                color_group(
                    AttributeOption("Red", stock=5),
                    AttributeOption("Blue", stock=5),
                    AttributeOption("Black", stock=0),
                ),
            ),
        )
        self.verifier = CheckoutVerifier.from_products(
            [self.tee, self.mug, self.shirt],
            [WELCOME],
            shipping_rate=2500,
            express_surcharge=1.5,
            tolerance=0.01,
        )

        self.requests = []
        self.hold = None
        self.fail_checkout = None
        self.api = ApiClient(
            base_url="http://storefront.test",
            token="tok",
            transport=httpx.MockTransport(self.route),
        )
        self.state = GlobalState(
            cart=CartStore(self.api, quantity_debounce=0, persist=False),
            wishlist=WishlistStore(self.api, persist=False),
            payments=PaymentStore(persist=False),
        )
        self.state.destination = LAGOS
        self.shipping = ShippingCostNegotiator(self.api, debounce=0, surcharge=1.5)
        self.transitions = []
        self.checkout = CheckoutReconciler(
            self.api,
            self.state,
            self.shipping,
            on_change=lambda c: self.transitions.append(c.status),
        )

    async def asyncTearDown(self):
        await self.api.aclose()

    async def route(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, request.url.path, body))
        if request.url.path == CHECKOUT_SECURE:
            if self.hold is not None:
                started, release = self.hold
                started.set()
                await release.wait()
            if self.fail_checkout is not None:
                return self.fail_checkout
        return self.verifier.handle(request)

    def checkout_payloads(self):
        return [body for _, path, body in self.requests if path == CHECKOUT_SECURE]

    async def quote(self):
        self.shipping.update(self.state.destination, self.state.cart.items, self.state.method)
        await self.shipping.wait()

    # ---------- happy paths ----------

    async def test_sale_and_tier_line_is_accepted(self):
        await self.state.cart.add(self.tee, 3)
        await self.quote()

        outcome = await self.checkout.submit()

        self.assertIsInstance(outcome, CheckoutSuccess)
        self.assertEqual(outcome.order_id, "ORD-000001")
        payload = self.checkout_payloads()[0]
        item = payload["items"][0]
        self.assertAlmostEqual(item["unitPrice"], 720)
        self.assertAlmostEqual(item["totalPrice"], 2160)
        self.assertEqual(item["sale"], "s-tee")
        self.assertAlmostEqual(payload["total"], 2160 + 2500)
        self.assertEqual(payload["shippingAddress"]["state"], "Lagos")
        self.assertFalse(payload["acceptChanges"])

        self.assertEqual(self.checkout.status, CheckoutState.SUCCESS)
        self.assertTrue(self.state.cart.is_empty)
        self.assertEqual(self.state.payments.latest.reference, "REF-ORD-000001")
        self.assertEqual(self.transitions[-2:], [CheckoutState.SUBMITTING, CheckoutState.SUCCESS])

    async def test_express_surcharge_is_recomputed_by_the_server(self):
        self.state.method = ShippingMethod.EXPRESS
        await self.state.cart.add(self.mug, 1)
        await self.quote()
        self.assertEqual(self.checkout.current_quote().cost, 3750)

        outcome = await self.checkout.submit()
        self.assertIsInstance(outcome, CheckoutSuccess)
        self.assertEqual(outcome.summary.shipping_cost, 3750)
        self.assertEqual(self.checkout_payloads()[0]["shippingMethod"], "express")

    async def test_pickup_needs_no_address(self):
        self.state.method = ShippingMethod.PICKUP
        self.state.destination = None
        await self.state.cart.add(self.mug, 1)
        await self.quote()

        outcome = await self.checkout.submit()
        self.assertIsInstance(outcome, CheckoutSuccess)
        payload = self.checkout_payloads()[0]
        self.assertEqual(payload["deliveryType"], "pickup")
        self.assertEqual(payload["shippingCost"], 0)
        self.assertNotIn("shippingAddress", payload)

    # ---------- guards ----------

    async def test_empty_cart(self):
        self.assertIsNone(await self.checkout.submit())
        self.assertEqual(self.checkout.error, EMPTY_CART)
        self.assertEqual(self.checkout.status, CheckoutState.IDLE)
        self.assertEqual(self.checkout_payloads(), [])

    async def test_missing_or_stale_quote(self):
        await self.state.cart.add(self.mug, 1)
        self.assertIsNone(await self.checkout.submit())
        self.assertEqual(self.checkout.error, SHIPPING_REQUIRED)

        await self.quote()
        await self.state.cart.set_quantity(self.state.cart.items[0].cart_item_id, 2)
        self.assertIsNone(self.checkout.current_quote())
        self.assertIsNone(await self.checkout.submit())
        self.assertEqual(self.checkout.error, SHIPPING_REQUIRED)

    async def test_transport_error_returns_to_idle(self):
        await self.state.cart.add(self.mug, 1)
        await self.quote()
        self.fail_checkout = httpx.Response(500, json={"message": "Payment gateway unavailable"})

        self.assertIsNone(await self.checkout.submit())
        self.assertEqual(self.checkout.status, CheckoutState.IDLE)
        self.assertEqual(self.checkout.error, "Payment gateway unavailable")
        self.assertEqual(len(self.state.cart.items), 1)

    async def test_unreadable_correction_returns_to_idle(self):
        await self.state.cart.add(self.mug, 1)
        await self.quote()
        self.fail_checkout = httpx.Response(
            400,
            json={
                "needsUpdate": True,
                "errors": {
                    "products": [
                        {
                            "cartItemId": self.state.cart.items[0].cart_item_id,
                            "productId": "p-mug",
                            "issueType": "lowStock",
                            "severity": "warning",
                        }
                    ]
                },
            },
        )

        self.assertIsNone(await self.checkout.submit())
        self.assertEqual(self.checkout.status, CheckoutState.IDLE)
        self.assertIn("could not read", self.checkout.error)
        self.assertIsNone(self.checkout.corrections)

        self.fail_checkout = None
        self.assertIsInstance(await self.checkout.submit(), CheckoutSuccess)

    async def test_submission_state_is_released_on_unexpected_errors(self):
        await self.state.cart.add(self.mug, 1)
        await self.quote()

        async def broken(payload):
            raise RuntimeError("boom")

        self.api.submit_checkout = broken
        with self.assertRaises(RuntimeError):
            await self.checkout.submit()
        self.assertEqual(self.checkout.status, CheckoutState.IDLE)
        self.assertTrue(self.checkout.can_submit)

    async def test_estimated_days_are_sent_only_when_quoted(self):
        await self.state.cart.add(self.mug, 1)
        await self.quote()
        self.assertIsInstance(await self.checkout.submit(), CheckoutSuccess)
        self.assertEqual(self.checkout_payloads()[-1]["estimatedShipping"], {"cost": 2500})

        self.verifier.shipping_days = 3
        await self.state.cart.add(self.mug, 1)
        await self.quote()
        self.assertEqual(self.checkout.current_quote().eta_days, 3)
        self.assertIsInstance(await self.checkout.submit(), CheckoutSuccess)
        self.assertEqual(self.checkout_payloads()[-1]["estimatedShipping"], {"cost": 2500, "days": 3})

    async def test_submit_is_mutually_exclusive(self):
        await self.state.cart.add(self.mug, 1)
        await self.quote()
        started, release = asyncio.Event(), asyncio.Event()
        self.hold = (started, release)

        task = asyncio.create_task(self.checkout.submit())
        await asyncio.wait_for(started.wait(), 1)
        self.assertEqual(self.checkout.status, CheckoutState.SUBMITTING)
        self.assertFalse(self.checkout.can_submit)
        with self.assertRaises(CheckoutStateError):
            await self.checkout.submit()
        with self.assertRaises(CheckoutStateError):
            await self.checkout.refresh()

        release.set()
        self.assertIsInstance(await task, CheckoutSuccess)
        self.assertEqual(len(self.checkout_payloads()), 1)

    # ---------- corrections ----------

    async def test_quantity_correction_then_success(self):
        await self.state.cart.add(self.mug, 5)
        await self.quote()

        outcome = await self.checkout.submit()

        self.assertIsInstance(outcome, CheckoutCorrection)
        self.assertEqual(self.checkout.status, CheckoutState.NEEDS_CORRECTION)
        issue = self.checkout.corrections.issues[0]
        self.assertEqual(issue.issue_type, IssueType.QUANTITY_REDUCED)
        self.assertEqual(issue.severity, Severity.WARNING)
        self.assertEqual(issue.available_stock, 3)
        self.assertTrue(self.checkout.corrections.is_blocking)
        self.assertTrue(self.checkout.needs_review)
        self.assertEqual(self.checkout.issue_messages(), ["Only 3 units available (you requested 5)"])

        self.assertFalse(self.checkout.can_submit)
        with self.assertRaises(CheckoutStateError):
            await self.checkout.submit()

        self.assertTrue(await self.checkout.accept_all())
        self.assertEqual(self.state.cart.items[0].qty, 3)
        self.assertEqual(self.checkout.status, CheckoutState.IDLE)
        self.assertEqual(self.checkout.current_quote().cost, 2500)

        outcome = await self.checkout.submit()
        self.assertIsInstance(outcome, CheckoutSuccess)
        resubmitted = self.checkout_payloads()[-1]
        self.assertEqual(resubmitted["items"][0]["qty"], 3)
        self.assertTrue(resubmitted["acceptChanges"])
        self.assertAlmostEqual(outcome.summary.new_total, 3 * 4500 + 2500)

    async def test_dismissed_correction_comes_back_unchanged(self):
        await self.state.cart.add(self.mug, 5)
        await self.quote()
        first = await self.checkout.submit()

        self.checkout.dismiss()
        self.assertIsNone(self.checkout.corrections)
        self.assertEqual(self.checkout.status, CheckoutState.IDLE)
        self.assertEqual(self.state.cart.items[0].qty, 5)

        second = await self.checkout.submit()
        self.assertIsInstance(second, CheckoutCorrection)
        self.assertEqual(first.errors, second.errors)

    async def test_unavailable_variant_is_swapped_for_a_chosen_alternative(self):
        await self.state.cart.add(self.shirt, 1, [color("Black")])
        await self.quote()

        outcome = await self.checkout.submit()
        issue = outcome.errors.products[0]
        self.assertEqual(issue.issue_type, IssueType.ATTRIBUTE_UNAVAILABLE)
        self.assertEqual(issue.severity, Severity.CRITICAL)
        self.assertEqual(
            [combo[0].value for combo in issue.available_attributes], ["Red", "Blue"]
        )

        with self.assertRaises(ValueError):
            await self.checkout.resolve_issue(0, (color("Green"),))
        self.assertTrue(await self.checkout.resolve_issue(0, (color("Blue"),)))
        self.assertEqual(self.state.cart.items[0].selected_attributes, (color("Blue"),))
        self.assertIsNone(self.checkout.corrections)

        self.assertIsInstance(await self.checkout.submit(), CheckoutSuccess)

    async def test_out_of_range_issue_leaves_the_cart_alone(self):
        await self.state.cart.add(self.mug, 5)
        await self.quote()
        await self.checkout.submit()

        for index in (-1, 1):
            with self.assertRaises(IndexError):
                await self.checkout.resolve_issue(index)
        self.assertEqual(self.state.cart.items[0].qty, 5)
        self.assertFalse(self.checkout.corrections.is_resolved(0))
        self.assertEqual(self.checkout.status, CheckoutState.NEEDS_CORRECTION)

    async def test_removed_product_drops_coupon_below_minimum(self):
        ghost = make_product("p-ghost", price=5000, stock=10)
        await self.state.cart.add(ghost, 1)
        await self.state.cart.add(self.mug, 1)
        result = await self.api.validate_coupon(
            "welcome10", self.state.cart.totals().subtotal, self.state.cart.product_ids
        )
        self.assertTrue(self.state.discounts.apply_coupon(result))
        self.assertAlmostEqual(self.state.discounts.discount_cart, 950)
        await self.quote()

        outcome = await self.checkout.submit()
        self.assertIsInstance(outcome, CheckoutCorrection)
        self.assertEqual(outcome.errors.products[0].issue_type, IssueType.OUT_OF_STOCK)
        self.assertEqual([c.code for c in outcome.errors.coupons], ["WELCOME10"])
        self.assertIn("Coupon WELCOME10", self.checkout.notice)

        await self.checkout.accept_all()
        self.assertEqual([i.product_id for i in self.state.cart.items], ["p-mug"])
        self.assertIsNone(self.state.discounts.coupon)

        outcome = await self.checkout.submit()
        self.assertIsInstance(outcome, CheckoutSuccess)
        self.assertEqual(self.checkout_payloads()[-1]["couponCodes"], [])

    async def test_shipping_only_correction_adopts_server_cost(self):
        await self.state.cart.add(self.mug, 1)
        self.shipping.adopt(1000, LAGOS, self.state.cart.items, ShippingMethod.NORMAL)

        outcome = await self.checkout.submit()
        self.assertIsInstance(outcome, CheckoutCorrection)
        self.assertEqual(outcome.errors.shipping.current_cost, 2500)
        self.assertTrue(self.checkout.corrections.is_complete)
        self.assertFalse(self.checkout.needs_review)
        self.assertIn("Shipping changed", self.checkout.notice)
        self.assertIn("Shipping changed", self.checkout.inline_notice())

        await self.checkout.accept_all()
        self.assertEqual(self.checkout.current_quote().cost, 2500)
        self.assertIsInstance(await self.checkout.submit(), CheckoutSuccess)

    async def test_price_change_is_informational(self):
        stale_mug = make_product("p-mug", price=4000, stock=3)
        await self.state.cart.add(stale_mug, 2)
        await self.quote()

        outcome = await self.checkout.submit()
        issue = outcome.errors.products[0]
        self.assertEqual(issue.issue_type, IssueType.PRICE_CHANGED)
        self.assertEqual(issue.severity, Severity.INFO)
        self.assertFalse(self.checkout.corrections.is_blocking)
        self.assertFalse(self.checkout.needs_review)
        self.assertIn("increased", self.checkout.issue_messages()[0])
        self.assertEqual(self.checkout.inline_notice(), self.checkout.issue_messages()[0])

        await self.checkout.accept_all()
        outcome = await self.checkout.submit()
        self.assertIsInstance(outcome, CheckoutSuccess)
        self.assertAlmostEqual(outcome.summary.new_subtotal, 9000)

    async def test_store_promotion_counts_towards_the_total(self):
        promo = ThresholdPromotion("promo-5k", min_order_value=5000, discount=500)
        self.verifier.promotions[promo.id] = promo
        await self.state.cart.add(self.mug, 2)
        await self.quote()
        self.assertTrue(self.state.discounts.apply_promotion(self.state.cart.totals().subtotal, promo))

        outcome = await self.checkout.submit()
        self.assertIsInstance(outcome, CheckoutSuccess)
        self.assertAlmostEqual(outcome.summary.promotion_discount, 500)
        self.assertAlmostEqual(outcome.summary.new_total, 9000 - 500 + 2500)
        payload = self.checkout_payloads()[0]
        self.assertEqual(payload["promotion"]["_id"], "promo-5k")
        self.assertAlmostEqual(payload["totalDiscount"], 500)

    # ---------- cart-page offers ----------

    async def test_cart_page_offers_are_listed_and_applied(self):
        self.verifier.coupons.add(
            Coupon(code="SHOWN", discount=5, min_order_value=1000, show_on_cart_page=True)
        )
        self.verifier.promotions["promo-5k"] = ThresholdPromotion("promo-5k", 5000, 500, "Spend 5k")

        coupons = await self.api.cart_coupons()
        self.assertEqual([c.code for c in coupons], ["SHOWN"])
        self.assertEqual(
            await self.api.cart_promotions(), [ThresholdPromotion("promo-5k", 5000, 500, "Spend 5k")]
        )
        self.assertEqual(
            [(m, p) for m, p, _ in self.requests], [("GET", CART_COUPONS), ("GET", CART_PROMOTIONS)]
        )

        await self.state.cart.add(self.mug, 1)
        result = await self.state.apply_coupon_code(self.api, coupons[0].code)
        self.assertTrue(result.valid)
        self.assertEqual(self.state.discounts.coupon_codes, ["SHOWN"])
        self.assertAlmostEqual(self.state.discounts.discount_cart, 225)

        await self.quote()
        self.assertIsInstance(await self.checkout.submit(), CheckoutSuccess)
        self.assertEqual(self.checkout_payloads()[0]["couponCodes"], ["SHOWN"])

    # ---------- blocked ----------

    async def test_total_mismatch_blocks_until_refresh(self):
        await self.state.cart.add(self.mug, 2)
        # a discount outside the store's promotions, so the totals disagree
        self.assertTrue(self.state.discounts.apply_threshold(9000, 5000, 500))
        await self.quote()

        outcome = await self.checkout.submit()
        self.assertIsInstance(outcome, CheckoutBlocked)
        self.assertEqual(self.checkout.status, CheckoutState.BLOCKED)
        self.assertEqual(self.checkout.error, "Order total does not match the server calculation.")
        self.assertAlmostEqual(outcome.errors.total.discrepancy, 500)
        self.assertFalse(self.checkout.can_submit)
        with self.assertRaises(CheckoutStateError):
            await self.checkout.submit()

        await self.checkout.refresh()
        self.assertEqual(self.checkout.status, CheckoutState.IDLE)
        self.assertIsNone(self.checkout.blocked)
        self.assertIsNone(self.checkout.error)
        self.assertTrue(self.checkout.can_submit)


class DemoCatalogTestCase(unittest.TestCase):
    def test_bundled_catalog_loads(self):
        verifier = CheckoutVerifier.from_json()
        self.assertEqual(verifier.shipping_rate, 2500)
        self.assertIn("p-tee", verifier.catalog)
        self.assertIsNotNone(verifier.coupons.get("welcome10"))
        self.assertEqual([c.code for c in verifier.coupons.cart_page()], ["WELCOME10", "BIGSPEND"])
        self.assertEqual(verifier.promotions["promo-30k"].min_order_value, 30000)
        self.assertEqual(verifier.shipping_days, 3)
        mug = verifier.catalog["p-mug"]
        self.assertEqual(mug.pricing_tiers[0].strategy, TierStrategy.FIXED_PRICE)


if __name__ == "__main__":
    unittest.main()
