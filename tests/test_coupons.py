import unittest
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import factories  # noqa: F401  (puts src/ on sys.path)
from db.models import Coupon, CouponScope, DiscountType, ThresholdPromotion
from pricing.coupons import (
    CouponRejection,
    CouponValidator,
    DiscountSlots,
    compute_discount,
    coupon_result_from_response,
    describe_coupon,
)
from utils.pure import format_price

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)

WELCOME = Coupon(code="WELCOME10", discount=10, min_order_value=5000, max_discount_amount=4000)
BIGSPEND = Coupon(
    code="BIGSPEND", discount_type=DiscountType.FIXED_AMOUNT, discount=5000, min_order_value=50000
)
KITCHEN = Coupon(
    code="KITCHEN",
    discount_type=DiscountType.FIXED_AMOUNT,
    discount=1500,
    scope=CouponScope.CATEGORIES,
    category_ids=("c-kitchen",),
)


class CouponValidatorTestCase(unittest.TestCase):
    def setUp(self):
        self.validator = CouponValidator([WELCOME, BIGSPEND, KITCHEN], clock=lambda: NOW)

    def test_percentage_discount_is_capped(self):
        result = self.validator.validate("welcome10", 20000)
        self.assertTrue(result.valid)
        self.assertAlmostEqual(result.discount, 2000)
        self.assertEqual(result.message, "Coupon WELCOME10 applied")

        capped = self.validator.validate("WELCOME10", 60000)
        self.assertAlmostEqual(capped.discount, 4000)

    def test_below_minimum(self):
        result = self.validator.validate("BIGSPEND", 40000)
        self.assertFalse(result.valid)
        self.assertEqual(result.reason, CouponRejection.BELOW_MINIMUM)
        self.assertTrue(result.message.startswith("Minimum order must be"))
        self.assertIn("50,000.00", result.message)
        self.assertEqual(result.discount, 0)

        self.assertTrue(self.validator.validate("BIGSPEND", 50000).valid)

    def test_unknown_code(self):
        result = self.validator.validate("NOPE", 100)
        self.assertEqual(result.reason, CouponRejection.NOT_FOUND)
        self.assertEqual(result.message, "Invalid coupon code")

    def test_validity_window_and_usage(self):
        validator = CouponValidator(
            [
                Coupon(code="OLD", discount=5, end_date=NOW - timedelta(days=1)),
                Coupon(code="SOON", discount=5, start_date=NOW + timedelta(days=1)),
                Coupon(code="OFF", discount=5, active=False),
                Coupon(code="USED", discount=5, max_usage=3, used_count=3),
            ],
            clock=lambda: NOW,
        )
        self.assertEqual(validator.validate("OLD", 100).reason, CouponRejection.EXPIRED)
        self.assertEqual(validator.validate("SOON", 100).reason, CouponRejection.NOT_STARTED)
        self.assertEqual(validator.validate("OFF", 100).reason, CouponRejection.EXPIRED)
        self.assertEqual(validator.validate("USED", 100).reason, CouponRejection.USAGE_LIMIT)

    def test_rules_short_circuit_in_order(self):
        # expired and below minimum: the window is reported
        validator = CouponValidator(
            [Coupon(code="X", discount=5, min_order_value=1000, end_date=NOW - timedelta(days=1))],
            clock=lambda: NOW,
        )
        self.assertEqual(validator.validate("X", 10).reason, CouponRejection.EXPIRED)

    def test_scope(self):
        out = self.validator.validate("KITCHEN", 10000, ["p-tee"], ["c-apparel"])
        self.assertEqual(out.reason, CouponRejection.OUT_OF_SCOPE)
        ok = self.validator.validate("KITCHEN", 10000, ["p-mug"], ["c-kitchen"])
        self.assertTrue(ok.valid)
        self.assertEqual(ok.discount, 1500)

    def test_stacking_without_replacement(self):
        result = self.validator.validate("BIGSPEND", 60000, active=[WELCOME], replace=False)
        self.assertEqual(result.reason, CouponRejection.NOT_STACKABLE)
        self.assertIn("WELCOME10", result.message)

        stackable = CouponValidator(
            [Coupon(code="A", discount=5, stackable=True), Coupon(code="B", discount=5, stackable=True)]
        )
        active = [stackable.get("A")]
        self.assertTrue(stackable.validate("B", 100, active=active, replace=False).valid)

    def test_fixed_discount_never_exceeds_total(self):
        self.assertEqual(compute_discount(BIGSPEND, 3000), 3000)
        self.assertEqual(compute_discount(BIGSPEND, -10), 0)

    def test_cart_page_lists_usable_flagged_coupons(self):
        validator = CouponValidator(
            [
                replace(WELCOME, show_on_cart_page=True),
                replace(BIGSPEND, show_on_cart_page=True, end_date=NOW - timedelta(days=1)),
                replace(KITCHEN, show_on_cart_page=True, max_usage=3, used_count=3),
                Coupon(code="HIDDEN", discount=5),
            ],
            clock=lambda: NOW,
        )
        self.assertEqual([c.code for c in validator.cart_page()], ["WELCOME10"])

    def test_describe_coupon(self):
        self.assertEqual(
            describe_coupon(WELCOME),
            f"10% off, up to {format_price(4000)} on orders from {format_price(5000)}",
        )
        self.assertEqual(describe_coupon(KITCHEN), f"{format_price(1500)} off")
        self.assertEqual(describe_coupon(replace(KITCHEN, description="Kitchen week")), "Kitchen week")


class CouponResponseTestCase(unittest.TestCase):
    def test_valid_response(self):
        result = coupon_result_from_response(
            {
                "success": True,
                "valid": True,
                "message": "ok",
                "data": {"discount": 750, "coupon": {"code": "save", "discountType": "fixed", "discount": 750}},
            }
        )
        self.assertTrue(result.valid)
        self.assertEqual(result.discount, 750)
        self.assertEqual(result.coupon.code, "SAVE")
        self.assertEqual(result.coupon.discount_type, DiscountType.FIXED_AMOUNT)

    def test_invalid_response(self):
        result = coupon_result_from_response({"success": False, "message": "Coupon has expired"})
        self.assertFalse(result.valid)
        self.assertEqual(result.reason, CouponRejection.REJECTED)
        self.assertEqual(result.message, "Coupon has expired")


class DiscountSlotsTestCase(unittest.TestCase):
    def setUp(self):
        self.validator = CouponValidator([WELCOME, BIGSPEND, KITCHEN], clock=lambda: NOW)
        self.slots = DiscountSlots()

    def test_new_coupon_replaces_the_old_one(self):
        self.assertTrue(self.slots.apply_coupon(self.validator.validate("WELCOME10", 60000)))
        self.assertTrue(self.slots.apply_coupon(self.validator.validate("BIGSPEND", 60000)))
        self.assertEqual(self.slots.discount_cart, 5000)
        self.assertEqual(self.slots.coupon_codes, ["BIGSPEND"])

    def test_rejected_coupon_keeps_current_slot(self):
        self.slots.apply_coupon(self.validator.validate("WELCOME10", 60000))
        self.assertFalse(self.slots.apply_coupon(self.validator.validate("BIGSPEND", 100)))
        self.assertEqual(self.slots.coupon_codes, ["WELCOME10"])
        self.assertTrue(self.slots.error.startswith("Minimum order must be"))

    def test_threshold_after_coupon_coexists(self):
        self.slots.apply_coupon(self.validator.validate("WELCOME10", 20000))
        self.assertTrue(self.slots.apply_threshold(20000, 15000, 1000))
        self.assertEqual(self.slots.discount_cart, 3000)

    def test_coupon_clears_threshold(self):
        self.slots.apply_threshold(20000, 15000, 1000)
        self.slots.apply_coupon(self.validator.validate("WELCOME10", 20000))
        self.assertEqual(self.slots.threshold_discount, 0)
        self.assertEqual(self.slots.discount_cart, 2000)

    def test_threshold_below_minimum(self):
        self.assertFalse(self.slots.apply_threshold(1000, 15000, 1000))
        self.assertEqual(self.slots.discount_cart, 0)

    def test_subtotal_change_resizes_and_drops(self):
        self.slots.apply_coupon(self.validator.validate("WELCOME10", 20000))
        self.slots.apply_threshold(20000, 15000, 1000)

        self.slots.on_subtotal_changed(10000)
        self.assertEqual(self.slots.threshold_discount, 0)
        self.assertAlmostEqual(self.slots.coupon_discount, 1000)

        self.slots.on_subtotal_changed(4000)
        self.assertIsNone(self.slots.coupon)
        self.assertEqual(self.slots.discount_cart, 0)
        self.assertIn("WELCOME10", self.slots.error)

    def test_store_promotion_is_tracked_until_its_minimum_is_lost(self):
        promo = ThresholdPromotion("promo-15k", min_order_value=15000, discount=1000)
        self.assertFalse(self.slots.apply_promotion(9000, promo))
        self.assertIsNone(self.slots.promotion)

        self.assertTrue(self.slots.apply_promotion(20000, promo))
        self.assertEqual(self.slots.promotion, promo)
        self.assertEqual(self.slots.discount_cart, 1000)

        self.slots.on_subtotal_changed(12000)
        self.assertIsNone(self.slots.promotion)
        self.assertEqual(self.slots.discount_cart, 0)

    def test_coupon_clears_store_promotion(self):
        self.slots.apply_promotion(20000, ThresholdPromotion("promo-15k", 15000, 1000))
        self.slots.apply_coupon(self.validator.validate("WELCOME10", 20000))
        self.assertIsNone(self.slots.promotion)
        self.assertEqual(self.slots.discount_cart, 2000)

    def test_reset(self):
        self.slots.apply_coupon(self.validator.validate("WELCOME10", 20000))
        self.slots.reset()
        self.assertEqual(self.slots.discount_cart, 0)
        self.assertEqual(self.slots.coupon_codes, [])


if __name__ == "__main__":
    unittest.main()
