import math
import unittest

import factories  # noqa: F401  (puts src/ on sys.path)
from db.models import PricingTier, TierStrategy
from pricing.tiers import (
    calculate_tier_base_price,
    describe_tier,
    find_next_tier,
    find_tier,
    format_tier_range,
    next_tier_savings,
    normalize_tiers,
)


class TierResolutionTestCase(unittest.TestCase):
    def test_first_matching_tier_wins_when_ranges_overlap(self):
        tiers = normalize_tiers(
            [
                {"minQty": 1, "maxQty": 10, "strategy": "percentOff", "value": 10},
                {"minQty": 5, "maxQty": 15, "strategy": "percentOff", "value": 20},
            ]
        )
        tier = find_tier(tiers, 7)
        self.assertEqual(tier.min_qty, 1)
        self.assertAlmostEqual(calculate_tier_base_price(10, tier), 9.0)

    def test_quantity_outside_every_tier(self):
        tiers = (PricingTier(5, 9, TierStrategy.PERCENT_OFF, 10),)
        self.assertIsNone(find_tier(tiers, 4))
        self.assertIsNone(find_tier(tiers, 10))
        self.assertEqual(calculate_tier_base_price(100, None), 100)

    def test_open_ended_tier(self):
        tiers = normalize_tiers([{"minQty": 10, "maxQty": 0, "strategy": "amountOff", "value": 2}])
        self.assertIsNone(tiers[0].max_qty)
        self.assertIs(find_tier(tiers, 500), tiers[0])

    def test_normalize_sorts_and_drops_unknown_strategies(self):
        tiers = normalize_tiers(
            [
                {"minQty": 10, "strategy": "percentOff", "value": 5},
                {"minQty": 1, "strategy": "bogus", "value": 5},
                {"minQuantity": 3, "strategy": "fixedPrice", "fixedPrice": 80},
            ]
        )
        self.assertEqual([t.min_qty for t in tiers], [3, 10])
        self.assertEqual(tiers[0].strategy, TierStrategy.FIXED_PRICE)
        self.assertEqual(tiers[0].value, 80)


class TierPriceTestCase(unittest.TestCase):
    def test_strategies(self):
        self.assertEqual(
            calculate_tier_base_price(100, PricingTier(1, None, TierStrategy.FIXED_PRICE, 70)), 70
        )
        self.assertAlmostEqual(
            calculate_tier_base_price(100, PricingTier(1, None, TierStrategy.PERCENT_OFF, 15)), 85
        )
        self.assertEqual(
            calculate_tier_base_price(100, PricingTier(1, None, TierStrategy.AMOUNT_OFF, 30)), 70
        )

    def test_results_are_clamped_at_zero(self):
        self.assertEqual(
            calculate_tier_base_price(10, PricingTier(1, None, TierStrategy.AMOUNT_OFF, 50)), 0
        )
        self.assertEqual(
            calculate_tier_base_price(10, PricingTier(1, None, TierStrategy.PERCENT_OFF, 150)), 0
        )
        self.assertEqual(
            calculate_tier_base_price(-5, PricingTier(1, None, TierStrategy.PERCENT_OFF, 10)), 0
        )

    def test_non_finite_value_means_no_discount(self):
        tier = PricingTier(1, None, TierStrategy.PERCENT_OFF, math.nan)
        self.assertEqual(calculate_tier_base_price(40, tier), 40)
        legacy = normalize_tiers([{"minQty": 1, "strategy": "amountOff"}])
        self.assertEqual(calculate_tier_base_price(40, legacy[0]), 40)

    def test_negative_value_means_no_discount(self):
        tier = PricingTier(1, None, TierStrategy.AMOUNT_OFF, -20)
        self.assertEqual(calculate_tier_base_price(40, tier), 40)


class TierUpsellTestCase(unittest.TestCase):
    def setUp(self):
        self.tiers = normalize_tiers(
            [
                {"minQty": 1, "maxQty": 4, "strategy": "percentOff", "value": 10},
                {"minQty": 5, "strategy": "percentOff", "value": 20},
            ]
        )

    def test_next_tier(self):
        self.assertEqual(find_next_tier(self.tiers, 3).min_qty, 5)
        self.assertIsNone(find_next_tier(self.tiers, 5))

    def test_next_tier_savings(self):
        upgrade = next_tier_savings(self.tiers, 3, 1000, 900)
        self.assertEqual(upgrade.qty_needed, 2)
        self.assertAlmostEqual(upgrade.unit_price, 800)
        self.assertAlmostEqual(upgrade.savings_per_unit, 100)
        self.assertIsNone(next_tier_savings(self.tiers, 6, 1000, 800))

    def test_descriptions(self):
        self.assertEqual(format_tier_range(self.tiers[0]), "1-4 units")
        self.assertEqual(format_tier_range(self.tiers[1]), "5+ units")
        self.assertEqual(describe_tier(self.tiers[1]), "20% off")


if __name__ == "__main__":
    unittest.main()
