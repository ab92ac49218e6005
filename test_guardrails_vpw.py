import unittest

from guardrails import GuardrailsState
from vpw import MAX_VPW_AGE, MIN_VPW_AGE, VPW_RATES, VPWState, life_expectancy_years, vpw_rate


class TestGuardrails(unittest.TestCase):
    def setUp(self):
        self.g = GuardrailsState()
        self.g.initialize(1_000_000, 40_000)
        self.g.inflate(0.03)

    def test_initial_rate(self):
        self.assertAlmostEqual(self.g.initial_rate, 0.04)
        self.assertAlmostEqual(self.g.current_withdrawal, 41_200)

    def test_cut_after_a_crash(self):
        self.assertEqual(self.g.is_triggered(600_000), -1)
        self.assertAlmostEqual(self.g.adjusted_withdrawal(600_000, 0), 41_200 * 0.9)

    def test_raise_after_a_boom(self):
        self.assertEqual(self.g.is_triggered(1_600_000), 1)
        self.assertAlmostEqual(self.g.adjusted_withdrawal(1_600_000, 0), 41_200 * 1.1)

    def test_hold_inside_the_rails(self):
        self.assertEqual(self.g.is_triggered(1_000_000), 0)
        self.assertAlmostEqual(self.g.adjusted_withdrawal(1_000_000, 0), 41_200)

    def test_custom_limits(self):
        g = GuardrailsState(upper_limit=1.5, lower_limit=0.5, adjustment=0.2)
        g.initialize(1_000_000, 40_000)
        self.assertEqual(g.is_triggered(700_000), 0)
        self.assertAlmostEqual(g.adjusted_withdrawal(600_000, 0), 40_000 * 0.8)

    def test_not_initialised_passes_through(self):
        g = GuardrailsState()
        self.assertFalse(g.initialized)
        self.assertEqual(g.is_triggered(100_000), 0)
        self.assertEqual(g.adjusted_withdrawal(100_000, 25_000), 25_000)

    def test_empty_portfolio_passes_through(self):
        self.assertEqual(self.g.adjusted_withdrawal(0, 30_000), 30_000)


class TestVPW(unittest.TestCase):
    def test_rates_rise_with_age(self):
        rates = [VPW_RATES[a] for a in range(MIN_VPW_AGE, MAX_VPW_AGE + 1)]
        for before, after in zip(rates, rates[1:]):
            self.assertGreaterEqual(after, before)

    def test_rate_clamped_to_table(self):
        self.assertEqual(vpw_rate(40), VPW_RATES[MIN_VPW_AGE])
        self.assertEqual(vpw_rate(105), VPW_RATES[MAX_VPW_AGE])
        self.assertEqual(vpw_rate(70), 0.050)

    def test_plain_withdrawal(self):
        self.assertAlmostEqual(VPWState().withdrawal(1_000_000, 70), 50_000)

    def test_floor(self):
        self.assertAlmostEqual(VPWState(floor=60_000).withdrawal(1_000_000, 70), 60_000)

    def test_floor_inflates(self):
        vpw = VPWState(floor=20_000)
        self.assertAlmostEqual(vpw.withdrawal(1_000_000, 55, inflation_multiplier=2.0), 40_000)
        self.assertAlmostEqual(vpw.floor, 40_000)

    def test_ceiling(self):
        vpw = VPWState(floor=20_000, ceiling_multiplier=1.5)
        self.assertAlmostEqual(vpw.withdrawal(1_000_000, 90), 30_000)

    def test_life_expectancy(self):
        self.assertEqual(life_expectancy_years(60), 25.0)
        self.assertEqual(life_expectancy_years(100), 3.0)


if __name__ == "__main__":
    unittest.main()
