import unittest

from growth import apply_growth, compound_rate, growth_rate_for_year
from models import Person


def _person():
    return Person(
        name="Alex", birth_year=1965, retirement_age=60, state_pension_age=67,
        tax_free_savings=100_000, uncrystallised_pot=200_000, crystallised_pot=50_000,
    )


class TestApplyGrowth(unittest.TestCase):
    def test_positive_rate_increases(self):
        p = _person()
        apply_growth(p, 0.05, 0.03)
        self.assertAlmostEqual(p.tax_free_savings, 103_000)
        self.assertAlmostEqual(p.uncrystallised_pot, 210_000)
        self.assertAlmostEqual(p.crystallised_pot, 52_500)

    def test_zero_rate_is_exact(self):
        p = _person()
        apply_growth(p, 0.0, 0.0)
        self.assertEqual(p.total_wealth, 350_000)

    def test_negative_rate_decreases(self):
        p = _person()
        apply_growth(p, -0.1, -0.1)
        self.assertLess(p.total_wealth, 350_000)
        self.assertAlmostEqual(p.total_wealth, 315_000)

    def test_two_years_compose(self):
        twice, once = _person(), _person()
        apply_growth(twice, 0.05, 0.04)
        apply_growth(twice, 0.05, 0.04)
        apply_growth(once, compound_rate(0.05, 2), compound_rate(0.04, 2))
        self.assertAlmostEqual(twice.total_wealth, once.total_wealth, delta=0.01)


class TestGlidePath(unittest.TestCase):
    def test_linear_between_start_and_target(self):
        self.assertAlmostEqual(growth_rate_for_year(0.06, 0.03, 2025, 2025, 2035), 0.06)
        self.assertAlmostEqual(growth_rate_for_year(0.06, 0.03, 2025, 2030, 2035), 0.045)
        self.assertAlmostEqual(growth_rate_for_year(0.06, 0.03, 2025, 2035, 2035), 0.03)

    def test_flat_outside_the_glide(self):
        self.assertAlmostEqual(growth_rate_for_year(0.06, 0.03, 2025, 2020, 2035), 0.06)
        self.assertAlmostEqual(growth_rate_for_year(0.06, 0.03, 2025, 2050, 2035), 0.03)

    def test_target_already_passed(self):
        self.assertEqual(growth_rate_for_year(0.06, 0.03, 2025, 2026, 2020), 0.03)


if __name__ == "__main__":
    unittest.main()
