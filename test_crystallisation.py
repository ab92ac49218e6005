import unittest

from crystallisation import (
    gradual_crystallise, take_pcls_lump_sum, ufpls_withdraw, withdraw_from_crystallised, withdraw_from_isa,
)
from models import Person


def _person(**kw):
    args = dict(name="Alex", birth_year=1965, retirement_age=57, state_pension_age=67,
                tax_free_savings=50_000, uncrystallised_pot=400_000)
    args.update(kw)
    return Person(**args)


class TestCrystallisation(unittest.TestCase):
    def test_gradual_splits_and_moves_taxable_part(self):
        p = _person()
        res = gradual_crystallise(p, 40_000)
        self.assertAlmostEqual(res.tax_free_portion, 10_000)
        self.assertAlmostEqual(res.taxable_portion, 30_000)
        self.assertAlmostEqual(p.uncrystallised_pot, 360_000)
        self.assertAlmostEqual(p.crystallised_pot, 30_000)
        # tax-free cash left the pots
        self.assertAlmostEqual(p.uncrystallised_pot + p.crystallised_pot + res.tax_free_portion, 400_000, delta=0.01)

    def test_gradual_after_pcls_is_all_taxable(self):
        p = _person(pcls_taken=True)
        res = gradual_crystallise(p, 40_000)
        self.assertEqual(res.tax_free_portion, 0.0)
        self.assertAlmostEqual(res.taxable_portion, 40_000)

    def test_ufpls_leaves_remaining_entitlement(self):
        p = _person()
        res = ufpls_withdraw(p, 20_000)
        self.assertAlmostEqual(res.tax_free_portion, 5_000)
        self.assertAlmostEqual(res.taxable_portion, 15_000)
        self.assertAlmostEqual(p.uncrystallised_pot, 380_000)
        self.assertEqual(p.crystallised_pot, 0.0)
        self.assertFalse(p.pcls_taken)

    def test_split_is_exactly_quarter(self):
        for amount in (0.37, 1_234.56, 99_999.99):
            for fn in (gradual_crystallise, ufpls_withdraw):
                res = fn(_person(), amount)
                self.assertAlmostEqual(res.tax_free_portion / res.amount_crystallised, 0.25, places=6)
                self.assertAlmostEqual(res.tax_free_portion + res.taxable_portion, amount, delta=0.01)

    def test_clipped_to_pot(self):
        p = _person(uncrystallised_pot=1_000)
        res = ufpls_withdraw(p, 5_000)
        self.assertAlmostEqual(res.amount_crystallised, 1_000)
        self.assertEqual(p.uncrystallised_pot, 0.0)
        self.assertEqual(ufpls_withdraw(p, 100).amount_crystallised, 0.0)

    def test_pcls_lump_sum(self):
        p = _person()
        res = take_pcls_lump_sum(p)
        self.assertAlmostEqual(res.tax_free_portion, 100_000)
        self.assertAlmostEqual(p.tax_free_savings, 150_000)
        self.assertAlmostEqual(p.crystallised_pot, 300_000)
        self.assertEqual(p.uncrystallised_pot, 0.0)
        self.assertTrue(p.pcls_taken)
        self.assertAlmostEqual(p.total_wealth, 450_000)
        # only once
        self.assertEqual(take_pcls_lump_sum(p).amount_crystallised, 0.0)

    def test_isa_respects_emergency_fund(self):
        p = _person(emergency_fund_minimum=45_000)
        self.assertAlmostEqual(withdraw_from_isa(p, 10_000), 5_000)
        self.assertAlmostEqual(p.tax_free_savings, 45_000)
        self.assertEqual(withdraw_from_isa(p, 10_000), 0.0)

    def test_crystallised_withdrawal_clipped(self):
        p = _person(crystallised_pot=2_000)
        self.assertEqual(withdraw_from_crystallised(p, 3_000), 2_000)
        self.assertEqual(p.crystallised_pot, 0.0)


if __name__ == "__main__":
    unittest.main()
