import copy
import unittest

from drawdown import DRAWDOWN_HANDLERS, execute_drawdown
from models import CrystallisationStrategy, DrawdownOrder, Person
from tax_uk import UK_2024_BANDS, calculate_tax_with_tapering
from withdrawals import DrawContext

YEAR = 2025


def _person(name="Alex", isa=0.0, pension=0.0, birth_year=1960, **kw):
    return Person(name=name, birth_year=birth_year, retirement_age=60, state_pension_age=67,
                  tax_free_savings=isa, uncrystallised_pot=pension, **kw)


def _ctx(strategy=CrystallisationStrategy.GRADUAL, **kw):
    return DrawContext(year=YEAR, bands=UK_2024_BANDS, crystallisation=strategy, **kw)


def _net(people, breakdown, ctx):
    tax = sum(
        calculate_tax_with_tapering(ctx.taxable_income.get(p.name, 0.0) + breakdown.taxable_for(p.name), ctx.bands)
        - calculate_tax_with_tapering(ctx.taxable_income.get(p.name, 0.0), ctx.bands)
        for p in people
    )
    return breakdown.total_withdrawn - tax - breakdown.total_isa_deposits


class TestSimpleOrders(unittest.TestCase):
    def test_savings_first_shares_isas(self):
        people = [_person("Alex", isa=50_000, pension=300_000), _person("Sam", isa=30_000)]
        b = execute_drawdown(people, 40_000, DrawdownOrder.SAVINGS_FIRST, _ctx())
        self.assertAlmostEqual(b.tax_free_from_isa["Alex"], 25_000)
        self.assertAlmostEqual(b.tax_free_from_isa["Sam"], 15_000)
        self.assertEqual(b.total_taxable, 0.0)
        self.assertAlmostEqual(people[0].uncrystallised_pot, 300_000)

    def test_pension_first_ufpls(self):
        people = [_person(isa=10_000, pension=100_000)]
        b = execute_drawdown(people, 10_000, DrawdownOrder.PENSION_FIRST, _ctx(CrystallisationStrategy.UFPLS))
        self.assertAlmostEqual(b.tax_free_from_pension["Alex"], 2_500, delta=0.01)
        self.assertAlmostEqual(b.taxable_from_pension["Alex"], 7_500, delta=0.01)
        self.assertEqual(b.tax_free_from_isa, {})
        self.assertAlmostEqual(people[0].tax_free_savings, 10_000)

    def test_pension_first_clips_then_uses_isa(self):
        people = [_person(isa=20_000, pension=5_000)]
        b = execute_drawdown(people, 15_000, DrawdownOrder.PENSION_FIRST, _ctx())
        self.assertAlmostEqual(b.pension_for("Alex"), 5_000)
        self.assertAlmostEqual(b.tax_free_from_isa["Alex"], 10_000, delta=0.02)
        self.assertEqual(people[0].total_pension, 0.0)

    def test_pension_only_keeps_isa(self):
        people = [_person(isa=20_000, pension=100_000)]
        b = execute_drawdown(people, 10_000, DrawdownOrder.PENSION_ONLY, _ctx())
        self.assertEqual(b.tax_free_from_isa, {})
        self.assertAlmostEqual(people[0].tax_free_savings, 20_000)

    def test_pension_only_falls_back_to_isa(self):
        people = [_person(isa=20_000, pension=0)]
        b = execute_drawdown(people, 10_000, DrawdownOrder.PENSION_ONLY, _ctx())
        self.assertAlmostEqual(b.tax_free_from_isa["Alex"], 10_000)

    def test_pension_locked_before_access_age(self):
        people = [_person(isa=5_000, pension=300_000, birth_year=1975)]
        b = execute_drawdown(people, 20_000, DrawdownOrder.SAVINGS_FIRST, _ctx())
        self.assertAlmostEqual(b.total_withdrawn, 5_000)
        self.assertAlmostEqual(people[0].uncrystallised_pot, 300_000)


class TestTaxOptimized(unittest.TestCase):
    def test_couple_fills_allowances_and_basic_band_evenly(self):
        people = [_person("Alex", isa=100_000, pension=300_000), _person("Sam", isa=100_000, pension=300_000)]
        ctx = _ctx()
        b = execute_drawdown(people, 60_000, DrawdownOrder.TAX_OPTIMIZED, ctx)
        self.assertLess(sum(b.tax_free_from_isa.values()), 1.0)
        self.assertAlmostEqual(b.taxable_for("Alex"), b.taxable_for("Sam"), delta=0.05)
        self.assertGreater(b.taxable_for("Alex"), 12_570)
        self.assertLess(b.taxable_for("Alex"), 50_270)
        self.assertAlmostEqual(_net(people, b, ctx), 60_000, delta=1.0)

    def test_isa_before_higher_rate(self):
        people = [_person(isa=200_000, pension=1_000_000)]
        ctx = _ctx()
        b = execute_drawdown(people, 60_000, DrawdownOrder.TAX_OPTIMIZED, ctx)
        self.assertLessEqual(b.taxable_for("Alex"), 50_270 + 0.02)
        # net of the whole basic band (gradual, no PCLS) is 59,486.67
        self.assertAlmostEqual(b.tax_free_from_isa["Alex"], 513.33, delta=0.05)
        self.assertAlmostEqual(_net(people, b, ctx), 60_000, delta=1.0)

    def test_higher_rate_once_isa_is_gone(self):
        people = [_person(isa=0, pension=1_000_000)]
        ctx = _ctx()
        b = execute_drawdown(people, 80_000, DrawdownOrder.TAX_OPTIMIZED, ctx)
        self.assertGreater(b.taxable_for("Alex"), 50_270)
        self.assertAlmostEqual(_net(people, b, ctx), 80_000, delta=1.0)

    def test_existing_income_uses_up_allowance(self):
        people = [_person(isa=0, pension=500_000)]
        ctx = _ctx(taxable_income={"Alex": 12_570})
        b = execute_drawdown(people, 8_000, DrawdownOrder.TAX_OPTIMIZED, ctx)
        self.assertAlmostEqual(_net(people, b, ctx), 8_000, delta=1.0)
        self.assertGreater(b.total_withdrawn, 8_000)


class TestOverdrawOrders(unittest.TestCase):
    def test_fill_basic_rate_banks_surplus_in_isa(self):
        people = [_person(isa=0, pension=1_000_000)]
        ctx = _ctx()
        b = execute_drawdown(people, 20_000, DrawdownOrder.FILL_BASIC_RATE, ctx)
        self.assertAlmostEqual(b.isa_deposits["Alex"], 20_000, delta=0.02)
        self.assertAlmostEqual(people[0].tax_free_savings, 20_000, delta=0.02)
        self.assertAlmostEqual(_net(people, b, ctx), 20_000, delta=1.0)

    def test_pension_to_isa_does_nothing_without_need(self):
        people = [_person(isa=0, pension=1_000_000)]
        b = execute_drawdown(people, 0, DrawdownOrder.PENSION_TO_ISA, _ctx())
        self.assertEqual(b.total_withdrawn, 0.0)

    def test_proactive_splits_deposits_equally(self):
        people = [_person("Alex", pension=1_000_000), _person("Sam", pension=0)]
        b = execute_drawdown(people, 0, DrawdownOrder.PENSION_TO_ISA_PROACTIVE, _ctx())
        self.assertAlmostEqual(b.isa_deposits["Alex"], 20_000, delta=0.02)
        self.assertAlmostEqual(b.isa_deposits["Sam"], 20_000, delta=0.02)
        self.assertEqual(b.pension_for("Sam"), 0.0)

    def test_deposits_never_exceed_allowance(self):
        people = [_person(isa=0, pension=1_000_000, isa_annual_limit=5_000)]
        b = execute_drawdown(people, 10_000, DrawdownOrder.FILL_BASIC_RATE, _ctx())
        self.assertLessEqual(b.isa_deposits["Alex"], 5_000 + 1e-9)

    def test_bridge_before_state_pension_overdraws(self):
        people = [_person(isa=0, pension=1_000_000)]
        b = execute_drawdown(people, 10_000, DrawdownOrder.STATE_PENSION_BRIDGE, _ctx())
        self.assertGreater(b.total_isa_deposits, 0.0)

    def test_bridge_with_state_pension_is_pension_first(self):
        people = [_person(isa=50_000, pension=500_000)]
        twin = copy.deepcopy(people)
        ctx = _ctx(taxable_income={"Alex": 11_000}, state_pension={"Alex": 11_000})
        bridged = execute_drawdown(people, 15_000, DrawdownOrder.STATE_PENSION_BRIDGE, ctx)
        plain = execute_drawdown(twin, 15_000, DrawdownOrder.PENSION_FIRST, ctx)
        self.assertEqual(bridged, plain)


class TestEveryOrder(unittest.TestCase):
    def _household(self):
        return [_person("Alex", isa=3_000, pension=8_000), _person("Sam", isa=1_000, pension=2_000, crystallised_pot=500)]

    def test_pots_never_negative(self):
        for order in DRAWDOWN_HANDLERS:
            for strategy in CrystallisationStrategy:
                people = self._household()
                execute_drawdown(people, 50_000, order, _ctx(strategy))
                for p in people:
                    for pot in (p.tax_free_savings, p.uncrystallised_pot, p.crystallised_pot):
                        self.assertGreaterEqual(pot, -1e-6, (order, strategy, p.name))

    def test_deterministic(self):
        for order in DRAWDOWN_HANDLERS:
            first, second = self._household(), self._household()
            a = execute_drawdown(first, 6_000, order, _ctx())
            b = execute_drawdown(second, 6_000, order, _ctx())
            self.assertEqual(a, b, order)
            self.assertEqual([p.balances() for p in first], [p.balances() for p in second])


if __name__ == "__main__":
    unittest.main()
