import unittest

from models import MortgageOption
from mortgage import EXTENDED_YEARS, Mortgage, MortgagePart


def _reference_part(**kw):
    args = dict(name="Main", principal=200_000, interest_rate=0.04, term_years=25, start_year=2024)
    args.update(kw)
    return MortgagePart(**args)


class TestMortgagePart(unittest.TestCase):
    def test_reference_payment(self):
        self.assertAlmostEqual(_reference_part().monthly_payment(), 1_055.67, delta=0.01)

    def test_reference_balances(self):
        part = _reference_part()
        self.assertAlmostEqual(part.remaining_balance(2025), 195_245.38, delta=0.05)
        self.assertAlmostEqual(part.remaining_balance(2034), 142_718.79, delta=0.05)
        self.assertEqual(part.remaining_balance(2049), 0.0)

    def test_balance_before_start_is_principal(self):
        self.assertEqual(_reference_part().remaining_balance(2020), 200_000)

    def test_balance_strictly_decreases(self):
        part = _reference_part()
        balances = [part.remaining_balance(y) for y in range(2024, 2050)]
        for before, after in zip(balances, balances[1:]):
            self.assertLess(after, before)

    def test_payment_exceeds_first_month_interest(self):
        part = _reference_part()
        self.assertGreater(part.monthly_payment(), part.principal * part.interest_rate / 12)

    def test_interest_only(self):
        part = _reference_part(is_repayment=False)
        self.assertAlmostEqual(part.monthly_payment(), 200_000 * 0.04 / 12)
        for year in (2024, 2030, 2049, 2060):
            self.assertEqual(part.remaining_balance(year), 200_000)

    def test_zero_principal(self):
        part = _reference_part(principal=0)
        self.assertEqual(part.monthly_payment(), 0.0)
        for year in (2020, 2030, 2060):
            self.assertEqual(part.remaining_balance(year), 0.0)

    def test_zero_rate(self):
        part = _reference_part(principal=120_000, interest_rate=0.0, term_years=10, start_year=2020)
        self.assertAlmostEqual(part.monthly_payment(), 1_000)
        self.assertAlmostEqual(part.remaining_balance(2025), 60_000)


class TestMortgage(unittest.TestCase):
    def setUp(self):
        self.mortgage = Mortgage(parts=(_reference_part(),), end_year=2049, early_payoff_year=2030)

    def test_payoff_years(self):
        self.assertEqual(self.mortgage.payoff_year(MortgageOption.NORMAL), 2049)
        self.assertEqual(self.mortgage.payoff_year(MortgageOption.EARLY), 2030)
        self.assertEqual(self.mortgage.payoff_year(MortgageOption.PCLS), 2030)
        self.assertEqual(self.mortgage.payoff_year(MortgageOption.EXTENDED), 2049 + EXTENDED_YEARS)

    def test_early_payoff_costs(self):
        annual = self.mortgage.total_annual_payment()
        self.assertAlmostEqual(self.mortgage.cost_for_year(2029, MortgageOption.EARLY), annual)
        self.assertAlmostEqual(
            self.mortgage.cost_for_year(2030, MortgageOption.EARLY),
            self.mortgage.total_payoff_amount(2030),
        )
        self.assertEqual(self.mortgage.cost_for_year(2031, MortgageOption.EARLY), 0.0)

    def test_repayment_stops_at_term_end(self):
        self.assertEqual(self.mortgage.cost_for_year(2052, MortgageOption.EXTENDED), 0.0)
        self.assertEqual(self.mortgage.cost_for_year(2049, MortgageOption.NORMAL), 0.0)

    def test_future_part_costs_nothing_until_it_starts(self):
        remortgage = _reference_part(name="Remortgage", start_year=2030)
        mortgage = Mortgage(parts=(remortgage,), end_year=2055)
        self.assertEqual(remortgage.payment_in_year(2029), 0.0)
        self.assertEqual(mortgage.cost_for_year(2025, MortgageOption.NORMAL), 0.0)
        self.assertAlmostEqual(mortgage.cost_for_year(2030, MortgageOption.NORMAL), remortgage.annual_payment())

    def test_interest_only_extended(self):
        mortgage = Mortgage(parts=(_reference_part(is_repayment=False),), end_year=2049)
        self.assertAlmostEqual(mortgage.cost_for_year(2055, MortgageOption.EXTENDED), 8_000)
        self.assertEqual(mortgage.cost_for_year(2059, MortgageOption.EXTENDED), 200_000)

    def test_no_mortgage(self):
        empty = Mortgage()
        self.assertFalse(empty.has_mortgage)
        self.assertEqual(empty.cost_for_year(2030, MortgageOption.NORMAL), 0.0)

    def test_schedule(self):
        df = self.mortgage.schedule(2024, 2050)
        self.assertEqual(len(df), 27)
        self.assertEqual(df["total_balance"].iloc[-1], 0.0)
        self.assertAlmostEqual(df.loc[df["year"] == 2034, "Main_balance"].item(), 142_718.79, delta=0.05)


if __name__ == "__main__":
    unittest.main()
