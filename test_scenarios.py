import json
import unittest

from config import config_from_dict, default_config
from exporters import export_config, export_matrix, export_results_json, export_year_table, matrix_frame, result_frame
from models import CrystallisationStrategy, DrawdownOrder, MortgageOption, SimulationParams, SimulationResult
from scenarios import clone_cfg, compare, find_best, rank_results, run_strategy_matrix, strategy_combinations

MORTGAGE = {
    "parts": [{"name": "Home", "principal": 150_000, "interest_rate": 0.045, "term_years": 25, "start_year": 2015}],
    "early_payoff_year": 2030,
}


def _couple(**sections):
    data = {
        "people": [
            {"name": "Alex", "birth_date": "1962-03-01", "retirement_age": 62, "tax_free_savings": 80_000,
             "pension": 400_000},
            {"name": "Sam", "birth_date": "1964-07-01", "retirement_age": 60, "tax_free_savings": 60_000,
             "pension": 250_000},
        ],
        "income": {"tiers": [{"monthly_amount": 3_000}]},
        "simulation": {"start_year": 2025, "end_age": 90},
    }
    data.update(sections)
    return config_from_dict(data)


class TestCombinations(unittest.TestCase):
    def test_quick(self):
        combos = strategy_combinations(_couple(), "quick")
        self.assertEqual(len(combos), 6)
        self.assertEqual({c.drawdown_order for c in combos},
                         {DrawdownOrder.PENSION_FIRST, DrawdownOrder.SAVINGS_FIRST, DrawdownOrder.TAX_OPTIMIZED})
        self.assertTrue(all(c.mortgage_option == MortgageOption.NORMAL for c in combos))

    def test_standard_without_mortgage(self):
        combos = strategy_combinations(_couple(), "standard")
        self.assertEqual(len(combos), 2 * len(DrawdownOrder))
        self.assertTrue(all(c.maximize_couple_isa for c in combos))

    def test_standard_with_mortgage(self):
        combos = strategy_combinations(_couple(mortgage=MORTGAGE), "standard")
        self.assertEqual(len(combos), 2 * len(DrawdownOrder) * len(MortgageOption))

    def test_thorough_adds_guardrails(self):
        combos = strategy_combinations(_couple(), "thorough")
        self.assertEqual(len(combos), 2 * len(DrawdownOrder) * 2)
        self.assertEqual({c.guardrails for c in combos}, {False, True})

    def test_comprehensive_add_ons(self):
        cfg = _couple()
        cfg.people[0].work_income = 40_000
        combos = strategy_combinations(cfg, "comprehensive")
        self.assertEqual(len(combos), 2 * len(DrawdownOrder) * 2 * 3 * 2 * 2)
        self.assertEqual({c.state_pension_defer_years for c in combos}, {0, 2, 5})

    def test_single_person_has_no_couple_isa(self):
        cfg = _couple()
        cfg.people.pop()
        combos = strategy_combinations(cfg, "comprehensive")
        self.assertFalse(any(c.maximize_couple_isa for c in combos))
        self.assertFalse(any(c.isa_to_pension for c in combos))

    def test_unique(self):
        combos = strategy_combinations(_couple(mortgage=MORTGAGE), "thorough")
        self.assertEqual(len(set(combos)), len(combos))


class TestMatrix(unittest.TestCase):
    def test_results_in_combination_order(self):
        cfg = _couple()
        combos = strategy_combinations(cfg, "quick")
        results = run_strategy_matrix(cfg, combos, processes=1)
        self.assertEqual([r.params for r in results], combos)

    def test_parallel_matches_serial(self):
        cfg = _couple()
        combos = strategy_combinations(cfg, "quick")
        serial = run_strategy_matrix(cfg, combos, processes=1)
        parallel = run_strategy_matrix(cfg, combos, processes=2)
        self.assertEqual(export_results_json(serial), export_results_json(parallel))

    def test_byte_identical_reruns(self):
        cfg = _couple(mortgage=MORTGAGE)
        combos = strategy_combinations(cfg, "standard")
        first = export_results_json(run_strategy_matrix(cfg, combos, processes=1))
        second = export_results_json(run_strategy_matrix(cfg, combos, processes=1))
        self.assertEqual(first, second)


class TestRanking(unittest.TestCase):
    def _result(self, order, tax, withdrawn, ran_out_year=None):
        params = SimulationParams(CrystallisationStrategy.GRADUAL, order)
        return SimulationResult(params=params, total_tax_paid=tax, total_withdrawn=withdrawn,
                                ran_out_of_money=ran_out_year is not None, ran_out_year=ran_out_year)

    def setUp(self):
        self.results = [
            self._result(DrawdownOrder.SAVINGS_FIRST, 50_000, 900_000, ran_out_year=2040),
            self._result(DrawdownOrder.PENSION_FIRST, 80_000, 1_000_000),
            self._result(DrawdownOrder.TAX_OPTIMIZED, 60_000, 950_000),
        ]

    def test_least_tax_skips_runs_that_ran_out(self):
        self.assertEqual(find_best(self.results, "tax").params.drawdown_order, DrawdownOrder.TAX_OPTIMIZED)

    def test_most_income(self):
        self.assertEqual(find_best(self.results, "income").params.drawdown_order, DrawdownOrder.PENSION_FIRST)

    def test_ran_out_ranks_last(self):
        self.assertEqual(rank_results(self.results, "tax")[-1].params.drawdown_order, DrawdownOrder.SAVINGS_FIRST)

    def test_all_ran_out_picks_latest(self):
        early = self._result(DrawdownOrder.SAVINGS_FIRST, 1, 1, ran_out_year=2035)
        late = self._result(DrawdownOrder.PENSION_FIRST, 1, 1, ran_out_year=2045)
        self.assertIs(find_best([early, late], "balance"), late)

    def test_empty(self):
        self.assertIsNone(find_best([], "tax"))


class TestCompare(unittest.TestCase):
    def test_clone_overrides_one_field(self):
        cfg = default_config()
        clone = clone_cfg(cfg, financial__income_inflation_rate=0.0)
        self.assertEqual(clone.financial.income_inflation_rate, 0.0)
        self.assertEqual(cfg.financial.income_inflation_rate, 0.03)

    def test_clone_rejects_unknown_field(self):
        with self.assertRaises(AttributeError):
            clone_cfg(default_config(), financial__nope=1)

    def test_lower_inflation_leaves_more(self):
        params = SimulationParams(CrystallisationStrategy.GRADUAL, DrawdownOrder.TAX_OPTIMIZED)
        res = compare(_couple(), params, [("base", {}), ("no inflation", {"financial__income_inflation_rate": 0.0})])
        self.assertEqual(list(res), ["base", "no inflation"])
        self.assertGreater(res["no inflation"].final_total_balance, res["base"].final_total_balance)


class TestExport(unittest.TestCase):
    def setUp(self):
        cfg = _couple()
        self.cfg = cfg
        self.results = run_strategy_matrix(cfg, strategy_combinations(cfg, "quick"), processes=1)

    def test_year_table(self):
        df = result_frame(self.results[0])
        self.assertEqual(len(df), len(self.results[0].years))
        for col in ("year", "tax_paid", "total_balance", "Alex_isa", "Sam_crystallised"):
            self.assertIn(col, df.columns)
        name, data = export_year_table(self.results[0])
        self.assertEqual(name, "year_by_year.csv")
        self.assertTrue(data.startswith(b"year,"))

    def test_matrix_table(self):
        df = matrix_frame(self.results)
        self.assertEqual(len(df), 6)
        self.assertEqual(df["drawdown_order"].iloc[0], "pension_first")
        self.assertEqual(df["strategy"].iloc[0], "Gradual + Pension First + Normal Payoff + Max Couple ISA")
        name, _ = export_matrix(self.results)
        self.assertEqual(name, "strategies.csv")

    def test_results_json_parses(self):
        _, data = export_results_json(self.results)
        payload = json.loads(data)
        self.assertEqual(len(payload), 6)
        self.assertEqual(payload[0]["params"]["crystallisation"], "gradual")
        self.assertEqual(len(payload[0]["years"]), len(self.results[0].years))

    def test_config_json_round_trips(self):
        name, data = export_config(self.cfg)
        self.assertEqual(name, "config.json")
        self.assertEqual(config_from_dict(json.loads(data)), self.cfg)


if __name__ == "__main__":
    unittest.main()
