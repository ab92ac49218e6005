"""
Growth-rate sensitivity.

Re-runs the strategy comparison, or the sustainable income search, over a
grid of (pension growth, savings growth) rates and keeps the best strategy
in each cell.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from config import Config
from depletion import DepletionMode, DepletionResult, find_best_depletion, run_all_depletion
from models import SimulationParams, SimulationResult
from scenarios import _run_one, clone_cfg, pool_map, strategy_combinations

log = logging.getLogger(__name__)

LEFTOVER_BALANCE = 1_000.0  # a run-out leaving more than this is still a usable plan


def growth_grid(lo: float, hi: float, step: float) -> List[float]:
    """Rates from lo to hi inclusive, every `step`."""
    if step <= 0:
        raise ValueError("step must be positive")
    if hi < lo:
        raise ValueError(f"grid end {hi} is below its start {lo}")
    n = int(np.floor((hi - lo) / step + 1e-6)) + 1
    return [round(float(r), 6) for r in lo + step * np.arange(n)]


def config_grids(config: Config):
    s = config.sensitivity
    return (growth_grid(s.pension_growth_min, s.pension_growth_max, s.step_size),
            growth_grid(s.savings_growth_min, s.savings_growth_max, s.step_size))


def growth_cfg(config: Config, pension_growth: float, savings_growth: float) -> Config:
    return clone_cfg(config, financial__pension_growth_rate=pension_growth,
                     financial__savings_growth_rate=savings_growth)


@dataclass
class SensitivityCell:
    pension_growth: float
    savings_growth: float
    best: Optional[SimulationResult] = None
    all_ran_out: bool = False

    def as_row(self) -> dict:
        b = self.best
        return {
            "pension_growth": self.pension_growth,
            "savings_growth": self.savings_growth,
            "best_strategy": b.params.label if b else "",
            "final_balance": b.final_total_balance if b else 0.0,
            "total_tax": b.total_tax_paid if b else 0.0,
            "lasts_until": b.ran_out_year if b and b.ran_out_of_money else None,
            "all_ran_out": self.all_ran_out,
        }


@dataclass
class DepletionSensitivityCell:
    pension_growth: float
    savings_growth: float
    best: Optional[DepletionResult] = None

    @property
    def monthly_income(self) -> float:
        return self.best.monthly_income if self.best else 0.0

    def as_row(self) -> dict:
        b = self.best
        return {
            "pension_growth": self.pension_growth,
            "savings_growth": self.savings_growth,
            "best_strategy": b.params.label if b else "",
            "monthly_income": self.monthly_income,
            "total_tax": b.result.total_tax_paid if b else 0.0,
            "final_isa": b.final_isa if b else 0.0,
        }


def best_for_cell(results: Sequence[SimulationResult]):
    """
    (best, all_ran_out) for one grid cell.

    Highest final balance among the plans that last, counting a run-out that
    still leaves over LEFTOVER_BALANCE. When every plan runs dry the one that
    lasts longest wins.
    """
    if not results:
        return None, False
    usable = [r for r in results if not r.ran_out_of_money or r.final_total_balance > LEFTOVER_BALANCE]
    if usable:
        return max(usable, key=lambda r: (r.final_total_balance, -r.total_tax_paid)), False
    return max(results, key=lambda r: (r.ran_out_year or 0, r.final_total_balance)), True


def run_sensitivity(config: Config, pension_rates: Optional[Sequence[float]] = None,
                    savings_rates: Optional[Sequence[float]] = None,
                    combos: Optional[List[SimulationParams]] = None,
                    processes: Optional[int] = None) -> List[SensitivityCell]:
    """Best strategy per growth cell, pension rates outer, savings rates inner."""
    default_pension, default_savings = config_grids(config)
    pension_rates = default_pension if pension_rates is None else list(pension_rates)
    savings_rates = default_savings if savings_rates is None else list(savings_rates)
    if combos is None:
        combos = strategy_combinations(config)
    if processes is None:
        processes = config.strategy.processes

    cells = [(pg, sg) for pg in pension_rates for sg in savings_rates]
    jobs = [(growth_cfg(config, pg, sg), params) for pg, sg in cells for params in combos]
    results = pool_map(_run_one, jobs, processes)

    n = len(combos)
    out = []
    for i, (pg, sg) in enumerate(cells):
        best, all_ran_out = best_for_cell(results[i * n:(i + 1) * n])
        out.append(SensitivityCell(pg, sg, best, all_ran_out))
    log.info("sensitivity: %d cells x %d strategies, %d cells all ran out",
             len(cells), n, sum(c.all_ran_out for c in out))
    return out


def run_depletion_sensitivity(config: Config, pension_rates: Optional[Sequence[float]] = None,
                              savings_rates: Optional[Sequence[float]] = None,
                              mode=DepletionMode.HOUSEHOLD, processes: Optional[int] = None,
                              target_age: Optional[int] = None) -> List[DepletionSensitivityCell]:
    """Best sustainable income per growth cell."""
    default_pension, default_savings = config_grids(config)
    pension_rates = default_pension if pension_rates is None else list(pension_rates)
    savings_rates = default_savings if savings_rates is None else list(savings_rates)

    out = []
    for pg in pension_rates:
        for sg in savings_rates:
            solved = run_all_depletion(growth_cfg(config, pg, sg), processes=processes,
                                       target_age=target_age, mode=mode)
            best = find_best_depletion(solved)
            if best is None:
                log.warning("sensitivity %.3f/%.3f: no strategy reached the target", pg, sg)
            out.append(DepletionSensitivityCell(pg, sg, best))
    log.info("depletion sensitivity (%s): %d cells", DepletionMode(mode).value, len(out))
    return out
