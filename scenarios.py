import copy
import itertools
import logging
import multiprocessing as mp
from typing import Dict, List, Optional, Sequence

from config import Config
from models import (
    CrystallisationStrategy, DrawdownOrder, MortgageOption, OptimizationGoal, SimulationParams,
    SimulationResult,
)
from simulation import run_simulation

log = logging.getLogger(__name__)

QUICK_ORDERS = (DrawdownOrder.PENSION_FIRST, DrawdownOrder.SAVINGS_FIRST, DrawdownOrder.TAX_OPTIMIZED)
DEFERRAL_CHOICES = (0, 2, 5)


def strategy_combinations(config: Config, mode: Optional[str] = None) -> List[SimulationParams]:
    """
    Every strategy to try for this household, in a fixed order.

    quick          crystallisation x 3 common orders, normal mortgage
    standard       every order and mortgage option, guardrails as configured
    thorough       standard, with guardrails both on and off
    comprehensive  thorough, plus couple ISA / ISA-to-pension / state pension deferral
    """
    mode = mode or config.strategy.permutation_mode
    has_mortgage = config.mortgage.to_mortgage().has_mortgage

    orders = list(QUICK_ORDERS) if mode == "quick" else list(DrawdownOrder)
    if mode == "quick" or not has_mortgage:
        mortgages = [MortgageOption.NORMAL]
    else:
        mortgages = list(MortgageOption)
    if mode in ("thorough", "comprehensive"):
        guardrails = [False, True]
    else:
        guardrails = [config.income.guardrails_enabled]

    couple_isa = [config.should_maximize_couple_isa()]
    isa_to_pension = [False]
    deferrals = [0]
    if mode == "comprehensive":
        if config.is_couple:
            couple_isa = [False, True]
        if any(p.work_income > 0 for p in config.people):
            isa_to_pension = [False, True]
        deferrals = list(DEFERRAL_CHOICES)

    return [
        SimulationParams(
            crystallisation=cryst,
            drawdown_order=order,
            mortgage_option=mortgage,
            guardrails=g,
            state_pension_defer_years=defer,
            maximize_couple_isa=isa,
            isa_to_pension=transfer,
        )
        for cryst, order, mortgage, g, defer, isa, transfer in itertools.product(
            list(CrystallisationStrategy), orders, mortgages, guardrails, deferrals, couple_isa, isa_to_pension,
        )
    ]


def pool_map(func, items: Sequence, processes: Optional[int] = None) -> list:
    """map() over a process pool, results in input order. Serial for one worker."""
    items = list(items)
    if processes is None:
        processes = max(1, mp.cpu_count() - 1)  # leave one core free
    processes = min(processes, len(items))
    if processes <= 1:
        return [func(item) for item in items]
    with mp.Pool(processes=processes) as pool:
        return pool.map(func, items)


def _run_one(args) -> SimulationResult:
    config, params = args
    return run_simulation(config, params)


def run_strategy_matrix(config: Config, combos: Optional[List[SimulationParams]] = None,
                        processes: Optional[int] = None) -> List[SimulationResult]:
    if combos is None:
        combos = strategy_combinations(config)
    if processes is None:
        processes = config.strategy.processes
    results = pool_map(_run_one, [(config, params) for params in combos], processes)
    ran_out = sum(r.ran_out_of_money for r in results)
    log.info("ran %d strategies, %d ran out of money", len(results), ran_out)
    return results


def rank_results(results: List[SimulationResult], goal) -> List[SimulationResult]:
    """Best first. Strategies that ran out always rank after those that did not,
    latest run-out first."""
    goal = OptimizationGoal(goal)

    def key(r: SimulationResult):
        if r.ran_out_of_money:
            return (1, -(r.ran_out_year or 0), -r.final_total_balance)
        if goal == OptimizationGoal.TAX:
            return (0, r.total_tax_paid, -r.final_total_balance)
        if goal == OptimizationGoal.INCOME:
            return (0, -r.total_withdrawn, r.total_tax_paid)
        return (0, -r.final_total_balance, r.total_tax_paid)

    return sorted(results, key=key)


def find_best(results: List[SimulationResult], goal) -> Optional[SimulationResult]:
    ranked = rank_results(results, goal)
    return ranked[0] if ranked else None


def clone_cfg(cfg: Config, **overrides) -> Config:
    """Deep copy with `section__field=value` overrides, e.g. financial__income_inflation_rate=0.04."""
    new = copy.deepcopy(cfg)
    for key, value in overrides.items():
        section, _, name = key.partition("__")
        target = getattr(new, section)
        if not hasattr(target, name):
            raise AttributeError(f"{section} has no field {name!r}")
        setattr(target, name, value)
    return new


def compare(cfg_main: Config, params: SimulationParams, variants: list) -> Dict[str, SimulationResult]:
    """
    variants: list of (name, overrides-dict)
    returns: dict name -> result
    """
    res = {}
    for name, edits in variants:
        cfg_v = clone_cfg(cfg_main, **edits)
        res[name] = run_simulation(cfg_v, params)
    return res
