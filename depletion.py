"""
Sustainable income search.

Finds the largest monthly income the household can take so that the money
lasts until a target age. Each evaluation is a full simulation with every income
tier scaled to `ratio x monthly`; the answer is the bracket's lower end, the
highest income seen to last.

Two oracles decide whether an income lasts: "household" watches the whole
household running out, "pension_only" watches the pension pots alone and
draws only from them, leaving the ISAs untouched until the pensions are gone.
"""
import copy
import dataclasses
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from config import Config, reference_person
from models import CrystallisationStrategy, DrawdownOrder, MortgageOption, SimulationParams, SimulationResult
from scenarios import pool_map, strategy_combinations
from simulation import run_simulation

log = logging.getLogger(__name__)

MAX_DOUBLINGS = 20
MIN_UPPER_BOUND = 100.0     # £/month
PENSION_EMPTY = 1_000.0     # pension pots under this count as drawn down


class DepletionStatus(str, Enum):
    CONVERGED = "converged"
    UNREACHABLE = "unreachable"         # runs out before the target even at £0
    NOT_CONVERGED = "not_converged"     # iteration cap hit
    UNBOUNDED = "unbounded"             # lasts past the target at any income tried
    NON_MONOTONIC = "non_monotonic"


class DepletionMode(str, Enum):
    HOUSEHOLD = "household"             # every strategy, whole household
    PENSION_ONLY = "pension_only"       # spend the pensions down, keep the ISAs
    PENSION_TO_ISA = "pension_to_isa"   # bank pension surplus in ISAs on the way


class MonotonicityError(RuntimeError):
    def __init__(self, lower: Tuple[float, Optional[int]], higher: Tuple[float, Optional[int]]):
        self.lower = lower
        self.higher = higher
        super().__init__(
            f"income £{higher[0]:,.2f}/month depletes in {higher[1] or 'never'} but "
            f"£{lower[0]:,.2f}/month depletes earlier, in {lower[1] or 'never'}"
        )


@dataclass
class DepletionResult:
    params: SimulationParams
    status: DepletionStatus
    monthly_income: float = 0.0
    target_year: int = 0
    depletion_year: Optional[int] = None
    result: Optional[SimulationResult] = None
    bracket: Tuple[float, float] = (0.0, 0.0)
    iterations: int = 0
    evaluated: Dict[float, Optional[int]] = field(default_factory=dict)

    @property
    def annual_income(self) -> float:
        return self.monthly_income * 12

    @property
    def converged(self) -> bool:
        return self.status == DepletionStatus.CONVERGED

    @property
    def final_isa(self) -> float:
        if self.result is None:
            return 0.0
        return sum(b.tax_free_savings for b in self.result.final_balances.values())


def run_depletion_year(result: SimulationResult) -> Optional[int]:
    """Year the money ran out; None if it never did."""
    if result.ran_out_of_money:
        return result.ran_out_year
    return result.depletion_year()


def pension_depletion_year(result: SimulationResult, threshold: float = PENSION_EMPTY) -> Optional[int]:
    """First year the pension pots end under `threshold`, or the year the
    household ran out if that came first. None if neither happens."""
    ran_out = result.ran_out_year if result.ran_out_of_money else None
    for state in result.years:
        if ran_out is not None and state.year >= ran_out:
            return ran_out
        if sum(b.pension for b in state.end_balances.values()) < threshold:
            return state.year
    return ran_out


ORACLES = {
    "household": run_depletion_year,
    "pension_only": pension_depletion_year,
}


def _as_year(year: Optional[int]) -> float:
    return math.inf if year is None else year


def _check_monotonic(evaluated: Dict[float, Optional[int]], x: float, year: Optional[int]):
    for seen_x, seen_year in evaluated.items():
        if x > seen_x and _as_year(year) > _as_year(seen_year):
            raise MonotonicityError((seen_x, seen_year), (x, year))
        if x < seen_x and _as_year(year) < _as_year(seen_year):
            raise MonotonicityError((x, year), (seen_x, seen_year))


def solve_depletion(config: Config, params: SimulationParams, target_age: Optional[int] = None,
                    tolerance: float = 1.0, max_iterations: int = 100,
                    oracle: str = "household") -> DepletionResult:
    depletes = ORACLES[oracle]
    if oracle == "pension_only":
        params = dataclasses.replace(params, drawdown_order=DrawdownOrder.PENSION_ONLY)
    cfg = copy.deepcopy(config)
    cfg.income.vpw_enabled = False
    ref = reference_person(cfg, cfg.simulation.reference_person)
    target_age = target_age or cfg.income.target_depletion_age or cfg.simulation.end_age
    target_year = ref.birth_year + target_age

    evaluated: Dict[float, Optional[int]] = {}

    def evaluate(x: float):
        result = run_simulation(cfg, params, depletion_multiplier=x)
        year = depletes(result)
        _check_monotonic(evaluated, x, year)
        evaluated[x] = year
        log.debug("%s: £%.2f/month -> %s", params.label, x, year)
        return result, year

    def lasts(year: Optional[int]) -> bool:
        return year is None or year >= target_year

    low = 0.0
    low_result, low_year = evaluate(low)
    if not lasts(low_year):
        log.warning("%s: runs out in %s even with no income, target %d",
                    params.label, low_year, target_year)
        return DepletionResult(params, DepletionStatus.UNREACHABLE, 0.0, target_year, low_year,
                               low_result, (0.0, 0.0), 0, evaluated)

    if oracle == "pension_only":
        assets = sum(p.pension for p in cfg.people)
    else:
        assets = sum(p.tax_free_savings + p.pension for p in cfg.people)
    years = max(1, target_year - cfg.simulation.start_year)
    high = max(MIN_UPPER_BOUND, 3 * assets / years / 12)
    high_result, high_year = evaluate(high)
    doublings = 0
    while lasts(high_year):
        if doublings >= MAX_DOUBLINGS:
            log.warning("%s: still lasting at £%.0f/month", params.label, high)
            return DepletionResult(params, DepletionStatus.UNBOUNDED, high, target_year, high_year,
                                   high_result, (high, math.inf), 0, evaluated)
        low, low_result, low_year = high, high_result, high_year
        high *= 2
        doublings += 1
        high_result, high_year = evaluate(high)

    status = DepletionStatus.CONVERGED
    iterations = 0
    while high - low > tolerance:
        if iterations >= max_iterations:
            status = DepletionStatus.NOT_CONVERGED
            log.warning("%s: no convergence after %d iterations, bracket £%.2f-£%.2f",
                        params.label, iterations, low, high)
            break
        mid = (low + high) / 2
        result, year = evaluate(mid)
        iterations += 1
        if lasts(year):
            low, low_result, low_year = mid, result, year
        else:
            high = mid

    log.debug("%s: sustainable £%.2f/month after %d iterations", params.label, low, iterations)
    return DepletionResult(params, status, low, target_year, low_year, low_result,
                           (low, high), iterations, evaluated)


def depletion_combinations(config: Config, mode=DepletionMode.HOUSEHOLD) -> List[SimulationParams]:
    """
    Strategies to solve for each mode.

    household       the configured strategy matrix
    pension_only    gradual crystallisation, pension-only order, per mortgage option
    pension_to_isa  gradual crystallisation, pension-to-ISA order, per mortgage option
    """
    mode = DepletionMode(mode)
    if mode == DepletionMode.HOUSEHOLD:
        return strategy_combinations(config)
    if config.mortgage.to_mortgage().has_mortgage:
        mortgages = list(MortgageOption)
    else:
        mortgages = [MortgageOption.NORMAL]
    if mode == DepletionMode.PENSION_ONLY:
        order, couple_isa = DrawdownOrder.PENSION_ONLY, False
    else:
        order, couple_isa = DrawdownOrder.PENSION_TO_ISA, config.should_maximize_couple_isa()
    return [
        SimulationParams(
            crystallisation=CrystallisationStrategy.GRADUAL,
            drawdown_order=order,
            mortgage_option=mortgage,
            guardrails=config.income.guardrails_enabled,
            maximize_couple_isa=couple_isa,
        )
        for mortgage in mortgages
    ]


def _solve_one(args) -> DepletionResult:
    config, params, target_age, oracle = args
    try:
        return solve_depletion(config, params, target_age, oracle=oracle)
    except MonotonicityError as e:
        log.warning("%s: %s", params.label, e)
        return DepletionResult(params, DepletionStatus.NON_MONOTONIC, bracket=(e.lower[0], e.higher[0]))


def run_all_depletion(config: Config, combos: Optional[List[SimulationParams]] = None,
                      processes: Optional[int] = None, target_age: Optional[int] = None,
                      mode=DepletionMode.HOUSEHOLD) -> List[DepletionResult]:
    mode = DepletionMode(mode)
    if combos is None:
        combos = depletion_combinations(config, mode)
    if processes is None:
        processes = config.strategy.processes
    oracle = "pension_only" if mode == DepletionMode.PENSION_ONLY else "household"
    jobs = [(config, params, target_age, oracle) for params in combos]
    results = pool_map(_solve_one, jobs, processes)
    log.info("solved %d %s strategies, %d converged",
             len(results), mode.value, sum(r.converged for r in results))
    return results


def find_best_depletion(results: List[DepletionResult]) -> Optional[DepletionResult]:
    """Highest sustainable income; ties go to the one paying less tax."""
    converged = [r for r in results if r.converged]
    if not converged:
        return None
    return min(converged, key=lambda r: (-r.monthly_income, r.result.total_tax_paid))
