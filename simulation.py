import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from config import Config, build_people
from crystallisation import take_pcls_lump_sum
from drawdown import DRAWS_WITHOUT_NEED, execute_drawdown
from growth import apply_growth, growth_rate_for_year
from guardrails import GuardrailsState
from income import annual_required_income, base_monthly_income
from models import (
    MortgageOption, Person, PersonBalances, PersonPhase, SimulationParams, SimulationResult,
    WithdrawalBreakdown, YearState,
)
from mortgage import Mortgage
from tax_uk import (
    basic_rate_limit, calculate_tax_with_tapering, inflate_taper, inflate_tax_bands,
    personal_allowance,
)
from vpw import VPWState, vpw_rate
from withdrawals import DrawContext

log = logging.getLogger(__name__)

RAN_OUT_BALANCE = 1_000.0       # household total below this counts as broke
SHORTFALL_TOLERANCE = 1.0
EMPTY_POT = 0.01
PENSION_ANNUAL_ALLOWANCE = 60_000
BASIC_RATE_RELIEF = 0.20


class SimulationInvariantError(RuntimeError):
    pass


@dataclass
class RunState:
    """Everything one run carries from year to year."""
    config: Config
    params: SimulationParams
    people: List[Person]
    mortgage: Mortgage
    start_year: int
    end_year: int
    initial_portfolio: float
    income_ref: Person
    growth_ref: Person
    guardrails: Optional[GuardrailsState] = None
    guardrails_started: bool = False
    vpw: Optional[VPWState] = None
    depletion_multiplier: Optional[float] = None


def _find(people: List[Person], name: str) -> Person:
    for p in people:
        if p.name == name:
            return p
    return people[0]


def new_run(config: Config, params: SimulationParams,
            depletion_multiplier: Optional[float] = None) -> RunState:
    defer = params.state_pension_defer_years or None
    people = build_people(config, state_pension_defer_years=defer)
    start_year = config.simulation.start_year
    for p in people:
        # commutation lump sum was paid before the plan starts
        if p.db_pension_start_age > 0 and p.birth_year + p.db_pension_start_age < start_year:
            p.db_pension_lump_sum_taken = True
    sim_ref = _find(people, config.simulation.reference_person)
    income = config.income
    guardrails = None
    if params.guardrails:
        guardrails = GuardrailsState(income.guardrails_upper_limit or 1.20,
                                     income.guardrails_lower_limit or 0.80,
                                     income.guardrails_adjustment or 0.10)
    vpw = None
    if income.vpw_enabled:
        vpw = VPWState(income.vpw_floor, income.vpw_ceiling)
    return RunState(
        config=config,
        params=params,
        people=people,
        mortgage=config.mortgage.to_mortgage(),
        start_year=start_year,
        end_year=sim_ref.birth_year + config.simulation.end_age,
        initial_portfolio=sum(p.total_wealth for p in people),
        income_ref=_find(people, income.reference_person or config.simulation.reference_person),
        growth_ref=_find(people, config.financial.growth_decline_reference_person
                         or config.simulation.reference_person),
        guardrails=guardrails,
        vpw=vpw,
        depletion_multiplier=depletion_multiplier,
    )


def _growth_rates(run: RunState, year: int):
    fin = run.config.financial
    if not fin.growth_decline_enabled:
        return fin.pension_growth_rate, fin.savings_growth_rate
    target_year = run.growth_ref.birth_year + fin.growth_decline_target_age
    return (
        growth_rate_for_year(fin.pension_growth_rate, fin.pension_growth_end_rate,
                             run.start_year, year, target_year),
        growth_rate_for_year(fin.savings_growth_rate, fin.savings_growth_end_rate,
                             run.start_year, year, target_year),
    )


def _required_income(run: RunState, state: YearState, year: int, portfolio: float,
                     pension_rate: float, savings_rate: float):
    fin = run.config.financial
    ref = run.income_ref
    ref_age = ref.age(year)
    if ref_age < ref.retirement_age:
        return
    years_retired = max(0, year - (ref.birth_year + ref.retirement_age))
    inflation_multiplier = (1 + fin.income_inflation_rate) ** years_retired

    state.required_income = annual_required_income(
        run.config.income, ref_age, run.initial_portfolio, inflation_multiplier, run.people,
        pension_rate, savings_rate, fin.income_inflation_rate, run.depletion_multiplier,
    )

    if run.guardrails is not None:
        if not run.guardrails_started:
            run.guardrails.initialize(portfolio, state.required_income)
            run.guardrails_started = True
        else:
            run.guardrails.inflate(fin.income_inflation_rate)
            state.guardrails_triggered = run.guardrails.is_triggered(portfolio)
            state.guardrails_adjusted = run.guardrails.adjusted_withdrawal(portfolio, state.required_income)
            state.required_income = state.guardrails_adjusted

    if run.vpw is not None:
        state.vpw_rate = vpw_rate(ref_age)
        state.vpw_suggested_income = run.vpw.withdrawal(portfolio, ref_age, inflation_multiplier)
        state.required_income = state.vpw_suggested_income


def _set_emergency_funds(run: RunState, state: YearState, year: int):
    fin = run.config.financial
    if fin.emergency_fund_months <= 0:
        return
    if fin.emergency_fund_inflation_adjust:
        monthly = state.required_income / 12
    else:
        ref = run.income_ref
        monthly = base_monthly_income(run.config.income, ref.age(year), run.initial_portfolio) or 0.0
    per_person = monthly * fin.emergency_fund_months / len(run.people)
    for p in run.people:
        p.emergency_fund_minimum = per_person


def _mortgage(run: RunState, state: YearState, year: int) -> WithdrawalBreakdown:
    """Set this year's mortgage cost. Under the PCLS option the lump sums taken
    in the payoff year go straight to the lender."""
    pcls = WithdrawalBreakdown()
    mortgage, option = run.mortgage, run.params.mortgage_option
    state.mortgage_cost = mortgage.cost_for_year(year, option)
    if option != MortgageOption.PCLS or year != mortgage.payoff_year(option):
        return pcls
    owed = state.mortgage_cost
    for p in run.people:
        if owed <= 0:
            break
        if not p.can_access_pension(year) or p.uncrystallised_pot <= 0 or p.pcls_taken:
            continue
        lump = take_pcls_lump_sum(p)
        used = min(lump.tax_free_portion, owed)
        # lump landed in the ISA; move what the lender takes back out
        p.tax_free_savings -= used
        pcls.add_pension(p.name, used, 0.0)
        owed -= used
    state.pcls_tax_free = pcls.total_tax_free
    return pcls


def _guaranteed_income(run: RunState, state: YearState, year: int):
    fin = run.config.financial
    years_from_start = year - run.start_year
    for p in run.people:
        if p.receives_state_pension(year) and fin.state_pension_amount > 0:
            since = max(0, year - (p.birth_year + p.effective_state_pension_age))
            state.state_pension_by_person[p.name] = (
                p.deferred_state_pension(fin.state_pension_amount)
                * (1 + fin.state_pension_inflation) ** since
            )
        if p.receives_db_pension(year):
            if not p.db_pension_lump_sum_taken and p.db_pension_commutation > 0:
                lump = p.db_lump_sum()
                p.tax_free_savings += lump
                p.db_pension_lump_sum = lump
                p.db_pension_lump_sum_taken = True
            since = max(0, year - (p.birth_year + p.db_pension_start_age))
            state.db_pension_by_person[p.name] = (
                p.effective_db_pension() * (1 + fin.state_pension_inflation) ** since
            )
        earnings = 0.0
        if p.is_working(year):
            earnings += p.work_income
        if p.receives_part_time_income(year):
            earnings += p.part_time_income
        if earnings > 0:
            state.work_income_by_person[p.name] = earnings * (1 + fin.income_inflation_rate) ** years_from_start


def _isa_to_pension(run: RunState, state: YearState, year: int):
    """Recycle ISA savings into the pension while earning, to pick up basic-rate relief."""
    for p in run.people:
        if not p.is_working(year):
            continue
        earnings = state.work_income_by_person.get(p.name, 0.0)
        net = min(p.available_isa, (1 - BASIC_RATE_RELIEF) * min(earnings, PENSION_ANNUAL_ALLOWANCE))
        if net <= 0:
            continue
        gross = net / (1 - BASIC_RATE_RELIEF)
        p.tax_free_savings -= net
        p.uncrystallised_pot += gross
        state.isa_to_pension_by_person[p.name] = gross


def _floor_balances(people: List[Person]):
    for p in people:
        for attr in ("tax_free_savings", "uncrystallised_pot", "crystallised_pot"):
            value = getattr(p, attr)
            if value < 0:
                if value < -EMPTY_POT:
                    raise SimulationInvariantError(f"{p.name}.{attr} went negative: {value:.2f}")
                setattr(p, attr, 0.0)


def _check_finite(state: YearState):
    values = [
        state.start_balance, state.total_balance, state.required_income, state.mortgage_cost,
        state.net_required, state.total_tax_paid, state.net_income_received,
        state.withdrawals.total_withdrawn, state.withdrawals.total_isa_deposits,
    ]
    values.extend(b.total for b in state.end_balances.values())
    if not np.all(np.isfinite(values)):
        raise SimulationInvariantError(f"non-finite value in year {state.year}: {values}")


def simulate_year(run: RunState, year: int) -> YearState:
    cfg, params, people = run.config, run.params, run.people
    state = YearState(year=year)

    pension_rate, savings_rate = _growth_rates(run, year)
    state.pension_growth_rate, state.savings_growth_rate = pension_rate, savings_rate
    if year > run.start_year:
        for p in people:
            apply_growth(p, pension_rate, savings_rate)

    for p in people:
        state.ages[p.name] = p.age(year)
        state.start_balances[p.name] = p.balances()
    portfolio = sum(p.total_wealth for p in people)
    state.start_balance = portfolio

    _required_income(run, state, year, portfolio, pension_rate, savings_rate)
    _set_emergency_funds(run, state, year)
    pcls = _mortgage(run, state, year)
    state.total_required = state.required_income + state.mortgage_cost

    _guaranteed_income(run, state, year)
    if params.isa_to_pension:
        _isa_to_pension(run, state, year)

    other_income = state.guaranteed_income + state.pcls_tax_free
    state.net_required = max(0.0, state.total_required - other_income)
    if other_income >= state.required_income:
        state.net_income_required = 0.0
        state.net_mortgage_required = max(0.0, state.mortgage_cost - (other_income - state.required_income))
    else:
        state.net_income_required = state.required_income - other_income
        state.net_mortgage_required = state.mortgage_cost

    fin = cfg.financial
    bands = inflate_tax_bands(cfg.tax.bands, run.start_year, year, fin.tax_band_inflation)
    taper = inflate_taper(cfg.tax.taper, run.start_year, year, fin.tax_band_inflation)
    state.personal_allowance = personal_allowance(bands)
    state.basic_rate_limit = basic_rate_limit(bands)

    taxable_income = {
        p.name: (state.state_pension_by_person.get(p.name, 0.0)
                 + state.db_pension_by_person.get(p.name, 0.0)
                 + state.work_income_by_person.get(p.name, 0.0))
        for p in people
    }
    ctx = DrawContext(
        year=year,
        bands=bands,
        crystallisation=params.crystallisation,
        taxable_income=taxable_income,
        state_pension=dict(state.state_pension_by_person),
        taper=taper,
        maximize_couple_isa=params.maximize_couple_isa,
    )
    draws_anyway = (params.drawdown_order in DRAWS_WITHOUT_NEED
                    and any(p.can_access_pension(year) for p in people))
    if state.net_required > 0 or draws_anyway:
        withdrawals = execute_drawdown(people, state.net_required, params.drawdown_order, ctx)
    else:
        withdrawals = WithdrawalBreakdown()
    _floor_balances(people)

    withdrawal_tax = 0.0
    for p in people:
        base = taxable_income[p.name]
        tax = calculate_tax_with_tapering(base + withdrawals.taxable_for(p.name), bands, taper)
        withdrawal_tax += tax - calculate_tax_with_tapering(base, bands, taper)
        state.tax_by_person[p.name] = tax
    state.total_tax_paid = sum(state.tax_by_person.values())

    spendable = withdrawals.total_withdrawn - withdrawal_tax - withdrawals.total_isa_deposits
    state.shortfall = max(0.0, state.net_required - spendable)

    withdrawals.merge(pcls)
    state.withdrawals = withdrawals
    state.net_income_received = (state.guaranteed_income + withdrawals.total_withdrawn
                                 - state.total_tax_paid - withdrawals.total_isa_deposits)

    for p in people:
        state.end_balances[p.name] = p.balances()
        state.phases[p.name] = p.phase(year, withdrawals.pension_for(p.name) > 0)
    state.total_balance = sum(b.total for b in state.end_balances.values())

    _check_finite(state)
    return state


def _padded_state(run: RunState, year: int) -> YearState:
    state = YearState(year=year, padded=True)
    for p in run.people:
        state.ages[p.name] = p.age(year)
        state.phases[p.name] = PersonPhase.DEPLETED
        state.start_balances[p.name] = PersonBalances()
        state.end_balances[p.name] = PersonBalances()
    return state


def _exhausted(run: RunState, year: int) -> bool:
    """No money left and nothing more coming in."""
    if any(p.total_wealth >= EMPTY_POT for p in run.people):
        return False
    amount = run.config.financial.state_pension_amount
    return not any(p.has_future_income(year + 1, amount) for p in run.people)


def run_simulation(config: Config, params: SimulationParams,
                   depletion_multiplier: Optional[float] = None) -> SimulationResult:
    run = new_run(config, params, depletion_multiplier)
    log.debug("run %s: %d-%d", params.label, run.start_year, run.end_year)
    result = SimulationResult(params=params)

    for year in range(run.start_year, run.end_year + 1):
        if result.terminated_early_year is not None:
            result.years.append(_padded_state(run, year))
            continue
        state = simulate_year(run, year)
        result.years.append(state)
        result.total_tax_paid += state.total_tax_paid
        result.total_withdrawn += state.withdrawals.total_withdrawn

        broke = state.shortfall > SHORTFALL_TOLERANCE or state.total_balance < RAN_OUT_BALANCE
        if state.net_required > 0 and broke and not result.ran_out_of_money:
            result.ran_out_of_money = True
            result.ran_out_year = year
            log.debug("run %s: ran out of money in %d", params.label, year)
        if _exhausted(run, year):
            result.terminated_early_year = year

    result.final_balances = {p.name: p.balances() for p in run.people}
    log.debug(
        "run %s: tax %.0f, withdrawn %.0f, final %.0f",
        params.label, result.total_tax_paid, result.total_withdrawn, result.final_total_balance,
    )
    return result
