"""
Required spending for a simulated year, before guardrails or VPW.

Tiers are matched on the income reference person's age. A tier is one of:
- a fixed monthly amount
- a percentage (annual) of the portfolio at the start of the simulation
- "investment gains": this year's growth less inflation on the current portfolio

Fixed and percentage amounts are inflated from the retirement year. In
depletion mode a tier's `ratio` times the solver's monthly figure replaces
its amount.
"""
from typing import Optional

from config import IncomeConfig, IncomeTier


def tier_for_age(income: IncomeConfig, age: int) -> Optional[IncomeTier]:
    for tier in income.tiers:
        if tier.covers(age):
            return tier
    # past every range: stay on the last (open-ended) tier
    return income.tiers[-1] if income.tiers else None


def ratio_for_age(income: IncomeConfig, age: int) -> float:
    if not income.has_tiers:
        # legacy: before/after amounts act as the ratio
        before, after = income.monthly_before_age, income.monthly_after_age
        if before <= 0 and after <= 0:
            return 1.0
        base = before if before > 0 else after
        return (before if age < income.age_threshold else after) / base
    tier = tier_for_age(income, age)
    if tier is None or tier.ratio <= 0:
        return 1.0
    return tier.ratio


def base_monthly_income(income: IncomeConfig, age: int, initial_portfolio: float) -> Optional[float]:
    """Un-inflated monthly need at `age`. None means the tier is investment-gains
    based and has to be computed from this year's growth."""
    if not income.has_tiers:
        return income.monthly_before_age if age < income.age_threshold else income.monthly_after_age
    tier = tier_for_age(income, age)
    if tier is None:
        return 0.0
    if tier.is_investment_gains:
        return None
    if tier.is_percentage:
        return initial_portfolio * tier.monthly_amount / 100.0 / 12.0
    return tier.monthly_amount


def investment_gains_income(people, pension_rate: float, savings_rate: float, inflation: float) -> float:
    pension = sum(p.total_pension for p in people)
    isa = sum(p.tax_free_savings for p in people)
    gains = pension * pension_rate + isa * savings_rate
    inflation_loss = (pension + isa) * inflation
    return max(0.0, gains - inflation_loss)


def annual_required_income(income: IncomeConfig, age: int, initial_portfolio: float,
                           inflation_multiplier: float, people, pension_rate: float,
                           savings_rate: float, inflation: float,
                           depletion_multiplier: Optional[float] = None) -> float:
    if depletion_multiplier is not None:
        return ratio_for_age(income, age) * depletion_multiplier * 12 * inflation_multiplier
    monthly = base_monthly_income(income, age, initial_portfolio)
    if monthly is None:
        return investment_gains_income(people, pension_rate, savings_rate, inflation)
    return monthly * 12 * inflation_multiplier
