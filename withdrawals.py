"""Pot-level building blocks shared by the drawdown orders."""
from dataclasses import dataclass, field
from typing import Dict

from crystallisation import (
    TAX_FREE_FRACTION, TAXABLE_FRACTION,
    gradual_crystallise, ufpls_withdraw, withdraw_from_crystallised, withdraw_from_isa,
)
from models import CrystallisationStrategy, Person, WithdrawalBreakdown
from tax_uk import (
    DEFAULT_TAPER, TaperRule, basic_rate_limit, calculate_marginal_tax, personal_allowance,
)

PENNY = 0.01


@dataclass
class DrawContext:
    year: int
    bands: tuple
    crystallisation: CrystallisationStrategy
    taxable_income: Dict[str, float] = field(default_factory=dict)   # state + DB + earnings
    state_pension: Dict[str, float] = field(default_factory=dict)
    taper: TaperRule = DEFAULT_TAPER
    maximize_couple_isa: bool = False

    @property
    def personal_allowance(self) -> float:
        return personal_allowance(self.bands)

    @property
    def basic_rate_limit(self) -> float:
        return basic_rate_limit(self.bands)

    def existing_taxable(self, person: Person, breakdown: WithdrawalBreakdown) -> float:
        return self.taxable_income.get(person.name, 0.0) + breakdown.taxable_for(person.name)

    def marginal_tax(self, taxable: float, existing: float) -> float:
        return calculate_marginal_tax(taxable, existing, self.bands, self.taper)


def pension_available(person: Person, year: int) -> float:
    if not person.can_access_pension(year):
        return 0.0
    return person.total_pension


def pension_split(person: Person, gross: float, strategy: CrystallisationStrategy):
    """(tax_free, taxable) for a gross pension draw, without touching the pots.

    Gradual spends the crystallised pot before crystallising more; UFPLS takes
    from the uncrystallised pot first.
    """
    gross = max(0.0, min(gross, person.total_pension))
    if strategy == CrystallisationStrategy.UFPLS:
        from_uncrystallised = min(gross, person.uncrystallised_pot)
        tax_free_fraction = TAX_FREE_FRACTION
    else:
        from_uncrystallised = max(0.0, gross - person.crystallised_pot)
        tax_free_fraction = 0.0 if person.pcls_taken else TAX_FREE_FRACTION
    tax_free = from_uncrystallised * tax_free_fraction
    return tax_free, gross - tax_free


def net_for_draw(person: Person, gross: float, ctx: DrawContext, breakdown: WithdrawalBreakdown) -> float:
    tax_free, taxable = pension_split(person, gross, ctx.crystallisation)
    existing = ctx.existing_taxable(person, breakdown)
    return tax_free + taxable - ctx.marginal_tax(taxable, existing)


def draw_for_net(person: Person, net: float, ctx: DrawContext, breakdown: WithdrawalBreakdown) -> float:
    """Gross pension draw that nets `net` after tax, capped at what the person can reach."""
    available = pension_available(person, ctx.year)
    if net <= 0 or available <= 0:
        return 0.0
    if net_for_draw(person, available, ctx, breakdown) <= net:
        return available
    lo, hi = min(net, available), available
    for _ in range(200):
        if hi - lo <= PENNY:
            break
        mid = (lo + hi) / 2.0
        if net_for_draw(person, mid, ctx, breakdown) < net:
            lo = mid
        else:
            hi = mid
    return hi


def draw_for_taxable(person: Person, taxable: float, ctx: DrawContext) -> float:
    """Gross pension draw whose taxable part equals `taxable`."""
    available = pension_available(person, ctx.year)
    if taxable <= 0 or available <= 0:
        return 0.0
    if ctx.crystallisation == CrystallisationStrategy.UFPLS:
        taxable_in_uncrystallised = person.uncrystallised_pot * TAXABLE_FRACTION
        if taxable <= taxable_in_uncrystallised:
            gross = taxable / TAXABLE_FRACTION
        else:
            gross = person.uncrystallised_pot + (taxable - taxable_in_uncrystallised)
    else:
        crystallised = person.crystallised_pot
        if taxable <= crystallised:
            gross = taxable
        else:
            fraction = 1.0 if person.pcls_taken else TAXABLE_FRACTION
            gross = crystallised + (taxable - crystallised) / fraction
    return min(gross, available)


def draw_pension(person: Person, gross: float, ctx: DrawContext, breakdown: WithdrawalBreakdown) -> float:
    """Take `gross` out of the person's pension and record it. Returns the net
    received after the marginal tax on the taxable part."""
    gross = min(gross, pension_available(person, ctx.year))
    if gross <= 0:
        return 0.0
    existing = ctx.existing_taxable(person, breakdown)
    if ctx.crystallisation == CrystallisationStrategy.UFPLS:
        result = ufpls_withdraw(person, gross)
        tax_free = result.tax_free_portion
        taxable = result.taxable_portion
        taxable += withdraw_from_crystallised(person, gross - result.amount_crystallised)
    else:
        taxable = withdraw_from_crystallised(person, gross)
        result = gradual_crystallise(person, gross - taxable)
        tax_free = result.tax_free_portion
        taxable += withdraw_from_crystallised(person, result.taxable_portion)
    breakdown.add_pension(person.name, tax_free, taxable)
    return tax_free + taxable - ctx.marginal_tax(taxable, existing)


def withdraw_isas(people, amount: float, breakdown: WithdrawalBreakdown) -> float:
    """Take `amount` from ISAs in proportion to what each person can spare.
    Returns what is still needed."""
    if amount <= 0:
        return 0.0
    total = sum(p.available_isa for p in people)
    if total <= 0:
        return amount
    wanted = min(amount, total)
    shares = [(p, wanted * p.available_isa / total) for p in people]
    for p, share in shares:
        taken = withdraw_from_isa(p, share)
        breakdown.add_isa(p.name, taken)
        amount -= taken
    # rounding leftovers
    for p in people:
        if amount <= PENNY:
            break
        taken = withdraw_from_isa(p, amount)
        breakdown.add_isa(p.name, taken)
        amount -= taken
    return max(0.0, amount)


def withdraw_pensions_for_net(people, remaining: float, ctx: DrawContext,
                              breakdown: WithdrawalBreakdown) -> float:
    for p in people:
        if remaining <= PENNY:
            break
        gross = draw_for_net(p, remaining, ctx, breakdown)
        remaining -= draw_pension(p, gross, ctx, breakdown)
    return max(0.0, remaining)


def isa_room(person: Person, breakdown: WithdrawalBreakdown) -> float:
    return max(0.0, person.isa_annual_limit - breakdown.isa_deposits.get(person.name, 0.0))


def household_isa_room(people, breakdown: WithdrawalBreakdown) -> float:
    return sum(isa_room(p, breakdown) for p in people)


def deposit_to_isa(person: Person, amount: float, breakdown: WithdrawalBreakdown) -> float:
    amount = min(amount, isa_room(person, breakdown))
    if amount <= 0:
        return 0.0
    person.tax_free_savings += amount
    breakdown.add_deposit(person.name, amount)
    return amount


def deposit_excess(people, excess: float, breakdown: WithdrawalBreakdown, equal_split: bool) -> float:
    """Bank surplus cash in ISAs, within each person's annual allowance.
    Returns what was deposited."""
    left = excess
    if equal_split and people:
        share = excess / len(people)
        for p in people:
            left -= deposit_to_isa(p, share, breakdown)
    for p in people:
        if left <= PENNY:
            break
        left -= deposit_to_isa(p, left, breakdown)
    return excess - left
