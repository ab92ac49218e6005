"""
Moving money out of pension pots.

Anything leaving the uncrystallised pot is split 25% tax-free / 75% taxable,
unless the person has already taken their full PCLS, in which case gradual
crystallisation is all taxable. Every operation clips to what is there and
returns what it actually moved.
"""
from dataclasses import dataclass

from models import CrystallisationStrategy, Person

TAX_FREE_FRACTION = 0.25
TAXABLE_FRACTION = 1 - TAX_FREE_FRACTION


@dataclass(frozen=True)
class CrystallisationResult:
    amount_crystallised: float = 0.0
    tax_free_portion: float = 0.0
    taxable_portion: float = 0.0


def take_pcls_lump_sum(person: Person) -> CrystallisationResult:
    """Crystallise the whole pot at once: 25% lands in the ISA, 75% in the
    crystallised pot. Only ever happens once per person."""
    if person.uncrystallised_pot <= 0 or person.pcls_taken:
        return CrystallisationResult()
    amount = person.uncrystallised_pot
    tax_free = amount * TAX_FREE_FRACTION
    taxable = amount - tax_free
    person.tax_free_savings += tax_free
    person.crystallised_pot += taxable
    person.uncrystallised_pot = 0.0
    person.pcls_taken = True
    return CrystallisationResult(amount, tax_free, taxable)


def gradual_crystallise(person: Person, amount: float) -> CrystallisationResult:
    """Crystallise up to `amount`. The tax-free part is paid out as cash; the
    taxable part moves into the crystallised pot for later drawdown."""
    if amount <= 0 or person.uncrystallised_pot <= 0:
        return CrystallisationResult()
    amount = min(amount, person.uncrystallised_pot)
    if person.pcls_taken:
        tax_free = 0.0
    else:
        tax_free = amount * TAX_FREE_FRACTION
    taxable = amount - tax_free
    person.uncrystallised_pot -= amount
    person.crystallised_pot += taxable
    return CrystallisationResult(amount, tax_free, taxable)


def ufpls_withdraw(person: Person, amount: float) -> CrystallisationResult:
    """Pay a lump sum straight out of the uncrystallised pot, 25/75 each time.
    What stays behind keeps its own 25% entitlement."""
    if amount <= 0 or person.uncrystallised_pot <= 0:
        return CrystallisationResult()
    amount = min(amount, person.uncrystallised_pot)
    tax_free = amount * TAX_FREE_FRACTION
    person.uncrystallised_pot -= amount
    return CrystallisationResult(amount, tax_free, amount - tax_free)


def withdraw_from_isa(person: Person, amount: float) -> float:
    if amount <= 0:
        return 0.0
    taken = min(amount, person.available_isa)
    if taken <= 0:
        return 0.0
    person.tax_free_savings -= taken
    return taken


def withdraw_from_crystallised(person: Person, amount: float) -> float:
    if amount <= 0 or person.crystallised_pot <= 0:
        return 0.0
    taken = min(amount, person.crystallised_pot)
    person.crystallised_pot -= taken
    return taken


CRYSTALLISERS = {
    CrystallisationStrategy.GRADUAL: gradual_crystallise,
    CrystallisationStrategy.UFPLS: ufpls_withdraw,
}
