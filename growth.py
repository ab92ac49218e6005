import numpy as np


def apply_growth(person, pension_rate: float, savings_rate: float):
    person.tax_free_savings *= (1 + savings_rate)
    person.uncrystallised_pot *= (1 + pension_rate)
    person.crystallised_pot *= (1 + pension_rate)


def growth_rate_for_year(start_rate: float, end_rate: float,
                         start_year: int, year: int, target_year: int) -> float:
    """Linear glide from start_rate (at start_year) to end_rate (at target_year),
    flat either side."""
    if target_year <= start_year:
        return end_rate
    progress = float(np.clip((year - start_year) / (target_year - start_year), 0.0, 1.0))
    return start_rate + (end_rate - start_rate) * progress


def compound_rate(rate: float, years: int) -> float:
    return (1 + rate) ** years - 1
