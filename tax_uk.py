import math
from dataclasses import dataclass, replace

import pandas as pd


# 2024/25 baseline (UK) - indexed by tax_band_inflation in the sim
BASE_PERSONAL_ALLOWANCE = 12_570
BASE_BASIC_RATE_LIMIT = 50_270
BASE_HIGHER_RATE_LIMIT = 125_140
BASE_PA_TAPER_START = 100_000


class InvalidTaxBands(ValueError):
    pass


@dataclass(frozen=True)
class TaxBand:
    name: str
    lower: float
    upper: float      # math.inf for the top band
    rate: float


@dataclass(frozen=True)
class TaperRule:
    threshold: float = BASE_PA_TAPER_START
    rate: float = 0.5  # £1 of allowance lost per £2 over threshold


UK_2024_BANDS = (
    TaxBand("Personal Allowance", 0, BASE_PERSONAL_ALLOWANCE, 0.0),
    TaxBand("Basic Rate", BASE_PERSONAL_ALLOWANCE, BASE_BASIC_RATE_LIMIT, 0.20),
    TaxBand("Higher Rate", BASE_BASIC_RATE_LIMIT, BASE_HIGHER_RATE_LIMIT, 0.40),
    TaxBand("Additional Rate", BASE_HIGHER_RATE_LIMIT, math.inf, 0.45),
)
DEFAULT_TAPER = TaperRule()


def validate_bands(bands):
    if not bands:
        raise InvalidTaxBands("at least one tax band is required")
    if bands[0].lower != 0:
        raise InvalidTaxBands(f"first band must start at 0, got {bands[0].lower}")
    for prev, band in zip(bands, bands[1:]):
        if band.lower != prev.upper:
            raise InvalidTaxBands(f"gap or overlap between '{prev.name}' and '{band.name}'")
        if band.rate < prev.rate:
            raise InvalidTaxBands(f"rate of '{band.name}' is lower than '{prev.name}'")
    for band in bands:
        if not band.upper > band.lower:
            raise InvalidTaxBands(f"band '{band.name}' is empty or inverted")
        if not 0 <= band.rate < 1:
            raise InvalidTaxBands(f"band '{band.name}' has rate {band.rate}")
    if not math.isinf(bands[-1].upper):
        raise InvalidTaxBands("top band must be unbounded")


def apply_taper(bands, income: float, taper: TaperRule = DEFAULT_TAPER):
    """Shrink the personal allowance for incomes over the taper threshold.

    The 0% band is narrowed and the next band starts where it now ends. The
    basic-rate ceiling is left where it is.
    """
    if not bands or bands[0].rate != 0 or income <= taper.threshold:
        return bands
    reduction = (income - taper.threshold) * taper.rate
    allowance = max(0.0, bands[0].upper - reduction)
    tapered = [replace(bands[0], upper=allowance)]
    if len(bands) > 1:
        tapered.append(replace(bands[1], lower=allowance))
        tapered.extend(bands[2:])
    return tuple(tapered)


def tax_on_income(income: float, bands) -> float:
    if income <= 0:
        return 0.0
    tax = 0.0
    for band in bands:
        if income <= band.lower:
            break
        tax += (min(income, band.upper) - band.lower) * band.rate
    return tax


def calculate_tax_with_tapering(income: float, bands, taper: TaperRule = DEFAULT_TAPER) -> float:
    if income <= 0:
        return 0.0
    return tax_on_income(income, apply_taper(bands, income, taper))


tax_due = calculate_tax_with_tapering


def calculate_marginal_tax(withdrawal: float, existing_income: float, bands,
                           taper: TaperRule = DEFAULT_TAPER) -> float:
    if withdrawal <= 0:
        return 0.0
    before = calculate_tax_with_tapering(existing_income, bands, taper)
    after = calculate_tax_with_tapering(existing_income + withdrawal, bands, taper)
    return max(0.0, after - before)


def net_from_gross(gross: float, bands, taper: TaperRule = DEFAULT_TAPER) -> float:
    return gross - calculate_tax_with_tapering(gross, bands, taper)


def gross_up_for_tax(net_needed: float, existing_income: float, bands,
                     taper: TaperRule = DEFAULT_TAPER):
    """Gross amount that leaves `net_needed` after the tax it attracts on top of
    `existing_income`. Returns (gross, tax)."""
    if net_needed <= 0:
        return 0.0, 0.0

    def net_of(gross):
        return gross - calculate_marginal_tax(gross, existing_income, bands, taper)

    lo, hi = net_needed, net_needed * 2.0
    while net_of(hi) < net_needed:
        lo, hi = hi, hi * 2.0
    for _ in range(200):
        if hi - lo <= 0.01:
            break
        mid = (lo + hi) / 2.0
        if net_of(mid) < net_needed:
            lo = mid
        else:
            hi = mid
    return hi, calculate_marginal_tax(hi, existing_income, bands, taper)


def _inflation_factor(from_year: int, to_year: int, rate: float) -> float:
    return (1 + rate) ** (to_year - from_year)


def inflate_tax_bands(bands, from_year: int, to_year: int, rate: float):
    factor = _inflation_factor(from_year, to_year, rate)
    if factor == 1.0:
        return tuple(bands)
    return tuple(
        replace(
            b,
            lower=b.lower * factor,
            upper=b.upper if math.isinf(b.upper) else b.upper * factor,
        )
        for b in bands
    )


def inflate_taper(taper: TaperRule, from_year: int, to_year: int, rate: float) -> TaperRule:
    return replace(taper, threshold=taper.threshold * _inflation_factor(from_year, to_year, rate))


def marginal_rate(income: float, bands) -> float:
    for band in bands:
        if income < band.upper:
            return band.rate
    return bands[-1].rate


def personal_allowance(bands) -> float:
    if bands and bands[0].rate == 0:
        return bands[0].upper
    return 0.0


def basic_rate_limit(bands) -> float:
    for band in bands:
        if band.rate > 0:
            return band.upper
    return 0.0


def bands_frame(bands) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "band": [b.name for b in bands],
            "from": [b.lower for b in bands],
            "to": [None if math.isinf(b.upper) else b.upper for b in bands],
            "rate_pct": [b.rate * 100 for b in bands],
        }
    )


def bands_from_records(records) -> tuple:
    """Build bands from [{'name', 'lower', 'upper', 'rate'}, ...]; a missing or
    null upper means unbounded."""
    bands = []
    for r in records:
        upper = r.get("upper")
        bands.append(
            TaxBand(
                name=r.get("name", f"Band {len(bands) + 1}"),
                lower=float(r["lower"]),
                upper=math.inf if upper is None else float(upper),
                rate=float(r["rate"]),
            )
        )
    return tuple(bands)


def bands_to_records(bands) -> list:
    return [
        {
            "name": b.name,
            "lower": b.lower,
            "upper": None if math.isinf(b.upper) else b.upper,
            "rate": b.rate,
        }
        for b in bands
    ]
