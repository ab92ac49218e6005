import copy
import json
import logging
from dataclasses import asdict, dataclass, field, fields
from datetime import date
from typing import List, Optional

from dateutil.parser import isoparse
from dateutil.relativedelta import relativedelta

from models import Person
from mortgage import Mortgage, MortgagePart
from tax_uk import (
    BASE_PA_TAPER_START, UK_2024_BANDS, InvalidTaxBands, TaperRule,
    bands_from_records, bands_to_records, validate_bands,
)

log = logging.getLogger(__name__)

APP_NAME = "Drawdown Planner: UK Retirement Strategy Explorer"

PERMUTATION_MODES = ("quick", "standard", "thorough", "comprehensive")

# Default household and assumptions (UK, nominal unless noted)
DEFAULTS = {
    "people": [
        {
            "name": "Alex",
            "birth_date": "1968-04-12",
            "retirement_age": 57,
            "state_pension_age": 67,
            "tax_free_savings": 150_000,
            "pension": 550_000,
        },
        {
            "name": "Sam",
            "birth_date": "1970-09-30",
            "retirement_age": 57,
            "state_pension_age": 67,
            "tax_free_savings": 100_000,
            "pension": 300_000,
        },
    ],

    # Growth and inflation
    "financial": {
        "pension_growth_rate": 0.05,
        "savings_growth_rate": 0.05,
        "income_inflation_rate": 0.03,
        "state_pension_amount": 11_973,     # full new state pension 2025/26
        "state_pension_inflation": 0.03,    # triple lock, roughly
        "tax_band_inflation": 0.0,          # bands frozen
    },

    # What the household needs to spend (monthly, today's money)
    "income": {
        "tiers": [
            {"name": "Active", "monthly_amount": 4_000, "end_age": 75, "ratio": 1.0},
            {"name": "Slower", "monthly_amount": 3_000, "start_age": 75, "ratio": 0.75},
        ],
        "guardrails_upper_limit": 1.20,
        "guardrails_lower_limit": 0.80,
        "guardrails_adjustment": 0.10,
    },

    "mortgage": {"parts": [], "end_year": 0, "early_payoff_year": 0},

    "simulation": {"start_year": 2025, "end_age": 95},

    "strategy": {"permutation_mode": "standard", "maximize_couple_isa": "auto"},
}


class ConfigError(ValueError):
    pass


@dataclass
class PersonConfig:
    name: str
    birth_date: str                               # ISO date
    retirement_age: int
    state_pension_age: int = 67
    pension_access_age: Optional[int] = None      # defaults to retirement_age
    tax_free_savings: float = 0.0
    pension: float = 0.0                          # uncrystallised pot
    isa_annual_limit: float = 20_000

    db_pension_amount: float = 0.0
    db_pension_start_age: int = 0
    db_pension_name: str = ""
    db_pension_normal_age: int = 0
    db_pension_early_factor: float = 0.0
    db_pension_late_factor: float = 0.0
    db_pension_commutation: float = 0.0
    db_pension_commute_factor: float = 12.0

    state_pension_defer_years: int = 0

    work_income: float = 0.0
    part_time_income: float = 0.0
    part_time_start_age: int = 0
    part_time_end_age: int = 0

    @property
    def birth_year(self) -> int:
        return isoparse(self.birth_date).year


@dataclass
class FinancialConfig:
    pension_growth_rate: float = 0.05
    savings_growth_rate: float = 0.05
    income_inflation_rate: float = 0.03
    state_pension_amount: float = 11_973
    state_pension_inflation: float = 0.03
    state_pension_deferral_rate: float = 0.058
    tax_band_inflation: float = 0.0
    # Glide path ("age in bonds")
    growth_decline_enabled: bool = False
    pension_growth_end_rate: float = 0.03
    savings_growth_end_rate: float = 0.03
    growth_decline_target_age: int = 80
    growth_decline_reference_person: str = ""
    # ISA floor, as months of spending
    emergency_fund_months: int = 0
    emergency_fund_inflation_adjust: bool = True


@dataclass
class IncomeTier:
    monthly_amount: float = 0.0       # £/month, or annual % of initial portfolio
    start_age: Optional[int] = None   # None = from retirement
    end_age: Optional[int] = None     # exclusive, None = open-ended
    ratio: float = 1.0                # weight in depletion mode
    is_percentage: bool = False
    is_investment_gains: bool = False
    name: str = ""

    def covers(self, age: int) -> bool:
        return ((self.start_age is None or age >= self.start_age)
                and (self.end_age is None or age < self.end_age))


@dataclass
class IncomeConfig:
    tiers: List[IncomeTier] = field(default_factory=list)
    # Legacy two-step income, used when there are no tiers
    monthly_before_age: float = 0.0
    monthly_after_age: float = 0.0
    age_threshold: int = 0
    reference_person: str = ""
    target_depletion_age: int = 0
    guardrails_enabled: bool = False
    guardrails_upper_limit: float = 1.20
    guardrails_lower_limit: float = 0.80
    guardrails_adjustment: float = 0.10
    vpw_enabled: bool = False
    vpw_floor: float = 0.0            # annual
    vpw_ceiling: float = 0.0          # multiple of floor

    @property
    def has_tiers(self) -> bool:
        return bool(self.tiers)


@dataclass
class MortgageConfig:
    parts: List[MortgagePart] = field(default_factory=list)
    end_year: int = 0                 # 0 = latest part end
    early_payoff_year: int = 0        # 0 = same as end_year

    def to_mortgage(self) -> Mortgage:
        end_year = self.end_year
        if not end_year and self.parts:
            end_year = max(p.start_year + p.term_years for p in self.parts)
        return Mortgage(
            parts=tuple(self.parts),
            end_year=end_year,
            early_payoff_year=self.early_payoff_year or end_year,
        )


@dataclass
class SimulationConfig:
    start_year: int = 2025
    end_age: int = 95
    reference_person: str = ""


@dataclass
class StrategyConfig:
    permutation_mode: str = "standard"
    maximize_couple_isa: str = "auto"     # auto | always | never
    processes: Optional[int] = None


@dataclass
class SensitivityConfig:
    pension_growth_min: float = 0.04
    pension_growth_max: float = 0.12
    savings_growth_min: float = 0.04
    savings_growth_max: float = 0.12
    step_size: float = 0.01


@dataclass
class TaxConfig:
    bands: tuple = UK_2024_BANDS
    taper_threshold: float = BASE_PA_TAPER_START
    taper_rate: float = 0.5

    @property
    def taper(self) -> TaperRule:
        return TaperRule(self.taper_threshold, self.taper_rate)


@dataclass
class Config:
    people: List[PersonConfig]
    financial: FinancialConfig = field(default_factory=FinancialConfig)
    income: IncomeConfig = field(default_factory=IncomeConfig)
    mortgage: MortgageConfig = field(default_factory=MortgageConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    tax: TaxConfig = field(default_factory=TaxConfig)
    sensitivity: SensitivityConfig = field(default_factory=SensitivityConfig)

    def find_person(self, name: str) -> Optional[PersonConfig]:
        for p in self.people:
            if p.name == name:
                return p
        return None

    @property
    def is_couple(self) -> bool:
        return len(self.people) > 1

    def should_maximize_couple_isa(self) -> bool:
        choice = self.strategy.maximize_couple_isa
        if choice == "always":
            return True
        if choice == "never":
            return False
        return self.is_couple


def _build(cls, data, section: str):
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigError(f"{section}: expected a mapping, got {type(data).__name__}")
    unknown = set(data) - {f.name for f in fields(cls)}
    if unknown:
        raise ConfigError(f"{section}: unknown keys {sorted(unknown)}")
    try:
        return cls(**data)
    except TypeError as e:
        raise ConfigError(f"{section}: {e}") from e


def config_from_dict(data: dict) -> Config:
    data = copy.deepcopy(data)
    people = [_build(PersonConfig, p, f"people[{i}]") for i, p in enumerate(data.pop("people", []))]

    income = data.pop("income", None) or {}
    income["tiers"] = [_build(IncomeTier, t, f"income.tiers[{i}]")
                       for i, t in enumerate(income.get("tiers", []))]

    mortgage = data.pop("mortgage", None) or {}
    mortgage["parts"] = [_build(MortgagePart, p, f"mortgage.parts[{i}]")
                         for i, p in enumerate(mortgage.get("parts", []))]

    tax = data.pop("tax", None) or {}
    if "bands" in tax:
        try:
            tax["bands"] = bands_from_records(tax["bands"])
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"tax.bands: {e}") from e

    cfg = Config(
        people=people,
        financial=_build(FinancialConfig, data.pop("financial", None), "financial"),
        income=_build(IncomeConfig, income, "income"),
        mortgage=_build(MortgageConfig, mortgage, "mortgage"),
        simulation=_build(SimulationConfig, data.pop("simulation", None), "simulation"),
        strategy=_build(StrategyConfig, data.pop("strategy", None), "strategy"),
        tax=_build(TaxConfig, tax, "tax"),
        sensitivity=_build(SensitivityConfig, data.pop("sensitivity", None), "sensitivity"),
    )
    if data:
        raise ConfigError(f"unknown sections {sorted(data)}")
    return cfg


def config_to_dict(cfg: Config) -> dict:
    d = asdict(cfg)
    d["tax"]["bands"] = bands_to_records(cfg.tax.bands)
    return d


def default_config() -> Config:
    return config_from_dict(DEFAULTS)


def load_config(path) -> Config:
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"{path}: {e}") from e
    cfg = config_from_dict(data)
    validate_config(cfg)
    log.info("loaded config from %s (%d people)", path, len(cfg.people))
    return cfg


def save_config(cfg: Config, path):
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config_to_dict(cfg), f, indent=2)


def validate_config(cfg: Config):
    """Reject configs the engine cannot run. Raises ConfigError listing every problem."""
    errors = []
    if not cfg.people:
        errors.append("at least one person is required")
    names = [p.name for p in cfg.people]
    if len(set(names)) != len(names):
        errors.append("people must have unique names")

    for p in cfg.people:
        try:
            born = isoparse(p.birth_date)
        except (TypeError, ValueError):
            errors.append(f"{p.name}: invalid birth_date {p.birth_date!r}")
            continue
        if born.year < 1900 or born.year > cfg.simulation.start_year:
            errors.append(f"{p.name}: birth year {born.year} out of range")
        for attr in ("tax_free_savings", "pension", "isa_annual_limit", "db_pension_amount",
                     "work_income", "part_time_income"):
            if getattr(p, attr) < 0:
                errors.append(f"{p.name}: {attr} must not be negative")
        if p.retirement_age <= 0:
            errors.append(f"{p.name}: retirement_age must be positive")
        if not 0 <= p.db_pension_commutation < 1:
            errors.append(f"{p.name}: db_pension_commutation must be in [0, 1)")
        if p.state_pension_defer_years < 0:
            errors.append(f"{p.name}: state_pension_defer_years must not be negative")

    for ref in (cfg.simulation.reference_person, cfg.income.reference_person,
                cfg.financial.growth_decline_reference_person):
        if ref and cfg.find_person(ref) is None:
            errors.append(f"unknown reference person {ref!r}")

    for i, tier in enumerate(cfg.income.tiers):
        if tier.monthly_amount < 0 or tier.ratio < 0:
            errors.append(f"income tier {i}: amounts must not be negative")
        if tier.start_age is not None and tier.end_age is not None and tier.end_age <= tier.start_age:
            errors.append(f"income tier {i}: end_age must be after start_age")
    if cfg.income.monthly_before_age < 0 or cfg.income.monthly_after_age < 0:
        errors.append("income: monthly amounts must not be negative")

    for part in cfg.mortgage.parts:
        if part.principal < 0:
            errors.append(f"mortgage part {part.name!r}: principal must not be negative")
        if part.is_repayment and part.term_years <= 0:
            errors.append(f"mortgage part {part.name!r}: repayment term must be positive")
        if part.interest_rate < 0:
            errors.append(f"mortgage part {part.name!r}: interest_rate must not be negative")

    try:
        validate_bands(cfg.tax.bands)
    except InvalidTaxBands as e:
        errors.append(f"tax bands: {e}")

    if cfg.strategy.permutation_mode not in PERMUTATION_MODES:
        errors.append(f"unknown permutation_mode {cfg.strategy.permutation_mode!r}")
    if cfg.strategy.maximize_couple_isa not in ("auto", "always", "never"):
        errors.append(f"unknown maximize_couple_isa {cfg.strategy.maximize_couple_isa!r}")

    sens = cfg.sensitivity
    if sens.step_size <= 0:
        errors.append("sensitivity: step_size must be positive")
    if sens.pension_growth_max < sens.pension_growth_min or sens.savings_growth_max < sens.savings_growth_min:
        errors.append("sensitivity: growth max must not be below min")

    if errors:
        raise ConfigError("; ".join(errors))


def age_on(birth_date: str, when: date) -> int:
    return relativedelta(when, isoparse(birth_date).date()).years


def reference_person(cfg: Config, name: str = "") -> PersonConfig:
    """Named person, falling back to the first one."""
    return cfg.find_person(name) if name and cfg.find_person(name) else cfg.people[0]


def build_people(cfg: Config, state_pension_defer_years: Optional[int] = None) -> List[Person]:
    """Fresh Person objects for one run; nothing is shared with other runs."""
    people = []
    for pc in cfg.people:
        people.append(
            Person(
                name=pc.name,
                birth_year=pc.birth_year,
                retirement_age=pc.retirement_age,
                state_pension_age=pc.state_pension_age,
                pension_access_age=pc.pension_access_age,
                tax_free_savings=float(pc.tax_free_savings),
                uncrystallised_pot=float(pc.pension),
                isa_annual_limit=pc.isa_annual_limit if pc.isa_annual_limit > 0 else 20_000,
                db_pension_amount=pc.db_pension_amount,
                db_pension_start_age=pc.db_pension_start_age,
                db_pension_name=pc.db_pension_name,
                db_pension_normal_age=pc.db_pension_normal_age,
                db_pension_early_factor=pc.db_pension_early_factor,
                db_pension_late_factor=pc.db_pension_late_factor,
                db_pension_commutation=pc.db_pension_commutation,
                db_pension_commute_factor=pc.db_pension_commute_factor,
                state_pension_defer_years=(pc.state_pension_defer_years
                                           if state_pension_defer_years is None
                                           else state_pension_defer_years),
                state_pension_deferral_rate=cfg.financial.state_pension_deferral_rate or 0.058,
                work_income=pc.work_income,
                part_time_income=pc.part_time_income,
                part_time_start_age=pc.part_time_start_age,
                part_time_end_age=pc.part_time_end_age,
            )
        )
    return people
