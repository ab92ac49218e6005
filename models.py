from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, List, Optional

# Birth years outside this window make ages meaningless
MIN_BIRTH_YEAR = 1900
DEFAULT_ISA_LIMIT = 20_000
DEFAULT_DEFERRAL_RATE = 0.058   # UK state pension uplift per year deferred
DEFAULT_COMMUTE_FACTOR = 12.0   # £ lump sum per £1 of DB pension given up


class CrystallisationStrategy(str, Enum):
    GRADUAL = "gradual"
    UFPLS = "ufpls"


class DrawdownOrder(str, Enum):
    SAVINGS_FIRST = "savings_first"
    PENSION_FIRST = "pension_first"
    TAX_OPTIMIZED = "tax_optimized"
    PENSION_TO_ISA = "pension_to_isa"
    PENSION_TO_ISA_PROACTIVE = "pension_to_isa_proactive"
    PENSION_ONLY = "pension_only"
    FILL_BASIC_RATE = "fill_basic_rate"
    STATE_PENSION_BRIDGE = "state_pension_bridge"


class MortgageOption(str, Enum):
    EARLY = "early"
    NORMAL = "normal"
    EXTENDED = "extended"
    PCLS = "pcls"


class OptimizationGoal(str, Enum):
    TAX = "tax"
    INCOME = "income"
    BALANCE = "balance"


class PersonPhase(str, Enum):
    PRE_ACCESS = "pre_access"
    ACCESSIBLE_NO_WITHDRAWAL = "accessible_no_withdrawal"
    DRAWDOWN = "drawdown"
    DEPLETED = "depleted"


LABELS = {
    CrystallisationStrategy.GRADUAL: "Gradual",
    CrystallisationStrategy.UFPLS: "UFPLS",
    DrawdownOrder.SAVINGS_FIRST: "ISA First",
    DrawdownOrder.PENSION_FIRST: "Pension First",
    DrawdownOrder.TAX_OPTIMIZED: "Tax Optimized",
    DrawdownOrder.PENSION_TO_ISA: "Pension to ISA",
    DrawdownOrder.PENSION_TO_ISA_PROACTIVE: "Pension to ISA (Proactive)",
    DrawdownOrder.PENSION_ONLY: "Pension Only",
    DrawdownOrder.FILL_BASIC_RATE: "Fill Basic Rate",
    DrawdownOrder.STATE_PENSION_BRIDGE: "State Pension Bridge",
    MortgageOption.EARLY: "Early Payoff",
    MortgageOption.NORMAL: "Normal Payoff",
    MortgageOption.EXTENDED: "Extended +10y",
    MortgageOption.PCLS: "PCLS Payoff",
}


@dataclass(frozen=True)
class PersonBalances:
    tax_free_savings: float = 0.0
    uncrystallised_pot: float = 0.0
    crystallised_pot: float = 0.0

    @property
    def total(self) -> float:
        return self.tax_free_savings + self.uncrystallised_pot + self.crystallised_pot

    @property
    def pension(self) -> float:
        return self.uncrystallised_pot + self.crystallised_pot


@dataclass
class Person:
    name: str
    birth_year: int
    retirement_age: int
    state_pension_age: int
    tax_free_savings: float = 0.0
    uncrystallised_pot: float = 0.0
    crystallised_pot: float = 0.0
    pension_access_age: Optional[int] = None    # None = retirement_age
    pcls_taken: bool = False
    isa_annual_limit: float = DEFAULT_ISA_LIMIT

    # Defined benefit pension
    db_pension_amount: float = 0.0
    db_pension_start_age: int = 0
    db_pension_name: str = ""
    db_pension_normal_age: int = 0
    db_pension_early_factor: float = 0.0        # reduction per year taken early
    db_pension_late_factor: float = 0.0         # increase per year taken late
    db_pension_commutation: float = 0.0         # fraction swapped for a lump sum
    db_pension_commute_factor: float = DEFAULT_COMMUTE_FACTOR
    db_pension_lump_sum: float = 0.0
    db_pension_lump_sum_taken: bool = False

    state_pension_defer_years: int = 0
    state_pension_deferral_rate: float = DEFAULT_DEFERRAL_RATE

    emergency_fund_minimum: float = 0.0

    # Earnings
    work_income: float = 0.0                    # salary until retirement_age
    part_time_income: float = 0.0
    part_time_start_age: int = 0
    part_time_end_age: int = 0                  # exclusive

    def _valid_for(self, year: int) -> bool:
        return MIN_BIRTH_YEAR <= self.birth_year <= year

    def age(self, year: int) -> int:
        return year - self.birth_year

    @property
    def access_age(self) -> int:
        if self.pension_access_age is None:
            return self.retirement_age
        return self.pension_access_age

    @property
    def available_isa(self) -> float:
        return max(0.0, self.tax_free_savings - self.emergency_fund_minimum)

    @property
    def total_pension(self) -> float:
        return self.uncrystallised_pot + self.crystallised_pot

    @property
    def total_wealth(self) -> float:
        return self.tax_free_savings + self.total_pension

    def balances(self) -> PersonBalances:
        return PersonBalances(self.tax_free_savings, self.uncrystallised_pot, self.crystallised_pot)

    def can_access_pension(self, year: int) -> bool:
        return self._valid_for(year) and self.age(year) >= self.access_age

    @property
    def effective_state_pension_age(self) -> int:
        return self.state_pension_age + self.state_pension_defer_years

    def receives_state_pension(self, year: int) -> bool:
        return self._valid_for(year) and self.age(year) >= self.effective_state_pension_age

    def deferred_state_pension(self, base_amount: float) -> float:
        if self.state_pension_defer_years <= 0 or self.state_pension_deferral_rate <= 0:
            return base_amount
        return base_amount * (1 + self.state_pension_deferral_rate) ** self.state_pension_defer_years

    def receives_db_pension(self, year: int) -> bool:
        if self.db_pension_amount <= 0 or self.db_pension_start_age <= 0:
            return False
        return self._valid_for(year) and self.age(year) >= self.db_pension_start_age

    def _db_pension_before_commutation(self) -> float:
        amount = self.db_pension_amount
        if self.db_pension_normal_age > 0 and self.db_pension_start_age > 0:
            diff = self.db_pension_start_age - self.db_pension_normal_age
            if diff < 0 and self.db_pension_early_factor > 0:
                amount *= 1 - (-diff) * self.db_pension_early_factor
            elif diff > 0 and self.db_pension_late_factor > 0:
                amount *= 1 + diff * self.db_pension_late_factor
        return max(0.0, amount)

    def effective_db_pension(self) -> float:
        if self.db_pension_amount <= 0:
            return 0.0
        return self._db_pension_before_commutation() * (1 - max(0.0, self.db_pension_commutation))

    def db_lump_sum(self) -> float:
        if self.db_pension_amount <= 0 or self.db_pension_commutation <= 0:
            return 0.0
        factor = self.db_pension_commute_factor if self.db_pension_commute_factor > 0 else DEFAULT_COMMUTE_FACTOR
        return self._db_pension_before_commutation() * self.db_pension_commutation * factor

    def receives_part_time_income(self, year: int) -> bool:
        if self.part_time_income <= 0 or not self._valid_for(year):
            return False
        return self.part_time_start_age <= self.age(year) < self.part_time_end_age

    def is_working(self, year: int) -> bool:
        return self.work_income > 0 and self._valid_for(year) and self.age(year) < self.retirement_age

    def has_future_income(self, year: int, state_pension_amount: float) -> bool:
        """True if any income stream is paying now or will start later."""
        age = self.age(year)
        if self.db_pension_amount > 0 and self.db_pension_start_age > 0:
            return True
        if state_pension_amount > 0 and self.state_pension_age > 0:
            return True
        if self.work_income > 0 and age < self.retirement_age:
            return True
        return self.part_time_income > 0 and age < self.part_time_end_age

    def phase(self, year: int, drew_pension: bool) -> PersonPhase:
        if self.total_wealth < 0.01:
            return PersonPhase.DEPLETED
        if not self.can_access_pension(year):
            return PersonPhase.PRE_ACCESS
        if drew_pension:
            return PersonPhase.DRAWDOWN
        return PersonPhase.ACCESSIBLE_NO_WITHDRAWAL


@dataclass
class WithdrawalBreakdown:
    tax_free_from_isa: Dict[str, float] = field(default_factory=dict)
    tax_free_from_pension: Dict[str, float] = field(default_factory=dict)
    taxable_from_pension: Dict[str, float] = field(default_factory=dict)
    isa_deposits: Dict[str, float] = field(default_factory=dict)

    @staticmethod
    def _add(bucket: Dict[str, float], name: str, amount: float):
        if amount:
            bucket[name] = bucket.get(name, 0.0) + amount

    def add_isa(self, name, amount):
        self._add(self.tax_free_from_isa, name, amount)

    def add_pension(self, name, tax_free, taxable):
        self._add(self.tax_free_from_pension, name, tax_free)
        self._add(self.taxable_from_pension, name, taxable)

    def add_deposit(self, name, amount):
        self._add(self.isa_deposits, name, amount)

    def merge(self, other: "WithdrawalBreakdown"):
        for name, v in other.tax_free_from_isa.items():
            self.add_isa(name, v)
        for name, v in other.tax_free_from_pension.items():
            self.add_pension(name, v, 0.0)
        for name, v in other.taxable_from_pension.items():
            self.add_pension(name, 0.0, v)
        for name, v in other.isa_deposits.items():
            self.add_deposit(name, v)

    def taxable_for(self, name: str) -> float:
        return self.taxable_from_pension.get(name, 0.0)

    def pension_for(self, name: str) -> float:
        return self.tax_free_from_pension.get(name, 0.0) + self.taxable_from_pension.get(name, 0.0)

    @property
    def total_tax_free(self) -> float:
        return sum(self.tax_free_from_isa.values()) + sum(self.tax_free_from_pension.values())

    @property
    def total_taxable(self) -> float:
        return sum(self.taxable_from_pension.values())

    @property
    def total_isa_deposits(self) -> float:
        return sum(self.isa_deposits.values())

    @property
    def total_withdrawn(self) -> float:
        return self.total_tax_free + self.total_taxable


@dataclass(frozen=True)
class SimulationParams:
    crystallisation: CrystallisationStrategy
    drawdown_order: DrawdownOrder
    mortgage_option: MortgageOption = MortgageOption.NORMAL
    guardrails: bool = False
    state_pension_defer_years: int = 0
    maximize_couple_isa: bool = False
    isa_to_pension: bool = False

    @property
    def label(self) -> str:
        parts = [
            LABELS[self.crystallisation],
            LABELS[self.drawdown_order],
            LABELS[self.mortgage_option],
        ]
        if self.guardrails:
            parts.append("Guardrails")
        if self.state_pension_defer_years:
            parts.append(f"Defer SP {self.state_pension_defer_years}y")
        if self.maximize_couple_isa:
            parts.append("Max Couple ISA")
        if self.isa_to_pension:
            parts.append("ISA to Pension")
        return " + ".join(parts)

    def as_dict(self) -> dict:
        d = asdict(self)
        for k, v in d.items():
            if isinstance(v, Enum):
                d[k] = v.value
        return d


@dataclass
class YearState:
    year: int
    ages: Dict[str, int] = field(default_factory=dict)
    phases: Dict[str, PersonPhase] = field(default_factory=dict)
    start_balances: Dict[str, PersonBalances] = field(default_factory=dict)
    start_balance: float = 0.0

    required_income: float = 0.0
    mortgage_cost: float = 0.0
    total_required: float = 0.0
    pcls_tax_free: float = 0.0

    state_pension_by_person: Dict[str, float] = field(default_factory=dict)
    db_pension_by_person: Dict[str, float] = field(default_factory=dict)
    work_income_by_person: Dict[str, float] = field(default_factory=dict)
    isa_to_pension_by_person: Dict[str, float] = field(default_factory=dict)

    net_required: float = 0.0
    net_income_required: float = 0.0
    net_mortgage_required: float = 0.0

    withdrawals: WithdrawalBreakdown = field(default_factory=WithdrawalBreakdown)
    tax_by_person: Dict[str, float] = field(default_factory=dict)
    total_tax_paid: float = 0.0
    net_income_received: float = 0.0
    shortfall: float = 0.0                      # need the pots could not meet

    end_balances: Dict[str, PersonBalances] = field(default_factory=dict)
    total_balance: float = 0.0

    guardrails_triggered: int = 0               # -1 cut, 0 hold, 1 raise
    guardrails_adjusted: float = 0.0
    vpw_rate: float = 0.0
    vpw_suggested_income: float = 0.0

    personal_allowance: float = 0.0
    basic_rate_limit: float = 0.0
    pension_growth_rate: float = 0.0
    savings_growth_rate: float = 0.0
    padded: bool = False

    @property
    def total_state_pension(self) -> float:
        return sum(self.state_pension_by_person.values())

    @property
    def total_db_pension(self) -> float:
        return sum(self.db_pension_by_person.values())

    @property
    def total_work_income(self) -> float:
        return sum(self.work_income_by_person.values())

    @property
    def guaranteed_income(self) -> float:
        return self.total_state_pension + self.total_db_pension + self.total_work_income


@dataclass
class SimulationResult:
    params: SimulationParams
    years: List[YearState] = field(default_factory=list)
    total_tax_paid: float = 0.0
    total_withdrawn: float = 0.0
    ran_out_of_money: bool = False
    ran_out_year: Optional[int] = None
    final_balances: Dict[str, PersonBalances] = field(default_factory=dict)
    terminated_early_year: Optional[int] = None

    @property
    def final_total_balance(self) -> float:
        return sum(b.total for b in self.final_balances.values())

    def balance_at_year(self, year: int) -> float:
        for state in self.years:
            if state.year == year:
                return state.total_balance
        if self.years and year > self.years[-1].year:
            return self.years[-1].total_balance
        return 0.0

    def depletion_year(self, threshold: float = 1_000.0) -> Optional[int]:
        """First year the household balance drops under `threshold` after having
        been above it. None if it never does."""
        was_funded = False
        for state in self.years:
            if state.total_balance >= threshold:
                was_funded = True
            elif was_funded:
                return state.year
        return None
