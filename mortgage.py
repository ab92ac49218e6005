from dataclasses import dataclass
from typing import Tuple

import pandas as pd

from models import MortgageOption

EXTENDED_YEARS = 10


@dataclass(frozen=True)
class MortgagePart:
    name: str
    principal: float
    interest_rate: float          # annual, e.g. 0.04
    term_years: int
    start_year: int
    is_repayment: bool = True

    @property
    def _monthly_rate(self) -> float:
        return self.interest_rate / 12.0

    @property
    def _payments(self) -> int:
        return self.term_years * 12

    def monthly_payment(self) -> float:
        if self.principal <= 0:
            return 0.0
        r = self._monthly_rate
        if not self.is_repayment:
            return self.principal * r
        n = self._payments
        if n <= 0:
            return 0.0
        if r == 0:
            return self.principal / n
        growth = (1 + r) ** n
        return self.principal * r * growth / (growth - 1)

    def annual_payment(self) -> float:
        return self.monthly_payment() * 12

    def payment_in_year(self, year: int) -> float:
        """Payments due in `year`: nothing before the loan starts, and a repayment
        loan stops at the end of its term."""
        if year < self.start_year:
            return 0.0
        if self.is_repayment and year >= self.start_year + self.term_years:
            return 0.0
        return self.annual_payment()

    def remaining_balance(self, year: int) -> float:
        if self.principal <= 0:
            return 0.0
        if not self.is_repayment:
            return self.principal
        if year <= self.start_year:
            return self.principal
        if year >= self.start_year + self.term_years:
            return 0.0
        n = self._payments
        paid = (year - self.start_year) * 12
        r = self._monthly_rate
        if r == 0:
            return self.principal * (1 - paid / n)
        growth_n = (1 + r) ** n
        growth_p = (1 + r) ** paid
        return self.principal * (growth_n - growth_p) / (growth_n - 1)


@dataclass(frozen=True)
class Mortgage:
    parts: Tuple[MortgagePart, ...] = ()
    end_year: int = 0
    early_payoff_year: int = 0

    @property
    def has_mortgage(self) -> bool:
        return any(p.principal > 0 for p in self.parts)

    def total_annual_payment(self) -> float:
        return sum(p.annual_payment() for p in self.parts)

    def total_payoff_amount(self, year: int) -> float:
        return sum(p.remaining_balance(year) for p in self.parts)

    def payoff_year(self, option: MortgageOption) -> int:
        if option in (MortgageOption.EARLY, MortgageOption.PCLS):
            return self.early_payoff_year
        if option == MortgageOption.EXTENDED:
            return self.end_year + EXTENDED_YEARS
        return self.end_year

    def cost_for_year(self, year: int, option: MortgageOption) -> float:
        """Cash the household pays towards the mortgage in `year`."""
        if not self.has_mortgage:
            return 0.0
        payoff = self.payoff_year(option)
        if year < payoff:
            return sum(p.payment_in_year(year) for p in self.parts)
        if year == payoff:
            return self.total_payoff_amount(year)
        return 0.0

    def schedule(self, from_year: int, to_year: int) -> pd.DataFrame:
        rows = []
        for year in range(from_year, to_year + 1):
            row = {"year": year}
            for p in self.parts:
                row[f"{p.name}_balance"] = p.remaining_balance(year)
            row["total_balance"] = self.total_payoff_amount(year)
            row["annual_payment"] = sum(p.payment_in_year(year) for p in self.parts)
            rows.append(row)
        return pd.DataFrame(rows)
