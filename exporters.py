# exporters.py
import json
from enum import Enum

import numpy as np
import pandas as pd

from config import Config, config_to_dict
from models import SimulationResult


def result_frame(result: SimulationResult) -> pd.DataFrame:
    """One row per simulated year, with per-person columns prefixed by name."""
    rows = []
    for s in result.years:
        row = {
            "year": s.year,
            "required_income": s.required_income,
            "mortgage_cost": s.mortgage_cost,
            "state_pension": s.total_state_pension,
            "db_pension": s.total_db_pension,
            "work_income": s.total_work_income,
            "net_required": s.net_required,
            "isa_withdrawn": sum(s.withdrawals.tax_free_from_isa.values()),
            "pension_tax_free": sum(s.withdrawals.tax_free_from_pension.values()),
            "pension_taxable": s.withdrawals.total_taxable,
            "isa_deposits": s.withdrawals.total_isa_deposits,
            "tax_paid": s.total_tax_paid,
            "net_income": s.net_income_received,
            "shortfall": s.shortfall,
            "total_balance": s.total_balance,
            "personal_allowance": s.personal_allowance,
            "basic_rate_limit": s.basic_rate_limit,
            "guardrails": s.guardrails_triggered,
            "padded": s.padded,
        }
        for name, b in s.end_balances.items():
            row[f"{name}_age"] = s.ages.get(name)
            row[f"{name}_isa"] = b.tax_free_savings
            row[f"{name}_uncrystallised"] = b.uncrystallised_pot
            row[f"{name}_crystallised"] = b.crystallised_pot
            row[f"{name}_tax"] = s.tax_by_person.get(name, 0.0)
        rows.append(row)
    return pd.DataFrame(rows)


def matrix_frame(results) -> pd.DataFrame:
    rows = []
    for r in results:
        row = {"strategy": r.params.label}
        row.update(r.params.as_dict())
        row.update({
            "total_tax": r.total_tax_paid,
            "total_withdrawn": r.total_withdrawn,
            "final_balance": r.final_total_balance,
            "ran_out": r.ran_out_of_money,
            "ran_out_year": r.ran_out_year,
        })
        rows.append(row)
    return pd.DataFrame(rows)


def export_year_table(result: SimulationResult) -> tuple[str, bytes]:
    return "year_by_year.csv", result_frame(result).to_csv(index=False).encode()


def export_matrix(results) -> tuple[str, bytes]:
    return "strategies.csv", matrix_frame(results).to_csv(index=False).encode()


def _json_default(o):
    # numpy arrays & scalars, enums and inf band limits
    if isinstance(o, np.ndarray):
        return o.tolist()
    if isinstance(o, np.generic):
        return o.item()
    if isinstance(o, Enum):
        return o.value
    raise TypeError(f"Object of type {o.__class__.__name__} is not JSON serializable")


def export_results_json(results) -> tuple[str, bytes]:
    """Per-strategy summaries plus the year table, stable key order."""
    payload = []
    for r in results:
        df = result_frame(r).replace({np.nan: None})
        payload.append({
            "params": r.params.as_dict(),
            "label": r.params.label,
            "total_tax_paid": r.total_tax_paid,
            "total_withdrawn": r.total_withdrawn,
            "final_balance": r.final_total_balance,
            "ran_out_of_money": r.ran_out_of_money,
            "ran_out_year": r.ran_out_year,
            "years": df.to_dict(orient="records"),
        })
    blob = json.dumps(payload, indent=2, sort_keys=True, default=_json_default)
    return "results.json", blob.encode()


def export_config(cfg: Config) -> tuple[str, bytes]:
    blob = json.dumps(config_to_dict(cfg), indent=2, default=_json_default)
    return "config.json", blob.encode()


def sensitivity_frame(cells) -> pd.DataFrame:
    """One row per growth cell."""
    return pd.DataFrame([c.as_row() for c in cells])


def sensitivity_table(cells, value: str) -> pd.DataFrame:
    """Pension growth down, savings growth across."""
    return sensitivity_frame(cells).pivot(index="pension_growth", columns="savings_growth", values=value)


def export_sensitivity(cells) -> tuple[str, bytes]:
    return "sensitivity.csv", sensitivity_frame(cells).to_csv(index=False).encode()
