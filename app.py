# app.py
import logging
from datetime import date

import pandas as pd
import plotly.graph_objects as go
import streamlit as st

from config import APP_NAME, PERMUTATION_MODES, ConfigError, config_from_dict, config_to_dict, default_config, validate_config
from depletion import DepletionMode, DepletionStatus, run_all_depletion, find_best_depletion
from exporters import (
    export_config, export_matrix, export_results_json, export_sensitivity, export_year_table, matrix_frame, result_frame,
    sensitivity_table,
)
from models import LABELS, OptimizationGoal
from returns_presets import GLIDE_END, PRESETS
from scenarios import rank_results, run_strategy_matrix, strategy_combinations
from sensitivity import growth_grid, run_sensitivity
from ui import header, helptext, inject_css, kpi_card, money

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

# ------------- Page setup -------------
st.set_page_config(page_title=APP_NAME, page_icon="📈", layout="wide")
inject_css()
header(APP_NAME, "Which pot to draw from, when, and what it costs in tax")

with st.expander("How this app works (30 seconds)"):
    st.write("""
**Plain English version:**
- We simulate your household **year by year** from today to your plan end age, using UK income tax (personal allowance taper included).
- Each year we work out what you need to spend, take off state/DB pensions and earnings, and draw the rest from your ISAs and pensions.
- We try **every combination** of crystallisation (gradual vs UFPLS), withdrawal order, mortgage payoff and guardrails, then rank them.
- The **sustainable income** section finds the highest monthly spend that makes the money last to your target age.
- Everything is in **nominal pounds** (what the bank statement will say).
    """)

base = config_to_dict(default_config())

# ------------- Sidebar (inputs) -------------
st.sidebar.header("Household")
couple = st.sidebar.checkbox("Plan for a couple", value=True)
people = []
for i, defaults in enumerate(base["people"][: 2 if couple else 1]):
    st.sidebar.subheader(f"Person {i + 1}")
    name = st.sidebar.text_input("Name", value=defaults["name"], key=f"name_{i}")
    born = st.sidebar.date_input(
        "Date of birth", value=date.fromisoformat(defaults["birth_date"]),
        min_value=date(1930, 1, 1), max_value=date.today(), key=f"born_{i}",
    )
    retirement_age = st.sidebar.number_input(
        "Retirement age", 40, 80, defaults["retirement_age"], key=f"ret_{i}",
        help="Work income stops and spending starts here. Pension access defaults to this age too.",
    )
    sp_age = st.sidebar.number_input("State pension age", 60, 70, defaults["state_pension_age"], key=f"sp_{i}")
    isa = st.sidebar.number_input("ISA balance", 0, value=int(defaults["tax_free_savings"]), step=5000, key=f"isa_{i}")
    pension = st.sidebar.number_input(
        "Pension (uncrystallised)", 0, value=int(defaults["pension"]), step=5000, key=f"pen_{i}",
        help="Defined contribution pots you haven't taken any tax-free cash from yet.",
    )
    with st.sidebar.expander("DB pension & earnings"):
        db_amount = st.number_input("DB pension (£/yr)", 0, value=0, step=500, key=f"db_{i}")
        db_age = st.number_input("DB pension starts at", 0, 75, 0, key=f"dba_{i}")
        work = st.number_input("Salary until retirement (£/yr)", 0, value=0, step=1000, key=f"work_{i}")
    people.append({
        **defaults,
        "name": name,
        "birth_date": born.isoformat(),
        "retirement_age": int(retirement_age),
        "state_pension_age": int(sp_age),
        "tax_free_savings": float(isa),
        "pension": float(pension),
        "db_pension_amount": float(db_amount),
        "db_pension_start_age": int(db_age),
        "work_income": float(work),
    })

st.sidebar.header("Growth & inflation")
preset_name = st.sidebar.selectbox("Growth preset", ["Custom"] + list(PRESETS.keys()))
growth_default = PRESETS[preset_name]["growth"] if preset_name != "Custom" else base["financial"]["pension_growth_rate"]
growth = st.sidebar.number_input("Investment growth (nominal, per year)", value=float(growth_default), step=0.005, format="%.3f")
glide = st.sidebar.selectbox("Glide path", list(GLIDE_END.keys()))
inflation = st.sidebar.slider("Inflation (%/yr)", 0.0, 10.0, base["financial"]["income_inflation_rate"] * 100, 0.1) / 100.0
band_inflation = st.sidebar.slider(
    "Tax band uprating (%/yr)", 0.0, 5.0, 0.0, 0.1,
    help="0% = bands stay frozen, which is current UK policy.",
) / 100.0
sp_amount = st.sidebar.number_input("Full state pension (£/yr)", 0, value=int(base["financial"]["state_pension_amount"]), step=100)

st.sidebar.header("Spending")
tiers = base["income"]["tiers"]
active = st.sidebar.number_input("Active years (£/month, today)", 0, value=int(tiers[0]["monthly_amount"]), step=100)
slow_age = st.sidebar.number_input("Slow down at age", 60, 100, int(tiers[0]["end_age"]))
slower = st.sidebar.number_input("Later years (£/month, today)", 0, value=int(tiers[1]["monthly_amount"]), step=100)
guardrails = st.sidebar.checkbox("Guyton-Klinger guardrails", value=False)
vpw = st.sidebar.checkbox("Variable percentage withdrawal", value=False)

st.sidebar.header("Mortgage")
has_mortgage = st.sidebar.checkbox("I still have a mortgage", value=False)
mortgage = {"parts": [], "end_year": 0, "early_payoff_year": 0}
if has_mortgage:
    principal = st.sidebar.number_input("Original loan", 0, value=200_000, step=5000)
    rate = st.sidebar.number_input("Interest rate", value=0.04, step=0.0025, format="%.4f")
    term = st.sidebar.number_input("Term (years)", 1, 40, 25)
    start = st.sidebar.number_input("Started in", 1990, 2060, 2024)
    early = st.sidebar.number_input("Early payoff year", 1990, 2100, int(max(start, start + term - 5)))
    mortgage = {
        "parts": [{"name": "Main", "principal": float(principal), "interest_rate": float(rate),
                   "term_years": int(term), "start_year": int(start)}],
        "end_year": 0,
        "early_payoff_year": int(early),
    }

st.sidebar.header("Simulation")
end_age = st.sidebar.number_input("Plan until age", 80, 110, base["simulation"]["end_age"])
mode = st.sidebar.selectbox("How many strategies", PERMUTATION_MODES, index=PERMUTATION_MODES.index("standard"))
goal = st.sidebar.selectbox("Rank by", list(OptimizationGoal), format_func=lambda g: {
    OptimizationGoal.TAX: "Least tax", OptimizationGoal.INCOME: "Most withdrawn", OptimizationGoal.BALANCE: "Biggest legacy",
}[g])
workers = st.sidebar.number_input("Parallel workers", 1, 16, 1)

cfg_dict = {
    "people": people,
    "financial": {
        **base["financial"],
        "pension_growth_rate": growth,
        "savings_growth_rate": growth,
        "income_inflation_rate": inflation,
        "state_pension_amount": float(sp_amount),
        "tax_band_inflation": band_inflation,
        "growth_decline_enabled": GLIDE_END[glide] is not None,
        "pension_growth_end_rate": GLIDE_END[glide] or growth,
        "savings_growth_end_rate": GLIDE_END[glide] or growth,
    },
    "income": {
        **base["income"],
        "tiers": [
            {"name": "Active", "monthly_amount": float(active), "end_age": int(slow_age), "ratio": 1.0},
            {"name": "Slower", "monthly_amount": float(slower), "start_age": int(slow_age),
             "ratio": slower / active if active else 1.0},
        ],
        "guardrails_enabled": guardrails,
        "vpw_enabled": vpw,
    },
    "mortgage": mortgage,
    "simulation": {**base["simulation"], "end_age": int(end_age)},
    "strategy": {**base["strategy"], "permutation_mode": mode, "processes": int(workers)},
    "tax": base["tax"],
}

try:
    cfg = config_from_dict(cfg_dict)
    validate_config(cfg)
except ConfigError as e:
    st.error(f"Please check your inputs: {e}")
    st.stop()


@st.cache_data(show_spinner=False)
def run_cached(cfg_dict):
    return run_strategy_matrix(config_from_dict(cfg_dict))


@st.cache_data(show_spinner=False)
def solve_cached(cfg_dict, params_list, depletion_mode):
    return run_all_depletion(config_from_dict(cfg_dict), params_list, mode=depletion_mode)


@st.cache_data(show_spinner=False)
def sensitivity_cached(cfg_dict, rates, params_list):
    return run_sensitivity(config_from_dict(cfg_dict), rates, rates, combos=params_list)


# ------------- Strategy matrix -------------
st.markdown("### 1) Compare strategies")
helptext(f"{len(strategy_combinations(cfg))} combinations in **{mode}** mode. Strategies that run out of money always rank last.")

with st.spinner("Simulating strategies…"):
    results = run_cached(config_to_dict(cfg))

ranked = rank_results(results, goal)
best = ranked[0]

c1, c2, c3, c4 = st.columns(4)
kpi_card(c1, "Best strategy", best.params.label.split(" + ")[1], best.params.label)
kpi_card(c2, "Lifetime tax", money(best.total_tax_paid))
kpi_card(c3, "Final balance", money(best.final_total_balance))
kpi_card(
    c4, "Money lasts",
    f"Runs out {best.ran_out_year}" if best.ran_out_of_money else "Yes",
    f"{sum(not r.ran_out_of_money for r in results)} of {len(results)} strategies last",
)

table = matrix_frame(ranked)
st.dataframe(
    table[["strategy", "total_tax", "total_withdrawn", "final_balance", "ran_out_year"]].style.format({
        "total_tax": "£{:,.0f}", "total_withdrawn": "£{:,.0f}", "final_balance": "£{:,.0f}",
    }),
    use_container_width=True, height=320,
)

# ------------- Charts -------------
st.markdown("### 2) Year by year")
labels = [r.params.label for r in ranked]
chosen_label = st.selectbox("Strategy", labels, index=0)
chosen = ranked[labels.index(chosen_label)]
df = result_frame(chosen)
df = df[~df["padded"]]

figB = go.Figure()
for person in cfg.people:
    for pot, dash in (("isa", None), ("uncrystallised", "dot"), ("crystallised", "dash")):
        figB.add_trace(go.Scatter(
            x=df["year"], y=df[f"{person.name}_{pot}"], mode="lines", stackgroup="pots",
            name=f"{person.name} {pot}", line=dict(dash=dash),
        ))
figB.update_layout(
    title="Pots by person (nominal)", xaxis_title="Year", yaxis_title="£",
    hovermode="x unified", margin=dict(l=30, r=20, t=60, b=30),
)
st.plotly_chart(figB, use_container_width=True)

figI = go.Figure()
for col, label in (("state_pension", "State pension"), ("db_pension", "DB pension"), ("work_income", "Earnings"),
                   ("isa_withdrawn", "From ISA"), ("pension_tax_free", "Pension tax-free"),
                   ("pension_taxable", "Pension taxable")):
    figI.add_trace(go.Bar(x=df["year"], y=df[col], name=label))
figI.add_trace(go.Scatter(x=df["year"], y=df["required_income"] + df["mortgage_cost"], mode="lines",
                          name="Spending + mortgage", line=dict(dash="dash")))
figI.add_trace(go.Scatter(x=df["year"], y=df["tax_paid"], mode="lines", name="Tax paid"))
figI.update_layout(
    barmode="stack", title="Where the money comes from", xaxis_title="Year", yaxis_title="£ per year",
    hovermode="x unified", margin=dict(l=30, r=20, t=60, b=30),
)
st.plotly_chart(figI, use_container_width=True)

with st.expander("Full year table"):
    st.dataframe(df, use_container_width=True)

# ------------- Sustainable income -------------
st.markdown("### 3) Sustainable income")
helptext("Highest monthly spend (today's money, scaled by your tier ratios) that lasts until your target age.")
target_age = st.number_input("Make the money last until age", 70, 110, int(end_age))
top_n = st.slider("Strategies to solve (top of the ranking)", 1, min(16, len(ranked)), min(4, len(ranked)))
depletion_mode = st.selectbox("Spend down", list(DepletionMode), format_func=lambda m: {
    DepletionMode.HOUSEHOLD: "Everything (ranked strategies above)",
    DepletionMode.PENSION_ONLY: "Pensions only, keep the ISAs",
    DepletionMode.PENSION_TO_ISA: "Pensions, banking surplus in ISAs",
}[m])

if st.button("Find sustainable income"):
    solve_dict = config_to_dict(cfg)
    solve_dict["income"]["target_depletion_age"] = int(target_age)
    with st.spinner("Searching…"):
        combos = [r.params for r in ranked[:top_n]] if depletion_mode == DepletionMode.HOUSEHOLD else None
        solved = solve_cached(solve_dict, combos, depletion_mode)
    best_d = find_best_depletion(solved)
    if best_d is None:
        st.warning("No strategy reached the target. Try a lower target age or trimming spending.")
    else:
        kpi_card(st, "Sustainable income", f"{money(best_d.monthly_income)}/month",
                 f"{best_d.params.label} • lifetime tax {money(best_d.result.total_tax_paid)}")
    st.dataframe(pd.DataFrame([{
        "strategy": d.params.label,
        "status": d.status.value,
        "monthly_income": d.monthly_income if d.status == DepletionStatus.CONVERGED else None,
        "depletion_year": d.depletion_year,
        "iterations": d.iterations,
    } for d in solved]), use_container_width=True)

# ------------- Growth sensitivity -------------
st.markdown("### 4) Growth sensitivity")
helptext("Re-runs the top strategies for every pair of pension and savings growth rates and shows the best in each cell.")
sens = base["sensitivity"]
sens_lo, sens_hi = st.slider("Growth range (%/yr)", 0.0, 15.0,
                             (sens["pension_growth_min"] * 100, sens["pension_growth_max"] * 100), 0.5)
sens_step = st.select_slider("Step (%)", [0.5, 1.0, 2.0], value=sens["step_size"] * 100)

if st.button("Run sensitivity"):
    rates = growth_grid(sens_lo / 100, sens_hi / 100, sens_step / 100)
    with st.spinner(f"Simulating {len(rates) ** 2} growth scenarios…"):
        cells = sensitivity_cached(config_to_dict(cfg), rates, [r.params for r in ranked[:top_n]])
    st.caption("Final balance of the best strategy (rows: pension growth, columns: savings growth)")
    st.dataframe(sensitivity_table(cells, "final_balance").style.format("£{:,.0f}"), use_container_width=True)
    st.caption("Best strategy")
    st.dataframe(sensitivity_table(cells, "best_strategy"), use_container_width=True)
    name_s, data_s = export_sensitivity(cells)
    st.download_button("⬇️ Download sensitivity grid (CSV)", data_s, file_name=name_s, mime="text/csv")

# ------------- Export -------------
st.markdown("### 5) Export")
name_csv, data_csv = export_year_table(chosen)
st.download_button("⬇️ Download year table (CSV)", data_csv, file_name=name_csv, mime="text/csv")
name_m, data_m = export_matrix(ranked)
st.download_button("⬇️ Download strategy comparison (CSV)", data_m, file_name=name_m, mime="text/csv")
name_json, data_json = export_results_json(ranked[:5])
st.download_button("⬇️ Download top 5 results (JSON)", data_json, file_name=name_json, mime="application/json")
name_cfg, data_cfg = export_config(cfg)
st.download_button("⬇️ Download your configuration (JSON)", data_cfg, file_name=name_cfg, mime="application/json")

st.markdown("---")
st.caption(f"{LABELS[chosen.params.crystallisation]} crystallisation. Illustration only, not financial advice.")
