import streamlit as st

BASE_CSS = """
.card {border: 1px solid rgba(128,128,128,0.25); border-radius: 10px; padding: 12px 16px; margin-bottom: 8px;}
.kpi {font-size: 1.6rem; font-weight: 600;}
.caption {font-size: 0.85rem; opacity: 0.75;}
.badge {display: inline-block; padding: 2px 8px; border-radius: 8px; background: rgba(0,128,96,0.12); font-size: 0.8rem;}
"""


def inject_css():
    st.markdown(f"<style>{BASE_CSS}</style>", unsafe_allow_html=True)


def header(title: str, subtitle: str = ""):
    cols = st.columns([6, 2])
    with cols[0]:
        st.markdown(f"## {title}")
        if subtitle:
            st.caption(subtitle)
    with cols[1]:
        st.markdown(
            "<div class='badge'>UK tax</div> "
            "<div class='badge'>Strategy matrix</div> "
            "<div class='badge'>Depletion solver</div>",
            unsafe_allow_html=True,
        )


def helptext(text: str):
    st.caption(text)


def kpi_card(col, caption: str, value: str, note: str = ""):
    html = f"<div class='card'><div class='caption'>{caption}</div><div class='kpi'>{value}</div>"
    if note:
        html += f"<div class='caption'>{note}</div>"
    col.markdown(html + "</div>", unsafe_allow_html=True)


def money(x) -> str:
    return f"£{x:,.0f}"
