from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import pandas as pd
import streamlit as st

from dashboard.charts import format_compact, format_currency_0
from dashboard.config import get_settings
from dashboard.data import load_sales_data, load_volume_rows
from dashboard.filters import QUARTER_METRIC_KEYS, VOLUME_DIMENSIONS, normalize_sales_filters, normalize_volume_filters
from dashboard.metrics_cumulative import compute_cumulative
from dashboard.metrics_details import compute_details, compute_lost_deals
from dashboard.metrics_quarter import compute_quarter, month_details
from dashboard.metrics_sales import compute_sales_overview
from dashboard.metrics_volume import compute_month_top_clients, compute_volume_overview
from dashboard.periods import Quarter, quarter_of
from dashboard.store import SalesDataStore

METRIC_LABELS = {"acv": "ACV", "inYearRevenue": "In-year revenue", "clientWins": "Client wins", "arrTarget": "ARR"}


# ---------- UI / layout helpers ----------
def inject_base_styles():
    if st.session_state.get("_base_css_injected"):
        return
    st.markdown(
        """
        <style>
        .app-top-bar {padding: 6px 0 4px;border-bottom: 1px solid #e5e7eb;margin-bottom: 10px;}
        .app-top-bar .breadcrumb {color: #6b7280;font-size: 0.9rem;margin-bottom: 2px;}
        .app-top-bar .page-title {font-size: 1.4rem;font-weight: 700;color: #111827;}
        .card {border: 1px solid #e5e7eb;border-radius: 12px;padding: 16px;background: #ffffff;
               box-shadow: 0 1px 2px rgba(0,0,0,0.04); margin-bottom: 12px;}
        .card-title {font-weight: 600;font-size: 1.0rem;color: #111827;}
        .chip-row {display: flex;flex-wrap: wrap;gap: 6px;margin-top: 6px;}
        .chip {background: #eef2ff;border: 1px solid #e0e7ff;border-radius: 14px;padding: 4px 10px;font-size: 0.85rem;color: #1e1b4b;}
        </style>
        """,
        unsafe_allow_html=True,
    )
    st.session_state["_base_css_injected"] = True


@contextmanager
def card(title: str):
    container = st.container()
    container.markdown(f"<div class='card'><div class='card-title'>{title}</div>", unsafe_allow_html=True)
    body = container.container()
    with body:
        yield body
    container.markdown("</div>", unsafe_allow_html=True)


def chips(values: List[str]) -> str:
    return "".join(f"<span class='chip'>{v}</span>" for v in values)


def render_page_header(title: str, breadcrumb: str, chip_html: str, export_df: Optional[pd.DataFrame] = None, export_name: str = "export.csv"):
    inject_base_styles()
    c1, c2 = st.columns([8, 2])
    with c1:
        st.markdown(
            f"<div class='app-top-bar'><div class='breadcrumb'>{breadcrumb}</div><div class='page-title'>{title}</div></div>",
            unsafe_allow_html=True,
        )
    with c2:
        if export_df is not None and not export_df.empty:
            st.download_button(
                "Export CSV",
                data=export_df.to_csv(index=False).encode("utf-8"),
                file_name=export_name,
                mime="text/csv",
            )
    st.markdown(f"<div class='chip-row'>{chip_html}</div>", unsafe_allow_html=True)


def render_chart(charts: Dict[str, Any], key: str):
    spec = charts.get(key)
    if spec:
        st.vega_lite_chart(spec, use_container_width=True)
    else:
        st.info("No data for this chart.")


# ---------- Data ----------
@st.cache_resource
def get_store() -> SalesDataStore:
    return SalesDataStore(loader=lambda: load_sales_data(get_settings()))


@st.cache_data
def get_volume_rows():
    return load_volume_rows(get_settings().volume_json_path)


# ---------- Pages ----------
def render_volume_page():
    try:
        rows = get_volume_rows()
    except (OSError, ValueError) as exc:
        st.error(f"Could not load the volume export: {exc}")
        return

    with st.sidebar:
        st.markdown("### Volume filters")
        options = compute_volume_overview(normalize_volume_filters({}), rows)["options"]
        raw: Dict[str, Any] = {}
        for name in VOLUME_DIMENSIONS:
            raw[name] = st.multiselect(name.replace("_", " ").title(), options=options.get(name, []), default=[])
        raw["top_n"] = st.slider("Top clients", min_value=5, max_value=50, value=10, step=5)
    filters = normalize_volume_filters(raw)
    payload = compute_volume_overview(filters, rows)

    active = [f"{k.replace('_', ' ')}: {len(v)}" for k, v in filters.selections().items()] or ["All rows"]
    render_page_header("Total Volume", "Home / Total Volume", chips(active))

    kpis = payload["kpis"]
    cols = st.columns(4)
    cols[0].metric("Total volume", f"{kpis['total_volume']:,.0f}")
    cols[1].metric("Transactions", f"{kpis['transactions']:,}")
    cols[2].metric("Avg volume / txn", f"{kpis['average_volume']:,.0f}")
    cols[3].metric("Date range", kpis["date_range"])

    with card("Volume over time"):
        render_chart(payload["charts"], "volume_by_date")
    left, right = st.columns(2)
    with left:
        with card("Volume by month"):
            render_chart(payload["charts"], "volume_by_month")
    with right:
        with card(f"Top {filters.top_n} clients"):
            render_chart(payload["charts"], "top_clients")

    months = [r["month"] for r in payload["by_month"]]
    if months:
        with card("Top clients for a month"):
            month = st.selectbox("Month", options=months, index=len(months) - 1)
            drill = compute_month_top_clients(filters, rows, month)
            st.caption(f"Month total: {drill['month_total_volume']:,.0f} · Overall total: {drill['overall_total_volume']:,.0f}")
            st.dataframe(pd.DataFrame(drill["month_top_clients"]), hide_index=True, use_container_width=True)


def render_sales_page(store: SalesDataStore):
    snapshot = store.ensure_loaded()
    with st.sidebar:
        st.markdown("---")
        if st.button("Reload data"):
            snapshot = store.reload()
    if not snapshot.ready:
        st.error(snapshot.error or "Sales data is not loaded.")
        if st.button("Retry"):
            store.reload()
            st.rerun()
        return
    data = snapshot.data
    settings = get_settings()
    as_of = settings.today()

    with st.sidebar:
        st.markdown("### Sales filters")
        current = quarter_of(as_of)
        quarter_ids = [Quarter(current.year, n).id for n in (1, 2, 3, 4)]
        quarter = Quarter.parse(st.selectbox("Quarter", options=quarter_ids, index=current.number - 1))
        base = compute_quarter(normalize_sales_filters({}), data, quarter, as_of=as_of)
        segments = st.multiselect("Segments", options=base["segment_options"], default=[])
        owners = st.multiselect("Deal owners", options=base["owner_options"], default=[])
        metric = st.radio("Metric", options=list(QUARTER_METRIC_KEYS), format_func=METRIC_LABELS.get, index=1)
    filters = normalize_sales_filters({"selected_segments": segments, "selected_owners": owners, "metric": metric})

    overview = compute_sales_overview(filters, data)
    quarter_payload = compute_quarter(filters, data, quarter, as_of=as_of)
    render_page_header(
        "Sales KPI",
        f"Home / Sales / {quarter.label}",
        chips([f"Segments: {', '.join(segments) or 'All'}", f"Owners: {', '.join(owners) or 'All'}", METRIC_LABELS[filters.metric]]),
        export_df=pd.DataFrame(quarter_payload["deals"]),
        export_name=f"{quarter.id}-deals.csv",
    )

    kpis = overview["kpis"]
    if kpis:
        cols = st.columns(4)
        cols[0].metric("Forecast ARR", format_compact(kpis["forecast_arr"]), delta=kpis.get("forecast_arr_delta"))
        cols[1].metric("Pipeline value", format_compact(kpis["pipeline_value"]), delta=kpis.get("pipeline_value_delta"))
        cols[2].metric("Closed won", format_compact(kpis["closed_won"]), delta=kpis.get("closed_won_delta"))
        cols[3].metric("Win rate", f"{kpis['win_rate']:.0f}%", delta=kpis.get("win_rate_delta"))

    tabs = st.tabs(["Overview", "Quarter", "Cumulative", "Lost deals"])
    with tabs[0]:
        left, right = st.columns(2)
        with left:
            with card("Forecast vs target"):
                render_chart(overview["charts"], "forecast_line")
            with card("Pipeline by stage"):
                render_chart(overview["charts"], "pipeline_stages")
        with right:
            with card("Deal distribution"):
                render_chart(overview["charts"], "deal_distribution")
            with card("ARR by month"):
                render_chart(overview["charts"], "arr_by_month")
        with card("Client deals"):
            st.dataframe(pd.DataFrame(overview["client_deals"]), hide_index=True, use_container_width=True)

    with tabs[1]:
        summary = quarter_payload["summary"]
        fmt = (lambda v: f"{v:,.0f}") if quarter_payload["metric"] == "clientWins" else format_currency_0
        cols = st.columns(4)
        cols[0].metric("Projected", fmt(summary["projected"]))
        cols[1].metric("Target", fmt(summary["target"]))
        cols[2].metric("Gap", fmt(summary["gap"]))
        cols[3].metric("Attainment", f"{summary['attainment']:.0%}" if summary["attainment"] is not None else "N/A")
        with card(f"{quarter.label} projection"):
            render_chart(quarter_payload["charts"], "waterfall")
        with card("Month details"):
            month_label = st.radio("Month", options=list(quarter.month_labels), horizontal=True)
            month = quarter.months[list(quarter.month_labels).index(month_label)]
            details = month_details(data, quarter, month, filters, as_of)
            st.caption(f"Weighted ACV: {format_currency_0(details['total_weighted_acv'])}")
            st.dataframe(pd.DataFrame(details["rows"]), hide_index=True, use_container_width=True)
        table = compute_details(data, f"Q{quarter.number}")
        if table["rows"]:
            with card(f"Q{quarter.number} details"):
                frame = pd.DataFrame([r["values"] for r in table["rows"]]).rename(columns=table["headers"])
                st.dataframe(frame, hide_index=True, use_container_width=True)
                with st.expander("Latest / next steps"):
                    for r in table["rows"]:
                        if r["next_steps"]:
                            st.markdown(f"- {r['next_steps']}")

    with tabs[2]:
        cumulative = compute_cumulative(filters, data, filters.metric, as_of=as_of)
        with card(f"Cumulative {METRIC_LABELS[filters.metric]} vs target"):
            render_chart(cumulative["charts"], "cumulative")

    with tabs[3]:
        lost = compute_lost_deals(data)
        st.metric("Lost deals", lost["kpis"]["lost_deals"])
        st.dataframe(pd.DataFrame(lost["rows"]), hide_index=True, use_container_width=True)


# ---------- UI setup ----------
st.set_page_config(page_title="Commercial Dashboards", layout="wide")
inject_base_styles()
st.title("Commercial Dashboards")

with st.sidebar:
    st.markdown("### Navigate")
    nav_choice = st.radio("Navigate", ["Total Volume", "Sales KPI"], index=0)

if nav_choice == "Total Volume":
    render_volume_page()
else:
    render_sales_page(get_store())
