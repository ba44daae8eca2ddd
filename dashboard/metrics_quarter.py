"""
dashboard/metrics_quarter.py

Quarter projection waterfall and month drill-down.

Rows: an optional Carry-over bar (earlier quarters of the same year), one bar
per month stacked signed / forecasted on top of the running baseline, a Total
Projected bar for the three months and the quarter Target. Deals whose close
date is missing or unparseable never enter any bucket.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple

import altair as alt
import pandas as pd

from dashboard.charts import to_vega_spec
from dashboard.fields import parse_date
from dashboard.filters import QUARTER_METRIC_KEYS, SalesFilters
from dashboard.metrics_sales import (
    deal_value,
    deals_by_owner,
    deals_by_segment,
    filter_deals,
    owner_options,
    quarter_deals,
    quarter_targets,
    round_target,
    segment_options,
    selection_target,
)
from dashboard.models import QuarterDeal, SalesData
from dashboard.periods import MONTH_LABELS, Quarter

Buckets = Tuple[List[float], List[float]]


def quarter_metric(metric: str) -> str:
    """The waterfall has no ARR view; anything else falls back to ACV."""
    return metric if metric in QUARTER_METRIC_KEYS else "acv"


def is_signed(close: date, as_of: date) -> bool:
    return close <= as_of


def month_buckets(deals: Sequence[QuarterDeal], quarter: Quarter, metric: str, as_of: date) -> Buckets:
    signed = [0.0, 0.0, 0.0]
    forecasted = [0.0, 0.0, 0.0]
    for d in deals:
        close = parse_date(d.close_date)
        idx = quarter.month_index(close)
        if close is None or idx is None:
            continue
        if is_signed(close, as_of):
            signed[idx] += deal_value(d, metric)
        else:
            forecasted[idx] += deal_value(d, metric)
    return signed, forecasted


def carry_over(deals: Sequence[QuarterDeal], quarter: Quarter, metric: str, as_of: date) -> float:
    """Signed plus forecasted totals of the same year's earlier quarters."""
    total = 0.0
    for previous in quarter.previous:
        signed, forecasted = month_buckets(deals, previous, metric, as_of)
        total += sum(signed) + sum(forecasted)
    return total


def waterfall_rows(
    quarter: Quarter,
    signed: Sequence[float],
    forecasted: Sequence[float],
    carry: float,
    target: float,
) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    running = 0.0
    if quarter.number != 1:
        running = carry
        rows.append(
            {"name": "Carry-over", "kind": "carry_over", "baseline": 0.0, "signed": carry, "forecasted": 0.0, "target": None, "running_total": running}
        )
    for label, s, f in zip(quarter.month_labels, signed, forecasted):
        baseline = running
        running += s + f
        rows.append(
            {"name": label, "kind": "month", "baseline": baseline, "signed": s, "forecasted": f, "target": None, "running_total": running}
        )
    rows.append(
        {
            "name": "Total Projected",
            "kind": "total",
            "baseline": 0.0,
            "signed": float(sum(signed)),
            "forecasted": float(sum(forecasted)),
            "target": None,
            "running_total": running,
        }
    )
    rows.append(
        {"name": quarter.target_label, "kind": "target", "baseline": 0.0, "signed": 0.0, "forecasted": 0.0, "target": target, "running_total": running}
    )
    return rows


def quarter_projection(
    data: SalesData,
    quarter: Quarter,
    filters: SalesFilters,
    as_of: date,
) -> Dict[str, Any]:
    """Waterfall inputs for one quarter and metric, from the metric input sheet or the deal list."""
    metric = quarter_metric(filters.metric)
    sheet = None if filters.active else data.quarter_metric_input.get(quarter.id, {}).get(metric)

    if sheet is not None:
        signed = [float(v) for v in sheet.month_signed[:3]]
        forecasted = [float(v) for v in sheet.month_forecasted[:3]]
        carry = float(sheet.carry_over)
        raw_target = sheet.quarter_target if sheet.quarter_target > 0 else quarter_targets(data, quarter).for_metric(metric)
        target = round_target(raw_target, metric)
        source = "quarter_metric_input"
    else:
        deals = filter_deals(data.quarter_deal, filters)
        signed, forecasted = month_buckets(deals, quarter, metric, as_of)
        carry = carry_over(deals, quarter, metric, as_of) if quarter.number != 1 else 0.0
        target = selection_target(data, quarter, metric, filters)
        source = "deals"

    rows = waterfall_rows(quarter, signed, forecasted, carry, target)
    projected = rows[-1]["running_total"]
    return {
        "metric": metric,
        "source": source,
        "rows": rows,
        "summary": {
            "projected": projected,
            "signed": float(sum(signed)),
            "forecasted": float(sum(forecasted)),
            "carry_over": carry if quarter.number != 1 else 0.0,
            "target": target,
            "gap": target - projected,
            "attainment": projected / target if target else None,
        },
    }


def quarter_deal_rows(data: SalesData, quarter: Quarter, filters: SalesFilters, as_of: date) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for d in filter_deals(data.quarter_deal, filters):
        close = parse_date(d.close_date)
        if not quarter.contains(close):
            continue
        row = asdict(d)
        row["status"] = "Signed" if is_signed(close, as_of) else "Forecasted"
        out.append(row)
    return out


def month_details(
    data: SalesData,
    quarter: Quarter,
    month: int,
    filters: SalesFilters,
    as_of: date,
) -> Dict[str, Any]:
    """Deals closing in one calendar month of the quarter, honoring the segment / owner selection."""
    if month not in quarter.months:
        raise ValueError(f"Month {month} is not part of {quarter.id}.")
    rows: List[Dict[str, Any]] = []
    for d in filter_deals(data.quarter_deal, filters):
        close = parse_date(d.close_date)
        if close is None or close.year != quarter.year or close.month != month:
            continue
        rows.append(
            {
                "deal_name": d.deal_name or d.client_name,
                "month": MONTH_LABELS[month - 1],
                "segment": d.segment,
                "deal_owner": d.deal_owner,
                "status": "Signed" if is_signed(close, as_of) else "Forecasted",
                "weighted_acv": d.acv * d.confidence_quarter_close / 100.0,
                "arr": d.arr_forecast,
            }
        )
    return {
        "quarter": quarter.id,
        "month": MONTH_LABELS[month - 1],
        "rows": rows,
        "total_weighted_acv": float(sum(r["weighted_acv"] for r in rows)),
        "total_arr": float(sum(r["arr"] for r in rows)),
    }


def _waterfall_chart(rows: List[Dict[str, Any]], metric: str) -> Dict[str, Any]:
    order = [r["name"] for r in rows]
    long_rows: List[Dict[str, Any]] = []
    for r in rows:
        parts = [("baseline", r["baseline"]), ("Signed", r["signed"]), ("Forecasted", r["forecasted"])]
        if r["target"] is not None:
            parts.append(("Target", r["target"]))
        for position, (part, value) in enumerate(parts):
            long_rows.append({"name": r["name"], "part": part, "value": value, "order": position})
    df = pd.DataFrame(long_rows)
    value_format = ",.0f" if metric == "clientWins" else "$,.0f"
    chart = (
        alt.Chart(df)
        .mark_bar()
        .encode(
            x=alt.X("name:N", title=None, sort=order, axis=alt.Axis(labelAngle=0)),
            y=alt.Y("value:Q", title=None, stack="zero", axis=alt.Axis(format="~s" if metric == "clientWins" else "$~s")),
            color=alt.Color(
                "part:N",
                title=None,
                scale=alt.Scale(
                    domain=["baseline", "Signed", "Forecasted", "Target"],
                    range=["transparent", "#1e1b4b", "#818cf8", "#f59e0b"],
                ),
                legend=alt.Legend(values=["Signed", "Forecasted", "Target"]),
            ),
            order=alt.Order("order:Q"),
            tooltip=["name", "part", alt.Tooltip("value:Q", format=value_format)],
        )
        .properties(height=300)
    )
    return to_vega_spec(chart)


def compute_quarter(
    filters: SalesFilters,
    data: SalesData,
    quarter: Quarter,
    *,
    as_of: Optional[date] = None,
) -> Dict[str, Any]:
    as_of = as_of or date.today()
    projection = quarter_projection(data, quarter, filters, as_of)
    in_quarter = quarter_deals(data, quarter)
    return {
        "filters": asdict(filters),
        "quarter": {"id": quarter.id, "label": quarter.label, "months": list(quarter.month_labels)},
        "as_of": as_of.isoformat(),
        "segment_options": segment_options(data, quarter),
        "owner_options": owner_options(data, quarter),
        "waterfall": projection["rows"],
        "summary": projection["summary"],
        "metric": projection["metric"],
        "source": projection["source"],
        "deals": quarter_deal_rows(data, quarter, filters, as_of),
        "by_segment": deals_by_segment(in_quarter, filters, projection["metric"]).to_dict(orient="records"),
        "by_owner": deals_by_owner(in_quarter, filters, projection["metric"]).to_dict(orient="records"),
        "charts": {"waterfall": _waterfall_chart(projection["rows"], projection["metric"])},
    }
