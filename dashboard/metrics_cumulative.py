from __future__ import annotations

from dataclasses import asdict
from datetime import date
from itertools import accumulate
from typing import Any, Dict, List, Optional, Sequence

import altair as alt
import pandas as pd

from dashboard.charts import to_vega_spec
from dashboard.fields import parse_date
from dashboard.filters import METRIC_KEYS, SalesFilters
from dashboard.metrics_sales import annual_targets, filter_deals
from dashboard.models import MONTHS_PER_YEAR, QuarterDeal, SalesData
from dashboard.periods import MONTH_LABELS


def fit_series(values: Sequence[float], width: int = MONTHS_PER_YEAR) -> List[float]:
    out = [float(v) for v in values][:width]
    return out + [0.0] * (width - len(out))


def cumulative_metric_value(deal: QuarterDeal, metric: str) -> float:
    if metric == "clientWins":
        return 1.0
    if metric == "acv":
        return deal.acv
    return deal.arr_forecast


def monthly_totals(deals: Sequence[QuarterDeal], metric: str, year: int, as_of: date) -> Dict[str, List[float]]:
    """Signed / forecasted sums per calendar month of the year; empty months are 0."""
    signed = [0.0] * MONTHS_PER_YEAR
    forecasted = [0.0] * MONTHS_PER_YEAR
    for d in deals:
        close = parse_date(d.close_date)
        if close is None or close.year != year:
            continue
        bucket = signed if close <= as_of else forecasted
        bucket[close.month - 1] += cumulative_metric_value(d, metric)
    return {"signed": signed, "forecasted": forecasted}


def running_totals(monthly: Dict[str, List[float]]) -> Dict[str, List[float]]:
    signed = list(accumulate(monthly["signed"]))
    forecasted = list(accumulate(monthly["forecasted"]))
    return {
        "signed": signed,
        "forecasted": forecasted,
        "combined": [s + f for s, f in zip(signed, forecasted)],
    }


def linear_target(annual: float) -> List[float]:
    return [annual * (m + 1) / MONTHS_PER_YEAR for m in range(MONTHS_PER_YEAR)]


def cumulative_series(
    data: SalesData,
    metric: str,
    filters: SalesFilters,
    as_of: date,
    year: Optional[int] = None,
) -> Dict[str, Any]:
    """Actual / forecast / target per month, from the chart sheet when present or computed from quarter deals."""
    sheet = None if filters.active else data.cumulative_chart_data.get(metric)
    if sheet is not None:
        return {
            "source": "cumulative_chart_data",
            "actual": fit_series(sheet.actual),
            "forecast": fit_series(sheet.forecast),
            "target": fit_series(sheet.target),
        }

    year = year or as_of.year
    totals = running_totals(monthly_totals(filter_deals(data.quarter_deal, filters), metric, year, as_of))
    return {
        "source": "deals",
        "actual": totals["signed"],
        "forecast": totals["combined"],
        "target": linear_target(annual_targets(data)[metric]),
    }


def compute_cumulative(
    filters: SalesFilters,
    data: SalesData,
    metric: str,
    *,
    as_of: Optional[date] = None,
    year: Optional[int] = None,
) -> Dict[str, Any]:
    if metric not in METRIC_KEYS:
        raise ValueError(f"Unknown metric {metric!r}; expected one of {', '.join(METRIC_KEYS)}.")
    as_of = as_of or date.today()
    series = cumulative_series(data, metric, filters, as_of, year)

    rows = [
        {"month": MONTH_LABELS[m], "actual": series["actual"][m], "forecast": series["forecast"][m], "target": series["target"][m]}
        for m in range(MONTHS_PER_YEAR)
    ]
    long_df = pd.DataFrame(rows).melt(id_vars="month", value_vars=["actual", "forecast", "target"], var_name="series", value_name="value")
    value_format = ",.0f" if metric == "clientWins" else "$,.0f"
    hover = alt.selection_point(fields=["series"], on="mouseover", empty="all")
    chart = (
        alt.Chart(long_df)
        .mark_line(point={"filled": True, "size": 50})
        .encode(
            x=alt.X("month:O", title="Month", sort=list(MONTH_LABELS), axis=alt.Axis(grid=False, labelAngle=0)),
            y=alt.Y("value:Q", title=None, axis=alt.Axis(format="~s" if metric == "clientWins" else "$~s", gridDash=[4, 4])),
            color=alt.Color("series:N", title=None),
            strokeDash=alt.condition(alt.datum.series == "target", alt.value([6, 4]), alt.value([1, 0])),
            opacity=alt.condition(hover, alt.value(1), alt.value(0.2)),
            tooltip=["month", "series", alt.Tooltip("value:Q", format=value_format)],
        )
        .add_params(hover)
        .properties(height=280)
    )

    return {
        "filters": asdict(filters),
        "metric": metric,
        "as_of": as_of.isoformat(),
        "source": series["source"],
        "rows": rows,
        "annual_target": annual_targets(data)[metric],
        "charts": {"cumulative": to_vega_spec(chart)},
    }
