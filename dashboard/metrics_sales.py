from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, Iterable, List, Optional, Sequence

import altair as alt
import pandas as pd

from dashboard.charts import round_half_up, to_vega_spec
from dashboard.fields import parse_date
from dashboard.filters import SalesFilters
from dashboard.metrics_volume import group_sum
from dashboard.models import ACVByMonth, PipelineDeal, QuarterDeal, QuarterTarget, SalesData
from dashboard.periods import MONTH_LABELS, Quarter, month_key

DEFAULT_ANNUAL_TARGETS: Dict[str, float] = {
    "acv": 3_200_000.0,
    "inYearRevenue": 2_800_000.0,
    "arrTarget": 2_900_000.0,
    "clientWins": 52.0,
}

# Quarter number -> default targets, used when the QuarterTargets sheet has no row.
DEFAULT_QUARTER_TARGETS: Dict[int, QuarterTarget] = {
    1: QuarterTarget(client_wins=10, acv=600_000, in_year_revenue=550_000),
    2: QuarterTarget(client_wins=12, acv=720_000, in_year_revenue=660_000),
    3: QuarterTarget(client_wins=14, acv=840_000, in_year_revenue=770_000),
    4: QuarterTarget(client_wins=16, acv=960_000, in_year_revenue=880_000),
}

DEFAULT_SEGMENT_OPTIONS = ["Bank & Bank Tech", "Fintechs", "Gateways", "Large Merchants", "HVHM"]


def _records(items: Iterable[Any]) -> List[Dict[str, Any]]:
    return [asdict(i) for i in items]


# ---------------- Lines, stages, distribution ----------------
def forecast_line(data: SalesData, segments: Sequence[str] = ()) -> List[Dict[str, Any]]:
    """Overall forecast vs target per month, or the by-segment sheet summed per month for selected segments."""
    if not segments:
        return _records(data.forecast_point)
    rows = [r for r in data.forecast_point_by_segment if r.segment in segments]
    if not rows:
        return []
    df = pd.DataFrame(_records(rows))
    out = df.groupby("month", sort=False)[["forecast", "target"]].sum().reset_index()
    return out.to_dict(orient="records")


def deal_distribution(data: SalesData, segments: Sequence[str] = ()) -> List[Dict[str, Any]]:
    """Segment share of the (filtered) total as whole percentages."""
    items = [s for s in data.deal_segment if not segments or s.name in segments]
    total = sum(s.value for s in items)
    out = _records(items)
    if total > 0:
        for row in out:
            row["value"] = round_half_up(row["value"] / total * 100)
    return out


def pipeline_stages(data: SalesData) -> List[Dict[str, Any]]:
    return _records(data.pipeline_stage)


def forecast_arr(data: SalesData) -> Dict[str, Any]:
    return {
        "chart_data": _records(data.arr_by_month_point),
        "details_by_month": {month: asdict(d) for month, d in data.details_by_month.items()},
    }


# ---------------- Deals ----------------
def pipeline_deals(data: SalesData) -> List[Dict[str, Any]]:
    return _records(data.pipeline_deal)


def acv_by_month_from_deals(deals: Sequence[PipelineDeal]) -> List[ACVByMonth]:
    """Sum ACV by close month (YYYY-MM), ascending; deals without a close date are skipped."""
    totals: Dict[str, float] = {}
    for d in deals:
        closed = parse_date(d.close_date)
        if closed is None:
            continue
        key = month_key(closed)
        totals[key] = totals.get(key, 0.0) + d.acv
    return [
        ACVByMonth(month=MONTH_LABELS[int(key[5:7]) - 1], month_key=key, total_acv=value)
        for key, value in sorted(totals.items())
    ]


def acv_by_month(data: SalesData) -> List[Dict[str, Any]]:
    if data.acv_by_month:
        return _records(data.acv_by_month)
    return _records(acv_by_month_from_deals(data.pipeline_deal))


def deals_by_month(deals: Sequence[PipelineDeal]) -> List[Dict[str, Any]]:
    """Deal count and ACV per close month, ascending."""
    buckets: Dict[str, Dict[str, Any]] = {}
    for d in deals:
        closed = parse_date(d.close_date)
        if closed is None:
            continue
        key = month_key(closed)
        bucket = buckets.setdefault(
            key, {"month": MONTH_LABELS[closed.month - 1], "month_key": key, "count": 0, "acv": 0.0}
        )
        bucket["count"] += 1
        bucket["acv"] += d.acv
    return [buckets[k] for k in sorted(buckets)]


def client_wins(data: SalesData) -> List[Dict[str, Any]]:
    return _records(data.client_wins_point)


def client_deals(data: SalesData, filters: Optional[SalesFilters] = None) -> List[Dict[str, Any]]:
    deals = data.client_deal
    if filters is not None:
        if filters.selected_segments:
            deals = tuple(d for d in deals if d.segment in filters.selected_segments)
        if filters.selected_owners:
            deals = tuple(d for d in deals if d.deal_owner in filters.selected_owners)
    return _records(deals)


def kpi_cards(data: SalesData) -> Dict[str, Any]:
    return asdict(data.sales_kpis) if data.sales_kpis is not None else {}


# ---------------- Targets ----------------
def annual_targets(data: SalesData) -> Dict[str, float]:
    kpis = data.sales_kpis
    sheet = {
        "acv": kpis.annual_acv_target if kpis else None,
        "inYearRevenue": kpis.annual_in_year_revenue_target if kpis else None,
        "arrTarget": kpis.annual_arr_target if kpis else None,
        "clientWins": kpis.annual_client_wins_target if kpis else None,
    }
    return {key: (value if value and value > 0 else DEFAULT_ANNUAL_TARGETS[key]) for key, value in sheet.items()}


def quarter_targets(data: SalesData, quarter: Quarter) -> QuarterTarget:
    from_sheet = data.quarter_targets.get(quarter.id)
    if from_sheet is not None and from_sheet.is_set:
        return from_sheet
    return DEFAULT_QUARTER_TARGETS[quarter.number]


def _selected_target(by_name: Dict[str, float], names: Sequence[str]) -> float:
    return sum(by_name.get(name, 0.0) for name in names)


def target_for_segments(data: SalesData, quarter: Quarter, metric: str, segments: Sequence[str]) -> float:
    return _selected_target(data.quarter_target_by_segment.get(quarter.id, {}).get(metric, {}), segments)


def target_for_owners(data: SalesData, quarter: Quarter, metric: str, owners: Sequence[str]) -> float:
    return _selected_target(data.quarter_target_by_deal_owner.get(quarter.id, {}).get(metric, {}), owners)


def round_target(value: float, metric: str) -> float:
    """Client wins to a whole number; currency metrics to the nearest 1,000."""
    if metric == "clientWins":
        return round_half_up(value) or 0.0
    return round_half_up(value, -3) or 0.0


def selection_target(data: SalesData, quarter: Quarter, metric: str, filters: SalesFilters) -> float:
    """
    Target for the current selection: deal owner targets when owners are
    selected, segment targets when segments are, otherwise the quarter target.
    A selection without any sheet target falls back to the quarter target.
    """

    value = 0.0
    if filters.selected_owners:
        value = target_for_owners(data, quarter, metric, filters.selected_owners)
    elif filters.selected_segments:
        value = target_for_segments(data, quarter, metric, filters.selected_segments)
    if value <= 0:
        value = quarter_targets(data, quarter).for_metric(metric)
    return round_target(value, metric)


# ---------------- Options ----------------
def quarter_deals(data: SalesData, quarter: Quarter) -> List[QuarterDeal]:
    """Deals closing inside the quarter; deals without a parseable close date are excluded."""
    return [d for d in data.quarter_deal if quarter.contains(parse_date(d.close_date))]


def segment_options(data: SalesData, quarter: Quarter) -> List[str]:
    from_deals = {d.segment for d in quarter_deals(data, quarter) if d.segment}
    from_targets = {
        name for by_name in data.quarter_target_by_segment.get(quarter.id, {}).values() for name in by_name if name
    }
    combined = sorted(from_deals | from_targets)
    return combined or list(DEFAULT_SEGMENT_OPTIONS)


def owner_options(data: SalesData, quarter: Quarter) -> List[str]:
    from_sheet = list(data.quarter_deal_owners.get(quarter.id, ()))
    if from_sheet:
        return from_sheet
    return sorted({d.deal_owner for d in quarter_deals(data, quarter) if d.deal_owner})


# ---------------- Breakdowns ----------------
UNASSIGNED = "(Unassigned)"


def deal_value(deal: QuarterDeal, metric: str) -> float:
    if metric == "clientWins":
        return 1.0
    if metric == "acv":
        return deal.acv
    return deal.arr_forecast


def filter_deals(deals: Sequence[QuarterDeal], filters: SalesFilters) -> List[QuarterDeal]:
    out = list(deals)
    if filters.selected_segments:
        out = [d for d in out if d.segment in filters.selected_segments]
    if filters.selected_owners:
        out = [d for d in out if d.deal_owner in filters.selected_owners]
    return out


def deals_by(
    deals: Sequence[QuarterDeal],
    key: str,
    filters: Optional[SalesFilters] = None,
    metric: str = "acv",
) -> pd.DataFrame:
    """
    Metric total and deal count per distinct value of key over the filtered deals.

    Blank keys are bucketed as UNASSIGNED, so the bucket totals always add up
    to the filtered total; 'share' is each bucket's fraction of it.
    """

    selected = filter_deals(deals, filters or SalesFilters())
    frame = pd.DataFrame(
        {
            key: [str(getattr(d, key) or "").strip() or UNASSIGNED for d in selected],
            "value": [deal_value(d, metric) for d in selected],
            "count": [1] * len(selected),
        },
        columns=[key, "value", "count"],
    )
    total = float(frame["value"].sum()) if not frame.empty else 0.0
    return group_sum(frame, key, ["value", "count"], denominator=total)


def deals_by_segment(
    deals: Sequence[QuarterDeal], filters: Optional[SalesFilters] = None, metric: str = "acv"
) -> pd.DataFrame:
    return deals_by(deals, "segment", filters, metric)


def deals_by_owner(
    deals: Sequence[QuarterDeal], filters: Optional[SalesFilters] = None, metric: str = "acv"
) -> pd.DataFrame:
    return deals_by(deals, "deal_owner", filters, metric)


# ---------------- Page payload ----------------
def compute_sales_overview(filters: SalesFilters, data: SalesData) -> Dict[str, Any]:
    line = forecast_line(data, filters.selected_segments)
    distribution = deal_distribution(data, filters.selected_segments)
    stages = pipeline_stages(data)
    arr = forecast_arr(data)
    acv_months = acv_by_month(data)
    wins = client_wins(data)

    charts: Dict[str, Any] = {}
    if line:
        long_df = pd.DataFrame(line).melt(id_vars="month", value_vars=["forecast", "target"], var_name="series", value_name="value")
        hover = alt.selection_point(fields=["series"], on="mouseover", empty="all")
        chart = (
            alt.Chart(long_df)
            .mark_line(point={"filled": True, "size": 60})
            .encode(
                x=alt.X("month:O", title="Month", sort=None, axis=alt.Axis(grid=False, labelAngle=0)),
                y=alt.Y("value:Q", title="ARR", axis=alt.Axis(format="$~s", gridDash=[4, 4], domain=False, ticks=False)),
                color=alt.Color("series:N", title=None),
                opacity=alt.condition(hover, alt.value(1), alt.value(0.2)),
                tooltip=["month", "series", alt.Tooltip("value:Q", format="$,.0f")],
            )
            .add_params(hover)
            .properties(height=260)
        )
        charts["forecast_line"] = to_vega_spec(chart)

    if distribution:
        donut = (
            alt.Chart(pd.DataFrame(distribution))
            .mark_arc(innerRadius=60)
            .encode(
                theta=alt.Theta("value:Q"),
                color=alt.Color("name:N", title="Segment"),
                tooltip=[alt.Tooltip("name:N", title="Segment"), alt.Tooltip("value:Q", title="Share %")],
            )
            .properties(height=260)
        )
        charts["deal_distribution"] = to_vega_spec(donut)

    if stages:
        funnel = (
            alt.Chart(pd.DataFrame(stages))
            .mark_bar()
            .encode(
                x=alt.X("value:Q", title="Value", axis=alt.Axis(format="$~s")),
                y=alt.Y("name:N", title=None, sort=None),
                tooltip=["name", alt.Tooltip("value:Q", format="$,.0f"), "count"],
            )
            .properties(height=220)
        )
        charts["pipeline_stages"] = to_vega_spec(funnel)

    if arr["chart_data"]:
        arr_long = pd.DataFrame(arr["chart_data"]).melt(
            id_vars="month", value_vars=["license", "minimum", "volume_driven"], var_name="kind", value_name="value"
        )
        stacked = (
            alt.Chart(arr_long)
            .mark_bar()
            .encode(
                x=alt.X("month:O", title="Month", sort=None, axis=alt.Axis(labelAngle=0)),
                y=alt.Y("value:Q", title="ARR", stack="zero", axis=alt.Axis(format="$~s")),
                color=alt.Color("kind:N", title="Type"),
                tooltip=["month", "kind", alt.Tooltip("value:Q", format="$,.0f")],
            )
            .properties(height=260)
        )
        charts["arr_by_month"] = to_vega_spec(stacked)

    if acv_months:
        acv_bar = (
            alt.Chart(pd.DataFrame(acv_months))
            .mark_bar(cornerRadiusTopLeft=3, cornerRadiusTopRight=3)
            .encode(
                x=alt.X("month:O", title="Month", sort=None, axis=alt.Axis(labelAngle=0)),
                y=alt.Y("total_acv:Q", title="ACV", axis=alt.Axis(format="$~s")),
                tooltip=["month", alt.Tooltip("total_acv:Q", title="ACV", format="$,.0f")],
            )
            .properties(height=220)
        )
        charts["acv_by_month"] = to_vega_spec(acv_bar)

    if wins:
        wins_line = (
            alt.Chart(pd.DataFrame(wins))
            .mark_line(point=True)
            .encode(
                x=alt.X("period:O", title="Period", sort=None),
                y=alt.Y("wins:Q", title="Client wins"),
                tooltip=["period", "wins"],
            )
            .properties(height=220)
        )
        charts["client_wins"] = to_vega_spec(wins_line)

    return {
        "filters": asdict(filters),
        "source": data.source,
        "kpis": kpi_cards(data),
        "annual_targets": annual_targets(data),
        "forecast_line": line,
        "deal_distribution": distribution,
        "pipeline_stages": stages,
        "forecast_arr": arr,
        "pipeline_deals": pipeline_deals(data),
        "acv_by_month": acv_months,
        "deals_by_month": deals_by_month(data.pipeline_deal),
        "client_wins": wins,
        "client_deals": client_deals(data, filters),
        "deals_by_segment": deals_by_segment(data.quarter_deal, filters).to_dict(orient="records"),
        "deals_by_owner": deals_by_owner(data.quarter_deal, filters).to_dict(orient="records"),
        "charts": charts,
    }
