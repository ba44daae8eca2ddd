from __future__ import annotations

from dataclasses import asdict, fields
from typing import Any, Dict, List, Optional, Sequence

import altair as alt
import pandas as pd

from dashboard.charts import to_vega_spec
from dashboard.filters import VOLUME_DIMENSIONS, VolumeFilters
from dashboard.models import VolumeRow

UNKNOWN_CLIENT = "(Unknown)"
NO_DATE = "(No date)"
VOLUME_COLUMNS = [f.name for f in fields(VolumeRow)]


def volume_frame(rows: Sequence[VolumeRow]) -> pd.DataFrame:
    if not rows:
        return pd.DataFrame(columns=VOLUME_COLUMNS)
    df = pd.DataFrame([asdict(r) for r in rows], columns=VOLUME_COLUMNS)
    df["total_volume"] = pd.to_numeric(df["total_volume"], errors="coerce").fillna(0.0)
    return df


def group_sum(
    frame: pd.DataFrame,
    key: str,
    value_cols: Sequence[str],
    denominator: Optional[float] = None,
) -> pd.DataFrame:
    """
    Sum value_cols per distinct key in one grouping pass.

    Groups come back in first-seen order. With a denominator, a 'share' column
    holds the first value column as a fraction of it (0 when the denominator is 0).
    """

    cols = list(value_cols)
    if frame.empty:
        out = pd.DataFrame(columns=[key] + cols + (["share"] if denominator is not None else []))
        return out
    out = frame.groupby(key, sort=False, dropna=False)[cols].sum().reset_index()
    if denominator is not None:
        out["share"] = out[cols[0]] / denominator if denominator else 0.0
    return out


def top_n(buckets: pd.DataFrame, value_col: str, n: int) -> pd.DataFrame:
    """Largest n buckets by value_col; ties keep their input order."""
    if buckets.empty:
        return buckets
    ranked = buckets.sort_values(value_col, ascending=False, kind="mergesort")
    return ranked.head(max(0, int(n))).reset_index(drop=True)


def unique_values(frame: pd.DataFrame, column: str) -> List[str]:
    if frame.empty or column not in frame.columns:
        return []
    values = frame[column].astype(str).str.strip()
    return sorted(v for v in values.unique().tolist() if v)


def filter_options(frame: pd.DataFrame) -> Dict[str, List[str]]:
    return {name: unique_values(frame, column) for name, column in VOLUME_DIMENSIONS.items()}


def apply_volume_filters(frame: pd.DataFrame, filters: VolumeFilters) -> pd.DataFrame:
    out = frame
    for column, selected in filters.selections().items():
        out = out[out[column].isin(selected)]
    return out


def _with_month(frame: pd.DataFrame) -> pd.DataFrame:
    out = frame.copy()
    month = out["transaction_date"].astype(str).str.strip().str.slice(0, 7)
    out["month"] = month.where(month != "", NO_DATE)
    return out


def _with_client_label(frame: pd.DataFrame) -> pd.DataFrame:
    out = frame.copy()
    client = out["client"].astype(str).str.strip()
    out["client"] = client.where(client != "", UNKNOWN_CLIENT)
    return out


def volume_by_date(frame: pd.DataFrame) -> pd.DataFrame:
    """Daily totals, ascending by date; rows without a date or with zero volume are skipped."""
    if frame.empty:
        return pd.DataFrame(columns=["date", "volume"])
    dated = frame[(frame["transaction_date"].astype(str) != "") & (frame["total_volume"] != 0)]
    out = group_sum(dated.rename(columns={"transaction_date": "date"}), "date", ["total_volume"])
    return out.rename(columns={"total_volume": "volume"}).sort_values("date", kind="mergesort").reset_index(drop=True)


def volume_by_month(frame: pd.DataFrame) -> pd.DataFrame:
    """Monthly totals, ascending; undated rows land in a trailing NO_DATE bucket."""
    if frame.empty:
        return pd.DataFrame(columns=["month", "volume", "share"])
    total = float(frame["total_volume"].sum())
    out = group_sum(_with_month(frame), "month", ["total_volume"], denominator=total)
    out = out.rename(columns={"total_volume": "volume"})
    undated = out["month"] == NO_DATE
    dated = out[~undated].sort_values("month", kind="mergesort")
    return pd.concat([dated, out[undated]]).reset_index(drop=True)


def volume_by_client(frame: pd.DataFrame) -> pd.DataFrame:
    if frame.empty:
        return pd.DataFrame(columns=["client", "volume", "share"])
    total = float(frame["total_volume"].sum())
    out = group_sum(_with_client_label(frame), "client", ["total_volume"], denominator=total)
    return out.rename(columns={"total_volume": "volume"})


def top_clients(frame: pd.DataFrame, n: int = 10) -> pd.DataFrame:
    return top_n(volume_by_client(frame), "volume", n)


def month_top_clients(frame: pd.DataFrame, month: str, n: int = 10) -> Dict[str, Any]:
    """
    Drill-down for one YYYY-MM month: the month's top clients with their
    month volume/share next to their volume/share over the whole selection.
    """

    overall_total = float(frame["total_volume"].sum()) if not frame.empty else 0.0
    if frame.empty:
        month_rows = frame
    else:
        month_rows = _with_month(frame)
        month_rows = month_rows[month_rows["month"] == month]
    month_total = float(month_rows["total_volume"].sum()) if not month_rows.empty else 0.0

    month_buckets = top_n(volume_by_client(month_rows), "volume", n)
    overall = volume_by_client(frame)
    overall_by_client = dict(zip(overall["client"], overall["volume"])) if not overall.empty else {}

    rows: List[Dict[str, Any]] = []
    for r in month_buckets.to_dict(orient="records"):
        overall_volume = float(overall_by_client.get(r["client"], 0.0))
        rows.append(
            {
                "client": r["client"],
                "month_volume": float(r["volume"]),
                "month_pct": float(r["volume"]) / month_total if month_total else 0.0,
                "overall_volume": overall_volume,
                "overall_pct": overall_volume / overall_total if overall_total else 0.0,
            }
        )
    overall_top = top_n(overall, "volume", n)
    return {
        "month": month,
        "month_total_volume": month_total,
        "overall_total_volume": overall_total,
        "month_top_clients": rows,
        "overall_top_clients": [
            {"client": r["client"], "volume": float(r["volume"]), "pct": float(r["share"])}
            for r in overall_top.to_dict(orient="records")
        ],
    }


def volume_summary(frame: pd.DataFrame) -> Dict[str, Any]:
    total = float(frame["total_volume"].sum()) if not frame.empty else 0.0
    count = int(len(frame))
    dates = sorted(d for d in frame["transaction_date"].astype(str).tolist() if d) if not frame.empty else []
    return {
        "total_volume": total,
        "transactions": count,
        "average_volume": total / count if count else 0.0,
        "date_range": f"{dates[0]} - {dates[-1]}" if dates else "N/A",
    }


def compute_volume_overview(filters: VolumeFilters, rows: Sequence[VolumeRow]) -> Dict[str, Any]:
    all_rows = volume_frame(rows)
    df = apply_volume_filters(all_rows, filters)
    if df.empty:
        return {
            "filters": asdict(filters),
            "options": filter_options(all_rows),
            "kpis": volume_summary(df),
            "by_month": [],
            "top_clients": [],
            "charts": {},
        }

    by_date = volume_by_date(df)
    by_month = volume_by_month(df)
    top = top_clients(df, filters.top_n)

    charts: Dict[str, Any] = {}
    if not by_date.empty:
        hover = alt.selection_point(fields=["date"], on="mouseover", nearest=True, empty="all")
        line = (
            alt.Chart(by_date)
            .mark_line(point={"filled": True, "size": 40})
            .encode(
                x=alt.X("date:T", title="Date", axis=alt.Axis(format="%b %d", grid=False)),
                y=alt.Y("volume:Q", title="Volume", axis=alt.Axis(format="~s", gridDash=[4, 4], domain=False, ticks=False)),
                opacity=alt.condition(hover, alt.value(1), alt.value(0.6)),
                tooltip=[alt.Tooltip("date:T", title="Date"), alt.Tooltip("volume:Q", title="Volume", format=",.0f")],
            )
            .add_params(hover)
            .properties(height=280)
        )
        charts["volume_by_date"] = to_vega_spec(line)

    if not by_month.empty:
        bars = (
            alt.Chart(by_month)
            .mark_bar(cornerRadiusTopLeft=3, cornerRadiusTopRight=3)
            .encode(
                x=alt.X("month:O", title="Month", axis=alt.Axis(labelAngle=0)),
                y=alt.Y("volume:Q", title="Volume", axis=alt.Axis(format="~s", gridDash=[4, 4], domain=False, ticks=False)),
                tooltip=[
                    alt.Tooltip("month:O", title="Month"),
                    alt.Tooltip("volume:Q", title="Volume", format=",.0f"),
                    alt.Tooltip("share:Q", title="Share", format=".1%"),
                ],
            )
            .properties(height=260)
        )
        charts["volume_by_month"] = to_vega_spec(bars)

    if not top.empty:
        top_bar = (
            alt.Chart(top)
            .mark_bar()
            .encode(
                x=alt.X("volume:Q", title="Volume", axis=alt.Axis(format="~s")),
                y=alt.Y("client:N", sort="-x", title=None),
                tooltip=[
                    alt.Tooltip("client:N", title="Client"),
                    alt.Tooltip("volume:Q", title="Volume", format=",.0f"),
                    alt.Tooltip("share:Q", title="Share", format=".1%"),
                ],
            )
            .properties(height=max(160, 24 * len(top)))
        )
        charts["top_clients"] = to_vega_spec(top_bar)

    return {
        "filters": asdict(filters),
        "options": filter_options(all_rows),
        "kpis": volume_summary(df),
        "by_month": by_month.to_dict(orient="records"),
        "top_clients": top.to_dict(orient="records"),
        "charts": charts,
    }


def compute_month_top_clients(filters: VolumeFilters, rows: Sequence[VolumeRow], month: str) -> Dict[str, Any]:
    df = apply_volume_filters(volume_frame(rows), filters)
    return {"filters": asdict(filters), **month_top_clients(df, month, filters.top_n)}
