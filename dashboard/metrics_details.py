"""
dashboard/metrics_details.py

Free-form quarter detail sheets (Q1Details ... Q4Details): the pipeline table
with its next-steps text and the lost-deals list.

These sheets are edited by hand and sometimes carry a repeated header or a
sub-header row ("Y/N", "Latest / Next Steps") inside the data. Such rows are
dropped by `is_stray_header_row` before anything else looks at them.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pandas as pd

from dashboard.fields import find_column, to_confidence
from dashboard.models import SalesData
from dashboard.parsing import RawTable, normalize_header

SUB_HEADER_TOKENS = ("y/n", "yes/no", "latest", "next steps", "steps", "header", "sub-header", "subheader")
HEADER_MATCH_RATIO = 0.5
NUMERIC_RATIO = 0.2

_NUMERIC_NOISE = re.compile(r"[,$%]")
_ALNUM_ONLY = re.compile(r"[^a-z0-9]")
_CAMEL = re.compile(r"([a-z])([A-Z])")


def is_numeric_text(value: str) -> bool:
    cleaned = _NUMERIC_NOISE.sub("", str(value or "")).strip()
    if not cleaned:
        return False
    try:
        float(cleaned)
    except ValueError:
        return False
    return True


def format_header_name(label: str) -> str:
    """'deal_owner' -> 'Deal Owner', 'Latest/Next steps' -> 'Latest / Next Steps'."""
    text = _CAMEL.sub(r"\1 \2", str(label).replace("_", " ").replace("/", " / "))
    return " ".join(word.capitalize() for word in text.split())


def is_stray_header_row(row: Mapping[str, str], columns: Sequence[str], labels: Optional[Mapping[str, str]] = None) -> bool:
    """
    True for a repeated header or a sub-header row.

    Header: more than half of the columns hold their own column name.
    Sub-header: a placeholder token appears anywhere in the row while fewer
    than 20% of the columns are numeric.
    """

    if not columns:
        return False
    labels = labels or {}
    matches = 0
    for col in columns:
        value = str(row.get(col, "") or "").strip()
        if not value:
            continue
        label = str(labels.get(col, col)).strip().lower()
        if normalize_header(value) == col or value.lower() in (label, format_header_name(label).lower()):
            matches += 1
    if matches > len(columns) * HEADER_MATCH_RATIO:
        return True

    joined = " ".join(str(row.get(col, "") or "").strip().lower() for col in columns)
    if any(token in joined for token in SUB_HEADER_TOKENS):
        numeric = sum(1 for col in columns if is_numeric_text(str(row.get(col, "") or "")))
        if numeric < len(columns) * NUMERIC_RATIO:
            return True
    return False


def data_rows(table: RawTable) -> List[Dict[str, str]]:
    return [row for row in table.rows if not is_stray_header_row(row, table.columns, table.labels)]


def _arr_forecast_column(columns: Sequence[str]) -> Optional[str]:
    for col in columns:
        if "arrforecast" in col or "fy26arr" in col:
            return col
    return None


def details_table(table: RawTable) -> Dict[str, Any]:
    """
    Display payload for one quarter detail sheet: the next-steps column is
    split out per row, numeric columns get a total, and a non-numeric value
    in the ARR forecast column is flagged as possibly misaligned.
    """

    if table.empty:
        return {"columns": [], "headers": {}, "rows": [], "totals": {}}
    next_steps_col = find_column(table.columns, "latestNextSteps")
    display = [c for c in table.columns if c != next_steps_col]
    arr_col = _arr_forecast_column(display)
    rows = data_rows(table)

    out_rows: List[Dict[str, Any]] = []
    for row in rows:
        arr_value = row.get(arr_col, "") if arr_col else ""
        out_rows.append(
            {
                "values": {c: row.get(c, "") for c in display},
                "next_steps": row.get(next_steps_col, "") if next_steps_col else "",
                "misaligned": bool(arr_value) and not is_numeric_text(arr_value),
            }
        )

    totals: Dict[str, float] = {}
    if rows:
        frame = pd.DataFrame(rows, columns=display)
        for col in display:
            values = frame[col].astype(str)
            numeric = values[values.map(is_numeric_text) & ~values.str.contains("%", regex=False)]
            if not numeric.empty:
                totals[col] = float(pd.to_numeric(numeric.str.replace(r"[,$]", "", regex=True)).sum())

    return {
        "columns": display,
        "headers": {c: format_header_name(table.labels.get(c, c)) for c in display},
        "rows": out_rows,
        "totals": totals,
    }


def _find_by_key(columns: Sequence[str], *keys: str) -> Optional[str]:
    wanted = set(keys)
    for col in columns:
        if _ALNUM_ONLY.sub("", col.lower()) in wanted:
            return col
    return None


def lost_deals_for(quarter_key: str, table: RawTable) -> List[Dict[str, Any]]:
    """
    Rows of one detail sheet whose quarter-close confidence coerces to 0%.
    A blank confidence coerces to 0% and so counts as lost.
    """

    if table.empty:
        return []
    q = quarter_key.lower()
    confidence_col = _find_by_key(table.columns, f"confidence{q}close")
    if confidence_col is None:
        return []
    deal_col = _find_by_key(table.columns, f"{q}pipeline", "dealname") or next(
        (c for c in table.columns if "deal" in c and "name" in c), None
    )
    segment_col = _find_by_key(table.columns, "segment")
    owner_col = find_column(table.columns, "dealOwner")
    acv_col = _find_by_key(table.columns, "acv")
    steps_col = find_column(table.columns, "latestNextSteps")

    def value(row: Mapping[str, str], col: Optional[str]) -> str:
        return str(row.get(col, "") or "").strip() if col else ""

    out: List[Dict[str, Any]] = []
    for row in data_rows(table):
        raw = value(row, confidence_col)
        if to_confidence(raw) != 0:
            continue
        out.append(
            {
                "source": quarter_key,
                "deal_name": value(row, deal_col) or "-",
                "segment": value(row, segment_col),
                "deal_owner": value(row, owner_col),
                "acv": value(row, acv_col),
                "reason_for_lost": value(row, steps_col) or "-",
            }
        )
    return out


def lost_deals(data: SalesData) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for quarter_key in ("Q1", "Q2", "Q3", "Q4"):
        table = data.quarter_details.get(quarter_key)
        if table is not None:
            out.extend(lost_deals_for(quarter_key, table))
    return out


def compute_lost_deals(data: SalesData) -> Dict[str, Any]:
    rows = lost_deals(data)
    by_source: Dict[str, int] = {}
    for r in rows:
        by_source[r["source"]] = by_source.get(r["source"], 0) + 1
    return {"kpis": {"lost_deals": len(rows), "by_quarter": by_source}, "rows": rows}


def compute_details(data: SalesData, quarter_key: str) -> Dict[str, Any]:
    table = data.quarter_details.get(quarter_key.upper(), RawTable())
    return {"quarter": quarter_key.upper(), **details_table(table)}
