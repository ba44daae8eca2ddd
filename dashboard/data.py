from __future__ import annotations

import json
import logging
import re
import time
from datetime import date, datetime
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from contextlib import nullcontext
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pandas as pd
import requests

from dashboard.config import OPTIONAL_SHEETS, REQUIRED_SHEETS, DashboardSettings, get_settings
from dashboard.errors import DataSourceNotConfiguredError, SheetLoadError
from dashboard.fields import cell, to_bool, to_confidence, to_number, to_text
from dashboard.models import (
    MONTHS_PER_YEAR,
    ACVByMonth,
    ARRByMonthPoint,
    ARRLineItem,
    ARRMonthDetail,
    ClientDeal,
    ClientWinsPoint,
    CumulativeSeries,
    DealSegment,
    ForecastPoint,
    ForecastPointBySegment,
    NestedTargets,
    PipelineDeal,
    PipelineStage,
    QuarterDeal,
    QuarterMetricInput,
    QuarterTarget,
    SalesData,
    SalesKPIs,
    VolumeRow,
)
from dashboard.parsing import Record, RawTable, parse_table
from dashboard.periods import MONTH_LABELS, MONTH_NAMES, QUARTER_ID

logger = logging.getLogger(__name__)

EXPORT_URL = "https://docs.google.com/spreadsheets/d/{spreadsheet_id}/export?format=csv&gid={gid}"
NO_CACHE_HEADERS = {"Cache-Control": "no-cache", "Pragma": "no-cache"}

CUMULATIVE_METRICS = {
    "acv": "acv",
    "inyearrev": "inYearRevenue",
    "inyearrevenue": "inYearRevenue",
    "arr": "arrTarget",
    "arrtarget": "arrTarget",
    "clientwins": "clientWins",
}
QUARTER_METRICS = {
    "clientwins": "clientWins",
    "acv": "acv",
    "acvsigned": "acv",
    "inyearrevenue": "inYearRevenue",
}
SERIES_TYPES = ("actual", "forecast", "target")

_ALNUM_ONLY = re.compile(r"[^a-z0-9]")


def build_export_url(spreadsheet_id: str, gid: str) -> str:
    return EXPORT_URL.format(spreadsheet_id=spreadsheet_id, gid=gid)


def cache_bust_token() -> str:
    return str(int(time.time() * 1000))


# ---------------- Fetching ----------------
def fetch_sheet(name: str, *, settings: DashboardSettings, session: requests.Session) -> RawTable:
    gid = settings.sheets.gid(name)
    if not gid or not settings.sheets.spreadsheet_id:
        raise SheetLoadError(name, "No sheet GID configured.")
    url = build_export_url(settings.sheets.spreadsheet_id, gid)
    try:
        response = session.get(
            url,
            params={"t": cache_bust_token()},
            headers=NO_CACHE_HEADERS,
            timeout=settings.http_timeout_seconds,
        )
    except requests.RequestException as exc:
        raise SheetLoadError(name, f"Request failed: {exc}.") from exc
    if not 200 <= response.status_code < 300:
        raise SheetLoadError(name, f"Failed to fetch {name}: {response.status_code}.")
    return parse_table(response.content.decode("utf-8", errors="replace"))


def http_session(session: Optional[requests.Session] = None):
    """The injected session as-is, or a fresh one that is closed when the block exits."""
    if session is not None:
        return nullcontext(session)
    return requests.Session()


def fetch_tables(settings: DashboardSettings, session: Optional[requests.Session] = None) -> Dict[str, RawTable]:
    """
    Fetch every required sheet plus each configured optional sheet concurrently.

    Returns only after all fetches have settled. A failed required sheet raises
    SheetLoadError; a failed optional sheet is logged and comes back empty.
    """

    sheets = settings.sheets
    if not sheets.spreadsheet_id:
        raise DataSourceNotConfiguredError("Google Sheets spreadsheet id not configured.")
    for name in REQUIRED_SHEETS:
        if not sheets.gid(name):
            raise SheetLoadError(name, "No sheet GID configured.")

    names = list(REQUIRED_SHEETS) + [n for n in OPTIONAL_SHEETS if sheets.gid(n)]
    with http_session(session) as http:
        with ThreadPoolExecutor(max_workers=max(1, min(settings.max_workers, len(names)))) as executor:
            futures = {name: executor.submit(fetch_sheet, name, settings=settings, session=http) for name in names}

    tables: Dict[str, RawTable] = {name: RawTable() for name in OPTIONAL_SHEETS}
    first_error: Optional[BaseException] = None
    for name, future in futures.items():
        exc = future.exception()
        if exc is None:
            tables[name] = future.result()
        elif name in OPTIONAL_SHEETS:
            logger.warning("Optional sheet skipped sheet=%s error=%s", name, exc)
        else:
            logger.error("Failed to load sheet sheet=%s error=%s", name, exc)
            if first_error is None:
                first_error = exc

    if first_error is not None:
        if isinstance(first_error, SheetLoadError):
            raise first_error
        raise SheetLoadError("unknown", str(first_error)) from first_error
    return tables


# ---------------- Entity builders ----------------
def _optional_number(row: Record, name: str) -> Optional[float]:
    raw = cell(row, name)
    return to_number(raw) if raw else None


def _positive_or_none(value: float) -> Optional[float]:
    return value if value > 0 else None


def build_sales_kpis(rows: List[Record]) -> Optional[SalesKPIs]:
    if not rows:
        return None
    r = rows[0]
    return SalesKPIs(
        forecast_arr=to_number(cell(r, "forecastARR")),
        pipeline_value=to_number(cell(r, "pipelineValue")),
        closed_won=to_number(cell(r, "closedWon")),
        win_rate=to_number(cell(r, "winRate")),
        forecast_arr_delta=_optional_number(r, "forecastARRDelta"),
        pipeline_value_delta=_optional_number(r, "pipelineValueDelta"),
        closed_won_delta=_optional_number(r, "closedWonDelta"),
        win_rate_delta=_optional_number(r, "winRateDelta"),
        annual_arr_target=_positive_or_none(to_number(cell(r, "annualARRTarget"))),
        annual_acv_target=_positive_or_none(to_number(cell(r, "annualACVTarget"))),
        annual_in_year_revenue_target=_positive_or_none(to_number(cell(r, "annualInYearRevenueTarget"))),
        annual_client_wins_target=_positive_or_none(to_number(cell(r, "annualClientWinsTarget"))),
    )


def _arr_line_item(r: Record) -> ARRLineItem:
    return ARRLineItem(
        client_name=cell(r, "clientName"),
        amount=to_number(cell(r, "amount")),
        segment=cell(r, "segment"),
        transactions=to_number(cell(r, "transactions")),
        price_point=to_number(cell(r, "pricePoint")),
    )


def build_details_by_month(
    license_rows: List[Record],
    minimum_rows: List[Record],
    volume_rows: List[Record],
) -> Dict[str, ARRMonthDetail]:
    grouped: Dict[str, Dict[str, List[ARRLineItem]]] = {}
    for kind, rows in (("license", license_rows), ("minimum", minimum_rows), ("volume_driven", volume_rows)):
        for r in rows:
            month = cell(r, "month")
            if not month:
                continue
            bucket = grouped.setdefault(month, {"license": [], "minimum": [], "volume_driven": []})
            bucket[kind].append(_arr_line_item(r))
    return {
        month: ARRMonthDetail(
            license=tuple(items["license"]),
            minimum=tuple(items["minimum"]),
            volume_driven=tuple(items["volume_driven"]),
        )
        for month, items in grouped.items()
    }


def build_quarter_deal(r: Record) -> QuarterDeal:
    return QuarterDeal(
        id=cell(r, "id"),
        client_name=cell(r, "clientName"),
        deal_name=cell(r, "dealName"),
        close_date=cell(r, "closeDate"),
        segment=cell(r, "segment"),
        acv=to_number(cell(r, "acv")),
        arr_forecast=to_number(cell(r, "arrForecast")),
        annualized_transaction_forecast=to_number(cell(r, "annualizedTransactionForecast")),
        deal_owner=cell(r, "dealOwner"),
        target_account=to_bool(cell(r, "targetAccount")),
        latest_next_steps=cell(r, "latestNextSteps"),
        confidence_quarter_close=to_confidence(cell(r, "confidenceQuarterClose")),
    )


def build_quarter_targets(rows: List[Record]) -> Dict[str, QuarterTarget]:
    out: Dict[str, QuarterTarget] = {}
    for r in rows:
        quarter = cell(r, "quarter").upper()
        if not quarter:
            continue
        out[quarter] = QuarterTarget(
            client_wins=to_number(cell(r, "clientWins")),
            acv=to_number(cell(r, "acv")),
            in_year_revenue=to_number(cell(r, "inYearRevenue")),
        )
    return out


def _metric_key(raw: str, synonyms: Mapping[str, str]) -> Optional[str]:
    return synonyms.get(_ALNUM_ONLY.sub("", raw.lower()))


def _month_value(r: Record, month: int) -> float:
    raw = cell(r, MONTH_LABELS[month]) or cell(r, MONTH_NAMES[month])
    return to_number(raw)


def build_cumulative_chart_data(rows: List[Record]) -> Dict[str, CumulativeSeries]:
    """Wide layout: one row per (metric, type) with Jan..Dec columns."""
    series: Dict[str, Dict[str, Tuple[float, ...]]] = {}
    for r in rows:
        metric = _metric_key(cell(r, "metric"), CUMULATIVE_METRICS)
        series_type = cell(r, "type").lower()
        if metric is None or series_type not in SERIES_TYPES:
            continue
        values = tuple(_month_value(r, m) for m in range(MONTHS_PER_YEAR))
        series.setdefault(metric, {})[series_type] = values
    return {metric: CumulativeSeries(**by_type) for metric, by_type in series.items()}


def _quarter_id(r: Record) -> Optional[str]:
    quarter = cell(r, "quarter").upper()
    return quarter if QUARTER_ID.match(quarter) else None


def build_quarter_metric_input(rows: List[Record]) -> Dict[str, Dict[str, QuarterMetricInput]]:
    """
    Long layout: one row per (quarter, metric, status[, segment, deal owner]).

    Signed / forecasted rows add into month1-3, target rows add into the quarter
    target, and a positive carry_over replaces the stored carry-over.
    """

    acc: Dict[str, Dict[str, Dict[str, Any]]] = {}
    for r in rows:
        quarter = _quarter_id(r)
        metric = _metric_key(cell(r, "metric"), QUARTER_METRICS)
        if quarter is None or metric is None:
            continue
        entry = acc.setdefault(quarter, {}).setdefault(
            metric, {"signed": [0.0, 0.0, 0.0], "forecasted": [0.0, 0.0, 0.0], "target": 0.0, "carry_over": 0.0}
        )
        status = cell(r, "status").lower()
        months = [to_number(cell(r, f"month{i}")) for i in (1, 2, 3)]
        quarter_target = to_number(cell(r, "quarter_target"))
        if status in ("signed", "forecasted"):
            for i, value in enumerate(months):
                entry[status][i] += value
        elif status == "target" and quarter_target > 0:
            entry["target"] += quarter_target
        carry_over = to_number(cell(r, "carry_over"))
        if carry_over > 0:
            entry["carry_over"] = carry_over

    return {
        quarter: {
            metric: QuarterMetricInput(
                month_signed=tuple(e["signed"]),
                month_forecasted=tuple(e["forecasted"]),
                quarter_target=e["target"],
                carry_over=e["carry_over"],
            )
            for metric, e in by_metric.items()
        }
        for quarter, by_metric in acc.items()
    }


def build_quarter_targets_by(rows: List[Record], dimension: str) -> NestedTargets:
    """Target rows of QuarterMetricInput summed per quarter -> metric -> segment / deal owner."""
    out: Dict[str, Dict[str, Dict[str, float]]] = {}
    for r in rows:
        if cell(r, "status").lower() != "target":
            continue
        quarter = _quarter_id(r)
        metric = _metric_key(cell(r, "metric"), QUARTER_METRICS)
        name = cell(r, dimension)
        target = to_number(cell(r, "quarter_target"))
        if quarter is None or metric is None or not name or target <= 0:
            continue
        by_name = out.setdefault(quarter, {}).setdefault(metric, {})
        by_name[name] = by_name.get(name, 0.0) + target
    return out


def build_quarter_deal_owners(rows: List[Record]) -> Dict[str, Tuple[str, ...]]:
    owners: Dict[str, set] = defaultdict(set)
    for r in rows:
        quarter = _quarter_id(r)
        owner = cell(r, "deal_owner")
        if quarter is None or not owner:
            continue
        owners[quarter].add(owner)
    return {quarter: tuple(sorted(names)) for quarter, names in owners.items()}


def build_sales_data(tables: Mapping[str, RawTable], *, source: str = "google_sheets") -> SalesData:
    def rows(name: str) -> List[Record]:
        table = tables.get(name)
        return table.rows if table is not None else []

    metric_input_rows = rows("QuarterMetricInput")
    return SalesData(
        source=source,
        sales_kpis=build_sales_kpis(rows("SalesKPIs")),
        forecast_point=tuple(
            ForecastPoint(
                month=cell(r, "month"),
                forecast=to_number(cell(r, "forecast")),
                target=to_number(cell(r, "target")),
            )
            for r in rows("ForecastPoint")
        ),
        forecast_point_by_segment=tuple(
            ForecastPointBySegment(
                month=cell(r, "month"),
                segment=cell(r, "segment"),
                forecast=to_number(cell(r, "forecast")),
                target=to_number(cell(r, "target")),
            )
            for r in rows("ForecastPointBySegment")
        ),
        pipeline_stage=tuple(
            PipelineStage(name=cell(r, "name"), value=to_number(cell(r, "value")), count=to_number(cell(r, "count")))
            for r in rows("PipelineStage")
        ),
        deal_segment=tuple(
            DealSegment(name=cell(r, "name"), value=to_number(cell(r, "value")), fill=cell(r, "fill") or "#1e1b4b")
            for r in rows("DealSegment")
        ),
        arr_by_month_point=tuple(
            ARRByMonthPoint(
                month=cell(r, "month"),
                license=to_number(cell(r, "license")),
                minimum=to_number(cell(r, "minimum")),
                volume_driven=to_number(cell(r, "volumeDriven")),
            )
            for r in rows("ARRByMonthPoint")
        ),
        details_by_month=build_details_by_month(
            rows("ARR_LicenseDetail"), rows("ARR_MinimumDetail"), rows("ARR_VolumeDetail")
        ),
        pipeline_deal=tuple(
            PipelineDeal(
                id=cell(r, "id"),
                name=cell(r, "name"),
                acv=to_number(cell(r, "acv")),
                close_date=cell(r, "closeDate"),
                stage=cell(r, "stage"),
                segment=cell(r, "segment"),
            )
            for r in rows("PipelineDeal")
        ),
        acv_by_month=tuple(
            ACVByMonth(month=cell(r, "month"), month_key=cell(r, "monthKey"), total_acv=to_number(cell(r, "totalACV")))
            for r in rows("ACVByMonth")
        ),
        client_wins_point=tuple(
            ClientWinsPoint(period=cell(r, "period"), wins=to_number(cell(r, "wins"))) for r in rows("ClientWinsPoint")
        ),
        client_deal=tuple(
            ClientDeal(
                id=cell(r, "id"),
                deal_name=cell(r, "dealName"),
                close_date=cell(r, "closeDate"),
                segment=cell(r, "segment"),
                acv=to_number(cell(r, "acv")),
                estimated_transactions_per_month=to_number(cell(r, "estimatedTransactionsPerMonth")),
                deal_owner=cell(r, "dealOwner"),
            )
            for r in rows("ClientDeal")
        ),
        quarter_deal=tuple(build_quarter_deal(r) for r in rows("QuarterDeal")),
        quarter_targets=build_quarter_targets(rows("QuarterTargets")),
        cumulative_chart_data=build_cumulative_chart_data(rows("CumulativeChartData")),
        quarter_metric_input=build_quarter_metric_input(metric_input_rows),
        quarter_target_by_segment=build_quarter_targets_by(metric_input_rows, "segment"),
        quarter_target_by_deal_owner=build_quarter_targets_by(metric_input_rows, "deal_owner"),
        quarter_deal_owners=build_quarter_deal_owners(metric_input_rows),
        quarter_details={
            f"Q{n}": tables[f"Q{n}Details"]
            for n in (1, 2, 3, 4)
            if f"Q{n}Details" in tables and not tables[f"Q{n}Details"].empty
        },
    )


# ---------------- Public API ----------------
def load_sheets_data(settings: DashboardSettings, session: Optional[requests.Session] = None) -> SalesData:
    tables = fetch_tables(settings, session=session)
    data = build_sales_data(tables, source="google_sheets")
    logger.info("Loaded sales data source=%s tables=%s", data.source, data.table_counts())
    return data


def load_sales_data(
    settings: Optional[DashboardSettings] = None,
    session: Optional[requests.Session] = None,
) -> SalesData:
    """
    Load the sales table set: Google Sheets when configured, else the sales API.
    """

    from dashboard.api_source import load_api_data

    settings = settings or get_settings()
    if settings.sheets.is_configured:
        return load_sheets_data(settings, session=session)
    if settings.api_configured:
        return load_api_data(settings, session=session)
    raise DataSourceNotConfiguredError("No data source configured: set DASHBOARD_SHEETS_ID or DASHBOARD_API_BASE_URL.")


# ---------------- Volume export (static JSON) ----------------
VOLUME_FIELDS: Tuple[str, ...] = (
    "regulatory_type",
    "transaction_type",
    "merchant",
    "merchant_jurisdiction",
    "merchant_industry",
    "use_case",
    "tpp",
    "currency",
    "source_bank_jurisdiction",
    "transaction_category",
    "transaction_sub_type",
    "total_volume",
    "transaction_date",
)

_EMPTY_KEY = re.compile(r"^__EMPTY(?:_(\d+))?$")


def _volume_position(key: str) -> Optional[int]:
    match = _EMPTY_KEY.match(key)
    if not match:
        return None
    return int(match.group(1)) if match.group(1) else 0


def volume_row_from_export(row: Mapping[str, object]) -> VolumeRow:
    """
    The export's only named column is the client (under the long "Applied
    filters" heading); every other value sits under __EMPTY, __EMPTY_1, ...
    in fixed positional order.
    """

    client = ""
    values: Dict[str, object] = {}
    for key, value in row.items():
        position = _volume_position(str(key))
        if position is None:
            client = client or to_text(value)
        elif position < len(VOLUME_FIELDS):
            values[VOLUME_FIELDS[position]] = value
    text_fields = {name: to_text(values.get(name)) for name in VOLUME_FIELDS[:-2]}
    return VolumeRow(
        client=client,
        total_volume=to_number(values.get("total_volume")),
        transaction_date=to_text(values.get("transaction_date"))[:10],
        **text_fields,
    )


def load_volume_rows(path: Optional[Path] = None) -> List[VolumeRow]:
    path = Path(path) if path is not None else get_settings().volume_json_path
    with path.open(encoding="utf-8") as fh:
        raw = json.load(fh)
    if not isinstance(raw, list):
        logger.error("Unexpected volume export shape path=%s type=%s", path, type(raw).__name__)
        return []
    # Row 0 repeats the column labels.
    return [volume_row_from_export(r) for r in raw[1:] if isinstance(r, dict)]


def export_volume_workbook(xlsx_path: Path, json_path: Path) -> int:
    """Convert the first worksheet of the Total Volume workbook into the JSON export shape."""
    df = pd.read_excel(xlsx_path, sheet_name=0)
    renamed = [str(df.columns[0])] + ["__EMPTY" if i == 0 else f"__EMPTY_{i}" for i in range(len(df.columns) - 1)]
    df.columns = renamed
    records: List[Dict[str, object]] = []
    for row in df.to_dict(orient="records"):
        record: Dict[str, object] = {}
        for key, value in row.items():
            if value is None or (not isinstance(value, str) and pd.isna(value)):
                continue
            if isinstance(value, datetime):
                value = value.date().isoformat()
            elif isinstance(value, date):
                value = value.isoformat()
            record[key] = value
        records.append(record)
    Path(json_path).write_text(json.dumps(records, indent=2, default=str), encoding="utf-8")
    logger.info("Exported volume workbook rows=%s path=%s", len(records), json_path)
    return len(records)
