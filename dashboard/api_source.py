"""
dashboard/api_source.py

Alternate sales source: a small JSON API that already returns the table set
in entity shape (camelCase keys). Used only when Google Sheets is not
configured.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

import requests

from dashboard.config import DashboardSettings
from dashboard.data import NO_CACHE_HEADERS, cache_bust_token, http_session
from dashboard.errors import DataSourceError
from dashboard.fields import to_bool, to_confidence, to_number, to_text
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
)

logger = logging.getLogger(__name__)

SALES_DATA_PATH = "/sales-data"


def _list(payload: Mapping[str, Any], key: str) -> List[Mapping[str, Any]]:
    value = payload.get(key) or []
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, Mapping)]


def _dict(payload: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = payload.get(key) or {}
    return value if isinstance(value, Mapping) else {}


def _optional(item: Mapping[str, Any], key: str) -> Optional[float]:
    value = item.get(key)
    if value is None or value == "":
        return None
    return to_number(value)


def _positive(item: Mapping[str, Any], key: str) -> Optional[float]:
    value = _optional(item, key)
    return value if value is not None and value > 0 else None


def _series(values: Any, width: int) -> tuple:
    numbers = [to_number(v) for v in (values if isinstance(values, list) else [])][:width]
    return tuple(numbers + [0.0] * (width - len(numbers)))


def _line_items(items: Iterable[Mapping[str, Any]]) -> tuple:
    return tuple(
        ARRLineItem(
            client_name=to_text(i.get("clientName")),
            amount=to_number(i.get("amount")),
            segment=to_text(i.get("segment")),
            transactions=to_number(i.get("transactions")),
            price_point=to_number(i.get("pricePoint")),
        )
        for i in items
        if isinstance(i, Mapping)
    )


def _sales_kpis(item: Mapping[str, Any]) -> Optional[SalesKPIs]:
    if not item:
        return None
    return SalesKPIs(
        forecast_arr=to_number(item.get("forecastARR")),
        pipeline_value=to_number(item.get("pipelineValue")),
        closed_won=to_number(item.get("closedWon")),
        win_rate=to_number(item.get("winRate")),
        forecast_arr_delta=_optional(item, "forecastARRDelta"),
        pipeline_value_delta=_optional(item, "pipelineValueDelta"),
        closed_won_delta=_optional(item, "closedWonDelta"),
        win_rate_delta=_optional(item, "winRateDelta"),
        annual_arr_target=_positive(item, "annualARRTarget"),
        annual_acv_target=_positive(item, "annualACVTarget"),
        annual_in_year_revenue_target=_positive(item, "annualInYearRevenueTarget"),
        annual_client_wins_target=_positive(item, "annualClientWinsTarget"),
    )


def _nested_targets(raw: Mapping[str, Any]) -> NestedTargets:
    out: NestedTargets = {}
    for quarter, by_metric in raw.items():
        if not isinstance(by_metric, Mapping):
            continue
        for metric, by_name in by_metric.items():
            if not isinstance(by_name, Mapping):
                continue
            out.setdefault(str(quarter), {})[str(metric)] = {str(k): to_number(v) for k, v in by_name.items()}
    return out


def sales_data_from_payload(payload: Mapping[str, Any]) -> SalesData:
    """Map the API's camelCase JSON onto the typed table set."""
    details: Dict[str, ARRMonthDetail] = {}
    for month, d in _dict(payload, "detailsByMonth").items():
        if isinstance(d, Mapping):
            details[str(month)] = ARRMonthDetail(
                license=_line_items(d.get("license") or []),
                minimum=_line_items(d.get("minimum") or []),
                volume_driven=_line_items(d.get("volumeDriven") or []),
            )

    metric_input: Dict[str, Dict[str, QuarterMetricInput]] = {}
    for quarter, by_metric in _dict(payload, "quarterMetricInput").items():
        if not isinstance(by_metric, Mapping):
            continue
        for metric, m in by_metric.items():
            if not isinstance(m, Mapping):
                continue
            metric_input.setdefault(str(quarter), {})[str(metric)] = QuarterMetricInput(
                month_signed=_series(m.get("monthSigned"), 3),
                month_forecasted=_series(m.get("monthForecasted"), 3),
                quarter_target=to_number(m.get("quarterTarget")),
                carry_over=to_number(m.get("carryOver")),
            )

    return SalesData(
        source="api",
        sales_kpis=_sales_kpis(_dict(payload, "salesKPIs")),
        forecast_point=tuple(
            ForecastPoint(month=to_text(r.get("month")), forecast=to_number(r.get("forecast")), target=to_number(r.get("target")))
            for r in _list(payload, "forecastPoint")
        ),
        forecast_point_by_segment=tuple(
            ForecastPointBySegment(
                month=to_text(r.get("month")),
                segment=to_text(r.get("segment")),
                forecast=to_number(r.get("forecast")),
                target=to_number(r.get("target")),
            )
            for r in _list(payload, "forecastPointBySegment")
        ),
        pipeline_stage=tuple(
            PipelineStage(name=to_text(r.get("name")), value=to_number(r.get("value")), count=to_number(r.get("count")))
            for r in _list(payload, "pipelineStage")
        ),
        deal_segment=tuple(
            DealSegment(name=to_text(r.get("name")), value=to_number(r.get("value")), fill=to_text(r.get("fill")) or "#1e1b4b")
            for r in _list(payload, "dealSegment")
        ),
        arr_by_month_point=tuple(
            ARRByMonthPoint(
                month=to_text(r.get("month")),
                license=to_number(r.get("license")),
                minimum=to_number(r.get("minimum")),
                volume_driven=to_number(r.get("volumeDriven")),
            )
            for r in _list(payload, "arrByMonthPoint")
        ),
        details_by_month=details,
        pipeline_deal=tuple(
            PipelineDeal(
                id=to_text(r.get("id")),
                name=to_text(r.get("name")),
                acv=to_number(r.get("acv")),
                close_date=to_text(r.get("closeDate")),
                stage=to_text(r.get("stage")),
                segment=to_text(r.get("segment")),
            )
            for r in _list(payload, "pipelineDeal")
        ),
        acv_by_month=tuple(
            ACVByMonth(month=to_text(r.get("month")), month_key=to_text(r.get("monthKey")), total_acv=to_number(r.get("totalACV")))
            for r in _list(payload, "acvByMonth")
        ),
        client_wins_point=tuple(
            ClientWinsPoint(period=to_text(r.get("period")), wins=to_number(r.get("wins")))
            for r in _list(payload, "clientWinsPoint")
        ),
        client_deal=tuple(
            ClientDeal(
                id=to_text(r.get("id")),
                deal_name=to_text(r.get("dealName")),
                close_date=to_text(r.get("closeDate")),
                segment=to_text(r.get("segment")),
                acv=to_number(r.get("acv")),
                estimated_transactions_per_month=to_number(r.get("estimatedTransactionsPerMonth")),
                deal_owner=to_text(r.get("dealOwner")),
            )
            for r in _list(payload, "clientDeal")
        ),
        quarter_deal=tuple(
            QuarterDeal(
                id=to_text(r.get("id")),
                client_name=to_text(r.get("clientName")),
                deal_name=to_text(r.get("dealName")),
                close_date=to_text(r.get("closeDate")),
                segment=to_text(r.get("segment")),
                acv=to_number(r.get("acv")),
                arr_forecast=to_number(r.get("arrForecast")),
                annualized_transaction_forecast=to_number(r.get("annualizedTransactionForecast")),
                deal_owner=to_text(r.get("dealOwner")),
                target_account=to_bool(r.get("targetAccount")),
                latest_next_steps=to_text(r.get("latestNextSteps")),
                confidence_quarter_close=to_confidence(r.get("confidenceQuarterClose")),
            )
            for r in _list(payload, "quarterDeal")
        ),
        quarter_targets={
            str(q).upper(): QuarterTarget(
                client_wins=to_number(t.get("clientWins")),
                acv=to_number(t.get("acv")),
                in_year_revenue=to_number(t.get("inYearRevenue")),
            )
            for q, t in _dict(payload, "quarterTargets").items()
            if isinstance(t, Mapping)
        },
        cumulative_chart_data={
            str(metric): CumulativeSeries(
                actual=_series(s.get("actual"), MONTHS_PER_YEAR),
                forecast=_series(s.get("forecast"), MONTHS_PER_YEAR),
                target=_series(s.get("target"), MONTHS_PER_YEAR),
            )
            for metric, s in _dict(payload, "cumulativeChartData").items()
            if isinstance(s, Mapping)
        },
        quarter_metric_input=metric_input,
        quarter_target_by_segment=_nested_targets(_dict(payload, "quarterTargetBySegment")),
        quarter_target_by_deal_owner=_nested_targets(_dict(payload, "quarterTargetByDealOwner")),
        quarter_deal_owners={
            str(q): tuple(sorted(to_text(o) for o in owners if to_text(o)))
            for q, owners in _dict(payload, "quarterDealOwners").items()
            if isinstance(owners, list)
        },
    )


def load_api_data(settings: DashboardSettings, session: Optional[requests.Session] = None) -> SalesData:
    if not settings.api_base_url:
        raise DataSourceError("Sales API base URL not configured.")
    url = settings.api_base_url.rstrip("/") + SALES_DATA_PATH
    try:
        with http_session(session) as http:
            response = http.get(
                url,
                params={"t": cache_bust_token()},
                headers=NO_CACHE_HEADERS,
                timeout=settings.http_timeout_seconds,
            )
    except requests.RequestException as exc:
        logger.error("Sales API request failed url=%s error=%s", url, exc)
        raise DataSourceError(f"Could not load sales data from API: {exc}") from exc
    if not 200 <= response.status_code < 300:
        logger.error("Sales API returned status=%s url=%s", response.status_code, url)
        raise DataSourceError(f"Could not load sales data from API: HTTP {response.status_code}.")
    try:
        payload = response.json()
    except ValueError as exc:
        raise DataSourceError(f"Sales API returned invalid JSON: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise DataSourceError("Sales API returned an unexpected payload.")

    data = sales_data_from_payload(payload)
    logger.info("Loaded sales data source=%s tables=%s", data.source, data.table_counts())
    return data
