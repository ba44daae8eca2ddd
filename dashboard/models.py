"""
dashboard/models.py

Typed entities produced by the loaders. Numeric fields are finite floats and
string fields are never None, so aggregation code never branches on absence.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from dashboard.parsing import RawTable

MONTHS_PER_YEAR = 12


@dataclass(frozen=True)
class SalesKPIs:
    forecast_arr: float = 0.0
    pipeline_value: float = 0.0
    closed_won: float = 0.0
    win_rate: float = 0.0
    forecast_arr_delta: Optional[float] = None
    pipeline_value_delta: Optional[float] = None
    closed_won_delta: Optional[float] = None
    win_rate_delta: Optional[float] = None
    annual_arr_target: Optional[float] = None
    annual_acv_target: Optional[float] = None
    annual_in_year_revenue_target: Optional[float] = None
    annual_client_wins_target: Optional[float] = None


@dataclass(frozen=True)
class ForecastPoint:
    month: str = ""
    forecast: float = 0.0
    target: float = 0.0


@dataclass(frozen=True)
class ForecastPointBySegment:
    month: str = ""
    segment: str = ""
    forecast: float = 0.0
    target: float = 0.0


@dataclass(frozen=True)
class PipelineStage:
    name: str = ""
    value: float = 0.0
    count: float = 0.0


@dataclass(frozen=True)
class DealSegment:
    name: str = ""
    value: float = 0.0
    fill: str = "#1e1b4b"


@dataclass(frozen=True)
class ARRByMonthPoint:
    month: str = ""
    license: float = 0.0
    minimum: float = 0.0
    volume_driven: float = 0.0


@dataclass(frozen=True)
class ARRLineItem:
    client_name: str = ""
    amount: float = 0.0
    segment: str = ""
    transactions: float = 0.0
    price_point: float = 0.0


@dataclass(frozen=True)
class ARRMonthDetail:
    license: Tuple[ARRLineItem, ...] = ()
    minimum: Tuple[ARRLineItem, ...] = ()
    volume_driven: Tuple[ARRLineItem, ...] = ()


@dataclass(frozen=True)
class PipelineDeal:
    id: str = ""
    name: str = ""
    acv: float = 0.0
    close_date: str = ""
    stage: str = ""
    segment: str = ""


@dataclass(frozen=True)
class ACVByMonth:
    month: str = ""
    month_key: str = ""
    total_acv: float = 0.0


@dataclass(frozen=True)
class ClientWinsPoint:
    period: str = ""
    wins: float = 0.0


@dataclass(frozen=True)
class ClientDeal:
    id: str = ""
    deal_name: str = ""
    close_date: str = ""
    segment: str = ""
    acv: float = 0.0
    estimated_transactions_per_month: float = 0.0
    deal_owner: str = ""


@dataclass(frozen=True)
class QuarterDeal:
    id: str = ""
    client_name: str = ""
    deal_name: str = ""
    close_date: str = ""
    segment: str = ""
    acv: float = 0.0
    arr_forecast: float = 0.0
    annualized_transaction_forecast: float = 0.0
    deal_owner: str = ""
    target_account: bool = False
    latest_next_steps: str = ""
    confidence_quarter_close: float = 0.0


@dataclass(frozen=True)
class QuarterTarget:
    client_wins: float = 0.0
    acv: float = 0.0
    in_year_revenue: float = 0.0

    def for_metric(self, metric: str) -> float:
        if metric == "clientWins":
            return self.client_wins
        if metric == "acv":
            return self.acv
        return self.in_year_revenue

    @property
    def is_set(self) -> bool:
        return self.client_wins > 0 or self.acv > 0 or self.in_year_revenue > 0


def _zeros() -> Tuple[float, ...]:
    return (0.0,) * MONTHS_PER_YEAR


@dataclass(frozen=True)
class CumulativeSeries:
    """Per-month (Jan..Dec) cumulative values for one metric."""

    actual: Tuple[float, ...] = field(default_factory=_zeros)
    forecast: Tuple[float, ...] = field(default_factory=_zeros)
    target: Tuple[float, ...] = field(default_factory=_zeros)


@dataclass(frozen=True)
class QuarterMetricInput:
    month_signed: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    month_forecasted: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    quarter_target: float = 0.0
    carry_over: float = 0.0


@dataclass(frozen=True)
class VolumeRow:
    client: str = ""
    regulatory_type: str = ""
    transaction_type: str = ""
    merchant: str = ""
    merchant_jurisdiction: str = ""
    merchant_industry: str = ""
    use_case: str = ""
    tpp: str = ""
    currency: str = ""
    source_bank_jurisdiction: str = ""
    transaction_category: str = ""
    transaction_sub_type: str = ""
    total_volume: float = 0.0
    transaction_date: str = ""


# quarter -> metric -> name -> value
NestedTargets = Dict[str, Dict[str, Dict[str, float]]]


@dataclass(frozen=True)
class SalesData:
    """The loaded table set. Optional tables default to empty."""

    source: str = ""
    sales_kpis: Optional[SalesKPIs] = None
    forecast_point: Tuple[ForecastPoint, ...] = ()
    forecast_point_by_segment: Tuple[ForecastPointBySegment, ...] = ()
    pipeline_stage: Tuple[PipelineStage, ...] = ()
    deal_segment: Tuple[DealSegment, ...] = ()
    arr_by_month_point: Tuple[ARRByMonthPoint, ...] = ()
    details_by_month: Dict[str, ARRMonthDetail] = field(default_factory=dict)
    pipeline_deal: Tuple[PipelineDeal, ...] = ()
    acv_by_month: Tuple[ACVByMonth, ...] = ()
    client_wins_point: Tuple[ClientWinsPoint, ...] = ()
    client_deal: Tuple[ClientDeal, ...] = ()
    quarter_deal: Tuple[QuarterDeal, ...] = ()
    quarter_targets: Dict[str, QuarterTarget] = field(default_factory=dict)
    cumulative_chart_data: Dict[str, CumulativeSeries] = field(default_factory=dict)
    quarter_metric_input: Dict[str, Dict[str, QuarterMetricInput]] = field(default_factory=dict)
    quarter_target_by_segment: NestedTargets = field(default_factory=dict)
    quarter_target_by_deal_owner: NestedTargets = field(default_factory=dict)
    quarter_deal_owners: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    quarter_details: Dict[str, RawTable] = field(default_factory=dict)

    def table_counts(self) -> Dict[str, int]:
        return {
            "forecast_point": len(self.forecast_point),
            "forecast_point_by_segment": len(self.forecast_point_by_segment),
            "pipeline_stage": len(self.pipeline_stage),
            "deal_segment": len(self.deal_segment),
            "arr_by_month_point": len(self.arr_by_month_point),
            "pipeline_deal": len(self.pipeline_deal),
            "acv_by_month": len(self.acv_by_month),
            "client_wins_point": len(self.client_wins_point),
            "client_deal": len(self.client_deal),
            "quarter_deal": len(self.quarter_deal),
            "quarter_targets": len(self.quarter_targets),
            "cumulative_chart_data": len(self.cumulative_chart_data),
            "quarter_metric_input": len(self.quarter_metric_input),
            "quarter_details": sum(len(t.rows) for t in self.quarter_details.values()),
        }
