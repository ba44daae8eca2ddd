from __future__ import annotations

import unittest

from dashboard.filters import SalesFilters, normalize_sales_filters
from dashboard.metrics_sales import (
    DEFAULT_ANNUAL_TARGETS,
    DEFAULT_QUARTER_TARGETS,
    DEFAULT_SEGMENT_OPTIONS,
    UNASSIGNED,
    acv_by_month,
    annual_targets,
    client_deals,
    compute_sales_overview,
    deal_distribution,
    deals_by_month,
    deals_by_owner,
    deals_by_segment,
    filter_deals,
    forecast_line,
    owner_options,
    quarter_targets,
    round_target,
    segment_options,
    selection_target,
)
from dashboard.models import (
    ClientDeal,
    DealSegment,
    ForecastPoint,
    ForecastPointBySegment,
    PipelineDeal,
    PipelineStage,
    QuarterDeal,
    QuarterTarget,
    SalesData,
    SalesKPIs,
)
from dashboard.periods import Quarter

Q1 = Quarter.parse("2026Q1")


def sample_data() -> SalesData:
    return SalesData(
        source="google_sheets",
        sales_kpis=SalesKPIs(forecast_arr=1_000_000, annual_acv_target=4_000_000),
        forecast_point=(ForecastPoint("Jan", 100, 120), ForecastPoint("Feb", 200, 240)),
        forecast_point_by_segment=(
            ForecastPointBySegment("Jan", "Fintechs", 40, 50),
            ForecastPointBySegment("Jan", "Gateways", 10, 20),
            ForecastPointBySegment("Feb", "Fintechs", 60, 70),
        ),
        pipeline_stage=(PipelineStage("Qualified", 500, 5), PipelineStage("Proposal", 300, 3)),
        deal_segment=(DealSegment("Fintechs", 3), DealSegment("Gateways", 1), DealSegment("HVHM", 4)),
        pipeline_deal=(
            PipelineDeal(id="1", name="a", acv=100, close_date="2026-02-10"),
            PipelineDeal(id="2", name="b", acv=50, close_date="2026-01-05"),
            PipelineDeal(id="3", name="c", acv=25, close_date="2026-02-28"),
            PipelineDeal(id="4", name="d", acv=999, close_date="soon"),
        ),
        client_deal=(
            ClientDeal(id="1", deal_name="x", segment="Fintechs", deal_owner="Ana"),
            ClientDeal(id="2", deal_name="y", segment="Gateways", deal_owner="Bo"),
        ),
        quarter_deal=(
            QuarterDeal(client_name="Acme", close_date="2026-02-01", segment="Fintechs", deal_owner="Ana"),
            QuarterDeal(client_name="Beta", close_date="2026-05-01", segment="HVHM", deal_owner="Cy"),
        ),
        quarter_target_by_segment={"2026Q1": {"acv": {"Fintechs": 301_400.0, "Gateways": 100_000.0}}},
        quarter_target_by_deal_owner={"2026Q1": {"acv": {"Ana": 250_000.0}, "clientWins": {"Ana": 2.5}}},
    )


class TestTargets(unittest.TestCase):
    def test_annual_targets_prefer_sheet_values(self) -> None:
        targets = annual_targets(sample_data())
        self.assertEqual(targets["acv"], 4_000_000)
        self.assertEqual(targets["clientWins"], DEFAULT_ANNUAL_TARGETS["clientWins"])

    def test_annual_targets_without_kpis(self) -> None:
        self.assertEqual(annual_targets(SalesData()), DEFAULT_ANNUAL_TARGETS)

    def test_quarter_targets_fall_back_to_defaults(self) -> None:
        self.assertEqual(quarter_targets(SalesData(), Q1), DEFAULT_QUARTER_TARGETS[1])
        data = SalesData(quarter_targets={"2026Q1": QuarterTarget(client_wins=3, acv=10, in_year_revenue=5)})
        self.assertEqual(quarter_targets(data, Q1).acv, 10)

    def test_round_target(self) -> None:
        self.assertEqual(round_target(401_400, "acv"), 401_000)
        self.assertEqual(round_target(401_500, "inYearRevenue"), 402_000)
        self.assertEqual(round_target(2.5, "clientWins"), 3)

    def test_selection_target_precedence(self) -> None:
        data = sample_data()
        by_segment = SalesFilters(selected_segments=["Fintechs", "Gateways"])
        by_owner = SalesFilters(selected_segments=["Fintechs"], selected_owners=["Ana"])

        self.assertEqual(selection_target(data, Q1, "acv", by_segment), 401_000)
        self.assertEqual(selection_target(data, Q1, "acv", by_owner), 250_000)
        self.assertEqual(selection_target(data, Q1, "clientWins", by_owner), 3)

    def test_selection_without_sheet_target_uses_quarter_target(self) -> None:
        data = sample_data()
        filters = SalesFilters(selected_owners=["Nobody"])
        self.assertEqual(selection_target(data, Q1, "acv", filters), DEFAULT_QUARTER_TARGETS[1].acv)
        self.assertEqual(selection_target(data, Q1, "acv", SalesFilters()), DEFAULT_QUARTER_TARGETS[1].acv)


class TestSalesAggregates(unittest.TestCase):
    def test_forecast_line_by_segment_sums_per_month(self) -> None:
        data = sample_data()
        self.assertEqual(len(forecast_line(data)), 2)

        out = forecast_line(data, ["Fintechs", "Gateways"])
        self.assertEqual(out[0], {"month": "Jan", "forecast": 50.0, "target": 70.0})
        self.assertEqual(out[1]["month"], "Feb")
        self.assertEqual(forecast_line(data, ["Nobody"]), [])

    def test_distribution_is_rounded_percent(self) -> None:
        out = {r["name"]: r["value"] for r in deal_distribution(sample_data())}
        self.assertEqual(out, {"Fintechs": 38, "Gateways": 13, "HVHM": 50})

        filtered = deal_distribution(sample_data(), ["Fintechs", "Gateways"])
        self.assertEqual([r["value"] for r in filtered], [75, 25])

    def test_acv_by_month_computed_from_deals(self) -> None:
        out = acv_by_month(sample_data())
        self.assertEqual([r["month_key"] for r in out], ["2026-01", "2026-02"])
        self.assertEqual([r["total_acv"] for r in out], [50.0, 125.0])
        self.assertEqual(out[1]["month"], "Feb")

    def test_deals_by_month(self) -> None:
        out = deals_by_month(sample_data().pipeline_deal)
        self.assertEqual([(r["month_key"], r["count"]) for r in out], [("2026-01", 1), ("2026-02", 2)])

    def test_client_deals_filtered(self) -> None:
        data = sample_data()
        self.assertEqual(len(client_deals(data)), 2)
        self.assertEqual([d["deal_name"] for d in client_deals(data, SalesFilters(selected_owners=["Bo"]))], ["y"])

    def test_options(self) -> None:
        data = sample_data()
        self.assertEqual(segment_options(data, Q1), ["Fintechs", "Gateways"])
        self.assertEqual(segment_options(SalesData(), Q1), DEFAULT_SEGMENT_OPTIONS)
        self.assertEqual(owner_options(data, Q1), ["Ana"])
        owners = SalesData(quarter_deal_owners={"2026Q1": ("Bo", "Dee")})
        self.assertEqual(owner_options(owners, Q1), ["Bo", "Dee"])

    def test_overview_payload(self) -> None:
        payload = compute_sales_overview(normalize_sales_filters({"selected_segments": ["Fintechs"]}), sample_data())

        self.assertEqual(payload["source"], "google_sheets")
        self.assertEqual(payload["kpis"]["forecast_arr"], 1_000_000)
        self.assertEqual([r["forecast"] for r in payload["forecast_line"]], [40.0, 60.0])
        self.assertEqual([d["deal_name"] for d in payload["client_deals"]], ["x"])
        for key in ("forecast_line", "deal_distribution", "pipeline_stages", "acv_by_month"):
            self.assertIn(key, payload["charts"])

    def test_normalize_sales_filters(self) -> None:
        filters = normalize_sales_filters({"selected_owners": "Ana", "metric": "bogus", "top_n": "500"})
        self.assertEqual(filters.selected_owners, ["Ana"])
        self.assertEqual(filters.metric, "acv")
        self.assertEqual(filters.top_n, 200)
        self.assertFalse(normalize_sales_filters({}).active)


class TestDealBreakdowns(unittest.TestCase):
    DEALS = (
        QuarterDeal(client_name="a1", segment="A", deal_owner="Ana", acv=10),
        QuarterDeal(client_name="b1", segment="B", deal_owner="Bo", acv=5),
        QuarterDeal(client_name="a2", segment="A", deal_owner="Bo", acv=20),
        QuarterDeal(client_name="b2", segment="B", deal_owner="", acv=5),
        QuarterDeal(client_name="a3", segment="A", deal_owner="Ana", acv=30),
    )

    def test_segment_totals_and_segment_filter(self) -> None:
        everything = deals_by_segment(self.DEALS)
        self.assertEqual(dict(zip(everything["segment"], everything["value"])), {"A": 60.0, "B": 10.0})
        self.assertEqual(everything["count"].tolist(), [3, 2])

        only_a = deals_by_segment(self.DEALS, SalesFilters(selected_segments=["A"]))
        self.assertEqual(dict(zip(only_a["segment"], only_a["value"])), {"A": 60.0})

    def test_owner_totals_bucket_blank_owner(self) -> None:
        out = deals_by_owner(self.DEALS)
        self.assertEqual(dict(zip(out["deal_owner"], out["value"])), {"Ana": 40.0, "Bo": 25.0, UNASSIGNED: 5.0})

        client_wins = deals_by_owner(self.DEALS, SalesFilters(selected_owners=["Bo"]), metric="clientWins")
        self.assertEqual(client_wins["value"].tolist(), [2.0])

    def test_bucket_sums_equal_filtered_total(self) -> None:
        selections = (
            SalesFilters(),
            SalesFilters(selected_segments=["B"]),
            SalesFilters(selected_owners=["Ana", "Bo"]),
            SalesFilters(selected_segments=["Nobody"]),
        )
        for filters in selections:
            with self.subTest(segments=filters.selected_segments, owners=filters.selected_owners):
                total = sum(d.acv for d in filter_deals(self.DEALS, filters))
                for breakdown in (deals_by_segment, deals_by_owner):
                    out = breakdown(self.DEALS, filters)
                    self.assertAlmostEqual(float(out["value"].sum()), total)
                    if total:
                        self.assertAlmostEqual(float(out["share"].sum()), 1.0)

    def test_overview_carries_breakdowns(self) -> None:
        payload = compute_sales_overview(SalesFilters(selected_segments=["Fintechs"]), sample_data())
        self.assertEqual([r["segment"] for r in payload["deals_by_segment"]], ["Fintechs"])
        self.assertEqual([r["deal_owner"] for r in payload["deals_by_owner"]], ["Ana"])


if __name__ == "__main__":
    unittest.main()
