from __future__ import annotations

import unittest
from datetime import date

from dashboard.filters import SalesFilters
from dashboard.metrics_quarter import (
    carry_over,
    compute_quarter,
    filter_deals,
    month_buckets,
    month_details,
    quarter_metric,
    quarter_projection,
)
from dashboard.models import QuarterDeal, QuarterMetricInput, SalesData
from dashboard.periods import Quarter

AS_OF = date(2026, 2, 15)
Q1 = Quarter.parse("2026Q1")
Q2 = Quarter.parse("2026Q2")


def deal(close: str, acv: float = 100, **kwargs) -> QuarterDeal:
    return QuarterDeal(close_date=close, acv=acv, **kwargs)


def by_name(rows):
    return {r["name"]: r for r in rows}


class TestWaterfall(unittest.TestCase):
    def test_signed_and_forecasted_in_same_month(self) -> None:
        data = SalesData(quarter_deal=(deal("2026-02-01"), deal("2026-02-28")))

        projection = quarter_projection(data, Q1, SalesFilters(), AS_OF)
        feb = by_name(projection["rows"])["Feb"]

        self.assertEqual(feb["signed"], 100)
        self.assertEqual(feb["forecasted"], 100)
        self.assertEqual(feb["running_total"], 200)
        self.assertEqual(projection["source"], "deals")

    def test_as_of_day_counts_as_signed(self) -> None:
        signed, forecasted = month_buckets([deal("2026-02-15")], Q1, "acv", AS_OF)
        self.assertEqual(signed, [0.0, 100.0, 0.0])
        self.assertEqual(forecasted, [0.0, 0.0, 0.0])

    def test_undated_deals_are_excluded(self) -> None:
        data = SalesData(quarter_deal=(deal(""), deal("not a date"), deal("2026-01-10", acv=40)))

        rows = quarter_projection(data, Q1, SalesFilters(), AS_OF)["rows"]

        self.assertEqual(by_name(rows)["Total Projected"]["running_total"], 40)
        self.assertEqual(sum(r["signed"] + r["forecasted"] for r in rows if r["kind"] == "month"), 40)

    def test_row_layout(self) -> None:
        q1_rows = quarter_projection(SalesData(), Q1, SalesFilters(), AS_OF)["rows"]
        self.assertEqual([r["name"] for r in q1_rows], ["Jan", "Feb", "Mar", "Total Projected", "Q1 Target"])

        q2_rows = quarter_projection(SalesData(), Q2, SalesFilters(), AS_OF)["rows"]
        self.assertEqual([r["name"] for r in q2_rows], ["Carry-over", "Apr", "May", "Jun", "Total Projected", "2026Q2 Target"])

    def test_carry_over_starts_the_next_quarter(self) -> None:
        deals = (deal("2026-01-10", acv=50), deal("2026-03-20", acv=30), deal("2025-12-01", acv=999), deal("2026-04-02", acv=10))
        data = SalesData(quarter_deal=deals)

        self.assertEqual(carry_over(deals, Q2, "acv", AS_OF), 80)
        projection = quarter_projection(data, Q2, SalesFilters(), AS_OF)
        rows = by_name(projection["rows"])
        self.assertEqual(rows["Carry-over"]["running_total"], 80)
        self.assertEqual(rows["Apr"]["baseline"], 80)
        self.assertEqual(rows["Apr"]["forecasted"], 10)
        self.assertEqual(projection["summary"]["projected"], 90)

    def test_client_wins_counts_deals(self) -> None:
        data = SalesData(quarter_deal=(deal("2026-01-02", acv=0), deal("2026-03-02", acv=0)))
        projection = quarter_projection(data, Q1, SalesFilters(metric="clientWins"), AS_OF)
        self.assertEqual(projection["summary"]["signed"], 1)
        self.assertEqual(projection["summary"]["forecasted"], 1)

    def test_arr_metric_falls_back_to_acv(self) -> None:
        self.assertEqual(quarter_metric("arrTarget"), "acv")
        self.assertEqual(quarter_metric("inYearRevenue"), "inYearRevenue")

    def test_segment_filter_drops_other_segments(self) -> None:
        deals = [deal("2026-01-02", acv=v, segment="A") for v in (10, 20, 30)]
        deals += [deal("2026-01-03", acv=5, segment="B"), deal("2026-01-04", acv=5, segment="B")]
        filtered = filter_deals(deals, SalesFilters(selected_segments=["A"]))

        self.assertEqual({d.segment for d in filtered}, {"A"})
        self.assertEqual(sum(d.acv for d in filtered), 60)


class TestMetricInputSheet(unittest.TestCase):
    def data(self) -> SalesData:
        return SalesData(
            quarter_deal=(deal("2026-04-05", acv=7, segment="Fintechs"),),
            quarter_metric_input={
                "2026Q2": {
                    "acv": QuarterMetricInput(
                        month_signed=(100.0, 0.0, 0.0),
                        month_forecasted=(0.0, 50.0, 25.0),
                        quarter_target=412_600.0,
                        carry_over=300.0,
                    )
                }
            },
        )

    def test_unfiltered_view_uses_sheet_values(self) -> None:
        projection = quarter_projection(self.data(), Q2, SalesFilters(), AS_OF)
        rows = by_name(projection["rows"])

        self.assertEqual(projection["source"], "quarter_metric_input")
        self.assertEqual(rows["Carry-over"]["signed"], 300)
        self.assertEqual(rows["Jun"]["running_total"], 475)
        self.assertEqual(projection["summary"]["target"], 413_000)
        self.assertEqual(projection["summary"]["gap"], 413_000 - 475)

    def test_filtered_view_uses_deals(self) -> None:
        projection = quarter_projection(self.data(), Q2, SalesFilters(selected_segments=["Fintechs"]), AS_OF)
        self.assertEqual(projection["source"], "deals")
        self.assertEqual(projection["summary"]["projected"], 7)


class TestMonthDetails(unittest.TestCase):
    def test_rows_for_one_month(self) -> None:
        data = SalesData(
            quarter_deal=(
                deal("2026-02-01", acv=1000, deal_name="Acme", deal_owner="Ana", confidence_quarter_close=50, arr_forecast=400),
                deal("2026-02-20", acv=200, client_name="Beta", confidence_quarter_close=100),
                deal("2026-03-01", acv=999),
            )
        )

        out = month_details(data, Q1, 2, SalesFilters(), AS_OF)

        self.assertEqual(out["month"], "Feb")
        self.assertEqual([r["deal_name"] for r in out["rows"]], ["Acme", "Beta"])
        self.assertEqual([r["status"] for r in out["rows"]], ["Signed", "Forecasted"])
        self.assertEqual(out["total_weighted_acv"], 700)
        self.assertEqual(out["total_arr"], 400)

    def test_month_outside_quarter(self) -> None:
        with self.assertRaises(ValueError):
            month_details(SalesData(), Q1, 5, SalesFilters(), AS_OF)


class TestComputeQuarter(unittest.TestCase):
    def test_payload(self) -> None:
        data = SalesData(quarter_deal=(deal("2026-02-01", segment="Fintechs", deal_owner="Ana"), deal("2026-06-01")))

        payload = compute_quarter(SalesFilters(), data, Q1, as_of=AS_OF)

        self.assertEqual(payload["quarter"]["months"], ["Jan", "Feb", "Mar"])
        self.assertEqual(payload["as_of"], "2026-02-15")
        self.assertEqual(len(payload["deals"]), 1)
        self.assertEqual(payload["deals"][0]["status"], "Signed")
        self.assertEqual(payload["owner_options"], ["Ana"])
        self.assertIn("waterfall", payload["charts"])
        self.assertEqual([r["segment"] for r in payload["by_segment"]], ["Fintechs"])
        self.assertEqual([r["deal_owner"] for r in payload["by_owner"]], ["Ana"])


if __name__ == "__main__":
    unittest.main()
