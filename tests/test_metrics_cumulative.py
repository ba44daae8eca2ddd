from __future__ import annotations

import unittest
from datetime import date

from dashboard.filters import SalesFilters
from dashboard.metrics_cumulative import compute_cumulative, fit_series, linear_target
from dashboard.metrics_sales import DEFAULT_ANNUAL_TARGETS
from dashboard.models import CumulativeSeries, QuarterDeal, SalesData

AS_OF = date(2026, 3, 15)


class TestCumulative(unittest.TestCase):
    def test_fit_series(self) -> None:
        self.assertEqual(fit_series([1, 2]), [1.0, 2.0] + [0.0] * 10)
        self.assertEqual(len(fit_series(range(20))), 12)

    def test_linear_target(self) -> None:
        out = linear_target(1200)
        self.assertEqual(out[0], 100)
        self.assertEqual(out[-1], 1200)

    def test_computed_from_deals(self) -> None:
        data = SalesData(
            quarter_deal=(
                QuarterDeal(close_date="2026-01-10", acv=100),
                QuarterDeal(close_date="2026-03-01", acv=50),
                QuarterDeal(close_date="2026-05-01", acv=25),
                QuarterDeal(close_date="2025-05-01", acv=999),
                QuarterDeal(close_date="", acv=999),
            )
        )

        out = compute_cumulative(SalesFilters(), data, "acv", as_of=AS_OF)
        rows = {r["month"]: r for r in out["rows"]}

        self.assertEqual(out["source"], "deals")
        self.assertEqual(rows["Jan"]["actual"], 100)
        self.assertEqual(rows["Mar"]["actual"], 150)
        self.assertEqual(rows["May"]["actual"], 150)
        self.assertEqual(rows["May"]["forecast"], 175)
        self.assertEqual(rows["Dec"]["forecast"], 175)
        self.assertEqual(rows["Dec"]["target"], DEFAULT_ANNUAL_TARGETS["acv"])

    def test_sheet_series_used_without_filters(self) -> None:
        series = CumulativeSeries(actual=(1.0,) * 12, forecast=(2.0,) * 12, target=(3.0,) * 12)
        data = SalesData(
            cumulative_chart_data={"clientWins": series},
            quarter_deal=(QuarterDeal(close_date="2026-01-10", segment="A"),),
        )

        unfiltered = compute_cumulative(SalesFilters(), data, "clientWins", as_of=AS_OF)
        self.assertEqual(unfiltered["source"], "cumulative_chart_data")
        self.assertEqual(unfiltered["rows"][0], {"month": "Jan", "actual": 1.0, "forecast": 2.0, "target": 3.0})

        filtered = compute_cumulative(SalesFilters(selected_segments=["A"]), data, "clientWins", as_of=AS_OF)
        self.assertEqual(filtered["source"], "deals")
        self.assertEqual(filtered["rows"][0]["actual"], 1.0)

    def test_unknown_metric(self) -> None:
        with self.assertRaises(ValueError):
            compute_cumulative(SalesFilters(), SalesData(), "bogus", as_of=AS_OF)


if __name__ == "__main__":
    unittest.main()
