from __future__ import annotations

import unittest

import pandas as pd

from dashboard.filters import VolumeFilters, normalize_volume_filters
from dashboard.metrics_volume import (
    NO_DATE,
    UNKNOWN_CLIENT,
    apply_volume_filters,
    compute_month_top_clients,
    compute_volume_overview,
    group_sum,
    top_n,
    volume_by_client,
    volume_by_month,
    volume_frame,
    volume_summary,
)
from dashboard.models import VolumeRow


def row(client: str, volume: float, day: str, currency: str = "GBP") -> VolumeRow:
    return VolumeRow(client=client, total_volume=volume, transaction_date=day, currency=currency)


ROWS = [
    row("A", 10, "2025-01-01"),
    row("B", 5, "2025-01-01", currency="EUR"),
    row("A", 50, "2025-02-01"),
    row("B", 5, "2025-02-03", currency="EUR"),
    row("", 7, "2025-02-03"),
]


class TestGrouping(unittest.TestCase):
    def test_group_sum_first_seen_order_and_share(self) -> None:
        frame = pd.DataFrame({"k": ["b", "a", "b"], "v": [1.0, 2.0, 3.0]})
        out = group_sum(frame, "k", ["v"], denominator=6.0)

        self.assertEqual(out["k"].tolist(), ["b", "a"])
        self.assertEqual(out["v"].tolist(), [4.0, 2.0])
        self.assertAlmostEqual(out["share"].sum(), 1.0)

    def test_zero_denominator_gives_zero_share(self) -> None:
        frame = pd.DataFrame({"k": ["a"], "v": [0.0]})
        self.assertEqual(group_sum(frame, "k", ["v"], denominator=0.0)["share"].tolist(), [0.0])

    def test_top_n_ties_keep_input_order(self) -> None:
        buckets = pd.DataFrame({"client": ["x", "y", "z", "w"], "volume": [5.0, 9.0, 5.0, 5.0]})
        out = top_n(buckets, "volume", 3)
        self.assertEqual(out["client"].tolist(), ["y", "x", "z"])

    def test_bucket_sums_equal_filtered_total(self) -> None:
        frame = volume_frame(ROWS + [row("A", 3, ""), row("C", 4, "", currency="EUR")])
        for filters in (VolumeFilters(), VolumeFilters(currencies=["EUR"]), VolumeFilters(clients=["A"])):
            with self.subTest(filters=filters.selections()):
                df = apply_volume_filters(frame, filters)
                total = df["total_volume"].sum()
                self.assertAlmostEqual(volume_by_client(df)["volume"].sum(), total)
                self.assertAlmostEqual(volume_by_month(df)["volume"].sum(), total)


class TestVolumeAggregates(unittest.TestCase):
    def test_blank_client_is_unknown(self) -> None:
        out = volume_by_client(volume_frame(ROWS))
        self.assertIn(UNKNOWN_CLIENT, out["client"].tolist())

    def test_by_month(self) -> None:
        out = volume_by_month(volume_frame(ROWS))
        self.assertEqual(out["month"].tolist(), ["2025-01", "2025-02"])
        self.assertEqual(out["volume"].tolist(), [15.0, 62.0])

    def test_undated_rows_keep_month_shares_whole(self) -> None:
        out = volume_by_month(volume_frame([row("A", 10, "2025-01-01"), row("B", 5, "")]))

        self.assertEqual(out["month"].tolist(), ["2025-01", NO_DATE])
        self.assertEqual(out["volume"].sum(), 15.0)
        self.assertAlmostEqual(out["share"].sum(), 1.0)

    def test_summary(self) -> None:
        kpis = volume_summary(volume_frame(ROWS))
        self.assertEqual(kpis["total_volume"], 77.0)
        self.assertEqual(kpis["transactions"], 5)
        self.assertEqual(kpis["date_range"], "2025-01-01 - 2025-02-03")

    def test_summary_of_nothing(self) -> None:
        kpis = volume_summary(volume_frame([]))
        self.assertEqual(kpis["total_volume"], 0.0)
        self.assertEqual(kpis["average_volume"], 0.0)
        self.assertEqual(kpis["date_range"], "N/A")


class TestVolumeOverview(unittest.TestCase):
    def test_client_totals_and_client_filter(self) -> None:
        rows = [row("A", 10, "2025-01-01"), row("B", 5, "2025-01-02"), row("A", 50, "2025-01-03"), row("B", 5, "2025-01-04")]

        everything = compute_volume_overview(VolumeFilters(), rows)
        by_client = {r["client"]: r["volume"] for r in everything["top_clients"]}
        self.assertEqual(by_client, {"A": 60.0, "B": 10.0})
        self.assertEqual(everything["top_clients"][0]["client"], "A")

        only_a = compute_volume_overview(normalize_volume_filters({"clients": ["A"]}), rows)
        self.assertEqual([r["client"] for r in only_a["top_clients"]], ["A"])
        self.assertEqual(only_a["kpis"]["total_volume"], 60.0)
        self.assertEqual(only_a["options"]["clients"], ["A", "B"])
        self.assertIn("volume_by_month", only_a["charts"])

    def test_filter_matching_nothing(self) -> None:
        payload = compute_volume_overview(VolumeFilters(clients=["nobody"]), ROWS)
        self.assertEqual(payload["top_clients"], [])
        self.assertEqual(payload["kpis"]["transactions"], 0)
        self.assertEqual(payload["charts"], {})

    def test_month_drill_down(self) -> None:
        payload = compute_month_top_clients(VolumeFilters(top_n=2), ROWS, "2025-02")

        self.assertEqual(payload["month_total_volume"], 62.0)
        self.assertEqual(payload["overall_total_volume"], 77.0)
        top = payload["month_top_clients"]
        self.assertEqual([r["client"] for r in top], ["A", UNKNOWN_CLIENT])
        self.assertAlmostEqual(top[0]["month_pct"], 50 / 62)
        self.assertEqual(top[0]["overall_volume"], 60.0)
        self.assertAlmostEqual(top[0]["overall_pct"], 60 / 77)
        self.assertEqual(len(payload["overall_top_clients"]), 2)

    def test_month_without_rows(self) -> None:
        payload = compute_month_top_clients(VolumeFilters(), ROWS, "2030-01")
        self.assertEqual(payload["month_total_volume"], 0.0)
        self.assertEqual(payload["month_top_clients"], [])


if __name__ == "__main__":
    unittest.main()
