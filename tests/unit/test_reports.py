"""
Unit Tests - Reports
"""
import itertools
from decimal import Decimal
from fractions import Fraction

import polars as pl
import pytest

from transaction_insights.config import PipelineSettings
from transaction_insights.exceptions import UnknownReportError
from transaction_insights.reports import (
    DEFAULT_REPORTS,
    REPORTS,
    ReportEngine,
    ReportExporter,
    StrategicQuadrant,
    classify_quadrant,
    round_half_up,
)
from transaction_insights.reports.metrics import (
    average,
    cents,
    compare_fractions,
    efficiency_index,
    efficiency_label,
    exact_ratio,
    share_pct,
)
from transaction_insights.transformation import (
    analytical_view,
    build_brand_map,
    build_category_map,
    build_clean_set,
)


def build_view(raw, settings=None):
    settings = settings or PipelineSettings()
    return analytical_view(
        build_clean_set(raw, settings=settings),
        build_category_map(raw, settings),
        build_brand_map(raw, settings),
        settings,
    )


def run_report(name, raw, settings=None):
    settings = settings or PipelineSettings()
    return ReportEngine(build_view(raw, settings), settings).run_one(name)


class TestMetrics:
    """Tests for shared aggregation primitives"""

    def test_round_half_up(self):
        assert round_half_up("2.675") == Decimal("2.68")
        assert round_half_up(Decimal("1.005")) == Decimal("1.01")
        assert round_half_up("2.5", places=0) == Decimal("3")
        assert round_half_up("-2.675") == Decimal("-2.68")
        assert round_half_up(Fraction(7, 200)) == Decimal("0.04")
        assert round_half_up(None) is None

    def test_round_half_up_takes_floats_at_binary_value(self):
        # 2.675 is stored as 2.67499999...
        assert round_half_up(2.675) == Decimal("2.67")

    def test_cents_are_exact(self, make_raw):
        raw = make_raw([{"price": "0.07"}, {"price": "0.29"}, {"price": "9999999999.99"}])

        assert raw.select(cents())["price"].to_list() == [7, 29, 999999999999]

    def test_exact_ratio_rounds_half_up(self):
        df = pl.DataFrame({"n": [7, 1, 1], "d": [2, 1, 3]})

        result = df.select(exact_ratio("n", "d", scale=Fraction(1, 100)).alias("q"))["q"].to_list()

        assert result == [0.04, 0.01, 0.0]

    def test_exact_ratio_nulls(self):
        df = pl.DataFrame({"n": [1, None, 1], "d": [8, 4, 0]})

        result = df.select(exact_ratio("n", "d", scale=100).alias("q"))["q"].to_list()

        assert result == [12.5, None, None]

    def test_shares_sum_to_100(self):
        df = pl.DataFrame({"g": ["a", "a", "b"], "revenue": [1250, 3000, 5750]})

        shares = df.select(share_pct("revenue").alias("s"))["s"]
        within = df.select(share_pct("revenue", "g").alias("s"))["s"]

        assert shares.to_list() == [12.5, 30.0, 57.5]
        assert within.to_list() == [29.41, 70.59, 100.0]

    def test_share_of_zero_total_is_null(self):
        df = pl.DataFrame({"revenue": [0, 0]})

        shares = df.select(share_pct("revenue").alias("s"))["s"]

        assert shares.null_count() == 2

    def test_average_of_cents(self):
        df = pl.DataFrame({"rev": [7, 0], "vol": [2, 0]})

        assert df.select(average("rev", "vol").alias("aov"))["aov"].to_list() == [0.04, None]

    def test_efficiency_index_is_one_when_shares_match(self):
        df = pl.DataFrame({"rev": [2500], "total_rev": [10000], "vol": [1], "total_vol": [4]})

        ei = df.select(efficiency_index("rev", "total_rev", "vol", "total_vol")).item()

        assert ei == 1.0

    def test_efficiency_index_null_without_volume(self):
        df = pl.DataFrame({"rev": [2500], "total_rev": [10000], "vol": [0], "total_vol": [4]})

        assert df.select(efficiency_index("rev", "total_rev", "vol", "total_vol")).item() is None

    def test_efficiency_index_large_totals(self):
        # rev * total_vol is past the Int64 range
        df = pl.DataFrame({"rev": [10 ** 14], "total_rev": [2 * 10 ** 14], "vol": [10 ** 7], "total_vol": [10 ** 8]})

        assert df.select(efficiency_index("rev", "total_rev", "vol", "total_vol")).item() == 5.0

    def test_compare_fractions(self):
        df = pl.DataFrame({"a": [30, 31, 29, 1], "b": [90, 90, 90, 0], "c": [1, 1, 1, 1], "d": [3, 3, 3, 3]})

        signs = df.select(compare_fractions("a", "b", "c", "d").alias("s"))["s"].to_list()

        assert signs == [0, 1, -1, None]

    def test_efficiency_label(self):
        assert efficiency_label(1.4) == "high-yield"
        assert efficiency_label(0.6) == "high-volume/low-margin"
        assert efficiency_label(1.0) == "balanced"
        assert efficiency_label(None) is None

    @pytest.mark.parametrize("r,v,aov,g,expected", [
        ("0.3", "0.2", 50, 40, StrategicQuadrant.STAR),
        ("0.1", "0.2", 30, 40, StrategicQuadrant.CASH_COW),
        ("0.3", "0.2", 30, 40, StrategicQuadrant.EFFICIENCY_PLAY),
        ("0.1", "0.2", 50, 40, StrategicQuadrant.LONG_TAIL),
        ("0.2", "0.2", 50, 40, StrategicQuadrant.LONG_TAIL),
        ("0.3", "0.2", 40, 40, StrategicQuadrant.LONG_TAIL),
        (Fraction(1, 3), Fraction(2, 6), "0.15", "0.15", StrategicQuadrant.LONG_TAIL),
    ])
    def test_classify_quadrant(self, r, v, aov, g, expected):
        assert classify_quadrant(r, v, aov, g) == expected

    def test_quadrant_is_exhaustive(self):
        values = ["0.1", "0.2", "0.3"]
        for r, v, aov in itertools.product(values, values, values):
            assert classify_quadrant(r, v, aov, "0.2") in set(StrategicQuadrant)


class TestUserSegmentation:
    """Tests for the user-type summary"""

    def test_anonymous_and_registered_split(self, make_raw):
        raw = make_raw([
            {"user_id": None, "price": 10.0, "category_code": "a", "brand": "x"},
            {"user_id": 42, "price": 30.0, "category_code": "a", "brand": "x", "product_id": 101},
        ])

        report = run_report("user_segmentation", raw)
        rows = {r["user_type"]: r for r in report.iter_rows(named=True)}

        assert report["user_type"].to_list() == ["registered", "anonymous"]
        assert rows["anonymous"]["total_revenue"] == 10.0
        assert rows["anonymous"]["revenue_percentage"] == 25.0
        assert rows["registered"]["total_revenue"] == 30.0
        assert rows["registered"]["revenue_percentage"] == 75.0
        assert rows["registered"]["unique_registered_users"] == 1
        assert rows["anonymous"]["unique_registered_users"] == 0
        assert rows["registered"]["percent_unlabelled_revenue"] == 0.0

    def test_global_aov(self, make_raw):
        raw = make_raw([
            {"user_id": None, "price": 10.0},
            {"user_id": 42, "price": 30.0},
        ])

        overall = run_report("overall_metrics", raw)

        assert overall.row(0, named=True) == {
            "total_volume": 2,
            "total_revenue": 40.0,
            "global_aov": 20.0,
        }

    def test_unlabelled_revenue_share(self, make_raw):
        raw = make_raw([
            {"user_id": 1, "price": 30.0, "category_id": 1, "category_code": "a"},
            {"user_id": 2, "price": 10.0, "category_id": 2, "category_code": None},
        ])

        report = run_report("user_segmentation", raw)

        assert report["percent_unlabelled_revenue"][0] == 25.0

    def test_aov_rounds_half_up_on_exact_cents(self, make_raw):
        raw = make_raw([
            {"user_id": 1, "price": "0.01"},
            {"user_id": 1, "price": "0.06"},
        ])

        report = run_report("user_segmentation", raw)

        assert report["aov"].to_list() == [0.04]
        assert report["total_revenue"].to_list() == [0.07]


class TestTemporalReports:
    """Tests for time-based reports and collapsed-year exclusion"""

    def test_collapsed_year_excluded_from_temporal_reports(self, sample_raw_df):
        monthly = run_report("monthly_seasonality", sample_raw_df)
        hourly = run_report("hourly_peaks", sample_raw_df)
        weekday = run_report("weekday_rhythm", sample_raw_df)
        payday = run_report("payday", sample_raw_df)

        assert monthly["monthly_volume"].sum() == 5
        assert weekday["transaction_volume"].sum() == 5
        assert payday["day_volume"].sum() == 5
        assert hourly["transaction_volume"].sum() == 5
        assert 0 not in hourly["hour"].to_list()

    def test_collapsed_year_still_counts_elsewhere(self, sample_raw_df):
        segmentation = run_report("user_segmentation", sample_raw_df)
        categories = run_report("category_master", sample_raw_df)
        brands = run_report("brand_master", sample_raw_df)

        assert segmentation["transaction_volume"].sum() == 8
        assert categories["total_vol"].sum() == 8
        assert brands["total_vol"].sum() == 8

    def test_collapsed_year_excluded_from_portfolio_time_windows(self, sample_raw_df):
        portfolio = run_report("strategic_portfolio", sample_raw_df)
        windows = portfolio.filter(pl.col("dimension") == "Time Window")
        counts = dict(zip(windows["segment_name"], windows["transaction_count"]))

        assert windows["transaction_count"].sum() == 5
        assert counts["Night"] == 1

    def test_monthly_shares(self, make_raw):
        raw = make_raw([
            {"user_id": None, "event_time": "2020-01-05 10:00:00", "price": 10.0},
            {"user_id": 1, "event_time": "2020-01-06 10:00:00", "price": 30.0},
            {"user_id": 1, "event_time": "2020-02-06 10:00:00", "price": 60.0},
        ])

        report = run_report("monthly_seasonality", raw)
        january = report.filter(pl.col("month") == 1)

        assert report["monthly_volume_pct"].sum() == pytest.approx(100.0, abs=0.02)
        assert january["volume_within_month_pct"].to_list() == [50.0, 50.0]
        assert january["revenue_within_month_pct"].to_list() == [25.0, 75.0]
        assert report.filter(pl.col("month") == 2)["revenue_within_month_pct"].to_list() == [100.0]

    def test_weekday_order(self, make_raw):
        raw = make_raw([
            {"event_time": "2020-06-07 10:00:00"},
            {"event_time": "2020-06-03 10:00:00"},
            {"event_time": "2020-06-01 10:00:00"},
        ])

        report = run_report("weekday_rhythm", raw)

        assert report["weekday"].to_list() == ["Monday", "Wednesday", "Sunday"]

    def test_hourly_premium_window(self, make_raw):
        raw = make_raw([
            {"user_id": 1, "event_time": "2020-06-01 09:00:00", "price": 10.0},
            {"user_id": 1, "event_time": "2020-06-02 10:00:00", "price": 30.0},
        ])

        report = run_report("hourly_peaks", raw)
        rows = {r["hour"]: r for r in report.iter_rows(named=True)}

        assert rows[10]["is_premium_window"] is True
        assert rows[10]["efficiency_rating"] == "⭐ Premium Window"
        assert rows[9]["is_premium_window"] is False
        assert rows[9]["efficiency_rating"] == "Standard"
        assert rows[9]["hourly_volume_share"] == 50.0

    def test_equal_hourly_aov_is_not_premium(self, make_raw):
        raw = make_raw([
            {"user_id": 1, "event_time": "2020-06-01 09:00:00", "price": "0.10"},
            {"user_id": 1, "event_time": "2020-06-01 09:30:00", "price": "0.20"},
            {"user_id": 1, "event_time": "2020-06-02 10:00:00", "price": "0.15"},
            {"user_id": 1, "event_time": "2020-06-03 11:00:00", "price": "0.15"},
        ])

        report = run_report("hourly_peaks", raw)

        assert report["hourly_aov"].to_list() == [0.15, 0.15, 0.15]
        assert not report["is_premium_window"].any()


class TestCategoryAndBrandReports:
    """Tests for master and deep-dive reports"""

    def test_category_master_split(self, make_raw):
        raw = make_raw([
            {"user_id": None, "category_id": 1, "category_code": "a", "price": 10.0},
            {"user_id": 7, "category_id": 1, "category_code": "a", "price": 30.0},
            {"user_id": 8, "category_id": 2, "category_code": "b", "price": 60.0},
        ])

        report = run_report("category_master", raw)
        rows = {r["category_code"]: r for r in report.iter_rows(named=True)}

        assert report["category_code"].to_list() == ["b", "a"]
        assert rows["a"]["label_status"] == "Labelled"
        assert rows["a"]["anon_vol"] == 1
        assert rows["a"]["reg_vol"] == 1
        assert rows["a"]["total_vol"] == 2
        assert rows["a"]["anon_vol_share_pct"] == 100.0
        assert rows["a"]["reg_vol_share_pct"] == 50.0
        assert rows["a"]["total_vol_share_pct"] == 66.67
        assert rows["a"]["reg_rev_share_pct"] == 33.33
        assert rows["a"]["total_rev_share_pct"] == 40.0
        assert rows["b"]["anon_rev"] == 0.0
        assert rows["b"]["anon_aov"] is None
        assert rows["b"]["reg_aov"] == 60.0

    def test_brand_master_status(self, make_raw):
        raw = make_raw([
            {"product_id": 1, "brand": "acme", "price": 10.0},
            {"product_id": 2, "brand": None, "price": 5.0},
        ])

        report = run_report("brand_master", raw)
        statuses = dict(zip(report["brand"], report["brand_status"]))

        assert statuses == {"acme": "Known", "unknown (Prod: 2)": "Unknown"}

    def test_unlabelled_categories(self, make_raw):
        raw = make_raw([
            {"category_id": 99, "product_id": 1, "brand": "acme", "price": 10.0},
            {"category_id": 99, "product_id": 1, "brand": "acme", "price": 20.0},
            {"category_id": 99, "product_id": 2, "brand": "zeta", "price": 5.0},
            {"category_id": 98, "product_id": 3, "brand": "acme", "price": 50.0},
            {"category_id": 10, "category_code": "labelled", "product_id": 4, "brand": "acme", "price": 500.0},
        ])

        report = run_report("unlabelled_categories", raw)

        assert report["category_code"].to_list() == ["unlabelled (ID: 98)", "unlabelled (ID: 99)"]
        assert report["share_of_hidden_revenue"].to_list() == [58.82, 41.18]
        assert report["anchor_brand"].to_list() == ["acme", "acme"]
        assert report["category_aov"].to_list() == [50.0, 11.67]

    def test_unlabelled_categories_top_n(self, make_raw):
        raw = make_raw([
            {"category_id": 99, "price": 10.0},
            {"category_id": 98, "price": 50.0},
        ])

        report = run_report("unlabelled_categories", raw, PipelineSettings(unlabelled_top_n=1))

        assert report.height == 1
        assert report["share_of_hidden_revenue"][0] == 83.33

    def test_unknown_brands_category_hint(self, make_raw):
        raw = make_raw([
            {"product_id": 7, "category_id": 1, "category_code": "phones", "price": 20.0},
            {"product_id": 7, "category_id": 1, "category_code": "phones", "price": 20.0},
            {"product_id": 8, "category_id": 2, "category_code": "audio", "price": 10.0},
            {"product_id": 9, "brand": "acme", "price": 100.0},
        ])

        report = run_report("unknown_brands", raw)

        assert report["brand"].to_list() == ["unknown (Prod: 7)", "unknown (Prod: 8)"]
        assert report["category_hint"].to_list() == ["phones", "audio"]
        assert report["share_of_unknown_revenue"].to_list() == [80.0, 20.0]

    def test_label_mix(self, make_raw):
        raw = make_raw([
            {"user_id": None, "category_id": 1, "category_code": "a", "price": 30.0},
            {"user_id": None, "category_id": 2, "price": 10.0},
            {"user_id": 5, "category_id": 1, "category_code": "a", "price": 50.0},
        ])

        report = run_report("category_label_mix", raw)
        rows = {r["category_status"]: r for r in report.iter_rows(named=True)}

        assert rows["Labelled"]["anon_vol_share_pct"] == 50.0
        assert rows["Labelled"]["anon_rev_share_pct"] == 75.0
        assert rows["Unlabelled"]["anon_rev_share_pct"] == 25.0
        assert rows["Labelled"]["reg_vol_share_pct"] == 100.0


class TestStrategicPortfolio:
    """Tests for the unified portfolio"""

    @pytest.fixture
    def portfolio_raw(self, make_raw):
        rows = [{"category_id": 1, "category_code": "a", "product_id": 1,
                 "event_time": "2020-06-01 12:00:00", "price": 90.0}]
        rows += [
            {"category_id": 2, "category_code": "b", "product_id": 2,
             "event_time": f"2020-06-01 12:{i:02d}:00", "price": 1.0}
            for i in range(1, 10)
        ]
        return make_raw(rows)

    def test_quadrants_and_efficiency(self, portfolio_raw):
        report = run_report("strategic_portfolio", portfolio_raw)
        categories = {
            r["segment_name"]: r
            for r in report.filter(pl.col("dimension") == "Category").iter_rows(named=True)
        }

        assert categories["a"]["strategic_role"] == "STAR"
        assert categories["a"]["efficiency_index"] == 9.09
        assert categories["a"]["vol_share_pct"] == 10.0
        assert categories["b"]["strategic_role"] == "CASH_COW"
        assert categories["b"]["vol_share_pct"] == 90.0

    def test_whole_population_segment_is_balanced(self, portfolio_raw):
        report = run_report("strategic_portfolio", portfolio_raw)
        afternoon = report.filter(pl.col("segment_name") == "Afternoon").row(0, named=True)

        assert afternoon["efficiency_index"] == 1.0
        assert afternoon["strategic_role"] == "LONG_TAIL"

    def test_ordering(self, portfolio_raw):
        report = run_report("strategic_portfolio", portfolio_raw)

        assert report["dimension"].to_list() == ["Brand", "Brand", "Category", "Category", "Time Window"]
        assert report["segment_name"].to_list()[:2] == ["unknown (Prod: 1)", "unknown (Prod: 2)"]

    def test_revenue_threshold(self, portfolio_raw):
        report = run_report(
            "strategic_portfolio",
            portfolio_raw,
            PipelineSettings(revenue_share_threshold_pct=50.0),
        )

        assert report.filter(pl.col("dimension") == "Category")["segment_name"].to_list() == ["a"]

    def test_time_window_boundaries_configurable(self, portfolio_raw):
        settings = PipelineSettings(afternoon_hours=(13, 16))

        report = run_report("strategic_portfolio", portfolio_raw, settings)

        assert report.filter(pl.col("dimension") == "Time Window")["segment_name"].to_list() == ["Night"]

    def test_equal_shares_are_long_tail(self, make_raw):
        raw = make_raw([
            {"category_id": 1, "category_code": "a", "product_id": 1, "brand": "x",
             "event_time": "2020-06-01 12:01:00", "price": "0.10"},
            {"category_id": 1, "category_code": "a", "product_id": 1, "brand": "x",
             "event_time": "2020-06-01 12:02:00", "price": "0.20"},
            {"category_id": 2, "category_code": "b", "product_id": 2, "brand": "y",
             "event_time": "2020-06-01 12:03:00", "price": "0.15"},
            {"category_id": 2, "category_code": "b", "product_id": 2, "brand": "y",
             "event_time": "2020-06-01 12:04:00", "price": "0.15"},
        ])

        report = run_report("strategic_portfolio", raw)

        assert report.height == 5
        assert report["strategic_role"].to_list() == ["LONG_TAIL"] * 5
        assert report["efficiency_index"].to_list() == [1.0] * 5
        assert report["segment_aov"].to_list() == [0.15] * 5


class TestReportEngine:
    """Tests for the engine and exporter"""

    def test_run_selected(self, sample_raw_df):
        engine = ReportEngine(build_view(sample_raw_df))

        results = engine.run(["payday", "user_segmentation", "payday"])

        assert list(results) == ["payday", "user_segmentation"]
        assert all(isinstance(df, pl.DataFrame) for df in results.values())

    def test_run_all(self, sample_raw_df):
        results = ReportEngine(build_view(sample_raw_df)).run()

        assert set(results) == set(REPORTS)

    def test_unknown_report(self, sample_raw_df):
        engine = ReportEngine(build_view(sample_raw_df))

        with pytest.raises(UnknownReportError):
            engine.run(["user_segmentation", "does_not_exist"])

        with pytest.raises(KeyError):
            engine.build("does_not_exist")

    def test_reports_are_independent(self, sample_raw_df):
        engine = ReportEngine(build_view(sample_raw_df))

        alone = engine.run(["brand_master"])["brand_master"]
        together = engine.run()["brand_master"]

        assert alone.equals(together)

    def test_default_reports_in_export_order(self):
        assert DEFAULT_REPORTS[0] == "user_segmentation"
        assert DEFAULT_REPORTS[-1] == "strategic_portfolio"
        assert len(DEFAULT_REPORTS) == 10

    def test_export_filenames(self, sample_raw_df, tmp_path):
        results = ReportEngine(build_view(sample_raw_df)).run(["user_segmentation", "overall_metrics"])

        paths = ReportExporter().export(results, tmp_path / "reports")

        assert [p.name for p in paths] == ["01_user_segmentation_summary.csv", "overall_metrics.csv"]
        assert pl.read_csv(paths[0]).height == results["user_segmentation"].height
