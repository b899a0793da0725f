"""
Tests for TrendAnalyzer and the regression helpers.
"""

from datetime import date
from decimal import Decimal

import pytest

from program_kernel.domain.records import PerformanceTrend
from program_engines.trending import (
    RiskLevel,
    TrendAnalyzer,
    linear_regression,
    moving_average,
)


def _d(*values: str) -> list[Decimal]:
    return [Decimal(v) for v in values]


@pytest.fixture
def analyzer():
    return TrendAnalyzer()


@pytest.fixture
def series(make_snapshot):
    """Build a monthly snapshot series from parallel value lists."""

    def _series(cpis, spis=None, health=None):
        spis = spis or ["1"] * len(cpis)
        health = health or [None] * len(cpis)
        return [
            make_snapshot(
                f"SNAP-{i + 1:03d}", date(2023, i + 1, 28),
                cpi=cpi, spi=spi, health_score=score,
            )
            for i, (cpi, spi, score) in enumerate(zip(cpis, spis, health))
        ]

    return _series


class TestLinearRegression:

    def test_perfect_fit(self):
        fit = linear_regression(_d("1", "2", "3"))
        assert fit.slope == Decimal("1.0000")
        assert fit.intercept == Decimal("1.0000")
        assert fit.r_squared == Decimal("1.0000")

    def test_constant_values_have_zero_r_squared(self):
        fit = linear_regression(_d("5", "5", "5"))
        assert fit.slope == 0
        assert fit.intercept == Decimal("5.0000")
        assert fit.r_squared == 0

    def test_single_value(self):
        fit = linear_regression(_d("0.93"))
        assert (fit.slope, fit.intercept, fit.r_squared) == (0, Decimal("0.9300"), 0)

    def test_empty(self):
        fit = linear_regression([])
        assert (fit.slope, fit.intercept, fit.r_squared) == (0, 0, 0)


class TestMovingAverage:

    def test_trailing_window(self):
        assert moving_average(_d("1", "2", "3", "4"), window=2) == _d("1", "1.5", "2.5", "3.5")

    def test_default_window_of_three(self):
        assert moving_average(_d("3", "6", "9", "12")) == _d("3", "4.5", "6", "9")

    def test_empty(self):
        assert moving_average([]) == []


class TestIndexTrend:

    def test_improving_cpi(self, analyzer, series):
        trend = analyzer.analyze_index_trend(series(["0.9", "0.95", "1.0"]), "cpi")
        assert trend.trend == PerformanceTrend.IMPROVING
        assert trend.slope == Decimal("0.0500")
        assert trend.current == Decimal("1.0000")
        assert trend.minimum == Decimal("0.9000")
        assert trend.maximum == Decimal("1.0000")
        assert trend.average == Decimal("0.9500")
        assert trend.volatility == Decimal("0.0408")

    def test_small_slope_is_stable(self, analyzer, series):
        trend = analyzer.analyze_index_trend(series(["1.00", "1.005", "1.01"]), "cpi")
        assert trend.trend == PerformanceTrend.STABLE

    def test_declining_spi(self, analyzer, series):
        trend = analyzer.analyze_index_trend(
            series(["1", "1", "1"], spis=["1.0", "0.9", "0.8"]), "spi",
        )
        assert trend.trend == PerformanceTrend.DECLINING

    def test_empty_history(self, analyzer):
        trend = analyzer.analyze_index_trend([], "cpi")
        assert trend.trend == PerformanceTrend.STABLE
        assert trend.current == 0

    def test_unknown_index(self, analyzer, series):
        with pytest.raises(ValueError, match="Unsupported index"):
            analyzer.analyze_index_trend(series(["1"]), "tcpi")


class TestAnomalies:

    def test_single_outlier(self, analyzer, series):
        snapshots = series(["1"] * 9 + ["2"])
        anomalies = analyzer.detect_anomalies(snapshots, "cpi")
        assert len(anomalies) == 1
        anomaly = anomalies[0]
        assert anomaly.snapshot_id == "SNAP-010"
        assert anomaly.z_score == Decimal("3.00")
        assert anomaly.deviation == "high"
        assert anomaly.severity == "medium"

    def test_lower_threshold_flags_more(self, analyzer, series):
        snapshots = series(["1"] * 9 + ["2"])
        assert analyzer.detect_anomalies(snapshots, "cpi", threshold=Decimal("0.3")) != []
        assert len(analyzer.detect_anomalies(snapshots, "cpi", threshold=Decimal("0.3"))) == 10

    def test_too_few_snapshots(self, analyzer, series):
        assert analyzer.detect_anomalies(series(["1", "5"]), "cpi") == []

    def test_constant_values(self, analyzer, series):
        assert analyzer.detect_anomalies(series(["1"] * 5), "cpi") == []

    def test_variance_metric(self, analyzer, make_snapshot):
        snapshots = [
            make_snapshot(f"SNAP-{i:03d}", date(2023, i, 28), cv="0")
            for i in range(1, 10)
        ]
        snapshots.append(make_snapshot("SNAP-010", date(2023, 10, 28), cv="-900"))
        anomalies = analyzer.detect_anomalies(snapshots, "cv")
        assert [a.deviation for a in anomalies] == ["low"]

    def test_unknown_metric(self, analyzer, series):
        with pytest.raises(ValueError, match="Unsupported metric"):
            analyzer.detect_anomalies(series(["1", "1", "1"]), "eac")


class TestPerformanceAnalysis:

    def test_declining_program(self, analyzer, series):
        analysis = analyzer.analyze_performance(series(
            ["1.0", "0.9", "0.8"], spis=["1.0", "0.9", "0.8"], health=[90, 60, 30],
        ))
        assert analysis.overall_trend == PerformanceTrend.DECLINING
        assert analysis.risk_level == RiskLevel.HIGH
        assert analysis.health_slope == Decimal("-30.0000")
        assert analysis.health_forecast_3_months == 0
        assert analysis.recommendations == (
            "Cost performance is declining. Review budget allocation and cost controls.",
            "Critical: CPI below 0.9 indicates significant cost overruns. "
            "Immediate corrective action required.",
            "Schedule performance is declining. Review project timeline and resource allocation.",
            "Critical: SPI below 0.9 indicates significant schedule delays. "
            "Re-baseline may be necessary.",
            "Health score forecast indicates deteriorating conditions. "
            "Proactive intervention recommended.",
        )

    def test_stable_program(self, analyzer, series):
        analysis = analyzer.analyze_performance(series(["1", "1", "1"], health=[100, 100, 100]))
        assert analysis.overall_trend == PerformanceTrend.STABLE
        assert analysis.risk_level == RiskLevel.LOW
        assert analysis.health_forecast_3_months == 100
        assert analysis.recommendations == (
            "Performance is stable. Maintain current tracking and control processes.",
        )

    def test_improving_program(self, analyzer, series):
        analysis = analyzer.analyze_performance(series(["0.9", "1.0", "1.1"], health=[80, 80, 80]))
        assert analysis.overall_trend == PerformanceTrend.IMPROVING
        assert analysis.risk_level == RiskLevel.LOW
        assert analysis.recommendations == (
            "Performance is improving. Continue current management practices "
            "and monitor for sustainability.",
        )

    def test_watch_band_is_medium_risk(self, analyzer, series):
        analysis = analyzer.analyze_performance(series(["0.92", "0.92", "0.92"], health=[80, 80, 80]))
        assert analysis.risk_level == RiskLevel.MEDIUM

    def test_high_volatility_recommendation(self, analyzer, series):
        analysis = analyzer.analyze_performance(
            series(["0.6", "1.4", "0.6", "1.4"], health=[80, 80, 80, 80]),
        )
        assert any("High performance volatility" in r for r in analysis.recommendations)
        assert analysis.risk_level == RiskLevel.MEDIUM

    def test_missing_health_scores_use_default(self, analyzer, series):
        analysis = analyzer.analyze_performance(series(["1", "1", "1"]), default_health_score=50)
        assert analysis.health_forecast_3_months == 50
        assert any("deteriorating" in r for r in analysis.recommendations)


class TestBaselineComparison:

    def test_decline_since_baseline(self, analyzer, make_snapshot):
        baseline = make_snapshot("SNAP-001", date(2023, 1, 31), cpi="1", spi="1")
        current = make_snapshot(
            "SNAP-012", date(2023, 12, 31), cpi="0.92", spi="0.9", cv="-80", sv="-100",
        )
        comparison = analyzer.compare_to_baseline(baseline, current)
        assert comparison.cpi_change == Decimal("-0.0800")
        assert comparison.spi_change == Decimal("-0.1000")
        assert comparison.cost_variance_change == Decimal("-80.00")
        assert comparison.schedule_variance_change == Decimal("-100.00")
        assert comparison.days_variance == 37
        assert comparison.summary == (
            "Cost performance has declined significantly. "
            "Schedule performance has declined significantly. "
            "Estimated schedule variance of 37 days behind of baseline."
        )

    def test_improvement_since_baseline(self, analyzer, make_snapshot):
        baseline = make_snapshot("SNAP-001", date(2023, 1, 31), cpi="0.9", spi="0.8")
        current = make_snapshot("SNAP-012", date(2023, 12, 31), cpi="1.0", spi="1.0")
        comparison = analyzer.compare_to_baseline(baseline, current)
        assert comparison.days_variance == -73
        assert comparison.summary == (
            "Cost performance has improved significantly. "
            "Schedule performance has improved significantly. "
            "Estimated schedule variance of 73 days ahead of baseline."
        )

    def test_close_to_baseline(self, analyzer, make_snapshot):
        baseline = make_snapshot("SNAP-001", date(2023, 1, 31))
        current = make_snapshot("SNAP-012", date(2023, 12, 31), cpi="0.98", spi="0.97")
        comparison = analyzer.compare_to_baseline(baseline, current)
        assert comparison.days_variance == 11
        assert comparison.summary == (
            "Cost performance is relatively stable. "
            "Schedule performance is relatively stable. "
            "Schedule is tracking close to baseline."
        )
