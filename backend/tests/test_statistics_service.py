import math

import pytest

from application import statistics_service as stats
from domain.historian import QualityCode, Severity, SpecificationLimits


class TestDescriptiveStatistics:
    def test_basic_statistics(self, series):
        result = stats.calculate_statistics(series([10, 20, 30, 40, 50]))
        assert result.min == 10
        assert result.max == 50
        assert result.average == 30
        assert result.count == 5
        assert result.standard_deviation == pytest.approx(math.sqrt(200))
        assert result.data_quality == 100

    def test_ignores_non_finite_values_but_counts_quality_over_all_points(self, series):
        points = series(
            [1.0, float("nan"), 3.0, float("inf")],
            qualities=[QualityCode.GOOD, QualityCode.BAD, QualityCode.GOOD, QualityCode.UNCERTAIN],
        )
        result = stats.calculate_statistics(points)
        assert result.count == 2
        assert result.average == 2.0
        assert result.data_quality == 50

    def test_empty_input_raises(self):
        with pytest.raises(ValueError, match="No data points provided"):
            stats.calculate_statistics([])

    def test_no_valid_values_raises(self, series):
        with pytest.raises(ValueError, match="No valid numeric values found"):
            stats.calculate_statistics(series([float("nan"), float("nan")]))


class TestTrendLine:
    def test_perfect_linear_trend(self, series):
        trend = stats.calculate_trend_line(series([1, 3, 5, 7, 9]))
        assert trend.slope == pytest.approx(2.0)
        assert trend.intercept == pytest.approx(1.0)
        assert trend.correlation == pytest.approx(1.0)
        assert trend.confidence == pytest.approx(1.0)
        assert trend.equation == "y = 2.0000x + 1.0000"

    def test_negative_intercept_in_equation(self, series):
        trend = stats.calculate_trend_line(series([-5, -3, -1]))
        assert trend.equation == "y = 2.0000x - 5.0000"

    def test_flat_series_has_zero_correlation(self, series):
        trend = stats.calculate_trend_line(series([4, 4, 4, 4]))
        assert trend.slope == 0
        assert trend.correlation == 0

    def test_requires_two_points(self, series):
        with pytest.raises(ValueError, match="At least 2 data points required for trend analysis"):
            stats.calculate_trend_line(series([1]))

    def test_non_finite_values_are_dropped_and_reindexed(self, series):
        trend = stats.calculate_trend_line(series([1, 2, float("nan"), 4, 5]))
        assert trend.slope == pytest.approx(1.4)
        assert trend.intercept == pytest.approx(0.9)
        assert trend.equation == "y = 1.4000x + 0.9000"

    def test_requires_two_valid_points(self, series):
        with pytest.raises(ValueError, match="At least 2 valid data points required for trend analysis"):
            stats.calculate_trend_line(series([1, float("nan"), float("inf")]))


class TestAdvancedTrendLine:
    def test_uses_elapsed_seconds(self, series):
        # one point every 10 s, rising 1 per point
        trend = stats.calculate_advanced_trend_line(series([0, 1, 2, 3], step_seconds=10))
        assert trend.slope == 0.1
        assert trend.intercept == 0.0
        assert trend.r_squared == 1.0
        assert trend.equation == "y = 0.10x + 0.00"

    def test_horizontal_line_has_perfect_fit(self, series):
        trend = stats.calculate_advanced_trend_line(series([5, 5, 5, 5]))
        assert trend.slope == 0
        assert trend.r_squared == 1.0

    def test_insufficient_points(self, series):
        with pytest.raises(ValueError, match="Insufficient data for trend calculation"):
            stats.calculate_advanced_trend_line(series([1, 2]))

    def test_insufficient_valid_points(self, series):
        with pytest.raises(ValueError, match="Insufficient valid data for trend calculation"):
            stats.calculate_advanced_trend_line(series([1, float("nan"), float("nan"), 2]))

    @pytest.mark.parametrize(
        "slope,intercept,expected",
        [
            (0.001, -0.002, "y = 0.00x - 0.00"),
            (-3.2, 8.5, "y = -3.20x + 8.50"),
            (1.5, 0, "y = 1.50x + 0.00"),
        ],
    )
    def test_format_trend_equation(self, slope, intercept, expected):
        assert stats.format_trend_equation(slope, intercept) == expected


class TestSeriesTransforms:
    def test_moving_average(self, series):
        points = series([1, 2, 3, 4, 5])
        result = stats.calculate_moving_average(points, 3)
        assert [p.value for p in result] == [2, 3, 4]
        assert result[0].timestamp == points[2].timestamp

    def test_moving_average_uses_finite_values_per_window(self, series):
        points = series([1, float("nan"), 3, 5])
        assert [p.value for p in stats.calculate_moving_average(points, 2)] == [1, 3, 4]

    def test_moving_average_skips_windows_without_values(self, series):
        points = series([float("nan"), float("nan"), 2])
        result = stats.calculate_moving_average(points, 2)
        assert [p.value for p in result] == [2]
        assert result[0].timestamp == points[2].timestamp

    @pytest.mark.parametrize("window", [0, 6])
    def test_moving_average_rejects_bad_window(self, series, window):
        with pytest.raises(ValueError):
            stats.calculate_moving_average(series([1, 2, 3, 4, 5]), window)

    def test_percentage_change(self, series):
        assert stats.calculate_percentage_change(series([100, 120, 150])) == pytest.approx(50.0)

    def test_percentage_change_from_zero(self, series):
        with pytest.raises(ValueError, match="zero"):
            stats.calculate_percentage_change(series([0, 10]))


class TestAnomalies:
    def test_z_score_detects_spike(self, series):
        values = [10.0] * 19 + [100.0]
        anomalies = stats.detect_anomalies(series(values), threshold=2.0)
        assert len(anomalies) == 1
        assert anomalies[0].value == 100.0
        assert anomalies[0].severity == Severity.HIGH
        assert anomalies[0].description.startswith("Value deviates ")
        assert anomalies[0].description.endswith(" standard deviations from mean")

    def test_z_score_needs_three_points_and_spread(self, series):
        assert stats.detect_anomalies(series([1, 100])) == []
        assert stats.detect_anomalies(series([5, 5, 5, 5])) == []

    def test_iqr_detects_outlier(self, series):
        anomalies = stats.detect_anomalies_iqr(series([10, 11, 12, 11, 10, 12, 11, 50]))
        assert [a.value for a in anomalies] == [50]

    def test_iqr_expected_value_is_breached_bound(self, series):
        anomalies = stats.detect_anomalies_iqr(series([10, 10, 11, 11, 12, 12, 13, 13, 14, 20]))
        assert len(anomalies) == 1
        outlier = anomalies[0]
        assert outlier.expected_value == 16.0
        assert outlier.deviation == pytest.approx(2.0)
        assert outlier.severity == Severity.LOW
        assert outlier.description == "IQR outlier: value above expected range [8.00, 16.00]"

    @pytest.mark.parametrize(
        "outlier,severity",
        [
            (20.6, Severity.MEDIUM),
            (22, Severity.MEDIUM),
            (23, Severity.HIGH),
        ],
    )
    def test_iqr_severity_scales_with_multiplier(self, series, outlier, severity):
        anomalies = stats.detect_anomalies_iqr(series([10, 10, 11, 11, 12, 12, 13, 13, 14, outlier]))
        assert [a.severity for a in anomalies] == [severity]

    def test_iqr_below_lower_bound(self, series):
        anomalies = stats.detect_anomalies_iqr(series([2, 10, 11, 11, 12, 12, 13, 13, 14, 15]))
        assert len(anomalies) == 1
        assert anomalies[0].expected_value == 8.0
        assert anomalies[0].severity == Severity.MEDIUM
        assert "below expected range" in anomalies[0].description

    def test_iqr_custom_multiplier(self, series):
        anomalies = stats.detect_anomalies_iqr(series([10, 10, 11, 11, 12, 12, 13, 13, 14, 20]), multiplier=1.0)
        assert anomalies[0].expected_value == 15.0
        assert anomalies[0].severity == Severity.HIGH

    def test_iqr_needs_four_values(self, series):
        assert stats.detect_anomalies_iqr(series([1, 2, 100])) == []

    def test_combined_anomalies_are_deduplicated(self, series):
        values = [10.0] * 19 + [100.0]
        combined = stats.detect_all_anomalies(series(values))
        assert len(combined) == 1
        assert combined[0].severity == Severity.HIGH


class TestDataQuality:
    def test_counts_and_gaps(self, series):
        points = series(
            [1, 2, 3, 4, 5],
            qualities=[QualityCode.GOOD, QualityCode.GOOD, QualityCode.UNCERTAIN, QualityCode.BAD, 28],
        )
        # stretch the last interval to create one gap
        points[-1].timestamp = points[-2].timestamp.replace(minute=points[-2].timestamp.minute + 10)
        report = stats.calculate_data_quality(points)
        assert report.total_points == 5
        assert report.good_points == 2
        assert report.uncertain_points == 1
        assert report.bad_points == 2
        assert report.quality_percentage == 40
        assert report.missing_data_gaps == 1


class TestSpc:
    def test_sample_standard_deviation_and_limits(self, series):
        metrics = stats.calculate_spc_metrics(series([10, 20, 30, 40, 50]))
        assert metrics.mean == 30
        assert metrics.std_dev == 15.81
        assert metrics.ucl == 77.43
        assert metrics.lcl == -17.43
        assert metrics.cp is None and metrics.cpk is None
        assert metrics.out_of_control_points == []

    def test_capability_indices(self, series):
        metrics = stats.calculate_spc_metrics(series([10, 20, 30, 40, 50]),
                                              SpecificationLimits(lsl=0, usl=100))
        assert metrics.cp == pytest.approx(1.054, abs=1e-3)
        assert metrics.cpk == pytest.approx(0.632, abs=1e-3)

    def test_zero_sigma_inside_limits_is_infinite(self, series):
        metrics = stats.calculate_spc_metrics(series([5, 5, 5]), SpecificationLimits(lsl=0, usl=10))
        assert metrics.cp == math.inf and metrics.cpk == math.inf

    def test_zero_sigma_outside_limits_is_zero(self, series):
        metrics = stats.calculate_spc_metrics(series([50, 50]), SpecificationLimits(lsl=0, usl=10))
        assert metrics.cp == 0 and metrics.cpk == 0

    def test_out_of_control_indices_skip_non_finite(self, series):
        values = [10.0] * 30 + [float("nan"), 1000.0]
        metrics = stats.calculate_spc_metrics(series(values))
        assert metrics.out_of_control_points == [31]

    def test_invalid_limits(self, series):
        with pytest.raises(ValueError, match="Invalid specification limits"):
            stats.calculate_spc_metrics(series([1, 2, 3]), SpecificationLimits(lsl=10, usl=5))

    def test_requires_two_points(self, series):
        with pytest.raises(ValueError, match="At least 2 data points required"):
            stats.calculate_spc_metrics(series([1, float("nan")]))

    @pytest.mark.parametrize(
        "cp,cpk,expected",
        [
            (None, 1.5, "N/A"),
            (1.5, None, "N/A"),
            (2.0, 1.33, "Capable"),
            (1.2, 1.0, "Marginal"),
            (0.9, 0.5, "Not Capable"),
        ],
    )
    def test_assess_capability(self, cp, cpk, expected):
        assert stats.assess_capability(cp, cpk) == expected


class TestSpecificationLimits:
    def test_valid_limits(self):
        assert stats.validate_specification_limits("T1", SpecificationLimits(lsl=1, usl=2)) == []

    def test_usl_must_exceed_lsl(self):
        errors = stats.validate_specification_limits("T1", SpecificationLimits(lsl=5, usl=5))
        assert len(errors) == 1
        assert errors[0].startswith('Tag "T1": Upper Specification Limit (USL) must be greater')
        assert "USL=5, LSL=5" in errors[0]

    def test_non_finite_limits(self):
        errors = stats.validate_specification_limits("T1", SpecificationLimits(lsl=float("nan"), usl=2))
        assert errors == ['Tag "T1": Lower Specification Limit (LSL) must be a finite number']

    def test_map_and_helpers(self):
        limits = {"A": SpecificationLimits(lsl=0, usl=1), "B": SpecificationLimits(lsl=3, usl=1)}
        assert len(stats.validate_specification_limits_map(limits)) == 1
        assert stats.has_complete_limits(limits["A"])
        assert not stats.has_complete_limits(SpecificationLimits(usl=1))
        assert stats.can_calculate_capability(limits["A"])
        assert not stats.can_calculate_capability(limits["B"])
