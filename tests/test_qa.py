"""
Tests for acfl_abundance.qa module.

Tests cover:
- Record and summary integrity checks
- Expected-value checks (exact, tolerance, bounds, text)
- Aggregate runners raising on failure
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
import pandas as pd
import numpy as np

from acfl_abundance.aggregate import aggregate_occasions
from acfl_abundance.qa import (
    DataIntegrityError,
    ValidationAssertionError,
    assert_expected_values,
    check_constant_within,
    check_expected_value,
    check_non_negative_counts,
    check_row_count,
    check_totals_match,
    check_unique_keys,
    run_survey_qa_checks,
)


KEYS = ["TransectName", "Point", "Year", "DOY", "Habitat"]
DIST_COLS = ["dist25", "dist50"]
REM_COLS = ["per3", "per5", "per10"]


class TestRecordChecks:
    """Tests for record-level checks."""

    def test_counts_with_missing_pass(self, sample_records):
        result = check_non_negative_counts(sample_records)
        assert result
        assert result.details["missing"] == 1

    def test_fractional_counts_fail(self):
        df = pd.DataFrame({"Count": [1.0, 2.5, np.nan]})
        result = check_non_negative_counts(df)
        assert not result
        assert result.details["fractional"] == 1

    def test_text_counts_fail(self):
        df = pd.DataFrame({"Count": ["1", "two"]})
        assert not check_non_negative_counts(df)

    def test_habitat_constant_per_point(self, sample_records):
        assert check_constant_within(sample_records, ["TransectName", "Point"], "Habitat")

    def test_habitat_changing_fails(self, sample_records):
        df = sample_records.copy()
        df.loc[2, "Habitat"] = "Hardwood Plantation"
        result = check_constant_within(df, ["TransectName", "Point"], "Habitat")
        assert not result
        assert result.check_name == "constant_Habitat_per_TransectName_Point"


class TestSummaryChecks:
    """Tests for summary-level checks."""

    @pytest.fixture
    def summaries(self, sample_records):
        return aggregate_occasions(sample_records)

    def test_unique_keys(self, summaries):
        distance, _ = summaries
        assert check_unique_keys(distance, KEYS)
        doubled = pd.concat([distance, distance.iloc[[0]]], ignore_index=True)
        result = check_unique_keys(doubled, KEYS)
        assert not result
        assert result.details["duplicated"] == 2

    def test_totals_match(self, summaries):
        distance, removal = summaries
        result = check_totals_match(distance, removal, DIST_COLS, REM_COLS)
        assert result
        assert result.details["total_detections"] == 4

    def test_totals_mismatch(self, summaries):
        distance, removal = summaries
        removal = removal.copy()
        removal.loc[2, "per3"] = 1
        result = check_totals_match(distance, removal, DIST_COLS, REM_COLS)
        assert not result
        assert result.details["mismatched_rows"] == [2]

    def test_row_counts_differ(self, summaries):
        distance, removal = summaries
        assert not check_totals_match(distance, removal.iloc[:2], DIST_COLS, REM_COLS)

    def test_row_count(self, summaries):
        distance, _ = summaries
        assert check_row_count(distance, 3)
        assert not check_row_count(distance, 825)

    def test_runner_raises(self, summaries):
        distance, removal = summaries
        doubled = pd.concat([distance, distance.iloc[[0]]], ignore_index=True)
        removal = pd.concat([removal, removal.iloc[[0]]], ignore_index=True)
        with pytest.raises(DataIntegrityError, match="unique_occasions"):
            run_survey_qa_checks(doubled, removal, KEYS, DIST_COLS, REM_COLS)

    def test_runner_returns_results(self, summaries):
        distance, removal = summaries
        results = run_survey_qa_checks(distance, removal, KEYS, DIST_COLS, REM_COLS)
        assert len(results) == 3
        assert all(results)


class TestExpectedValues:
    """Tests for expected-value checks."""

    def test_exact_value(self):
        assert check_expected_value("n_points", 55, {"value": 55})
        assert not check_expected_value("n_points", 54, {"value": 55})

    def test_tolerance(self):
        assert check_expected_value("aic.habxyear", 1500.3, {"value": 1500.0, "tolerance": 0.5})
        assert not check_expected_value("aic.habxyear", 1500.6, {"value": 1500.0, "tolerance": 0.5})

    def test_text_value(self):
        assert check_expected_value("top_model", "habxyear", {"value": "habxyear"})
        assert not check_expected_value("top_model", "hab", {"value": "habxyear"})

    def test_bounds(self):
        assert check_expected_value("total_cites", 2500, {"minimum": 2000})
        assert not check_expected_value("power", 0.5, {"minimum": 0.7, "maximum": 1.0})

    def test_bounds_with_tolerance(self):
        """A Monte Carlo estimate may fall short of its bound by the tolerance."""
        expectation = {"minimum": 0.80, "tolerance": 0.09}
        assert not check_expected_value("power.lambda.Year", 0.72, {"minimum": 0.80})
        assert check_expected_value("power.lambda.Year", 0.72, expectation)
        assert not check_expected_value("power.lambda.Year", 0.70, expectation)
        assert check_expected_value("share", 1.05, {"maximum": 1.0, "tolerance": 0.1})

    def test_missing_value_fails(self):
        result = check_expected_value("aic.hab", None, {"value": 1.0})
        assert not result
        assert result.message == "No value computed"
        assert not check_expected_value("aic.hab", float("nan"), {"value": 1.0})

    def test_assert_all_pass(self):
        results = assert_expected_values({"a": 1, "b": 2.05}, {"a": {"value": 1},
                                                               "b": {"value": 2.0, "tolerance": 0.1}})
        assert len(results) == 2

    def test_assert_raises_on_deviation(self):
        with pytest.raises(ValidationAssertionError, match="1 of 2"):
            assert_expected_values({"a": 1, "b": 3.0}, {"a": {"value": 1},
                                                         "b": {"value": 2.0, "tolerance": 0.1}})

    def test_assert_raises_on_missing_statistic(self):
        with pytest.raises(ValidationAssertionError, match="expected_c"):
            assert_expected_values({"a": 1}, {"c": {"value": 1}})


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
