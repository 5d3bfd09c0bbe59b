"""
Tests for acfl_abundance.loader and acfl_abundance.aggregate.

Tests cover:
- Year-range expansion and filtering
- Loading and validating the raw survey file
- Pivoting records into distance and removal summaries
- Cross-checking distance and removal totals
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
import pandas as pd
import numpy as np

from acfl_abundance.aggregate import aggregate_occasions, summarize_counts, REMOVAL_BINS
from acfl_abundance.loader import (
    expand_year_ranges,
    filter_years,
    load_survey_records,
    prepare_site_covariates,
)
from acfl_abundance.qa import DataIntegrityError


class TestYearRanges:
    """Tests for year range handling."""

    def test_expand_inclusive_ranges(self):
        assert expand_year_ranges([[2005, 2007]]) == [2005, 2006, 2007]

    def test_reversed_range_and_union(self):
        """Ranges may be reversed and are merged without duplicates."""
        years = expand_year_ranges([[2005, 2006], [2019, 2017], [2006, 2006]])
        assert years == [2005, 2006, 2017, 2018, 2019]

    def test_bad_range_raises(self):
        with pytest.raises(ValueError, match="two bounds"):
            expand_year_ranges([[2005]])

    def test_filter_years(self, sample_records):
        kept = filter_years(sample_records, [2006])
        assert len(kept) == 2
        assert (kept["Year"] == 2006).all()
        assert list(kept.index) == [0, 1]


class TestLoadSurveyRecords:
    """Tests for load_survey_records()."""

    def test_loads_and_filters(self, sample_survey_csv):
        records = load_survey_records(sample_survey_csv, years=range(2005, 2016))
        assert len(records) == 5
        assert records["Year"].max() == 2006

    def test_all_years_when_unfiltered(self, sample_survey_csv):
        records = load_survey_records(sample_survey_csv)
        assert len(records) == 6

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_survey_records(tmp_path / "absent.csv")

    def test_negative_count_raises(self, tmp_path, sample_records):
        df = sample_records.copy()
        df.loc[0, "Count"] = -1
        path = tmp_path / "bad.csv"
        df.to_csv(path, index=False)

        with pytest.raises(DataIntegrityError, match="negative"):
            load_survey_records(path)


class TestSummarizeCounts:
    """Tests for the per-bin pivot."""

    def test_distance_summary(self, sample_records):
        summary = summarize_counts(sample_records, "DistanceBin", {"L25": "dist25", "G25": "dist50"})
        assert len(summary) == 3
        assert summary["dist25"].tolist() == [2, 1, 0]
        assert summary["dist50"].tolist() == [1, 0, 0]
        assert summary["dist25"].dtype == np.int64

    def test_removal_summary(self, sample_records):
        summary = summarize_counts(sample_records, "TimeBin", REMOVAL_BINS)
        assert summary["per3"].tolist() == [2, 0, 0]
        assert summary["per5"].tolist() == [0, 1, 0]
        assert summary["per10"].tolist() == [1, 0, 0]

    def test_first_appearance_order(self, sample_records):
        """Occasions keep the order in which they first appear."""
        summary = summarize_counts(sample_records, "TimeBin", REMOVAL_BINS)
        assert summary["Year"].tolist() == [2005, 2006, 2005]
        assert summary["Point"].tolist() == [1, 1, 2]

    def test_missing_columns_raise(self, sample_records):
        with pytest.raises(DataIntegrityError, match="missing columns"):
            summarize_counts(sample_records.drop(columns=["Count"]), "TimeBin", REMOVAL_BINS)


class TestAggregateOccasions:
    """Tests for aggregate_occasions()."""

    def test_summaries_aligned(self, sample_records):
        distance, removal = aggregate_occasions(sample_records)
        keys = ["TransectName", "Point", "Year", "DOY", "Habitat"]
        pd.testing.assert_frame_equal(distance[keys], removal[keys])

    def test_totals_match(self, sample_records):
        distance, removal = aggregate_occasions(sample_records)
        dist_total = distance[["dist25", "dist50"]].sum(axis=1)
        rem_total = removal[["per3", "per5", "per10"]].sum(axis=1)
        assert dist_total.tolist() == rem_total.tolist() == [3, 1, 0]

    def test_unknown_time_bin_breaks_totals(self, sample_records):
        """A bird counted by distance but not by time is an integrity error."""
        df = sample_records.copy()
        df.loc[1, "TimeBin"] = 7

        with pytest.raises(DataIntegrityError, match="totals disagree"):
            aggregate_occasions(df)

    def test_float_time_bins_match_by_value(self, sample_records):
        """A blank TimeBin cell reads the column as float; 3.0 still counts as period 3."""
        df = sample_records.assign(TimeBin=sample_records["TimeBin"].astype(float))
        _, removal = aggregate_occasions(df)
        assert removal["per3"].tolist() == [2, 0, 0]
        assert removal["per5"].tolist() == [0, 1, 0]
        assert removal["per10"].tolist() == [1, 0, 0]

    def test_text_time_bins_match_by_value(self, sample_records):
        df = sample_records.assign(TimeBin=sample_records["TimeBin"].astype(str))
        _, removal = aggregate_occasions(df)
        assert removal[["per3", "per5", "per10"]].sum(axis=1).tolist() == [3, 1, 0]


class TestSiteCovariates:
    """Tests for prepare_site_covariates()."""

    @pytest.fixture
    def summary(self, sample_records):
        distance, _ = aggregate_occasions(sample_records)
        return distance

    def test_habitat_levels_and_year_origin(self, summary):
        keys = ["TransectName", "Point", "Year", "DOY", "Habitat"]
        covs = prepare_site_covariates(summary, keys, ["River Levee", "Hardwood Plantation"])
        assert list(covs["Habitat"].cat.categories) == ["River Levee", "Hardwood Plantation"]
        assert covs["Year"].tolist() == [0, 1, 0]

    def test_explicit_year_origin(self, summary):
        covs = prepare_site_covariates(summary, ["Year", "Habitat"],
                                       ["River Levee", "Hardwood Plantation"], year_origin=2000)
        assert covs["Year"].tolist() == [5, 6, 5]

    def test_undeclared_habitat_raises(self, summary):
        with pytest.raises(DataIntegrityError, match="Undeclared habitat"):
            prepare_site_covariates(summary, ["Year", "Habitat"], ["River Levee"])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
