"""
Aggregation of per-observation records into occasion summaries.

Each raw record is one (occasion, distance bin, time bin) cell. The
distance summary pivots counts by distance bin and the removal summary by
time bin. Both hold one row per survey occasion, in order of first
appearance, and must agree on every occasion's total.
"""

import logging
from typing import Mapping, Sequence

import pandas as pd

from acfl_abundance.logging_utils import log_step_start, log_step_end
from acfl_abundance.qa import DataIntegrityError, check_totals_match


OCCASION_KEYS = ["TransectName", "Point", "Year", "DOY", "Habitat"]

DISTANCE_BINS = {"L25": "dist25", "G25": "dist50"}

REMOVAL_BINS = {3: "per3", 5: "per5", 10: "per10"}


def _label_values(labels: pd.Series) -> pd.Series:
    """Bin labels as comparable values: numbers by value (3 == 3.0 == "3"), others as text."""
    numeric = pd.to_numeric(labels, errors="coerce")
    return numeric.astype(object).where(numeric.notna(), labels.astype(str))


def summarize_counts(
    records: pd.DataFrame,
    label_column: str,
    bins: Mapping[object, str],
    keys: Sequence[str] = OCCASION_KEYS,
) -> pd.DataFrame:
    """
    Pivot counts by a bin label into one column per bin.

    Args:
        records: Raw records with a Count column.
        label_column: Column holding the bin label (DistanceBin or TimeBin).
        bins: Mapping of label -> output column name, in column order.
        keys: Occasion key columns.

    Returns:
        One row per unique key tuple (first-appearance order) with an
        integer count column per bin. Missing cells count as zero; records
        whose label is not in ``bins`` are not counted.
    """
    missing = [c for c in list(keys) + [label_column, "Count"] if c not in records.columns]
    if missing:
        raise DataIntegrityError(f"Records are missing columns: {missing}")

    labels = _label_values(records[label_column])
    counts = pd.to_numeric(records["Count"], errors="coerce").fillna(0)

    wide = records[list(keys)].copy()
    for label, column in bins.items():
        wide[column] = counts.where(labels == _label_values(pd.Series([label]))[0], 0)

    summary = (
        wide.groupby(list(keys), sort=False, dropna=False)[list(bins.values())]
        .sum()
        .reset_index()
    )
    for column in bins.values():
        summary[column] = summary[column].round().astype("int64")

    return summary


def aggregate_occasions(
    records: pd.DataFrame,
    keys: Sequence[str] = OCCASION_KEYS,
    distance_bins: Mapping[object, str] = DISTANCE_BINS,
    removal_bins: Mapping[object, str] = REMOVAL_BINS,
    logger: logging.Logger | None = None,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Build the distance and removal summaries and cross-check their totals.

    Returns:
        (distance_summary, removal_summary), row-aligned by occasion.

    Raises:
        DataIntegrityError: If any occasion's distance total differs from
            its removal total.
    """
    if logger:
        log_step_start(logger, "aggregate_occasions", n_records=len(records))

    distance_summary = summarize_counts(records, "DistanceBin", distance_bins, keys)
    removal_summary = summarize_counts(records, "TimeBin", removal_bins, keys)

    totals = check_totals_match(
        distance_summary, removal_summary,
        list(distance_bins.values()), list(removal_bins.values()),
        logger,
    )
    if not totals:
        raise DataIntegrityError(
            f"Distance and removal totals disagree: {totals.message} {totals.details}"
        )

    if logger:
        logger.info(f"Aggregated {len(records):,} records into {len(distance_summary)} occasions")
        log_step_end(logger, "aggregate_occasions", n_occasions=len(distance_summary))

    return distance_summary, removal_summary
