"""
Survey record loading.

Reads the raw point-count table, validates its schema and counts, and keeps
only the years with complete sampling.
"""

import logging
from pathlib import Path
from typing import Iterable, Sequence

import pandas as pd

from acfl_abundance.logging_utils import log_step_start, log_step_end
from acfl_abundance.qa import DataIntegrityError, check_non_negative_counts
from acfl_abundance.schemas import validate_schema


def expand_year_ranges(year_ranges: Iterable[Sequence[int]]) -> list[int]:
    """
    Expand inclusive [start, end] ranges into a sorted list of years.

    Ranges may be given in either order, e.g. [2022, 2019].
    """
    years = set()
    for bounds in year_ranges:
        if len(bounds) != 2:
            raise ValueError(f"Year range must have two bounds, got {list(bounds)}")
        lo, hi = sorted(int(b) for b in bounds)
        years.update(range(lo, hi + 1))
    return sorted(years)


def filter_years(records: pd.DataFrame, years: Iterable[int]) -> pd.DataFrame:
    """Keep records whose Year is in the given set."""
    keep = records["Year"].isin(list(years))
    return records.loc[keep].reset_index(drop=True)


def load_survey_records(
    file_path: Path | str,
    years: Iterable[int] | None = None,
    logger: logging.Logger | None = None,
) -> pd.DataFrame:
    """
    Load and validate the raw survey records.

    Args:
        file_path: Delimited text file with one row per occasion/bin.
        years: Years to keep; all years when None.
        logger: Optional logger.

    Returns:
        Validated records, filtered to the requested years.

    Raises:
        FileNotFoundError: If the file does not exist.
        SchemaValidationError: If required columns are missing or mistyped.
        DataIntegrityError: If counts are negative or non-integer.
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Survey file not found: {file_path}")

    if logger:
        log_step_start(logger, "load_survey_records", file=str(file_path))

    records = pd.read_csv(file_path, sep=None, engine="python")
    validate_schema(records, "survey_records")

    counts = check_non_negative_counts(records, "Count", logger)
    if not counts:
        raise DataIntegrityError(counts.message)

    n_raw = len(records)
    if years is not None:
        records = filter_years(records, years)

    if logger:
        logger.info(f"Loaded {n_raw:,} records, kept {len(records):,} after year filter")
        log_step_end(logger, "load_survey_records", n_raw=n_raw, n_kept=len(records))

    return records


def prepare_site_covariates(
    summary: pd.DataFrame,
    key_columns: Sequence[str],
    habitat_levels: Sequence[str],
    year_origin: int | None = None,
) -> pd.DataFrame:
    """
    Build the site covariate table from an occasion summary.

    Habitat becomes a categorical with the given level order (the first
    level is the reference), and Year is re-expressed as years since
    ``year_origin`` (default: the first surveyed year).

    Raises:
        DataIntegrityError: If a habitat value is not a declared level.
    """
    covs = summary[list(key_columns)].copy()

    unknown = sorted(set(covs["Habitat"].dropna().unique()) - set(habitat_levels))
    if unknown:
        raise DataIntegrityError(f"Undeclared habitat values: {unknown}")
    covs["Habitat"] = pd.Categorical(covs["Habitat"], categories=list(habitat_levels))

    origin = int(covs["Year"].min()) if year_origin is None else int(year_origin)
    covs["Year"] = covs["Year"].astype(int) - origin

    return covs.reset_index(drop=True)
