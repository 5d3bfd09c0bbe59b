"""
Quality assurance checks for survey data and reported statistics.

This module provides:
- Data-integrity checks on raw records and aggregated summaries
- Expected-value assertions on reported statistics (AIC values,
  coefficients, predictions, power, citation counts)

Every check returns a QAResult and, when a logger is given, logs it as a
qa_check event. Aggregate runners raise on failure: a run that would
publish divergent numbers must stop.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Sequence

import pandas as pd

from acfl_abundance.logging_utils import log_qa_check


class DataIntegrityError(Exception):
    """Raised when survey records or summaries violate a data invariant."""
    pass


class ValidationAssertionError(Exception):
    """Raised when a reported statistic deviates from its recorded value."""
    pass


@dataclass
class QAResult:
    """Result of a QA check."""
    check_name: str
    passed: bool
    message: str
    details: dict[str, Any] | None = None

    def __bool__(self) -> bool:
        return self.passed


def _log(result: QAResult, logger: logging.Logger | None) -> QAResult:
    if logger:
        log_qa_check(logger, result.check_name, result.passed, result.message,
                     **(result.details or {}))
    return result


# =============================================================================
# Record-level checks
# =============================================================================

def check_non_negative_counts(
    df: pd.DataFrame,
    column: str = "Count",
    logger: logging.Logger | None = None,
) -> QAResult:
    """
    Check that a count column holds non-negative integers (missing allowed).
    """
    check_name = "non_negative_counts"
    values = pd.to_numeric(df[column], errors="coerce")
    bad_type = df[column].notna() & values.isna()
    present = values.dropna()
    negative = int((present < 0).sum())
    fractional = int((present % 1 != 0).sum())

    if bad_type.any() or negative or fractional:
        result = QAResult(
            check_name=check_name,
            passed=False,
            message=(f"{int(bad_type.sum())} non-numeric, {negative} negative and "
                     f"{fractional} fractional values in '{column}'"),
            details={"column": column, "negative": negative, "fractional": fractional},
        )
    else:
        result = QAResult(
            check_name=check_name,
            passed=True,
            message=f"All {len(present)} non-missing counts are non-negative integers",
            details={"column": column, "missing": int(values.isna().sum())},
        )

    return _log(result, logger)


def check_constant_within(
    df: pd.DataFrame,
    group_columns: Sequence[str],
    value_column: str,
    logger: logging.Logger | None = None,
) -> QAResult:
    """
    Check that a column takes a single value within each group.

    Used to confirm Habitat is a site-level covariate (constant per point
    across years).
    """
    check_name = f"constant_{value_column}_per_{'_'.join(group_columns)}"
    n_values = df.groupby(list(group_columns), sort=False)[value_column].nunique()
    varying = n_values[n_values > 1]

    if len(varying) == 0:
        result = QAResult(
            check_name=check_name,
            passed=True,
            message=f"'{value_column}' is constant within all {len(n_values)} groups",
            details={"groups": len(n_values)},
        )
    else:
        result = QAResult(
            check_name=check_name,
            passed=False,
            message=f"'{value_column}' varies within {len(varying)} groups",
            details={"sample_groups": [str(k) for k in varying.index[:5]]},
        )

    return _log(result, logger)


def check_unique_keys(
    df: pd.DataFrame,
    key_columns: Sequence[str],
    logger: logging.Logger | None = None,
) -> QAResult:
    """Check that key tuples identify rows uniquely."""
    check_name = "unique_occasions"
    duplicated = df.duplicated(subset=list(key_columns), keep=False)

    if not duplicated.any():
        result = QAResult(
            check_name=check_name,
            passed=True,
            message=f"All {len(df)} key tuples are unique",
            details={"total": len(df)},
        )
    else:
        result = QAResult(
            check_name=check_name,
            passed=False,
            message=f"Found {int(duplicated.sum())} rows with duplicated keys",
            details={"total": len(df), "duplicated": int(duplicated.sum())},
        )

    return _log(result, logger)


# =============================================================================
# Summary-level checks
# =============================================================================

def check_totals_match(
    distance_summary: pd.DataFrame,
    removal_summary: pd.DataFrame,
    distance_columns: Sequence[str],
    removal_columns: Sequence[str],
    logger: logging.Logger | None = None,
) -> QAResult:
    """
    Check that each occasion has the same total in both summaries.

    The two summaries count the same birds, once by distance bin and once by
    removal period, so their row totals must agree.
    """
    check_name = "distance_removal_totals_match"

    if len(distance_summary) != len(removal_summary):
        result = QAResult(
            check_name=check_name,
            passed=False,
            message=(f"Row counts differ: {len(distance_summary)} distance rows, "
                     f"{len(removal_summary)} removal rows"),
            details={"distance_rows": len(distance_summary),
                     "removal_rows": len(removal_summary)},
        )
        return _log(result, logger)

    dist_totals = distance_summary[list(distance_columns)].sum(axis=1).to_numpy()
    rem_totals = removal_summary[list(removal_columns)].sum(axis=1).to_numpy()
    mismatched = (dist_totals != rem_totals).nonzero()[0]

    if len(mismatched) == 0:
        result = QAResult(
            check_name=check_name,
            passed=True,
            message=f"Totals agree for all {len(dist_totals)} occasions",
            details={"occasions": len(dist_totals), "total_detections": int(dist_totals.sum())},
        )
    else:
        result = QAResult(
            check_name=check_name,
            passed=False,
            message=f"Totals disagree for {len(mismatched)} occasions",
            details={"mismatched_rows": mismatched[:10].tolist()},
        )

    return _log(result, logger)


def check_row_count(
    df: pd.DataFrame,
    expected: int,
    check_name: str = "row_count",
    logger: logging.Logger | None = None,
) -> QAResult:
    """Check that a table has exactly the expected number of rows."""
    passed = len(df) == expected
    result = QAResult(
        check_name=check_name,
        passed=passed,
        message=f"{len(df)} rows" + ("" if passed else f", expected {expected}"),
        details={"rows": len(df), "expected": expected},
    )
    return _log(result, logger)


def run_survey_qa_checks(
    distance_summary: pd.DataFrame,
    removal_summary: pd.DataFrame,
    key_columns: Sequence[str],
    distance_columns: Sequence[str],
    removal_columns: Sequence[str],
    logger: logging.Logger | None = None,
    fail_on_error: bool = True,
) -> list[QAResult]:
    """
    Run the standard integrity checks on the aggregated survey summaries.

    Raises:
        DataIntegrityError: If fail_on_error and any check fails.
    """
    results = [
        check_unique_keys(distance_summary, key_columns, logger),
        check_totals_match(distance_summary, removal_summary,
                           distance_columns, removal_columns, logger),
        check_constant_within(distance_summary, ["TransectName", "Point"], "Habitat", logger),
    ]

    if fail_on_error:
        failed = [r for r in results if not r.passed]
        if failed:
            messages = [f"{r.check_name}: {r.message}" for r in failed]
            raise DataIntegrityError("QA checks failed:\n" + "\n".join(messages))

    return results


# =============================================================================
# Expected-value assertions
# =============================================================================

def check_expected_value(
    name: str,
    actual: Any,
    expectation: dict[str, Any],
    logger: logging.Logger | None = None,
) -> QAResult:
    """
    Compare a computed statistic with its recorded expectation.

    The expectation is one entry of expected_values.yml and holds either
    ``value`` (with optional absolute ``tolerance``, default 0),
    or ``minimum`` and/or ``maximum`` bounds. ``tolerance`` widens the
    bounds too, for statistics that are Monte Carlo estimates.
    """
    check_name = f"expected_{name}"
    details = {"actual": actual, **expectation}

    if actual is None or (isinstance(actual, float) and math.isnan(actual)):
        return _log(QAResult(check_name, False, "No value computed", details), logger)

    if "value" in expectation:
        expected = expectation["value"]
        if isinstance(expected, str):
            passed = str(actual) == expected
            message = f"{actual!r} (expected {expected!r})"
        else:
            tolerance = expectation.get("tolerance", 0)
            passed = abs(float(actual) - float(expected)) <= tolerance
            message = f"{actual} (expected {expected} +/- {tolerance})"
    else:
        lo = expectation.get("minimum", -math.inf)
        hi = expectation.get("maximum", math.inf)
        tolerance = expectation.get("tolerance", 0)
        passed = lo - tolerance <= float(actual) <= hi + tolerance
        message = f"{actual} (expected within [{lo}, {hi}] +/- {tolerance})"

    return _log(QAResult(check_name, passed, message, details), logger)


def assert_expected_values(
    actuals: dict[str, Any],
    expected: dict[str, dict[str, Any]],
    logger: logging.Logger | None = None,
) -> list[QAResult]:
    """
    Check every recorded expectation against the computed statistics.

    Args:
        actuals: Computed statistics keyed by name (e.g. "aic.habxyear").
        expected: Expectations keyed by the same names.

    Raises:
        ValidationAssertionError: If any statistic is missing or deviates.
    """
    results = [
        check_expected_value(name, actuals.get(name), expectation, logger)
        for name, expectation in expected.items()
    ]

    failed = [r for r in results if not r.passed]
    if failed:
        messages = [f"{r.check_name}: {r.message}" for r in failed]
        raise ValidationAssertionError(
            f"{len(failed)} of {len(results)} expected values deviate:\n" + "\n".join(messages)
        )

    return results
