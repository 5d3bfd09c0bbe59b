"""
Survey frame: the read-only input to every model fit.

A SurveyFrame bundles the distance and removal count matrices, the site
covariates, the distance breaks and the removal-period lengths. It is
validated once on construction and never modified afterward; refitting on
new counts goes through ``with_counts``, which builds a new frame.
"""

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

import numpy as np
import pandas as pd

from acfl_abundance.io_utils import read_parquet
from acfl_abundance.loader import prepare_site_covariates


class StructuralMismatchError(ValueError):
    """Raised when frame components do not line up."""
    pass


SURVEY_TYPES = ("point",)

UNITS_PER_METER = {"m": 1.0, "km": 1000.0}


def _readonly_counts(y, name: str) -> np.ndarray:
    arr = np.array(y, dtype=float, copy=True)
    if arr.ndim != 2:
        raise StructuralMismatchError(f"{name} must be a 2-D matrix, got {arr.ndim} dimensions")
    if np.isnan(arr).any():
        raise StructuralMismatchError(f"{name} contains missing values")
    if (arr < 0).any() or (arr % 1 != 0).any():
        raise StructuralMismatchError(f"{name} must hold non-negative integer counts")
    arr = arr.astype(np.int64)
    arr.flags.writeable = False
    return arr


@dataclass(frozen=True, eq=False)
class SurveyFrame:
    """
    Distance-removal survey data for M sites (survey occasions).

    Attributes:
        y_distance: (M, J) counts per distance bin.
        y_removal: (M, R) counts per removal period.
        dist_breaks: J + 1 ascending distance bin edges.
        period_lengths: R removal period durations.
        units: Distance units of the breaks ("m" or "km").
        num_primary: Number of primary sampling periods.
        survey: Survey type; only point counts are supported.
    """

    y_distance: np.ndarray
    y_removal: np.ndarray
    _site_covs: pd.DataFrame = field(repr=False)
    dist_breaks: tuple[float, ...]
    period_lengths: tuple[float, ...]
    units: str = "m"
    num_primary: int = 1
    survey: str = "point"

    @property
    def site_covs(self) -> pd.DataFrame:
        """Copy of the site covariate table (one row per site)."""
        return self._site_covs.copy()

    @property
    def n_sites(self) -> int:
        return self.y_distance.shape[0]

    @property
    def n_distance_bins(self) -> int:
        return len(self.dist_breaks) - 1

    @property
    def n_removal_periods(self) -> int:
        return len(self.period_lengths)

    @property
    def max_distance(self) -> float:
        return self.dist_breaks[-1]

    @property
    def detections(self) -> np.ndarray:
        """Total detections per site."""
        return self.y_distance.sum(axis=1)

    def survey_area(self) -> float:
        """Area of the counting circle in hectares."""
        radius_m = self.max_distance * UNITS_PER_METER[self.units]
        return math.pi * radius_m ** 2 / 10_000

    def with_counts(self, y_distance, y_removal) -> "SurveyFrame":
        """New frame with the same design and covariates but new counts."""
        return build_frame(
            y_distance, y_removal, self._site_covs,
            self.dist_breaks, self.period_lengths,
            units=self.units, num_primary=self.num_primary, survey=self.survey,
        )

    def summary(self) -> dict:
        """Short description of the frame for logs and reports."""
        return {
            "n_sites": self.n_sites,
            "n_distance_bins": self.n_distance_bins,
            "n_removal_periods": self.n_removal_periods,
            "num_primary": self.num_primary,
            "dist_breaks": list(self.dist_breaks),
            "period_lengths": list(self.period_lengths),
            "units": self.units,
            "total_detections": int(self.detections.sum()),
            "site_covariates": list(self._site_covs.columns),
        }

    def head(self, n: int = 5) -> pd.DataFrame:
        """First ``n`` sites as one table of counts and covariates."""
        dist = pd.DataFrame(self.y_distance[:n],
                            columns=[f"yDist.{j + 1}" for j in range(self.y_distance.shape[1])])
        rem = pd.DataFrame(self.y_removal[:n],
                           columns=[f"yRem.{k + 1}" for k in range(self.y_removal.shape[1])])
        return pd.concat([dist, rem, self._site_covs.head(n).reset_index(drop=True)], axis=1)


def build_frame(
    y_distance,
    y_removal,
    site_covs: pd.DataFrame,
    dist_breaks: Sequence[float],
    period_lengths: Sequence[float] | None = None,
    units: str = "m",
    num_primary: int = 1,
    survey: str = "point",
) -> SurveyFrame:
    """
    Validate and assemble a SurveyFrame.

    Args:
        y_distance: (M, J * num_primary) distance counts.
        y_removal: (M, R * num_primary) removal counts.
        site_covs: Covariates aligned row-for-row with the count matrices.
        dist_breaks: Ascending distance bin edges (J + 1 values).
        period_lengths: Removal period durations; all 1 when None.
        units: Units of dist_breaks.
        num_primary: Number of primary periods.
        survey: Survey type.

    Raises:
        StructuralMismatchError: If any component is misaligned.
    """
    y_distance = _readonly_counts(y_distance, "y_distance")
    y_removal = _readonly_counts(y_removal, "y_removal")

    if survey not in SURVEY_TYPES:
        raise StructuralMismatchError(f"Unsupported survey type: {survey!r}")
    if units not in UNITS_PER_METER:
        raise StructuralMismatchError(f"Unsupported distance units: {units!r}")
    if int(num_primary) < 1:
        raise StructuralMismatchError(f"num_primary must be at least 1, got {num_primary}")
    num_primary = int(num_primary)

    breaks = tuple(float(b) for b in dist_breaks)
    if len(breaks) < 2:
        raise StructuralMismatchError("dist_breaks needs at least two values")
    if breaks[0] < 0 or any(b1 <= b0 for b0, b1 in zip(breaks, breaks[1:])):
        raise StructuralMismatchError(f"dist_breaks must be non-negative and strictly ascending: {breaks}")

    n_rem = y_removal.shape[1] // num_primary
    lengths = tuple(float(p) for p in (period_lengths if period_lengths is not None else [1.0] * n_rem))
    if any(p <= 0 for p in lengths):
        raise StructuralMismatchError(f"period_lengths must be positive: {lengths}")

    n_sites = y_distance.shape[0]
    if y_removal.shape[0] != n_sites:
        raise StructuralMismatchError(
            f"Distance matrix has {n_sites} rows but removal matrix has {y_removal.shape[0]}"
        )
    if len(site_covs) != n_sites:
        raise StructuralMismatchError(
            f"Count matrices have {n_sites} rows but site covariates have {len(site_covs)}"
        )
    if y_distance.shape[1] != (len(breaks) - 1) * num_primary:
        raise StructuralMismatchError(
            f"Distance matrix has {y_distance.shape[1]} columns; breaks imply "
            f"{len(breaks) - 1} bins x {num_primary} primary periods"
        )
    if y_removal.shape[1] != len(lengths) * num_primary:
        raise StructuralMismatchError(
            f"Removal matrix has {y_removal.shape[1]} columns; {len(lengths)} periods x "
            f"{num_primary} primary periods declared"
        )

    return SurveyFrame(
        y_distance=y_distance,
        y_removal=y_removal,
        _site_covs=site_covs.reset_index(drop=True).copy(),
        dist_breaks=breaks,
        period_lengths=lengths,
        units=units,
        num_primary=num_primary,
        survey=survey,
    )


def frame_from_summaries(
    distance_summary: pd.DataFrame,
    removal_summary: pd.DataFrame,
    key_columns: Sequence[str],
    distance_columns: Sequence[str],
    removal_columns: Sequence[str],
    habitat_levels: Sequence[str],
    dist_breaks: Sequence[float],
    period_lengths: Sequence[float] | None = None,
    units: str = "m",
    num_primary: int = 1,
    survey: str = "point",
) -> SurveyFrame:
    """
    Build a frame from the aggregated occasion summaries.

    Site covariates are the occasion keys, with Habitat as a categorical
    and Year counted from the first surveyed year.

    Raises:
        StructuralMismatchError: If the summaries are not row-aligned.
    """
    keys = list(key_columns)
    dist_keys = distance_summary[keys].reset_index(drop=True)
    rem_keys = removal_summary[keys].reset_index(drop=True)
    if len(dist_keys) != len(rem_keys) or not dist_keys.equals(rem_keys):
        raise StructuralMismatchError("Distance and removal summaries are not aligned by occasion")

    site_covs = prepare_site_covariates(distance_summary, keys, habitat_levels)
    return build_frame(
        distance_summary[list(distance_columns)].to_numpy(),
        removal_summary[list(removal_columns)].to_numpy(),
        site_covs,
        dist_breaks,
        period_lengths,
        units=units,
        num_primary=num_primary,
        survey=survey,
    )


def load_survey_frame(survey_dir: Path | str, params: dict) -> SurveyFrame:
    """
    Rebuild the survey frame from the processed summaries.

    Args:
        survey_dir: Directory holding distance_summary.parquet and
            removal_summary.parquet.
        params: Parsed params.yml (data and frame sections are used).
    """
    survey_dir = Path(survey_dir)
    data_cfg = params["data"]
    frame_cfg = params["frame"]
    return frame_from_summaries(
        read_parquet(survey_dir / "distance_summary.parquet"),
        read_parquet(survey_dir / "removal_summary.parquet"),
        key_columns=data_cfg["occasion_keys"],
        distance_columns=list(data_cfg["distance_bins"].values()),
        removal_columns=list(data_cfg["removal_bins"].values()),
        habitat_levels=data_cfg["habitat_levels"],
        dist_breaks=frame_cfg["dist_breaks"],
        period_lengths=frame_cfg["period_lengths"],
        units=frame_cfg.get("units", "m"),
        num_primary=frame_cfg.get("num_primary", 1),
        survey=frame_cfg.get("survey", "point"),
    )
