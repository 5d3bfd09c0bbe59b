"""
Model formulas with optional random intercepts.

Formulas are one-sided, in the lme4 style used for the abundance model:

    ~Habitat * Year + (1|Point)

The fixed part is handed to patsy; each ``(1|Group)`` term adds a normally
distributed intercept per level of ``Group``.
"""

import re
from dataclasses import dataclass

import numpy as np
import pandas as pd
from patsy import DesignInfo, build_design_matrices, dmatrix


RANDOM_INTERCEPT = re.compile(r"\(\s*1\s*\|\s*([A-Za-z_][A-Za-z0-9_.]*)\s*\)")


@dataclass(frozen=True)
class ModelFormula:
    """A parsed one-sided formula."""
    formula: str
    fixed: str
    random_groups: tuple[str, ...] = ()

    @property
    def has_random(self) -> bool:
        return len(self.random_groups) > 0

    def __str__(self) -> str:
        return self.formula


def parse_formula(formula: str) -> ModelFormula:
    """
    Split a formula into its patsy fixed part and random-intercept groups.

    Raises:
        ValueError: If the formula is not one-sided or uses random terms
            other than ``(1|Group)``.
    """
    text = formula.strip()
    if not text.startswith("~"):
        raise ValueError(f"Formula must be one-sided and start with '~': {formula!r}")

    rhs = text[1:]
    groups = tuple(RANDOM_INTERCEPT.findall(rhs))
    fixed = RANDOM_INTERCEPT.sub(" ", rhs)

    if "|" in fixed:
        raise ValueError(f"Only random intercepts of the form (1|group) are supported: {formula!r}")

    # Drop the '+' signs left dangling by removed random terms
    fixed = re.sub(r"\+\s*(?=\+)", "", fixed)
    fixed = re.sub(r"^\s*\+|\+\s*$", "", fixed).strip()
    if not fixed:
        fixed = "1"

    if len(set(groups)) != len(groups):
        raise ValueError(f"Duplicated random intercept in {formula!r}")

    return ModelFormula(formula=text, fixed=fixed, random_groups=groups)


@dataclass(frozen=True, eq=False)
class Design:
    """Design matrix of a sub-model plus its random-intercept grouping."""
    X: np.ndarray
    columns: tuple[str, ...]
    design_info: DesignInfo
    group: str | None = None
    group_codes: np.ndarray | None = None
    group_levels: tuple = ()

    @property
    def n_groups(self) -> int:
        return len(self.group_levels)


def _as_matrix(matrix: pd.DataFrame, n_rows: int) -> np.ndarray:
    X = np.asarray(matrix, dtype=float)
    # Intercept-only formulas do not reference data, so patsy cannot size them
    if X.shape[0] != n_rows and X.shape[0] == 1:
        X = np.repeat(X, n_rows, axis=0)
    return X


def build_design(formula: ModelFormula, data: pd.DataFrame) -> Design:
    """
    Build the design for a sub-model from the site covariates.

    Raises:
        ValueError: If more than one random intercept is requested or a
            grouping column is missing.
        patsy.PatsyError: If the fixed part references unknown covariates.
    """
    matrix = dmatrix(formula.fixed, data, return_type="dataframe", NA_action="raise")
    X = _as_matrix(matrix, len(data))

    if len(formula.random_groups) > 1:
        raise ValueError(f"At most one random intercept is supported, got {formula.random_groups}")

    group = None
    codes = None
    levels: tuple = ()
    if formula.random_groups:
        group = formula.random_groups[0]
        if group not in data.columns:
            raise ValueError(f"Grouping covariate '{group}' not found in site covariates")
        codes, uniques = pd.factorize(data[group], sort=True)
        if (codes < 0).any():
            raise ValueError(f"Grouping covariate '{group}' has missing values")
        levels = tuple(uniques)

    return Design(
        X=X,
        columns=tuple(matrix.columns),
        design_info=matrix.design_info,
        group=group,
        group_codes=codes,
        group_levels=levels,
    )


def design_for_newdata(design: Design, newdata: pd.DataFrame) -> tuple[np.ndarray, np.ndarray]:
    """
    Apply a fitted design to new covariates.

    Returns:
        (X, group_codes) where group codes index the fitted group levels and
        are -1 for levels absent from the fit (or when the grouping column is
        not supplied).
    """
    matrix = build_design_matrices([design.design_info], newdata,
                                   return_type="dataframe", NA_action="raise")[0]
    X = _as_matrix(matrix, len(newdata))

    codes = np.full(len(newdata), -1, dtype=int)
    if design.group is not None and design.group in newdata.columns:
        codes = pd.Index(design.group_levels).get_indexer(newdata[design.group])

    return X, codes
