"""
Simulation, power analysis and parametric bootstrap.

Datasets are simulated from the same model that is fitted: covariates come
from guide functions ``f(n, rng)``, coefficients are given per sub-model by
design-matrix column name, and random-intercept SDs by grouping column.
Every routine takes an explicit seed or ``numpy.random.Generator``.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Mapping, Sequence

import numpy as np
import pandas as pd
from scipy.special import expit

from acfl_abundance.formulas import build_design, parse_formula
from acfl_abundance.frame import SurveyFrame, build_frame
from acfl_abundance.logging_utils import log_step_start, log_step_end
from acfl_abundance.model import (
    SUBMODELS, FittedModel, ModelFitError,
    distance_cell_probs, draw_counts, fit_gdistremoval, removal_cell_probs,
)


Guide = Mapping[str, Callable[[int, np.random.Generator], Sequence]]


# =============================================================================
# Covariate guides
# =============================================================================

def panel_guide(n_years: int, habitat_labels: Sequence[str]) -> dict:
    """
    Guide for point x year panels: each point is surveyed in ``n_years``
    consecutive years and keeps one randomly drawn habitat.
    """
    labels = list(habitat_labels)

    def _n_points(n: int) -> int:
        if n % n_years != 0:
            raise ValueError(f"Number of sites ({n}) is not a multiple of {n_years} years")
        return n // n_years

    def point(n, rng):
        return pd.Categorical(np.repeat(np.arange(1, _n_points(n) + 1), n_years))

    def year(n, rng):
        return np.tile(np.arange(n_years), _n_points(n))

    def habitat(n, rng):
        hab = rng.choice(labels, size=_n_points(n), replace=True)
        return pd.Categorical(np.repeat(hab, n_years), categories=labels)

    return {"Point": point, "Year": year, "Habitat": habitat}


# =============================================================================
# Dataset simulation
# =============================================================================

def _coef_vector(values: Mapping[str, float], columns: Sequence[str], submodel: str) -> np.ndarray:
    missing = [c for c in columns if c not in values]
    extra = [k for k in values if k not in columns]
    if missing or extra:
        raise ValueError(
            f"Coefficients for '{submodel}' must match design columns {list(columns)}; "
            f"missing {missing}, unexpected {extra}"
        )
    return np.array([float(values[c]) for c in columns])


def simulate_counts(
    formulas: Mapping[str, str],
    site_covs: pd.DataFrame,
    coefs: Mapping[str, Mapping[str, float]],
    dist_breaks: Sequence[float],
    period_lengths: Sequence[float],
    rng: np.random.Generator,
    keyfun: str = "halfnorm",
    output: str = "abund",
    area_ha: float | None = None,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Simulate distance and removal counts for fixed site covariates.

    Args:
        formulas: Sub-model name -> formula string.
        site_covs: Site covariates.
        coefs: Sub-model name -> {design column: value}, plus an optional
            "lambda_random_sd" entry of {group column: SD}.
        dist_breaks: Distance bin edges.
        period_lengths: Removal period durations.
        rng: Random generator.
        keyfun: Detection key function.
        output: "abund" or "density" (then ``area_ha`` scales lambda).

    Returns:
        (y_distance, y_removal).
    """
    eta = {}
    for submodel in SUBMODELS:
        if submodel == "dist" and keyfun == "uniform":
            continue
        design = build_design(parse_formula(formulas[submodel]), site_covs)
        eta[submodel] = design.X @ _coef_vector(coefs.get(submodel, {}), design.columns, submodel)
        if submodel == "lambda" and design.group is not None:
            sd = float(coefs.get("lambda_random_sd", {}).get(design.group, 0.0))
            effects = rng.normal(0.0, sd, size=design.n_groups)
            eta[submodel] = eta[submodel] + effects[design.group_codes]

    lam = np.exp(eta["lambda"])
    if output == "density":
        if area_ha is None:
            raise ValueError("area_ha is required when output='density'")
        lam = lam * area_ha

    sigma = np.exp(eta["dist"]) if "dist" in eta else np.ones(len(site_covs))
    pdist = distance_cell_probs(sigma, dist_breaks, keyfun)
    prem = removal_cell_probs(expit(eta["rem"]), period_lengths)
    return draw_counts(lam, pdist, prem, rng)


def simulate_frame(
    formulas: Mapping[str, str],
    design: Mapping[str, int],
    coefs: Mapping[str, Mapping[str, float]],
    guide: Guide,
    dist_breaks: Sequence[float],
    rng: np.random.Generator,
    period_lengths: Sequence[float] | None = None,
    keyfun: str = "halfnorm",
    output: str = "abund",
    units: str = "m",
) -> SurveyFrame:
    """
    Simulate a complete survey frame.

    Args:
        design: {"M": sites, "Jdist": distance bins, "Jrem": removal periods}.
        guide: Covariate name -> generator ``f(n, rng)``; every covariate
            named in the formulas needs an entry.
        period_lengths: Removal period durations (all 1 when None).

    Raises:
        ValueError: If the design disagrees with the breaks or period lengths.
    """
    n_sites = int(design["M"])
    if len(dist_breaks) - 1 != int(design["Jdist"]):
        raise ValueError(f"Jdist={design['Jdist']} but dist_breaks define {len(dist_breaks) - 1} bins")
    lengths = list(period_lengths) if period_lengths is not None else [1.0] * int(design["Jrem"])
    if len(lengths) != int(design["Jrem"]):
        raise ValueError(f"Jrem={design['Jrem']} but {len(lengths)} period lengths given")

    site_covs = pd.DataFrame({name: func(n_sites, rng) for name, func in guide.items()})
    radius_m = float(dist_breaks[-1]) * (1000.0 if units == "km" else 1.0)
    area_ha = math.pi * radius_m ** 2 / 10_000

    y_distance, y_removal = simulate_counts(
        formulas, site_covs, coefs, dist_breaks, lengths, rng,
        keyfun=keyfun, output=output, area_ha=area_ha,
    )
    return build_frame(y_distance, y_removal, site_covs, dist_breaks, lengths, units=units)


# =============================================================================
# Power analysis
# =============================================================================

@dataclass
class PowerResult:
    """Outcome of a simulation-based power analysis."""
    table: pd.DataFrame
    nsim: int
    alpha: float
    n_failed: int = 0

    def power(self, submodel: str, term: str) -> float:
        row = self.table[(self.table["submodel"] == submodel) & (self.table["term"] == term)]
        if row.empty:
            raise KeyError(f"No power estimate for {submodel}.{term}")
        return float(row["power"].iloc[0])


def power_analysis(
    fit: FittedModel,
    coefs: Mapping[str, Mapping[str, float]],
    nsim: int = 100,
    alpha: float = 0.05,
    seed: int = 1,
    logger: logging.Logger | None = None,
) -> PowerResult:
    """
    Power to detect each non-intercept effect at the fit's sample design.

    Datasets are simulated from ``coefs`` using the fit's covariates,
    formulas, breaks and period lengths, then refitted. A replicate detects
    an effect when its Wald p-value is below ``alpha`` and its estimate has
    the simulated effect's sign. Replicates whose refit fails count as
    non-detections.
    """
    frame = fit.frame
    formulas = {name: f.formula for name, f in fit.formulas.items()}
    site_covs = frame.site_covs
    rng = np.random.default_rng(seed)

    effects = [
        (submodel, term, float(value))
        for submodel in SUBMODELS
        for term, value in coefs.get(submodel, {}).items()
        if term != "Intercept"
    ]
    detected = {(s, t): 0 for s, t, _ in effects}
    n_failed = 0

    if logger:
        log_step_start(logger, "power_analysis", nsim=nsim, alpha=alpha, seed=seed)

    for i in range(nsim):
        y_distance, y_removal = simulate_counts(
            formulas, site_covs, coefs, frame.dist_breaks, frame.period_lengths, rng,
            keyfun=fit.keyfun, output=fit.output, area_ha=frame.survey_area(),
        )
        try:
            refit = fit_gdistremoval(
                frame.with_counts(y_distance, y_removal),
                lambda_formula=formulas["lambda"],
                distance_formula=formulas["dist"],
                removal_formula=formulas["rem"],
                output=fit.output, keyfun=fit.keyfun, n_quad=fit.n_quad,
            )
        except ModelFitError as e:
            n_failed += 1
            if logger:
                logger.warning(f"Power replicate {i + 1} failed to fit: {e}")
            continue

        summary = refit.summary().set_index(["submodel", "term"])
        for submodel, term, effect in effects:
            row = summary.loc[(submodel, term)]
            if row["p_value"] < alpha and np.sign(row["estimate"]) == np.sign(effect):
                detected[(submodel, term)] += 1

        if logger and (i + 1) % 10 == 0:
            logger.info(f"Power analysis: {i + 1}/{nsim} replicates")

    table = pd.DataFrame([
        {"submodel": s, "term": t, "effect": effect, "power": detected[(s, t)] / nsim}
        for s, t, effect in effects
    ], columns=["submodel", "term", "effect", "power"])

    if logger:
        log_step_end(logger, "power_analysis", n_failed=n_failed,
                     power={f"{s}.{t}": p for s, t, p in table[["submodel", "term", "power"]].itertuples(index=False)})

    return PowerResult(table=table, nsim=nsim, alpha=alpha, n_failed=n_failed)


# =============================================================================
# Parametric bootstrap
# =============================================================================

def _observed_and_expected(fit: FittedModel):
    fitted = fit.fitted()
    observed = np.concatenate([fit.frame.y_distance.ravel(), fit.frame.y_removal.ravel()])
    expected = np.concatenate([fitted["distance"].ravel(), fitted["removal"].ravel()])
    return observed.astype(float), expected


def sse(fit: FittedModel) -> float:
    """Sum of squared residuals over distance and removal counts."""
    observed, expected = _observed_and_expected(fit)
    return float(np.sum((observed - expected) ** 2))


def chisq(fit: FittedModel) -> float:
    """Pearson chi-square over distance and removal counts."""
    observed, expected = _observed_and_expected(fit)
    keep = expected > 0
    return float(np.sum((observed[keep] - expected[keep]) ** 2 / expected[keep]))


def freeman_tukey(fit: FittedModel) -> float:
    """Freeman-Tukey statistic over distance and removal counts."""
    observed, expected = _observed_and_expected(fit)
    return float(np.sum((np.sqrt(observed) - np.sqrt(expected)) ** 2))


FIT_STATISTICS = {"sse": sse, "chisq": chisq, "freeman_tukey": freeman_tukey}


@dataclass
class ParbootResult:
    """Observed fit statistic and its bootstrap reference distribution."""
    statistic: str
    t0: float
    t_star: np.ndarray = field(repr=False)
    n_failed: int = 0

    @property
    def nsim(self) -> int:
        return len(self.t_star)

    @property
    def p_value(self) -> float:
        """Proportion of bootstrap statistics at least as large as observed."""
        return float((1 + np.sum(self.t_star >= self.t0)) / (1 + self.nsim))

    def summary(self) -> dict:
        return {
            "statistic": self.statistic,
            "t0": self.t0,
            "mean_t_star": float(np.mean(self.t_star)) if self.nsim else float("nan"),
            "sd_t_star": float(np.std(self.t_star, ddof=1)) if self.nsim > 1 else float("nan"),
            "p_value": self.p_value,
            "nsim": self.nsim,
            "n_failed": self.n_failed,
        }


def parboot(
    fit: FittedModel,
    statistic: str = "sse",
    nsim: int = 30,
    seed: int = 123,
    logger: logging.Logger | None = None,
) -> ParbootResult:
    """
    Parametric bootstrap goodness-of-fit test.

    Simulates ``nsim`` datasets from the fit, refits each, and compares the
    refitted statistics with the observed one. Replicates whose refit fails
    are dropped and counted in ``n_failed``.
    """
    if statistic not in FIT_STATISTICS:
        raise ValueError(f"Unknown statistic {statistic!r}; expected one of {list(FIT_STATISTICS)}")
    stat = FIT_STATISTICS[statistic]
    rng = np.random.default_rng(seed)

    if logger:
        log_step_start(logger, "parboot", statistic=statistic, nsim=nsim, seed=seed)

    t0 = stat(fit)
    t_star = []
    n_failed = 0
    for i, (y_distance, y_removal) in enumerate(fit.simulate(nsim, rng)):
        try:
            refit = fit.refit(fit.frame.with_counts(y_distance, y_removal))
        except ModelFitError as e:
            n_failed += 1
            if logger:
                logger.warning(f"Bootstrap replicate {i + 1} failed to fit: {e}")
            continue
        t_star.append(stat(refit))

    result = ParbootResult(statistic=statistic, t0=t0, t_star=np.array(t_star), n_failed=n_failed)
    if logger:
        log_step_end(logger, "parboot", **result.summary())
    return result
