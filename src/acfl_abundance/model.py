"""
Generalized distance-removal abundance model.

Abundance at site i is Poisson with mean

    lambda_i = exp(X_lambda beta + b_g(i)),   b_g ~ Normal(0, sd^2),

where the random intercept b is optional. Each bird present is detected
with probability pdist_i * prem_i:

- distance sampling (point survey): the probability of being detected in
  distance bin j is the integral of g(r) 2r / B^2 over the bin, with key
  function g (half-normal, exponential or uniform) of scale
  sigma_i = exp(X_dist beta) and B the outermost break;
- removal sampling: with per-unit-time detection p_i = logit^-1(X_rem beta),
  period k of length L_k detects with q_k = 1 - (1 - p)^L_k, so first
  detection falls in period k with probability q_k prod_{m<k} (1 - q_m).

With a single primary period the total detected n_i is Poisson with mean
lambda_i pdist_i prem_i, and the distance and removal counts are
multinomial given n_i. The random intercept is integrated out per group
by Gauss-Hermite quadrature and the likelihood is maximized with
scipy.optimize; standard errors come from a numerical Hessian.
"""

import math
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Sequence

import numpy as np
import pandas as pd
from scipy import optimize, stats
from scipy.special import expit, gammaln, logsumexp, xlogy
from statsmodels.tools.numdiff import approx_fprime, approx_hess

from acfl_abundance.formulas import (
    Design, ModelFormula, build_design, design_for_newdata, parse_formula,
)
from acfl_abundance.frame import SurveyFrame
from acfl_abundance.io_utils import read_json
from acfl_abundance.predict import LatentAbundance
from acfl_abundance.qa import DataIntegrityError


SUBMODELS = ("lambda", "dist", "rem")

LINKS = {"lambda": "log", "dist": "log", "rem": "logit"}

KEY_FUNCTIONS = ("halfnorm", "exp", "uniform")

OUTPUTS = ("abund", "density")

# Largest expected log-likelihood gain (Newton decrement) at which a fit
# counts as converged
DECREMENT_TOL = 1e-6


class ModelFitError(RuntimeError):
    """Raised when the likelihood cannot be evaluated at the optimum."""
    pass


# =============================================================================
# Cell probabilities
# =============================================================================

def distance_cell_probs(sigma: np.ndarray, breaks: Sequence[float], keyfun: str = "halfnorm") -> np.ndarray:
    """
    Probability of detection in each distance bin of a point survey.

    Args:
        sigma: (M,) detection scale per site, in the units of ``breaks``.
        breaks: J + 1 ascending bin edges.
        keyfun: "halfnorm", "exp" or "uniform".

    Returns:
        (M, J) unconditional cell probabilities (rows sum to the overall
        probability of detection within the outermost break).
    """
    b = np.asarray(breaks, dtype=float)
    lo, hi = b[:-1][None, :], b[1:][None, :]
    area = b[-1] ** 2
    sigma = np.asarray(sigma, dtype=float)[:, None]

    if keyfun == "halfnorm":
        s2 = sigma ** 2
        return 2 * s2 / area * (np.exp(-lo ** 2 / (2 * s2)) - np.exp(-hi ** 2 / (2 * s2)))
    if keyfun == "exp":
        return 2 * sigma / area * ((lo + sigma) * np.exp(-lo / sigma) - (hi + sigma) * np.exp(-hi / sigma))
    if keyfun == "uniform":
        return np.broadcast_to((hi ** 2 - lo ** 2) / area, (sigma.shape[0], lo.shape[1])).copy()

    raise ValueError(f"Unknown key function {keyfun!r}; expected one of {KEY_FUNCTIONS}")


def removal_cell_probs(p: np.ndarray, period_lengths: Sequence[float]) -> np.ndarray:
    """
    Probability that first detection falls in each removal period.

    Args:
        p: (M,) detection probability per unit time.
        period_lengths: R period durations.

    Returns:
        (M, R) cell probabilities.
    """
    lengths = np.asarray(period_lengths, dtype=float)[None, :]
    p = np.asarray(p, dtype=float)[:, None]
    q = 1 - (1 - p) ** lengths
    missed = np.cumprod(1 - q, axis=1)
    before = np.hstack([np.ones((q.shape[0], 1)), missed[:, :-1]])
    return q * before


def draw_counts(
    lam: np.ndarray,
    pdist: np.ndarray,
    prem: np.ndarray,
    rng: np.random.Generator,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Simulate distance and removal counts given abundance and cell probabilities.

    Returns:
        (y_distance, y_removal) with matching row totals.
    """
    pd_total = pdist.sum(axis=1)
    pr_total = prem.sum(axis=1)
    abundance = rng.poisson(lam)
    detected = rng.binomial(abundance, np.clip(pd_total * pr_total, 0.0, 1.0))
    y_distance = rng.multinomial(detected, pdist / pd_total[:, None])
    y_removal = rng.multinomial(detected, prem / pr_total[:, None])
    return y_distance, y_removal


# =============================================================================
# Likelihood
# =============================================================================

@dataclass(frozen=True)
class ParameterBlock:
    """Slice of the parameter vector belonging to one sub-model."""
    submodel: str
    terms: tuple[str, ...]
    start: int

    @property
    def stop(self) -> int:
        return self.start + len(self.terms)

    @property
    def slice(self) -> slice:
        return slice(self.start, self.stop)


class _Likelihood:
    """Negative log-likelihood of a frame under a set of formulas."""

    def __init__(
        self,
        frame: SurveyFrame,
        formulas: Mapping[str, ModelFormula],
        keyfun: str,
        output: str,
        n_quad: int,
    ):
        if frame.num_primary != 1:
            raise NotImplementedError("Only a single primary period is supported")
        if keyfun not in KEY_FUNCTIONS:
            raise ValueError(f"Unknown key function {keyfun!r}; expected one of {KEY_FUNCTIONS}")
        if output not in OUTPUTS:
            raise ValueError(f"Unknown output {output!r}; expected one of {OUTPUTS}")
        for name in ("dist", "rem"):
            if formulas[name].has_random:
                raise ValueError(f"Random effects are only supported on the abundance formula, not {name!r}")

        n_dist = frame.detections
        n_rem = frame.y_removal.sum(axis=1)
        if not np.array_equal(n_dist, n_rem):
            bad = np.flatnonzero(n_dist != n_rem)
            raise DataIntegrityError(f"Distance and removal totals differ at sites {bad[:10].tolist()}")

        covs = frame.site_covs
        self.frame = frame
        self.keyfun = keyfun
        self.output = output
        self.designs: dict[str, Design] = {name: build_design(formulas[name], covs) for name in SUBMODELS}
        if keyfun == "uniform" and self.designs["dist"].X.shape[1] > 0:
            # Uniform detection has no scale to model
            self.designs["dist"] = Design(
                X=np.zeros((frame.n_sites, 0)), columns=(),
                design_info=self.designs["dist"].design_info,
            )

        self.n = n_dist.astype(float)
        self.log_area = math.log(frame.survey_area()) if output == "density" else 0.0

        nodes, weights = np.polynomial.hermite.hermgauss(n_quad)
        self.gh_nodes = nodes * math.sqrt(2.0)
        self.gh_logw = np.log(weights) - 0.5 * math.log(math.pi)

        # Poisson and both multinomial normalizing constants
        self.const = float(
            gammaln(self.n + 1).sum()
            - gammaln(frame.y_distance + 1).sum()
            - gammaln(frame.y_removal + 1).sum()
        )

        blocks = []
        start = 0
        lam = self.designs["lambda"]
        blocks.append(ParameterBlock("lambda", lam.columns, start))
        start += len(lam.columns)
        if lam.group is not None:
            blocks.append(ParameterBlock("lambda_sd", (f"log_sd({lam.group})",), start))
            start += 1
        for name in ("dist", "rem"):
            blocks.append(ParameterBlock(name, self.designs[name].columns, start))
            start += len(self.designs[name].columns)
        self.blocks = {b.submodel: b for b in blocks}
        self.n_theta = start

    @property
    def has_random(self) -> bool:
        return "lambda_sd" in self.blocks

    def linear_predictor(self, theta: np.ndarray, submodel: str) -> np.ndarray:
        block = self.blocks[submodel]
        return self.designs[submodel].X @ theta[block.slice]

    def cell_probs(self, theta: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """(pdist, prem) for every site."""
        if self.keyfun == "uniform":
            sigma = np.ones(self.frame.n_sites)
        else:
            sigma = np.exp(self.linear_predictor(theta, "dist"))
        pdist = distance_cell_probs(sigma, self.frame.dist_breaks, self.keyfun)
        prem = removal_cell_probs(expit(self.linear_predictor(theta, "rem")), self.frame.period_lengths)
        return pdist, prem

    def random_sd(self, theta: np.ndarray) -> float:
        return float(np.exp(theta[self.blocks["lambda_sd"].start])) if self.has_random else 0.0

    def _group_terms(self, theta: np.ndarray, log_mu: np.ndarray):
        """Per-group log integrand at each quadrature node, (G, Q)."""
        design = self.designs["lambda"]
        sd = self.random_sd(theta)
        b = sd * self.gh_nodes
        codes = design.group_codes
        n_groups = design.n_groups
        n_g = np.bincount(codes, weights=self.n, minlength=n_groups)
        s_g = np.bincount(codes, weights=np.exp(log_mu), minlength=n_groups)
        terms = self.gh_logw[None, :] + n_g[:, None] * b[None, :] - s_g[:, None] * np.exp(b)[None, :]
        return terms, b

    def loglik(self, theta: np.ndarray) -> float:
        theta = np.asarray(theta, dtype=float)
        pdist, prem = self.cell_probs(theta)
        pd_total = pdist.sum(axis=1)
        pr_total = prem.sum(axis=1)

        ll = self.const
        ll += xlogy(self.frame.y_distance, pdist / pd_total[:, None]).sum()
        ll += xlogy(self.frame.y_removal, prem / pr_total[:, None]).sum()

        log_mu = self.linear_predictor(theta, "lambda") + self.log_area + np.log(pd_total * pr_total)
        if self.has_random:
            ll += (self.n * log_mu).sum()
            terms, _ = self._group_terms(theta, log_mu)
            ll += logsumexp(terms, axis=1).sum()
        else:
            ll += (self.n * log_mu - np.exp(log_mu)).sum()
        return float(ll)

    def nll(self, theta: np.ndarray) -> float:
        value = -self.loglik(theta)
        return value if np.isfinite(value) else 1e10

    def blups(self, theta: np.ndarray) -> np.ndarray:
        """Posterior mean of each group's random intercept."""
        if not self.has_random:
            return np.zeros(0)
        pdist, prem = self.cell_probs(theta)
        log_mu = (self.linear_predictor(theta, "lambda") + self.log_area
                  + np.log(pdist.sum(axis=1) * prem.sum(axis=1)))
        terms, b = self._group_terms(theta, log_mu)
        weights = np.exp(terms - logsumexp(terms, axis=1, keepdims=True))
        return weights @ b

    def default_starts(self) -> np.ndarray:
        theta = np.zeros(self.n_theta)
        lam = self.blocks["lambda"]
        if "Intercept" in lam.terms:
            theta[lam.start + lam.terms.index("Intercept")] = math.log(max(self.n.mean(), 0.1)) + 0.5
        dist = self.blocks["dist"]
        if "Intercept" in dist.terms:
            theta[dist.start + dist.terms.index("Intercept")] = math.log(self.frame.max_distance / 2)
        if self.has_random:
            theta[self.blocks["lambda_sd"].start] = -1.0
        return theta


# =============================================================================
# Fitted model
# =============================================================================

class FittedModel:
    """
    Maximum-likelihood fit of the distance-removal abundance model.

    Instances are immutable; refitting returns a new FittedModel.
    """

    def __init__(
        self,
        likelihood: _Likelihood,
        formulas: Mapping[str, ModelFormula],
        theta: np.ndarray,
        vcov: np.ndarray,
        loglik: float,
        converged: bool,
        message: str = "",
        n_iter: int = 0,
        n_quad: int = 40,
    ):
        self._lik = likelihood
        self.formulas = dict(formulas)
        self._theta = np.array(theta, dtype=float)
        self._theta.flags.writeable = False
        self._vcov = np.array(vcov, dtype=float)
        self._vcov.flags.writeable = False
        self.loglik = float(loglik)
        self.converged = bool(converged)
        self.message = message
        self.n_iter = int(n_iter)
        self.n_quad = int(n_quad)

    # -------------------------------------------------------------------------
    # Basic attributes
    # -------------------------------------------------------------------------
    @property
    def frame(self) -> SurveyFrame:
        return self._lik.frame

    @property
    def keyfun(self) -> str:
        return self._lik.keyfun

    @property
    def output(self) -> str:
        return self._lik.output

    @property
    def theta(self) -> np.ndarray:
        return self._theta

    @property
    def blocks(self) -> dict[str, ParameterBlock]:
        return dict(self._lik.blocks)

    @property
    def n_params(self) -> int:
        """Number of fixed-effect parameters (random-effect SDs excluded)."""
        return sum(len(b.terms) for name, b in self._lik.blocks.items() if name in SUBMODELS)

    @property
    def aic(self) -> float:
        return -2 * self.loglik + 2 * self.n_params

    def _block(self, submodel: str) -> ParameterBlock:
        if submodel not in self._lik.blocks:
            raise KeyError(f"Unknown submodel {submodel!r}; available: {list(self._lik.blocks)}")
        return self._lik.blocks[submodel]

    def coef(self, submodel: str) -> pd.Series:
        """Estimates of one sub-model, indexed by term."""
        block = self._block(submodel)
        return pd.Series(self._theta[block.slice], index=list(block.terms), name=submodel)

    def vcov(self, submodel: str | None = None) -> np.ndarray:
        """Covariance of all parameters, or of one sub-model's block."""
        if submodel is None:
            return self._vcov.copy()
        block = self._block(submodel)
        return self._vcov[block.slice, block.slice].copy()

    def se(self, submodel: str) -> pd.Series:
        block = self._block(submodel)
        with np.errstate(invalid="ignore"):
            values = np.sqrt(np.diag(self._vcov)[block.slice])
        return pd.Series(values, index=list(block.terms), name=submodel)

    def summary(self) -> pd.DataFrame:
        """Wald table of the fixed effects of every sub-model."""
        rows = []
        for submodel in SUBMODELS:
            est = self.coef(submodel)
            se = self.se(submodel)
            for term in est.index:
                z = est[term] / se[term] if se[term] > 0 else np.nan
                rows.append({
                    "submodel": submodel,
                    "term": term,
                    "estimate": float(est[term]),
                    "se": float(se[term]),
                    "z": float(z),
                    "p_value": float(2 * stats.norm.sf(abs(z))) if np.isfinite(z) else np.nan,
                })
        return pd.DataFrame(rows, columns=["submodel", "term", "estimate", "se", "z", "p_value"])

    def random_effects(self) -> pd.DataFrame:
        """Random-intercept SD and variance of the abundance sub-model."""
        if not self._lik.has_random:
            return pd.DataFrame(columns=["group", "sd", "variance", "n_levels"])
        sd = self._lik.random_sd(self._theta)
        design = self._lik.designs["lambda"]
        return pd.DataFrame([{
            "group": design.group,
            "sd": sd,
            "variance": sd ** 2,
            "n_levels": design.n_groups,
        }])

    def blups(self) -> pd.Series:
        """Empirical Bayes estimates of the random intercepts per group level."""
        design = self._lik.designs["lambda"]
        return pd.Series(self._lik.blups(self._theta), index=list(design.group_levels),
                         name=design.group)

    def detection_scale(self) -> float | None:
        """Detection scale sigma at the distance intercept (None for uniform)."""
        dist = self.coef("dist")
        if "Intercept" not in dist.index:
            return None
        return float(np.exp(dist["Intercept"]))

    # -------------------------------------------------------------------------
    # Predictions
    # -------------------------------------------------------------------------
    def predict(
        self,
        submodel: str,
        newdata: pd.DataFrame | None = None,
        level: float = 0.95,
        include_random: bool = True,
    ) -> pd.DataFrame:
        """
        Natural-scale predictions with Wald confidence limits.

        Args:
            submodel: "lambda", "dist" or "rem".
            newdata: Covariates to predict at; the frame's covariates when None.
            level: Confidence level of the interval.
            include_random: Add the estimated random intercept of each row's
                group (unknown groups get zero). False gives population-level
                predictions.

        Returns:
            DataFrame with Predicted, SE, lower and upper, row-aligned with
            the covariates. SE is the delta-method standard error on the
            natural scale; intervals are formed on the link scale.
        """
        if submodel not in SUBMODELS:
            raise ValueError(f"Unknown submodel {submodel!r}; expected one of {SUBMODELS}")
        design = self._lik.designs[submodel]
        block = self._block(submodel)
        if not block.terms:
            raise ValueError(f"Submodel {submodel!r} has no parameters under the {self.keyfun} key")

        if newdata is None:
            X = design.X
            codes = design.group_codes if design.group_codes is not None else np.full(len(X), -1)
            index = pd.RangeIndex(len(X))
        else:
            X, codes = design_for_newdata(design, newdata)
            index = newdata.index

        eta = X @ self._theta[block.slice]
        if submodel == "lambda" and include_random and self._lik.has_random:
            blups = self._lik.blups(self._theta)
            eta = eta + np.where(codes >= 0, blups[np.clip(codes, 0, None)], 0.0)

        V = self._vcov[block.slice, block.slice]
        with np.errstate(invalid="ignore"):
            se_eta = np.sqrt(np.einsum("ij,jk,ik->i", X, V, X))
        z = stats.norm.ppf(0.5 + level / 2)

        if LINKS[submodel] == "log":
            predicted = np.exp(eta)
            se = predicted * se_eta
            lower, upper = np.exp(eta - z * se_eta), np.exp(eta + z * se_eta)
        else:
            predicted = expit(eta)
            se = predicted * (1 - predicted) * se_eta
            lower, upper = expit(eta - z * se_eta), expit(eta + z * se_eta)

        return pd.DataFrame({"Predicted": predicted, "SE": se, "lower": lower, "upper": upper},
                            index=index)

    def expected_lambda(self, include_random: bool = True) -> np.ndarray:
        """Expected abundance per site (density scaled to the survey area)."""
        eta = self._lik.linear_predictor(self._theta, "lambda") + self._lik.log_area
        if include_random and self._lik.has_random:
            eta = eta + self._lik.blups(self._theta)[self._lik.designs["lambda"].group_codes]
        return np.exp(eta)

    def cell_probs(self) -> tuple[np.ndarray, np.ndarray]:
        """(pdist, prem) cell probabilities at the estimates."""
        return self._lik.cell_probs(self._theta)

    def fitted(self) -> dict[str, np.ndarray]:
        """Expected distance and removal counts per site."""
        lam = self.expected_lambda()
        pdist, prem = self.cell_probs()
        return {
            "distance": lam[:, None] * pdist * prem.sum(axis=1)[:, None],
            "removal": lam[:, None] * prem * pdist.sum(axis=1)[:, None],
        }

    def residuals(self) -> dict[str, np.ndarray]:
        """Observed minus expected counts, per data type."""
        fitted = self.fitted()
        return {
            "distance": self.frame.y_distance - fitted["distance"],
            "removal": self.frame.y_removal - fitted["removal"],
        }

    def ranef(self):
        """Empirical Bayes posterior of latent abundance at each site."""
        lam = self.expected_lambda()
        pdist, prem = self.cell_probs()
        pdet = pdist.sum(axis=1) * prem.sum(axis=1)
        return LatentAbundance(
            detected=self.frame.detections,
            undetected_mean=lam * (1 - pdet),
            site_covs=self.frame.site_covs,
        )

    # -------------------------------------------------------------------------
    # Simulation and refitting
    # -------------------------------------------------------------------------
    def simulate(self, nsim: int, rng: np.random.Generator) -> list[tuple[np.ndarray, np.ndarray]]:
        """Draw count datasets from the fitted model (random effects at their estimates)."""
        lam = self.expected_lambda()
        pdist, prem = self.cell_probs()
        return [draw_counts(lam, pdist, prem, rng) for _ in range(nsim)]

    def refit(self, frame: SurveyFrame) -> "FittedModel":
        """Fit the same formulas to another frame, starting from these estimates."""
        return fit_gdistremoval(
            frame,
            lambda_formula=self.formulas["lambda"].formula,
            distance_formula=self.formulas["dist"].formula,
            removal_formula=self.formulas["rem"].formula,
            output=self.output,
            keyfun=self.keyfun,
            starts=self._theta,
            n_quad=self.n_quad,
        )

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------
    def to_dict(self) -> dict[str, Any]:
        return {
            "formulas": {name: f.formula for name, f in self.formulas.items()},
            "output": self.output,
            "keyfun": self.keyfun,
            "n_quad": self.n_quad,
            "parameter_names": [f"{b.submodel}.{t}" for b in self._lik.blocks.values() for t in b.terms],
            "theta": self._theta.tolist(),
            "vcov": np.where(np.isfinite(self._vcov), self._vcov, np.nan).tolist(),
            "loglik": self.loglik,
            "aic": self.aic,
            "n_params": self.n_params,
            "converged": self.converged,
            "message": self.message,
            "n_iter": self.n_iter,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], frame: SurveyFrame, rtol: float = 1e-8) -> "FittedModel":
        """
        Rebuild a fit saved with ``to_dict`` against its frame.

        Raises:
            ValueError: If the stored log-likelihood does not match the frame.
        """
        formulas = {name: parse_formula(f) for name, f in data["formulas"].items()}
        lik = _Likelihood(frame, formulas, data["keyfun"], data["output"], data["n_quad"])
        theta = np.asarray(data["theta"], dtype=float)
        loglik = lik.loglik(theta)
        if not math.isclose(loglik, data["loglik"], rel_tol=rtol, abs_tol=1e-6):
            raise ValueError(
                f"Stored model does not match the frame: logLik {data['loglik']:.6f} vs {loglik:.6f}"
            )
        vcov = np.array(data["vcov"], dtype=float)
        return cls(lik, formulas, theta, vcov, loglik, data["converged"],
                   data.get("message", ""), data.get("n_iter", 0), data["n_quad"])

    def __repr__(self) -> str:
        forms = ", ".join(f"{k}={v.formula}" for k, v in self.formulas.items())
        return f"FittedModel({forms}, AIC={self.aic:.3f})"


def _covariance(lik: _Likelihood, theta: np.ndarray) -> np.ndarray:
    """Inverse numerical Hessian of the negative log-likelihood."""
    hessian = approx_hess(theta, lik.nll)
    try:
        vcov = np.linalg.inv(hessian)
    except np.linalg.LinAlgError:
        warnings.warn("Hessian is singular; standard errors are not available", RuntimeWarning)
        return np.full_like(hessian, np.nan)
    if np.any(np.diag(vcov) < 0):
        warnings.warn("Hessian is not positive definite; some standard errors are not available",
                      RuntimeWarning)
    return vcov


def fit_gdistremoval(
    frame: SurveyFrame,
    lambda_formula: str = "~1",
    distance_formula: str = "~1",
    removal_formula: str = "~1",
    output: str = "abund",
    keyfun: str = "halfnorm",
    starts: Sequence[float] | None = None,
    n_quad: int = 40,
    method: str = "BFGS",
    maxiter: int = 1000,
) -> FittedModel:
    """
    Fit the distance-removal abundance model by maximum likelihood.

    Args:
        frame: Survey data.
        lambda_formula: Abundance formula; may include one ``(1|group)`` term.
        distance_formula: Formula for log detection scale.
        removal_formula: Formula for logit per-unit-time detection.
        output: "abund" (lambda is abundance per site) or "density"
            (lambda is density per hectare).
        keyfun: Detection key function.
        starts: Starting values for the full parameter vector.
        n_quad: Gauss-Hermite nodes for the random intercept.
        method: scipy.optimize.minimize method.
        maxiter: Maximum optimizer iterations.

    Returns:
        FittedModel. A fit counts as converged when the optimizer reports
        success or the Newton step from the optimum would gain less than
        ``DECREMENT_TOL`` in log-likelihood.
        Non-convergence is reported in ``converged`` and
        ``message`` rather than raised.

    Raises:
        ModelFitError: If the log-likelihood is not finite at the optimum.
    """
    formulas = {
        "lambda": parse_formula(lambda_formula),
        "dist": parse_formula(distance_formula),
        "rem": parse_formula(removal_formula),
    }
    lik = _Likelihood(frame, formulas, keyfun, output, n_quad)

    if starts is None:
        x0 = lik.default_starts()
    else:
        x0 = np.asarray(starts, dtype=float)
        if x0.shape != (lik.n_theta,):
            raise ValueError(f"starts must have length {lik.n_theta}, got {x0.shape}")

    result = optimize.minimize(lik.nll, x0, method=method, options={"maxiter": maxiter})
    theta = result.x
    loglik = lik.loglik(theta)
    if not np.isfinite(loglik):
        raise ModelFitError(f"Log-likelihood is not finite at the optimum ({result.message})")

    vcov = _covariance(lik, theta)
    # BFGS on finite differences often stops on precision loss at the optimum
    converged = bool(result.success) or newton_decrement(lik, theta, vcov) <= DECREMENT_TOL
    return FittedModel(lik, formulas, theta, vcov, loglik, converged,
                       str(result.message), int(result.nit), n_quad)


def newton_decrement(lik: _Likelihood, theta: np.ndarray, vcov: np.ndarray) -> float:
    """
    Log-likelihood gain of a Newton step from ``theta``: g' H^-1 g / 2.

    Infinite when the covariance is not positive definite.
    """
    if not np.all(np.isfinite(vcov)) or np.linalg.eigvalsh((vcov + vcov.T) / 2).min() <= 0:
        return math.inf
    gradient = approx_fprime(theta, lik.nll, centered=True)
    return float(0.5 * gradient @ vcov @ gradient)


def load_fitted_model(path: Path | str, frame: SurveyFrame) -> FittedModel:
    """Read a fit written with ``FittedModel.to_dict`` and rebuild it on its frame."""
    return FittedModel.from_dict(read_json(path), frame)
