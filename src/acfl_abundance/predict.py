"""
Latent abundance summaries and prediction helpers.

Conditional on the fitted model, the number of birds present at site i is
the n_i birds detected plus a Poisson number that were present but missed:

    N_i | n_i  ~  n_i + Poisson(lambda_i * (1 - pdet_i))

LatentAbundance holds these per-site posteriors and draws seeded samples
from them so that any aggregate (for example mean abundance per habitat)
can be summarized with a Monte Carlo interval.
"""

from typing import Callable, Hashable, Iterable, Mapping, Sequence

import numpy as np
import pandas as pd
from scipy import stats


class LatentAbundance:
    """Empirical Bayes posterior of latent abundance at each site."""

    def __init__(self, detected: np.ndarray, undetected_mean: np.ndarray,
                 site_covs: pd.DataFrame | None = None):
        self.detected = np.asarray(detected, dtype=np.int64)
        self.undetected_mean = np.asarray(undetected_mean, dtype=float)
        if self.detected.shape != self.undetected_mean.shape:
            raise ValueError("detected and undetected_mean must have the same shape")
        if (self.undetected_mean < 0).any():
            raise ValueError("undetected_mean must be non-negative")
        self.site_covs = site_covs

    @property
    def n_sites(self) -> int:
        return len(self.detected)

    def bup(self, stat: str = "mean") -> np.ndarray:
        """Best unbiased predictor of N per site ("mean" or "mode")."""
        if stat == "mean":
            return self.detected + self.undetected_mean
        if stat == "mode":
            return (self.detected + np.floor(self.undetected_mean)).astype(float)
        raise ValueError(f"stat must be 'mean' or 'mode', got {stat!r}")

    def credible_interval(self, level: float = 0.95) -> pd.DataFrame:
        """Equal-tailed posterior interval of N per site."""
        alpha = 1 - level
        mu = self.undetected_mean
        lower = np.zeros_like(mu)
        upper = np.zeros_like(mu)
        pos = mu > 0
        lower[pos] = stats.poisson.ppf(alpha / 2, mu[pos])
        upper[pos] = stats.poisson.ppf(1 - alpha / 2, mu[pos])
        return pd.DataFrame({"lower": self.detected + lower, "upper": self.detected + upper})

    def posterior(self, K: int | None = None) -> np.ndarray:
        """
        Posterior probabilities of N = 0..K per site, shape (M, K + 1).

        K defaults to a bound holding essentially all posterior mass.
        """
        if K is None:
            K = int(np.max(self.detected + stats.poisson.ppf(1 - 1e-8, np.maximum(self.undetected_mean, 1e-12))))
        k = np.arange(K + 1)[None, :]
        extra = k - self.detected[:, None]
        probs = stats.poisson.pmf(np.clip(extra, 0, None), self.undetected_mean[:, None])
        return np.where(extra >= 0, probs, 0.0)

    def sample(self, nsims: int, rng: np.random.Generator) -> np.ndarray:
        """Posterior draws of N, shape (nsims, M)."""
        missed = rng.poisson(self.undetected_mean, size=(nsims, self.n_sites))
        return self.detected[None, :] + missed

    def predict(self, func: Callable[[np.ndarray], object], nsims: int = 100, seed: int = 0) -> pd.DataFrame:
        """
        Apply ``func`` to each posterior draw.

        Returns:
            One row per draw; columns follow the index of ``func``'s output
            (a Series, dict, array or scalar).
        """
        if nsims < 1:
            raise ValueError(f"nsims must be at least 1, got {nsims}")
        rng = np.random.default_rng(seed)
        draws = self.sample(nsims, rng)
        rows = [func(draw) for draw in draws]
        first = rows[0]
        if isinstance(first, pd.Series):
            return pd.DataFrame(rows).reset_index(drop=True)
        if isinstance(first, Mapping):
            return pd.DataFrame(list(rows))
        return pd.DataFrame(np.vstack([np.atleast_1d(np.asarray(r, dtype=float)) for r in rows]))

    def summarize(self, func: Callable[[np.ndarray], object], nsims: int = 100, seed: int = 0,
                  level: float = 0.95) -> pd.DataFrame:
        """Mean and percentile interval of ``func`` across posterior draws."""
        samples = self.predict(func, nsims=nsims, seed=seed)
        tail = (1 - level) / 2 * 100
        return pd.DataFrame({
            "mean": samples.mean(axis=0),
            "lower": np.percentile(samples, tail, axis=0),
            "upper": np.percentile(samples, 100 - tail, axis=0),
        }, index=samples.columns)


def group_means(values: Sequence[Hashable], groups: Mapping[str, Hashable]) -> Callable[[np.ndarray], pd.Series]:
    """
    Aggregation function returning mean abundance per group.

    Args:
        values: Group value of each site, e.g. the Habitat covariate.
        groups: Output name -> group value, e.g. {"river": "River Levee"}.
    """
    values = np.asarray(values, dtype=object)
    masks = {name: values == level for name, level in groups.items()}
    for name, mask in masks.items():
        if not mask.any():
            raise ValueError(f"No sites belong to group {name!r}")

    def _means(draw: np.ndarray) -> pd.Series:
        return pd.Series({name: float(np.mean(draw[mask])) for name, mask in masks.items()})

    return _means


def prediction_grid(levels: Sequence[str], years: Iterable[int]) -> pd.DataFrame:
    """
    Habitat x year covariate grid, year-major with habitats alternating.

    Habitat keeps the level order so patsy codes it like the fitted data.
    """
    years = list(years)
    levels = list(levels)
    return pd.DataFrame({
        "Habitat": pd.Categorical([h for _ in years for h in levels], categories=levels),
        "Year": [y for y in years for _ in levels],
    })
