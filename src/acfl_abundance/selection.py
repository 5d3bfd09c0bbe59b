"""
AIC-based model selection over a named set of fits.
"""

from typing import Mapping

import numpy as np
import pandas as pd

from acfl_abundance.model import FittedModel


def check_compatible(fits: Mapping[str, FittedModel]) -> None:
    """
    Ensure all fits describe the same data.

    Raises:
        ValueError: If the set is empty or fits differ in sites or detections.
    """
    if not fits:
        raise ValueError("No fitted models supplied")

    names = list(fits)
    reference = fits[names[0]].frame
    for name in names[1:]:
        frame = fits[name].frame
        if frame.n_sites != reference.n_sites:
            raise ValueError(
                f"Model '{name}' has {frame.n_sites} sites; '{names[0]}' has {reference.n_sites}"
            )
        if not np.array_equal(frame.detections, reference.detections):
            raise ValueError(f"Model '{name}' was fit to different counts than '{names[0]}'")


def model_selection(fits: Mapping[str, FittedModel]) -> pd.DataFrame:
    """
    Rank fits by AIC.

    Returns:
        DataFrame with model, formula, n_params, loglik, aic, delta, weight
        and cum_weight, sorted by ascending AIC. Ties keep the input order.
    """
    check_compatible(fits)

    table = pd.DataFrame({
        "model": list(fits),
        "formula": [str(fit.formulas["lambda"]) for fit in fits.values()],
        "n_params": [fit.n_params for fit in fits.values()],
        "loglik": [fit.loglik for fit in fits.values()],
        "aic": [fit.aic for fit in fits.values()],
    })
    table = table.sort_values("aic", kind="stable").reset_index(drop=True)

    table["delta"] = table["aic"] - table["aic"].iloc[0]
    relative = np.exp(-table["delta"] / 2)
    table["weight"] = relative / relative.sum()
    table["cum_weight"] = table["weight"].cumsum()
    return table


def coefficient_table(fits: Mapping[str, FittedModel]) -> pd.DataFrame:
    """Stacked Wald tables of every fit, with a leading model column."""
    frames = []
    for name, fit in fits.items():
        summary = fit.summary()
        summary.insert(0, "model", name)
        frames.append(summary)
    return pd.concat(frames, ignore_index=True)
