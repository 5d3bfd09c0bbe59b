"""
Figures for the report.

Each function builds and returns a matplotlib Figure; callers save it with
``io_utils.atomic_write_figure`` and close it.
"""

from typing import Sequence

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from matplotlib.figure import Figure


HABITAT_COLORS = ["#1b9e77", "#d95f02", "#7570b3", "#e7298a"]


def abundance_trend_figure(
    predictions: pd.DataFrame,
    site_predictions: pd.DataFrame | None = None,
    base_year: int = 0,
    habitat_levels: Sequence[str] | None = None,
    width_in: float = 7,
    height_in: float = 5,
    y_label: str = "Abundance and 95% CI",
) -> Figure:
    """
    Predicted abundance by habitat over time.

    Args:
        predictions: Population-level predictions with Habitat, Year,
            Predicted, lower and upper columns.
        site_predictions: Optional per-site predictions (Habitat, Year,
            Predicted) drawn as faint points.
        base_year: Calendar year of Year == 0.
        habitat_levels: Habitat drawing order; taken from the data if None.
    """
    levels = list(habitat_levels) if habitat_levels is not None else list(pd.unique(predictions["Habitat"]))
    fig, ax = plt.subplots(figsize=(width_in, height_in))

    for i, habitat in enumerate(levels):
        color = HABITAT_COLORS[i % len(HABITAT_COLORS)]
        if site_predictions is not None:
            pts = site_predictions[site_predictions["Habitat"] == habitat]
            ax.scatter(pts["Year"] + base_year, pts["Predicted"], color=color, alpha=0.2, s=12,
                       linewidths=0)
        rows = predictions[predictions["Habitat"] == habitat].sort_values("Year")
        years = rows["Year"] + base_year
        ax.fill_between(years, rows["lower"], rows["upper"], color=color, alpha=0.2, linewidth=0)
        ax.plot(years, rows["Predicted"], color=color, label=str(habitat))

    ax.set_xlabel("Year", fontsize=14)
    ax.set_ylabel(y_label, fontsize=14)
    ax.tick_params(labelsize=12)
    ax.legend(title="Habitat", loc="upper right", frameon=False)
    fig.tight_layout()
    return fig


def residual_figure(fitted: dict[str, np.ndarray], residuals: dict[str, np.ndarray]) -> Figure:
    """Residuals against fitted values, one panel per data type."""
    names = list(fitted)
    fig, axes = plt.subplots(1, len(names), figsize=(5 * len(names), 4), squeeze=False)
    for ax, name in zip(axes[0], names):
        ax.scatter(np.ravel(fitted[name]), np.ravel(residuals[name]), s=8, alpha=0.4, color="black")
        ax.axhline(0, color="red", linestyle="--", linewidth=1)
        ax.set_xlabel("Fitted values")
        ax.set_ylabel("Residuals")
        ax.set_title(f"{name.capitalize()} data")
    fig.tight_layout()
    return fig


def parboot_figure(t_star: np.ndarray, t0: float, statistic: str = "sse") -> Figure:
    """Histogram of bootstrap statistics with the observed value marked."""
    fig, ax = plt.subplots(figsize=(6, 4))
    ax.hist(t_star, bins=min(20, max(5, len(t_star) // 2)), color="lightgray", edgecolor="black")
    ax.axvline(t0, color="red", linestyle="--", label="Observed")
    ax.set_xlabel(f"Simulated {statistic}")
    ax.set_ylabel("Frequency")
    ax.legend(frameon=False)
    fig.tight_layout()
    return fig


def citation_figure(history: pd.DataFrame) -> Figure:
    """Cumulative citations (bars) above citations per year (line)."""
    history = history.sort_values("year")
    fig, (top, bottom) = plt.subplots(2, 1, figsize=(7, 7))

    top.bar(history["year"], history["cites"].cumsum(), color="dimgray")
    top.set_ylabel("Total citations", fontsize=14)
    top.set_xlabel("Year", fontsize=14)

    # The current year is incomplete
    line = history.iloc[:-1]
    bottom.plot(line["year"], line["cites"], color="black", marker="o")
    bottom.set_ylabel("Citations per year", fontsize=14)
    bottom.set_xlabel("Year", fontsize=14)

    fig.tight_layout()
    return fig
