#!/usr/bin/env python3
"""
04_inference_and_figure.py

Inference from the top model: coefficients, predictions, figure and
latent abundance.

Pipeline Step: 04

This script:
1. Summarizes the top model (fixed effects, random-effect SD, detection scale)
2. Predicts population-level abundance by habitat and year with Wald CIs
3. Draws the abundance trend figure (TIFF, LZW) with point-level predictions
4. Computes empirical Bayes abundance per occasion and compares habitats
   with a seeded Monte Carlo interval

Inputs:
    - data/processed/survey/*_summary.parquet
    - data/processed/models/<top_model>.json
    - configs/params.yml (inference, figure)

Outputs:
    - data/processed/inference/top_model_coefficients.parquet
    - data/processed/inference/predictions.parquet
    - data/processed/inference/latent_abundance.parquet
    - data/processed/inference/habitat_comparison.parquet
    - data/processed/inference/inference_summary.json
    - reports/figures/Figure_5.tiff (+ PNG preview)
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import matplotlib.pyplot as plt
import pandas as pd

from acfl_abundance.paths import paths
from acfl_abundance.logging_utils import (
    get_logger, get_run_id, log_output_written, log_qa_check,
)
from acfl_abundance.io_utils import (
    atomic_write_csv, atomic_write_figure, atomic_write_json, atomic_write_parquet, read_yaml,
)
from acfl_abundance.hashing import write_metadata_sidecar
from acfl_abundance.figures import abundance_trend_figure
from acfl_abundance.frame import load_survey_frame
from acfl_abundance.model import load_fitted_model
from acfl_abundance.predict import group_means, prediction_grid
from acfl_abundance.schemas import validate_schema


SCRIPT_NAME = "04_inference_and_figure"


def main():
    """Main entry point."""
    run_id = get_run_id()
    logger = get_logger(SCRIPT_NAME, run_id)

    logger.info("=" * 60)
    logger.info(f"Starting {SCRIPT_NAME}")
    logger.info(f"Run ID: {run_id}")
    logger.info("=" * 60)

    try:
        params = read_yaml(paths.params_yml)
        inf = params["inference"]
        fig_cfg = params["figure"]
        levels = params["data"]["habitat_levels"]
        level = inf["confidence_level"]

        frame = load_survey_frame(paths.processed_survey, params)
        fit_path = paths.processed_models / f"{inf['top_model']}.json"
        fit = load_fitted_model(fit_path, frame)
        logger.info(f"Top model: {fit}")

        out_dir = paths.processed_inference

        # Coefficients
        coefficients = fit.summary()
        validate_schema(coefficients, "coefficients")
        coef_path = out_dir / "top_model_coefficients.parquet"
        atomic_write_parquet(coef_path, coefficients)
        log_output_written(logger, coef_path, row_count=len(coefficients))
        atomic_write_csv(paths.reports_tables / "top_model_coefficients.csv", coefficients)

        random_effects = fit.random_effects()
        for row in random_effects.itertuples():
            logger.info(f"Random intercept {row.group}: variance {row.variance:.3f}, SD {row.sd:.3f}")

        # Population-level predictions by habitat and year
        grid = prediction_grid(levels, range(inf["prediction_years"]))
        predictions = pd.concat(
            [grid, fit.predict("lambda", newdata=grid, level=level, include_random=False)],
            axis=1,
        )
        validate_schema(predictions, "predictions")
        pred_path = out_dir / "predictions.parquet"
        atomic_write_parquet(pred_path, predictions)
        log_output_written(logger, pred_path, row_count=len(predictions))
        write_metadata_sidecar(
            pred_path,
            run_id,
            input_files=[fit_path],
            config_files=[paths.params_yml],
            parameters={"confidence_level": level, "prediction_years": inf["prediction_years"]},
            row_count=len(predictions),
        )

        # Point-level predictions including the random intercepts
        site_covs = frame.site_covs
        site_predictions = pd.concat([site_covs, fit.predict("lambda", level=level)], axis=1)

        fig = abundance_trend_figure(
            predictions, site_predictions,
            base_year=inf["base_year"],
            habitat_levels=levels,
            width_in=fig_cfg["width_in"],
            height_in=fig_cfg["height_in"],
            y_label=fig_cfg["y_label"],
        )
        figure_path = paths.reports_figures / fig_cfg["filename"]
        atomic_write_figure(figure_path, fig, dpi=fig_cfg["dpi"],
                            pil_kwargs={"compression": fig_cfg["compression"]})
        preview_path = figure_path.with_suffix(".png")
        atomic_write_figure(preview_path, fig, dpi=100)
        plt.close(fig)
        log_output_written(logger, figure_path)

        # Empirical Bayes abundance per occasion
        latent = fit.ranef()
        intervals = latent.credible_interval(level)
        latent_table = site_covs.assign(
            detected=latent.detected,
            bup_mean=latent.bup("mean"),
            bup_mode=latent.bup("mode"),
            lower=intervals["lower"].to_numpy(),
            upper=intervals["upper"].to_numpy(),
        )
        log_qa_check(logger, "latent_not_below_observed",
                     bool((latent_table["bup_mean"] >= latent_table["detected"]).all()),
                     "Posterior mean abundance is at least the observed count at every occasion")
        latent_path = out_dir / "latent_abundance.parquet"
        atomic_write_parquet(latent_path, latent_table)
        log_output_written(logger, latent_path, row_count=len(latent_table))

        # Habitat comparison of latent abundance
        comparison = latent.summarize(
            group_means(site_covs["Habitat"], {h: h for h in levels}),
            nsims=inf["ranef_nsims"], seed=inf["ranef_seed"], level=level,
        )
        comparison = comparison.rename_axis("habitat").reset_index()
        comp_path = out_dir / "habitat_comparison.parquet"
        atomic_write_parquet(comp_path, comparison)
        log_output_written(logger, comp_path, row_count=len(comparison))

        reference = predictions[(predictions["Habitat"] == levels[0]) & (predictions["Year"] == 0)]
        summary = {
            "model": inf["top_model"],
            "aic": fit.aic,
            "loglik": fit.loglik,
            "coefficients": {f"{r.submodel}.{r.term}": r.estimate for r in coefficients.itertuples()},
            "random_sd": {r.group: r.sd for r in random_effects.itertuples()},
            "detection_scale": fit.detection_scale(),
            "baseline_abundance": float(reference["Predicted"].iloc[0]),
            "terminal_abundance": float(predictions["Predicted"].iloc[-1]),
            "confidence_level": level,
        }
        summary_path = out_dir / "inference_summary.json"
        atomic_write_json(summary_path, summary)
        log_output_written(logger, summary_path)

        logger.info("=" * 60)
        logger.info(f"{SCRIPT_NAME} completed successfully")
        logger.info(f"   Baseline abundance ({levels[0]}, {inf['base_year']}): "
                    f"{summary['baseline_abundance']:.2f}")
        logger.info(f"   Terminal abundance: {summary['terminal_abundance']:.2f}")
        for row in comparison.itertuples():
            logger.info(f"   {row.habitat}: mean {row.mean:.2f} [{row.lower:.2f}, {row.upper:.2f}]")
        logger.info("=" * 60)

        return 0

    except Exception as e:
        logger.exception(f"Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
