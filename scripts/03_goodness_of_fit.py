#!/usr/bin/env python3
"""
03_goodness_of_fit.py

Residual diagnostics and parametric bootstrap for the top model.

Pipeline Step: 03

This script:
1. Plots residuals against fitted values for the distance and removal data
2. Runs a parametric bootstrap of the fit statistic

The bootstrap is a crude check; a small p-value is reported as a known
limitation of the analysis, not acted on.

Inputs:
    - data/processed/survey/*_summary.parquet
    - data/processed/models/<top_model>.json
    - configs/params.yml (goodness_of_fit, inference)

Outputs:
    - data/processed/models/parboot.json
    - reports/figures/residuals.png
    - reports/figures/parboot.png
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import matplotlib.pyplot as plt

from acfl_abundance.paths import paths
from acfl_abundance.logging_utils import (
    get_logger, get_run_id, log_output_written, log_qa_check,
)
from acfl_abundance.io_utils import atomic_write_figure, atomic_write_json, read_yaml
from acfl_abundance.hashing import write_metadata_sidecar
from acfl_abundance.figures import parboot_figure, residual_figure
from acfl_abundance.frame import load_survey_frame
from acfl_abundance.model import load_fitted_model
from acfl_abundance.simulate import parboot


SCRIPT_NAME = "03_goodness_of_fit"


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
        gof = params["goodness_of_fit"]
        top_model = params["inference"]["top_model"]

        frame = load_survey_frame(paths.processed_survey, params)
        fit = load_fitted_model(paths.processed_models / f"{top_model}.json", frame)
        logger.info(f"Loaded {top_model}: {fit}")

        # Residuals
        fig = residual_figure(fit.fitted(), fit.residuals())
        residual_path = paths.reports_figures / "residuals.png"
        atomic_write_figure(residual_path, fig, dpi=150)
        plt.close(fig)
        log_output_written(logger, residual_path)

        # Parametric bootstrap
        result = parboot(fit, statistic=gof["statistic"], nsim=gof["nsim"], seed=gof["seed"],
                         logger=logger)
        summary = result.summary()
        log_qa_check(logger, "parboot_replicates", result.n_failed == 0,
                     f"{result.nsim} of {gof['nsim']} replicates refitted")
        if summary["p_value"] < 0.05:
            logger.warning(f"Parametric bootstrap suggests lack of fit (p = {summary['p_value']:.3f})")

        parboot_path = paths.processed_models / "parboot.json"
        atomic_write_json(parboot_path, {**summary, "model": top_model,
                                         "t_star": result.t_star.tolist()})
        log_output_written(logger, parboot_path)
        write_metadata_sidecar(
            parboot_path,
            run_id,
            input_files=[paths.processed_models / f"{top_model}.json"],
            config_files=[paths.params_yml],
            parameters={"seed": gof["seed"], "nsim": gof["nsim"], "statistic": gof["statistic"]},
        )

        fig = parboot_figure(result.t_star, result.t0, result.statistic)
        hist_path = paths.reports_figures / "parboot.png"
        atomic_write_figure(hist_path, fig, dpi=150)
        plt.close(fig)
        log_output_written(logger, hist_path)

        logger.info("=" * 60)
        logger.info(f"{SCRIPT_NAME} completed successfully")
        logger.info(f"   {gof['statistic']}: t0={summary['t0']:.2f}, "
                    f"mean t*={summary['mean_t_star']:.2f}, p={summary['p_value']:.3f}")
        logger.info("=" * 60)

        return 0

    except Exception as e:
        logger.exception(f"Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
