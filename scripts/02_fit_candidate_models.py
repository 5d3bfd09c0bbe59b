#!/usr/bin/env python3
"""
02_fit_candidate_models.py

Fit the candidate distance-removal models and rank them by AIC.

Pipeline Step: 02

This script:
1. Builds the survey frame from the occasion summaries
2. Fits each candidate model (all with a random intercept by point)
3. Ranks the candidates by AIC with deltas and weights

Inputs:
    - data/processed/survey/distance_summary.parquet
    - data/processed/survey/removal_summary.parquet
    - configs/params.yml (frame, models)

Outputs:
    - data/processed/models/<model>.json (one per candidate)
    - data/processed/models/model_selection.parquet
    - data/processed/models/coefficients.parquet
    - reports/tables/model_selection.csv
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from acfl_abundance.paths import paths
from acfl_abundance.logging_utils import (
    get_logger, get_run_id, log_model_fit, log_output_written, log_qa_check,
)
from acfl_abundance.io_utils import (
    atomic_write_csv, atomic_write_json, atomic_write_parquet, read_yaml,
)
from acfl_abundance.hashing import write_metadata_sidecar
from acfl_abundance.frame import load_survey_frame
from acfl_abundance.model import fit_gdistremoval
from acfl_abundance.schemas import validate_schema
from acfl_abundance.selection import coefficient_table, model_selection


SCRIPT_NAME = "02_fit_candidate_models"


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
        models = params["models"]

        frame = load_survey_frame(paths.processed_survey, params)
        logger.info(f"Frame: {frame.summary()}")

        out_dir = paths.processed_models
        fits = {}
        for name, forms in models["candidates"].items():
            logger.info(f"Fitting {name}: lambda {forms['lambda']}, "
                        f"dist {forms['dist']}, rem {forms['rem']}")
            fit = fit_gdistremoval(
                frame,
                lambda_formula=forms["lambda"],
                distance_formula=forms["dist"],
                removal_formula=forms["rem"],
                output=models["output"],
                keyfun=models["keyfun"],
                n_quad=models["n_quad"],
            )
            log_model_fit(logger, name, fit.loglik, fit.aic, fit.n_params, fit.converged,
                          n_iter=fit.n_iter, message=fit.message)
            fits[name] = fit

            fit_path = out_dir / f"{name}.json"
            atomic_write_json(fit_path, fit.to_dict())
            log_output_written(logger, fit_path)

        selection = model_selection(fits)
        validate_schema(selection, "model_selection")
        coefficients = coefficient_table(fits)
        validate_schema(coefficients, "coefficients")

        log_qa_check(logger, "top_delta_zero", bool(selection["delta"].iloc[0] == 0),
                     f"top model {selection['model'].iloc[0]}")
        log_qa_check(logger, "weights_sum_to_one", bool(abs(selection["weight"].sum() - 1) < 1e-9),
                     f"sum = {selection['weight'].sum():.12f}")
        n_unconverged = sum(not fit.converged for fit in fits.values())
        log_qa_check(logger, "all_models_converged", n_unconverged == 0,
                     f"{n_unconverged} of {len(fits)} fits did not converge")

        selection_path = out_dir / "model_selection.parquet"
        atomic_write_parquet(selection_path, selection)
        log_output_written(logger, selection_path, row_count=len(selection))
        write_metadata_sidecar(
            selection_path,
            run_id,
            input_files=[paths.processed_survey / "distance_summary.parquet",
                         paths.processed_survey / "removal_summary.parquet"],
            config_files=[paths.params_yml],
            parameters={"candidates": models["candidates"], "keyfun": models["keyfun"],
                        "output": models["output"], "n_quad": models["n_quad"]},
            row_count=len(selection),
        )

        coef_path = out_dir / "coefficients.parquet"
        atomic_write_parquet(coef_path, coefficients)
        log_output_written(logger, coef_path, row_count=len(coefficients))

        table_path = paths.reports_tables / "model_selection.csv"
        atomic_write_csv(table_path, selection)
        log_output_written(logger, table_path, row_count=len(selection))

        logger.info("=" * 60)
        logger.info("MODEL SELECTION:")
        for row in selection.itertuples():
            logger.info(f"  {row.model:<10} nPars={row.n_params} AIC={row.aic:.2f} "
                        f"delta={row.delta:.2f} weight={row.weight:.2g}")
        logger.info(f"{SCRIPT_NAME} completed successfully")
        logger.info("=" * 60)

        return 0

    except Exception as e:
        logger.exception(f"Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
