#!/usr/bin/env python3
"""
00_simulate_power_analysis.py

Simulate a dataset resembling the survey design and estimate power.

Pipeline Step: 00

This script:
1. Simulates 50 points x 15 years of distance-removal counts with a habitat
   effect, a 2% yearly decline and a point random intercept
2. Fits the generating model to check that the coefficients are recovered
3. Estimates power to detect the habitat and year effects at this sample size

Inputs:
    - configs/params.yml (simulation section)

Outputs:
    - data/processed/simulation/simulated_fit.json
    - data/processed/simulation/simulated_coefficients.parquet
    - data/processed/simulation/power_analysis.parquet
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import numpy as np

from acfl_abundance.paths import paths
from acfl_abundance.logging_utils import (
    get_logger, get_run_id, log_model_fit, log_output_written, log_qa_check,
)
from acfl_abundance.io_utils import atomic_write_json, atomic_write_parquet, read_yaml
from acfl_abundance.hashing import write_metadata_sidecar
from acfl_abundance.model import fit_gdistremoval
from acfl_abundance.schemas import validate_schema
from acfl_abundance.simulate import panel_guide, power_analysis, simulate_frame


SCRIPT_NAME = "00_simulate_power_analysis"


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
        sim = params["simulation"]
        models = params["models"]
        formulas = sim["formulas"]
        coefs = sim["coefs"]

        design = {
            "M": sim["n_points"] * sim["n_years"],
            "Jdist": len(sim["dist_breaks"]) - 1,
            "Jrem": sim["n_removal_periods"],
        }
        logger.info(f"Simulation design: {design}, seed {sim['seed']}")

        rng = np.random.default_rng(sim["seed"])
        frame = simulate_frame(
            formulas, design, coefs,
            guide=panel_guide(sim["n_years"], sim["habitat_labels"]),
            dist_breaks=sim["dist_breaks"],
            rng=rng,
            keyfun=models["keyfun"],
            output=models["output"],
        )
        logger.info(f"Simulated {frame.n_sites} sites, {int(frame.detections.sum()):,} detections")

        # Fit the generating model
        fit = fit_gdistremoval(
            frame,
            lambda_formula=formulas["lambda"],
            distance_formula=formulas["dist"],
            removal_formula=formulas["rem"],
            output=models["output"],
            keyfun=models["keyfun"],
            n_quad=models["n_quad"],
        )
        log_model_fit(logger, "simulated", fit.loglik, fit.aic, fit.n_params, fit.converged)

        coefficients = fit.summary()
        coefficients["true"] = [
            coefs.get(row.submodel, {}).get(row.term, np.nan)
            for row in coefficients.itertuples()
        ]
        validate_schema(coefficients, "coefficients")

        # Recovery: each true value within 3 SE of its estimate
        z_true = ((coefficients["estimate"] - coefficients["true"]) / coefficients["se"]).abs()
        log_qa_check(logger, "simulated_coefficients_recovered", bool((z_true < 3).all()),
                     f"max |estimate - true| / SE = {z_true.max():.2f}")

        out_dir = paths.processed_simulation
        coef_path = out_dir / "simulated_coefficients.parquet"
        atomic_write_parquet(coef_path, coefficients)
        log_output_written(logger, coef_path, row_count=len(coefficients))

        fit_path = out_dir / "simulated_fit.json"
        atomic_write_json(fit_path, {
            "frame": frame.summary(),
            "fit": fit.to_dict(),
            "random_effects": fit.random_effects().to_dict(orient="records"),
        })
        log_output_written(logger, fit_path)

        # Power analysis
        power = power_analysis(
            fit, coefs,
            nsim=sim["power"]["nsim"],
            alpha=sim["power"]["alpha"],
            seed=sim["seed"],
            logger=logger,
        )
        validate_schema(power.table, "power_analysis")

        power_path = out_dir / "power_analysis.parquet"
        atomic_write_parquet(power_path, power.table)
        log_output_written(logger, power_path, row_count=len(power.table))
        write_metadata_sidecar(
            power_path,
            run_id,
            config_files=[paths.params_yml],
            parameters={
                "seed": sim["seed"],
                "nsim": power.nsim,
                "alpha": power.alpha,
                "n_failed": power.n_failed,
                "formulas": formulas,
                "coefs": coefs,
            },
            row_count=len(power.table),
        )

        logger.info("=" * 60)
        logger.info("POWER:")
        for row in power.table.itertuples():
            logger.info(f"  {row.submodel}.{row.term} (effect {row.effect:+.3f}): {row.power:.2f}")
        logger.info(f"{SCRIPT_NAME} completed successfully")
        logger.info("=" * 60)

        return 0

    except Exception as e:
        logger.exception(f"Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
