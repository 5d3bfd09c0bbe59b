#!/usr/bin/env python3
"""
01_process_survey_data.py

Load the raw point counts and aggregate them into occasion summaries.

Pipeline Step: 01

This script:
1. Loads the raw survey records and keeps the years with complete sampling
2. Pivots counts by distance bin and by removal period per survey occasion
3. Cross-checks that both summaries count the same birds per occasion
4. Checks that habitat is constant per point

Inputs:
    - data/raw/acfl_roanoke_river.csv
    - configs/params.yml (data section)

Outputs:
    - data/processed/survey/distance_summary.parquet
    - data/processed/survey/removal_summary.parquet
    - data/processed/survey/survey_summary.json
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from acfl_abundance.paths import paths, get_path
from acfl_abundance.logging_utils import get_logger, get_run_id, log_output_written
from acfl_abundance.io_utils import atomic_write_json, atomic_write_parquet, read_yaml
from acfl_abundance.hashing import write_metadata_sidecar
from acfl_abundance.aggregate import aggregate_occasions
from acfl_abundance.loader import expand_year_ranges, load_survey_records
from acfl_abundance.qa import run_survey_qa_checks
from acfl_abundance.schemas import validate_schema


SCRIPT_NAME = "01_process_survey_data"


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
        data_cfg = params["data"]

        survey_file = get_path(data_cfg["survey_file"])
        years = expand_year_ranges(data_cfg["year_ranges"])
        logger.info(f"Keeping {len(years)} years: {years[0]}-{years[-1]} ({data_cfg['year_ranges']})")

        records = load_survey_records(survey_file, years=years, logger=logger)

        keys = data_cfg["occasion_keys"]
        distance_bins = data_cfg["distance_bins"]
        removal_bins = data_cfg["removal_bins"]
        distance_summary, removal_summary = aggregate_occasions(
            records, keys, distance_bins, removal_bins, logger=logger,
        )

        run_survey_qa_checks(
            distance_summary, removal_summary, keys,
            list(distance_bins.values()), list(removal_bins.values()),
            logger=logger,
        )
        validate_schema(distance_summary, "distance_summary")
        validate_schema(removal_summary, "removal_summary")

        out_dir = paths.processed_survey
        for name, table in [("distance_summary", distance_summary),
                            ("removal_summary", removal_summary)]:
            output_path = out_dir / f"{name}.parquet"
            atomic_write_parquet(output_path, table)
            log_output_written(logger, output_path, row_count=len(table))
            write_metadata_sidecar(
                output_path,
                run_id,
                input_files=[survey_file],
                config_files=[paths.params_yml],
                parameters={"years": years, "occasion_keys": keys},
                row_count=len(table),
            )

        totals = distance_summary[list(distance_bins.values())].sum(axis=1)
        summary = {
            "n_records": len(records),
            "n_occasions": len(distance_summary),
            "n_points": int(distance_summary[["TransectName", "Point"]].drop_duplicates().shape[0]),
            "n_years": int(distance_summary["Year"].nunique()),
            "first_year": int(distance_summary["Year"].min()),
            "last_year": int(distance_summary["Year"].max()),
            "total_detections": int(totals.sum()),
            "occasions_with_detections": int((totals > 0).sum()),
            "habitat_occasions": {str(k): int(v) for k, v in
                                  distance_summary["Habitat"].value_counts(sort=False).items()},
        }
        summary_path = out_dir / "survey_summary.json"
        atomic_write_json(summary_path, summary)
        log_output_written(logger, summary_path)

        logger.info("=" * 60)
        logger.info(f"{SCRIPT_NAME} completed successfully")
        logger.info(f"   Occasions: {summary['n_occasions']} "
                    f"({summary['n_points']} points x {summary['n_years']} years)")
        logger.info(f"   Detections: {summary['total_detections']:,}")
        logger.info("=" * 60)

        return 0

    except Exception as e:
        logger.exception(f"Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
