#!/usr/bin/env python3
"""
05_citation_history.py

Retrieve the citation history of the modelling software's paper.

Pipeline Step: 05 (optional: a failure here does not stop the pipeline)

This script:
1. Finds the most cited publication on the Google Scholar profile
2. Reads its per-year citation counts
3. Computes citation statistics over the reporting years

Inputs:
    - configs/params.yml (citations)
    - Google Scholar (network)

Outputs:
    - data/processed/citations/citation_history.parquet
    - data/processed/citations/citation_statistics.json
    - reports/figures/citations.png
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import matplotlib.pyplot as plt

from acfl_abundance.paths import paths
from acfl_abundance.logging_utils import get_logger, get_run_id, log_output_written
from acfl_abundance.io_utils import (
    atomic_write_figure, atomic_write_json, atomic_write_parquet, read_yaml,
)
from acfl_abundance.hashing import write_metadata_sidecar
from acfl_abundance.citations import citation_statistics, get_citation_history
from acfl_abundance.figures import citation_figure
from acfl_abundance.schemas import validate_schema


SCRIPT_NAME = "05_citation_history"


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
        cfg = params["citations"]

        # A failed retrieval must not leave an earlier run's statistics for the report
        out_dir = paths.processed_citations
        stats_path = out_dir / "citation_statistics.json"
        stats_path.unlink(missing_ok=True)

        history = get_citation_history(
            cfg["scholar_id"], base_url=cfg["base_url"], timeout=cfg["timeout"], logger=logger,
        )
        validate_schema(history, "citation_history")

        history_path = out_dir / "citation_history.parquet"
        atomic_write_parquet(history_path, history)
        log_output_written(logger, history_path, row_count=len(history))
        write_metadata_sidecar(
            history_path,
            run_id,
            config_files=[paths.params_yml],
            parameters={"scholar_id": cfg["scholar_id"]},
            row_count=len(history),
        )

        stats = citation_statistics(history, cfg["year_range"], cfg["recent_years"])
        atomic_write_json(stats_path, {**stats, "year_range": cfg["year_range"],
                                       "recent_years": cfg["recent_years"]})
        log_output_written(logger, stats_path)

        fig = citation_figure(history)
        fig_path = paths.reports_figures / "citations.png"
        atomic_write_figure(fig_path, fig, dpi=150)
        plt.close(fig)
        log_output_written(logger, fig_path)

        logger.info("=" * 60)
        logger.info(f"{SCRIPT_NAME} completed successfully")
        logger.info(f"   {stats['n_years']} years, {stats['total_cites']:,} citations, "
                    f"recent mean {stats['mean_recent_cites']:.1f}/year")
        logger.info("=" * 60)

        return 0

    except Exception as e:
        logger.exception(f"Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
