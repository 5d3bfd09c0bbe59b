"""
Smoke tests for pipeline outputs.

These tests verify that:
- Expected output files exist
- Output files have expected structure
- Key statistics match the values recorded in configs/expected_values.yml

They need a completed pipeline run and are skipped otherwise.

Run with: pytest tests/ -v -m smoke
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
import pandas as pd

from acfl_abundance.io_utils import read_json
from acfl_abundance.paths import paths


pytestmark = [
    pytest.mark.smoke,
    pytest.mark.integration,
    pytest.mark.skipif(
        not (paths.processed_inference / "inference_summary.json").exists(),
        reason="Pipeline outputs not found; run acfl-run-all first",
    ),
]


class TestOutputFilesExist:
    """Verify expected output files exist."""

    def test_survey_summaries_exist(self):
        assert (paths.processed_survey / "distance_summary.parquet").exists()
        assert (paths.processed_survey / "removal_summary.parquet").exists()

    def test_model_outputs_exist(self):
        assert (paths.processed_models / "model_selection.parquet").exists()
        assert (paths.processed_models / "parboot.json").exists()

    def test_power_analysis_exists(self):
        path = paths.processed_simulation / "power_analysis.parquet"
        assert path.exists(), f"Missing: {path}"

    def test_figure_exists(self, params_config):
        path = paths.reports_figures / params_config["figure"]["filename"]
        assert path.exists(), f"Missing: {path}"

    def test_sidecars_exist(self):
        """Key tables carry a metadata sidecar."""
        for path in [
            paths.processed_survey / "distance_summary.parquet",
            paths.processed_models / "model_selection.parquet",
            paths.processed_inference / "predictions.parquet",
        ]:
            sidecar = path.parent / f"{path.stem}_metadata.json"
            assert sidecar.exists(), f"No sidecar for {path.name}"


class TestSurveyOutputs:
    """Verify the aggregated survey tables."""

    @pytest.fixture
    def summaries(self):
        return (pd.read_parquet(paths.processed_survey / "distance_summary.parquet"),
                pd.read_parquet(paths.processed_survey / "removal_summary.parquet"))

    def test_row_count(self, summaries, expected_values):
        distance, removal = summaries
        expected = expected_values["survey"]["n_occasions"]["value"]
        assert len(distance) == len(removal) == expected

    def test_totals_agree(self, summaries):
        distance, removal = summaries
        assert (distance[["dist25", "dist50"]].sum(axis=1)
                == removal[["per3", "per5", "per10"]].sum(axis=1)).all()


class TestModelSelection:
    """Verify the AIC table."""

    @pytest.fixture
    def selection(self):
        return pd.read_parquet(paths.processed_models / "model_selection.parquet")

    def test_top_model(self, selection, expected_values):
        assert selection["model"].iloc[0] == expected_values["model_selection"]["top_model"]["value"]

    def test_weights_sum_to_one(self, selection):
        assert abs(selection["weight"].sum() - 1.0) < 1e-9

    def test_aic_values(self, selection, expected_values):
        recorded = expected_values["model_selection"]
        for row in selection.itertuples():
            expectation = recorded.get(f"aic.{row.model}")
            if expectation is None:
                continue
            assert abs(row.aic - expectation["value"]) <= expectation["tolerance"], row.model


class TestInference:
    """Verify the top-model inference."""

    @pytest.fixture
    def summary(self):
        return read_json(paths.processed_inference / "inference_summary.json")

    def test_baseline_and_terminal_abundance(self, summary, expected_values):
        recorded = expected_values["predictions"]
        for key in ["baseline_abundance", "terminal_abundance"]:
            expectation = recorded[key]
            assert abs(summary[key] - expectation["value"]) <= expectation["tolerance"], key

    def test_predictions_bracketed(self):
        predictions = pd.read_parquet(paths.processed_inference / "predictions.parquet")
        assert (predictions["lower"] <= predictions["Predicted"]).all()
        assert (predictions["Predicted"] <= predictions["upper"]).all()

    def test_latent_not_below_detected(self):
        latent = pd.read_parquet(paths.processed_inference / "latent_abundance.parquet")
        assert (latent["bup_mean"] >= latent["detected"]).all()


class TestReport:
    """Verify the rendered report."""

    def test_report_written(self, params_config):
        path = paths.reports / params_config["report"]["filename"]
        assert path.exists(), f"Missing: {path}"
        assert "Expected-value checks" in path.read_text(encoding="utf-8")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
