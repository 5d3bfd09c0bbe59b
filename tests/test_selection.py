"""
Tests for acfl_abundance.selection module.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
import numpy as np

from acfl_abundance.model import fit_gdistremoval
from acfl_abundance.selection import check_compatible, coefficient_table, model_selection


pytestmark = pytest.mark.slow


@pytest.fixture(scope="module")
def fits(simulated_fit, simulated_fit_fixed, simulated_frame):
    return {
        "null": fit_gdistremoval(simulated_frame, lambda_formula="~1 + (1|Point)"),
        "fixed": simulated_fit_fixed,
        "full": simulated_fit,
    }


class TestModelSelection:
    """Tests for model_selection()."""

    def test_sorted_by_aic(self, fits):
        table = model_selection(fits)
        assert list(table.columns) == [
            "model", "formula", "n_params", "loglik", "aic", "delta", "weight", "cum_weight",
        ]
        assert table["aic"].is_monotonic_increasing
        assert table["delta"].iloc[0] == 0

    def test_weights(self, fits):
        table = model_selection(fits)
        assert table["weight"].sum() == pytest.approx(1.0)
        assert table["cum_weight"].iloc[-1] == pytest.approx(1.0)
        assert table["weight"].is_monotonic_decreasing

    def test_random_sd_not_counted(self, fits):
        table = model_selection(fits).set_index("model")
        assert table.loc["full", "n_params"] == table.loc["fixed", "n_params"] == 5
        assert table.loc["null", "n_params"] == 3

    def test_habitat_and_trend_beat_null(self, fits):
        """The simulated habitat and year effects make the null model worse."""
        table = model_selection(fits).set_index("model")
        assert table.loc["full", "aic"] < table.loc["null", "aic"]

    def test_ties_keep_input_order(self, simulated_fit):
        table = model_selection({"b": simulated_fit, "a": simulated_fit})
        assert table["model"].tolist() == ["b", "a"]
        assert table["weight"].tolist() == pytest.approx([0.5, 0.5])


class TestCompatibility:
    """Tests for check_compatible()."""

    def test_empty_raises(self):
        with pytest.raises(ValueError, match="No fitted models"):
            check_compatible({})

    def test_different_frames_raise(self, simulated_fit, small_frame):
        other = fit_gdistremoval(small_frame)
        with pytest.raises(ValueError, match="sites"):
            check_compatible({"sim": simulated_fit, "small": other})

    def test_different_counts_raise(self, simulated_fit_fixed):
        frame = simulated_fit_fixed.frame
        y_distance = np.array(frame.y_distance)
        y_removal = np.array(frame.y_removal)
        y_distance[0, 0] += 1
        y_removal[0, 0] += 1
        other = fit_gdistremoval(frame.with_counts(y_distance, y_removal),
                                 lambda_formula="~Habitat + Year")
        with pytest.raises(ValueError, match="different counts"):
            check_compatible({"a": simulated_fit_fixed, "b": other})


class TestCoefficientTable:
    """Tests for coefficient_table()."""

    def test_stacks_fits(self, fits):
        table = coefficient_table(fits)
        assert table.columns[0] == "model"
        assert set(table["model"]) == {"null", "fixed", "full"}
        assert len(table) == 3 + 5 + 5


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
