"""
Tests for acfl_abundance.report and acfl_abundance.figures.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
import pandas as pd
import numpy as np
import matplotlib.pyplot as plt

from acfl_abundance.figures import (
    abundance_trend_figure,
    citation_figure,
    parboot_figure,
    residual_figure,
)
from acfl_abundance.io_utils import atomic_write_figure
from acfl_abundance.predict import prediction_grid
from acfl_abundance.qa import QAResult
from acfl_abundance.report import (
    ReportFigure,
    ReportSection,
    ReportTable,
    embed_image,
    render_html,
    validation_table,
)


@pytest.fixture
def predictions():
    grid = prediction_grid(["River Levee", "Hardwood Plantation"], range(4))
    predicted = np.linspace(5, 3, len(grid))
    return grid.assign(Predicted=predicted, SE=0.2, lower=predicted - 0.4, upper=predicted + 0.4)


class TestFigures:
    """Each figure function returns a drawable matplotlib Figure."""

    def test_abundance_trend(self, predictions, tmp_path):
        fig = abundance_trend_figure(predictions, base_year=2005,
                                     habitat_levels=["River Levee", "Hardwood Plantation"])
        ax = fig.axes[0]
        assert len(ax.get_lines()) == 2
        assert ax.get_xlabel() == "Year"
        path = atomic_write_figure(tmp_path / "trend.tiff", fig, dpi=50,
                                   pil_kwargs={"compression": "tiff_lzw"})
        plt.close(fig)
        assert path.exists()

    def test_abundance_trend_with_sites(self, predictions):
        fig = abundance_trend_figure(predictions, site_predictions=predictions)
        assert len(fig.axes[0].collections) >= 4
        plt.close(fig)

    def test_residuals_one_panel_per_type(self):
        fitted = {"distance": np.ones((3, 2)), "removal": np.ones((3, 3))}
        fig = residual_figure(fitted, fitted)
        assert len(fig.axes) == 2
        plt.close(fig)

    def test_parboot_and_citations(self):
        fig = parboot_figure(np.array([1.0, 2.0, 3.0, 2.5]), t0=2.2)
        assert len(fig.axes) == 1
        plt.close(fig)
        fig = citation_figure(pd.DataFrame({"year": [2020, 2021, 2022], "cites": [5, 8, 2]}))
        assert len(fig.axes) == 2
        plt.close(fig)


class TestReport:
    """Tests for HTML rendering."""

    @pytest.fixture
    def figure_path(self, tmp_path):
        fig = parboot_figure(np.array([1.0, 2.0, 3.0]), t0=2.0)
        path = atomic_write_figure(tmp_path / "parboot.png", fig, dpi=40)
        plt.close(fig)
        return path

    def test_embed_image(self, figure_path):
        assert embed_image(figure_path).startswith("data:image/png;base64,")

    def test_render_sections(self, figure_path):
        sections = [
            ReportSection(
                title="Goodness of fit",
                paragraphs=["p < 0.05 & worse"],
                tables=[ReportTable("Table <1>", pd.DataFrame({"a": [1.23456], "b": ["x"]}))],
                figures=[ReportFigure("Bootstrap", figure_path)],
                note="Crude test",
            ),
        ]
        html = render_html("ACFL report", sections, run_id="20250101_000000_abcd1234")
        assert html.startswith("<!DOCTYPE html>")
        assert "<title>ACFL report</title>" in html
        assert "<h2>Goodness of fit</h2>" in html
        assert "p &lt; 0.05 &amp; worse" in html
        assert "Table &lt;1&gt;" in html
        assert "1.235" in html
        assert 'class="note"' in html
        assert "data:image/png;base64," in html
        assert "20250101_000000_abcd1234" in html

    def test_validation_table(self):
        results = [
            QAResult("expected_n_points", True, "55 (expected 55 +/- 0)"),
            QAResult("expected_top_model", False, "'hab' (expected 'habxyear')"),
        ]
        table = validation_table(results)
        assert table["check"].tolist() == ["n_points", "top_model"]
        assert table["result"].tolist() == ["passed", "FAILED"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
