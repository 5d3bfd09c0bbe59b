"""
Tests for acfl_abundance.formulas module.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
import pandas as pd
import numpy as np

from acfl_abundance.formulas import build_design, design_for_newdata, parse_formula


@pytest.fixture
def covs():
    return pd.DataFrame({
        "Habitat": pd.Categorical(["A", "B", "A", "B"], categories=["A", "B"]),
        "Year": [0, 0, 1, 1],
        "Point": [3, 7, 3, 7],
    })


class TestParseFormula:
    """Tests for parse_formula()."""

    def test_fixed_only(self):
        f = parse_formula("~Habitat * Year")
        assert f.fixed == "Habitat * Year"
        assert f.random_groups == ()
        assert not f.has_random

    def test_random_intercept(self):
        f = parse_formula("~Habitat + Year + (1|Point)")
        assert f.fixed == "Habitat + Year"
        assert f.random_groups == ("Point",)
        assert f.has_random
        assert str(f) == "~Habitat + Year + (1|Point)"

    def test_random_only(self):
        f = parse_formula("~(1 | Point)")
        assert f.fixed == "1"
        assert f.random_groups == ("Point",)

    def test_intercept_only(self):
        assert parse_formula("~1").fixed == "1"

    def test_two_sided_rejected(self):
        with pytest.raises(ValueError, match="one-sided"):
            parse_formula("y ~ Habitat")

    def test_random_slope_rejected(self):
        with pytest.raises(ValueError, match="random intercepts"):
            parse_formula("~Habitat + (Year|Point)")

    def test_duplicated_group_rejected(self):
        with pytest.raises(ValueError, match="Duplicated"):
            parse_formula("~(1|Point) + (1|Point)")


class TestBuildDesign:
    """Tests for build_design()."""

    def test_treatment_coding(self, covs):
        design = build_design(parse_formula("~Habitat * Year"), covs)
        assert design.columns == ("Intercept", "Habitat[T.B]", "Year", "Habitat[T.B]:Year")
        assert design.X.shape == (4, 4)
        assert design.X[:, 1].tolist() == [0, 1, 0, 1]
        assert design.group is None

    def test_intercept_only_has_one_row_per_site(self, covs):
        design = build_design(parse_formula("~1"), covs)
        assert design.X.shape == (4, 1)
        assert np.all(design.X == 1)

    def test_group_codes(self, covs):
        design = build_design(parse_formula("~Year + (1|Point)"), covs)
        assert design.group == "Point"
        assert design.group_levels == (3, 7)
        assert design.group_codes.tolist() == [0, 1, 0, 1]
        assert design.n_groups == 2

    def test_missing_group_raises(self, covs):
        with pytest.raises(ValueError, match="not found"):
            build_design(parse_formula("~1 + (1|Transect)"), covs)

    def test_two_groups_rejected(self, covs):
        with pytest.raises(ValueError, match="At most one"):
            build_design(parse_formula("~1 + (1|Point) + (1|Year)"), covs)


class TestDesignForNewdata:
    """Tests for design_for_newdata()."""

    def test_levels_coded_like_fit(self, covs):
        design = build_design(parse_formula("~Habitat + Year"), covs)
        newdata = pd.DataFrame({
            "Habitat": pd.Categorical(["B"], categories=["A", "B"]),
            "Year": [5],
        })
        X, codes = design_for_newdata(design, newdata)
        assert X.tolist() == [[1.0, 1.0, 5.0]]
        assert codes.tolist() == [-1]

    def test_unknown_group_gets_minus_one(self, covs):
        design = build_design(parse_formula("~1 + (1|Point)"), covs)
        newdata = pd.DataFrame({"Point": [7, 99]})
        X, codes = design_for_newdata(design, newdata)
        assert X.shape == (2, 1)
        assert codes.tolist() == [1, -1]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
