"""
Pytest configuration and shared fixtures.

This module provides common fixtures used across test modules.
"""

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
import pandas as pd
import numpy as np


SIM_FORMULAS = {"lambda": "~Habitat + Year + (1|Point)", "dist": "~1", "rem": "~1"}

SIM_COEFS = {
    "lambda": {"Intercept": np.log(6.0), "Habitat[T.B]": 0.4, "Year": -0.05},
    "lambda_random_sd": {"Point": 0.2},
    "dist": {"Intercept": np.log(25.0)},
    "rem": {"Intercept": -0.5},
}


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    from acfl_abundance.paths import get_project_root
    return get_project_root()


@pytest.fixture(scope="session")
def params_config():
    """Load the params.yml configuration."""
    from acfl_abundance.io_utils import read_yaml
    from acfl_abundance.paths import paths
    return read_yaml(paths.params_yml)


@pytest.fixture(scope="session")
def expected_values():
    """Load the expected_values.yml configuration."""
    from acfl_abundance.io_utils import read_yaml
    from acfl_abundance.paths import paths
    return read_yaml(paths.expected_values_yml)


@pytest.fixture
def sample_records():
    """
    Raw survey records for three occasions.

    Occasion (T1, 1, 2005) has 2 near birds in minute 3 and 1 far bird in
    minute 10; (T1, 1, 2006) has one near bird in minute 5 and a missing
    count; (T1, 2, 2005) has no detections.
    """
    rows = [
        ("T1", 1, 2005, 150, "River Levee", "L25", 3, 2),
        ("T1", 1, 2005, 150, "River Levee", "G25", 10, 1),
        ("T1", 1, 2006, 152, "River Levee", "L25", 5, 1),
        ("T1", 1, 2006, 152, "River Levee", "G25", 3, np.nan),
        ("T1", 2, 2005, 151, "Hardwood Plantation", "L25", 3, 0),
    ]
    return pd.DataFrame(rows, columns=[
        "TransectName", "Point", "Year", "DOY", "Habitat", "DistanceBin", "TimeBin", "Count",
    ])


@pytest.fixture
def sample_survey_csv(tmp_path, sample_records):
    """Write sample records, plus an out-of-range year, to a CSV file."""
    extra = sample_records.iloc[[0]].assign(Year=2017)
    path = tmp_path / "survey.csv"
    pd.concat([sample_records, extra], ignore_index=True).to_csv(path, index=False)
    return path


@pytest.fixture
def small_frame():
    """A hand-built frame with four sites."""
    from acfl_abundance.frame import build_frame
    covs = pd.DataFrame({
        "Habitat": pd.Categorical(["A", "B", "A", "B"], categories=["A", "B"]),
        "Year": [0, 0, 1, 1],
        "Point": [1, 2, 1, 2],
    })
    y_distance = [[2, 1], [0, 0], [1, 3], [2, 2]]
    y_removal = [[2, 1, 0], [0, 0, 0], [3, 0, 1], [1, 1, 2]]
    return build_frame(y_distance, y_removal, covs, [0, 25, 50], [3, 2, 5])


@pytest.fixture(scope="session")
def simulated_frame():
    """Simulated panel of 60 points x 8 years."""
    from acfl_abundance.simulate import panel_guide, simulate_frame
    rng = np.random.default_rng(20230101)
    return simulate_frame(
        SIM_FORMULAS,
        {"M": 60 * 8, "Jdist": 2, "Jrem": 3},
        SIM_COEFS,
        guide=panel_guide(8, ["A", "B"]),
        dist_breaks=[0, 25, 50],
        rng=rng,
        period_lengths=[3, 2, 5],
    )


@pytest.fixture(scope="session")
def simulated_fit(simulated_frame):
    """The generating model fitted to the simulated frame."""
    from acfl_abundance.model import fit_gdistremoval
    return fit_gdistremoval(
        simulated_frame,
        lambda_formula=SIM_FORMULAS["lambda"],
        distance_formula=SIM_FORMULAS["dist"],
        removal_formula=SIM_FORMULAS["rem"],
    )


@pytest.fixture(scope="session")
def simulated_fit_fixed(simulated_frame):
    """A fixed-effects-only fit on the simulated frame."""
    from acfl_abundance.model import fit_gdistremoval
    return fit_gdistremoval(simulated_frame, lambda_formula="~Habitat + Year")


# Markers for test categorization
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "smoke: mark test as smoke test (quick sanity checks)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow (model fits and simulation loops)"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires survey data or pipeline outputs)"
    )
