"""
Tests for acfl_abundance.cli module.

Step scripts are replaced with a stub so only the sequencing is exercised.
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest

from acfl_abundance import cli
from acfl_abundance.logging_utils import RUN_ID_ENV


@pytest.fixture
def run_steps(monkeypatch):
    """Patch script execution; returns the list of scripts run."""
    ran = []
    exit_codes = {}

    def fake_run(script_name, env=None):
        ran.append((script_name, env[RUN_ID_ENV]))
        return exit_codes.get(script_name, 0)

    monkeypatch.setattr(cli, "_run_script", fake_run)
    monkeypatch.delenv(RUN_ID_ENV, raising=False)
    return ran, exit_codes


class TestRunAll:
    """Tests for run_all()."""

    def test_all_steps_succeed(self, run_steps):
        ran, _ = run_steps
        assert cli.run_all() == 0
        assert [name for name, _ in ran] == [s for s, _, _ in cli.STEPS]

    def test_steps_share_run_id(self, run_steps):
        ran, _ = run_steps
        cli.run_all()
        assert len({run_id for _, run_id in ran}) == 1

    def test_required_failure_stops(self, run_steps):
        ran, exit_codes = run_steps
        exit_codes["02_fit_candidate_models.py"] = 3
        assert cli.run_all() == 3
        assert ran[-1][0] == "02_fit_candidate_models.py"

    def test_optional_failure_continues(self, run_steps):
        ran, exit_codes = run_steps
        exit_codes["05_citation_history.py"] = 1
        assert cli.run_all() == 1
        assert ran[-1][0] == "06_render_report.py"

    def test_every_step_script_exists(self, project_root):
        for script_name, _, _ in cli.STEPS:
            assert (project_root / "scripts" / script_name).exists(), script_name


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
