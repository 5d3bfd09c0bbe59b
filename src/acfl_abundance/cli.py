"""
Command-line entry point for the analysis pipeline.

    acfl-run-all          # Run every step in order

The step scripts live in scripts/ and are run as subprocesses sharing one
run ID, so their JSONL logs can be joined afterwards.
"""

import os
import subprocess
import sys

from acfl_abundance.logging_utils import RUN_ID_ENV, generate_run_id
from acfl_abundance.paths import get_project_root


# (script, description, required). A failed optional step is reported but
# does not stop the pipeline.
STEPS = [
    ("00_simulate_power_analysis.py", "Simulating data and power analysis", True),
    ("01_process_survey_data.py", "Processing survey data", True),
    ("02_fit_candidate_models.py", "Fitting candidate models", True),
    ("03_goodness_of_fit.py", "Checking goodness of fit", True),
    ("04_inference_and_figure.py", "Inference from the top model", True),
    ("05_citation_history.py", "Retrieving citation history", False),
    ("06_render_report.py", "Rendering report", True),
]


def _run_script(script_name: str, env: dict | None = None) -> int:
    """Run a pipeline script and return its exit code."""
    script_path = get_project_root() / "scripts" / script_name

    if not script_path.exists():
        print(f"Error: Script not found: {script_path}", file=sys.stderr)
        return 1

    result = subprocess.run([sys.executable, str(script_path)], cwd=get_project_root(), env=env)
    return result.returncode


def run_all() -> int:
    """
    Run the full pipeline in order.

    Stops at the first failed required step and returns its exit code.
    Failed optional steps are skipped over; the pipeline then finishes
    and returns 1.
    """
    env = os.environ.copy()
    env.setdefault(RUN_ID_ENV, generate_run_id())

    print("=" * 60)
    print(f"ACFL abundance analysis - run {env[RUN_ID_ENV]}")
    print("=" * 60)

    failed_optional = []
    for script_name, description, required in STEPS:
        print(f"\n[{description}]")
        print("-" * 40)

        exit_code = _run_script(script_name, env)

        if exit_code != 0:
            if required:
                print(f"\nPipeline failed at: {script_name}")
                return exit_code
            print(f"\nOptional step failed: {script_name} (continuing)")
            failed_optional.append(script_name)

    print("\n" + "=" * 60)
    if failed_optional:
        print(f"Pipeline completed with failed optional steps: {', '.join(failed_optional)}")
        print("=" * 60)
        return 1

    print("Full pipeline completed successfully")
    print("=" * 60)
    return 0


if __name__ == "__main__":
    sys.exit(run_all())
