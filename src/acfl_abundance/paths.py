"""
Canonical root detection and path resolution.

Every script resolves inputs and outputs through acfl_abundance.paths,
never through relative ../ paths. The .project-root file marks the
repository root.
"""

from pathlib import Path
from typing import Union

# Cached project root
_PROJECT_ROOT: Path | None = None


def get_project_root() -> Path:
    """
    Find and return the project root directory.

    Searches upward from this file's location for the .project-root marker.
    Result is cached.

    Returns:
        Path to the project root directory.

    Raises:
        FileNotFoundError: If .project-root marker is not found.
    """
    global _PROJECT_ROOT

    if _PROJECT_ROOT is not None:
        return _PROJECT_ROOT

    current = Path(__file__).resolve().parent

    for _ in range(10):  # Limit search depth
        marker = current / ".project-root"
        if marker.exists():
            _PROJECT_ROOT = current
            return _PROJECT_ROOT

        parent = current.parent
        if parent == current:
            break
        current = parent

    raise FileNotFoundError(
        "Could not find .project-root marker. "
        "Ensure you are running from within the ACFL abundance repository."
    )


def get_path(*parts: str) -> Path:
    """
    Resolve a path relative to the project root.

    Example:
        >>> get_path("data", "processed")
        PosixPath('/path/to/project/data/processed')
    """
    return get_project_root() / Path(*parts)


# =============================================================================
# Canonical path constants
# =============================================================================

class Paths:
    """
    Canonical path constants for the project.

    All paths are resolved relative to the project root.
    """

    @property
    def root(self) -> Path:
        """Project root directory."""
        return get_project_root()

    # -------------------------------------------------------------------------
    # Config paths
    # -------------------------------------------------------------------------
    @property
    def configs(self) -> Path:
        return get_path("configs")

    @property
    def params_yml(self) -> Path:
        return get_path("configs", "params.yml")

    @property
    def expected_values_yml(self) -> Path:
        return get_path("configs", "expected_values.yml")

    # -------------------------------------------------------------------------
    # Data paths
    # -------------------------------------------------------------------------
    @property
    def data_raw(self) -> Path:
        return get_path("data", "raw")

    @property
    def survey_csv(self) -> Path:
        return get_path("data", "raw", "acfl_roanoke_river.csv")

    @property
    def data_processed(self) -> Path:
        return get_path("data", "processed")

    @property
    def processed_survey(self) -> Path:
        return get_path("data", "processed", "survey")

    @property
    def processed_models(self) -> Path:
        return get_path("data", "processed", "models")

    @property
    def processed_simulation(self) -> Path:
        return get_path("data", "processed", "simulation")

    @property
    def processed_inference(self) -> Path:
        return get_path("data", "processed", "inference")

    @property
    def processed_citations(self) -> Path:
        return get_path("data", "processed", "citations")

    # -------------------------------------------------------------------------
    # Logs
    # -------------------------------------------------------------------------
    @property
    def logs(self) -> Path:
        return get_path("logs")

    # -------------------------------------------------------------------------
    # Reports
    # -------------------------------------------------------------------------
    @property
    def reports(self) -> Path:
        return get_path("reports")

    @property
    def reports_figures(self) -> Path:
        return get_path("reports", "figures")

    @property
    def reports_tables(self) -> Path:
        return get_path("reports", "tables")


# Singleton instance for convenience
paths = Paths()


def ensure_dir(path: Union[str, Path]) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path to ensure exists.

    Returns:
        The Path object for the directory.
    """
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p
