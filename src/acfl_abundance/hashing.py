"""
File, config, and code hashing utilities for reproducibility.

Each output gets a sidecar metadata JSON recording the input file hashes,
config digest, code version, library versions, seeds and run_id, so that a
divergent number can be traced back to the environment that produced it.
"""

import hashlib
import json
import subprocess
import sys
from datetime import datetime, timezone
from importlib import metadata as importlib_metadata
from pathlib import Path
from typing import Any

from acfl_abundance.paths import get_project_root


# Distributions whose versions can shift reported statistics
TRACKED_LIBRARIES = [
    "numpy",
    "scipy",
    "pandas",
    "patsy",
    "statsmodels",
    "matplotlib",
    "pyarrow",
]


def hash_file(file_path: Path | str, algorithm: str = "sha256") -> str:
    """
    Compute the hash of a file.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Cannot hash non-existent file: {file_path}")

    hasher = hashlib.new(algorithm)
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            hasher.update(chunk)

    return hasher.hexdigest()


def hash_dict(data: dict, algorithm: str = "sha256") -> str:
    """Hash a dictionary via its sorted-key JSON serialization."""
    content = json.dumps(data, sort_keys=True, default=str)
    hasher = hashlib.new(algorithm)
    hasher.update(content.encode("utf-8"))
    return hasher.hexdigest()


def hash_config(config_path: Path | str) -> str:
    """
    Compute a content hash of a YAML config file.

    The config is parsed and re-serialized with sorted keys, so comments and
    formatting changes do not alter the digest.
    """
    from acfl_abundance.io_utils import read_yaml

    return hash_dict(read_yaml(config_path) or {})


def get_git_commit() -> str | None:
    """Short commit hash of the working tree, or None outside a git repo."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--short=8", "HEAD"],
            capture_output=True,
            text=True,
            cwd=get_project_root(),
            timeout=5
        )
        if result.returncode == 0:
            return result.stdout.strip()
    except (subprocess.TimeoutExpired, FileNotFoundError):
        pass
    return None


def get_library_versions() -> dict[str, str]:
    """
    Get versions of the numerical stack.

    Returns:
        Dictionary mapping distribution names to version strings.
    """
    versions = {"python": sys.version.split()[0]}
    for lib in TRACKED_LIBRARIES:
        try:
            versions[lib] = importlib_metadata.version(lib)
        except importlib_metadata.PackageNotFoundError:
            versions[lib] = "not installed"
    return versions


def create_metadata_sidecar(
    output_path: Path | str,
    run_id: str,
    input_files: list[Path | str] | None = None,
    config_files: list[Path | str] | None = None,
    parameters: dict[str, Any] | None = None,
    row_count: int | None = None,
) -> dict[str, Any]:
    """
    Create a metadata sidecar dictionary for an output file.

    Args:
        output_path: Path to the output file.
        run_id: Pipeline run identifier.
        input_files: Input files to hash.
        config_files: Config files to hash.
        parameters: Runtime parameters (seeds, formulas, nsim, ...).
        row_count: Number of rows in the output, if tabular.

    Returns:
        Metadata dictionary ready to be written as JSON.
    """
    output_path = Path(output_path)

    metadata = {
        "output_file": output_path.name,
        "run_id": run_id,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "git_commit": get_git_commit(),
        "library_versions": get_library_versions(),
    }

    if input_files:
        metadata["input_file_hashes"] = {
            Path(f).name: hash_file(f) for f in input_files if Path(f).exists()
        }

    if config_files:
        metadata["config_hashes"] = {
            Path(f).name: hash_config(f) for f in config_files if Path(f).exists()
        }

    if parameters:
        metadata["parameters"] = parameters

    if row_count is not None:
        metadata["row_count"] = row_count

    if output_path.exists():
        metadata["output_hash"] = hash_file(output_path)

    return metadata


def write_metadata_sidecar(
    output_path: Path | str,
    run_id: str,
    input_files: list[Path | str] | None = None,
    config_files: list[Path | str] | None = None,
    parameters: dict[str, Any] | None = None,
    row_count: int | None = None,
) -> Path:
    """
    Write a metadata sidecar JSON next to an output.

    The sidecar has the output's stem with a "_metadata.json" suffix.

    Returns:
        Path to the written metadata file.
    """
    from acfl_abundance.io_utils import atomic_write_json

    output_path = Path(output_path)
    metadata = create_metadata_sidecar(
        output_path=output_path,
        run_id=run_id,
        input_files=input_files,
        config_files=config_files,
        parameters=parameters,
        row_count=row_count,
    )
    sidecar_path = output_path.parent / f"{output_path.stem}_metadata.json"
    atomic_write_json(sidecar_path, metadata)
    return sidecar_path
