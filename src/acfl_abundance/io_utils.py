"""
Atomic writes and I/O helper utilities.

Outputs are written to a temp file in the target directory and then renamed
into place, so a failed step never leaves a half-written artifact behind.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Callable

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq
import yaml

from acfl_abundance.paths import ensure_dir


def atomic_write(
    target_path: Path | str,
    write_func: Callable[..., Any],
    *args,
    **kwargs
) -> Path:
    """
    Write to a file atomically using a temporary file and rename.

    Args:
        target_path: Final destination path.
        write_func: Function called as write_func(temp_path, *args, **kwargs).

    Returns:
        The target path (as Path object).

    Raises:
        Exception: Re-raises any exception from write_func after cleanup.
    """
    target_path = Path(target_path)
    ensure_dir(target_path.parent)

    # Same directory keeps the rename on one filesystem
    temp_fd, temp_path = tempfile.mkstemp(
        suffix=".tmp" + target_path.suffix,
        prefix=f"{target_path.stem}_",
        dir=target_path.parent
    )
    temp_path = Path(temp_path)

    try:
        os.close(temp_fd)
        write_func(temp_path, *args, **kwargs)
        temp_path.replace(target_path)
        return target_path

    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise


def atomic_write_json(target_path: Path | str, data: Any, indent: int = 2) -> Path:
    """Write JSON data to a file atomically."""
    def write_json(temp_path: Path, data: Any, indent: int):
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=indent, default=str)

    return atomic_write(target_path, write_json, data, indent)


def atomic_write_text(target_path: Path | str, content: str) -> Path:
    """Write text content to a file atomically."""
    def write_text(temp_path: Path, content: str):
        with open(temp_path, "w", encoding="utf-8") as f:
            f.write(content)

    return atomic_write(target_path, write_text, content)


def atomic_write_csv(target_path: Path | str, df: pd.DataFrame, **kwargs) -> Path:
    """Write a DataFrame to CSV atomically (no index unless requested)."""
    kwargs.setdefault("index", False)

    def write_csv(temp_path: Path, df: pd.DataFrame, **kw):
        df.to_csv(temp_path, **kw)

    return atomic_write(target_path, write_csv, df, **kwargs)


def atomic_write_parquet(
    target_path: Path | str,
    df: pd.DataFrame,
    **kwargs
) -> Path:
    """
    Write a DataFrame to Parquet atomically.

    Args:
        target_path: Destination file path.
        df: DataFrame to write.
        **kwargs: Passed to pyarrow.parquet.write_table.
    """
    def write_parquet(temp_path: Path, df: pd.DataFrame, **kwargs):
        table = pa.Table.from_pandas(df, preserve_index=False)
        pq.write_table(table, temp_path, **kwargs)

    return atomic_write(target_path, write_parquet, df, **kwargs)


def atomic_write_figure(target_path: Path | str, fig, **savefig_kwargs) -> Path:
    """
    Save a matplotlib figure atomically.

    The output format is taken from the target suffix, since the temp file
    carries a .tmp marker before the real extension.
    """
    target_path = Path(target_path)
    fmt = target_path.suffix.lstrip(".").lower()
    if fmt == "tif":
        fmt = "tiff"

    def write_figure(temp_path: Path, fig, **kw):
        fig.savefig(temp_path, format=fmt, **kw)

    return atomic_write(target_path, write_figure, fig, **savefig_kwargs)


def read_parquet(file_path: Path | str) -> pd.DataFrame:
    """
    Read a Parquet file into a DataFrame.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Parquet file not found: {file_path}")
    return pd.read_parquet(file_path)


def read_json(file_path: Path | str) -> Any:
    """
    Read a JSON file.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"JSON file not found: {file_path}")
    with open(file_path, "r", encoding="utf-8") as f:
        return json.load(f)


def read_yaml(file_path: Path | str) -> Any:
    """
    Read a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"YAML file not found: {file_path}")
    with open(file_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)
