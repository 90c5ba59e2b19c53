"""
Common I/O functions for loading and saving data artifacts.

These functions standardize access to survey bundles and the interim
tables and result files the vignette writes.
"""

from pathlib import Path
import json

import numpy as np
import pandas as pd


def load_bundle_parquet(path: Path, required_columns: list[str] | None = None) -> pd.DataFrame:
    """
    Load one table of a survey bundle.

    Parameters
    ----------
    path : Path
        Parquet file inside the bundle directory.
    required_columns : list[str], optional
        Columns that must be present.

    Returns
    -------
    pd.DataFrame
        Loaded DataFrame.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If a required column is missing.
    """
    if not path.exists():
        raise FileNotFoundError(f"Bundle table not found: {path}")

    df = pd.read_parquet(path)
    missing = [c for c in (required_columns or []) if c not in df.columns]
    if missing:
        raise ValueError(f"{path.name}: missing required columns {missing}")
    return df


def save_parquet(df: pd.DataFrame, path: Path) -> None:
    """
    Save DataFrame to parquet with consistent settings.

    Creates parent directories if needed.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_parquet(path, index=False)


def save_table_csv(df: pd.DataFrame, path: Path, index: bool = False) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=index)


def _json_default(obj):
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, Path):
        return str(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def save_summary_json(summary: dict, path: Path) -> None:
    """
    Save summary dictionary to JSON with consistent formatting.

    Creates parent directories if needed. numpy scalars and arrays are
    converted to plain Python values.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(summary, f, indent=2, default=_json_default)
