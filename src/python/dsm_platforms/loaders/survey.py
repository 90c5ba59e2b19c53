"""
Survey bundle loader

Reads the segment, observation, distance and prediction tables of a
survey bundle using configuration for file names and required columns,
and produces canonical DataFrames.

Example
-------
>>> from pathlib import Path
>>> from dsm_platforms.config import load_analysis_config
>>> root = Path('.')
>>> cfg = load_analysis_config(root)
>>> tables = load_survey_tables(root, "seabirds", cfg)
"""

from pathlib import Path

import numpy as np
import pandas as pd
from dsm_platforms.config import get_dataset_settings, get_source_settings
from dsm_platforms.data.io import load_bundle_parquet
from dsm_platforms.paths import bundle_table_path


TABLES = ("segments", "observations", "distances", "prediction")


def _canonical_distances(df: pd.DataFrame) -> pd.DataFrame:
    """Require either exact distances or a distbegin/distend pair per row."""
    has_exact = "distance" in df.columns
    has_bins = "distbegin" in df.columns and "distend" in df.columns
    if not has_exact and not has_bins:
        raise ValueError("distances: need a `distance` column or both `distbegin` and `distend`")
    out = df.copy()
    if not has_exact:
        out["distance"] = (out["distbegin"] + out["distend"]) / 2.0
    return out


def load_table(root: Path, dataset: str, name: str, analysis_cfg: dict) -> pd.DataFrame:
    ds = get_dataset_settings(analysis_cfg, dataset)
    src = get_source_settings(analysis_cfg, name)
    path = bundle_table_path(root, ds["bundle"], name, src.get("file"))
    return load_bundle_parquet(path, src.get("required_columns"))


def load_survey_tables(root: Path, dataset: str, analysis_cfg: dict) -> dict[str, pd.DataFrame]:
    ds = get_dataset_settings(analysis_cfg, dataset)
    tables = {name: load_table(root, dataset, name, analysis_cfg) for name in TABLES}

    platform_col = ds["platform_column"]
    for name in ("observations", "distances"):
        df = tables[name]
        if platform_col not in df.columns:
            raise ValueError(f"{name}: platform column '{platform_col}' not found")
        if platform_col != "platform":
            df = df.rename(columns={platform_col: "platform"})
        df["platform"] = df["platform"].astype(str)
        tables[name] = df

    tables["distances"] = _canonical_distances(tables["distances"])
    tables["segments"]["segment_label"] = tables["segments"]["segment_label"].astype(str)
    tables["observations"]["segment_label"] = tables["observations"]["segment_label"].astype(str)

    dup = tables["segments"]["segment_label"].duplicated()
    if dup.any():
        raise ValueError(f"segments: duplicated segment_label values {tables['segments'].loc[dup, 'segment_label'].unique()[:5].tolist()}")

    orphans = ~tables["observations"]["segment_label"].isin(tables["segments"]["segment_label"])
    if orphans.any():
        raise ValueError(f"observations: {int(orphans.sum())} rows reference unknown segments")

    print(f"✓ Loaded {dataset} bundle: "
          f"{len(tables['segments']):,} segments, "
          f"{len(tables['observations']):,} observations, "
          f"{len(tables['distances']):,} distances, "
          f"{len(tables['prediction']):,} prediction cells")
    return tables


def summarize_survey(tables: dict[str, pd.DataFrame]) -> dict:
    seg = tables["segments"]
    obs = tables["observations"]
    by_platform = obs.groupby("platform")["size"].agg(["count", "sum"])
    return {
        "n_segments": int(len(seg)),
        "total_effort": float(np.sum(seg["effort"])),
        "n_observations": int(len(obs)),
        "observations_by_platform": {str(k): int(v) for k, v in by_platform["count"].items()},
        "individuals_by_platform": {str(k): float(v) for k, v in by_platform["sum"].items()},
    }
