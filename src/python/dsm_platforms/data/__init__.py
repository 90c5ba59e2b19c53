"""Data I/O utilities for loading and saving artifacts."""

from dsm_platforms.data.io import (
    load_bundle_parquet,
    save_parquet,
    save_summary_json,
    save_table_csv,
)

__all__ = [
    "load_bundle_parquet",
    "save_parquet",
    "save_summary_json",
    "save_table_csv",
]
