"""
Geometry loader

Reads the prediction-grid polygons and survey tracks that accompany a
bundle, attaches prediction covariates to the grid by `cell_id`, and
derives cell areas from the polygons in model area units.
"""

from pathlib import Path

import geopandas as gpd
import pandas as pd
from dsm_platforms.config import get_dataset_settings, get_source_settings, get_units
from dsm_platforms.paths import bundle_table_path


def _read_layer(path: Path, required_columns: list[str], crs: str | None) -> gpd.GeoDataFrame:
    if not path.exists():
        raise FileNotFoundError(f"Geometry file not found: {path}")
    gdf = gpd.read_file(path)
    missing = [c for c in required_columns if c not in gdf.columns]
    if missing:
        raise ValueError(f"{path.name}: missing required columns {missing}")
    if crs and gdf.crs is not None and gdf.crs != crs:
        gdf = gdf.to_crs(crs)
    return gdf


def cell_areas(grid: gpd.GeoDataFrame, area_scale: float) -> pd.Series:
    """
    Polygon areas converted to model units.

    The grid must be in a projected CRS; a 1,000,000 m² cell with
    area_scale=1e-6 gives 1 km².
    """
    if grid.crs is not None and grid.crs.is_geographic:
        raise ValueError("prediction grid must use a projected CRS to compute areas")
    return grid.geometry.area * area_scale


def load_prediction_grid(root: Path, dataset: str, analysis_cfg: dict, prediction: pd.DataFrame | None = None) -> gpd.GeoDataFrame:
    ds = get_dataset_settings(analysis_cfg, dataset)
    src = get_source_settings(analysis_cfg, "prediction_grid")
    units = get_units(analysis_cfg)
    path = bundle_table_path(root, ds["bundle"], "prediction_grid", src.get("file"))
    grid = _read_layer(path, src.get("required_columns", ["cell_id"]), ds.get("crs"))
    grid["area"] = cell_areas(grid, units["area_scale"])

    if prediction is not None:
        covs = [c for c in prediction.columns if c not in grid.columns or c == "cell_id"]
        grid = grid.merge(prediction[covs], on="cell_id", how="left", validate="one_to_one")
        missing = grid[[c for c in covs if c != "cell_id"]].isna().any(axis=1)
        if missing.any():
            raise ValueError(f"prediction grid: {int(missing.sum())} cells have no prediction covariates")

    print(f"✓ Loaded prediction grid: {len(grid):,} cells, total area {grid['area'].sum():,.1f}")
    return grid


def load_tracks(root: Path, dataset: str, analysis_cfg: dict) -> gpd.GeoDataFrame | None:
    ds = get_dataset_settings(analysis_cfg, dataset)
    src = get_source_settings(analysis_cfg, "tracks")
    path = bundle_table_path(root, ds["bundle"], "tracks", src.get("file"))
    if not path.exists():
        print(f"  Warning: no survey tracks at {path}; maps drawn without tracks")
        return None
    return _read_layer(path, src.get("required_columns", []), ds.get("crs"))
