"""
Grid predictions per platform and combined/difference surfaces.

Predictions are held in long format keyed by (cell_id, platform). Wide
surfaces are rebuilt by pivoting on `cell_id` and reindexing to the
grid's own cell order, so arithmetic between platforms never depends on
row positions left behind by joins or sorts.
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from dsm_platforms.models.dsm import DSMFit


def duplicate_prediction_grid(grid: pd.DataFrame, platforms: list[str]) -> pd.DataFrame:
    """
    One copy of the prediction grid per platform, keyed (cell_id, platform).

    Cell order inside each copy is the grid's order.
    """
    if grid["cell_id"].duplicated().any():
        raise ValueError("prediction grid: cell_id values must be unique")
    cols = [c for c in grid.columns if c != "geometry"]
    copies = []
    for label in platforms:
        g = pd.DataFrame(grid[cols]).copy()
        g["platform"] = str(label)
        copies.append(g)
    return pd.concat(copies, ignore_index=True)


def density(abundance, area, area_scale: float = 1.0):
    """
    Abundance per unit area.

    `area_scale` converts `area` into the density's area unit first, e.g.
    1e-6 for m² areas and per-km² density.
    """
    return np.asarray(abundance, dtype=float) / (np.asarray(area, dtype=float) * area_scale)


def predict_abundance(fit: DSMFit, grid_long: pd.DataFrame, area_column: str = "area") -> pd.DataFrame:
    """
    Predicted abundance and density per (cell_id, platform).

    For the no-platform model every platform copy gets the same surface.
    """
    out = grid_long[["cell_id", "platform", area_column]].copy()
    out["model"] = fit.name
    out["abundance"] = fit.predict(grid_long, grid_long[area_column].to_numpy())
    out["density"] = density(out["abundance"], out[area_column])
    return out


def to_wide(long: pd.DataFrame, value: str, cell_order, platforms: list[str]) -> pd.DataFrame:
    """
    Pivot one value column to a cell x platform table in `cell_order`.

    Raises
    ------
    ValueError
        If any cell lacks exactly one row per platform.
    """
    counts = long.groupby(["cell_id", "platform"]).size()
    if (counts != 1).any():
        raise ValueError(f"{value}: duplicated (cell_id, platform) rows")
    wide = long.pivot(index="cell_id", columns="platform", values=value)
    missing_platforms = [p for p in platforms if p not in wide.columns]
    if missing_platforms:
        raise ValueError(f"{value}: no rows for platforms {missing_platforms}")
    wide = wide.reindex(pd.Index(cell_order, name="cell_id"))[list(platforms)]
    if wide.isna().any().any():
        raise ValueError(f"{value}: {int(wide.isna().any(axis=1).sum())} cells are missing a platform prediction")
    wide.columns.name = None
    return wide


def combine_platforms(a, b) -> tuple[np.ndarray, np.ndarray]:
    """Combined (a + b) and difference (a - b), cell for cell."""
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    if a.shape != b.shape:
        raise ValueError(f"platform surfaces differ in shape: {a.shape} vs {b.shape}")
    return a + b, a - b


def platform_surfaces(
    long: pd.DataFrame,
    value: str,
    cell_order,
    platforms: list[str],
) -> pd.DataFrame:
    """
    Wide surface with one column per platform plus `combined` and `difference`.

    `platforms` gives (A, B); difference is A - B.
    """
    if len(platforms) != 2:
        raise ValueError(f"combined/difference surfaces need exactly two platforms, got {platforms}")
    wide = to_wide(long, value, cell_order, platforms)
    a, b = platforms
    wide["combined"], wide["difference"] = combine_platforms(wide[a], wide[b])
    return wide.reset_index()


def model_predictions(
    fits: dict[str, DSMFit],
    grid: pd.DataFrame,
    platforms: list[str],
) -> tuple[pd.DataFrame, dict[str, pd.DataFrame]]:
    """
    Abundance predictions for every model.

    Returns the long table over models and, per model, the wide abundance
    surface with combined/difference columns in grid cell order.
    """
    grid_long = duplicate_prediction_grid(grid, platforms)
    longs = []
    surfaces = {}
    for name, fit in fits.items():
        pred = predict_abundance(fit, grid_long)
        longs.append(pred)
        surfaces[name] = platform_surfaces(pred, "abundance", grid["cell_id"], platforms)
        print(f"✓ Predicted {name}: " + ", ".join(
            f"{p} {surfaces[name][p].sum():,.1f}" for p in platforms
        ) + f", combined {surfaces[name]['combined'].sum():,.1f}")
    return pd.concat(longs, ignore_index=True), surfaces


def abundance_totals(surfaces: dict[str, pd.DataFrame], platforms: list[str]) -> pd.DataFrame:
    rows = []
    for name, wide in surfaces.items():
        row = {"model": name}
        for p in platforms:
            row[p] = float(wide[p].sum())
        row["combined"] = float(wide["combined"].sum())
        rows.append(row)
    return pd.DataFrame(rows)
