"""
Figures for the vignettes.

Choropleth maps of prediction surfaces (per platform, combined,
difference and binned CV) drawn with geopandas, with optional survey
tracks overplotted, plus detection-function and observed/expected
diagnostics. Figures are written as vector graphics by default.
"""

from __future__ import annotations

from pathlib import Path

import geopandas as gpd
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from matplotlib.colors import TwoSlopeNorm
from shapely.geometry import box

from dsm_platforms.detection.functions import DetectionFunction, KEY_NAMES, key_function


def reproject(gdf: gpd.GeoDataFrame | None, crs: str | None):
    if gdf is None or crs is None or gdf.crs is None:
        return gdf
    return gdf.to_crs(crs)


def crop_to_extent(gdf: gpd.GeoDataFrame, bbox: tuple[float, float, float, float]) -> gpd.GeoDataFrame:
    """Clip geometries to (minx, miny, maxx, maxy) in the layer's CRS."""
    return gpd.clip(gdf, box(*bbox))


def attach_surface(grid: gpd.GeoDataFrame, table: pd.DataFrame, columns: list[str]) -> gpd.GeoDataFrame:
    """Join surface columns onto grid polygons by `cell_id`."""
    keep = ["cell_id"] + [c for c in columns if c != "cell_id"]
    base = grid[["cell_id", "geometry"]]
    return base.merge(table[keep], on="cell_id", how="left", validate="one_to_one")


def save_figure(fig, path: Path, settings: dict) -> Path:
    path = Path(path)
    if path.suffix == "":
        path = path.with_suffix(f".{settings.get('format', 'pdf')}")
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, dpi=settings.get("dpi", 300), bbox_inches="tight")
    plt.close(fig)
    return path


def plot_surface(
    gdf: gpd.GeoDataFrame,
    column: str,
    ax,
    cmap: str = "viridis",
    tracks: gpd.GeoDataFrame | None = None,
    title: str | None = None,
    categorical: bool = False,
    norm=None,
):
    """Draw one choropleth panel on `ax`."""
    kwargs = dict(column=column, ax=ax, cmap=cmap, linewidth=0, legend=True)
    if categorical:
        kwargs["categorical"] = True
        kwargs["legend_kwds"] = {"loc": "lower right", "fontsize": "x-small", "title": "CV"}
    else:
        kwargs["legend_kwds"] = {"shrink": 0.6}
        if norm is not None:
            kwargs["norm"] = norm
    gdf.plot(**kwargs)
    if tracks is not None and len(tracks):
        tracks.plot(ax=ax, color="black", linewidth=0.4, alpha=0.6)
    ax.set_title(title or column, fontsize=11)
    ax.set_axis_off()
    return ax


def plot_surface_panels(
    gdf: gpd.GeoDataFrame,
    columns: list[str],
    titles: list[str],
    out_path: Path,
    settings: dict,
    tracks: gpd.GeoDataFrame | None = None,
    diverging: tuple[str, ...] = ("difference",),
    suptitle: str | None = None,
) -> Path:
    """
    Grid of choropleth panels, one per column.

    Columns whose name contains one of `diverging` use a diverging
    colour map centred on zero.
    """
    n = len(columns)
    n_cols = 2 if n > 1 else 1
    n_rows = (n + n_cols - 1) // n_cols
    fig, axes = plt.subplots(n_rows, n_cols, figsize=(settings["fig_width"], settings["fig_height"]))
    axes = np.atleast_1d(axes).flatten()
    for ax, col, title in zip(axes, columns, titles):
        if any(d in col for d in diverging):
            vals = gdf[col].to_numpy(dtype=float)
            lim = float(np.nanmax(np.abs(vals))) or 1.0
            plot_surface(gdf, col, ax, cmap=settings["diverging_cmap"], tracks=tracks, title=title,
                         norm=TwoSlopeNorm(vcenter=0.0, vmin=-lim, vmax=lim))
        else:
            plot_surface(gdf, col, ax, cmap=settings["cmap"], tracks=tracks, title=title)
    for ax in axes[n:]:
        ax.set_visible(False)
    if suptitle:
        fig.suptitle(suptitle, fontsize=13)
    fig.tight_layout()
    return save_figure(fig, out_path, settings)


def plot_cv_panels(
    gdf: gpd.GeoDataFrame,
    bin_columns: list[str],
    titles: list[str],
    out_path: Path,
    settings: dict,
    tracks: gpd.GeoDataFrame | None = None,
    suptitle: str | None = None,
) -> Path:
    """Binned CV maps; bins are ordered categories shared across panels."""
    gdf = gdf.copy()
    for col in bin_columns:
        gdf[col] = gdf[col].astype(str).replace("nan", "NA")
    n = len(bin_columns)
    fig, axes = plt.subplots(1, n, figsize=(settings["fig_width"], settings["fig_height"] / 2))
    axes = np.atleast_1d(axes)
    for ax, col, title in zip(axes, bin_columns, titles):
        plot_surface(gdf, col, ax, cmap=settings["cmap"], tracks=tracks, title=title, categorical=True)
    if suptitle:
        fig.suptitle(suptitle, fontsize=13)
    fig.tight_layout()
    return save_figure(fig, out_path, settings)


def plot_detection_function(ddf: DetectionFunction, out_path: Path, settings: dict, n_bins: int = 10) -> Path:
    """
    Histogram of truncated distances scaled to g(0)=1, with the fitted
    detection curve at the mean scale.
    """
    fig, ax = plt.subplots(figsize=(6, 4))
    data = ddf.data
    if ddf.binned:
        edges = np.unique(np.concatenate([data["distbegin"].to_numpy(), data["distend"].to_numpy()]))
        mids = (data["distbegin"] + data["distend"]) / 2.0
    else:
        edges = np.linspace(ddf.left, ddf.width, n_bins + 1)
        mids = data["distance"]
    counts, _ = np.histogram(mids, bins=edges)
    widths = np.diff(edges)
    heights = counts / widths / max(len(mids), 1) * (ddf.width - ddf.left) * ddf.average_p()
    ax.bar(edges[:-1], heights, width=widths, align="edge", color=sns.color_palette()[0],
           alpha=0.5, edgecolor="white")

    x = np.linspace(max(ddf.left, 1e-9), ddf.width, 200)
    if ddf.is_dummy:
        g = np.ones_like(x)
    else:
        sigma = float(np.exp(np.log(ddf.sigma()).mean()))
        g = key_function(ddf.key, x, sigma, ddf.shape)
    ax.plot(x, g, color="black", linewidth=1.5)
    ax.set_xlim(ddf.left, ddf.width)
    ax.set_ylim(0, max(1.05, float(heights.max()) * 1.1 if len(heights) else 1.05))
    ax.set_xlabel("Distance")
    ax.set_ylabel("Detection probability")
    ax.set_title(f"{ddf.platform}: {KEY_NAMES[ddf.key]} (p = {ddf.average_p():.3f})", fontsize=11)
    sns.despine(ax=ax)
    fig.tight_layout()
    return save_figure(fig, out_path, settings)


def plot_obs_exp(table: pd.DataFrame, out_path: Path, settings: dict) -> Path:
    """Grouped bars of observed and expected counts per platform and model."""
    long = table.melt(id_vars=["model", "quantity"], var_name="platform", value_name="count")
    g = sns.catplot(data=long, x="platform", y="count", hue="quantity", col="model", kind="bar",
                    height=3.5, aspect=0.9)
    g.set_titles("{col_name}")
    return save_figure(g.figure, out_path, settings)
