"""
Synthetic survey bundles.

Builds a complete bundle (segments, observations, distances, prediction
grid and survey tracks) from a known density surface per platform, so
the vignettes and the tests can run without the packaged survey data.

Coordinates in the tables (`x`, `y`) are in km; geometries are in m in
a projected CRS, so cell areas come out in m².

Example
-------
>>> from dsm_platforms.config import get_dataset_settings
>>> bundle = simulate_survey(get_dataset_settings(cfg, "seabirds")["platforms"], seed=1)
>>> write_bundle(bundle, Path("data/raw/seabirds"))
"""

from __future__ import annotations

from pathlib import Path

import geopandas as gpd
import numpy as np
import pandas as pd
from shapely.geometry import LineString, box

from dsm_platforms.detection.functions import key_function


def _surface(x, y, cx, cy, spread, peak, floor):
    return floor + peak * np.exp(-((x - cx) ** 2 + (y - cy) ** 2) / (2.0 * spread ** 2))


def _platform_width(platform: dict) -> float:
    det = platform["detection"]
    if det.get("dummy"):
        return float(det["width"])
    return float(det["truncation"]["width"])


def simulate_survey(
    platforms: list[dict],
    n_transects: int = 8,
    segments_per_transect: int = 20,
    segment_length: float = 2.0,
    extent: tuple[float, float] = (80.0, 60.0),
    cell_size: float = 5.0,
    groups_per_segment: float = 2.0,
    sigma_fraction: float = 0.4,
    mean_group_size: float = 1.5,
    size_effect: float = 0.0,
    crs: str = "EPSG:32619",
    seed: int | None = None,
) -> dict:
    """
    Simulate a one-sided line-transect survey with several platforms.

    Each platform has its own smooth group-density surface; groups are
    placed uniformly across the strip and, for fitted platforms, kept
    with half-normal detection probability (scale `sigma_fraction` of the
    truncation width, multiplied by exp(size_effect * (size - 1))).
    Dummy platforms see every group in their strip.

    Returns a dict with `segments`, `observations`, `distances`,
    `prediction`, `prediction_grid` and `tracks`.
    """
    rng = np.random.default_rng(seed)
    ex, ey = extent

    # vertical transects, segments stacked along y
    xs = np.linspace(ex / (n_transects + 1), ex - ex / (n_transects + 1), n_transects)
    seg_rows = []
    tracks = []
    for t, tx in enumerate(xs):
        length = min(segments_per_transect * segment_length, ey)
        y0 = (ey - length) / 2.0
        n_seg = int(round(length / segment_length))
        for s in range(n_seg):
            seg_rows.append({
                "segment_label": f"{t + 1}-{s + 1}",
                "transect": t + 1,
                "effort": segment_length,
                "x": tx,
                "y": y0 + (s + 0.5) * segment_length,
            })
        tracks.append({"transect": t + 1,
                       "geometry": LineString([(tx * 1000.0, y0 * 1000.0), (tx * 1000.0, (y0 + length) * 1000.0)])})
    segments = pd.DataFrame(seg_rows)

    centres = [(0.3, 0.6), (0.7, 0.35), (0.5, 0.5)]
    obs_rows = []
    dist_rows = []
    obj = 0
    for i, platform in enumerate(platforms):
        label = str(platform["label"])
        det = platform["detection"]
        width = _platform_width(platform)
        peak = groups_per_segment / (segment_length * width)
        cx, cy = centres[i % len(centres)]
        dens = _surface(segments["x"].to_numpy(), segments["y"].to_numpy(),
                        cx * ex, cy * ey, 0.25 * ex, peak, 0.1 * peak)
        n_groups = rng.poisson(dens * segments["effort"].to_numpy() * width)
        for seg_idx, n in enumerate(n_groups):
            if n == 0:
                continue
            sizes = 1 + rng.poisson(mean_group_size - 1.0, size=n)
            dist = rng.uniform(0.0, width, size=n)
            if det.get("dummy"):
                seen = np.ones(n, dtype=bool)
            else:
                sigma = sigma_fraction * width * np.exp(size_effect * (sizes - 1))
                seen = rng.uniform(size=n) < key_function("hn", dist, sigma)
            for size, d in zip(sizes[seen], dist[seen]):
                obj += 1
                obs_rows.append({"object": obj, "segment_label": segments.loc[seg_idx, "segment_label"],
                                 "size": int(size), "platform": label})
                row = {"object": obj, "platform": label, "size": int(size), "distance": float(d)}
                bins = det.get("bins")
                if bins is not None:
                    edges = np.asarray(bins, dtype=float)
                    k = int(np.clip(np.searchsorted(edges, d, side="left") - 1, 0, len(edges) - 2))
                    row["distbegin"] = float(edges[k])
                    row["distend"] = float(edges[k + 1])
                dist_rows.append(row)

    observations = pd.DataFrame(obs_rows, columns=["object", "segment_label", "size", "platform"])
    distances = pd.DataFrame(dist_rows)

    cells = []
    nx_cells = int(np.ceil(ex / cell_size))
    ny_cells = int(np.ceil(ey / cell_size))
    for ix in range(nx_cells):
        for iy in range(ny_cells):
            x0, y0 = ix * cell_size, iy * cell_size
            x1, y1 = min(x0 + cell_size, ex), min(y0 + cell_size, ey)
            cells.append({
                "cell_id": f"c{ix:03d}_{iy:03d}",
                "x": (x0 + x1) / 2.0,
                "y": (y0 + y1) / 2.0,
                "geometry": box(x0 * 1000.0, y0 * 1000.0, x1 * 1000.0, y1 * 1000.0),
            })
    grid = gpd.GeoDataFrame(cells, geometry="geometry", crs=crs)
    prediction = pd.DataFrame(grid[["cell_id", "x", "y"]])

    return {
        "segments": segments,
        "observations": observations,
        "distances": distances,
        "prediction": prediction,
        "prediction_grid": grid[["cell_id", "geometry"]],
        "tracks": gpd.GeoDataFrame(tracks, geometry="geometry", crs=crs),
    }


def write_bundle(bundle: dict, directory: Path) -> dict[str, Path]:
    """Write a bundle as parquet tables and GeoPackage layers under `directory`."""
    directory.mkdir(parents=True, exist_ok=True)
    paths = {}
    for name in ("segments", "observations", "distances", "prediction"):
        paths[name] = directory / f"{name}.parquet"
        bundle[name].to_parquet(paths[name], index=False)
    for name in ("prediction_grid", "tracks"):
        paths[name] = directory / f"{name}.gpkg"
        bundle[name].to_file(paths[name], driver="GPKG")
    return paths
