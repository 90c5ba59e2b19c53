"""
Posterior predictive variance and coefficient-of-variation surfaces.

Abundance draws are offset * exp(Lp @ beta_s) for each posterior sample
beta_s. Draws for different platforms are stacked row-wise with an
explicit subset label per row, and each subset's variance is computed
over its own rows only.
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from dsm_platforms.models.dsm import DSMFit
from dsm_platforms.models.posterior import PosteriorSamples
from dsm_platforms.predict.surfaces import combine_platforms, duplicate_prediction_grid


DEFAULT_CV_BREAKS = [0.0, 0.05, 0.1, 0.2, 0.3, 0.5, 1.0, np.inf]


def abundance_draws(samples: np.ndarray, lp_matrix: np.ndarray, offset) -> np.ndarray:
    """
    Per-sample, per-cell abundance: offset * exp(Lp @ beta_s).

    Returns an array of shape (n_samples, n_cells).
    """
    samples = np.atleast_2d(np.asarray(samples, dtype=float))
    lp_matrix = np.asarray(lp_matrix, dtype=float)
    if samples.shape[1] != lp_matrix.shape[1]:
        raise ValueError(f"samples have {samples.shape[1]} coefficients, Lp has {lp_matrix.shape[1]} columns")
    offset = np.asarray(offset, dtype=float)
    if offset.shape[0] != lp_matrix.shape[0]:
        raise ValueError(f"offset has {offset.shape[0]} rows, Lp has {lp_matrix.shape[0]}")
    return offset[None, :] * np.exp(samples @ lp_matrix.T)


def stack_platform_draws(draws: dict[str, np.ndarray]) -> tuple[np.ndarray, np.ndarray]:
    """
    Stack per-platform draw matrices (samples x cells) row-wise.

    Returns the stacked matrix and a label per row naming the platform
    each sample row belongs to.
    """
    shapes = {k: v.shape[1] for k, v in draws.items()}
    if len(set(shapes.values())) != 1:
        raise ValueError(f"platform draws cover different numbers of cells: {shapes}")
    stacked = np.vstack(list(draws.values()))
    labels = np.concatenate([np.repeat(k, v.shape[0]) for k, v in draws.items()])
    return stacked, labels


def per_subset_variance(stacked: np.ndarray, labels) -> dict[str, np.ndarray]:
    """
    Empirical per-cell variance (ddof=1) for each subset of sample rows.

    Only rows carrying a subset's label enter that subset's variance.
    """
    labels = np.asarray(labels)
    if labels.shape[0] != stacked.shape[0]:
        raise ValueError(f"{labels.shape[0]} labels for {stacked.shape[0]} sample rows")
    out = {}
    for label in pd.unique(labels):
        rows = stacked[labels == label]
        if rows.shape[0] < 2:
            raise ValueError(f"subset '{label}' has fewer than two samples")
        out[str(label)] = rows.var(axis=0, ddof=1)
    return out


def coefficient_of_variation(variance, estimate) -> np.ndarray:
    """sqrt(variance) / estimate; NaN where the estimate is zero."""
    estimate = np.asarray(estimate, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        cv = np.sqrt(np.asarray(variance, dtype=float)) / estimate
    return np.where(estimate > 0, cv, np.nan)


def cv_bins(cv, breaks=None) -> pd.Categorical:
    """
    Discretise CV into ordered, right-closed intervals.

    With the default breaks a CV of exactly 0.05 falls in (0, 0.05], and
    the lowest edge is included so a CV of 0 lands in the first bin.
    """
    breaks = DEFAULT_CV_BREAKS if breaks is None else breaks
    return pd.cut(np.asarray(cv, dtype=float), bins=breaks, right=True, include_lowest=True)


def uncertainty_surfaces(
    fit: DSMFit,
    posterior: PosteriorSamples,
    grid: pd.DataFrame,
    platforms: list[str],
    estimates: pd.DataFrame,
    breaks=None,
    combine_method: str = "sd_arithmetic",
) -> pd.DataFrame:
    """
    Per-cell posterior SD and CV for each platform, combined and difference.

    Parameters
    ----------
    estimates : pd.DataFrame
        Wide point-estimate surface from `platform_surfaces` (cell_id,
        one column per platform, combined, difference).
    combine_method : {"sd_arithmetic", "posterior"}
        "sd_arithmetic" reports combined SD as A_sd + B_sd and difference
        SD as A_sd - B_sd. "posterior" uses the variance of the per-draw
        sum and difference instead.

    Returns
    -------
    pd.DataFrame
        One row per cell in grid order with `<surface>_sd`, `<surface>_cv`
        and `<surface>_cv_bin` columns.
    """
    if len(platforms) != 2:
        raise ValueError(f"uncertainty surfaces need exactly two platforms, got {platforms}")
    est = estimates.set_index("cell_id").reindex(pd.Index(grid["cell_id"], name="cell_id"))
    if est[list(platforms)].isna().any().any():
        raise ValueError("point estimates do not cover every grid cell")

    grid_long = duplicate_prediction_grid(grid, platforms)
    draws = {}
    for p in platforms:
        rows = grid_long.loc[grid_long["platform"] == p].set_index("cell_id").reindex(grid["cell_id"]).reset_index()
        lp = fit.linear_predictor_matrix(rows)
        draws[p] = abundance_draws(posterior.samples, lp, rows["area"].to_numpy())

    stacked, labels = stack_platform_draws(draws)
    variances = per_subset_variance(stacked, labels)

    a, b = platforms
    out = pd.DataFrame({"cell_id": grid["cell_id"].to_numpy()})
    sd = {p: np.sqrt(variances[p]) for p in platforms}
    if combine_method == "sd_arithmetic":
        sd["combined"], sd["difference"] = combine_platforms(sd[a], sd[b])
    elif combine_method == "posterior":
        total, diff = combine_platforms(draws[a], draws[b])
        sd["combined"] = total.std(axis=0, ddof=1)
        sd["difference"] = diff.std(axis=0, ddof=1)
    else:
        raise ValueError(f"Unknown combine_method '{combine_method}'")

    for surface in [a, b, "combined", "difference"]:
        out[f"{surface}_sd"] = sd[surface]
        if surface == "difference":
            continue
        out[f"{surface}_cv"] = coefficient_of_variation(sd[surface] ** 2, est[surface].to_numpy())
        out[f"{surface}_cv_bin"] = cv_bins(out[f"{surface}_cv"], breaks)
    out.insert(1, "model", fit.name)
    return out
