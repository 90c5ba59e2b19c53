"""
Smooth bases for the spatial models.

Each smooth is a cubic B-spline basis on a standardised covariate with a
second-derivative penalty (statsmodels UnivariateBSplines). A smooth
"by platform" repeats the basis once per platform, zeroed on rows of the
other platforms, so each platform gets its own penalised surface.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pandas as pd
from scipy.linalg import block_diag
from statsmodels.gam.smooth_basis import (
    GenericSmoothers,
    UnivariateBSplines,
    UnivariateGenericSmoother,
)


@dataclass
class SmoothTerm:
    variable: str
    df: int
    center: float
    scale: float
    lower: float
    upper: float
    spline: UnivariateBSplines
    by: str | None = None

    @property
    def name(self) -> str:
        return f"s({self.variable})" if self.by is None else f"s({self.variable}):{self.by}"

    @property
    def penalty(self) -> np.ndarray:
        return np.asarray(self.spline.cov_der2)

    @property
    def dim(self) -> int:
        return int(self.spline.dim_basis)

    def standardise(self, values) -> np.ndarray:
        return (np.asarray(values, dtype=float) - self.center) / self.scale

    def basis(self, data: pd.DataFrame) -> np.ndarray:
        """
        Evaluate the basis for new rows.

        Values are clamped to the training range because B-spline bases
        are not defined beyond the outer knots.
        """
        z = np.clip(self.standardise(data[self.variable]), self.lower, self.upper)
        b = np.asarray(self.spline.transform(z))
        if self.by is not None:
            b = b * (data["platform"].astype(str).to_numpy() == self.by)[:, None]
        return b


def linear_design(data: pd.DataFrame, kind: str, levels: list[str]) -> pd.DataFrame:
    """
    Parametric part of the model: intercept, plus a treatment-coded
    platform factor for the platform models.
    """
    out = pd.DataFrame({"Intercept": np.ones(len(data))}, index=data.index)
    if kind in ("platform_factor", "platform_smooth"):
        platform = data["platform"].astype(str)
        unknown = sorted(set(platform) - set(levels))
        if unknown:
            raise ValueError(f"unknown platform levels {unknown}; model was fitted with {levels}")
        for level in levels[1:]:
            out[f"platform[T.{level}]"] = (platform == level).astype(float)
    return out


def build_smoothers(
    data: pd.DataFrame,
    kind: str,
    smooth_vars: list[str],
    dfs: list[int],
    levels: list[str],
) -> tuple[list[SmoothTerm], GenericSmoothers]:
    """
    Build the smooth terms for one model and the statsmodels smoother.

    Returns the term list (in column order) and the GenericSmoothers
    object passed to GLMGam.
    """
    missing = [v for v in smooth_vars if v not in data.columns]
    if missing:
        raise ValueError(f"model data: missing smooth variables {missing}")

    terms: list[SmoothTerm] = []
    smoothers = []
    columns = []
    for var, df in zip(smooth_vars, dfs):
        x = np.asarray(data[var], dtype=float)
        center = float(np.mean(x))
        scale = float(np.std(x)) or 1.0
        z = (x - center) / scale
        spline = UnivariateBSplines(z, df=df, degree=3, variable_name=var)
        term_kw = dict(variable=var, df=df, center=center, scale=scale,
                       lower=float(z.min()), upper=float(z.max()), spline=spline)

        if kind != "platform_smooth":
            terms.append(SmoothTerm(**term_kw))
            smoothers.append(spline)
            columns.append(z)
            continue

        platform = data["platform"].astype(str).to_numpy()
        for level in levels:
            ind = (platform == level).astype(float)[:, None]
            smoothers.append(UnivariateGenericSmoother(
                z,
                spline.basis * ind,
                spline.der_basis * ind,
                spline.der2_basis * ind,
                spline.cov_der2,
                variable_name=f"{var}:{level}",
            ))
            terms.append(SmoothTerm(by=level, **term_kw))
            columns.append(z)

    smoother = GenericSmoothers(np.column_stack(columns), smoothers)
    return terms, smoother


def penalty_matrix(terms: list[SmoothTerm], alpha: list[float], k_linear: int) -> np.ndarray:
    """Full penalty alpha_j * S_j laid out over all coefficients, zero on the parametric part."""
    blocks = [np.zeros((k_linear, k_linear))]
    blocks.extend(a * t.penalty for t, a in zip(terms, alpha))
    return block_diag(*blocks)
