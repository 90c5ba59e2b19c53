"""
Density surface models.

Fits penalised count GAMs (statsmodels GLMGam) to per-segment counts
with a detection-corrected effort offset. Three nested specifications
are supported:

- no_platform:     count ~ 1 + s(x) + s(y)
- platform_factor: count ~ 1 + platform + s(x) + s(y)
- platform_smooth: count ~ 1 + platform + s(x, by=platform) + s(y, by=platform)
"""

from __future__ import annotations

import dataclasses
import warnings
from dataclasses import dataclass
from typing import Any

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy import optimize
from statsmodels.gam.api import GLMGam
from statsmodels.tools.sm_exceptions import ConvergenceWarning

from dsm_platforms.detection.functions import DetectionFunction
from dsm_platforms.models.smoothers import (
    SmoothTerm,
    build_smoothers,
    linear_design,
    penalty_matrix,
)


LOG_ALPHA_BOUNDS = (-6.0, 12.0)


def make_family(settings: dict[str, Any]) -> sm.families.Family:
    """Count family with a log link from `family` settings."""
    link = sm.families.links.Log()
    name = settings.get("name", "tweedie")
    if name == "poisson":
        return sm.families.Poisson(link=link)
    if name == "tweedie":
        return sm.families.Tweedie(link=link, var_power=float(settings.get("var_power", 1.2)))
    if name == "negbin":
        return sm.families.NegativeBinomial(link=link, alpha=float(settings.get("nb_alpha", 1.0)))
    raise ValueError(f"Unknown family '{name}'")


def detection_offsets(segments: pd.DataFrame, ddfs: list[DetectionFunction], sides: int = 2) -> np.ndarray:
    """
    Log effective searched area per segment.

    Each row uses the detection function picked by its 1-based
    `ddf_index`: log(effort * sides * (width - left) * average_p).
    """
    idx = segments["ddf_index"].to_numpy().astype(int)
    if idx.min() < 1 or idx.max() > len(ddfs):
        raise ValueError(f"ddf_index outside 1..{len(ddfs)}")
    for i, ddf in enumerate(ddfs, start=1):
        tags = set(segments.loc[idx == i, "platform"].astype(str))
        if tags and tags != {ddf.platform}:
            raise ValueError(f"ddf_index {i} is '{ddf.platform}' but segments carry platforms {sorted(tags)}")
    strip = np.array([(d.width - d.left) * d.average_p() for d in ddfs])
    area = segments["effort"].to_numpy(dtype=float) * sides * strip[idx - 1]
    return np.log(area)


@dataclass
class DSMFit:
    name: str
    kind: str
    results: Any
    terms: list[SmoothTerm]
    linear_columns: list[str]
    levels: list[str]
    alpha: list[float]
    penalty: np.ndarray
    data: pd.DataFrame
    offset: np.ndarray
    family_settings: dict
    cov: np.ndarray
    spec: dict = dataclasses.field(default_factory=dict)
    sides: int = 2

    @property
    def params(self) -> np.ndarray:
        return np.asarray(self.results.params, dtype=float)

    @property
    def gam_cov(self) -> np.ndarray:
        """Bayesian covariance of the GAM alone, before any detection uncertainty is added."""
        return np.asarray(self.results.cov_params(), dtype=float)

    @property
    def scale(self) -> float:
        return float(self.results.scale)

    @property
    def endog(self) -> np.ndarray:
        return self.data["count"].to_numpy(dtype=float)

    @property
    def family(self) -> sm.families.Family:
        return make_family(self.family_settings)

    @property
    def fitted(self) -> np.ndarray:
        return np.exp(self.model_matrix() @ self.params + self.offset)

    def model_matrix(self) -> np.ndarray:
        return self.linear_predictor_matrix(self.data)

    def linear_predictor_matrix(self, newdata: pd.DataFrame) -> np.ndarray:
        """
        Design matrix mapping coefficients to the linear predictor.

        Columns follow the GLMGam layout: parametric part, then each
        smooth's basis in term order.
        """
        lin = linear_design(newdata, self.kind, self.levels).to_numpy()
        return np.column_stack([lin] + [t.basis(newdata) for t in self.terms])

    def predict(self, newdata: pd.DataFrame, offset, params: np.ndarray | None = None) -> np.ndarray:
        """Predicted counts: offset * exp(Lp @ params); `offset` on the response scale (e.g. cell area)."""
        beta = self.params if params is None else params
        return np.asarray(offset, dtype=float) * np.exp(self.linear_predictor_matrix(newdata) @ beta)

    @property
    def edf(self) -> float:
        """Effective degrees of freedom, trace((X'WX + 2P)^-1 X'WX)."""
        x = self.model_matrix()
        mu = self.fitted
        w = mu ** 2 / self.family.variance(mu)
        xtwx = x.T @ (w[:, None] * x)
        ncov = self.gam_cov / self.scale
        return float(np.trace(ncov @ xtwx))

    @property
    def llf(self) -> float:
        return float(self.family.loglike(self.endog, self.fitted, scale=self.scale))

    @property
    def aic(self) -> float:
        return -2.0 * self.llf + 2.0 * self.edf

    def deviance_explained(self) -> float:
        fam = self.family
        null = sm.GLM(self.endog, np.ones((len(self.endog), 1)), family=make_family(self.family_settings),
                      offset=self.offset).fit()
        null_dev = fam.deviance(self.endog, np.asarray(null.fittedvalues))
        dev = fam.deviance(self.endog, self.fitted)
        return float(1.0 - dev / null_dev) if null_dev > 0 else float("nan")

    def with_cov(self, cov: np.ndarray) -> "DSMFit":
        cov = np.asarray(cov, dtype=float)
        if cov.shape != (len(self.params), len(self.params)):
            raise ValueError(f"covariance must be {len(self.params)}x{len(self.params)}, got {cov.shape}")
        return dataclasses.replace(self, cov=cov)

    def summary(self) -> dict:
        return {
            "model": self.name,
            "kind": self.kind,
            "n": int(len(self.data)),
            "n_params": int(len(self.params)),
            "edf": self.edf,
            "aic": self.aic,
            "deviance_explained": self.deviance_explained(),
            "scale": self.scale,
            "alpha": [float(a) for a in self.alpha],
        }


def select_penalty_weights(
    endog: np.ndarray,
    exog: pd.DataFrame,
    smoother,
    offset: np.ndarray,
    family_settings: dict[str, Any],
    start: list[float],
) -> list[float]:
    """
    Penalty weights minimising the fitted model's AIC.

    Searches over log(alpha) with Nelder-Mead, refitting the GAM at
    each candidate; weights are kept within exp(LOG_ALPHA_BOUNDS).
    """
    def aic(log_alpha: np.ndarray) -> float:
        model = GLMGam(endog, exog=exog, smoother=smoother, alpha=list(np.exp(log_alpha)),
                       family=make_family(family_settings), offset=offset)
        return float(model.fit().aic)

    x0 = np.clip(np.log(np.maximum(np.asarray(start, dtype=float), 1e-12)), *LOG_ALPHA_BOUNDS)
    found = optimize.minimize(
        aic,
        x0,
        method="Nelder-Mead",
        bounds=[LOG_ALPHA_BOUNDS] * len(x0),
        options={"xatol": 0.05, "fatol": 0.01, "maxfev": 100 * len(x0)},
    )
    if not found.success:
        warnings.warn(f"penalty selection stopped early: {found.message}", ConvergenceWarning)
    return [float(a) for a in np.exp(found.x)]


def fit_gam(
    data: pd.DataFrame,
    offset: np.ndarray,
    spec: dict[str, Any],
    family_settings: dict[str, Any],
    levels: list[str],
    alpha: list[float] | None = None,
    start_params: np.ndarray | None = None,
) -> tuple[Any, list[SmoothTerm], pd.DataFrame, list[float]]:
    """
    Fit one GLMGam; returns (results, terms, linear design, alpha).

    With `select_penalty` the penalty weights are chosen by AIC before the
    final fit unless `alpha` is given explicitly.
    """
    endog = data["count"].to_numpy(dtype=float)
    exog = linear_design(data, spec["kind"], levels)
    terms, smoother = build_smoothers(data, spec["kind"], spec["smooth_vars"], spec["df"], levels)
    if alpha is None:
        alpha = spec.get("alpha", 1.0)
        alpha = list(alpha) if isinstance(alpha, (list, tuple, np.ndarray)) else [float(alpha)] * len(terms)
        if spec.get("select_penalty") and len(alpha) == len(terms):
            alpha = select_penalty_weights(endog, exog, smoother, offset, family_settings, alpha)
    if len(alpha) != len(terms):
        raise ValueError(f"{spec['name']}: {len(terms)} smooth terms but {len(alpha)} penalty weights")

    model = GLMGam(endog, exog=exog, smoother=smoother, alpha=alpha,
                   family=make_family(family_settings), offset=offset)
    fit_kw = {} if start_params is None else {"start_params": start_params}
    results = model.fit(**fit_kw)
    return results, terms, exog, list(alpha)


def fit_dsm(
    segments: pd.DataFrame,
    ddfs: list[DetectionFunction],
    spec: dict[str, Any],
    family_settings: dict[str, Any],
    sides: int = 2,
) -> DSMFit:
    """
    Fit one density surface model to duplicated, counted segments.

    `segments` is the output of `segment_counts`; `ddfs` are the
    detection functions in platform order (ddf_index 1, 2, ...).
    """
    data = segments.reset_index(drop=True)
    levels = [d.platform for d in ddfs]
    offset = detection_offsets(data, ddfs, sides)
    results, terms, exog, alpha = fit_gam(data, offset, spec, family_settings, levels)
    k_linear = exog.shape[1]
    fit = DSMFit(
        name=spec["name"],
        kind=spec["kind"],
        results=results,
        terms=terms,
        linear_columns=list(exog.columns),
        levels=levels,
        alpha=alpha,
        penalty=penalty_matrix(terms, alpha, k_linear),
        data=data,
        offset=offset,
        family_settings=dict(family_settings),
        cov=np.asarray(results.cov_params(), dtype=float),
        spec=dict(spec),
        sides=sides,
    )
    print(f"✓ Fitted {spec['name']} ({spec['kind']}): {len(fit.params)} coefficients, "
          f"edf {fit.edf:.1f}, AIC {fit.aic:.1f}")
    return fit


def refit_with_offset(fit: DSMFit, offset: np.ndarray) -> np.ndarray:
    """Refit a model with the same penalty weights and a new offset; returns coefficients."""
    results, _, _, _ = fit_gam(fit.data, offset, fit.spec, fit.family_settings, fit.levels,
                               alpha=fit.alpha, start_params=fit.params)
    return np.asarray(results.params, dtype=float)


def fit_model_suite(
    segments: pd.DataFrame,
    ddfs: list[DetectionFunction],
    specs: list[dict[str, Any]],
    family_settings: dict[str, Any],
    sides: int = 2,
) -> dict[str, DSMFit]:
    return {s["name"]: fit_dsm(segments, ddfs, s, family_settings, sides) for s in specs}


def compare_models(fits: dict[str, DSMFit]) -> pd.DataFrame:
    rows = [f.summary() for f in fits.values()]
    table = pd.DataFrame(rows)[["model", "kind", "n", "n_params", "edf", "aic", "deviance_explained", "scale"]]
    table["delta_aic"] = table["aic"] - table["aic"].min()
    return table.sort_values("aic").reset_index(drop=True)
