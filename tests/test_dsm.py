import numpy as np
import pandas as pd
import pytest

from dsm_platforms.config import get_family_settings, get_model_specs
from dsm_platforms.models.dsm import (
    LOG_ALPHA_BOUNDS,
    compare_models,
    detection_offsets,
    fit_dsm,
    make_family,
)
from dsm_platforms.models.smoothers import linear_design, penalty_matrix


def test_offset_uses_each_rows_detection_function(counts, ddfs):
    offset = detection_offsets(counts, ddfs, sides=2)
    air = (counts["platform"] == "air").to_numpy()
    water = ~air
    assert np.allclose(np.exp(offset[air]), counts.loc[air, "effort"] * 2 * 0.3)
    expected = counts.loc[water, "effort"] * 2 * 0.3 * ddfs[0].average_p()
    assert np.allclose(np.exp(offset[water]), expected)


def test_offset_rejects_swapped_detection_functions(counts, ddfs):
    with pytest.raises(ValueError, match="ddf_index"):
        detection_offsets(counts, list(reversed(ddfs)))


def test_unknown_family():
    with pytest.raises(ValueError):
        make_family({"name": "gaussian"})


def test_coefficient_layout(fits):
    for fit in fits.values():
        n_smooth = sum(t.dim for t in fit.terms)
        assert len(fit.params) == len(fit.linear_columns) + n_smooth
        assert fit.penalty.shape == (len(fit.params), len(fit.params))
        k = len(fit.linear_columns)
        assert np.allclose(fit.penalty[:k, :], 0.0)
    assert fits["m_noplat"].linear_columns == ["Intercept"]
    assert fits["m_platfactor"].linear_columns == ["Intercept", "platform[T.air]"]
    assert [t.name for t in fits["m_platsmooth"].terms] == [
        "s(x):water", "s(x):air", "s(y):water", "s(y):air",
    ]


def test_fitted_values_match_statsmodels(fits):
    for fit in fits.values():
        assert np.allclose(fit.fitted, np.asarray(fit.results.fittedvalues), rtol=1e-6)
        assert np.allclose(fit.predict(fit.data, np.exp(fit.offset)), fit.fitted)


def test_prediction_matrix_has_one_column_per_coefficient(fits, grid):
    rows = grid.assign(platform="water")
    for fit in fits.values():
        lp = fit.linear_predictor_matrix(rows)
        assert lp.shape == (len(grid), len(fit.params))


def test_by_platform_smooth_is_zero_on_other_platform(fits, grid):
    fit = fits["m_platsmooth"]
    lp = fit.linear_predictor_matrix(grid.assign(platform="air"))
    start = len(fit.linear_columns)
    for term in fit.terms:
        block = lp[:, start:start + term.dim]
        if term.by == "water":
            assert np.allclose(block, 0.0)
        start += term.dim


def test_predictions_outside_survey_range_are_finite(fits, grid):
    far = grid.assign(platform="water", x=grid["x"] + 1e4)
    for fit in fits.values():
        assert np.isfinite(fit.predict(far, far["area"])).all()


def test_poisson_totals_match_observed(fits):
    for fit in fits.values():
        assert fit.fitted.sum() == pytest.approx(fit.endog.sum(), rel=1e-3)


def test_model_comparison(fits):
    table = compare_models(fits)
    assert set(table["model"]) == set(fits)
    assert table["delta_aic"].iloc[0] == 0.0
    assert table["aic"].is_monotonic_increasing
    assert (table["edf"] > 1.0).all()
    assert (table["deviance_explained"] < 1.0).all()


def test_selected_penalties_are_positive(counts, ddfs, small_cfg):
    spec = dict(get_model_specs(small_cfg)[1], select_penalty=True)
    fit = fit_dsm(counts, ddfs, spec, small_cfg["family"])
    assert len(fit.alpha) == 2
    assert all(a > 0 for a in fit.alpha)


def test_linear_design_rejects_unknown_level():
    data = pd.DataFrame({"platform": ["water", "boat"]})
    with pytest.raises(ValueError, match="unknown platform levels"):
        linear_design(data, "platform_factor", ["water", "air"])


def test_penalty_matrix_scales_blocks(fits):
    fit = fits["m_noplat"]
    doubled = penalty_matrix(fit.terms, [2 * a for a in fit.alpha], len(fit.linear_columns))
    assert np.allclose(doubled, 2 * fit.penalty)


def test_tweedie_penalty_selection(whale_fit, whale_counts, whale_ddfs, whale_cfg):
    family = get_family_settings(whale_cfg)
    assert family["name"] == "tweedie"
    assert whale_fit.spec["select_penalty"]
    lo, hi = np.exp(LOG_ALPHA_BOUNDS)
    assert len(whale_fit.alpha) == 2
    assert all(lo * 0.999 <= a <= hi * 1.001 for a in whale_fit.alpha)
    assert whale_fit.scale != 1.0

    fixed = fit_dsm(whale_counts, whale_ddfs, dict(whale_fit.spec, select_penalty=False), family)
    assert fixed.alpha == [1.0, 1.0]
    assert whale_fit.results.aic <= fixed.results.aic + 1e-6


def test_tweedie_offsets_use_fitted_detection(whale_fit, whale_ddfs):
    upper = (whale_fit.data["platform"] == "upper").to_numpy()
    p_upper = whale_ddfs[0].average_p()
    expected = whale_fit.data.loc[upper, "effort"] * 2 * 4.0 * p_upper
    assert np.allclose(np.exp(whale_fit.offset[upper]), expected)
    assert 0.0 < p_upper < 1.0
