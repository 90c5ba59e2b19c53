import numpy as np
import pandas as pd
import pytest
from scipy.integrate import quad

from dsm_platforms.detection.functions import (
    dummy_detection_function,
    fit_candidates,
    fit_detection_function,
    fit_platform_detection,
    integrate_key,
    key_function,
    truncate_distances,
)
from dsm_platforms.simulate import simulate_survey


def half_normal_distances(rng, sigma, width, n):
    """Accept-reject draws from a half-normal detection process."""
    out = []
    while len(out) < n:
        x = rng.uniform(0.0, width, size=n)
        keep = rng.uniform(size=n) < key_function("hn", x, sigma)
        out.extend(x[keep].tolist())
    return pd.DataFrame({"distance": out[:n], "platform": "upper", "size": 1})


def test_keys_equal_one_at_zero():
    assert key_function("hn", 0.0, 1.0) == pytest.approx(1.0)
    assert key_function("hr", 0.0, 1.0, 2.5) == pytest.approx(1.0)


def test_half_normal_integral_matches_quadrature():
    closed = integrate_key("hn", 0.0, 3.0, 1.2)[0]
    numeric, _ = quad(lambda x: np.exp(-x ** 2 / (2 * 1.2 ** 2)), 0.0, 3.0)
    assert closed == pytest.approx(numeric, rel=1e-8)


def test_hazard_rate_integral_matches_quadrature():
    approx = integrate_key("hr", 0.5, 3.0, 1.0, 3.0)[0]
    numeric, _ = quad(lambda x: 1.0 - np.exp(-(x / 1.0) ** -3.0), 0.5, 3.0)
    assert approx == pytest.approx(numeric, rel=1e-6)


def test_half_normal_scale_recovered(rng):
    data = half_normal_distances(rng, sigma=1.5, width=4.0, n=1500)
    ddf = fit_detection_function(data, "hn", width=4.0, platform="upper")
    assert ddf.converged
    assert ddf.sigma()[0] == pytest.approx(1.5, rel=0.1)
    assert 0.0 < ddf.average_p() < 1.0
    assert ddf.esw() == pytest.approx(ddf.average_p() * 4.0)
    assert ddf.vcov.shape == (1, 1)
    assert ddf.vcov[0, 0] > 0


def test_candidates_pick_lowest_aic(rng):
    data = half_normal_distances(rng, sigma=1.0, width=3.0, n=400)
    best, table = fit_candidates(data, ["hn", "hr"], width=3.0, platform="upper")
    assert table["delta_aic"].min() == 0.0
    assert best.key == table.loc[0, "key"]
    assert best.aic == pytest.approx(table.loc[0, "aic"])


def test_truncation_drops_far_detections():
    data = pd.DataFrame({"distance": [0.1, 0.5, 1.2]})
    kept, binned = truncate_distances(data, width=1.0)
    assert not binned
    assert kept["distance"].tolist() == [0.1, 0.5]


def test_exact_distances_are_cut_into_bins():
    data = pd.DataFrame({"distance": [0.0, 0.05, 0.07, 0.25]})
    kept, binned = truncate_distances(data, width=0.3, bins=[0.0, 0.05, 0.1, 0.2, 0.3])
    assert binned
    assert kept["distbegin"].tolist() == [0.0, 0.0, 0.05, 0.2]
    assert kept["distend"].tolist() == [0.05, 0.05, 0.1, 0.3]


def test_binned_platform_fit(bundle, seabird_settings):
    water = seabird_settings["platforms"][0]
    ddf, table = fit_platform_detection(bundle["distances"], water)
    assert ddf.binned
    assert ddf.platform == "water"
    assert ddf.key in ("hn", "hr")
    assert 0.2 < ddf.average_p() < 1.0
    assert len(table) == 2


def test_dummy_platform(bundle, seabird_settings):
    air = seabird_settings["platforms"][1]
    ddf, table = fit_platform_detection(bundle["distances"], air)
    assert ddf.is_dummy
    assert ddf.n_params == 0
    assert ddf.average_p() == 1.0
    assert np.isnan(ddf.aic)
    assert table.loc[0, "esw"] == pytest.approx(0.3)


def test_dummy_keeps_rows_without_distances():
    data = pd.DataFrame({"distance": [np.nan, 0.1, 0.5]})
    ddf = dummy_detection_function(data, width=0.3, platform="air")
    assert ddf.n == 2
    assert np.allclose(ddf.detection_probability(), 1.0)


def test_with_params_checks_length(ddfs):
    with pytest.raises(ValueError):
        ddfs[0].with_params(np.zeros(ddfs[0].n_params + 1))


def test_covariate_must_exist(rng):
    data = half_normal_distances(rng, sigma=1.0, width=3.0, n=50)
    with pytest.raises(ValueError, match="missing detection covariates"):
        fit_detection_function(data, "hn", width=3.0, covariates=["beaufort"])


def test_size_covariate_recovered(rng):
    n = 6000
    size = 1 + rng.poisson(1.5, size=n)
    x = rng.uniform(0.0, 4.0, size=n)
    seen = rng.uniform(size=n) < key_function("hn", x, np.exp(0.15 * (size - 1)))
    data = pd.DataFrame({"distance": x[seen], "platform": "upper", "size": size[seen]})

    ddf = fit_detection_function(data, "hn", width=4.0, covariates=["size"], platform="upper")
    assert ddf.param_names == ["(Intercept)", "size"]
    assert ddf.params[1] == pytest.approx(0.15, abs=0.05)
    # log(sigma) = -0.15 + 0.15 * size
    assert ddf.params[0] == pytest.approx(-0.15, abs=0.1)
    assert ddf.sigma().shape == (len(data),)


def test_size_effect_recovered_from_simulated_survey(whale_settings):
    upper = dict(whale_settings["platforms"][0])
    upper["detection"] = dict(upper["detection"], candidates=["hn"])
    bundle = simulate_survey([upper], n_transects=20, segments_per_transect=30, segment_length=5.0,
                             extent=(200.0, 150.0), cell_size=25.0, groups_per_segment=6.0,
                             sigma_fraction=0.25, mean_group_size=2.5, size_effect=0.15, seed=8)
    ddf, table = fit_platform_detection(bundle["distances"], upper)
    assert ddf.covariates == ["size"]
    assert ddf.params[1] == pytest.approx(0.15, abs=0.1)
    assert len(table) == 1
