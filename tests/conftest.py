import copy
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from dsm_platforms.config import (
    get_dataset_settings,
    get_family_settings,
    get_model_specs,
    load_analysis_config,
)
from dsm_platforms.detection.functions import fit_platform_detection
from dsm_platforms.loaders.geometry import cell_areas
from dsm_platforms.models.dsm import fit_dsm, fit_model_suite
from dsm_platforms.reshape.platforms import reshape_for_platforms, segment_counts
from dsm_platforms.simulate import simulate_survey


ROOT = Path(__file__).parent.parent


@pytest.fixture(scope="session")
def analysis_cfg():
    return load_analysis_config(ROOT)


@pytest.fixture(scope="session")
def small_cfg(analysis_cfg):
    """Repo config with quick Poisson models and fixed penalties."""
    cfg = copy.deepcopy(analysis_cfg)
    cfg["family"] = {"name": "poisson"}
    for m in cfg["models"]:
        m["df"] = [5, 5]
        m["select_penalty"] = False
        m["alpha"] = 1.0
    cfg["plotting"]["format"] = "png"
    cfg["plotting"]["dpi"] = 50
    return cfg


@pytest.fixture(scope="session")
def whale_cfg(analysis_cfg):
    """Repo config with its Tweedie family and penalty selection, on small bases."""
    cfg = copy.deepcopy(analysis_cfg)
    for m in cfg["models"]:
        m["df"] = [5, 5]
    cfg["plotting"]["format"] = "png"
    cfg["plotting"]["dpi"] = 50
    return cfg


@pytest.fixture(scope="session")
def whale_settings(analysis_cfg):
    return get_dataset_settings(analysis_cfg, "whales")


@pytest.fixture(scope="session")
def whale_bundle(whale_settings):
    return simulate_survey(whale_settings["platforms"], n_transects=8, segment_length=5.0,
                           extent=(200.0, 150.0), cell_size=25.0, groups_per_segment=4.0,
                           sigma_fraction=0.3, mean_group_size=2.5, size_effect=0.15, seed=4)


@pytest.fixture(scope="session")
def whale_ddfs(whale_bundle, whale_settings):
    return [fit_platform_detection(whale_bundle["distances"], p)[0] for p in whale_settings["platforms"]]


@pytest.fixture(scope="session")
def whale_counts(whale_bundle, whale_settings):
    seg2, obs2 = reshape_for_platforms(whale_bundle["segments"], whale_bundle["observations"],
                                       whale_settings["platforms"])
    return segment_counts(seg2, obs2)


@pytest.fixture(scope="session")
def whale_fit(whale_counts, whale_ddfs, whale_cfg):
    """Platform-factor Tweedie model with AIC-selected penalties."""
    spec = get_model_specs(whale_cfg)[1]
    return fit_dsm(whale_counts, whale_ddfs, spec, get_family_settings(whale_cfg))


@pytest.fixture(scope="session")
def seabird_settings(analysis_cfg):
    return get_dataset_settings(analysis_cfg, "seabirds")


@pytest.fixture(scope="session")
def bundle(seabird_settings):
    return simulate_survey(seabird_settings["platforms"], segment_length=1.0,
                           groups_per_segment=1.5, seed=11)


@pytest.fixture(scope="session")
def ddfs(bundle, seabird_settings):
    return [fit_platform_detection(bundle["distances"], p)[0] for p in seabird_settings["platforms"]]


@pytest.fixture(scope="session")
def counts(bundle, seabird_settings):
    seg2, obs2 = reshape_for_platforms(bundle["segments"], bundle["observations"],
                                       seabird_settings["platforms"])
    return segment_counts(seg2, obs2)


@pytest.fixture(scope="session")
def fits(counts, ddfs, small_cfg):
    return fit_model_suite(counts, ddfs, get_model_specs(small_cfg), small_cfg["family"])


@pytest.fixture(scope="session")
def grid(bundle):
    g = bundle["prediction_grid"].merge(bundle["prediction"], on="cell_id")
    g["area"] = cell_areas(g, 1e-6)
    return g


@pytest.fixture
def rng():
    return np.random.default_rng(42)
