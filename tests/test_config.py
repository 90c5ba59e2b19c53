import copy

import pytest

from dsm_platforms.config import (
    get_dataset_settings,
    get_family_settings,
    get_model_specs,
    get_plot_settings,
    get_posterior_settings,
    get_uncertainty_settings,
    get_units,
    validate_dataset_settings,
    validate_model_specs,
)


@pytest.mark.parametrize("dataset", ["seabirds", "whales"])
def test_repo_datasets_validate(analysis_cfg, dataset):
    ds = validate_dataset_settings(get_dataset_settings(analysis_cfg, dataset), dataset)
    assert len(ds["platforms"]) == 2
    assert ds["halve_effort"] is True


def test_repo_models_validate(analysis_cfg):
    specs = validate_model_specs(get_model_specs(analysis_cfg))
    assert [s["kind"] for s in specs] == ["no_platform", "platform_factor", "platform_smooth"]


def test_unknown_dataset(analysis_cfg):
    with pytest.raises(ValueError, match="datasets.otters"):
        get_dataset_settings(analysis_cfg, "otters")


def test_duplicate_platform_labels(analysis_cfg):
    ds = copy.deepcopy(get_dataset_settings(analysis_cfg, "whales"))
    ds["platforms"][1]["label"] = "upper"
    with pytest.raises(ValueError, match="labels must be unique"):
        validate_dataset_settings(ds, "whales")


def test_unknown_detection_key(analysis_cfg):
    ds = copy.deepcopy(get_dataset_settings(analysis_cfg, "whales"))
    ds["platforms"][0]["detection"]["candidates"] = ["hn", "uniform"]
    with pytest.raises(ValueError, match="candidates"):
        validate_dataset_settings(ds, "whales")


def test_truncation_width_must_exceed_left(analysis_cfg):
    ds = copy.deepcopy(get_dataset_settings(analysis_cfg, "whales"))
    ds["platforms"][0]["detection"]["truncation"] = {"left": 4.0, "width": 4.0}
    with pytest.raises(ValueError, match="truncation"):
        validate_dataset_settings(ds, "whales")


def test_bins_must_increase(analysis_cfg):
    ds = copy.deepcopy(get_dataset_settings(analysis_cfg, "seabirds"))
    ds["platforms"][0]["detection"]["bins"] = [0.0, 0.1, 0.1, 0.3]
    with pytest.raises(ValueError, match="bins"):
        validate_dataset_settings(ds, "seabirds")


def test_dummy_needs_width(analysis_cfg):
    ds = copy.deepcopy(get_dataset_settings(analysis_cfg, "seabirds"))
    ds["platforms"][1]["detection"]["width"] = 0
    with pytest.raises(ValueError, match="width"):
        validate_dataset_settings(ds, "seabirds")


def test_sides(analysis_cfg):
    ds = copy.deepcopy(get_dataset_settings(analysis_cfg, "seabirds"))
    ds["sides"] = 3
    with pytest.raises(ValueError, match="sides"):
        validate_dataset_settings(ds, "seabirds")


def test_model_spec_rules(analysis_cfg):
    specs = get_model_specs(analysis_cfg)
    small = copy.deepcopy(specs)
    small[0]["df"] = [3, 8]
    with pytest.raises(ValueError, match="df >= 4"):
        validate_model_specs(small)
    unknown = copy.deepcopy(specs)
    unknown[0]["kind"] = "platform_interaction"
    with pytest.raises(ValueError, match="kind"):
        validate_model_specs(unknown)
    with pytest.raises(ValueError):
        validate_model_specs([])


def test_scalar_df_is_repeated():
    specs = get_model_specs({"models": [{"name": "m", "kind": "no_platform", "df": 6}]})
    assert specs[0]["df"] == [6, 6]


def test_defaults():
    assert get_family_settings({})["name"] == "tweedie"
    posterior = get_posterior_settings({})
    assert posterior["seed"] is None
    assert posterior["n_samples"] == 10000
    assert get_uncertainty_settings({})["cv_breaks"][-1] == float("inf")
    assert get_units({})["area_scale"] == 1e-6
    assert get_plot_settings({})["format"] == "pdf"


def test_bad_family_and_combine_method():
    with pytest.raises(ValueError, match="family.name"):
        get_family_settings({"family": {"name": "gaussian"}})
    with pytest.raises(ValueError, match="combine_method"):
        get_uncertainty_settings({"uncertainty": {"combine_method": "max"}})


def test_repo_cv_breaks_parse_infinity(analysis_cfg):
    breaks = get_uncertainty_settings(analysis_cfg)["cv_breaks"]
    assert breaks[:2] == [0.0, 0.05]
    assert breaks[-1] == float("inf")
