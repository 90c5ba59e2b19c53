import json

import pandas as pd

from dsm_platforms.paths import figures_dir, summary_path, tables_dir
from dsm_platforms.simulate import write_bundle
from dsm_platforms.vignette import run_vignette


def test_seabird_vignette_end_to_end(tmp_path, bundle, small_cfg):
    write_bundle(bundle, tmp_path / "data" / "raw" / "seabirds")
    summary = run_vignette(tmp_path, "seabirds", small_cfg,
                           posterior_overrides={"n_samples": 150, "burn_in": 50, "seed": 1})

    assert summary["platforms"] == ["water", "air"]
    assert summary["best_model"] in {"m_noplat", "m_platfactor", "m_platsmooth"}
    assert len(summary["posterior"]) == 3
    assert all(p["n_kept"] == 100 for p in summary["posterior"])

    saved = json.loads(summary_path(tmp_path, "seabirds").read_text())
    assert saved["best_model"] == summary["best_model"]

    totals = pd.read_csv(tables_dir(tmp_path, "seabirds") / "abundance_totals.csv")
    assert (totals["combined"] > 0).all()
    cv = pd.read_parquet(tables_dir(tmp_path, "seabirds") / "uncertainty_surfaces.parquet")
    assert len(cv) == 3 * len(bundle["prediction"])
    assert (figures_dir(tmp_path, "seabirds") / "density_m_platsmooth.png").exists()
    assert (tmp_path / "data" / "interim" / "seabirds" / "segments_by_platform.parquet").exists()


def test_whale_vignette_with_tweedie_and_selected_penalties(tmp_path, whale_bundle, whale_cfg):
    write_bundle(whale_bundle, tmp_path / "data" / "raw" / "whales")
    summary = run_vignette(tmp_path, "whales", whale_cfg,
                           posterior_overrides={"n_samples": 150, "burn_in": 50, "seed": 2},
                           make_figures=False)

    assert summary["platforms"] == ["upper", "lower"]
    upper, lower = summary["detection"]
    assert upper["covariates"] == ["size"]
    assert "size" in upper["params"]
    assert lower["covariates"] == []

    n_theta = upper["n_params"] + lower["n_params"]
    assert all(v["n_detection_params"] == n_theta for v in summary["variance_propagation"])
    assert all(p["n_detection_params"] == n_theta for p in summary["posterior"])
    assert all(v["cv"] >= v["cv_gam_only"] for v in summary["variance_propagation"])

    models = pd.read_csv(tables_dir(tmp_path, "whales") / "model_comparison.csv")
    assert len(models) == 3
    assert (models["scale"] > 0).all()
    assert not (models["scale"] == 1.0).all()
    assert summary["figures"] == []
    assert not figures_dir(tmp_path, "whales").exists()
