"""
End-to-end vignette run for one survey dataset.

Loads the bundle, fits one detection function per platform, duplicates
segments per platform, fits the configured spatial models, propagates
detection uncertainty, predicts per-platform, combined and difference
surfaces, samples coefficients by Metropolis-Hastings for the CV maps,
and writes tables, figures and a JSON summary under results/.

Example
-------
>>> from pathlib import Path
>>> from dsm_platforms.config import load_analysis_config
>>> root = Path('.')
>>> summary = run_vignette(root, "seabirds", load_analysis_config(root))
"""

from __future__ import annotations

from pathlib import Path

import pandas as pd

from dsm_platforms.config import (
    get_dataset_settings,
    get_family_settings,
    get_model_specs,
    get_plot_settings,
    get_posterior_settings,
    get_uncertainty_settings,
    validate_dataset_settings,
    validate_model_specs,
)
from dsm_platforms.data import save_parquet, save_summary_json, save_table_csv
from dsm_platforms.detection.functions import fit_platform_detection
from dsm_platforms.loaders.geometry import load_prediction_grid, load_tracks
from dsm_platforms.loaders.survey import load_survey_tables, summarize_survey
from dsm_platforms.models.dsm import compare_models, fit_model_suite
from dsm_platforms.models.posterior import metropolis_hastings
from dsm_platforms.models.varprop import propagate_detection_uncertainty
from dsm_platforms.paths import figures_dir, interim_dir, summary_path, tables_dir
from dsm_platforms.plotting.maps import (
    attach_surface,
    crop_to_extent,
    plot_cv_panels,
    plot_detection_function,
    plot_obs_exp,
    plot_surface_panels,
    reproject,
)
from dsm_platforms.predict.surfaces import (
    abundance_totals,
    duplicate_prediction_grid,
    model_predictions,
    platform_surfaces,
)
from dsm_platforms.predict.uncertainty import uncertainty_surfaces
from dsm_platforms.qa.obs_exp import obs_exp_by_model, print_obs_exp
from dsm_platforms.reshape.platforms import reshape_for_platforms, segment_counts


def _section(title: str) -> None:
    print()
    print("=" * 70)
    print(title)
    print("=" * 70)


def _map_layers(grid, tracks, plot_settings):
    grid = reproject(grid, plot_settings.get("crs"))
    tracks = reproject(tracks, plot_settings.get("crs"))
    bbox = plot_settings.get("bbox")
    if bbox:
        grid = crop_to_extent(grid, tuple(bbox))
        if tracks is not None:
            tracks = crop_to_extent(tracks, tuple(bbox))
    return grid, tracks


def run_vignette(
    root: Path,
    dataset: str,
    analysis_cfg: dict,
    posterior_overrides: dict | None = None,
    make_figures: bool = True,
) -> dict:
    """
    Run the full pipeline for `dataset` and return its summary.

    `posterior_overrides` replaces individual sampler settings (e.g. a
    shorter chain or a fixed seed) without editing the config.
    """
    ds = validate_dataset_settings(get_dataset_settings(analysis_cfg, dataset), dataset)
    specs = validate_model_specs(get_model_specs(analysis_cfg))
    family = get_family_settings(analysis_cfg)
    post_cfg = {**get_posterior_settings(analysis_cfg), **(posterior_overrides or {})}
    unc_cfg = get_uncertainty_settings(analysis_cfg)
    plot_cfg = get_plot_settings(analysis_cfg)
    labels = [p["label"] for p in ds["platforms"]]

    out_tables = tables_dir(root, dataset)
    out_figures = figures_dir(root, dataset)

    _section("STEP 1: Load survey bundle")
    tables = load_survey_tables(root, dataset, analysis_cfg)
    grid = load_prediction_grid(root, dataset, analysis_cfg, tables["prediction"])
    tracks = load_tracks(root, dataset, analysis_cfg)
    survey = summarize_survey(tables)
    for label in labels:
        print(f"  {label}: {survey['observations_by_platform'].get(label, 0):,} groups, "
              f"{survey['individuals_by_platform'].get(label, 0.0):,.0f} individuals")

    _section("STEP 2: Detection functions")
    ddfs = []
    ddf_tables = []
    for platform in ds["platforms"]:
        ddf, table = fit_platform_detection(tables["distances"], platform)
        ddfs.append(ddf)
        ddf_tables.append(table)
        if make_figures:
            plot_detection_function(ddf, out_figures / f"detection_{ddf.platform}", plot_cfg)
    ddf_table = pd.concat(ddf_tables, ignore_index=True)
    save_table_csv(ddf_table, out_tables / "detection_functions.csv")

    _section("STEP 3: Duplicate segments per platform")
    seg2, obs2 = reshape_for_platforms(tables["segments"], tables["observations"], ds["platforms"],
                                       halve_effort=ds["halve_effort"])
    counts = segment_counts(seg2, obs2)
    save_parquet(counts, interim_dir(root, dataset) / "segments_by_platform.parquet")
    save_parquet(obs2, interim_dir(root, dataset) / "observations_by_platform.parquet")
    print(counts.groupby("platform")[["effort", "count", "n_groups"]].sum().to_string())

    _section("STEP 4: Spatial models")
    fits = fit_model_suite(counts, ddfs, specs, family, ds["sides"])
    comparison = compare_models(fits)
    print(comparison.to_string(index=False, float_format=lambda v: f"{v:,.3f}"))
    save_table_csv(comparison, out_tables / "model_comparison.csv")

    _section("STEP 5: Variance propagation")
    grid_long = duplicate_prediction_grid(grid, labels)
    varprop = {
        name: propagate_detection_uncertainty(fit, ddfs, grid_long, grid_long["area"].to_numpy())
        for name, fit in fits.items()
    }
    fits = {name: vp.fit for name, vp in varprop.items()}
    varprop_table = pd.DataFrame([vp.summary for vp in varprop.values()])
    save_table_csv(varprop_table, out_tables / "variance_propagation.csv")

    _section("STEP 6: Predictions")
    long, abundance = model_predictions(fits, grid, labels)
    densities = {
        name: platform_surfaces(long.loc[long["model"] == name], "density", grid["cell_id"], labels)
        for name in fits
    }
    totals = abundance_totals(abundance, labels)
    save_parquet(long, out_tables / "predictions_long.parquet")
    save_table_csv(totals, out_tables / "abundance_totals.csv")

    _section("STEP 7: Posterior sampling and CV surfaces")
    posteriors = {
        name: metropolis_hastings(
            fit,
            n_samples=post_cfg["n_samples"],
            burn_in=post_cfg["burn_in"],
            rw_scale=post_cfg["rw_scale"],
            t_df=post_cfg["t_df"],
            thin=post_cfg["thin"],
            seed=post_cfg["seed"],
            jacobian=varprop[name].jacobian,
            detection_vcov=varprop[name].detection_vcov,
        )
        for name, fit in fits.items()
    }
    cv_tables = {
        name: uncertainty_surfaces(fit, posteriors[name], grid, labels, abundance[name],
                                   breaks=unc_cfg["cv_breaks"], combine_method=unc_cfg["combine_method"])
        for name, fit in fits.items()
    }
    cv_long = pd.concat(cv_tables.values(), ignore_index=True)
    bin_cols = [c for c in cv_long.columns if c.endswith("_cv_bin")]
    cv_long[bin_cols] = cv_long[bin_cols].astype(str)
    save_parquet(cv_long, out_tables / "uncertainty_surfaces.parquet")

    _section("STEP 8: Observed vs expected")
    obs_exp = obs_exp_by_model(fits, by="platform")
    print_obs_exp(obs_exp)
    save_table_csv(obs_exp, out_tables / "obs_exp.csv")

    figures = []
    if make_figures:
        _section("STEP 9: Figures")
        map_grid, map_tracks = _map_layers(grid, tracks, plot_cfg)
        surface_cols = labels + ["combined", "difference"]
        titles = labels + ["Combined", f"Difference ({labels[0]} - {labels[1]})"]
        for name in fits:
            gdf = attach_surface(map_grid, densities[name], surface_cols)
            figures.append(plot_surface_panels(gdf, surface_cols, titles, out_figures / f"density_{name}",
                                               plot_cfg, tracks=map_tracks, suptitle=f"{dataset}: {name}"))
            bin_cols = [f"{s}_cv_bin" for s in labels + ["combined"]]
            gdf = attach_surface(map_grid, cv_tables[name], bin_cols)
            figures.append(plot_cv_panels(gdf, bin_cols, labels + ["Combined"], out_figures / f"cv_{name}",
                                          plot_cfg, tracks=map_tracks, suptitle=f"{dataset}: {name} CV"))
        figures.append(plot_obs_exp(obs_exp, out_figures / "obs_exp", plot_cfg))
        for path in figures:
            print(f"✓ Saved {path.relative_to(root) if path.is_relative_to(root) else path}")

    summary = {
        "dataset": dataset,
        "platforms": labels,
        "survey": survey,
        "detection": [d.summary() for d in ddfs],
        "models": comparison.to_dict(orient="records"),
        "best_model": str(comparison.loc[0, "model"]),
        "variance_propagation": [vp.summary for vp in varprop.values()],
        "abundance": totals.to_dict(orient="records"),
        "posterior": [p.summary() for p in posteriors.values()],
        "figures": [str(p) for p in figures],
    }
    save_summary_json(summary, summary_path(root, dataset))
    print(f"\n✓ Summary written to {summary_path(root, dataset)}")
    return summary
