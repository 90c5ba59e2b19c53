"""
Write synthetic survey bundles for the configured datasets.

Each bundle lands in the dataset's `bundle` directory (data/raw/<dataset>)
as parquet tables plus GeoPackage grid and tracks.
"""

import sys
from pathlib import Path

root = Path(__file__).parent.parent
sys.path.append(str(root / "src" / "python"))

from dsm_platforms.config import get_dataset_settings, load_analysis_config, validate_dataset_settings
from dsm_platforms.paths import bundle_dir
from dsm_platforms.simulate import simulate_survey, write_bundle


# larger whale groups are detectable farther out
SIMULATION = {
    "seabirds": {"segment_length": 1.0, "groups_per_segment": 1.5, "seed": 2},
    "whales": {"segment_length": 5.0, "extent": (200.0, 150.0), "cell_size": 10.0,
               "n_transects": 10, "groups_per_segment": 1.5, "sigma_fraction": 0.3, "mean_group_size": 2.5,
               "size_effect": 0.15, "seed": 3},
}


def main() -> None:
    cfg = load_analysis_config(root)
    for dataset, kwargs in SIMULATION.items():
        ds = validate_dataset_settings(get_dataset_settings(cfg, dataset), dataset)
        bundle = simulate_survey(ds["platforms"], crs=ds["crs"], **kwargs)
        paths = write_bundle(bundle, bundle_dir(root, ds["bundle"]))
        print(f"✓ {dataset}: {len(bundle['segments']):,} segments, "
              f"{len(bundle['observations']):,} observations, "
              f"{len(bundle['prediction']):,} cells → {paths['segments'].parent}")


if __name__ == "__main__":
    main()
