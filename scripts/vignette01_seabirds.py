"""
Vignette 01: Seabirds

Seabirds counted from one ship in two ways: birds on the water with
binned distances (half-normal or hazard-rate detection) and birds in
flight in a snapshot strip (certain detection). Fits the three spatial
models, propagates detection uncertainty, and maps water, air, combined
and difference densities with binned CV.

Run `scripts/make_example_bundles.py` first to create the bundle.
"""

import sys
from datetime import datetime
from pathlib import Path

root = Path(__file__).parent.parent
sys.path.append(str(root / "src" / "python"))

from dsm_platforms.config import get_family_settings, get_posterior_settings, load_analysis_config
from dsm_platforms.utils.logging import close_run_log, open_run_log
from dsm_platforms.utils.run_history import append_to_run_history
from dsm_platforms.vignette import run_vignette


DATASET = "seabirds"


def main():
    log = open_run_log(root, DATASET)

    try:
        print("=" * 70)
        print("VIGNETTE 01: SEABIRDS ON THE WATER AND IN FLIGHT")
        print("=" * 70)

        cfg = load_analysis_config(root)
        family = get_family_settings(cfg)
        posterior = get_posterior_settings(cfg)
        print("Configuration:")
        print(f"  family: {family['name']} (var_power {family['var_power']})")
        print(f"  MH: {posterior['n_samples']:,} iterations, burn-in {posterior['burn_in']:,}, seed {posterior['seed']}")

        summary = run_vignette(root, DATASET, cfg)

        append_to_run_history(root, summary, cfg,
                              log_path=str(log.log_path.relative_to(root)),
                              warnings=log.warnings)

        print("=" * 70)
        print("✓ Vignette 01 complete")
        print("=" * 70)
        print(f"Completed: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    finally:
        close_run_log(log)


if __name__ == "__main__":
    main()
