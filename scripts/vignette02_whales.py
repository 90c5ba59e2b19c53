"""
Vignette 02: Whales

Whales recorded from two observer platforms (upper and lower decks),
each with its own detection function; the upper-deck model takes group
size as a scale covariate. Fits the three spatial models, propagates
detection uncertainty, and maps upper, lower, combined and difference
densities with binned CV.

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


DATASET = "whales"


def main():
    log = open_run_log(root, DATASET)

    try:
        print("=" * 70)
        print("VIGNETTE 02: WHALES FROM TWO OBSERVER PLATFORMS")
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
        print("✓ Vignette 02 complete")
        print("=" * 70)
        print(f"Completed: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    finally:
        close_run_log(log)


if __name__ == "__main__":
    main()
