"""
Run history for vignette runs.

Each successful run appends one markdown entry to
results/logs/RUN_HISTORY.md, built from the vignette summary: the
family and sampler settings, the detection function chosen per
platform, the model ranking, the best model's abundance by platform
and the sampler acceptance rates.
"""

from datetime import datetime
from pathlib import Path
from typing import Any

from dsm_platforms.config import get_family_settings, get_uncertainty_settings


def history_path(root: Path) -> Path:
    return root / "results" / "logs" / "RUN_HISTORY.md"


def _bullets(lines: list[str]) -> str:
    return "\n".join(f"  - {line}" for line in lines) if lines else "  - (none)"


def _settings_lines(summary: dict[str, Any], analysis_cfg: dict[str, Any]) -> list[str]:
    family = get_family_settings(analysis_cfg)
    fam = family["name"]
    if fam == "tweedie":
        fam += f" (var_power {family['var_power']})"
    lines = [f"family: {fam}"]
    for m in analysis_cfg.get("models", []):
        penalty = "AIC-selected" if m.get("select_penalty") else f"alpha {m.get('alpha', 1.0)}"
        lines.append(f"{m.get('name')}: {m.get('kind')}, df {m.get('df')}, penalty {penalty}")
    if summary.get("posterior"):
        p = summary["posterior"][0]
        lines.append(f"MH: {p['n_iter']:,} iterations, burn-in {p['burn_in']:,}, thin {p['thin']}, seed {p['seed']}")
    lines.append(f"combine_method: {get_uncertainty_settings(analysis_cfg)['combine_method']}")
    return lines


def _detection_lines(summary: dict[str, Any]) -> list[str]:
    lines = []
    for d in summary.get("detection", []):
        if d["key"] == "dummy":
            lines.append(f"{d['platform']}: dummy strip, width {d['width']}")
            continue
        covs = f" + {', '.join(d['covariates'])}" if d["covariates"] else ""
        lines.append(f"{d['platform']}: {d['key']}{covs}, n {d['n']}, average p {d['average_p']:.3f}")
    return lines


def _result_lines(summary: dict[str, Any]) -> list[str]:
    best = summary["best_model"]
    lines = [f"{m['model']}: AIC {m['aic']:,.1f} (ΔAIC {m['delta_aic']:.1f}), edf {m['edf']:.1f}"
             for m in summary.get("models", [])]
    for row in summary.get("abundance", []):
        if row["model"] == best:
            parts = [f"{label} {row[label]:,.1f}" for label in summary["platforms"] + ["combined"]]
            lines.append(f"abundance ({best}): {', '.join(parts)}")
    for vp in summary.get("variance_propagation", []):
        if vp.get("model") == best and vp.get("cv") is not None:
            lines.append(f"CV ({best}): {vp['cv']:.3f} with detection, {vp['cv_gam_only']:.3f} GAM only")
    for p in summary.get("posterior", []):
        lines.append(f"{p['model']} acceptance: fixed {p['accept_fixed']:.2f}, random walk {p['accept_rw']:.2f}")
    return lines


def format_run_entry(
    summary: dict[str, Any],
    analysis_cfg: dict[str, Any],
    log_path: str = "",
    warnings: list[str] | None = None,
    notes: str = "",
    timestamp: datetime | None = None,
) -> str:
    """Markdown run-history entry for one vignette summary."""
    when = (timestamp or datetime.now()).strftime("%Y-%m-%d %H:%M")
    warnings = warnings or []
    sections = [
        f"## {when} | {summary['dataset']} ({', '.join(summary['platforms'])})\n",
        f"- **Settings**:\n{_bullets(_settings_lines(summary, analysis_cfg))}",
        f"- **Detection**:\n{_bullets(_detection_lines(summary))}",
        f"- **Results** (best model {summary['best_model']}):\n{_bullets(_result_lines(summary))}",
        f"- **Warnings**: {len(warnings)}" + (f"\n{_bullets(warnings)}" if warnings else ""),
        f"- **Log**: {log_path or '(none)'}",
        f"- **Notes**: {notes}",
    ]
    return "\n".join(sections) + "\n\n---\n\n"


def append_to_run_history(
    root: Path,
    summary: dict[str, Any],
    analysis_cfg: dict[str, Any],
    log_path: str = "",
    warnings: list[str] | None = None,
    notes: str = "",
) -> Path:
    """
    Append the entry for a finished vignette run to RUN_HISTORY.md.

    Example:
        append_to_run_history(root, summary, cfg,
                              log_path="results/logs/seabirds_20251208_111021.txt",
                              warnings=log.warnings)
    """
    path = history_path(root)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(format_run_entry(summary, analysis_cfg, log_path, warnings, notes))
    print(f"  Appended to run history: {path.relative_to(root)}")
    return path
