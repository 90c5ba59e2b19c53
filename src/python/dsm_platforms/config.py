from pathlib import Path
from typing import Any

import yaml


KNOWN_MODEL_KINDS = ("no_platform", "platform_factor", "platform_smooth")
KNOWN_FAMILIES = ("poisson", "tweedie", "negbin")
KNOWN_KEYS = ("hn", "hr")
KNOWN_COMBINE_METHODS = ("sd_arithmetic", "posterior")


def read_yaml(path: Path) -> dict[str, Any]:
    with path.open("r") as f:
        return yaml.safe_load(f) or {}


def load_analysis_config(root: Path) -> dict[str, Any]:
    """
    Read and return the analysis YAML configuration.

    Example
    -------
    >>> from pathlib import Path
    >>> cfg = load_analysis_config(Path('.'))
    """
    return read_yaml(root / "config" / "analysis.yml")


def get_dataset_settings(analysis_cfg: dict[str, Any], dataset: str) -> dict[str, Any]:
    """
    Return normalized settings for one survey dataset.

    Keys returned:
    - bundle: str, bundle directory relative to project root
    - crs: str | None
    - platform_column: str (default "platform")
    - halve_effort: bool (default True)
    - sides: int (default 2)
    - platforms: list[dict] with label, suffix, detection
    """
    datasets = analysis_cfg.get("datasets", {})
    if dataset not in datasets:
        raise ValueError(f"analysis.yml:datasets.{dataset}: dataset not configured")
    d = datasets[dataset] or {}
    platforms = []
    for p in d.get("platforms", []):
        label = str(p.get("label"))
        platforms.append({
            "label": label,
            "suffix": p.get("suffix", f"-{label}"),
            "detection": dict(p.get("detection", {})),
        })
    return {
        "bundle": d.get("bundle", f"data/raw/{dataset}"),
        "crs": d.get("crs"),
        "platform_column": d.get("platform_column", "platform"),
        "halve_effort": bool(d.get("halve_effort", True)),
        "sides": int(d.get("sides", 2)),
        "platforms": platforms,
    }


def validate_dataset_settings(settings: dict[str, Any], dataset: str) -> dict[str, Any]:
    """
    Validate dataset settings and return the same dict.

    Rules:
    - At least one platform, with unique labels and unique suffixes.
    - Each detection block is either a dummy with a positive width, or lists
      known candidate keys and a truncation width greater than the left point.
    - sides is 1 or 2.
    Raises ValueError with messages including the config path.
    """
    platforms = settings.get("platforms", [])
    if not platforms:
        raise ValueError(f"analysis.yml:datasets.{dataset}.platforms: at least one platform is required")
    labels = [p["label"] for p in platforms]
    if len(set(labels)) != len(labels):
        raise ValueError(f"analysis.yml:datasets.{dataset}.platforms: labels must be unique, got {labels}")
    suffixes = [p["suffix"] for p in platforms]
    if len(set(suffixes)) != len(suffixes) or any(not s for s in suffixes):
        raise ValueError(f"analysis.yml:datasets.{dataset}.platforms: suffixes must be non-empty and unique, got {suffixes}")
    if settings.get("sides") not in (1, 2):
        raise ValueError(f"analysis.yml:datasets.{dataset}.sides: must be 1 or 2")
    for p in platforms:
        det = p["detection"]
        where = f"analysis.yml:datasets.{dataset}.platforms[{p['label']}].detection"
        if det.get("dummy"):
            if not det.get("width") or float(det["width"]) <= 0:
                raise ValueError(f"{where}.width: dummy detection needs a positive strip width")
            continue
        keys = det.get("candidates", [])
        if not keys or any(k not in KNOWN_KEYS for k in keys):
            raise ValueError(f"{where}.candidates: must list keys from {KNOWN_KEYS}, got {keys}")
        trunc = det.get("truncation", {})
        width = trunc.get("width")
        left = trunc.get("left", 0.0) or 0.0
        if width is None or float(width) <= float(left):
            raise ValueError(f"{where}.truncation: width must be given and exceed left ({left})")
        bins = det.get("bins")
        if bins is not None and (len(bins) < 2 or any(b2 <= b1 for b1, b2 in zip(bins, bins[1:]))):
            raise ValueError(f"{where}.bins: must be an increasing list of at least two cutpoints")
    return settings


def get_model_specs(analysis_cfg: dict[str, Any]) -> list[dict[str, Any]]:
    """
    Return the list of spatial model specifications, in fitting order.
    """
    specs = []
    for m in analysis_cfg.get("models", []):
        smooth_vars = list(m.get("smooth_vars", ["x", "y"]))
        df = m.get("df", 8)
        if not isinstance(df, list):
            df = [df] * len(smooth_vars)
        specs.append({
            "name": m.get("name", m.get("kind")),
            "kind": m.get("kind"),
            "smooth_vars": smooth_vars,
            "df": [int(v) for v in df],
            "alpha": m.get("alpha", 1.0),
            "select_penalty": bool(m.get("select_penalty", False)),
        })
    return specs


def validate_model_specs(specs: list[dict[str, Any]]) -> list[dict[str, Any]]:
    if not specs:
        raise ValueError("analysis.yml:models: at least one model must be configured")
    names = [s["name"] for s in specs]
    if len(set(names)) != len(names):
        raise ValueError(f"analysis.yml:models: names must be unique, got {names}")
    for s in specs:
        if s["kind"] not in KNOWN_MODEL_KINDS:
            raise ValueError(f"analysis.yml:models[{s['name']}].kind: must be one of {KNOWN_MODEL_KINDS}")
        if len(s["df"]) != len(s["smooth_vars"]):
            raise ValueError(f"analysis.yml:models[{s['name']}].df: one basis size per smooth variable")
        if any(k < 4 for k in s["df"]):
            raise ValueError(f"analysis.yml:models[{s['name']}].df: cubic B-spline bases need df >= 4")
    return specs


def get_family_settings(analysis_cfg: dict[str, Any]) -> dict[str, Any]:
    f = analysis_cfg.get("family", {})
    name = f.get("name", "tweedie")
    if name not in KNOWN_FAMILIES:
        raise ValueError(f"analysis.yml:family.name: must be one of {KNOWN_FAMILIES}")
    return {
        "name": name,
        "var_power": float(f.get("var_power", 1.2)),
        "nb_alpha": float(f.get("nb_alpha", 1.0)),
    }


def get_posterior_settings(analysis_cfg: dict[str, Any]) -> dict[str, Any]:
    """
    Return Metropolis-Hastings sampler settings.

    The seed stays None unless configured, so repeated runs give
    statistically similar but not identical draws.
    """
    p = analysis_cfg.get("posterior", {})
    return {
        "n_samples": int(p.get("n_samples", 10000)),
        "burn_in": int(p.get("burn_in", 1000)),
        "rw_scale": float(p.get("rw_scale", 0.25)),
        "t_df": float(p.get("t_df", 40)),
        "thin": int(p.get("thin", 1)),
        "seed": p.get("seed"),
    }


def get_uncertainty_settings(analysis_cfg: dict[str, Any]) -> dict[str, Any]:
    u = analysis_cfg.get("uncertainty", {})
    method = u.get("combine_method", "sd_arithmetic")
    if method not in KNOWN_COMBINE_METHODS:
        raise ValueError(f"analysis.yml:uncertainty.combine_method: must be one of {KNOWN_COMBINE_METHODS}")
    return {
        "cv_breaks": [float(b) for b in u.get("cv_breaks", [0, 0.05, 0.1, 0.2, 0.3, 0.5, 1.0, float("inf")])],
        "combine_method": method,
    }


def get_units(analysis_cfg: dict[str, Any]) -> dict[str, Any]:
    """
    Return unit conversion settings (geometry area units to model area units).
    """
    return {"area_scale": float(analysis_cfg.get("units", {}).get("area_scale", 1e-6))}


def get_plot_settings(analysis_cfg: dict[str, Any]) -> dict[str, Any]:
    p = analysis_cfg.get("plotting", {})
    return {
        "format": p.get("format", "pdf"),
        "dpi": int(p.get("dpi", 300)),
        "fig_width": float(p.get("fig_width", 10)),
        "fig_height": float(p.get("fig_height", 8)),
        "cmap": p.get("cmap", "viridis"),
        "diverging_cmap": p.get("diverging_cmap", "RdBu_r"),
        "crs": p.get("crs"),
        "bbox": p.get("bbox"),
    }


def get_source_settings(analysis_cfg: dict[str, Any], source: str) -> dict[str, Any]:
    """
    Return normalized loader settings for a given bundle table.

    Keys returned:
    - required_columns: list[str]
    - file: str | None, file name override inside the bundle directory
    """
    s = analysis_cfg.get("sources", {}).get(source, {})
    return {
        "required_columns": list(s.get("required_columns", [])),
        "file": s.get("file"),
    }
