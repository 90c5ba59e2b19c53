"""
Platform duplication of segments and observations.

Each platform (observation process) has its own detection function, so
every transect segment is represented once per platform. Rows are keyed
by the composite (segment_label, platform); the suffixed `sample_label`
is kept for display and checked for collisions.
"""

from __future__ import annotations

import numpy as np
import pandas as pd


def platform_lookup(platforms: list[dict]) -> pd.DataFrame:
    """Platform label, suffix and 1-based detection-function index, in order."""
    return pd.DataFrame({
        "platform": [str(p["label"]) for p in platforms],
        "suffix": [str(p["suffix"]) for p in platforms],
        "ddf_index": np.arange(1, len(platforms) + 1),
    })


def duplicate_segments(
    segments: pd.DataFrame,
    platforms: list[dict],
    halve_effort: bool = True,
) -> pd.DataFrame:
    """
    Stack one copy of the segment table per platform.

    The first N rows belong to the first platform (ddf_index 1), the next
    N to the second, and so on. Effort is halved on every row when
    `halve_effort` is set, because the source surveys recorded one side
    of the transect only; this is independent of the duplication.

    Raises
    ------
    ValueError
        If a suffixed sample label collides with another one.
    """
    lookup = platform_lookup(platforms)
    copies = []
    for row in lookup.itertuples(index=False):
        seg = segments.copy()
        seg["platform"] = row.platform
        seg["ddf_index"] = int(row.ddf_index)
        seg["sample_label"] = seg["segment_label"].astype(str) + row.suffix
        copies.append(seg)
    out = pd.concat(copies, ignore_index=True)
    if halve_effort:
        out["effort"] = out["effort"] / 2.0

    dup = out["sample_label"].duplicated(keep=False)
    if dup.any():
        raise ValueError(
            f"suffixed sample labels collide: {out.loc[dup, 'sample_label'].unique()[:5].tolist()}"
        )
    return out


def relabel_observations(observations: pd.DataFrame, platforms: list[dict]) -> pd.DataFrame:
    """
    Tag each observation with its platform's suffix and detection-function index.

    Raises
    ------
    ValueError
        If an observation carries a platform tag that is not configured.
    """
    lookup = platform_lookup(platforms)
    unknown = sorted(set(observations["platform"].astype(str)) - set(lookup["platform"]))
    if unknown:
        raise ValueError(f"observations: unknown platform tags {unknown}; configured {lookup['platform'].tolist()}")
    obs = observations.copy()
    obs["platform"] = obs["platform"].astype(str)
    obs = obs.merge(lookup, on="platform", how="left", validate="many_to_one")
    obs["sample_label"] = obs["segment_label"].astype(str) + obs["suffix"]
    return obs.drop(columns=["suffix"])


def check_reshape_contract(segments: pd.DataFrame, observations: pd.DataFrame, n_platforms: int) -> None:
    """
    Enforce the duplication contract.

    - every original segment has exactly one row per platform
    - every observation's (segment_label, platform) key exists exactly
      once among the duplicated segments
    """
    per_segment = segments.groupby("segment_label")["platform"].agg(["size", "nunique"])
    bad = per_segment[(per_segment["size"] != n_platforms) | (per_segment["nunique"] != n_platforms)]
    if len(bad):
        raise ValueError(f"segments: {len(bad)} original segments do not have exactly {n_platforms} platform rows")

    keys = segments.groupby(["segment_label", "platform"]).size().rename("n_seg").reset_index()
    matched = observations[["segment_label", "platform"]].merge(keys, on=["segment_label", "platform"], how="left")
    if matched["n_seg"].isna().any() or (matched["n_seg"] != 1).any():
        n_bad = int((matched["n_seg"].fillna(0) != 1).sum())
        raise ValueError(f"observations: {n_bad} rows do not match exactly one duplicated segment")

    if not observations["sample_label"].isin(segments["sample_label"]).all():
        raise ValueError("observations: suffixed sample labels missing from the segment table")


def reshape_for_platforms(
    segments: pd.DataFrame,
    observations: pd.DataFrame,
    platforms: list[dict],
    halve_effort: bool = True,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Duplicate segments per platform, relabel observations and check the result.

    Example
    -------
    >>> seg2, obs2 = reshape_for_platforms(seg, obs, ds["platforms"])
    >>> len(seg2) == 2 * len(seg)
    True
    """
    seg2 = duplicate_segments(segments, platforms, halve_effort=halve_effort)
    obs2 = relabel_observations(observations, platforms)
    check_reshape_contract(seg2, obs2, len(platforms))
    print(f"✓ Reshaped for {len(platforms)} platforms: "
          f"{len(segments):,} → {len(seg2):,} segments, {len(obs2):,} observations relabelled")
    return seg2, obs2


def segment_counts(segments: pd.DataFrame, observations: pd.DataFrame, size_column: str = "size") -> pd.DataFrame:
    """
    Add `count` (summed group sizes) and `n_groups` to duplicated segments.

    Observations are joined on the composite key, never by row position;
    segments without sightings get zero.
    """
    agg = (
        observations.groupby(["segment_label", "platform"], as_index=False)
        .agg(count=(size_column, "sum"), n_groups=(size_column, "size"))
    )
    out = segments.merge(agg, on=["segment_label", "platform"], how="left", validate="one_to_one")
    out["count"] = out["count"].fillna(0.0).astype(float)
    out["n_groups"] = out["n_groups"].fillna(0).astype(int)
    return out
