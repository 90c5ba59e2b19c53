import numpy as np
import pandas as pd
import pytest

from dsm_platforms.reshape.platforms import (
    check_reshape_contract,
    duplicate_segments,
    platform_lookup,
    relabel_observations,
    reshape_for_platforms,
    segment_counts,
)


PLATFORMS = [
    {"label": "water", "suffix": "-w", "detection": {}},
    {"label": "air", "suffix": "-a", "detection": {}},
]


def two_segments(platform="air"):
    segments = pd.DataFrame({
        "segment_label": ["s1", "s2"],
        "effort": [2.0, 2.0],
        "x": [0.0, 1.0],
        "y": [0.0, 0.0],
    })
    observations = pd.DataFrame({
        "object": [1],
        "segment_label": ["s1"],
        "size": [3],
        "platform": [platform],
    })
    return segments, observations


def test_platform_lookup_is_one_based():
    lookup = platform_lookup(PLATFORMS)
    assert lookup["ddf_index"].tolist() == [1, 2]
    assert lookup["suffix"].tolist() == ["-w", "-a"]


def test_two_segments_one_sighting():
    segments, observations = two_segments()
    seg2, obs2 = reshape_for_platforms(segments, observations, PLATFORMS)

    assert seg2["sample_label"].tolist() == ["s1-w", "s2-w", "s1-a", "s2-a"]
    assert seg2["ddf_index"].tolist() == [1, 1, 2, 2]
    assert seg2["platform"].tolist() == ["water", "water", "air", "air"]
    assert np.allclose(seg2["effort"], 1.0)

    assert obs2.loc[0, "sample_label"] == "s1-a"
    assert obs2.loc[0, "ddf_index"] == 2

    counts = segment_counts(seg2, obs2)
    by_key = counts.set_index(["segment_label", "platform"])["count"]
    assert by_key[("s1", "air")] == 3.0
    assert by_key[("s1", "water")] == 0.0
    assert by_key[("s2", "air")] == 0.0
    assert counts["n_groups"].sum() == 1


def test_sighting_from_first_platform():
    segments, observations = two_segments("water")
    seg2, obs2 = reshape_for_platforms(segments, observations, PLATFORMS)

    assert obs2.loc[0, "sample_label"] == "s1-w"
    assert obs2.loc[0, "ddf_index"] == 1
    matched = seg2.loc[seg2["sample_label"] == obs2.loc[0, "sample_label"]]
    assert len(matched) == 1
    assert matched["platform"].tolist() == ["water"]
    assert matched["ddf_index"].tolist() == [1]

    counts = segment_counts(seg2, obs2).set_index(["segment_label", "platform"])["count"]
    assert counts[("s1", "water")] == 3.0
    assert counts[("s1", "air")] == 0.0
    assert counts[("s2", "water")] == 0.0


def test_effort_kept_without_halving():
    segments, _ = two_segments()
    seg2 = duplicate_segments(segments, PLATFORMS, halve_effort=False)
    assert np.allclose(seg2["effort"], 2.0)


def test_every_segment_appears_once_per_platform(bundle, seabird_settings):
    seg2, obs2 = reshape_for_platforms(bundle["segments"], bundle["observations"],
                                       seabird_settings["platforms"])
    assert len(seg2) == 2 * len(bundle["segments"])
    per_segment = seg2.groupby("segment_label")["platform"].nunique()
    assert (per_segment == 2).all()
    assert seg2["sample_label"].is_unique
    assert obs2["sample_label"].isin(seg2["sample_label"]).all()


def test_counts_conserve_individuals(counts, bundle):
    assert counts["count"].sum() == pytest.approx(bundle["observations"]["size"].sum())
    assert counts["n_groups"].sum() == len(bundle["observations"])


def test_counts_do_not_depend_on_row_order(bundle, seabird_settings):
    seg2, obs2 = reshape_for_platforms(bundle["segments"], bundle["observations"],
                                       seabird_settings["platforms"])
    shuffled = obs2.sample(frac=1.0, random_state=3).reset_index(drop=True)
    a = segment_counts(seg2, obs2).set_index("sample_label")["count"]
    b = segment_counts(seg2, shuffled).set_index("sample_label")["count"]
    pd.testing.assert_series_equal(a, b.loc[a.index])


def test_unknown_platform_tag_raises():
    _, observations = two_segments()
    observations.loc[0, "platform"] = "deck"
    with pytest.raises(ValueError, match="unknown platform tags"):
        relabel_observations(observations, PLATFORMS)


def test_suffixed_labels_must_not_collide():
    segments = pd.DataFrame({"segment_label": ["x", "x-"], "effort": [1.0, 1.0]})
    platforms = [
        {"label": "one", "suffix": "-a", "detection": {}},
        {"label": "two", "suffix": "a", "detection": {}},
    ]
    with pytest.raises(ValueError, match="collide"):
        duplicate_segments(segments, platforms)


def test_contract_rejects_dangling_observation():
    segments, observations = two_segments()
    seg2 = duplicate_segments(segments, PLATFORMS)
    obs2 = relabel_observations(observations, PLATFORMS)
    with pytest.raises(ValueError):
        check_reshape_contract(seg2.loc[seg2["sample_label"] != "s1-a"], obs2, 2)
