"""
Observed versus expected counts.

Compares the summed response with the summed fitted values of a spatial
model within the levels of a factor (e.g. platform), or within bins of
a numeric covariate.
"""

from __future__ import annotations

import pandas as pd

from dsm_platforms.models.dsm import DSMFit


def observed_expected(fit: DSMFit, by: str = "platform", breaks=None) -> pd.DataFrame:
    """
    Two-row table (Observed, Expected) with one column per level of `by`.

    When `breaks` is given, `by` is cut into those right-closed intervals
    first.
    """
    data = fit.data
    if by not in data.columns:
        raise ValueError(f"{fit.name}: model data has no column '{by}'")
    groups = data[by]
    if breaks is not None:
        groups = pd.cut(groups, bins=breaks, right=True, include_lowest=True)
    frame = pd.DataFrame({
        "group": groups.to_numpy(),
        "Observed": fit.endog,
        "Expected": fit.fitted,
    })
    table = frame.groupby("group", observed=True)[["Observed", "Expected"]].sum().T
    table.columns = [str(c) for c in table.columns]
    table.columns.name = by
    return table


def obs_exp_by_model(fits: dict[str, DSMFit], by: str = "platform") -> pd.DataFrame:
    """Stack observed/expected tables for several models, with a model column."""
    frames = []
    for name, fit in fits.items():
        t = observed_expected(fit, by=by).reset_index().rename(columns={"index": "quantity"})
        t.insert(0, "model", name)
        frames.append(t)
    out = pd.concat(frames, ignore_index=True)
    out.columns.name = None
    return out


def print_obs_exp(table: pd.DataFrame) -> None:
    print(table.to_string(index=False, float_format=lambda v: f"{v:,.2f}"))
