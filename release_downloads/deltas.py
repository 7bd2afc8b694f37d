"""
Snapshot Delta Calculator
Aggregate change in downloads across all assets between two snapshot dates
"""

from typing import Iterable, Mapping, Optional

import pandas as pd

SNAPSHOT_COLUMNS = ["asset_id", "download_count"]


def to_snapshot_frame(counts) -> pd.DataFrame:
    """
    Normalize snapshot counts into an (asset_id, download_count) frame

    Accepts a mapping of asset id -> count, an iterable of rows exposing
    `asset_id` / `download_count` (mappings or objects), or a DataFrame.
    """
    if counts is None:
        frame = pd.DataFrame(columns=SNAPSHOT_COLUMNS)
    elif isinstance(counts, pd.DataFrame):
        frame = counts[SNAPSHOT_COLUMNS].copy()
    elif isinstance(counts, Mapping):
        frame = pd.DataFrame(list(counts.items()), columns=SNAPSHOT_COLUMNS)
    else:
        frame = pd.DataFrame([_row_values(row) for row in counts], columns=SNAPSHOT_COLUMNS)

    frame["asset_id"] = frame["asset_id"].astype("int64")
    frame["download_count"] = frame["download_count"].astype("int64")
    return frame


def _row_values(row):
    if isinstance(row, Mapping):
        return row["asset_id"], row["download_count"]
    return row.asset_id, row.download_count


def aggregate_delta(older, newer) -> int:
    """
    Net new downloads observed at `newer` relative to `older`

    Every asset present in `newer` contributes:
    - count(newer) - count(older) when it was also present in `older`
    - its whole count(newer) when it is appearing for the first time
    Assets only present in `older` (removed or renamed) contribute nothing.
    The result is not clamped; a negative total is left to the caller.
    """
    newer_frame = to_snapshot_frame(newer)
    if newer_frame.empty:
        return 0

    older_frame = to_snapshot_frame(older).rename(columns={"download_count": "previous_count"})
    merged = newer_frame.merge(older_frame, on="asset_id", how="left")

    # A missing previous count contributes the full current count
    deltas = merged["download_count"] - merged["previous_count"].fillna(0)
    return int(deltas.sum())


def aggregate_delta_between(load_counts, older_date: Optional[object], newer_date,
                            newer_counts=None) -> int:
    """
    Delta between two dates using `load_counts(date)` to read snapshot rows

    `newer_counts`, when given, stands in for the rows at `newer_date`
    (counts fetched this cycle that are not stored yet).
    """
    older = load_counts(older_date) if older_date is not None else None
    newer = newer_counts if newer_counts is not None else load_counts(newer_date)
    return aggregate_delta(older, newer)


def total_downloads(counts: Iterable) -> int:
    return int(to_snapshot_frame(counts)["download_count"].sum())
