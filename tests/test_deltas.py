import pandas as pd

from release_downloads.deltas import aggregate_delta, aggregate_delta_between, total_downloads


def test_growth_across_assets():
    assert aggregate_delta({1: 100, 2: 50}, {1: 130, 2: 55}) == 35


def test_first_appearance_counts_in_full():
    assert aggregate_delta({1: 100}, {1: 100, 2: 150}) == 150


def test_removed_assets_contribute_nothing():
    assert aggregate_delta({1: 100, 2: 500}, {1: 110}) == 10


def test_unchanged_data_is_zero():
    counts = {1: 100, 2: 50, 3: 7}
    assert aggregate_delta(counts, counts) == 0
    assert aggregate_delta(counts, counts) == aggregate_delta(counts, counts)


def test_no_older_snapshot():
    assert aggregate_delta(None, {1: 40, 2: 2}) == 42


def test_empty_newer_snapshot():
    assert aggregate_delta({1: 100}, {}) == 0


def test_negative_delta_is_not_clamped():
    assert aggregate_delta({1: 100}, {1: 90}) == -10


def test_accepts_frames_and_rows():
    older = pd.DataFrame({"asset_id": [1, 2], "download_count": [10, 20]})
    newer = [{"asset_id": 1, "download_count": 15}, {"asset_id": 2, "download_count": 21}]
    assert aggregate_delta(older, newer) == 6


def test_between_dates_uses_loader():
    snapshots = {"a": {1: 5}, "b": {1: 9, 2: 1}}
    assert aggregate_delta_between(snapshots.get, "a", "b") == 5
    assert aggregate_delta_between(snapshots.get, None, "b") == 10


def test_between_dates_prefers_given_newer_counts():
    snapshots = {"a": {1: 5}, "b": {1: 9}}
    assert aggregate_delta_between(snapshots.get, "a", "b", newer_counts={1: 12, 2: 3}) == 10
    assert aggregate_delta_between(snapshots.get, "a", "b", newer_counts=[]) == 0


def test_total_downloads():
    assert total_downloads({1: 3, 2: 4}) == 7
