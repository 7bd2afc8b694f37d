"""Shared fixtures: a temporary SQLite store and backfill configs."""

from datetime import date, timedelta

import pytest

from release_downloads.config import BackfillConfig, Strategy, WriteMode
from release_downloads.models import AssetSnapshot
from release_downloads.store import SeriesStore


@pytest.fixture
def store(tmp_path):
    """Store backed by a fresh database file"""
    with SeriesStore(tmp_path / "downloads.db") as s:
        yield s


@pytest.fixture
def make_config(tmp_path):
    def _make(**overrides):
        params = dict(
            strategy=Strategy.EVEN,
            min_gap_days=2,
            lookback_days=30,
            data_dir=tmp_path,
        )
        params.update(overrides)
        return BackfillConfig(**params)
    return _make


@pytest.fixture
def config(make_config):
    return make_config()


def snapshot_rows(bucket_date: date, counts: dict):
    """Snapshot rows for {asset_id: download_count}"""
    return [
        AssetSnapshot(
            asset_id=asset_id,
            asset_name=f"asset-{asset_id}.zip",
            tag_name="v1.0.0",
            date=bucket_date,
            download_count=count,
        )
        for asset_id, count in counts.items()
    ]


@pytest.fixture
def add_snapshot(store):
    def _add(bucket_date: date, counts: dict, mode: WriteMode = WriteMode.REPLACE):
        return store.upsert_snapshot_batch(bucket_date, snapshot_rows(bucket_date, counts), mode)
    return _add


@pytest.fixture
def add_summaries(store):
    def _add(start: date, values):
        for i, value in enumerate(values):
            store.upsert_summary(start + timedelta(days=i), value, WriteMode.REPLACE)
    return _add
