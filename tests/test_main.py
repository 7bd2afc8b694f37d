import json
import sqlite3
from datetime import date, datetime, timezone
from unittest import mock

import pandas as pd
import pytest

from release_downloads import main as cli
from release_downloads.config import Strategy
from release_downloads.exceptions import NegativeDeltaError, StoreError
from release_downloads.gaps import GapKind
from release_downloads.models import AssetSnapshot
from release_downloads.release_collector import Release, ReleaseAsset
from release_downloads.store import SeriesStore

LAST = date(2025, 3, 10)
TODAY = date(2025, 3, 15)
NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)


def fake_collector(counts):
    collector = mock.Mock()
    collector.fetch_releases.return_value = [
        Release(tag_name="v1.0.0", assets=[
            ReleaseAsset(asset_id=asset_id, name=f"asset-{asset_id}.zip", download_count=count)
            for asset_id, count in counts.items()
        ])
    ]
    return collector


class TestRunCycle:

    def test_first_cycle(self, store, config):
        result = cli.run_cycle(config, store, collector=fake_collector({1: 500}), now=NOW)

        assert result.kind is GapKind.FIRST_RUN
        assert list(store.get_snapshot_counts(TODAY)["download_count"]) == [500]

    def test_cycle_after_gap_backfills(self, store, config, add_snapshot):
        add_snapshot(LAST, {1: 100})
        result = cli.run_cycle(config, store, collector=fake_collector({1: 117}), now=NOW)

        assert result.kind is GapKind.BACKFILL
        assert result.values == [4, 4, 3, 3, 3]
        assert result.written is True

    def test_empty_fetch_still_summarizes(self, store, config):
        collector = mock.Mock()
        collector.fetch_releases.return_value = []
        result = cli.run_cycle(config, store, collector=collector, now=NOW)

        assert result.kind is GapKind.FIRST_RUN
        assert store.get_snapshot_counts(TODAY).empty

    def test_before_cutoff_uses_previous_bucket(self, store, config):
        early = datetime(2025, 3, 15, 9, 0, tzinfo=timezone.utc)
        cli.run_cycle(config, store, collector=fake_collector({1: 5}), now=early)
        assert store.get_latest_snapshot_date_before(TODAY) == date(2025, 3, 14)

    def test_rejected_backfill_keeps_no_snapshot(self, store, make_config, add_snapshot):
        add_snapshot(LAST, {1: 100})
        config = make_config(strategy=Strategy.STOCHASTIC)

        with pytest.raises(NegativeDeltaError):
            cli.run_cycle(config, store, collector=fake_collector({1: 95}), now=NOW)

        assert store.get_snapshot_counts(TODAY).empty
        assert store.get_latest_snapshot_date_before(date(2025, 3, 16)) == LAST
        assert store.get_summary_series().empty

    def test_failed_summary_write_keeps_no_snapshot(self, store, config, add_snapshot):
        add_snapshot(LAST, {1: 100})

        with mock.patch.object(SeriesStore, "_insert_event", side_effect=sqlite3.OperationalError("disk full")):
            with pytest.raises(StoreError):
                cli.run_cycle(config, store, collector=fake_collector({1: 117}), now=NOW)

        assert store.get_snapshot_counts(TODAY).empty
        assert store.get_summary_series().empty

    def test_once_mode_reuses_stored_bucket(self, store, config, add_snapshot):
        add_snapshot(date(2025, 3, 14), {1: 100})
        add_snapshot(TODAY, {1: 110})
        result = cli.run_cycle(config, store, collector=fake_collector({1: 150}), now=NOW)

        assert result.values == [10]
        assert list(store.get_snapshot_counts(TODAY)["download_count"]) == [110]


class TestExport:

    @pytest.fixture
    def seeded_store(self, store, config, add_snapshot):
        add_snapshot(LAST, {1: 100})
        cli.run_cycle(config, store, collector=fake_collector({1: 117}), now=NOW)
        return store

    def test_json_feed(self, seeded_store, config, tmp_path):
        out = tmp_path / "export"
        daily_path, events_path = cli.export_series(config, seeded_store, "all", "json", out, now=NOW)

        daily = json.loads(daily_path.read_text())
        assert daily[0] == {"date": "2025-03-11", "downloadsDelta": 4}
        assert sum(row["downloadsDelta"] for row in daily) == 17

        (event,) = json.loads(events_path.read_text())
        assert event["startDate"] == "2025-03-11"
        assert event["endDate"] == "2025-03-15"
        assert event["strategy"] == "even"
        assert event["totalDelta"] == 17

    def test_timeframe_filter(self, seeded_store, config, tmp_path):
        daily_path, _ = cli.export_series(config, seeded_store, "1week", "csv", tmp_path, now=NOW)
        daily = pd.read_csv(daily_path)
        assert list(daily["date"]) == ["2025-03-11", "2025-03-12", "2025-03-13", "2025-03-14", "2025-03-15"]

        since = cli.timeframe_start("1week", TODAY)
        assert since == date(2025, 3, 9)

    def test_timeframe_all(self):
        assert cli.timeframe_start("all", TODAY) is None

    def test_timeframe_change(self):
        daily = pd.DataFrame({"date": ["a", "b", "c"], "downloadsDelta": [100, 80, 150]})
        change = cli.timeframe_change(daily)
        assert change["change"] == 50
        assert change["percent"] == pytest.approx(50.0)


class TestMain:

    @pytest.fixture(autouse=True)
    def environment(self, monkeypatch, tmp_path):
        for name in ("BACKFILL_STRATEGY", "DB_PATH", "GITHUB_TOKEN", "PAT",
                     "BUCKET_WRITE_MODE", "SUMMARY_WRITE_MODE", "DAILY_CUTOFF_UTC"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("DATA_DIR", str(tmp_path))

    def test_run_command(self, tmp_path):
        with mock.patch.object(cli, "ReleaseCollector", return_value=fake_collector({1: 10})):
            with pytest.raises(SystemExit) as exc:
                cli.main(["run"])
        assert exc.value.code == 0

        with SeriesStore(tmp_path / "downloads.db") as store:
            assert len(store.get_summary_series()) == 1

    def test_fatal_error_exits_non_zero(self, tmp_path):
        db_path = tmp_path / "custom.db"
        with SeriesStore(db_path) as store:
            store.upsert_snapshot_batch(LAST, [AssetSnapshot(1, "a.zip", "v1", LAST, 100)])

        with mock.patch.object(cli, "ReleaseCollector", return_value=fake_collector({1: 95})), \
                mock.patch.object(cli, "get_bucket_date", return_value=TODAY):
            with pytest.raises(SystemExit) as exc:
                cli.main(["run", "--db", str(db_path), "--strategy", "stochastic"])
        assert exc.value.code == 1

        with SeriesStore(db_path) as store:
            assert store.get_summary_series().empty
            assert store.get_snapshot_counts(TODAY).empty

    def test_next_update(self, capsys):
        with pytest.raises(SystemExit) as exc:
            cli.main(["next-update"])
        assert exc.value.code == 0
        assert "Next update:" in capsys.readouterr().out

    def test_strategy_flag(self):
        args = cli.build_parser().parse_args(["run", "--strategy", "pattern", "--replace"])
        config = cli.load_config(args)
        assert config.strategy is Strategy.PATTERN
        assert config.summary_write_mode.value == "replace"
