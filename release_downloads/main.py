#!/usr/bin/env python3
"""
Release Downloads Orchestrator
Main entry point for the daily download series

One cycle: fetch release assets -> snapshot them under today's bucket day ->
store today's summary, backfilling any missed days
"""

import argparse
import logging
import sys
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from .backfill import BackfillEngine, SummaryResult
from .bucketing import get_bucket_date, next_update_time
from .config import OUTPUT_FORMAT, TIMEFRAME_DAYS, BackfillConfig, Strategy, WriteMode
from .deltas import total_downloads
from .exceptions import DownloadSeriesError
from .models import snapshots_from_releases
from .release_collector import ReleaseCollector
from .store import SeriesStore

logger = logging.getLogger(__name__)

LOG_FILENAME = "release_downloads.log"
EXPORT_FORMATS = ("json", "csv", "parquet")


def setup_logging(data_dir: Path, verbose: bool = False):
    """Log to stderr and to a file in the data directory"""
    Path(data_dir).mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(Path(data_dir) / LOG_FILENAME),
            logging.StreamHandler()
        ]
    )


def print_banner(config: BackfillConfig):
    """Print startup banner"""
    print("=" * 70)
    print("  RELEASE DOWNLOADS - DAILY SERIES")
    print("=" * 70)
    print(f"\n  Repository: {config.github_repo}")
    print(f"  Strategy: {config.strategy.value} (min gap {config.min_gap_days}d, "
          f"lookback {config.lookback_days}d)")
    print(f"  Cutoff: {config.cutoff_utc} UTC")
    print(f"  Database: {config.db_path}")
    print("\n" + "=" * 70)


def run_cycle(config: BackfillConfig, store: SeriesStore,
              collector: Optional[ReleaseCollector] = None,
              now: Optional[datetime] = None) -> SummaryResult:
    """
    Run one ingestion cycle against an open store
    Snapshots and summary rows are committed together or not at all. An
    empty fetch still produces a summary: today's snapshot is empty and
    the delta against it is 0
    """
    collector = collector or ReleaseCollector(repo=config.github_repo, token=config.github_token)
    bucket_date = get_bucket_date(config.cutoff_utc, now)
    logger.info(f"Bucket date: {bucket_date} (cutoff {config.cutoff_utc} UTC)")

    releases = collector.fetch_releases()
    snapshots = snapshots_from_releases(releases, bucket_date)
    if snapshots:
        logger.info(f"Total cumulative downloads: {total_downloads(snapshots):,}")
    else:
        logger.warning("No release assets fetched; snapshot for this bucket will be empty.")

    engine = BackfillEngine(store, config)
    return engine.ingest(bucket_date, snapshots)


def timeframe_start(timeframe: str, reference: date) -> Optional[date]:
    """First day of a chart timeframe ending at `reference` (None for all)"""
    if timeframe not in TIMEFRAME_DAYS:
        raise ValueError(f"Unknown timeframe: {timeframe}")
    days = TIMEFRAME_DAYS[timeframe]
    if days is None:
        return None
    return reference - timedelta(days=days - 1)


def build_daily_frame(store: SeriesStore, since: Optional[date]) -> pd.DataFrame:
    series = store.get_summary_series(since)
    return series.rename(columns={"downloads_delta": "downloadsDelta"})


def build_events_frame(store: SeriesStore, since: Optional[date]) -> pd.DataFrame:
    columns = ["id", "startDate", "endDate", "strategy", "lookbackDays",
               "trendWindow", "noiseScale", "totalDelta", "createdAt"]
    records = []
    for event in store.get_backfill_events(since):
        d = event.to_dict()
        records.append({
            "id": d["id"],
            "startDate": d["start_date"],
            "endDate": d["end_date"],
            "strategy": d["strategy"],
            "lookbackDays": d["lookback_days"],
            "trendWindow": d["trend_window"],
            "noiseScale": d["noise_scale"],
            "totalDelta": d["total_delta"],
            "createdAt": d["created_at"],
        })
    return pd.DataFrame(records, columns=columns)


def timeframe_change(daily: pd.DataFrame) -> Optional[Dict]:
    """Change in daily downloads from the first to the last day of the frame"""
    if len(daily) < 2:
        return None
    first = int(daily["downloadsDelta"].iloc[0])
    last = int(daily["downloadsDelta"].iloc[-1])
    change = last - first
    percent = (change / first * 100) if first else None
    return {"first": first, "last": last, "change": change, "percent": percent}


def save_data(df: pd.DataFrame, output_dir: Path, filename: str, fmt: str) -> Path:
    """Save DataFrame to output in the requested format"""
    output_dir.mkdir(parents=True, exist_ok=True)
    output_path = output_dir / f"{filename}.{fmt}"
    if fmt == "json":
        df.to_json(output_path, orient="records", indent=2)
    elif fmt == "csv":
        df.to_csv(output_path, index=False)
    elif fmt == "parquet":
        df.to_parquet(output_path, index=False)
    else:
        raise ValueError(f"Unsupported export format: {fmt}")
    logger.info(f"Data saved: {output_path} ({len(df)} rows)")
    return output_path


def export_series(config: BackfillConfig, store: SeriesStore, timeframe: str = "all",
                  fmt: str = OUTPUT_FORMAT, output_dir: Optional[Path] = None,
                  now: Optional[datetime] = None) -> List[Path]:
    """Write the chart feed: daily downloads and the backfill spans behind them"""
    output_dir = Path(output_dir or config.data_dir)
    since = timeframe_start(timeframe, get_bucket_date(config.cutoff_utc, now))

    daily = build_daily_frame(store, since)
    events = build_events_frame(store, since)

    paths = [
        save_data(daily, output_dir, "daily_downloads", fmt),
        save_data(events, output_dir, "backfill_events", fmt),
    ]

    change = timeframe_change(daily)
    if change is not None:
        sign = "+" if change["change"] > 0 else ""
        pct = f" ({sign}{change['percent']:.1f}%)" if change["percent"] is not None else ""
        print(f"\n  Change over timeframe: {sign}{change['change']:,} downloads/day{pct}")
    print(f"  Days: {len(daily)}  Backfilled spans: {len(events)}")
    return paths


def format_countdown(target: datetime, now: datetime) -> str:
    remaining = int((target - now).total_seconds())
    hours, remainder = divmod(max(0, remaining), 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def show_next_update(config: BackfillConfig, now: Optional[datetime] = None) -> datetime:
    """Print when the next scheduled ingestion happens"""
    target = next_update_time(config.cutoff_utc, now)
    reference = now or datetime.now(target.tzinfo)
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=target.tzinfo)
    print(f"Next update: {target.isoformat()} (in {format_countdown(target, reference)})")
    return target


def print_summary(result: SummaryResult):
    print("\n" + "=" * 70)
    print("  CYCLE COMPLETE")
    print("=" * 70)
    print(f"\n  Mode: {result.kind.value}")
    if result.dates:
        print(f"  Days: {result.dates[0]} to {result.dates[-1]} ({len(result.dates)})")
    print(f"  Total delta: {result.total_delta:,}")
    if result.strategy is not None:
        chain = " -> ".join(s.value for s in result.attempted)
        print(f"  Strategy: {result.strategy.value} (tried {chain})")
    print(f"  Written: {'yes' if result.written else 'no (already present)'}")
    print("\n" + "=" * 70)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Daily net-new download series for GitHub release assets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  release-downloads                              # Run one ingestion cycle
  release-downloads run --strategy stochastic    # Override the backfill strategy
  release-downloads export --timeframe 1month    # Write the chart feed as JSON
  release-downloads export --format parquet --output exports/
  release-downloads next-update                  # When the next cycle is due
        """
    )

    parser.add_argument('command', nargs='?', default='run',
                        choices=['run', 'export', 'next-update'],
                        help='What to do (default: run)')
    parser.add_argument('--db', type=str, default=None,
                        help='SQLite database path (overrides DB_PATH)')
    parser.add_argument('--strategy', type=str, default=None,
                        choices=['none', 'even', 'pattern', 'stochastic'],
                        help='Backfill strategy (overrides BACKFILL_STRATEGY)')
    parser.add_argument('--replace', action='store_true',
                        help='Replace existing rows for the bucket day instead of skipping')
    parser.add_argument('--timeframe', type=str, default='all',
                        choices=list(TIMEFRAME_DAYS),
                        help='Export window (default: all)')
    parser.add_argument('--format', dest='fmt', type=str, default=OUTPUT_FORMAT,
                        choices=EXPORT_FORMATS,
                        help=f'Export format (default: {OUTPUT_FORMAT})')
    parser.add_argument('--output', type=str, default=None,
                        help='Export directory (default: data directory)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Debug logging')
    return parser


def load_config(args: argparse.Namespace) -> BackfillConfig:
    config = BackfillConfig.from_env()
    if args.db:
        config.db_path = Path(args.db)
    if args.strategy:
        config.strategy = Strategy(args.strategy)
    if args.replace:
        config.bucket_write_mode = WriteMode.REPLACE
        config.summary_write_mode = WriteMode.REPLACE
    return config


def main(argv: Optional[List[str]] = None):
    """Main entry point"""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args)
    except DownloadSeriesError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.command == 'next-update':
        show_next_update(config)
        sys.exit(0)

    setup_logging(config.data_dir, args.verbose)

    store = SeriesStore(config.db_path)
    try:
        store.connect()
        store.setup()

        if args.command == 'export':
            export_series(config, store, args.timeframe, args.fmt,
                          Path(args.output) if args.output else None)
        else:
            print_banner(config)
            result = run_cycle(config, store)
            print_summary(result)
    except DownloadSeriesError as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)
    finally:
        store.close()

    sys.exit(0)


if __name__ == "__main__":
    main()
