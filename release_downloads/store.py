"""
Series Store
SQLite persistence for asset snapshots, the daily summary and the backfill
audit log. Multi-row writes go through a single transaction each.
"""

import logging
import sqlite3
from datetime import date
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import pandas as pd

from .bucketing import parse_date
from .config import WriteMode
from .deltas import aggregate_delta_between
from .exceptions import StoreError
from .models import AssetSnapshot, BackfillEvent

logger = logging.getLogger(__name__)

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS asset_daily_stats (
        asset_id INTEGER NOT NULL,
        asset_name TEXT NOT NULL,
        tag_name TEXT NOT NULL,
        date TEXT NOT NULL,
        download_count INTEGER NOT NULL,
        draft INTEGER NOT NULL,
        prerelease INTEGER NOT NULL,
        fetch_timestamp TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
        PRIMARY KEY (asset_id, date)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS daily_summary (
        date TEXT PRIMARY KEY,
        downloads_delta INTEGER NOT NULL,
        fetch_timestamp TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS backfill_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        start_date TEXT NOT NULL,
        end_date TEXT NOT NULL,
        strategy TEXT NOT NULL,
        lookback_days INTEGER,
        trend_window INTEGER,
        noise_scale REAL,
        total_delta INTEGER NOT NULL,
        created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_asset_daily_stats_date ON asset_daily_stats(date)",
]

_UPSERT_SNAPSHOT = """
    INSERT OR REPLACE INTO asset_daily_stats
    (asset_id, asset_name, tag_name, date, download_count, draft, prerelease)
    VALUES (?, ?, ?, ?, ?, ?, ?)
"""
_UPSERT_SUMMARY = "INSERT OR REPLACE INTO daily_summary (date, downloads_delta) VALUES (?, ?)"
_INSERT_EVENT = """
    INSERT INTO backfill_events
    (start_date, end_date, strategy, lookback_days, trend_window, noise_scale, total_delta)
    VALUES (?, ?, ?, ?, ?, ?, ?)
"""


def _iso(value) -> str:
    return value.isoformat() if isinstance(value, date) else str(value)


class SeriesStore:
    """
    Owns the SQLite database

    Write modes are checked up front, per (table, bucket date): with `once`
    a batch is skipped entirely when the bucket already has rows.
    """

    def __init__(self, db_path):
        self.db_path = Path(db_path)
        self._connection: Optional[sqlite3.Connection] = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._connection is None:
            self.connect()
        return self._connection

    def connect(self) -> None:
        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = sqlite3.connect(str(self.db_path))
        self._connection.row_factory = sqlite3.Row
        logger.debug(f"Database connected: {self.db_path}")

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None
            logger.info("Database connection closed.")

    def __enter__(self) -> "SeriesStore":
        self.connect()
        self.setup()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def setup(self) -> None:
        """Create tables if they don't exist"""
        def _create(conn):
            for statement in SCHEMA:
                conn.execute(statement)

        self._run_transaction(_create)
        logger.info("Database tables ensured.")

    # ------------------------------------------------------------------
    # Write-mode guards
    # ------------------------------------------------------------------

    def has_snapshots_for(self, bucket_date: date) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM asset_daily_stats WHERE date = ? LIMIT 1", (_iso(bucket_date),)
        ).fetchone()
        return row is not None

    def has_summary_for(self, bucket_date: date) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM daily_summary WHERE date = ? LIMIT 1", (_iso(bucket_date),)
        ).fetchone()
        return row is not None

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def upsert_snapshot_batch(self, bucket_date: date, rows: Sequence[AssetSnapshot],
                              mode: WriteMode = WriteMode.ONCE) -> int:
        """Write one bucket's snapshot rows; returns the number of rows written"""
        params = self._snapshot_params(bucket_date, rows, mode)
        if params is None:
            return 0
        self._run_transaction(lambda conn: conn.executemany(_UPSERT_SNAPSHOT, params))
        logger.info(f"Stored {len(params)} asset snapshot rows for {bucket_date}.")
        return len(params)

    def _snapshot_params(self, bucket_date: date, rows: Sequence[AssetSnapshot],
                         mode: WriteMode) -> Optional[List[tuple]]:
        if mode is WriteMode.ONCE and self.has_snapshots_for(bucket_date):
            logger.info(f"Bucket {bucket_date} already has asset stats (mode=once); skipping asset writes.")
            return None
        return [
            (
                row.asset_id,
                row.asset_name,
                row.tag_name,
                _iso(bucket_date),
                int(row.download_count),
                int(bool(row.draft)),
                int(bool(row.prerelease)),
            )
            for row in rows
        ]

    def get_snapshot_counts(self, snapshot_date: date) -> pd.DataFrame:
        return self._frame(
            "SELECT asset_id, download_count FROM asset_daily_stats WHERE date = ?",
            (_iso(snapshot_date),),
            ["asset_id", "download_count"],
        )

    def get_latest_snapshot_date_before(self, bucket_date: date) -> Optional[date]:
        row = self.conn.execute(
            "SELECT MAX(date) AS last_date FROM asset_daily_stats WHERE date < ?",
            (_iso(bucket_date),),
        ).fetchone()
        if row is None or row["last_date"] is None:
            return None
        return parse_date(row["last_date"])

    def sum_delta_between(self, older_date: Optional[date], newer_date: date, newer_counts=None) -> int:
        return aggregate_delta_between(self.get_snapshot_counts, older_date, newer_date, newer_counts)

    # ------------------------------------------------------------------
    # Daily summary
    # ------------------------------------------------------------------

    def get_recent_summaries(self, before: date, limit: int) -> List[int]:
        """Up to `limit` summary values dated strictly before `before`, oldest first"""
        if limit <= 0:
            return []
        rows = self.conn.execute(
            "SELECT downloads_delta FROM daily_summary WHERE date < ? ORDER BY date DESC LIMIT ?",
            (_iso(before), int(limit)),
        ).fetchall()
        return [int(row["downloads_delta"] or 0) for row in reversed(rows)]

    def upsert_summary(self, summary_date: date, value: int, mode: WriteMode = WriteMode.ONCE) -> bool:
        """Write a single summary row; returns False when skipped by mode=once"""
        if mode is WriteMode.ONCE and self.has_summary_for(summary_date):
            logger.info(f"Summary for {summary_date} already exists (mode=once); skipping.")
            return False
        self._run_transaction(lambda conn: conn.execute(_UPSERT_SUMMARY, (_iso(summary_date), int(value))))
        return True

    def append_backfill_event(self, event: BackfillEvent) -> int:
        cursor = self._run_transaction(lambda conn: self._insert_event(conn, event))
        event.id = cursor.lastrowid
        return event.id

    def write_backfill(self, dates: Sequence[date], values: Sequence[int], event: BackfillEvent,
                       mode: WriteMode = WriteMode.ONCE) -> bool:
        """Write a backfilled span and its audit record as one transaction"""
        if not dates:
            if values:
                raise ValueError(f"Span has 0 dates but {len(values)} values")
            return False
        _, written = self.write_cycle(dates[-1], [], dates, values, event, summary_mode=mode)
        return written

    def write_cycle(self, bucket_date: date, snapshots: Sequence[AssetSnapshot],
                    dates: Sequence[date], values: Sequence[int],
                    event: Optional[BackfillEvent] = None,
                    bucket_mode: WriteMode = WriteMode.ONCE,
                    summary_mode: WriteMode = WriteMode.ONCE) -> Tuple[int, bool]:
        """
        Write one cycle's snapshot rows, summary rows and audit record together

        Either everything lands or nothing does. Write modes are checked per
        part: snapshots against `bucket_date`, the summary span against its
        last day (the bucket day being ingested). With mode=once a part whose
        key already has rows is left alone. A replaced span is rewritten in
        full, so it always sums to the event's total.

        Returns (snapshot rows written, whether the summary was written).
        """
        if len(dates) != len(values):
            raise ValueError(f"Span has {len(dates)} dates but {len(values)} values")

        snapshot_params = []
        if snapshots:
            snapshot_params = self._snapshot_params(bucket_date, snapshots, bucket_mode) or []
        write_summary = bool(dates)
        if write_summary and summary_mode is WriteMode.ONCE and self.has_summary_for(dates[-1]):
            logger.info(f"Summary for {dates[-1]} already exists (mode=once); skipping summary write.")
            write_summary = False
        summary_rows = [(_iso(d), int(v)) for d, v in zip(dates, values)] if write_summary else []

        def _write(conn):
            conn.executemany(_UPSERT_SNAPSHOT, snapshot_params)
            conn.executemany(_UPSERT_SUMMARY, summary_rows)
            if summary_rows and event is not None:
                return self._insert_event(conn, event)
            return None

        cursor = self._run_transaction(_write)
        if cursor is not None:
            event.id = cursor.lastrowid
        if snapshot_params:
            logger.info(f"Stored {len(snapshot_params)} asset snapshot rows for {bucket_date}.")
        return len(snapshot_params), write_summary

    @staticmethod
    def _insert_event(conn: sqlite3.Connection, event: BackfillEvent) -> sqlite3.Cursor:
        return conn.execute(_INSERT_EVENT, (
            _iso(event.start_date),
            _iso(event.end_date),
            event.strategy,
            event.lookback_days,
            event.trend_window,
            event.noise_scale,
            int(event.total_delta),
        ))

    def _frame(self, sql: str, params: tuple, columns: List[str]) -> pd.DataFrame:
        rows = self.conn.execute(sql, params).fetchall()
        return pd.DataFrame([tuple(row) for row in rows], columns=columns)

    def _run_transaction(self, work):
        try:
            with self.conn:
                return work(self.conn)
        except sqlite3.Error as e:
            raise StoreError(f"Write to {self.db_path} failed and was rolled back: {e}") from e

    # ------------------------------------------------------------------
    # Presentation feed
    # ------------------------------------------------------------------

    def get_summary_series(self, since: Optional[date] = None) -> pd.DataFrame:
        """Date-ordered (date, downloads_delta) frame, optionally from `since`"""
        sql = "SELECT date, downloads_delta FROM daily_summary"
        params: tuple = ()
        if since is not None:
            sql += " WHERE date >= ?"
            params = (_iso(since),)
        return self._frame(sql + " ORDER BY date ASC", params, ["date", "downloads_delta"])

    def get_backfill_events(self, since: Optional[date] = None) -> List[BackfillEvent]:
        """Backfill audit records overlapping [since, ...), oldest first"""
        sql = "SELECT * FROM backfill_events"
        params: tuple = ()
        if since is not None:
            sql += " WHERE end_date >= ?"
            params = (_iso(since),)
        rows = self.conn.execute(sql + " ORDER BY start_date ASC, id ASC", params).fetchall()
        return [
            BackfillEvent(
                id=row["id"],
                start_date=parse_date(row["start_date"]),
                end_date=parse_date(row["end_date"]),
                strategy=row["strategy"],
                lookback_days=row["lookback_days"],
                trend_window=row["trend_window"],
                noise_scale=row["noise_scale"],
                total_delta=row["total_delta"],
                created_at=row["created_at"],
            )
            for row in rows
        ]
