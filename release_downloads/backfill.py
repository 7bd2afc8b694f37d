"""
Daily Summary & Gap Backfill
Turns the latest snapshot into daily summary rows. When snapshots were missed,
the observed total across the gap is spread over the missing days by the
configured strategy, falling back along a fixed chain when a strategy has no
usable shape:

    even        -> [even]
    pattern     -> [pattern, even]
    stochastic  -> [stochastic, pattern, even]   (fallback = pattern)
                   [stochastic, even]            (fallback = even)

`even` never fails, so every chain ends in a result. Negative totals are fatal
for `pattern` and `stochastic` and allowed for `even` and the direct path.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, Dict, List, Optional, Sequence

from .allocation import distribute_even, scale_to_total
from .config import BackfillConfig, Strategy, WriteMode
from .estimators import SeededGaussian, build_pattern_series, build_stochastic_series
from .exceptions import NegativeDeltaError
from .gaps import GapDecision, GapKind, classify_gap
from .models import AssetSnapshot, BackfillEvent
from .store import SeriesStore

logger = logging.getLogger(__name__)


@dataclass
class GapContext:
    """Everything an estimator attempt needs about one gap"""
    dates: List[date]
    total_delta: int
    last_known: date
    today: date
    baseline: List[int] = field(default_factory=list)


@dataclass
class AttemptResult:
    strategy: Strategy
    values: Optional[List[int]] = None
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.values is not None


@dataclass
class SummaryResult:
    """What one summary step produced (and whether it was persisted)"""
    kind: GapKind
    dates: List[date] = field(default_factory=list)
    values: List[int] = field(default_factory=list)
    total_delta: int = 0
    strategy: Optional[Strategy] = None
    attempted: List[Strategy] = field(default_factory=list)
    event: Optional[BackfillEvent] = None
    written: bool = False


def attempt_chain(strategy: Strategy, stochastic_fallback: Strategy = Strategy.EVEN) -> List[Strategy]:
    """Ordered strategies to try for a requested backfill strategy"""
    if strategy is Strategy.PATTERN:
        return [Strategy.PATTERN, Strategy.EVEN]
    if strategy is Strategy.STOCHASTIC:
        if stochastic_fallback is Strategy.PATTERN:
            return [Strategy.STOCHASTIC, Strategy.PATTERN, Strategy.EVEN]
        return [Strategy.STOCHASTIC, Strategy.EVEN]
    return [Strategy.EVEN]


class BackfillEngine:
    """
    Computes and persists daily summaries

    Holds no state between cycles; each call reads what it needs from the
    store and writes its results back in one transaction.
    """

    def __init__(self, store: SeriesStore, config: BackfillConfig):
        self.store = store
        self.config = config
        self._attempts: Dict[Strategy, Callable[[GapContext], AttemptResult]] = {
            Strategy.EVEN: self._attempt_even,
            Strategy.PATTERN: self._attempt_pattern,
            Strategy.STOCHASTIC: self._attempt_stochastic,
        }

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def ingest(self, today: date, snapshots: Sequence[AssetSnapshot]) -> SummaryResult:
        """
        Plan today's summary from freshly fetched snapshots, then write the
        snapshots, the summary rows and any backfill event in one transaction

        Nothing is written when planning fails.
        """
        bucket_mode = self.config.bucket_write_mode
        reuse_stored = bucket_mode is WriteMode.ONCE and self.store.has_snapshots_for(today)
        result = self.plan_daily_summary(today, None if reuse_stored else snapshots)

        stored_rows, result.written = self.store.write_cycle(
            today,
            snapshots,
            result.dates,
            result.values,
            result.event,
            bucket_mode=bucket_mode,
            summary_mode=self.config.summary_write_mode,
        )
        logger.debug(f"Cycle for {today}: {stored_rows} snapshot row(s) written")
        self._log_written(result)
        return result

    def store_daily_summary(self, today: date) -> SummaryResult:
        """Classify the gap ending at `today` and write the matching summary rows"""
        return self.write_summary(self.plan_daily_summary(today))

    def plan_daily_summary(self, today: date, today_counts=None) -> SummaryResult:
        """
        Summary rows for the gap ending at `today`, without writing anything

        `today_counts` replaces the stored snapshot for `today` when given.
        """
        logger.info(f"Planning daily summary for {today}...")
        last_known = self.store.get_latest_snapshot_date_before(today)
        decision = classify_gap(
            last_known,
            today,
            min_gap_days=self.config.min_gap_days,
            backfill_enabled=self.config.backfill_enabled,
        )

        if decision.kind is GapKind.FIRST_RUN:
            return SummaryResult(kind=decision.kind, dates=[decision.today], values=[0])
        if decision.kind is GapKind.DIRECT:
            delta = self.store.sum_delta_between(decision.yesterday, decision.today, today_counts)
            return SummaryResult(
                kind=decision.kind, dates=[decision.today], values=[delta], total_delta=delta
            )
        return self.plan_backfill(decision, today_counts)

    def write_summary(self, result: SummaryResult) -> SummaryResult:
        """Persist a planned summary (span and audit record together for a backfill)"""
        mode = self.config.summary_write_mode
        if result.kind is GapKind.BACKFILL:
            result.written = self.store.write_backfill(result.dates, result.values, result.event, mode)
        else:
            result.written = self.store.upsert_summary(result.dates[0], result.values[0], mode)
        self._log_written(result)
        return result

    def _log_written(self, result: SummaryResult) -> None:
        if not result.written:
            return
        day = result.dates[-1]
        if result.kind is GapKind.FIRST_RUN:
            logger.info(f"First run detected. Initialized {day} with delta=0.")
        elif result.kind is GapKind.DIRECT:
            label = "no backfill" if not self.config.backfill_enabled else "small gap"
            logger.info(f"Daily summary stored ({label}) for {day}: delta={result.values[0]}")
        else:
            logger.info(
                f"Backfilled {len(result.dates)} day(s) with {result.strategy.value} "
                f"from {result.dates[0]} to {day} "
                f"(lookback={self.config.lookback_days}, total delta={result.total_delta})"
            )

    # ------------------------------------------------------------------
    # Backfill
    # ------------------------------------------------------------------

    def plan_backfill(self, decision: GapDecision, today_counts=None) -> SummaryResult:
        """Run the strategy chain for a backfill decision without writing anything"""
        total = self.store.sum_delta_between(decision.last_known, decision.today, today_counts)
        requested = self.config.strategy

        if total < 0 and requested in (Strategy.PATTERN, Strategy.STOCHASTIC):
            raise NegativeDeltaError(
                f"Negative total delta ({total}) for {requested.value} backfill "
                f"from {decision.span[0]} to {decision.span[-1]}"
            )

        context = GapContext(
            dates=list(decision.span),
            total_delta=total,
            last_known=decision.last_known,
            today=decision.today,
        )
        if requested in (Strategy.PATTERN, Strategy.STOCHASTIC):
            context.baseline = self.store.get_recent_summaries(decision.last_known, self.config.lookback_days)

        attempted: List[Strategy] = []
        for strategy in attempt_chain(requested, self.config.stochastic_fallback):
            attempted.append(strategy)
            result = self._attempts[strategy](context)
            if result.ok:
                break
            logger.warning(f"{strategy.value} backfill unavailable ({result.reason}); falling back.")

        event = BackfillEvent(
            start_date=context.dates[0],
            end_date=context.dates[-1],
            strategy=result.strategy.value,
            total_delta=total,
            lookback_days=self.config.lookback_days,
        )
        if result.strategy is Strategy.STOCHASTIC:
            event.trend_window = self.config.trend_window
            event.noise_scale = self.config.noise_scale

        return SummaryResult(
            kind=GapKind.BACKFILL,
            dates=context.dates,
            values=result.values,
            total_delta=total,
            strategy=result.strategy,
            attempted=attempted,
            event=event,
        )

    # ------------------------------------------------------------------
    # Strategy attempts
    # ------------------------------------------------------------------

    def _attempt_even(self, context: GapContext) -> AttemptResult:
        return AttemptResult(Strategy.EVEN, distribute_even(context.total_delta, len(context.dates)))

    def _attempt_pattern(self, context: GapContext) -> AttemptResult:
        pattern = build_pattern_series(context.baseline, len(context.dates))
        if not pattern or all(v <= 0 for v in pattern):
            return AttemptResult(Strategy.PATTERN, reason="no positive history in lookback window")

        scaled = scale_to_total(pattern, context.total_delta)
        if scaled is None:
            return AttemptResult(Strategy.PATTERN, reason="pattern could not be scaled")
        return AttemptResult(Strategy.PATTERN, scaled)

    def _attempt_stochastic(self, context: GapContext) -> AttemptResult:
        sampler = SeededGaussian.for_gap(
            context.last_known.isoformat(),
            context.today.isoformat(),
            explicit_seed=self.config.random_seed,
        )
        shape = build_stochastic_series(
            context.baseline,
            len(context.dates),
            trend_window=self.config.trend_window,
            noise_scale=self.config.noise_scale,
            sampler=sampler,
        )
        logger.debug(
            f"Stochastic shape: slope={shape.slope:.4f}, sigma={shape.sigma:.4f}, "
            f"last_ma={shape.last_moving_average:.4f}"
        )

        scaled = scale_to_total(shape.values, context.total_delta)
        if scaled is None:
            return AttemptResult(Strategy.STOCHASTIC, reason="stochastic shape carries no weight")
        if context.total_delta > 0 and all(v == 0 for v in scaled):
            return AttemptResult(Strategy.STOCHASTIC, reason="stochastic series rounded to zero")

        logger.info(f"Stochastic backfill: slope={shape.slope:.4f}, sigma={shape.sigma:.4f}")
        return AttemptResult(Strategy.STOCHASTIC, scaled)
