"""
Concurrency Dispatcher - fans one cycle out over a worker pool.

One task per instrument. Tasks catch every error themselves, so one
instrument failing never affects the others. run() returns immediately with
a CycleReport that fills in as tasks finish.
"""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional

from ..utils.event_bus import publish_cycle_complete
from .models import Instrument, MarketSession, StrategyConfig, TaskResult

logger = logging.getLogger(__name__)

RESULT_STATUSES = ("traded", "skipped", "no_action", "failed", "error")


class CycleReport:
    """Results of one dispatched cycle, filled in by the worker threads."""

    def __init__(self, session: MarketSession, symbols: List[str],
                 on_complete: Optional[Callable[['CycleReport'], None]] = None):
        self.session = session
        self.symbols = list(symbols)
        self.results: Dict[str, TaskResult] = {}
        self._on_complete = on_complete
        self._lock = threading.Lock()
        self._done = threading.Event()
        if not self.symbols:
            self._finish()

    @property
    def total(self) -> int:
        return len(self.symbols)

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def add(self, result: TaskResult):
        with self._lock:
            self.results[result.symbol] = result
            finished = len(self.results) >= self.total
        if finished:
            self._finish()

    def _finish(self):
        self._done.set()
        if self._on_complete is not None:
            try:
                self._on_complete(self)
            except Exception as e:
                logger.error(f"Cycle completion hook failed: {e}")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until every task has reported. Returns False on timeout."""
        return self._done.wait(timeout)

    def counts(self) -> Dict[str, int]:
        with self._lock:
            results = list(self.results.values())
        counts = {status: 0 for status in RESULT_STATUSES}
        for result in results:
            counts[result.status] = counts.get(result.status, 0) + 1
        return counts

    def errors(self) -> List[str]:
        with self._lock:
            return [
                f"{r.symbol} ({r.detail})" for r in self.results.values()
                if r.status in ("failed", "error")
            ]


def _publish_report(report: CycleReport):
    counts = report.counts()
    logger.info(
        f"Cycle complete [{report.session.value}]: "
        + ", ".join(f"{status}={count}" for status, count in counts.items())
    )
    publish_cycle_complete(report.session.value, counts, report.errors())


class ConcurrencyDispatcher:
    """
    Runs the strategy engine for every instrument of a cycle on a fixed-size pool.

    Submitted tasks are never cancelled; shutting down waits for (or abandons)
    what is already queued.
    """

    def __init__(self, engine, max_workers: Optional[int] = None,
                 on_cycle_complete: Optional[Callable[[CycleReport], None]] = _publish_report):
        """
        Args:
            engine: StrategyEngine (anything with execute_strategy_for)
            max_workers: Pool size, defaults to the number of CPUs
            on_cycle_complete: Called with the CycleReport once all tasks finished
        """
        self.engine = engine
        self.max_workers = max_workers or os.cpu_count() or 1
        self.on_cycle_complete = on_cycle_complete
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="trade-worker")
        logger.debug(f"Dispatcher pool started with {self.max_workers} worker(s)")

    def run(self, instruments: List[Instrument], config: StrategyConfig, session: MarketSession) -> CycleReport:
        """Submit one task per instrument and return without waiting."""
        report = CycleReport(session, [i.symbol for i in instruments], self.on_cycle_complete)
        logger.info(f"Dispatching {len(instruments)} instrument(s) for {session.value} session")
        for instrument in instruments:
            self._executor.submit(self._run_task, instrument, config, session, report)
        return report

    def _run_task(self, instrument: Instrument, config: StrategyConfig, session: MarketSession,
                  report: CycleReport):
        try:
            outcome = self.engine.execute_strategy_for(instrument, config, session)
            result = TaskResult.from_outcome(outcome)
        except Exception as e:
            logger.exception(f"Error executing strategy for {instrument.symbol}: {e}")
            result = TaskResult(symbol=instrument.symbol, status="error", detail=str(e))
        report.add(result)
        return result

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)
        logger.debug("Dispatcher pool shut down")
