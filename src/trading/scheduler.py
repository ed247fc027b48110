"""
Schedule Manager - owns the repeating trading timer.

The cadence comes from the StrategyConfig of the current (environment,
market session). The timer is rebuilt when the session changes or when the
frequency is updated. Session and timer are only touched under one lock, so
an update from another thread cannot lose a cancel or leave two timers
running.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from ..utils.event_bus import publish_schedule_change
from .errors import InvalidFrequency
from .models import ClockSnapshot, Environment, MarketSession

logger = logging.getLogger(__name__)

DEFAULT_FREQUENCY_MS = 60000

STOPPED = "STOPPED"
SCHEDULED = "SCHEDULED"


class RepeatingTimer:
    """
    Runs `function` on its own thread with a fixed delay between runs.

    The delay is measured from the end of one run to the start of the next.
    cancel() does not wait for a run in progress; the thread exits after it.
    """

    def __init__(self, interval_ms: int, function: Callable[[], None], initial_delay_ms: int = 0,
                 name: str = "trade-scheduler"):
        self.interval_ms = interval_ms
        self.initial_delay_ms = initial_delay_ms
        self.function = function
        self._cancelled = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self):
        self._thread.start()

    def cancel(self):
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def join(self, timeout: Optional[float] = None):
        self._thread.join(timeout)

    def _run(self):
        if self._cancelled.wait(self.initial_delay_ms / 1000):
            return
        while not self._cancelled.is_set():
            try:
                self.function()
            except Exception as e:
                logger.exception(f"Scheduled run failed: {e}")
            if self._cancelled.wait(self.interval_ms / 1000):
                break


@dataclass(frozen=True)
class ScheduleState:
    status: str
    frequency_ms: Optional[int] = None
    session: Optional[MarketSession] = None


class ScheduleManager:
    """
    Drives trading cycles at the frequency configured for the current session.

    Each tick checks that the market (regular or extended hours) is open,
    fetches the clock once, reschedules if the session changed, and otherwise
    hands the active instruments to the dispatcher without waiting for them.
    """

    def __init__(
        self,
        broker,
        config_store,
        instrument_registry,
        dispatcher,
        session_tracker,
        environment: Environment,
        timer_factory: Callable[..., RepeatingTimer] = RepeatingTimer,
        default_frequency_ms: int = DEFAULT_FREQUENCY_MS,
    ):
        self.broker = broker
        self.config_store = config_store
        self.instrument_registry = instrument_registry
        self.dispatcher = dispatcher
        self.session_tracker = session_tracker
        self.environment = environment
        self.timer_factory = timer_factory
        self.default_frequency_ms = default_frequency_ms

        self._lock = threading.RLock()
        self._timer: Optional[RepeatingTimer] = None
        self._session: Optional[MarketSession] = None
        self._frequency_ms: Optional[int] = None

    @property
    def state(self) -> ScheduleState:
        with self._lock:
            if self._timer is None:
                return ScheduleState(STOPPED)
            return ScheduleState(SCHEDULED, self._frequency_ms, self._session)

    @property
    def active_timer(self) -> Optional[RepeatingTimer]:
        with self._lock:
            return self._timer

    def start(self, session: Optional[MarketSession] = None):
        """
        Schedule the trading task for the current session's config, first run immediate.

        Raises:
            ConfigNotFound: if the session has no config
        """
        with self._lock:
            if session is None:
                session = self.session_tracker.current_session()
            config = self.config_store.get(self.environment, session)
            self._schedule(session, config.frequency_ms)

    def stop(self):
        with self._lock:
            self._cancel_timer()
            self._session = None
            self._frequency_ms = None
        logger.info("Trading task stopped")
        publish_schedule_change(None, None, running=False)

    def on_session_change(self, session: Optional[MarketSession] = None) -> bool:
        """
        Re-check the market session and reschedule if it moved.

        Args:
            session: Already classified session, fetched from the broker when omitted

        Returns:
            True if the task was rescheduled
        """
        with self._lock:
            if session is None:
                session = self.session_tracker.current_session()
            if session == self._session:
                return False
            logger.info(f"Market session updated to: {session.value}")
            self.start(session)
            return True

    def update_frequency(self, new_frequency_ms: int) -> bool:
        """
        Store a new frequency for the current scope and reschedule with it.

        A non-positive frequency is rejected with a warning; the schedule and
        the stored config stay as they are.

        Returns:
            True if the frequency was applied

        Raises:
            ConfigNotFound: if the current session has no config
        """
        try:
            self._validate_frequency(new_frequency_ms)
        except InvalidFrequency as e:
            logger.warning(f"{e}. Skipping update.")
            return False

        with self._lock:
            session = self._session or self.session_tracker.current_session()
            config = self.config_store.get(self.environment, session)
            config.frequency_ms = new_frequency_ms
            self.config_store.save(config)
            logger.info(
                f"Frequency updated to {new_frequency_ms} ms for {self.environment.value} environment "
                f"in {session.value} session, rescheduling task..."
            )
            self._schedule(session, new_frequency_ms)
        return True

    def get_current_frequency(self) -> int:
        """
        Frequency stored for the current (environment, session).

        Raises:
            ConfigNotFound: if that scope has no config
        """
        with self._lock:
            session = self._session or self.session_tracker.current_session()
            return self.config_store.get(self.environment, session).frequency_ms

    def run_cycle(self, environment: Optional[Environment] = None, clock: Optional[ClockSnapshot] = None):
        """
        Run one trading cycle now, without touching the schedule.

        Args:
            environment: Config scope environment (defaults to the manager's)
            clock: Clock already fetched for this cycle

        Returns:
            The dispatcher's CycleReport, or None when the clock is unavailable

        Raises:
            ConfigNotFound: if the session has no config
        """
        environment = environment or self.environment
        instruments = self.instrument_registry.list_active()

        if clock is None:
            clock = self._fetch_clock()
            if clock is None:
                return None

        session = self.session_tracker.classify(clock)
        config = self.config_store.get(environment, session)
        logger.info(f"Market session: {session.value}, starting trade operations for {environment.value} environment...")
        return self.dispatcher.run(instruments, config, session)

    def _tick(self):
        try:
            if not (self.broker.is_market_open() or self.broker.is_extended_hours()):
                logger.info("Market is closed, skipping trading operations.")
                return

            clock = self._fetch_clock()
            if clock is None:
                return

            session = self.session_tracker.classify(clock)
            with self._lock:
                if self._timer is None:
                    logger.debug("Schedule stopped during tick, skipping cycle")
                    return
                if self.on_session_change(session):
                    # The new timer runs the cycle right away
                    return

            self.run_cycle(self.environment, clock)
        except Exception as e:
            logger.exception(f"Error during trading execution: {e}")

    def _fetch_clock(self) -> Optional[ClockSnapshot]:
        try:
            return self.session_tracker.fetch_clock()
        except Exception as e:
            logger.error(f"Failed to fetch market clock, skipping cycle: {e}")
            return None

    def _validate_frequency(self, frequency_ms: int):
        if frequency_ms is None or frequency_ms <= 0:
            raise InvalidFrequency(frequency_ms)

    def _schedule(self, session: MarketSession, frequency_ms: int):
        # Caller holds self._lock
        if frequency_ms <= 0:
            logger.warning(f"Invalid frequency value: {frequency_ms}. Using default frequency: {self.default_frequency_ms} ms.")
            frequency_ms = self.default_frequency_ms

        self._cancel_timer()
        timer = self.timer_factory(frequency_ms, self._tick, 0)
        self._timer = timer
        self._session = session
        self._frequency_ms = frequency_ms
        timer.start()

        logger.info(
            f"Trading task scheduled with frequency: {frequency_ms} ms for {self.environment.value} "
            f"environment in {session.value} session"
        )
        publish_schedule_change(session.value, frequency_ms, running=True)

    def _cancel_timer(self):
        if self._timer is not None and not self._timer.cancelled:
            self._timer.cancel()
        self._timer = None
