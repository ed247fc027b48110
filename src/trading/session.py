"""
Market session tracking - PRE_MARKET / REGULAR / AFTER_MARKET from the broker clock.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from pytz import timezone

from .models import ClockSnapshot, MarketSession

logger = logging.getLogger(__name__)

DEFAULT_MARKET_TIMEZONE = 'US/Eastern'


class MarketSessionTracker:
    """
    Classifies the current moment into a market session.

    Only the time of day is compared against the clock's next open and next
    close; their dates are ignored. Near midnight, over weekends and after
    holidays the next open/close belong to another day, so the result there
    is whatever the time-of-day comparison gives.
    """

    def __init__(self, broker, market_timezone: str = DEFAULT_MARKET_TIMEZONE,
                 now_fn: Optional[Callable[[], datetime]] = None):
        """
        Args:
            broker: Broker client providing get_market_clock()
            market_timezone: Timezone the times of day are compared in
            now_fn: Returns the current time (defaults to datetime.now in market_timezone)
        """
        self.broker = broker
        self.tz = timezone(market_timezone)
        self._now_fn = now_fn or (lambda: datetime.now(self.tz))

    def now(self) -> datetime:
        return self._now_fn()

    def _local_time(self, moment: datetime):
        if moment.tzinfo is None:
            moment = self.tz.localize(moment)
        return moment.astimezone(self.tz).time()

    def classify(self, clock: ClockSnapshot, now: Optional[datetime] = None) -> MarketSession:
        """Classify `now` against the clock's next open / next close time of day."""
        now_time = self._local_time(now if now is not None else self.now())
        if now_time < self._local_time(clock.next_open):
            return MarketSession.PRE_MARKET
        if now_time > self._local_time(clock.next_close):
            return MarketSession.AFTER_MARKET
        return MarketSession.REGULAR

    def fetch_clock(self) -> ClockSnapshot:
        return self.broker.get_market_clock()

    def current_session(self, now: Optional[datetime] = None) -> MarketSession:
        """
        Fetch the clock and classify now.

        Raises whatever the broker raises when the clock cannot be fetched.
        """
        session = self.classify(self.fetch_clock(), now)
        logger.debug(f"Current market session: {session.value}")
        return session
