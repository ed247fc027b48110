"""
Event Bus - Simple pub/sub for trading events.

The scheduler, the dispatcher and the strategy engine publish what they do
here, so trades, skipped instruments and failures can be counted and
inspected rather than only read from the log. Thread-safe for use from the
scheduler thread and the worker pool.
"""

import logging
import queue
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# Global event bus instance
_event_bus: Optional['EventBus'] = None
_event_bus_lock = threading.Lock()


class EventBus:
    """
    Event bus for trading events.

    Subscribers get a bounded queue; a subscriber whose queue fills up is
    dropped. A short history and a status dict are kept for polling.
    """

    def __init__(self, max_events: int = 100):
        """
        Initialize event bus.

        Args:
            max_events: Maximum events to keep in history
        """
        self._subscribers: Dict[int, queue.Queue] = {}
        self._subscriber_lock = threading.Lock()
        self._history_lock = threading.Lock()
        self._next_id = 0
        self._event_history: list = []
        self._max_events = max_events
        self._latest_status: Dict[str, Any] = {
            'environment': 'unknown',
            'running': False,
            'session': None,
            'frequency_ms': None,
            'last_cycle': None,
        }

    def publish(self, event_type: str, data: Dict):
        """
        Publish an event to all subscribers.

        Args:
            event_type: Type of event (e.g., 'trade', 'cycle_complete', 'schedule')
            data: Event data dict
        """
        event = {
            'type': event_type,
            'data': data,
            'timestamp': datetime.now().isoformat(),
        }

        with self._history_lock:
            self._event_history.append(event)
            if len(self._event_history) > self._max_events:
                self._event_history = self._event_history[-self._max_events:]

        with self._subscriber_lock:
            dead_subscribers = []
            for sub_id, sub_queue in self._subscribers.items():
                try:
                    sub_queue.put_nowait(event)
                except queue.Full:
                    dead_subscribers.append(sub_id)

            for sub_id in dead_subscribers:
                del self._subscribers[sub_id]

        logger.debug(f"Published event: {event_type}")

    def subscribe(self, maxsize: int = 50) -> tuple:
        """
        Subscribe to events.

        Returns:
            Tuple of (subscriber_id, queue)
        """
        with self._subscriber_lock:
            sub_id = self._next_id
            self._next_id += 1
            sub_queue = queue.Queue(maxsize=maxsize)
            self._subscribers[sub_id] = sub_queue
            logger.debug(f"New subscriber: {sub_id}")
            return sub_id, sub_queue

    def unsubscribe(self, subscriber_id: int):
        with self._subscriber_lock:
            if subscriber_id in self._subscribers:
                del self._subscribers[subscriber_id]
                logger.debug(f"Removed subscriber: {subscriber_id}")

    def get_history(self, count: int = 20, event_type: Optional[str] = None) -> List[Dict]:
        """Get recent event history, optionally of one type."""
        with self._history_lock:
            events = list(self._event_history)
        if event_type:
            events = [e for e in events if e['type'] == event_type]
        return events[-count:]

    def update_status(self, **kwargs):
        with self._history_lock:
            self._latest_status.update(kwargs)

    def get_status(self) -> Dict:
        with self._history_lock:
            return self._latest_status.copy()


def get_event_bus() -> EventBus:
    """Get or create the global event bus instance."""
    global _event_bus

    with _event_bus_lock:
        if _event_bus is None:
            _event_bus = EventBus()
        return _event_bus


def publish_trade(symbol: str, action: str, quantity: int, price: float, order_id: str, session: str):
    """Convenience function to publish a placed order."""
    get_event_bus().publish('trade', {
        'symbol': symbol,
        'action': action,
        'quantity': quantity,
        'price': price,
        'order_id': order_id,
        'session': session,
    })


def publish_cycle_complete(session: str, counts: Dict[str, int], errors: list):
    """Convenience function to publish cycle completion."""
    get_event_bus().publish('cycle_complete', {
        'session': session,
        'counts': counts,
        'errors': errors,
    })
    get_event_bus().update_status(last_cycle=datetime.now().isoformat())


def publish_schedule_change(session: Optional[str], frequency_ms: Optional[int], running: bool):
    """Convenience function to publish a (re)schedule or stop."""
    get_event_bus().publish('schedule', {
        'session': session,
        'frequency_ms': frequency_ms,
        'running': running,
    })
    get_event_bus().update_status(session=session, frequency_ms=frequency_ms, running=running)
