"""Tests for the event bus."""

from src.utils.event_bus import EventBus, get_event_bus, publish_schedule_change


class TestEventBus:
    def test_subscribers_receive_events(self):
        bus = EventBus()
        sub_id, sub_queue = bus.subscribe()

        bus.publish('trade', {'symbol': 'AAPL'})

        event = sub_queue.get_nowait()
        assert event['type'] == 'trade'
        assert event['data'] == {'symbol': 'AAPL'}
        bus.unsubscribe(sub_id)

    def test_full_subscriber_is_dropped(self):
        bus = EventBus()
        _, sub_queue = bus.subscribe(maxsize=1)

        bus.publish('trade', {})
        bus.publish('trade', {})
        bus.publish('trade', {})

        assert sub_queue.qsize() == 1

    def test_history_is_bounded_and_filterable(self):
        bus = EventBus(max_events=3)
        for i in range(5):
            bus.publish('trade' if i % 2 == 0 else 'schedule', {'i': i})

        assert [e['data']['i'] for e in bus.get_history()] == [2, 3, 4]
        assert [e['data']['i'] for e in bus.get_history(event_type='trade')] == [2, 4]

    def test_status_updates(self):
        bus = EventBus()
        bus.update_status(running=True, session='REGULAR')

        status = bus.get_status()
        assert status['running'] is True
        assert status['session'] == 'REGULAR'
        assert status['last_cycle'] is None

    def test_schedule_change_updates_global_status(self):
        publish_schedule_change('PRE_MARKET', 300000, running=True)

        status = get_event_bus().get_status()
        assert status['session'] == 'PRE_MARKET'
        assert status['frequency_ms'] == 300000
        assert status['running'] is True

    def test_global_bus_is_shared(self):
        assert get_event_bus() is get_event_bus()
