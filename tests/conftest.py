"""Pytest configuration and shared fixtures."""

from datetime import datetime
from unittest.mock import Mock

import pytest
from pytz import timezone

from src.trading.models import (
    ClockSnapshot,
    Environment,
    Instrument,
    MarketSession,
    StrategyConfig,
    TradeRecord,
    Action,
)
from src.trading.stores import ConfigStore, HistoryStore, InstrumentRegistry

EASTERN = timezone('US/Eastern')


def eastern(year, month, day, hour, minute=0):
    return EASTERN.localize(datetime(year, month, day, hour, minute))


@pytest.fixture
def regular_clock() -> ClockSnapshot:
    """Clock for 2024-01-10: opens 09:30 ET, closes 16:00 ET."""
    return ClockSnapshot(
        is_open=True,
        next_open=eastern(2024, 1, 11, 9, 30),
        next_close=eastern(2024, 1, 10, 16, 0),
    )


@pytest.fixture
def broker(regular_clock) -> Mock:
    """Broker double with a funded account and a large position."""
    broker = Mock()
    broker.get_market_price.return_value = 100.0
    broker.get_buying_power.return_value = 1_000_000.0
    broker.get_available_qty.return_value = 1000
    broker.place_buy_order.return_value = {"id": "buy-order-1", "state": "confirmed"}
    broker.place_sell_order.return_value = {"id": "sell-order-1", "state": "confirmed"}
    broker.is_market_open.return_value = True
    broker.is_extended_hours.return_value = False
    broker.get_market_clock.return_value = regular_clock
    return broker


@pytest.fixture
def history_store() -> HistoryStore:
    return HistoryStore()


@pytest.fixture
def instrument() -> Instrument:
    return Instrument(symbol="AAPL")


@pytest.fixture
def make_config():
    def _make(session=MarketSession.REGULAR, **overrides):
        fields = {
            'threshold': 0.05,
            'max_rounds': 6,
            'initial_quantity': 10,
            'frequency_ms': 1000,
            'price_change_percentage': 2.0,
        }
        fields.update(overrides)
        return StrategyConfig(environment=Environment.PAPER, market_session=session, **fields)
    return _make


@pytest.fixture
def config_store(make_config) -> ConfigStore:
    store = ConfigStore()
    store.save(make_config(MarketSession.PRE_MARKET, frequency_ms=5000))
    store.save(make_config(MarketSession.REGULAR, frequency_ms=1000))
    store.save(make_config(MarketSession.AFTER_MARKET, frequency_ms=7000))
    return store


@pytest.fixture
def registry() -> InstrumentRegistry:
    return InstrumentRegistry(symbols=["AAPL", "MSFT"])


@pytest.fixture
def make_record():
    def _make(symbol="AAPL", price=150.0, quantity=10, action=Action.BUY,
              timestamp=None, session=MarketSession.REGULAR):
        return TradeRecord(
            symbol=symbol,
            price=price,
            quantity=quantity,
            action=action,
            timestamp=timestamp or datetime(2024, 1, 10, 10, 0),
            order_id="previous-order",
            order_status="filled",
            market_session=session,
        )
    return _make
