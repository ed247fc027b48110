"""
Trading Module - session-aware scheduling and martingale/threshold strategies.

- ScheduleManager fires the trading cycle at the frequency configured for the
  current market session and reschedules when the session or frequency changes
- MarketSessionTracker classifies pre-market / regular / after-market
- ConcurrencyDispatcher runs every active instrument on a worker pool
- StrategyEngine decides buy / sell / skip per instrument
"""

from .dispatcher import ConcurrencyDispatcher, CycleReport
from .errors import (
    BrokerApiError,
    ConfigNotFound,
    InsufficientFunds,
    InsufficientPosition,
    InvalidFrequency,
)
from .models import (
    Action,
    ClockSnapshot,
    Environment,
    Instrument,
    MarketSession,
    StrategyConfig,
    TradeRecord,
)
from .scheduler import ScheduleManager
from .session import MarketSessionTracker
from .stores import ConfigStore, HistoryStore, InstrumentRegistry
from .strategy import STRATEGY_BY_SESSION, StrategyEngine

__all__ = [
    'Action',
    'BrokerApiError',
    'ClockSnapshot',
    'ConcurrencyDispatcher',
    'ConfigNotFound',
    'ConfigStore',
    'CycleReport',
    'Environment',
    'HistoryStore',
    'InstrumentRegistry',
    'InsufficientFunds',
    'InsufficientPosition',
    'InvalidFrequency',
    'Instrument',
    'MarketSession',
    'MarketSessionTracker',
    'STRATEGY_BY_SESSION',
    'ScheduleManager',
    'StrategyConfig',
    'StrategyEngine',
    'TradeRecord',
]
