"""
Trading data model - instruments, session-scoped configs, trade records.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Dict, Optional


class MarketSession(str, Enum):
    PRE_MARKET = "PRE_MARKET"
    REGULAR = "REGULAR"
    AFTER_MARKET = "AFTER_MARKET"


class Environment(str, Enum):
    PAPER = "PAPER"
    LIVE = "LIVE"


class Action(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


@dataclass(frozen=True)
class Instrument:
    symbol: str
    active: bool = True
    name: Optional[str] = None

    def __post_init__(self):
        if not self.symbol or not self.symbol.strip():
            raise ValueError("Instrument symbol must be non-empty")

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> 'Instrument':
        return cls(symbol=data['symbol'], active=data.get('active', True), name=data.get('name'))


@dataclass
class StrategyConfig:
    """Strategy parameters for one (environment, market session) scope."""
    environment: Environment
    market_session: MarketSession
    threshold: float = 0.05
    max_rounds: int = 6
    initial_quantity: int = 1
    frequency_ms: int = 60000
    price_change_percentage: float = 2.0

    def validate(self):
        """Check parameter ranges. A non-positive frequency is tolerated (the scheduler falls back)."""
        if not 0 < self.threshold <= 1:
            raise ValueError(f"threshold must be in (0, 1], got {self.threshold}")
        if self.max_rounds < 1:
            raise ValueError(f"max_rounds must be >= 1, got {self.max_rounds}")
        if self.initial_quantity <= 0:
            raise ValueError(f"initial_quantity must be > 0, got {self.initial_quantity}")
        if not 0 < self.price_change_percentage <= 100:
            raise ValueError(f"price_change_percentage must be in (0, 100], got {self.price_change_percentage}")

    @property
    def max_quantity(self) -> int:
        """
        Largest quantity martingale doubling may reach.

        The round cap multiplies the starting size: initial_quantity * 2 ** max_rounds,
        not a bare 2 ** max_rounds.
        """
        return self.initial_quantity * 2 ** self.max_rounds

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['environment'] = self.environment.value
        data['market_session'] = self.market_session.value
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'StrategyConfig':
        return cls(
            environment=Environment(data['environment']),
            market_session=MarketSession(data['market_session']),
            threshold=float(data.get('threshold', 0.05)),
            max_rounds=int(data.get('max_rounds', 6)),
            initial_quantity=int(data.get('initial_quantity', 1)),
            frequency_ms=int(data.get('frequency_ms', 60000)),
            price_change_percentage=float(data.get('price_change_percentage', 2.0)),
        )


@dataclass(frozen=True)
class TradeRecord:
    symbol: str
    price: float
    quantity: int
    action: Action
    timestamp: datetime
    order_id: str
    order_status: str
    market_session: MarketSession

    def __post_init__(self):
        if self.price <= 0:
            raise ValueError(f"Trade price must be > 0, got {self.price}")
        if self.quantity <= 0:
            raise ValueError(f"Trade quantity must be > 0, got {self.quantity}")

    def to_dict(self) -> Dict:
        return {
            'symbol': self.symbol,
            'price': self.price,
            'quantity': self.quantity,
            'action': self.action.value,
            'timestamp': self.timestamp.isoformat(),
            'order_id': self.order_id,
            'order_status': self.order_status,
            'market_session': self.market_session.value,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'TradeRecord':
        return cls(
            symbol=data['symbol'],
            price=float(data['price']),
            quantity=int(data['quantity']),
            action=Action(data['action']),
            timestamp=datetime.fromisoformat(data['timestamp']),
            order_id=data.get('order_id', ''),
            order_status=data.get('order_status', ''),
            market_session=MarketSession(data['market_session']),
        )


@dataclass(frozen=True)
class ClockSnapshot:
    """Market clock as reported by the broker, fetched once per cycle."""
    is_open: bool
    next_open: datetime
    next_close: datetime


@dataclass
class TradeOutcome:
    """What the strategy did for one instrument in one cycle."""
    symbol: str
    status: str  # traded, skipped, no_action, failed
    action: Optional[Action] = None
    quantity: int = 0
    price: Optional[float] = None
    detail: str = ""

    @property
    def traded(self) -> bool:
        return self.status == "traded"


@dataclass
class TaskResult:
    """Per-instrument result collected by the dispatcher."""
    symbol: str
    status: str  # traded, skipped, no_action, failed, error
    action: Optional[Action] = None
    quantity: int = 0
    detail: str = ""
    finished_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_outcome(cls, outcome: TradeOutcome) -> 'TaskResult':
        return cls(
            symbol=outcome.symbol,
            status=outcome.status,
            action=outcome.action,
            quantity=outcome.quantity,
            detail=outcome.detail,
        )
