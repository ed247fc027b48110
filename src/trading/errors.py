"""
Error taxonomy for the trading core.

Only ConfigNotFound is meant to reach direct callers of the scheduler API.
Everything raised while trading a single instrument stops at that
instrument's boundary.
"""

from enum import Enum
from typing import Optional


class TradingError(Exception):
    """Base class for trading core errors."""


class ConfigNotFound(TradingError):
    """No StrategyConfig exists for the requested (environment, session) scope."""

    def __init__(self, environment, session):
        super().__init__(
            f"Configuration not found for environment: {getattr(environment, 'value', environment)} "
            f"and session: {getattr(session, 'value', session)}"
        )
        self.environment = environment
        self.session = session


class InvalidFrequency(TradingError):
    """Requested schedule frequency is not positive."""

    def __init__(self, frequency_ms):
        super().__init__(f"Invalid frequency: {frequency_ms} ms")
        self.frequency_ms = frequency_ms


class InsufficientFunds(TradingError):
    """Buying power does not cover the order."""

    def __init__(self, symbol: str, quantity: int, required: float, available: float):
        super().__init__(
            f"Insufficient buying power for {symbol}. Required: {required:.2f}, Available: {available:.2f}"
        )
        self.symbol = symbol
        self.quantity = quantity
        self.required = required
        self.available = available


class InsufficientPosition(TradingError):
    """Not enough shares held to cover the sell."""

    def __init__(self, symbol: str, requested: int, available: int):
        super().__init__(
            f"Insufficient quantity available for {symbol}. Requested: {requested}, Available: {available}"
        )
        self.symbol = symbol
        self.quantity = requested
        self.available = available


class RoundCapExceeded(TradingError):
    """Martingale doubling would go past max_rounds."""

    def __init__(self, symbol: str, quantity: int, cap: int):
        super().__init__(f"Quantity {quantity} for {symbol} exceeds round cap {cap}")
        self.symbol = symbol
        self.quantity = quantity
        self.cap = cap


class BrokerErrorCause(str, Enum):
    INSUFFICIENT_BUYING_POWER = "insufficient_buying_power"
    SHORT_WHILE_LONG_OPEN = "short_while_long_open"
    INSUFFICIENT_QTY = "insufficient_qty"
    FORBIDDEN = "forbidden"
    OTHER = "other"


# Message fragments the broker uses for rejected orders
_CAUSE_PATTERNS = [
    (BrokerErrorCause.INSUFFICIENT_BUYING_POWER, ("insufficient buying power", "not enough buying power")),
    (BrokerErrorCause.SHORT_WHILE_LONG_OPEN, ("short sell while a long buy order is open", "cannot open a short")),
    (BrokerErrorCause.INSUFFICIENT_QTY, ("insufficient qty", "not enough shares", "insufficient shares")),
    (BrokerErrorCause.FORBIDDEN, ("forbidden", "not allowed", "permission")),
]


def classify_broker_error(message: Optional[str], status_code: Optional[int] = None) -> BrokerErrorCause:
    """Map a broker rejection message to a cause, for logging."""
    text = (message or "").lower()
    for cause, fragments in _CAUSE_PATTERNS:
        if any(fragment in text for fragment in fragments):
            return cause
    if status_code == 403:
        return BrokerErrorCause.FORBIDDEN
    return BrokerErrorCause.OTHER


class BrokerApiError(TradingError):
    """The broker rejected a request."""

    def __init__(self, message: str, symbol: Optional[str] = None, status_code: Optional[int] = None,
                 response: Optional[dict] = None):
        super().__init__(message)
        self.symbol = symbol
        self.status_code = status_code
        self.response = response
        self.cause = classify_broker_error(message, status_code)
