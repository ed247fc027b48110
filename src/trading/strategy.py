"""
Strategy Engine - per-instrument buy/sell/skip decisions.

Two strategies, picked by market session through STRATEGY_BY_SESSION:

- martingale (regular session): buy double the last traded quantity when the
  price has dropped more than `threshold` below the last trade price, sell
  double when it is above it. Doubling is reconstructed from the latest
  trade record; there is no persisted round counter.
- threshold (pre/after market): trade `initial_quantity` when the price has
  moved strictly more than `price_change_percentage` from the last trade.

The engine holds no per-instrument state. Everything it needs is read from
the broker and the history store on each call, so concurrent cycles for the
same instrument are possible and each one decides from what it reads.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from ..utils.event_bus import publish_trade
from .errors import (
    BrokerApiError,
    BrokerErrorCause,
    InsufficientFunds,
    InsufficientPosition,
    RoundCapExceeded,
)
from .models import Action, Instrument, MarketSession, StrategyConfig, TradeOutcome, TradeRecord

logger = logging.getLogger(__name__)


# Prices and percentages are compared in decimal so cent boundaries stay exact
def _dec(value) -> Decimal:
    return Decimal(str(value))


MARTINGALE = "martingale"
THRESHOLD = "threshold"

# Which strategy runs in which session. Add a row to pair a session with a strategy.
STRATEGY_BY_SESSION: Dict[MarketSession, str] = {
    MarketSession.PRE_MARKET: THRESHOLD,
    MarketSession.REGULAR: MARTINGALE,
    MarketSession.AFTER_MARKET: THRESHOLD,
}

_BROKER_ERROR_HINTS = {
    BrokerErrorCause.INSUFFICIENT_BUYING_POWER: "Insufficient buying power for {symbol}. Adjust configuration or add funds.",
    BrokerErrorCause.SHORT_WHILE_LONG_OPEN: "Cannot short sell {symbol} while there is an open long position.",
    BrokerErrorCause.INSUFFICIENT_QTY: "Not enough quantity available to sell {symbol}. Adjust order size or check current holdings.",
    BrokerErrorCause.FORBIDDEN: "Forbidden action for {symbol}. Please review permissions and account configuration.",
    BrokerErrorCause.OTHER: "Order for {symbol} rejected by the broker.",
}


class StrategyEngine:
    """
    Runs the session's strategy for one instrument.

    Successful orders are appended to the history store, published on the
    event bus and reported to the position listener. Skipped attempts
    (funds, position, round cap) only log.
    """

    def __init__(
        self,
        broker,
        history_store,
        position_listener: Optional[Callable[[Instrument], None]] = None,
        now_fn: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            broker: Broker client (see src.api.robinhood)
            history_store: Store providing last_record_for(), has_buy() and append()
            position_listener: Called with the instrument after each placed order
            now_fn: Timestamp source for trade records
        """
        self.broker = broker
        self.history_store = history_store
        self.position_listener = position_listener
        self._now_fn = now_fn or datetime.now
        self._strategies = {
            MARTINGALE: self.execute_martingale,
            THRESHOLD: self.execute_threshold,
        }

    def execute_strategy_for(self, instrument: Instrument, config: StrategyConfig,
                             session: MarketSession) -> TradeOutcome:
        """
        Run the strategy mapped to `session` for one instrument.

        Expected trading conditions and broker rejections end here as an
        outcome; any other error propagates to the caller.
        """
        strategy = STRATEGY_BY_SESSION[session]
        logger.info(f"Processing {instrument.symbol} in {session.value} session ({strategy})")
        try:
            return self._strategies[strategy](instrument, config, session)
        except (InsufficientFunds, RoundCapExceeded) as e:
            logger.warning(str(e))
            return TradeOutcome(instrument.symbol, "skipped", Action.BUY, e.quantity, detail=str(e))
        except InsufficientPosition as e:
            logger.warning(str(e))
            return TradeOutcome(instrument.symbol, "skipped", Action.SELL, e.quantity, detail=str(e))
        except BrokerApiError as e:
            self._log_broker_error(e, instrument.symbol)
            return TradeOutcome(instrument.symbol, "failed", detail=f"{e.cause.value}: {e}")

    def execute_martingale(self, instrument: Instrument, config: StrategyConfig,
                           session: MarketSession = MarketSession.REGULAR) -> TradeOutcome:
        symbol = instrument.symbol
        last_trade = self.history_store.last_record_for(symbol)
        current_price = float(self.broker.get_market_price(symbol))
        logger.info(f"Current price for {symbol} is: {current_price}")

        # No history: compare the price with itself, so nothing fires
        last_price = last_trade.price if last_trade else current_price
        quantity = last_trade.quantity * 2 if last_trade else config.initial_quantity

        if _dec(last_price) > _dec(current_price) * (1 + _dec(config.threshold)):
            logger.info(f"Price dropped for {symbol}: lastPrice={last_price}, currentPrice={current_price}")
            if quantity > config.max_quantity:
                raise RoundCapExceeded(symbol, quantity, config.max_quantity)
            return self._buy(instrument, quantity, current_price, session)

        if current_price > last_price:
            logger.info(f"Price rose for {symbol}: lastPrice={last_price}, currentPrice={current_price}")
            return self._sell(instrument, quantity, current_price, session, check_position=True)

        logger.info(f"No martingale signal for {symbol}: lastPrice={last_price}, currentPrice={current_price}")
        return TradeOutcome(symbol, "no_action", price=current_price)

    def execute_threshold(self, instrument: Instrument, config: StrategyConfig,
                          session: MarketSession) -> TradeOutcome:
        symbol = instrument.symbol
        current_price = float(self.broker.get_market_price(symbol))
        last_trade = self.history_store.last_record_for(symbol)
        last_price = last_trade.price if last_trade else current_price
        change_pct = abs(_dec(current_price) - _dec(last_price)) / _dec(last_price) * 100

        if change_pct > _dec(config.price_change_percentage):
            logger.info(f"Price of {symbol} moved {change_pct:.2f}% (lastPrice={last_price}, currentPrice={current_price})")
            if current_price > last_price:
                return self._sell(instrument, config.initial_quantity, current_price, session, check_position=False)
            return self._buy(instrument, config.initial_quantity, current_price, session)

        logger.info(f"No significant price change (>{config.price_change_percentage}%) for {symbol}. Skipping trade.")
        return TradeOutcome(symbol, "no_action", price=current_price)

    def seed_initial_positions(self, instruments: List[Instrument], config: StrategyConfig,
                               session: MarketSession = MarketSession.REGULAR) -> List[TradeOutcome]:
        """
        Place one starter BUY of `initial_quantity` for every active instrument
        that has never been bought.

        Returns:
            One outcome per instrument (skipped ones included)
        """
        logger.info("Initializing starter buys for active instruments...")
        outcomes = []
        for instrument in instruments:
            symbol = instrument.symbol
            if not instrument.active:
                continue
            if self.history_store.has_buy(symbol):
                logger.info(f"{symbol} already has a previous buy in trade history. Skipping initial buy.")
                outcomes.append(TradeOutcome(symbol, "no_action", detail="already seeded"))
                continue
            try:
                price = float(self.broker.get_market_price(symbol))
                outcome = self._buy(instrument, config.initial_quantity, price, session)
                logger.info(f"Placed initial buy order for {symbol} at price {price} with quantity {config.initial_quantity}")
            except InsufficientFunds as e:
                logger.warning(str(e))
                outcome = TradeOutcome(symbol, "skipped", Action.BUY, e.quantity, detail=str(e))
            except BrokerApiError as e:
                self._log_broker_error(e, symbol)
                outcome = TradeOutcome(symbol, "failed", Action.BUY, detail=f"{e.cause.value}: {e}")
            except Exception as e:
                logger.error(f"Error placing initial buy order for {symbol}: {e}")
                outcome = TradeOutcome(symbol, "failed", Action.BUY, detail=str(e))
            outcomes.append(outcome)
        return outcomes

    def _buy(self, instrument: Instrument, quantity: int, price: float, session: MarketSession) -> TradeOutcome:
        symbol = instrument.symbol
        buying_power = float(self.broker.get_buying_power())
        required = price * quantity
        if required > buying_power:
            raise InsufficientFunds(symbol, quantity, required, buying_power)

        order = self.broker.place_buy_order(symbol, quantity)
        return self._record_trade(instrument, price, quantity, Action.BUY, order, session)

    def _sell(self, instrument: Instrument, quantity: int, price: float, session: MarketSession,
              check_position: bool) -> TradeOutcome:
        symbol = instrument.symbol
        if check_position:
            available = int(self.broker.get_available_qty(symbol))
            if available < quantity:
                raise InsufficientPosition(symbol, quantity, available)

        order = self.broker.place_sell_order(symbol, quantity)
        return self._record_trade(instrument, price, quantity, Action.SELL, order, session)

    def _record_trade(self, instrument: Instrument, price: float, quantity: int, action: Action,
                      order: Dict, session: MarketSession) -> TradeOutcome:
        order_id = str(order.get('id', ''))
        order_status = str(order.get('state', 'unknown'))
        record = TradeRecord(
            symbol=instrument.symbol,
            price=price,
            quantity=quantity,
            action=action,
            timestamp=self._now_fn(),
            order_id=order_id,
            order_status=order_status,
            market_session=session,
        )
        self.history_store.append(record)
        logger.info(
            f"Trade history saved for {instrument.symbol}: action={action.value}, price={price}, "
            f"quantity={quantity}, order ID={order_id}, session={session.value}"
        )
        publish_trade(instrument.symbol, action.value, quantity, price, order_id, session.value)

        if self.position_listener is not None:
            try:
                self.position_listener(instrument)
            except Exception as e:
                logger.error(f"Error refreshing position for {instrument.symbol}: {e}")

        return TradeOutcome(instrument.symbol, "traded", action, quantity, price, detail=order_status)

    def _log_broker_error(self, error: BrokerApiError, symbol: str):
        logger.error(f"API error occurred while trading {symbol}: {error}")
        if error.response:
            logger.error(f"Broker response body: {error.response}")
        logger.warning(_BROKER_ERROR_HINTS[error.cause].format(symbol=symbol))
