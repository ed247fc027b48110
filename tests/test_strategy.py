"""Tests for the martingale and threshold strategies."""

from unittest.mock import Mock

import pytest

from src.trading.errors import BrokerApiError, BrokerErrorCause
from src.trading.models import Action, Instrument, MarketSession
from src.trading.strategy import MARTINGALE, STRATEGY_BY_SESSION, THRESHOLD, StrategyEngine
from src.utils.event_bus import get_event_bus


@pytest.fixture
def engine(broker, history_store):
    return StrategyEngine(broker, history_store)


class TestStrategyTable:
    """Session to strategy mapping."""

    def test_every_session_has_a_strategy(self):
        assert set(STRATEGY_BY_SESSION) == set(MarketSession)

    def test_regular_session_runs_martingale(self):
        assert STRATEGY_BY_SESSION[MarketSession.REGULAR] == MARTINGALE

    def test_extended_sessions_run_threshold(self):
        assert STRATEGY_BY_SESSION[MarketSession.PRE_MARKET] == THRESHOLD
        assert STRATEGY_BY_SESSION[MarketSession.AFTER_MARKET] == THRESHOLD


class TestMartingale:
    """Martingale strategy in the regular session."""

    def test_buys_double_quantity_after_drop(self, engine, broker, history_store, instrument,
                                             make_config, make_record):
        history_store.append(make_record(price=150.0, quantity=10))
        broker.get_market_price.return_value = 140.0

        outcome = engine.execute_martingale(instrument, make_config(threshold=0.05), MarketSession.REGULAR)

        broker.place_buy_order.assert_called_once_with("AAPL", 20)
        broker.place_sell_order.assert_not_called()
        assert outcome.status == "traded"
        assert outcome.action == Action.BUY
        assert outcome.quantity == 20

        last = history_store.last_record_for("AAPL")
        assert last.action == Action.BUY
        assert last.quantity == 20
        assert last.price == 140.0
        assert last.order_id == "buy-order-1"
        assert last.order_status == "confirmed"
        assert last.market_session == MarketSession.REGULAR

    def test_sells_double_quantity_after_rise(self, engine, broker, history_store, instrument,
                                              make_config, make_record):
        history_store.append(make_record(price=140.0, quantity=10))
        broker.get_market_price.return_value = 150.0

        outcome = engine.execute_martingale(instrument, make_config(), MarketSession.REGULAR)

        broker.get_available_qty.assert_called_once_with("AAPL")
        broker.place_sell_order.assert_called_once_with("AAPL", 20)
        broker.place_buy_order.assert_not_called()
        assert outcome.action == Action.SELL
        assert history_store.last_record_for("AAPL").action == Action.SELL

    def test_equal_prices_do_not_trade(self, engine, broker, history_store, instrument,
                                       make_config, make_record):
        history_store.append(make_record(price=150.0, quantity=10))
        broker.get_market_price.return_value = 150.0

        outcome = engine.execute_martingale(instrument, make_config(), MarketSession.REGULAR)

        assert outcome.status == "no_action"
        broker.place_buy_order.assert_not_called()
        broker.place_sell_order.assert_not_called()
        assert len(history_store.records_for("AAPL")) == 1

    def test_drop_within_threshold_does_not_trade(self, engine, broker, history_store, instrument,
                                                  make_config, make_record):
        history_store.append(make_record(price=150.0))
        broker.get_market_price.return_value = 145.0  # 145 * 1.05 = 152.25

        outcome = engine.execute_martingale(instrument, make_config(threshold=0.05), MarketSession.REGULAR)

        assert outcome.status == "no_action"
        broker.place_buy_order.assert_not_called()

    def test_drop_exactly_at_threshold_does_not_buy(self, engine, broker, history_store, instrument,
                                                    make_config, make_record):
        # 7.00 * 1.15 = 8.05 exactly
        history_store.append(make_record(price=8.05, quantity=1))
        broker.get_market_price.return_value = 7.0

        outcome = engine.execute_martingale(instrument, make_config(threshold=0.15), MarketSession.REGULAR)

        assert outcome.status == "no_action"
        broker.place_buy_order.assert_not_called()
        assert len(history_store.records_for("AAPL")) == 1

    def test_first_evaluation_without_history_does_not_trade(self, engine, broker, history_store,
                                                             instrument, make_config):
        broker.get_market_price.return_value = 123.0

        outcome = engine.execute_martingale(instrument, make_config(), MarketSession.REGULAR)

        assert outcome.status == "no_action"
        broker.place_buy_order.assert_not_called()
        broker.place_sell_order.assert_not_called()
        assert history_store.last_record_for("AAPL") is None

    def test_insufficient_buying_power_skips_buy(self, engine, broker, history_store, instrument,
                                                 make_config, make_record):
        history_store.append(make_record(price=150.0, quantity=10))
        broker.get_market_price.return_value = 140.0
        broker.get_buying_power.return_value = 2799.0  # needs 140 * 20 = 2800

        outcome = engine.execute_strategy_for(instrument, make_config(), MarketSession.REGULAR)

        assert outcome.status == "skipped"
        assert outcome.action == Action.BUY
        assert outcome.quantity == 20
        broker.place_buy_order.assert_not_called()
        assert len(history_store.records_for("AAPL")) == 1

    def test_exact_buying_power_is_enough(self, engine, broker, history_store, instrument,
                                          make_config, make_record):
        history_store.append(make_record(price=150.0, quantity=10))
        broker.get_market_price.return_value = 140.0
        broker.get_buying_power.return_value = 2800.0

        outcome = engine.execute_strategy_for(instrument, make_config(), MarketSession.REGULAR)

        assert outcome.status == "traded"

    def test_insufficient_position_skips_sell(self, engine, broker, history_store, instrument,
                                              make_config, make_record):
        history_store.append(make_record(price=140.0, quantity=10))
        broker.get_market_price.return_value = 150.0
        broker.get_available_qty.return_value = 19

        outcome = engine.execute_strategy_for(instrument, make_config(), MarketSession.REGULAR)

        assert outcome.status == "skipped"
        assert outcome.action == Action.SELL
        broker.place_sell_order.assert_not_called()

    def test_round_cap_refuses_oversized_buy(self, engine, broker, history_store, instrument,
                                             make_config, make_record):
        # initial 1, 2 rounds -> at most 4 shares; doubling 4 gives 8
        history_store.append(make_record(price=150.0, quantity=4))
        broker.get_market_price.return_value = 100.0

        outcome = engine.execute_strategy_for(
            instrument, make_config(initial_quantity=1, max_rounds=2), MarketSession.REGULAR
        )

        assert outcome.status == "skipped"
        assert outcome.quantity == 8
        broker.place_buy_order.assert_not_called()

    def test_round_cap_allows_last_round(self, engine, broker, history_store, instrument,
                                         make_config, make_record):
        history_store.append(make_record(price=150.0, quantity=2))
        broker.get_market_price.return_value = 100.0

        outcome = engine.execute_strategy_for(
            instrument, make_config(initial_quantity=1, max_rounds=2), MarketSession.REGULAR
        )

        assert outcome.status == "traded"
        broker.place_buy_order.assert_called_once_with("AAPL", 4)

    def test_repeated_evaluation_gives_same_decision(self, engine, broker, history_store, instrument,
                                                     make_config, make_record):
        history_store.append(make_record(price=150.0, quantity=10))
        broker.get_market_price.return_value = 140.0
        broker.get_buying_power.return_value = 10.0
        config = make_config()

        first = engine.execute_strategy_for(instrument, config, MarketSession.REGULAR)
        second = engine.execute_strategy_for(instrument, config, MarketSession.REGULAR)

        assert (first.status, first.action, first.quantity) == (second.status, second.action, second.quantity)
        assert len(history_store.records_for("AAPL")) == 1


class TestThreshold:
    """Threshold strategy in pre/after market sessions."""

    def test_change_equal_to_threshold_does_not_trade(self, engine, broker, history_store, instrument,
                                                      make_config, make_record):
        history_store.append(make_record(price=100.0))
        broker.get_market_price.return_value = 102.0

        outcome = engine.execute_threshold(
            instrument, make_config(MarketSession.PRE_MARKET, price_change_percentage=2.0),
            MarketSession.PRE_MARKET,
        )

        assert outcome.status == "no_action"
        broker.place_buy_order.assert_not_called()
        broker.place_sell_order.assert_not_called()

    @pytest.mark.parametrize("last_price,current_price", [(70.0, 71.4), (70.0, 68.6), (35.5, 36.21)])
    def test_exact_percentage_move_with_cent_prices_does_not_trade(self, engine, broker, history_store,
                                                                   instrument, make_config, make_record,
                                                                   last_price, current_price):
        history_store.append(make_record(price=last_price))
        broker.get_market_price.return_value = current_price

        outcome = engine.execute_threshold(
            instrument, make_config(MarketSession.PRE_MARKET, price_change_percentage=2.0),
            MarketSession.PRE_MARKET,
        )

        assert outcome.status == "no_action"
        broker.place_buy_order.assert_not_called()
        broker.place_sell_order.assert_not_called()

    def test_rise_sells_initial_quantity(self, engine, broker, history_store, instrument,
                                         make_config, make_record):
        history_store.append(make_record(price=100.0, quantity=40))
        broker.get_market_price.return_value = 103.0

        outcome = engine.execute_threshold(
            instrument, make_config(MarketSession.AFTER_MARKET, initial_quantity=3),
            MarketSession.AFTER_MARKET,
        )

        broker.place_sell_order.assert_called_once_with("AAPL", 3)
        assert outcome.action == Action.SELL
        assert history_store.last_record_for("AAPL").market_session == MarketSession.AFTER_MARKET

    def test_fall_buys_initial_quantity(self, engine, broker, history_store, instrument,
                                        make_config, make_record):
        history_store.append(make_record(price=100.0, quantity=40))
        broker.get_market_price.return_value = 97.0

        outcome = engine.execute_threshold(
            instrument, make_config(MarketSession.PRE_MARKET, initial_quantity=3),
            MarketSession.PRE_MARKET,
        )

        broker.get_buying_power.assert_called_once()
        broker.place_buy_order.assert_called_once_with("AAPL", 3)
        assert outcome.quantity == 3

    def test_fall_without_funds_skips(self, engine, broker, history_store, instrument,
                                      make_config, make_record):
        history_store.append(make_record(price=100.0))
        broker.get_market_price.return_value = 90.0
        broker.get_buying_power.return_value = 50.0

        outcome = engine.execute_strategy_for(
            instrument, make_config(MarketSession.PRE_MARKET, initial_quantity=1), MarketSession.PRE_MARKET
        )

        assert outcome.status == "skipped"
        broker.place_buy_order.assert_not_called()

    def test_no_history_does_not_trade(self, engine, broker, instrument, make_config):
        outcome = engine.execute_threshold(instrument, make_config(MarketSession.PRE_MARKET),
                                           MarketSession.PRE_MARKET)

        assert outcome.status == "no_action"


class TestExecuteStrategyFor:
    """Session dispatch, side effects and error containment."""

    def test_session_selects_strategy(self, engine, broker, history_store, instrument,
                                      make_config, make_record):
        history_store.append(make_record(price=150.0, quantity=10))
        broker.get_market_price.return_value = 140.0

        engine.execute_strategy_for(instrument, make_config(MarketSession.PRE_MARKET, initial_quantity=3),
                                    MarketSession.PRE_MARKET)

        broker.place_buy_order.assert_called_once_with("AAPL", 3)

    def test_broker_rejection_is_contained(self, engine, broker, history_store, instrument,
                                           make_config, make_record):
        history_store.append(make_record(price=150.0, quantity=10))
        broker.get_market_price.return_value = 140.0
        broker.place_buy_order.side_effect = BrokerApiError(
            "Failed to place a buy order for AAPL: insufficient buying power", symbol="AAPL"
        )

        outcome = engine.execute_strategy_for(instrument, make_config(), MarketSession.REGULAR)

        assert outcome.status == "failed"
        assert BrokerErrorCause.INSUFFICIENT_BUYING_POWER.value in outcome.detail
        assert len(history_store.records_for("AAPL")) == 1

    def test_unexpected_error_propagates(self, engine, broker, instrument, make_config):
        broker.get_market_price.side_effect = RuntimeError("connection reset")

        with pytest.raises(RuntimeError):
            engine.execute_strategy_for(instrument, make_config(), MarketSession.REGULAR)

    def test_trade_notifies_position_listener_and_event_bus(self, broker, history_store, instrument,
                                                            make_config, make_record):
        listener = Mock()
        engine = StrategyEngine(broker, history_store, position_listener=listener)
        history_store.append(make_record(price=140.0, quantity=10))
        broker.get_market_price.return_value = 150.0

        engine.execute_strategy_for(instrument, make_config(), MarketSession.REGULAR)

        listener.assert_called_once_with(instrument)
        last_trade = get_event_bus().get_history(1, event_type='trade')[-1]
        assert last_trade['data']['symbol'] == "AAPL"
        assert last_trade['data']['action'] == "SELL"
        assert last_trade['data']['quantity'] == 20

    def test_failing_position_listener_keeps_trade(self, broker, history_store, instrument,
                                                   make_config, make_record):
        engine = StrategyEngine(broker, history_store, position_listener=Mock(side_effect=ValueError("boom")))
        history_store.append(make_record(price=140.0, quantity=10))
        broker.get_market_price.return_value = 150.0

        outcome = engine.execute_strategy_for(instrument, make_config(), MarketSession.REGULAR)

        assert outcome.status == "traded"
        assert len(history_store.records_for("AAPL")) == 2

    def test_skip_does_not_notify_listener(self, broker, history_store, instrument, make_config, make_record):
        listener = Mock()
        engine = StrategyEngine(broker, history_store, position_listener=listener)
        history_store.append(make_record(price=140.0, quantity=10))
        broker.get_market_price.return_value = 150.0
        broker.get_available_qty.return_value = 0

        engine.execute_strategy_for(instrument, make_config(), MarketSession.REGULAR)

        listener.assert_not_called()


class TestInitialSeeding:
    """Starter buys on system start."""

    def test_buys_instruments_without_prior_buy(self, engine, broker, history_store, make_config):
        instruments = [Instrument("AAPL"), Instrument("MSFT")]

        outcomes = engine.seed_initial_positions(instruments, make_config(initial_quantity=5))

        assert [o.status for o in outcomes] == ["traded", "traded"]
        broker.place_buy_order.assert_any_call("AAPL", 5)
        broker.place_buy_order.assert_any_call("MSFT", 5)
        assert history_store.has_buy("AAPL")
        assert history_store.has_buy("MSFT")

    def test_skips_instruments_with_prior_buy(self, engine, broker, history_store, make_config, make_record):
        history_store.append(make_record(symbol="AAPL", action=Action.BUY))
        history_store.append(make_record(symbol="AAPL", action=Action.SELL,
                                         timestamp=make_record().timestamp.replace(hour=11)))

        outcomes = engine.seed_initial_positions([Instrument("AAPL")], make_config())

        assert outcomes[0].status == "no_action"
        broker.place_buy_order.assert_not_called()

    def test_skips_inactive_instruments(self, engine, broker, make_config):
        engine.seed_initial_positions([Instrument("AAPL", active=False)], make_config())

        broker.place_buy_order.assert_not_called()

    def test_failure_on_one_instrument_does_not_stop_others(self, engine, broker, history_store, make_config):
        def price(symbol):
            if symbol == "BAD":
                raise RuntimeError("no quote")
            return 100.0
        broker.get_market_price.side_effect = price

        outcomes = engine.seed_initial_positions([Instrument("BAD"), Instrument("MSFT")], make_config())

        assert [o.status for o in outcomes] == ["failed", "traded"]
        assert history_store.has_buy("MSFT")
