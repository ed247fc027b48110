import sys
import time
from pathlib import Path

from config import *
from src.api import robinhood
from src.utils import logger
from src.utils.event_bus import get_event_bus
from src.trading import (
    ConcurrencyDispatcher,
    ConfigNotFound,
    ConfigStore,
    Environment,
    HistoryStore,
    InstrumentRegistry,
    MarketSession,
    MarketSessionTracker,
    ScheduleManager,
    StrategyEngine,
)
from src.trading.stores import CONFIG_FILE, HISTORY_FILE, INSTRUMENTS_FILE


# Build the stores, engine, dispatcher and scheduler
def build_components(environment):
    data_dir = Path(DATA_DIR)
    config_store = ConfigStore(data_dir / CONFIG_FILE)
    config_store.ensure_defaults(environment, DEFAULT_STRATEGY_CONFIGS)
    history_store = HistoryStore(data_dir / HISTORY_FILE)
    registry = InstrumentRegistry(data_dir / INSTRUMENTS_FILE, symbols=TICKERS)

    session_tracker = MarketSessionTracker(robinhood, market_timezone=MARKET_TIMEZONE)
    engine = StrategyEngine(robinhood, history_store, position_listener=log_position)
    dispatcher = ConcurrencyDispatcher(engine, max_workers=MAX_WORKERS)
    scheduler = ScheduleManager(
        robinhood,
        config_store,
        registry,
        dispatcher,
        session_tracker,
        environment,
        default_frequency_ms=DEFAULT_FREQUENCY_MS,
    )
    return {
        "config_store": config_store,
        "history_store": history_store,
        "registry": registry,
        "session_tracker": session_tracker,
        "engine": engine,
        "dispatcher": dispatcher,
        "scheduler": scheduler,
    }


# Log the position held after an order went through
def log_position(instrument):
    quantity = robinhood.get_available_qty(instrument.symbol)
    logger.info(f"{instrument.symbol} > Position now {quantity} share(s)")
    get_event_bus().update_status(**{f"position_{instrument.symbol}": quantity})


# Place the starter buy for instruments that were never bought
def seed_positions(components, environment):
    session_tracker = components["session_tracker"]
    try:
        session = session_tracker.current_session()
    except Exception as e:
        logger.warning(f"Could not determine market session for initial buys, assuming REGULAR: {e}")
        session = MarketSession.REGULAR

    try:
        config = components["config_store"].get(environment, session)
    except ConfigNotFound as e:
        logger.error(f"Skipping initial buys: {e}")
        return []

    outcomes = components["engine"].seed_initial_positions(components["registry"].list_active(), config, session)
    seeded = [o.symbol for o in outcomes if o.traded]
    logger.info(f"Initial buys: {'None' if len(seeded) == 0 else ', '.join(seeded)}")
    return outcomes


# Run the scheduler and keep the Robinhood session alive
def main():
    environment = Environment(ENVIRONMENT)
    robinhood_token_expiry = 0
    components = None

    try:
        while True:
            try:
                # Refresh Robinhood token 5 minutes before expiry
                if time.time() >= robinhood_token_expiry - 300:
                    logger.info("Login to Robinhood...")
                    login_resp = robinhood.login_to_robinhood()
                    if not login_resp or 'expires_in' not in login_resp:
                        raise Exception("Failed to login to Robinhood")
                    robinhood_token_expiry = time.time() + login_resp['expires_in']
                    logger.info(f"Successfully logged in. Token expires in {login_resp['expires_in']} seconds")

                if components is None:
                    logger.info(f"Starting trader in {environment.value} environment...")
                    components = build_components(environment)
                    get_event_bus().update_status(environment=environment.value)
                    seed_positions(components, environment)
                    components["scheduler"].start()
                else:
                    components["scheduler"].on_session_change()

                wait_seconds = SESSION_CHECK_INTERVAL_SECONDS
            except Exception as e:
                wait_seconds = 60
                logger.error(f"Trader error: {e}")

            time.sleep(wait_seconds)
    except KeyboardInterrupt:
        logger.warning("Stopping the trader...")
    finally:
        if components is not None:
            components["scheduler"].stop()
            components["dispatcher"].shutdown(wait=True)


# Run the main function
if __name__ == '__main__':
    confirm = input(f"Are you sure you want to run the trader in {ENVIRONMENT} environment? (yes/no): ")
    if confirm.lower() != "yes":
        logger.warning("Exiting the trader...")
        sys.exit(0)
    main()
