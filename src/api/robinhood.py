import threading
import time
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from pytz import timezone

import robin_stocks.robinhood as rh

from ..utils import auth
from ..utils import logger
from ..trading.errors import BrokerApiError
from ..trading.models import ClockSnapshot
from config import ENVIRONMENT, MARKET_MIC, ROBINHOOD_USERNAME, ROBINHOOD_PASSWORD

# Shares bought/sold by simulated orders in PAPER environment
demo_positions = {}
_demo_lock = threading.Lock()


def is_paper():
    return ENVIRONMENT == "PAPER"


# Login to Robinhood, with MFA when a TOTP secret is configured
def login_to_robinhood():
    try:
        mfa_code = auth.get_mfa_code_from_secret()

        if mfa_code:
            logger.debug("Attempting to login to Robinhood with MFA...")
            login_resp = rh.login(ROBINHOOD_USERNAME, ROBINHOOD_PASSWORD, mfa_code=mfa_code)
        else:
            logger.debug("Attempting to login to Robinhood without MFA...")
            login_resp = rh.login(ROBINHOOD_USERNAME, ROBINHOOD_PASSWORD)

        if not login_resp:
            logger.error("Login failed - no response received")
            return None
        if 'access_token' in login_resp and 'expires_in' in login_resp:
            if 'detail' in login_resp:
                logger.debug(f"Login info: {login_resp['detail']}")
            logger.debug("Robinhood login successful.")
            return login_resp
        if 'detail' in login_resp:
            logger.error(f"Login failed - {login_resp['detail']}")
            return None
        logger.error(f"Login failed - unexpected response: {login_resp}")
        return None

    except Exception as e:
        logger.error(f"An error occurred during Robinhood login: {e}")
        return None


# Run a Robinhood function with retries and delay between attempts (to handle rate limits)
def rh_run_with_retries(func, *args, max_retries=3, delay=60, **kwargs):
    for attempt in range(max_retries):
        result = func(*args, **kwargs)
        if result is not None:
            return result
        if attempt < max_retries - 1:  # Don't log on last attempt
            logger.warning(f"Robinhood API call {func.__name__} returned None, retrying in {delay}s (attempt {attempt + 1}/{max_retries})")
            time.sleep(delay)
    return None


# Round money
def round_money(price, decimals=2):
    if price is None:
        return None
    return round(float(price), decimals)


# Round a limit price half-up to cents
def round_limit_price(price):
    return float(Decimal(str(price)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


# Parse a Robinhood ISO timestamp ("2024-01-02T14:30:00Z")
def parse_market_time(value):
    if not value:
        return None
    return datetime.fromisoformat(value.replace('Z', '+00:00'))


def _now_utc():
    return datetime.now(timezone('UTC'))


# Get today's market hours
def get_market_hours():
    resp = rh_run_with_retries(rh.markets.get_market_today_hours, MARKET_MIC)
    if resp is None:
        raise Exception(f"Error getting market hours for {MARKET_MIC}: No response")
    return resp


# Get the market clock: is the regular session open, when it next opens and closes
def get_market_clock():
    today = get_market_hours()
    now = _now_utc()
    opens_at = parse_market_time(today.get('opens_at'))
    closes_at = parse_market_time(today.get('closes_at'))
    trading_day = bool(today.get('is_open')) and opens_at is not None and closes_at is not None

    is_open = trading_day and opens_at <= now < closes_at
    next_open, next_close = opens_at, closes_at
    if not trading_day or now >= opens_at or now >= closes_at:
        upcoming = rh_run_with_retries(rh.markets.get_market_next_open_hours, MARKET_MIC)
        if upcoming is None:
            raise Exception(f"Error getting next market hours for {MARKET_MIC}: No response")
        upcoming_open = parse_market_time(upcoming.get('opens_at'))
        upcoming_close = parse_market_time(upcoming.get('closes_at'))
        if not trading_day or now >= opens_at:
            next_open = upcoming_open
        if not trading_day or now >= closes_at:
            next_close = upcoming_close

    return ClockSnapshot(is_open=is_open, next_open=next_open, next_close=next_close)


# Check if the regular market session is open
def is_market_open():
    today = get_market_hours()
    if not today.get('is_open'):
        return False
    now = _now_utc()
    opens_at = parse_market_time(today.get('opens_at'))
    closes_at = parse_market_time(today.get('closes_at'))
    return opens_at <= now < closes_at


# Check if we are in pre-market or after-hours trading
def is_extended_hours():
    today = get_market_hours()
    if not today.get('is_open'):
        return False
    now = _now_utc()
    opens_at = parse_market_time(today.get('opens_at'))
    closes_at = parse_market_time(today.get('closes_at'))
    extended_opens_at = parse_market_time(today.get('extended_opens_at')) or opens_at
    extended_closes_at = parse_market_time(today.get('extended_closes_at')) or closes_at
    return extended_opens_at <= now < opens_at or closes_at <= now < extended_closes_at


# Get the latest trade price for a stock (extended hours included)
def get_market_price(symbol):
    resp = rh_run_with_retries(rh.stocks.get_latest_price, symbol, includeExtendedHours=True)
    if not resp or resp[0] is None:
        raise Exception(f"Error getting market price for {symbol}: No response")
    return round_money(resp[0], 4)


# Get my buying power and account info
def get_account_info():
    resp = rh_run_with_retries(rh.profiles.load_account_profile)
    if resp is None:
        raise Exception("Error getting profile data: No response")

    resp["buying_power"] = round_money(resp["buying_power"])
    return resp


def get_buying_power():
    return get_account_info()["buying_power"]


# Get portfolio stocks
def get_portfolio_stocks():
    resp = rh_run_with_retries(rh.build_holdings)
    if resp is None:
        raise Exception("Error getting portfolio stocks: No response")
    return resp


# Get the whole number of shares held for a symbol, 0 when there is no position
def get_available_qty(symbol):
    holdings = get_portfolio_stocks()
    quantity = 0
    if symbol in holdings:
        quantity = int(float(holdings[symbol].get('quantity', 0)))
    else:
        logger.warning(f"No position found for symbol: {symbol}")
    if is_paper():
        with _demo_lock:
            quantity += demo_positions.get(symbol, 0)
    return quantity


def _record_demo_fill(symbol, quantity):
    with _demo_lock:
        demo_positions[symbol] = demo_positions.get(symbol, 0) + quantity


# Check an order response, raising BrokerApiError when the order was rejected
def _check_order_response(resp, symbol, side):
    if resp is None:
        raise Exception(f"Error {side}ing {symbol}: No response")
    if 'id' not in resp:
        detail = resp.get('detail') or resp.get('non_field_errors') or resp
        if isinstance(detail, list):
            detail = "; ".join(str(d) for d in detail)
        raise BrokerApiError(f"Failed to place a {side} order for {symbol}: {detail}", symbol=symbol, response=resp)
    return resp


# Place an order: market order in regular hours, limit order at the rounded price in extended hours
def _place_order(side, symbol, quantity):
    extended = not is_market_open() and is_extended_hours()

    if is_paper():
        price = get_market_price(symbol)
        _record_demo_fill(symbol, quantity if side == "buy" else -quantity)
        logger.info(f"Demo > {side} {quantity} {symbol} @ {price}{' (extended hours)' if extended else ''}")
        return {"id": "demo", "state": "demo", "side": side, "quantity": quantity, "price": price}

    if extended:
        limit_price = round_limit_price(get_market_price(symbol))
        logger.info(f"Placing extended hours limit {side} order for {symbol} at rounded price {limit_price}")
        order_func = rh.orders.order_buy_limit if side == "buy" else rh.orders.order_sell_limit
        resp = rh_run_with_retries(order_func, symbol, quantity, limit_price, timeInForce="gfd",
                                   extendedHours=True, market_hours="extended_hours")
    else:
        logger.info(f"Placing market {side} order for {symbol}")
        order_func = rh.orders.order_buy_market if side == "buy" else rh.orders.order_sell_market
        resp = rh_run_with_retries(order_func, symbol, quantity, timeInForce="gfd")

    return _check_order_response(resp, symbol, side)


# Buy a stock by symbol and quantity
def place_buy_order(symbol, quantity):
    return _place_order("buy", symbol, quantity)


# Sell a stock by symbol and quantity
def place_sell_order(symbol, quantity):
    return _place_order("sell", symbol, quantity)
