import os

# Trading environment: "PAPER" (simulated orders) or "LIVE" (real orders)
ENVIRONMENT = os.getenv("TRADER_ENVIRONMENT", "PAPER")

# Log level: "DEBUG", "INFO", "WARNING" or "ERROR"
LOG_LEVEL = os.getenv("TRADER_LOG_LEVEL", "INFO")

# Robinhood credentials
ROBINHOOD_USERNAME = os.getenv("ROBINHOOD_USERNAME", "")
ROBINHOOD_PASSWORD = os.getenv("ROBINHOOD_PASSWORD", "")
ROBINHOOD_MFA_SECRET = os.getenv("ROBINHOOD_MFA_SECRET", "")

# Exchange used for market hours (NYSE)
MARKET_MIC = "XNYS"
MARKET_TIMEZONE = "US/Eastern"

# Where configs, trade history and instruments are kept
DATA_DIR = os.getenv("TRADER_DATA_DIR", "data")

# Instruments registered on first start
TICKERS = ["AAPL", "MSFT"]

# Fallback when a stored frequency is not positive
DEFAULT_FREQUENCY_MS = 60000

# How often the main loop re-checks the market session
SESSION_CHECK_INTERVAL_SECONDS = 60

# Worker pool size, None = number of CPUs
MAX_WORKERS = None

# Strategy configs created for each session when none are stored yet
DEFAULT_STRATEGY_CONFIGS = {
    "PRE_MARKET": {
        "threshold": 0.05,
        "max_rounds": 6,
        "initial_quantity": 1,
        "frequency_ms": 300000,
        "price_change_percentage": 2.0,
    },
    "REGULAR": {
        "threshold": 0.05,
        "max_rounds": 6,
        "initial_quantity": 1,
        "frequency_ms": 60000,
        "price_change_percentage": 2.0,
    },
    "AFTER_MARKET": {
        "threshold": 0.05,
        "max_rounds": 6,
        "initial_quantity": 1,
        "frequency_ms": 300000,
        "price_change_percentage": 2.0,
    },
}
