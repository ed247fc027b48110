import logging
import threading
from datetime import datetime
from config import LOG_LEVEL

LOG_LEVELS = {"DEBUG": 1, "INFO": 2, "WARNING": 3, "ERROR": 4}
LEVEL_COLOR_CODES = {
    "DEBUG": "\033[94m",
    "INFO": "\033[92m",
    "WARNING": "\033[93m",
    "ERROR": "\033[91m"
}
TIMESTAMP_COLOR_CODE = "\033[96m"
THREAD_COLOR_CODE = "\033[90m"
RESET_COLOR_CODE = "\033[0m"

_print_lock = threading.Lock()


# Print log message
def log(level, msg, thread_name=None):
    if LOG_LEVELS.get(level, 2) < LOG_LEVELS.get(LOG_LEVEL, 2):
        return
    timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
    level_space = " " * (8 - len(level))
    thread_name = thread_name or threading.current_thread().name
    # Worker threads print concurrently
    with _print_lock:
        print(
            f"{TIMESTAMP_COLOR_CODE}[{timestamp}] {LEVEL_COLOR_CODES[level]}[{level}]{RESET_COLOR_CODE}{level_space}"
            f"{THREAD_COLOR_CODE}({thread_name}){RESET_COLOR_CODE} {msg}"
        )


# Print debug log message
def debug(msg):
    log("DEBUG", msg)


# Print info log message
def info(msg):
    log("INFO", msg)


# Print warning log message
def warning(msg):
    log("WARNING", msg)


# Print error log message
def error(msg):
    log("ERROR", msg)


# ============================================================================
# Bridge: Route Python's standard logging module through the custom logger
# ============================================================================
# Trading modules use logging.getLogger(__name__); the scheduler and the
# worker pool log from their own threads, so the record's thread name is kept.

class _BridgeHandler(logging.Handler):
    """Routes standard logging records through the custom log() function."""
    def emit(self, record):
        level = record.levelname
        if level == "CRITICAL":
            level = "ERROR"
        msg = record.getMessage()
        if record.exc_info:
            msg = f"{msg}\n{logging.Formatter().formatException(record.exc_info)}"
        log(level, msg, thread_name=record.threadName)


_level_map = {"DEBUG": logging.DEBUG, "INFO": logging.INFO, "WARNING": logging.WARNING, "ERROR": logging.ERROR}
_std_level = _level_map.get(LOG_LEVEL, logging.INFO)

# Configure the root logger so all getLogger(__name__) loggers inherit this
_bridge = _BridgeHandler()
_bridge.setLevel(_std_level)
logging.root.addHandler(_bridge)
logging.root.setLevel(_std_level)
