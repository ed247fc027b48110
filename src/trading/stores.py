"""
File-backed stores for strategy configs, trade history and instruments.

Each store keeps its data in memory and mirrors it to a JSON file so the bot
picks up where it left off after a restart. Pass path=None for a purely
in-memory store. All stores are safe to use from the worker pool.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional, Union

from .errors import ConfigNotFound
from .models import Action, Environment, Instrument, MarketSession, StrategyConfig, TradeRecord

logger = logging.getLogger(__name__)

CONFIG_FILE = "strategy_configs.json"
HISTORY_FILE = "trade_history.json"
INSTRUMENTS_FILE = "instruments.json"


class _JsonFileStore:
    """Load/save helpers shared by the stores."""

    def __init__(self, path: Optional[Union[str, Path]]):
        self.path = Path(path) if path is not None else None
        self._lock = threading.RLock()

    def _read(self) -> list:
        if self.path is None or not self.path.exists():
            return []
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
            logger.debug(f"Loaded {len(data)} entries from {self.path}")
            return data
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not load {self.path}, starting empty: {e}")
            return []

    def _write(self, entries: list):
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, 'w') as f:
            json.dump(entries, f, indent=2)
        tmp_path.replace(self.path)


class ConfigStore(_JsonFileStore):
    """One StrategyConfig per (environment, market session)."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        super().__init__(path)
        self._configs: Dict[tuple, StrategyConfig] = {}
        for entry in self._read():
            config = StrategyConfig.from_dict(entry)
            self._configs[(config.environment, config.market_session)] = config

    def get(self, environment: Environment, session: MarketSession) -> StrategyConfig:
        """
        Get the config for a scope.

        Returns a copy, so callers can modify it and pass it back to save().

        Raises:
            ConfigNotFound: if no config exists for the scope
        """
        with self._lock:
            config = self._configs.get((environment, session))
            if config is None:
                raise ConfigNotFound(environment, session)
            return StrategyConfig.from_dict(config.to_dict())

    def save(self, config: StrategyConfig) -> StrategyConfig:
        """Create or replace the config for its scope."""
        with self._lock:
            self._configs[(config.environment, config.market_session)] = StrategyConfig.from_dict(config.to_dict())
            self._write([c.to_dict() for c in self._configs.values()])
        logger.debug(
            f"Saved config for {config.environment.value}/{config.market_session.value}: {config.to_dict()}"
        )
        return config

    def ensure_defaults(self, environment: Environment, defaults: Dict[str, Dict]) -> int:
        """
        Create configs for sessions that have none yet.

        Args:
            environment: Scope environment
            defaults: Session name -> config fields

        Returns:
            Number of configs created
        """
        created = 0
        with self._lock:
            for session_name, fields in defaults.items():
                session = MarketSession(session_name)
                if (environment, session) in self._configs:
                    continue
                config = StrategyConfig.from_dict({
                    **fields,
                    'environment': environment.value,
                    'market_session': session.value,
                })
                config.validate()
                self.save(config)
                created += 1
        if created:
            logger.info(f"Created {created} default strategy config(s) for {environment.value}")
        return created

    def update_price_change_percentage(self, environment: Environment, session: MarketSession,
                                       percentage: float) -> StrategyConfig:
        """
        Update the threshold strategy's trigger percentage for a scope.

        Raises:
            ValueError: if percentage is outside (0, 100]
            ConfigNotFound: if no config exists for the scope
        """
        if percentage <= 0 or percentage > 100:
            raise ValueError("Invalid percentage value. It should be between 0 and 100.")
        with self._lock:
            config = self.get(environment, session)
            config.price_change_percentage = percentage
            self.save(config)
        logger.info(f"Price change percentage updated to {percentage}% for {environment.value}/{session.value}")
        return config


class HistoryStore(_JsonFileStore):
    """Append-only trade history."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        super().__init__(path)
        self._records: List[TradeRecord] = [TradeRecord.from_dict(entry) for entry in self._read()]

    def append(self, record: TradeRecord):
        with self._lock:
            self._records.append(record)
            self._write([r.to_dict() for r in self._records])

    def last_record_for(self, symbol: str) -> Optional[TradeRecord]:
        """Most recent record for a symbol, or None."""
        with self._lock:
            records = [r for r in self._records if r.symbol == symbol]
        if not records:
            return None
        # Stable on ties: the later append wins
        return max(enumerate(records), key=lambda item: (item[1].timestamp, item[0]))[1]

    def records_for(self, symbol: str) -> List[TradeRecord]:
        with self._lock:
            return [r for r in self._records if r.symbol == symbol]

    def has_buy(self, symbol: str) -> bool:
        return any(r.action == Action.BUY for r in self.records_for(symbol))

    def get_trades(self, symbol: Optional[str] = None, page: int = 0, size: int = 20) -> Dict:
        """
        Page through trade history, newest first.

        Returns:
            Dict with trades (list of dicts), page, size, total
        """
        with self._lock:
            records = [r for r in self._records if symbol is None or r.symbol == symbol]
        records = sorted(records, key=lambda r: r.timestamp, reverse=True)
        start = max(page, 0) * size
        return {
            'trades': [r.to_dict() for r in records[start:start + size]],
            'page': page,
            'size': size,
            'total': len(records),
        }


class InstrumentRegistry(_JsonFileStore):
    """Tracked instruments, keyed by symbol."""

    def __init__(self, path: Optional[Union[str, Path]] = None, symbols: Optional[List[str]] = None):
        super().__init__(path)
        self._instruments: Dict[str, Instrument] = {}
        for entry in self._read():
            instrument = Instrument.from_dict(entry)
            self._instruments[instrument.symbol] = instrument
        # Seed from config on first start
        if not self._instruments and symbols:
            for symbol in symbols:
                self.add(Instrument(symbol=symbol.upper()))

    def add(self, instrument: Instrument) -> Instrument:
        with self._lock:
            self._instruments[instrument.symbol] = instrument
            self._write([i.to_dict() for i in self._instruments.values()])
        logger.info(f"Registered instrument {instrument.symbol} (active={instrument.active})")
        return instrument

    def set_active(self, symbol: str, active: bool) -> Instrument:
        with self._lock:
            if symbol not in self._instruments:
                raise KeyError(f"Unknown instrument: {symbol}")
            current = self._instruments[symbol]
            return self.add(Instrument(symbol=current.symbol, active=active, name=current.name))

    def list_active(self) -> List[Instrument]:
        with self._lock:
            return [i for i in self._instruments.values() if i.active]
