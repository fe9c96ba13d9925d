"""
Candle Sources
Loading OHLCV candles from DataFrames / CSV files and serving them to the optimizer
"""
import logging
from typing import List, Sequence

import numpy as np
import pandas as pd

from strategy_lab.models import Candle

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ['time', 'open', 'high', 'low', 'close', 'volume']

# Numeric timestamps below this are epoch seconds, not milliseconds
_SECONDS_CUTOFF = 10 ** 11


def _time_to_millis(column: pd.Series) -> pd.Series:
    if not pd.api.types.is_numeric_dtype(column):
        parsed = pd.to_datetime(column, utc=True)
        return (parsed - pd.Timestamp(0, tz='UTC')) // pd.Timedelta(milliseconds=1)

    millis = column.astype(np.int64)
    if len(millis) and millis.abs().max() < _SECONDS_CUTOFF:
        millis = millis * 1000
    return millis


def dataframe_to_candles(df: pd.DataFrame) -> List[Candle]:
    """Parse a DataFrame into candles (column names are case-insensitive)"""
    df = df.copy()
    df.columns = df.columns.str.lower().str.strip()
    for alias in ('datetime', 'timestamp', 'date'):
        if alias in df.columns and 'time' not in df.columns:
            df.rename(columns={alias: 'time'}, inplace=True)

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Candle data must contain: {REQUIRED_COLUMNS} (missing: {missing}, found: {list(df.columns)})")

    times = _time_to_millis(df['time']).to_numpy(dtype=np.int64)
    columns = [df[c].to_numpy(dtype=np.float64) for c in ('open', 'high', 'low', 'close', 'volume')]

    return [
        Candle(time=int(t), open=float(o), high=float(h), low=float(l), close=float(c), volume=float(v))
        for t, o, h, l, c, v in zip(times, *columns)
    ]


def candles_to_dataframe(candles: Sequence[Candle]) -> pd.DataFrame:
    return pd.DataFrame([c.model_dump() for c in candles], columns=REQUIRED_COLUMNS)


class InMemoryCandleSource:
    """Serves a fixed candle list, newest ``limit`` candles first-to-last"""

    def __init__(self, candles: Sequence[Candle]):
        self.candles = list(candles)

    def get_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        if limit and limit > 0:
            return self.candles[-limit:]
        return list(self.candles)


class CsvCandleSource:
    """Reads candles for any symbol from one CSV file"""

    def __init__(self, path: str):
        self.path = path

    def get_candles(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        logger.info(f"📂 Loading candles from {self.path}...")
        candles = dataframe_to_candles(pd.read_csv(self.path))
        logger.info(f"✅ Loaded {len(candles)} candles")
        if limit and limit > 0:
            return candles[-limit:]
        return candles
