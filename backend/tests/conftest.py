import numpy as np
import pytest

from strategy_lab.models import Candle

START_TIME = 1_700_000_000_000
ONE_MINUTE = 60_000


def _build_candles(closes, start=START_TIME, step=ONE_MINUTE):
    candles = []
    prev = float(closes[0])
    for i, close in enumerate(closes):
        close = float(close)
        candles.append(Candle(
            time=start + i * step,
            open=prev,
            high=max(prev, close) * 1.005,
            low=min(prev, close) * 0.995,
            close=close,
            volume=100.0,
        ))
        prev = close
    return candles


@pytest.fixture
def candle_factory():
    """Build candles from a close series; each open is the previous close."""
    return _build_candles


@pytest.fixture
def random_walk_candles():
    rng = np.random.default_rng(7)
    closes = 100 + np.cumsum(rng.normal(0, 1.5, 400))
    return _build_candles(np.maximum(closes, 5.0))


@pytest.fixture
def rsi_round_trip_candles():
    """Rising, then falling far enough for RSI(14) < 30, then rising again."""
    closes = [100 + i for i in range(15)]
    closes += [114 - k for k in range(1, 21)]
    closes += [94 + k for k in range(1, 21)]
    return _build_candles(closes)
