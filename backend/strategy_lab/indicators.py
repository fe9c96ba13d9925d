"""
Technical Indicators
Aligned indicator series over candle arrays, rolling loops compiled with Numba
"""
from typing import Dict, Any, List, Iterator, NamedTuple, Optional, Sequence, Tuple

import numpy as np
from numba import jit


class AlignedSeries:
    """Indicator values that start at a fixed candle index.

    ``offset`` is the warm-up length W: ``values[k]`` belongs to candle
    ``k + W``. Look values up by candle index with ``value_at`` instead of
    re-deriving the offset at every call site.
    """
    __slots__ = ('values', 'offset')

    def __init__(self, values: Sequence[float], offset: int):
        self.values = np.asarray(values, dtype=np.float64)
        self.offset = int(offset)

    @classmethod
    def empty(cls, offset: int) -> 'AlignedSeries':
        return cls(np.empty(0, dtype=np.float64), max(0, offset))

    def __len__(self) -> int:
        return len(self.values)

    def __repr__(self) -> str:
        return f"AlignedSeries(offset={self.offset}, length={len(self.values)})"

    @property
    def end(self) -> int:
        """One past the last candle index that has a value"""
        return self.offset + len(self.values)

    def covers(self, candle_index: int) -> bool:
        return self.offset <= candle_index < self.end

    def value_at(self, candle_index: int) -> Optional[float]:
        if not self.covers(candle_index):
            return None
        return float(self.values[candle_index - self.offset])

    def candle_index(self, position: int) -> int:
        return position + self.offset

    def items(self) -> Iterator[Tuple[int, float]]:
        """Yield (candle_index, value) pairs"""
        for position, value in enumerate(self.values):
            yield position + self.offset, float(value)

    def to_full(self, length: int) -> np.ndarray:
        """NaN-padded array indexed by candle index"""
        full = np.full(length, np.nan)
        stop = min(self.end, length)
        if stop > self.offset:
            full[self.offset:stop] = self.values[:stop - self.offset]
        return full

    def tolist(self) -> List[float]:
        return self.values.tolist()


class MACDSeries(NamedTuple):
    macd: AlignedSeries
    signal: AlignedSeries
    histogram: AlignedSeries


class BollingerSeries(NamedTuple):
    upper: AlignedSeries
    middle: AlignedSeries
    lower: AlignedSeries


class StochasticSeries(NamedTuple):
    k: AlignedSeries
    d: AlignedSeries


def candles_to_arrays(candles: Sequence[Any]) -> Dict[str, np.ndarray]:
    """Convert candles (models or dicts) into column arrays"""
    def column(name):
        return [c[name] if isinstance(c, dict) else getattr(c, name) for c in candles]

    return {
        'time': np.asarray(column('time'), dtype=np.int64),
        'open': np.asarray(column('open'), dtype=np.float64),
        'high': np.asarray(column('high'), dtype=np.float64),
        'low': np.asarray(column('low'), dtype=np.float64),
        'close': np.asarray(column('close'), dtype=np.float64),
        'volume': np.asarray(column('volume'), dtype=np.float64),
    }


def _as_float_array(values) -> np.ndarray:
    return np.ascontiguousarray(values, dtype=np.float64)


class IndicatorBank:
    """Memoized indicator series for one candle set.

    Keys follow ``<indicator>_<params>`` (``rsi_14``, ``macd_12_26_9``) so a
    grid search only recomputes what a parameter change actually touches.
    """

    def __init__(self, candles: Sequence[Any]):
        data = candles if isinstance(candles, dict) else candles_to_arrays(candles)
        self.data = data
        self.time = data['time']
        self.open = data['open']
        self.high = data['high']
        self.low = data['low']
        self.close = data['close']
        self.volume = data['volume']
        self.length = len(self.close)
        self.indicators: Dict[str, Any] = {}

    def _cached(self, key: str, build):
        if key not in self.indicators:
            self.indicators[key] = build()
        return self.indicators[key]

    def sma(self, period: int) -> AlignedSeries:
        return self._cached(f'sma_{period}', lambda: calculate_sma(self.close, period))

    def rsi(self, period: int = 14) -> AlignedSeries:
        return self._cached(f'rsi_{period}', lambda: calculate_rsi(self.close, period))

    def macd(self, fast: int = 12, slow: int = 26, signal: int = 9) -> MACDSeries:
        return self._cached(f'macd_{fast}_{slow}_{signal}',
                            lambda: calculate_macd(self.close, fast, slow, signal))

    def bollinger(self, period: int = 20, std_dev: float = 2.0) -> BollingerSeries:
        return self._cached(f'bb_{period}_{std_dev}',
                            lambda: calculate_bollinger_bands(self.close, period, std_dev))

    def stochastic(self, k_period: int = 14, d_period: int = 3) -> StochasticSeries:
        return self._cached(f'stoch_{k_period}_{d_period}',
                            lambda: calculate_stochastic(self.high, self.low, self.close, k_period, d_period))

    def choppiness(self, period: int = 14) -> AlignedSeries:
        return self._cached(f'chop_{period}',
                            lambda: calculate_choppiness_index(self.high, self.low, self.close, period))

    def atr(self, period: int = 14) -> AlignedSeries:
        return self._cached(f'atr_{period}',
                            lambda: calculate_atr(self.high, self.low, self.close, period))

    def series_for(self, config) -> Dict[str, AlignedSeries]:
        """Named series an indicator config produces (used for signal snapshots)"""
        kind = config.kind
        if kind == 'rsi':
            return {'rsi': self.rsi(config.period)}
        if kind == 'sma':
            return {'sma_short': self.sma(config.shortPeriod),
                    'sma_long': self.sma(config.longPeriod)}
        if kind == 'macd':
            macd = self.macd(config.fastPeriod, config.slowPeriod, config.signalPeriod)
            return {'macd': macd.macd, 'macd_signal': macd.signal, 'macd_histogram': macd.histogram}
        if kind == 'bollinger':
            bb = self.bollinger(config.period, config.stdDev)
            return {'bb_upper': bb.upper, 'bb_middle': bb.middle, 'bb_lower': bb.lower}
        if kind == 'stochastic':
            stoch = self.stochastic(config.kPeriod, config.dPeriod)
            return {'stoch_k': stoch.k, 'stoch_d': stoch.d}
        if kind == 'choppiness':
            return {'choppiness': self.choppiness(config.period)}
        if kind == 'atr':
            return {'atr': self.atr(config.period)}
        return {}


# ==================== INDICATOR FUNCTIONS ====================

@jit(nopython=True)
def _sma_core(values: np.ndarray, period: int) -> np.ndarray:
    """SMA Core (Numba optimized)"""
    n = len(values)
    result = np.empty(n - period + 1)
    for i in range(period - 1, n):
        result[i - period + 1] = np.mean(values[i - period + 1:i + 1])
    return result


def calculate_sma(values: np.ndarray, period: int) -> AlignedSeries:
    """Simple Moving Average, first value at index period-1"""
    values = _as_float_array(values)
    if period < 1 or len(values) < period:
        return AlignedSeries.empty(period - 1)
    return AlignedSeries(_sma_core(values, period), period - 1)


@jit(nopython=True)
def _ema_core(values: np.ndarray, period: int) -> np.ndarray:
    """EMA Core seeded with the SMA of the first `period` values"""
    n = len(values)
    result = np.empty(n - period + 1)
    multiplier = 2.0 / (period + 1)
    result[0] = np.mean(values[:period])
    for i in range(period, n):
        prev = result[i - period]
        result[i - period + 1] = (values[i] - prev) * multiplier + prev
    return result


def calculate_ema(values: np.ndarray, period: int) -> AlignedSeries:
    """Exponential Moving Average, first value at index period-1"""
    values = _as_float_array(values)
    if period < 1 or len(values) < period:
        return AlignedSeries.empty(period - 1)
    return AlignedSeries(_ema_core(values, period), period - 1)


@jit(nopython=True)
def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    # No losses in the window: RSI saturates at 100 (flat windows included)
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


@jit(nopython=True)
def _rsi_core(values: np.ndarray, period: int) -> np.ndarray:
    """RSI Core with Wilder smoothing (Numba optimized)"""
    n = len(values)
    rsi = np.empty(n - period)

    deltas = np.diff(values)
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    avg_gain = np.mean(gains[:period])
    avg_loss = np.mean(losses[:period])
    rsi[0] = _rsi_value(avg_gain, avg_loss)

    for i in range(period + 1, n):
        avg_gain = (avg_gain * (period - 1) + gains[i - 1]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i - 1]) / period
        rsi[i - period] = _rsi_value(avg_gain, avg_loss)

    return rsi


def calculate_rsi(values: np.ndarray, period: int = 14) -> AlignedSeries:
    """Relative Strength Index, first value at index period"""
    values = _as_float_array(values)
    if period < 1 or len(values) < period + 1:
        return AlignedSeries.empty(period)
    return AlignedSeries(_rsi_core(values, period), period)


def calculate_macd(values: np.ndarray, fast: int = 12, slow: int = 26, signal: int = 9) -> MACDSeries:
    """MACD line, signal line (EMA of the MACD line) and histogram.

    The MACD line starts once both EMAs exist (index max(fast, slow)-1); the
    signal line and histogram start signal-1 candles later.
    """
    values = _as_float_array(values)
    start = max(fast, slow) - 1
    signal_offset = start + signal - 1

    if min(fast, slow, signal) < 1 or len(values) <= start:
        return MACDSeries(AlignedSeries.empty(start),
                          AlignedSeries.empty(signal_offset),
                          AlignedSeries.empty(signal_offset))

    ema_fast = _ema_core(values, fast)
    ema_slow = _ema_core(values, slow)
    macd_values = ema_fast[start - (fast - 1):] - ema_slow[start - (slow - 1):]
    macd = AlignedSeries(macd_values, start)

    if len(macd_values) < signal:
        return MACDSeries(macd, AlignedSeries.empty(signal_offset), AlignedSeries.empty(signal_offset))

    signal_values = _ema_core(macd_values, signal)
    histogram = macd_values[signal - 1:] - signal_values

    return MACDSeries(macd,
                      AlignedSeries(signal_values, signal_offset),
                      AlignedSeries(histogram, signal_offset))


@jit(nopython=True)
def _rolling_std_core(values: np.ndarray, period: int) -> np.ndarray:
    """Population standard deviation over a trailing window"""
    n = len(values)
    result = np.empty(n - period + 1)
    for i in range(period - 1, n):
        result[i - period + 1] = np.std(values[i - period + 1:i + 1])
    return result


def calculate_bollinger_bands(values: np.ndarray, period: int = 20, std_dev: float = 2.0) -> BollingerSeries:
    """Bollinger Bands, first value at index period-1"""
    values = _as_float_array(values)
    if period < 1 or len(values) < period:
        empty = AlignedSeries.empty(period - 1)
        return BollingerSeries(empty, empty, empty)

    middle = _sma_core(values, period)
    band = _rolling_std_core(values, period) * std_dev

    return BollingerSeries(AlignedSeries(middle + band, period - 1),
                           AlignedSeries(middle, period - 1),
                           AlignedSeries(middle - band, period - 1))


@jit(nopython=True)
def _stochastic_k_core(high: np.ndarray, low: np.ndarray, close: np.ndarray, k_period: int) -> np.ndarray:
    n = len(close)
    k = np.empty(n - k_period + 1)
    for i in range(k_period - 1, n):
        highest_high = np.max(high[i - k_period + 1:i + 1])
        lowest_low = np.min(low[i - k_period + 1:i + 1])
        if highest_high - lowest_low == 0:
            k[i - k_period + 1] = 50.0
        else:
            k[i - k_period + 1] = 100.0 * (close[i] - lowest_low) / (highest_high - lowest_low)
    return k


def calculate_stochastic(high: np.ndarray, low: np.ndarray, close: np.ndarray,
                         k_period: int = 14, d_period: int = 3) -> StochasticSeries:
    """Stochastic Oscillator: %K from index k_period-1, %D (SMA of %K) d_period-1 later"""
    high, low, close = _as_float_array(high), _as_float_array(low), _as_float_array(close)
    d_offset = k_period + d_period - 2

    if k_period < 1 or d_period < 1 or len(close) < k_period:
        return StochasticSeries(AlignedSeries.empty(k_period - 1), AlignedSeries.empty(d_offset))

    k_values = _stochastic_k_core(high, low, close, k_period)
    if len(k_values) < d_period:
        d_values = np.empty(0)
    else:
        d_values = _sma_core(k_values, d_period)

    return StochasticSeries(AlignedSeries(k_values, k_period - 1), AlignedSeries(d_values, d_offset))


@jit(nopython=True)
def _true_range_core(high: np.ndarray, low: np.ndarray, close: np.ndarray) -> np.ndarray:
    """True range of candles 1..n-1 (tr[j] belongs to candle j+1)"""
    n = len(close)
    tr = np.empty(max(n - 1, 0))
    for i in range(1, n):
        hl = high[i] - low[i]
        hc = abs(high[i] - close[i - 1])
        lc = abs(low[i] - close[i - 1])
        tr[i - 1] = max(hl, hc, lc)
    return tr


@jit(nopython=True)
def _choppiness_core(high: np.ndarray, low: np.ndarray, close: np.ndarray, period: int) -> np.ndarray:
    n = len(close)
    tr = _true_range_core(high, low, close)
    result = np.empty(n - period + 1)
    log_period = np.log10(period)

    for i in range(period - 1, n):
        start = i - period + 1
        highest_high = np.max(high[start:i + 1])
        lowest_low = np.min(low[start:i + 1])
        # True ranges of candles start+1..i, previous close taken inside the window
        tr_sum = np.sum(tr[start:i])
        price_range = highest_high - lowest_low

        if price_range > 0 and tr_sum > 0:
            result[start] = 100.0 * np.log10(tr_sum / price_range) / log_period
        else:
            result[start] = 100.0

    return result


def calculate_choppiness_index(high: np.ndarray, low: np.ndarray, close: np.ndarray,
                               period: int = 14) -> AlignedSeries:
    """Choppiness Index, first value at index period-1; 100 = maximally choppy"""
    high, low, close = _as_float_array(high), _as_float_array(low), _as_float_array(close)
    if period < 2 or len(close) < period:
        return AlignedSeries.empty(period - 1)
    return AlignedSeries(_choppiness_core(high, low, close, period), period - 1)


@jit(nopython=True)
def _atr_core(high: np.ndarray, low: np.ndarray, close: np.ndarray, period: int) -> np.ndarray:
    """ATR Core (Numba optimized)"""
    n = len(close)
    tr = _true_range_core(high, low, close)
    atr = np.empty(n - period)

    # First ATR = average TR of candles 1..period
    atr[0] = np.mean(tr[:period])

    # Wilder smoothing
    for i in range(period + 1, n):
        atr[i - period] = (atr[i - period - 1] * (period - 1) + tr[i - 1]) / period

    return atr


def calculate_atr(high: np.ndarray, low: np.ndarray, close: np.ndarray, period: int = 14) -> AlignedSeries:
    """Average True Range, first value at index period"""
    high, low, close = _as_float_array(high), _as_float_array(low), _as_float_array(close)
    if period < 1 or len(close) < period + 1:
        return AlignedSeries.empty(period)
    return AlignedSeries(_atr_core(high, low, close, period), period)
