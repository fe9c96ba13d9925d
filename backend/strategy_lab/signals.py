"""
Signal Handlers for the Backtest Engine
Each handler takes (indicator_bank, config) and returns crossing events as
(candle_index, signal_type, reason) tuples.
"""
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from strategy_lab.indicator_config import configs_from_parameters
from strategy_lab.indicators import AlignedSeries, IndicatorBank
from strategy_lab.models import Signal, SignalType, Strategy

logger = logging.getLogger(__name__)

SignalEvent = Tuple[int, SignalType, str]


def crossed_above(prev: float, curr: float, level: float) -> bool:
    """prev at or below level, curr strictly above"""
    return prev <= level < curr


def crossed_below(prev: float, curr: float, level: float) -> bool:
    """prev at or above level, curr strictly below"""
    return prev >= level > curr


def _crossing_range(*series: AlignedSeries) -> range:
    """Candle indices i where every series has a value at both i-1 and i"""
    start = max(s.offset for s in series) + 1
    stop = min(s.end for s in series)
    return range(start, max(start, stop))


# ---------------------------------------------------------------------------
# Bollinger Bands
# ---------------------------------------------------------------------------

def bollinger_signals(bank: IndicatorBank, config) -> List[SignalEvent]:
    bb = bank.bollinger(config.period, config.stdDev)
    close = bank.close
    events = []
    for i in _crossing_range(bb.upper):
        prev_upper = close[i - 1] - bb.upper.value_at(i - 1)
        curr_upper = close[i] - bb.upper.value_at(i)
        prev_lower = close[i - 1] - bb.lower.value_at(i - 1)
        curr_lower = close[i] - bb.lower.value_at(i)

        if crossed_above(prev_upper, curr_upper, 0):
            events.append((i, SignalType.BUY, 'BB Upper Band Breakout'))
        if crossed_below(prev_lower, curr_lower, 0):
            events.append((i, SignalType.SELL, 'BB Lower Band Breakout'))
        # Mean reversion back inside the bands
        if crossed_above(prev_lower, curr_lower, 0):
            events.append((i, SignalType.BUY, 'BB Lower Band Bounce'))
        if crossed_below(prev_upper, curr_upper, 0):
            events.append((i, SignalType.SELL, 'BB Upper Band Bounce'))
    return events


# ---------------------------------------------------------------------------
# RSI
# ---------------------------------------------------------------------------

def rsi_signals(bank: IndicatorBank, config) -> List[SignalEvent]:
    rsi = bank.rsi(config.period)
    events = []
    for i in _crossing_range(rsi):
        prev, curr = rsi.value_at(i - 1), rsi.value_at(i)
        if crossed_below(prev, curr, config.oversold):
            events.append((i, SignalType.BUY, f'RSI oversold ({curr:.2f})'))
        if crossed_above(prev, curr, config.overbought):
            events.append((i, SignalType.SELL, f'RSI overbought ({curr:.2f})'))
    return events


# ---------------------------------------------------------------------------
# SMA crossover
# ---------------------------------------------------------------------------

def sma_cross_signals(bank: IndicatorBank, config) -> List[SignalEvent]:
    short_sma = bank.sma(config.shortPeriod)
    long_sma = bank.sma(config.longPeriod)
    events = []
    for i in _crossing_range(short_sma, long_sma):
        prev = short_sma.value_at(i - 1) - long_sma.value_at(i - 1)
        curr = short_sma.value_at(i) - long_sma.value_at(i)
        if crossed_above(prev, curr, 0):
            events.append((i, SignalType.GOLDEN_CROSS,
                           f'SMA{config.shortPeriod} crossed above SMA{config.longPeriod}'))
        if crossed_below(prev, curr, 0):
            events.append((i, SignalType.DEATH_CROSS,
                           f'SMA{config.shortPeriod} crossed below SMA{config.longPeriod}'))
    return events


# ---------------------------------------------------------------------------
# MACD
# ---------------------------------------------------------------------------

def macd_signals(bank: IndicatorBank, config) -> List[SignalEvent]:
    histogram = bank.macd(config.fastPeriod, config.slowPeriod, config.signalPeriod).histogram
    events = []
    for i in _crossing_range(histogram):
        prev, curr = histogram.value_at(i - 1), histogram.value_at(i)
        if crossed_above(prev, curr, 0):
            events.append((i, SignalType.BUY, f'MACD bullish crossover ({curr:.4f})'))
        if crossed_below(prev, curr, 0):
            events.append((i, SignalType.SELL, f'MACD bearish crossover ({curr:.4f})'))
    return events


# ---------------------------------------------------------------------------
# Stochastic
# ---------------------------------------------------------------------------

def stochastic_signals(bank: IndicatorBank, config) -> List[SignalEvent]:
    stoch = bank.stochastic(config.kPeriod, config.dPeriod)
    events = []
    for i in _crossing_range(stoch.k, stoch.d):
        prev_k, curr_k = stoch.k.value_at(i - 1), stoch.k.value_at(i)
        prev_d, curr_d = stoch.d.value_at(i - 1), stoch.d.value_at(i)

        # %K / %D crossovers only count near the extreme zones
        if crossed_above(prev_k - prev_d, curr_k - curr_d, 0) and curr_k < config.oversold + 10:
            events.append((i, SignalType.BUY,
                           f'Stochastic bullish crossover (%K: {curr_k:.2f}, %D: {curr_d:.2f})'))
        if crossed_below(prev_k - prev_d, curr_k - curr_d, 0) and curr_k > config.overbought - 10:
            events.append((i, SignalType.SELL,
                           f'Stochastic bearish crossover (%K: {curr_k:.2f}, %D: {curr_d:.2f})'))
        if crossed_above(prev_k, curr_k, config.oversold):
            events.append((i, SignalType.BUY, f'Stochastic oversold bounce (%K: {curr_k:.2f})'))
        if crossed_below(prev_k, curr_k, config.overbought):
            events.append((i, SignalType.SELL, f'Stochastic overbought reversal (%K: {curr_k:.2f})'))
    return events


# ---------------------------------------------------------------------------
# SIGNAL_HANDLERS dispatch dict (choppiness and ATR emit nothing)
# ---------------------------------------------------------------------------

SIGNAL_HANDLERS: Dict[str, Callable[[IndicatorBank, Any], List[SignalEvent]]] = {
    'bollinger': bollinger_signals,
    'rsi': rsi_signals,
    'sma': sma_cross_signals,
    'macd': macd_signals,
    'stochastic': stochastic_signals,
}


def _passes_choppiness(choppiness: Optional[AlignedSeries], threshold: float, candle_index: int) -> bool:
    if choppiness is None:
        return True
    value = choppiness.value_at(candle_index)
    # Undefined during warm-up: not known to be trending
    return value is not None and value < threshold


def _snapshot(series: Dict[str, AlignedSeries], candle_index: int) -> Dict[str, float]:
    values = {}
    for name, s in series.items():
        value = s.value_at(candle_index)
        if value is not None:
            values[name] = value
    return values


def generate_signals(strategy: Union[Strategy, Dict[str, Any]], candles: Sequence[Any],
                     bank: Optional[IndicatorBank] = None) -> List[Signal]:
    """Scan every enabled indicator family for crossings.

    ``strategy`` may be a Strategy or a raw parameter bag. Pass ``bank`` to
    reuse indicator series already computed for the same candles. Signals are
    stably sorted by time; several indicators firing on one candle each keep
    their own signal.
    """
    if isinstance(strategy, Strategy):
        configs = strategy.indicator_configs()
    else:
        configs = configs_from_parameters(strategy)

    if bank is None:
        bank = IndicatorBank(candles)

    chop_config = next((c for c in configs if c.kind == 'choppiness'), None)
    choppiness = bank.choppiness(chop_config.period) if chop_config else None
    threshold = chop_config.threshold if chop_config else 0.0

    snapshot_series: Dict[str, AlignedSeries] = {}
    for config in configs:
        snapshot_series.update(bank.series_for(config))

    signals = []
    suppressed = 0
    for config in configs:
        handler = SIGNAL_HANDLERS.get(config.kind)
        if handler is None:
            continue
        for candle_index, signal_type, reason in handler(bank, config):
            if not _passes_choppiness(choppiness, threshold, candle_index):
                suppressed += 1
                continue
            signals.append(Signal(
                time=int(bank.time[candle_index]),
                type=signal_type,
                price=float(bank.close[candle_index]),
                reason=reason,
                indicators=_snapshot(snapshot_series, candle_index),
            ))

    signals.sort(key=lambda s: s.time)

    if suppressed:
        logger.debug(f"Choppiness filter suppressed {suppressed} signals")
    return signals
