import math

import numpy as np
import pytest

from strategy_lab.indicators import (
    AlignedSeries, IndicatorBank, calculate_atr, calculate_bollinger_bands,
    calculate_choppiness_index, calculate_ema, calculate_macd, calculate_rsi,
    calculate_sma, calculate_stochastic,
)
from strategy_lab.signals import generate_signals


def _ohlc(n, seed=1):
    rng = np.random.default_rng(seed)
    close = 50 + np.cumsum(rng.normal(0, 1, n))
    high = close + rng.uniform(0.1, 1.0, n)
    low = close - rng.uniform(0.1, 1.0, n)
    return high, low, close


@pytest.mark.parametrize("n", [0, 5, 13, 14, 15, 16, 30, 34, 60])
def test_output_length_matches_warm_up(n):
    high, low, close = _ohlc(n)

    cases = [
        (calculate_sma(close, 14), 13),
        (calculate_ema(close, 14), 13),
        (calculate_rsi(close, 14), 14),
        (calculate_bollinger_bands(close, 20, 2.0).middle, 19),
        (calculate_stochastic(high, low, close, 14, 3).k, 13),
        (calculate_stochastic(high, low, close, 14, 3).d, 15),
        (calculate_choppiness_index(high, low, close, 14), 13),
        (calculate_atr(high, low, close, 14), 14),
        (calculate_macd(close, 12, 26, 9).macd, 25),
        (calculate_macd(close, 12, 26, 9).signal, 33),
        (calculate_macd(close, 12, 26, 9).histogram, 33),
    ]
    for series, warm_up in cases:
        assert series.offset == warm_up
        assert len(series) == max(0, n - warm_up)


def test_short_input_returns_empty_series():
    rsi = calculate_rsi(np.array([1.0, 2.0, 3.0]), 14)

    assert len(rsi) == 0
    assert rsi.value_at(0) is None
    assert rsi.value_at(14) is None


def test_aligned_series_lookup_by_candle_index():
    series = AlignedSeries([10.0, 11.0, 12.0], offset=2)

    assert series.end == 5
    assert series.value_at(1) is None
    assert series.value_at(2) == 10.0
    assert series.value_at(4) == 12.0
    assert series.value_at(5) is None
    assert series.candle_index(0) == 2
    assert list(series.items()) == [(2, 10.0), (3, 11.0), (4, 12.0)]

    full = series.to_full(6)
    assert np.isnan(full[:2]).all()
    assert full[2:5].tolist() == [10.0, 11.0, 12.0]
    assert np.isnan(full[5])


def test_sma_values():
    sma = calculate_sma(np.array([1.0, 2.0, 3.0, 4.0, 5.0]), 3)

    assert sma.offset == 2
    assert sma.tolist() == pytest.approx([2.0, 3.0, 4.0])


def test_ema_seeds_with_sma():
    ema = calculate_ema(np.array([1.0, 2.0, 3.0, 4.0, 5.0]), 3)

    # seed mean(1, 2, 3) = 2, multiplier 0.5
    assert ema.tolist() == pytest.approx([2.0, 3.0, 4.0])


def test_rsi_wilder_smoothing():
    rsi = calculate_rsi(np.array([1.0, 2.0, 1.0, 2.0]), 2)

    assert rsi.offset == 2
    assert rsi.tolist() == pytest.approx([50.0, 75.0])


def test_rsi_saturates_at_100_without_losses():
    rising = calculate_rsi(np.arange(1.0, 21.0), 14)
    flat = calculate_rsi(np.full(20, 7.0), 14)

    assert rising.tolist() == [100.0] * 6
    assert flat.tolist() == [100.0] * 6


def test_rsi_stays_within_bounds():
    _, _, close = _ohlc(300, seed=3)
    rsi = calculate_rsi(close, 14)

    assert len(rsi) == 286
    assert np.all(rsi.values >= 0)
    assert np.all(rsi.values <= 100)
    assert not np.isnan(rsi.values).any()


def test_macd_histogram_is_macd_minus_signal():
    _, _, close = _ohlc(80, seed=5)
    macd = calculate_macd(close, 12, 26, 9)

    for i in range(macd.histogram.offset, len(close)):
        expected = macd.macd.value_at(i) - macd.signal.value_at(i)
        assert macd.histogram.value_at(i) == pytest.approx(expected)


def test_macd_is_zero_for_constant_prices():
    macd = calculate_macd(np.full(50, 10.0), 12, 26, 9)

    assert np.allclose(macd.macd.values, 0.0)
    assert np.allclose(macd.histogram.values, 0.0)


def test_bollinger_band_ordering():
    _, _, close = _ohlc(200, seed=9)
    bb = calculate_bollinger_bands(close, 20, 2.0)

    assert np.all(bb.lower.values <= bb.middle.values)
    assert np.all(bb.middle.values <= bb.upper.values)


def test_bollinger_uses_population_std():
    bb = calculate_bollinger_bands(np.array([1.0, 2.0, 3.0]), 3, 2.0)

    band = 2 * math.sqrt(2.0 / 3.0)
    assert bb.middle.tolist() == pytest.approx([2.0])
    assert bb.upper.tolist() == pytest.approx([2.0 + band])
    assert bb.lower.tolist() == pytest.approx([2.0 - band])


def test_stochastic_zero_range_is_50():
    flat = np.full(10, 5.0)
    stoch = calculate_stochastic(flat, flat, flat, 5, 3)

    assert stoch.k.tolist() == [50.0] * 6
    assert stoch.d.tolist() == pytest.approx([50.0] * 4)
    assert stoch.d.offset == 6


def test_stochastic_k_position_in_range():
    high = np.array([10.0, 12.0, 11.0])
    low = np.array([8.0, 9.0, 7.0])
    close = np.array([9.0, 11.0, 10.0])
    stoch = calculate_stochastic(high, low, close, 3, 1)

    # (10 - 7) / (12 - 7)
    assert stoch.k.tolist() == pytest.approx([60.0])


def test_choppiness_flat_market_is_100():
    flat = np.full(20, 3.0)
    chop = calculate_choppiness_index(flat, flat, flat, 14)

    assert chop.tolist() == [100.0] * 7


def test_choppiness_formula():
    high = np.array([2.0, 3.0, 3.5])
    low = np.array([1.0, 2.0, 2.5])
    close = np.array([1.5, 2.5, 3.0])
    chop = calculate_choppiness_index(high, low, close, 3)

    # true ranges of candles 1 and 2: 1.5 and 1.0; window range 3.5 - 1.0
    expected = 100 * math.log10(2.5 / 2.5) / math.log10(3)
    assert chop.offset == 2
    assert chop.tolist() == pytest.approx([expected])


def test_atr_wilder_smoothing():
    high = np.array([11.0, 11.0, 11.0, 12.0])
    low = np.array([9.0, 9.0, 9.0, 8.0])
    close = np.array([10.0, 10.0, 10.0, 10.0])
    atr = calculate_atr(high, low, close, 2)

    assert atr.offset == 2
    assert atr.tolist() == pytest.approx([2.0, 3.0])


def test_indicator_bank_caches_series(random_walk_candles):
    bank = IndicatorBank(random_walk_candles)

    first = bank.rsi(14)
    assert bank.rsi(14) is first
    assert bank.rsi(10) is not first
    assert set(bank.indicators) == {'rsi_14', 'rsi_10'}
    assert bank.length == len(random_walk_candles)


def test_indicators_are_deterministic():
    high, low, close = _ohlc(120, seed=11)

    first = calculate_choppiness_index(high, low, close, 14).values
    second = calculate_choppiness_index(high.copy(), low.copy(), close.copy(), 14).values
    assert np.array_equal(first, second)


def test_signal_generation_fills_only_requested_series(random_walk_candles):
    bank = IndicatorBank(random_walk_candles)
    params = {'useRSI': True, 'smaShortPeriod': 5, 'smaLongPeriod': 20}

    generate_signals(params, random_walk_candles, bank=bank)

    assert set(bank.indicators) == {'rsi_14', 'sma_5', 'sma_20'}
