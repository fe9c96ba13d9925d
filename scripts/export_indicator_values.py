#!/usr/bin/env python3
"""
Prints RSI / MACD / Choppiness values for the last bars of a CSV file, for
comparison against exchange or charting-platform values.
Usage: python scripts/export_indicator_values.py BTCUSDT_1h.csv [bars]
"""
import sys

import numpy as np
import pandas as pd

from strategy_lab import CHOPPINESS_TRENDING_THRESHOLD
from strategy_lab.data import dataframe_to_candles
from strategy_lab.indicators import IndicatorBank


def _fmt(value):
    return f"{value:11.4f}" if value is not None else f"{'-':>11}"


def main():
    csv_path = sys.argv[1] if len(sys.argv) > 1 else "BTCUSDT_1h.csv"
    bars = int(sys.argv[2]) if len(sys.argv) > 2 else 20

    candles = dataframe_to_candles(pd.read_csv(csv_path))
    bank = IndicatorBank(candles)
    rsi = bank.rsi(14)
    macd = bank.macd(12, 26, 9)
    chop = bank.choppiness(14)

    print(f"=== {csv_path}: last {bars} of {bank.length} bars ===\n")
    print("time (UTC)        |  close      | RSI(14)     | MACD        | Signal      | Hist        | CHOP(14)")
    print("-" * 104)

    for i in range(max(0, bank.length - bars), bank.length):
        ts = pd.Timestamp(int(bank.time[i]), unit="ms").strftime("%Y-%m-%d %H:%M")
        cross = ""
        prev_hist, hist = macd.histogram.value_at(i - 1), macd.histogram.value_at(i)
        if prev_hist is not None and hist is not None and prev_hist <= 0 < hist:
            cross = " <-- MACD CROSS ABOVE"
        print(f"{ts} | {bank.close[i]:11.4f} | {_fmt(rsi.value_at(i))} | {_fmt(macd.macd.value_at(i))} | "
              f"{_fmt(macd.signal.value_at(i))} | {_fmt(hist)} | {_fmt(chop.value_at(i))}{cross}")

    last_chop = chop.value_at(bank.length - 1)
    if last_chop is not None and not np.isnan(last_chop):
        state = "trending" if last_chop < CHOPPINESS_TRENDING_THRESHOLD else "choppy"
        print(f"\nMarket state on the last bar: {state} (CHOP {last_chop:.2f})")


if __name__ == "__main__":
    main()
