"""
Backtest Engine
Signals -> sequential long-only trades -> performance statistics
"""
import logging
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np

from strategy_lab import DEFAULT_CAPITAL, POSITION_SIZE_FRACTION, SHARPE_ANNUALIZATION
from strategy_lab.indicators import IndicatorBank
from strategy_lab.models import BacktestResult, Signal, Strategy, Trade
from strategy_lab.signals import generate_signals

logger = logging.getLogger(__name__)


def execute_trades(signals: Sequence[Signal], initial_capital: float) -> List[Trade]:
    """Walk the signals with at most one open LONG position.

    FLAT + BUY/GOLDEN_CROSS opens a trade sized at 95% of the running balance;
    LONG + SELL/DEATH_CROSS closes it. Signals in the wrong state are ignored.
    A trade still open after the last signal is closed at that signal's price.
    """
    trades: List[Trade] = []
    balance = initial_capital
    open_trade: Optional[Trade] = None

    for signal in signals:
        if open_trade is None and signal.type.opens_long:
            open_trade = Trade(
                entryTime=signal.time,
                entryPrice=signal.price,
                quantity=(balance * POSITION_SIZE_FRACTION) / signal.price,
                entrySignal=signal,
            )
        elif open_trade is not None and signal.type.closes_long:
            balance += open_trade.close(signal.time, signal.price, signal=signal)
            trades.append(open_trade)
            open_trade = None

    if open_trade is not None:
        last = signals[-1]
        open_trade.close(last.time, last.price, reason='End of Data')
        trades.append(open_trade)

    return trades


def _empty_result(initial_capital: float, trades: List[Trade]) -> BacktestResult:
    return BacktestResult(
        trades=trades,
        totalTrades=0, winningTrades=0, losingTrades=0, winRate=0.0,
        totalProfit=0.0, totalProfitPercent=0.0,
        averageProfit=0.0, averageProfitPercent=0.0,
        averageWin=0.0, averageLoss=0.0, largestWin=0.0, largestLoss=0.0,
        maxDrawdown=0.0, maxDrawdownPercent=0.0,
        profitFactor=0.0, sharpeRatio=0.0,
        startBalance=initial_capital, endBalance=initial_capital, roi=0.0,
    )


def compute_metrics(trades: Sequence[Trade], initial_capital: float) -> BacktestResult:
    """Calculate statistics over the closed trades"""
    trades = list(trades)
    closed = [t for t in trades if not t.isOpen]
    if not closed:
        return _empty_result(initial_capital, trades)

    profits = np.array([t.profit for t in closed], dtype=np.float64)
    returns = np.array([t.profitPercent for t in closed], dtype=np.float64) / 100

    total_trades = len(closed)
    wins = profits[profits > 0]
    losses = profits[profits < 0]
    total_profit = float(np.sum(profits))
    total_profit_percent = total_profit / initial_capital * 100

    # Drawdown over the realized balance after each trade
    balance = initial_capital + np.cumsum(profits)
    peak = np.maximum(initial_capital, np.maximum.accumulate(balance))
    max_drawdown = float(np.max(peak - balance))

    gross_profit = float(np.sum(wins))
    gross_loss = abs(float(np.sum(losses)))
    if gross_loss == 0:
        profit_factor = float('inf') if gross_profit > 0 else 0.0
    else:
        profit_factor = gross_profit / gross_loss

    # Per-trade returns annualized as if one trade were one trading day
    std_return = float(np.std(returns))
    if std_return == 0:
        sharpe_ratio = 0.0
    else:
        sharpe_ratio = float(np.mean(returns)) / std_return * np.sqrt(SHARPE_ANNUALIZATION)

    return BacktestResult(
        trades=trades,
        totalTrades=total_trades,
        winningTrades=int(len(wins)),
        losingTrades=int(len(losses)),
        winRate=len(wins) / total_trades * 100,
        totalProfit=total_profit,
        totalProfitPercent=total_profit_percent,
        averageProfit=total_profit / total_trades,
        averageProfitPercent=float(np.mean(returns)) * 100,
        averageWin=float(np.mean(wins)) if len(wins) > 0 else 0.0,
        averageLoss=float(np.mean(losses)) if len(losses) > 0 else 0.0,
        largestWin=float(np.max(wins)) if len(wins) > 0 else 0.0,
        largestLoss=float(np.min(losses)) if len(losses) > 0 else 0.0,
        maxDrawdown=max_drawdown,
        maxDrawdownPercent=max_drawdown / initial_capital * 100,
        profitFactor=profit_factor,
        sharpeRatio=float(sharpe_ratio),
        startBalance=initial_capital,
        endBalance=initial_capital + total_profit,
        roi=total_profit_percent,
    )


def run_backtest(strategy: Union[Strategy, Dict[str, Any]], candles: Sequence[Any],
                 initial_capital: float = DEFAULT_CAPITAL,
                 bank: Optional[IndicatorBank] = None) -> BacktestResult:
    """Full chain: indicators -> signals -> trades -> metrics. Keeps no state."""
    signals = generate_signals(strategy, candles, bank=bank)
    trades = execute_trades(signals, initial_capital)
    result = compute_metrics(trades, initial_capital)
    result.signals = signals
    return result


class BacktestEngine:
    """Runs many strategies against one candle set, sharing its indicator bank"""

    def __init__(self, candles: Sequence[Any]):
        self.candles = candles
        self.indicator_bank = IndicatorBank(candles)
        self.length = self.indicator_bank.length

    def run(self, strategy: Union[Strategy, Dict[str, Any]],
            initial_capital: float = DEFAULT_CAPITAL) -> BacktestResult:
        result = run_backtest(strategy, self.candles, initial_capital, bank=self.indicator_bank)
        logger.debug(f"Backtest: {result.totalTrades} trades, profit {result.totalProfit:.2f}")
        return result
