"""
Grid-Search Optimization Engine
Cartesian product of parameter ranges, one backtest per combination, ranked by score
"""
import asyncio
import inspect
import logging
import math
import threading
import time
from itertools import product
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

import numpy as np

from strategy_lab import (
    DEFAULT_CAPITAL, ESTIMATED_SECONDS_PER_BACKTEST, MIN_OPTIMIZATION_CANDLES,
)
from strategy_lab.backtest import BacktestEngine
from strategy_lab.errors import InsufficientDataError, InvalidParameterRangeError
from strategy_lab.indicator_config import apply_config_override, round_half_up
from strategy_lab.models import (
    BacktestResult, OptimizationConfig, OptimizationMetric, OptimizationProgress,
    OptimizationResult, ParameterRange, Strategy,
)

logger = logging.getLogger(__name__)

# Cap for an infinite profit factor inside the composite score
COMPOSITE_PROFIT_FACTOR_CAP = 10.0
SIGNIFICANT_TRADE_COUNT = 30

ProgressCallback = Callable[[OptimizationProgress], Any]


class CancellationToken:
    """Cooperative cancel flag, polled between combinations"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


# ---------------------------------------------------------------------------
# Parameter space
# ---------------------------------------------------------------------------

def generate_range_values(param_range: ParameterRange) -> List[float]:
    """Values min, min+step, ... up to and including max"""
    if param_range.step <= 0:
        raise InvalidParameterRangeError(f"Step for '{param_range.name}' must be positive")
    if param_range.max < param_range.min:
        raise InvalidParameterRangeError(f"Range for '{param_range.name}' has max < min")

    # Small tolerance so 0.1-style steps still reach an inclusive max
    count = int(math.floor((param_range.max - param_range.min) / param_range.step + 1e-9)) + 1
    raw = param_range.min + param_range.step * np.arange(count)

    if param_range.type == 'integer':
        return [round_half_up(v) for v in raw]
    return [round(float(v), 4) for v in raw]


def generate_parameter_combinations(ranges: Sequence[ParameterRange]) -> List[Dict[str, float]]:
    if not ranges:
        return [{}]
    names = [r.name for r in ranges]
    values = [generate_range_values(r) for r in ranges]
    return [dict(zip(names, combo)) for combo in product(*values)]


def apply_parameters(strategy: Strategy, params: Dict[str, Any]) -> Strategy:
    """Copy the strategy with the combination overlaid.

    Plain keys go into the flat parameter bag; dotted ``kind.field`` keys go
    into the typed indicator config of that kind. The original is untouched.
    """
    parameters = dict(strategy.parameters)
    dotted = {}
    for name, value in params.items():
        if '.' in name:
            dotted[name] = value
        else:
            parameters[name] = value

    updated = strategy.model_copy(update={'parameters': parameters})
    if dotted:
        configs = updated.indicator_configs()
        for name, value in dotted.items():
            configs = apply_config_override(configs, name, value)
        updated = updated.model_copy(update={'indicators': configs})
    return updated


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def composite_score(result: BacktestResult) -> float:
    """Weighted blend of profitability, Sharpe, win rate, profit factor and drawdown"""
    score = 0.0

    # Profitability (40%)
    if result.totalProfit > 0:
        score += (result.totalProfitPercent / 100) * 40

    # Sharpe Ratio (25%)
    score += max(0.0, result.sharpeRatio) * 25

    # Win Rate (15%)
    score += (result.winRate / 100) * 15

    # Profit Factor (10%)
    profit_factor = min(result.profitFactor, COMPOSITE_PROFIT_FACTOR_CAP)
    score += max(0.0, profit_factor - 1) * 10

    # Drawdown penalty (10%)
    score -= abs(result.maxDrawdownPercent / 100) * 10

    # Statistical significance bonus
    if result.totalTrades >= SIGNIFICANT_TRADE_COUNT:
        score += 5

    return score


def calculate_score(result: BacktestResult, metric: OptimizationMetric) -> float:
    if metric == OptimizationMetric.TOTAL_PROFIT:
        return result.totalProfit
    if metric == OptimizationMetric.TOTAL_PROFIT_PERCENT:
        return result.totalProfitPercent
    if metric == OptimizationMetric.SHARPE_RATIO:
        return result.sharpeRatio
    if metric == OptimizationMetric.PROFIT_FACTOR:
        return result.profitFactor
    if metric == OptimizationMetric.WIN_RATE:
        return result.winRate
    if metric == OptimizationMetric.MAX_DRAWDOWN:
        # Less drawdown is better
        return -abs(result.maxDrawdownPercent)
    if metric == OptimizationMetric.COMPOSITE_SCORE:
        return composite_score(result)
    return result.totalProfitPercent


# ---------------------------------------------------------------------------
# Optimizer
# ---------------------------------------------------------------------------

class GridSearchOptimizer:
    """Grid search over one pre-fetched candle series"""

    def __init__(self, candles: Sequence[Any], strategy: Strategy,
                 initial_capital: float = DEFAULT_CAPITAL,
                 metric: OptimizationMetric = OptimizationMetric.COMPOSITE_SCORE):
        self.engine = BacktestEngine(candles)
        self.strategy = strategy
        self.initial_capital = initial_capital
        self.metric = metric

    def evaluate(self, params: Dict[str, Any]) -> OptimizationResult:
        test_strategy = apply_parameters(self.strategy, params)
        result = self.engine.run(test_strategy, self.initial_capital)
        return OptimizationResult(
            parameters=params,
            result=result,
            score=calculate_score(result, self.metric),
        )

    def iterate(self, combinations: List[Dict[str, float]], results: List[OptimizationResult],
                cancel_token: Optional[CancellationToken] = None) -> Iterator[OptimizationProgress]:
        """Evaluate combinations in order, yielding progress after each one.

        Results are appended to ``results``. The last progress yielded has status
        ``completed`` or ``cancelled``; results are sorted by score before it.
        """
        total = len(combinations)
        best: Optional[OptimizationResult] = None

        for i, params in enumerate(combinations):
            if cancel_token is not None and cancel_token.cancelled:
                logger.info(f"🛑 Optimization cancelled after {i}/{total} combinations")
                results.sort(key=lambda r: r.score, reverse=True)
                yield _progress(i, total, {}, best, 'cancelled')
                return

            result = self.evaluate(params)
            results.append(result)
            if best is None or result.score > best.score:
                best = result

            yield _progress(i + 1, total, params, best, 'running')

        results.sort(key=lambda r: r.score, reverse=True)
        yield _progress(total, total, {}, results[0] if results else None, 'completed')

    def optimize(self, ranges: Sequence[ParameterRange],
                 progress_callback: Optional[ProgressCallback] = None,
                 cancel_token: Optional[CancellationToken] = None) -> List[OptimizationResult]:
        """Synchronous grid search"""
        combinations = generate_parameter_combinations(ranges)
        results: List[OptimizationResult] = []
        for progress in self.iterate(combinations, results, cancel_token):
            if progress_callback:
                progress_callback(progress)
        return results


def _progress(current: int, total: int, params: Dict[str, float],
              best: Optional[OptimizationResult], status: str) -> OptimizationProgress:
    return OptimizationProgress(
        current=current,
        total=total,
        percentage=(current / total * 100) if total > 0 else 0.0,
        currentParams=params,
        bestSoFar=best,
        status=status,
    )


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


async def run_grid_search(config: OptimizationConfig, strategy: Strategy, candle_source: Any,
                          progress_callback: Optional[ProgressCallback] = None,
                          cancel_token: Optional[CancellationToken] = None) -> List[OptimizationResult]:
    """Fetch candles once, then run the grid search yielding to the event loop
    between combinations so progress can be rendered and the run cancelled.

    ``candle_source.get_candles`` and ``progress_callback`` may be sync or async.
    """
    combinations = generate_parameter_combinations(config.parameters)
    total = len(combinations)
    logger.info(f"🔍 Starting grid search optimization with {total} combinations")

    candles = await _maybe_await(candle_source.get_candles(config.symbol, config.timeframe, config.dataPoints))
    if not candles or len(candles) < MIN_OPTIMIZATION_CANDLES:
        raise InsufficientDataError('Insufficient historical data for optimization')

    optimizer = GridSearchOptimizer(candles, strategy, config.initialCapital, config.optimizationMetric)
    results: List[OptimizationResult] = []
    start_time = time.time()

    if progress_callback:
        await _maybe_await(progress_callback(_progress(0, total, {}, None, 'running')))

    try:
        for progress in optimizer.iterate(combinations, results, cancel_token):
            if progress_callback:
                await _maybe_await(progress_callback(progress))
            await asyncio.sleep(0)
    except Exception:
        logger.exception("❌ Optimization failed")
        if progress_callback:
            best = max(results, key=lambda r: r.score) if results else None
            await _maybe_await(progress_callback(_progress(len(results), total, {}, best, 'error')))
        raise

    elapsed = time.time() - start_time
    if results:
        logger.info(f"✅ Optimization complete. Best score: {results[0].score:.4f} | "
                    f"{len(results)} combinations in {elapsed:.1f}s")
    return results


# ---------------------------------------------------------------------------
# Result analysis
# ---------------------------------------------------------------------------

def estimate_optimization_time(ranges: Sequence[ParameterRange]) -> Dict[str, int]:
    combinations = len(generate_parameter_combinations(ranges))
    return {
        'combinations': combinations,
        'estimatedSeconds': int(math.ceil(combinations * ESTIMATED_SECONDS_PER_BACKTEST)),
    }


def generate_heatmap_data(results: Sequence[OptimizationResult], param1: str,
                          param2: str) -> List[Dict[str, float]]:
    """(x, y, score) points for a two-parameter heatmap"""
    return [
        {'x': r.parameters[param1], 'y': r.parameters[param2], 'value': r.score}
        for r in results
        if param1 in r.parameters and param2 in r.parameters
    ]


def parameter_statistics(results: Sequence[OptimizationResult], name: str) -> Dict[str, float]:
    """Best / worst (by score), average and median of one parameter's tested values"""
    tested = [r for r in results if name in r.parameters]
    if not tested:
        return {'best': 0.0, 'worst': 0.0, 'average': 0.0, 'median': 0.0}

    values = sorted(r.parameters[name] for r in tested)
    by_score = sorted(tested, key=lambda r: r.score, reverse=True)
    return {
        'best': by_score[0].parameters[name],
        'worst': by_score[-1].parameters[name],
        'average': float(np.mean(values)),
        'median': values[len(values) // 2],
    }
