"""
STRATEGY LAB Backend Server
FastAPI + NumPy; stateless, candles travel with each request
"""
import logging
import time

from fastapi import FastAPI, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from strategy_lab import __version__
from strategy_lab.backtest import run_backtest
from strategy_lab.data import InMemoryCandleSource
from strategy_lab.errors import StrategyLabError
from strategy_lab.indicators import IndicatorBank
from strategy_lab.logging_config import setup_logging
from strategy_lab.models import (
    BacktestRequest, EstimateRequest, IndicatorRequest,
    OptimizationRequest, OptimizationResponse,
)
from strategy_lab.optimizer import estimate_optimization_time, run_grid_search
from strategy_lab.settings import Settings

settings = Settings.from_env()
setup_logging(settings.logLevel, log_file=settings.logFile)
logger = logging.getLogger(__name__)

# Initialize FastAPI
app = FastAPI(title="STRATEGY LAB Backend", version=__version__)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.corsOrigins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _json_response(model: BaseModel) -> Response:
    # Pydantic writes inf/nan (e.g. a loss-free profit factor) as null
    return Response(content=model.model_dump_json(), media_type="application/json")


@app.get("/")
def read_root():
    """Health check"""
    return {
        "status": "online",
        "service": "STRATEGY LAB Backend",
        "version": __version__
    }


@app.post("/backtest")
def backtest(request: BacktestRequest):
    """Run single backtest"""
    try:
        start_time = time.time()
        capital = request.initialCapital if request.initialCapital is not None else settings.defaultCapital
        result = run_backtest(request.strategy, request.candles, capital)
        logger.info(f"⚡ Backtest completed in {time.time() - start_time:.3f}s "
                    f"({len(request.candles)} candles, {result.totalTrades} trades)")
        return _json_response(result)

    except (StrategyLabError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("❌ Backtest failed")
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/optimize")
async def optimize(request: OptimizationRequest):
    """Run grid-search optimization, returning the top results"""
    try:
        start_time = time.time()
        results = await run_grid_search(
            request.config, request.strategy, InMemoryCandleSource(request.candles)
        )
        elapsed = time.time() - start_time

        return _json_response(OptimizationResponse(
            totalCombinations=len(results),
            elapsedSeconds=round(elapsed, 2),
            results=results[:settings.maxResults],
        ))

    except (StrategyLabError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("❌ Optimization failed")
        raise HTTPException(status_code=500, detail=str(e))


@app.post("/optimize/estimate")
def estimate(request: EstimateRequest):
    """Number of combinations and a rough duration"""
    try:
        return estimate_optimization_time(request.parameters)
    except (StrategyLabError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/indicators")
def indicators(request: IndicatorRequest):
    """Aligned indicator values for charting"""
    bank = IndicatorBank(request.candles)
    series = {}
    for config in request.indicators:
        for name, values in bank.series_for(config).items():
            series[name] = {"offset": values.offset, "values": values.tolist()}
    return {
        "success": True,
        "candles": bank.length,
        "series": series
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
