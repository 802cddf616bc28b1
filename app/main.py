"""
FastAPI Application - Crypto Price Cache API

Serves cached crypto prices, metadata, history and FX rates to clients at
request rates the upstream providers could not sustain directly.

Upstream Providers:
    - CoinGecko (canonical ids, prices, history)
    - CoinMarketCap (optional, needs CMC_API_KEY)
    - ECB (FX reference rates)

Features:
    - TTL caches with background sweeps
    - Coalesced upstream fetches (one fetch per key under concurrent misses)
    - Persisted coin metadata and CMC -> CoinGecko mapping
    - History served from the prewarmed cache only

Usage:
    uvicorn app.main:app --reload --host 0.0.0.0 --port 8080

Docs:
    - Swagger: http://localhost:8080/docs
    - ReDoc: http://localhost:8080/redoc
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.config import Settings, settings, validate_configuration
from core.errors import (
    ConfigurationError,
    NotAvailableError,
    PersistenceError,
    PriceCacheError,
    UpstreamError,
)
from core.logging import logger
from core.schemas import CoinMetaResponse, CoinsResponse, HistoryResponse, LatestPricesResponse, RatesResponse
from services.coalescer import Coalescer
from services.fx_service import FXService
from services.history import SUPPORTED_DAYS, is_supported_days
from services.price_service import PriceService
from services.scheduler import BackgroundScheduler

SERVICE_NAME = "price-cache-backend"

ERROR_STATUS = {
    NotAvailableError: 503,
    ConfigurationError: 503,
    UpstreamError: 502,
    PersistenceError: 500,
}


def _split_ids(ids: Optional[str]):
    ids = (ids or "").strip()
    return ids.split(",") if ids else []


# ============================================
# Routes
# ============================================

router = APIRouter()


@router.get("/", tags=["System"])
async def root():
    """API information."""
    return {
        "name": "Crypto Price Cache API",
        "version": "1.0.0",
        "status": "operational",
        "docs": "/docs",
    }


@router.get("/health", tags=["System"])
async def health_check(request: Request):
    """Health check with background job status."""
    scheduler: Optional[BackgroundScheduler] = getattr(request.app.state, "scheduler", None)
    jobs = {}
    if scheduler is not None:
        jobs = {name: job.running for name, job in scheduler.jobs.items()}
    return {"status": "healthy", "service": SERVICE_NAME, "jobs": jobs}


@router.get("/coins", response_model=CoinsResponse, tags=["Coins"])
async def get_coins(request: Request):
    """Top coins with current prices (cached 2h)."""
    logger.info("Fetching coins snapshot")
    return await request.app.state.price_service.get_snapshot()


@router.get("/coins/meta", response_model=CoinMetaResponse, tags=["Coins"])
async def get_coin_meta(request: Request):
    """CoinGecko coin metadata without prices (persisted, refreshed weekly)."""
    logger.info("Fetching coin metadata")
    return await request.app.state.price_service.get_coin_meta()


@router.get("/cmc/coins/meta", response_model=CoinMetaResponse, tags=["Coins"])
async def get_cmc_coin_meta(request: Request):
    """CoinMarketCap coin metadata without prices."""
    logger.info("Fetching CMC coin metadata")
    return await request.app.state.price_service.get_cmc_coin_meta()


@router.get("/prices/latest", response_model=LatestPricesResponse, tags=["Prices"])
async def get_latest_prices(
    request: Request,
    ids: Optional[str] = Query(default=None, description="Comma-separated CoinGecko ids (e.g., bitcoin,ethereum)"),
):
    """Latest USD prices; without ids returns the whole top listing."""
    logger.info(f"Fetching latest prices for {ids or 'top coins'}")
    return await request.app.state.price_service.get_latest(_split_ids(ids))


@router.get("/cmc/prices/latest", response_model=LatestPricesResponse, tags=["Prices"])
async def get_cmc_latest_prices(
    request: Request,
    ids: Optional[str] = Query(default=None, description="Comma-separated CMC ids (e.g., 1,1027)"),
):
    """Latest USD prices keyed by CoinMarketCap id."""
    logger.info(f"Fetching CMC latest prices for {ids or 'top coins'}")
    return await request.app.state.price_service.get_cmc_latest(_split_ids(ids))


@router.get("/prices/history", response_model=HistoryResponse, tags=["Prices"])
async def get_price_history(
    request: Request,
    id: Optional[str] = Query(default=None, description="CoinGecko id (e.g., bitcoin)"),
    cmc_id: Optional[str] = Query(default=None, description="CoinMarketCap id, resolved via the mapping"),
    days: str = Query(default="7", description="One of 7, 30, 90, 365, max"),
    interval: Optional[str] = Query(default=None, description="Interval label (e.g., daily)"),
):
    """
    Historical prices served from the prewarmed cache only.

    Returns 503 when the series is not warm yet; never triggers an upstream fetch.
    """
    coin_id = (id or "").strip()
    cmc_id = (cmc_id or "").strip()
    if not coin_id and not cmc_id:
        raise HTTPException(status_code=400, detail="id or cmc_id query parameter is required")

    days = days.strip() or "7"
    if not is_supported_days(days):
        raise HTTPException(status_code=400, detail=f"days must be one of: {','.join(SUPPORTED_DAYS)}")

    service: PriceService = request.app.state.price_service
    if not coin_id:
        try:
            coin_id = await service.resolve_cmc_id(cmc_id)
        except NotAvailableError as e:
            logger.warning(f"Error resolving cmc_id {cmc_id}: {e}")
            raise HTTPException(status_code=400, detail=str(e))

    logger.info(f"Fetching history from cache for {coin_id} (days={days}, interval={interval})")
    return await service.get_history_cached_only(coin_id, days, interval)


@router.get("/fx", response_model=RatesResponse, tags=["FX"])
async def get_fx_rates(request: Request):
    """Latest FX rates rebased to USD (cached 24h)."""
    logger.info("Fetching latest FX rates")
    return await request.app.state.fx_service.get_rates()


# ============================================
# Error Handlers
# ============================================

async def price_cache_error_handler(request: Request, exc: PriceCacheError):
    """Map the error taxonomy to HTTP status codes."""
    status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
    if status >= 500:
        logger.error(f"{request.url.path} failed: {exc}")
    return JSONResponse(status_code=status, content={"detail": str(exc)})


async def not_found_handler(request: Request, exc):
    """Handle 404 errors."""
    return JSONResponse(status_code=404, content={"detail": "Not found", "path": str(request.url)})


# ============================================
# Application Factory
# ============================================

def create_app(
    config: Settings = settings,
    price_service: Optional[PriceService] = None,
    fx_service: Optional[FXService] = None,
    enable_scheduler: bool = True,
) -> FastAPI:
    """
    Build the FastAPI application.

    Services passed in are used as-is (and not started or stopped by the
    app); missing ones are built from `config` during startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle application startup and shutdown."""
        logger.info("=== Application Starting ===")
        owned = []
        try:
            validate_configuration(config)

            coalescer = Coalescer()
            if price_service is None:
                app.state.price_service = PriceService.from_settings(config, coalescer)
                owned.append(app.state.price_service)
            if fx_service is None:
                app.state.fx_service = FXService.from_settings(config, coalescer)
                owned.append(app.state.fx_service)

            for service in owned:
                await service.start()

            app.state.scheduler = None
            if enable_scheduler:
                app.state.scheduler = BackgroundScheduler(app.state.price_service, app.state.fx_service, config=config)
                await app.state.scheduler.start()

            logger.info("=== Started Successfully ===")
        except Exception as e:
            logger.error(f"Startup failed: {e}")
            raise

        yield

        logger.info("=== Shutting Down ===")
        try:
            if app.state.scheduler is not None:
                await app.state.scheduler.stop()
            for service in owned:
                await service.stop()
            logger.info("=== Shutdown Complete ===")
        except Exception as e:
            logger.error(f"Shutdown error: {e}")

    app = FastAPI(
        title="Crypto Price Cache API",
        description=(
            "Cached crypto prices, metadata, history and FX rates.\n\n"
            "## REST Endpoints\n"
            "- `GET /coins` - Top coins with current prices (cached 2h)\n"
            "- `GET /coins/meta` - CoinGecko coin metadata\n"
            "- `GET /cmc/coins/meta` - CoinMarketCap coin metadata\n"
            "- `GET /prices/latest?ids=bitcoin,ethereum` - Latest prices (cached 5m)\n"
            "- `GET /cmc/prices/latest?ids=1,1027` - Latest prices by CMC id\n"
            "- `GET /prices/history?id=bitcoin&days=30` - Cached history (7, 30, 90, 365, max)\n"
            "- `GET /fx` - FX rates rebased to USD (cached 24h)\n"
            "- `GET /health` - Health check"
        ),
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.state.price_service = price_service
    app.state.fx_service = fx_service
    app.state.scheduler = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins_list,
        allow_credentials=False,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(router)
    app.add_exception_handler(PriceCacheError, price_cache_error_handler)
    app.add_exception_handler(404, not_found_handler)
    return app


app = create_app()
