import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from signal_engine.config import settings
from signal_engine.database import async_session_maker, init_db
from signal_engine.exceptions import AppError
from signal_engine.price_feeds import CcxtPriceFeed
from signal_engine.routers import signals_router, system_router, user_signals_router
from signal_engine.routers.system_router import set_watcher_registry
from signal_engine.services.exchange_service import ExchangeClientProvider
from signal_engine.services.notifier import NotificationQueue, build_notifier
from signal_engine.services.shutdown_manager import shutdown_manager
from signal_engine.store import Store
from signal_engine.trading_engine.context import EngineContext
from signal_engine.trading_engine.dispatcher import SignalDispatcher
from signal_engine.trading_engine.resumption import ResumptionManager
from signal_engine.trading_engine.watcher_registry import WatcherRegistry

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Signal Engine")

app.include_router(signals_router.router)
app.include_router(user_signals_router.router)
app.include_router(system_router.router)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# Engine handles, created on startup
engine_context: Optional[EngineContext] = None
watcher_registry: Optional[WatcherRegistry] = None
signal_dispatcher: Optional[SignalDispatcher] = None


def build_engine_context() -> EngineContext:
    price_feed = CcxtPriceFeed(
        exchange_id=settings.price_feed_exchange,
        market=settings.price_feed_market,
        cache_seconds=settings.price_cache_seconds,
    )
    return EngineContext(
        store=Store(
            async_session_maker,
            retry_base=settings.backoff_base_seconds,
            retry_cap=settings.backoff_max_seconds,
        ),
        exchanges=ExchangeClientProvider(async_session_maker, price_feed),
        price_feed=price_feed,
        notifications=NotificationQueue(build_notifier(), timeout=settings.notification_timeout_seconds),
        settings=settings,
        shutdown=shutdown_manager,
    )


@app.on_event("startup")
async def startup_event():
    global engine_context, watcher_registry, signal_dispatcher

    logger.info("🚀 Initializing database...")
    await init_db()

    engine_context = build_engine_context()
    engine_context.notifications.start()

    watcher_registry = WatcherRegistry(engine_context)
    set_watcher_registry(watcher_registry)

    resumed = await ResumptionManager(engine_context, watcher_registry).resume()
    logger.info(f"🚀 Resumed {resumed['signals']} signals and {resumed['user_signals']} user signals")

    signal_dispatcher = SignalDispatcher(engine_context, watcher_registry)
    await signal_dispatcher.start()

    logger.info("🚀 Startup complete")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("🛑 Shutting down - waiting for in-flight orders...")

    # Refuse new orders and let the ones already sent get their result persisted
    shutdown_result = await shutdown_manager.prepare_shutdown(timeout=settings.shutdown_timeout_seconds)
    if shutdown_result["ready"]:
        logger.info(f"✅ {shutdown_result['message']}")
    else:
        logger.warning(f"⚠️ {shutdown_result['message']}")

    if signal_dispatcher:
        await signal_dispatcher.stop()

    if watcher_registry:
        await watcher_registry.stop_all()
    set_watcher_registry(None)

    if engine_context:
        await engine_context.notifications.stop(drain_timeout=settings.notification_timeout_seconds)
        await engine_context.exchanges.clear()
        await engine_context.price_feed.close()

    logger.info("🛑 Shutdown complete")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
