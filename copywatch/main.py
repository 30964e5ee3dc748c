import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api import health, webhooks
from .config import settings
from .core.copy_trading import get_mirror_engine
from .logging_config import setup_logging
from .services.events import BlockFeed

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level)

    engine = get_mirror_engine()
    app.state.engine = engine
    app.state.block_feed = None

    if settings.copy_trading_enabled:
        feed = BlockFeed(engine.process_block, engine.chain)
        await feed.start()
        app.state.block_feed = feed
    else:
        logger.info("Copy trading disabled, block feed not started")

    yield

    if app.state.block_feed is not None:
        await app.state.block_feed.stop()
    await engine.drain_notifications()
    await engine.chain.close()


# Create FastAPI app
app = FastAPI(
    title="Copywatch",
    description="Copy-trade detection and execution engine",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(webhooks.router, tags=["Webhooks"])


@app.get("/")
async def root():
    """Root endpoint with basic info"""
    return {
        "name": "Copywatch",
        "version": "0.1.0",
        "chain_id": settings.chain_id,
        "health": "/healthz",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "copywatch.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower()
    )
