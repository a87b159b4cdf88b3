# order_pipeline/gateway.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from order_pipeline import __version__
from order_pipeline.api.api import api_router
from order_pipeline.api.endpoints import health
from order_pipeline.config.database import (
    create_tables,
    dispose_engine,
    get_session_factory,
    init_engine,
    resolve_database_url,
)
from order_pipeline.config.settings import Settings, get_settings
from order_pipeline.config.sqs import SQSQueue
from order_pipeline.core.build_metadata import log_build_metadata
from order_pipeline.core.correlation import correlation_id_middleware
from order_pipeline.core.errors import register_exception_handlers
from order_pipeline.core.logging_config import setup_logging
from order_pipeline.core.telemetry import initialize_telemetry, instrument_fastapi_app, shutdown_telemetry
from order_pipeline.services.health_service import HealthService
from order_pipeline.services.order_service import OrderService
from order_pipeline.services.product_catalog import ProductCatalog

logger = logging.getLogger(__name__)

COMPONENT = "gateway"


def create_app(settings: Optional[Settings] = None, queue: Optional[SQSQueue] = None,
               create_schema: bool = True, verify_queue: bool = True) -> FastAPI:
    """Build the order gateway. ``queue`` replaces the settings-derived SQS queue when given."""
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)
    initialize_telemetry(settings, COMPONENT)

    @asynccontextmanager
    async def lifespan(app_instance: FastAPI):
        logger.info("Gateway startup: initializing resources", extra={"environment": settings.ENVIRONMENT})
        log_build_metadata(settings.BUILD_METADATA_PATH, COMPONENT)

        engine = init_engine(resolve_database_url(settings), pool_size=settings.DB_CONNECTION_LIMIT)
        if create_schema:
            await create_tables(engine)
        session_factory = get_session_factory()

        order_queue = queue or SQSQueue.from_settings(settings)
        health_service = HealthService(session_factory, order_queue, cache_ttl_seconds=settings.HEALTH_CACHE_TTL_SECONDS)
        if verify_queue:
            await health_service.verify_sqs_connectivity()

        app_instance.state.health_service = health_service
        app_instance.state.order_service = OrderService(
            order_queue,
            ProductCatalog(session_factory, ttl_seconds=settings.PRODUCTS_CACHE_TTL_SECONDS),
            settings,
        )
        logger.info("Gateway ready", extra={"queue_url": order_queue.queue_url, "port": settings.PORT})

        yield

        logger.info("Gateway shutdown: cleaning up resources")
        app_instance.state.order_service = None
        app_instance.state.health_service = None
        await dispose_engine()

    app = FastAPI(title="Order Gateway API", version=__version__, lifespan=lifespan)
    app.middleware("http")(correlation_id_middleware)
    register_exception_handlers(app)
    instrument_fastapi_app(app, settings)

    app.include_router(health.router, tags=["Health"])
    app.include_router(api_router, prefix=settings.API_V1_STR)
    return app


def run():
    settings = get_settings()
    app = create_app(settings)
    try:
        uvicorn.run(app, host="0.0.0.0", port=settings.PORT, log_config=None)
    finally:
        shutdown_telemetry()


if __name__ == "__main__":
    run()
