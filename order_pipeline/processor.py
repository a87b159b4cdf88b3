# order_pipeline/processor.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from order_pipeline import __version__
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
from order_pipeline.core.logging_config import setup_logging
from order_pipeline.core.telemetry import initialize_telemetry, shutdown_telemetry
from order_pipeline.schemas.health import ProcessorHealth
from order_pipeline.services import sqs_service

logger = logging.getLogger(__name__)

COMPONENT = "processor"

# Long enough for one in-flight long-poll to return
SHUTDOWN_GRACE_SECONDS = 25.0


def consumer_health(consumer) -> ProcessorHealth:
    if consumer is None:
        return ProcessorHealth(status="starting", running=False, circuit_state="unknown", consecutive_failures=0)

    snapshot = consumer.snapshot()
    state = snapshot["circuit_state"]
    if not snapshot["running"]:
        status = "stopped"
    elif state == "open":
        status = "unhealthy"
    elif state == "half_open":
        status = "recovering"
    else:
        status = "healthy"
    return ProcessorHealth(status=status, **snapshot)


def create_app(settings: Optional[Settings] = None, queue: Optional[SQSQueue] = None,
               create_schema: bool = True) -> FastAPI:
    """Build the processor: the SQS consume loop plus its health endpoint."""
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)
    initialize_telemetry(settings, COMPONENT)

    @asynccontextmanager
    async def lifespan(app_instance: FastAPI):
        logger.info("Processor startup: initializing resources", extra={"environment": settings.ENVIRONMENT})
        log_build_metadata(settings.BUILD_METADATA_PATH, COMPONENT)

        engine = init_engine(resolve_database_url(settings), pool_size=settings.DB_CONNECTION_LIMIT)
        if create_schema:
            await create_tables(engine)

        app_instance.state.consumer = await sqs_service.init_order_consumer(settings, get_session_factory(), queue=queue)

        yield

        logger.info("Processor shutdown: draining consumer")
        await sqs_service.stop_order_consumer(timeout=SHUTDOWN_GRACE_SECONDS)
        app_instance.state.consumer = None
        await dispose_engine()

    app = FastAPI(title="Order Processor", version=__version__, lifespan=lifespan)

    @app.get("/health/live", tags=["Health"])
    async def liveness():
        return {"status": "alive"}

    @app.get("/health", tags=["Health"])
    async def health():
        result = consumer_health(getattr(app.state, "consumer", None))
        status_code = 200 if result.status in ("healthy", "recovering") else 503
        return JSONResponse(status_code=status_code, content=jsonable_encoder(result, by_alias=True))

    return app


def run():
    settings = get_settings()
    app = create_app(settings)
    try:
        uvicorn.run(app, host="0.0.0.0", port=settings.HEALTH_PORT, log_config=None)
    finally:
        shutdown_telemetry()


if __name__ == "__main__":
    run()
