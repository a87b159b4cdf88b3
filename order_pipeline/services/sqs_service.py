# order_pipeline/services/sqs_service.py
import logging
from typing import Optional

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from sqlalchemy.ext.asyncio import async_sessionmaker

from order_pipeline.config.settings import Settings
from order_pipeline.config.sqs import SQSQueue
from order_pipeline.config.sqs_consumer import OrderQueueConsumer
from order_pipeline.services.order_processor import OrderProcessor

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Process-wide consumer, owned by the processor app lifespan
order_consumer: Optional[OrderQueueConsumer] = None


async def init_order_consumer(settings: Settings, session_factory: async_sessionmaker,
                              queue: Optional[SQSQueue] = None, sleep=None) -> OrderQueueConsumer:
    """Build the order consumer and start its loop as a background task."""
    global order_consumer

    with tracer.start_as_current_span("InitOrderQueueConsumer") as span:
        span.set_attribute("messaging.system", "aws_sqs")
        span.set_attribute("messaging.destination.name", settings.SQS_QUEUE_URL)

        if order_consumer is not None:
            span.add_event("OrderConsumerAlreadyInitialized")
            return order_consumer

        try:
            queue = queue or SQSQueue.from_settings(settings)
            processor = OrderProcessor(session_factory)
            order_consumer = OrderQueueConsumer(
                queue,
                processor.handle_message,
                max_messages=settings.MAX_MESSAGES,
                failure_threshold=settings.CIRCUIT_BREAKER_THRESHOLD,
                cooldown_seconds=settings.CIRCUIT_BREAKER_COOLDOWN_SECONDS,
                sleep=sleep,
            )
            await order_consumer.start()
            logger.info("Order consumer started", extra={"queue_url": queue.queue_url})
            span.set_status(Status(StatusCode.OK))
        except Exception as e:
            logger.error("Failed to initialize order consumer", extra={
                "error": str(e),
                "queue_url": settings.SQS_QUEUE_URL,
            }, exc_info=True)
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, f"Order consumer init failed: {e}"))
            order_consumer = None
            raise

    return order_consumer


async def stop_order_consumer(timeout: Optional[float] = None):
    global order_consumer
    if order_consumer is None:
        return
    try:
        await order_consumer.stop(timeout=timeout)
        logger.info("Order consumer stopped")
    finally:
        order_consumer = None
