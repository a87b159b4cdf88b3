# order_pipeline/config/sqs_consumer.py
import asyncio
import datetime
import logging
from typing import Awaitable, Callable, Optional

from circuitbreaker import CircuitBreaker, CircuitBreakerError
from opentelemetry import metrics, trace
from opentelemetry.trace import Status, StatusCode

from order_pipeline.config.sqs import SQSQueue, queue_name_from_url
from order_pipeline.core.errors import BatchProcessingError
from order_pipeline.core.telemetry import extract_trace_context

logger = logging.getLogger(__name__)
meter = metrics.get_meter(__name__)

messages_received_counter = meter.create_counter("messages.received", description="Messages received from SQS")
orders_processed_counter = meter.create_counter("orders.processed", description="Order messages persisted and deleted")
orders_failed_counter = meter.create_counter("orders.failed", description="Order messages left for redrive")

MessageHandler = Callable[..., Awaitable[object]]


class OrderQueueConsumer:
    """Sequential SQS polling loop guarded by a circuit breaker.

    One poll cycle receives up to ``max_messages`` messages and hands them to
    ``handler`` one at a time, deleting each after the handler returns. A cycle
    fails when the receive raises or any message in it fails; failed messages
    stay on the queue and come back after the visibility timeout until the
    queue's redrive policy moves them to the dead-letter queue.

    After ``failure_threshold`` consecutive failed cycles the breaker opens and
    polling is suspended for ``cooldown_seconds``; the next cycle is a trial
    that closes the breaker on success or re-opens it on failure.
    """

    def __init__(self, queue: SQSQueue, handler: MessageHandler, max_messages: int = 10,
                 failure_threshold: int = 5, cooldown_seconds: int = 30,
                 sleep: Optional[Callable[[float], Awaitable[None]]] = None):
        self.queue = queue
        self.handler = handler
        self.max_messages = max_messages
        self.cooldown_seconds = cooldown_seconds
        self.tracer = trace.get_tracer("order_pipeline.config.sqs_consumer.OrderQueueConsumer", "1.0.0")

        self.circuit_breaker = CircuitBreaker(
            failure_threshold=failure_threshold,
            recovery_timeout=cooldown_seconds,
            expected_exception=Exception,
            name=f"OrderQueueConsumer.{queue_name_from_url(queue.queue_url)}",
        )
        self._guarded_poll = self.circuit_breaker(self._poll_once)
        self._sleep = sleep or self._interruptible_sleep

        self._running = False
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

        self.last_successful_poll: Optional[datetime.datetime] = None
        self.last_error: Optional[str] = None
        self.messages_processed = 0
        self.messages_failed = 0

        logger.info("OrderQueueConsumer initialized", extra={
            "queue_url": queue.queue_url,
            "max_messages": max_messages,
            "failure_threshold": failure_threshold,
            "cooldown_seconds": cooldown_seconds,
        })

    @property
    def running(self) -> bool:
        return self._running

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    async def start(self):
        if self._task is not None and not self._task.done():
            logger.warning("OrderQueueConsumer.start called but already running", extra={"queue_url": self.queue.queue_url})
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run(), name="order-queue-consumer")

    async def run(self):
        logger.info("Starting SQS consume loop", extra={"queue_url": self.queue.queue_url})
        self._running = True
        try:
            while not self.stop_requested:
                await self.poll()
        finally:
            self._running = False
            logger.info("SQS consume loop exited", extra={
                "queue_url": self.queue.queue_url,
                "messages_processed": self.messages_processed,
                "messages_failed": self.messages_failed,
            })

    async def poll(self):
        """Run one poll cycle, or wait out the cooldown if the circuit is open."""
        if self.circuit_breaker.opened:
            delay = max(self.circuit_breaker.open_remaining, 0)
            logger.warning("Circuit open, pausing polling", extra={
                "consecutive_failures": self.circuit_breaker.failure_count,
                "cooldown_remaining_seconds": delay,
            })
            await self._sleep(delay)
            return

        try:
            await self._guarded_poll()
        except CircuitBreakerError:
            # Opened between the check above and the call
            return
        except Exception as e:
            self.last_error = str(e)
            logger.error("Error in poll cycle", extra={
                "consecutive_failures": self.circuit_breaker.failure_count,
                "error": str(e),
            }, exc_info=not isinstance(e, BatchProcessingError))
            if self.circuit_breaker.opened:
                logger.error("Circuit breaker opened", extra={
                    "consecutive_failures": self.circuit_breaker.failure_count,
                    "cooldown_seconds": self.cooldown_seconds,
                })

    async def _poll_once(self):
        messages = await self.queue.receive_messages(self.max_messages)
        if messages:
            logger.info("Received messages", extra={"count": len(messages)})
            messages_received_counter.add(len(messages))

        failures = []
        for message in messages:
            if self.stop_requested:
                # Unhandled messages reappear once their visibility timeout lapses
                logger.info("Stop requested, leaving remaining messages on the queue")
                break
            error = await self._handle(message)
            if error is not None:
                failures.append((message.get("MessageId", "unknown"), error))

        if failures:
            raise BatchProcessingError(failures)
        self.last_successful_poll = datetime.datetime.now(datetime.timezone.utc)

    async def _handle(self, message: dict) -> Optional[Exception]:
        message_id = message.get("MessageId", "unknown")
        receive_count = message.get("Attributes", {}).get("ApproximateReceiveCount")
        parent_context = extract_trace_context(message.get("MessageAttributes"))

        with self.tracer.start_as_current_span("OrderQueueConsumer.handle", context=parent_context) as span:
            span.set_attribute("messaging.system", "aws_sqs")
            span.set_attribute("messaging.message.id", message_id)
            if receive_count:
                span.set_attribute("app.sqs.receive_count", int(receive_count))
            try:
                await self.handler(message)
                await self.queue.delete_message(message["ReceiptHandle"])
            except Exception as e:
                self.messages_failed += 1
                orders_failed_counter.add(1)
                logger.error("Error processing message, leaving it for redrive", extra={
                    "message_id": message_id,
                    "receive_count": receive_count,
                    "error": str(e),
                }, exc_info=True)
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                return e

            self.messages_processed += 1
            orders_processed_counter.add(1)
            logger.info("Message processed and deleted", extra={"message_id": message_id})
            span.set_status(Status(StatusCode.OK))
            return None

    async def _interruptible_sleep(self, delay: float):
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    def snapshot(self) -> dict:
        state = self.circuit_breaker.state
        return {
            "running": self._running,
            "circuit_state": state,
            "consecutive_failures": self.circuit_breaker.failure_count,
            "cooldown_remaining_seconds": max(self.circuit_breaker.open_remaining, 0) if state == "open" else 0,
            "last_successful_poll": self.last_successful_poll,
            "last_error": self.last_error,
            "messages_processed": self.messages_processed,
            "messages_failed": self.messages_failed,
        }

    async def stop(self, timeout: Optional[float] = None):
        """Ask the loop to exit after the in-flight message and wait for it."""
        self._stop_event.set()
        logger.info("SQS consumer shutdown requested", extra={"queue_url": self.queue.queue_url})
        if self._task is None:
            return
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
        except asyncio.TimeoutError:
            # Only reachable while blocked in a long-poll; nothing is in flight yet
            logger.warning("Consume loop did not exit in time, cancelling", extra={"timeout": timeout})
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
