# order_pipeline/services/health_service.py
import datetime
import logging
import time
from typing import Callable, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import async_sessionmaker
from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt, wait_exponential

from order_pipeline import __version__
from order_pipeline.config.sqs import SQSQueue
from order_pipeline.schemas.health import DependencyCheck, GatewayHealth

logger = logging.getLogger(__name__)

UNHEALTHY_CACHE_TTL_SECONDS = 1.0


def log_sqs_check_attempt(retry_state: RetryCallState):
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "SQS connectivity check failed, retrying",
        extra={"attempt": retry_state.attempt_number, "error": str(exc) if exc else None},
    )


class HealthService:
    def __init__(self, session_factory: Optional[async_sessionmaker], queue: SQSQueue,
                 cache_ttl_seconds: float = 5.0, clock: Callable[[], float] = time.monotonic):
        self.session_factory = session_factory
        self.queue = queue
        self.cache_ttl_seconds = cache_ttl_seconds
        self._clock = clock
        self._cached: Optional[GatewayHealth] = None
        self._cache_expires_at = 0.0

    async def verify_sqs_connectivity(self, max_attempts: int = 10):
        """Block startup until the queue answers, backing off between attempts."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=5),
            before_sleep=log_sqs_check_attempt,
            reraise=True,
        ):
            with attempt:
                await self.queue.get_attributes(["ApproximateNumberOfMessages"])
        logger.info("SQS connectivity verified", extra={"queue_url": self.queue.queue_url})

    async def _check_database(self) -> DependencyCheck:
        if self.session_factory is None:
            return DependencyCheck(status="unhealthy", message="Database pool not initialized")
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
            return DependencyCheck(status="healthy", message="Database connection successful")
        except Exception as e:
            logger.error("Health check database error", extra={"error": str(e)}, exc_info=True)
            return DependencyCheck(status="unhealthy", message="Database unavailable")

    async def _check_queue(self) -> DependencyCheck:
        try:
            await self.queue.get_attributes(["ApproximateNumberOfMessages"])
            return DependencyCheck(status="healthy", message="SQS queue accessible")
        except Exception as e:
            logger.error("Health check SQS error", extra={"error": str(e)}, exc_info=True)
            return DependencyCheck(status="unhealthy", message="Queue unavailable")

    async def get_health_status(self) -> GatewayHealth:
        now = self._clock()
        if self._cached is not None and now < self._cache_expires_at:
            return self._cached

        checks = {"database": await self._check_database(), "sqs": await self._check_queue()}
        all_healthy = all(check.status == "healthy" for check in checks.values())
        health = GatewayHealth(
            status="healthy" if all_healthy else "degraded",
            timestamp=datetime.datetime.now(datetime.timezone.utc),
            version=__version__,
            checks=checks,
        )

        # Unhealthy results expire quickly so recovery shows up promptly
        ttl = self.cache_ttl_seconds if all_healthy else UNHEALTHY_CACHE_TTL_SECONDS
        self._cached = health
        self._cache_expires_at = now + ttl
        return health
