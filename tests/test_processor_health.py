import httpx
import pytest

from order_pipeline.config.sqs_consumer import OrderQueueConsumer
from order_pipeline.processor import consumer_health, create_app


class StubConsumer:
    def __init__(self, running=True, circuit_state="closed", failures=0):
        self.state = {
            "running": running,
            "circuit_state": circuit_state,
            "consecutive_failures": failures,
            "cooldown_remaining_seconds": 12 if circuit_state == "open" else 0,
            "last_successful_poll": None,
            "last_error": "boom" if failures else None,
            "messages_processed": 4,
            "messages_failed": failures,
        }

    def snapshot(self):
        return dict(self.state)


async def get_health(settings, consumer):
    app = create_app(settings)
    app.state.consumer = consumer
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://processor") as client:
        return await client.get("/health")


@pytest.mark.parametrize("consumer, status_code, status", [
    (StubConsumer(), 200, "healthy"),
    (StubConsumer(circuit_state="half_open", failures=5), 200, "recovering"),
    (StubConsumer(circuit_state="open", failures=5), 503, "unhealthy"),
    (StubConsumer(running=False), 503, "stopped"),
    (None, 503, "starting"),
])
async def test_health_status_codes(settings, consumer, status_code, status):
    response = await get_health(settings, consumer)

    assert response.status_code == status_code
    assert response.json()["status"] == status


async def test_health_body_uses_camel_case(settings):
    response = await get_health(settings, StubConsumer(circuit_state="open", failures=5))

    body = response.json()
    assert body["circuitState"] == "open"
    assert body["consecutiveFailures"] == 5
    assert body["cooldownRemainingSeconds"] == 12
    assert body["lastError"] == "boom"
    assert body["lastSuccessfulPoll"] is None
    assert body["messagesProcessed"] == 4


async def test_liveness(settings):
    app = create_app(settings)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://processor") as client:
        response = await client.get("/health/live")
    assert response.json() == {"status": "alive"}


async def test_health_of_real_consumer_after_outage(queue):
    queue.receive_errors = [RuntimeError("connection refused")] * 2

    async def handler(message):
        return None

    consumer = OrderQueueConsumer(queue, handler, failure_threshold=2, cooldown_seconds=30)
    await consumer.poll()
    await consumer.poll()

    health = consumer_health(consumer)
    assert health.circuit_state == "open"
    assert health.consecutive_failures == 2
    assert health.last_error == "connection refused"
    # Loop task never started
    assert health.status == "stopped"
