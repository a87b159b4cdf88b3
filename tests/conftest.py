import os
from decimal import Decimal

import pytest

QUEUE_URL = "http://localhost:4566/000000000000/orders-queue"

os.environ.setdefault("SQS_QUEUE_URL", QUEUE_URL)
os.environ.setdefault("OTEL_ENABLED", "false")

from order_pipeline.config.database import create_tables, dispose_engine, get_session_factory, init_engine  # noqa: E402
from order_pipeline.config.settings import Settings  # noqa: E402
from order_pipeline.models import Product, User  # noqa: E402
from tests.sqs_fake import FakeSQSQueue  # noqa: E402


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        SQS_QUEUE_URL=QUEUE_URL,
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        OTEL_ENABLED=False,
        LOG_LEVEL="WARNING",
        MAX_RECEIVE_COUNT=3,
        CIRCUIT_BREAKER_THRESHOLD=3,
        CIRCUIT_BREAKER_COOLDOWN_SECONDS=30,
        BUILD_METADATA_PATH="does-not-exist.json",
    )


@pytest.fixture
def queue() -> FakeSQSQueue:
    return FakeSQSQueue(QUEUE_URL, max_receive_count=3)


@pytest.fixture
async def engine():
    engine = init_engine("sqlite+aiosqlite:///:memory:")
    await create_tables(engine)
    yield engine
    await dispose_engine()


@pytest.fixture
async def session_factory(engine):
    """Session factory over a database holding one user and two products."""
    factory = get_session_factory()
    async with factory() as session:
        async with session.begin():
            session.add_all([
                User(id=1, username="alice", email="alice@example.com", full_name="Alice Kim", password_hash="x"),
                Product(id=1, name="Widget", cost=Decimal("19.99"), sku="WID-001"),
                Product(id=2, name="Server Rack", cost=Decimal("250000.00"), sku="RACK-001"),
            ])
    return factory
