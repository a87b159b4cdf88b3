import asyncio
from decimal import Decimal

import pytest

from order_pipeline.services.product_catalog import REFRESH_RETRY_SECONDS, ProductCatalog


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class CountingFactory:
    def __init__(self, inner):
        self.inner = inner
        self.calls = 0
        self.fail = False

    def __call__(self):
        self.calls += 1
        if self.fail:
            raise ConnectionError("database unreachable")
        return self.inner()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def counting_factory(session_factory):
    return CountingFactory(session_factory)


async def test_looks_up_products(counting_factory, clock):
    catalog = ProductCatalog(counting_factory, ttl_seconds=300, clock=clock)

    product = await catalog.get_product(1)

    assert product.name == "Widget"
    assert product.cost == Decimal("19.99")
    assert product.sku == "WID-001"
    assert await catalog.get_product(404) is None


async def test_serves_from_cache_until_ttl_expires(counting_factory, clock):
    catalog = ProductCatalog(counting_factory, ttl_seconds=300, clock=clock)

    await catalog.get_product(1)
    clock.now += 299
    await catalog.get_product(2)
    assert counting_factory.calls == 1

    clock.now += 1
    await catalog.get_product(1)
    assert counting_factory.calls == 2


async def test_concurrent_callers_share_one_refresh(counting_factory, clock):
    catalog = ProductCatalog(counting_factory, ttl_seconds=300, clock=clock)

    results = await asyncio.gather(*(catalog.get_product(1) for _ in range(5)))

    assert counting_factory.calls == 1
    assert {p.sku for p in results} == {"WID-001"}


async def test_failed_refresh_keeps_stale_snapshot(counting_factory, clock):
    catalog = ProductCatalog(counting_factory, ttl_seconds=300, clock=clock)
    await catalog.get_product(1)

    counting_factory.fail = True
    clock.now += 600

    assert (await catalog.get_product(1)).name == "Widget"


async def test_failed_first_load_raises(counting_factory, clock):
    counting_factory.fail = True
    catalog = ProductCatalog(counting_factory, clock=clock)

    with pytest.raises(ConnectionError):
        await catalog.get_product(1)


async def test_invalidate_forces_reload(counting_factory, clock):
    catalog = ProductCatalog(counting_factory, clock=clock)
    await catalog.get_product(1)

    catalog.invalidate()
    await catalog.get_product(1)

    assert counting_factory.calls == 2


async def test_failed_refresh_backs_off_before_retrying(counting_factory, clock):
    catalog = ProductCatalog(counting_factory, ttl_seconds=300, clock=clock)
    await catalog.get_product(1)

    counting_factory.fail = True
    clock.now += 300
    for _ in range(5):
        assert (await catalog.get_product(1)).name == "Widget"
    assert counting_factory.calls == 2

    clock.now += REFRESH_RETRY_SECONDS
    counting_factory.fail = False
    await catalog.get_product(1)
    assert counting_factory.calls == 3
