# order_pipeline/services/product_catalog.py
import asyncio
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from order_pipeline.models.product import Product

logger = logging.getLogger(__name__)

# Delay before retrying a failed reload while a stale snapshot is being served
REFRESH_RETRY_SECONDS = 5.0


@dataclass(frozen=True)
class ProductInfo:
    id: int
    name: str
    cost: Decimal
    sku: str


class ProductCatalog:
    """Read-through cache of the products table, reloaded wholesale once the TTL lapses.

    Concurrent callers that find the cache stale wait on the same reload. If a
    reload fails the previous snapshot keeps being served; with no snapshot at
    all the error propagates.
    """

    def __init__(self, session_factory: async_sessionmaker, ttl_seconds: float = 300.0,
                 clock: Callable[[], float] = time.monotonic):
        self.session_factory = session_factory
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._products: Optional[Dict[int, ProductInfo]] = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    def _is_stale(self) -> bool:
        return self._products is None or self._clock() >= self._expires_at

    async def get_product(self, product_id: int) -> Optional[ProductInfo]:
        if self._is_stale():
            async with self._lock:
                if self._is_stale():
                    await self._refresh()
        return self._products.get(product_id)

    async def _refresh(self):
        logger.info("Refreshing products cache")
        try:
            async with self.session_factory() as session:
                result = await session.execute(select(Product.id, Product.name, Product.cost, Product.sku))
                rows = result.all()
        except Exception as e:
            logger.error("Error refreshing products cache", extra={"error": str(e)}, exc_info=True)
            if self._products is None:
                raise
            self._expires_at = self._clock() + min(self.ttl_seconds, REFRESH_RETRY_SECONDS)
            return

        self._products = {
            row.id: ProductInfo(id=row.id, name=row.name, cost=Decimal(str(row.cost)), sku=row.sku) for row in rows
        }
        self._expires_at = self._clock() + self.ttl_seconds
        logger.info(
            "Products cache refreshed",
            extra={"product_count": len(self._products), "ttl_seconds": self.ttl_seconds},
        )

    def invalidate(self):
        self._expires_at = 0.0
