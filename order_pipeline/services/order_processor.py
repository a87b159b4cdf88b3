# order_pipeline/services/order_processor.py
import json
import logging
from decimal import ROUND_HALF_UP, Decimal

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_pipeline.core.errors import UnknownProductError
from order_pipeline.models.order import Order, OrderStatus
from order_pipeline.models.product import Product
from order_pipeline.schemas.order import OrderMessage

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

CENTS = Decimal("0.01")


class OrderProcessor:
    """Turns one queue message into one row in the orders table."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    @staticmethod
    def parse_message(body: str) -> OrderMessage:
        # json.loads first so a non-JSON body surfaces as JSONDecodeError rather than a pydantic error
        return OrderMessage.model_validate(json.loads(body))

    async def _complete_from_catalog(self, session: AsyncSession, order: OrderMessage):
        """Fill productName/sku/totalPrice when the producer left them out."""
        if order.product_name and order.total_price is not None:
            return order.product_name, order.sku, order.total_price

        result = await session.execute(select(Product).where(Product.id == order.product_id))
        product = result.scalar_one_or_none()
        if product is None:
            raise UnknownProductError(order.product_id)

        total_price = order.total_price
        if total_price is None:
            total_price = (Decimal(str(product.cost)) * order.quantity).quantize(CENTS, rounding=ROUND_HALF_UP)
        return order.product_name or product.name, order.sku or product.sku, total_price

    async def handle_message(self, message: dict) -> int:
        with tracer.start_as_current_span("OrderProcessor.handle_message") as span:
            span.set_attribute("messaging.message.id", message.get("MessageId", "unknown"))
            try:
                order = self.parse_message(message["Body"])
                span.set_attribute("app.order_id", order.order_id)
                span.set_attribute("app.user_id", order.user_id)

                async with self.session_factory() as session:
                    async with session.begin():
                        product_name, sku, total_price = await self._complete_from_catalog(session, order)
                        row = Order(
                            order_ref=order.order_id,
                            user_id=order.user_id,
                            product_id=order.product_id,
                            product_name=product_name,
                            sku=sku,
                            quantity=order.quantity,
                            total_price=total_price,
                            order_status=OrderStatus.COMPLETED.value,
                        )
                        session.add(row)
                        await session.flush()
                        order_pk = row.id
            except Exception as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, type(e).__name__))
                raise

            span.set_attribute("app.order_pk", order_pk)
            span.set_status(Status(StatusCode.OK))
            logger.info("Order persisted", extra={
                "order_id": order.order_id,
                "order_pk": order_pk,
                "user_id": order.user_id,
                "product_name": product_name,
                "total_price": str(total_price),
                "correlation_id": order.correlation_id,
            })
            return order_pk
