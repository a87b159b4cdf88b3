# order_pipeline/services/order_service.py
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError
from opentelemetry import metrics, trace
from opentelemetry.trace import SpanKind, Status, StatusCode

from order_pipeline.config.settings import Settings
from order_pipeline.config.sqs import ORDER_TYPE_ATTRIBUTE, SQSQueue
from order_pipeline.core.errors import ApiError, ErrorCodes
from order_pipeline.core.telemetry import inject_trace_attributes
from order_pipeline.schemas.order import OrderCreate, OrderCreateResponse, OrderMessage, OrderSummary
from order_pipeline.services.product_catalog import ProductCatalog

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)
meter = metrics.get_meter(__name__)

orders_submitted_counter = meter.create_counter("orders.submitted", description="Total orders submitted to SQS")

CENTS = Decimal("0.01")


class OrderService:
    """Validates an order submission and puts it on the processing queue."""

    def __init__(self, queue: SQSQueue, catalog: ProductCatalog, settings: Settings):
        self.queue = queue
        self.catalog = catalog
        self.max_order_value = Decimal(str(settings.ORDER_MAX_VALUE))
        self.max_quantity = settings.ORDER_MAX_QUANTITY

    def validate_business_rules(self, total_price: Decimal):
        if total_price > self.max_order_value:
            raise ApiError(
                400,
                ErrorCodes.ORDER_VALUE_EXCEEDED,
                f"Order total price cannot exceed ${self.max_order_value:,.0f}",
            )

    async def submit_order(self, order: OrderCreate, correlation_id: Optional[str] = None) -> OrderCreateResponse:
        with tracer.start_as_current_span("OrderService.submit_order", kind=SpanKind.PRODUCER) as span:
            span.set_attribute("app.user_id", order.user_id)
            span.set_attribute("app.product_id", order.product_id)
            span.set_attribute("app.quantity", order.quantity)

            if order.quantity > self.max_quantity:
                raise ApiError(
                    400,
                    ErrorCodes.VALIDATION_FAILED,
                    "Validation failed",
                    [{"field": "quantity", "message": f"Quantity must be an integer between 1 and {self.max_quantity:,}"}],
                )

            product = await self.catalog.get_product(order.product_id)
            if product is None:
                span.set_attribute("app.validation.error", "UnknownProduct")
                raise ApiError(400, ErrorCodes.INVALID_PRODUCT, f"Product with ID {order.product_id} not found")

            total_price = (product.cost * order.quantity).quantize(CENTS, rounding=ROUND_HALF_UP)
            self.validate_business_rules(total_price)

            message = OrderMessage(
                user_id=order.user_id,
                product_id=product.id,
                product_name=product.name,
                sku=product.sku,
                quantity=order.quantity,
                total_price=total_price,
                correlation_id=correlation_id,
            )
            span.set_attribute("app.order_id", message.order_id)

            attributes = {"OrderType": dict(ORDER_TYPE_ATTRIBUTE)}
            if correlation_id:
                attributes["CorrelationId"] = {"DataType": "String", "StringValue": correlation_id}
            inject_trace_attributes(attributes)

            try:
                message_id = await self.queue.send_message(message.to_body(), attributes)
            except (BotoCoreError, ClientError) as e:
                logger.error(
                    "Failed to enqueue order",
                    extra={"order_id": message.order_id, "user_id": order.user_id, "error": str(e)},
                    exc_info=True,
                )
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, "EnqueueFailed"))
                raise ApiError(503, ErrorCodes.SERVICE_UNAVAILABLE, "Order queue is unavailable, please retry later")

            orders_submitted_counter.add(1, {"product": product.name})
            span.set_attribute("messaging.message.id", message_id)
            logger.info(
                "Order submitted",
                extra={
                    "message_id": message_id,
                    "order_id": message.order_id,
                    "user_id": order.user_id,
                    "product_name": product.name,
                    "total_price": str(total_price),
                },
            )

            return OrderCreateResponse(
                message_id=message_id,
                order=OrderSummary(
                    order_id=message.order_id,
                    product_id=product.id,
                    product_name=product.name,
                    sku=product.sku,
                    quantity=order.quantity,
                    total_price=float(total_price),
                    timestamp=message.timestamp,
                ),
            )
