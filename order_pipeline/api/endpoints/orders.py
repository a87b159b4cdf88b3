import logging

from fastapi import APIRouter, Depends, Request, status
from opentelemetry import trace

from order_pipeline.schemas.order import OrderCreate, OrderCreateResponse
from order_pipeline.services.order_service import OrderService

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

router = APIRouter()


def get_order_service(request: Request) -> OrderService:
    order_service = getattr(request.app.state, "order_service", None)
    if order_service is None:
        logger.error("OrderService not found in app state")
        raise RuntimeError("OrderService not initialized. Check application lifespan.")
    return order_service


@router.post(
    "",
    response_model=OrderCreateResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def create_order(
    order: OrderCreate,
    request: Request,
    order_service: OrderService = Depends(get_order_service),
):
    """Validate an order against the product catalogue and enqueue it for processing."""
    correlation_id = getattr(request.state, "correlation_id", None)
    return await order_service.submit_order(order, correlation_id=correlation_id)
