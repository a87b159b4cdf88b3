from fastapi import APIRouter

from order_pipeline.api.endpoints import orders

api_router = APIRouter()
api_router.include_router(orders.router, prefix="/orders", tags=["orders"])
