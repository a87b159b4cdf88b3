# order_pipeline/models/__init__.py
from order_pipeline.models.order import Order, OrderStatus
from order_pipeline.models.product import Product
from order_pipeline.models.user import User

# Export all models that should be created in the database
__all__ = ["Order", "OrderStatus", "Product", "User"]
