import datetime
import uuid
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

# Upper bound of orders.quantity accepted from the queue, matching the gateway default
MAX_MESSAGE_QUANTITY = 10_000


class OrderCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: int = Field(..., alias="userId", ge=1, strict=True, description="Submitting user")
    product_id: int = Field(..., alias="productId", ge=1, strict=True, description="Product ID must be a positive integer")
    quantity: int = Field(..., ge=1, strict=True, description="Quantity must be a positive integer")


class OrderMessage(BaseModel):
    """Body of an order message on the queue. Keys are camelCase on the wire."""

    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(default_factory=lambda: str(uuid.uuid4()), alias="orderId", min_length=1, max_length=36)
    user_id: int = Field(..., alias="userId", ge=1)
    product_id: int = Field(..., alias="productId", ge=1)
    quantity: int = Field(..., ge=1, le=MAX_MESSAGE_QUANTITY)
    timestamp: datetime.datetime = Field(default_factory=lambda: datetime.datetime.now(datetime.timezone.utc))
    product_name: Optional[str] = Field(None, alias="productName", max_length=255)
    sku: Optional[str] = None
    total_price: Optional[Decimal] = Field(None, alias="totalPrice", ge=0)
    correlation_id: Optional[str] = Field(None, alias="correlationId")

    @field_serializer("total_price", when_used="json")
    def _total_price_as_number(self, value: Optional[Decimal]):
        return float(value) if value is not None else None

    def to_body(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class OrderSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(..., alias="orderId")
    product_id: int = Field(..., alias="productId")
    product_name: str = Field(..., alias="productName")
    sku: Optional[str] = None
    quantity: int
    total_price: float = Field(..., alias="totalPrice")
    timestamp: datetime.datetime


class OrderCreateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str = "Order submitted successfully"
    message_id: str = Field(..., alias="messageId")
    order: OrderSummary
