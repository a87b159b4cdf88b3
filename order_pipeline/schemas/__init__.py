from .health import DependencyCheck, GatewayHealth, ProcessorHealth
from .order import OrderCreate, OrderCreateResponse, OrderMessage, OrderSummary

# Export all schemas that should be available for import
__all__ = [
    'OrderCreate',
    'OrderCreateResponse',
    'OrderMessage',
    'OrderSummary',
    'DependencyCheck',
    'GatewayHealth',
    'ProcessorHealth',
]
