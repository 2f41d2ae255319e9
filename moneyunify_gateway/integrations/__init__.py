"""External integrations: the MoneyUnify API and the host order system."""
from .moneyunify_client import CircuitBreaker, MoneyUnifyClient
from .order_system import InMemoryOrderSystem, OrderSystem, load_order_system

__all__ = [
    "CircuitBreaker",
    "InMemoryOrderSystem",
    "MoneyUnifyClient",
    "OrderSystem",
    "load_order_system",
]
