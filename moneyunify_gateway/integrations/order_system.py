"""
Host order system interface.

The order itself belongs to the host shop. The gateway only calls these
hooks; the host decides what "complete" or "on hold" means for it.
"""
import importlib
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import structlog

logger = structlog.get_logger(__name__)


@runtime_checkable
class OrderSystem(Protocol):
    """Callbacks into the external order lifecycle."""

    async def get_order_total(self, order_id: str) -> Decimal: ...

    async def get_order_currency(self, order_id: str) -> str: ...

    async def set_on_hold(self, order_id: str, reason: str) -> None: ...

    async def complete_order(self, order_id: str, transaction_id: str) -> None: ...

    async def fail_order(self, order_id: str, reason: str) -> None: ...

    async def add_order_note(self, order_id: str, note: str) -> None: ...

    async def reduce_stock_levels(self, order_id: str) -> None: ...

    async def empty_cart(self, order_id: str) -> None: ...


class OrderNotFound(LookupError):
    """Raised by the in-memory order system for unknown orders."""

    pass


@dataclass
class HostOrder:
    """Order as kept by :class:`InMemoryOrderSystem`."""

    order_id: str
    total: Decimal
    currency: str
    status: str = "pending"
    transaction_id: Optional[str] = None
    notes: List[str] = field(default_factory=list)
    stock_reduced: bool = False
    cart_emptied: bool = False


class InMemoryOrderSystem:
    """
    Order system kept in process memory.

    Used for local development and tests. Counts every completion and
    failure so double side effects are visible.
    """

    def __init__(self) -> None:
        self.orders: Dict[str, HostOrder] = {}
        self.completions: List[Dict[str, str]] = []
        self.failures: List[Dict[str, str]] = []

    def add_order(self, order_id: str, total: Any, currency: str) -> HostOrder:
        order = HostOrder(order_id=order_id, total=Decimal(str(total)), currency=currency)
        self.orders[order_id] = order
        return order

    def _order(self, order_id: str) -> HostOrder:
        try:
            return self.orders[order_id]
        except KeyError:
            raise OrderNotFound(f"Order {order_id} not found")

    async def get_order_total(self, order_id: str) -> Decimal:
        return self._order(order_id).total

    async def get_order_currency(self, order_id: str) -> str:
        return self._order(order_id).currency

    async def set_on_hold(self, order_id: str, reason: str) -> None:
        order = self._order(order_id)
        order.status = "on-hold"
        order.notes.append(reason)

    async def complete_order(self, order_id: str, transaction_id: str) -> None:
        order = self._order(order_id)
        order.status = "processing"
        order.transaction_id = transaction_id
        self.completions.append({"order_id": order_id, "transaction_id": transaction_id})

    async def fail_order(self, order_id: str, reason: str) -> None:
        order = self._order(order_id)
        order.status = "failed"
        self.failures.append({"order_id": order_id, "reason": reason})

    async def add_order_note(self, order_id: str, note: str) -> None:
        self._order(order_id).notes.append(note)

    async def reduce_stock_levels(self, order_id: str) -> None:
        self._order(order_id).stock_reduced = True

    async def empty_cart(self, order_id: str) -> None:
        self._order(order_id).cart_emptied = True


def load_order_system(path: str) -> OrderSystem:
    """
    Build the host order system from a ``module:callable`` import path.

    Args:
        path: Import path of a class or factory taking no arguments

    Returns:
        OrderSystem: Host implementation
    """
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Order system path must look like 'module:callable', got {path!r}")

    factory = getattr(importlib.import_module(module_name), attr)
    order_system = factory()
    if not isinstance(order_system, OrderSystem):
        raise TypeError(f"{path} does not implement OrderSystem")

    logger.info("order_system_loaded", path=path)
    return order_system
