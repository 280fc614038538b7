# Overview: Document status enums and their legal transition tables.

from __future__ import annotations

from enum import Enum

from .errors import InvalidStateTransition


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class PurchaseOrderStatus(str, Enum):
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"


class ReturnStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class PurchaseReturnStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    CANCELLED = "CANCELLED"


# Edits (order_service.update_order) are not status moves: they reverse
# effects and reset to PENDING from any state except CANCELLED.
ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.DELIVERED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

# PENDING/PARTIAL/RECEIVED are derived from quantities; only cancellation is a manual move.
PURCHASE_ORDER_TRANSITIONS = {
    PurchaseOrderStatus.PENDING: {
        PurchaseOrderStatus.PARTIAL,
        PurchaseOrderStatus.RECEIVED,
        PurchaseOrderStatus.CANCELLED,
    },
    PurchaseOrderStatus.PARTIAL: {
        PurchaseOrderStatus.PENDING,
        PurchaseOrderStatus.PARTIAL,
        PurchaseOrderStatus.RECEIVED,
    },
    PurchaseOrderStatus.RECEIVED: {
        PurchaseOrderStatus.PENDING,
        PurchaseOrderStatus.PARTIAL,
        PurchaseOrderStatus.RECEIVED,
    },
    PurchaseOrderStatus.CANCELLED: set(),
}

RETURN_TRANSITIONS = {
    ReturnStatus.PENDING: {ReturnStatus.APPROVED, ReturnStatus.REJECTED},
    ReturnStatus.APPROVED: set(),
    ReturnStatus.REJECTED: set(),
}

PURCHASE_RETURN_TRANSITIONS = {
    PurchaseReturnStatus.PENDING: {PurchaseReturnStatus.APPROVED, PurchaseReturnStatus.CANCELLED},
    PurchaseReturnStatus.APPROVED: set(),
    PurchaseReturnStatus.CANCELLED: set(),
}

_TABLES = {
    "Order": (OrderStatus, ORDER_TRANSITIONS),
    "PurchaseOrder": (PurchaseOrderStatus, PURCHASE_ORDER_TRANSITIONS),
    "Return": (ReturnStatus, RETURN_TRANSITIONS),
    "PurchaseReturn": (PurchaseReturnStatus, PURCHASE_RETURN_TRANSITIONS),
}


def _value(status) -> str:
    return status.value if isinstance(status, Enum) else status


def can_transition(entity: str, current: str, target: str) -> bool:
    enum_cls, table = _TABLES[entity]
    try:
        return enum_cls(target) in table[enum_cls(current)]
    except ValueError:
        return False


def ensure_transition(entity: str, current: str, target: str) -> None:
    """Raise InvalidStateTransition unless current -> target is in the entity's table."""
    if not can_transition(entity, current, target):
        raise InvalidStateTransition(entity, _value(current), _value(target))


def ensure_status(entity: str, current: str, allowed, action: str) -> None:
    """Guard for operations (edit/delete/add item) that are legal only in some states."""
    allowed_values = {_value(s) for s in allowed}
    if current not in allowed_values:
        raise InvalidStateTransition(
            entity,
            _value(current),
            action,
            message=f"Cannot {action} {entity} in status {current}",
        )
