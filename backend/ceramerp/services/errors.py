"""
Settlement engine error taxonomy.

Every engine failure aborts the enclosing transaction. None of these are
retried: they are business-rule violations and reach the caller as-is.
Malformed primitive input (negative quantity, unknown unit code) raises a
plain ValueError instead.
"""

from __future__ import annotations


class SettlementError(Exception):
    """Base class; carries a machine-readable details dict."""

    code = "SETTLEMENT_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code, "details": self.details}


class EntityNotFound(SettlementError):
    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} {entity_id} not found", {"entity": entity, "id": entity_id})


class InsufficientStock(SettlementError):
    """Requested quantity exceeds on_hand - reserved for the inventory key."""

    code = "INSUFFICIENT_STOCK"

    def __init__(self, *, product_id: int, warehouse_id: int, requested, available):
        super().__init__(
            f"Insufficient stock for product {product_id} in warehouse {warehouse_id}: "
            f"requested {requested}, available {available}",
            {
                "product_id": product_id,
                "warehouse_id": warehouse_id,
                "requested": str(requested),
                "available": str(available),
            },
        )


class InvalidStateTransition(SettlementError):
    code = "INVALID_STATE_TRANSITION"

    def __init__(self, entity: str, current: str, target: str, message: str | None = None):
        super().__init__(
            message or f"{entity} cannot move from {current} to {target}",
            {"entity": entity, "current": current, "target": target},
        )


class ReferentialConflict(SettlementError):
    """A row cannot be removed because other documents still reference it."""

    code = "REFERENTIAL_CONFLICT"


class PriceNotFound(SettlementError):
    code = "PRICE_NOT_FOUND"

    def __init__(self, product_id: int, customer_id: int | None):
        super().__init__(
            f"No price found for product {product_id}",
            {"product_id": product_id, "customer_id": customer_id},
        )


class ConversionAmbiguous(SettlementError):
    """A mixed-unit conversion needed a packaging ratio or dimension that is missing."""

    code = "CONVERSION_AMBIGUOUS"


class LockTimeout(SettlementError):
    code = "LOCK_TIMEOUT"
