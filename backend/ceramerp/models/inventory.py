from __future__ import annotations

from ..extensions import db
from ..numeric import as_float
from ..time_utils import to_utc_z


class InventoryRecord(db.Model):
    """
    Stock position for one (product, warehouse, ownership_type, factory) key.

    INVARIANTS:
    - quantity_on_hand >= 0 and quantity_reserved >= 0 at all times
    - quantity_available is computed (on_hand - reserved), never stored
    - pallet_count / colis_count follow on_hand through the product's
      packaging ratios at 4-decimal precision

    Rows are created lazily by the first stock-affecting event and are never
    deleted, only zeroed.
    """
    __tablename__ = "inventory_records"
    __table_args__ = (
        db.UniqueConstraint(
            "product_id", "warehouse_id", "ownership_type", "factory_id",
            name="uq_inventory_records_key",
        ),
        db.CheckConstraint("quantity_on_hand >= 0", name="ck_inventory_records_on_hand"),
        db.CheckConstraint("quantity_reserved >= 0", name="ck_inventory_records_reserved"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    # OWNED or CONSIGNMENT
    ownership_type = db.Column(db.String(16), nullable=False, default="OWNED")
    factory_id = db.Column(db.Integer, db.ForeignKey("factories.id"), nullable=True, index=True)

    quantity_on_hand = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    quantity_reserved = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    pallet_count = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    colis_count = db.Column(db.Numeric(18, 4), nullable=False, default=0)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")
    warehouse = db.relationship("Warehouse")

    @property
    def quantity_available(self):
        return (self.quantity_on_hand or 0) - (self.quantity_reserved or 0)

    def __repr__(self) -> str:
        return (
            f"<InventoryRecord product={self.product_id} warehouse={self.warehouse_id} "
            f"{self.ownership_type}/{self.factory_id} on_hand={self.quantity_on_hand} "
            f"reserved={self.quantity_reserved}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "ownership_type": self.ownership_type,
            "factory_id": self.factory_id,
            "quantity_on_hand": as_float(self.quantity_on_hand),
            "quantity_reserved": as_float(self.quantity_reserved),
            "quantity_available": as_float(self.quantity_available),
            "pallet_count": as_float(self.pallet_count),
            "colis_count": as_float(self.colis_count),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryTransaction(db.Model):
    """Append-only stock movement log (IN / OUT / ADJUSTMENT), quantities in stocking unit."""
    __tablename__ = "inventory_transactions"
    __table_args__ = (
        db.Index("ix_inventory_transactions_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    ownership_type = db.Column(db.String(16), nullable=False, default="OWNED")
    factory_id = db.Column(db.Integer, db.ForeignKey("factories.id"), nullable=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    # Signed: + for IN, - for OUT, either for ADJUSTMENT
    quantity = db.Column(db.Numeric(18, 4), nullable=False)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)
    note = db.Column(db.String(255), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    occurred_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        index=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "ownership_type": self.ownership_type,
            "factory_id": self.factory_id,
            "type": self.type,
            "quantity": as_float(self.quantity),
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "note": self.note,
            "created_by_user_id": self.created_by_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
