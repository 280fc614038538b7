from __future__ import annotations

from ..extensions import db
from ..numeric import as_float
from ..time_utils import to_iso_date, to_utc_z


class PurchaseOrder(db.Model):
    """
    Purchase order header (inbound intent).

    The supplier is exactly one of brand_id / factory_id. Status is derived
    from received vs ordered quantities after every receipt (see
    purchasing_service.recompute_po_status); CANCELLED is the only status set
    directly.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.UniqueConstraint("po_number", name="uq_purchase_orders_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    po_number = db.Column(db.String(32), nullable=False)

    brand_id = db.Column(db.Integer, db.ForeignKey("brands.id"), nullable=True, index=True)
    factory_id = db.Column(db.Integer, db.ForeignKey("factories.id"), nullable=True, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    ownership_type = db.Column(db.String(16), nullable=False, default="OWNED")

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    total_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    payment_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    payment_method = db.Column(db.String(16), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    brand = db.relationship("Brand")
    factory = db.relationship("Factory")
    warehouse = db.relationship("Warehouse")
    items = db.relationship(
        "PurchaseOrderItem",
        backref="purchase_order",
        lazy=True,
        order_by="PurchaseOrderItem.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "po_number": self.po_number,
            "brand_id": self.brand_id,
            "factory_id": self.factory_id,
            "warehouse_id": self.warehouse_id,
            "ownership_type": self.ownership_type,
            "status": self.status,
            "total_amount": as_float(self.total_amount),
            "payment_amount": as_float(self.payment_amount),
            "payment_method": self.payment_method,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class PurchaseOrderItem(db.Model):
    __tablename__ = "purchase_order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_purchase_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Numeric(18, 4), nullable=False)
    unit_code = db.Column(db.String(16), nullable=False)
    unit_price = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    line_total = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    # Accumulated in the PO line unit
    received_quantity = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    # Same amount in stocking unit, as actually restocked
    received_stock_quantity = db.Column(db.Numeric(18, 4), nullable=False, default=0)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_order_id": self.purchase_order_id,
            "product_id": self.product_id,
            "quantity": as_float(self.quantity),
            "unit_code": self.unit_code,
            "unit_price": as_float(self.unit_price),
            "line_total": as_float(self.line_total),
            "received_quantity": as_float(self.received_quantity),
            "received_stock_quantity": as_float(self.received_stock_quantity),
        }


class GoodsReceipt(db.Model):
    """One delivery event against a purchase order. Immutable once posted."""
    __tablename__ = "goods_receipts"
    __table_args__ = (
        db.UniqueConstraint("receipt_number", name="uq_goods_receipts_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    receipt_number = db.Column(db.String(32), nullable=False)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False)
    ownership_type = db.Column(db.String(16), nullable=False, default="OWNED")
    factory_id = db.Column(db.Integer, db.ForeignKey("factories.id"), nullable=True)

    receipt_date = db.Column(db.Date, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    purchase_order = db.relationship("PurchaseOrder", backref=db.backref("receipts", lazy=True))
    items = db.relationship("GoodsReceiptItem", backref="receipt", lazy=True, order_by="GoodsReceiptItem.id")

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "receipt_number": self.receipt_number,
            "purchase_order_id": self.purchase_order_id,
            "warehouse_id": self.warehouse_id,
            "ownership_type": self.ownership_type,
            "factory_id": self.factory_id,
            "receipt_date": to_iso_date(self.receipt_date),
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class GoodsReceiptItem(db.Model):
    __tablename__ = "goods_receipt_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_goods_receipt_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    receipt_id = db.Column(db.Integer, db.ForeignKey("goods_receipts.id"), nullable=False, index=True)
    purchase_order_item_id = db.Column(
        db.Integer, db.ForeignKey("purchase_order_items.id"), nullable=False, index=True
    )
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Numeric(18, 4), nullable=False)
    unit_code = db.Column(db.String(16), nullable=False)
    stock_quantity = db.Column(db.Numeric(18, 4), nullable=False)
    unit_price = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    pallet_count = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    colis_count = db.Column(db.Numeric(18, 4), nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "receipt_id": self.receipt_id,
            "purchase_order_item_id": self.purchase_order_item_id,
            "product_id": self.product_id,
            "quantity": as_float(self.quantity),
            "unit_code": self.unit_code,
            "stock_quantity": as_float(self.stock_quantity),
            "unit_price": as_float(self.unit_price),
            "pallet_count": as_float(self.pallet_count),
            "colis_count": as_float(self.colis_count),
        }
