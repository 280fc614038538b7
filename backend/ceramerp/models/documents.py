from __future__ import annotations

from ..extensions import db
from ..numeric import as_float
from ..time_utils import to_iso_date, to_utc_z


class Return(db.Model):
    """
    Customer return document.

    LIFECYCLE:
    1. PENDING: created, no ledger effects, may be deleted
    2. APPROVED: stock restocked, RETOUR_VENTE posted, customer credited (terminal)
    3. REJECTED: closed without effects (terminal)
    """
    __tablename__ = "returns"
    __table_args__ = (
        db.UniqueConstraint("return_number", name="uq_returns_number"),
        db.Index("ix_returns_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_number = db.Column(db.String(32), nullable=False)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    client_name = db.Column(db.String(255), nullable=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    return_date = db.Column(db.Date, nullable=False)
    reason = db.Column(db.Text, nullable=True)
    total_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    approved_by_user_id = db.Column(db.Integer, nullable=True)
    rejected_by_user_id = db.Column(db.Integer, nullable=True)

    order = db.relationship("Order")
    customer = db.relationship("Customer")
    items = db.relationship(
        "ReturnItem",
        backref="return_doc",
        lazy=True,
        order_by="ReturnItem.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "return_number": self.return_number,
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "client_name": self.client_name,
            "warehouse_id": self.warehouse_id,
            "status": self.status,
            "return_date": to_iso_date(self.return_date),
            "reason": self.reason,
            "total_amount": as_float(self.total_amount),
            "created_at": to_utc_z(self.created_at),
            "approved_at": to_utc_z(self.approved_at),
            "rejected_at": to_utc_z(self.rejected_at),
            "created_by_user_id": self.created_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "rejected_by_user_id": self.rejected_by_user_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class ReturnItem(db.Model):
    __tablename__ = "return_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_return_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Numeric(18, 4), nullable=False)
    unit_code = db.Column(db.String(16), nullable=False)
    stock_quantity = db.Column(db.Numeric(18, 4), nullable=False)
    unit_price = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    line_total = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    reason = db.Column(db.String(255), nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "product_id": self.product_id,
            "quantity": as_float(self.quantity),
            "unit_code": self.unit_code,
            "stock_quantity": as_float(self.stock_quantity),
            "unit_price": as_float(self.unit_price),
            "line_total": as_float(self.line_total),
            "reason": self.reason,
        }


class PurchaseReturn(db.Model):
    """
    Supplier return document (goods sent back to a brand or factory).

    LIFECYCLE:
    1. PENDING: created, no ledger effects, may be deleted
    2. APPROVED: stock issued out, RETOUR_ACHAT posted, supplier balance reduced (terminal)
    3. CANCELLED: closed without effects (terminal)
    """
    __tablename__ = "purchase_returns"
    __table_args__ = (
        db.UniqueConstraint("return_number", name="uq_purchase_returns_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_number = db.Column(db.String(32), nullable=False)

    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=True, index=True)
    brand_id = db.Column(db.Integer, db.ForeignKey("brands.id"), nullable=True, index=True)
    factory_id = db.Column(db.Integer, db.ForeignKey("factories.id"), nullable=True, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False)
    ownership_type = db.Column(db.String(16), nullable=False, default="OWNED")

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    return_date = db.Column(db.Date, nullable=False)
    reason = db.Column(db.Text, nullable=True)
    total_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    approved_by_user_id = db.Column(db.Integer, nullable=True)

    items = db.relationship(
        "PurchaseReturnItem",
        backref="purchase_return",
        lazy=True,
        order_by="PurchaseReturnItem.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "return_number": self.return_number,
            "purchase_order_id": self.purchase_order_id,
            "brand_id": self.brand_id,
            "factory_id": self.factory_id,
            "warehouse_id": self.warehouse_id,
            "ownership_type": self.ownership_type,
            "status": self.status,
            "return_date": to_iso_date(self.return_date),
            "reason": self.reason,
            "total_amount": as_float(self.total_amount),
            "created_at": to_utc_z(self.created_at),
            "approved_at": to_utc_z(self.approved_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "created_by_user_id": self.created_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class PurchaseReturnItem(db.Model):
    __tablename__ = "purchase_return_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_purchase_return_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_return_id = db.Column(db.Integer, db.ForeignKey("purchase_returns.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Numeric(18, 4), nullable=False)
    unit_code = db.Column(db.String(16), nullable=False)
    stock_quantity = db.Column(db.Numeric(18, 4), nullable=False)
    unit_price = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    line_total = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_return_id": self.purchase_return_id,
            "product_id": self.product_id,
            "quantity": as_float(self.quantity),
            "unit_code": self.unit_code,
            "stock_quantity": as_float(self.stock_quantity),
            "unit_price": as_float(self.unit_price),
            "line_total": as_float(self.line_total),
        }


class DocumentSequence(db.Model):
    """
    Atomic per-type, per-year document sequences (ORD-2026-000001, PO-..., GR-...).
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "year", name="uq_doc_sequences_type_year"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    year = db.Column(db.Integer, nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "year": self.year,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
