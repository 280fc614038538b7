from __future__ import annotations

from ..extensions import db
from ..numeric import as_float
from ..time_utils import to_utc_z


class Order(db.Model):
    """
    Sales order header.

    LIFECYCLE: see services/state_machine.py (OrderStatus).

    SETTLEMENT SNAPSHOT:
    balance_delta_applied records the customer-balance delta posted at
    confirmation so an edit can reverse exactly what was applied, even if
    payment fields were changed in between.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_number"),
        db.Index("ix_orders_customer_status", "customer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    # Walk-in sales carry a free-text name instead of a customer
    client_name = db.Column(db.String(255), nullable=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    order_type = db.Column(db.String(16), nullable=False, default="WHOLESALE")

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)

    subtotal = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    delivery_cost = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    timber_price = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    payment_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    payment_method = db.Column(db.String(16), nullable=True)
    balance_delta_applied = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    confirmed_by_user_id = db.Column(db.Integer, nullable=True)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    customer = db.relationship("Customer")
    warehouse = db.relationship("Warehouse")
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )

    @property
    def is_retail(self) -> bool:
        return self.order_type == "RETAIL"

    def __repr__(self) -> str:
        return f"<Order {self.order_number} status={self.status} total={self.total_amount}>"

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "client_name": self.client_name,
            "warehouse_id": self.warehouse_id,
            "order_type": self.order_type,
            "status": self.status,
            "subtotal": as_float(self.subtotal),
            "tax_amount": as_float(self.tax_amount),
            "discount_amount": as_float(self.discount_amount),
            "delivery_cost": as_float(self.delivery_cost),
            "timber_price": as_float(self.timber_price),
            "total_amount": as_float(self.total_amount),
            "payment_amount": as_float(self.payment_amount),
            "payment_method": self.payment_method,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "confirmed_by_user_id": self.confirmed_by_user_id,
            "confirmed_at": to_utc_z(self.confirmed_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """
    Order line.

    quantity/unit_code are what the operator typed; stock_quantity is the
    same amount in the product's stocking unit, resolved once at insertion.
    reserved_quantity and committed_quantity track what the ledger actually
    holds for this line so reversal never re-derives a conversion.
    cost_price is snapshotted at insertion and never recalculated.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Numeric(18, 4), nullable=False)
    unit_code = db.Column(db.String(16), nullable=False)
    stock_quantity = db.Column(db.Numeric(18, 4), nullable=False, default=0)

    unit_price = db.Column(db.Numeric(14, 2), nullable=False)
    price_source = db.Column(db.String(16), nullable=False)
    discount_percent = db.Column(db.Numeric(7, 4), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    tax_percent = db.Column(db.Numeric(7, 4), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    line_total = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    pallet_count = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    colis_count = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    cost_price = db.Column(db.Numeric(14, 2), nullable=True)

    # Totals across allocations
    reserved_quantity = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    committed_quantity = db.Column(db.Numeric(18, 4), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")
    allocations = db.relationship(
        "OrderItemAllocation",
        backref="order_item",
        lazy=True,
        order_by="OrderItemAllocation.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "quantity": as_float(self.quantity),
            "unit_code": self.unit_code,
            "stock_quantity": as_float(self.stock_quantity),
            "unit_price": as_float(self.unit_price),
            "price_source": self.price_source,
            "discount_percent": as_float(self.discount_percent),
            "discount_amount": as_float(self.discount_amount),
            "tax_percent": as_float(self.tax_percent),
            "tax_amount": as_float(self.tax_amount),
            "line_total": as_float(self.line_total),
            "pallet_count": as_float(self.pallet_count),
            "colis_count": as_float(self.colis_count),
            "cost_price": as_float(self.cost_price),
            "reserved_quantity": as_float(self.reserved_quantity),
            "committed_quantity": as_float(self.committed_quantity),
            "allocations": [a.to_dict() for a in self.allocations],
            "created_at": to_utc_z(self.created_at),
        }


class OrderItemAllocation(db.Model):
    """
    Share of an order line drawn from one stock key (ownership, factory).

    quantity is what was allocated at reservation. reserved_quantity and
    committed_quantity follow the ledger for this key so release, commit and
    reversal hit the same InventoryRecord the reservation used.
    """
    __tablename__ = "order_item_allocations"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_item_allocations_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=False, index=True)
    ownership_type = db.Column(db.String(16), nullable=False, default="OWNED")
    factory_id = db.Column(db.Integer, db.ForeignKey("factories.id"), nullable=True)

    quantity = db.Column(db.Numeric(18, 4), nullable=False)
    reserved_quantity = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    committed_quantity = db.Column(db.Numeric(18, 4), nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "ownership_type": self.ownership_type,
            "factory_id": self.factory_id,
            "quantity": as_float(self.quantity),
            "reserved_quantity": as_float(self.reserved_quantity),
            "committed_quantity": as_float(self.committed_quantity),
        }
