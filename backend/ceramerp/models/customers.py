from __future__ import annotations

from ..extensions import db
from ..numeric import as_float
from ..time_utils import to_utc_z


class PriceList(db.Model):
    __tablename__ = "price_lists"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_price_lists_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    items = db.relationship("PriceListItem", backref="price_list", lazy=True, cascade="all, delete-orphan")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class PriceListItem(db.Model):
    __tablename__ = "price_list_items"
    __table_args__ = (
        db.UniqueConstraint("price_list_id", "product_id", name="uq_price_list_items_list_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    price_list_id = db.Column(db.Integer, db.ForeignKey("price_lists.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    price = db.Column(db.Numeric(14, 2), nullable=False)


class Customer(db.Model):
    """
    Customer (counterparty for orders and returns).

    BALANCE:
    current_balance is a denormalized running total of what the customer owes.
    It is only ever mutated through accounting_service.adjust_customer_balance
    so every change sits in the same transaction as its triggering document.
    RETAIL customers never accrue a balance from orders.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_customers_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    customer_type = db.Column(db.String(16), nullable=False, default="WHOLESALE")

    price_list_id = db.Column(db.Integer, db.ForeignKey("price_lists.id"), nullable=True, index=True)
    current_balance = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    price_list = db.relationship("PriceList")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_retail(self) -> bool:
        return self.customer_type == "RETAIL"

    def __repr__(self) -> str:
        return f"<Customer id={self.id} code={self.code!r} type={self.customer_type}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "customer_type": self.customer_type,
            "price_list_id": self.price_list_id,
            "current_balance": as_float(self.current_balance),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class CustomerProductPrice(db.Model):
    """CONTRACT price: explicit (customer, product) override."""
    __tablename__ = "customer_product_prices"
    __table_args__ = (
        db.UniqueConstraint("customer_id", "product_id", name="uq_customer_product_prices"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    price = db.Column(db.Numeric(14, 2), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "product_id": self.product_id,
            "price": as_float(self.price),
            "created_at": to_utc_z(self.created_at),
        }


class CustomerBrandRule(db.Model):
    """BRAND_RULE price: (customer, brand, size) override applied to every matching product."""
    __tablename__ = "customer_brand_rules"
    __table_args__ = (
        db.UniqueConstraint("customer_id", "brand_id", "size", name="uq_customer_brand_rules"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    brand_id = db.Column(db.Integer, db.ForeignKey("brands.id"), nullable=False)
    size = db.Column(db.String(32), nullable=False)
    price = db.Column(db.Numeric(14, 2), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "brand_id": self.brand_id,
            "size": self.size,
            "price": as_float(self.price),
            "created_at": to_utc_z(self.created_at),
        }
