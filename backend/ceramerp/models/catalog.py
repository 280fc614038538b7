from __future__ import annotations

from ..extensions import db
from ..numeric import as_float
from ..time_utils import to_utc_z


class Warehouse(db.Model):
    __tablename__ = "warehouses"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_warehouses_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Warehouse id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Brand(db.Model):
    """
    Tile brand. Doubles as a supplier: purchase orders and purchase returns
    may name a brand as counterparty, so it carries a running balance
    (amount we owe the brand).
    """
    __tablename__ = "brands"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_brands_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    current_balance = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "current_balance": as_float(self.current_balance),
            "created_at": to_utc_z(self.created_at),
        }


class Factory(db.Model):
    """Factory supplier. Consignment stock is held on behalf of a factory."""
    __tablename__ = "factories"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_factories_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    current_balance = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "current_balance": as_float(self.current_balance),
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Product master data.

    STOCKING UNIT:
    stocking_unit is the unit InventoryRecord quantities are measured in
    (SQM for most floor/wall tiles, PCS for accessories). Order and PO lines
    are expressed in a sale unit and converted on insertion.

    PACKAGING:
    - size holds the dimension string ("60x60", cm). When absent the name is
      parsed instead.
    - pieces_per_box / boxes_per_pallet of 0 mean "unknown"; conversion then
      falls back to ratios derived from stock history.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_products_code"),
        db.Index("ix_products_brand_size", "brand_id", "size"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    size = db.Column(db.String(32), nullable=True)

    stocking_unit = db.Column(db.String(16), nullable=False, default="SQM")
    pieces_per_box = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    boxes_per_pallet = db.Column(db.Numeric(18, 4), nullable=False, default=0)

    base_price = db.Column(db.Numeric(14, 2), nullable=True)
    purchase_price = db.Column(db.Numeric(14, 2), nullable=True)

    brand_id = db.Column(db.Integer, db.ForeignKey("brands.id"), nullable=True, index=True)

    # False for services/manual lines that never touch the ledger
    track_stock = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    brand = db.relationship("Brand", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} code={self.code!r} size={self.size!r} unit={self.stocking_unit}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "size": self.size,
            "stocking_unit": self.stocking_unit,
            "pieces_per_box": as_float(self.pieces_per_box),
            "boxes_per_pallet": as_float(self.boxes_per_pallet),
            "base_price": as_float(self.base_price),
            "purchase_price": as_float(self.purchase_price),
            "brand_id": self.brand_id,
            "track_stock": self.track_stock,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CatalogueEntry(db.Model):
    """
    Denormalized catalogue projection (read model).

    One row per product, rebuilt from InventoryRecord by the catalogue
    refresh. Never written by the settlement paths directly.
    """
    __tablename__ = "catalogue_entries"

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), primary_key=True)
    product_code = db.Column(db.String(64), nullable=False)
    product_name = db.Column(db.String(255), nullable=False)
    brand_name = db.Column(db.String(255), nullable=True)
    size = db.Column(db.String(32), nullable=True)
    stocking_unit = db.Column(db.String(16), nullable=False)

    area_per_piece = db.Column(db.Numeric(18, 4), nullable=True)
    pieces_per_box = db.Column(db.Numeric(18, 4), nullable=True)
    boxes_per_pallet = db.Column(db.Numeric(18, 4), nullable=True)

    quantity_on_hand = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    quantity_reserved = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    quantity_available = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    pallet_count = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    colis_count = db.Column(db.Numeric(18, 4), nullable=False, default=0)

    refreshed_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_code": self.product_code,
            "product_name": self.product_name,
            "brand_name": self.brand_name,
            "size": self.size,
            "stocking_unit": self.stocking_unit,
            "area_per_piece": as_float(self.area_per_piece),
            "pieces_per_box": as_float(self.pieces_per_box),
            "boxes_per_pallet": as_float(self.boxes_per_pallet),
            "quantity_on_hand": as_float(self.quantity_on_hand),
            "quantity_reserved": as_float(self.quantity_reserved),
            "quantity_available": as_float(self.quantity_available),
            "pallet_count": as_float(self.pallet_count),
            "colis_count": as_float(self.colis_count),
            "refreshed_at": to_utc_z(self.refreshed_at),
        }
